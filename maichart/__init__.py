"""maichart: rhythm-game chart conversion (Ma2 -> simai / Ma2)."""

__version__ = "0.1.0"
