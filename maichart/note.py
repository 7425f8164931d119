"""Note: the timed chart event shared by the parser, the tempo timeline and the composers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Final

# ── Position constants ──────────────────────────────────────────────────────
RESOLUTION: Final[int] = 384  # ticks per measure
BEATS_PER_MEASURE: Final[int] = 4
TICKS_PER_BEAT: Final[int] = RESOLUTION // BEATS_PER_MEASURE
BUTTON_COUNT: Final[int] = 8
TOUCH_AREAS: Final[frozenset[str]] = frozenset("ABCDE")

_LINK: Final[dict[str, bool]] = {"link": True}
_IDENTITY_FIELDS: Final[frozenset[str]] = frozenset({"kind", "key"})


def ticks_to_seconds(ticks: int, bpm: float) -> float:
    """
    Convert a tick count to seconds at a constant tempo.

    One tick lasts ``60 / bpm * 4 / 384`` seconds. The product is formed
    before the single division so whole-beat lengths come out exact.
    """
    return ticks * 60 * BEATS_PER_MEASURE / (bpm * RESOLUTION)


# ── Variant tags ────────────────────────────────────────────────────────────

class NoteGenre(Enum):
    """General category a kind belongs to; drives validity and composition."""

    TAP = "TAP"
    HOLD = "HOLD"
    SLIDE_START = "SLIDE_START"
    SLIDE = "SLIDE"
    BPM = "BPM"
    MEASURE = "MEASURE"


class NoteKind(Enum):
    """Base shape of a chart record, named after its Ma2 token."""

    TAP = "TAP"
    STR = "STR"  # star: the tap a slide grows out of
    HLD = "HLD"
    TTP = "TTP"  # touch tap
    THO = "THO"  # touch hold
    SI_ = "SI_"
    SCL = "SCL"
    SCR = "SCR"
    SUL = "SUL"
    SUR = "SUR"
    SSL = "SSL"
    SSR = "SSR"
    SV_ = "SV_"
    SXL = "SXL"
    SXR = "SXR"
    SLL = "SLL"
    SLR = "SLR"
    SF_ = "SF_"
    BPM = "BPM"
    MET = "MET"

    @property
    def genre(self) -> NoteGenre:
        return _KIND_GENRES.get(self, NoteGenre.SLIDE)

    @property
    def is_touch(self) -> bool:
        return self in (NoteKind.TTP, NoteKind.THO)


_KIND_GENRES: Final[dict[NoteKind, NoteGenre]] = {
    NoteKind.TAP: NoteGenre.TAP,
    NoteKind.TTP: NoteGenre.TAP,
    NoteKind.STR: NoteGenre.SLIDE_START,
    NoteKind.HLD: NoteGenre.HOLD,
    NoteKind.THO: NoteGenre.HOLD,
    NoteKind.BPM: NoteGenre.BPM,
    NoteKind.MET: NoteGenre.MEASURE,
}


class NoteModifier(Enum):
    """Decoration of a playable note, named after its Ma2 1.04 prefix."""

    NORMAL = "NM"
    BREAK = "BR"
    EX = "EX"
    BREAK_EX = "BX"
    CONNECTED = "CN"  # slide segment continuing the previous one

    @property
    def is_break(self) -> bool:
        return self in (NoteModifier.BREAK, NoteModifier.BREAK_EX)

    @property
    def is_ex(self) -> bool:
        return self in (NoteModifier.EX, NoteModifier.BREAK_EX)


# ── Length encodings ────────────────────────────────────────────────────────

def fraction_length(length: int) -> str:
    """
    Encode a tick length as a beat fraction of the measure.

    ``length`` is reduced against the resolution by their greatest common
    divisor, e.g. 192 ticks -> ``"[2:1]"``.

    Returns:
        ``"[quaver:beat]"``
    """
    divisor = math.gcd(RESOLUTION, length)
    return f"[{RESOLUTION // divisor}:{length // divisor}]"


def timed_length(wait_time: int, last_time: int, bpm: float) -> str:
    """
    Encode a wait phase and a sustain as absolute seconds at ``bpm``.

    Values use the shortest repr that round-trips to the same float.

    Returns:
        ``"[sustain##duration]"``
    """
    sustain = ticks_to_seconds(wait_time, bpm)
    duration = ticks_to_seconds(last_time, bpm)
    return f"[{float(sustain)!r}##{float(duration)!r}]"


# ── Note ────────────────────────────────────────────────────────────────────

@dataclass(eq=False)
class Note:
    """
    One chart event with its musical position and derived timing.

    Attributes:
        kind:       Base shape (tap, hold, slide shape, BPM, MET...).
        modifier:   Break / EX / connected decoration of playable notes.
        key:        Lane the note starts on ("0".."7"); fixed after construction.
        end_key:    Lane a slide ends on.
        bar:        0-based measure index.
        tick:       Offset within the measure, ``0 <= tick < RESOLUTION``.
        wait_time:  Ticks before the sustained part begins (slides).
        last_time:  Ticks the note sustains (holds and slides).
        bpm:        Tempo in effect at this note (own tempo for BPM records).

    The ``*_stamp`` and ``calculated_*`` fields are derived. ``update()``
    refreshes the tick stamps; the tempo timeline fills in the seconds.

    ``prev``, ``next``, ``slide_start``, ``consecutive_slide`` and
    ``next_bpm_change`` are indices into the owning chart's note list. They
    are set during chain assembly and never copied.
    """

    kind: NoteKind = NoteKind.TAP
    modifier: NoteModifier = NoteModifier.NORMAL
    key: str = ""
    end_key: str = ""
    bar: int = 0
    tick: int = 0
    wait_time: int = 0
    last_time: int = 0
    delayed: bool = False
    bpm: float = 0.0
    touch_area: str = ""
    firework: bool = False
    touch_size: str = "M1"
    numerator: int = BEATS_PER_MEASURE
    denominator: int = BEATS_PER_MEASURE

    tick_stamp: int = 0
    tick_time_stamp: float = 0.0
    wait_stamp: int = 0
    wait_time_stamp: float = 0.0
    calculated_wait_time: float = 0.0
    last_stamp: int = 0
    last_time_stamp: float = 0.0
    calculated_last_time: float = 0.0

    prev: int | None = field(default=None, metadata=_LINK)
    next: int | None = field(default=None, metadata=_LINK)
    slide_start: int | None = field(default=None, metadata=_LINK)
    consecutive_slide: int | None = field(default=None, metadata=_LINK)
    next_bpm_change: int | None = field(default=None, metadata=_LINK)

    def __post_init__(self) -> None:
        self.update()

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _IDENTITY_FIELDS and name in self.__dict__:
            raise AttributeError(f"Note.{name} cannot change after construction.")
        super().__setattr__(name, value)

    # ------------------------------------------------------------------
    # Derived tags
    # ------------------------------------------------------------------

    @property
    def genre(self) -> NoteGenre:
        return self.kind.genre

    @property
    def note_type(self) -> str:
        """Full kind tag, e.g. ``NMTAP``, ``BRSTR``, ``CNSI_``, ``BPM``."""
        if self.genre in (NoteGenre.BPM, NoteGenre.MEASURE):
            return self.kind.value
        return self.modifier.value + self.kind.value

    @property
    def is_sustained(self) -> bool:
        return self.genre in (NoteGenre.HOLD, NoteGenre.SLIDE)

    @property
    def is_note(self) -> bool:
        """True for playable notes (taps, holds, stars and slides)."""
        return self.genre not in (NoteGenre.BPM, NoteGenre.MEASURE)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def copy(self) -> Note:
        """Return a new note with every scalar field copied and no links."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if not f.metadata.get("link")}
        return Note(**values)

    def update(self) -> bool:
        """
        Recompute the tick stamps and report whether timing is resolved.

        Non-sustained notes are resolved once their stamps are fresh. Holds
        and slides additionally need the tempo timeline to have populated
        their durations in seconds: ``calculated_last_time`` must be
        positive, and so must ``calculated_wait_time`` whenever the note has
        a wait phase at all.

        A sustain with ``wait_time == 0`` (every hold, and connected slide
        segments) has no wait phase, so its ``calculated_wait_time`` of 0 does
        not hold it back. Requiring a positive wait unconditionally would
        leave every hold unresolved.
        """
        self.tick_stamp = self.bar * RESOLUTION + self.tick
        self.wait_stamp = self.tick_stamp + self.wait_time
        self.last_stamp = self.wait_stamp + self.last_time
        if not self.is_sustained:
            return True
        if self.calculated_last_time <= 0:
            return False
        return self.wait_time == 0 or self.calculated_wait_time > 0

    # ------------------------------------------------------------------
    # Ordering & equality
    # ------------------------------------------------------------------

    def compare_to(self, other: object) -> int:
        """
        Order two notes by bar, then tick; at the same instant a BPM change
        sorts first.

        Raises:
            TypeError: If ``other`` is not a Note.
        """
        if not isinstance(other, Note):
            raise TypeError(f"Cannot order a Note against {type(other).__name__}.")
        if self.bar != other.bar:
            return -1 if self.bar < other.bar else 1
        if self.tick != other.tick:
            return -1 if self.tick < other.tick else 1
        if self.genre is NoteGenre.BPM:
            return -1
        return 0

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Note):
            return NotImplemented
        if (self.bar, self.tick) == (other.bar, other.tick):
            # Two BPM records at one instant keep their input order.
            return self.genre is NoteGenre.BPM and other.genre is not NoteGenre.BPM
        return self.compare_to(other) < 0

    def _identity(self) -> tuple[Any, ...]:
        return (
            self.note_type,
            self.key,
            self.end_key,
            self.bar,
            self.tick,
            self.last_time,
            self.bpm,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Note):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    def check_validity(self) -> bool:
        """Return False when the fields are inconsistent for this kind. Never raises."""
        if self.bar < 0 or not 0 <= self.tick < RESOLUTION:
            return False
        return _VALIDATORS[self.genre](self)


# ── Per-genre validity ──────────────────────────────────────────────────────

def _is_button(key: str) -> bool:
    return key.isdecimal() and 0 <= int(key) < BUTTON_COUNT


def _has_valid_lane(note: Note) -> bool:
    if not note.kind.is_touch:
        return _is_button(note.key)
    if note.touch_area not in TOUCH_AREAS or not note.key.isdecimal():
        return False
    # The centre sensor has two halves, every other area has eight.
    limit = 2 if note.touch_area == "C" else BUTTON_COUNT
    return int(note.key) < limit


def _valid_tap(note: Note) -> bool:
    return _has_valid_lane(note)


def _valid_hold(note: Note) -> bool:
    return _has_valid_lane(note) and note.last_time > 0


def _valid_slide(note: Note) -> bool:
    return (
        _is_button(note.key)
        and _is_button(note.end_key)
        and note.wait_time >= 0
        and note.last_time > 0
        and note.slide_start is not None
    )


def _valid_bpm(note: Note) -> bool:
    return math.isfinite(note.bpm) and note.bpm > 0


def _valid_measure(note: Note) -> bool:
    return note.numerator > 0 and note.denominator > 0


_VALIDATORS: Final[dict[NoteGenre, Callable[[Note], bool]]] = {
    NoteGenre.TAP: _valid_tap,
    NoteGenre.SLIDE_START: _valid_tap,
    NoteGenre.HOLD: _valid_hold,
    NoteGenre.SLIDE: _valid_slide,
    NoteGenre.BPM: _valid_bpm,
    NoteGenre.MEASURE: _valid_measure,
}
