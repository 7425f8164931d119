"""Tokenizer: reads a chart source into its raw lines."""

from __future__ import annotations

import os
from pathlib import Path


class Tokenizer:
    """Turns a chart location into the ordered list of its text lines."""

    def tokens(self, location: str | os.PathLike[str]) -> list[str]:
        """
        Read every line of the chart at ``location``.

        A leading byte-order mark is dropped and line endings are stripped.

        Raises:
            FileNotFoundError: If nothing exists at ``location``; the message
                               is the location as given.
        """
        try:
            text = Path(location).read_text(encoding="utf-8-sig")
        except FileNotFoundError as exc:
            raise FileNotFoundError(str(location)) from exc
        return text.splitlines()
