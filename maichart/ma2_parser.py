"""Ma2Parser: reads Ma2 1.03 / 1.04 chart records into notes.

A Ma2 chart is a list of whitespace-separated records. The first field names
the record; positions are ``bar`` and ``tick`` at 384 ticks per measure.

    VERSION	0.00.00	1.04.00
    RESOLUTION	384
    BPM	0	0	120.000
    MET	0	0	4	4
    NMTAP	0	0	2
    NMHLD	0	192	3	96
    NMSTR	1	0	0
    NMSI_	1	0	0	96	192	4

1.03 charts use bare tokens (``TAP``, ``BRK``, ``XST``, ``SI_``...) where
1.04 prefixes every playable token with its modifier (``NM``, ``BR``,
``EX``, ``BX``, ``CN``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Final, Iterable

from maichart.note import (
    BEATS_PER_MEASURE,
    RESOLUTION,
    TICKS_PER_BEAT,
    Note,
    NoteGenre,
    NoteKind,
    NoteModifier,
)

logger = logging.getLogger(__name__)

_SKIPPED_RECORDS: Final[frozenset[str]] = frozenset({"CLK"})
_SKIPPED_PREFIXES: Final[tuple[str, ...]] = ("T_", "TTM_")

_SLIDE_KINDS: Final[tuple[NoteKind, ...]] = tuple(
    kind for kind in NoteKind if kind.genre is NoteGenre.SLIDE
)

#: Ma2 1.03 tokens and the (modifier, kind) pair they stand for.
LEGACY_TOKENS: Final[dict[str, tuple[NoteModifier, NoteKind]]] = {
    "TAP": (NoteModifier.NORMAL, NoteKind.TAP),
    "BRK": (NoteModifier.BREAK, NoteKind.TAP),
    "XTP": (NoteModifier.EX, NoteKind.TAP),
    "STR": (NoteModifier.NORMAL, NoteKind.STR),
    "BST": (NoteModifier.BREAK, NoteKind.STR),
    "XST": (NoteModifier.EX, NoteKind.STR),
    "HLD": (NoteModifier.NORMAL, NoteKind.HLD),
    "XHO": (NoteModifier.EX, NoteKind.HLD),
    "TTP": (NoteModifier.NORMAL, NoteKind.TTP),
    "THO": (NoteModifier.NORMAL, NoteKind.THO),
    **{kind.value: (NoteModifier.NORMAL, kind) for kind in _SLIDE_KINDS},
}


class ChartParseError(ValueError):
    """Raised when a chart record cannot be read; aborts the whole chart."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


@dataclass
class Ma2Header:
    """Header records of a Ma2 chart."""

    version: tuple[str, str] = ("0.00.00", "1.04.00")
    fes_mode: int = 0
    bpm_def: tuple[float, ...] = ()
    met_def: tuple[int, int] = (BEATS_PER_MEASURE, BEATS_PER_MEASURE)
    resolution: int = RESOLUTION
    clk_def: int = RESOLUTION
    compatible_code: str = "MA2"


@dataclass
class Ma2Document:
    """A parsed chart: its header plus the notes in file order."""

    header: Ma2Header = field(default_factory=Ma2Header)
    notes: list[Note] = field(default_factory=list)


def parse_token(token: str) -> tuple[NoteModifier, NoteKind]:
    """
    Split a playable record token into its modifier and kind.

    Raises:
        ValueError: If the token is neither a 1.03 nor a 1.04 note token.
    """
    if token in LEGACY_TOKENS:
        return LEGACY_TOKENS[token]
    modifier = NoteModifier(token[:2])
    kind = NoteKind(token[2:])
    if kind.genre in (NoteGenre.BPM, NoteGenre.MEASURE):
        raise ValueError(token)
    return modifier, kind


class Ma2Parser:
    """
    Parses Ma2 records into a ``Ma2Document``.

    Header records are kept, clock and statistics records are skipped, and
    any other unknown or malformed record aborts the parse.
    """

    def parse(self, lines: Iterable[str]) -> Ma2Document:
        """
        Raises:
            ChartParseError: On the first record that cannot be read.
        """
        document = Ma2Document()
        for line_number, line in enumerate(lines, start=1):
            fields = line.split()
            if not fields:
                continue

            token = fields[0]
            if token in _SKIPPED_RECORDS or token.startswith(_SKIPPED_PREFIXES):
                continue

            try:
                if self._parse_header(document.header, fields):
                    continue
                document.notes.append(self._parse_record(fields))
            except ChartParseError as exc:
                raise ChartParseError(str(exc), line_number) from exc
            except (ValueError, IndexError) as exc:
                raise ChartParseError(f"malformed {token} record: {line.strip()!r}", line_number) from exc

        logger.debug("parsed %d records", len(document.notes))
        return document

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _parse_header(self, header: Ma2Header, fields: list[str]) -> bool:
        """Store a header record on ``header``; False when the record is not a header."""
        token = fields[0]
        if token == "VERSION":
            header.version = (fields[1], fields[2])
        elif token == "FES_MODE":
            header.fes_mode = int(fields[1])
        elif token == "BPM_DEF":
            header.bpm_def = tuple(float(value) for value in fields[1:])
        elif token == "MET_DEF":
            header.met_def = (int(fields[1]), int(fields[2]))
        elif token == "RESOLUTION":
            header.resolution = int(fields[1])
            if header.resolution != RESOLUTION:
                raise ChartParseError(
                    f"unsupported resolution {header.resolution}; only {RESOLUTION} is supported"
                )
        elif token == "CLK_DEF":
            header.clk_def = int(fields[1])
        elif token == "COMPATIBLE_CODE":
            header.compatible_code = fields[1]
        else:
            return False
        return True

    def _parse_record(self, fields: list[str]) -> Note:
        token = fields[0]
        bar, tick = int(fields[1]), int(fields[2])

        if token == "BPM":
            return Note(kind=NoteKind.BPM, bar=bar, tick=tick, bpm=float(fields[3]))
        if token == "MET":
            return Note(
                kind=NoteKind.MET,
                bar=bar,
                tick=tick,
                numerator=int(fields[3]),
                denominator=int(fields[4]),
            )

        try:
            modifier, kind = parse_token(token)
        except ValueError as exc:
            raise ChartParseError(f"unknown record {token!r}") from exc

        key = fields[3]
        if kind is NoteKind.TTP:
            return Note(
                kind=kind,
                modifier=modifier,
                key=key,
                bar=bar,
                tick=tick,
                touch_area=fields[4],
                firework=fields[5] == "1",
                touch_size=fields[6] if len(fields) > 6 else "M1",
            )
        if kind is NoteKind.THO:
            return Note(
                kind=kind,
                modifier=modifier,
                key=key,
                bar=bar,
                tick=tick,
                last_time=int(fields[4]),
                touch_area=fields[5],
                firework=fields[6] == "1",
                touch_size=fields[7] if len(fields) > 7 else "M1",
            )
        if kind.genre is NoteGenre.HOLD:
            return Note(kind=kind, modifier=modifier, key=key, bar=bar, tick=tick, last_time=int(fields[4]))
        if kind.genre is NoteGenre.SLIDE:
            wait_time = int(fields[4])
            return Note(
                kind=kind,
                modifier=modifier,
                key=key,
                end_key=fields[6],
                bar=bar,
                tick=tick,
                wait_time=wait_time,
                last_time=int(fields[5]),
                delayed=modifier is not NoteModifier.CONNECTED and wait_time != TICKS_PER_BEAT,
            )
        return Note(kind=kind, modifier=modifier, key=key, bar=bar, tick=tick)
