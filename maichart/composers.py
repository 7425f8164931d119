"""Composer implementations for chart output notations."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Callable, Final, Sequence

from maichart.chart import Chart
from maichart.ma2_parser import Ma2Header
from maichart.note import (
    BUTTON_COUNT,
    RESOLUTION,
    Note,
    NoteGenre,
    NoteKind,
    NoteModifier,
    fraction_length,
    timed_length,
)
from maichart.timeline import ResolvedNote


class ChartFormat(IntEnum):
    """Target notation selector."""

    SIMAI = 1
    MA2_103 = 103
    MA2_104 = 104


SUPPORTED_FORMATS: Final[dict[str, ChartFormat]] = {
    "simai": ChartFormat.SIMAI,
    "ma2": ChartFormat.MA2_104,
    "ma2-103": ChartFormat.MA2_103,
    "ma2-104": ChartFormat.MA2_104,
}


class UnresolvedNoteError(ValueError):
    """Raised when a composer is handed a note whose timing was not resolved."""


def parse_format(name: str | ChartFormat) -> ChartFormat:
    """
    Map a format name (``simai``, ``ma2``, ``ma2-103``, ``ma2-104``) or code to a ChartFormat.

    Raises:
        ValueError: If the format is not supported.
    """
    if isinstance(name, ChartFormat):
        return name
    normalized = name.strip().lower()
    if normalized not in SUPPORTED_FORMATS:
        supported = ", ".join(sorted(SUPPORTED_FORMATS))
        raise ValueError(f"Unsupported output format '{name}'. Use one of: {supported}.")
    return SUPPORTED_FORMATS[normalized]


def _format_number(value: float) -> str:
    """Shortest round-tripping text for a number, without a trailing ``.0``."""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


class ChartComposer(ABC):
    """
    Abstract chart composer.

    ``compose_note`` dispatches on the note's genre to one method per variant;
    every subclass must cover the whole closed set. ``compose`` assembles a
    full document from resolved, valid notes.
    """

    def __init__(self, chart: Chart) -> None:
        self.chart = chart
        self._handlers: dict[NoteGenre, Callable[[ResolvedNote], str]] = {
            NoteGenre.TAP: self.compose_tap,
            NoteGenre.HOLD: self.compose_hold,
            NoteGenre.SLIDE_START: self.compose_slide_start,
            NoteGenre.SLIDE: self.compose_slide,
            NoteGenre.BPM: self.compose_bpm,
            NoteGenre.MEASURE: self.compose_measure,
        }

    @property
    @abstractmethod
    def default_extension(self) -> str:
        """Default filename extension for this notation."""

    def compose_note(self, resolved: ResolvedNote) -> str:
        """
        Render one resolved note in this notation.

        Raises:
            UnresolvedNoteError: If ``resolved`` is not a ``ResolvedNote``.
        """
        if not isinstance(resolved, ResolvedNote):
            raise UnresolvedNoteError(f"Cannot compose {resolved!r}: timing is not resolved.")
        return self._handlers[resolved.note.genre](resolved)

    @abstractmethod
    def compose(self, resolved_notes: Sequence[ResolvedNote]) -> str:
        """Render a whole chart document."""

    @abstractmethod
    def compose_tap(self, resolved: ResolvedNote) -> str: ...

    @abstractmethod
    def compose_hold(self, resolved: ResolvedNote) -> str: ...

    @abstractmethod
    def compose_slide_start(self, resolved: ResolvedNote) -> str: ...

    @abstractmethod
    def compose_slide(self, resolved: ResolvedNote) -> str: ...

    @abstractmethod
    def compose_bpm(self, resolved: ResolvedNote) -> str: ...

    @abstractmethod
    def compose_measure(self, resolved: ResolvedNote) -> str: ...


# ── Simai ───────────────────────────────────────────────────────────────────

class SimaiComposer(ChartComposer):
    """
    Render notes in simai notation.

    Keys are 1-based. Slides hang off their star (``1-5[8:1]``); a slide
    whose wait differs from one beat carries its timing in seconds instead
    (``1-5[0.25##0.5]``).
    """

    # Curved shapes whose direction flips between the upper and lower half.
    _UPPER_KEYS: Final[frozenset[int]] = frozenset({0, 1, 6, 7})
    _FIXED_SHAPES: Final[dict[NoteKind, str]] = {
        NoteKind.SI_: "-",
        NoteKind.SV_: "v",
        NoteKind.SF_: "w",
        NoteKind.SUL: "p",
        NoteKind.SUR: "q",
        NoteKind.SSL: "s",
        NoteKind.SSR: "z",
        NoteKind.SXL: "pp",
        NoteKind.SXR: "qq",
    }

    @property
    def default_extension(self) -> str:
        return ".txt"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _decorations(self, note: Note) -> str:
        return ("b" if note.modifier.is_break else "") + ("x" if note.modifier.is_ex else "")

    def _lane(self, note: Note) -> str:
        if note.kind.is_touch:
            sensor = "" if note.touch_area == "C" else str(int(note.key) + 1)
            return note.touch_area + sensor + ("f" if note.firework else "")
        return str(int(note.key) + 1) + self._decorations(note)

    def _star(self, note: Note, attached: bool) -> str:
        return self._lane(note) + ("" if attached else "$")

    def _slide_shape(self, note: Note) -> str:
        key = int(note.key)
        if note.kind in self._FIXED_SHAPES:
            return self._FIXED_SHAPES[note.kind]
        if note.kind is NoteKind.SCL:
            return "<" if key in self._UPPER_KEYS else ">"
        if note.kind is NoteKind.SCR:
            return ">" if key in self._UPPER_KEYS else "<"
        # V-shaped slides turn at the key two lanes away.
        turn = 6 if note.kind is NoteKind.SLL else 2
        return f"V{(key + turn) % BUTTON_COUNT + 1}"

    def _bar_division(self, entries: Sequence[ResolvedNote], current: int) -> int:
        """Smallest division of the measure that lands on every entry's tick."""
        if not entries:
            return current
        divisor = RESOLUTION
        for entry in entries:
            divisor = math.gcd(divisor, entry.note.tick)
        return RESOLUTION // divisor

    def _star_with_slides(self, resolved: ResolvedNote, composable: dict[int, ResolvedNote]) -> str:
        paths: list[str] = []
        for first in self.chart.slides_from(resolved.index):
            path = ""
            for segment in self.chart.slide_chain(first):
                if segment not in composable:
                    break
                path += self.compose_note(composable[segment])
            if path:
                paths.append(path)
        return self._star(resolved.note, attached=bool(paths)) + "*".join(paths)

    # ------------------------------------------------------------------
    # Per-variant
    # ------------------------------------------------------------------

    def compose_tap(self, resolved: ResolvedNote) -> str:
        return self._lane(resolved.note)

    def compose_hold(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        return f"{self._lane(note)}h{fraction_length(note.last_time)}"

    def compose_slide_start(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        return self._star(note, attached=note.consecutive_slide is not None)

    def compose_slide(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        if note.delayed and not self.chart.is_continuation(resolved.index):
            length = timed_length(note.wait_time, note.last_time, note.bpm)
        else:
            length = fraction_length(note.last_time)
        suffix = "b" if note.modifier.is_break else ""
        return f"{self._slide_shape(note)}{int(note.end_key) + 1}{length}{suffix}"

    def compose_bpm(self, resolved: ResolvedNote) -> str:
        return f"({_format_number(resolved.note.bpm)})"

    def compose_measure(self, resolved: ResolvedNote) -> str:
        return ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compose(self, resolved_notes: Sequence[ResolvedNote]) -> str:
        """
        Lay the chart out bar by bar.

        Each bar opens with ``{quaver}`` when its division changes, then has
        exactly ``quaver`` comma-terminated slots. Simultaneous notes are
        joined with ``/``; slides are written with their star.
        """
        composable = {resolved.index: resolved for resolved in resolved_notes}
        bars: dict[int, list[ResolvedNote]] = {}
        for resolved in resolved_notes:
            note = resolved.note
            if note.genre in (NoteGenre.SLIDE, NoteGenre.MEASURE):
                continue
            bars.setdefault(note.bar, []).append(resolved)

        lines: list[str] = []
        current = 0
        for bar in range(max(bars, default=-1) + 1):
            entries = bars.get(bar, [])
            division = self._bar_division(entries, current or 1)
            text = f"{{{division}}}" if division != current else ""
            current = division

            step = RESOLUTION // division
            slots: dict[int, list[ResolvedNote]] = {}
            for entry in entries:
                slots.setdefault(entry.note.tick // step, []).append(entry)

            for slot in range(division):
                group = slots.get(slot, [])
                tempo = "".join(self.compose_note(r) for r in group if r.note.genre is NoteGenre.BPM)
                each = [
                    self._star_with_slides(r, composable)
                    if r.note.genre is NoteGenre.SLIDE_START
                    else self.compose_note(r)
                    for r in group
                    if r.note.is_note
                ]
                text += tempo + "/".join(each) + ","
            lines.append(text)

        lines.append("E")
        return "\n".join(lines) + "\n"


# ── Ma2 ─────────────────────────────────────────────────────────────────────

class Ma2Composer(ChartComposer):
    """Render notes as tab-separated Ma2 records (1.03 or 1.04 vocabulary)."""

    _LEGACY_TOKENS: Final[dict[tuple[NoteModifier, NoteKind], str]] = {
        (NoteModifier.BREAK, NoteKind.TAP): "BRK",
        (NoteModifier.BREAK_EX, NoteKind.TAP): "BRK",
        (NoteModifier.EX, NoteKind.TAP): "XTP",
        (NoteModifier.BREAK, NoteKind.STR): "BST",
        (NoteModifier.BREAK_EX, NoteKind.STR): "BST",
        (NoteModifier.EX, NoteKind.STR): "XST",
        (NoteModifier.EX, NoteKind.HLD): "XHO",
    }
    _VERSIONS: Final[dict[ChartFormat, str]] = {
        ChartFormat.MA2_103: "1.03.00",
        ChartFormat.MA2_104: "1.04.00",
    }

    def __init__(
        self,
        chart: Chart,
        header: Ma2Header | None = None,
        version: ChartFormat = ChartFormat.MA2_104,
    ) -> None:
        if version not in self._VERSIONS:
            raise ValueError(f"Ma2Composer cannot write {version.name}.")
        super().__init__(chart)
        self.header = header if header is not None else Ma2Header()
        self.version = version

    @property
    def default_extension(self) -> str:
        return ".ma2"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _token(self, note: Note) -> str:
        if self.version is ChartFormat.MA2_104:
            return note.note_type
        return self._LEGACY_TOKENS.get((note.modifier, note.kind), note.kind.value)

    def _record(self, *fields: object) -> str:
        return "\t".join(str(value) for value in fields)

    def _touch_fields(self, note: Note) -> tuple[object, ...]:
        return (note.touch_area, int(note.firework), note.touch_size)

    def _compose_header(self, resolved_notes: Sequence[ResolvedNote]) -> str:
        header = self.header
        bpm_def = header.bpm_def
        if not bpm_def:
            tempos = [r.note.bpm for r in resolved_notes if r.note.genre is NoteGenre.BPM]
            bpm_def = (tempos[0],) * 4 if tempos else ()
        lines = [
            self._record("VERSION", header.version[0], self._VERSIONS[self.version]),
            self._record("FES_MODE", header.fes_mode),
            self._record("BPM_DEF", *(f"{bpm:.3f}" for bpm in bpm_def)),
            self._record("MET_DEF", *header.met_def),
            self._record("RESOLUTION", header.resolution),
            self._record("CLK_DEF", header.clk_def),
            self._record("COMPATIBLE_CODE", header.compatible_code),
        ]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Per-variant
    # ------------------------------------------------------------------

    def compose_tap(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        fields: tuple[object, ...] = (self._token(note), note.bar, note.tick, note.key)
        if note.kind.is_touch:
            fields += self._touch_fields(note)
        return self._record(*fields)

    def compose_hold(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        fields: tuple[object, ...] = (self._token(note), note.bar, note.tick, note.key, note.last_time)
        if note.kind.is_touch:
            fields += self._touch_fields(note)
        return self._record(*fields)

    def compose_slide_start(self, resolved: ResolvedNote) -> str:
        return self.compose_tap(resolved)

    def compose_slide(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        return self._record(
            self._token(note),
            note.bar,
            note.tick,
            note.key,
            note.wait_time,
            note.last_time,
            note.end_key,
        )

    def compose_bpm(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        return self._record("BPM", note.bar, note.tick, f"{note.bpm:.3f}")

    def compose_measure(self, resolved: ResolvedNote) -> str:
        note = resolved.note
        return self._record("MET", note.bar, note.tick, note.numerator, note.denominator)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compose(self, resolved_notes: Sequence[ResolvedNote]) -> str:
        """Header block, then the BPM/MET block, then the note block."""
        timing = [self.compose_note(r) for r in resolved_notes if not r.note.is_note]
        notes = [self.compose_note(r) for r in resolved_notes if r.note.is_note]
        blocks = [self._compose_header(resolved_notes), "\n".join(timing), "\n".join(notes)]
        return "\n\n".join(blocks) + "\n"


def build_composer(
    output_format: str | ChartFormat,
    chart: Chart,
    header: Ma2Header | None = None,
) -> ChartComposer:
    """Return the composer for ``output_format``."""
    target = parse_format(output_format)
    if target is ChartFormat.SIMAI:
        return SimaiComposer(chart)
    return Ma2Composer(chart, header=header, version=target)


def compose_note(resolved: ResolvedNote, output_format: str | ChartFormat, chart: Chart) -> str:
    """Render a single resolved note of ``chart`` in ``output_format``."""
    return build_composer(output_format, chart).compose_note(resolved)

