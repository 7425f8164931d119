"""TempoTimeline: maps tick positions to seconds across a chart's tempo changes."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Sequence

import numpy as np

from maichart.note import RESOLUTION, Note, NoteGenre, ticks_to_seconds


class TimelineError(ValueError):
    """Raised when a tempo timeline is empty, unsorted or has a non-positive tempo."""


@dataclass(frozen=True)
class TempoChange:
    """A tempo taking effect at ``(bar, tick)``."""

    bar: int
    tick: int
    bpm: float

    @property
    def tick_stamp(self) -> int:
        return self.bar * RESOLUTION + self.tick


@dataclass(frozen=True)
class ResolvedNote:
    """
    A note whose derived timing reflects the tempo timeline.

    Attributes:
        index: Position of the source note in its chart.
        note:  Fresh copy of the source note with every derived field filled in.
    """

    index: int
    note: Note


@dataclass(frozen=True)
class UnresolvedNote:
    """A note the timeline could not give a usable timing to."""

    index: int
    note: Note
    reason: str


class TempoTimeline:
    """
    Ordered tempo changes with precomputed elapsed seconds per segment.

    The timeline is walked once at construction: the seconds elapsed at each
    change are the cumulative sum of the constant-tempo segments before it.
    A lookup is then a binary search for the active change plus one segment's
    worth of ticks. Positions before the first change use the first tempo.
    """

    def __init__(self, changes: Sequence[TempoChange]) -> None:
        """
        Args:
            changes: Tempo changes, already in chronological order.

        Raises:
            TimelineError: If ``changes`` is empty, out of order, or holds a
                           non-positive tempo.
        """
        if not changes:
            raise TimelineError("Tempo timeline is empty; a chart needs at least one BPM record.")

        stamps = np.array([change.tick_stamp for change in changes], dtype=np.int64)
        bpms = np.array([change.bpm for change in changes], dtype=np.float64)

        if np.any(np.diff(stamps) < 0):
            raise TimelineError("Tempo changes are not in chronological order.")
        if not np.all(np.isfinite(bpms) & (bpms > 0)):
            raise TimelineError("Tempo changes must have a positive BPM.")

        # Segment i spans from the previous change (or tick 0) up to change i
        # and runs at the previous tempo (the first tempo for the lead-in).
        spans = np.diff(stamps, prepend=0)
        span_bpms = np.concatenate((bpms[:1], bpms[:-1]))

        self.changes: tuple[TempoChange, ...] = tuple(changes)
        self._stamps = stamps
        self._bpms = bpms
        self._start_seconds = np.cumsum(ticks_to_seconds(spans, span_bpms))

    @classmethod
    def from_notes(cls, notes: Iterable[Note]) -> TempoTimeline:
        """Build a timeline from the BPM records of an already ordered note sequence."""
        return cls(
            [
                TempoChange(bar=note.bar, tick=note.tick, bpm=note.bpm)
                for note in notes
                if note.genre is NoteGenre.BPM
            ]
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _segment(self, tick_stamp: int) -> int:
        """Index of the change active at ``tick_stamp`` (the last one at or before it)."""
        index = int(np.searchsorted(self._stamps, tick_stamp, side="right")) - 1
        return max(index, 0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def bpm_at(self, tick_stamp: int) -> float:
        """Tempo in effect at an absolute tick position."""
        return float(self._bpms[self._segment(tick_stamp)])

    def seconds_at(self, tick_stamp: int) -> float:
        """Seconds elapsed from tick 0 to an absolute tick position."""
        index = self._segment(tick_stamp)
        offset = tick_stamp - int(self._stamps[index])
        return float(self._start_seconds[index]) + ticks_to_seconds(offset, float(self._bpms[index]))

    def __len__(self) -> int:
        return len(self.changes)


def resolve_note(timeline: TempoTimeline, note: Note, index: int = 0) -> ResolvedNote | UnresolvedNote:
    """
    Resolve one note against a timeline without touching the source note.

    The returned note is a copy (links included) with the tick stamps,
    ``tick_time_stamp``, the calculated wait/last durations and the wait/last
    time stamps filled in. Sustains use the tempo in effect where the note
    starts, even if a tempo change falls inside the sustain.

    Returns:
        ``ResolvedNote`` when ``Note.update()`` certifies the timing,
        ``UnresolvedNote`` otherwise.
    """
    resolved = replace(note)
    resolved.update()

    start_bpm = timeline.bpm_at(resolved.tick_stamp)
    if resolved.genre is not NoteGenre.BPM:
        resolved.bpm = start_bpm

    resolved.tick_time_stamp = timeline.seconds_at(resolved.tick_stamp)
    resolved.calculated_wait_time = ticks_to_seconds(resolved.wait_time, start_bpm)
    resolved.calculated_last_time = ticks_to_seconds(resolved.last_time, start_bpm)
    resolved.wait_time_stamp = resolved.tick_time_stamp + resolved.calculated_wait_time
    resolved.last_time_stamp = resolved.wait_time_stamp + resolved.calculated_last_time

    if resolved.update():
        return ResolvedNote(index=index, note=resolved)
    return UnresolvedNote(
        index=index,
        note=resolved,
        reason="sustain did not resolve to a positive duration",
    )


def resolve_notes(
    timeline: TempoTimeline, notes: Sequence[Note]
) -> list[ResolvedNote | UnresolvedNote]:
    """Resolve every note of an ordered sequence, keeping each note's index."""
    return [resolve_note(timeline, note, index) for index, note in enumerate(notes)]
