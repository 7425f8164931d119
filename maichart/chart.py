"""Chart: the arena owning a chart's notes in canonical order.

Every relationship between notes (the chronological chain, slide chains and
the next tempo change) is an index into ``Chart.notes``. Notes are copied in
on construction, sorted once, and linked once.
"""

from __future__ import annotations

import bisect
import logging
from typing import Iterable, Iterator

from maichart.note import Note, NoteGenre, NoteModifier
from maichart.timeline import ResolvedNote, TempoTimeline, UnresolvedNote, resolve_notes

logger = logging.getLogger(__name__)


class Chart:
    """
    A chart's notes sorted into replayable order with their links assembled.

    Usage:

        chart = Chart(parsed_notes)
        for result in chart.resolve():
            ...
    """

    def __init__(self, notes: Iterable[Note]) -> None:
        # sorted() is stable, so notes at the same instant keep their input order.
        self.notes: list[Note] = sorted(note.copy() for note in notes)
        self._slides_by_start: dict[int, list[int]] = {}

        self._link_chronological()
        self._link_slides()
        self._link_bpm_changes()

    # ------------------------------------------------------------------
    # Chain assembly
    # ------------------------------------------------------------------

    def _link_chronological(self) -> None:
        last = len(self.notes) - 1
        for index, note in enumerate(self.notes):
            note.prev = index - 1 if index > 0 else None
            note.next = index + 1 if index < last else None

    def _link_slides(self) -> None:
        """
        Attach every slide segment to the note it grows out of.

        A segment starting on a star (same instant, same key) hangs off that
        star. Otherwise, or when the segment is explicitly connected, it
        continues the earlier segment that ends at its instant on its key.
        """
        stars: dict[tuple[int, str], int] = {}
        for index, note in enumerate(self.notes):
            if note.genre is NoteGenre.SLIDE_START:
                stars.setdefault((note.tick_stamp, note.key), index)

        open_ends: dict[tuple[int, str], list[int]] = {}
        for index, note in enumerate(self.notes):
            if note.genre is not NoteGenre.SLIDE:
                continue

            position = (note.tick_stamp, note.key)
            star = None if note.modifier is NoteModifier.CONNECTED else stars.get(position)
            if star is not None:
                note.slide_start = star
                if self.notes[star].consecutive_slide is None:
                    self.notes[star].consecutive_slide = index
            elif open_ends.get(position):
                previous = open_ends[position].pop(0)
                note.slide_start = previous
                self.notes[previous].consecutive_slide = index
            else:
                logger.debug("slide %s at %d has nothing to start from", note.note_type, note.tick_stamp)

            if note.slide_start is not None:
                self._slides_by_start.setdefault(note.slide_start, []).append(index)
            open_ends.setdefault((note.last_stamp, note.end_key), []).append(index)

    def _link_bpm_changes(self) -> None:
        bpm_indices = [index for index, note in enumerate(self.notes) if note.genre is NoteGenre.BPM]
        bpm_stamps = [self.notes[index].tick_stamp for index in bpm_indices]

        for index, note in enumerate(self.notes):
            position = bisect.bisect_left(bpm_stamps, note.tick_stamp)
            while position < len(bpm_indices) and bpm_indices[position] == index:
                position += 1
            note.next_bpm_change = bpm_indices[position] if position < len(bpm_indices) else None

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.notes)

    def __iter__(self) -> Iterator[Note]:
        return iter(self.notes)

    def __getitem__(self, index: int) -> Note:
        return self.notes[index]

    def next_of(self, index: int) -> Note | None:
        following = self.notes[index].next
        return None if following is None else self.notes[following]

    def prev_of(self, index: int) -> Note | None:
        preceding = self.notes[index].prev
        return None if preceding is None else self.notes[preceding]

    def slides_from(self, index: int) -> list[int]:
        """Indices of the slide segments whose ``slide_start`` is ``index``."""
        return list(self._slides_by_start.get(index, []))

    def slide_chain(self, index: int) -> list[int]:
        """Follow ``consecutive_slide`` from ``index`` (inclusive) to the end of the path."""
        chain = [index]
        following = self.notes[index].consecutive_slide
        while following is not None and len(chain) <= len(self.notes):
            chain.append(following)
            following = self.notes[following].consecutive_slide
        return chain

    def chain_root(self, index: int) -> int | None:
        """
        Follow ``slide_start`` backward from a slide segment.

        Returns:
            Index of the star the path began on, or None if the chain ends
            without reaching one.
        """
        current: int | None = index
        for _ in range(len(self.notes)):
            if current is None:
                return None
            note = self.notes[current]
            if note.genre is NoteGenre.SLIDE_START:
                return current
            current = note.slide_start
        return None

    def is_continuation(self, index: int) -> bool:
        """True when the segment at ``index`` continues another slide segment."""
        start = self.notes[index].slide_start
        return start is not None and self.notes[start].genre is NoteGenre.SLIDE

    def same_position_collisions(self) -> list[tuple[int, int]]:
        """
        Pairs of (star, tap or hold) sharing one instant.

        No ordering is defined between them, so they are surfaced for review
        rather than reordered.
        """
        collisions: list[tuple[int, int]] = []
        by_stamp: dict[int, list[int]] = {}
        for index, note in enumerate(self.notes):
            by_stamp.setdefault(note.tick_stamp, []).append(index)

        for indices in by_stamp.values():
            stars = [i for i in indices if self.notes[i].genre is NoteGenre.SLIDE_START]
            others = [i for i in indices if self.notes[i].genre in (NoteGenre.TAP, NoteGenre.HOLD)]
            collisions.extend((star, other) for star in stars for other in others)
        return collisions

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def tempo_timeline(self) -> TempoTimeline:
        return TempoTimeline.from_notes(self.notes)

    def resolve(self, timeline: TempoTimeline | None = None) -> list[ResolvedNote | UnresolvedNote]:
        """
        Resolve every note against ``timeline`` (the chart's own BPM records by default).

        Raises:
            TimelineError: If the chart has no usable tempo timeline.
        """
        if timeline is None:
            timeline = self.tempo_timeline()
        return resolve_notes(timeline, self.notes)
