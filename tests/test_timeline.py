"""Unit tests for TempoTimeline and note resolution."""

import pytest

from maichart.note import Note, NoteKind
from maichart.timeline import (
    ResolvedNote,
    TempoChange,
    TempoTimeline,
    TimelineError,
    UnresolvedNote,
    resolve_note,
    resolve_notes,
)


def _steady(bpm: float = 120.0) -> TempoTimeline:
    return TempoTimeline([TempoChange(bar=0, tick=0, bpm=bpm)])


def test_empty_timeline_is_rejected() -> None:
    with pytest.raises(TimelineError):
        TempoTimeline([])


def test_unsorted_timeline_is_rejected() -> None:
    with pytest.raises(TimelineError):
        TempoTimeline([TempoChange(2, 0, 120.0), TempoChange(1, 0, 150.0)])


@pytest.mark.parametrize("bpm", [0.0, -120.0, float("inf"), float("nan")])
def test_non_positive_or_infinite_tempo_is_rejected(bpm: float) -> None:
    with pytest.raises(TimelineError):
        TempoTimeline([TempoChange(0, 0, 120.0), TempoChange(1, 0, bpm)])


def test_timeline_error_is_a_value_error() -> None:
    assert issubclass(TimelineError, ValueError)


def test_steady_tempo_seconds() -> None:
    timeline = _steady()
    assert timeline.seconds_at(0) == 0.0
    assert timeline.seconds_at(96) == 0.5
    assert timeline.seconds_at(384) == 2.0
    assert len(timeline) == 1


def test_seconds_accumulate_across_tempo_changes() -> None:
    timeline = TempoTimeline([TempoChange(0, 0, 120.0), TempoChange(1, 0, 240.0)])
    assert timeline.bpm_at(383) == 120.0
    assert timeline.bpm_at(384) == 240.0
    assert timeline.seconds_at(384) == 2.0
    assert timeline.seconds_at(768) == pytest.approx(3.0)
    assert timeline.seconds_at(480) == pytest.approx(2.25)


def test_positions_before_the_first_change_use_the_first_tempo() -> None:
    timeline = TempoTimeline([TempoChange(1, 0, 120.0)])
    assert timeline.bpm_at(0) == 120.0
    assert timeline.seconds_at(0) == pytest.approx(0.0)
    assert timeline.seconds_at(384) == pytest.approx(2.0)


def test_later_change_wins_at_the_same_instant() -> None:
    timeline = TempoTimeline([TempoChange(0, 0, 120.0), TempoChange(0, 0, 240.0)])
    assert timeline.bpm_at(0) == 240.0
    assert timeline.seconds_at(384) == pytest.approx(1.0)


def test_from_notes_keeps_only_bpm_records() -> None:
    notes = [
        Note(kind=NoteKind.BPM, bar=0, tick=0, bpm=120.0),
        Note(kind=NoteKind.TAP, bar=0, tick=0, key="0"),
        Note(kind=NoteKind.BPM, bar=4, tick=0, bpm=180.0),
    ]
    timeline = TempoTimeline.from_notes(notes)
    assert timeline.changes == (TempoChange(0, 0, 120.0), TempoChange(4, 0, 180.0))


def test_from_notes_without_bpm_records_is_rejected() -> None:
    with pytest.raises(TimelineError):
        TempoTimeline.from_notes([Note(kind=NoteKind.TAP, key="0")])


# ---------------------------------------------------------------------------
# resolve_note
# ---------------------------------------------------------------------------

def test_resolve_tap_fills_timing_on_a_copy() -> None:
    tap = Note(kind=NoteKind.TAP, key="0", bar=1, tick=0)

    result = resolve_note(_steady(), tap, index=4)

    assert isinstance(result, ResolvedNote)
    assert result.index == 4
    assert result.note is not tap
    assert result.note.bpm == 120.0
    assert result.note.tick_time_stamp == 2.0
    assert tap.bpm == 0.0
    assert tap.tick_time_stamp == 0.0


def test_resolve_slide_fills_wait_and_last_stamps() -> None:
    slide = Note(kind=NoteKind.SI_, key="0", end_key="4", bar=1, wait_time=96, last_time=192)
    slide.slide_start = 0

    result = resolve_note(_steady(), slide)

    assert isinstance(result, ResolvedNote)
    note = result.note
    assert note.calculated_wait_time == 0.5
    assert note.calculated_last_time == 1.0
    assert note.wait_time_stamp == 2.5
    assert note.last_time_stamp == 3.5
    assert note.wait_stamp == 384 + 96
    assert note.slide_start == 0


def test_resolve_hold_without_length_is_unresolved() -> None:
    hold = Note(kind=NoteKind.HLD, key="0", last_time=0)

    result = resolve_note(_steady(), hold, index=2)

    assert isinstance(result, UnresolvedNote)
    assert result.index == 2
    assert "positive duration" in result.reason


def test_sustain_uses_the_tempo_where_it_starts() -> None:
    timeline = TempoTimeline([TempoChange(0, 0, 120.0), TempoChange(0, 48, 60.0)])
    hold = Note(kind=NoteKind.HLD, key="0", last_time=96)

    result = resolve_note(timeline, hold)

    assert isinstance(result, ResolvedNote)
    assert result.note.calculated_last_time == 0.5


def test_bpm_record_keeps_its_own_tempo() -> None:
    timeline = TempoTimeline([TempoChange(0, 0, 120.0), TempoChange(1, 0, 200.0)])
    tempo = Note(kind=NoteKind.BPM, bar=1, tick=0, bpm=200.0)

    result = resolve_note(timeline, tempo)

    assert result.note.bpm == 200.0
    assert result.note.tick_time_stamp == 2.0


def test_resolution_is_idempotent() -> None:
    timeline = TempoTimeline([TempoChange(0, 0, 150.0), TempoChange(2, 96, 90.0)])
    slide = Note(kind=NoteKind.SV_, key="2", end_key="6", bar=3, tick=12, wait_time=48, last_time=144)

    first = resolve_note(timeline, slide)
    second = resolve_note(timeline, slide)
    again = resolve_note(timeline, first.note)

    for other in (second, again):
        assert other.note.tick_time_stamp == first.note.tick_time_stamp
        assert other.note.wait_time_stamp == first.note.wait_time_stamp
        assert other.note.last_time_stamp == first.note.last_time_stamp
        assert other.note.calculated_wait_time == first.note.calculated_wait_time
        assert other.note.calculated_last_time == first.note.calculated_last_time
    assert isinstance(first, ResolvedNote)


def test_resolve_notes_keeps_indices() -> None:
    notes = [
        Note(kind=NoteKind.BPM, bpm=120.0),
        Note(kind=NoteKind.HLD, key="1", last_time=0),
        Note(kind=NoteKind.TAP, key="2", tick=96),
    ]

    results = resolve_notes(_steady(), notes)

    assert [result.index for result in results] == [0, 1, 2]
    assert [type(result) for result in results] == [ResolvedNote, UnresolvedNote, ResolvedNote]
