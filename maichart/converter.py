"""ChartConverter: parses, resolves, validates and re-composes charts."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Iterable, Sequence
from xml.etree import ElementTree as ET

from maichart.chart import Chart
from maichart.composers import ChartFormat, build_composer, parse_format
from maichart.ma2_parser import Ma2Header, Ma2Parser
from maichart.note import Note, NoteGenre
from maichart.timeline import ResolvedNote, TempoChange, UnresolvedNote
from maichart.tokenizer import Tokenizer

logger = logging.getLogger(__name__)

CHART_SUFFIX: Final[str] = ".ma2"
MUSIC_ID_WIDTH: Final[int] = 6
SHORT_ID_WIDTH: Final[int] = 4


def compensate_zero(music_id: str) -> str:
    """Left-pad a music id with zeros to six digits (``389`` -> ``000389``)."""
    return music_id.rjust(MUSIC_ID_WIDTH, "0")


def compensate_short_zero(music_id: str) -> str:
    """Left-pad a music id with zeros to four digits (``389`` -> ``0389``)."""
    return music_id.rjust(SHORT_ID_WIDTH, "0")


def describe(note: Note) -> str:
    """Short human-readable location of a note for warnings."""
    return f"{note.note_type} at bar {note.bar} tick {note.tick} key {note.key or '-'}"


@dataclass
class ConversionResult:
    """
    Outcome of converting one chart.

    Attributes:
        text:           The composed document.
        chart:          The sorted, linked note arena.
        header:         Header records read from the source.
        composed_count: Number of notes that passed the gates and were composed.
        warnings:       Skipped notes (unresolved, invalid or cut off from their star) and review notices.
    """

    text: str
    chart: Chart
    header: Ma2Header
    composed_count: int
    warnings: list[str] = field(default_factory=list)

    @property
    def tempo_changes(self) -> list[TempoChange]:
        return list(self.chart.tempo_timeline().changes)


class ChartConverter:
    """
    Convert Ma2 charts into a target notation.

    Supported formats:
    - ``simai``: simai note text.
    - ``ma2`` / ``ma2-104``: Ma2 1.04 records.
    - ``ma2-103``: Ma2 1.03 records.
    """

    def __init__(
        self,
        output_format: str | ChartFormat = "simai",
        tokenizer: Tokenizer | None = None,
        strict: bool = False,
    ) -> None:
        """
        Args:
            output_format: Target notation name or code.
            tokenizer:     Source reader; a plain file Tokenizer by default.
            strict:        Raise instead of skipping when a note fails a gate.
        """
        self.output_format = parse_format(output_format)
        self.tokenizer = tokenizer if tokenizer is not None else Tokenizer()
        self.strict = strict
        self.parser = Ma2Parser()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _reaches_star(self, chart: Chart, index: int, accepted: set[int]) -> bool:
        """True when every segment before ``index`` back to its star was accepted."""
        current = chart[index].slide_start
        for _ in range(len(chart)):
            if current is None or current not in accepted:
                return False
            if chart[current].genre is NoteGenre.SLIDE_START:
                return True
            current = chart[current].slide_start
        return False

    def _gate(
        self, chart: Chart, results: Sequence[ResolvedNote | UnresolvedNote]
    ) -> tuple[list[ResolvedNote], list[str]]:
        """
        Keep resolved, valid notes; collect a warning for every other one.

        A slide segment is also skipped when its path no longer leads back
        to a kept star, so no segment is composed without its head.
        """
        accepted = {
            result.index
            for result in results
            if isinstance(result, ResolvedNote) and result.note.check_validity()
        }
        composable: list[ResolvedNote] = []
        warnings: list[str] = []
        for result in results:
            if isinstance(result, UnresolvedNote):
                warnings.append(f"Skipped unresolved {describe(result.note)}: {result.reason}.")
            elif result.index not in accepted:
                warnings.append(f"Skipped invalid {describe(result.note)}.")
            elif result.note.genre is NoteGenre.SLIDE and not self._reaches_star(chart, result.index, accepted):
                warnings.append(f"Skipped detached {describe(result.note)}: its slide path has no playable star.")
            else:
                composable.append(result)

        if warnings and self.strict:
            raise ValueError(warnings[0])
        return composable, warnings

    def _review_notices(self, chart: Chart) -> list[str]:
        return [
            f"Review {describe(chart[star])}: shares its instant with {describe(chart[other])}."
            for star, other in chart.same_position_collisions()
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def convert_lines(self, lines: Iterable[str]) -> ConversionResult:
        """
        Convert already-read chart lines.

        Raises:
            ChartParseError: If a record cannot be read.
            TimelineError:   If the chart has no usable tempo timeline.
            ValueError:      In strict mode, if any note fails a gate.
        """
        document = self.parser.parse(lines)
        chart = Chart(document.notes)
        composable, warnings = self._gate(chart, chart.resolve())
        warnings.extend(self._review_notices(chart))

        composer = build_composer(self.output_format, chart, header=document.header)
        text = composer.compose(composable)
        logger.debug("composed %d of %d notes", len(composable), len(chart))

        return ConversionResult(
            text=text,
            chart=chart,
            header=document.header,
            composed_count=len(composable),
            warnings=warnings,
        )

    def convert(self, location: str | os.PathLike[str]) -> ConversionResult:
        """
        Read and convert the chart at ``location``.

        Raises:
            FileNotFoundError: If the chart does not exist.
        """
        return self.convert_lines(self.tokenizer.tokens(location))

    def export(self, location: str | os.PathLike[str], output_path: str | os.PathLike[str]) -> ConversionResult:
        """
        Convert the chart at ``location`` and write the document to ``output_path``.

        Raises:
            OSError: If the output file cannot be written.
        """
        result = self.convert(location)
        with open(output_path, "w", encoding="utf-8") as fh:
            fh.write(result.text)
        return result

    @property
    def default_extension(self) -> str:
        return ".txt" if self.output_format is ChartFormat.SIMAI else CHART_SUFFIX


# ── Batch compilation ───────────────────────────────────────────────────────

@dataclass
class CompilationReport:
    """
    Bookkeeping for a batch compilation.

    Attributes:
        compiled_tracks: Chart name -> written output file name.
        tempo_tables:    Chart name -> tempo changes of that chart.
        warnings:        Per-note warnings, prefixed with the chart name.
        errors:          Charts that failed to convert, with the reason.
    """

    compiled_tracks: dict[str, str] = field(default_factory=dict)
    tempo_tables: dict[str, list[TempoChange]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_compiled(self) -> int:
        return len(self.compiled_tracks)


def _output_stem(chart_path: Path) -> str:
    """Output name of a chart: numeric ids are zero-padded to six digits."""
    match = re.match(r"^(\d+)(.*)$", chart_path.stem)
    if match is None:
        return chart_path.stem
    return compensate_zero(match.group(1)) + match.group(2)


def compile_directory(
    source_dir: str | os.PathLike[str],
    output_dir: str | os.PathLike[str],
    output_format: str | ChartFormat = "simai",
) -> CompilationReport:
    """
    Convert every ``.ma2`` chart under ``source_dir`` into ``output_dir``.

    A chart that fails to parse or resolve is recorded in ``report.errors``
    and produces no output; the remaining charts still compile. So is a
    chart whose output name was already written by an earlier chart (two
    ``389_03.ma2`` in different folders, or ``389_03`` next to ``000389_03``).

    Raises:
        FileNotFoundError: If ``source_dir`` does not exist.
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise FileNotFoundError(str(source_dir))
    destination = Path(output_dir)
    destination.mkdir(parents=True, exist_ok=True)

    converter = ChartConverter(output_format=output_format)
    report = CompilationReport()
    written: dict[str, Path] = {}

    for chart_path in sorted(source.rglob(f"*{CHART_SUFFIX}")):
        name = chart_path.stem
        output_name = _output_stem(chart_path) + converter.default_extension
        if output_name in written:
            first = written[output_name].relative_to(source).as_posix()
            report.errors.append(f"{name}: {output_name} was already written from {first}")
            continue
        try:
            result = converter.export(chart_path, destination / output_name)
        except ValueError as exc:
            report.errors.append(f"{name}: {exc}")
            logger.debug("failed to compile %s", chart_path, exc_info=True)
            continue

        written[output_name] = chart_path
        report.compiled_tracks[name] = output_name
        report.tempo_tables[name] = result.tempo_changes
        report.warnings.extend(f"{name}: {warning}" for warning in result.warnings)

    return report


def write_log(report: CompilationReport, output_dir: str | os.PathLike[str]) -> Path:
    """Write ``log.txt``: numbered compiled tracks, then warnings and errors."""
    path = Path(output_dir) / "log.txt"
    lines = [
        f"[{number}]: {name} {output}"
        for number, (name, output) in enumerate(report.compiled_tracks.items(), start=1)
    ]
    lines.append("")
    if report.warnings:
        lines.append("Warnings:")
        lines.extend(report.warnings)
    if report.errors:
        lines.append("Errors:")
        lines.extend(report.errors)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def write_index(report: CompilationReport, output_dir: str | os.PathLike[str]) -> Path:
    """Write ``index.json``: compiled tracks sorted by chart name."""
    path = Path(output_dir) / "index.json"
    payload = json.dumps(report.compiled_tracks, ensure_ascii=False, indent=2, sort_keys=True)
    path.write_text(payload + "\n", encoding="utf-8")
    return path


def write_tempo_table(report: CompilationReport, output_dir: str | os.PathLike[str]) -> Path:
    """Write ``bpm.xml``: every compiled chart's tempo changes."""
    root = ET.Element("BPM-Table")
    for name, changes in sorted(report.tempo_tables.items()):
        node = ET.SubElement(root, "Node")
        ET.SubElement(node, "ID").text = name
        table = ET.SubElement(node, "BPM")
        for change in changes:
            entry = ET.SubElement(table, "Note")
            ET.SubElement(entry, "Bar").text = str(change.bar)
            ET.SubElement(entry, "Tick").text = str(change.tick)
            ET.SubElement(entry, "BPM").text = f"{change.bpm:.3f}"

    path = Path(output_dir) / "bpm.xml"
    ET.ElementTree(root).write(path, encoding="UTF-8", xml_declaration=True)
    return path
