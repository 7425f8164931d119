"""Tests for ChartConverter and batch compilation."""

import json
from pathlib import Path
from xml.etree import ElementTree as ET

import pytest

from maichart.converter import (
    ChartConverter,
    CompilationReport,
    compensate_short_zero,
    compensate_zero,
    compile_directory,
    write_index,
    write_log,
    write_tempo_table,
)
from maichart.ma2_parser import ChartParseError
from maichart.timeline import TempoChange, TimelineError
from maichart.tokenizer import Tokenizer

VALID_CHART = "\n".join(
    [
        "VERSION\t0.00.00\t1.04.00",
        "BPM\t0\t0\t120.000",
        "NMTAP\t0\t0\t0",
        "NMHLD\t0\t192\t1\t96",
        "BPM\t1\t0\t180.000",
        "NMTAP\t1\t0\t2",
    ]
)


class StaticTokenizer(Tokenizer):
    """Serves fixed lines regardless of location."""

    def __init__(self, lines: list[str]) -> None:
        self.lines = lines
        self.locations: list[str] = []

    def tokens(self, location):
        self.locations.append(str(location))
        return list(self.lines)


def test_compensate_zero() -> None:
    assert compensate_zero("389") == "000389"
    assert compensate_zero("011389") == "011389"
    assert compensate_short_zero("389") == "0389"
    assert compensate_short_zero("11389") == "11389"


def test_convert_lines_to_simai() -> None:
    result = ChartConverter().convert_lines(VALID_CHART.splitlines())

    assert result.text == "{2}(120)1,2h[4:1],\n{1}(180)3,\nE\n"
    assert result.composed_count == 5
    assert result.warnings == []
    assert result.header.version[1] == "1.04.00"
    assert result.tempo_changes == [TempoChange(0, 0, 120.0), TempoChange(1, 0, 180.0)]


def test_convert_lines_to_ma2() -> None:
    result = ChartConverter(output_format="ma2-103").convert_lines(VALID_CHART.splitlines())
    assert "HLD\t0\t192\t1\t96" in result.text.splitlines()


def test_invalid_notes_are_skipped_with_a_warning() -> None:
    lines = VALID_CHART.splitlines() + ["NMTAP\t1\t96\t9", "NMSI_\t1\t192\t3\t96\t96\t7"]

    result = ChartConverter().convert_lines(lines)

    assert result.composed_count == 5
    assert len(result.chart) == 7
    assert result.warnings == [
        "Skipped invalid NMTAP at bar 1 tick 96 key 9.",
        "Skipped invalid NMSI_ at bar 1 tick 192 key 3.",
    ]
    assert "10" not in result.text


def test_unresolved_notes_are_skipped_with_a_warning() -> None:
    result = ChartConverter().convert_lines(VALID_CHART.splitlines() + ["NMHLD\t1\t96\t3\t0"])

    assert result.composed_count == 5
    assert result.warnings == [
        "Skipped unresolved NMHLD at bar 1 tick 96 key 3: sustain did not resolve to a positive duration."
    ]


HEADLESS_PATH = ["BPM\t0\t0\t120.000", "NMSI_\t1\t0\t3\t96\t96\t7", "CNSI_\t1\t192\t7\t0\t96\t3"]


def test_segment_after_a_skipped_head_is_skipped_in_simai() -> None:
    result = ChartConverter().convert_lines(HEADLESS_PATH)

    assert result.composed_count == 1
    assert result.warnings == [
        "Skipped invalid NMSI_ at bar 1 tick 0 key 3.",
        "Skipped detached CNSI_ at bar 1 tick 192 key 7: its slide path has no playable star.",
    ]
    assert result.text == "{1}(120),\nE\n"


def test_segment_after_a_skipped_head_is_not_written_to_ma2() -> None:
    result = ChartConverter(output_format="ma2").convert_lines(HEADLESS_PATH)

    assert result.composed_count == 1
    assert "CNSI_" not in result.text
    assert "NMSI_" not in result.text


def test_segment_after_an_invalid_star_is_skipped() -> None:
    lines = ["BPM\t0\t0\t120.000", "NMSTR\t1\t0\t9", "NMSI_\t1\t0\t9\t96\t96\t4", "CNSI_\t1\t192\t4\t0\t96\t0"]

    result = ChartConverter(output_format="ma2").convert_lines(lines)

    assert result.composed_count == 1
    assert [warning.split(" at ")[0] for warning in result.warnings] == [
        "Skipped invalid NMSTR",
        "Skipped invalid NMSI_",
        "Skipped detached CNSI_",
    ]


def test_complete_slide_path_is_kept() -> None:
    lines = ["BPM\t0\t0\t120.000", "NMSTR\t1\t0\t0", "NMSI_\t1\t0\t0\t96\t96\t4", "CNSI_\t1\t192\t4\t0\t96\t0"]

    result = ChartConverter().convert_lines(lines)

    assert result.composed_count == 4
    assert result.warnings == []
    assert result.text == "{1}(120),\n1-5[4:1]-1[4:1],\nE\n"


def test_strict_mode_raises_on_the_first_skipped_note() -> None:
    converter = ChartConverter(strict=True)
    with pytest.raises(ValueError, match="Skipped invalid NMTAP"):
        converter.convert_lines(VALID_CHART.splitlines() + ["NMTAP\t1\t96\t9"])


def test_star_sharing_an_instant_is_flagged_for_review() -> None:
    result = ChartConverter().convert_lines(["BPM\t0\t0\t120.000", "NMSTR\t0\t0\t0", "NMTAP\t0\t0\t4"])
    assert result.warnings == ["Review NMSTR at bar 0 tick 0 key 0: shares its instant with NMTAP at bar 0 tick 0 key 4."]


def test_parse_errors_abort_the_chart() -> None:
    with pytest.raises(ChartParseError):
        ChartConverter().convert_lines(["BPM\t0\t0\t120.000", "NMFOO\t0\t0\t0"])


def test_chart_without_tempo_is_rejected() -> None:
    with pytest.raises(TimelineError):
        ChartConverter().convert_lines(["NMTAP\t0\t0\t0"])


def test_unsupported_format_is_rejected() -> None:
    with pytest.raises(ValueError):
        ChartConverter(output_format="midi")


def test_default_extension() -> None:
    assert ChartConverter().default_extension == ".txt"
    assert ChartConverter(output_format="ma2").default_extension == ".ma2"


def test_convert_reads_through_the_tokenizer() -> None:
    tokenizer = StaticTokenizer(VALID_CHART.splitlines())
    result = ChartConverter(tokenizer=tokenizer).convert("charts/000389_03.ma2")

    assert tokenizer.locations == ["charts/000389_03.ma2"]
    assert result.composed_count == 5


def test_convert_missing_chart(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ChartConverter().convert(tmp_path / "missing.ma2")


def test_export_writes_the_document(tmp_path: Path) -> None:
    source = tmp_path / "000389_03.ma2"
    source.write_text(VALID_CHART, encoding="utf-8")
    output = tmp_path / "out.txt"

    result = ChartConverter().export(source, output)

    assert output.read_text(encoding="utf-8") == result.text


# ---------------------------------------------------------------------------
# Batch compilation
# ---------------------------------------------------------------------------

@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    source = tmp_path / "music"
    (source / "music000389").mkdir(parents=True)
    (source / "music000389" / "389_03.ma2").write_text(VALID_CHART, encoding="utf-8")
    (source / "broken.ma2").write_text("BPM\t0\t0\t120.000\nNMFOO\t0\t0\t0\n", encoding="utf-8")
    (source / "notes.txt").write_text("not a chart", encoding="utf-8")
    return source


@pytest.mark.integration
def test_compile_directory(tmp_path: Path, music_dir: Path) -> None:
    output = tmp_path / "out"

    report = compile_directory(music_dir, output)

    assert report.compiled_tracks == {"389_03": "000389_03.txt"}
    assert report.total_compiled == 1
    assert report.errors == ["broken: line 2: unknown record 'NMFOO'"]
    assert report.tempo_tables["389_03"] == [TempoChange(0, 0, 120.0), TempoChange(1, 0, 180.0)]
    assert (output / "000389_03.txt").read_text(encoding="utf-8").endswith("E\n")
    assert not (output / "broken.txt").exists()


@pytest.mark.integration
def test_compile_directory_in_ma2(tmp_path: Path, music_dir: Path) -> None:
    report = compile_directory(music_dir, tmp_path / "out", output_format="ma2-103")
    assert report.compiled_tracks == {"389_03": "000389_03.ma2"}


@pytest.mark.integration
def test_compile_directory_reports_charts_sharing_an_output_name(tmp_path: Path) -> None:
    source = tmp_path / "music"
    for folder in ("a", "b"):
        (source / folder).mkdir(parents=True)
    (source / "a" / "389_03.ma2").write_text(VALID_CHART, encoding="utf-8")
    (source / "b" / "389_03.ma2").write_text("BPM\t0\t0\t150.000\nNMTAP\t0\t0\t7\n", encoding="utf-8")
    (source / "b" / "000389_03.ma2").write_text("BPM\t0\t0\t90.000\nNMTAP\t0\t0\t5\n", encoding="utf-8")
    output = tmp_path / "out"

    report = compile_directory(source, output)

    assert report.compiled_tracks == {"389_03": "000389_03.txt"}
    assert report.tempo_tables["389_03"][0].bpm == 120.0
    assert sorted(report.errors) == [
        "000389_03: 000389_03.txt was already written from a/389_03.ma2",
        "389_03: 000389_03.txt was already written from a/389_03.ma2",
    ]
    assert (output / "000389_03.txt").read_text(encoding="utf-8").startswith("{2}(120)")


def test_compile_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        compile_directory(tmp_path / "nowhere", tmp_path / "out")


def _report() -> CompilationReport:
    return CompilationReport(
        compiled_tracks={"389_03": "000389_03.txt", "11_00": "000011_00.txt"},
        tempo_tables={"389_03": [TempoChange(0, 0, 120.0)], "11_00": [TempoChange(0, 0, 98.5)]},
        warnings=["389_03: Skipped invalid NMTAP at bar 1 tick 96 key 9."],
        errors=["broken: line 2: unknown record 'NMFOO'"],
    )


def test_write_log(tmp_path: Path) -> None:
    lines = write_log(_report(), tmp_path).read_text(encoding="utf-8").splitlines()

    assert lines[:2] == ["[1]: 389_03 000389_03.txt", "[2]: 11_00 000011_00.txt"]
    assert "Warnings:" in lines
    assert lines[-2:] == ["Errors:", "broken: line 2: unknown record 'NMFOO'"]


def test_write_index(tmp_path: Path) -> None:
    path = write_index(_report(), tmp_path)

    assert path.name == "index.json"
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "11_00": "000011_00.txt",
        "389_03": "000389_03.txt",
    }


def test_write_tempo_table(tmp_path: Path) -> None:
    root = ET.parse(write_tempo_table(_report(), tmp_path)).getroot()

    assert root.tag == "BPM-Table"
    assert [node.findtext("ID") for node in root.findall("Node")] == ["11_00", "389_03"]
    first = root.find("Node/BPM/Note")
    assert first is not None
    assert (first.findtext("Bar"), first.findtext("Tick"), first.findtext("BPM")) == ("0", "0", "98.500")
