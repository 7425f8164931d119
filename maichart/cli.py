"""maichart CLI entry point."""

import logging
import sys
from pathlib import Path

import click

from maichart import __version__
from maichart.composers import SUPPORTED_FORMATS
from maichart.converter import (
    ChartConverter,
    compile_directory,
    write_index,
    write_log,
    write_tempo_table,
)

FORMAT_CHOICE = click.Choice(sorted(SUPPORTED_FORMATS), case_sensitive=False)


def _configure_logging(verbose: bool) -> None:
    """Route library debug traces to stderr when --verbose is given."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")


def _echo_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        click.echo(f"  WARNING: {warning}", err=True)


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="maichart")
def main() -> None:
    """maichart — rhythm-game chart converter (Ma2 -> simai / Ma2)."""


# ── convert subcommand ─────────────────────────────────────────────────────────

@main.command()
@click.argument("chart_file")
@click.option(
    "--output",
    "-o",
    default=None,
    metavar="PATH",
    help="Destination file path. Defaults to the chart path with an extension based on --format.",
)
@click.option(
    "--format",
    "output_format",
    type=FORMAT_CHOICE,
    default="simai",
    show_default=True,
    help="Target notation: simai text or Ma2 records (1.04 by default, ma2-103 for 1.03).",
)
@click.option("--strict", is_flag=True, help="Fail instead of skipping invalid or unresolved notes.")
@click.option("--verbose", "-v", is_flag=True, help="Print debug traces from the converter.")
def convert(chart_file: str, output: str | None, output_format: str, strict: bool, verbose: bool) -> None:
    """
    Convert one Ma2 chart into another notation.

    CHART_FILE is the path to an existing .ma2 chart.

    \b
    Examples:
      maichart convert 000389_03.ma2
      maichart convert 000389_03.ma2 --format ma2-103 -o legacy.ma2
    """
    _configure_logging(verbose)
    converter = ChartConverter(output_format=output_format, strict=strict)

    chart_path = Path(chart_file)
    resolved_output = output if output is not None else str(chart_path.with_suffix(converter.default_extension))

    click.echo(f"maichart v{__version__}")
    click.echo(f"  Chart  : {chart_file}")
    click.echo(f"  Format : {output_format.lower()}")
    click.echo(f"  Output : {resolved_output}")
    click.echo()

    click.echo("[1/3] Reading and parsing chart...")
    click.echo("[2/3] Resolving tempo timeline...")
    click.echo("[3/3] Composing output...")
    try:
        result = converter.export(chart_path, resolved_output)
    except FileNotFoundError as exc:
        click.echo(f"  ERROR: Chart not found — {exc}", err=True)
        sys.exit(1)
    except ValueError as exc:
        click.echo(f"  ERROR: Could not convert chart — {exc}", err=True)
        sys.exit(1)
    except OSError as exc:
        click.echo(f"  ERROR: Could not write output file — {exc}", err=True)
        sys.exit(1)

    _echo_warnings(result.warnings)
    click.echo()
    click.echo(f"Done!  Composed {result.composed_count} of {len(result.chart)} records into '{resolved_output}'.")


# ── compile subcommand ─────────────────────────────────────────────────────────

@main.command(name="compile")
@click.argument("source_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("output_dir", type=click.Path(file_okay=False))
@click.option(
    "--format",
    "output_format",
    type=FORMAT_CHOICE,
    default="simai",
    show_default=True,
    help="Target notation for every chart.",
)
@click.option(
    "--index/--no-index",
    default=True,
    show_default=True,
    help="Also write index.json and bpm.xml next to log.txt.",
)
@click.option("--verbose", "-v", is_flag=True, help="Print debug traces from the converter.")
def compile_charts(source_dir: str, output_dir: str, output_format: str, index: bool, verbose: bool) -> None:
    """
    Convert every .ma2 chart under SOURCE_DIR into OUTPUT_DIR.

    \b
    Examples:
      maichart compile ./A000/music ./Output
      maichart compile ./A000/music ./Output --format ma2-103 --no-index
    """
    _configure_logging(verbose)
    click.echo(f"maichart v{__version__}")
    click.echo(f"  Source : {source_dir}")
    click.echo(f"  Output : {output_dir}")
    click.echo(f"  Format : {output_format.lower()}")
    click.echo()

    click.echo("[1/2] Compiling charts...")
    try:
        report = compile_directory(source_dir, output_dir, output_format=output_format)
    except OSError as exc:
        click.echo(f"  ERROR: Could not compile charts — {exc}", err=True)
        sys.exit(1)

    click.echo("[2/2] Writing logs...")
    write_log(report, output_dir)
    if index:
        write_index(report, output_dir)
        write_tempo_table(report, output_dir)

    _echo_warnings(report.warnings)
    for error in report.errors:
        click.echo(f"  ERROR: {error}", err=True)

    click.echo()
    click.echo(f"Total charts compiled: {report.total_compiled}")
    if report.errors:
        sys.exit(1)
