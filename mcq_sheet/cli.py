"""
CLI Interface
=============
Command-line interface for the question sheet converter.

Usage:
    python -m mcq_sheet convert <input> [options]
    python -m mcq_sheet batch <directory> [options]
    python -m mcq_sheet inspect <input> [--blocks]
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from .engine import SUPPORTED_SUFFIXES, ConverterConfig, ConverterEngine
from .errors import ConversionError
from .models import BlockType, OptionlessPolicy

console = Console()

POLICY_CHOICES = [p.value for p in OptionlessPolicy]


@click.group()
@click.version_option(version=__version__, prog_name="mcq-sheet")
def cli():
    """MCQ Sheet: multiple-choice question extractor for DOCX/PDF to XLSX."""
    pass


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    default=None,
    help="Output .xlsx path (defaults to <output-dir>/<input name>.xlsx)",
)
@click.option(
    "--output-dir",
    default="output",
    help="Directory for the workbook and JSON snapshot",
)
@click.option(
    "--optionless-policy",
    default=OptionlessPolicy.KEEP.value,
    type=click.Choice(POLICY_CHOICES),
    help="What to do with questions that have no options",
)
@click.option(
    "--decimal-starts",
    is_flag=True,
    default=False,
    help='Also treat lines like "2.5 kg" as the start of question 2',
)
@click.option(
    "--font-path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="TrueType font used to measure text wrapping",
)
@click.option(
    "--workers", "-j",
    default=4,
    type=int,
    help="Threads used to probe image dimensions",
)
@click.option(
    "--page-start",
    default=None,
    type=int,
    help="Start page for PDFs (1-indexed)",
)
@click.option(
    "--page-end",
    default=None,
    type=int,
    help="End page for PDFs (1-indexed, inclusive)",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--no-snapshot",
    is_flag=True,
    default=False,
    help="Skip saving the JSON questions snapshot",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Print only the JSON summary to stdout (for programmatic use)",
)
def convert(
    input_path: str,
    output: str,
    output_dir: str,
    optionless_policy: str,
    decimal_starts: bool,
    font_path: str,
    workers: int,
    page_start: int,
    page_end: int,
    log_level: str,
    log_file: str,
    no_snapshot: bool,
    json_output: bool,
):
    """Convert one DOCX or PDF document into an XLSX question sheet."""

    if json_output:
        log_level = "ERROR"

    page_range = None
    if page_start is not None or page_end is not None:
        page_range = (page_start or 1, page_end or 99999)

    config = ConverterConfig(
        output_dir=output_dir,
        optionless_policy=OptionlessPolicy(optionless_policy),
        allow_decimal_starts=decimal_starts,
        font_path=font_path,
        layout_workers=workers,
        page_range=page_range,
        log_level=log_level,
        log_file=log_file,
        save_snapshot=not no_snapshot,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]MCQ Sheet v{__version__}[/]\n"
                f"[dim]Converting: {os.path.basename(input_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        engine = ConverterEngine(config)

        if not json_output:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Converting...", total=None)

                def on_page(current: int, total: int):
                    progress.update(task, completed=current, total=total,
                                    description="Reading pages...")

                result = engine.convert(input_path, output, progress_callback=on_page)
                progress.update(task, description="Done")

            _display_results(result)
        else:
            result = engine.convert(input_path, output)
            print(json.dumps(result.summary(), indent=2, ensure_ascii=False, default=str))

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except ConversionError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--output-dir", "-o", default="output", help="Output directory")
@click.option(
    "--optionless-policy",
    default=OptionlessPolicy.KEEP.value,
    type=click.Choice(POLICY_CHOICES),
    help="What to do with questions that have no options",
)
@click.option("--log-level", default="WARNING", help="Logging level")
def batch(directory: str, output_dir: str, optionless_policy: str, log_level: str):
    """Convert every DOCX and PDF in a directory."""

    inputs = sorted(
        p for p in Path(directory).iterdir()
        if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
    )

    if not inputs:
        console.print(f"[yellow]No .docx or .pdf files found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Converter[/]\n"
            f"[dim]Found {len(inputs)} documents in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    results = []
    errors = []

    config = ConverterConfig(
        output_dir=output_dir,
        optionless_policy=OptionlessPolicy(optionless_policy),
        log_level=log_level,
    )
    engine = ConverterEngine(config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Converting documents...", total=len(inputs))

        for path in inputs:
            progress.update(task, description=f"Converting: {path.name}")
            try:
                results.append((path.name, engine.convert(path)))
            except ConversionError as e:
                errors.append((path.name, str(e)))
            progress.advance(task)

    _display_batch_summary(results, errors)


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--blocks", is_flag=True, default=False,
              help="Show normalized blocks instead of questions")
@click.option(
    "--optionless-policy",
    default=OptionlessPolicy.KEEP.value,
    type=click.Choice(POLICY_CHOICES),
)
def inspect(input_path: str, blocks: bool, optionless_policy: str):
    """Show what would be extracted from a document, without writing XLSX."""

    engine = ConverterEngine(ConverterConfig(
        log_level="WARNING",
        optionless_policy=OptionlessPolicy(optionless_policy),
    ))

    try:
        with open(input_path, "rb") as f:
            data = f.read()
        fmt, extracted = engine.extract_blocks(data, os.path.basename(input_path))
    except ConversionError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    if blocks:
        table = Table(title=f"Blocks ({fmt})", border_style="cyan")
        table.add_column("#", justify="right")
        table.add_column("Group", justify="right")
        table.add_column("Type")
        table.add_column("Content")
        for block in extracted:
            if block.type == BlockType.IMAGE:
                content = f"[magenta]image {block.image.digest[:12]} ({block.image.content_type})[/]"
            else:
                content = block.text
            table.add_row(str(block.sequence_index), str(block.group_index),
                          block.type.value, content)
        console.print(table)
        return

    questions, orphans = engine.extract_questions(extracted)
    table = Table(title=f"Questions ({len(questions)})", border_style="cyan")
    table.add_column("Sr.", justify="right")
    table.add_column("Question")
    for letter in "ABCD":
        table.add_column(letter)
    table.add_column("Images", justify="right")

    for index, q in enumerate(questions, start=1):
        table.add_row(
            str(index),
            q.question_text,
            *(q.option_text(letter) for letter in "ABCD"),
            str(len(q.images)),
        )
    console.print(table)
    if orphans:
        console.print(f"[yellow]{orphans} image(s) before the first question were ignored[/]")


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_results(result):
    """Display conversion results as rich tables."""
    console.print()

    table = Table(title="Conversion", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Source", result.source)
    table.add_row("Format", result.source_format.upper())
    table.add_row("Blocks", str(result.block_count))
    table.add_row("Questions", str(len(result.questions)))
    table.add_row("Output", result.output_path or "-")
    console.print(table)
    console.print()

    _display_report_table(result.report.model_dump())


def _display_report_table(report: dict):
    """Display the extraction report as a rich table."""
    table = Table(title="Extraction Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    total = report.get("total_questions", 0)
    complete = report.get("complete_questions", 0)
    rate = report.get("completeness_rate", 0)

    table.add_row("Total Questions", str(total),
                  "[green]✓[/]" if total > 0 else "[red]✗[/]")
    table.add_row("Complete Questions", f"{complete} ({rate}%)",
                  "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]")

    for label, key in [
        ("Missing Question Numbers", "missing_question_numbers"),
        ("Duplicate Question Numbers", "duplicate_question_numbers"),
        ("Questions Missing Text", "questions_missing_text"),
        ("Incomplete Options", "questions_with_incomplete_options"),
        ("Skipped Images", "skipped_images"),
    ]:
        count = len(report.get(key, []))
        table.add_row(label, str(count), status_icon(count))

    orphans = report.get("orphan_images", 0)
    table.add_row("Orphan Images", str(orphans), status_icon(orphans))

    console.print(table)
    console.print()

    images = report.get("images_by_target", {})
    if images:
        image_table = Table(title="Images by Field", border_style="yellow")
        image_table.add_column("Field", style="bold")
        image_table.add_column("Count", justify="right")
        for target, count in images.items():
            image_table.add_row(target, str(count))
        console.print(image_table)
        console.print()


def _display_batch_summary(results, errors):
    """Display batch conversion summary."""
    console.print()

    table = Table(title="Batch Conversion Summary", border_style="cyan")
    table.add_column("Document", style="bold")
    table.add_column("Questions", justify="right")
    table.add_column("Complete", justify="right")
    table.add_column("Anomalies", justify="right")
    table.add_column("Status", justify="center")

    total_questions = 0
    for name, result in results:
        count = len(result.questions)
        total_questions += count
        rate = result.report.completeness_rate
        anomalies = sum(result.report.anomaly_breakdown.values())
        status = "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]"
        table.add_row(name, str(count), f"{rate}%", str(anomalies), status)

    for name, error in errors:
        table.add_row(name, "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    for name, error in errors:
        console.print(f"[red]{name}:[/] {error}")
    console.print(
        f"[bold]Total:[/] {total_questions} questions from "
        f"{len(results)} documents, {len(errors)} failures"
    )
    console.print()


if __name__ == "__main__":
    cli()
