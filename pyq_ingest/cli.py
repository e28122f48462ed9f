"""
CLI Interface
=============
Command-line interface for the PYQ ingest engine.

Usage:
    python -m pyq_ingest ingest <url>... --exam UPSC [options]
    python -m pyq_ingest crawl <root_url> --exam UPSC [options]
    python -m pyq_ingest sweep [CODE...]
    python -m pyq_ingest search "<query>" [--exam UPSC] [--from-year 2015]
    python -m pyq_ingest extract <file>
    python -m pyq_ingest exams
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .database import get_db_path, init_db, search_questions
from .engine import IngestConfig, IngestEngine, build_chain, setup_logging
from .errors import ConfigurationError
from .exams import get_profile, list_profiles
from .models import Level, RunSummary

console = Console()

LEVEL_CHOICES = [level.value for level in Level]


def _pipeline_options(func):
    """Options shared by every command that runs the pipeline."""
    options = [
        click.option("--paper", default=None, help="Paper override (e.g. GS-2)"),
        click.option("--theme", default=None, help="Theme override applied to every question"),
        click.option("--year-fallback", default=None, type=int, help="Year used when none is found"),
        click.option("--workers", "-j", default=1, type=int, help="Parallel document workers (1 = sequential)"),
        click.option("--delay", default=0.5, type=float, help="Seconds between documents when sequential"),
        click.option("--ocr", "ocr_providers", default=None,
                     help="Comma-separated OCR provider order (mistral,gemini,tesseract)"),
        click.option("--insecure", is_flag=True, default=False,
                     help="Skip TLS verification for every host"),
        click.option("--db", "db_path", default=None, help="SQLite database path (default: $PYQ_DB_PATH)"),
        click.option("--log-level", default="INFO",
                     type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), help="Logging level"),
        click.option("--log-file", default=None, help="Path to log file"),
        click.option("--json-output", is_flag=True, default=False,
                     help="Output only the JSON run summary to stdout"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_config(exam: str, level: Optional[str], json_output: bool, **kwargs) -> IngestConfig:
    if json_output:
        # Suppress console logging for JSON mode
        kwargs["log_level"] = "ERROR"
    providers = kwargs.pop("ocr_providers", None)
    if providers:
        kwargs["ocr_providers"] = [p.strip() for p in providers.split(",") if p.strip()]
    kwargs["allow_insecure"] = kwargs.pop("insecure", False)
    return IngestConfig.from_env(
        exam=exam,
        level=Level(level) if level else None,
        **kwargs,
    )


@click.group()
@click.version_option(version=__version__, prog_name="pyq-ingest")
def cli():
    """PYQ Ingest: previous-year question paper ingestion pipeline."""
    pass


@cli.command()
@click.argument("urls", nargs=-1)
@click.option("--exam", "-e", required=True, help="Exam code (UPSC, TNPSC, ...)")
@click.option("--level", "-l", default=None, type=click.Choice(LEVEL_CHOICES), help="Level override")
@_pipeline_options
def ingest(urls: tuple[str, ...], exam: str, level: Optional[str], json_output: bool, **kwargs):
    """Ingest document URLs and/or listing pages (default: the exam's listing pages)."""
    config = _build_config(exam, level, json_output, **kwargs)
    _banner(json_output, f"Ingesting {exam.upper()}", f"{len(urls) or 'registered'} source URL(s)")
    summary = _run(config, lambda engine: engine.run(urls))
    _emit_summary(summary, json_output)


@cli.command()
@click.argument("root", required=False)
@click.option("--exam", "-e", required=True, help="Exam code (UPSC, TNPSC, ...)")
@click.option("--level", "-l", default=None, type=click.Choice(LEVEL_CHOICES), help="Level override")
@click.option("--max-depth", default=2, type=int, help="Maximum link depth from the root")
@click.option("--max-pages", default=60, type=int, help="Maximum pages fetched")
@_pipeline_options
def crawl(root: Optional[str], exam: str, level: Optional[str], json_output: bool, **kwargs):
    """Crawl a site breadth-first and ingest every document found."""
    config = _build_config(exam, level, json_output, **kwargs)
    _banner(json_output, f"Crawling for {exam.upper()}", root or "registered listing pages")
    summary = _run(config, lambda engine: engine.crawl(root))
    _emit_summary(summary, json_output)


@cli.command()
@click.argument("codes", nargs=-1)
@click.option("--max-depth", default=2, type=int, help="Maximum link depth per site")
@click.option("--max-pages", default=60, type=int, help="Maximum pages fetched per site")
@click.option("--site-delay", default=5.0, type=float, help="Seconds between exams")
@_pipeline_options
def sweep(codes: tuple[str, ...], json_output: bool, **kwargs):
    """Crawl the official sites of every registered exam (or only CODES)."""
    profiles = [get_profile(c) for c in codes] if codes else list_profiles()
    first = profiles[0].code if profiles else "UPSC"
    config = _build_config(first, None, json_output, **kwargs)
    _banner(json_output, "Sweeping exam registry", f"{len(profiles)} exam(s)")

    summaries = _run(config, lambda engine: engine.sweep(profiles))

    if json_output:
        print(json.dumps(
            [s.model_dump(mode="json") for s in summaries],
            indent=2,
            ensure_ascii=False,
            default=str,
        ))
        return
    for summary in summaries:
        _display_summary(summary)
    _display_sweep_table(summaries)


@cli.command()
@click.argument("query", default="")
@click.option("--exam", "-e", default=None, help="Exam code filter")
@click.option("--from-year", default=None, type=int, help="Earliest year")
@click.option("--to-year", default=None, type=int, help="Latest year")
@click.option("--paper", default=None, help="Paper filter (e.g. GS-3)")
@click.option("--limit", default=20, type=int, help="Maximum results")
@click.option("--db", "db_path", default=None, help="SQLite database path")
@click.option("--json-output", is_flag=True, default=False, help="Output JSON to stdout")
def search(
    query: str,
    exam: Optional[str],
    from_year: Optional[int],
    to_year: Optional[int],
    paper: Optional[str],
    limit: int,
    db_path: Optional[str],
    json_output: bool,
):
    """Search stored questions by free text."""
    db_path = db_path or get_db_path()
    init_db(db_path)
    results = search_questions(
        query,
        exam=exam,
        year_from=from_year,
        year_to=to_year,
        paper=paper,
        limit=limit,
        db_path=db_path,
    )

    if json_output:
        print(json.dumps(
            [r.model_dump(mode="json") for r in results],
            indent=2,
            ensure_ascii=False,
        ))
        return

    table = Table(title=f"Search: {query or '(all)'}", border_style="cyan")
    table.add_column("Year", justify="right")
    table.add_column("Exam")
    table.add_column("Paper")
    table.add_column("Theme")
    table.add_column("Question")
    table.add_column("✓", justify="center")
    for r in results:
        table.add_row(
            str(r.year or "-"),
            r.exam,
            r.paper or "-",
            r.theme or "-",
            r.question,
            "[green]✓[/]" if r.verified else "",
        )
    console.print()
    console.print(table)
    console.print(f"[dim]{len(results)} result(s)[/]")
    console.print()


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--ocr", "ocr_providers", default=None, help="Comma-separated OCR provider order")
@click.option("--exam", default=None, help="Exam code whose language local OCR should read")
@click.option("--min-chars", default=100, type=int, help="Adequacy threshold")
@click.option("--segment", is_flag=True, default=False, help="Also print segmented questions")
@click.option("--log-level", default="WARNING",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), help="Logging level")
def extract(
    file_path: str,
    ocr_providers: Optional[str],
    exam: Optional[str],
    min_chars: int,
    segment: bool,
    log_level: str,
):
    """Run the extraction chain on a local file and print the text."""
    from .segmenter import QuestionSegmenter

    config = _build_config(
        "LOCAL", None, False,
        ocr_providers=ocr_providers,
        min_chars=min_chars,
        log_level=log_level,
    )
    setup_logging(config.log_level, config.log_file)
    try:
        chain = build_chain(config, get_profile(exam) if exam else None)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(1)

    extracted = chain.extract(Path(file_path).read_bytes(), label=Path(file_path).name)

    table = Table(title="Extraction Attempts", border_style="cyan")
    table.add_column("Method", style="bold")
    table.add_column("Chars", justify="right")
    table.add_column("Seconds", justify="right")
    table.add_column("Result")
    for a in extracted.attempts:
        table.add_row(
            a.method.value,
            str(a.chars),
            f"{a.elapsed:.2f}",
            "[green]adequate[/]" if a.adequate else f"[yellow]{a.error or '-'}[/]",
        )
    console.print(table)

    if not extracted.adequate:
        reason = "too large for OCR" if extracted.ocr_skipped else "no adequate text"
        console.print(f"[red]Extraction failed:[/] {reason}")
        sys.exit(2)

    if segment:
        for i, q in enumerate(QuestionSegmenter().segment(extracted.text), 1):
            console.print(f"[bold]{i:>3}.[/] {q}")
    else:
        console.print(extracted.text, markup=False, highlight=False)


@cli.command()
def exams():
    """List the exam registry."""
    table = Table(title="Exam Registry", border_style="cyan")
    table.add_column("Code", style="bold")
    table.add_column("Name")
    table.add_column("Lang", justify="center")
    table.add_column("Listing Pages", justify="right")
    for p in list_profiles():
        table.add_row(p.code, p.name, p.language, str(len(p.listing_pages)))
    console.print()
    console.print(table)
    console.print()


# ─── Run Helpers ──────────────────────────────────────────────────────────────


def _run(config: IngestConfig, action):
    try:
        engine = IngestEngine(config)
        return action(engine)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/]")
        sys.exit(130)


def _banner(json_output: bool, title: str, subtitle: str):
    if json_output:
        return
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]PYQ Ingest v{__version__}[/] · {title}\n"
            f"[dim]{subtitle}[/]",
            border_style="cyan",
        )
    )
    console.print()


def _emit_summary(summary: RunSummary, json_output: bool):
    if json_output:
        print(json.dumps(
            summary.model_dump(mode="json"),
            indent=2,
            ensure_ascii=False,
            default=str,
        ))
    else:
        _display_summary(summary)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_summary(summary: RunSummary):
    """Display a run summary as rich tables."""
    console.print()

    table = Table(title=f"Run Summary: {summary.exam}", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Documents", str(summary.documents_total))
    table.add_row("Processed", str(summary.documents_processed))
    table.add_row("Skipped", str(summary.documents_skipped))
    table.add_row(
        "Errored",
        f"[red]{summary.documents_errored}[/]" if summary.documents_errored else "0",
    )
    table.add_row("Questions Inserted", str(summary.questions_inserted))
    table.add_row("Questions Merged", str(summary.questions_merged))
    table.add_row("Unclassified (paper/theme)", str(summary.questions_unclassified))
    table.add_row("Listing Pages Failed", str(len(summary.listing_failures)))
    console.print(table)
    console.print()

    if summary.skip_reasons:
        reasons = Table(title="Skip Reasons", border_style="yellow")
        reasons.add_column("Reason", style="bold")
        reasons.add_column("Count", justify="right")
        for reason, count in sorted(summary.skip_reasons.items(), key=lambda kv: -kv[1]):
            reasons.add_row(reason, str(count))
        console.print(reasons)
        console.print()

    if summary.extraction_methods:
        methods = Table(title="Extraction Methods", border_style="cyan")
        methods.add_column("Method", style="bold")
        methods.add_column("Documents", justify="right")
        for method, count in sorted(summary.extraction_methods.items()):
            methods.add_row(method, str(count))
        console.print(methods)
        console.print()


def _display_sweep_table(summaries: list[RunSummary]):
    table = Table(title="Sweep Summary", border_style="cyan")
    table.add_column("Exam", style="bold")
    table.add_column("Documents", justify="right")
    table.add_column("Processed", justify="right")
    table.add_column("Inserted", justify="right")
    table.add_column("Merged", justify="right")
    table.add_column("Failed Pages", justify="right")
    for s in summaries:
        table.add_row(
            s.exam,
            str(s.documents_total),
            str(s.documents_processed),
            str(s.questions_inserted),
            str(s.questions_merged),
            str(len(s.listing_failures)),
        )
    console.print(table)
    console.print()


# ─── Entry point (for python -m pyq_ingest.cli) ───────────────────────────────


if __name__ == "__main__":
    cli()
