"""
AskResearch - CLI Entry Point
------------------------------
Exposes Typer commands for ingestion and querying.

Usage:
    python -m askresearch.main ingest                  # Ingest the configured document list
    python -m askresearch.main ingest a.pdf b.pdf      # Ingest specific files
    python -m askresearch.main ingest --sample         # Ingest the bundled sample records
    python -m askresearch.main ask                     # Interactive Q&A
    python -m askresearch.main ask -q "..."            # Single-shot query
    python -m askresearch.main status                  # Show the persisted index manifest
"""
from __future__ import annotations

import sys

# Windows cp1252 terminal fix: force UTF-8 so PDF text with ligatures and
# bullets does not crash the Rich console renderer.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from askresearch.config import DEFAULT_CONFIG_PATH, Settings, load_settings
from askresearch.embedding.embedder import Embedder
from askresearch.embedding.index import MANIFEST_FILE
from askresearch.errors import ConfigurationError, RAGError, ValidationError
from askresearch.ingestion.pipeline import IngestReport, run_ingest
from askresearch.schemas import RAGResponse
from askresearch.utils.helpers import load_json
from askresearch.utils.logger import setup_logger

app = typer.Typer(
    name="askresearch",
    help="AskResearch - answer questions from research documents with citations",
    add_completion=False,
)
console = Console()


# --- Helpers ------------------------------------------------------------------

def _settings(config: str) -> Settings:
    try:
        settings = load_settings(config)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(2)
    setup_logger(settings.logging.level, settings.logging.file)
    return settings


def _require_key(settings: Settings) -> str:
    try:
        return settings.require_api_key()
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(2)


# --- Commands -----------------------------------------------------------------

@app.command()
def ingest(
    paths: Optional[List[str]] = typer.Argument(
        None, help="Document files to ingest (defaults to ingestion.documents in the config)"
    ),
    sample: bool = typer.Option(
        False, "--sample", help="Ingest the bundled sample records instead of files"
    ),
    index_dir: Optional[str] = typer.Option(
        None, "--index-dir", help="Output directory for the corpus index"
    ),
    window: Optional[int] = typer.Option(None, "--window", help="Chunk window in characters"),
    overlap: Optional[int] = typer.Option(None, "--overlap", help="Chunk overlap in characters"),
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
) -> None:
    """
    Load, chunk, embed and index documents.

    \b
    Exits non-zero if any document failed to load (the others are still
    indexed) or if nothing could be indexed.
    """
    settings = _settings(config)
    api_key = _require_key(settings)

    chunking = settings.chunking
    if window is None:
        window = chunking.sample_window if sample else chunking.window
    if overlap is None:
        overlap = chunking.sample_overlap if sample else chunking.overlap
    documents = list(paths) if paths else settings.ingestion.documents
    out_dir = index_dir or settings.corpus.index_dir

    console.print()
    console.print(
        Panel(
            "[bold cyan]AskResearch[/bold cyan]\n"
            "[white]Ingestion - Chunking, Embedding, Indexing[/white]",
            box=box.DOUBLE_EDGE,
            expand=False,
        )
    )

    embedder = Embedder(
        model=settings.embedding.model,
        dimensions=settings.embedding.dimensions,
        batch_size=settings.embedding.batch_size,
        api_key=api_key,
        timeout=settings.provider.request_timeout,
    )
    try:
        report = run_ingest(
            embedder,
            paths=documents,
            sample=sample,
            index_dir=out_dir,
            window=window,
            overlap=overlap,
        )
    except (RAGError, ValueError) as exc:
        console.print(f"[red]Ingestion failed:[/red] {exc}")
        raise typer.Exit(1)

    _print_ingest_report(report)
    if not report.succeeded:
        raise typer.Exit(1)


def _print_ingest_report(report: IngestReport) -> None:
    table = Table(
        "Document", "Status", "Pages", "Chunks", "Error",
        box=box.SIMPLE,
        show_header=True,
        header_style="bold dim",
    )
    for doc in report.documents:
        table.add_row(
            doc.name,
            "[green]OK[/green]" if doc.ok else "[red]FAILED[/red]",
            str(doc.pages),
            str(doc.chunks),
            doc.error[:70],
        )
    console.print(table)

    if report.index_dir:
        console.print(
            f"[green][OK] {report.total_chunks} chunks indexed -> {report.index_dir}[/green]  "
            f"[dim]tokens={report.tokens_used:,} cost=${report.estimated_cost_usd:.4f}[/dim]"
        )
    else:
        console.print("[red]No chunks produced; index not written.[/red]")
    if report.failed:
        console.print(f"[yellow]{len(report.failed)} document(s) failed to load.[/yellow]")


@app.command()
def ask(
    query: Optional[str] = typer.Option(
        None, "--query", "-q", help="Single query (omit for interactive loop)"
    ),
    json_out: bool = typer.Option(
        False, "--json", help="Print result as JSON (single-query mode only)"
    ),
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
) -> None:
    """
    Answer questions from the corpus.

    \b
    Steps per query:
      1. Embed the question
      2. Rank corpus chunks by cosine similarity (top 3)
      3. Generate a grounded, cited answer
      4. Suggest follow-up questions
    """
    settings = _settings(config)
    _require_key(settings)

    from askresearch.serving.pipeline import RAGPipeline

    try:
        pipeline = RAGPipeline.from_settings(settings)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(2)

    # --- Single-shot mode -----------------------------------------------------
    if query:
        response = _answer(pipeline, query)
        if response is None:
            raise typer.Exit(1)
        if json_out:
            console.print_json(json.dumps(response.model_dump(mode="json", by_alias=True)))
        else:
            _print_response(response)
        return

    # --- Interactive loop -----------------------------------------------------
    console.print()
    console.print("[bold]Ask anything about the research corpus.[/bold]")
    console.print("[dim]Type 'exit', 'quit', or press Ctrl+C to quit.[/dim]\n")

    while True:
        try:
            raw = console.input("[bold cyan]You[/bold cyan] > ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye.[/dim]")
            break

        if not raw:
            continue
        if raw.lower() in {"exit", "quit", "q"}:
            console.print("[dim]Goodbye.[/dim]")
            break

        with console.status("[cyan]Thinking...[/cyan]"):
            response = _answer(pipeline, raw)
        if response is not None:
            _print_response(response)


def _answer(pipeline, question: str) -> Optional[RAGResponse]:
    try:
        return pipeline.process(question)
    except ValidationError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
    except RAGError:
        console.print("[red]Failed to process question.[/red] [dim]See the log for details.[/dim]")
    return None


def _print_response(response: RAGResponse) -> None:
    """Render a RAGResponse to the terminal using Rich."""
    console.print()
    console.print(
        Panel(
            Markdown(response.answer),
            title="[bold green]Answer[/bold green]",
            border_style="green",
            expand=True,
        )
    )

    if response.sources:
        table = Table(
            "No.", "Source", "Page", "Excerpt",
            box=box.SIMPLE,
            show_header=True,
            header_style="bold dim",
        )
        for i, source in enumerate(response.sources, start=1):
            table.add_row(
                str(i),
                source.metadata.source,
                str(source.metadata.page) if source.metadata.page is not None else "N/A",
                source.content[:80].replace("\n", " "),
            )
        console.print(table)

    if response.follow_up_questions:
        console.print("[bold]Follow-up questions:[/bold]")
        for question in response.follow_up_questions:
            console.print(f"  - {question}")
        console.print()


@app.command()
def status(
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Show the persisted corpus index manifest."""
    settings = _settings(config)
    path = Path(settings.corpus.index_dir) / MANIFEST_FILE
    if not path.exists():
        console.print(
            f"[yellow]No corpus index at {settings.corpus.index_dir}.  "
            "Run: python -m askresearch.main ingest[/yellow]"
        )
        raise typer.Exit(1)

    manifest = load_json(path)
    console.print()
    console.print("[bold]Corpus Index[/bold]")
    console.print(f"  Directory : {settings.corpus.index_dir}")
    console.print(f"  Model     : [cyan]{manifest.get('embedding_model')}[/cyan] ({manifest.get('dimensions')} dims)")
    console.print(f"  Chunks    : [green]{manifest.get('total_chunks')}[/green]")
    console.print(f"  Created   : {manifest.get('created_at')}")
    console.print("  Sources   :")
    for source in manifest.get("sources", []):
        console.print(f"    - {source}")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
