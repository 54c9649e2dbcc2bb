"""Command line interface for docvectors."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from docvectors.config import AppConfig
from docvectors.embedding.encoder import EmbeddingConfig, EmbeddingModel
from docvectors.errors import DocVectorsError
from docvectors.index.indexer import Indexer
from docvectors.index.storage import JsonIndexStore

LOGGER = logging.getLogger(__name__)

console = Console()
app = typer.Typer(help="docvectors - incremental semantic index builder for Markdown content")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _fail(exc: Exception) -> NoReturn:
    console.print(f"[bold red]Build failed:[/bold red] {exc}")
    raise typer.Exit(code=1)


def _export_model(embedder: EmbeddingModel, config: AppConfig) -> None:
    destination = config.resolve_models_dir(Path.cwd()) / config.model_name
    try:
        if embedder.export(destination):
            console.print(f"Model copied to [bold]{destination}[/bold]")
    except Exception as e:
        LOGGER.warning(f"Could not export model to {destination}: {e}")


@app.command()
def build(
    content: Path = typer.Argument(AppConfig().content_dir, help="Directory with Markdown documents."),
    output: Path = typer.Option(AppConfig().output_path, "--output", "-o", help="Index artifact path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    batch_size: int = typer.Option(AppConfig().batch_size, min=1, help="Texts per model call"),
    max_concurrency: int = typer.Option(
        AppConfig().max_concurrency, min=1, help="Batches embedded in parallel"
    ),
    min_chars: int = typer.Option(AppConfig().min_chars, min=0, help="Shortest paragraph kept"),
    retries: int = typer.Option(AppConfig().retries, min=0, help="Retries per failed batch"),
    export_model: bool = typer.Option(
        True, "--export-model/--no-export-model", help="Copy the model next to the index"
    ),
    models_dir: Path = typer.Option(AppConfig().models_dir, "--models-dir", help="Model copy location"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Build or incrementally update the semantic index."""
    _setup_logging(verbose)
    config = AppConfig(
        content_dir=content,
        output_path=output,
        models_dir=models_dir,
        model_name=model,
        batch_size=batch_size,
        max_concurrency=max_concurrency,
        min_chars=min_chars,
        retries=retries,
    )
    content_dir = config.resolve_content_dir(Path.cwd())
    store = JsonIndexStore(config.resolve_output_path(Path.cwd()))

    try:
        embedder = EmbeddingModel(
            EmbeddingConfig(model_name=config.model_name, batch_size=config.batch_size)
        )
    except DocVectorsError as exc:
        _fail(exc)

    with embedder:
        if export_model:
            _export_model(embedder, config)

        console.print(f"Indexing [bold]{content_dir}[/bold] into [bold]{store.path}[/bold]...")
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Embedding", total=None)
            indexer = Indexer(
                embedder,
                store,
                batch_size=config.batch_size,
                max_concurrency=config.max_concurrency,
                min_chars=config.min_chars,
                private_prefix=config.private_prefix,
                retries=config.retries,
                on_start=lambda total: progress.update(task, total=total),
                on_progress=lambda _path: progress.advance(task),
            )
            try:
                stats = indexer.build(content_dir)
            except DocVectorsError as exc:
                _fail(exc)

    console.print(
        f"Recomputed: {stats.recomputed}, skipped: {stats.skipped}, "
        f"drafts: {stats.purged}, failed: {stats.failed}, entries: {stats.entries}"
    )


@app.command()
def inspect(
    index_path: Path = typer.Argument(AppConfig().output_path, help="Index artifact path"),
    limit: int = typer.Option(20, help="Number of documents to list"),
) -> None:
    """Summarize an existing index artifact."""
    store = JsonIndexStore(index_path)
    if not store.exists():
        console.print(f"[yellow]Index not found: {index_path}[/yellow]")
        raise typer.Exit(code=1)

    entries = store.load_entries()
    if not entries:
        console.print("[yellow]Index is empty.[/yellow]")
        return

    counts = Counter(entry.slug for entry in entries)
    titles = {entry.slug: entry.title for entry in entries}
    dimension = len(entries[0].vector)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Document")
    table.add_column("Title")
    table.add_column("Fragments", justify="right")

    for slug, count in list(counts.items())[:limit]:
        table.add_row(slug, titles[slug], str(count))

    console.print(table)
    console.print(f"{len(entries)} entries, {len(counts)} documents, {dimension} dimensions")


@app.command("export-model")
def export_model_command(
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    models_dir: Path = typer.Option(AppConfig().models_dir, "--models-dir", help="Model copy location"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Copy the embedding model into a servable directory."""
    _setup_logging(verbose)
    config = AppConfig(model_name=model, models_dir=models_dir)
    destination = config.resolve_models_dir(Path.cwd()) / config.model_name

    try:
        with EmbeddingModel(EmbeddingConfig(model_name=config.model_name)) as embedder:
            written = embedder.export(destination)
    except (DocVectorsError, OSError) as exc:
        console.print(f"[bold red]Export failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if written:
        console.print(f"Model copied to [bold]{destination}[/bold]")
    else:
        console.print(f"[yellow]Model already present at {destination}[/yellow]")


if __name__ == "__main__":
    app()
