"""Command line interface for BERI."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from beri.config import AppConfig
from beri.device import detect_device
from beri.embedding.encoder import EmbeddingConfig, EmbeddingModel
from beri.errors import CorpusError
from beri.generation.llm import GenerationConfig, TransformersGenerator
from beri.index.search import Retriever
from beri.index.storage import SQLiteChunkStore
from beri.ingestion.chunker import load_document
from beri.models import Message
from beri.pipeline import AnswerOrchestrator
from beri.web.app import app as web_app, configure as configure_web


console = Console()
app = typer.Typer(help="BERI - ask questions about the school, answered on your device")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _format_sources(message: Message) -> str:
    return "\n".join(f"• {source.source} — {source.section}" for source in message.sources)


@app.command()
def ingest(
    document: Optional[Path] = typer.Option(None, "--document", "-d", help="Markdown corpus to embed"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().embedding_model, help="Sentence-transformer model name"),
    force: bool = typer.Option(False, "--force", help="Re-embed even if chunks are already stored"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Chunk and embed the corpus into the local store."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        corpus_path=document,
        embedding_model=model,
    )
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    try:
        text = load_document(config.corpus_path)
    except CorpusError as exc:
        raise typer.BadParameter(str(exc)) from exc

    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.embedding_model))
    store = SQLiteChunkStore(resolved_db, dimension=embedder.dimension)
    try:
        if force:
            store.clear()
        if store.has():
            console.print("[yellow]Chunks already embedded, use --force to rebuild.[/yellow]")
            return

        console.print(f"Embedding [bold]{config.corpus_path}[/bold] into [bold]{resolved_db}[/bold]...")
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Embedding content", total=None)

            def on_progress(current: int, total: int) -> None:
                progress.update(task, completed=current, total=total)

            count = store.load_all(embedder, on_progress, document=text)
        console.print(f"Stored {count} chunks ({store.dimension}-dimensional embeddings).")
    finally:
        store.close()


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().embedding_model, help="Sentence-transformer model name"),
    top_k: int = typer.Option(AppConfig().top_k, help="Number of results to display"),
    threshold: float = typer.Option(AppConfig().similarity_threshold, help="Minimum similarity"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show the chunks retrieved for a query."""
    _setup_logging(verbose)
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path, embedding_model=model)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.embedding_model))
    store = SQLiteChunkStore(resolved_db, dimension=embedder.dimension)
    try:
        retriever = Retriever(embedder, store, top_k=top_k, threshold=threshold)
        results = retriever.retrieve(query)
    finally:
        store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Source")
    table.add_column("Section")
    table.add_column("Snippet")

    for result in results:
        snippet = result.content.replace("\n", " ")
        meta = result.metadata
        table.add_row(f"{result.score:.4f}", meta.source, meta.section, snippet[:180])

    console.print(table)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question about the school"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().embedding_model, help="Sentence-transformer model name"),
    llm: str = typer.Option(AppConfig().llm_model, help="Causal language model name"),
    reasoning: Optional[bool] = typer.Option(
        None, "--reasoning/--no-reasoning", help="Let the model think before answering"
    ),
    show_thinking: bool = typer.Option(False, "--show-thinking", help="Print the reasoning trace"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question with the full FAQ / retrieval / generation pipeline."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        embedding_model=model,
        llm_model=llm,
        reasoning=reasoning,
    )
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}. Run 'beri ingest' first.")

    config.device = detect_device()
    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.embedding_model))
    store = SQLiteChunkStore(resolved_db, dimension=embedder.dimension)
    if not store.has():
        store.close()
        raise typer.BadParameter(f"No embedded chunks in {resolved_db}. Run 'beri ingest' first.")

    generator = TransformersGenerator(
        GenerationConfig(
            model_name=config.llm_model,
            max_new_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    )
    retriever = Retriever(embedder, store, top_k=config.top_k, threshold=config.similarity_threshold)
    orchestrator = AnswerOrchestrator(retriever, generator, config=config)

    try:
        with Live(console=console, refresh_per_second=12) as live:

            def on_update(message: Message) -> None:
                live.update(Markdown(message.content or "_thinking..._"))

            message = asyncio.run(orchestrator.answer(question, on_update))
    finally:
        store.close()

    if show_thinking and message.thinking:
        console.print(f"[dim]{message.thinking}[/dim]")
    if message.sources:
        console.print(f"[bold]Sources[/bold]\n{_format_sources(message)}")


@app.command("export")
def export_bundle(
    output: Path = typer.Argument(..., help="Destination JSON file"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    content_only: bool = typer.Option(False, "--content-only", help="Omit embeddings"),
) -> None:
    """Write the stored chunks as a JSON bundle."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    store = SQLiteChunkStore(resolved_db)
    try:
        count = store.save_bundle(output, include_embeddings=not content_only)
    finally:
        store.close()
    console.print(f"Exported {count} chunks to {output}.")


@app.command("import")
def import_bundle(
    bundle: Path = typer.Argument(..., help="JSON chunk bundle", exists=True, dir_okay=False),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().embedding_model, help="Model for content-only bundles"),
) -> None:
    """Replace the stored chunks with a JSON bundle."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path, embedding_model=model)
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    embedder: EmbeddingModel | None = None

    def embed_fn(text: str):
        # Only content-only bundles need the model.
        nonlocal embedder
        if embedder is None:
            embedder = EmbeddingModel(EmbeddingConfig(model_name=config.embedding_model))
        return embedder.embed_query(text)

    store = SQLiteChunkStore(resolved_db)
    try:
        count = store.load_bundle(bundle, embed_fn)
    except CorpusError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        store.close()
    console.print(f"Imported {count} chunks into {resolved_db}.")


@app.command()
def status(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show the state of the chunk store and this device."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())

    table = Table(show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Database", str(resolved_db))
    if resolved_db.exists():
        store = SQLiteChunkStore(resolved_db)
        try:
            table.add_row("Chunks", str(store.count()))
            table.add_row("Ready", "yes" if store.has() else "no")
            table.add_row("Dimension", str(store.dimension or "-"))
            table.add_row("Corpus version", store.corpus_version or "-")
        finally:
            store.close()
    else:
        table.add_row("Chunks", "0 (database not found)")

    device = detect_device()
    table.add_row("Device tier", device.tier)
    table.add_row("Reasoning", "enabled" if device.reasoning_enabled else "disabled")
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Start the local HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, it will be built on first start.[/yellow]")

    configure_web(resolved_db)
    console.print(f"Starting BERI on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
