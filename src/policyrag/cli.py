"""CLI interface for policyrag.

Typer-based command-line interface with Rich output formatting.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from policyrag import __version__
from policyrag.chunk import ChunkOptions, SentenceChunker, validate_chunks
from policyrag.clean import clean_text, validate_text
from policyrag.config import DEFAULT_CONFIG_FILE, default_config, load_config, save_config
from policyrag.embed import create_embedder
from policyrag.exceptions import PolicyRagError, ValidationError
from policyrag.pipeline import IngestPipeline, QueryPipeline
from policyrag.store import create_store
from policyrag.tokens import count_tokens_or_estimate
from policyrag.types import Document, QueryFilters

__all__ = ["app"]

app = typer.Typer(
    name="policyrag",
    help="Retrieval-augmented answers over insurance and legal documents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the TOML config file"),
]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show INFO-level log output"),
    ] = False,
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=False, show_path=False)],
        force=True,
    )


def _load_config(path: Path) -> Any:
    """Load *path* if it exists, else fall back to defaults."""
    if not path.exists():
        logging.getLogger(__name__).info("No config at %s, using defaults", path)
        return default_config()
    try:
        return load_config(path)
    except PolicyRagError as e:
        err_console.print(f"[red]Invalid config:[/red] {e}")
        raise typer.Exit(code=1) from e


def _read_documents(source: str) -> list[Document]:
    """Read one document record or a list of them from a JSON file or ``-`` (stdin)."""
    try:
        raw = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
        data = json.loads(raw)
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Cannot read documents from {source}: {e}") from e

    records = data if isinstance(data, list) else [data]
    documents = []
    for i, record in enumerate(records):
        if not isinstance(record, dict):
            raise ValidationError(f"Record {i} is not a JSON object")
        document = Document.from_dict(record)
        if not document.text.strip():
            raise ValidationError(f"Record {i} has no text")
        documents.append(document)
    return documents


@app.command()
def version() -> None:
    """Show policyrag version."""
    console.print(f"policyrag {__version__}")


@app.command()
def init(
    path: Annotated[
        Path,
        typer.Option("--path", "-p", help="Where to write the config file"),
    ] = Path(DEFAULT_CONFIG_FILE),
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite an existing config file"),
    ] = False,
) -> None:
    """Write a config file with default values."""
    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(code=1)
    try:
        save_config(default_config(), path)
    except PolicyRagError as e:
        console.print(f"[red]Failed to write config:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"[green]Wrote default config[/green] to {path}")
    console.print("\nNext steps:")
    console.print("  policyrag ingest <documents.json>   Chunk, embed and store documents")
    console.print('  policyrag query "<question>"         Ask a question')


@app.command()
def chunk(
    source: Annotated[str, typer.Argument(help="JSON document(s) to chunk, or - for stdin")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write chunk records here instead of stdout"),
    ] = None,
    target_tokens: Annotated[int, typer.Option("--target-tokens")] = 800,
    overlap_tokens: Annotated[int, typer.Option("--overlap-tokens")] = 75,
    min_tokens: Annotated[int, typer.Option("--min-tokens")] = 100,
    max_tokens: Annotated[int, typer.Option("--max-tokens")] = 1000,
    clean: Annotated[
        bool,
        typer.Option("--clean", help="Clean HTML, encoding and formatting first"),
    ] = False,
) -> None:
    """Split documents into overlapping, sentence-aligned chunk records (JSON)."""
    try:
        options = ChunkOptions(
            target_tokens=target_tokens,
            overlap_tokens=overlap_tokens,
            min_tokens=min_tokens,
            max_tokens=max_tokens,
        )
        documents = _read_documents(source)
        chunker = SentenceChunker()
        records: list[dict[str, Any]] = []
        for document in documents:
            label = document.document_id or "document"
            if clean:
                cleaned = clean_text(document.text)
                for warning in validate_text(cleaned).warnings:
                    err_console.print(f"[yellow]{label}:[/yellow] {warning}")
                document = Document(
                    text=cleaned,
                    document_id=document.document_id,
                    insurer_id=document.insurer_id,
                    metadata=document.metadata,
                )
            chunks = chunker.chunk(document, options)
            report = validate_chunks(chunks, max_tokens)
            for warning in report.warnings:
                err_console.print(f"[yellow]{label}:[/yellow] {warning}")
            exact = sum(count_tokens_or_estimate(c.text) for c in chunks)
            err_console.print(
                f"[dim]{label}: {report.count} chunks, "
                f"avg {report.avg_tokens} est. tokens, {exact} exact tokens[/dim]"
            )
            records.extend(c.to_record() for c in chunks)
    except PolicyRagError as e:
        err_console.print(f"[red]Chunking failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    payload = json.dumps(records, ensure_ascii=False, indent=2)
    if output is None:
        typer.echo(payload)
    else:
        output.write_text(payload + "\n", encoding="utf-8")
        err_console.print(f"[green]Wrote {len(records)} chunks[/green] to {output}")


@app.command()
def ingest(
    source: Annotated[str, typer.Argument(help="JSON document(s) to index, or - for stdin")],
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
) -> None:
    """Chunk, embed and store documents."""
    config = _load_config(config_path)

    try:
        documents = _read_documents(source)
        pipeline = IngestPipeline(
            chunker=SentenceChunker(),
            embedder=create_embedder(config),
            store=create_store(config),
            config=config,
        )
    except PolicyRagError as e:
        console.print(f"[red]Failed to initialize pipeline:[/red] {e}")
        raise typer.Exit(code=1) from e

    added = 0
    total_chunks = 0
    for document in documents:
        name = document.document_id or document.metadata.title or "document"
        try:
            count = pipeline.process(document)
        except PolicyRagError as e:
            console.print(f"  [red]Error processing {name}:[/red] {e}")
            continue
        console.print(f"  [green]Added {name}[/green] ({count} chunks)")
        added += 1
        total_chunks += count

    console.print(f"\n[green]Added {added} document(s)[/green] ({total_chunks} chunks total)")
    if added < len(documents):
        raise typer.Exit(code=1)


@app.command()
def query(
    question: Annotated[str, typer.Argument(help="Question to answer")],
    category: Annotated[str, typer.Option("--category", help="Restrict to a category")] = "",
    source: Annotated[str, typer.Option("--source", help="Restrict to a source")] = "",
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw result as JSON")] = False,
    config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE),
) -> None:
    """Answer a question from the indexed documents."""
    config = _load_config(config_path)
    try:
        pipeline = QueryPipeline.from_config(config)
        result = pipeline.run_query(question, QueryFilters(category=category, source=source))
    except PolicyRagError as e:
        console.print(f"[red]Query failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    if as_json:
        typer.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return

    flags = []
    if result.degraded:
        flags.append("[red]degraded[/red]")
    if result.below_threshold:
        flags.append("[yellow]low confidence: no source cleared the similarity threshold[/yellow]")
    if result.cached:
        flags.append("[dim]cached[/dim]")

    console.print(Panel(result.answer, title="Answer", expand=False))
    if flags:
        console.print("  ".join(flags))
    if result.error:
        console.print(f"[dim]Error: {result.error}[/dim]")

    if result.sources:
        table = Table(title=f"Sources ({result.strategy})")
        table.add_column("#", justify="right")
        table.add_column("Source")
        table.add_column("Similarity", justify="right")
        for i, src in enumerate(result.sources, start=1):
            table.add_row(str(i), src.source_label, f"{src.similarity:.3f}")
        console.print(table)

    t = result.timings
    console.print(
        f"[dim]embed {t.embed_ms:.0f} ms · search {t.search_ms:.0f} ms · "
        f"assemble {t.assemble_ms:.0f} ms · llm {t.llm_ms:.0f} ms · "
        f"total {t.total_ms:.0f} ms[/dim]"
    )


@app.command()
def info(config_path: ConfigOption = Path(DEFAULT_CONFIG_FILE)) -> None:
    """Show provider and cache status."""
    config = _load_config(config_path)
    try:
        pipeline = QueryPipeline.from_config(config)
    except PolicyRagError as e:
        console.print(f"[red]Failed to initialize pipeline:[/red] {e}")
        raise typer.Exit(code=1) from e

    status = pipeline.info()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("component", style="dim")
    table.add_column("value", style="bold")
    for name in ("embedding", "llm"):
        details = status[name]
        mode = "[red]fallback[/red]" if details.get("degraded") else "[green]live[/green]"
        table.add_row(name, f"{details.get('provider')} / {details.get('model', '-')} ({mode})")
    table.add_row("retrieval", " → ".join(status["retrieval"]))
    cache = status["cache"]
    if cache.get("enabled") is False:
        table.add_row("cache", "disabled")
    else:
        table.add_row("cache", f"{cache['keys']} keys, ttl {cache['ttl_s']}s")
    console.print(table)
