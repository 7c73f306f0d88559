import json
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from webrag.core.backfill import backfill as run_backfill
from webrag.core.embed import EmbeddingClient, create_embedding_client
from webrag.core.errors import (
    EmbeddingProviderError,
    InvalidInput,
    StorageFailure,
    WebragError,
    pipeline_step,
)
from webrag.core.logging_config import configure_logging
from webrag.core.search import search as run_search
from webrag.core.store import PassageStore, connect, get_database_url
from webrag.cli.config_manager import get_config_manager

app = typer.Typer(help="webrag — backfill scraped pages into embedded passages and search them")
config_app = typer.Typer(help="Show and change CLI settings")
app.add_typer(config_app, name="config")
console = Console()

PAGE_SUFFIXES = (".txt", ".html", ".htm", ".md")


@app.callback()
def main():
    """Load settings and initialize structured logging."""
    manager = get_config_manager()
    manager.apply_to_env()
    configure_logging(
        log_level=manager.get("log_level", "INFO"),
        json_logs=bool(manager.get("json_logs", False)),
    )


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {error}")
    raise typer.Exit(2 if isinstance(error, InvalidInput) else 1)


@contextmanager
def _open_store(register: bool = True) -> Iterator[PassageStore]:
    with pipeline_step("connect"):
        conn = connect(get_database_url(), register=register)
    try:
        yield PassageStore(conn)
    finally:
        conn.close()


@contextmanager
def _open_session() -> Iterator[Tuple[PassageStore, EmbeddingClient]]:
    embedder = create_embedding_client()
    try:
        with _open_store() as store:
            yield store, embedder
    finally:
        embedder.close()


@app.command("init-db")
def init_db(
    dimensions: int = typer.Option(0, help="Fixed embedding width; enables the HNSW index"),
):
    """Create the pgvector extension, tables and indexes."""
    try:
        with _open_store(register=False) as store:
            store.ensure_schema(dimensions or None)
    except WebragError as e:
        _fail(e)
    console.print("[green]✅ Schema ready[/]")


@app.command()
def load(path: str):
    """Register local text/HTML files as unprocessed pages (file:// URLs)."""
    input_path = Path(path)
    if not input_path.exists():
        console.print(f"[red]Error:[/] Path {path} does not exist")
        raise typer.Exit(1)

    files = [input_path] if input_path.is_file() else sorted(
        p for p in input_path.rglob("*") if p.is_file() and p.suffix.lower() in PAGE_SUFFIXES
    )
    if not files:
        console.print(f"[yellow]No page files found in {path}[/]")
        return

    try:
        with _open_store() as store:
            for file_path in files:
                body = file_path.read_text(encoding="utf-8", errors="replace")
                with pipeline_step("load"):
                    store.add_page(file_path.resolve().as_uri(), body)
    except WebragError as e:
        _fail(e)

    console.print(f"[green]✅ Registered {len(files)} pages[/]")


@app.command()
def backfill(
    n: Optional[int] = typer.Option(None, "-n", "--pages", help="Pages to process (1-1000)"),
    claim: Optional[bool] = typer.Option(None, "--claim/--no-claim", help="Lock selected pages (FOR UPDATE SKIP LOCKED)"),
    retries: int = typer.Option(0, help="Retry the whole run this many times on storage/provider failures"),
):
    """Turn unprocessed pages into embedded passages in one transaction."""
    manager = get_config_manager()
    if n is None:
        n = manager.get("backfill_batch_size", 10)
    if claim is None:
        claim = bool(manager.get("backfill_claim_pages", False))

    def attempt():
        with _open_session() as (store, embedder):
            return run_backfill(store, embedder, n, claim_pages=claim)

    retrying = Retrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((StorageFailure, EmbeddingProviderError)),
        reraise=True,
    )
    try:
        with console.status("[bold green]Backfilling pages..."):
            summary = retrying(attempt)
    except (WebragError, ValueError) as e:
        _fail(e)

    table = Table(title="Backfill summary")
    table.add_column("Counter")
    table.add_column("Value", justify="right")
    for key, value in summary.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def search(
    query: str,
    limit: int = typer.Option(10, help="Maximum hits (clamped to 1-50)"),
    company_id: Optional[int] = typer.Option(None, help="Only passages of this company"),
    as_json: bool = typer.Option(False, "--json", help="Print hits as JSON"),
):
    """Rank embedded passages by similarity to QUERY."""
    try:
        with _open_session() as (store, embedder):
            hits = run_search(store, embedder, query, limit=limit, company_id=company_id)
    except (WebragError, ValueError) as e:
        _fail(e)

    if as_json:
        console.print_json(json.dumps({"hits": [h.to_dict() for h in hits], "count": len(hits)}))
        return

    if not hits:
        console.print("[yellow]No embedded passages matched[/]")
        return

    for rank, hit in enumerate(hits, 1):
        snippet = hit.text[:300] + "…" if len(hit.text) > 300 else hit.text
        console.print(f"[bold]#{rank}[/] score={hit.score:.3f} passage={hit.passage_id} document={hit.document_id}")
        console.print(snippet, markup=False)
        console.print()


@app.command()
def embed(texts: List[str]):
    """Embed TEXTS with the configured provider and show the vectors."""
    try:
        with create_embedding_client() as embedder:
            vectors = embedder.embed(texts)
    except (WebragError, ValueError) as e:
        _fail(e)

    for text, vector in zip(texts, vectors):
        head = ", ".join(f"{x:.4f}" for x in vector[:5])
        console.print(f"{text[:60]} dim={len(vector)} [{head}, …]", markup=False)


@app.command()
def status():
    """Show page, document and passage counts."""
    try:
        with _open_store() as store:
            with pipeline_step("stats"):
                stats = store.stats()
    except WebragError as e:
        _fail(e)

    table = Table(title="Corpus status")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Ingested pages", str(stats["pages_total"]))
    table.add_row("Pending pages", str(stats["pages_pending"]))
    table.add_row("Documents", str(stats["documents"]))
    table.add_row("Passages", str(stats["passages_total"]))
    table.add_row("Embedded passages", str(stats["passages_embedded"]))
    table.add_row("Completion", f"{stats['completion_rate']:.1%}")
    console.print(table)


@config_app.command("show")
def config_show():
    """Print the effective settings."""
    manager = get_config_manager()
    table = Table(title="webrag settings")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in manager.get_all().items():
        table.add_row(key, str(value))
    console.print(table)


@config_app.command("set")
def config_set(key: str, value: str):
    """Persist a setting."""
    manager = get_config_manager()
    try:
        manager.set(key, value)
    except (KeyError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Set[/] {key} = {manager.get(key)}")


@config_app.command("reset")
def config_reset(key: str):
    """Restore a setting to its default."""
    manager = get_config_manager()
    try:
        manager.reset(key)
    except KeyError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Reset[/] {key} = {manager.get(key)}")


@config_app.command("validate")
def config_validate():
    """Check the settings for problems."""
    result = get_config_manager().validate()
    for issue in result["issues"]:
        console.print(f"[red]✗[/] {issue}")
    for warning in result["warnings"]:
        console.print(f"[yellow]![/] {warning}")
    if not result["valid"]:
        raise typer.Exit(1)
    console.print("[green]✅ Configuration valid[/]")


if __name__ == "__main__":
    app()
