from __future__ import annotations

from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import ConfigurationError, SearchFailedError
from .logging import setup_logging
from .pipeline import IngestionPipeline
from .repositories import get_repository
from .settings import DEFAULT_MANUAL_KEYWORDS, load_settings
from .youtube import YouTubeSource

app = typer.Typer(
    add_completion=False,
    help="vibestream: YouTube shorts ingestion pipeline + feed API",
    rich_markup_mode="rich",
)
console = Console()


def _build_pipeline(s) -> IngestionPipeline:
    try:
        source = YouTubeSource(s.YOUTUBE_API_KEY, timeout=s.VS_SOURCE_TIMEOUT_SEC)
        repo = get_repository(s)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)
    return IngestionPipeline.from_settings(s, source, repo)


def _print_summary(title: str, summary: dict[str, int]) -> None:
    t = Table(title=f"[bold]{title}[/bold]", show_header=False)
    t.add_column("Step", style="bold")
    t.add_column("Count", style="cyan", justify="right")
    for k, v in summary.items():
        t.add_row(k, f"{v:,}")
    console.print(t)


# ═══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════════

@app.command("status", help="[bold cyan]S[/bold cyan]how store stats and configuration")
def status():
    """Show store stats and current configuration."""
    s = load_settings()

    console.print(Panel.fit(
        "\n".join([
            f"[bold]Backend:[/bold]      {s.VS_DB_BACKEND_MODE}",
            f"[bold]Database:[/bold]     {s.VS_DB_PATH}",
            f"[bold]API Server:[/bold]   http://{s.VS_API_HOST}:{s.VS_API_PORT}",
            f"[bold]YouTube key:[/bold]  {'[green]found[/green]' if s.YOUTUBE_API_KEY else '[red]missing[/red]'}",
            "",
            "[dim]Auto fetch:[/dim]",
            f"  enabled:  {s.VS_SCHEDULE_ENABLED}",
            f"  every:    {s.VS_SCHEDULE_INTERVAL_SEC}s",
            f"  regions:  {', '.join(s.schedule_regions)}",
        ]),
        title="[bold]Configuration[/bold]"
    ))

    try:
        stats = get_repository(s).stats()
    except Exception as e:
        console.print(f"[yellow]Store not ready:[/yellow] {e}")
        return

    t = Table(title="[bold]Store Stats[/bold]", show_header=False)
    t.add_column("Metric", style="bold")
    t.add_column("Value", style="cyan", justify="right")
    t.add_row("Total videos", f"{stats['counts']['items']:,}")
    t.add_row("Shorts", f"{stats['counts']['shorts']:,}")
    for region, n in stats["regions"].items():
        t.add_row(f"  region {region or '-'}", f"{n:,}")
    t.add_row("Last update", str(stats["last_updated_at"] or "[dim]never[/dim]"))
    console.print(t)


@app.command("run", help="[bold cyan]R[/bold cyan]un the API server")
@app.command("serve", hidden=True)  # Alias
def run(
    host: Annotated[
        Optional[str],
        typer.Option(help="Host to bind"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option(help="Port to bind"),
    ] = None,
):
    """Start the FastAPI server (and the auto-fetch scheduler)."""
    import uvicorn

    s = load_settings()
    host = host or s.VS_API_HOST
    port = port or s.VS_API_PORT

    log_file = setup_logging(s, serve=True)

    console.print(Panel.fit(
        f"[bold]API Server starting...[/bold]\n\n"
        f"  URL:  [cyan]http://{host}:{port}[/cyan]\n"
        f"  Docs: [cyan]http://{host}:{port}/docs[/cyan]\n\n"
        f"  Logs: [cyan]{log_file}[/cyan]\n\n"
        f"[dim]Press CTRL+C to stop[/dim]",
        title="[bold green]vibestream API[/bold green]"
    ))

    uvicorn.run(
        "vibestream.app:app",
        host=host,
        port=port,
        reload=False,
        access_log=False,
        log_config=None,
    )


@app.command("fetch", help="[bold cyan]F[/bold cyan]etch shorts for keywords now")
def fetch(
    keyword: Annotated[
        Optional[list[str]],
        typer.Option("--keyword", "-k", help="Search keyword (repeatable)"),
    ] = None,
    region: Annotated[Optional[str], typer.Option("--region", "-r", help="Region code")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Results per keyword (max 25)")] = 25,
):
    """On-demand ingestion for an explicit keyword list."""
    s = load_settings()
    setup_logging(s, to_file=False)
    pipeline = _build_pipeline(s)
    keywords = list(keyword or DEFAULT_MANUAL_KEYWORDS)
    reg = (region or s.VS_DEFAULT_REGION).upper()

    console.print(f"[dim]Fetching {len(keywords)} keyword(s) for region {reg}...[/dim]")
    try:
        res = pipeline.run_keywords(keywords, reg, limit=limit)
    except SearchFailedError as e:
        console.print(f"[red]Search failed:[/red] {e}")
        raise typer.Exit(code=1)

    _print_summary("Fetch results", res.summary())
    console.print(f"[bold green]✓[/bold green] Added [cyan]{res.upserted}[/cyan] videos")


@app.command("trending", help="[bold cyan]T[/bold cyan]rending shorts for a region")
def trending(
    region: Annotated[Optional[str], typer.Option("--region", "-r", help="Region code")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max results (max 50)")] = 20,
):
    """Ingest the most viewed recent shorts for a region."""
    s = load_settings()
    setup_logging(s, to_file=False)
    pipeline = _build_pipeline(s)
    reg = (region or s.VS_DEFAULT_REGION).upper()
    try:
        res = pipeline.run_trending(reg, limit=limit)
    except SearchFailedError as e:
        console.print(f"[red]Search failed:[/red] {e}")
        raise typer.Exit(code=1)

    t = Table(title=f"[bold]Trending ({reg})[/bold]")
    t.add_column("ID", style="cyan")
    t.add_column("Channel")
    t.add_column("Views", justify="right")
    t.add_column("Title")
    for r in res.records:
        t.add_row(r.id, r.channel_name, "-" if r.view_count is None else f"{r.view_count:,}", r.title[:60])
    console.print(t)


@app.command("autofetch", help="Run one scheduled auto-fetch pass now")
def autofetch(
    region: Annotated[
        Optional[list[str]],
        typer.Option("--region", "-r", help="Region code (repeatable; default VS_SCHEDULE_REGIONS)"),
    ] = None,
):
    """Region-by-region pass with the fixed keyword set."""
    s = load_settings()
    setup_logging(s, to_file=False)
    pipeline = _build_pipeline(s)
    regions = [r.upper() for r in (region or s.schedule_regions)]
    outcome = pipeline.run_scheduled(regions, s.schedule_keywords)

    t = Table(title="[bold]Auto fetch[/bold]")
    t.add_column("Region", style="bold")
    t.add_column("Result")
    t.add_column("Saved", style="cyan", justify="right")
    for reg, out in outcome.items():
        if out.get("ok"):
            t.add_row(reg, "[green]ok[/green]", str(out.get("upserted", 0)))
        else:
            t.add_row(reg, f"[red]{out.get('error')}[/red]", "-")
    console.print(t)


@app.command("feed", help="Show the most recently ingested videos")
def feed(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max rows")] = 20,
):
    s = load_settings()
    page = get_repository(s).list_recent(limit=limit)

    t = Table(title="[bold]Feed[/bold]")
    t.add_column("ID", style="cyan")
    t.add_column("Ingested")
    t.add_column("Channel")
    t.add_column("Title")
    for row in page.items:
        t.add_row(str(row["id"]), str(row["created_at"]), str(row.get("channel_name") or ""), str(row.get("title") or "")[:60])
    console.print(t)
    if page.next_cursor:
        console.print(f"[dim]More available (cursor: {page.next_cursor})[/dim]")


@app.command("db", help="[bold cyan]D[/bold cyan]atabase init (create schema)")
@app.command("init", hidden=True)  # Alias
def database():
    s = load_settings()
    repo = get_repository(s)
    console.print(f"[green]✓[/green] {repo.backend_name} store ready")


def main():
    app()
