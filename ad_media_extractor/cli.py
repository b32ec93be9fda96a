"""CLI interface for the Ad Media Extractor.

Usage:
    ad-media extract "https://www.facebook.com/ads/archive/render_ad/?id=..."
    ad-media extract URL --download --json    # Persist media, print JSON report
    ad-media batch urls.txt --download        # Resolve many snapshot URLs
    ad-media serve --port 5004                # Run the HTTP API
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from ad_media_extractor.errors import ExtractionError
from ad_media_extractor.models import BatchItemResult, ExtractionRequest
from ad_media_extractor.utils.config import load_config, log_file_from
from ad_media_extractor.utils.logging import setup_logging

app = typer.Typer(
    name="ad-media",
    help="Resolve the highest-quality video or image behind ad snapshot pages.",
    add_completion=False,
)
console = Console()


def read_batch_file(path: Path) -> list[str]:
    """Snapshot URLs from a text file (one per line) or a JSON list.

    JSON lists may hold plain URL strings or ad objects carrying an
    ``ad_snapshot_url`` field, as returned by the ads_archive endpoint.
    """
    text = path.read_text()
    stripped = text.lstrip()
    if stripped.startswith("[") or stripped.startswith("{"):
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get("data", [])
        urls = []
        for entry in data:
            if isinstance(entry, str):
                urls.append(entry)
            elif isinstance(entry, dict) and entry.get("ad_snapshot_url"):
                urls.append(entry["ad_snapshot_url"])
        return urls

    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]


def _display_batch_table(results: list[BatchItemResult]) -> None:
    table = Table(title=f"Batch Results ({len(results)})")
    table.add_column("#", style="cyan", width=4)
    table.add_column("Type", style="magenta", width=6)
    table.add_column("Media / Error")
    table.add_column("Local file", style="green")

    for i, item in enumerate(results, 1):
        if item.ok:
            table.add_row(
                str(i),
                item.result.type.value,
                item.result.url[:80],
                str(item.cached.local_path) if item.cached else "",
            )
        else:
            table.add_row(str(i), "[red]✗[/]", f"[red]{item.error_kind or 'ERROR'}[/] {item.error}", "")

    console.print(table)


@app.command()
def extract(
    url: str = typer.Argument(..., help="Ad snapshot page URL"),
    download: bool = typer.Option(False, "--download", "-d", help="Save the media to the cache"),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config TOML file"
    ),
    headless: bool = typer.Option(True, "--headless/--no-headless", help="Run browser headless"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level"),
):
    """Resolve the media behind a single ad snapshot page."""
    config = load_config(config_path)
    setup_logging(log_level, log_file_from(config))
    config.setdefault("browser", {})["headless"] = headless

    from ad_media_extractor.engine.extractor import MediaExtractor

    async def _run():
        async with MediaExtractor(config) as extractor:
            if download:
                return await extractor.extract_and_store(url)
            return await extractor.extract(ExtractionRequest(source_url=url)), None

    try:
        report, cached = asyncio.run(_run())
    except ExtractionError as e:
        if as_json:
            console.print_json(
                data={
                    "error": e.message,
                    "kind": e.kind.value,
                    "logs": [ev.model_dump(mode="json") for ev in e.events],
                }
            )
        else:
            console.print(f"[red]{e.kind.value}[/]: {e.message}")
        raise typer.Exit(1)

    if as_json:
        payload = report.model_dump(mode="json")
        payload["allUrls"] = report.all_urls
        if cached is not None:
            payload["cached"] = cached.model_dump(mode="json")
        console.print_json(data=payload)
        return

    console.print(f"\n[bold]Type:[/] [cyan]{report.result.type.value}[/]")
    console.print(f"[bold]URL:[/] {report.result.url}")
    if len(report.all_urls) > 1:
        console.print(f"[dim]{len(report.all_urls) - 1} other candidate(s)[/]")
    if cached is not None:
        console.print(f"[bold]Saved:[/] [green]{cached.local_path}[/] ({cached.size_bytes:,} bytes)")


@app.command()
def batch(
    urls_file: Path = typer.Argument(
        ..., help="Text file with one URL per line, or a JSON list of URLs / ads"
    ),
    download: bool = typer.Option(False, "--download", "-d", help="Save each media to the cache"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save results to JSON file"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config TOML file"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Log level"),
):
    """Resolve media for many ad snapshot URLs, one at a time."""
    config = load_config(config_path)
    setup_logging(log_level, log_file_from(config))

    if not urls_file.exists():
        console.print(f"[red]File not found: {urls_file}[/]")
        raise typer.Exit(1)

    try:
        urls = read_batch_file(urls_file)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {urls_file}: {e}[/]")
        raise typer.Exit(1)

    if not urls:
        console.print("[yellow]No URLs found[/]")
        raise typer.Exit(1)

    console.print(f"\n[bold]Ad Media Extractor - Batch Mode[/]")
    console.print(f"URLs: [cyan]{len(urls)}[/]")
    console.print()

    from ad_media_extractor.batch import BatchLoader
    from ad_media_extractor.engine.extractor import MediaExtractor

    async def _run() -> list[BatchItemResult]:
        async with MediaExtractor(config) as extractor:
            return await _run_batch(BatchLoader(config, extractor, download=download))

    async def _run_batch(loader: BatchLoader) -> list[BatchItemResult]:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Extracting", total=len(urls))

            def _advance(done: int, total: int, item: BatchItemResult) -> None:
                progress.update(task, completed=done)

            try:
                return await loader.run(urls, on_progress=_advance)
            except asyncio.CancelledError:
                loader.cancel()
                raise

    try:
        results = asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Batch cancelled[/]")
        raise typer.Exit(130)

    _display_batch_table(results)
    ok = sum(1 for r in results if r.ok)
    console.print(f"\n[bold]Resolved:[/] [green]{ok}[/]/{len(results)}")

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w") as f:
            json.dump([r.model_dump(mode="json") for r in results], f, indent=2, default=str)
        console.print(f"Results saved to [cyan]{output}[/]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config TOML file"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level"),
):
    """Run the HTTP API."""
    config = load_config(config_path)
    setup_logging(log_level, log_file_from(config))

    from ad_media_extractor.server.app import run_server

    run_server(config, host=host, port=port)


if __name__ == "__main__":
    app()
