"""Command-line interface for chartpair."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from chartpair import __version__
from chartpair.config import ChartpairSettings, load_settings
from chartpair.models import PairFilter, SubmissionOutcome

app = typer.Typer(
    name="chartpair",
    help="Paired-chart survey: pair discovery, evaluation state and submission.",
    no_args_is_help=True,
)
console = Console(width=min(100, Console().width))


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"chartpair {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version", "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Paired-chart survey: pair discovery, evaluation state and submission."""


def _load(**overrides: object) -> ChartpairSettings:
    """Load settings, turning a bad option value into a clean exit."""
    try:
        return load_settings(**overrides)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2) from exc


# ---------------------------------------------------------------------------
# Resolve command
# ---------------------------------------------------------------------------


@app.command()
def resolve(
    dataset: Annotated[
        str | None,
        typer.Option("--dataset", "-d", help="Only this dataset key."),
    ] = None,
    summary: Annotated[
        int | None,
        typer.Option("--summary", "-s", help="Only summary sets with this summary number."),
    ] = None,
    question: Annotated[
        int | None,
        typer.Option("--question", "-q", help="Only summary sets with this question number."),
    ] = None,
    mode: Annotated[
        str | None,
        typer.Option("--mode", "-m", help="Deployment mode: auto, probe or static."),
    ] = None,
    base_url: Annotated[
        str | None,
        typer.Option("--base-url", help="Asset root URL (probe mode and image links)."),
    ] = None,
    manifest: Annotated[
        Path | None,
        typer.Option("--manifest", help="Static manifest JSON (implies static mode)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Discover the chart pairs available to raters and list them."""
    from chartpair.logging import setup_logging
    from chartpair.oracle import select_strategy
    from chartpair.resolver import PairResolver, pair_statistics

    settings = _load(
        deployment_mode=mode,
        asset_base_url=base_url,
        manifest_path=manifest,
    )
    setup_logging(verbose=verbose, mode=settings.deployment_mode)

    pair_filter = PairFilter(dataset=dataset, summary=summary, question=question)
    strategy = select_strategy(settings)
    resolver = PairResolver(
        strategy,
        max_pairs=settings.max_pairs,
        base_url=settings.asset_base_url,
    )

    async def _run() -> list:
        try:
            return await resolver.resolve_all(pair_filter)
        finally:
            await strategy.aclose()

    pairs = asyncio.run(_run())

    if not pairs:
        console.print(f"[yellow]No pairs found[/yellow] [dim]({strategy.mode} mode)[/dim]")
        raise typer.Exit(1)

    table = Table(title=f"{len(pairs)} pairs [dim]({strategy.mode} mode)[/dim]")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Dataset")
    table.add_column("Set")
    table.add_column("Pair")
    table.add_column("Chart A")
    table.add_column("Chart B")
    for index, pair in enumerate(pairs, start=1):
        pair_label = pair.pair_dir + (" [dim](virtual)[/dim]" if pair.virtual else "")
        table.add_row(
            str(index),
            pair.metadata.dataset,
            pair.summary_set,
            pair_label,
            pair.chart_a.name,
            pair.chart_b.name,
        )
    console.print(table)

    stats = pair_statistics(pairs)
    for name, count in stats.by_dataset.items():
        console.print(f"  {name.ljust(30)} [dim]{count} pairs[/dim]")
    console.print(f"  [dim]{stats.total_images} images[/dim]")


# ---------------------------------------------------------------------------
# Manifest command
# ---------------------------------------------------------------------------


@app.command()
def manifest(
    asset_root: Annotated[
        Path,
        typer.Argument(help="Asset tree: <dataset>/<summary_set>/pair<N>/<image>."),
    ],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Where to write the manifest JSON."),
    ] = None,
) -> None:
    """Build a static asset manifest for hosts without directory listing."""
    from chartpair.manifest import (
        LOOSE_IMAGES_KEY,
        MANIFEST_FILENAME,
        build_static_manifest,
        write_static_manifest,
    )

    try:
        static = build_static_manifest(asset_root)
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    target = output or asset_root / MANIFEST_FILENAME
    write_static_manifest(static, target)

    pair_count = 0
    image_count = 0
    for summaries in static.datasets.values():
        for table in summaries.values():
            for key, images in table.items():
                if key != LOOSE_IMAGES_KEY:
                    pair_count += 1
                image_count += len(images)
    console.print(f"Wrote [bold]{target}[/bold]")
    console.print(
        f"  {len(static.datasets)} datasets, {pair_count} pair dirs, {image_count} images"
    )


# ---------------------------------------------------------------------------
# Status command
# ---------------------------------------------------------------------------


@app.command()
def status(
    state_dir: Annotated[
        Path,
        typer.Argument(help="Directory holding the .chartpair/ state folder."),
    ] = Path("."),
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Show the categories still to do."),
    ] = False,
) -> None:
    """Show per-pair progress from the saved state (read-only)."""
    from chartpair.status import get_state_status

    state_status = get_state_status(state_dir)
    if state_status is None:
        console.print(f"No saved evaluations in [bold]{state_dir}[/bold].")
        raise typer.Exit(1)

    console.print(f"\n  [bold]{state_status.state_file}[/bold]\n")
    for info in state_status.pairs:
        if info.submitted:
            icon = "[green]✓[/green]"
        elif info.is_complete:
            icon = "[yellow]⚠[/yellow]"
        else:
            icon = "[dim]✗[/dim]"
        console.print(f"  {icon} {info.pair_id.ljust(48)} [dim]{info.completed}/{info.total}[/dim]")
        if verbose and info.missing:
            console.print(f"      [dim]to do: {', '.join(info.missing)}[/dim]")

    console.print(
        f"\n  {state_status.pairs_complete}/{len(state_status.pairs)} complete, "
        f"{state_status.pairs_submitted} submitted"
    )
    if state_status.pending:
        console.print(
            f"  [yellow]{len(state_status.pending)} awaiting submission[/yellow] "
            f"[dim](chartpair retry)[/dim]"
        )
    console.print()


# ---------------------------------------------------------------------------
# Retry and export commands
# ---------------------------------------------------------------------------


@app.command()
def retry(
    state_dir: Annotated[
        Path,
        typer.Argument(help="Directory holding the .chartpair/ state folder."),
    ] = Path("."),
    submit_url: Annotated[
        str | None,
        typer.Option("--submit-url", help="Collection endpoint (overrides CHARTPAIR_SUBMIT_URL)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Re-send complete pairs whose submission failed earlier."""
    from chartpair.gateway import SubmissionGateway, load_rater_id
    from chartpair.logging import setup_logging
    from chartpair.store import EvaluationStore

    settings = _load(submit_url=submit_url, state_dir=state_dir)
    setup_logging(state_dir=settings.state_dir, verbose=verbose, mode=settings.deployment_mode)

    store = EvaluationStore.for_state_dir(settings.state_dir)
    store.restore()
    if not store.pending_submission():
        console.print("Nothing to submit.")
        return

    gateway = SubmissionGateway(
        store,
        settings.submit_url,
        timeout=settings.submit_timeout,
        rater_id=load_rater_id(settings.state_dir),
    )

    async def _run() -> dict[str, SubmissionOutcome]:
        try:
            return await gateway.retry_pending()
        finally:
            await gateway.aclose()

    outcomes = asyncio.run(_run())

    failed = 0
    for pair_id, outcome in outcomes.items():
        if outcome == SubmissionOutcome.SENT:
            console.print(f"  [green]✓[/green] {pair_id}")
        else:
            failed += 1
            reason = gateway.errors.get(pair_id, outcome.value)
            console.print(f"  [red]✗[/red] {pair_id} [dim]{reason}[/dim]")
    if failed:
        console.print(f"[red]{failed} of {len(outcomes)} submissions failed[/red]")
        raise typer.Exit(1)


@app.command()
def ping(
    submit_url: Annotated[
        str | None,
        typer.Option("--submit-url", help="Collection endpoint (overrides CHARTPAIR_SUBMIT_URL)."),
    ] = None,
) -> None:
    """Send a test row to the collection endpoint and report whether it was accepted."""
    from chartpair.gateway import SubmissionGateway
    from chartpair.store import EvaluationStore

    settings = _load(submit_url=submit_url)
    gateway = SubmissionGateway(
        EvaluationStore.for_state_dir(settings.state_dir),
        settings.submit_url,
        timeout=settings.submit_timeout,
    )

    async def _run() -> str | None:
        try:
            return await gateway.check_endpoint()
        finally:
            await gateway.aclose()

    error = asyncio.run(_run())
    if error is not None:
        console.print(f"[red]✗[/red] {settings.submit_url or '(no URL)'} [dim]{error}[/dim]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {settings.submit_url} accepted a test row")


@app.command()
def export(
    state_dir: Annotated[
        Path,
        typer.Argument(help="Directory holding the .chartpair/ state folder."),
    ] = Path("."),
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Export file to write."),
    ] = Path("chartpair-export.json"),
) -> None:
    """Write every saved evaluation to a standalone JSON file."""
    from chartpair.gateway import default_client_metadata
    from chartpair.store import EvaluationStore

    store = EvaluationStore.for_state_dir(state_dir)
    if not store.path.exists():
        console.print(f"No saved evaluations in [bold]{state_dir}[/bold].")
        raise typer.Exit(1)
    store.restore()

    count = store.export_evaluations(output, client=default_client_metadata())
    console.print(f"Exported {count} pair evaluations to [bold]{output}[/bold]")


# ---------------------------------------------------------------------------
# Serve command
# ---------------------------------------------------------------------------


@app.command()
def serve(
    asset_dir: Annotated[
        Path | None,
        typer.Option("--asset-dir", "-a", help="Local asset tree to serve at /pairs."),
    ] = None,
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", help="Where evaluation state and logs are kept."),
    ] = None,
    mode: Annotated[
        str | None,
        typer.Option("--mode", "-m", help="Deployment mode: auto, probe or static."),
    ] = None,
    base_url: Annotated[
        str | None,
        typer.Option("--base-url", help="Asset root URL."),
    ] = None,
    submit_url: Annotated[
        str | None,
        typer.Option("--submit-url", help="Collection endpoint for completed pairs."),
    ] = None,
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to serve on."),
    ] = 8000,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Launch the survey API server."""
    import uvicorn

    from chartpair.server.app import create_app

    if asset_dir is not None and base_url is None:
        base_url = f"http://127.0.0.1:{port}/pairs"

    settings = _load(
        asset_dir=asset_dir,
        state_dir=state_dir,
        deployment_mode=mode,
        asset_base_url=base_url,
        submit_url=submit_url,
    )

    console.print(f"\n  API: [bold cyan]http://127.0.0.1:{port}/api/docs[/bold cyan]\n")

    app_instance = create_app(settings, verbose=verbose)
    uvicorn.run(
        app_instance,
        host="127.0.0.1",
        port=port,
        log_level="info" if verbose else "warning",
    )
