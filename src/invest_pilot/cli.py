"""Click-based CLI for invest-pilot.

Thin wrapper around the session, engine and advisor. No reconciliation logic
lives here.
"""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from invest_pilot.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


async def _open_session(config):
    """Start a dashboard session from config."""
    from invest_pilot.session import DashboardSession

    return await DashboardSession.start(config)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _resolve_language(lang: str | None, config):
    from invest_pilot.core.models import Language

    return Language(lang) if lang else config.dashboard.language


def _format_change(value: float) -> str:
    color = "green" if value > 0 else "red" if value < 0 else "white"
    return f"[{color}]{value:+.2f}%[/{color}]"


def _assets_table(assets, title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Price", justify="right")
    table.add_column("Unit")
    table.add_column("Change", justify="right")
    table.add_column("Sources")
    for asset in assets:
        sources = ", ".join(asset.sources) if asset.sources else "-"
        style = "yellow" if asset.is_stale else ""
        table.add_row(
            asset.id,
            asset.name_cn,
            f"{asset.price:,.4f}".rstrip("0").rstrip("."),
            asset.unit,
            _format_change(asset.change_percent),
            f"[{style}]{sources}[/{style}]" if style else sources,
        )
    return table


def _assets_json(assets) -> str:
    return json.dumps(
        [a.model_dump(mode="json") for a in assets],
        indent=2,
        ensure_ascii=False,
    )


def _select(session, show_all: bool):
    return session.assets if show_all else session.visible_assets


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="INVEST_PILOT_CONFIG",
    default=None,
    help="Path to invest-pilot.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="invest-pilot")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Invest Pilot: multi-source market prices with AI fallback."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# assets
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--all", "show_all", is_flag=True, default=False, help="Show the full catalog.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def assets(ctx: click.Context, show_all: bool, as_json: bool) -> None:
    """Show the last known prices without fetching."""
    config = _load_config(ctx)

    async def _run():
        session = await _open_session(config)
        try:
            return _select(session, show_all)
        finally:
            await session.close()

    selected = _run_async(_run())
    if as_json:
        click.echo(_assets_json(selected))
    else:
        console.print(_assets_table(selected, "Last Known Prices"))


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--all", "show_all", is_flag=True, default=False, help="Show the full catalog.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def refresh(ctx: click.Context, show_all: bool, as_json: bool) -> None:
    """Run one reconciliation cycle and print the result."""
    config = _load_config(ctx)

    async def _run():
        session = await _open_session(config)
        try:
            if session.credential_warning:
                console.print(f"[yellow]{session.credential_warning}[/yellow]")
            with console.status("Fetching quotes..."):
                outcome = await session.refresh()
            return outcome, _select(session, show_all)
        finally:
            await session.close()

    outcome, selected = _run_async(_run())
    if as_json:
        click.echo(_assets_json(selected))
        return

    console.print(_assets_table(selected, "Reconciled Prices"))
    report = outcome.report
    if report is not None and not report.skipped:
        console.print(
            f"\n[bold green]Refresh complete.[/bold green] "
            f"live={len(report.live)} ai={len(report.ai)} "
            f"cache={len(report.cached)} offline={len(report.offline)} "
            f"({report.duration_seconds:.2f}s)"
        )


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--cycles", type=int, default=None, help="Stop after N cycles.")
@click.option("--all", "show_all", is_flag=True, default=False, help="Show the full catalog.")
@click.pass_context
def watch(ctx: click.Context, cycles: int | None, show_all: bool) -> None:
    """Refresh on the configured interval until interrupted."""
    config = _load_config(ctx)
    interval = config.dashboard.refresh_interval_seconds

    async def _run():
        session = await _open_session(config)
        cycle = 0

        def _show(outcome) -> None:
            nonlocal cycle
            cycle += 1
            console.print(
                _assets_table(_select(session, show_all), f"Cycle {cycle} (every {interval}s)")
            )

        try:
            await session.run_forever(on_update=_show, max_cycles=cycles)
        finally:
            await session.close()

    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("asset_id")
@click.option(
    "--timeframe",
    "-t",
    type=click.Choice(["1H", "1D", "1W", "1M", "1Y"], case_sensitive=False),
    default="1D",
    help="Chart period.",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, asset_id: str, timeframe: str, as_json: bool) -> None:
    """Print a period history series for one asset."""
    from invest_pilot.quotes.history import history_for_timeframe

    config = _load_config(ctx)

    async def _run():
        session = await _open_session(config)
        try:
            return session.get(asset_id)
        finally:
            await session.close()

    asset = _run_async(_run())
    if asset is None:
        raise click.BadParameter(f"Unknown asset: {asset_id}", param_hint="ASSET_ID")

    points = history_for_timeframe(asset.price, timeframe.upper())
    if as_json:
        click.echo(json.dumps([p.model_dump() for p in points], indent=2))
        return

    table = Table(title=f"{asset.name} ({timeframe.upper()})")
    table.add_column("Time")
    table.add_column("Value", justify="right")
    for point in points:
        table.add_row(point.time, f"{point.value:.4f}")
    console.print(table)


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("asset_id")
@click.option("--lang", type=click.Choice(["zh", "en"]), default=None, help="Output language.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def analyze(ctx: click.Context, asset_id: str, lang: str | None, as_json: bool) -> None:
    """AI analysis of one asset."""
    config = _load_config(ctx)
    language = _resolve_language(lang, config)

    async def _run():
        session = await _open_session(config)
        try:
            asset = session.get(asset_id)
            if asset is None:
                return None, None
            return asset, await session.advisor.analyze_asset(asset, language)
        finally:
            await session.close()

    asset, analysis = _run_async(_run())
    if asset is None:
        raise click.BadParameter(f"Unknown asset: {asset_id}", param_hint="ASSET_ID")

    if as_json:
        click.echo(json.dumps(analysis.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    console.print(f"[bold]{asset.display_name(language)}[/bold] {asset.price} {asset.unit}")
    console.print(f"Sentiment: [bold]{analysis.sentiment.value}[/bold]")
    console.print(f"Key levels: {analysis.key_levels}")
    console.print(analysis.summary)
    console.print(f"[italic]{analysis.advice}[/italic]")
    if analysis.fallback:
        console.print("[yellow]AI unavailable; rule-based analysis shown.[/yellow]")


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("query")
@click.option("--asset", "asset_id", default=None, help="Asset the question is about.")
@click.option("--lang", type=click.Choice(["zh", "en"]), default=None, help="Output language.")
@click.pass_context
def ask(ctx: click.Context, query: str, asset_id: str | None, lang: str | None) -> None:
    """Ask the AI assistant a question with live prices as context."""
    config = _load_config(ctx)
    language = _resolve_language(lang, config)

    async def _run():
        session = await _open_session(config)
        try:
            selected = session.get(asset_id) if asset_id else None
            return await session.advisor.ask(
                query, session.assets, language, selected=selected
            )
        finally:
            await session.close()

    click.echo(_run_async(_run()))


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address.")
@click.option("--port", "-p", type=int, default=None, help="Port number.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the REST API server."""
    import uvicorn

    from invest_pilot.api.app import create_app

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    console.print(f"Starting invest-pilot API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(create_app(config), host=host, port=port)
