"""CLI entry point for the trade intelligence core."""

from __future__ import annotations

import json
from typing import Any

import click

from .core.errors import IntelligenceError


def _service(ctx: click.Context) -> Any:
    from .core.config import load_settings
    from .service import IntelligenceService

    opts = ctx.obj
    overrides: dict[str, Any] = {}
    if opts["ledger"]:
        overrides["ledger"] = {"path": opts["ledger"]}
    settings = load_settings(opts["config"], overrides)
    return IntelligenceService.from_settings(settings)


def _echo(payload: Any) -> None:
    from .core.serialization import to_jsonable

    click.echo(json.dumps(to_jsonable(payload), indent=2, sort_keys=True))


def _run(ctx: click.Context, fn: Any) -> None:
    try:
        _echo(fn(_service(ctx)))
    except IntelligenceError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("--config", default="configs/intelligence.toml", help="Config file path")
@click.option("--ledger", default=None, help="JSONL ledger path override")
@click.option("--log-level", default=None, help="Enable logging at this level")
@click.pass_context
def main(ctx: click.Context, config: str, ledger: str | None, log_level: str | None) -> None:
    """Trade intelligence: performance, calibration and signal weights."""
    ctx.ensure_object(dict)
    ctx.obj.update(config=config, ledger=ledger, log_level=log_level)
    if log_level:
        from .observability.logger import setup_logging

        setup_logging(log_level, format="console")


@main.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Recompute every derived table from the ledger."""
    _run(ctx, lambda svc: svc.refresh())


@main.command()
@click.pass_context
def engines(ctx: click.Context) -> None:
    """Per-engine performance metrics."""
    _run(ctx, lambda svc: svc.engine_metrics())


@main.command()
@click.pass_context
def calibration(ctx: click.Context) -> None:
    """Confidence calibration report."""
    _run(ctx, lambda svc: svc.calibration_report())


@main.command()
@click.pass_context
def weights(ctx: click.Context) -> None:
    """Dynamic signal weight summary."""
    _run(ctx, lambda svc: svc.signal_weight_summary())


@main.command()
@click.argument("symbol")
@click.pass_context
def symbol(ctx: click.Context, symbol: str) -> None:
    """Historical intelligence for one symbol."""
    _run(ctx, lambda svc: svc.symbol_intelligence(symbol))


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Platform-wide historical statistics."""
    _run(ctx, lambda svc: svc.platform_stats())


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Platform health summary."""
    _run(ctx, lambda svc: svc.health_summary())


@main.command()
@click.argument("signal")
@click.argument("weight", type=float, required=False)
@click.option("--remove", is_flag=True, help="Remove the override instead")
@click.pass_context
def override(ctx: click.Context, signal: str, weight: float | None, remove: bool) -> None:
    """Set (or --remove) a manual signal weight override."""
    if remove:
        _run(ctx, lambda svc: {"signal": signal, "removed": svc.remove_override(signal)})
        return
    if weight is None:
        raise click.UsageError("WEIGHT is required unless --remove is given")
    _run(ctx, lambda svc: svc.set_override(signal, weight))


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Expose Prometheus metrics")
@click.pass_context
def schedule(ctx: click.Context, metrics: bool) -> None:
    """Run the periodic refresh loop until interrupted."""
    import asyncio

    from .observability.logger import setup_logging
    from .observability.metrics import start_metrics_server
    from .pipeline.scheduler import RefreshScheduler

    svc = _service(ctx)
    obs = svc.settings.observability
    setup_logging(ctx.obj["log_level"] or obs.log_level, format=obs.log_format)
    if metrics:
        start_metrics_server(obs.metrics_port)

    async def run() -> None:
        scheduler = RefreshScheduler(svc.settings.scheduler, svc.refresh)
        await scheduler.start()
        try:
            while scheduler.is_running:
                await asyncio.sleep(60)
        finally:
            await scheduler.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("Scheduler stopped", err=True)


if __name__ == "__main__":
    main()
