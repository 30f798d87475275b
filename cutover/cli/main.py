"""
Command-line interface for cutover.

Deploys a revision to an environment, rolls an environment back to its
previous revision, and shows the persisted deployment record. Exit codes
follow the failure kind of the outcome so scripts can branch on them.
"""

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..config import CutoverConfig, LogLevel, load_config
from ..enums import DeploymentState
from ..exceptions import CutoverError
from ..factory import build_orchestrator, build_store
from ..logger import LogConfig, setup_logging
from ..metrics import DeploymentMetrics
from ..models import DeploymentRecord, DeploymentReport, RollbackReport
from ..orchestrator import DeploymentOrchestrator
from ..revisions import resolve_revision_spec

console = Console()
err_console = Console(stderr=True)

_STATE_STYLES = {
    DeploymentState.SUCCEEDED: "green",
    DeploymentState.ROLLED_BACK: "yellow",
}


def _fail(ctx: click.Context, error: CutoverError) -> None:
    err_console.print(f"[red]Error: {error.message}[/red]")
    ctx.exit(error.kind.exit_code)


def _short(revision_id: Optional[str]) -> str:
    return revision_id[:12] if revision_id else "unknown"


def _run(orchestrator: DeploymentOrchestrator, environment: str, coro):
    """Run ``coro`` with SIGINT/SIGTERM mapped to cancellation of ``environment``."""

    def request_cancel() -> None:
        if orchestrator.cancel(environment):
            err_console.print(
                "[yellow]Cancellation requested, stopping at the next step[/yellow]"
            )

    async def runner():
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, request_cancel)
                installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass
        try:
            return await coro
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    return asyncio.run(runner())


def _print_deployment(report: DeploymentReport) -> None:
    style = _STATE_STYLES.get(report.state, "red")
    table = Table(title=f"Deployment {report.deployment_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Environment", report.environment)
    table.add_row("Revision", _short(report.revision_id))
    table.add_row("Image", report.image)
    table.add_row("States", " -> ".join(s.value for s in report.states))
    if report.error:
        table.add_row("Error", f"[red]{report.error.message}[/red]")
    if report.rollback:
        table.add_row("Rollback", report.rollback.state.value)
        if report.rollback.error:
            table.add_row("Rollback error", f"[red]{report.rollback.error.message}[/red]")
    console.print(table)

    console.print(f"[{style}]Final state: {report.state.value}[/{style}]")
    if not report.succeeded:
        console.print(f"Serving traffic: {_short(report.serving)}")


def _print_rollback(report: RollbackReport) -> None:
    style = "green" if report.succeeded else "red"
    console.print(
        f"Rolled back {report.environment} to {_short(report.target.revision_id if report.target else None)}"
        if report.succeeded
        else f"[red]Rollback of {report.environment} failed: {report.error.message}[/red]"
    )
    console.print(f"[{style}]Final state: {report.state.value}[/{style}]")
    console.print(f"Serving traffic: {_short(report.serving)}")


def _print_record(record: DeploymentRecord) -> None:
    table = Table(title=f"Environment {record.environment}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", record.status.value)
    for label, revision in (
        ("Active", record.active),
        ("Previous", record.previous),
        ("Candidate", record.candidate),
    ):
        table.add_row(label, f"{revision.short_id} ({revision.image})" if revision else "-")
    table.add_row("Deployed at", record.deployed_at.isoformat() if record.deployed_at else "-")
    table.add_row("Updated at", record.updated_at.isoformat())
    if record.last_outcome:
        table.add_row(
            "Last outcome",
            f"{record.last_outcome.get('operation')}: {record.last_outcome.get('state')}",
        )
    console.print(table)


@click.group()
@click.version_option(version=__version__, prog_name="cutover")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="CUTOVER_CONFIG",
    help="YAML configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--metrics-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write Prometheus metrics to this textfile on exit",
)
@click.pass_context
def cli(ctx, config_path: Optional[Path], verbose: bool, metrics_file: Optional[Path]):
    """cutover - blue/green deployments with automatic rollback"""
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
        observability = config.observability
        setup_logging(
            LogConfig(
                level=LogLevel.DEBUG if verbose else observability.log_level,
                format_type=observability.log_format,
                log_file=observability.log_file,
            )
        )
    except CutoverError as e:
        _fail(ctx, e)

    metrics = DeploymentMetrics()
    ctx.obj["config"] = config
    ctx.obj["metrics"] = metrics
    if metrics_file is not None:
        ctx.call_on_close(lambda: metrics.write_textfile(metrics_file))


@cli.command()
@click.argument("environment")
@click.argument("revision_spec")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), help="Probe window in seconds")
@click.option("--dry-run", is_flag=True, help="Run against the simulated backend without saving")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def deploy(ctx, environment: str, revision_spec: str, timeout: Optional[float], dry_run: bool, as_json: bool):
    """Deploy REVISION_SPEC (a YAML/JSON spec file or an image) to ENVIRONMENT."""
    config: CutoverConfig = ctx.obj["config"]

    try:
        env_config = config.environment(environment)
        spec = resolve_revision_spec(
            revision_spec, env_config.task_family, **config.revision_defaults_for_spec()
        )
        orchestrator = build_orchestrator(config, dry_run=dry_run, metrics=ctx.obj["metrics"])
        if dry_run:
            err_console.print("[blue]Dry run: simulated backend, nothing is saved[/blue]")
        report = _run(
            orchestrator,
            environment,
            orchestrator.deploy(environment, spec, probe_timeout=timeout),
        )
    except CutoverError as e:
        _fail(ctx, e)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_deployment(report)
    ctx.exit(report.exit_code)


@cli.command()
@click.argument("environment")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def rollback(ctx, environment: str, as_json: bool):
    """Restore the previous revision of ENVIRONMENT."""
    config: CutoverConfig = ctx.obj["config"]

    try:
        orchestrator = build_orchestrator(config, metrics=ctx.obj["metrics"])
        report = _run(orchestrator, environment, orchestrator.rollback(environment))
    except CutoverError as e:
        _fail(ctx, e)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_rollback(report)
    ctx.exit(report.exit_code)


@cli.command()
@click.argument("environment")
@click.option("--json", "as_json", is_flag=True, help="Print the record as JSON")
@click.pass_context
def status(ctx, environment: str, as_json: bool):
    """Show the deployment record of ENVIRONMENT."""
    config: CutoverConfig = ctx.obj["config"]

    try:
        config.environment(environment)
        record = build_store(config).load(environment)
    except CutoverError as e:
        _fail(ctx, e)

    if as_json:
        click.echo(json.dumps(record.to_dict() if record else None, indent=2))
    elif record is None:
        console.print(f"[yellow]No deployments recorded for {environment}[/yellow]")
    else:
        _print_record(record)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
