"""Command-line interface for the TopDash host agent."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .agent import Agent, run_agent
from .config import AGENT_VERSION, AgentConfig, load_config
from .errors import CollectionError, ConfigError
from .utils import setup_logging

app = typer.Typer(
    name="topdash-agent",
    help="Host monitoring agent that reports metrics and keeps itself up to date",
    add_completion=False,
)

console = Console()

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="YAML config file (defaults to environment)")


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


def _load(config_path: Optional[Path], log_level: Optional[str] = None) -> AgentConfig:
    """Load config or exit non-zero before anything touches the network."""
    try:
        config = load_config(str(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        raise typer.Exit(1)

    setup_logging(log_level or config.log_level, config.log_file)
    return config


@app.command()
def run(
    config_path: Optional[Path] = CONFIG_OPTION,
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help="Override LOG_LEVEL"),
):
    """Start the agent: report metrics and check for updates until stopped."""
    config = _load(config_path, log_level)
    raise typer.Exit(run_agent(config))


@app.command()
def collect(
    config_path: Optional[Path] = CONFIG_OPTION,
    send: bool = typer.Option(False, "--send", "-s", help="Also send the snapshot to the API"),
):
    """Collect one metrics snapshot and print it."""
    config = _load(config_path)

    async def _collect():
        async with Agent(config) as agent:
            snapshot = await agent.reporter.collect()
            result = await agent.reporter.send(snapshot) if send else None
            return snapshot, result

    try:
        snapshot, result = run_async(_collect())
    except CollectionError as e:
        console.print(f"[red]Error collecting metrics: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Metrics for {config.server_name}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")

    table.add_row("Server ID", snapshot.server_id)
    table.add_row("CPU", f"{snapshot.cpu_usage:.1f}%")
    table.add_row("Memory", f"{snapshot.memory_usage:.1f}%")
    table.add_row("Disk", f"{snapshot.disk_usage:.1f}%")
    table.add_row("Network In", f"{snapshot.network_in:.0f} B")
    table.add_row("Network Out", f"{snapshot.network_out:.0f} B")
    table.add_row("OS", snapshot.os_version)
    table.add_row("Site Status", str(snapshot.site_status) if snapshot.site_status else "-")

    console.print(table)

    if result is not None:
        if result.success:
            console.print("[green]Metrics sent[/green]")
        else:
            console.print(f"[red]Error sending metrics: {result.error}[/red]")
            raise typer.Exit(1)


@app.command("check-update")
def check_update(
    config_path: Optional[Path] = CONFIG_OPTION,
    apply: bool = typer.Option(False, "--apply", "-a", help="Install the update if one is offered"),
):
    """Ask the API whether a newer agent is available."""
    config = _load(config_path)

    async def _check():
        async with Agent(config) as agent:
            result = await agent.checker.check()
            outcome = None
            if apply and result.update_available:
                outcome = await agent.updater.apply(result.descriptor)
            return result, outcome

    result, outcome = run_async(_check())

    if not result.success:
        console.print(f"[red]Update check failed: {result.error}[/red]")
        raise typer.Exit(1)

    descriptor = result.descriptor
    if not descriptor.update_available:
        console.print(f"[green]Agent is up to date (v{AGENT_VERSION})[/green]")
        return

    console.print(f"[yellow]Update available: {AGENT_VERSION} -> {descriptor.latest_version}[/yellow]")
    console.print(f"  Download: {descriptor.download_url or '-'}")
    console.print(f"  Checksum: {descriptor.checksum or '-'}")

    if outcome is not None:
        if outcome.success:
            console.print(f"[green]Installed {descriptor.latest_version}, restart the agent to use it[/green]")
        else:
            console.print(f"[red]Update failed during {outcome.error.state}: {outcome.error}[/red]")
            raise typer.Exit(1)


@app.command()
def version():
    """Print the agent version."""
    console.print(AGENT_VERSION)


if __name__ == "__main__":
    app()
