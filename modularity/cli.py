"""
Modularity - Inspection CLI

Command-line interface for inspecting and running modular applications.

TARGET is ``package.module:RootModule``.
"""
import asyncio
import importlib
import json
from enum import Enum
from pathlib import Path
from typing import Any, Hashable, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from modularity.bootstrap import ApplicationBuilder
from modularity.configuration import ConfigurationBuilder
from modularity.descriptor import ModuleState
from modularity.errors import ModularityError, ModuleError, identity_name
from modularity.lifecycle import FailurePolicy
from observability import setup_observability, shutdown_observability
from observability.logging import LoggingConfig, setup_logging

# Initialize app
app = typer.Typer(
    name="modularity",
    help="Modularity - inspect and run modular applications",
    add_completion=False,
)

console = Console()


class OutputFormat(str, Enum):
    """Output format options."""
    TABLE = "table"
    JSON = "json"


class PolicyOption(str, Enum):
    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"


_STATE_STYLES = {
    ModuleState.INITIALIZED: "green",
    ModuleState.SHUT_DOWN: "green",
    ModuleState.SERVICES_CONFIGURED: "yellow",
    ModuleState.REGISTERED: "dim",
    ModuleState.FAILED: "red",
}


def _configure_logging(verbose: bool) -> None:
    setup_logging(LoggingConfig(level="DEBUG" if verbose else "WARNING", json_format=False))


def load_target(target: str) -> Hashable:
    """Import ``package.module:Attribute`` and return the attribute."""
    module_path, separator, attribute = target.partition(":")
    if not separator or not module_path or not attribute:
        raise typer.BadParameter(
            f"Expected 'package.module:RootModule', got {target!r}", param_hint="TARGET"
        )
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise typer.BadParameter(f"Cannot import '{module_path}': {e}", param_hint="TARGET")

    value: Any = module
    for part in attribute.split("."):
        try:
            value = getattr(value, part)
        except AttributeError:
            raise typer.BadParameter(
                f"'{module_path}' has no attribute '{attribute}'", param_hint="TARGET"
            )
    return value


@app.command()
def order(
    target: str = typer.Argument(..., help="Root module, as package.module:RootModule"),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--output", "-o", help="Output format"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Print the resolved startup order."""
    _configure_logging(verbose)
    root = load_target(target)

    try:
        resolved = ApplicationBuilder.create().use_root_module(root).resolve()
    except ModuleError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    if output == OutputFormat.JSON:
        console.print_json(
            json.dumps(
                [
                    {
                        "position": position,
                        "name": descriptor.name,
                        "priority": descriptor.priority,
                        "dependencies": [identity_name(d) for d in descriptor.dependencies],
                    }
                    for position, descriptor in enumerate(resolved, start=1)
                ]
            )
        )
        return

    table = Table(title=f"Startup order ({len(resolved)} modules)")
    table.add_column("#", justify="right")
    table.add_column("Module", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Depends on")

    for position, descriptor in enumerate(resolved, start=1):
        table.add_row(
            str(position),
            descriptor.name,
            str(descriptor.priority),
            ", ".join(identity_name(d) for d in descriptor.dependencies) or "-",
        )

    console.print(table)


@app.command()
def check(
    target: str = typer.Argument(..., help="Root module, as package.module:RootModule"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Resolve dependencies only; exit 1 on missing or circular dependencies."""
    _configure_logging(verbose)
    root = load_target(target)

    try:
        resolved = ApplicationBuilder.create().use_root_module(root).resolve()
    except ModuleError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        for suggestion in e.suggestions:
            console.print(f"  [dim]{suggestion}[/dim]")
        raise typer.Exit(1)

    console.print(f"[green]✓ {len(resolved)} modules resolved[/green]")


@app.command()
def run(
    target: str = typer.Argument(..., help="Root module, as package.module:RootModule"),
    environment: str = typer.Option("Production", "--environment", "-e", help="Environment name"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON configuration file"),
    failure_policy: PolicyOption = typer.Option(
        PolicyOption.FAIL_FAST, "--failure-policy", help="Startup failure policy"
    ),
    trace: bool = typer.Option(False, "--trace", help="Print lifecycle spans to the console"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Build the application, print module states, then shut it down."""
    if trace:
        setup_observability(
            exporter="console",
            log_level="DEBUG" if verbose else "WARNING",
            json_logs=False,
            environment=environment,
        )
    else:
        _configure_logging(verbose)
    root = load_target(target)

    configuration = ConfigurationBuilder()
    if config is not None:
        configuration.add_json_file(config)

    try:
        builder = (
            ApplicationBuilder.create()
            .with_environment(environment)
            .with_failure_policy(FailurePolicy.parse(failure_policy.value))
            .with_configuration(configuration)
            .use_root_module(root)
        )
        exit_code = asyncio.run(_run_host(builder))
    except ModularityError as e:
        console.print(f"[red]✗ {e}[/red]")
        states = getattr(e, "module_states", None)
        if states:
            _print_states(states)
        raise typer.Exit(1)
    finally:
        if trace:
            shutdown_observability()

    if exit_code:
        raise typer.Exit(exit_code)


async def _run_host(builder: ApplicationBuilder) -> int:
    host = await builder.build()

    console.print(Panel.fit(
        f"[bold blue]{identity_name(builder.roots[0])}[/bold blue] "
        f"({host.environment_name})",
        border_style="blue",
    ))
    _print_states({info.identity: info.state for info in host.modules})
    for failure in host.failures:
        console.print(f"[yellow]! {failure.name} failed during {failure.phase.value}: {failure.message}[/yellow]")

    failures = await host.shutdown()
    for failure in failures:
        console.print(f"[red]✗ {failure.name} failed to shut down: {failure.message}[/red]")

    if failures:
        return 1
    console.print("[green]✓ Shutdown complete[/green]")
    return 0


def _print_states(states: dict) -> None:
    table = Table(title="Module states")
    table.add_column("Module", style="cyan")
    table.add_column("State")
    for identity, state in states.items():
        style = _STATE_STYLES.get(state, "")
        table.add_row(identity_name(identity), f"[{style}]{state.value}[/{style}]" if style else state.value)
    console.print(table)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
