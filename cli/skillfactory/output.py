"""Rich console output utilities for the skillfactory CLI."""

from typing import Any

from rich.console import Console
from rich.table import Table

from extensions.manifest import ExtensionManifest
from extensions.reconciler import OperationReport, StepStatus
from extensions.state import ExtensionRecord, ProjectState

console = Console()
error_console = Console(stderr=True)

_STATUS_STYLES = {
    StepStatus.OK: "[green]✓[/green]",
    StepStatus.FAILED: "[red]✗[/red]",
    StepStatus.ROLLED_BACK: "[yellow]↺[/yellow]",
    StepStatus.SKIPPED: "[dim]-[/dim]",
    StepStatus.WARNING: "[yellow]![/yellow]",
}


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]→[/blue] {message}")


def print_key_value(key: str, value: Any, key_style: str = "bold") -> None:
    """Print a key-value pair."""
    console.print(f"[{key_style}]{key}:[/{key_style}] {value}")


def print_report(report: OperationReport, verbose: bool = False) -> None:
    """Print the steps of an operation report.

    Only problems are shown unless verbose is set.
    """
    steps = report.steps if verbose else [s for s in report.steps if s.status != StepStatus.OK]
    for step in steps:
        icon = _STATUS_STYLES.get(step.status, "")
        agent = f"[dim]\\[{step.agent}][/dim] " if step.agent else ""
        console.print(f"  {icon} {agent}{step.step}: {step.detail}")


def print_extensions(entries: list[tuple[ExtensionRecord, ExtensionManifest | None]]) -> None:
    """Print installed extensions as a table."""
    table = Table(title="Installed Extensions")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Source", style="dim")
    table.add_column("Replaces", style="yellow")
    table.add_column("Provides")

    for record, manifest in entries:
        provides = ", ".join(manifest.features()) if manifest else "[red]manifest missing[/red]"
        table.add_row(
            record.name,
            record.version,
            record.source,
            ", ".join(record.owned_replacements) or "-",
            provides or "-",
        )

    console.print(table)


def print_status(state: ProjectState) -> None:
    """Print configured agents and their skills."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Agent", style="cyan")
    table.add_column("Skills dir")
    table.add_column("Skills", justify="right")

    for agent in state.agents:
        table.add_row(agent.id, agent.skills_dir, str(len(agent.installed_skills)))

    console.print(table)
