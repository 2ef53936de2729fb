"""skillfactory CLI.

Main command-line interface: project setup, base skill updates and
extension management.
"""

import logging
from pathlib import Path
from typing import Optional

import typer

from cli.commands.extensions import extensions_app, get_reconciler
from cli.commands.skills import skills_app
from cli.skillfactory.output import (
    console,
    print_error,
    print_info,
    print_report,
    print_status,
    print_success,
    print_warning,
)
from core.config import get_config
from core.log import setup_logging
from extensions.errors import ExtensionError

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="skillfactory",
    help="skillfactory - install and extend AI agent skills in a project",
    no_args_is_help=True,
)

app.add_typer(extensions_app, name="extensions")
app.add_typer(skills_app, name="skills")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging before any command runs."""
    setup_logging("DEBUG" if verbose else get_config().logging.level)


@app.command()
def init(
    agents: Optional[list[str]] = typer.Option(
        None,
        "--agent",
        "-a",
        help="Agent to configure (repeatable, default from config)",
    ),
) -> None:
    """Set up a project: record agents and install base skills.

    Examples:
        skillfactory init
        skillfactory init -a claude -a cursor
    """
    from skills.agents import AGENT_PROFILES

    reconciler = get_reconciler()
    agent_ids = agents or get_config().project.default_agents

    unknown = [a for a in agent_ids if a not in AGENT_PROFILES]
    if unknown:
        print_error(
            f"Unknown agent(s): {', '.join(unknown)}. "
            f"Available: {', '.join(sorted(AGENT_PROFILES))}"
        )
        raise typer.Exit(1)

    if reconciler.store.exists():
        print_error(f"{reconciler.store.path.name} already exists; run 'skillfactory update'")
        raise typer.Exit(1)

    state = reconciler.init_project(agent_ids)
    for agent in state.agents:
        print_success(f"{agent.id}: {len(agent.installed_skills)} skills in {agent.skills_dir}")


@app.command()
def update(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every step"),
) -> None:
    """Refresh base skills and re-apply installed extensions.

    Example:
        skillfactory update
    """
    reconciler = get_reconciler()

    try:
        report = reconciler.update()
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    for agent_id, added in report.added_skills.items():
        if added:
            print_info(f"{agent_id}: new skills {', '.join(added)}")
    for agent_id, removed in report.removed_skills.items():
        if removed:
            print_info(f"{agent_id}: removed skills {', '.join(removed)}")
    if report.skipped_replaced:
        print_info(f"Kept extension replacements: {', '.join(report.skipped_replaced)}")
    if report.restored:
        print_warning(f"Restored base skills: {', '.join(report.restored)}")

    print_report(report, verbose=verbose)
    print_success("Skills updated")


@app.command()
def status() -> None:
    """Show configured agents and installed extensions."""
    reconciler = get_reconciler()

    try:
        state = reconciler.store.load()
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(f"[bold]skillfactory[/bold] state v{state.version}\n")
    print_status(state)

    if state.extensions:
        console.print()
        for record in state.extensions:
            replaces = (
                f" [yellow](replaces {', '.join(record.owned_replacements)})[/yellow]"
                if record.owned_replacements
                else ""
            )
            console.print(f"  [cyan]{record.name}[/cyan] v{record.version}{replaces}")

    if state.remote_skills:
        console.print()
        for skill in state.remote_skills:
            console.print(f"  [cyan]{skill.name}[/cyan] [dim]{skill.source}[/dim]")


@app.command()
def version() -> None:
    """Show skillfactory version."""
    from core import __version__

    console.print(f"skillfactory v{__version__}")


def load_extension_commands(target: typer.Typer, project_dir: Path | None = None):
    """Register commands contributed by installed extensions.

    Does nothing outside an initialized project.

    Returns:
        LoadResult, or None when there is no project state.
    """
    from extensions.loader import CommandLoader

    reconciler = get_reconciler(project_dir)
    if not reconciler.store.exists():
        return None

    try:
        state = reconciler.store.load()
    except ExtensionError as e:
        logger.warning("Skipping extension commands: %s", e)
        return None

    filters = get_config().extensions
    loader = CommandLoader(
        reconciler.storage,
        enabled_extensions=filters.enabled,
        disabled_extensions=filters.disabled,
    )
    result = loader.load(state.extensions, target)
    for extension, command, error in result.failed:
        logger.warning("Extension %s: command %s not loaded (%s)", extension, command, error)
    return result


def main() -> None:
    """Main entry point for the CLI."""
    load_extension_commands(app)
    app()


if __name__ == "__main__":
    main()
