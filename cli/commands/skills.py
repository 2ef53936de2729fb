"""Skills CLI commands for skillfactory.

Install single skills from GitHub repositories or local directories,
without packaging them as an extension.
"""

from datetime import datetime, timezone
from typing import Optional

import typer
from rich.table import Table

from cli.commands.extensions import get_reconciler
from cli.skillfactory.output import (
    console,
    print_error,
    print_info,
    print_report,
    print_success,
    print_warning,
)
from extensions.errors import ExtensionError

skills_app = typer.Typer(
    name="skills",
    help="Manage remote skills.",
    no_args_is_help=True,
)


def get_skill_manager():
    from extensions.remote_skills import RemoteSkillManager

    return RemoteSkillManager(get_reconciler())


def _age(installed_at: datetime) -> str:
    days = (datetime.now(timezone.utc) - installed_at).days
    if days <= 0:
        return "today"
    if days == 1:
        return "1 day ago"
    if days < 30:
        return f"{days} days ago"
    months = days // 30
    return "1 month ago" if months == 1 else f"{months} months ago"


@skills_app.command("add")
def add(
    source: str = typer.Argument(..., help="github:owner/repo[/path][#ref], URL, or local path"),
    skill: Optional[list[str]] = typer.Option(
        None,
        "--skill",
        "-s",
        help="Install only this skill of a collection (repeatable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every step"),
) -> None:
    """Install skills from a repository for every configured agent.

    Examples:
        skillfactory skills add github:acme/agent-skills
        skillfactory skills add github:acme/agent-skills/skills/lint#main
        skillfactory skills add github:acme/agent-skills -s lint -s review
    """
    manager = get_skill_manager()

    try:
        report = manager.add(source, names=skill)
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if report.installed:
        print_success(f"Installed: {', '.join(report.installed)}")
    if report.skipped:
        print_warning(f"Skipped: {', '.join(report.skipped)}")
    if not report.installed and not report.skipped:
        print_warning("No skills installed")

    print_report(report, verbose=verbose)


@skills_app.command("remove")
def remove(
    name: str = typer.Argument(..., help="Remote skill name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove a remote skill from every agent.

    Example:
        skillfactory skills remove lint
    """
    if not yes:
        confirm = typer.confirm(f"Remove skill '{name}'?")
        if not confirm:
            print_info("Cancelled")
            return

    try:
        get_skill_manager().remove(name)
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(f"Removed {name}")


@skills_app.command("list")
def list_skills() -> None:
    """List installed remote skills."""
    try:
        records = get_skill_manager().list_installed()
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not records:
        print_info("No remote skills installed")
        return

    table = Table(title="Remote Skills")
    table.add_column("Name", style="cyan")
    table.add_column("Source", style="dim")
    table.add_column("Version")
    table.add_column("Installed")

    for record in records:
        source = record.source + (f"#{record.ref}" if record.ref else "")
        table.add_row(record.name, source, record.version or "-", _age(record.installed_at))

    console.print(table)


@skills_app.command("update")
def update(
    name: Optional[str] = typer.Argument(None, help="Only update this skill"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every step"),
) -> None:
    """Reinstall remote skills whose source has new commits.

    Examples:
        skillfactory skills update
        skillfactory skills update lint
    """
    try:
        report = get_skill_manager().update(name)
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if report.installed:
        print_success(f"Updated: {', '.join(report.installed)}")
    if report.up_to_date:
        print_info(f"Already up to date: {', '.join(report.up_to_date)}")
    if not report.installed and not report.up_to_date:
        print_info("No remote skills updated")

    print_report(report, verbose=verbose)
