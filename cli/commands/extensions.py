"""Extensions CLI commands for skillfactory.

Install, remove and inspect project extensions.
"""

from pathlib import Path

import typer

from cli.skillfactory.output import (
    console,
    print_error,
    print_extensions,
    print_info,
    print_report,
    print_success,
    print_warning,
)
from extensions.errors import ExtensionError

extensions_app = typer.Typer(
    name="extensions",
    help="Manage project extensions.",
    no_args_is_help=True,
)


def get_reconciler(project_dir: Path | None = None):
    """Build a reconciler for a project from the loaded configuration."""
    from core.config import get_config
    from extensions.reconciler import ExtensionReconciler
    from extensions.sources import SourceResolver
    from extensions.state import StateStore
    from extensions.storage import ExtensionStorage

    config = get_config()
    project_dir = Path(project_dir or Path.cwd())

    return ExtensionReconciler(
        project_dir,
        store=StateStore(project_dir, config.project.state_file),
        storage=ExtensionStorage(project_dir, config.project.storage_dir),
        resolver=SourceResolver(
            base_dir=project_dir,
            github_api_url=config.sources.github_api_url,
            github_url=config.sources.github_archive_url,
            timeout=config.sources.timeout,
            token=config.sources.token or None,
        ),
    )


@extensions_app.command("add")
def add(
    source: str = typer.Argument(
        ..., help="Local directory, .tar.gz archive, or github:owner/repo[/path][#ref]"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every step"),
) -> None:
    """Install an extension, or re-install it from a new source.

    Examples:
        skillfactory extensions add ./my-extension
        skillfactory extensions add github:acme/hello-commit#v1.2.0
    """
    reconciler = get_reconciler()

    try:
        report = reconciler.install(source)
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    manifest = report.manifest
    if report.previous_version:
        print_success(
            f"Updated {manifest.name}: {report.previous_version} → {manifest.version}"
        )
    else:
        print_success(f"Installed {manifest.name} v{manifest.version}")

    if report.replaced:
        print_info(f"Replaced skills: {', '.join(report.replaced)}")
    if report.failed_replacements:
        print_warning(
            f"Replacements not applied: {', '.join(report.failed_replacements)}"
        )
    if report.injections:
        print_info(f"Injections applied: {report.injections}")
    if report.server_configs:
        print_info(f"Server configs: {', '.join(report.server_configs)}")
    if manifest.commands:
        print_info(f"Commands: {', '.join(c.name for c in manifest.commands)}")

    print_report(report, verbose=verbose)


@extensions_app.command("remove")
def remove(
    name: str = typer.Argument(..., help="Extension name to remove"),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every step"),
) -> None:
    """Remove an extension and undo its changes.

    Example:
        skillfactory extensions remove hello-commit
    """
    reconciler = get_reconciler()

    if not yes:
        if not typer.confirm(f"Remove {name}?"):
            raise typer.Exit(0)

    try:
        report = reconciler.remove(name)
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(f"Removed {name}")
    if report.restored:
        print_info(f"Restored skills: {', '.join(report.restored)}")
    print_report(report, verbose=verbose)


@extensions_app.command("list")
def list_extensions() -> None:
    """List installed extensions.

    Example:
        skillfactory extensions list
    """
    reconciler = get_reconciler()

    try:
        installed = reconciler.list_installed()
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not installed:
        console.print("[yellow]No extensions installed[/yellow]")
        console.print("[dim]Install extensions with: skillfactory extensions add <source>[/dim]")
        return

    print_extensions(installed)
    console.print(f"\n[dim]Total: {len(installed)} extensions[/dim]")


@extensions_app.command("show")
def show(
    name: str = typer.Argument(..., help="Extension name"),
    as_json: bool = typer.Option(False, "--json", help="Print the stored manifest as JSON"),
) -> None:
    """Show details of an installed extension.

    Example:
        skillfactory extensions show hello-commit
        skillfactory extensions show hello-commit --json
    """
    reconciler = get_reconciler()

    try:
        installed = {
            record.name: (record, manifest)
            for record, manifest in reconciler.list_installed()
        }
    except ExtensionError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if name not in installed:
        print_error(f"Extension '{name}' is not installed")
        raise typer.Exit(1)

    record, manifest = installed[name]
    if as_json:
        if manifest is None:
            print_error(f"Stored manifest of '{name}' is missing or invalid")
            raise typer.Exit(1)
        console.print_json(data=manifest.to_dict())
        return

    console.print(f"\n[bold cyan]{record.name}[/bold cyan] v{record.version}")
    console.print(f"[dim]from {record.source}[/dim]\n")

    if manifest is None:
        print_warning("Stored manifest is missing or invalid")
        return

    if manifest.description:
        console.print(f"{manifest.description}\n")

    if record.owned_replacements:
        console.print("[bold]Replaces[/bold]")
        for skill_id in record.owned_replacements:
            console.print(f"  - {skill_id}")

    if manifest.custom_skills:
        console.print("[bold]Skills[/bold]")
        for path in manifest.custom_skills:
            console.print(f"  - {path}")

    if manifest.injections:
        console.print("[bold]Injections[/bold]")
        for injection in manifest.injections:
            console.print(
                f"  - {injection.file} → {injection.target} ({injection.position.value})"
            )

    if manifest.commands:
        console.print("[bold]Commands[/bold]")
        for command in manifest.commands:
            console.print(f"  - {command.name}: {command.description}")

    if manifest.agents:
        console.print("[bold]Agents[/bold]")
        for agent in manifest.agents:
            console.print(f"  - {agent.display_name or agent.name}")

    if manifest.server_configs:
        console.print("[bold]Server Configs[/bold]")
        for server in manifest.server_configs:
            console.print(f"  - {server.key}")
            if server.instruction:
                console.print(f"    [dim]{server.instruction}[/dim]")
