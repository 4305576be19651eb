#!/usr/bin/env python3
"""
Specify CLI - Setup tool for Specify projects

Usage:
    specify init <project-name>
    specify init .
    specify init --here
    specify templates sync
    specify feature create "Add user authentication"
"""

import json
import os
import platform
import shlex
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.align import Align
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from typer.core import TyperGroup

from .agents import AGENT_CONFIG, CLAUDE_LOCAL_PATH, agent_folder_name
from .cache import TemplateCache
from .config import cache_root, get_speckit_version, template_repo
from .context import SPECIFY_COMMANDS, write_agent_context
from .errors import (
    GitError,
    ProjectError,
    SpecifyError,
    TemplateCorruptedError,
)
from .feature import FeatureService, to_dict
from .git import GitRepository, init_git_repo, is_git_repo
from .github import GitHubClient
from .manifest import is_version_compatible, validate_cache
from .placement import ensure_executable_scripts
from .project import resolve_target
from .ui import StepTracker, console, error_panel, select_with_arrows, show_banner


SLASH_COMMAND_HINTS = {
    "specify": "Create baseline specification",
    "plan": "Create implementation plan",
    "tasks": "Generate actionable tasks",
}


def _key_value_table() -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Value", style="white")
    return table


class BannerGroup(TyperGroup):
    """Custom group that shows banner before help."""

    def format_help(self, ctx, formatter):
        show_banner()
        super().format_help(ctx, formatter)


app = typer.Typer(
    name="specify",
    help="Setup tool for Specify spec-driven development projects",
    add_completion=False,
    invoke_without_command=True,
    cls=BannerGroup,
)

templates_app = typer.Typer(
    name="templates",
    help="Manage the local template cache",
    add_completion=False,
)
app.add_typer(templates_app, name="templates")

feature_app = typer.Typer(
    name="feature",
    help="Create and manage numbered feature branches",
    add_completion=False,
)
app.add_typer(feature_app, name="feature")


@app.callback()
def callback(ctx: typer.Context):
    """Show banner when no subcommand is provided."""
    if ctx.invoked_subcommand is None and "--help" not in sys.argv and "-h" not in sys.argv:
        show_banner()
        console.print(Align.center("[dim]Run 'specify --help' for usage information[/dim]"))
        console.print()


def check_tool(tool: str, tracker: StepTracker = None) -> bool:
    """Return True when tool is on PATH, recording the result on tracker if given."""
    # `claude migrate-installer` leaves the binary at ~/.claude/local/claude, off PATH
    found = (tool == "claude" and CLAUDE_LOCAL_PATH.is_file()) or shutil.which(tool) is not None
    if tracker:
        (tracker.complete if found else tracker.error)(tool, "available" if found else "not found")
    return found


def make_github_client(skip_tls: bool = False, github_token: Optional[str] = None) -> GitHubClient:
    try:
        owner, repo = template_repo()
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    return GitHubClient(owner, repo, token=github_token, skip_tls=skip_tls, console=console)


def _print_debug_environment():
    pairs = {
        "Python": sys.version.split()[0],
        "Platform": sys.platform,
        "CWD": str(Path.cwd()),
        "Cache": str(cache_root()),
        "Template Repo": "/".join(template_repo()),
    }
    width = max(map(len, pairs))
    lines = [f"{key.ljust(width)} → [bright_black]{value}[/bright_black]" for key, value in pairs.items()]
    console.print(Panel("\n".join(lines), title="Debug Environment", border_style="magenta"))


def _git_step(project_path: Path, tracker: StepTracker, *, no_git: bool, git_available: bool) -> Optional[str]:
    """Run the git step of init. Returns an error description when git init failed."""
    if no_git:
        tracker.skip("git", "--no-git flag")
        return None
    tracker.start("git")
    if is_git_repo(project_path):
        tracker.complete("git", "existing repo detected")
        return None
    if not git_available:
        tracker.skip("git", "git not available")
        return None
    success, error_msg = init_git_repo(project_path)
    if success:
        tracker.complete("git", "initialized")
        return None
    tracker.error("git", "init failed")
    return error_msg


@app.command()
def init(
    project_name: str = typer.Argument(None, help="Name for your new project directory (optional if using --here, or use '.' for current directory)"),
    ai_assistant: str = typer.Option(None, "--ai", help="AI assistant to use: claude, gemini, copilot or codex"),
    ignore_agent_tools: bool = typer.Option(False, "--ignore-agent-tools", help="Skip checks for AI agent tools like Claude Code"),
    no_git: bool = typer.Option(False, "--no-git", help="Skip git repository initialization"),
    here: bool = typer.Option(False, "--here", help="Initialize project in the current directory instead of creating a new one"),
    force: bool = typer.Option(False, "--force", help="Force merge/overwrite when using --here (skip confirmation)"),
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification (not recommended)"),
    debug: bool = typer.Option(False, "--debug", help="Show verbose diagnostic output for network and extraction failures"),
    github_token: str = typer.Option(None, "--github-token", help="GitHub token to use for API requests (or set GH_TOKEN or GITHUB_TOKEN environment variable)"),
):
    """
    Initialize a new Specify project from the template cache.

    This command will:
    1. Check that required tools are installed (git is optional)
    2. Let you choose your AI assistant
    3. Extract templates from the local cache, syncing it from GitHub when needed
    4. Place the templates into the agent folder of the project
    5. Write AGENTS.md (and CLAUDE.md for Claude)
    6. Initialize a fresh git repository (if not --no-git and no existing repo)

    Examples:
        specify init my-project
        specify init my-project --ai claude
        specify init my-project --ai copilot --no-git
        specify init . --ai claude         # Initialize in current directory
        specify init --here --ai codex
        specify init --here --force  # Skip confirmation when current directory not empty
    """

    show_banner()

    if ai_assistant and ai_assistant.startswith("--"):
        console.print(f"[red]Error:[/red] Invalid value for --ai: '{ai_assistant}'")
        console.print("[yellow]Hint:[/yellow] Did you forget to provide a value for --ai?")
        console.print(f"[yellow]Available agents:[/yellow] {', '.join(AGENT_CONFIG.keys())}")
        raise typer.Exit(1)

    if project_name == ".":
        here = True
        project_name = None

    if here and project_name:
        console.print("[red]Error:[/red] Cannot specify both project name and --here flag")
        raise typer.Exit(1)

    if not here and not project_name:
        console.print("[red]Error:[/red] Must specify either a project name, use '.' for current directory, or use --here flag")
        raise typer.Exit(1)

    try:
        project_path = resolve_target(project_name, here)
    except ProjectError as e:
        console.print()
        console.print(error_panel(
            f"{e}\nPlease choose a different project name or location.",
            title="Invalid Project Target",
        ))
        raise typer.Exit(1)

    if here:
        existing_items = list(project_path.iterdir())
        if existing_items:
            console.print(f"[yellow]Warning:[/yellow] Current directory is not empty ({len(existing_items)} items)")
            console.print("[yellow]Template files will be merged with existing content and may overwrite existing files[/yellow]")
            if force:
                console.print("[cyan]--force supplied: skipping confirmation and proceeding with merge[/cyan]")
            else:
                response = typer.confirm("Do you want to continue?")
                if not response:
                    console.print("[yellow]Operation cancelled[/yellow]")
                    raise typer.Exit(0)

    setup_lines = [
        "[cyan]Specify Project Setup[/cyan]",
        "",
        f"{'Project':<15} [green]{project_path.name}[/green]",
        f"{'Working Path':<15} [dim]{Path.cwd()}[/dim]",
        f"{'Template Cache':<15} [dim]{cache_root()}[/dim]",
    ]
    if not here:
        setup_lines.append(f"{'Target Path':<15} [dim]{project_path}[/dim]")
    console.print(Panel("\n".join(setup_lines), border_style="cyan", padding=(1, 2)))

    should_init_git = False
    if not no_git:
        should_init_git = check_tool("git")
        if not should_init_git:
            console.print("[yellow]Git not found - will skip repository initialization[/yellow]")

    if ai_assistant:
        if ai_assistant not in AGENT_CONFIG:
            console.print(f"[red]Error:[/red] Invalid AI assistant '{ai_assistant}'. Choose from: {', '.join(AGENT_CONFIG.keys())}")
            raise typer.Exit(1)
        selected_ai = ai_assistant
    else:
        ai_choices = {key: config["name"] for key, config in AGENT_CONFIG.items()}
        selected_ai = select_with_arrows(ai_choices, "Choose your AI assistant:", "claude")

    if not ignore_agent_tools:
        agent_config = AGENT_CONFIG[selected_ai]
        if agent_config["requires_cli"] and not check_tool(selected_ai):
            console.print()
            console.print(error_panel(
                f"[cyan]{selected_ai}[/cyan] not found\n"
                f"Install from: [cyan]{agent_config['install_url']}[/cyan]\n"
                f"{agent_config['name']} is required to continue with this project type.\n\n"
                "Tip: Use [cyan]--ignore-agent-tools[/cyan] to skip this check",
                title="Agent Detection Error",
            ))
            raise typer.Exit(1)

    console.print(f"[cyan]Selected AI assistant:[/cyan] {selected_ai}")

    tracker = StepTracker("Initialize Specify Project")
    tracker.add("precheck", "Check required tools")
    tracker.complete("precheck", "ok")
    tracker.add("ai-select", "Select AI assistant")
    tracker.complete("ai-select", selected_ai)
    for key, label in [
        ("cache", "Check template cache"),
        ("sync", "Sync templates from GitHub"),
        ("extract", "Place templates"),
        ("chmod", "Ensure scripts executable"),
        ("context", "Write agent context files"),
        ("git", "Initialize git repository"),
        ("final", "Finalize"),
    ]:
        tracker.add(key, label)

    git_error_message = None
    created_project = not here and not project_path.exists()
    client = make_github_client(skip_tls, github_token)

    with Live(tracker.render(), console=console, refresh_per_second=8, transient=True) as live:
        tracker.attach_refresh(lambda: live.update(tracker.render()))
        try:
            cache = TemplateCache()
            cache.resolve_and_extract(client, project_path, selected_ai, tracker=tracker)

            updated, failures = ensure_executable_scripts(project_path, selected_ai)
            detail = f"{updated} updated" + (f", {len(failures)} failed" if failures else "")
            (tracker.error if failures else tracker.complete)("chmod", detail)

            tracker.start("context")
            written = write_agent_context(project_path, selected_ai)
            tracker.complete("context", ", ".join(
                f"{path.name} {'created' if created else 'updated'}" for path, created in written
            ))

            git_error_message = _git_step(project_path, tracker, no_git=no_git, git_available=should_init_git)

            tracker.complete("final", "project ready")
        except SpecifyError as e:
            tracker.error("final", str(e))
            live.stop()
            console.print(tracker.render())
            console.print(Panel(f"Initialization failed: {e}", title="Failure", border_style="red"))
            if debug:
                _print_debug_environment()
            if created_project and project_path.exists():
                shutil.rmtree(project_path)
            raise typer.Exit(1)
        finally:
            client.close()

    console.print(tracker.render())
    console.print("\n[bold green]Project ready.[/bold green]")

    if git_error_message:
        console.print()
        console.print(error_panel(
            f"[yellow]Warning:[/yellow] Git repository initialization failed\n\n"
            f"{git_error_message}\n\n"
            f"[dim]You can initialize git manually later with:[/dim]\n"
            f"[cyan]cd {project_path if not here else '.'}[/cyan]\n"
            f"[cyan]git init[/cyan]\n"
            f"[cyan]git add .[/cyan]\n"
            f"[cyan]git commit -m \"Initial commit\"[/cyan]",
            title="Git Initialization Failed",
        ))

    _print_next_steps(project_path, selected_ai, here)


def _print_next_steps(project_path: Path, agent: str, here: bool):
    folder = agent_folder_name(agent)
    console.print()
    console.print(Panel(
        f"Agents can keep credentials and other private state in [cyan]{folder}/[/cyan].\n"
        f"Add [cyan]{folder}/[/cyan] (or the sensitive parts of it) to [cyan].gitignore[/cyan] before pushing.",
        title="[yellow]Agent Folder Security[/yellow]",
        border_style="yellow",
        padding=(1, 2),
    ))

    steps = ["You're already in the project directory!" if here else f"Go to the project folder: [cyan]cd {project_path.name}[/cyan]"]
    if agent == "codex":
        codex_home = shlex.quote(str(project_path / folder))
        export = f"setx CODEX_HOME {codex_home}" if os.name == "nt" else f"export CODEX_HOME={codex_home}"
        steps.append(f"Point [cyan]CODEX_HOME[/cyan] at the project before running Codex: [cyan]{export}[/cyan]")
    steps.append("Start using slash commands with your AI agent:")

    lines = [f"{n}. {text}" for n, text in enumerate(steps, start=1)]
    last = len(steps)
    for sub, (command, _) in enumerate(SPECIFY_COMMANDS, start=1):
        lines.append(f"   {last}.{sub} [cyan]/{command}[/] - {SLASH_COMMAND_HINTS[command]}")

    console.print()
    console.print(Panel("\n".join(lines), title="Next Steps", border_style="cyan", padding=(1, 2)))


@app.command()
def check(
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification (not recommended)"),
):
    """Check that all required tools are installed."""
    show_banner()
    console.print("[bold]Checking for installed tools...[/bold]\n")

    tracker = StepTracker("Check Available Tools")

    tracker.add("git", "Git version control")
    git_ok = check_tool("git", tracker=tracker)

    agent_results = {}
    for agent_key, agent_config in AGENT_CONFIG.items():
        tracker.add(agent_key, agent_config["name"])
        if agent_config["requires_cli"]:
            agent_results[agent_key] = check_tool(agent_key, tracker=tracker)
        else:
            tracker.skip(agent_key, "IDE-based, no CLI check")
            agent_results[agent_key] = False

    tracker.add("github", "GitHub connectivity")
    client = make_github_client(skip_tls)
    try:
        client.check_connectivity()
        tracker.complete("github", "reachable")
        online = True
    except SpecifyError as e:
        tracker.error("github", str(e))
        online = False
    finally:
        client.close()

    console.print(tracker.render())

    console.print("\n[bold green]Specify CLI is ready to use![/bold green]")

    if not git_ok:
        console.print("[dim]Tip: Install git for repository management[/dim]")
    if not any(agent_results.values()):
        console.print("[dim]Tip: Install an AI assistant for the best experience[/dim]")
    if not online:
        console.print("[dim]Tip: Template sync needs access to api.github.com[/dim]")


@app.command()
def version():
    """Display version and system information."""
    show_banner()

    template_version, release_date = _latest_template_release()

    table = _key_value_table()
    for key, value in [
        ("CLI Version", get_speckit_version()),
        ("Template Version", template_version),
        ("Released", release_date),
        ("Cache Version", _cached_template_version()),
        ("", ""),
        ("Python", platform.python_version()),
        ("Platform", platform.system()),
        ("Architecture", platform.machine()),
        ("OS Version", platform.version()),
    ]:
        table.add_row(key, value)

    console.print(Panel(table, title="[bold cyan]Specify CLI Information[/bold cyan]", border_style="cyan", padding=(1, 2)))
    console.print()


def _latest_template_release() -> tuple[str, str]:
    """(version, YYYY-MM-DD) of the newest template release, 'unknown' when offline."""
    client = make_github_client()
    try:
        release = client.get_latest_release()
    except SpecifyError:
        return "unknown", "unknown"
    finally:
        client.close()

    tag = release.get("tag_name") or "unknown"
    published = release.get("published_at") or "unknown"
    try:
        published = datetime.fromisoformat(published.replace("Z", "+00:00")).strftime("%Y-%m-%d")
    except ValueError:
        pass
    return tag.removeprefix("v"), published


def _cached_template_version() -> str:
    cache = TemplateCache()
    if cache.is_empty():
        return "not synced"
    try:
        return cache.load_manifest().spec_kit_version
    except SpecifyError as e:
        return f"unreadable ({e})"


# ===== Template Commands =====

@templates_app.command("sync")
def templates_sync(
    force: bool = typer.Option(False, "--force", help="Download even when the cache matches this version"),
    verbose: bool = typer.Option(False, "--verbose", help="List every cached file"),
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification (not recommended)"),
    github_token: str = typer.Option(None, "--github-token", help="GitHub token to use for API requests (or set GH_TOKEN or GITHUB_TOKEN environment variable)"),
):
    """Download the latest templates into the local cache."""
    cache = TemplateCache()

    if not force and not cache.is_empty() and cache.is_up_to_date():
        console.print(f"[green]✓[/green] Templates are up to date (version {cache.version})")
        console.print("[dim]Use --force to download again[/dim]")
        return

    console.print(f"[cyan]Syncing templates into[/cyan] {cache.root}")
    client = make_github_client(skip_tls, github_token)
    try:
        manifest = cache.sync(client, show_progress=True)
    except SpecifyError as e:
        console.print(error_panel(str(e), title="Sync Failed"))
        raise typer.Exit(1)
    finally:
        client.close()

    console.print(f"[green]✓[/green] Synced {len(manifest.templates)} template files (version {manifest.spec_kit_version})")
    if verbose:
        for rel_path in sorted(manifest.templates):
            console.print(f"  [dim]•[/dim] {rel_path}")


@templates_app.command("status")
def templates_status():
    """Show the state of the local template cache."""
    cache = TemplateCache()

    table = _key_value_table()
    table.add_row("Cache Root", str(cache.root))

    if cache.is_empty():
        table.add_row("State", "[yellow]empty[/yellow]")
        console.print(Panel(table, title="[bold cyan]Template Cache[/bold cyan]", border_style="cyan", padding=(1, 2)))
        console.print("[dim]Run 'specify templates sync' to populate it[/dim]")
        return

    exit_code = 0
    try:
        manifest = cache.load_manifest()
        table.add_row("Version", manifest.spec_kit_version)
        table.add_row("Last Sync", manifest.last_sync.strftime("%Y-%m-%d %H:%M:%S %Z"))
        table.add_row("Files", str(len(manifest.templates)))
        if not is_version_compatible(manifest.spec_kit_version, cache.version):
            table.add_row("State", f"[yellow]stale (CLI is {cache.version})[/yellow]")
            exit_code = 1
        else:
            validate_cache(cache.root, manifest)
            table.add_row("State", "[green]valid[/green]")
    except TemplateCorruptedError as e:
        table.add_row("State", f"[red]corrupted: {e}[/red]")
        exit_code = 1
    except SpecifyError as e:
        table.add_row("State", f"[red]{e}[/red]")
        exit_code = 1

    console.print(Panel(table, title="[bold cyan]Template Cache[/bold cyan]", border_style="cyan", padding=(1, 2)))
    if exit_code:
        console.print("[dim]Run 'specify templates sync --force' to repair the cache[/dim]")
        raise typer.Exit(exit_code)


# ===== Feature Commands =====

def _feature_service() -> FeatureService:
    return FeatureService(GitRepository(Path.cwd()))


def _fail(e: SpecifyError):
    label = "Git Error" if isinstance(e, GitError) else "Error"
    console.print(f"[red]{label}:[/red] {e}")
    raise typer.Exit(1)


def _emit_json(result):
    typer.echo(json.dumps(to_dict(result), indent=2))


@feature_app.command("create")
def feature_create(
    description: str = typer.Argument(..., help="Short description of the feature"),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
):
    """Create a numbered feature branch and its spec file."""
    try:
        result = _feature_service().create_feature(description)
    except SpecifyError as e:
        _fail(e)

    if json_output:
        _emit_json(result)
        return
    console.print(f"[green]✓[/green] Created branch [cyan]{result.branch_name}[/cyan]")
    console.print(f"  Spec file: {result.spec_file}")
    console.print(f"  Feature number: {result.feature_num}")


@feature_app.command("plan")
def feature_plan(
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
):
    """Set up plan.md for the current feature branch."""
    try:
        result = _feature_service().setup_plan()
    except SpecifyError as e:
        _fail(e)

    if json_output:
        _emit_json(result)
        return
    console.print(f"[green]✓[/green] Plan ready for [cyan]{result.branch}[/cyan]")
    console.print(f"  Feature spec: {result.feature_spec}")
    console.print(f"  Plan: {result.impl_plan}")
    if not result.template_used:
        console.print("[yellow]No plan template found; plan.md was not created[/yellow]")


@feature_app.command("check")
def feature_check(
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
):
    """Check that the current feature has the documents it needs."""
    try:
        result = _feature_service().check_prerequisites()
    except SpecifyError as e:
        _fail(e)

    if json_output:
        _emit_json(result)
        return
    console.print(f"[green]✓[/green] Feature directory: {result.feature_dir}")
    if result.available_docs:
        console.print("[bold]Available documents:[/bold]")
        for doc in result.available_docs:
            console.print(f"  [green]✓[/green] {doc}")
    else:
        console.print("[dim]No optional design documents yet[/dim]")


@feature_app.command("paths")
def feature_paths(
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
):
    """Print the paths used by the current feature."""
    try:
        result = _feature_service().get_paths()
    except SpecifyError as e:
        _fail(e)

    if json_output:
        _emit_json(result)
        return
    table = _key_value_table()
    for key, value in to_dict(result).items():
        table.add_row(key.upper(), value)
    console.print(table)


@feature_app.command("context")
def feature_context(
    agent: Optional[str] = typer.Argument(None, help="Agent whose context file to update (default: all existing)"),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
):
    """Update agent context files from the current feature's plan."""
    try:
        result = _feature_service().update_context(agent)
    except SpecifyError as e:
        _fail(e)

    if json_output:
        _emit_json(result)
        return
    console.print(f"[green]✓[/green] Updated context for [cyan]{result.branch}[/cyan]")
    for update in result.updates:
        action = "created" if update.created else "updated"
        console.print(f"  {update.agent}: {update.file} ({action})")
    for line in result.summary:
        console.print(f"  [dim]{line}[/dim]")


def main():
    app()


if __name__ == "__main__":
    main()
