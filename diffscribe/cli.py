"""
Command line interface using Typer with Rich integration.

The `prepare-commit-msg` command is what the installed git hook runs.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console

from .ai_backends.base import AIBackend, BackendError
from .ai_backends.factory import BackendFactory
from .config.settings import Settings
from .core import DiffScribe, DiffScribeError
from .diff.splitter import MalformedDiffError
from .git_ops.repository import (
    GitRepository,
    GitRepositoryError,
    should_skip_commit_source,
    write_commit_message,
)
from .ui.console import DiffScribeConsole
from .utils.prompts import TemplateRenderError


app = typer.Typer(
    name="diffscribe",
    help="Summarize staged git diffs into commit messages with an LLM",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True
)

# stdout carries the generated message only
console = Console(stderr=True)

PIPELINE_ERRORS = (MalformedDiffError, TemplateRenderError, DiffScribeError, GitRepositoryError)

# The only failures that make the hook reject the commit
STRUCTURAL_ERRORS = (MalformedDiffError, TemplateRenderError)

TEST_PROMPT = "Summarize this change in one sentence: added a README file with install instructions."


def setup_logging(log_level: str = "WARNING", log_file: Optional[Path] = None):
    """Setup logging configuration."""
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="1 MB",
            retention="7 days"
        )


def _load_settings(ctx: typer.Context) -> Settings:
    """Load settings and configure logging from the global options."""
    options = ctx.obj or {}
    config_file = options.get("config_file")
    settings = Settings.from_file(config_file) if config_file else Settings()

    if options.get("debug"):
        log_level = "DEBUG"
    elif options.get("verbose"):
        log_level = "INFO"
    else:
        log_level = settings.ui.log_level
    setup_logging(log_level, settings.log_file)
    return settings


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c",
        help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Enable verbose logging"
    ),
    debug: bool = typer.Option(
        False, "--debug", "-d",
        help="Enable debug logging (includes verbose)"
    ),
    version: bool = typer.Option(
        False, "--version",
        help="Show version information",
        is_eager=True
    )
):
    """
    Summarize staged git diffs into commit messages with an LLM.

    [bold blue]Examples:[/bold blue]

    [green]diffscribe install[/green]                     # Install the prepare-commit-msg hook
    [green]diffscribe summarize[/green]                   # Print a message for the staged diff
    [green]git diff | diffscribe summarize --diff -[/green] # Summarize any diff
    [green]diffscribe config --show[/green]               # Show configuration
    [green]diffscribe test[/green]                        # Test AI backend
    """
    if version:
        from . import __version__
        console.print(f"[bold blue]diffscribe[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()

    ctx.obj = {"config_file": config_file, "verbose": verbose, "debug": debug}


@app.command("prepare-commit-msg")
def prepare_commit_msg(
    ctx: typer.Context,
    message_file: Path = typer.Argument(..., help="Commit message file passed by git"),
    commit_source: Optional[str] = typer.Argument(None, help="Commit source passed by git"),
    commit_sha: Optional[str] = typer.Argument(None, help="Commit SHA passed by git"),
):
    """Generate the commit message from the staged diff (run by the git hook).

    Only a malformed diff or a broken template fails the hook. Any other
    problem is reported and the commit goes ahead with git's own message.
    """
    try:
        settings = _load_settings(ctx)
    except (ValueError, OSError) as e:
        console.print(f"[yellow]diffscribe skipped, invalid configuration:[/yellow] {e}")
        return
    asyncio.run(_run_prepare_commit_msg(settings, message_file, commit_source))


@app.command()
def summarize(
    ctx: typer.Context,
    diff_file: Optional[str] = typer.Option(
        None, "--diff",
        help="Diff file to summarize, '-' for stdin (default: staged changes)"
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Print only the message, without the preview"
    )
):
    """
    Print a commit message for a diff.

    [bold blue]Examples:[/bold blue]

    [green]diffscribe summarize[/green]                       # Staged changes
    [green]diffscribe summarize --diff change.patch[/green]   # A saved diff
    [green]git show HEAD | diffscribe summarize --diff -[/green]
    """
    settings = _load_settings(ctx)
    asyncio.run(_run_summarize(settings, diff_file, quiet))


@app.command()
def install(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f",
        help="Overwrite an existing prepare-commit-msg hook"
    )
):
    """Install the prepare-commit-msg hook in the current repository."""
    _load_settings(ctx)
    try:
        path = GitRepository().install_hook(force=force)
    except GitRepositoryError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Installed hook:[/green] {path}")


@app.command()
def uninstall(ctx: typer.Context):
    """Remove the prepare-commit-msg hook installed by diffscribe."""
    _load_settings(ctx)
    try:
        removed = GitRepository().uninstall_hook()
    except GitRepositoryError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    if removed:
        console.print("[green]Hook removed[/green]")
    else:
        console.print("[yellow]No diffscribe hook installed[/yellow]")


@app.command()
def config(
    ctx: typer.Context,
    show: bool = typer.Option(
        False, "--show", "-s",
        help="Show current configuration"
    ),
    backend_type: Optional[str] = typer.Option(
        None, "--backend", "-b",
        help="Set AI backend type (openai, ollama)"
    ),
    api_url: Optional[str] = typer.Option(
        None, "--url", "-u",
        help="Set AI API URL"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m",
        help="Set AI model name"
    ),
    save: bool = typer.Option(
        False, "--save",
        help="Save configuration to file"
    )
):
    """
    Manage diffscribe configuration.

    [bold blue]Examples:[/bold blue]

    [green]diffscribe config --show[/green]                                       # Show current config
    [green]diffscribe config --backend ollama --url http://localhost:11434 --save[/green]
    """
    settings = _load_settings(ctx)

    if show:
        DiffScribeConsole(settings).show_configuration()
        return

    config_changed = False

    if backend_type:
        if backend_type not in BackendFactory.list_supported_backends():
            console.print(f"[red]Invalid backend type:[/red] {backend_type}")
            console.print(f"Valid options: {', '.join(BackendFactory.list_supported_backends())}")
            raise typer.Exit(1)
        settings.ai.backend_type = backend_type
        config_changed = True
        console.print(f"[green]Set backend type to:[/green] {backend_type}")

    if api_url:
        settings.ai.api_url = api_url
        config_changed = True
        console.print(f"[green]Set API URL to:[/green] {api_url}")

    if model:
        settings.ai.model = model
        config_changed = True
        console.print(f"[green]Set model to:[/green] {model}")

    if save and config_changed:
        config_path = settings.config_dir / "config.json"
        settings.save_to_file(config_path)
        console.print(f"[green]Configuration saved to:[/green] {config_path}")
    elif config_changed:
        console.print("[yellow]Use --save to persist these changes[/yellow]")
    else:
        console.print("[yellow]No configuration changes made[/yellow]")
        console.print("Use [green]--show[/green] to see current configuration")


@app.command()
def test(
    ctx: typer.Context,
    all_backends: bool = typer.Option(
        False, "--all", "-a",
        help="Check the health of every supported backend"
    )
):
    """
    Test AI backend connectivity and functionality.

    [bold blue]Examples:[/bold blue]

    [green]diffscribe test[/green]            # Test configured backend
    [green]diffscribe test --all[/green]      # Health check all backends
    """
    settings = _load_settings(ctx)
    asyncio.run(_run_test(settings, all_backends))


async def _run_prepare_commit_msg(settings: Settings, message_file: Path, commit_source: Optional[str]):
    """Run the hook: the message file is rewritten only on success."""
    if should_skip_commit_source(commit_source, settings.hook.allow_amend):
        logger.info(f"Commit source '{commit_source}' already provides a message, skipping")
        return

    try:
        repo = GitRepository()
        diff = repo.get_staged_diff(amend=commit_source == "commit")
        if not diff.strip():
            logger.info("No staged changes, leaving the commit message alone")
            return

        scribe = DiffScribe.from_settings(settings)
        message = await scribe.run(diff)
        write_commit_message(message_file, message.text)

    except STRUCTURAL_ERRORS as e:
        console.print(f"[red]diffscribe error:[/red] {e}")
        raise typer.Exit(1)
    except (DiffScribeError, GitRepositoryError) as e:
        console.print(f"[yellow]diffscribe skipped:[/yellow] {e}")
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(130)
    except Exception as e:
        logger.exception("Unexpected error occurred")
        console.print(f"[yellow]diffscribe skipped after unexpected error:[/yellow] {e}")


def _read_diff(diff_file: Optional[str]) -> str:
    if diff_file == "-":
        return sys.stdin.read()
    if diff_file:
        return Path(diff_file).read_text()
    return GitRepository().get_staged_diff()


async def _run_summarize(settings: Settings, diff_file: Optional[str], quiet: bool):
    """Run summarize command."""
    ui = DiffScribeConsole(settings)
    try:
        diff = _read_diff(diff_file)
        if not diff.strip():
            ui.print_warning("Nothing to summarize")
            raise typer.Exit(1)

        scribe = DiffScribe.from_settings(settings)
        if not quiet:
            ui.show_ai_backend_info(scribe.backend.backend_type, scribe.backend.api_url, scribe.backend.model)

        with ui.show_progress_spinner("Summarizing changes"):
            message = await scribe.run(diff)

    except PIPELINE_ERRORS as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except OSError as e:
        console.print(f"[red]Cannot read diff:[/red] {e}")
        raise typer.Exit(1)

    if not quiet:
        ui.show_file_summaries(message.body)
        ui.show_commit_message_preview(message)
    typer.echo(message.text)


async def _check_backend(backend: AIBackend, ui: DiffScribeConsole) -> bool:
    """Health check plus one sample completion."""
    try:
        with ui.show_progress_spinner("Testing AI backend"):
            if not await backend.health_check():
                ui.print_error("AI backend health check failed")
                return False

            models = await backend.list_models()
            if models and backend.model not in models:
                ui.print_warning(f"Model {backend.model} is not listed by the backend")

            response = await backend.call_api(TEST_PROMPT)
    except BackendError as e:
        ui.print_error(f"AI backend test failed: {type(e).__name__}: {e}")
        return False

    if not response.content.strip():
        ui.print_error("AI backend returned empty response")
        return False

    ui.print_success(f"AI backend test successful ({response.response_time:.2f}s)")
    ui.print_info(f"Test response: {response.content.strip()[:80]}")
    return True


async def _run_test(settings: Settings, all_backends: bool):
    """Run test command."""
    if all_backends:
        console.print("[bold blue]Testing all AI backends...[/bold blue]")
        results = await BackendFactory.test_all_backends(settings)
        for backend_type, status in results.items():
            status_text = "[green]✓ Available[/green]" if status else "[red]✗ Unavailable[/red]"
            console.print(f"  {backend_type.title()}: {status_text}")
        return

    ui = DiffScribeConsole(settings)
    try:
        backend = BackendFactory.create_backend(settings)
    except (BackendError, ValueError) as e:
        console.print(f"[red]Test failed:[/red] {e}")
        raise typer.Exit(1)

    ui.show_ai_backend_info(backend.backend_type, backend.api_url, backend.model)
    if not await _check_backend(backend, ui):
        raise typer.Exit(1)


def main():
    """Main entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
