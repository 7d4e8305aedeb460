"""
Console output with Rich components.

Everything is written to stderr: stdout is reserved for the generated message
and git shows hook stderr to the user.
"""

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from ..aggregator import CommitMessage, FileSummary
from ..config.settings import Settings
from ..diff.splitter import ChangeKind


class DiffScribeConsole:
    """Console interface for diffscribe."""

    def __init__(self, settings: Settings, console: Optional[Console] = None):
        """Initialize console with settings."""
        self.settings = settings
        self._setup_styles()
        self.console = console or Console(
            stderr=True,
            color_system="auto" if settings.ui.use_colors else None,
            theme=self.theme
        )

    def _setup_styles(self) -> None:
        """Setup custom styles for consistent theming."""
        self.styles = {
            "title": "bold blue",
            "success": "bold green",
            "warning": "bold yellow",
            "error": "bold red",
            "info": "blue",
            "muted": "dim",
            "file_added": "green",
            "file_modified": "yellow",
            "file_deleted": "red",
            "file_renamed": "cyan",
            "commit_type": "bold magenta",
        }
        self.theme = Theme(self.styles)

    def show_ai_backend_info(self, backend_type: str, api_url: str, model: str) -> None:
        """Show AI backend information."""
        backend_panel = Panel(
            f"[bold]{backend_type.title()}[/bold] @ {api_url}\n"
            f"Model: [cyan]{model}[/cyan]",
            title="AI Backend",
            box=box.ROUNDED,
            style="blue"
        )
        self.console.print(backend_panel)

    def show_file_summaries(self, files: Sequence[FileSummary]) -> None:
        """Print the per-file summaries in a table."""
        if not files:
            return

        table = Table(title="File Summaries", box=box.SIMPLE_HEAD)
        table.add_column("Status", style="bold", width=9)
        table.add_column("File", style="bold")
        table.add_column("Summary")

        for summary in files:
            style = {
                ChangeKind.ADDED: "file_added",
                ChangeKind.MODIFIED: "file_modified",
                ChangeKind.DELETED: "file_deleted",
                ChangeKind.RENAMED: "file_renamed",
            }[summary.change_kind]
            text = escape(summary.summary_text)
            if summary.failed:
                text = f"[muted]{text}[/muted]"
            table.add_row(
                f"[{style}]{summary.change_kind.value.title()}[/{style}]",
                escape(summary.path),
                text
            )

        self.console.print(table)

    def show_commit_message_preview(self, message: CommitMessage) -> None:
        """Show commit message preview."""
        title, _, rest = message.text.partition("\n")
        if ":" in title:
            prefix, description = title.split(":", 1)
            title = f"[commit_type]{escape(prefix)}[/commit_type]:{escape(description)}"
        else:
            title = escape(title)

        message_panel = Panel(
            title + ("\n" + escape(rest) if rest else ""),
            title="Generated Commit Message",
            subtitle=(
                f"{message.stats.files_changed} file(s), "
                f"+{message.stats.lines_added} -{message.stats.lines_removed}"
            ),
            box=box.ROUNDED,
            style="green"
        )
        self.console.print(message_panel)

    def show_configuration(self) -> None:
        """Show current configuration."""
        settings = self.settings
        self.console.print("[bold blue]diffscribe configuration[/bold blue]")
        self.console.print()

        self.console.print("[bold]AI Backend:[/bold]")
        self.console.print(f"  Type: {settings.ai.backend_type}")
        self.console.print(f"  URL: {settings.ai.api_url}")
        self.console.print(f"  Model: {settings.ai.model}")
        self.console.print(f"  API key: {'set' if settings.ai.api_key else 'not set'}")
        self.console.print(f"  Timeout: {settings.ai.timeout}s, attempts: {settings.ai.max_retries}")
        self.console.print()

        self.console.print("[bold]Pipeline:[/bold]")
        self.console.print(f"  Max tokens per request: {settings.pipeline.max_tokens_per_request}")
        self.console.print(f"  Worker pool size: {settings.pipeline.worker_pool_size}")
        self.console.print(f"  Run deadline: {settings.pipeline.run_deadline}s")
        self.console.print(f"  Ignored files: {', '.join(settings.pipeline.ignored_files) or '-'}")
        self.console.print()

        self.console.print("[bold]Output:[/bold]")
        self.console.print(f"  Generate title: {settings.output.generate_title}")
        self.console.print(f"  Generate summary: {settings.output.generate_summary}")
        self.console.print(f"  Conventional commit: {settings.output.conventional_commit}")
        self.console.print(f"  Per-file summary: {settings.output.show_per_file_summary}")
        self.console.print(f"  Allow amend: {settings.hook.allow_amend}")

    def show_progress_spinner(self, description: str):
        """Create a progress spinner context manager."""
        return self.console.status(f"[blue]{description}...[/blue]", spinner="dots")

    def print_success(self, message: str) -> None:
        """Print success message."""
        self.console.print(f"[success]✓ {escape(message)}[/success]")

    def print_warning(self, message: str) -> None:
        """Print warning message."""
        self.console.print(f"[warning]⚠ {escape(message)}[/warning]")

    def print_error(self, message: str) -> None:
        """Print error message."""
        self.console.print(f"[error]✗ {escape(message)}[/error]")

    def print_info(self, message: str) -> None:
        """Print info message."""
        self.console.print(f"[info]ℹ {escape(message)}[/info]")
