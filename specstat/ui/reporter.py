"""Progress reporting for repository analysis.

The orchestrator and cache report what they are doing through a Reporter
instead of printing directly, so callers decide how (and whether) progress
is shown.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from specstat.models import RepositoryDescriptor
    from specstat.multi.scheduler import BatchContext


DIVIDER = "-" * 64


class CloneStatus(Enum):
    """Stages of a clone reported to the user."""

    START = "start"
    SUCCESS = "success"
    FAIL = "fail"


class Reporter:
    """Receives progress events. The base class ignores them all."""

    def batch_started(self, batch_number: int, total_batches: int, size: int) -> None:
        pass

    def repository_started(self, repo: "RepositoryDescriptor", context: "BatchContext") -> None:
        pass

    def repository_skipped(self, repo: "RepositoryDescriptor") -> None:
        pass

    def clone_status(
        self,
        status: CloneStatus,
        repo_name: str,
        progress_suffix: str = "",
        error: Optional[str] = None,
    ) -> None:
        pass

    def cache_refreshing(self, repo_name: str, path: str) -> None:
        pass

    def fetching(self, repo: "RepositoryDescriptor") -> None:
        pass

    def analyzing(self, repo: "RepositoryDescriptor") -> None:
        pass

    def repository_completed(self, repo: "RepositoryDescriptor", commit_count: int) -> None:
        pass

    def repository_failed(self, repo: "RepositoryDescriptor", error: str) -> None:
        pass

    def cleanup_started(self) -> None:
        pass

    def cleanup_finished(self, removed: int) -> None:
        pass


class ConsoleReporter(Reporter):
    """Prints progress lines to a rich Console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def batch_started(self, batch_number, total_batches, size):
        self.console.print(f"[dim]{DIVIDER}[/dim]")
        self.console.print(
            f"[dim]Batch {batch_number}/{total_batches} ({size} repositories)[/dim]"
        )
        self.console.print(f"[dim]{DIVIDER}[/dim]")

    def repository_started(self, repo, context):
        suffix = " (remote)" if repo.is_remote else ""
        self.console.print(
            f"[blue][{context.index_in_batch + 1}/{context.batch_size}] "
            f"Analyzing {repo.name}{suffix}[/blue]"
        )

    def repository_skipped(self, repo):
        self.console.print(f"[dim]Skipping disabled repository: {repo.name}[/dim]")

    def clone_status(self, status, repo_name, progress_suffix="", error=None):
        if status is CloneStatus.START:
            self.console.print(f"[cyan]Cloning {repo_name}...{progress_suffix}[/cyan]")
        elif status is CloneStatus.SUCCESS:
            self.console.print(f"[green]Cloned {repo_name}{progress_suffix}[/green]")
        else:
            self.console.print(
                f"[red]Failed to clone {repo_name}: {escape(error or 'unknown error')}{progress_suffix}[/red]"
            )

    def cache_refreshing(self, repo_name, path):
        self.console.print(f"[cyan]Updating cached copy of {repo_name}[/cyan] [dim]{path}[/dim]")

    def fetching(self, repo):
        self.console.print("[cyan]  Fetching remote branches...[/cyan]")

    def analyzing(self, repo):
        self.console.print("[dim]  Analyzing commits...[/dim]")

    def repository_completed(self, repo, commit_count):
        self.console.print(
            f"[green]  {repo.name}: {commit_count} qualifying commits[/green]"
        )

    def repository_failed(self, repo, error):
        self.console.print(f"[red]  {repo.name} failed: {escape(error)}[/red]")

    def cleanup_started(self):
        self.console.print("[dim]Cleaning up cloned repositories...[/dim]")

    def cleanup_finished(self, removed):
        self.console.print(f"[green]Cleanup complete ({removed} removed)[/green]")
