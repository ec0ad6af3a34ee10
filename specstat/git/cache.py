"""On-disk cache of remote working copies.

Each remote repository gets a directory under the cache root named after a
sanitized form of the repository plus a short hash of its clone URL, so
repeated runs find and refresh the same working copy instead of cloning
again. Temporary-mode repositories are cloned into a fresh directory and
removed by ``cleanup()``.
"""

import asyncio
import hashlib
import logging
import os
import re
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from git import Git, Repo
from git.exc import GitCommandError

from specstat.config import DEFAULT_TIMEOUT_MS, RemoteCacheConfig
from specstat.git.repository import GitRepositoryError
from specstat.models import CacheMode, RepositoryDescriptor
from specstat.ui.reporter import CloneStatus, Reporter

logger = logging.getLogger(__name__)

HASH_LENGTH = 12

# Extra time given to a git process before it is killed, so the asyncio
# timeout fires first and produces the descriptive error
KILL_GRACE_SECONDS = 5.0


class CacheError(GitRepositoryError):
    """Exception raised when a remote working copy cannot be prepared."""

    def __init__(self, message: str, repository: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.repository = repository
        self.operation = operation


class GitTimeoutError(CacheError):
    """A clone or update took longer than the configured timeout."""

    pass


def _sanitize(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "-", value)
    cleaned = re.sub(r"-{2,}", "-", cleaned)
    return cleaned.strip("-")


def safe_repo_name(name: Optional[str], url: Optional[str] = None) -> str:
    """Filesystem-safe label for a repository.

    Uses the configured name when it has any usable characters, otherwise
    the last two segments of the URL (``owner/repo``).

    Examples:
        safe_repo_name("my repo") -> "my-repo"
        safe_repo_name("", "git@github.com:Org/Repo.git") -> "Org-Repo"
    """
    if name:
        safe = _sanitize(name)
        if safe:
            return safe

    if url:
        trimmed = url.strip().rstrip("/")
        if trimmed.endswith(".git"):
            trimmed = trimmed[: -len(".git")]
        segments = [s for s in re.split(r"[/:]", trimmed) if s]
        if segments:
            safe = _sanitize("-".join(segments[-2:]))
            if safe:
                return safe

    return "repo"


def cache_path_for(root: Path, repo: RepositoryDescriptor) -> Path:
    """Deterministic cache directory for a repository."""
    identity = repo.url or repo.name
    digest = hashlib.sha1(identity.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    return Path(root) / f"{safe_repo_name(repo.name, repo.url)}-{digest}"


def strip_remote_prefix(branch: str) -> str:
    return branch[len("origin/"):] if branch.startswith("origin/") else branch


def is_cache_valid(path: Path, url: str, max_age_ms: Optional[int] = None) -> bool:
    """Check whether a cached working copy can be reused.

    Never raises: anything that cannot be verified counts as invalid.

    Args:
        path: Cache directory
        url: Clone URL the cache must point at
        max_age_ms: Maximum age of the directory (modification time)

    Returns:
        True if the directory is a git working copy for ``url`` and fresh
    """
    path = Path(path)
    try:
        if not path.is_dir() or not (path / ".git").exists():
            return False

        if max_age_ms is not None:
            age_ms = (time.time() - path.stat().st_mtime) * 1000
            if age_ms > max_age_ms:
                logger.debug("Cache %s expired (%.0f ms old)", path, age_ms)
                return False

        repo = Repo(path)
        try:
            origin_url = repo.remote("origin").url
        finally:
            repo.close()
    except Exception as e:
        logger.debug("Cache %s unusable: %s", path, e)
        return False

    if origin_url != url:
        logger.debug("Cache %s points at %s, expected %s", path, origin_url, url)
        return False
    return True


class RepositoryCache:
    """Resolves remote repositories to local working copies.

    Tracks the directories created during a run that must be deleted
    afterwards (temporary clones, failed clones, and persistent entries when
    ``cleanup_on_complete`` is set).
    """

    def __init__(
        self,
        settings: Optional[RemoteCacheConfig] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_MS / 1000.0,
        reporter: Optional[Reporter] = None,
        force_clone: bool = False,
        root: Optional[Path] = None,
    ):
        """Initialize the cache.

        Args:
            settings: Cache behaviour (mode, max age, cleanup flags)
            timeout: Seconds allowed for each clone or update
            reporter: Receives clone progress
            force_clone: Ignore existing cache entries
            root: Cache directory (defaults to ``settings.cache_root``)
        """
        self.settings = settings or RemoteCacheConfig()
        self.root = Path(root) if root is not None else self.settings.cache_root
        self.timeout = timeout
        self.reporter = reporter or Reporter()
        self.force_clone = force_clone
        self.used_temporary = False
        self._tracked: set[Path] = set()
        self._clone_order: dict[str, int] = {}
        self._total_clone_targets = 0

    @property
    def tracked_dirs(self) -> frozenset[Path]:
        """Directories that ``cleanup()`` will remove."""
        return frozenset(self._tracked)

    def begin_run(self, total_remote: int) -> None:
        """Reset per-run progress numbering."""
        self._clone_order.clear()
        self._total_clone_targets = total_remote
        self.used_temporary = False

    def progress_suffix(self, repo_name: str) -> str:
        """`` (i/N)`` suffix, assigned on first use and stable for the run."""
        if self._total_clone_targets == 0:
            return ""
        order = self._clone_order.get(repo_name)
        if order is None:
            order = len(self._clone_order) + 1
            self._clone_order[repo_name] = order
        return f" ({order}/{self._total_clone_targets})"

    def mode_for(self, repo: RepositoryDescriptor) -> CacheMode:
        return repo.cache_mode or self.settings.mode

    def cache_path(self, repo: RepositoryDescriptor) -> Path:
        return cache_path_for(self.root, repo)

    def is_cache_valid(self, path: Path, url: str) -> bool:
        return is_cache_valid(path, url, self.settings.max_age_ms)

    async def resolve(self, repo: RepositoryDescriptor) -> Path:
        """Return a ready, up-to-date working copy for a remote repository.

        Raises:
            CacheError: If cloning or refreshing fails
            GitTimeoutError: If cloning or refreshing exceeds the timeout
        """
        if not repo.url:
            raise CacheError(f"Repository {repo.name} has no clone URL", repository=repo.name)

        self.root.mkdir(parents=True, exist_ok=True)

        if self.mode_for(repo) is CacheMode.TEMPORARY:
            self.used_temporary = True
            target = Path(
                tempfile.mkdtemp(prefix=f"{safe_repo_name(repo.name, repo.url)}-tmp-", dir=self.root)
            )
            self._tracked.add(target)
            await self._clone(repo, target)
            return target

        target = self.cache_path(repo)
        if self.settings.cleanup_on_complete:
            self._tracked.add(target)

        valid = False
        if not self.force_clone:
            valid = await asyncio.to_thread(self.is_cache_valid, target, repo.url)

        if valid:
            await self._refresh(repo, target)
            return target

        await asyncio.to_thread(self._remove, target)
        await self._clone(repo, target)
        return target

    async def _run_with_timeout(self, func: Callable, *args, operation: str, repo_name: str):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise GitTimeoutError(
                f"{operation.capitalize()} timeout for {repo_name} after {self.timeout:g}s",
                repository=repo_name,
                operation=operation,
            )

    def _kill_after(self) -> Optional[float]:
        # The git process timeout is not available on Windows
        return None if os.name == "nt" else self.timeout + KILL_GRACE_SECONDS

    async def _clone(self, repo: RepositoryDescriptor, target: Path) -> None:
        suffix = self.progress_suffix(repo.name)
        self.reporter.clone_status(CloneStatus.START, repo.name, suffix)
        try:
            await self._run_with_timeout(
                self._clone_sync, repo, target, operation="clone", repo_name=repo.name
            )
        except asyncio.CancelledError:
            # A half-finished clone must not survive as a cache entry
            self._tracked.add(target)
            raise
        except Exception as e:
            self._tracked.add(target)
            self.reporter.clone_status(CloneStatus.FAIL, repo.name, suffix, str(e))
            if isinstance(e, CacheError):
                raise
            raise CacheError(
                f"Clone failed for {repo.name}: {e}", repository=repo.name, operation="clone"
            ) from e
        self.reporter.clone_status(CloneStatus.SUCCESS, repo.name, suffix)

    def _clone_sync(self, repo: RepositoryDescriptor, target: Path) -> None:
        options = []
        if repo.clone_depth:
            options.append(f"--depth={repo.clone_depth}")
        if repo.single_branch:
            options.append("--single-branch")
        Git().clone(*options, repo.url, str(target), kill_after_timeout=self._kill_after())

    async def _refresh(self, repo: RepositoryDescriptor, target: Path) -> None:
        self.reporter.cache_refreshing(repo.name, str(target))
        try:
            await self._run_with_timeout(
                self._refresh_sync, repo, target, operation="update", repo_name=repo.name
            )
        except GitCommandError as e:
            raise CacheError(
                f"Fetch failed for {repo.name}: {e}", repository=repo.name, operation="update"
            ) from e

    def _refresh_sync(self, repo: RepositoryDescriptor, target: Path) -> None:
        """Fetch, then move the first configured branch to its remote tip."""
        working_copy = Repo(target)
        try:
            working_copy.git.fetch("--all", "--prune", kill_after_timeout=self._kill_after())
            if not repo.branches:
                return
            branch = strip_remote_prefix(repo.branches[0])
            try:
                working_copy.git.checkout(branch)
                working_copy.git.reset("--hard", f"origin/{branch}")
            except GitCommandError as e:
                logger.warning(
                    "Could not reset %s to origin/%s, using fetched state: %s",
                    repo.name,
                    branch,
                    e,
                )
        finally:
            working_copy.close()

    @staticmethod
    def _remove(path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)

    def cleanup(self) -> int:
        """Delete every tracked directory.

        Failures are logged and skipped. Safe to call repeatedly.

        Returns:
            Number of directories removed
        """
        if not self._tracked:
            return 0

        self.reporter.cleanup_started()
        removed = 0
        for directory in sorted(self._tracked):
            try:
                if directory.exists():
                    shutil.rmtree(directory)
                    removed += 1
            except OSError as e:
                logger.warning("Failed to clean up %s: %s", directory, e)

        self._tracked.clear()
        self.reporter.cleanup_finished(removed)
        return removed
