"""Multi-repository analysis."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from specstat.config import AnalysisConfig
from specstat.git.cache import RepositoryCache
from specstat.git.paths import PathRules
from specstat.git.repository import CommitSource, GitRepository
from specstat.models import (
    DISABLED_ERROR,
    CommitAnalysis,
    RepositoryDescriptor,
    RepositoryResult,
)
from specstat.multi.scheduler import (
    AnalysisCancelled,
    BatchContext,
    CancellationToken,
    run_in_batches,
)
from specstat.ui.reporter import Reporter

logger = logging.getLogger(__name__)

SourceFactory = Callable[[Path], CommitSource]


class MultiRepoAnalyzer:
    """Analyze every configured repository and collect the results.

    Local repositories are analyzed in place; remote ones go through the
    RepositoryCache. Local repositories run first, then remote ones, each
    group in batches of ``parallelism.max_concurrent``. Results come back
    in that order (local in configuration order, then remote in
    configuration order).
    """

    def __init__(
        self,
        config: AnalysisConfig,
        *,
        reporter: Optional[Reporter] = None,
        cache: Optional[RepositoryCache] = None,
        source_factory: Optional[SourceFactory] = None,
        force_clone: bool = False,
    ):
        """Initialize the analyzer.

        Args:
            config: Validated configuration with a repository list
            reporter: Receives progress events (silent by default)
            cache: Cache for remote repositories (built from config if omitted)
            source_factory: Builds a CommitSource for a working copy path
            force_clone: Ignore existing cache entries
        """
        self.config = config
        self.reporter = reporter or Reporter()
        self.cache = cache or RepositoryCache(
            config.remote_cache,
            timeout=config.parallelism.timeout_seconds,
            reporter=self.reporter,
            force_clone=force_clone,
        )
        rules = PathRules.from_config(config)
        self.source_factory = source_factory or (lambda path: GitRepository(path, rules))

    async def analyze_all(
        self,
        since: datetime,
        until: datetime,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[RepositoryResult]:
        """Analyze all enabled repositories.

        Cleanup of cached clones runs even when the run is aborted; the
        aborting exception is re-raised afterwards.

        Args:
            since: Window start
            until: Window end
            cancel_token: Stops the run between batches and commits

        Returns:
            One RepositoryResult per enabled repository
        """
        enabled = []
        for repo in self.config.repositories:
            if repo.enabled:
                enabled.append(repo)
            else:
                self.reporter.repository_skipped(repo)

        local = [repo for repo in enabled if not repo.is_remote]
        remote = [repo for repo in enabled if repo.is_remote]
        self.cache.begin_run(len(remote))

        async def task(repo: RepositoryDescriptor, context: BatchContext) -> RepositoryResult:
            return await self.analyze_repository(repo, since, until, context, cancel_token)

        results: list[RepositoryResult] = []
        aborted = False
        cancelled = False
        try:
            for group in (local, remote):
                if not group:
                    continue
                results.extend(
                    await run_in_batches(
                        group,
                        task,
                        self.config.parallelism.max_concurrent,
                        on_batch=self.reporter.batch_started,
                        cancel_token=cancel_token,
                    )
                )
        except (AnalysisCancelled, asyncio.CancelledError):
            cancelled = True
            raise
        except Exception:
            aborted = True
            raise
        finally:
            had_error = aborted or any(not r.success and not r.skipped for r in results)
            if self._should_cleanup(had_error, cancelled):
                await asyncio.to_thread(self.cache.cleanup)

        return results

    def analyze_all_sync(
        self,
        since: datetime,
        until: datetime,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[RepositoryResult]:
        """Synchronous wrapper for analyze_all."""
        return asyncio.run(self.analyze_all(since, until, cancel_token))

    def _should_cleanup(self, had_error: bool, cancelled: bool) -> bool:
        settings = self.config.remote_cache
        if settings.cleanup_on_complete:
            return True
        if had_error and settings.cleanup_on_error:
            return True
        if self.cache.used_temporary:
            return True
        return cancelled and settings.auto_cleanup

    async def analyze_repository(
        self,
        repo: RepositoryDescriptor,
        since: datetime,
        until: datetime,
        context: Optional[BatchContext] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RepositoryResult:
        """Analyze one repository, capturing any failure in the result.

        Only AnalysisCancelled escapes; every other error becomes a failed
        RepositoryResult so sibling repositories keep running.
        """
        if not repo.enabled:
            self.reporter.repository_skipped(repo)
            return RepositoryResult(
                repository=repo.name, kind=repo.kind, success=False, error=DISABLED_ERROR
            )

        if context is not None:
            self.reporter.repository_started(repo, context)

        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            if repo.is_remote:
                path = await self.cache.resolve(repo)
            else:
                path = self.resolve_local_path(repo.location)
                if not (path / ".git").exists():
                    return self._failed(repo, f"Not a git repository: {path}", path)

            source = await asyncio.to_thread(self.source_factory, path)

            if not repo.is_remote and self.config.auto_fetch:
                self.reporter.fetching(repo)
                await asyncio.to_thread(source.fetch_remote)

            self.reporter.analyzing(repo)
            analyses, active_authors = await asyncio.to_thread(
                self._collect, source, repo, since, until, cancel_token
            )
        except AnalysisCancelled:
            raise
        except Exception as e:
            logger.debug("Analysis of %s failed", repo.name, exc_info=True)
            return self._failed(repo, str(e) or e.__class__.__name__)

        self.reporter.repository_completed(repo, len(analyses))
        return RepositoryResult(
            repository=repo.name,
            kind=repo.kind,
            path=str(path),
            analyses=analyses,
            success=True,
            active_authors=frozenset(active_authors),
        )

    def _failed(
        self, repo: RepositoryDescriptor, error: str, path: Optional[Path] = None
    ) -> RepositoryResult:
        self.reporter.repository_failed(repo, error)
        return RepositoryResult(
            repository=repo.name,
            kind=repo.kind,
            path=str(path) if path else "",
            success=False,
            error=error,
        )

    def _collect(
        self,
        source: CommitSource,
        repo: RepositoryDescriptor,
        since: datetime,
        until: datetime,
        cancel_token: Optional[CancellationToken],
    ) -> tuple[list[CommitAnalysis], set[str]]:
        """Runs in a worker thread: enumerate, analyze and tag commits."""
        analyses = []
        for commit in source.list_commits(since, until, repo.branches):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            analysis = source.analyze_commit(commit)
            if analysis is not None:
                analyses.append(
                    replace(analysis, repository=repo.name, repository_type=repo.kind)
                )

        # Collected now because temporary clones are gone once the run ends
        active_authors = source.active_authors(
            self.config.active_user_weeks, self.config.author_mapping
        )
        return analyses, active_authors

    @staticmethod
    def resolve_local_path(location: str) -> Path:
        """Absolute path for a configured local repository."""
        path = Path(location).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        return path.resolve()


def successful_analyses(results: Iterable[RepositoryResult]) -> list[CommitAnalysis]:
    """Flatten the analyses of all successful repositories, in result order."""
    return [analysis for result in results if result.success for analysis in result.analyses]


def merged_active_authors(results: Iterable[RepositoryResult]) -> set[str]:
    """Union of active authors across successful repositories."""
    authors: set[str] = set()
    for result in results:
        if result.success:
            authors.update(result.active_authors)
    return authors


def requested_branches(config: AnalysisConfig, results: Iterable[RepositoryResult]) -> list[str]:
    """Branch filters of the analyzed repositories, without duplicates."""
    by_name = {repo.name: repo for repo in config.repositories}
    branches: list[str] = []
    for result in results:
        repo = by_name.get(result.repository)
        if repo is None:
            continue
        for branch in repo.branches:
            if branch not in branches:
                branches.append(branch)
    return branches
