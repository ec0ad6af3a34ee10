"""GitPython wrapper for commit enumeration and analysis."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence

from git import Head, RemoteReference, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from specstat.config import normalize_author
from specstat.git.paths import PathRules, build_analysis
from specstat.models import CommitAnalysis, CommitMeta, FileChange


class GitRepositoryError(Exception):
    """Exception raised for git repository errors."""

    pass


class CommitSource(Protocol):
    """What the orchestrator needs from a working copy."""

    def fetch_remote(self) -> None: ...

    def list_commits(
        self, since: datetime, until: datetime, branches: Sequence[str] = ()
    ) -> list[CommitMeta]: ...

    def analyze_commit(self, commit: CommitMeta) -> Optional[CommitAnalysis]: ...

    def active_authors(
        self, weeks: int, author_mapping: Optional[dict[str, str]] = None
    ) -> set[str]: ...


def _aware(dt: datetime) -> datetime:
    """Treat naive datetimes as local time."""
    return dt if dt.tzinfo is not None else dt.astimezone()


def match_branch_refs(ref_names: Iterable[str], filters: Sequence[str]) -> list[str]:
    """Select the refs a branch filter refers to.

    A filter matches a ref with the same name or one ending in ``/<filter>``
    (so ``main`` matches ``origin/main``). When nothing matches a filter such
    as ``origin/main``, a local head named ``main`` is used instead.

    Args:
        ref_names: Local head and remote-tracking ref names
        filters: Branch filters; empty means every ref

    Returns:
        Matched ref names, without duplicates, in filter order
    """
    names = list(ref_names)
    if not filters:
        return names

    matched: list[str] = []
    for pattern in (f.strip() for f in filters):
        if not pattern:
            continue
        hits = [n for n in names if n == pattern or n.endswith("/" + pattern)]
        if not hits and "/" in pattern:
            short = pattern.split("/", 1)[1]
            hits = [n for n in names if n == short]
        for name in hits:
            if name not in matched:
                matched.append(name)
    return matched


class GitRepository:
    """Commit source backed by a local working copy.

    Lists commits on the configured branches within a time window and
    classifies each commit's changed files into proposal markers and code.
    """

    def __init__(self, path: str | Path, rules: Optional[PathRules] = None):
        """Initialize the repository wrapper.

        Args:
            path: Path to the git working copy
            rules: Path classification rules (defaults when omitted)

        Raises:
            GitRepositoryError: If path is not a valid git repository
        """
        self.path = Path(path)
        self.rules = rules or PathRules()

        try:
            self._repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitRepositoryError(f"Not a git repository: {path}")

    @property
    def name(self) -> str:
        return self.path.name

    def ref_names(self) -> list[str]:
        """Local heads and remote-tracking branches, without ``*/HEAD``."""
        names = []
        for ref in self._repo.refs:
            if isinstance(ref, (Head, RemoteReference)) and not ref.name.endswith("/HEAD"):
                names.append(ref.name)
        return names

    def fetch_remote(self) -> None:
        """Fetch all remotes so remote-tracking refs are current."""
        try:
            self._repo.git.fetch("--all", "--prune")
        except GitCommandError as e:
            raise GitRepositoryError(f"Fetch failed for {self.path}: {e}")

    def list_commits(
        self,
        since: datetime,
        until: datetime,
        branches: Sequence[str] = (),
    ) -> list[CommitMeta]:
        """List commits inside ``[since, until]`` on the matching branches.

        Args:
            since: Window start (inclusive)
            until: Window end (inclusive)
            branches: Branch filters; empty means all heads and remote refs

        Returns:
            CommitMeta per commit, each carrying the matched refs containing it
        """
        since = _aware(since)
        until = _aware(until)
        refs = match_branch_refs(self.ref_names(), branches)

        first_seen: dict[str, object] = {}
        containing: dict[str, list[str]] = {}

        try:
            for ref in refs:
                # Merge stats repeat the merged branch's changes
                for git_commit in self._repo.iter_commits(
                    rev=ref, since=since.isoformat(), until=until.isoformat(), no_merges=True
                ):
                    timestamp = datetime.fromtimestamp(
                        git_commit.committed_date, tz=timezone.utc
                    )
                    if timestamp < since or timestamp > until:
                        continue
                    sha = git_commit.hexsha
                    if sha not in first_seen:
                        first_seen[sha] = git_commit
                        containing[sha] = []
                    containing[sha].append(ref)
        except GitCommandError as e:
            raise GitRepositoryError(f"Git command failed: {e}")

        return [
            self._convert_commit(git_commit, containing[sha])
            for sha, git_commit in first_seen.items()
        ]

    def _convert_commit(self, git_commit, branches: list[str]) -> CommitMeta:
        return CommitMeta(
            sha=git_commit.hexsha,
            author=git_commit.author.name or "",
            author_email=git_commit.author.email or "",
            timestamp=datetime.fromtimestamp(git_commit.committed_date, tz=timezone.utc),
            message=git_commit.message,
            branches=tuple(branches),
        )

    def analyze_commit(self, commit: CommitMeta) -> Optional[CommitAnalysis]:
        """Build the analysis for a commit, or None if it does not qualify.

        Merge commits never qualify.

        Raises:
            GitRepositoryError: If the commit's stats cannot be read
        """
        try:
            git_commit = self._repo.commit(commit.sha)
            if len(git_commit.parents) > 1:
                return None
            files = git_commit.stats.files
        except (GitCommandError, ValueError) as e:
            raise GitRepositoryError(f"Cannot read stats for {commit.sha[:8]}: {e}")

        changes = [
            FileChange(
                path=str(path),
                additions=int(counts.get("insertions", 0)),
                deletions=int(counts.get("deletions", 0)),
            )
            for path, counts in files.items()
        ]
        return build_analysis(commit, changes, self.rules)

    def active_authors(
        self, weeks: int, author_mapping: Optional[dict[str, str]] = None
    ) -> set[str]:
        """Normalized authors with at least one commit in the last ``weeks`` weeks."""
        since = datetime.now(timezone.utc) - timedelta(weeks=weeks)
        try:
            output = self._repo.git.log("--all", f"--since={since.isoformat()}", "--format=%an")
        except GitCommandError as e:
            raise GitRepositoryError(f"Git command failed: {e}")
        return {
            normalize_author(line.strip(), author_mapping)
            for line in output.splitlines()
            if line.strip()
        }
