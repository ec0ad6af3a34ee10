"""Data models for proposal and author attribution."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


# Reserved RepositoryResult.error for intentionally skipped repositories
DISABLED_ERROR = "disabled"


class RepositoryKind(Enum):
    """Where a repository lives."""

    LOCAL = "local"
    REMOTE = "remote"


class CacheMode(Enum):
    """How remote working copies are kept between runs."""

    PERSISTENT = "persistent"
    TEMPORARY = "temporary"


@dataclass(frozen=True)
class RepositoryDescriptor:
    """A repository to analyze, as loaded from configuration."""

    name: str
    kind: RepositoryKind
    location: str
    branches: tuple[str, ...] = ()
    enabled: bool = True
    clone_depth: Optional[int] = None
    single_branch: bool = False
    cache_mode: Optional[CacheMode] = None

    @property
    def is_remote(self) -> bool:
        return self.kind is RepositoryKind.REMOTE

    @property
    def url(self) -> Optional[str]:
        """Clone URL for remote repositories."""
        return self.location if self.is_remote else None


@dataclass(frozen=True)
class CommitMeta:
    """Commit-level metadata as listed by a commit source."""

    sha: str
    author: str
    author_email: str
    timestamp: datetime
    message: str = ""
    branches: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileChange:
    """Numeric change counts for one file in a commit."""

    path: str
    additions: int = 0
    deletions: int = 0


@dataclass(frozen=True)
class CommitAnalysis:
    """A qualifying commit: touches a proposal and at least one code file."""

    commit: CommitMeta
    proposals: frozenset[str]
    file_changes: tuple[FileChange, ...] = ()
    total_additions: int = 0
    total_deletions: int = 0
    net_changes: int = 0
    repository: Optional[str] = None
    repository_type: Optional[RepositoryKind] = None

    @property
    def is_multi_proposal(self) -> bool:
        """True when the commit cannot be attributed to a single proposal."""
        return len(self.proposals) > 1


@dataclass
class BranchStats:
    """Per-branch contribution of one author."""

    branch: str
    commits: int = 0
    proposals: set[str] = field(default_factory=set)
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    net_changes: int = 0


@dataclass
class AuthorStats:
    """Rollup of all qualifying commits by one normalized author."""

    author: str
    commits: int = 0
    proposals: set[str] = field(default_factory=set)
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    net_changes: int = 0
    first_commit_date: Optional[datetime] = None
    last_commit_date: Optional[datetime] = None
    statistics_period: Optional[str] = None
    branch_stats: dict[str, BranchStats] = field(default_factory=dict)


@dataclass
class ProposalStats:
    """Rollup of all qualifying commits tagged with one proposal."""

    proposal: str
    commits: int = 0
    contributors: set[str] = field(default_factory=set)
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    net_changes: int = 0
    commit_hashes: set[str] = field(default_factory=set)
    multi_proposal_commits: int = 0
    shared_commit_hashes: set[str] = field(default_factory=set)

    @property
    def has_shared_commits(self) -> bool:
        """Some of this proposal's commits also touched other proposals."""
        return self.multi_proposal_commits > 0


@dataclass(frozen=True)
class TimeRange:
    """Reporting window."""

    since: datetime
    until: datetime


@dataclass
class StatsResult:
    """Aggregated statistics for one reporting run."""

    time_range: TimeRange
    branches: list[str] = field(default_factory=list)
    authors: dict[str, AuthorStats] = field(default_factory=dict)
    proposals: dict[str, ProposalStats] = field(default_factory=dict)
    total_commits: int = 0


@dataclass
class RepositoryResult:
    """Outcome of analyzing one repository."""

    repository: str
    kind: RepositoryKind
    path: str = ""
    analyses: list[CommitAnalysis] = field(default_factory=list)
    success: bool = False
    error: Optional[str] = None
    active_authors: frozenset[str] = frozenset()

    @property
    def skipped(self) -> bool:
        """True for repositories disabled in configuration."""
        return self.error == DISABLED_ERROR
