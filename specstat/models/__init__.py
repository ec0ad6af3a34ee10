"""Data models for specstat."""

from specstat.models.dataclasses import (
    DISABLED_ERROR,
    AuthorStats,
    BranchStats,
    CacheMode,
    CommitAnalysis,
    CommitMeta,
    FileChange,
    ProposalStats,
    RepositoryDescriptor,
    RepositoryKind,
    RepositoryResult,
    StatsResult,
    TimeRange,
)

__all__ = [
    "DISABLED_ERROR",
    "AuthorStats",
    "BranchStats",
    "CacheMode",
    "CommitAnalysis",
    "CommitMeta",
    "FileChange",
    "ProposalStats",
    "RepositoryDescriptor",
    "RepositoryKind",
    "RepositoryResult",
    "StatsResult",
    "TimeRange",
]
