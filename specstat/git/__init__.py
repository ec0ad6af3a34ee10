"""Git operations module."""

from specstat.git.repository import (
    CommitSource,
    GitRepository,
    GitRepositoryError,
    match_branch_refs,
)
from specstat.git.paths import PathKind, PathRules, build_analysis
from specstat.git.cache import (
    CacheError,
    GitTimeoutError,
    RepositoryCache,
    cache_path_for,
    safe_repo_name,
)

__all__ = [
    "CommitSource",
    "GitRepository",
    "GitRepositoryError",
    "match_branch_refs",
    "PathKind",
    "PathRules",
    "build_analysis",
    "CacheError",
    "GitTimeoutError",
    "RepositoryCache",
    "cache_path_for",
    "safe_repo_name",
]
