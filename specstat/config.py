"""Configuration for specstat.

Module-level constants hold the defaults (a few can be overridden from the
environment or a ``.env`` file). Configuration files are JSON with camelCase
keys and are parsed field by field into frozen dataclasses; unknown keys are
rejected rather than silently merged.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from specstat.models import CacheMode, RepositoryDescriptor, RepositoryKind

# Load .env file from the working directory
load_dotenv()

CONFIG_VERSION = 1

# Searched (in the repository, then the working directory) when no
# configuration file is given explicitly
CONFIG_FILENAMES = (".specstat.json", "specstat.config.json")

DEFAULT_CACHE_DIR = Path(
    os.getenv("SPECSTAT_CACHE_DIR", str(Path.home() / ".specstat" / "cache" / "repos"))
)
DEFAULT_MAX_CONCURRENT = int(os.getenv("SPECSTAT_MAX_CONCURRENT", "3"))
DEFAULT_TIMEOUT_MS = int(os.getenv("SPECSTAT_TIMEOUT_MS", "600000"))

DEFAULT_OPENSPEC_DIR = "openspec/"
DEFAULT_EXCLUDE_EXTENSIONS = (
    ".md",
    ".txt",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
)
DEFAULT_ACTIVE_USER_WEEKS = 2
DEFAULT_SINCE_HOURS = -30
DEFAULT_UNTIL_HOURS = 20
DEFAULT_BRANCHES = ("origin/master",)


class ConfigError(ValueError):
    """Exception raised for invalid or missing configuration."""

    pass


@dataclass(frozen=True)
class ParallelismConfig:
    """Concurrency limits for multi-repository runs."""

    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class RemoteCacheConfig:
    """Behaviour of the on-disk clone cache."""

    mode: CacheMode = CacheMode.PERSISTENT
    dir: Optional[Path] = None
    max_age_ms: Optional[int] = None
    cleanup_on_complete: bool = False
    cleanup_on_error: bool = True
    auto_cleanup: bool = True

    @property
    def cache_root(self) -> Path:
        """Directory holding cached working copies."""
        return self.dir if self.dir is not None else DEFAULT_CACHE_DIR


@dataclass(frozen=True)
class AnalysisConfig:
    """Complete, validated configuration for one run."""

    version: int = CONFIG_VERSION
    repositories: tuple[RepositoryDescriptor, ...] = ()
    parallelism: ParallelismConfig = field(default_factory=ParallelismConfig)
    remote_cache: RemoteCacheConfig = field(default_factory=RemoteCacheConfig)
    auto_fetch: bool = True
    author_mapping: dict[str, str] = field(default_factory=dict)
    active_user_weeks: int = DEFAULT_ACTIVE_USER_WEEKS
    openspec_dir: str = DEFAULT_OPENSPEC_DIR
    exclude_extensions: tuple[str, ...] = DEFAULT_EXCLUDE_EXTENSIONS
    default_since_hours: int = DEFAULT_SINCE_HOURS
    default_until_hours: int = DEFAULT_UNTIL_HOURS
    default_branches: tuple[str, ...] = DEFAULT_BRANCHES

    @property
    def enabled_repositories(self) -> list[RepositoryDescriptor]:
        return [repo for repo in self.repositories if repo.enabled]


def normalize_author(author: str, mapping: Optional[dict[str, str]] = None) -> str:
    """Map an author name through the alias table (exact match only)."""
    if not mapping:
        return author
    return mapping.get(author) or author


_TOP_LEVEL_KEYS = {
    "$schema",
    "version",
    "mode",
    "repositories",
    "parallelism",
    "remoteCache",
    "autoFetch",
    "authorMapping",
    "activeUserWeeks",
    "openspecDir",
    "excludeExtensions",
    "defaultSinceHours",
    "defaultUntilHours",
    "defaultBranches",
}
_REPOSITORY_KEYS = {
    "name",
    "type",
    "path",
    "url",
    "branches",
    "enabled",
    "cloneOptions",
    "cacheMode",
}
_CLONE_OPTION_KEYS = {"depth", "singleBranch"}
_PARALLELISM_KEYS = {"maxConcurrent", "timeout"}
_REMOTE_CACHE_KEYS = {
    "mode",
    "dir",
    "maxAge",
    "cleanupOnComplete",
    "cleanupOnError",
    "autoCleanup",
}


def _check_keys(data: dict, allowed: set[str], where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"Unknown field(s) in {where}: {', '.join(unknown)}")


def _get(data: dict, key: str, expected: type, default: Any, where: str) -> Any:
    """Read an optional typed field, falling back to ``default`` when absent."""
    value = data.get(key)
    if value is None:
        return default
    # bool is a subclass of int; reject it where a number is expected
    if expected is int and isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be an integer")
    if not isinstance(value, expected):
        raise ConfigError(f"{where}.{key} must be of type {expected.__name__}")
    return value


def _get_str_list(data: dict, key: str, default: tuple, where: str) -> tuple[str, ...]:
    value = _get(data, key, list, None, where)
    if value is None:
        return default
    if not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{where}.{key} must be a list of strings")
    return tuple(value)


def _parse_cache_mode(value: Any, where: str) -> CacheMode:
    try:
        return CacheMode(value)
    except ValueError:
        raise ConfigError(f"{where} must be 'persistent' or 'temporary', got {value!r}")


def parse_repository(data: Any, index: int) -> RepositoryDescriptor:
    """Validate one ``repositories`` entry.

    Args:
        data: Raw JSON object
        index: 1-based position, used in error messages

    Returns:
        RepositoryDescriptor

    Raises:
        ConfigError: If a required field is missing or malformed
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Repository #{index} must be an object")

    name = data.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError(f"Repository #{index} is missing a name")
    where = f"repositories[{name}]"
    _check_keys(data, _REPOSITORY_KEYS, where)

    try:
        kind = RepositoryKind(data.get("type"))
    except ValueError:
        raise ConfigError(f"Repository '{name}' must have type 'local' or 'remote'")

    location_key = "url" if kind is RepositoryKind.REMOTE else "path"
    location = _get(data, location_key, str, "", where)
    if not location:
        raise ConfigError(f"Repository '{name}' is missing '{location_key}'")

    branches = _get_str_list(data, "branches", (), where)
    if not branches:
        raise ConfigError(f"Repository '{name}' must list at least one branch")

    clone_options = _get(data, "cloneOptions", dict, {}, where)
    _check_keys(clone_options, _CLONE_OPTION_KEYS, f"{where}.cloneOptions")
    depth = _get(clone_options, "depth", int, None, f"{where}.cloneOptions")
    if depth is not None and depth < 1:
        raise ConfigError(f"{where}.cloneOptions.depth must be positive")

    cache_mode = None
    if data.get("cacheMode") is not None:
        cache_mode = _parse_cache_mode(data["cacheMode"], f"{where}.cacheMode")

    return RepositoryDescriptor(
        name=name,
        kind=kind,
        location=location,
        branches=branches,
        enabled=_get(data, "enabled", bool, True, where),
        clone_depth=depth,
        single_branch=_get(clone_options, "singleBranch", bool, False, f"{where}.cloneOptions"),
        cache_mode=cache_mode,
    )


def _parse_parallelism(data: dict) -> ParallelismConfig:
    _check_keys(data, _PARALLELISM_KEYS, "parallelism")
    max_concurrent = _get(data, "maxConcurrent", int, DEFAULT_MAX_CONCURRENT, "parallelism")
    timeout_ms = _get(data, "timeout", int, DEFAULT_TIMEOUT_MS, "parallelism")
    if max_concurrent < 1:
        raise ConfigError("parallelism.maxConcurrent must be at least 1")
    if timeout_ms <= 0:
        raise ConfigError("parallelism.timeout must be positive")
    return ParallelismConfig(max_concurrent=max_concurrent, timeout_ms=timeout_ms)


def _parse_remote_cache(data: dict) -> RemoteCacheConfig:
    _check_keys(data, _REMOTE_CACHE_KEYS, "remoteCache")
    mode = CacheMode.PERSISTENT
    if data.get("mode") is not None:
        mode = _parse_cache_mode(data["mode"], "remoteCache.mode")
    cache_dir = _get(data, "dir", str, None, "remoteCache")
    max_age = _get(data, "maxAge", int, None, "remoteCache")
    if max_age is not None and max_age < 0:
        raise ConfigError("remoteCache.maxAge must not be negative")
    return RemoteCacheConfig(
        mode=mode,
        dir=Path(cache_dir).expanduser() if cache_dir else None,
        max_age_ms=max_age,
        cleanup_on_complete=_get(data, "cleanupOnComplete", bool, False, "remoteCache"),
        cleanup_on_error=_get(data, "cleanupOnError", bool, True, "remoteCache"),
        auto_cleanup=_get(data, "autoCleanup", bool, True, "remoteCache"),
    )


def parse_config(data: Any, require_repositories: bool = False) -> AnalysisConfig:
    """Build an AnalysisConfig from decoded JSON.

    Args:
        data: Decoded configuration document
        require_repositories: Fail when the repository list is missing or empty

    Returns:
        Validated AnalysisConfig

    Raises:
        ConfigError: On any validation failure
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")
    _check_keys(data, _TOP_LEVEL_KEYS, "configuration")

    version = _get(data, "version", int, CONFIG_VERSION, "configuration")
    if version != CONFIG_VERSION:
        raise ConfigError(f"Unsupported configuration version: {version}")

    raw_repos = data.get("repositories")
    if raw_repos is None:
        if require_repositories:
            raise ConfigError("Configuration has no 'repositories' list")
        raw_repos = []
    if not isinstance(raw_repos, list):
        raise ConfigError("'repositories' must be a list")
    if require_repositories and not raw_repos:
        raise ConfigError("'repositories' must not be empty")

    repositories = tuple(
        parse_repository(item, index) for index, item in enumerate(raw_repos, start=1)
    )
    seen = set()
    for repo in repositories:
        if repo.name in seen:
            raise ConfigError(f"Duplicate repository name: {repo.name}")
        seen.add(repo.name)

    author_mapping = _get(data, "authorMapping", dict, {}, "configuration")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in author_mapping.items()):
        raise ConfigError("authorMapping must map names to names")

    active_weeks = _get(data, "activeUserWeeks", int, DEFAULT_ACTIVE_USER_WEEKS, "configuration")
    if active_weeks < 1:
        raise ConfigError("activeUserWeeks must be at least 1")

    return AnalysisConfig(
        version=version,
        repositories=repositories,
        parallelism=_parse_parallelism(_get(data, "parallelism", dict, {}, "configuration")),
        remote_cache=_parse_remote_cache(_get(data, "remoteCache", dict, {}, "configuration")),
        auto_fetch=_get(data, "autoFetch", bool, True, "configuration"),
        author_mapping=dict(author_mapping),
        active_user_weeks=active_weeks,
        openspec_dir=_get(data, "openspecDir", str, DEFAULT_OPENSPEC_DIR, "configuration"),
        exclude_extensions=_get_str_list(
            data, "excludeExtensions", DEFAULT_EXCLUDE_EXTENSIONS, "configuration"
        ),
        default_since_hours=_get(data, "defaultSinceHours", int, DEFAULT_SINCE_HOURS, "configuration"),
        default_until_hours=_get(data, "defaultUntilHours", int, DEFAULT_UNTIL_HOURS, "configuration"),
        default_branches=_get_str_list(data, "defaultBranches", DEFAULT_BRANCHES, "configuration"),
    )


def find_config_file(repo_path: str | Path = ".") -> Optional[Path]:
    """Look for a configuration file in the repository, then the working directory."""
    for base in (Path(repo_path), Path.cwd()):
        for filename in CONFIG_FILENAMES:
            candidate = base / filename
            if candidate.is_file():
                return candidate
    return None


def load_config(
    path: str | Path | None = None,
    repo_path: str | Path = ".",
    require_repositories: bool = False,
) -> AnalysisConfig:
    """Load and validate a configuration file.

    Args:
        path: Explicit configuration file; searched for when omitted
        repo_path: Repository directory searched before the working directory
        require_repositories: Multi-repository mode needs a repository list

    Returns:
        AnalysisConfig (defaults when no file is found and none is required)

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid
    """
    if path is not None:
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigError(f"Configuration file not found: {config_path.resolve()}")
    else:
        config_path = find_config_file(repo_path)
        if config_path is None:
            if require_repositories:
                raise ConfigError("No configuration file found")
            return AnalysisConfig()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}")

    return parse_config(data, require_repositories=require_repositories)


def template_config() -> dict:
    """Starter multi-repository configuration written by ``specstat init``."""
    return {
        "version": CONFIG_VERSION,
        "repositories": [
            {
                "name": "local-project",
                "type": "local",
                "path": ".",
                "branches": list(DEFAULT_BRANCHES),
            },
            {
                "name": "remote-project",
                "type": "remote",
                "url": "git@github.com:your-org/your-repo.git",
                "branches": list(DEFAULT_BRANCHES),
                "cloneOptions": {"depth": None, "singleBranch": False},
                "enabled": False,
            },
        ],
        "parallelism": {
            "maxConcurrent": DEFAULT_MAX_CONCURRENT,
            "timeout": DEFAULT_TIMEOUT_MS,
        },
        "remoteCache": {
            "mode": CacheMode.PERSISTENT.value,
            "cleanupOnComplete": False,
            "cleanupOnError": True,
            "autoCleanup": True,
        },
        "autoFetch": True,
        "authorMapping": {},
        "activeUserWeeks": DEFAULT_ACTIVE_USER_WEEKS,
        "openspecDir": DEFAULT_OPENSPEC_DIR,
        "excludeExtensions": list(DEFAULT_EXCLUDE_EXTENSIONS),
        "defaultSinceHours": DEFAULT_SINCE_HOURS,
        "defaultUntilHours": DEFAULT_UNTIL_HOURS,
    }
