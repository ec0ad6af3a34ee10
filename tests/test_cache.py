"""Tests for the remote repository cache."""

import asyncio
import os
import shutil
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from git import Git
from git.exc import GitCommandError

from conftest import git, init_repo
from specstat.config import RemoteCacheConfig
from specstat.git import CacheError, GitTimeoutError, RepositoryCache, cache_path_for, safe_repo_name
from specstat.git.cache import is_cache_valid, strip_remote_prefix
from specstat.models import CacheMode, RepositoryDescriptor, RepositoryKind
from specstat.ui import CloneStatus, Reporter


def remote(url, name="web", branches=("origin/main",), cache_mode=None):
    return RepositoryDescriptor(
        name=name,
        kind=RepositoryKind.REMOTE,
        location=url,
        branches=tuple(branches),
        cache_mode=cache_mode,
    )


class TestSafeRepoName:
    """Tests for safe_repo_name."""

    def test_from_url(self):
        """Test deriving owner and repository from an ssh url."""
        assert safe_repo_name("", "git@github.com:Org/Repo.git") == "Org-Repo"

    def test_from_https_url(self):
        """Test deriving the name from an https url."""
        assert safe_repo_name(None, "https://github.com/Org/Repo.git/") == "Org-Repo"

    def test_from_name(self):
        """Test that unsafe characters in the name are replaced."""
        assert safe_repo_name("my repo!/x", "git@github.com:Org/Repo.git") == "my-repo-x"

    def test_fallback(self):
        """Test the last-resort name."""
        assert safe_repo_name("///", None) == "repo"


class TestCachePath:
    """Tests for cache_path_for."""

    def test_deterministic(self, tmp_path):
        """Test that the same repository maps to the same directory."""
        repo = remote("git@github.com:Org/web.git")
        assert cache_path_for(tmp_path, repo) == cache_path_for(tmp_path, repo)

    def test_url_changes_path(self, tmp_path):
        """Test that the url is part of the identity."""
        a = cache_path_for(tmp_path, remote("git@github.com:Org/web.git"))
        b = cache_path_for(tmp_path, remote("git@github.com:Other/web.git"))
        assert a != b
        assert a.name.startswith("web-")
        assert len(a.name) == len("web-") + 12

    def test_strip_remote_prefix(self):
        """Test removing the origin/ prefix."""
        assert strip_remote_prefix("origin/main") == "main"
        assert strip_remote_prefix("main") == "main"


class TestIsCacheValid:
    """Tests for is_cache_valid."""

    @pytest.fixture
    def cached(self, tmp_path):
        """A working copy whose origin points at a known url."""
        path = init_repo(tmp_path / "cached")
        git(path, "remote", "add", "origin", "git@github.com:Org/web.git")
        return path

    def test_valid(self, cached):
        """Test a matching, fresh working copy."""
        assert is_cache_valid(cached, "git@github.com:Org/web.git")

    def test_missing_directory(self, tmp_path):
        """Test that a missing directory is invalid."""
        assert not is_cache_valid(tmp_path / "nope", "u")

    def test_directory_without_git(self, tmp_path):
        """Test that a directory without .git is invalid."""
        assert not is_cache_valid(tmp_path, "u")

    def test_url_mismatch(self, cached):
        """Test that a different origin url makes the cache invalid."""
        assert not is_cache_valid(cached, "git@github.com:Org/other.git")

    def test_stale(self, cached):
        """Test that a directory older than max age is invalid even when the url matches."""
        os.utime(cached, (0, 0))
        assert not is_cache_valid(cached, "git@github.com:Org/web.git", max_age_ms=1000)

    def test_fresh_within_max_age(self, cached):
        """Test that a recent directory passes the age check."""
        assert is_cache_valid(cached, "git@github.com:Org/web.git", max_age_ms=3600 * 1000)

    def test_no_origin(self, tmp_path):
        """Test that a working copy without origin is invalid rather than an error."""
        path = init_repo(tmp_path / "no_origin")
        assert not is_cache_valid(path, "u")


class TestProgressSuffix:
    """Tests for clone progress numbering."""

    def test_stable_per_name(self, tmp_path):
        """Test that numbering is assigned on first use and reused."""
        cache = RepositoryCache(root=tmp_path)
        cache.begin_run(2)
        assert cache.progress_suffix("a") == " (1/2)"
        assert cache.progress_suffix("b") == " (2/2)"
        assert cache.progress_suffix("a") == " (1/2)"

    def test_no_remote_repositories(self, tmp_path):
        """Test that no suffix is produced without remote repositories."""
        cache = RepositoryCache(root=tmp_path)
        assert cache.progress_suffix("a") == ""


class TestResolve:
    """Tests for RepositoryCache.resolve with git operations mocked."""

    @pytest.mark.asyncio
    async def test_temporary_mode(self, tmp_path):
        """Test that temporary repositories get a fresh tracked directory."""
        cache = RepositoryCache(RemoteCacheConfig(mode=CacheMode.TEMPORARY), root=tmp_path)
        with patch.object(RepositoryCache, "_clone", new=AsyncMock()) as clone:
            path = await cache.resolve(remote("git@github.com:Org/web.git"))

        clone.assert_awaited_once()
        assert path.parent == tmp_path
        assert path.name.startswith("web-tmp-")
        assert path in cache.tracked_dirs
        assert cache.used_temporary

    @pytest.mark.asyncio
    async def test_per_repository_mode_wins(self, tmp_path):
        """Test that a repository's own cache mode overrides the default."""
        cache = RepositoryCache(RemoteCacheConfig(mode=CacheMode.PERSISTENT), root=tmp_path)
        repo = remote("git@github.com:Org/web.git", cache_mode=CacheMode.TEMPORARY)
        with patch.object(RepositoryCache, "_clone", new=AsyncMock()):
            path = await cache.resolve(repo)
        assert "-tmp-" in path.name

    @pytest.mark.asyncio
    async def test_persistent_valid_cache_is_refreshed(self, tmp_path):
        """Test that a valid cache entry is refreshed, not cloned."""
        cache = RepositoryCache(root=tmp_path)
        cache.is_cache_valid = MagicMock(return_value=True)
        repo = remote("git@github.com:Org/web.git")

        with patch.object(RepositoryCache, "_clone", new=AsyncMock()) as clone, patch.object(
            RepositoryCache, "_refresh", new=AsyncMock()
        ) as refresh:
            path = await cache.resolve(repo)

        assert path == cache_path_for(tmp_path, repo)
        refresh.assert_awaited_once()
        clone.assert_not_awaited()
        assert cache.tracked_dirs == frozenset()

    @pytest.mark.asyncio
    async def test_persistent_invalid_cache_is_recloned(self, tmp_path):
        """Test that an invalid entry is deleted and cloned again."""
        cache = RepositoryCache(root=tmp_path)
        repo = remote("git@github.com:Org/web.git")
        stale = cache.cache_path(repo)
        stale.mkdir(parents=True)
        (stale / "leftover.txt").write_text("x")

        with patch.object(RepositoryCache, "_clone", new=AsyncMock()) as clone:
            await cache.resolve(repo)

        clone.assert_awaited_once()
        assert not stale.exists()

    @pytest.mark.asyncio
    async def test_force_clone_skips_validity(self, tmp_path):
        """Test that force_clone clones even when the cache is valid."""
        cache = RepositoryCache(root=tmp_path, force_clone=True)
        cache.is_cache_valid = MagicMock(return_value=True)

        with patch.object(RepositoryCache, "_clone", new=AsyncMock()) as clone, patch.object(
            RepositoryCache, "_refresh", new=AsyncMock()
        ) as refresh:
            await cache.resolve(remote("git@github.com:Org/web.git"))

        clone.assert_awaited_once()
        refresh.assert_not_awaited()
        cache.is_cache_valid.assert_not_called()

    @pytest.mark.asyncio
    async def test_cleanup_on_complete_tracks_persistent(self, tmp_path):
        """Test that persistent entries are tracked when cleanup on complete is set."""
        cache = RepositoryCache(RemoteCacheConfig(cleanup_on_complete=True), root=tmp_path)
        repo = remote("git@github.com:Org/web.git")
        with patch.object(RepositoryCache, "_clone", new=AsyncMock()):
            path = await cache.resolve(repo)
        assert path in cache.tracked_dirs

    @pytest.mark.asyncio
    async def test_missing_url(self, tmp_path):
        """Test that a remote without url fails with a CacheError."""
        cache = RepositoryCache(root=tmp_path)
        with pytest.raises(CacheError, match="no clone URL"):
            await cache.resolve(remote(""))

    @pytest.mark.asyncio
    async def test_clone_failure(self, tmp_path):
        """Test that a failed clone raises, reports and is tracked for cleanup."""
        reporter = MagicMock(spec=Reporter)
        cache = RepositoryCache(root=tmp_path, reporter=reporter)
        repo = remote("git@github.com:Org/web.git")

        with patch.object(
            RepositoryCache, "_clone_sync", side_effect=GitCommandError("clone", 128)
        ):
            with pytest.raises(CacheError) as exc_info:
                await cache.resolve(repo)

        assert exc_info.value.repository == "web"
        assert exc_info.value.operation == "clone"
        assert cache.cache_path(repo) in cache.tracked_dirs
        statuses = [c.args[0] for c in reporter.clone_status.call_args_list]
        assert statuses == [CloneStatus.START, CloneStatus.FAIL]

    @pytest.mark.asyncio
    async def test_clone_timeout(self, tmp_path):
        """Test that a slow clone raises a timeout naming operation and repository."""
        cache = RepositoryCache(root=tmp_path, timeout=0.05)

        with patch.object(RepositoryCache, "_clone_sync", side_effect=lambda *a: time.sleep(0.3)):
            with pytest.raises(GitTimeoutError, match="Clone timeout for web"):
                await cache.resolve(remote("git@github.com:Org/web.git"))

    @pytest.mark.asyncio
    async def test_cancelled_clone_is_tracked(self, tmp_path):
        """Test that a clone interrupted by cancellation is removed on cleanup."""
        cache = RepositoryCache(root=tmp_path)
        repo = remote("git@github.com:Org/web.git")

        with patch.object(RepositoryCache, "_clone_sync", side_effect=lambda *a: time.sleep(1.0)):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(cache.resolve(repo), timeout=0.3)

        assert cache.cache_path(repo) in cache.tracked_dirs


class TestRealClone:
    """Tests that clone and refresh a local repository through git."""

    @pytest.mark.asyncio
    async def test_clone_then_refresh(self, proposal_repo, tmp_path):
        """Test that the second resolve reuses the first clone."""
        reporter = MagicMock(spec=Reporter)
        cache = RepositoryCache(root=tmp_path / "cache", reporter=reporter, timeout=60)
        repo = remote(str(proposal_repo))
        cache.begin_run(1)

        first = await cache.resolve(repo)
        assert (first / ".git").exists()
        assert (first / "src" / "auth.py").exists()
        assert cache.is_cache_valid(first, str(proposal_repo))

        second = await cache.resolve(repo)

        assert second == first
        reporter.cache_refreshing.assert_called_once_with("web", str(first))
        statuses = [c.args[0] for c in reporter.clone_status.call_args_list]
        assert statuses == [CloneStatus.START, CloneStatus.SUCCESS]
        assert reporter.clone_status.call_args_list[0].args[2] == " (1/1)"

    @pytest.mark.asyncio
    async def test_refresh_tolerates_missing_branch(self, proposal_repo, tmp_path):
        """Test that a branch missing on the remote leaves the fetched state in place."""
        cache = RepositoryCache(root=tmp_path / "cache", timeout=60)
        first = await cache.resolve(remote(str(proposal_repo)))

        second = await cache.resolve(remote(str(proposal_repo), branches=("origin/nope",)))

        assert second == first
        assert (second / "src" / "auth.py").exists()

    @pytest.mark.asyncio
    async def test_refresh_fetch_failure(self, proposal_repo, tmp_path):
        """Test that a failed fetch of a cached copy is an update error."""
        cache = RepositoryCache(root=tmp_path / "cache", timeout=60)
        repo = remote(str(proposal_repo))
        await cache.resolve(repo)

        with patch.object(Git, "fetch", create=True, side_effect=GitCommandError("fetch", 128)):
            with pytest.raises(CacheError) as exc_info:
                await cache.resolve(repo)

        assert exc_info.value.operation == "update"
        assert exc_info.value.repository == "web"
        assert "Fetch failed for web" in str(exc_info.value)


class TestCleanup:
    """Tests for RepositoryCache.cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_idempotent(self, tmp_path):
        """Test that a second cleanup is a no-op."""
        cache = RepositoryCache(RemoteCacheConfig(mode=CacheMode.TEMPORARY), root=tmp_path)
        with patch.object(RepositoryCache, "_clone", new=AsyncMock()):
            path = await cache.resolve(remote("git@github.com:Org/web.git"))

        assert cache.cleanup() == 1
        assert not path.exists()
        assert cache.tracked_dirs == frozenset()
        assert cache.cleanup() == 0
        assert cache.tracked_dirs == frozenset()

    def test_cleanup_nothing_tracked(self, tmp_path):
        """Test cleanup without tracked directories."""
        reporter = MagicMock(spec=Reporter)
        cache = RepositoryCache(root=tmp_path, reporter=reporter)
        assert cache.cleanup() == 0
        reporter.cleanup_started.assert_not_called()

    def test_cleanup_continues_after_failure(self, tmp_path):
        """Test that one failed removal does not stop the others."""
        cache = RepositoryCache(root=tmp_path)
        bad = tmp_path / "bad"
        good = tmp_path / "good"
        bad.mkdir()
        good.mkdir()
        cache._tracked.update({bad, good})

        real_rmtree = shutil.rmtree

        def flaky_rmtree(path, *args, **kwargs):
            if path == bad:
                raise OSError("busy")
            return real_rmtree(path, *args, **kwargs)

        with patch("specstat.git.cache.shutil.rmtree", side_effect=flaky_rmtree):
            removed = cache.cleanup()

        assert removed == 1
        assert bad.exists()
        assert not good.exists()
        assert cache.tracked_dirs == frozenset()
