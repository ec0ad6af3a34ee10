"""Tests for data models."""

from datetime import datetime, timezone

import pytest

from specstat.models import (
    DISABLED_ERROR,
    CommitAnalysis,
    ProposalStats,
    RepositoryDescriptor,
    RepositoryKind,
    RepositoryResult,
)


class TestRepositoryDescriptor:
    """Tests for RepositoryDescriptor."""

    def test_remote_has_url(self):
        """Test that a remote descriptor exposes its location as url."""
        repo = RepositoryDescriptor(
            name="web", kind=RepositoryKind.REMOTE, location="git@github.com:Org/web.git"
        )
        assert repo.is_remote
        assert repo.url == "git@github.com:Org/web.git"

    def test_local_has_no_url(self):
        """Test that a local descriptor has no clone url."""
        repo = RepositoryDescriptor(name="api", kind=RepositoryKind.LOCAL, location="../api")
        assert not repo.is_remote
        assert repo.url is None

    def test_defaults(self):
        """Test default clone options."""
        repo = RepositoryDescriptor(name="api", kind=RepositoryKind.LOCAL, location=".")
        assert repo.enabled is True
        assert repo.clone_depth is None
        assert repo.single_branch is False
        assert repo.cache_mode is None

    def test_frozen(self):
        """Test that descriptors are immutable."""
        repo = RepositoryDescriptor(name="api", kind=RepositoryKind.LOCAL, location=".")
        with pytest.raises(AttributeError):
            repo.name = "other"


class TestCommitAnalysis:
    """Tests for CommitAnalysis."""

    def test_single_proposal(self, make_analysis):
        """Test that one proposal is not a multi-proposal commit."""
        assert not make_analysis(proposals=("P",)).is_multi_proposal

    def test_multi_proposal(self, make_analysis):
        """Test that two proposals make a multi-proposal commit."""
        assert make_analysis(proposals=("P", "Q")).is_multi_proposal

    def test_repository_tags_default_to_none(self, make_commit):
        """Test that repository tags are unset until the orchestrator adds them."""
        analysis = CommitAnalysis(commit=make_commit(), proposals=frozenset({"P"}))
        assert analysis.repository is None
        assert analysis.repository_type is None


class TestProposalStats:
    """Tests for ProposalStats."""

    def test_shared_flag(self):
        """Test has_shared_commits follows multi_proposal_commits."""
        stats = ProposalStats(proposal="P")
        assert not stats.has_shared_commits
        stats.multi_proposal_commits = 1
        assert stats.has_shared_commits

    def test_independent_sets(self):
        """Test that default sets are not shared between instances."""
        a = ProposalStats(proposal="A")
        b = ProposalStats(proposal="B")
        a.contributors.add("Alice")
        assert b.contributors == set()


class TestRepositoryResult:
    """Tests for RepositoryResult."""

    def test_skipped(self):
        """Test that the disabled error marks a result as skipped."""
        result = RepositoryResult(repository="r", kind=RepositoryKind.LOCAL, error=DISABLED_ERROR)
        assert result.skipped
        assert not result.success

    def test_failed_is_not_skipped(self):
        """Test that a genuine failure is not treated as skipped."""
        result = RepositoryResult(repository="r", kind=RepositoryKind.LOCAL, error="boom")
        assert not result.skipped

    def test_defaults(self):
        """Test default values."""
        result = RepositoryResult(repository="r", kind=RepositoryKind.REMOTE)
        assert result.analyses == []
        assert result.active_authors == frozenset()
        assert result.path == ""
