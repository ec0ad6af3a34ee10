"""Shared pytest fixtures for specstat tests."""

import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path

import pytest

from specstat.models import CommitAnalysis, CommitMeta, FileChange


def git(repo_path, *args, env=None):
    """Run a git command in a test repository."""
    return subprocess.run(
        ["git", *args],
        cwd=repo_path,
        capture_output=True,
        check=True,
        text=True,
        env=env,
    )


def init_repo(repo_path: Path, branch: str = "main") -> Path:
    """Create an empty repository with a fixed identity."""
    repo_path.mkdir(parents=True, exist_ok=True)
    git(repo_path, "init", "-q")
    git(repo_path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    git(repo_path, "config", "user.email", "test@example.com")
    git(repo_path, "config", "user.name", "Test Author")
    git(repo_path, "config", "commit.gpgsign", "false")
    return repo_path


def commit_files(repo_path: Path, files: dict, message: str, author: str = "Test Author", date: str | None = None):
    """Write files and commit them, optionally with a fixed author and date."""
    for name, content in files.items():
        path = repo_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    git(repo_path, "add", "-A")

    env = dict(os.environ)
    env["GIT_AUTHOR_NAME"] = author
    env["GIT_AUTHOR_EMAIL"] = f"{author.lower().replace(' ', '.')}@example.com"
    if date:
        env["GIT_AUTHOR_DATE"] = date
        env["GIT_COMMITTER_DATE"] = date
    git(repo_path, "commit", "-q", "-m", message, env=env)
    return git(repo_path, "rev-parse", "HEAD").stdout.strip()


@pytest.fixture
def make_commit():
    """Factory for CommitMeta values."""

    def _make(sha="abc123", author="Alice", timestamp=None, branches=()):
        return CommitMeta(
            sha=sha,
            author=author,
            author_email=f"{author.lower()}@example.com",
            timestamp=timestamp or datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
            message="change",
            branches=tuple(branches),
        )

    return _make


@pytest.fixture
def make_analysis(make_commit):
    """Factory for CommitAnalysis values with one code file."""

    def _make(
        sha="abc123",
        author="Alice",
        proposals=("P",),
        additions=10,
        deletions=4,
        files=1,
        timestamp=None,
        branches=(),
    ):
        changes = tuple(
            FileChange(path=f"src/file{i}.py", additions=additions if i == 0 else 0, deletions=deletions if i == 0 else 0)
            for i in range(files)
        )
        return CommitAnalysis(
            commit=make_commit(sha=sha, author=author, timestamp=timestamp, branches=branches),
            proposals=frozenset(proposals),
            file_changes=changes,
            total_additions=additions,
            total_deletions=deletions,
            net_changes=additions - deletions,
        )

    return _make


@pytest.fixture
def window():
    """A reporting window covering January 2024."""
    return (
        datetime(2024, 1, 1, tzinfo=timezone.utc),
        datetime(2024, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
    )


@pytest.fixture
def proposal_repo(tmp_path):
    """Repository with qualifying and non-qualifying commits in January 2024.

    Commits, in order:
        1. README only (no proposal, no code)
        2. proposal "add-auth" plus src/auth.py (qualifies, +3)
        3. src/util.py only (no proposal)
        4. proposals "add-auth" and "add-api" plus src/api.py (qualifies, +2)
        5. proposal "docs-only" plus notes.md (no code)
    """
    repo_path = init_repo(tmp_path / "proposal_repo")
    commit_files(repo_path, {"README.md": "# Test\n"}, "initial", date="2024-01-10T09:00:00+00:00")
    commit_files(
        repo_path,
        {
            "openspec/changes/add-auth/proposal.md": "# Auth\n",
            "src/auth.py": "a = 1\nb = 2\nc = 3\n",
        },
        "add auth",
        author="Alice",
        date="2024-01-11T09:00:00+00:00",
    )
    commit_files(repo_path, {"src/util.py": "x = 1\n"}, "util", author="Bob", date="2024-01-12T09:00:00+00:00")
    commit_files(
        repo_path,
        {
            "openspec/changes/add-auth/tasks.md": "- [x] auth\n",
            "openspec/changes/add-api/proposal.md": "# API\n",
            "src/api.py": "def api():\n    pass\n",
        },
        "add api",
        author="Bob",
        date="2024-01-13T09:00:00+00:00",
    )
    commit_files(
        repo_path,
        {
            "openspec/changes/docs-only/proposal.md": "# Docs\n",
            "notes.md": "notes\n",
        },
        "docs",
        author="Alice",
        date="2024-01-14T09:00:00+00:00",
    )
    return repo_path
