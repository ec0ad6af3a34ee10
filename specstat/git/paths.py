"""Classification of changed paths into proposal markers and code."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from specstat.config import DEFAULT_EXCLUDE_EXTENSIONS, DEFAULT_OPENSPEC_DIR
from specstat.models import CommitAnalysis, CommitMeta, FileChange


class PathKind(Enum):
    """What a changed path means for attribution."""

    PROPOSAL = "proposal"
    CODE = "code"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PathRules:
    """Rules for classifying changed paths.

    Proposals live in ``<openspec_dir>changes/<proposal-id>/``. Anything
    else under ``openspec_dir`` is spec metadata and never counts as code;
    files with an excluded extension are ignored everywhere.
    """

    openspec_dir: str = DEFAULT_OPENSPEC_DIR
    exclude_extensions: tuple[str, ...] = DEFAULT_EXCLUDE_EXTENSIONS

    def __post_init__(self):
        root = self.openspec_dir.strip("/")
        object.__setattr__(self, "openspec_dir", f"{root}/" if root else "")

    @classmethod
    def from_config(cls, config) -> "PathRules":
        return cls(
            openspec_dir=config.openspec_dir,
            exclude_extensions=tuple(config.exclude_extensions),
        )

    @property
    def _proposal_pattern(self) -> re.Pattern:
        return re.compile(rf"^{re.escape(self.openspec_dir)}changes/([^/]+)/")

    def classify(self, path: str) -> tuple[PathKind, Optional[str]]:
        """Classify a repository-relative path.

        Args:
            path: Path as reported by git (forward slashes)

        Returns:
            (kind, proposal id or None)
        """
        if self.openspec_dir and path.startswith(self.openspec_dir):
            match = self._proposal_pattern.match(path)
            if match:
                return PathKind.PROPOSAL, match.group(1)
            return PathKind.IGNORED, None

        if any(path.endswith(ext) for ext in self.exclude_extensions):
            return PathKind.IGNORED, None

        return PathKind.CODE, None


def build_analysis(
    commit: CommitMeta,
    changes: Iterable[FileChange],
    rules: PathRules,
) -> Optional[CommitAnalysis]:
    """Turn a commit's per-file numstat into a CommitAnalysis.

    Only qualifying commits produce an analysis: the commit must touch at
    least one proposal directory and at least one code file. Totals count
    code files only.

    Args:
        commit: Commit metadata
        changes: Per-file add/delete counts for the commit
        rules: Path classification rules

    Returns:
        CommitAnalysis, or None for non-qualifying commits
    """
    proposals = set()
    code_files = []

    for change in changes:
        kind, proposal = rules.classify(change.path)
        if kind is PathKind.PROPOSAL:
            proposals.add(proposal)
        elif kind is PathKind.CODE:
            code_files.append(change)

    if not proposals or not code_files:
        return None

    total_additions = sum(f.additions for f in code_files)
    total_deletions = sum(f.deletions for f in code_files)

    return CommitAnalysis(
        commit=commit,
        proposals=frozenset(proposals),
        file_changes=tuple(code_files),
        total_additions=total_additions,
        total_deletions=total_deletions,
        net_changes=total_additions - total_deletions,
    )
