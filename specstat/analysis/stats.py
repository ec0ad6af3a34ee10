"""Proposal and author statistics from qualifying commits."""

import math
from datetime import datetime
from typing import Iterable, Optional, Sequence

from specstat.config import normalize_author
from specstat.models import (
    AuthorStats,
    BranchStats,
    CommitAnalysis,
    ProposalStats,
    StatsResult,
    TimeRange,
)

MS_PER_DAY = 1000 * 60 * 60 * 24


def statistics_period(first: datetime, last: datetime) -> str:
    """Inclusive day span between two commit dates.

    Same-day activity is "1 day"; otherwise the whole-day difference
    (rounded up) plus one, counting both endpoints.
    """
    elapsed_ms = (last - first).total_seconds() * 1000
    days = math.ceil(elapsed_ms / MS_PER_DAY)
    return "1 day" if days <= 0 else f"{days + 1} days"


class StatsAggregator:
    """Fold commit analyses into per-author and per-proposal statistics.

    A commit counts once towards each of its proposals no matter how many
    times it is fed in (for instance when two repositories share history);
    the per-proposal set of commit hashes enforces this.
    """

    def __init__(
        self,
        author_mapping: Optional[dict[str, str]] = None,
        active_authors: Optional[set[str]] = None,
    ):
        """Initialize the aggregator.

        Args:
            author_mapping: Alias -> canonical author name
            active_authors: If given, only these (normalized) authors are counted
        """
        self.author_mapping = author_mapping or {}
        self.active_authors = active_authors

    def aggregate(
        self,
        analyses: Iterable[CommitAnalysis],
        since: datetime,
        until: datetime,
        branches: Sequence[str] = (),
        filter_author: Optional[str] = None,
    ) -> StatsResult:
        """Aggregate analyses for a reporting window.

        Args:
            analyses: Qualifying commits, possibly from several repositories
            since: Window start (echoed in the result)
            until: Window end (echoed in the result)
            branches: Requested branch filters, reported when no branch
                information was observed
            filter_author: Only count this normalized author

        Returns:
            StatsResult
        """
        analyses = list(analyses)
        authors: dict[str, AuthorStats] = {}
        proposals: dict[str, ProposalStats] = {}

        for analysis in analyses:
            author = normalize_author(analysis.commit.author, self.author_mapping)

            if self.active_authors is not None and author not in self.active_authors:
                continue
            if filter_author and author != filter_author:
                continue

            stats = authors.get(author)
            if stats is None:
                stats = AuthorStats(author=author)
                authors[author] = stats

            self._add_to_author(stats, analysis)

            for proposal in analysis.proposals:
                proposal_stats = proposals.get(proposal)
                if proposal_stats is None:
                    proposal_stats = ProposalStats(proposal=proposal)
                    proposals[proposal] = proposal_stats
                self._add_to_proposal(proposal_stats, analysis, author)

            for branch in analysis.commit.branches:
                branch_stats = stats.branch_stats.get(branch)
                if branch_stats is None:
                    branch_stats = BranchStats(branch=branch)
                    stats.branch_stats[branch] = branch_stats
                self._add_to_branch(branch_stats, analysis)

        for stats in authors.values():
            if stats.first_commit_date and stats.last_commit_date:
                stats.statistics_period = statistics_period(
                    stats.first_commit_date, stats.last_commit_date
                )

        observed_branches = sorted(
            {branch for stats in authors.values() for branch in stats.branch_stats}
        )

        return StatsResult(
            time_range=TimeRange(since=since, until=until),
            branches=observed_branches or list(branches),
            authors=authors,
            proposals=proposals,
            total_commits=len(analyses),
        )

    def _add_to_author(self, stats: AuthorStats, analysis: CommitAnalysis) -> None:
        stats.commits += 1
        stats.additions += analysis.total_additions
        stats.deletions += analysis.total_deletions
        stats.net_changes += analysis.net_changes
        stats.files_changed += len(analysis.file_changes)
        stats.proposals.update(analysis.proposals)

        date = analysis.commit.timestamp
        if stats.last_commit_date is None or date > stats.last_commit_date:
            stats.last_commit_date = date
        if stats.first_commit_date is None or date < stats.first_commit_date:
            stats.first_commit_date = date

    def _add_to_proposal(
        self, stats: ProposalStats, analysis: CommitAnalysis, author: str
    ) -> None:
        sha = analysis.commit.sha
        if sha in stats.commit_hashes:
            return

        stats.commit_hashes.add(sha)
        stats.commits += 1
        stats.contributors.add(author)
        stats.files_changed += len(analysis.file_changes)
        stats.additions += analysis.total_additions
        stats.deletions += analysis.total_deletions
        stats.net_changes += analysis.net_changes

        if analysis.is_multi_proposal:
            stats.multi_proposal_commits += 1
            stats.shared_commit_hashes.add(sha)

    def _add_to_branch(self, stats: BranchStats, analysis: CommitAnalysis) -> None:
        # Full amounts on every branch the commit is on; branch totals may
        # add up to more than the author's total
        stats.commits += 1
        stats.additions += analysis.total_additions
        stats.deletions += analysis.total_deletions
        stats.net_changes += analysis.net_changes
        stats.files_changed += len(analysis.file_changes)
        stats.proposals.update(analysis.proposals)
