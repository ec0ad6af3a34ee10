"""Render aggregated statistics as JSON, CSV, Markdown, or console tables."""

import csv
import io
import json
from datetime import datetime
from typing import Optional

from jinja2 import Environment
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from specstat.models import AuthorStats, ProposalStats, StatsResult

SHARED_MARKER = "⚠"

MARKDOWN_TEMPLATE = """\
# Proposal Statistics

- **Time range:** {{ since }} to {{ until }}
- **Branches:** {{ branches or "all" }}
- **Qualifying commits:** {{ total_commits }}

{% if proposals %}
## Proposals

| Proposal | Commits | Contributors | Files | Additions | Deletions | Net |
|---|---:|---|---:|---:|---:|---:|
{% for p in proposals %}
| {{ p.proposal }}{% if p.multiProposalCommits %} {{ marker }}{% endif %} | {{ p.commits }} | {{ p.contributors | join(", ") }} | {{ p.filesChanged }} | +{{ p.additions }} | -{{ p.deletions }} | {{ "%+d" | format(p.netChanges) }} |
{% endfor %}
{% if shared %}

> {{ marker }} Some commits touch several proposals and are counted in full for each:
{% for p in shared %}
> - {{ p.proposal }}: {{ p.multiProposalCommits }}/{{ p.commits }} commits shared with other proposals
{% endfor %}
{% endif %}

{% endif %}
## Contributors

{% if authors is not none %}
| Author | Commits | Proposals | Files | Additions | Deletions | Net | Period |
|---|---:|---|---:|---:|---:|---:|---|
{% for a in authors %}
| {{ a.author }} | {{ a.commits }} | {{ a.proposals | join(", ") }} | {{ a.filesChanged }} | +{{ a.additions }} | -{{ a.deletions }} | {{ "%+d" | format(a.netChanges) }} | {{ a.statisticsPeriod or "" }} |
{% endfor %}
{% else %}
| Contributors | Commits | Proposals | Files | Additions | Deletions | Net |
|---:|---:|---:|---:|---:|---:|---:|
| {{ summary.contributors }} | {{ summary.commits }} | {{ summary.proposals }} | {{ summary.filesChanged }} | +{{ summary.additions }} | -{{ summary.deletions }} | {{ "%+d" | format(summary.netChanges) }} |
{% endif %}
"""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _proposal_dict(stats: ProposalStats) -> dict:
    return {
        "proposal": stats.proposal,
        "commits": stats.commits,
        "contributors": sorted(stats.contributors),
        "filesChanged": stats.files_changed,
        "additions": stats.additions,
        "deletions": stats.deletions,
        "netChanges": stats.net_changes,
        "multiProposalCommits": stats.multi_proposal_commits,
        "sharedCommits": sorted(stats.shared_commit_hashes),
    }


def _author_dict(stats: AuthorStats) -> dict:
    return {
        "author": stats.author,
        "commits": stats.commits,
        "proposals": sorted(stats.proposals),
        "filesChanged": stats.files_changed,
        "additions": stats.additions,
        "deletions": stats.deletions,
        "netChanges": stats.net_changes,
        "firstCommitDate": _iso(stats.first_commit_date),
        "lastCommitDate": _iso(stats.last_commit_date),
        "statisticsPeriod": stats.statistics_period,
        "branches": [
            {
                "branch": b.branch,
                "commits": b.commits,
                "proposals": sorted(b.proposals),
                "filesChanged": b.files_changed,
                "additions": b.additions,
                "deletions": b.deletions,
                "netChanges": b.net_changes,
            }
            for b in sorted(stats.branch_stats.values(), key=lambda b: b.branch)
        ],
    }


class OutputFormatter:
    """Presentation of a StatsResult.

    Proposals are listed by net changes (largest first) and authors by
    commit count. Without ``show_contributors`` the author section is
    collapsed into one summary row.
    """

    def __init__(self, result: StatsResult, show_contributors: bool = False):
        self.result = result
        self.show_contributors = show_contributors

    def sorted_proposals(self) -> list[ProposalStats]:
        return sorted(
            self.result.proposals.values(), key=lambda p: (-p.net_changes, p.proposal)
        )

    def sorted_authors(self) -> list[AuthorStats]:
        return sorted(self.result.authors.values(), key=lambda a: (-a.commits, a.author))

    def author_summary(self) -> dict:
        authors = list(self.result.authors.values())
        return {
            "contributors": len(authors),
            "commits": sum(a.commits for a in authors),
            "proposals": len({p for a in authors for p in a.proposals}),
            "filesChanged": sum(a.files_changed for a in authors),
            "additions": sum(a.additions for a in authors),
            "deletions": sum(a.deletions for a in authors),
            "netChanges": sum(a.net_changes for a in authors),
        }

    def to_dict(self) -> dict:
        """JSON-serializable representation (sets become sorted lists)."""
        data = {
            "timeRange": {
                "since": _iso(self.result.time_range.since),
                "until": _iso(self.result.time_range.until),
            },
            "branches": list(self.result.branches),
            "totalCommits": self.result.total_commits,
            "proposals": [_proposal_dict(p) for p in self.sorted_proposals()],
            "summary": self.author_summary(),
        }
        if self.show_contributors:
            data["authors"] = [_author_dict(a) for a in self.sorted_authors()]
        return data

    def format_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def format_csv(self) -> str:
        """Two CSV sections: proposals, then authors (or the author summary)."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")

        writer.writerow(
            ["Proposal", "Commits", "Contributors", "Files", "Additions", "Deletions", "Net Changes", "Shared Commits"]
        )
        for p in self.sorted_proposals():
            writer.writerow([
                p.proposal,
                p.commits,
                "; ".join(sorted(p.contributors)),
                p.files_changed,
                p.additions,
                p.deletions,
                p.net_changes,
                p.multi_proposal_commits,
            ])

        writer.writerow([])
        if self.show_contributors:
            writer.writerow(
                ["Author", "Commits", "Proposals", "Files", "Additions", "Deletions", "Net Changes", "Period"]
            )
            for a in self.sorted_authors():
                writer.writerow([
                    a.author,
                    a.commits,
                    "; ".join(sorted(a.proposals)),
                    a.files_changed,
                    a.additions,
                    a.deletions,
                    a.net_changes,
                    a.statistics_period or "",
                ])
        else:
            summary = self.author_summary()
            writer.writerow(["Contributors", "Commits", "Proposals", "Files", "Additions", "Deletions", "Net Changes"])
            writer.writerow([
                summary["contributors"],
                summary["commits"],
                summary["proposals"],
                summary["filesChanged"],
                summary["additions"],
                summary["deletions"],
                summary["netChanges"],
            ])

        return buffer.getvalue()

    def format_markdown(self) -> str:
        data = self.to_dict()
        env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
        template = env.from_string(MARKDOWN_TEMPLATE)
        return template.render(
            since=data["timeRange"]["since"],
            until=data["timeRange"]["until"],
            branches=", ".join(data["branches"]),
            total_commits=data["totalCommits"],
            proposals=data["proposals"],
            shared=[p for p in data["proposals"] if p["multiProposalCommits"]],
            authors=data.get("authors"),
            summary=data["summary"],
            marker=SHARED_MARKER,
        )

    def render_table(self, console: Console, verbose: bool = False) -> None:
        """Print rich tables. ``verbose`` adds per-branch breakdowns."""
        result = self.result
        console.print("\n[bold]Proposal Statistics[/bold]")
        console.print(
            f"[dim]Time range: {result.time_range.since:%Y-%m-%d %H:%M} to "
            f"{result.time_range.until:%Y-%m-%d %H:%M}[/dim]"
        )
        console.print(f"[dim]Branches: {escape(', '.join(result.branches)) or 'all'}[/dim]")
        console.print(f"[dim]Qualifying commits: {result.total_commits}[/dim]")

        proposals = self.sorted_proposals()
        if proposals:
            table = Table(title="Proposals", title_style="bold magenta")
            for column in ("Proposal", "Commits", "Contributors", "Files", "Additions", "Deletions", "Net"):
                table.add_column(column, style="magenta" if column == "Proposal" else None)
            for p in proposals:
                name = escape(p.proposal)
                if p.has_shared_commits:
                    name = f"{name} [yellow]{SHARED_MARKER}[/yellow]"
                table.add_row(
                    name,
                    str(p.commits),
                    escape(", ".join(sorted(p.contributors))),
                    str(p.files_changed),
                    f"[green]+{p.additions}[/green]",
                    f"[red]-{p.deletions}[/red]",
                    _net(p.net_changes),
                )
            console.print(table)

            shared = [p for p in proposals if p.has_shared_commits]
            if shared:
                console.print(
                    f"[yellow]{SHARED_MARKER} Some commits touch several proposals and are counted in full for each:[/yellow]"
                )
                for p in shared:
                    console.print(
                        f"[dim]  • {escape(p.proposal)}: {p.multi_proposal_commits}/{p.commits} commits shared with other proposals[/dim]"
                    )

        if not self.show_contributors:
            summary = self.author_summary()
            table = Table(title="Contributors", title_style="bold cyan")
            for column in ("Contributors", "Commits", "Proposals", "Files", "Additions", "Deletions", "Net"):
                table.add_column(column)
            table.add_row(
                str(summary["contributors"]),
                str(summary["commits"]),
                str(summary["proposals"]),
                str(summary["filesChanged"]),
                f"[green]+{summary['additions']}[/green]",
                f"[red]-{summary['deletions']}[/red]",
                _net(summary["netChanges"]),
            )
            console.print(table)
            console.print("[dim]Use --show-contributors for per-author details.[/dim]")
            return

        table = Table(title="Contributors", title_style="bold cyan")
        for column in ("Author", "Commits", "Proposals", "Files", "Additions", "Deletions", "Net", "Period"):
            table.add_column(column, style="cyan" if column == "Author" else None)
        for a in self.sorted_authors():
            table.add_row(
                escape(a.author),
                str(a.commits),
                escape(", ".join(sorted(a.proposals))),
                str(a.files_changed),
                f"[green]+{a.additions}[/green]",
                f"[red]-{a.deletions}[/red]",
                _net(a.net_changes),
                a.statistics_period or "",
            )
        console.print(table)

        if verbose:
            for a in self.sorted_authors():
                if not a.branch_stats:
                    continue
                branch_table = Table(title=f"{escape(a.author)} by branch", title_style="cyan")
                for column in ("Branch", "Commits", "Proposals", "Files", "Net"):
                    branch_table.add_column(column)
                for b in sorted(a.branch_stats.values(), key=lambda b: b.branch):
                    branch_table.add_row(
                        escape(b.branch),
                        str(b.commits),
                        escape(", ".join(sorted(b.proposals))),
                        str(b.files_changed),
                        _net(b.net_changes),
                    )
                console.print(branch_table)


def _net(value: int) -> str:
    return f"[green]+{value}[/green]" if value >= 0 else f"[red]{value}[/red]"
