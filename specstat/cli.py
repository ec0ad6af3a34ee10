"""CLI interface for specstat."""

import asyncio
import json
import logging
import signal
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from specstat.analysis import StatsAggregator, default_time_range, parse_branches, parse_datetime
from specstat.config import (
    CONFIG_FILENAMES,
    AnalysisConfig,
    ConfigError,
    load_config,
    normalize_author,
    template_config,
)
from specstat.git import GitRepository, GitRepositoryError, PathRules
from specstat.models import CacheMode, StatsResult
from specstat.multi import (
    AnalysisCancelled,
    CancellationToken,
    MultiRepoAnalyzer,
    merged_active_authors,
    requested_branches,
    successful_analyses,
)
from specstat.ui import ConsoleReporter, Reporter, SpinnerManager
from specstat.visualization import OutputFormatter

# Results go to stdout; progress, warnings and errors go to stderr
console = Console()
err_console = Console(stderr=True)

EXIT_CANCELLED = 130

OUTPUT_FORMATS = ["table", "json", "csv", "markdown"]


def setup_logging(verbose: bool) -> None:
    """Route specstat diagnostics through rich on stderr."""
    logger = logging.getLogger("specstat")
    logger.handlers[:] = [RichHandler(console=err_console, show_path=False, log_time_format="[%X]")]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def parse_date(date_str: str | None) -> datetime | None:
    """Parse a --since/--until value.

    Args:
        date_str: Date string in YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS format, or None

    Returns:
        Timezone-aware datetime or None
    """
    if not date_str:
        return None
    try:
        return parse_datetime(date_str)
    except ValueError as e:
        raise click.BadParameter(str(e))


def resolve_time_range(config: AnalysisConfig, since: str | None, until: str | None) -> tuple[datetime, datetime]:
    """Explicit dates win; missing ends come from the configured default window."""
    default_since, default_until = default_time_range(
        config.default_since_hours, config.default_until_hours
    )
    since_dt = parse_date(since) or default_since
    until_dt = parse_date(until) or default_until
    if since_dt > until_dt:
        raise click.BadParameter(
            f"--since ({since_dt:%Y-%m-%d %H:%M}) is after --until ({until_dt:%Y-%m-%d %H:%M})"
        )
    return since_dt, until_dt


def emit(result: StatsResult, output_format: str, show_contributors: bool, verbose: bool) -> None:
    """Write the report to stdout in the requested format."""
    formatter = OutputFormatter(result, show_contributors=show_contributors)

    if output_format == "json":
        click.echo(formatter.format_json())
    elif output_format == "csv":
        click.echo(formatter.format_csv(), nl=False)
    elif output_format == "markdown":
        click.echo(formatter.format_markdown(), nl=False)
    else:
        if result.total_commits == 0:
            console.print("[yellow]No qualifying commits found in the time range.[/yellow]")
        formatter.render_table(console, verbose=verbose)


def common_options(func):
    """Options shared by the single and multi commands."""
    options = [
        click.option("--since", help="Only commits after this date (YYYY-MM-DD[THH:MM:SS])"),
        click.option("--until", help="Only commits before this date (YYYY-MM-DD[THH:MM:SS])"),
        click.option("--author", help="Only count this author (after alias mapping)"),
        click.option(
            "--format",
            "output_format",
            type=click.Choice(OUTPUT_FORMATS),
            default="table",
            show_default=True,
        ),
        click.option("--no-fetch", is_flag=True, help="Do not fetch remotes of local repositories"),
        click.option("--show-contributors", is_flag=True, help="Per-author details"),
        click.option("-v", "--verbose", is_flag=True, help="Verbose output"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(package_name="specstat")
def cli():
    """Specstat - proposal attribution from git history."""
    pass


@cli.command()
@click.argument("repo_path", type=click.Path(exists=True, file_okay=False), default=".")
@click.option("--branches", help="Comma-separated branch filters (default from config)")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
@common_options
def single(repo_path, branches, config_path, since, until, author, output_format, no_fetch, show_contributors, verbose):
    """Analyze one local repository."""
    setup_logging(verbose)
    quiet = output_format != "table"
    spinner = SpinnerManager(err_console, quiet=quiet)

    try:
        config = load_config(config_path, repo_path=repo_path)
        since_dt, until_dt = resolve_time_range(config, since, until)
        branch_filters = parse_branches(branches) or list(config.default_branches)

        repo = GitRepository(repo_path, PathRules.from_config(config))

        if config.auto_fetch and not no_fetch:
            spinner.start(f"Fetching remotes for {repo.name}...")
            try:
                repo.fetch_remote()
                spinner.succeed(f"Fetched remotes for {repo.name}")
            except GitRepositoryError as e:
                spinner.warn(f"Fetch failed, using existing refs: {escape(str(e))}")

        spinner.start(f"Analyzing {repo.name} ({', '.join(branch_filters)})...")
        analyses = []
        for commit in repo.list_commits(since_dt, until_dt, branch_filters):
            analysis = repo.analyze_commit(commit)
            if analysis is not None:
                analyses.append(analysis)
        active = repo.active_authors(config.active_user_weeks, config.author_mapping)
        spinner.succeed(f"{repo.name}: {len(analyses)} qualifying commits")

        aggregator = StatsAggregator(config.author_mapping, active)
        result = aggregator.aggregate(
            analyses,
            since_dt,
            until_dt,
            branches=branch_filters,
            filter_author=normalize_author(author, config.author_mapping) if author else None,
        )
        emit(result, output_format, show_contributors, verbose)

    except click.ClickException:
        spinner.stop()
        raise
    except ConfigError as e:
        spinner.stop()
        err_console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(1)
    except GitRepositoryError as e:
        spinner.fail()
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)
    except Exception as e:
        spinner.fail()
        err_console.print(f"[red]Unexpected error: {escape(str(e))}[/red]")
        if verbose:
            err_console.print_exception()
        sys.exit(1)


def apply_overrides(
    config: AnalysisConfig,
    cache_mode: str | None,
    cache_max_age: int | None,
    no_cleanup: bool,
    no_fetch: bool,
) -> AnalysisConfig:
    """Apply command-line overrides on top of the loaded configuration."""
    remote_cache = config.remote_cache
    if cache_mode:
        mode = CacheMode(cache_mode)
        remote_cache = replace(remote_cache, mode=mode)
        if mode is CacheMode.TEMPORARY:
            remote_cache = replace(remote_cache, cleanup_on_complete=True)
    if cache_max_age is not None:
        remote_cache = replace(remote_cache, max_age_ms=cache_max_age)
    if no_cleanup:
        remote_cache = replace(
            remote_cache, cleanup_on_complete=False, cleanup_on_error=False, auto_cleanup=False
        )

    config = replace(config, remote_cache=remote_cache)
    if no_fetch:
        config = replace(config, auto_fetch=False)
    return config


async def run_with_signals(analyzer: MultiRepoAnalyzer, since: datetime, until: datetime, token: CancellationToken):
    """Run the analysis with SIGINT/SIGTERM wired to the cancellation token.

    The first signal trips the token and cancels the running analysis, which
    still cleans up cached clones on its way out. The default handlers are
    restored at that point, so a second signal ends the process.
    """
    loop = asyncio.get_running_loop()
    run = asyncio.ensure_future(analyzer.analyze_all(since, until, token))
    installed = []

    def restore_handlers():
        while installed:
            loop.remove_signal_handler(installed.pop())

    def interrupt(sig):
        token.cancel(f"received {sig.name}")
        restore_handlers()
        run.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, interrupt, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows event loops and non-main threads
            pass

    try:
        return await run
    except asyncio.CancelledError:
        if token.cancelled:
            raise AnalysisCancelled(token.reason or "cancelled") from None
        raise
    finally:
        restore_handlers()


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help=f"Configuration file (default: {' or '.join(CONFIG_FILENAMES)})",
)
@click.option("--cache-mode", type=click.Choice([m.value for m in CacheMode]), help="Override the cache mode")
@click.option("--cache-max-age", type=click.IntRange(min=0), help="Maximum cache age in milliseconds")
@click.option("--force-clone", is_flag=True, help="Ignore cached clones")
@click.option("--no-cleanup", is_flag=True, help="Keep cloned repositories")
@common_options
def multi(
    config_path,
    cache_mode,
    cache_max_age,
    force_clone,
    no_cleanup,
    since,
    until,
    author,
    output_format,
    no_fetch,
    show_contributors,
    verbose,
):
    """Analyze every repository listed in a configuration file."""
    setup_logging(verbose)
    quiet = output_format != "table"

    try:
        config = load_config(config_path, require_repositories=True)
        config = apply_overrides(config, cache_mode, cache_max_age, no_cleanup, no_fetch)
        since_dt, until_dt = resolve_time_range(config, since, until)

        reporter = Reporter() if quiet else ConsoleReporter(err_console)
        analyzer = MultiRepoAnalyzer(config, reporter=reporter, force_clone=force_clone)
        token = CancellationToken()

        if not quiet:
            err_console.print(
                f"[blue]Analyzing {len(config.enabled_repositories)} repositories "
                f"({config.parallelism.max_concurrent} at a time)[/blue]"
            )

        results = asyncio.run(run_with_signals(analyzer, since_dt, until_dt, token))

        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success and not r.skipped]
        if not quiet:
            err_console.print(f"[green]{len(succeeded)} repositories analyzed[/green]")
        for r in failed:
            err_console.print(f"[red]  {escape(r.repository)}: {escape(r.error or '')}[/red]")

        aggregator = StatsAggregator(config.author_mapping, merged_active_authors(results))
        result = aggregator.aggregate(
            successful_analyses(results),
            since_dt,
            until_dt,
            branches=requested_branches(config, succeeded),
            filter_author=normalize_author(author, config.author_mapping) if author else None,
        )
        emit(result, output_format, show_contributors, verbose)

    except click.ClickException:
        raise
    except AnalysisCancelled as e:
        err_console.print(f"[yellow]Analysis cancelled: {escape(str(e))}[/yellow]")
        sys.exit(EXIT_CANCELLED)
    except ConfigError as e:
        err_console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(1)
    except GitRepositoryError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)
    except Exception as e:
        err_console.print(f"[red]Unexpected error: {escape(str(e))}[/red]")
        if verbose:
            err_console.print_exception()
        sys.exit(1)


@cli.command()
@click.option("-o", "--output", type=click.Path(dir_okay=False), default=CONFIG_FILENAMES[0], show_default=True)
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(output, force):
    """Write a starter configuration file."""
    path = Path(output)
    if path.exists() and not force:
        err_console.print(f"[red]Error: {path} already exists (use --force to overwrite)[/red]")
        sys.exit(1)

    path.write_text(json.dumps(template_config(), indent=2) + "\n", encoding="utf-8")
    console.print(f"[green]Configuration written to {path}[/green]")


if __name__ == "__main__":
    cli()
