"""Multi-repository orchestration."""

from specstat.multi.scheduler import (
    AnalysisCancelled,
    BatchContext,
    CancellationToken,
    run_in_batches,
)
from specstat.multi.orchestrator import (
    MultiRepoAnalyzer,
    merged_active_authors,
    requested_branches,
    successful_analyses,
)

__all__ = [
    "AnalysisCancelled",
    "BatchContext",
    "CancellationToken",
    "run_in_batches",
    "MultiRepoAnalyzer",
    "merged_active_authors",
    "requested_branches",
    "successful_analyses",
]
