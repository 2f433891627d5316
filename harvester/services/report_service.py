"""Run report aggregation and the console summary."""

from collections import Counter, defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

from harvester.models.item import CanonicalItem
from harvester.models.outcome import StrategyOutcome
from harvester.schemas.report import (
    CategoryStats,
    PerformanceSummary,
    QualitySummary,
    RunReport,
    RunSummary,
    StrategyStats,
    TargetStats,
)
from harvester.schemas.session import SessionState
from harvester.services.storage import write_json_atomic

logger = structlog.get_logger(__name__)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _target_stats(state: SessionState, outcomes: Sequence[StrategyOutcome], items: Sequence[CanonicalItem]) -> List[TargetStats]:
    item_counts = Counter(item.source_target for item in items)
    by_target: Dict[str, List[StrategyOutcome]] = defaultdict(list)
    for outcome in outcomes:
        by_target[outcome.target].append(outcome)

    stats = []
    for target_id in state.targets or sorted(state.per_target_progress):
        progress = state.progress_for(target_id)
        target_outcomes = by_target.get(target_id, [])
        failures = [outcome for outcome in target_outcomes if not outcome.success]
        stats.append(
            TargetStats(
                target=target_id,
                status=progress.status,
                attempts=len(target_outcomes),
                successes=len(target_outcomes) - len(failures),
                failures=len(failures),
                failures_by_kind=dict(Counter(outcome.error_kind.value for outcome in failures)),
                items=item_counts.get(target_id, 0),
                completed_categories=list(progress.completed_categories),
                last_error=progress.last_error,
            )
        )
    return stats


def _category_stats(items: Sequence[CanonicalItem]) -> List[CategoryStats]:
    grouped: Dict[str, List[CanonicalItem]] = defaultdict(list)
    for item in items:
        grouped[item.category].append(item)
    return [
        CategoryStats(
            category=category,
            items=len(category_items),
            targets=sorted({item.source_target for item in category_items}),
        )
        for category, category_items in sorted(grouped.items(), key=lambda entry: (-len(entry[1]), entry[0]))
    ]


def _strategy_stats(outcomes: Sequence[StrategyOutcome]) -> List[StrategyStats]:
    grouped: Dict[str, List[StrategyOutcome]] = defaultdict(list)
    for outcome in outcomes:
        grouped[outcome.strategy].append(outcome)

    stats = []
    for strategy, strategy_outcomes in grouped.items():
        successes = [outcome for outcome in strategy_outcomes if outcome.success]
        stats.append(
            StrategyStats(
                strategy=strategy,
                attempts=len(strategy_outcomes),
                successes=len(successes),
                items=sum(outcome.item_count for outcome in successes),
                success_rate=round(len(successes) / len(strategy_outcomes), 3),
                avg_duration_ms=round(_mean([outcome.duration_ms for outcome in strategy_outcomes]), 1),
            )
        )
    return stats


def _quality_summary(items: Sequence[CanonicalItem], pipeline_stats: Optional[Dict[str, Any]]) -> QualitySummary:
    scores = [item.quality_score for item in items]
    summary = QualitySummary(
        average_score=round(_mean(scores), 2),
        min_score=min(scores) if scores else None,
        max_score=max(scores) if scores else None,
        score_distribution={str(score): count for score, count in sorted(Counter(scores).items())},
        with_price=sum(1 for item in items if item.price is not None),
        with_image=sum(1 for item in items if item.image_url),
    )
    if pipeline_stats:
        summary.processed = pipeline_stats.get("processed", 0)
        summary.accepted = pipeline_stats.get("accepted", 0)
        summary.duplicates = pipeline_stats.get("duplicates", 0)
        summary.rejected = dict(pipeline_stats.get("rejected", {}))
    return summary


def build_report(
    state: SessionState,
    outcomes: Sequence[StrategyOutcome],
    items: Sequence[CanonicalItem],
    *,
    pipeline_stats: Optional[Dict[str, Any]] = None,
    breaker_snapshot: Optional[Dict[str, Dict[str, Any]]] = None,
    limiter_snapshot: Optional[Dict[str, Dict[str, Any]]] = None,
    duration_seconds: float = 0.0,
    interrupted: bool = False,
    resumed: bool = False,
    finished_at: Optional[datetime] = None,
    exit_code: Optional[int] = None,
) -> RunReport:
    """Aggregate a session into a RunReport.

    Args:
        state: Session state (progress per target and run options)
        outcomes: Every attempt outcome of the session
        items: Canonical items held by the catalog
        pipeline_stats: DataPipeline stats as a dict
        breaker_snapshot: CircuitBreaker.snapshot()
        limiter_snapshot: AdaptiveRateLimiter.snapshot()
        duration_seconds: Wall time of this run
        interrupted: Whether a stop signal ended the run
        resumed: Whether the session was resumed
        finished_at: Report time; defaults to now
        exit_code: Process exit code, for the final report

    Returns:
        RunReport
    """
    target_stats = _target_stats(state, outcomes, items)
    response_times = [outcome.response_ms for outcome in outcomes if outcome.response_ms is not None]

    summary = RunSummary(
        session_id=state.session_id,
        started_at=state.started_at,
        finished_at=finished_at or datetime.now(timezone.utc),
        strategy=state.strategy,
        targets=len(target_stats),
        targets_completed=sum(1 for stats in target_stats if stats.status == "completed"),
        targets_failed=sum(1 for stats in target_stats if stats.status in ("failed", "isolated")),
        total_items=len(items),
        max_items=state.max_items,
        budget_reached=len(items) >= state.max_items,
        interrupted=interrupted,
        resumed=resumed,
    )
    performance = PerformanceSummary(
        duration_seconds=round(duration_seconds, 2),
        attempts=len(outcomes),
        avg_attempt_ms=round(_mean([outcome.duration_ms for outcome in outcomes]), 1),
        avg_response_ms=round(_mean(response_times), 1) if response_times else None,
        items_per_minute=round(len(items) / (duration_seconds / 60), 2) if duration_seconds > 0 else 0.0,
    )
    return RunReport(
        summary=summary,
        targets=target_stats,
        categories=_category_stats(items),
        strategies=_strategy_stats(outcomes),
        quality=_quality_summary(items, pipeline_stats),
        performance=performance,
        circuit_breakers=breaker_snapshot or {},
        rate_limits=limiter_snapshot or {},
        exit_code=exit_code,
    )


def write_report(path: Path, report: RunReport) -> None:
    """Write a report atomically.

    Raises:
        PersistenceError: If the file could not be written
    """
    write_json_atomic(path, report.model_dump(mode="json"))
    logger.debug("report_written", path=str(path))


def print_summary(report: RunReport) -> None:
    """Print a formatted summary table of a run.

    Args:
        report: Final run report
    """
    summary = report.summary
    print("\n" + "=" * 64)
    print(f"  Harvest summary  {summary.session_id}" + ("  [INTERRUPTED]" if summary.interrupted else ""))
    print("=" * 64)
    print(f"{'Target':<16} {'Status':<12} {'Tries':>5} {'OK':>4} {'Fail':>5} {'Items':>6}")
    print("-" * 64)

    for stats in report.targets:
        print(
            f"{stats.target:<16} "
            f"{stats.status:<12} "
            f"{stats.attempts:>5} "
            f"{stats.successes:>4} "
            f"{stats.failures:>5} "
            f"{stats.items:>6}"
        )

    print("-" * 64)
    print(f"{'Total':<16} {'':<12} {report.performance.attempts:>5} {'':>4} {'':>5} {summary.total_items:>6}")
    print(
        f"Budget {summary.total_items}/{summary.max_items}  "
        f"avg quality {report.quality.average_score:.2f}  "
        f"duration {report.performance.duration_seconds:.1f}s"
    )
    print("=" * 64)

    # Print errors for failed targets
    errors = [(stats.target, stats.last_error) for stats in report.targets if stats.last_error]
    if errors:
        print("\n[Errors]")
        for target_id, error in errors:
            print(f"  {target_id}: {error}")
