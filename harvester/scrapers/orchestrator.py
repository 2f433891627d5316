"""Harvest session orchestration.

Runs a bounded pool of workers over the targets. For each target it asks
the selector for the best strategy, runs the attempt through the target's
circuit breaker, feeds the outcome to the rate limiter, pipelines the raw
items into the catalog and checkpoints the session.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

import structlog

from harvester.config import Settings
from harvester.core.exceptions import (
    BreakerOpenError,
    CatalogError,
    ConfigurationError,
    HarvesterError,
    PersistenceError,
)
from harvester.core.logging import add_run_log, remove_run_log
from harvester.models.item import CanonicalItem, RawItem
from harvester.models.outcome import ErrorKind, StrategyOutcome
from harvester.schemas.report import RunReport
from harvester.schemas.session import SessionState, TargetProgress
from harvester.schemas.target import Target
from harvester.scrapers.base import BaseStrategy
from harvester.scrapers.browser import BrowserProvider
from harvester.scrapers.factory import StrategyFactory
from harvester.scrapers.selector import StrategySelector
from harvester.scrapers.utils.circuit_breaker import CircuitBreaker
from harvester.scrapers.utils.fingerprint import FingerprintProvider
from harvester.scrapers.utils.rate_limiter import AdaptiveRateLimiter
from harvester.scrapers.utils.retry import BackoffPolicy
from harvester.services.catalog_service import CatalogSink, HttpCatalog, JsonFileCatalog
from harvester.services.pipeline import DataPipeline
from harvester.services.report_service import build_report, write_report
from harvester.services.session_store import SessionStore, new_session_id
from harvester.services.storage import write_json_atomic

logger = structlog.get_logger(__name__)

INTELLIGENT = "intelligent"

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


@dataclass
class RunOptions:
    """Per-run options; CLI flags override the settings defaults."""

    strategy: str = INTELLIGENT
    target_ids: Optional[List[str]] = None
    categories: List[str] = field(default_factory=list)
    max_items: int = 1000
    concurrency: int = 3
    max_attempts: int = 5
    output_dir: Path = Path("harvest-output")
    resume: bool = True
    resume_max_age: timedelta = timedelta(hours=24)
    log_to_file: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "RunOptions":
        values = {
            "max_items": settings.MAX_ITEMS,
            "concurrency": settings.CONCURRENCY,
            "max_attempts": settings.MAX_ATTEMPTS,
            "output_dir": Path(settings.OUTPUT_DIR),
            "resume_max_age": timedelta(hours=settings.RESUME_MAX_AGE_HOURS),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass
class OutputLayout:
    """Files written under the output directory."""

    root: Path

    @property
    def sessions(self) -> Path:
        return self.root / "sessions"

    @property
    def products(self) -> Path:
        return self.root / "products"

    def report(self, session_id: str) -> Path:
        return self.root / "reports" / f"report-{session_id}.json"

    def log(self, session_id: str) -> Path:
        return self.root / "logs" / f"{session_id}.log"

    def target_products(self, target_id: str) -> Path:
        return self.products / f"{target_id}.json"

    @property
    def catalog(self) -> Path:
        return self.products / "catalog.json"

    def catalog_state(self, session_id: str) -> Path:
        return self.products / f"catalog-state-{session_id}.json"


@dataclass
class RunResult:
    session_id: str
    report: RunReport
    exit_code: int


def select_targets(targets: Sequence[Target], target_ids: Optional[Sequence[str]]) -> List[Target]:
    """Filter targets by id, keeping the requested order.

    Raises:
        ConfigurationError: If an id is unknown
    """
    if not target_ids:
        return list(targets)
    by_id = {target.id: target for target in targets}
    unknown = [target_id for target_id in target_ids if target_id not in by_id]
    if unknown:
        raise ConfigurationError(f"Unknown target(s): {', '.join(unknown)}; known: {', '.join(by_id)}")
    return [by_id[target_id] for target_id in target_ids]


class HarvestOrchestrator:
    """Drives one harvest session across all targets."""

    def __init__(
        self,
        targets: Sequence[Target],
        options: RunOptions,
        *,
        selector: StrategySelector,
        breaker: CircuitBreaker,
        rate_limiter: AdaptiveRateLimiter,
        fingerprints: FingerprintProvider,
        pipeline: DataPipeline,
        catalog: JsonFileCatalog,
        session_store: SessionStore,
        backoff: BackoffPolicy,
        browser: Optional[BrowserProvider] = None,
        sinks: Sequence[CatalogSink] = (),
    ):
        if not targets:
            raise ConfigurationError("No targets to harvest")
        self.targets = list(targets)
        self.options = options
        self.layout = OutputLayout(Path(options.output_dir))
        self.selector = selector
        self.breaker = breaker
        self.rate_limiter = rate_limiter
        self.fingerprints = fingerprints
        self.pipeline = pipeline
        self.catalog = catalog
        self.session_store = session_store
        self.backoff = backoff
        self.browser = browser
        self.sinks = list(sinks)

        self.history: List[StrategyOutcome] = []
        self.catalog_errors = 0
        self.state: Optional[SessionState] = None
        self.resumed = False
        self._stop_event = asyncio.Event()
        self._budget_lock = asyncio.Lock()
        self._budget_reached = False
        self._started = 0.0

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Ask workers to stop after their current attempt."""
        if not self._stop_event.is_set():
            logger.warning("stop_requested")
            self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def _should_stop(self) -> bool:
        return self._stop_event.is_set() or self._budget_reached

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _open_session(self) -> SessionState:
        """Resume the newest recent unfinished session, or start a new one."""
        state = None
        if self.options.resume:
            state = self.session_store.find_resumable(self.options.resume_max_age)

        if state is not None:
            self.resumed = True
            self.catalog.attach(self.layout.catalog_state(state.session_id))
            items = self.catalog.load()
            self.pipeline.seed(items)
            for entry in state.outcomes:
                self.history.append(StrategyOutcome.from_dict(entry))
            for progress in state.per_target_progress.values():
                if progress.status == "running":
                    progress.status = "interrupted"
            logger.info(
                "session_resumed",
                session_id=state.session_id,
                items=len(items),
                outcomes=len(self.history),
            )
        else:
            state = SessionState(session_id=new_session_id())
            self.catalog.attach(self.layout.catalog_state(state.session_id))
            logger.info("session_started", session_id=state.session_id)

        state.strategy = self.options.strategy
        state.targets = [target.id for target in self.targets]
        state.categories = list(self.options.categories)
        state.max_items = self.options.max_items
        for target in self.targets:
            state.progress_for(target.id)
        return state

    async def run(self) -> RunResult:
        """Run the session to completion, budget or stop signal.

        Returns:
            RunResult with the final report and the process exit code
        """
        self._started = time.monotonic()
        state = self._open_session()
        self.state = state
        structlog.contextvars.bind_contextvars(session_id=state.session_id)
        log_handler = add_run_log(self.layout.log(state.session_id)) if self.options.log_to_file else None

        try:
            self._check_budget()
            queue: asyncio.Queue = asyncio.Queue()
            for target in self.targets:
                queue.put_nowait(target)

            await self._save(state)
            if self.browser is not None:
                await self.browser.start()
            try:
                width = max(1, min(self.options.concurrency, queue.qsize()))
                workers = [asyncio.create_task(self._worker(queue, state)) for _ in range(width)]
                await asyncio.gather(*workers)
            finally:
                if self.browser is not None:
                    await self.browser.stop()

            return await self._finish(state)
        finally:
            if log_handler is not None:
                remove_run_log(log_handler)
            structlog.contextvars.unbind_contextvars("session_id")

    async def _worker(self, queue: asyncio.Queue, state: SessionState) -> None:
        while not self._should_stop():
            try:
                target = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._harvest_target(target, state)
            finally:
                queue.task_done()
            await self._write_interim_report(state)

    # ------------------------------------------------------------------
    # Per-target loop
    # ------------------------------------------------------------------

    async def _harvest_target(self, target: Target, state: SessionState) -> None:
        log = logger.bind(target=target.id)
        progress = state.progress_for(target.id)
        pending = progress.pending_categories(self.options.categories)
        if not pending and (self.options.categories or progress.status == "completed"):
            progress.status = "completed"
            log.info("target_skipped", reason="already_completed")
            return

        progress.status = "running"
        session_failures: Set[str] = set()
        log.info("target_started", pending_categories=pending)

        async def checkpoint(category: str, raw_items: List[RawItem]) -> None:
            await self._deliver(target, progress, raw_items)
            progress.mark_category(category)
            await self._save(state)

        for attempt in range(self.options.max_attempts):
            if self._should_stop():
                progress.status = "interrupted"
                log.info("target_interrupted", budget_reached=self._budget_reached)
                return

            pending = progress.pending_categories(self.options.categories)
            strategy = self.selector.select(target, self.history, session_failures)[0]
            fingerprint = self.fingerprints.for_target(target, evasive=strategy.evasive_fingerprint)
            progress.attempts += 1
            log.info("attempt_selected", attempt=attempt + 1, strategy=strategy.name)

            try:
                items, outcome = await self.breaker.execute(
                    target.id,
                    self._operation(strategy, target, pending, fingerprint, checkpoint),
                )
            except BreakerOpenError as exc:
                progress.status = "isolated"
                progress.last_error = exc.message
                log.warning("target_isolated", error=exc.message)
                await self._save(state)
                return
            except HarvesterError as exc:
                outcome = getattr(exc, "outcome", None)
                if outcome is None:
                    raise
                self._record_outcome(target, outcome, state)
                session_failures.add(strategy.name)
                progress.last_error = exc.message
                await self._save(state)
                if outcome.error_kind == ErrorKind.EXTRACTION:
                    # Fall through to the next-ranked strategy immediately
                    continue
                if attempt + 1 < self.options.max_attempts:
                    await self._wait_backoff(attempt)
                continue

            self._record_outcome(target, outcome, state)
            await self._deliver(target, progress, items)
            # Strategies without checkpoints still tag items with their category;
            # a category that yielded nothing stays pending for a resumed session
            harvested = {item.category_hint for item in items}
            for category in pending:
                if category in harvested:
                    progress.mark_category(category)
            progress.status = "completed"
            progress.last_error = None
            await self._save(state)
            log.info("target_completed", strategy=strategy.name, items=progress.item_count)
            return

        progress.status = "failed"
        log.warning("target_failed", attempts=progress.attempts, error=progress.last_error)
        await self._save(state)

    def _operation(self, strategy: BaseStrategy, target: Target, pending, fingerprint, checkpoint):
        """Zero-argument coroutine function run inside the breaker."""

        async def operation() -> Tuple[List[RawItem], StrategyOutcome]:
            items, outcome = await strategy.attempt(target, pending, fingerprint, checkpoint)
            outcome.raise_for_error()
            return items, outcome

        return operation

    def _record_outcome(self, target: Target, outcome: StrategyOutcome, state: SessionState) -> None:
        self.history.append(outcome)
        state.outcomes.append(outcome.to_dict())
        self.rate_limiter.report(target, outcome)

    async def _wait_backoff(self, attempt: int) -> None:
        """Sleep the backoff delay, waking early on a stop request."""
        delay = self.backoff.get_sleep(attempt)
        logger.debug("backoff_wait", attempt=attempt + 1, seconds=round(delay, 2))
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Items and budget
    # ------------------------------------------------------------------

    def _check_budget(self) -> bool:
        if not self._budget_reached and len(self.catalog) >= self.options.max_items:
            self._budget_reached = True
            logger.info("budget_reached", items=len(self.catalog), max_items=self.options.max_items)
        return self._budget_reached

    async def _deliver(self, target: Target, progress: TargetProgress, raw_items: List[RawItem]) -> List[CanonicalItem]:
        """Pipeline raw items and upsert them, never exceeding the item budget."""
        canonical = self.pipeline.process(raw_items, target)
        async with self._budget_lock:
            remaining = max(0, self.options.max_items - len(self.catalog))
            accepted = []
            for item in canonical:
                if item.id in self.catalog:
                    accepted.append(item)
                elif remaining > 0:
                    accepted.append(item)
                    remaining -= 1
            if len(accepted) < len(canonical):
                logger.info("items_trimmed_to_budget", target=target.id, dropped=len(canonical) - len(accepted))

            await self.catalog.upsert_many(accepted)
            progress.item_count = self.catalog.count(target.id)
            self._check_budget()

        for sink in self.sinks:
            try:
                await sink.upsert_many(accepted)
            except CatalogError as exc:
                self.catalog_errors += 1
                logger.error("catalog_upsert_failed", target=target.id, error=exc.message)
        return accepted

    # ------------------------------------------------------------------
    # Persistence and reporting
    # ------------------------------------------------------------------

    async def _save(self, state: SessionState) -> None:
        state.totals = {
            "items": len(self.catalog),
            "attempts": len(self.history),
            "catalog_errors": self.catalog_errors,
        }
        await self.session_store.save(state)
        try:
            await self.catalog.flush()
        except PersistenceError as exc:
            logger.warning("catalog_checkpoint_failed", error=exc.message)

    def _report(self, state: SessionState, exit_code: Optional[int] = None) -> RunReport:
        return build_report(
            state,
            self.history,
            self.catalog.items(),
            pipeline_stats=self.pipeline.stats.to_dict(),
            breaker_snapshot=self.breaker.snapshot(),
            limiter_snapshot=self.rate_limiter.snapshot(),
            duration_seconds=time.monotonic() - self._started,
            interrupted=self.stop_requested,
            resumed=self.resumed,
            exit_code=exit_code,
        )

    async def _write_interim_report(self, state: SessionState) -> None:
        try:
            write_report(self.layout.report(state.session_id), self._report(state))
        except PersistenceError as exc:
            logger.warning("interim_report_failed", error=exc.message)

    def _exit_code(self, state: SessionState) -> int:
        if self._budget_reached:
            return EXIT_OK
        statuses = [state.progress_for(target.id).status for target in self.targets]
        if all(status == "completed" for status in statuses):
            return EXIT_OK
        return EXIT_PARTIAL

    def _write_outputs(self) -> None:
        """Per-target product files and the globally deduplicated catalog.

        Raises:
            PersistenceError: If any output file cannot be written
        """
        items = self.catalog.items()
        for target in self.targets:
            target_items = [item.to_dict() for item in items if item.source_target == target.id]
            write_json_atomic(
                self.layout.target_products(target.id),
                {"target": target.id, "display_name": target.display_name, "count": len(target_items), "items": target_items},
            )
        merged = self.pipeline.finalize(items)
        write_json_atomic(
            self.layout.catalog,
            {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "count": len(merged),
                "items": [item.to_dict() for item in merged],
            },
        )

    async def _finish(self, state: SessionState) -> RunResult:
        # An interrupted session stays resumable
        state.finished = self._budget_reached or not self.stop_requested
        exit_code = self._exit_code(state)

        try:
            await self.catalog.flush()
            self._write_outputs()
        except PersistenceError as exc:
            logger.error("final_output_failed", error=exc.message)
            exit_code = EXIT_FATAL

        for sink in self.sinks:
            try:
                await sink.close()
            except CatalogError as exc:
                self.catalog_errors += 1
                logger.error("catalog_close_failed", error=exc.message)

        await self._save(state)
        report = self._report(state, exit_code=exit_code)
        try:
            write_report(self.layout.report(state.session_id), report)
        except PersistenceError as exc:
            logger.error("final_report_failed", error=exc.message)
            exit_code = EXIT_FATAL
            report.exit_code = exit_code

        logger.info(
            "session_finished",
            items=report.summary.total_items,
            targets_completed=report.summary.targets_completed,
            targets_failed=report.summary.targets_failed,
            exit_code=exit_code,
        )
        return RunResult(session_id=state.session_id, report=report, exit_code=exit_code)


def build_orchestrator(
    settings: Settings,
    targets: Sequence[Target],
    options: RunOptions,
    browser: Optional[BrowserProvider] = None,
    headless: Optional[bool] = None,
) -> HarvestOrchestrator:
    """Wire an orchestrator with every collaborator configured from settings.

    Args:
        settings: Application settings
        targets: Targets to harvest (already filtered)
        options: Run options
        browser: Browser provider; defaults to the Playwright BrowserManager
        headless: Override settings.HEADLESS for the default browser

    Raises:
        ConfigurationError: If the strategy name is unknown
    """
    if browser is None:
        from harvester.scrapers.utils.browser_manager import BrowserManager

        browser = BrowserManager(headless=settings.HEADLESS if headless is None else headless)

    rate_limiter = AdaptiveRateLimiter(
        fast_response_ms=settings.FAST_RESPONSE_MS,
        slow_response_ms=settings.SLOW_RESPONSE_MS,
    )
    fingerprints = FingerprintProvider()
    factory = StrategyFactory.from_settings(settings, browser, rate_limiter, fingerprints)
    selector = StrategySelector(
        factory.create_strategies(),
        fixed_strategy=None if options.strategy == INTELLIGENT else options.strategy,
        history_window=settings.HISTORY_WINDOW,
        business_hours=(settings.BUSINESS_HOURS_START, settings.BUSINESS_HOURS_END),
    )

    layout = OutputLayout(Path(options.output_dir))
    sinks: List[CatalogSink] = []
    if settings.CATALOG_INGEST_URL:
        sinks.append(HttpCatalog(settings.CATALOG_INGEST_URL, settings.INGEST_API_KEY))

    return HarvestOrchestrator(
        targets,
        options,
        selector=selector,
        breaker=CircuitBreaker(
            failure_threshold=settings.FAILURE_THRESHOLD,
            recovery_timeout=settings.RECOVERY_TIMEOUT_SECONDS,
        ),
        rate_limiter=rate_limiter,
        fingerprints=fingerprints,
        pipeline=DataPipeline(min_quality_score=settings.MIN_QUALITY_SCORE),
        catalog=JsonFileCatalog(),
        session_store=SessionStore(layout.sessions),
        backoff=BackoffPolicy(
            base_seconds=settings.BACKOFF_BASE_SECONDS,
            max_seconds=settings.BACKOFF_MAX_SECONDS,
            jitter=settings.BACKOFF_JITTER,
        ),
        browser=browser,
        sinks=sinks,
    )
