"""
orchestrator.py - Runs the configured sources and keeps the run log honest.

Every source runs inside its own isolation boundary: whatever goes wrong in
one source ends up as that source's failed result and never stops the others.
The aggregate run is classified from the per-source outcomes only after all
of them are terminal:

    success  every source succeeded (including ones that found nothing)
    partial  at least one succeeded and at least one failed
    failed   none succeeded
"""

import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Optional

from config import AGGREGATE_SOURCE_TAG, MAX_WORKERS
from database import Database
from deduplication import Deduplicator
from errors import AuthorizationError, OrchestratorFatalError, RunLogError
from models import FetchResult, Identity, RunStatus, RunSummary, SourceResult
from monitoring import get_logger, log_run_summary, log_source_failure, log_source_success
from notifier import MatchNotifier
from run_log import RunLog
from scrapers.registry import SourceRegistry

logger = get_logger("orchestrator")

TIMED_OUT_BEFORE_START = "timed out before start"
TIMED_OUT = "timed out"


def classify_run(results: list[SourceResult]) -> RunStatus:
    """Aggregate status from per-source outcomes; order does not matter."""
    succeeded = sum(1 for r in results if r.success)
    if succeeded == len(results):
        return RunStatus.SUCCESS
    if succeeded > 0:
        return RunStatus.PARTIAL
    return RunStatus.FAILED


def fetch_status(fetched: FetchResult) -> RunStatus:
    if fetched.ok:
        return RunStatus.SUCCESS
    if fetched.is_partial:
        return RunStatus.PARTIAL
    return RunStatus.FAILED


class Orchestrator:
    def __init__(
        self,
        db: Database,
        registry: SourceRegistry,
        deduplicator: Optional[Deduplicator] = None,
        run_log: Optional[RunLog] = None,
        notifier: Optional[MatchNotifier] = None,
        max_workers: int = MAX_WORKERS,
    ):
        self.db = db
        self.registry = registry
        self.deduplicator = deduplicator or Deduplicator(db)
        self.run_log = run_log or RunLog(db)
        self.notifier = notifier
        self.max_workers = max(1, max_workers)

    # --- Entry points ---

    def run_all(
        self,
        identity: Identity,
        timeout_seconds: Optional[float] = None,
        manual_trigger: bool = False,
    ) -> RunSummary:
        """
        Run every enabled source and record the aggregate run.
        Raises OrchestratorFatalError only when the aggregate run log itself
        cannot be written.
        """
        self._require(identity, aggregate=True)
        run_start = time.time()
        logger.info(
            f"Starting aggregate run ({'manual' if manual_trigger else 'scheduled'}, by {identity.label})"
        )

        try:
            master = self.run_log.start(AGGREGATE_SOURCE_TAG, triggered_by=identity.label)
        except RunLogError as e:
            raise OrchestratorFatalError(f"Could not create aggregate run log: {e}") from e

        try:
            results = self._run_sources(identity, timeout_seconds)
            summary = RunSummary(status=classify_run(results), results=results, run_id=master.id)
            totals = summary.totals
            self.run_log.finish(
                master,
                summary.status,
                found=totals["found"],
                inserted=totals["inserted"],
                updated=totals["updated"],
                error=",".join(summary.failed_sources) or None,
            )
        except Exception as e:
            self.run_log.fail_quietly(master, str(e))
            raise OrchestratorFatalError(f"Aggregate run {master.id} failed: {e}") from e

        # Notification trouble never changes the recorded status
        summary.notified_users = self._notify()

        log_run_summary(logger, summary, time.time() - run_start)
        return summary

    def run_source(self, tag: str, identity: Identity) -> RunSummary:
        """
        Run exactly one source through the same per-source path the
        aggregate run uses. Raises UnknownSourceError for an unregistered tag.
        """
        self._require(identity, aggregate=False)
        self.registry.get(tag)

        try:
            result = self._run_source(tag, identity)
        except RunLogError as e:
            raise OrchestratorFatalError(f"Run log for {tag} could not be written: {e}") from e
        except Exception as e:
            log_source_failure(logger, tag, e)
            result = SourceResult(source=tag, success=False, error=str(e) or type(e).__name__)

        return RunSummary(status=result.status or RunStatus.FAILED, results=[result], run_id=result.run_id)

    # --- Per-source machinery ---

    def _run_sources(self, identity: Identity, timeout_seconds: Optional[float]) -> list[SourceResult]:
        tags = self.registry.tags(enabled_only=True)
        if not tags:
            logger.warning("No sources enabled")
            return []

        deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="source")
        futures = {tag: executor.submit(self._run_isolated, tag, identity, deadline) for tag in tags}

        remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
        wait(list(futures.values()), timeout=remaining)

        results = []
        for tag, future in futures.items():
            if future.done() and not future.cancelled():
                results.append(future.result())
            elif future.cancel():
                logger.warning(f"[{tag}] not started before the run deadline")
                results.append(SourceResult(source=tag, success=False, error=TIMED_OUT_BEFORE_START))
            else:
                # Still running: abandoned, its committed writes stay
                logger.warning(f"[{tag}] still running at the run deadline, abandoning")
                results.append(SourceResult(source=tag, success=False, error=TIMED_OUT))

        executor.shutdown(wait=False, cancel_futures=True)
        return results

    def _run_isolated(self, tag: str, identity: Identity, deadline: Optional[float]) -> SourceResult:
        """Isolation boundary: never raises."""
        if deadline is not None and time.monotonic() >= deadline:
            return SourceResult(source=tag, success=False, error=TIMED_OUT_BEFORE_START)
        try:
            return self._run_source(tag, identity)
        except Exception as e:
            log_source_failure(logger, tag, e)
            return SourceResult(source=tag, success=False, error=str(e) or type(e).__name__)

    def _run_source(self, tag: str, identity: Identity) -> SourceResult:
        fetcher = self.registry.get(tag)
        config = self.registry.config_for(tag)
        run = self.run_log.start(tag, triggered_by=identity.label)

        try:
            logger.info(f"Running {tag} source...")
            fetched = fetcher.fetch(config)
            found = len(fetched.candidates)
            inserted, updated, _ = self.deduplicator.apply_batch(fetched.candidates)
            status = fetch_status(fetched)
            self.run_log.finish(run, status, found=found, inserted=inserted, updated=updated, error=fetched.error)
        except Exception as e:
            self.run_log.fail_quietly(run, str(e))
            raise

        if fetched.ok:
            log_source_success(logger, tag, found, inserted, updated)
        else:
            log_source_failure(logger, tag, fetched.error)

        return SourceResult(
            source=tag,
            success=fetched.ok,
            found=found,
            inserted=inserted,
            updated=updated,
            error=fetched.error,
            run_id=run.id,
            status=status,
        )

    def _notify(self) -> list[str]:
        if self.notifier is None:
            return []
        try:
            signals = self.notifier.notify()
        except Exception as e:
            logger.error(f"Error checking high-match opportunities: {e}")
            return []
        return [signal.user_id for signal in signals]

    @staticmethod
    def _require(identity: Identity, aggregate: bool):
        if identity is None or not identity.may_ingest:
            raise AuthorizationError("Admin access or service credential required", status_code=403)
        if aggregate and identity.role == "internal":
            raise AuthorizationError("Internal-call marker is only valid for single-source runs", status_code=403)
