"""
run_log.py - Append-only record of ingestion attempts.

A run is created `running` and moves exactly once to success, partial or
failed. Dashboards read these rows for "last run / status / found" per source.
"""

from typing import Optional

from database import Database
from errors import RunLogError
from models import RunStatus, ScrapeRun, utcnow
from monitoring import get_logger, log_run_transition

logger = get_logger("run_log")


class RunLog:
    def __init__(self, db: Database):
        self.db = db

    def start(self, source: str, triggered_by: Optional[str] = None) -> ScrapeRun:
        """Create a running entry. Raises RunLogError if it cannot be written."""
        run = self.db.create_run(ScrapeRun(source=source, triggered_by=triggered_by))
        log_run_transition(logger, run.id, source, RunStatus.RUNNING.value)
        return run

    def finish(
        self,
        run: ScrapeRun,
        status: RunStatus,
        found: int = 0,
        inserted: int = 0,
        updated: int = 0,
        error: Optional[str] = None,
    ) -> ScrapeRun:
        """Record the terminal state of a run."""
        if not status.is_terminal:
            raise ValueError("A run can only finish in a terminal state")
        if run.status.is_terminal:
            raise RunLogError(f"Run {run.id} already finished as {run.status.value}")

        terminal = ScrapeRun(
            id=run.id,
            source=run.source,
            status=status,
            started_at=run.started_at,
            completed_at=utcnow().isoformat(),
            opportunities_found=found,
            opportunities_inserted=inserted,
            opportunities_updated=updated,
            error_message=error,
            triggered_by=run.triggered_by,
        )
        self.db.complete_run(terminal)
        log_run_transition(logger, run.id, run.source, status.value)

        # Only copy back once the row is written
        run.status = terminal.status
        run.completed_at = terminal.completed_at
        run.opportunities_found = found
        run.opportunities_inserted = inserted
        run.opportunities_updated = updated
        run.error_message = error
        return run

    def fail_quietly(self, run: Optional[ScrapeRun], error: str):
        """Best-effort `failed` write used on the way out of a fatal error."""
        if run is None or run.id is None or run.status.is_terminal:
            return
        try:
            self.finish(run, RunStatus.FAILED, error=error)
        except Exception as e:
            logger.error(f"Could not mark run {run.id} as failed: {e}")
