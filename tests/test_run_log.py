import dataclasses
import sqlite3

import pytest

from errors import RunLogError
from models import RunStatus
from run_log import RunLog


def test_start_creates_running_row(db):
    run = RunLog(db).start("papercall", triggered_by="service")

    stored = db.get_run(run.id)
    assert stored.status is RunStatus.RUNNING
    assert stored.completed_at is None
    assert stored.triggered_by == "service"


def test_finish_records_terminal_state(db):
    log = RunLog(db)
    run = log.start("papercall")
    log.finish(run, RunStatus.SUCCESS, found=3, inserted=2, updated=1)

    stored = db.get_run(run.id)
    assert stored.status is RunStatus.SUCCESS
    assert stored.completed_at is not None
    assert (stored.opportunities_found, stored.opportunities_inserted, stored.opportunities_updated) == (3, 2, 1)
    assert stored.error_message is None


def test_finish_twice_is_rejected(db):
    log = RunLog(db)
    run = log.start("papercall")
    log.finish(run, RunStatus.FAILED, error="boom")

    with pytest.raises(RunLogError):
        log.finish(run, RunStatus.SUCCESS)
    assert db.get_run(run.id).status is RunStatus.FAILED


def test_stale_copy_cannot_transition_a_terminal_row(db):
    log = RunLog(db)
    run = log.start("papercall")
    stale = dataclasses.replace(run)
    log.finish(run, RunStatus.SUCCESS)

    with pytest.raises(RunLogError):
        log.finish(stale, RunStatus.FAILED, error="late")

    stored = db.get_run(run.id)
    assert stored.status is RunStatus.SUCCESS
    assert stored.error_message is None


def test_finish_requires_terminal_status(db):
    log = RunLog(db)
    run = log.start("papercall")
    with pytest.raises(ValueError):
        log.finish(run, RunStatus.RUNNING)


def test_store_rejects_completed_at_without_terminal_status(db):
    run = RunLog(db).start("papercall")
    conn = db.get_connection()
    try:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("UPDATE scraping_logs SET status = 'success' WHERE id = ?", (run.id,))
    finally:
        conn.close()


def test_fail_quietly_marks_failed_once(db):
    log = RunLog(db)
    run = log.start("all-sources")
    log.fail_quietly(run, "could not finalize")
    log.fail_quietly(run, "second attempt is ignored")

    stored = db.get_run(run.id)
    assert stored.status is RunStatus.FAILED
    assert stored.error_message == "could not finalize"


def test_latest_runs_one_per_source(db):
    log = RunLog(db)
    for source in ["papercall", "sessionize", "papercall"]:
        log.finish(log.start(source), RunStatus.SUCCESS)

    latest = db.get_latest_runs()
    assert [r.source for r in latest] == ["papercall", "sessionize"]
    assert latest[0].id == max(r.id for r in db.get_runs("papercall"))
