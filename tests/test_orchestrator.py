import pytest

from errors import AuthorizationError, OrchestratorFatalError, RunLogError, UnknownSourceError
from models import FetchResult, Identity, MatchSignal, RunStatus
from orchestrator import Orchestrator, classify_run
from run_log import RunLog

from conftest import StubFetcher, make_candidate, make_registry

SERVICE = Identity(user_id=None, role="service")
ADMIN = Identity(user_id="admin-1", role="admin")


def ok(*urls):
    return FetchResult.success([make_candidate(url, name=url) for url in urls])


def aggregate_row(db):
    return db.get_runs("all-sources")[-1]


class RecordingNotifier:
    def __init__(self, signals=None, error=None):
        self.signals = signals or []
        self.error = error
        self.calls = 0

    def notify(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.signals


class BrokenRunLog(RunLog):
    def __init__(self, db, fail_on="start", source="all-sources"):
        super().__init__(db)
        self.fail_on = fail_on
        self.source = source

    def start(self, source, triggered_by=None):
        if self.fail_on == "start" and source == self.source:
            raise RunLogError("database is locked")
        return super().start(source, triggered_by)

    def finish(self, run, status, **kwargs):
        if self.fail_on == "finish" and run.source == self.source:
            raise RunLogError("database is locked")
        return super().finish(run, status, **kwargs)


# --- Classification ---

def test_classify_run():
    from models import SourceResult

    good = SourceResult(source="a", success=True)
    bad = SourceResult(source="b", success=False, error="x")
    assert classify_run([good, good]) is RunStatus.SUCCESS
    assert classify_run([good, bad]) is RunStatus.PARTIAL
    assert classify_run([bad, good]) is RunStatus.PARTIAL
    assert classify_run([bad, bad]) is RunStatus.FAILED
    assert classify_run([]) is RunStatus.SUCCESS


# --- Aggregate runs ---

def test_existing_url_updates_and_new_url_inserts(db):
    orchestrator = Orchestrator(db, make_registry(StubFetcher("S", ok("U1"))))
    orchestrator.run_all(SERVICE)

    fetcher = StubFetcher("S", FetchResult.success([
        make_candidate("U1", name="Conf A (updated)"),
        make_candidate("U2", name="Conf B"),
    ]))
    summary = Orchestrator(db, make_registry(fetcher)).run_all(SERVICE)

    result = summary.results[0]
    assert (result.found, result.inserted, result.updated) == (2, 1, 1)
    assert db.get_opportunities_by_url("U1")[0].event_name == "Conf A (updated)"
    assert len(db.get_opportunities_by_url("U1")) == 1
    assert len(db.get_opportunities_by_url("U2")) == 1


def test_same_url_from_two_sources_in_one_run(db):
    x = StubFetcher("X", FetchResult.success([make_candidate("u1", name="Conf A")]))
    y = StubFetcher("Y", FetchResult.success([make_candidate("u1", name="Conf A (updated)")]))
    summary = Orchestrator(db, make_registry(x, y)).run_all(SERVICE)

    assert summary.status is RunStatus.SUCCESS
    assert summary.totals == {"found": 2, "inserted": 1, "updated": 1}
    rows = db.get_opportunities_by_url("u1")
    assert len(rows) == 1
    assert rows[0].event_name == "Conf A (updated)"
    row = aggregate_row(db)
    assert (row.opportunities_inserted, row.opportunities_updated) == (1, 1)


def test_one_failing_source_does_not_stop_the_others(db):
    a = StubFetcher("A", ok("a1"))
    b = StubFetcher("B", error=RuntimeError("connection reset"))
    c = StubFetcher("C", ok("c1", "c2"))
    summary = Orchestrator(db, make_registry(a, b, c)).run_all(SERVICE)

    assert summary.status is RunStatus.PARTIAL
    assert [r.source for r in summary.results] == ["A", "B", "C"]
    assert [r.success for r in summary.results] == [True, False, True]
    assert summary.results[1].error == "connection reset"
    assert summary.failed_sources == ["B"]
    assert summary.totals == {"found": 3, "inserted": 3, "updated": 0}
    assert c.calls == 1

    row = aggregate_row(db)
    assert row.status is RunStatus.PARTIAL
    assert row.error_message == "B"
    assert row.opportunities_found == 3
    assert db.get_runs("B")[0].status is RunStatus.FAILED
    assert db.get_runs("C")[0].status is RunStatus.SUCCESS


def test_all_sources_failing(db):
    a = StubFetcher("A", FetchResult.failure("A returned 503"))
    b = StubFetcher("B", error=ValueError("bad row"))
    summary = Orchestrator(db, make_registry(a, b)).run_all(SERVICE)

    assert summary.status is RunStatus.FAILED
    assert aggregate_row(db).error_message == "A,B"
    assert summary.to_dict()["success"] is True


def test_sources_with_no_candidates_still_succeed(db):
    summary = Orchestrator(db, make_registry(StubFetcher("A"), StubFetcher("B"))).run_all(SERVICE)

    assert summary.status is RunStatus.SUCCESS
    assert summary.totals == {"found": 0, "inserted": 0, "updated": 0}
    assert aggregate_row(db).error_message is None


def test_no_enabled_sources(db):
    a = StubFetcher("A", ok("a1"))
    summary = Orchestrator(db, make_registry(a, disabled=("A",))).run_all(SERVICE)

    assert summary.status is RunStatus.SUCCESS
    assert summary.results == []
    assert a.calls == 0
    assert aggregate_row(db).status is RunStatus.SUCCESS


def test_partial_fetch_is_written_but_reported_failed(db):
    partial = FetchResult.failure("1 event page(s) failed", [make_candidate("p1"), make_candidate("p2")])
    summary = Orchestrator(db, make_registry(StubFetcher("P", partial), StubFetcher("Q"))).run_all(SERVICE)

    result = summary.results[0]
    assert not result.success
    assert (result.found, result.inserted) == (2, 2)
    assert summary.failed_sources == ["P"]
    assert summary.status is RunStatus.PARTIAL
    assert db.get_runs("P")[0].status is RunStatus.PARTIAL
    assert len(db.list_opportunities()) == 2


def test_per_source_rows_carry_counts_and_identity(db):
    Orchestrator(db, make_registry(StubFetcher("A", ok("a1", "a2")))).run_all(ADMIN)

    row = db.get_runs("A")[0]
    assert row.status is RunStatus.SUCCESS
    assert row.opportunities_found == 2
    assert row.opportunities_inserted == 2
    assert row.triggered_by == "admin:admin-1"
    assert aggregate_row(db).triggered_by == "admin:admin-1"


def test_every_run_row_is_terminal_afterwards(db):
    registry = make_registry(StubFetcher("A", ok("a1")), StubFetcher("B", error=RuntimeError("x")))
    Orchestrator(db, registry).run_all(SERVICE)

    for row in db.get_runs():
        assert row.status is not RunStatus.RUNNING
        assert row.completed_at is not None


def test_results_keep_registry_order_with_workers(db):
    fetchers = [StubFetcher(tag, ok(f"{tag}-1"), delay=delay) for tag, delay in [("A", 0.2), ("B", 0.0), ("C", 0.1)]]
    summary = Orchestrator(db, make_registry(*fetchers), max_workers=3).run_all(SERVICE)

    assert [r.source for r in summary.results] == ["A", "B", "C"]
    assert summary.status is RunStatus.SUCCESS
    assert summary.totals["inserted"] == 3


def test_run_timeout_marks_in_flight_and_pending_sources(db):
    slow = StubFetcher("slow", ok("s1"), delay=1.0)
    queued = StubFetcher("queued", ok("q1"))
    summary = Orchestrator(db, make_registry(slow, queued), max_workers=1).run_all(SERVICE, timeout_seconds=0.2)

    assert summary.status is RunStatus.FAILED
    assert summary.results[0].error == "timed out"
    assert summary.results[1].error == "timed out before start"
    assert queued.calls == 0
    row = aggregate_row(db)
    assert row.status is RunStatus.FAILED
    assert row.error_message == "slow,queued"


def test_zero_timeout_starts_no_source(db):
    a = StubFetcher("A", ok("a1"))
    b = StubFetcher("B", ok("b1"))
    summary = Orchestrator(db, make_registry(a, b), max_workers=2).run_all(SERVICE, timeout_seconds=0)

    assert summary.status is RunStatus.FAILED
    assert (a.calls, b.calls) == (0, 0)
    assert all(not r.success for r in summary.results)
    assert db.list_opportunities() == []


# --- Notifier ---

def test_notifier_runs_after_aggregate_run(db):
    notifier = RecordingNotifier([MatchSignal(user_id="u1", opportunity_ids=[1])])
    summary = Orchestrator(db, make_registry(StubFetcher("A", ok("a1"))), notifier=notifier).run_all(SERVICE)

    assert notifier.calls == 1
    assert summary.notified_users == ["u1"]


def test_notifier_failure_changes_nothing(db):
    notifier = RecordingNotifier(error=RuntimeError("scores table missing"))
    summary = Orchestrator(db, make_registry(StubFetcher("A", ok("a1"))), notifier=notifier).run_all(SERVICE)

    assert summary.status is RunStatus.SUCCESS
    assert summary.notified_users == []
    assert aggregate_row(db).status is RunStatus.SUCCESS


# --- Fatal and authorization paths ---

def test_aggregate_run_log_failure_is_fatal(db):
    fetcher = StubFetcher("A", ok("a1"))
    orchestrator = Orchestrator(db, make_registry(fetcher), run_log=BrokenRunLog(db, fail_on="start"))

    with pytest.raises(OrchestratorFatalError):
        orchestrator.run_all(SERVICE)
    assert fetcher.calls == 0
    assert db.list_opportunities() == []


def test_aggregate_finalize_failure_is_fatal(db):
    orchestrator = Orchestrator(
        db, make_registry(StubFetcher("A", ok("a1"))), run_log=BrokenRunLog(db, fail_on="finish")
    )

    with pytest.raises(OrchestratorFatalError):
        orchestrator.run_all(SERVICE)
    # The source itself completed and its writes remain
    assert db.get_runs("A")[0].status is RunStatus.SUCCESS
    assert len(db.list_opportunities()) == 1


def test_per_source_run_log_failure_is_isolated(db):
    registry = make_registry(StubFetcher("A", ok("a1")), StubFetcher("B", ok("b1")))
    orchestrator = Orchestrator(db, registry, run_log=BrokenRunLog(db, fail_on="start", source="A"))
    summary = orchestrator.run_all(SERVICE)

    assert summary.status is RunStatus.PARTIAL
    assert summary.failed_sources == ["A"]


def test_unauthorized_identity_creates_no_run(db):
    orchestrator = Orchestrator(db, make_registry(StubFetcher("A", ok("a1"))))

    with pytest.raises(AuthorizationError) as excinfo:
        orchestrator.run_all(Identity(user_id="u1", role="user"))
    assert excinfo.value.status_code == 403
    assert db.get_runs() == []


def test_internal_identity_cannot_run_all_sources(db):
    orchestrator = Orchestrator(db, make_registry(StubFetcher("A")))

    with pytest.raises(AuthorizationError):
        orchestrator.run_all(Identity(user_id=None, role="internal"))
    assert db.get_runs() == []


# --- Single-source path ---

def test_run_source_touches_only_that_source(db):
    a = StubFetcher("A", ok("a1"))
    b = StubFetcher("B", ok("b1"))
    summary = Orchestrator(db, make_registry(a, b)).run_source("B", Identity(user_id=None, role="internal"))

    assert a.calls == 0
    assert summary.status is RunStatus.SUCCESS
    assert summary.run_id == db.get_runs("B")[0].id
    assert [r.source for r in summary.results] == ["B"]
    assert db.get_runs("all-sources") == []


def test_run_source_failure_is_reported_not_raised(db):
    summary = Orchestrator(db, make_registry(StubFetcher("A", error=RuntimeError("boom")))).run_source("A", SERVICE)

    assert summary.status is RunStatus.FAILED
    assert summary.failed_sources == ["A"]
    assert db.get_runs("A")[0].status is RunStatus.FAILED


def test_run_source_unknown_tag(db):
    with pytest.raises(UnknownSourceError):
        Orchestrator(db, make_registry(StubFetcher("A"))).run_source("nope", SERVICE)
    assert db.get_runs() == []


def test_run_source_run_log_failure_is_fatal(db):
    orchestrator = Orchestrator(
        db, make_registry(StubFetcher("A", ok("a1"))), run_log=BrokenRunLog(db, fail_on="start", source="A")
    )
    with pytest.raises(OrchestratorFatalError):
        orchestrator.run_source("A", SERVICE)
