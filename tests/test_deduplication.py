from deduplication import Deduplicator
from models import WriteOutcome

from conftest import make_candidate


def test_first_sighting_inserts(db):
    result = Deduplicator(db).apply(make_candidate("https://e.com/a", name="Conf A"))

    assert result.ok
    assert result.value is WriteOutcome.INSERTED
    rows = db.get_opportunities_by_url("https://e.com/a")
    assert len(rows) == 1
    assert rows[0].event_name == "Conf A"
    assert rows[0].is_active


def test_same_candidate_twice_updates_single_row(db):
    dedup = Deduplicator(db)
    first = dedup.apply(make_candidate("https://e.com/a"))
    second = dedup.apply(make_candidate("https://e.com/a"))

    assert first.value is WriteOutcome.INSERTED
    assert second.value is WriteOutcome.UPDATED
    assert len(db.get_opportunities_by_url("https://e.com/a")) == 1


def test_update_replaces_fields_wholesale(db):
    dedup = Deduplicator(db)
    dedup.apply(make_candidate("https://e.com/a", name="Conf A", location="Austin", deadline="2026-03-01"))
    dedup.apply(make_candidate("https://e.com/a", name="Conf A (updated)"))

    row = db.get_opportunities_by_url("https://e.com/a")[0]
    assert row.event_name == "Conf A (updated)"
    assert row.location is None
    assert row.deadline is None


def test_first_scraped_at_is_kept_and_scraped_at_refreshed(db):
    dedup = Deduplicator(db)
    dedup.apply(make_candidate("https://e.com/a", scraped_at="2026-01-01T00:00:00+00:00"))
    dedup.apply(make_candidate("https://e.com/a", scraped_at="2026-02-01T00:00:00+00:00"))

    row = db.get_opportunities_by_url("https://e.com/a")[0]
    assert row.first_scraped_at == "2026-01-01T00:00:00+00:00"
    assert row.scraped_at == "2026-02-01T00:00:00+00:00"


def test_update_keeps_id(db):
    dedup = Deduplicator(db)
    dedup.apply(make_candidate("https://e.com/a", name="v1"))
    original_id = db.find_active_id_by_url("https://e.com/a")
    dedup.apply(make_candidate("https://e.com/a", name="v2"))

    assert db.find_active_id_by_url("https://e.com/a") == original_id
    assert db.get_opportunity(original_id).event_name == "v2"


def test_null_url_always_inserts(db):
    dedup = Deduplicator(db)
    first = dedup.apply(make_candidate(None, name="No Link Summit"))
    second = dedup.apply(make_candidate(None, name="No Link Summit"))

    assert first.value is WriteOutcome.INSERTED
    assert second.value is WriteOutcome.INSERTED
    assert [o.event_name for o in db.list_opportunities()] == ["No Link Summit", "No Link Summit"]


def test_no_fuzzy_matching_on_similar_urls(db):
    dedup = Deduplicator(db)
    dedup.apply(make_candidate("https://e.com/conf-2026"))
    result = dedup.apply(make_candidate("https://e.com/conf-2026/"))

    assert result.value is WriteOutcome.INSERTED
    assert len(db.list_opportunities()) == 2


def test_insert_race_becomes_update(db, monkeypatch):
    dedup = Deduplicator(db)
    dedup.apply(make_candidate("https://e.com/a", name="first writer"))

    # Lookup misses, as if a concurrent source inserted after we checked
    real_lookup = db.find_active_id_by_url
    calls = []

    def racing_lookup(url):
        calls.append(url)
        return None if len(calls) == 1 else real_lookup(url)

    monkeypatch.setattr(db, "find_active_id_by_url", racing_lookup)
    result = dedup.apply(make_candidate("https://e.com/a", name="second writer"))

    assert result.ok
    assert result.value is WriteOutcome.UPDATED
    rows = db.get_opportunities_by_url("https://e.com/a")
    assert len(rows) == 1
    assert rows[0].event_name == "second writer"


def test_write_failure_is_a_result_not_an_exception(db, monkeypatch):
    from errors import PersistenceError

    def broken_insert(opp):
        raise PersistenceError("disk I/O error")

    monkeypatch.setattr(db, "insert_opportunity", broken_insert)
    result = Deduplicator(db).apply(make_candidate("https://e.com/a"))

    assert not result.ok
    assert "disk I/O error" in result.error


def test_batch_counts_and_skips_failures(db, monkeypatch):
    from errors import PersistenceError

    dedup = Deduplicator(db)
    dedup.apply(make_candidate("https://e.com/a"))
    real_insert = db.insert_opportunity

    def flaky_insert(opp):
        if opp.event_url == "https://e.com/bad":
            raise PersistenceError("constraint failed")
        return real_insert(opp)

    monkeypatch.setattr(db, "insert_opportunity", flaky_insert)
    inserted, updated, failed = dedup.apply_batch([
        make_candidate("https://e.com/a"),
        make_candidate("https://e.com/b"),
        make_candidate("https://e.com/bad"),
    ])

    assert (inserted, updated, failed) == (1, 1, 1)
    assert db.get_opportunities_by_url("https://e.com/bad") == []
