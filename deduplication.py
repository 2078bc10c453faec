"""
deduplication.py - Insert-or-update of candidates into the canonical store.

The dedup key is the source URL. A candidate whose URL matches an active row
replaces that row's fields wholesale; anything else is inserted. Candidates
without a URL are always inserted: there is no content-based matching, so
URL-less sources can produce duplicate rows.
"""

import sqlite3

from database import Database
from errors import PersistenceError
from models import Opportunity, Result, WriteOutcome
from monitoring import get_logger

logger = get_logger("deduplication")


class Deduplicator:
    def __init__(self, db: Database):
        self.db = db

    def apply(self, candidate: Opportunity) -> Result[WriteOutcome]:
        """Write one candidate. Never raises for a write failure."""
        try:
            if candidate.event_url:
                existing_id = self.db.find_active_id_by_url(candidate.event_url)
                if existing_id is not None:
                    self.db.replace_opportunity(existing_id, candidate)
                    return Result.success(WriteOutcome.UPDATED)
            return Result.success(self._insert(candidate))
        except (PersistenceError, sqlite3.Error) as e:
            logger.warning(f"Skipping candidate {candidate.event_url or candidate.event_name!r}: {e}")
            return Result.failure(str(e))

    def _insert(self, candidate: Opportunity) -> WriteOutcome:
        try:
            self.db.insert_opportunity(candidate)
            return WriteOutcome.INSERTED
        except sqlite3.IntegrityError:
            # Another source inserted this URL between our lookup and insert;
            # last writer wins
            existing_id = self.db.find_active_id_by_url(candidate.event_url)
            if existing_id is None:
                raise PersistenceError(f"Insert conflict for {candidate.event_url} with no active row")
            self.db.replace_opportunity(existing_id, candidate)
            return WriteOutcome.UPDATED

    def apply_batch(self, candidates: list[Opportunity]) -> tuple[int, int, int]:
        """
        Write candidates one at a time, in order.
        Returns (inserted, updated, failed).
        """
        inserted = updated = failed = 0
        for candidate in candidates:
            result = self.apply(candidate)
            if not result.ok:
                failed += 1
            elif result.value is WriteOutcome.INSERTED:
                inserted += 1
            else:
                updated += 1

        if failed:
            logger.warning(f"Deduplication: {failed} of {len(candidates)} candidates could not be written")
        return inserted, updated, failed
