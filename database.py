"""
database.py - SQLite store: canonical opportunities, run log rows, and the
collaborator tables the pipeline reads (profiles, roles, tokens, scores).

SQLite is the single source of truth. Every call opens its own connection,
so worker threads never share one.
"""

import hashlib
import json
import sqlite3
from pathlib import Path
from typing import Optional

from config import DB_PATH
from errors import PersistenceError, RunLogError
from models import Opportunity, RunStatus, ScoreRecord, ScrapeRun, MatchSignal, utcnow

# Columns a sighting refreshes; id and first_scraped_at are never rewritten
OPPORTUNITY_FIELDS = [
    "event_name", "event_url", "organizer_name", "organizer_email", "description",
    "location", "audience_size", "fee_estimate_min", "fee_estimate_max",
    "event_date", "deadline", "source", "raw_data", "scraped_at", "is_active",
]


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class Database:
    """Handle to one SQLite database file."""

    def __init__(self, path=DB_PATH):
        self.path = Path(path)

    def get_connection(self) -> sqlite3.Connection:
        """Get a database connection, creating the DB file if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def init_db(self):
        """Create all tables if they don't exist."""
        conn = self.get_connection()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS opportunities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_name TEXT NOT NULL,
                    event_url TEXT,
                    organizer_name TEXT,
                    organizer_email TEXT,
                    description TEXT,
                    location TEXT,
                    audience_size INTEGER,
                    fee_estimate_min REAL,
                    fee_estimate_max REAL,
                    event_date TEXT,
                    deadline TEXT,
                    source TEXT,
                    raw_data TEXT,
                    scraped_at TEXT NOT NULL,
                    first_scraped_at TEXT NOT NULL,
                    is_active INTEGER DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS scraping_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'running',
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    opportunities_found INTEGER DEFAULT 0,
                    opportunities_inserted INTEGER DEFAULT 0,
                    opportunities_updated INTEGER DEFAULT 0,
                    error_message TEXT,
                    triggered_by TEXT,
                    CHECK ((status = 'running') = (completed_at IS NULL))
                );

                CREATE TABLE IF NOT EXISTS profiles (
                    user_id TEXT PRIMARY KEY,
                    name TEXT
                );

                CREATE TABLE IF NOT EXISTS user_roles (
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    PRIMARY KEY (user_id, role)
                );

                CREATE TABLE IF NOT EXISTS api_tokens (
                    token_hash TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT
                );

                CREATE TABLE IF NOT EXISTS opportunity_scores (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    opportunity_id INTEGER REFERENCES opportunities(id),
                    ai_score REAL,
                    pipeline_stage TEXT DEFAULT 'new',
                    calculated_at TEXT,
                    UNIQUE (user_id, opportunity_id)
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    payload TEXT,
                    created_at TEXT NOT NULL,
                    delivered INTEGER DEFAULT 0
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_opportunities_active_url
                    ON opportunities(event_url) WHERE is_active = 1 AND event_url IS NOT NULL;
                CREATE INDEX IF NOT EXISTS idx_opportunities_first_scraped ON opportunities(first_scraped_at);
                CREATE INDEX IF NOT EXISTS idx_logs_source ON scraping_logs(source, started_at);
                CREATE INDEX IF NOT EXISTS idx_scores_user ON opportunity_scores(user_id);
            """)
            conn.commit()
        finally:
            conn.close()

    # --- Opportunities ---

    def find_active_id_by_url(self, url: str) -> Optional[int]:
        """Get the id of the active opportunity with this URL, if any."""
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT id FROM opportunities WHERE event_url = ? AND is_active = 1",
                (url,)
            ).fetchone()
        finally:
            conn.close()
        return row["id"] if row else None

    def insert_opportunity(self, opp: Opportunity) -> int:
        """
        Insert a new opportunity row. Returns its id.
        Raises sqlite3.IntegrityError if an active row already holds the URL,
        PersistenceError for any other write failure.
        """
        values = self._opportunity_values(opp)
        first_scraped = opp.first_scraped_at or opp.scraped_at
        columns = OPPORTUNITY_FIELDS + ["first_scraped_at"]
        placeholders = ", ".join("?" * len(columns))
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                f"INSERT INTO opportunities ({', '.join(columns)}) VALUES ({placeholders})",
                values + [first_scraped]
            )
            conn.commit()
            return cursor.lastrowid
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise PersistenceError(f"Insert failed for {opp.event_url or opp.event_name}: {e}") from e
        finally:
            conn.close()

    def replace_opportunity(self, opp_id: int, opp: Opportunity):
        """Overwrite every refreshable field of an existing row."""
        assignments = ", ".join(f"{col} = ?" for col in OPPORTUNITY_FIELDS)
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                f"UPDATE opportunities SET {assignments} WHERE id = ?",
                self._opportunity_values(opp) + [opp_id]
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise PersistenceError(f"Opportunity {opp_id} vanished before update")
        except sqlite3.Error as e:
            raise PersistenceError(f"Update failed for opportunity {opp_id}: {e}") from e
        finally:
            conn.close()

    def get_opportunity(self, opp_id: int) -> Optional[Opportunity]:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT * FROM opportunities WHERE id = ?", (opp_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_opportunity(row) if row else None

    def get_opportunities_by_url(self, url: str) -> list[Opportunity]:
        """All rows (active or not) carrying this URL."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM opportunities WHERE event_url = ? ORDER BY id", (url,)
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_opportunity(r) for r in rows]

    def list_opportunities(self, active_only: bool = True) -> list[Opportunity]:
        query = "SELECT * FROM opportunities"
        if active_only:
            query += " WHERE is_active = 1"
        conn = self.get_connection()
        try:
            rows = conn.execute(query + " ORDER BY id").fetchall()
        finally:
            conn.close()
        return [self._row_to_opportunity(r) for r in rows]

    def get_recent_opportunities(self, since: str) -> list[Opportunity]:
        """Active opportunities first seen at or after `since` (ISO timestamp)."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                """SELECT * FROM opportunities
                   WHERE first_scraped_at >= ? AND is_active = 1
                   ORDER BY id""",
                (since,)
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_opportunity(r) for r in rows]

    @staticmethod
    def _opportunity_values(opp: Opportunity) -> list:
        return [
            opp.event_name, opp.event_url, opp.organizer_name, opp.organizer_email,
            opp.description, opp.location, opp.audience_size, opp.fee_estimate_min,
            opp.fee_estimate_max, opp.event_date, opp.deadline, opp.source,
            json.dumps(opp.raw_data) if opp.raw_data is not None else None,
            opp.scraped_at, int(opp.is_active),
        ]

    @staticmethod
    def _row_to_opportunity(row: sqlite3.Row) -> Opportunity:
        data = dict(row)
        data["raw_data"] = json.loads(data["raw_data"]) if data["raw_data"] else None
        data["is_active"] = bool(data["is_active"])
        return Opportunity(**data)

    # --- Run Log ---

    def create_run(self, run: ScrapeRun) -> ScrapeRun:
        """Insert a run in `running` state. Returns it with its id set."""
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                """INSERT INTO scraping_logs (source, status, started_at, triggered_by)
                   VALUES (?, ?, ?, ?)""",
                (run.source, RunStatus.RUNNING.value, run.started_at, run.triggered_by)
            )
            conn.commit()
            run.id = cursor.lastrowid
            return run
        except sqlite3.Error as e:
            raise RunLogError(f"Could not create run log for {run.source}: {e}") from e
        finally:
            conn.close()

    def complete_run(self, run: ScrapeRun):
        """
        Move a running row to its terminal state. The WHERE clause makes the
        transition happen at most once.
        """
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                """UPDATE scraping_logs
                   SET status = ?, completed_at = ?, opportunities_found = ?,
                       opportunities_inserted = ?, opportunities_updated = ?, error_message = ?
                   WHERE id = ? AND completed_at IS NULL""",
                (
                    run.status.value, run.completed_at, run.opportunities_found,
                    run.opportunities_inserted, run.opportunities_updated,
                    run.error_message, run.id
                )
            )
            conn.commit()
            changed = cursor.rowcount
        except sqlite3.Error as e:
            raise RunLogError(f"Could not finalize run {run.id}: {e}") from e
        finally:
            conn.close()
        if changed == 0:
            raise RunLogError(f"Run {run.id} is missing or already terminal")

    def get_run(self, run_id: int) -> Optional[ScrapeRun]:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT * FROM scraping_logs WHERE id = ?", (run_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_run(row) if row else None

    def get_runs(self, source: Optional[str] = None) -> list[ScrapeRun]:
        query = "SELECT * FROM scraping_logs"
        params: tuple = ()
        if source:
            query += " WHERE source = ?"
            params = (source,)
        conn = self.get_connection()
        try:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        finally:
            conn.close()
        return [self._row_to_run(r) for r in rows]

    def get_latest_runs(self) -> list[ScrapeRun]:
        """Most recent run row per source tag."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                """SELECT * FROM scraping_logs
                   WHERE id IN (SELECT MAX(id) FROM scraping_logs GROUP BY source)
                   ORDER BY source"""
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_run(r) for r in rows]

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> ScrapeRun:
        data = dict(row)
        data["status"] = RunStatus(data["status"])
        return ScrapeRun(**data)

    # --- Users, roles, tokens ---

    def add_profile(self, user_id: str, name: Optional[str]):
        conn = self.get_connection()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO profiles (user_id, name) VALUES (?, ?)",
                (user_id, name)
            )
            conn.commit()
        finally:
            conn.close()

    def get_profile_user_ids(self) -> list[str]:
        """Users with a named profile."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT user_id FROM profiles WHERE name IS NOT NULL ORDER BY user_id"
            ).fetchall()
        finally:
            conn.close()
        return [row["user_id"] for row in rows]

    def grant_role(self, user_id: str, role: str):
        conn = self.get_connection()
        try:
            conn.execute(
                "INSERT OR IGNORE INTO user_roles (user_id, role) VALUES (?, ?)",
                (user_id, role)
            )
            conn.commit()
        finally:
            conn.close()

    def has_role(self, user_id: str, role: str) -> bool:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT 1 FROM user_roles WHERE user_id = ? AND role = ?",
                (user_id, role)
            ).fetchone()
        finally:
            conn.close()
        return row is not None

    def add_api_token(self, token: str, user_id: str):
        conn = self.get_connection()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO api_tokens (token_hash, user_id, created_at) VALUES (?, ?, ?)",
                (hash_token(token), user_id, utcnow().isoformat())
            )
            conn.commit()
        finally:
            conn.close()

    def get_user_id_for_token(self, token: str) -> Optional[str]:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT user_id FROM api_tokens WHERE token_hash = ?",
                (hash_token(token),)
            ).fetchone()
        finally:
            conn.close()
        return row["user_id"] if row else None

    # --- Scores (owned by the scoring collaborator) ---

    def store_score(self, record: ScoreRecord, calculated_at: Optional[str] = None):
        conn = self.get_connection()
        try:
            conn.execute(
                """INSERT OR REPLACE INTO opportunity_scores
                   (user_id, opportunity_id, ai_score, pipeline_stage, calculated_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    record.user_id, record.opportunity_id, record.score,
                    record.pipeline_stage, calculated_at or utcnow().isoformat()
                )
            )
            conn.commit()
        finally:
            conn.close()

    def get_scores_for_user(self, user_id: str, opportunity_ids: list[int]) -> list[ScoreRecord]:
        if not opportunity_ids:
            return []
        placeholders = ",".join("?" * len(opportunity_ids))
        conn = self.get_connection()
        try:
            rows = conn.execute(
                f"""SELECT user_id, opportunity_id, ai_score, pipeline_stage
                    FROM opportunity_scores
                    WHERE user_id = ? AND opportunity_id IN ({placeholders})
                    ORDER BY opportunity_id""",
                [user_id, *opportunity_ids]
            ).fetchall()
        finally:
            conn.close()
        return [
            ScoreRecord(
                user_id=row["user_id"],
                opportunity_id=row["opportunity_id"],
                score=row["ai_score"] if row["ai_score"] is not None else 0.0,
                pipeline_stage=row["pipeline_stage"] or "new",
            )
            for row in rows
        ]

    # --- Notifications ---

    def store_notification(self, signal: MatchSignal, kind: str) -> int:
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO notifications (user_id, kind, payload, created_at) VALUES (?, ?, ?, ?)",
                (signal.user_id, kind, json.dumps(signal.to_dict()), signal.created_at)
            )
            conn.commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not store notification for {signal.user_id}: {e}") from e
        finally:
            conn.close()

    def get_notifications(self, user_id: Optional[str] = None) -> list[dict]:
        query = "SELECT * FROM notifications"
        params: tuple = ()
        if user_id:
            query += " WHERE user_id = ?"
            params = (user_id,)
        conn = self.get_connection()
        try:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        finally:
            conn.close()
        results = []
        for row in rows:
            item = dict(row)
            item["payload"] = json.loads(item["payload"]) if item["payload"] else None
            results.append(item)
        return results

    def get_notified_opportunity_ids(self, user_id: str, kind: str) -> set[int]:
        """Opportunity ids already listed in this user's notifications of a kind."""
        notified = set()
        for item in self.get_notifications(user_id):
            if item["kind"] == kind and item["payload"]:
                notified.update(item["payload"].get("opportunity_ids", []))
        return notified
