"""
notifier.py - Flags users who have new high-match opportunities after a run.

Scans opportunities first seen in the trailing window, asks the scoring
collaborator for each profiled user's scores, and records one notification
per user that has any score at or above the threshold on a listing they have
not acted on yet. A listing already sent to a user is not sent again. Never
touches opportunities or run log rows.
"""

from datetime import timedelta
from typing import Optional

from config import HIGH_MATCH_THRESHOLD, MATCH_WINDOW_HOURS
from database import Database
from errors import PersistenceError
from models import MatchSignal, utcnow
from monitoring import get_logger
from scorer import ScoringCollaborator

logger = get_logger("notifier")

NOTIFICATION_KIND = "high_match_opportunities"
UNACTED_STAGE = "new"


class MatchNotifier:
    def __init__(
        self,
        db: Database,
        scorer: ScoringCollaborator,
        threshold: float = HIGH_MATCH_THRESHOLD,
        window_hours: float = MATCH_WINDOW_HOURS,
    ):
        self.db = db
        self.scorer = scorer
        self.threshold = threshold
        self.window = timedelta(hours=window_hours)

    def notify(self, now=None) -> list[MatchSignal]:
        """Run one scan. Returns the signals that were recorded."""
        since = ((now or utcnow()) - self.window).isoformat()
        recent = self.db.get_recent_opportunities(since)
        if not recent:
            logger.info("No recent opportunities to check for high matches")
            return []

        opportunity_ids = [opp.id for opp in recent]
        users = self.db.get_profile_user_ids()
        logger.info(f"Checking {len(users)} users against {len(recent)} recent opportunities")

        signals = []
        for user_id in users:
            signal = self._check_user(user_id, opportunity_ids)
            if signal is None:
                continue
            try:
                self.db.store_notification(signal, NOTIFICATION_KIND)
            except PersistenceError as e:
                logger.error(f"Notification for {user_id} not recorded: {e}")
                continue
            logger.info(f"User {user_id} has {len(signal.opportunity_ids)} new high-match opportunities")
            signals.append(signal)

        return signals

    def _check_user(self, user_id: str, opportunity_ids: list[int]) -> Optional[MatchSignal]:
        already_sent = self.db.get_notified_opportunity_ids(user_id, NOTIFICATION_KIND)
        matches = [
            record.opportunity_id
            for record in self.scorer.scores_for(user_id, opportunity_ids)
            if record.score >= self.threshold
            and record.pipeline_stage == UNACTED_STAGE
            and record.opportunity_id not in already_sent
        ]
        if not matches:
            return None
        return MatchSignal(user_id=user_id, opportunity_ids=matches)
