"""
scorer.py - The relevance scoring collaborator, as the pipeline sees it.

How scores are computed lives elsewhere; the pipeline only reads a score per
(user, opportunity) pair along with the user's pipeline stage for it.
"""

from abc import ABC, abstractmethod

from database import Database
from models import ScoreRecord


class ScoringCollaborator(ABC):
    @abstractmethod
    def scores_for(self, user_id: str, opportunity_ids: list[int]) -> list[ScoreRecord]:
        """Scores this user has for the given opportunities. Unscored ones are omitted."""
        pass


class StoredScoreCollaborator(ScoringCollaborator):
    """Reads scores the scoring service has already written to opportunity_scores."""

    def __init__(self, db: Database):
        self.db = db

    def scores_for(self, user_id: str, opportunity_ids: list[int]) -> list[ScoreRecord]:
        return self.db.get_scores_for_user(user_id, opportunity_ids)
