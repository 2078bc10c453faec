"""
models.py - Data models for the opportunity ingest pipeline.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Opportunity:
    """A canonical listing, or a candidate for one before it is stored."""
    event_name: str
    source: str
    event_url: Optional[str] = None
    organizer_name: Optional[str] = None
    organizer_email: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    audience_size: Optional[int] = None
    fee_estimate_min: Optional[float] = None
    fee_estimate_max: Optional[float] = None
    event_date: Optional[str] = None
    deadline: Optional[str] = None
    raw_data: Optional[dict] = None
    scraped_at: str = field(default_factory=lambda: utcnow().isoformat())
    first_scraped_at: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None  # None until stored


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


@dataclass
class ScrapeRun:
    """Log entry for one ingestion attempt (a single source or all sources)."""
    source: str
    status: RunStatus = RunStatus.RUNNING
    started_at: str = field(default_factory=lambda: utcnow().isoformat())
    completed_at: Optional[str] = None
    opportunities_found: int = 0
    opportunities_inserted: int = 0
    opportunities_updated: int = 0
    error_message: Optional[str] = None
    triggered_by: Optional[str] = None
    id: Optional[int] = None


@dataclass
class SourceConfig:
    """Per-source settings handed to a fetcher on every call."""
    tag: str
    enabled: bool = True
    min_delay_seconds: float = 2.0
    max_items: int = 10
    max_pages: int = 1
    timeout_seconds: float = 120.0
    urls: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)
    api_key: Optional[str] = None

    @classmethod
    def from_preferences(cls, prefs: dict, api_key: Optional[str] = None) -> "SourceConfig":
        known = {k: v for k, v in prefs.items() if k in cls.__dataclass_fields__}
        config = cls(**known)
        if api_key is not None:
            config.api_key = api_key
        return config


@dataclass
class FetchResult:
    """
    Outcome of one fetch. A failure carries an error and usually no
    candidates; a partial result carries both.
    """
    candidates: list[Opportunity] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_partial(self) -> bool:
        return self.error is not None and len(self.candidates) > 0

    @classmethod
    def success(cls, candidates: list[Opportunity]) -> "FetchResult":
        return cls(candidates=list(candidates))

    @classmethod
    def failure(cls, error: str, candidates: Optional[list[Opportunity]] = None) -> "FetchResult":
        return cls(candidates=list(candidates or []), error=error)


@dataclass
class Result(Generic[T]):
    """Tagged result: ok with a value, or not ok with an error message."""
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "Result[T]":
        return cls(ok=False, error=error)


class WriteOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


@dataclass
class SourceResult:
    """Per-source outcome reported in a run summary."""
    source: str
    success: bool
    found: int = 0
    inserted: int = 0
    updated: int = 0
    error: Optional[str] = None
    run_id: Optional[int] = None
    status: Optional[RunStatus] = None  # per-source run status, when a run row exists

    def to_dict(self) -> dict[str, Any]:
        data = {
            "source": self.source,
            "success": self.success,
            "found": self.found,
            "inserted": self.inserted,
            "updated": self.updated,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class RunSummary:
    """What an aggregate or single-source run hands back to its caller."""
    status: RunStatus
    results: list[SourceResult]
    run_id: Optional[int] = None
    notified_users: list[str] = field(default_factory=list)

    @property
    def totals(self) -> dict[str, int]:
        return {
            "found": sum(r.found for r in self.results),
            "inserted": sum(r.inserted for r in self.results),
            "updated": sum(r.updated for r in self.results),
        }

    @property
    def failed_sources(self) -> list[str]:
        return [r.source for r in self.results if not r.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "status": self.status.value,
            "run_id": self.run_id,
            "results": [r.to_dict() for r in self.results],
            "totals": self.totals,
            "failed_sources": self.failed_sources,
        }


@dataclass
class Identity:
    """Resolved caller of an ingestion entry point."""
    user_id: Optional[str]
    role: str  # "admin", "service", "internal", "user"

    @property
    def may_ingest(self) -> bool:
        return self.role in ("admin", "service", "internal")

    @property
    def label(self) -> str:
        return f"{self.role}:{self.user_id}" if self.user_id else self.role


@dataclass
class ScoreRecord:
    """A user's opaque relevance score for one opportunity."""
    user_id: str
    opportunity_id: int
    score: float
    pipeline_stage: str = "new"


@dataclass
class MatchSignal:
    """A user has at least one new high-match opportunity."""
    user_id: str
    opportunity_ids: list[int] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)
