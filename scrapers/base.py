"""
base.py - Base source fetcher: shared HTTP client, polite rate limiting,
a per-fetch time budget, and normalization helpers.
"""

import random
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from config import MIN_REQUEST_DELAY
from errors import SourceFetchError
from models import FetchResult, SourceConfig
from monitoring import get_logger

logger = get_logger("scrapers.base")

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36 Edg/120.0.0.0",
]

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass
class FetchState:
    """Everything one `fetch` call tracks: its rate-limit clock, budget and client."""
    delay: float
    budget: float
    deadline: float
    last_request: Optional[float] = None
    client: Optional[httpx.Client] = None


class BaseScraper(ABC):
    """
    One external source. Subclasses implement `_fetch`; callers use `fetch`,
    which never raises for expected failures (bad status, network error,
    unparseable body, exhausted time budget).

    One instance may serve overlapping fetches from different threads, so
    per-call state is kept per thread in a FetchState, never on the instance.
    """

    tag: str = ""
    base_url: str = ""

    def __init__(self, client: Optional[httpx.Client] = None, sleep: Callable[[float], None] = time.sleep):
        self._shared_client = client
        self._sleep = sleep
        self._local = threading.local()

    @property
    def name(self) -> str:
        return self.tag

    def fetch(self, config: SourceConfig) -> FetchResult:
        """Retrieve and normalize this source's current listings."""
        state = FetchState(
            delay=max(config.min_delay_seconds, MIN_REQUEST_DELAY),
            budget=config.timeout_seconds,
            deadline=time.monotonic() + config.timeout_seconds,
        )
        outer = getattr(self._local, "state", None)
        self._local.state = state
        try:
            result = self._fetch(config)
            logger.info(f"[{self.tag}] fetched {len(result.candidates)} candidates"
                        + (f" (error: {result.error})" if result.error else ""))
            return result
        except SourceFetchError as e:
            logger.warning(f"[{self.tag}] fetch failed: {e}")
            return FetchResult.failure(str(e))
        finally:
            if state.client is not None:
                state.client.close()
            self._local.state = outer

    @abstractmethod
    def _fetch(self, config: SourceConfig) -> FetchResult:
        pass

    # --- HTTP ---

    @property
    def _state(self) -> FetchState:
        state = getattr(self._local, "state", None)
        if state is None:
            raise RuntimeError(f"{type(self).__name__} request made outside fetch()")
        return state

    @property
    def client(self) -> httpx.Client:
        if self._shared_client is not None:
            return self._shared_client
        state = self._state
        if state.client is None:
            state.client = httpx.Client(timeout=30.0, follow_redirects=True)
        return state.client

    def _rate_limit(self):
        """Keep at least the configured delay (plus jitter) between requests."""
        state = self._state
        if state.last_request is None:
            return
        wait = state.delay - (time.monotonic() - state.last_request)
        if wait > 0:
            self._sleep(wait + random.uniform(0, 0.5))

    def _check_budget(self):
        state = self._state
        if time.monotonic() >= state.deadline:
            raise SourceFetchError(f"{self.tag} exceeded its {state.budget:.0f}s time budget")

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one rate-limited request. Raises SourceFetchError on failure."""
        state = self._state
        self._check_budget()
        self._rate_limit()
        self._check_budget()

        headers = {"User-Agent": random.choice(USER_AGENTS)}
        headers.update(kwargs.pop("headers", {}) or {})
        timeout = max(1.0, min(30.0, state.deadline - time.monotonic()))

        try:
            response = self.client.request(method, url, headers=headers, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise SourceFetchError(f"{self.tag} timed out requesting {url}") from e
        except httpx.HTTPError as e:
            raise SourceFetchError(f"{self.tag} request to {url} failed: {e}") from e
        finally:
            state.last_request = time.monotonic()

        if response.status_code >= 400:
            raise SourceFetchError(f"{self.tag} returned {response.status_code} for {url}")
        return response

    def _get(self, url: str, **kwargs) -> httpx.Response:
        return self._request("GET", url, **kwargs)

    def _post(self, url: str, **kwargs) -> httpx.Response:
        return self._request("POST", url, **kwargs)

    def _json(self, response: httpx.Response):
        try:
            return response.json()
        except ValueError as e:
            raise SourceFetchError(f"{self.tag} returned a body that is not JSON") from e


# --- Normalization helpers ---

def skip_malformed(rows: list, tag: str) -> tuple[list[dict], int]:
    """Split API rows into the usable objects and a count of everything else."""
    usable = [row for row in rows if isinstance(row, dict)]
    skipped = len(rows) - len(usable)
    if skipped:
        logger.warning(f"[{tag}] skipped {skipped} rows that are not objects")
    return usable, skipped


DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
]


def parse_datetime(value) -> Optional[str]:
    """
    Parse a date from a source into an ISO-8601 UTC string.
    Returns None when the value is empty or in no known format.
    """
    if not value:
        return None
    text = str(value).strip()

    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def clean_text(value, limit: Optional[int] = None) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    if not text:
        return None
    return text[:limit] if limit else text


def title_from_slug(slug: str) -> str:
    """'devopsdays-chicago-2025' -> 'Devopsdays Chicago 2025'"""
    words = re.sub(r"[-_]+", " ", slug).split()
    return " ".join(w[:1].upper() + w[1:] for w in words)
