"""
meetup.py - Meetup speaking opportunities, found through Firecrawl web search
restricted to meetup.com.
"""

from typing import Optional

from errors import SourceFetchError
from models import FetchResult, Opportunity, SourceConfig
from monitoring import get_logger
from scrapers.base import clean_text, skip_malformed
from scrapers.firecrawl import FirecrawlScraper

logger = get_logger("scrapers.meetup")

DEFAULT_QUERIES = [
    "call for speakers meetup",
    "seeking keynote speaker conference",
    "submit speaker proposal event",
]

# Meetup pages that are never events
EXCLUDED_PATHS = ["/members/", "/about/", "/photos/", "/discussions/"]


class MeetupScraper(FirecrawlScraper):
    tag = "meetup"
    base_url = "https://www.meetup.com"

    def _fetch(self, config: SourceConfig) -> FetchResult:
        if not config.api_key:
            return FetchResult.failure("FIRECRAWL_API_KEY not configured")

        queries = config.queries or DEFAULT_QUERIES
        candidates = []
        seen_urls = set()
        errors = []
        malformed = 0

        for query in queries:
            try:
                rows = self._firecrawl_search(f"site:meetup.com {query}", config, limit=config.max_items)
            except SourceFetchError as e:
                logger.warning(f"Meetup search failed for '{query}': {e}")
                errors.append(str(e))
                if "time budget" in str(e):
                    break
                continue

            rows, skipped = skip_malformed(rows, self.tag)
            malformed += skipped
            for row in rows:
                candidate = self._parse_result(row)
                if candidate is None or candidate.event_url in seen_urls:
                    continue
                seen_urls.add(candidate.event_url)
                candidates.append(candidate)

        logger.info(f"Meetup: {len(candidates)} unique opportunities")
        if errors and len(errors) == len(queries):
            raise SourceFetchError(f"all meetup searches failed: {errors[0]}")
        if malformed:
            errors.append(f"{malformed} meetup search rows were not objects")
        if errors:
            return FetchResult.failure(f"{len(errors)} meetup problem(s): {errors[0]}", candidates)
        return FetchResult.success(candidates)

    def _parse_result(self, row: dict) -> Optional[Opportunity]:
        url = clean_text(row.get("url"))
        if not url or "meetup.com/" not in url:
            return None
        if any(path in url for path in EXCLUDED_PATHS):
            return None
        return Opportunity(
            event_name=clean_text(row.get("title"), 255) or "Meetup Event",
            event_url=url,
            description=clean_text(row.get("description"), 500),
            source=self.tag,
            raw_data=row,
        )
