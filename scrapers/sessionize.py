"""
sessionize.py - Fetcher for Sessionize's public CFP list API.
A single JSON request; each row maps directly onto an opportunity.
"""

from typing import Optional

from errors import SourceFetchError
from models import FetchResult, Opportunity, SourceConfig
from monitoring import get_logger
from scrapers.base import BaseScraper, clean_text, parse_datetime

logger = get_logger("scrapers.sessionize")

CFP_LIST_URL = "https://sessionize.com/api/v2/cfp/list"


class SessionizeScraper(BaseScraper):
    tag = "sessionize"
    base_url = "https://sessionize.com"

    def _fetch(self, config: SourceConfig) -> FetchResult:
        url = config.urls[0] if config.urls else CFP_LIST_URL
        data = self._json(self._get(url, headers={"Accept": "application/json"}))

        rows = data.get("items", data.get("data")) if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise SourceFetchError("sessionize response is not a list of CFPs")

        candidates = []
        skipped = 0
        for row in rows:
            candidate = self._parse_row(row) if isinstance(row, dict) else None
            if candidate is None:
                skipped += 1
                continue
            candidates.append(candidate)

        logger.info(f"Sessionize: {len(candidates)} CFPs parsed, {skipped} skipped")
        if skipped and not candidates:
            raise SourceFetchError(f"sessionize returned {skipped} rows and none could be parsed")
        if skipped:
            return FetchResult.failure(f"{skipped} sessionize rows could not be parsed", candidates)
        return FetchResult.success(candidates)

    def _parse_row(self, row: dict) -> Optional[Opportunity]:
        url = clean_text(row.get("url"))
        name = clean_text(row.get("name"), 255)
        if not url and not name:
            return None
        return Opportunity(
            event_name=name or "Unnamed Event",
            event_url=url,
            deadline=parse_datetime(row.get("deadline") or row.get("cfpEndDate")),
            location=clean_text(row.get("location"), 255),
            description=clean_text(row.get("description"), 2000),
            organizer_name=clean_text(row.get("organizerName")),
            organizer_email=clean_text(row.get("organizerEmail")),
            event_date=parse_datetime(row.get("eventDate") or row.get("eventStartDate")),
            source=self.tag,
            raw_data=row,
        )
