"""
conferencelist.py - conferencelist.io, scraped through Firecrawl.
Only CFP-looking links are kept; the event name comes from the URL path.
"""

from urllib.parse import urlparse

from errors import SourceFetchError
from models import FetchResult, Opportunity, SourceConfig
from monitoring import get_logger
from scrapers.base import title_from_slug
from scrapers.firecrawl import FirecrawlScraper

logger = get_logger("scrapers.conferencelist")

HOME_URL = "https://conferencelist.io"

CFP_MARKERS = ["cfp", "call-for", "speaker", "submit"]
PATH_NOISE = {"cfp", "call-for-papers", "call-for-speakers", "submit", "speakers"}


class ConferenceListScraper(FirecrawlScraper):
    tag = "conferencelist"
    base_url = HOME_URL

    def _fetch(self, config: SourceConfig) -> FetchResult:
        if not config.api_key:
            return FetchResult.failure("FIRECRAWL_API_KEY not configured")

        page_url = config.urls[0] if config.urls else HOME_URL
        data = self._firecrawl_scrape(page_url, config)
        links = data.get("links")
        if not isinstance(links, list):
            raise SourceFetchError("conferencelist scrape returned no links")
        logger.info(f"conferencelist: scraped {len(links)} links")

        candidates = []
        seen = set()
        for link in links:
            if not isinstance(link, str) or link in seen:
                continue
            if not any(marker in link.lower() for marker in CFP_MARKERS):
                continue
            name = self._name_from_url(link)
            if not name:
                continue
            seen.add(link)
            candidates.append(Opportunity(event_name=name, event_url=link, source=self.tag))
            if len(candidates) >= config.max_items:
                break

        logger.info(f"conferencelist: {len(candidates)} CFP links kept")
        return FetchResult.success(candidates)

    def _name_from_url(self, link: str):
        try:
            parsed = urlparse(link)
        except ValueError:
            return None
        parts = [p for p in parsed.path.split("/") if p and p.lower() not in PATH_NOISE]
        if not parts:
            parts = [parsed.netloc.split(".")[-2]] if parsed.netloc.count(".") >= 1 else []
        name = title_from_slug(" ".join(parts))
        return name if len(name) > 3 else None
