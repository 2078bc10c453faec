"""
firecrawl.py - Shared access to the Firecrawl crawling service, used by
sources that have no API of their own. Needs FIRECRAWL_API_KEY.
"""

from errors import SourceFetchError
from models import SourceConfig
from scrapers.base import BaseScraper

FIRECRAWL_API = "https://api.firecrawl.dev/v1"


class FirecrawlScraper(BaseScraper):
    """Base for fetchers that go through Firecrawl's scrape and search endpoints."""

    def _headers(self, config: SourceConfig) -> dict:
        return {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        }

    def _firecrawl_scrape(self, url: str, config: SourceConfig) -> dict:
        """Scrape one page. Returns Firecrawl's `data` object (markdown, links)."""
        response = self._post(
            f"{FIRECRAWL_API}/scrape",
            headers=self._headers(config),
            json={"url": url, "formats": ["markdown", "links"], "onlyMainContent": True},
        )
        payload = self._json(response)
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            raise SourceFetchError(f"firecrawl scrape of {url} returned no data")
        return payload["data"]

    def _firecrawl_search(self, query: str, config: SourceConfig, limit: int = 10) -> list[dict]:
        """Run one web search. Returns the result rows (url, title, description)."""
        response = self._post(
            f"{FIRECRAWL_API}/search",
            headers=self._headers(config),
            json={"query": query, "limit": limit},
        )
        payload = self._json(response)
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise SourceFetchError(f"firecrawl search for '{query}' returned no data")
        return rows
