"""
papercall.py - Fetcher for PaperCall.io open CFPs.
Reads the public events listing, then visits each event page one at a time
(rate-limited) to pull the name, description, deadline and location.
"""

import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from errors import SourceFetchError
from models import FetchResult, Opportunity, SourceConfig
from monitoring import get_logger
from scrapers.base import BaseScraper, BROWSER_HEADERS, clean_text, parse_datetime, title_from_slug

logger = get_logger("scrapers.papercall")

LISTING_URL = "https://www.papercall.io/events"

# Event detail links look like /events/1234 or /cfps/1234-some-conf
EVENT_LINK_RE = re.compile(r"^(?:https?://(?:www\.)?papercall\.io)?/(?:events|cfps)/[^/?#]+/?$")
DATE_TEXT_RE = re.compile(
    r"((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.? \d{1,2},? \d{4}"
    r"|\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}/\d{1,2}/\d{4})",
    re.IGNORECASE,
)


class PaperCallScraper(BaseScraper):
    tag = "papercall"
    base_url = "https://www.papercall.io"

    def _fetch(self, config: SourceConfig) -> FetchResult:
        listing_url = config.urls[0] if config.urls else LISTING_URL
        logger.info(f"Fetching {listing_url}")
        html = self._get(listing_url, headers=BROWSER_HEADERS).text

        links = self._parse_listing(html, listing_url)[: config.max_items]
        if not links:
            raise SourceFetchError("papercall listing page had no event links")
        logger.info(f"PaperCall: {len(links)} event links to visit")

        candidates = []
        errors = []
        for url in links:
            try:
                detail_html = self._get(url, headers=BROWSER_HEADERS).text
                candidate = self._parse_event(detail_html, url)
            except SourceFetchError as e:
                if "time budget" in str(e):
                    errors.append(str(e))
                    break
                logger.warning(f"PaperCall detail failed for {url}: {e}")
                errors.append(str(e))
                candidate = None
            candidates.append(candidate or self._candidate_from_link(url))

        if errors:
            return FetchResult.failure(f"{len(errors)} event page(s) failed: {errors[0]}", candidates)
        return FetchResult.success(candidates)

    def _parse_listing(self, html: str, page_url: str) -> list[str]:
        soup = BeautifulSoup(html, "html.parser")
        urls = []
        seen = set()
        for link in soup.find_all("a", href=EVENT_LINK_RE):
            url = urljoin(self.base_url, link["href"]).rstrip("/")
            if url in seen or url == page_url.rstrip("/"):
                continue
            seen.add(url)
            urls.append(url)
        return urls

    def _parse_event(self, html: str, url: str) -> Optional[Opportunity]:
        soup = BeautifulSoup(html, "html.parser")

        heading = soup.find("h1")
        name = clean_text(heading.get_text(" ")) if heading else None
        if not name and soup.title:
            name = clean_text(soup.title.get_text().split("|")[0])
        if not name:
            return None

        meta = soup.find("meta", attrs={"name": "description"})
        description = clean_text(meta.get("content")) if meta else None
        if not description:
            block = soup.find(class_=re.compile("description"))
            description = clean_text(block.get_text(" ")) if block else None

        return Opportunity(
            event_name=name[:255],
            event_url=url,
            description=(description or "")[:2000] or None,
            location=self._extract_location(soup),
            deadline=self._extract_date(soup, ("deadline", "closes", "close")),
            event_date=self._extract_date(soup, ("event date", "event-date", "event_date")),
            source=self.tag,
            raw_data={"url": url, "title": name},
        )

    def _extract_location(self, soup: BeautifulSoup) -> Optional[str]:
        node = soup.find(class_=re.compile("location"))
        if node:
            return clean_text(node.get_text(" "), 255)
        return None

    def _extract_date(self, soup: BeautifulSoup, markers: tuple) -> Optional[str]:
        """Find the first date that follows one of the marker words."""
        for node in soup.find_all(class_=re.compile("|".join(re.escape(m) for m in markers))):
            match = DATE_TEXT_RE.search(node.get_text(" "))
            if match:
                return parse_datetime(match.group(1).replace(".", ""))

        text = soup.get_text(" ")
        for marker in markers:
            idx = text.lower().find(marker)
            if idx == -1:
                continue
            match = DATE_TEXT_RE.search(text[idx: idx + 120])
            if match:
                return parse_datetime(match.group(1).replace(".", ""))
        return None

    def _candidate_from_link(self, url: str) -> Opportunity:
        """Placeholder candidate when the event page could not be read."""
        slug = urlparse(url).path.rstrip("/").split("/")[-1]
        return Opportunity(
            event_name=title_from_slug(slug) or url,
            event_url=url,
            description="CFP opportunity from PaperCall.io. Visit the event page for full details.",
            source=self.tag,
        )
