"""
registry.py - Maps source tags to fetcher instances and their settings.
The orchestrator only ever iterates this registry.
"""

from typing import Iterator, Optional

from config import (
    EVENTBRITE_API_KEY, FIRECRAWL_API_KEY, SOURCES, AGGREGATE_SOURCE_TAG, get_source_settings
)
from errors import UnknownSourceError
from models import SourceConfig
from scrapers.base import BaseScraper
from scrapers.conferencelist import ConferenceListScraper
from scrapers.eventbrite import EventbriteScraper
from scrapers.meetup import MeetupScraper
from scrapers.papercall import PaperCallScraper
from scrapers.sessionize import SessionizeScraper


class SourceRegistry:
    """Ordered tag -> (fetcher, config) map. Order is registration order."""

    def __init__(self):
        self._fetchers: dict[str, BaseScraper] = {}
        self._configs: dict[str, SourceConfig] = {}

    def register(self, fetcher: BaseScraper, config: Optional[SourceConfig] = None):
        tag = fetcher.tag
        if not tag:
            raise ValueError(f"{type(fetcher).__name__} has no source tag")
        if tag == AGGREGATE_SOURCE_TAG:
            raise ValueError(f"'{AGGREGATE_SOURCE_TAG}' is reserved for aggregate runs")
        if tag in self._fetchers:
            raise ValueError(f"Source '{tag}' is already registered")
        self._fetchers[tag] = fetcher
        self._configs[tag] = config or SourceConfig(tag=tag)

    def get(self, tag: str) -> BaseScraper:
        try:
            return self._fetchers[tag]
        except KeyError:
            raise UnknownSourceError(f"Unknown source: {tag}. Available: {', '.join(self.tags())}") from None

    def config_for(self, tag: str) -> SourceConfig:
        self.get(tag)
        return self._configs[tag]

    def tags(self, enabled_only: bool = False) -> list[str]:
        return [t for t in self._fetchers if not enabled_only or self._configs[t].enabled]

    def enabled(self) -> Iterator[tuple[BaseScraper, SourceConfig]]:
        for tag in self.tags(enabled_only=True):
            yield self._fetchers[tag], self._configs[tag]

    def __contains__(self, tag: str) -> bool:
        return tag in self._fetchers

    def __len__(self) -> int:
        return len(self._fetchers)


# Implementations known to this build, keyed by tag
FETCHER_CLASSES = {
    cls.tag: cls
    for cls in (PaperCallScraper, SessionizeScraper, EventbriteScraper, MeetupScraper, ConferenceListScraper)
}

API_KEYS = {
    "eventbrite": EVENTBRITE_API_KEY,
    "meetup": FIRECRAWL_API_KEY,
    "conferencelist": FIRECRAWL_API_KEY,
}


def build_default_registry() -> SourceRegistry:
    """Register every source listed in preferences.yaml, in file order."""
    registry = SourceRegistry()
    for prefs in SOURCES:
        tag = prefs["tag"]
        cls = FETCHER_CLASSES.get(tag)
        if cls is None:
            raise ValueError(f"preferences.yaml names source '{tag}' but no fetcher implements it")
        config = SourceConfig.from_preferences(get_source_settings(tag), api_key=API_KEYS.get(tag) or None)
        registry.register(cls(), config)
    return registry
