import time

import pytest

from database import Database
from models import FetchResult, Opportunity, SourceConfig
from scrapers.base import BaseScraper
from scrapers.registry import SourceRegistry


class StubFetcher(BaseScraper):
    """Fetcher that returns a canned result, or raises, without any HTTP."""

    def __init__(self, tag, result=None, error=None, delay=0.0):
        super().__init__(sleep=lambda seconds: None)
        self.tag = tag
        self.result = result if result is not None else FetchResult.success([])
        self.error = error
        self.delay = delay
        self.calls = 0

    def _fetch(self, config):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_candidate(url, name="Conf", source="stub", **fields):
    return Opportunity(event_name=name, event_url=url, source=source, **fields)


def make_registry(*fetchers, disabled=()):
    registry = SourceRegistry()
    for fetcher in fetchers:
        registry.register(fetcher, SourceConfig(tag=fetcher.tag, enabled=fetcher.tag not in disabled))
    return registry


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "opportunities.db")
    database.init_db()
    return database
