"""
eventbrite.py - Eventbrite event search via the v3 API.
One paginated search per keyword; events are deduplicated by id before they
are normalized. Needs EVENTBRITE_API_KEY.
"""

from typing import Optional

from errors import SourceFetchError
from models import FetchResult, Opportunity, SourceConfig
from monitoring import get_logger
from scrapers.base import BaseScraper, clean_text, parse_datetime, skip_malformed

logger = get_logger("scrapers.eventbrite")

SEARCH_URL = "https://www.eventbriteapi.com/v3/events/search/"

DEFAULT_KEYWORDS = ["call for speakers", "CFP", "speaker opportunity", "speaking opportunity"]

# Speaker fee guess: 10% of the ticket price range
FEE_RATIO = 0.1


class EventbriteScraper(BaseScraper):
    tag = "eventbrite"
    base_url = "https://www.eventbriteapi.com"

    def _fetch(self, config: SourceConfig) -> FetchResult:
        if not config.api_key:
            return FetchResult.failure("EVENTBRITE_API_KEY not configured")

        keywords = config.keywords or DEFAULT_KEYWORDS
        events: dict[str, dict] = {}
        errors = []
        malformed = 0

        for keyword in keywords:
            try:
                found, skipped = self._search(keyword, config)
                malformed += skipped
                for event in found:
                    events.setdefault(str(event.get("id")), event)
            except SourceFetchError as e:
                logger.warning(f"Eventbrite search failed for '{keyword}': {e}")
                errors.append(f"{keyword}: {e}")
                if "time budget" in str(e):
                    break

        if errors and len(errors) == len(keywords) and not events:
            raise SourceFetchError(f"all eventbrite searches failed: {errors[0]}")

        candidates = [c for c in (self._parse_event(e) for e in events.values()) if c is not None]
        logger.info(f"Eventbrite: {len(events)} unique events, {len(candidates)} usable")

        if malformed:
            errors.append(f"{malformed} eventbrite rows were not event objects")
        if errors:
            return FetchResult.failure(f"{len(errors)} eventbrite problem(s): {errors[0]}", candidates)
        return FetchResult.success(candidates)

    def _search(self, keyword: str, config: SourceConfig) -> tuple[list[dict], int]:
        """Page through one keyword's results, up to max_pages. Returns (events, rows skipped)."""
        results = []
        skipped = 0
        for page in range(1, max(1, config.max_pages) + 1):
            response = self._get(
                SEARCH_URL,
                params={"q": keyword, "sort_by": "date", "expand": "venue,organizer", "page": page},
                headers={"Authorization": f"Bearer {config.api_key}"},
            )
            data = self._json(response)
            if not isinstance(data, dict):
                raise SourceFetchError("eventbrite response is not an object")
            rows = data.get("events") or []
            if not isinstance(rows, list):
                raise SourceFetchError("eventbrite events field is not a list")
            usable, bad = skip_malformed(rows, self.tag)
            results.extend(usable)
            skipped += bad

            pagination = data.get("pagination")
            if not isinstance(pagination, dict) or not pagination.get("has_more_items"):
                break
        return results, skipped

    def _parse_event(self, event: dict) -> Optional[Opportunity]:
        name = event.get("name")
        if isinstance(name, dict):
            name = name.get("text")
        name = clean_text(name, 255)
        if not name:
            return None

        description = event.get("description")
        if isinstance(description, dict):
            description = description.get("text")

        start = event.get("start")
        event_date = parse_datetime(start.get("utc") if isinstance(start, dict) else start)

        organizer = event.get("organizer") or {}
        fee_min, fee_max = self._estimate_fee(event)

        return Opportunity(
            event_name=name,
            event_url=clean_text(event.get("url")),
            description=clean_text(description, 2000),
            location=self._format_location(event.get("venue")),
            organizer_name=clean_text(organizer.get("name")) if isinstance(organizer, dict) else None,
            event_date=event_date,
            deadline=None,  # Eventbrite exposes no CFP deadline
            audience_size=event.get("capacity") if isinstance(event.get("capacity"), int) else None,
            fee_estimate_min=fee_min,
            fee_estimate_max=fee_max,
            source=self.tag,
            raw_data={"id": event.get("id"), "url": event.get("url")},
        )

    def _format_location(self, venue) -> Optional[str]:
        if not isinstance(venue, dict):
            return None
        address = venue.get("address")
        if not isinstance(address, dict):
            return None
        parts = [address.get("city"), address.get("region"), address.get("country")]
        return ", ".join(str(p) for p in parts if p) or None

    def _estimate_fee(self, event: dict) -> tuple[Optional[float], Optional[float]]:
        availability = event.get("ticket_availability")
        if not isinstance(availability, dict):
            return None, None
        low = _major_value(availability.get("minimum_ticket_price"))
        high = _major_value(availability.get("maximum_ticket_price"))
        try:
            low, high = float(low), float(high)
        except (TypeError, ValueError):
            return None, None
        if low > 0 and high > 0:
            return round(low * FEE_RATIO), round(high * FEE_RATIO)
        return None, None


def _major_value(price):
    return price.get("major_value") if isinstance(price, dict) else None
