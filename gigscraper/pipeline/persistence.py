"""
Write side of the engine: venues, bands, events and bookings go through an
idempotent adapter interface. JsonPersistence is the file-backed adapter
shipped with the scraper; the web application's own store implements the same
methods.
"""

import re
from contextlib import nullcontext
from datetime import date, datetime

from gigscraper import config
from gigscraper.errors import PersistenceConflict, ValidationRejected
from gigscraper.extraction.bands import PLACEHOLDER_PERFORMER
from gigscraper.extraction.dates import add_minutes, parse_open_start
from gigscraper.genres import UNKNOWN, genre_from_name
from gigscraper.pipeline.store import CacheStore

DEFAULT_OPEN_TIME = "19:00"
DEFAULT_START_TIME = "19:30"
DEFAULT_PRICE = "3000"
PRICE_RE = re.compile(r"[¥￥]?(\d{1,2}[,.]?\d{3})円?")


class PersistenceAdapter:
    """Interface the engine writes through. Every call must be safe to repeat."""

    def find_or_create_venue(self, name, **profile):
        raise NotImplementedError

    def find_or_create_band(self, name, genre_hint=None):
        raise NotImplementedError

    def upsert_event(self, venue, event_date, open_time, start_time, price, **extra):
        """Returns (event, created). Key is (venue, date)."""
        raise NotImplementedError

    def ensure_booking(self, event, band):
        """Returns True when a new booking was created."""
        raise NotImplementedError

    def batch(self):
        """Context manager grouping one target's writes; adapters may commit once on exit."""
        return nullcontext()

    def venue_event_dates(self, name):
        return []

    def band_event_count(self, name):
        return 0


def _empty_db():
    return {"venues": {}, "bands": {}, "events": {}}


def event_key(venue_name, event_date):
    if isinstance(event_date, (date, datetime)):
        event_date = event_date.isoformat()[:10]
    return f"{venue_name}|{event_date}"


class JsonPersistence(PersistenceAdapter):
    """
    One JSON document holding venues, bands and events. Bookings are stored as
    band names on the event record. All access goes through the CacheStore lock.
    """

    def __init__(self, path=None, log_func=None):
        self.store = CacheStore(path or config.DB_PATH, default_factory=_empty_db, log_func=log_func)

    def batch(self):
        return self.store.deferred()

    def _section(self, data, name):
        return data.setdefault(name, {})

    def find_or_create_venue(self, name, **profile):
        def mutate(data):
            venues = self._section(data, "venues")
            venue = venues.get(name)
            if venue is None:
                venue = {"name": name}
                venues[name] = venue
            for key, value in profile.items():
                if value and not venue.get(key):
                    venue[key] = value
            return dict(venue)

        return self.store.update(mutate)

    def find_or_create_band(self, name, genre_hint=None):
        def mutate(data):
            bands = self._section(data, "bands")
            band = bands.get(name)
            if band is None:
                band = {"name": name, "genre": genre_hint or UNKNOWN}
                bands[name] = band
            elif genre_hint and genre_hint != UNKNOWN and band.get("genre", UNKNOWN) == UNKNOWN:
                band["genre"] = genre_hint
            return dict(band)

        return self.store.update(mutate)

    def upsert_event(self, venue, event_date, open_time, start_time, price, **extra):
        venue_name = venue["name"] if isinstance(venue, dict) else venue
        key = event_key(venue_name, event_date)

        def mutate(data):
            events = self._section(data, "events")
            existing = events.get(key)
            if existing is not None:
                return dict(existing), False
            record = {
                "key": key,
                "venue": venue_name,
                "date": key.split("|", 1)[1],
                "open_time": open_time,
                "start_time": start_time,
                "price": price,
                "bands": [],
                "created_at": datetime.utcnow().isoformat() + "Z",
            }
            record.update({k: v for k, v in extra.items() if v is not None})
            events[key] = record
            return dict(record), True

        return self.store.update(mutate)

    def ensure_booking(self, event, band):
        key = event["key"] if isinstance(event, dict) else event
        band_name = band["name"] if isinstance(band, dict) else band

        def mutate(data):
            record = self._section(data, "events").get(key)
            if record is None:
                raise PersistenceConflict(f"Booking for unknown event {key}")
            bands = record.setdefault("bands", [])
            if band_name in bands:
                return False
            bands.append(band_name)
            return True

        return self.store.update(mutate)

    def venue_event_dates(self, name):
        dates = []
        for record in self.store.snapshot().get("events", {}).values():
            if record.get("venue") != name:
                continue
            try:
                dates.append(date.fromisoformat(record["date"]))
            except (KeyError, ValueError):
                continue
        return dates

    def band_event_count(self, name):
        return sum(1 for record in self.store.snapshot().get("events", {}).values() if name in record.get("bands", []))

    def events(self):
        return list(self.store.snapshot().get("events", {}).values())


def price_for_db(event):
    for source in (event.price, event.title, event.artists_text):
        if not source:
            continue
        match = PRICE_RE.search(str(source))
        if match:
            return re.sub(r"[,.]", "", match.group(1))
    return DEFAULT_PRICE


def times_for_db(event):
    """(open, start) with the stored defaults: start is open + 30 minutes when only one time is known."""
    open_time, start_time = event.open_time, event.start_time
    if not open_time and not start_time:
        open_time, start_time = parse_open_start(event.raw_text or "")
    if open_time and start_time:
        return open_time, start_time
    known = open_time or start_time
    if known:
        return known, add_minutes(known, 30)
    return DEFAULT_OPEN_TIME, DEFAULT_START_TIME


def save_event(adapter, event, assessment, target=None, genre_lookup=None):
    """
    Persist one assessed event. Returns True when a new event record was
    created, False when it already existed. Raises ValidationRejected for
    events that must never be stored.
    """
    if not assessment.persistable:
        raise ValidationRejected(assessment)

    genre_lookup = genre_lookup or genre_from_name
    profile = {}
    if target is not None:
        profile = {
            "address": target.address,
            "neighborhood": target.neighborhood,
            "website": target.homepage,
        }
    venue = adapter.find_or_create_venue(event.venue, **profile)

    open_time, start_time = times_for_db(event)
    record, created = adapter.upsert_event(
        venue,
        event.date,
        open_time,
        start_time,
        price_for_db(event),
        title=event.title,
        source_url=event.source_url,
        source=event.source,
        confidence=assessment.overall,
        status=assessment.status.value,
        disclaimer=assessment.needs_disclaimer,
    )
    if not created:
        return False

    for name in event.performers:
        if not name or name == PLACEHOLDER_PERFORMER:
            continue
        band = adapter.find_or_create_band(name, genre_lookup(name))
        adapter.ensure_booking(record, band)
    return True


def save_events(adapter, assessed, target=None, genre_lookup=None, log_func=None, verbose=False):
    """
    assessed: list of (event, assessment). Returns (saved, skipped, rejected).
    Rejected events never reach the adapter.
    """
    log = log_func or print
    saved = skipped = rejected = 0
    with adapter.batch():
        for event, assessment in assessed:
            try:
                created = save_event(adapter, event, assessment, target, genre_lookup)
            except ValidationRejected:
                rejected += 1
                continue
            except PersistenceConflict as e:
                log(f"    Persistence conflict for {event.title}: {e}")
                skipped += 1
                continue
            if created:
                saved += 1
                if verbose:
                    log(f"    Saved {event.date} - {event.title}")
            else:
                skipped += 1

    if verbose:
        log(f"    Database: {saved} saved, {skipped} skipped, {rejected} rejected")
    return saved, skipped, rejected
