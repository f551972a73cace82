from datetime import date

import pytest

from gigscraper.errors import PersistenceConflict, ValidationRejected
from gigscraper.models import ConfidenceAssessment, ExtractedEvent, ScrapeTarget, VerificationStatus
from gigscraper.pipeline.persistence import (
    JsonPersistence,
    event_key,
    price_for_db,
    save_event,
    save_events,
    times_for_db,
)

TARGET = ScrapeTarget(
    name="Shelter",
    urls=("https://shelter.example/schedule/",),
    address="2-6-10 Kitazawa, Setagaya-ku",
    neighborhood="Shimokitazawa",
)
TRUSTED = ConfidenceAssessment(scores={}, overall=0.9, status=VerificationStatus.TRUSTED)
CAUTION = ConfidenceAssessment(scores={}, overall=0.75, status=VerificationStatus.CAUTION)
REJECTED = ConfidenceAssessment(scores={}, overall=0.3, status=VerificationStatus.REJECTED)


def make_event(**overrides):
    fields = dict(
        title="Summer Night Session",
        date=date(2025, 6, 14),
        venue="Shelter",
        source_url="https://shelter.example/schedule/",
        extraction_strategy="selector",
        open_time="18:00",
        start_time="18:30",
        performers=("Cornelius", "Guitar Wolf"),
        price="ADV ¥3,000",
    )
    fields.update(overrides)
    return ExtractedEvent(**fields)


@pytest.fixture
def db(tmp_path):
    return JsonPersistence(tmp_path / "gigs-db.json", log_func=lambda *_: None)


def test_venue_and_band_are_find_or_create(db):
    first = db.find_or_create_venue("Shelter", address=None, neighborhood="Shimokitazawa")
    second = db.find_or_create_venue("Shelter", address="2-6-10 Kitazawa", neighborhood="Other")
    assert first["neighborhood"] == second["neighborhood"] == "Shimokitazawa"
    assert second["address"] == "2-6-10 Kitazawa"

    assert db.find_or_create_band("Mono")["genre"] == "Unknown"
    assert db.find_or_create_band("Mono", "Rock")["genre"] == "Rock"
    assert db.find_or_create_band("Mono", "Jazz")["genre"] == "Rock"


def test_upsert_event_is_keyed_on_venue_and_date(db):
    record, created = db.upsert_event("Shelter", date(2025, 6, 14), "18:00", "18:30", "3000", title="First")
    assert created
    assert record["key"] == event_key("Shelter", date(2025, 6, 14)) == "Shelter|2025-06-14"

    again, created = db.upsert_event({"name": "Shelter"}, date(2025, 6, 14), "19:00", "19:30", "2000", title="Second")
    assert not created
    assert again["title"] == "First"
    assert len(db.events()) == 1


def test_ensure_booking_once(db):
    record, _ = db.upsert_event("Shelter", date(2025, 6, 14), "18:00", "18:30", "3000")
    assert db.ensure_booking(record, {"name": "Mono"})
    assert not db.ensure_booking(record, "Mono")
    assert db.band_event_count("Mono") == 1
    assert db.venue_event_dates("Shelter") == [date(2025, 6, 14)]

    with pytest.raises(PersistenceConflict):
        db.ensure_booking("Shelter|2030-01-01", "Mono")


def test_price_for_db():
    assert price_for_db(make_event()) == "3000"
    assert price_for_db(make_event(price=None, title="Night ¥2,500")) == "2500"
    assert price_for_db(make_event(price=None)) == "3000"
    assert price_for_db(make_event(price="2500円")) == "2500"


def test_times_for_db_defaults():
    assert times_for_db(make_event()) == ("18:00", "18:30")
    assert times_for_db(make_event(open_time=None, start_time="19:00")) == ("19:00", "19:30")
    assert times_for_db(make_event(open_time="17:45", start_time=None)) == ("17:45", "18:15")
    raw = make_event(open_time=None, start_time=None, raw_text="OPEN 18:00 / START 18:30")
    assert times_for_db(raw) == ("18:00", "18:30")
    assert times_for_db(make_event(open_time=None, start_time=None)) == ("19:00", "19:30")


def test_save_event_creates_venue_event_and_bookings(db):
    assert save_event(db, make_event(), TRUSTED, TARGET, genre_lookup=lambda name: "Rock")
    event = db.events()[0]
    assert event["bands"] == ["Cornelius", "Guitar Wolf"]
    assert event["status"] == "trusted"
    assert event["disclaimer"] is False
    assert db.store.snapshot()["venues"]["Shelter"]["website"] == "https://shelter.example/schedule/"


def test_save_event_skips_placeholder_performer(db):
    save_event(db, make_event(performers=("Live Performance",)), CAUTION, TARGET)
    event = db.events()[0]
    assert event["bands"] == []
    assert event["disclaimer"] is True
    assert db.store.snapshot()["bands"] == {}


def test_rejected_event_never_reaches_adapter(db):
    with pytest.raises(ValidationRejected):
        save_event(db, make_event(), REJECTED, TARGET)
    assert db.events() == []


def test_save_events_counts(db):
    messages = []
    assessed = [
        (make_event(), TRUSTED),
        (make_event(title="Same Night Again"), TRUSTED),
        (make_event(date=date(2025, 6, 15)), REJECTED),
    ]
    assert save_events(db, assessed, TARGET, log_func=messages.append, verbose=True) == (1, 1, 1)
    assert messages[-1] == "    Database: 1 saved, 1 skipped, 1 rejected"


def test_save_events_writes_the_file_once(db, monkeypatch):
    flushes = []
    real_flush = db.store.flush
    monkeypatch.setattr(db.store, "flush", lambda: flushes.append(1) or real_flush())
    assessed = [(make_event(date=date(2025, 6, day)), TRUSTED) for day in range(14, 20)]

    assert save_events(db, assessed, TARGET, log_func=lambda *_: None) == (6, 0, 0)
    assert len(flushes) == 1
    reloaded = JsonPersistence(db.store.path, log_func=lambda *_: None)
    assert len(reloaded.events()) == 6
