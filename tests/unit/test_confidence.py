from datetime import date

import pytest

from gigscraper.confidence import (
    ConfidenceEngine,
    classify_status,
    risk_severity,
    website_status,
)
from gigscraper.models import ExtractedEvent, ScrapeTarget, VerificationStatus

REF = date(2025, 6, 1)

VENUE = ScrapeTarget(
    name="Shibuya Club Quattro",
    urls=("https://www.club-quattro.com/shibuya/schedule/",),
    address="32-13 Udagawacho, Shibuya-ku, Tokyo",
    neighborhood="Shibuya",
    website="https://www.club-quattro.com/shibuya/",
)


def make_event(**overrides):
    fields = dict(
        title="Summer Night Session",
        date=date(2025, 6, 14),
        venue=VENUE.name,
        source_url=VENUE.url,
        extraction_strategy="lightweight_first",
        open_time="18:00",
        start_time="18:30",
        performers=("Cornelius", "Guitar Wolf"),
        price="ADV ¥3,000",
    )
    fields.update(overrides)
    return ExtractedEvent(**fields)


class FakeHistory:
    def __init__(self, venue_dates=None, band_counts=None):
        self.venue_dates = venue_dates or []
        self.band_counts = band_counts or {}

    def venue_event_dates(self, name):
        return self.venue_dates

    def band_event_count(self, name):
        return self.band_counts.get(name, 0)


def test_complete_listing_without_history_is_trusted():
    assessment = ConfidenceEngine().assess(make_event(), VENUE, reference=REF)
    assert assessment.overall == pytest.approx(0.895, abs=1e-3)
    assert assessment.status == VerificationStatus.TRUSTED
    assert assessment.meets_threshold
    assert assessment.persistable
    assert not assessment.needs_disclaimer


def test_risk_factors_sorted_by_gap():
    assessment = ConfidenceEngine().assess(make_event(), VENUE, reference=REF)
    factors = [risk.factor for risk in assessment.risk_factors]
    assert factors[0] == "venue_active"
    assert "date_accurate" in factors
    gaps = [risk.gap for risk in assessment.risk_factors]
    assert gaps == sorted(gaps, reverse=True)
    assert assessment.risk_factors[0].severity == "MEDIUM"


def test_history_and_genre_raise_scores():
    history = FakeHistory(venue_dates=[date(2025, 5, 24)], band_counts={"Cornelius": 6, "Guitar Wolf": 6})
    engine = ConfidenceEngine(history=history, genre_lookup=lambda name: "Rock")
    assessment = engine.assess(make_event(), VENUE, reference=REF)
    assert assessment.scores["venue_active"] == 1.0
    assert assessment.scores["band_real"] == 1.0
    assert assessment.status == VerificationStatus.VERIFIED


def test_placeholder_performer_counts_as_no_performer():
    engine = ConfidenceEngine()
    assessment = engine.assess(make_event(performers=("Live Performance",)), VENUE, reference=REF)
    assert assessment.scores["band_real"] == 0.0
    assert assessment.scores["gig_exists"] == pytest.approx(0.8)


def test_past_event_scores_low_on_date():
    engine = ConfidenceEngine()
    event = make_event(date=date(2025, 5, 1))
    assert engine.date_accurate_score(event, REF) == pytest.approx(0.2)
    assert engine.gig_exists_score(event, ["Cornelius"], REF) < 0.85


def test_price_scores():
    engine = ConfidenceEngine()
    assert engine.price_accurate_score(make_event(price=None)) == pytest.approx(0.7)
    assert engine.price_accurate_score(make_event(price="¥3,000")) == pytest.approx(1.0)
    assert engine.price_accurate_score(make_event(price="TBA")) == pytest.approx(0.7)


def test_venue_location_placeholders_penalized():
    engine = ConfidenceEngine()
    fake = ScrapeTarget(name="Test Venue", urls=("http://example",), address="Tokyo")
    assert engine.venue_location_score(fake) < 0.5


def test_venue_scores_cached_per_reference():
    calls = []

    class CountingHistory(FakeHistory):
        def venue_event_dates(self, name):
            calls.append(name)
            return []

    engine = ConfidenceEngine(history=CountingHistory())
    engine.assess(make_event(), VENUE, reference=REF)
    first = len(calls)
    engine.assess(make_event(title="Another Night"), VENUE, reference=REF)
    # only the weekday-pattern lookup repeats
    assert len(calls) == first + 1


@pytest.mark.parametrize(
    "overall, status",
    [
        (0.97, VerificationStatus.VERIFIED),
        (0.9, VerificationStatus.TRUSTED),
        (0.75, VerificationStatus.CAUTION),
        (0.5, VerificationStatus.UNVERIFIED),
        (0.49, VerificationStatus.REJECTED),
    ],
)
def test_classify_status(overall, status):
    assert classify_status(overall) == status


def test_risk_severity_bands():
    assert risk_severity(0.05) == "LOW"
    assert risk_severity(0.2) == "MEDIUM"
    assert risk_severity(0.5) == "HIGH"


def test_website_status():
    assert website_status("https://www.shelter-shimokitazawa.com/") == "active"
    assert website_status("http://www.loft-prj.co.jp/") == "redirect"
    assert website_status("not a url") == "dead"
    assert website_status(None) is None
