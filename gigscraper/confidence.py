"""
Confidence scoring for extracted events.

Seven independent 0-1 dimension scores are combined with fixed weights into an
overall score, which maps onto a verification status. Any dimension below its
own threshold is reported as a risk factor. The weights and thresholds were
tuned by hand against the seed venues; treat them as defaults, not truths.
"""

import datetime as dt
import re
import threading

from gigscraper.extraction.bands import PLACEHOLDER_PERFORMER
from gigscraper.extraction.dates import today
from gigscraper.models import ConfidenceAssessment, RiskFactor, VerificationStatus

THRESHOLDS = {
    "venue_location": 0.95,
    "venue_active": 0.90,
    "gig_exists": 0.85,
    "band_real": 0.80,
    "date_accurate": 0.95,
    "time_accurate": 0.85,
    "price_accurate": 0.75,
}
OVERALL_MINIMUM = 0.85

WEIGHTS = {
    "venue_location": 0.25,
    "venue_active": 0.20,
    "gig_exists": 0.20,
    "band_real": 0.15,
    "date_accurate": 0.10,
    "time_accurate": 0.05,
    "price_accurate": 0.05,
}

STATUS_BANDS = [
    (0.95, VerificationStatus.VERIFIED),
    (0.85, VerificationStatus.TRUSTED),
    (0.70, VerificationStatus.CAUTION),
    (0.50, VerificationStatus.UNVERIFIED),
]

RISK_DESCRIPTIONS = {
    "venue_location": "Venue location not fully verified",
    "venue_active": "Venue activity uncertain",
    "gig_exists": "Event existence not confirmed",
    "band_real": "Performer identity uncertain",
    "date_accurate": "Event date may be inaccurate",
    "time_accurate": "Event time may be inaccurate",
    "price_accurate": "Ticket price may be inaccurate",
}

RECENT_ACTIVITY_DAYS = 30
ACTIVITY_WINDOW_DAYS = 90
FUTURE_WINDOW_DAYS = 365
PLACEHOLDER_NAME_RE = re.compile(r"test|fake|dummy|example", re.IGNORECASE)
PLACEHOLDER_ADDRESS_RE = re.compile(r"test|fake|dummy", re.IGNORECASE)
WEBSITE_RE = re.compile(r"^https?://[\w.-]+\.[a-z]{2,}(?:[:/?#]|$)", re.IGNORECASE)
PLACEHOLDER_PRICE_RE = re.compile(r"\b(?:tbd|tba|unknown|free)\b", re.IGNORECASE)
FAKE_BAND_RE = re.compile(r"^\d+$|^test|^fake|^dummy", re.IGNORECASE)


def _clamp(value):
    return max(0.0, min(1.0, value))


def classify_status(overall):
    for floor, status in STATUS_BANDS:
        if overall >= floor:
            return status
    return VerificationStatus.REJECTED


def risk_severity(gap):
    if gap <= 0.1:
        return "LOW"
    if gap <= 0.3:
        return "MEDIUM"
    return "HIGH"


def website_status(website):
    """Classify a website string as active, redirect or dead without fetching it."""
    if not website:
        return None
    if not WEBSITE_RE.match(website.strip()):
        return "dead"
    if website.lower().startswith("https://"):
        return "active"
    return "redirect"


class ConfidenceEngine:
    def __init__(self, history=None, genre_lookup=None):
        """
        history: object with venue_event_dates(name) and band_event_count(name),
            usually the persistence adapter; None means no stored history.
        genre_lookup: callable(name) -> genre string, "Unknown" when unsure.
        """
        self.history = history
        self.genre_lookup = genre_lookup
        self._venue_cache = {}
        self._lock = threading.Lock()

    def _venue_dates(self, venue_name):
        if self.history is None:
            return []
        return self.history.venue_event_dates(venue_name) or []

    def _band_event_count(self, name):
        if self.history is None:
            return 0
        return self.history.band_event_count(name) or 0

    def _genre(self, name):
        if self.genre_lookup is None:
            return "Unknown"
        return self.genre_lookup(name) or "Unknown"

    def venue_location_score(self, venue):
        score = 0.5
        name = getattr(venue, "name", "") or ""
        address = (getattr(venue, "address", None) or "").strip()
        website = (getattr(venue, "homepage", None) or "").strip()
        neighborhood = (getattr(venue, "neighborhood", None) or "").strip()

        if len(address) > 10 and address.lower() not in ("tokyo", "japan"):
            score += 0.2
        if re.match(r"^https?://", website):
            score += 0.2
        if neighborhood and neighborhood.lower() != "tokyo":
            score += 0.1
        if website and len(address) > 15:
            score += 0.2
        if PLACEHOLDER_NAME_RE.search(name):
            score -= 0.3
        if PLACEHOLDER_ADDRESS_RE.search(address):
            score -= 0.2
        return _clamp(score)

    def venue_active_score(self, venue, reference=None):
        reference = reference or today()
        score = 0.5
        dates = self._venue_dates(venue.name)
        past = [d for d in dates if d <= reference]
        if any((reference - d).days <= RECENT_ACTIVITY_DAYS for d in past):
            score += 0.3
        elif any((reference - d).days <= ACTIVITY_WINDOW_DAYS for d in past):
            score += 0.1

        status = website_status(getattr(venue, "homepage", None))
        if status == "active":
            score += 0.2
        elif status == "redirect":
            score += 0.1
        elif status == "dead":
            score -= 0.3
        return _clamp(score)

    def gig_exists_score(self, event, performers, reference=None):
        reference = reference or today()
        score = 0.5
        if event.date:
            days_ahead = (event.date - reference).days
            if 0 <= days_ahead <= FUTURE_WINDOW_DAYS:
                score += 0.2
            elif days_ahead < 0:
                score -= 0.4

        match = re.match(r"^(\d{1,2}):(\d{2})", event.start_time or "")
        if match and 12 <= int(match.group(1)) <= 23:
            score += 0.1

        if performers:
            score += 0.2
        else:
            score -= 0.1

        if event.date and self._fits_weekday_pattern(event.venue, event.date):
            score += 0.1
        return _clamp(score)

    def _fits_weekday_pattern(self, venue_name, event_date):
        dates = self._venue_dates(venue_name)
        if not dates:
            return True
        return event_date.weekday() in {d.weekday() for d in dates}

    def band_score(self, name):
        score = 0.5
        if 2 <= len(name) <= 50:
            score += 0.1
        if re.search(r"[A-Za-z぀-ヿ一-鿿]", name):
            score += 0.1
        if not FAKE_BAND_RE.search(name):
            score += 0.1

        genre = self._genre(name)
        if genre != "Unknown":
            score += 0.1

        event_count = self._band_event_count(name)
        if event_count > 5:
            score += 0.2
        elif event_count > 1:
            score += 0.1
        if genre != "Unknown" and event_count > 1:
            score += 0.2
        return _clamp(score)

    def band_real_score(self, performers):
        if not performers:
            return 0.0
        return sum(self.band_score(name) for name in performers) / len(performers)

    def date_accurate_score(self, event, reference=None):
        reference = reference or today()
        if not event.date:
            return 0.0
        score = 0.8
        days_ahead = (event.date - reference).days
        if days_ahead < 0:
            score = 0.2
        elif days_ahead > FUTURE_WINDOW_DAYS:
            score -= 0.3
        if isinstance(event.date, dt.date) and days_ahead >= 0:
            score += 0.1
        return _clamp(score)

    def time_accurate_score(self, event):
        score = 0.6
        start = event.start_time or ""
        if re.match(r"^\d{1,2}:\d{2}$", start):
            score += 0.2
            hour = int(start.split(":")[0])
            if 18 <= hour <= 23:
                score += 0.1
            elif 12 <= hour <= 17:
                score += 0.05
        if event.open_time and event.open_time != start:
            score += 0.1
        return _clamp(score)

    def price_accurate_score(self, event):
        score = 0.7
        price = (event.price or "").strip()
        if not price:
            return score
        digits = re.sub(r"[^\d]", "", price)
        if digits:
            score += 0.1
            value = int(digits)
            if 1000 <= value <= 10000:
                score += 0.1
            elif 0 < value < 1000:
                score += 0.05
        is_zero = bool(digits) and int(digits) == 0
        if not PLACEHOLDER_PRICE_RE.search(price) and not is_zero:
            score += 0.1
        return _clamp(score)

    def _venue_scores(self, venue, reference):
        key = (venue.name, reference)
        with self._lock:
            cached = self._venue_cache.get(key)
        if cached:
            return cached
        scores = (self.venue_location_score(venue), self.venue_active_score(venue, reference))
        with self._lock:
            self._venue_cache[key] = scores
        return scores

    def assess(self, event, venue, reference=None):
        reference = reference or today()
        performers = [p for p in event.performers if p and p != PLACEHOLDER_PERFORMER]

        location, active = self._venue_scores(venue, reference)
        scores = {
            "venue_location": location,
            "venue_active": active,
            "gig_exists": self.gig_exists_score(event, performers, reference),
            "band_real": self.band_real_score(performers),
            "date_accurate": self.date_accurate_score(event, reference),
            "time_accurate": self.time_accurate_score(event),
            "price_accurate": self.price_accurate_score(event),
        }
        overall = round(sum(scores[name] * weight for name, weight in WEIGHTS.items()), 4)
        status = classify_status(overall)

        risks = []
        for name, threshold in THRESHOLDS.items():
            value = scores[name]
            if value < threshold:
                gap = threshold - value
                risks.append(RiskFactor(
                    factor=name,
                    score=round(value, 4),
                    threshold=threshold,
                    gap=round(gap, 4),
                    severity=risk_severity(gap),
                    description=f"{RISK_DESCRIPTIONS[name]} ({value * 100:.1f}%)",
                ))
        risks.sort(key=lambda risk: risk.gap, reverse=True)

        return ConfidenceAssessment(
            scores={name: round(value, 4) for name, value in scores.items()},
            overall=overall,
            status=status,
            risk_factors=tuple(risks),
            meets_threshold=overall >= OVERALL_MINIMUM,
        )

    def clear_cache(self):
        with self._lock:
            self._venue_cache.clear()
