from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class Strategy(Enum):
    LIGHTWEIGHT_FIRST = "lightweight_first"
    BROWSER_ONLY = "browser_only"
    PROTECTION_BYPASS = "protection_bypass"
    ENHANCED_NAVIGATION = "enhanced_navigation"
    AUTO_DETECT = "auto_detect"


STRATEGY_ALIASES = {
    "hybrid_http_first": Strategy.LIGHTWEIGHT_FIRST,
    "http_first": Strategy.LIGHTWEIGHT_FIRST,
    "hybrid_browser": Strategy.BROWSER_ONLY,
    "browser": Strategy.BROWSER_ONLY,
    "cloudflare_bypass": Strategy.PROTECTION_BYPASS,
    "enhanced_date_navigation": Strategy.ENHANCED_NAVIGATION,
    "auto": Strategy.AUTO_DETECT,
}


def parse_strategy(value):
    """Map a stored strategy name (current or legacy) to a Strategy."""
    if isinstance(value, Strategy):
        return value
    if not value:
        return Strategy.AUTO_DETECT
    key = str(value).strip().lower()
    if key in STRATEGY_ALIASES:
        return STRATEGY_ALIASES[key]
    return Strategy(key)


class SpecialHandling(Enum):
    IMAGE_SCHEDULE = "image_schedule"
    SOCIAL_REDIRECT = "social_redirect"
    IFRAME_SCHEDULE = "iframe_schedule"
    MONTHLY_COVERAGE = "monthly_coverage"
    MONTHLY_COVERAGE_WITH_BYPASS = "monthly_coverage_with_bypass"


SPECIAL_HANDLING_ALIASES = {
    "milkyway_enhanced_navigation": SpecialHandling.IFRAME_SCHEDULE,
    "enhanced_monthly_coverage": SpecialHandling.MONTHLY_COVERAGE,
    "image_based": SpecialHandling.IMAGE_SCHEDULE,
    "instagram_redirect": SpecialHandling.SOCIAL_REDIRECT,
}


def parse_special_handling(value):
    if isinstance(value, SpecialHandling) or value is None:
        return value
    key = str(value).strip().lower()
    if not key:
        return None
    if key in SPECIAL_HANDLING_ALIASES:
        return SPECIAL_HANDLING_ALIASES[key]
    return SpecialHandling(key)


class ComplexityTier(Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    VERY_COMPLEX = "very_complex"
    UNKNOWN = "unknown"


class VerificationStatus(Enum):
    VERIFIED = "verified"
    TRUSTED = "trusted"
    CAUTION = "caution"
    UNVERIFIED = "unverified"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Selectors:
    """Comma-separated CSS selector lists for one target."""
    event: str = ""
    title: str = ""
    date: str = ""
    time: str = ""
    performer: str = ""

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            event=data.get("event") or data.get("gigs") or "",
            title=data.get("title") or "",
            date=data.get("date") or "",
            time=data.get("time") or "",
            performer=data.get("performer") or data.get("artists") or "",
        )


@dataclass(frozen=True)
class ScrapeTarget:
    name: str
    urls: Tuple[str, ...]
    strategy: Strategy = Strategy.AUTO_DETECT
    selectors: Optional[Selectors] = None
    special_handling: Optional[SpecialHandling] = None
    address: Optional[str] = None
    neighborhood: Optional[str] = None
    website: Optional[str] = None
    proven: bool = False

    @property
    def url(self):
        return self.urls[0] if self.urls else ""

    @property
    def homepage(self):
        return self.website or self.url


@dataclass(frozen=True)
class ExtractedEvent:
    title: str
    date: object
    venue: str
    source_url: str
    extraction_strategy: str
    open_time: Optional[str] = None
    start_time: Optional[str] = None
    performers: Tuple[str, ...] = ()
    artists_text: str = ""
    price: Optional[str] = None
    raw_text: str = ""
    source: str = "html"

    def key(self):
        return (self.title.strip().lower(), self.date, self.venue)

    def to_dict(self):
        return {
            "title": self.title,
            "date": self.date.isoformat() if self.date else None,
            "venue": self.venue,
            "open_time": self.open_time,
            "start_time": self.start_time,
            "performers": list(self.performers),
            "price": self.price,
            "source_url": self.source_url,
            "extraction_strategy": self.extraction_strategy,
            "source": self.source,
        }


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    score: float
    threshold: float
    gap: float
    severity: str
    description: str


@dataclass(frozen=True)
class ConfidenceAssessment:
    scores: dict
    overall: float
    status: VerificationStatus
    risk_factors: Tuple[RiskFactor, ...] = ()
    meets_threshold: bool = False

    @property
    def persistable(self):
        return self.status != VerificationStatus.REJECTED

    @property
    def needs_disclaimer(self):
        return self.status in (VerificationStatus.CAUTION, VerificationStatus.UNVERIFIED)


@dataclass
class FetchResult:
    url: str
    html: str
    status: int = 200
    response_time_ms: float = 0.0


@dataclass
class TargetResult:
    """Outcome of one target's pipeline run."""
    name: str
    success: bool = False
    events: list = field(default_factory=list)
    raw_count: int = 0
    valid_count: int = 0
    saved: int = 0
    skipped: int = 0
    rejected: int = 0
    strategy: Optional[str] = None
    reason: Optional[str] = None
    failure: Optional[str] = None
    error: Optional[str] = None
    trace: Optional[str] = None
    skipped_run: bool = False
    duration_ms: float = 0.0

    def to_dict(self):
        return {
            "name": self.name,
            "success": self.success,
            "event_count": len(self.events),
            "raw_count": self.raw_count,
            "valid_count": self.valid_count,
            "saved": self.saved,
            "skipped": self.skipped,
            "rejected": self.rejected,
            "strategy": self.strategy,
            "reason": self.reason,
            "failure": self.failure,
            "error": self.error,
            "skipped_run": self.skipped_run,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class RunSummary:
    mode: str
    targets_planned: int = 0
    targets_processed: int = 0
    successes: int = 0
    total_events: int = 0
    saved_events: int = 0
    duration_seconds: float = 0.0
    failures: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    hard_failure: Optional[str] = None
    results: list = field(default_factory=list)

    @property
    def partial_failure(self):
        return bool(self.failures)

    def exit_code(self):
        if self.hard_failure:
            return 2
        if self.partial_failure:
            return 1
        return 0

    def to_dict(self):
        return {
            "mode": self.mode,
            "targets_planned": self.targets_planned,
            "targets_processed": self.targets_processed,
            "successes": self.successes,
            "total_events": self.total_events,
            "saved_events": self.saved_events,
            "duration_seconds": round(self.duration_seconds, 1),
            "failures": self.failures,
            "skipped": self.skipped,
            "hard_failure": self.hard_failure,
            "results": [result.to_dict() for result in self.results],
        }
