"""
Strategy dispatch: one handler per Strategy and per SpecialHandling tag,
selected in a single place.

Order of checks for a target:
  1. social-media-only site: skipped, nothing to scrape
  2. special_handling tag: its dedicated handler, no generic strategy runs
  3. known image-schedule venue: image/PDF OCR handler
  4. declared strategy; auto_detect resolves through the complexity classifier
"""

import re
import threading
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from gigscraper import config
from gigscraper.errors import FetchBlocked, FetchError, TargetTimeout
from gigscraper.extraction.dates import month_starts
from gigscraper.extraction.dom import dedupe_events, extract_events
from gigscraper.extraction.media import (
    find_pdf_links,
    find_schedule_images,
    is_image_schedule_venue,
    rank_image_urls,
)
from gigscraper.fetchers.browser import OPTIMIZED, PAGINATION_SELECTORS, STEALTH
from gigscraper.models import ComplexityTier, SpecialHandling, Strategy
from gigscraper.registry import is_social_media_only

SOCIAL_REDIRECT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE | re.DOTALL)
    for pattern in [
        r"check.{0,40}latest.{0,40}information.{0,40}on.{0,20}instagram",
        r"follow.{0,20}us.{0,20}on.{0,20}instagram",
        r"see.{0,20}our.{0,20}instagram",
        r"visit.{0,20}our.{0,20}instagram",
        r"instagram.{0,20}for.{0,20}updates",
        r"schedule.{0,20}on.{0,20}instagram",
    ]
]

MONTHLY_URL_PATTERNS = [
    "{base}/{year}/{month:02d}/",
    "{base}/{year}-{month:02d}/",
    "{base}/schedule/{year}/{month:02d}/",
    "{base}/events/{year}/{month:02d}/",
    "{base}/calendar/{year}/{month:02d}/",
    "{base}/?month={year}-{month:02d}",
    "{base}/?date={year}-{month:02d}",
    "{base}/?year={year}&month={month}",
]
BYPASS_URL_PATTERNS = ["{base}/schedulelist/", "{base}/schedule/", "{base}/live/", "{base}/event/"]
IFRAME_URL_PATTERNS = ["{base}/new/SCHEDULE/", "{base}/", "{base}/schedule/"]

TIER_STRATEGIES = {
    ComplexityTier.SIMPLE: Strategy.LIGHTWEIGHT_FIRST,
    ComplexityTier.MODERATE: Strategy.LIGHTWEIGHT_FIRST,
    ComplexityTier.COMPLEX: Strategy.BROWSER_ONLY,
    ComplexityTier.VERY_COMPLEX: Strategy.BROWSER_ONLY,
    ComplexityTier.UNKNOWN: Strategy.LIGHTWEIGHT_FIRST,
}
ERROR_SEVERITY = {"blocked": 0, "timeout": 1, "network": 2, "http": 3}


@dataclass
class DispatchResult:
    events: list = field(default_factory=list)
    strategy: str = ""
    reason: Optional[str] = None
    pages: int = 0


def has_social_redirect(html, venue_name=""):
    """The page says the schedule lives on Instagram."""
    if not html or is_image_schedule_venue(venue_name):
        return False
    text = re.sub(r"<[^>]+>", " ", html)
    return any(pattern.search(text) for pattern in SOCIAL_REDIRECT_PATTERNS)


def site_base(url):
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def worst_error(errors):
    return sorted(errors, key=lambda e: ERROR_SEVERITY.get(getattr(e, "kind", ""), 9))[0]


class Dispatcher:
    def __init__(self, http, browser, classifier=None, extractor=None, ocr_chain=None,
                 pdf_reader=None, user_agents=None,
                 sleep=time.sleep, clock=time.monotonic, log_func=None, verbose=False):
        self.http = http
        self.browser = browser
        self.classifier = classifier
        self.extractor = extractor
        self.ocr_chain = ocr_chain
        self.pdf_reader = pdf_reader
        self.user_agents = user_agents
        self.sleep = sleep
        self.clock = clock
        self.log = log_func or print
        self.verbose = verbose
        self._local = threading.local()

        self.strategy_handlers = {
            Strategy.LIGHTWEIGHT_FIRST: self.run_lightweight_first,
            Strategy.BROWSER_ONLY: self.run_browser_only,
            Strategy.PROTECTION_BYPASS: self.run_protection_bypass,
            Strategy.ENHANCED_NAVIGATION: self.run_enhanced_navigation,
        }
        self.special_handlers = {
            SpecialHandling.IMAGE_SCHEDULE: self.run_image_schedule,
            SpecialHandling.SOCIAL_REDIRECT: self.run_social_redirect,
            SpecialHandling.IFRAME_SCHEDULE: self.run_iframe_schedule,
            SpecialHandling.MONTHLY_COVERAGE: self.run_monthly_coverage,
            SpecialHandling.MONTHLY_COVERAGE_WITH_BYPASS: self.run_monthly_coverage_with_bypass,
        }

    def _debug(self, message):
        if self.verbose:
            self.log(message)

    def _check(self, deadline):
        if deadline is not None and self.clock() > deadline:
            raise TargetTimeout("Per-target time budget exhausted")

    def resolve_strategy(self, target):
        """Declared strategy wins; auto_detect asks the classifier."""
        if target.strategy != Strategy.AUTO_DETECT:
            return target.strategy
        if self.classifier is None:
            return Strategy.LIGHTWEIGHT_FIRST
        tier = self.classifier.classify(target.url)
        self._debug(f"    Complexity {tier.value} for {target.url}")
        return TIER_STRATEGIES[tier]

    def scrape(self, target, deadline=None):
        self._local.user_agent = self.user_agents() if self.user_agents else None
        if is_social_media_only(target.url):
            return DispatchResult([], "skipped", reason="social_media_only")

        if target.special_handling is not None:
            handler = self.special_handlers[target.special_handling]
            return handler(target, deadline)

        if is_image_schedule_venue(target.name):
            return self.run_image_schedule(target, deadline)

        strategy = self.resolve_strategy(target)
        return self.strategy_handlers[strategy](target, deadline)

    def _extract(self, html, target, url):
        return extract_events(html, target, url, extractor=self.extractor)

    def _user_agent(self):
        return getattr(self._local, "user_agent", None)

    def _fetch_page(self, url, target):
        """Plain HTTP; a 403 or challenge page gets one more try through the protected session."""
        user_agent = self._user_agent()
        try:
            return self.http.fetch(url, target_name=target.name, user_agent=user_agent)
        except FetchBlocked as e:
            if e.status == 429:
                raise
            self._debug(f"    Blocked at {url} ({e}), retrying with protected session")
            return self.http.fetch(url, target_name=target.name, protected=True, user_agent=user_agent)

    # Generic strategies

    def run_lightweight_first(self, target, deadline=None):
        events = []
        errors = []
        pages = 0
        redirected = False

        for url in target.urls:
            self._check(deadline)
            try:
                result = self._fetch_page(url, target)
            except FetchError as e:
                self._debug(f"    HTTP failed for {url}: {e}")
                errors.append(e)
                continue
            pages += 1
            page_events = self._extract(result.html, target, result.url)
            self._debug(f"    HTTP {result.url}: {len(page_events)} events")
            events.extend(page_events)
            if not page_events and has_social_redirect(result.html, target.name):
                redirected = True

        events = dedupe_events(events)
        if events:
            return DispatchResult(events, Strategy.LIGHTWEIGHT_FIRST.value, pages=pages)
        if redirected:
            return DispatchResult([], Strategy.LIGHTWEIGHT_FIRST.value, reason="social_redirect", pages=pages)

        self.log(f"  {target.name}: HTTP found nothing, falling back to browser")
        try:
            fallback = self.run_browser_only(target, deadline)
        except FetchError as e:
            if pages == 0:
                raise worst_error(errors + [e])
            self._debug(f"    Browser fallback failed: {e}")
            return DispatchResult([], Strategy.LIGHTWEIGHT_FIRST.value, reason="no events found", pages=pages)
        fallback.strategy = f"{Strategy.LIGHTWEIGHT_FIRST.value}>browser"
        fallback.pages += pages
        return fallback

    def _browser_pages(self, target, urls, profile, settle, deadline, challenge_wait=None):
        """Load each URL in one browser session and extract; raises only if every URL failed."""
        events = []
        errors = []
        pages = 0
        with self.browser.session(profile, target.name, user_agent=self._user_agent()) as session:
            for url in urls:
                self._check(deadline)
                try:
                    html = session.get(url, settle=settle)
                except FetchError as e:
                    self._debug(f"    Browser failed for {url}: {e}")
                    errors.append(e)
                    continue
                if challenge_wait is not None:
                    cleared = session.wait_out_challenge(challenge_wait)
                    html = session.page_source
                    if not cleared or len(html) < config.MIN_UNBLOCKED_PAGE_LENGTH:
                        errors.append(FetchBlocked(f"Challenge did not clear at {url}", url=url))
                        continue
                pages += 1
                page_events = self._extract(html, target, url)
                self._debug(f"    Browser {url}: {len(page_events)} events")
                events.extend(page_events)

        if pages == 0 and errors:
            raise worst_error(errors)
        return dedupe_events(events), pages

    def run_browser_only(self, target, deadline=None):
        events, pages = self._browser_pages(
            target, target.urls, OPTIMIZED, config.BROWSER_SETTLE_SECONDS, deadline
        )
        reason = None if events else "no events found"
        return DispatchResult(events, Strategy.BROWSER_ONLY.value, reason=reason, pages=pages)

    def _protected_pages(self, target, urls, deadline):
        events = []
        pages = 0
        for url in urls:
            self._check(deadline)
            try:
                result = self.http.fetch(url, target_name=target.name, protected=True, user_agent=self._user_agent())
            except FetchError as e:
                self._debug(f"    Protected HTTP failed for {url}: {e}")
                continue
            pages += 1
            events.extend(self._extract(result.html, target, result.url))
        return dedupe_events(events), pages

    def run_protection_bypass(self, target, deadline=None):
        """Protected HTTP session first, the stealth browser when that finds nothing."""
        events, http_pages = self._protected_pages(target, target.urls, deadline)
        if events:
            return DispatchResult(events, Strategy.PROTECTION_BYPASS.value, pages=http_pages)

        events, pages = self._browser_pages(
            target,
            target.urls,
            STEALTH,
            config.BYPASS_SETTLE_SECONDS,
            deadline,
            challenge_wait=config.BYPASS_CHALLENGE_WAIT_SECONDS,
        )
        reason = None if events else "no events found"
        return DispatchResult(events, Strategy.PROTECTION_BYPASS.value, reason=reason, pages=pages + http_pages)

    def run_enhanced_navigation(self, target, deadline=None):
        events = []
        pages = 0
        with self.browser.session(OPTIMIZED, target.name, user_agent=self._user_agent()) as session:
            page_events, loaded = self._iframe_pass(session, target, target.urls, deadline)
            events.extend(page_events)
            pages += loaded

            page_events, loaded = self._monthly_pass(session, target, deadline)
            events.extend(page_events)
            pages += loaded

            self._check(deadline)
            try:
                session.get(target.url, settle=config.NAVIGATION_SETTLE_SECONDS)
                for html in session.click_through(PAGINATION_SELECTORS, xpaths=(), max_clicks=2,
                                                  settle=config.NAVIGATION_SETTLE_SECONDS):
                    events.extend(self._extract(html, target, target.url))
                    pages += 1
            except FetchError as e:
                self._debug(f"    Pagination pass failed: {e}")

        events = dedupe_events(events)
        reason = None if events else "no events found"
        return DispatchResult(events, Strategy.ENHANCED_NAVIGATION.value, reason=reason, pages=pages)

    # Navigation building blocks

    def _iframe_pass(self, session, target, urls, deadline):
        """Schedule iframes first, then the page itself, then date-pager clicks."""
        events = []
        pages = 0
        for url in urls:
            self._check(deadline)
            try:
                html = session.get(url, settle=config.NAVIGATION_SETTLE_SECONDS)
            except FetchError as e:
                self._debug(f"    Navigation failed for {url}: {e}")
                continue
            pages += 1

            frames = session.schedule_iframes()
            for frame in frames:
                frame_html = session.iframe_source(frame)
                events.extend(self._extract(frame_html, target, url))
            if not frames:
                events.extend(self._extract(html, target, url))

            for clicked_html in session.click_through(max_clicks=5, settle=1.5):
                events.extend(self._extract(clicked_html, target, url))
        return events, pages

    def _monthly_urls(self, target, patterns=MONTHLY_URL_PATTERNS, months_ahead=config.MONTHS_AHEAD):
        urls = []
        for base in dict.fromkeys(site_base(url) for url in target.urls):
            for month in month_starts(months_ahead=months_ahead):
                for pattern in patterns:
                    url = pattern.format(base=base, year=month.year, month=month.month)
                    if url not in urls:
                        urls.append(url)
        return urls

    def _monthly_pass(self, session, target, deadline):
        events = []
        pages = 0
        for url in self._monthly_urls(target):
            self._check(deadline)
            try:
                html = session.get(url, settle=config.NAVIGATION_SETTLE_SECONDS)
            except FetchError as e:
                self._debug(f"    Monthly page failed for {url}: {e}")
                continue
            pages += 1
            events.extend(self._extract(html, target, url))
        return events, pages

    # Special handlers

    def run_social_redirect(self, target, deadline=None):
        return DispatchResult([], SpecialHandling.SOCIAL_REDIRECT.value, reason="social_redirect")

    def run_iframe_schedule(self, target, deadline=None):
        urls = list(target.urls)
        for base in dict.fromkeys(site_base(url) for url in target.urls):
            for pattern in IFRAME_URL_PATTERNS:
                candidate = pattern.format(base=base)
                if candidate not in urls and candidate.rstrip("/") not in urls:
                    urls.append(candidate)

        with self.browser.session(OPTIMIZED, target.name, user_agent=self._user_agent()) as session:
            events, pages = self._iframe_pass(session, target, urls, deadline)
        events = dedupe_events(events)
        if events:
            return DispatchResult(events, SpecialHandling.IFRAME_SCHEDULE.value, pages=pages)

        self._debug("    No iframe schedule found, trying enhanced navigation")
        result = self.run_enhanced_navigation(target, deadline)
        result.strategy = f"{SpecialHandling.IFRAME_SCHEDULE.value}>navigation"
        return result

    def run_monthly_coverage(self, target, deadline=None):
        urls = list(target.urls) + [u for u in self._monthly_urls(target) if u not in target.urls]
        events, pages = self._browser_pages(target, urls, OPTIMIZED, config.NAVIGATION_SETTLE_SECONDS, deadline)
        reason = None if events else "no events found"
        return DispatchResult(events, SpecialHandling.MONTHLY_COVERAGE.value, reason=reason, pages=pages)

    def run_monthly_coverage_with_bypass(self, target, deadline=None):
        urls = list(target.urls)
        for base in dict.fromkeys(site_base(url) for url in target.urls):
            candidates = [pattern.format(base=base) for pattern in BYPASS_URL_PATTERNS]
            candidates += [f"{base}/{m.year}/{m.month:02d}/" for m in month_starts(months_ahead=1)]
            urls.extend(u for u in candidates if u not in urls)

        events, pages = self._browser_pages(
            target,
            urls,
            STEALTH,
            config.MONTHLY_BYPASS_SETTLE_SECONDS,
            deadline,
            challenge_wait=config.MONTHLY_BYPASS_CHALLENGE_WAIT_SECONDS,
        )
        reason = None if events else "no events found"
        return DispatchResult(events, SpecialHandling.MONTHLY_COVERAGE_WITH_BYPASS.value, reason=reason, pages=pages)

    def run_image_schedule(self, target, deadline=None):
        """PDFs first, then page images, then images only visible after rendering."""
        strategy = SpecialHandling.IMAGE_SCHEDULE.value
        if self.ocr_chain is None:
            return DispatchResult([], strategy, reason="ocr unavailable")

        html = None
        page_url = target.url
        try:
            result = self._fetch_page(target.url, target)
            html, page_url = result.html, result.url
        except FetchError as e:
            self.log(f"  {target.name}: page fetch failed ({e}), trying rendered images")

        if html:
            for pdf_url, score in find_pdf_links(html, page_url):
                self._check(deadline)
                if self.pdf_reader is None:
                    break
                self._debug(f"    PDF {pdf_url} (score {score})")
                try:
                    pdf_bytes = self.http.fetch_bytes(pdf_url)
                except FetchError as e:
                    self._debug(f"    PDF download failed: {e}")
                    continue
                events = self.pdf_reader.read(pdf_bytes, target.name, pdf_url)
                if events:
                    return DispatchResult(events, f"{strategy}:pdf", pages=1)

            for image_url, score in find_schedule_images(html, page_url, target.name):
                self._check(deadline)
                events = self._ocr_image(target, image_url, score)
                if events:
                    return DispatchResult(events, f"{strategy}:image", pages=1)

        self._check(deadline)
        try:
            with self.browser.session(OPTIMIZED, target.name, user_agent=self._user_agent()) as session:
                session.get(target.url, settle=config.NAVIGATION_SETTLE_SECONDS)
                sources = session.image_sources()
        except FetchError as e:
            self._debug(f"    Browser image pass failed: {e}")
            sources = []

        for image_url, score in rank_image_urls(sources, target.name):
            self._check(deadline)
            events = self._ocr_image(target, image_url, score)
            if events:
                return DispatchResult(events, f"{strategy}:browser_image", pages=1)

        return DispatchResult([], strategy, reason="no content extracted")

    def _ocr_image(self, target, image_url, score):
        self._debug(f"    Image {image_url} (score {score})")
        try:
            image_bytes = self.http.fetch_bytes(image_url, read_timeout=config.HTTP_READ_TIMEOUT)
        except FetchError as e:
            self._debug(f"    Image download failed: {e}")
            return []
        events, engine = self.ocr_chain.run(image_bytes, target.name, image_url)
        if events:
            self.log(f"  {target.name}: {len(events)} events from image via {engine}")
        return events
