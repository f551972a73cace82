"""
Page complexity heuristics used to pick a strategy for targets that do not
declare one. A heuristic, not a guarantee: the dispatcher still falls back
across strategies when a tier turns out wrong.
"""

import re

from gigscraper import config
from gigscraper.errors import FetchError
from gigscraper.models import ComplexityTier

FRAMEWORK_RE = re.compile(r"react|vue|angular|ember|turbo|stimulus|spa|single.page|webpack|babel", re.IGNORECASE)
AJAX_RE = re.compile(r"ajax|xhr|fetch\(|axios|jquery|data-remote|data-turbo|async", re.IGNORECASE)
NOSCRIPT_JS_RE = re.compile(r"<noscript[^>]*>.*?javascript.*?</noscript>", re.IGNORECASE | re.DOTALL)
CALENDAR_RE = re.compile(r"calendar|schedule|datepicker|fullcalendar", re.IGNORECASE)
MINIMAL_LENGTH = 5000


def complexity_score(html):
    score = 0
    if re.search(r"<iframe\b", html, re.IGNORECASE):
        score += 3
    if len(re.findall(r"<script\b", html, re.IGNORECASE)) > 10:
        score += 2
    if FRAMEWORK_RE.search(html):
        score += 2
    if AJAX_RE.search(html):
        score += 1
    if NOSCRIPT_JS_RE.search(html):
        score += 2
    if CALENDAR_RE.search(html):
        score += 1
    if len(html) < MINIMAL_LENGTH:
        score -= 1
    return score


def tier_for_score(score):
    if score <= 1:
        return ComplexityTier.SIMPLE
    if score <= 4:
        return ComplexityTier.MODERATE
    if score <= 8:
        return ComplexityTier.COMPLEX
    return ComplexityTier.VERY_COMPLEX


def analyze_html_complexity(html):
    """Pure function of the HTML: the same page always gets the same tier."""
    if html is None:
        return ComplexityTier.UNKNOWN
    return tier_for_score(complexity_score(html))


class ComplexityClassifier:
    """
    Tier per URL, memoized in a persisted cache. A cached tier is never
    recomputed; invalidate(url) is the only way to force a re-fetch.
    Fetch failures return UNKNOWN and are not cached.
    """

    def __init__(self, http, cache, log_func=None):
        self.http = http
        self.cache = cache
        self.log = log_func or print

    def cached(self, url):
        value = self.cache.get(url)
        if not value:
            return None
        try:
            return ComplexityTier(value)
        except ValueError:
            return None

    def classify(self, url):
        tier = self.cached(url)
        if tier is not None:
            return tier

        try:
            result = self.http.fetch(
                url,
                timeout=(config.QUICK_CONNECT_TIMEOUT, config.QUICK_READ_TIMEOUT),
            )
        except FetchError as e:
            self.log(f"  Complexity check failed for {url}: {e}")
            return ComplexityTier.UNKNOWN

        tier = analyze_html_complexity(result.html)
        self.cache.set(url, tier.value)
        return tier

    def invalidate(self, url):
        self.cache.delete(url)
