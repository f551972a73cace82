"""
Politeness policy for scheduled runs: rotating user agents, respectful delays
between venues, a daily venue limit and a robots.txt check.
"""

import itertools
import random
import threading
import time
from datetime import date
from urllib import robotparser
from urllib.parse import urljoin, urlparse

import requests

from gigscraper import config
from gigscraper.errors import FetchBlocked, FetchTimeout, TargetTimeout


def classify_error(error):
    """Bucket an exception or message into blocked / rate_limited / timeout / general_error."""
    if isinstance(error, FetchBlocked):
        return "rate_limited" if getattr(error, "status", None) == 429 else "blocked"
    if isinstance(error, (FetchTimeout, TargetTimeout)):
        return "timeout"
    message = str(error).lower()
    if "429" in message or "rate limit" in message or "too many requests" in message:
        return "rate_limited"
    if "blocked" in message or "forbidden" in message or "403" in message:
        return "blocked"
    if "timeout" in message or "timed out" in message:
        return "timeout"
    return "general_error"


def classify_result(result):
    """Bucket a TargetResult's failure like classify_error does; None when the target succeeded."""
    if not result.failure:
        return None
    if result.failure == "blocked":
        return "rate_limited" if "429" in (result.error or "") else "blocked"
    if result.failure == "timeout":
        return "timeout"
    return classify_error(result.error or "")


def _origin(url):
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


class ResponsiblePolicy:
    def __init__(self, session_store=None, http_session=None, sleep=time.sleep, log_func=None):
        self.session_store = session_store
        self.http = http_session or requests.Session()
        self.sleep = sleep
        self.log = log_func or print
        self._agents = itertools.cycle(config.USER_AGENTS)
        self._lock = threading.Lock()
        self._robots = {}
        self._crawl_delays = {}

    def next_user_agent(self):
        with self._lock:
            return next(self._agents)

    def respectful_delay(self, after_error=False, minimum=0.0):
        base = config.DELAY_AFTER_ERRORS if after_error else config.DELAY_BETWEEN_TARGETS
        delay = max(base + random.uniform(*config.RANDOM_EXTRA_DELAY), minimum)
        self.sleep(delay)
        return delay

    def rate_limited_backoff(self):
        self.sleep(config.RATE_LIMITED_BACKOFF_SECONDS)

    def requested_delay(self, url):
        """Crawl-delay seconds from a robots.txt already checked, capped; 0 when none was asked for."""
        with self._lock:
            return self._crawl_delays.get(_origin(url), 0.0)

    def check_robots(self, url, user_agent="*"):
        """
        Returns one of allowed, delay_requested, discouraged or unknown.
        An unreachable robots.txt counts as unknown and does not block the run.
        """
        origin = _origin(url)
        if origin is None:
            return "unknown"
        with self._lock:
            if origin in self._robots:
                return self._robots[origin]

        robots_url = urljoin(origin, "/robots.txt")
        status = "unknown"
        crawl_delay = None
        try:
            resp = self.http.get(
                robots_url,
                headers={"User-Agent": config.USER_AGENTS[0]},
                timeout=(config.QUICK_CONNECT_TIMEOUT, config.QUICK_READ_TIMEOUT),
            )
            if resp.status_code == 200:
                parser = robotparser.RobotFileParser()
                parser.parse(resp.text.splitlines())
                if not parser.can_fetch(user_agent, url) and not parser.can_fetch(user_agent, origin + "/"):
                    status = "discouraged"
                elif parser.crawl_delay(user_agent):
                    status = "delay_requested"
                    crawl_delay = min(float(parser.crawl_delay(user_agent)), config.MAX_CRAWL_DELAY_SECONDS)
                else:
                    status = "allowed"
            elif resp.status_code in (404, 410):
                status = "allowed"
        except requests.RequestException as e:
            self.log(f"  robots.txt unreachable for {origin}: {e}")

        with self._lock:
            self._robots[origin] = status
            if crawl_delay:
                self._crawl_delays[origin] = crawl_delay
        return status

    def _daily_counts(self):
        if self.session_store is None:
            return {}
        return self.session_store.get("daily_counts", {}) or {}

    def processed_today(self):
        return self._daily_counts().get(date.today().isoformat(), 0)

    def daily_remaining(self):
        return max(config.DAILY_TARGET_LIMIT - self.processed_today(), 0)

    def record_processed(self):
        if self.session_store is None:
            return

        def mutate(data):
            today_key = date.today().isoformat()
            counts = data.get("daily_counts") or {}
            # Only today's count matters
            data["daily_counts"] = {today_key: counts.get(today_key, 0) + 1}

        self.session_store.update(mutate)
