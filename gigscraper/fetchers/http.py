import random
import time
from urllib.parse import urljoin

import requests

try:
    import cloudscraper  # type: ignore
except ImportError:  # Optional; only needed for protected sites
    cloudscraper = None

from gigscraper import config
from gigscraper.errors import FetchBlocked, FetchHttpError, FetchNetworkError, FetchTimeout
from gigscraper.models import FetchResult

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
BLOCKED_STATUSES = {403, 429}


def looks_like_challenge(html):
    """True for anti-bot interstitials rather than the real page."""
    if not html:
        return False
    head = html[:5000]
    return (
        "Checking your browser" in head
        or "Just a moment..." in head
        or "cf-browser-verification" in head
        or "challenge-platform" in head
    )


class HttpFetcher:
    """
    Plain HTTP client with short timeouts, manual redirects and retry with
    backoff on 5xx and dropped connections.
    """

    def __init__(self, session=None, headers=None, max_retries=None, on_response_time=None,
                 sleep=time.sleep, log_func=None, verbose=False):
        self.session = session or requests.Session()
        self.headers = dict(headers or config.DEFAULT_HEADERS)
        self.max_retries = config.HTTP_MAX_RETRIES if max_retries is None else max_retries
        self.on_response_time = on_response_time
        self.sleep = sleep
        self.log = log_func or print
        self.verbose = verbose
        self._protected_session = None

    def protected_session(self):
        """A cloudscraper session when installed, else the plain session."""
        if self._protected_session is None:
            if cloudscraper:
                self._protected_session = cloudscraper.create_scraper()
            else:
                self._protected_session = self.session
        return self._protected_session

    def _request(self, session, url, timeout, headers):
        try:
            return session.get(url, headers=headers, timeout=timeout, allow_redirects=False)
        except requests.exceptions.Timeout as e:
            raise FetchTimeout(f"Timeout fetching {url}: {e}", url=url)
        except requests.exceptions.ConnectionError as e:
            raise FetchNetworkError(f"Connection error fetching {url}: {e}", url=url)
        except requests.RequestException as e:
            raise FetchNetworkError(f"Request failed for {url}: {e}", url=url)

    def _get_following_redirects(self, session, url, timeout, headers):
        current = url
        for hop in range(config.MAX_REDIRECTS + 1):
            resp = self._request(session, current, timeout, headers)
            if resp.status_code not in REDIRECT_STATUSES:
                return current, resp
            location = resp.headers.get("Location")
            if not location:
                return current, resp
            next_url = urljoin(current, location)
            if self.verbose:
                self.log(f"    Redirect {resp.status_code}: {current} -> {next_url}")
            current = next_url
        raise FetchHttpError(f"Too many redirects from {url}", url=url, status=resp.status_code)

    def fetch(self, url, target_name=None, timeout=None, protected=False, user_agent=None):
        """
        Fetch a page. Returns FetchResult; raises FetchTimeout, FetchBlocked,
        FetchHttpError or FetchNetworkError.
        """
        timeout = timeout or (config.HTTP_CONNECT_TIMEOUT, config.HTTP_READ_TIMEOUT)
        session = self.protected_session() if protected else self.session
        headers = dict(self.headers)
        if user_agent:
            headers["User-Agent"] = user_agent

        for attempt in range(self.max_retries + 1):
            started = time.time()
            try:
                final_url, resp = self._get_following_redirects(session, url, timeout, headers)
            except (FetchTimeout, FetchNetworkError) as e:
                if attempt < self.max_retries:
                    wait = (2 ** attempt) * 2 + random.uniform(1, 3)
                    self.log(f"    {target_name or url}: Retry {attempt + 1}/{self.max_retries} after {type(e).__name__}...")
                    self.sleep(wait)
                    continue
                raise
            elapsed_ms = (time.time() - started) * 1000

            if resp.status_code >= 500 and attempt < self.max_retries:
                wait = (2 ** attempt) * 2 + random.uniform(1, 3)
                self.sleep(wait)
                continue

            if target_name and self.on_response_time:
                self.on_response_time(target_name, elapsed_ms / 1000)

            if resp.status_code in BLOCKED_STATUSES:
                raise FetchBlocked(f"HTTP {resp.status_code} from {final_url}", url=final_url, status=resp.status_code)
            if resp.status_code != 200:
                raise FetchHttpError(f"HTTP {resp.status_code} from {final_url}", url=final_url, status=resp.status_code)

            html = resp.text
            if looks_like_challenge(html):
                raise FetchBlocked(f"Challenge page at {final_url}", url=final_url, status=resp.status_code)
            return FetchResult(url=final_url, html=html, status=resp.status_code, response_time_ms=elapsed_ms)

        raise FetchNetworkError(f"Giving up on {url}", url=url)

    def fetch_bytes(self, url, read_timeout=None):
        """Download an image or PDF."""
        timeout = (config.HTTP_CONNECT_TIMEOUT, read_timeout or config.DOWNLOAD_READ_TIMEOUT)
        try:
            resp = self.session.get(url, headers=self.headers, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise FetchTimeout(f"Timeout downloading {url}: {e}", url=url)
        except requests.RequestException as e:
            raise FetchNetworkError(f"Download failed for {url}: {e}", url=url)
        if resp.status_code in BLOCKED_STATUSES:
            raise FetchBlocked(f"HTTP {resp.status_code} from {url}", url=url, status=resp.status_code)
        if resp.status_code != 200:
            raise FetchHttpError(f"HTTP {resp.status_code} from {url}", url=url, status=resp.status_code)
        return resp.content

    def is_accessible(self, url):
        """HEAD request: True for 2xx and redirects."""
        try:
            resp = self.session.head(
                url,
                headers=self.headers,
                timeout=(config.QUICK_CONNECT_TIMEOUT, config.QUICK_READ_TIMEOUT),
                allow_redirects=False,
            )
        except requests.RequestException:
            return False
        return 200 <= resp.status_code < 400
