from contextlib import contextmanager
from datetime import date

import pytest

from gigscraper.dispatch import Dispatcher, has_social_redirect, site_base, worst_error
from gigscraper.errors import FetchBlocked, FetchHttpError, FetchTimeout, TargetTimeout
from gigscraper.models import ComplexityTier, ExtractedEvent, FetchResult, ScrapeTarget, SpecialHandling, Strategy

LISTING = "<div class='gig'>2025/6/14 Summer Night Session</div>" + " " * 1200
EMPTY = "<html><body>" + "nothing here " * 100 + "</body></html>"


def make_target(strategy=Strategy.LIGHTWEIGHT_FIRST, special=None, urls=("https://shelter.example/schedule/",),
                name="Shelter"):
    return ScrapeTarget(name=name, urls=urls, strategy=strategy, special_handling=special)


class FakeExtractor:
    def extract(self, html, target, source_url=None):
        if "class='gig'" not in (html or ""):
            return []
        return [ExtractedEvent(
            title="Summer Night Session",
            date=date(2025, 6, 14),
            venue=target.name,
            source_url=source_url,
            extraction_strategy="selector",
        )]


class FakeHttp:
    def __init__(self, pages):
        self.pages = pages
        self.fetched = []
        self.calls = []

    def fetch(self, url, target_name=None, **kwargs):
        self.fetched.append(url)
        self.calls.append(kwargs)
        page = self.pages.get(url, EMPTY)
        if isinstance(page, Exception):
            raise page
        return FetchResult(url=url, html=page)

    def fetch_bytes(self, url, read_timeout=None):
        raise FetchHttpError("not here", url=url, status=404)


class ChallengedHttp(FakeHttp):
    """Serves pages only through the protected session."""

    def fetch(self, url, target_name=None, **kwargs):
        if not kwargs.get("protected"):
            self.fetched.append(url)
            self.calls.append(kwargs)
            raise FetchBlocked(f"Challenge page at {url}", url=url, status=403)
        return super().fetch(url, target_name=target_name, **kwargs)


class FakeSession:
    def __init__(self, pages=None, cleared=True):
        self.pages = pages or {}
        self.cleared = cleared
        self.visited = []
        self.current = ""

    def get(self, url, settle=None):
        self.visited.append(url)
        page = self.pages.get(url, EMPTY)
        if isinstance(page, Exception):
            raise page
        self.current = page
        return page

    @property
    def page_source(self):
        return self.current

    def wait_out_challenge(self, extra_wait):
        return self.cleared

    def schedule_iframes(self):
        return []

    def iframe_source(self, frame, settle=3.0):
        return ""

    def click_through(self, selectors=None, xpaths=None, max_clicks=5, settle=1.5):
        return []

    def image_sources(self):
        return []


class FakeBrowser:
    def __init__(self, session=None):
        self.fake_session = session or FakeSession()
        self.profiles = []
        self.user_agents = []

    @contextmanager
    def session(self, profile="optimized", target_name=None, user_agent=None):
        self.profiles.append(profile)
        self.user_agents.append(user_agent)
        yield self.fake_session


class FakeClassifier:
    def __init__(self, tier):
        self.tier = tier

    def classify(self, url):
        return self.tier


def make_dispatcher(http=None, browser=None, **kwargs):
    return Dispatcher(
        http or FakeHttp({}),
        browser or FakeBrowser(),
        extractor=FakeExtractor(),
        sleep=lambda *_: None,
        log_func=lambda *_: None,
        **kwargs,
    )


def test_social_media_only_target_is_skipped():
    http = FakeHttp({})
    dispatcher = make_dispatcher(http=http)
    result = dispatcher.scrape(make_target(urls=("https://www.instagram.com/basementbar",)))
    assert result.reason == "social_media_only"
    assert http.fetched == []


def test_lightweight_first_uses_http_when_it_finds_events():
    browser = FakeBrowser()
    dispatcher = make_dispatcher(http=FakeHttp({"https://shelter.example/schedule/": LISTING}), browser=browser)
    result = dispatcher.scrape(make_target())
    assert len(result.events) == 1
    assert result.strategy == "lightweight_first"
    assert browser.profiles == []


def test_lightweight_first_reports_social_redirect():
    page = "<p>Please check the latest information on our Instagram!</p>"
    browser = FakeBrowser()
    dispatcher = make_dispatcher(http=FakeHttp({"https://shelter.example/schedule/": page}), browser=browser)
    result = dispatcher.scrape(make_target())
    assert result.events == []
    assert result.reason == "social_redirect"
    assert browser.profiles == []


def test_lightweight_first_falls_back_to_browser():
    session = FakeSession({"https://shelter.example/schedule/": LISTING})
    dispatcher = make_dispatcher(browser=FakeBrowser(session))
    result = dispatcher.scrape(make_target())
    assert result.strategy == "lightweight_first>browser"
    assert len(result.events) == 1
    assert result.pages == 2


def test_lightweight_first_raises_most_telling_error_when_nothing_loads():
    url = "https://shelter.example/schedule/"
    http = FakeHttp({url: FetchTimeout("slow", url=url)})
    session = FakeSession({url: FetchBlocked("HTTP 403", url=url, status=403)})
    dispatcher = make_dispatcher(http=http, browser=FakeBrowser(session))
    with pytest.raises(FetchBlocked):
        dispatcher.scrape(make_target())


def test_auto_detect_uses_classifier():
    browser = FakeBrowser(FakeSession({"https://shelter.example/schedule/": LISTING}))
    dispatcher = make_dispatcher(browser=browser, classifier=FakeClassifier(ComplexityTier.COMPLEX))
    result = dispatcher.scrape(make_target(strategy=Strategy.AUTO_DETECT))
    assert result.strategy == "browser_only"
    assert browser.profiles == ["optimized"]


def test_special_handling_replaces_strategy():
    http = FakeHttp({})
    dispatcher = make_dispatcher(http=http)
    result = dispatcher.scrape(make_target(special=SpecialHandling.SOCIAL_REDIRECT))
    assert result.reason == "social_redirect"
    assert http.fetched == []


def test_protection_bypass_uncleared_challenge_is_blocked():
    session = FakeSession({"https://shelter.example/schedule/": LISTING}, cleared=False)
    browser = FakeBrowser(session)
    dispatcher = make_dispatcher(browser=browser)
    with pytest.raises(FetchBlocked):
        dispatcher.scrape(make_target(strategy=Strategy.PROTECTION_BYPASS))
    assert browser.profiles == ["stealth"]


def test_blocked_http_retries_through_protected_session():
    http = ChallengedHttp({"https://shelter.example/schedule/": LISTING})
    browser = FakeBrowser()
    result = make_dispatcher(http=http, browser=browser).scrape(make_target())
    assert len(result.events) == 1
    assert result.strategy == "lightweight_first"
    assert [call.get("protected", False) for call in http.calls] == [False, True]
    assert browser.profiles == []


def test_rate_limited_http_is_not_retried():
    url = "https://shelter.example/schedule/"
    http = FakeHttp({url: FetchBlocked("HTTP 429", url=url, status=429)})
    session = FakeSession({url: LISTING})
    result = make_dispatcher(http=http, browser=FakeBrowser(session)).scrape(make_target())
    assert result.strategy == "lightweight_first>browser"
    assert len(http.calls) == 1


def test_protection_bypass_tries_protected_http_before_browser():
    http = ChallengedHttp({"https://shelter.example/schedule/": LISTING})
    browser = FakeBrowser()
    result = make_dispatcher(http=http, browser=browser).scrape(make_target(strategy=Strategy.PROTECTION_BYPASS))
    assert len(result.events) == 1
    assert result.strategy == "protection_bypass"
    assert http.calls == [{"protected": True, "user_agent": None}]
    assert browser.profiles == []


def test_each_target_gets_the_next_user_agent():
    agents = iter(["agent-a", "agent-b"])
    http = FakeHttp({"https://shelter.example/schedule/": LISTING})
    browser = FakeBrowser()
    dispatcher = make_dispatcher(http=http, browser=browser, user_agents=lambda: next(agents))

    dispatcher.scrape(make_target())
    dispatcher.scrape(make_target(strategy=Strategy.BROWSER_ONLY))
    assert http.calls == [{"user_agent": "agent-a"}]
    assert browser.user_agents == ["agent-b"]


def test_monthly_bypass_adds_candidate_urls():
    session = FakeSession({"https://den-atsu.example/schedule/": LISTING})
    dispatcher = make_dispatcher(browser=FakeBrowser(session))
    target = make_target(special=SpecialHandling.MONTHLY_COVERAGE_WITH_BYPASS, urls=("https://den-atsu.example",))
    result = dispatcher.scrape(target)
    assert len(result.events) == 1
    assert "https://den-atsu.example/schedulelist/" in session.visited
    assert len(session.visited) == 1 + 4 + 2


def test_deadline_exhausted_raises_target_timeout():
    dispatcher = make_dispatcher(clock=lambda: 100.0)
    with pytest.raises(TargetTimeout):
        dispatcher.scrape(make_target(), deadline=50.0)


def test_image_schedule_without_ocr():
    dispatcher = make_dispatcher()
    result = dispatcher.scrape(make_target(name="MITSUKI"))
    assert result.reason == "ocr unavailable"


def test_monthly_urls_cover_current_and_next_months():
    dispatcher = make_dispatcher()
    urls = dispatcher._monthly_urls(make_target(urls=("https://a.example/x/", "https://a.example/y/")))
    assert len(urls) == 3 * 8


def test_helpers():
    assert site_base("https://shelter.example/schedule/2025/") == "https://shelter.example"
    assert worst_error([FetchTimeout("t"), FetchBlocked("b"), FetchHttpError("h")]).kind == "blocked"
    assert has_social_redirect("<p>Follow us on Instagram</p>")
    assert not has_social_redirect("<p>Follow us on Instagram</p>", venue_name="MITSUKI")
