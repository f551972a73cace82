import pytest
import requests
from freezegun import freeze_time

from gigscraper import config
from gigscraper.errors import FetchBlocked, FetchTimeout
from gigscraper.models import TargetResult
from gigscraper.pipeline.store import CacheStore
from gigscraper.resilience.memory import MemoryMonitor
from gigscraper.resilience.responsible import ResponsiblePolicy, classify_error, classify_result

responses = pytest.importorskip("responses")


def make_policy(store=None, slept=None):
    return ResponsiblePolicy(
        store,
        sleep=(slept.append if slept is not None else (lambda *_: None)),
        log_func=lambda *_: None,
    )


@pytest.mark.parametrize(
    "body, status, expected",
    [
        ("User-agent: *\nDisallow: /\n", 200, "discouraged"),
        ("User-agent: *\nCrawl-delay: 10\nAllow: /\n", 200, "delay_requested"),
        ("User-agent: *\nDisallow: /admin/\n", 200, "allowed"),
        ("", 404, "allowed"),
        ("", 500, "unknown"),
    ],
)
def test_check_robots(body, status, expected):
    policy = make_policy()
    with responses.RequestsMock() as rsps:
        rsps.add(rsps.GET, "https://loft.example/robots.txt", body=body, status=status)
        assert policy.check_robots("https://loft.example/schedule/") == expected


def test_robots_unreachable_is_unknown_and_cached():
    policy = make_policy()
    with responses.RequestsMock() as rsps:
        rsps.add(rsps.GET, "https://loft.example/robots.txt", body=requests.exceptions.ConnectionError("down"))
        assert policy.check_robots("https://loft.example/a") == "unknown"
        assert policy.check_robots("https://loft.example/b") == "unknown"
        assert len(rsps.calls) == 1


def test_user_agents_rotate():
    policy = make_policy()
    agents = [policy.next_user_agent() for _ in range(len(config.USER_AGENTS) + 1)]
    assert agents[0] == agents[-1] == config.USER_AGENTS[0]
    assert len(set(agents)) == len(set(config.USER_AGENTS))


def test_respectful_delay_ranges():
    slept = []
    policy = make_policy(slept=slept)
    low, high = config.RANDOM_EXTRA_DELAY
    delay = policy.respectful_delay()
    assert config.DELAY_BETWEEN_TARGETS + low <= delay <= config.DELAY_BETWEEN_TARGETS + high
    error_delay = policy.respectful_delay(after_error=True)
    assert error_delay >= config.DELAY_AFTER_ERRORS + low
    assert slept == [delay, error_delay]


def test_daily_limit_resets_each_day(tmp_path):
    store = CacheStore(tmp_path / "session.json")
    policy = make_policy(store)
    with freeze_time("2025-06-01"):
        policy.record_processed()
        policy.record_processed()
        assert policy.processed_today() == 2
        assert policy.daily_remaining() == config.DAILY_TARGET_LIMIT - 2
    with freeze_time("2025-06-02"):
        assert policy.processed_today() == 0
        policy.record_processed()
    assert store.get("daily_counts") == {"2025-06-02": 1}


@pytest.mark.parametrize(
    "error, bucket",
    [
        (FetchBlocked("HTTP 429", status=429), "rate_limited"),
        (FetchBlocked("HTTP 403", status=403), "blocked"),
        (FetchTimeout("slow"), "timeout"),
        (RuntimeError("Too Many Requests"), "rate_limited"),
        (RuntimeError("connection timed out"), "timeout"),
        (RuntimeError("boom"), "general_error"),
    ],
)
def test_classify_error(error, bucket):
    assert classify_error(error) == bucket


class FakeProcess:
    def __init__(self, *rss_mb):
        self.values = [int(mb * 1024 * 1024) for mb in rss_mb]

    def memory_info(self):
        rss = self.values.pop(0) if len(self.values) > 1 else self.values[0]
        return type("MemInfo", (), {"rss": rss})()


def test_memory_monitor_collects_above_threshold():
    messages = []
    monitor = MemoryMonitor(threshold_mb=100, process=FakeProcess(50, 80, 150, 60), log_func=messages.append)
    monitor.check()
    monitor.check()
    report = monitor.report()
    assert report["start_mb"] == 50
    assert report["peak_mb"] == 150
    assert report["current_mb"] == 60
    assert report["increase_mb"] == 10
    assert report["forced_collections"] == 1
    assert len(messages) == 1


def test_crawl_delay_is_remembered_and_capped(monkeypatch):
    monkeypatch.setattr(config, "MAX_CRAWL_DELAY_SECONDS", 20.0)
    policy = make_policy()
    with responses.RequestsMock() as rsps:
        rsps.add(rsps.GET, "https://loft.example/robots.txt", body="User-agent: *\nCrawl-delay: 45\n")
        rsps.add(rsps.GET, "https://shelter.example/robots.txt", body="User-agent: *\nAllow: /\n")
        assert policy.check_robots("https://loft.example/schedule/") == "delay_requested"
        assert policy.check_robots("https://shelter.example/") == "allowed"
    assert policy.requested_delay("https://loft.example/other/") == 20.0
    assert policy.requested_delay("https://shelter.example/") == 0.0

    slept = []
    policy.sleep = slept.append
    assert policy.respectful_delay(minimum=policy.requested_delay("https://loft.example/")) == 20.0
    assert slept == [20.0]


@pytest.mark.parametrize(
    "failure, error, bucket",
    [
        (None, None, None),
        ("blocked", "HTTP 429 from https://loft.example/", "rate_limited"),
        ("blocked", "Challenge did not clear at https://loft.example/", "blocked"),
        ("timeout", "Per-target time budget exhausted", "timeout"),
        ("network", "Connection error fetching https://loft.example/: timed out", "timeout"),
        ("parse", "no events found", "general_error"),
    ],
)
def test_classify_result(failure, error, bucket):
    assert classify_result(TargetResult(name="Loft", failure=failure, error=error)) == bucket
