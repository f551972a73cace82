import pytest

from gigscraper.pipeline.store import CacheStore
from gigscraper.resilience.blacklist import Blacklist, FailureTracker, blacklist_category
from gigscraper.resilience.circuit import CircuitBreaker
from gigscraper.resilience.rate_limit import AdaptiveRateLimiter


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def blacklist_store(tmp_path):
    return CacheStore(
        tmp_path / "blacklist.json",
        lambda: {"timeout_venues": [], "dead_venues": [], "no_content_venues": []},
    )


def test_circuit_opens_at_threshold_and_half_opens_after_cooldown():
    clock = Clock()
    circuit = CircuitBreaker(thresholds={"timeout": 3, "error": 3, "blocked": 2}, cooldown=300, clock=clock)

    circuit.record_failure("Fever", "blocked")
    assert circuit.allow("Fever")
    circuit.record_failure("Fever", "blocked")
    assert circuit.is_open("Fever")
    assert not circuit.allow("Fever")

    clock.now += 301
    assert circuit.allow("Fever")
    # the half-open trial request failed, so the circuit reopens
    circuit.record_failure("Fever", "timeout")
    assert not circuit.allow("Fever")


def test_circuit_success_closes():
    clock = Clock()
    circuit = CircuitBreaker(thresholds={"timeout": 1, "error": 1, "blocked": 1}, cooldown=10, clock=clock)
    circuit.record_failure("Loft", "error")
    clock.now += 11
    assert circuit.allow("Loft")
    circuit.record_success("Loft")
    assert not circuit.is_open("Loft")
    assert circuit.tracked()["Loft"] == {"failures": {"timeout": 0, "error": 0, "blocked": 0}, "open": False}


def test_exempt_targets_never_open():
    circuit = CircuitBreaker(exempt={"Shelter"}, thresholds={"timeout": 1, "error": 1, "blocked": 1})
    for _ in range(5):
        circuit.record_failure("Shelter", "timeout")
    assert circuit.allow("Shelter")
    assert not circuit.is_open("Shelter")


def test_unknown_category_counts_as_error():
    circuit = CircuitBreaker()
    state = circuit.record_failure("Basement Bar", "parse")
    assert state.failures["error"] == 1


@pytest.mark.parametrize(
    "reason, category",
    [
        ("timeout (3 timeouts)", "timeout"),
        ("no content (3 empty runs)", "no_content"),
        ("blocked (3 blocks)", "dead"),
    ],
)
def test_blacklist_category(reason, category):
    assert blacklist_category(reason) == category


def test_blacklist_sets_are_disjoint(tmp_path):
    blacklist = Blacklist(blacklist_store(tmp_path), log_func=lambda *_: None)
    blacklist.add("Basement Bar", "timeout (3 timeouts)")
    blacklist.add("Basement Bar", "no content (3 empty runs)")
    assert blacklist.members() == {"timeout": [], "dead": [], "no_content": ["Basement Bar"]}
    assert blacklist.is_blacklisted("Basement Bar")
    assert len(blacklist) == 1


def test_blacklist_never_lists_exempt_targets(tmp_path):
    store = blacklist_store(tmp_path)
    store.replace({"timeout_venues": ["Shelter"], "dead_venues": [], "no_content_venues": []})
    blacklist = Blacklist(store, exempt={"Shelter"}, log_func=lambda *_: None)
    assert not blacklist.add("Shelter", "timeout")
    assert not blacklist.is_blacklisted("Shelter")


def test_failure_tracker_reasons(tmp_path):
    tracker = FailureTracker(blacklist_store(tmp_path))
    for _ in range(2):
        tracker.record("Fever", "timeout")
    assert tracker.blacklist_reason("Fever") is None
    tracker.record("Fever", "timeout")
    assert tracker.blacklist_reason("Fever") == "timeout (3 timeouts)"

    for _ in range(3):
        tracker.record("Quiet Room", "no_gigs")
    assert tracker.blacklist_reason("Quiet Room") == "no content (3 empty runs)"


def test_failure_counts_persist_and_clear(tmp_path):
    tracker = FailureTracker(blacklist_store(tmp_path))
    tracker.record("Fever", "blocked")
    reloaded = FailureTracker(blacklist_store(tmp_path))
    assert reloaded.counts("Fever")["blocked"] == 1
    reloaded.clear("Fever")
    assert reloaded.counts("Fever")["blocked"] == 0


def test_failure_tracker_exempt():
    tracker = FailureTracker(exempt={"Shelter"}, timeout_threshold=1)
    tracker.record("Shelter", "timeout")
    assert tracker.blacklist_reason("Shelter") is None


def test_should_retry_only_recently_failed_targets():
    tracker = FailureTracker()
    assert not tracker.should_retry("Fever")
    tracker.record("Fever", "timeout")
    tracker.record("Fever", "error")
    assert tracker.should_retry("Fever")
    for _ in range(2):
        tracker.record("Fever", "timeout")
    assert not tracker.should_retry("Fever")


def test_rate_limiter_smooths_and_clamps(tmp_path):
    store = CacheStore(tmp_path / "rate.json")
    slept = []
    limiter = AdaptiveRateLimiter(store, floor=1.0, ceiling=10.0, smoothing=0.3, sleep=slept.append)

    assert limiter.delay_for("Loft") == pytest.approx(1.5)
    assert limiter.record("Loft", 4.0) == pytest.approx(1.9)
    assert limiter.delay_for("Loft") == pytest.approx(1.95)
    assert store.get("Loft")["samples"] == 1

    for _ in range(30):
        limiter.record("Loft", 60.0)
    assert limiter.wait("Loft") == 10.0
    assert slept == [10.0]


def test_rate_limiter_in_memory():
    limiter = AdaptiveRateLimiter(floor=2.0, ceiling=5.0, smoothing=0.5)
    limiter.record("Loft", 0.0)
    assert limiter.delay_for("Loft") == pytest.approx(2.25)
