import itertools
from datetime import date

from freezegun import freeze_time

from gigscraper.dispatch import DispatchResult
from gigscraper.errors import FetchBlocked, FetchTimeout, ParseFailure
from gigscraper.models import ConfidenceAssessment, ExtractedEvent, ScrapeTarget, VerificationStatus
from gigscraper.orchestrator import Orchestrator, failure_category, health_check
from gigscraper.pipeline.persistence import JsonPersistence
from gigscraper.pipeline.store import CacheStore, RunState
from gigscraper.resilience.blacklist import Blacklist, FailureTracker
from gigscraper.resilience.circuit import CircuitBreaker


def quiet(*_):
    pass


def target(name):
    return ScrapeTarget(name=name, urls=(f"https://{name.lower()}.example/schedule/",))


def gig(venue, title="Summer Night Session"):
    return ExtractedEvent(
        title=title,
        date=date(2025, 6, 14),
        venue=venue,
        source_url=f"https://{venue.lower()}.example/schedule/",
        extraction_strategy="selector",
        performers=("Cornelius",),
    )


class FakeDispatcher:
    """Outcome per target name: a DispatchResult, an exception to raise, or a list of those in call order."""

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.scraped = []

    def scrape(self, target, deadline=None):
        self.scraped.append(target.name)
        outcome = self.outcomes[target.name]
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FixedConfidence:
    def assess(self, event, target):
        return ConfidenceAssessment(scores={}, overall=0.9, status=VerificationStatus.TRUSTED)


def make_orchestrator(tmp_path, dispatcher, circuit=None, failures=None, **kwargs):
    store = CacheStore(tmp_path / "blacklist.json",
                       lambda: {"timeout_venues": [], "dead_venues": [], "no_content_venues": []})
    blacklist = Blacklist(store, log_func=quiet)
    return Orchestrator(
        dispatcher,
        JsonPersistence(tmp_path / "gigs-db.json", log_func=quiet),
        FixedConfidence(),
        circuit or CircuitBreaker(),
        blacklist,
        failures or FailureTracker(store),
        workers=1,
        log_func=quiet,
        progress=False,
        **kwargs,
    )


@freeze_time("2025-06-01")
def test_one_failure_never_aborts_the_run(tmp_path):
    dispatcher = FakeDispatcher({
        "Loft": DispatchResult(events=[gig("Loft")], strategy="lightweight_first"),
        "Shelter": FetchTimeout("Timeout fetching", url="https://shelter.example/schedule/"),
        "Antiknock": RuntimeError("selector exploded"),
    })
    orchestrator = make_orchestrator(tmp_path, dispatcher)
    summary = orchestrator.run([target("Loft"), target("Shelter"), target("Antiknock")])

    assert [r.name for r in summary.results] == ["Antiknock", "Loft", "Shelter"]
    assert summary.successes == 1
    assert summary.saved_events == 1
    assert summary.exit_code() == 1

    antiknock, loft, shelter = summary.results
    assert loft.success and loft.saved == 1
    assert shelter.failure == "timeout"
    assert antiknock.failure == "error"
    assert "RuntimeError: selector exploded" in antiknock.trace


@freeze_time("2025-06-01")
def test_failures_feed_circuit_and_blacklist(tmp_path):
    dispatcher = FakeDispatcher({"Shelter": FetchTimeout("Timeout fetching")})
    circuit = CircuitBreaker(thresholds={"timeout": 1, "error": 3, "blocked": 2})
    orchestrator = make_orchestrator(tmp_path, dispatcher, circuit=circuit,
                                     failures=FailureTracker(timeout_threshold=1))

    orchestrator.run([target("Shelter")])
    assert circuit.is_open("Shelter")
    assert orchestrator.blacklist.category_of("Shelter") == "timeout"

    summary = orchestrator.run([target("Shelter")])
    assert summary.skipped == [{"name": "Shelter", "reason": "blacklisted (timeout)"}]
    assert dispatcher.scraped == ["Shelter"]


@freeze_time("2025-06-01")
def test_transient_failure_gets_one_more_pass(tmp_path):
    dispatcher = FakeDispatcher({
        "Shelter": [FetchTimeout("Timeout fetching"), DispatchResult(events=[gig("Shelter")], strategy="lightweight_first")],
        "Antiknock": FetchBlocked("HTTP 403", status=403),
    })
    summary = make_orchestrator(tmp_path, dispatcher).run([target("Shelter"), target("Antiknock")])

    assert dispatcher.scraped.count("Shelter") == 2
    assert dispatcher.scraped.count("Antiknock") == 1
    antiknock, shelter = summary.results
    assert shelter.success and shelter.saved == 1
    assert antiknock.failure == "blocked"
    assert summary.failures == [{"name": "Antiknock", "failure": "blocked", "error": "HTTP 403"}]


def test_open_circuit_skips_target(tmp_path):
    dispatcher = FakeDispatcher({})
    circuit = CircuitBreaker()
    for _ in range(2):
        circuit.record_failure("Antiknock", "blocked")
    summary = make_orchestrator(tmp_path, dispatcher, circuit=circuit).run([target("Antiknock")])

    assert summary.skipped == [{"name": "Antiknock", "reason": "circuit_open"}]
    assert summary.targets_processed == 0
    assert dispatcher.scraped == []


def test_empty_page_is_a_parse_failure_outside_the_circuit(tmp_path):
    dispatcher = FakeDispatcher({"Loft": DispatchResult(events=[], strategy="lightweight_first")})
    circuit = CircuitBreaker()
    failures = FailureTracker()
    summary = make_orchestrator(tmp_path, dispatcher, circuit=circuit, failures=failures).run([target("Loft")])

    result = summary.results[0]
    assert result.failure == "parse"
    assert result.reason == "no events found"
    assert failures.counts("Loft")["no_gigs"] == 1
    assert circuit.state("Loft").failures == {"timeout": 0, "error": 0, "blocked": 0}


def test_parse_failure_raised_by_dispatch(tmp_path):
    dispatcher = FakeDispatcher({"Loft": ParseFailure("no valid events")})
    failures = FailureTracker()
    summary = make_orchestrator(tmp_path, dispatcher, failures=failures).run([target("Loft")])
    assert summary.results[0].failure == "parse"
    assert failures.counts("Loft")["no_gigs"] == 1


def test_social_outcomes(tmp_path):
    dispatcher = FakeDispatcher({
        "Basement": DispatchResult(strategy="lightweight_first", reason="social_media_only"),
        "MITSUKI": DispatchResult(strategy="lightweight_first", reason="social_redirect"),
    })
    summary = make_orchestrator(tmp_path, dispatcher).run([target("Basement"), target("MITSUKI")])

    assert summary.skipped == [{"name": "Basement", "reason": "social_media_only"}]
    mitsuki = summary.results[1]
    assert mitsuki.success
    assert mitsuki.valid_count == 0
    assert summary.exit_code() == 0


def test_before_target_hook_can_skip(tmp_path):
    dispatcher = FakeDispatcher({})
    orchestrator = make_orchestrator(tmp_path, dispatcher, before_target=lambda t: "robots_discouraged")
    summary = orchestrator.run([target("Loft")])
    assert summary.skipped == [{"name": "Loft", "reason": "robots_discouraged"}]
    assert dispatcher.scraped == []


@freeze_time("2025-06-01")
def test_stop_skips_remaining_targets(tmp_path):
    dispatcher = FakeDispatcher({
        "Antiknock": FetchBlocked("HTTP 403", status=403),
        "Loft": DispatchResult(events=[gig("Loft")]),
    })
    orchestrator = make_orchestrator(tmp_path, dispatcher)
    orchestrator.after_target = lambda t, result: orchestrator.stop() if result.failure == "blocked" else None

    summary = orchestrator.run([target("Antiknock"), target("Loft")])
    assert dispatcher.scraped == ["Antiknock"]
    assert summary.skipped == [{"name": "Loft", "reason": "run_deadline_reached"}]


def test_run_deadline_skips_targets(tmp_path):
    ticks = itertools.count()
    dispatcher = FakeDispatcher({})
    orchestrator = make_orchestrator(tmp_path, dispatcher, max_duration_hours=0, clock=lambda: next(ticks))
    summary = orchestrator.run([target("Loft"), target("Shelter")])
    assert [s["reason"] for s in summary.skipped] == ["run_deadline_reached"] * 2
    assert dispatcher.scraped == []


def test_failure_category():
    assert failure_category("timeout") == "timeout"
    assert failure_category("blocked") == "blocked"
    assert failure_category("network") == "error"
    assert failure_category("http") == "error"


def test_health_check(tmp_path):
    state = RunState(cache_dir=tmp_path, log_func=quiet)
    circuit = CircuitBreaker()
    circuit.record_failure("Loft", "timeout")
    report = health_check(state, circuit, blacklist=Blacklist(state.blacklist, log_func=quiet))
    assert "Loft" in report["circuits"]
    assert report["blacklisted"] == 0
    assert report["caches"]["blacklist"] == 3
