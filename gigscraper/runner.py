"""
Run modes and the wiring that builds one run's services.

    weekly  - every candidate target, with robots.txt checks, respectful delays
              and the daily target limit; backs off when rate limited and
              stops when a site blocks us
    backup  - a handful of proven targets, skipped if today's run already succeeded
    test    - the first few proven targets with verbose logging
    proven  - every proven target in parallel
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime

from gigscraper import config
from gigscraper.classifier import ComplexityClassifier
from gigscraper.confidence import ConfidenceEngine
from gigscraper.dispatch import Dispatcher
from gigscraper.errors import ConfigurationError
from gigscraper.extraction.dom import DomExtractor
from gigscraper.fetchers.browser import BrowserFetcher
from gigscraper.fetchers.http import HttpFetcher
from gigscraper.genres import GenreResolver
from gigscraper.models import RunSummary
from gigscraper.ocr.chain import OcrChain
from gigscraper.ocr.pdf import PdfScheduleReader
from gigscraper.orchestrator import Orchestrator, health_check
from gigscraper.pipeline import io
from gigscraper.pipeline.metrics import TargetMetrics, log_summary_table
from gigscraper.pipeline.persistence import JsonPersistence
from gigscraper.pipeline.r2 import download_caches, upload_to_r2
from gigscraper.pipeline.store import RunState
from gigscraper.registry import get_targets, proven_names
from gigscraper.resilience.blacklist import Blacklist, FailureTracker
from gigscraper.resilience.circuit import CircuitBreaker
from gigscraper.resilience.memory import MemoryMonitor
from gigscraper.resilience.rate_limit import AdaptiveRateLimiter
from gigscraper.resilience.responsible import ResponsiblePolicy, classify_result
from gigscraper.spotify import SpotifyGenreClient

MODES = ("weekly", "backup", "test", "proven")


@dataclass
class Services:
    state: RunState
    http: HttpFetcher
    dispatcher: Dispatcher
    persistence: object
    confidence: ConfidenceEngine
    circuit: CircuitBreaker
    blacklist: Blacklist
    failures: FailureTracker
    rate_limiter: AdaptiveRateLimiter
    memory: MemoryMonitor
    responsible: ResponsiblePolicy
    genre_lookup: GenreResolver
    ocr_chain: OcrChain = None

    def close(self):
        if self.ocr_chain is not None:
            self.ocr_chain.close()
        self.state.flush()


def build_services(state, log_func=None, verbose=False, driver_factory=None, ocr_engines=None,
                   http_session=None, persistence=None, sleep=time.sleep):
    """Wire up one run. Everything that touches the network or a browser can be swapped for tests."""
    log = log_func or print
    exempt = proven_names()

    rate_limiter = AdaptiveRateLimiter(state.rate_limits, sleep=sleep)
    http = HttpFetcher(
        session=http_session,
        on_response_time=rate_limiter.record,
        sleep=sleep,
        log_func=log,
        verbose=verbose,
    )
    browser = BrowserFetcher(
        driver_factory=driver_factory,
        sleep=sleep,
        on_response_time=rate_limiter.record,
        log_func=log,
    )
    responsible = ResponsiblePolicy(state.session, http_session=http_session, sleep=sleep, log_func=log)
    ocr_chain = OcrChain(state.ocr_preferences, engines=ocr_engines, log_func=log)
    dispatcher = Dispatcher(
        http,
        browser,
        classifier=ComplexityClassifier(http, state.complexity, log_func=log),
        extractor=DomExtractor(),
        ocr_chain=ocr_chain,
        pdf_reader=PdfScheduleReader(ocr_chain, log_func=log),
        user_agents=responsible.next_user_agent,
        sleep=sleep,
        log_func=log,
        verbose=verbose,
    )

    persistence = persistence if persistence is not None else JsonPersistence(log_func=log)
    spotify = SpotifyGenreClient(state.genres, session=http_session, log_func=log)
    genre_lookup = GenreResolver(spotify if spotify.enabled else None)

    return Services(
        state=state,
        http=http,
        dispatcher=dispatcher,
        persistence=persistence,
        confidence=ConfidenceEngine(history=persistence, genre_lookup=genre_lookup),
        circuit=CircuitBreaker(exempt=exempt),
        blacklist=Blacklist(state.blacklist, exempt=exempt, log_func=log),
        failures=FailureTracker(state.blacklist, exempt=exempt),
        rate_limiter=rate_limiter,
        memory=MemoryMonitor(log_func=log),
        responsible=responsible,
        genre_lookup=genre_lookup,
        ocr_chain=ocr_chain,
    )


def mode_target_limit(mode, max_targets=None):
    if max_targets:
        return max_targets
    if mode == "backup":
        return config.BACKUP_MAX_TARGETS
    if mode == "test":
        return config.TEST_MAX_TARGETS
    if mode == "weekly":
        return config.WEEKLY_TARGET_LIMIT
    return config.MAX_TARGETS


def weekly_hooks(services, orchestrator, log):
    """before/after callbacks that make a weekly run polite."""
    responsible = services.responsible
    lock = threading.Lock()
    outcomes = {}

    def before(target):
        if responsible.daily_remaining() <= 0:
            return "daily_limit_reached"
        robots = responsible.check_robots(target.url)
        if robots == "discouraged":
            return "robots_discouraged"
        if not target.proven and not services.http.is_accessible(target.url):
            return "unreachable"
        responsible.respectful_delay(minimum=responsible.requested_delay(target.url))
        responsible.record_processed()
        return None

    def after(target, result):
        bucket = classify_result(result)
        if bucket == "blocked":
            log(f"  {target.name} blocked us, stopping weekly run", "ERROR")
            services.blacklist.add(target.name, "blocked during weekly run")
            orchestrator.stop()
        elif bucket == "rate_limited":
            log(f"  {target.name} is rate limiting us, backing off", "WARNING")
            responsible.rate_limited_backoff()
        elif bucket:
            responsible.respectful_delay(after_error=True)

        with lock:
            outcomes[target.name] = bool(bucket)
            io.update_session(services.state.session, completed=len(outcomes), errors=sum(outcomes.values()))

    return before, after


def run(mode="proven", max_targets=None, max_duration_hours=None, workers=None, verbose=False,
        run_log=None, targets=None, services_factory=build_services, use_r2=None):
    """One complete run. Returns the RunSummary; never raises for per-target problems."""
    if mode not in MODES:
        raise ValueError(f"Unknown mode {mode!r}; expected one of {', '.join(MODES)}")
    verbose = verbose or mode == "test"
    log = run_log or io.RunLog()
    run_timestamp = datetime.utcnow().isoformat() + "Z"
    log(f"Starting {mode} scrape run at {run_timestamp}")

    use_r2 = config.USE_R2 if use_r2 is None else use_r2
    if use_r2:
        download_caches(log_func=log)

    state = RunState(log_func=log)
    if mode == "backup" and io.succeeded_today(state.session):
        log("Backup run skipped: today's run already succeeded")
        summary = RunSummary(mode=mode)
        _finish(summary, log, run_timestamp, services=None, use_r2=False)
        return summary

    try:
        if targets is None:
            targets = get_targets(mode, mode_target_limit(mode, max_targets), log_func=log)
        elif max_targets:
            targets = list(targets)[:max_targets]
    except ConfigurationError as e:
        log(f"Configuration error: {e}", "ERROR")
        summary = RunSummary(mode=mode, hard_failure=str(e))
        _finish(summary, log, run_timestamp, services=None, use_r2=False)
        return summary

    services = services_factory(state, log_func=log, verbose=verbose)
    if mode == "weekly":
        remaining = services.responsible.daily_remaining()
        if remaining < len(targets):
            log(f"Daily limit: {remaining} targets left today")
            targets = targets[:remaining]

    orchestrator = Orchestrator(
        services.dispatcher,
        services.persistence,
        services.confidence,
        services.circuit,
        services.blacklist,
        services.failures,
        rate_limiter=services.rate_limiter,
        memory=services.memory,
        genre_lookup=services.genre_lookup,
        workers=workers,
        max_duration_hours=max_duration_hours,
        log_func=log,
        verbose=verbose,
    )
    if mode == "weekly":
        orchestrator.before_target, orchestrator.after_target = weekly_hooks(services, orchestrator, log)

    log(f"Planned {len(targets)} targets with {orchestrator.workers} workers")
    io.start_session(state.session, mode, services.responsible.next_user_agent(), len(targets))
    try:
        summary = orchestrator.run(targets, mode=mode)
    finally:
        services.close()

    io.finish_session(state.session, summary)
    _finish(summary, log, run_timestamp, services=services, use_r2=use_r2)
    return summary


def _finish(summary, log, run_timestamp, services=None, use_r2=False):
    """Summary table, health report, status, results and the log file."""
    if summary.results:
        log_summary_table([TargetMetrics.from_result(r) for r in summary.results if not r.skipped_run], log)
    log(f"\nTotal valid events: {summary.total_events} ({summary.saved_events} newly saved)")
    if summary.skipped:
        log(f"Skipped {len(summary.skipped)} targets")
    if summary.failures:
        failed = ", ".join(f["name"] for f in summary.failures)
        log(f"WARNING: Failed to scrape: {failed}", "ERROR")

    if services is not None:
        report = health_check(services.state, services.circuit, services.memory, services.blacklist)
        memory = report["memory"]
        log(
            f"Health: memory {memory['start_mb']}MB -> {memory['current_mb']}MB "
            f"(peak {memory['peak_mb']}MB, +{memory['increase_mb']}MB), "
            f"{len(report['circuits'])} circuits tracked, {report['blacklisted']} blacklisted"
        )
        log(f"Cache sizes: {report['caches']}")

    log(f"Status saved to {io.save_status(summary, run_timestamp)}")
    log(f"Results saved to {io.save_results(summary)}")
    log(f"Log saved to {io.write_log(log)}")

    if use_r2:
        upload_to_r2(log_func=log)
