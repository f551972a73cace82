"""
Runs the per-target pipeline over many targets with a bounded worker pool:

    resilience check -> dispatch (fetch + extract) -> validity filter
        -> confidence -> persistence

One worker owns one target from start to finish. Every per-target exception is
caught here and turned into a TargetResult; nothing a single target does can
abort the run.
"""

import sys
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed

try:
    from tqdm import tqdm  # type: ignore
except ImportError:  # Optional; progress bar only
    tqdm = None

from gigscraper import config
from gigscraper.errors import ParseFailure, ScrapeError, TargetTimeout
from gigscraper.models import RunSummary, TargetResult
from gigscraper.pipeline.persistence import save_events
from gigscraper.pipeline.validate import filter_valid_events

SKIP_REASONS = ("social_media_only", "social_redirect")
FAILURE_CATEGORIES = {"timeout": "timeout", "blocked": "blocked"}
RETRYABLE_FAILURES = ("timeout", "network")


def failure_category(kind):
    """Circuit/blacklist bucket for a failure kind: timeout, blocked or error."""
    return FAILURE_CATEGORIES.get(kind, "error")


class Orchestrator:
    def __init__(self, dispatcher, persistence, confidence, circuit, blacklist, failures,
                 rate_limiter=None, memory=None, genre_lookup=None, workers=None,
                 max_duration_hours=None, target_timeout=None, before_target=None, after_target=None,
                 clock=time.monotonic, log_func=None, verbose=False, progress=True):
        """
        before_target: optional callable(target) -> skip reason or None, run in
            the worker before any fetch (robots.txt, daily limits, delays).
        after_target: optional callable(target, result) run after each processed target.
        """
        self.dispatcher = dispatcher
        self.persistence = persistence
        self.confidence = confidence
        self.circuit = circuit
        self.blacklist = blacklist
        self.failures = failures
        self.rate_limiter = rate_limiter
        self.memory = memory
        self.genre_lookup = genre_lookup
        self.workers = max(1, workers or config.MAX_WORKERS)
        hours = config.MAX_DURATION_HOURS if max_duration_hours is None else max_duration_hours
        self.max_duration_seconds = hours * 3600
        self.target_timeout = target_timeout or config.TARGET_TIMEOUT_SECONDS
        self.before_target = before_target
        self.after_target = after_target
        self.clock = clock
        self.log = log_func or print
        self.verbose = verbose
        self.progress = progress
        self.db_semaphore = threading.BoundedSemaphore(config.DB_CONCURRENCY)
        self._stop = threading.Event()
        self._run_deadline = None

    def stop(self):
        """Stop scheduling targets; in-flight targets finish."""
        self._stop.set()

    def _deadline_passed(self):
        return self._run_deadline is not None and self.clock() > self._run_deadline

    def _check(self, deadline):
        if self.clock() > deadline:
            raise TargetTimeout("Per-target time budget exhausted")

    def run(self, targets, mode="proven"):
        started = self.clock()
        self._run_deadline = started + self.max_duration_seconds
        self._stop.clear()
        summary = RunSummary(mode=mode, targets_planned=len(targets))

        progress = None
        if tqdm and self.progress and targets:
            progress = tqdm(
                total=len(targets),
                desc="Venues",
                unit="venue",
                file=sys.stdout,
                disable=not sys.stdout.isatty(),
            )

        results = self._run_pool(targets, progress)
        if progress:
            progress.close()

        retry = [i for i, result in enumerate(results) if self._worth_retrying(targets[i], result)]
        if retry:
            self.log(f"Retrying {len(retry)} targets after transient failures")
            retried = self._run_pool([targets[i] for i in retry])
            for i, result in zip(retry, retried):
                if not result.skipped_run:
                    results[i] = result

        for result in results:
            self._collect(summary, result)
        summary.results.sort(key=lambda r: r.name)
        summary.duration_seconds = self.clock() - started
        return summary

    def _run_pool(self, targets, progress=None):
        """Results in target order."""
        results = [None] * len(targets)
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {pool.submit(self.process_target, target): i for i, target in enumerate(targets)}
            for future in as_completed(futures):
                i = futures[future]
                try:
                    results[i] = future.result()
                except Exception as e:
                    # process_target converts everything; this is a bug in the worker itself
                    results[i] = TargetResult(name=targets[i].name, failure="error", error=str(e),
                                              trace=traceback.format_exc())
                if progress:
                    progress.update(1)
        return results

    def _worth_retrying(self, target, result):
        """One more pass for a timeout or network failure on a target that has not failed often."""
        if result.failure not in RETRYABLE_FAILURES or self._stop.is_set() or self._deadline_passed():
            return False
        if self.blacklist.is_blacklisted(target.name) or self.circuit.is_open(target.name):
            return False
        return self.failures.should_retry(target.name)

    def _collect(self, summary, result):
        summary.results.append(result)
        if result.skipped_run:
            summary.skipped.append({"name": result.name, "reason": result.reason})
            return
        summary.targets_processed += 1
        summary.total_events += result.valid_count
        summary.saved_events += result.saved
        if result.success:
            summary.successes += 1
        if result.failure:
            summary.failures.append({"name": result.name, "failure": result.failure, "error": result.error})

    def _skip(self, target, reason):
        if self.verbose:
            self.log(f"  Skipping {target.name}: {reason}")
        return TargetResult(name=target.name, reason=reason, skipped_run=True)

    def process_target(self, target):
        """Full pipeline for one target. Never raises."""
        if self._stop.is_set() or self._deadline_passed():
            return self._skip(target, "run_deadline_reached")
        if self.blacklist.is_blacklisted(target.name):
            return self._skip(target, f"blacklisted ({self.blacklist.category_of(target.name)})")
        if not self.circuit.allow(target.name):
            return self._skip(target, "circuit_open")
        if self.before_target is not None:
            reason = self.before_target(target)
            if reason:
                return self._skip(target, reason)
        if self.rate_limiter is not None:
            self.rate_limiter.wait(target.name)

        self.log(f"Scraping {target.name}...")
        started = self.clock()
        deadline = started + self.target_timeout
        result = TargetResult(name=target.name)
        try:
            self._run_pipeline(target, deadline, result)
            result.success = True
            self.circuit.record_success(target.name)
            self.failures.clear(target.name)
            self.log(f"  {target.name}: {result.valid_count} events, {result.saved} saved")
        except ScrapeError as e:
            self._record_failure(target, result, e.kind, str(e))
        except Exception as e:
            result.trace = traceback.format_exc()
            self._record_failure(target, result, "error", str(e))
            self.log(f"  Traceback:\n{result.trace}")
        finally:
            result.duration_ms = (self.clock() - started) * 1000
            if self.memory is not None:
                self.memory.check()
        if self.after_target is not None:
            self.after_target(target, result)
        return result

    def _run_pipeline(self, target, deadline, result):
        dispatch = self.dispatcher.scrape(target, deadline)
        result.strategy = dispatch.strategy
        result.reason = dispatch.reason
        result.raw_count = len(dispatch.events)
        if dispatch.reason in SKIP_REASONS:
            result.skipped_run = dispatch.reason == "social_media_only"
            return

        self._check(deadline)
        valid = filter_valid_events(dispatch.events, log_func=self.log, verbose=self.verbose)
        result.valid_count = len(valid)
        if not dispatch.events:
            raise ParseFailure(dispatch.reason or "no events found")
        if not valid:
            raise ParseFailure("no valid events")

        self._check(deadline)
        assessed = [(event, self.confidence.assess(event, target)) for event in valid]
        result.events = [event for event, assessment in assessed if assessment.persistable]

        with self.db_semaphore:
            saved, skipped, rejected = save_events(
                self.persistence,
                assessed,
                target=target,
                genre_lookup=self.genre_lookup,
                log_func=self.log,
                verbose=self.verbose,
            )
        result.saved, result.skipped, result.rejected = saved, skipped, rejected

    def _record_failure(self, target, result, kind, message):
        result.failure = kind
        result.error = message
        if kind == "parse":
            result.reason = result.reason or message
            self.failures.record(target.name, "no_gigs")
            self.log(f"  {target.name}: {message}")
        else:
            category = failure_category(kind)
            self.circuit.record_failure(target.name, category)
            self.failures.record(target.name, category)
            self.log(f"  ERROR: Failed to scrape {target.name}: {message}")

        reason = self.failures.blacklist_reason(target.name)
        if reason:
            self.blacklist.add(target.name, reason)


def health_check(state, circuit, memory=None, blacklist=None):
    """Snapshot of run health: memory, tracked circuits, cache sizes."""
    report = {
        "circuits": circuit.tracked(),
        "caches": state.sizes(),
    }
    if memory is not None:
        report["memory"] = memory.report()
    if blacklist is not None:
        report["blacklisted"] = len(blacklist)
    return report
