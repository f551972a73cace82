import json
import re
import threading
import uuid
from datetime import datetime, timedelta

from gigscraper import config


def trim_log_by_time(log_path, retention_days=14):
    """
    Remove log entries older than retention_days.
    Returns list of lines to keep.
    """
    if not log_path.exists():
        return []

    cutoff = datetime.utcnow() - timedelta(days=retention_days)
    cutoff_str = cutoff.strftime("%Y-%m-%d %H:%M:%S")

    kept_lines = []
    current_entry_recent = False

    with open(log_path, "r", encoding="utf-8") as f:
        for line in f:
            match = re.match(r"\[(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})\]", line)
            if match:
                current_entry_recent = match.group(1) >= cutoff_str

            if current_entry_recent:
                kept_lines.append(line)

    return kept_lines


class RunLog:
    """
    Log a message to both console and log buffer. Callable, so it can be
    passed anywhere a log_func is accepted; safe to call from worker threads.
    """

    def __init__(self, echo=True):
        self.lines = []
        self.echo = echo
        self._lock = threading.Lock()

    def __call__(self, message, level="INFO"):
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")
        log_entry = f"[{timestamp}] [{level}] {message}"
        with self._lock:
            if self.echo:
                print(message)
            self.lines.append(log_entry)

    def error(self, message):
        self(message, "ERROR")

    def warning(self, message):
        self(message, "WARNING")


def write_log(run_log, log_path=None, retention_days=None):
    """Rewrite the log file: retained history, a separator, then this run."""
    log_path = log_path or config.LOG_PATH
    retention_days = retention_days or config.LOG_RETENTION_DAYS
    existing_log = trim_log_by_time(log_path, retention_days=retention_days)
    log_content = existing_log + ["\n--- New Run ---\n"] + [line + "\n" for line in run_log.lines]

    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "w", encoding="utf-8") as f:
        f.writelines(log_content)
    return log_path


def _now_iso():
    return datetime.utcnow().isoformat() + "Z"


def start_session(session_store, mode, user_agent, targets_planned):
    """Record the start of a run in the session log. Returns the session id."""
    session_id = uuid.uuid4().hex[:12]

    def mutate(data):
        data.update({
            "session_id": session_id,
            "started_at": _now_iso(),
            "mode": mode,
            "user_agent": user_agent,
            "rate_limit": {
                "delay_between_targets": config.DELAY_BETWEEN_TARGETS,
                "delay_between_requests": config.DELAY_BETWEEN_REQUESTS,
                "daily_limit": config.DAILY_TARGET_LIMIT,
            },
            "venues_planned": targets_planned,
            "venues_completed": 0,
            "errors_encountered": 0,
            "completed_at": None,
            "duration_minutes": None,
            "result": "running",
        })

    session_store.update(mutate)
    return session_id


def update_session(session_store, completed=None, errors=None):
    def mutate(data):
        if completed is not None:
            data["venues_completed"] = completed
        if errors is not None:
            data["errors_encountered"] = errors

    session_store.update(mutate)


def finish_session(session_store, summary):
    """Close the session entry with the run's outcome; remembers the last result for backup runs."""
    def mutate(data):
        data["venues_completed"] = summary.targets_processed
        data["errors_encountered"] = len(summary.failures)
        data["completed_at"] = _now_iso()
        data["duration_minutes"] = round(summary.duration_seconds / 60, 2)
        data["result"] = "hard_failure" if summary.hard_failure else (
            "partial" if summary.partial_failure else "success"
        )
        data["last_result"] = {
            "mode": summary.mode,
            "date": datetime.utcnow().date().isoformat(),
            "result": data["result"],
            "total_events": summary.total_events,
        }

    session_store.update(mutate)


def succeeded_today(session_store, today=None):
    """True when the session log shows a successful run earlier today."""
    last = session_store.get("last_result") or {}
    today = today or datetime.utcnow().date()
    return last.get("date") == today.isoformat() and last.get("result") == "success"


def load_existing_status(status_path=None):
    """Load existing status file to preserve historical data."""
    status_path = status_path or config.STATUS_PATH
    try:
        if status_path.exists():
            with open(status_path, "r", encoding="utf-8") as f:
                return json.load(f)
    except Exception:
        pass
    return {"venues": {}}


def target_status(result, run_timestamp, existing_status):
    """Status entry for one target; keeps the last successful scrape from earlier runs."""
    status = {
        "last_run": run_timestamp,
        "success": result.success,
        "event_count": result.saved,
        "error": result.error,
    }
    if result.failure:
        status["failure"] = result.failure
    if result.reason:
        status["reason"] = result.reason
    if result.trace:
        status["error_trace"] = result.trace

    existing_venue = existing_status.get("venues", {}).get(result.name, {})
    if existing_venue.get("last_success"):
        status["last_success"] = existing_venue["last_success"]
        status["last_success_count"] = existing_venue.get("last_success_count", 0)
    if result.success:
        status["last_success"] = run_timestamp
        status["last_success_count"] = result.saved
    return status


def save_status(summary, run_timestamp, status_path=None):
    status_path = status_path or config.STATUS_PATH
    existing_status = load_existing_status(status_path)
    venues = dict(existing_status.get("venues", {}))
    for result in summary.results:
        venues[result.name] = target_status(result, run_timestamp, existing_status)

    status_data = {
        "last_run": run_timestamp,
        "mode": summary.mode,
        "all_success": not summary.partial_failure and not summary.hard_failure,
        "any_success": summary.successes > 0,
        "total_events": summary.total_events,
        "saved_events": summary.saved_events,
        "venues": venues,
    }
    status_path.parent.mkdir(parents=True, exist_ok=True)
    with open(status_path, "w", encoding="utf-8") as f:
        json.dump(status_data, f, indent=2, ensure_ascii=False)
    return status_path


def save_results(summary, results_dir=None):
    """Write the run summary to <results_dir>/<mode>-results.json."""
    results_dir = results_dir or config.RESULTS_DIR
    results_dir.mkdir(parents=True, exist_ok=True)
    path = results_dir / f"{summary.mode}-results.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(summary.to_dict(), f, indent=2, ensure_ascii=False, default=str)
    return path
