import json
from datetime import date

from freezegun import freeze_time

from gigscraper.models import RunSummary, TargetResult
from gigscraper.pipeline import io
from gigscraper.pipeline.metrics import TargetMetrics, summary_table
from gigscraper.pipeline.store import CacheStore


@freeze_time("2025-06-01 12:00:00")
def test_run_log_formats_entries():
    log = io.RunLog(echo=False)
    log("Starting proven scrape run")
    log.error("Shelter failed")
    assert log.lines == [
        "[2025-06-01 12:00:00] [INFO] Starting proven scrape run",
        "[2025-06-01 12:00:00] [ERROR] Shelter failed",
    ]


@freeze_time("2025-06-01 12:00:00")
def test_write_log_trims_old_entries(tmp_path):
    log_path = tmp_path / "scrape-log.txt"
    log_path.write_text(
        "[2025-05-01 10:00:00] [INFO] old run\n"
        "[2025-05-30 10:00:00] [INFO] recent run\n"
        "  continuation of recent entry\n"
    )
    log = io.RunLog(echo=False)
    log("this run")
    io.write_log(log, log_path=log_path, retention_days=14)

    content = log_path.read_text()
    assert "old run" not in content
    assert "recent run\n  continuation of recent entry" in content
    assert content.index("--- New Run ---") < content.index("this run")


def test_save_status_preserves_last_success(tmp_path):
    status_path = tmp_path / "scrape-status.json"
    status_path.write_text(json.dumps({"venues": {
        "Shelter": {"last_success": "2025-05-01T00:00:00Z", "last_success_count": 4},
    }}))
    summary = RunSummary(mode="proven", results=[
        TargetResult(name="Shelter", failure="timeout", error="Timeout fetching"),
        TargetResult(name="Loft", success=True, saved=3),
    ])
    summary.failures.append({"name": "Shelter", "failure": "timeout", "error": "Timeout fetching"})
    summary.successes = 1

    io.save_status(summary, "2025-06-01T12:00:00Z", status_path=status_path)
    status = json.loads(status_path.read_text())

    assert status["all_success"] is False
    assert status["any_success"] is True
    shelter = status["venues"]["Shelter"]
    assert shelter["last_success"] == "2025-05-01T00:00:00Z"
    assert shelter["last_success_count"] == 4
    assert shelter["failure"] == "timeout"
    assert status["venues"]["Loft"]["last_success"] == "2025-06-01T12:00:00Z"
    assert status["venues"]["Loft"]["last_success_count"] == 3


def test_save_results_named_by_mode(tmp_path):
    path = io.save_results(RunSummary(mode="weekly"), results_dir=tmp_path)
    assert path.name == "weekly-results.json"
    assert json.loads(path.read_text())["mode"] == "weekly"


@freeze_time("2025-06-01 12:00:00")
def test_session_lifecycle(tmp_path):
    store = CacheStore(tmp_path / "session.json")
    session_id = io.start_session(store, "backup", "agent/1.0", 10)
    assert len(session_id) == 12
    assert store.get("result") == "running"

    io.update_session(store, completed=4, errors=1)
    assert store.get("venues_completed") == 4

    summary = RunSummary(mode="backup", targets_processed=10, total_events=25)
    io.finish_session(store, summary)
    assert store.get("result") == "success"
    assert store.get("last_result") == {
        "mode": "backup", "date": "2025-06-01", "result": "success", "total_events": 25,
    }
    assert io.succeeded_today(store)
    assert not io.succeeded_today(store, today=date(2025, 6, 2))


def test_partial_session_is_not_success(tmp_path):
    store = CacheStore(tmp_path / "session.json")
    summary = RunSummary(mode="backup", failures=[{"name": "Shelter", "failure": "timeout", "error": None}])
    io.finish_session(store, summary)
    assert store.get("result") == "partial"
    assert not io.succeeded_today(store)


def test_summary_table():
    metrics = [
        TargetMetrics.from_result(TargetResult(name="Shelter", valid_count=3, duration_ms=1200)),
        TargetMetrics.from_result(TargetResult(name="Antiknock", failure="blocked", error="HTTP 403")),
    ]
    lines = summary_table(metrics)
    assert lines[2] == "VENUE SUMMARY"
    assert lines[6].startswith("Antiknock")
    assert lines[7].startswith("Shelter")
    assert lines[-2].startswith("TOTAL")
    assert metrics[1].error_messages == ["HTTP 403"]
