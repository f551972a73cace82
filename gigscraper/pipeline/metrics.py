from dataclasses import dataclass, field


@dataclass
class TargetMetrics:
    """Track scraping metrics for each target."""
    name: str
    event_count: int = 0
    saved_events: int = 0
    errors: int = 0
    error_messages: list = field(default_factory=list)
    duration_ms: float = 0.0

    @classmethod
    def from_result(cls, result):
        metrics = cls(
            name=result.name,
            event_count=result.valid_count,
            saved_events=result.saved,
            duration_ms=result.duration_ms,
        )
        if result.failure:
            metrics.errors = 1
            metrics.error_messages.append(result.error or result.failure)
        return metrics


def summary_table(metrics_list):
    """Lines of the per-target summary table, sorted by name."""
    lines = [
        "",
        "=" * 60,
        "VENUE SUMMARY",
        "=" * 60,
        f"{'Venue':<24} {'Events':>7} {'Errors':>7} {'Time':>10}",
        "-" * 60,
    ]
    for m in sorted(metrics_list, key=lambda m: m.name):
        time_str = f"{m.duration_ms:.0f}ms"
        lines.append(f"{m.name[:24]:<24} {m.event_count:>7} {m.errors:>7} {time_str:>10}")
    lines.append("-" * 60)
    total_events = sum(m.event_count for m in metrics_list)
    total_errors = sum(m.errors for m in metrics_list)
    total_time = sum(m.duration_ms for m in metrics_list)
    lines.append(f"{'TOTAL':<24} {total_events:>7} {total_errors:>7} {total_time:.0f}ms")
    lines.append("=" * 60)
    return lines


def log_summary_table(metrics_list, log_func=None):
    log = log_func or print
    for line in summary_table(metrics_list):
        log(line)
