import gc
import threading

import psutil

from gigscraper import config


def current_rss_mb(process=None):
    process = process or psutil.Process()
    return process.memory_info().rss / (1024 * 1024)


class MemoryMonitor:
    """Forces a garbage collection when resident memory passes the threshold."""

    def __init__(self, threshold_mb=None, process=None, log_func=None):
        self.threshold_mb = threshold_mb if threshold_mb is not None else config.MEMORY_THRESHOLD_MB
        self.process = process or psutil.Process()
        self.log = log_func or print
        self.start_mb = current_rss_mb(self.process)
        self.peak_mb = self.start_mb
        self.collections = 0
        self._lock = threading.Lock()

    def check(self):
        """Record current usage; collect if above the threshold. Never blocks on other workers."""
        usage = current_rss_mb(self.process)
        with self._lock:
            self.peak_mb = max(self.peak_mb, usage)
        if usage > self.threshold_mb:
            gc.collect()
            with self._lock:
                self.collections += 1
            self.log(f"  Memory at {usage:.0f}MB (threshold {self.threshold_mb}MB), forced gc")
        return usage

    def report(self):
        current = current_rss_mb(self.process)
        with self._lock:
            self.peak_mb = max(self.peak_mb, current)
            return {
                "start_mb": round(self.start_mb, 1),
                "current_mb": round(current, 1),
                "peak_mb": round(self.peak_mb, 1),
                "increase_mb": round(current - self.start_mb, 1),
                "forced_collections": self.collections,
            }
