import time

from gigscraper import config

DEFAULT_AVERAGE = 1.0


class AdaptiveRateLimiter:
    """
    Per-target delay that follows the site's observed response time.

    The smoothed average is avg = old * 0.7 + latest * 0.3 and the delay is
    floor + avg / 2, capped at the ceiling. History is persisted across runs.
    """

    def __init__(self, store=None, floor=None, ceiling=None, smoothing=None, sleep=time.sleep):
        self.store = store
        self.floor = floor if floor is not None else config.RATE_LIMIT_FLOOR
        self.ceiling = ceiling if ceiling is not None else config.RATE_LIMIT_CEILING
        self.smoothing = smoothing if smoothing is not None else config.RATE_LIMIT_SMOOTHING
        self.sleep = sleep
        self._memory = {}

    def average(self, name):
        if self.store is not None:
            entry = self.store.get(name) or {}
            return entry.get("avg_response_time", DEFAULT_AVERAGE)
        return self._memory.get(name, DEFAULT_AVERAGE)

    def record(self, name, seconds):
        """Fold one observed response time (seconds) into the target's average."""
        def mutate(data):
            entry = data.get(name) or {}
            old = entry.get("avg_response_time", DEFAULT_AVERAGE)
            avg = old * (1 - self.smoothing) + seconds * self.smoothing
            data[name] = {
                "avg_response_time": round(avg, 4),
                "samples": entry.get("samples", 0) + 1,
                "last_response_time": round(seconds, 4),
            }
            return avg

        if self.store is not None:
            return self.store.update(mutate)
        old = self._memory.get(name, DEFAULT_AVERAGE)
        avg = old * (1 - self.smoothing) + seconds * self.smoothing
        self._memory[name] = avg
        return avg

    def delay_for(self, name):
        delay = self.floor + self.average(name) * 0.5
        return max(self.floor, min(delay, self.ceiling))

    def wait(self, name):
        delay = self.delay_for(name)
        self.sleep(delay)
        return delay
