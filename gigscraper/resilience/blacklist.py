import threading
from datetime import datetime

from gigscraper import config

SET_KEYS = {
    "timeout": "timeout_venues",
    "dead": "dead_venues",
    "no_content": "no_content_venues",
}


def blacklist_category(reason):
    """Map a free-text reason to one of the three blacklist sets."""
    lowered = (reason or "").lower()
    if "timeout" in lowered:
        return "timeout"
    if "no gigs" in lowered or "no content" in lowered or "no valid" in lowered:
        return "no_content"
    return "dead"


class Blacklist:
    """
    Three disjoint, persisted sets of target names. Exempt (proven) targets are
    never added, and an exempt name already on disk is treated as not listed.
    """

    def __init__(self, store, exempt=(), log_func=None):
        self.store = store
        self.exempt = set(exempt)
        self.log = log_func or print

    def category_of(self, name):
        data = self.store.snapshot()
        for category, key in SET_KEYS.items():
            if name in data.get(key, []):
                return category
        return None

    def is_blacklisted(self, name):
        if name in self.exempt:
            return False
        return self.category_of(name) is not None

    def add(self, name, reason):
        if name in self.exempt:
            return False
        category = blacklist_category(reason)

        def mutate(data):
            for key in SET_KEYS.values():
                members = data.setdefault(key, [])
                if name in members:
                    members.remove(name)
            data[SET_KEYS[category]].append(name)
            data.setdefault("reasons", {})[name] = {
                "reason": reason,
                "category": category,
                "added_at": datetime.utcnow().isoformat() + "Z",
            }

        self.store.update(mutate)
        self.log(f"  Blacklisted {name} ({category}): {reason}")
        return True

    def members(self):
        data = self.store.snapshot()
        return {category: sorted(data.get(key, [])) for category, key in SET_KEYS.items()}

    def __len__(self):
        return sum(len(names) for names in self.members().values())


def _empty_counts():
    return {"timeout": 0, "error": 0, "blocked": 0, "no_gigs": 0}


class FailureTracker:
    """
    Failure counts per target, used to decide blacklisting. With a store the
    counts accumulate across runs (kept under "failures" in the blacklist file);
    a success clears them.
    """

    def __init__(self, store=None, exempt=(), timeout_threshold=None, error_threshold=None,
                 blocked_threshold=None, no_content_threshold=None):
        self.store = store
        self.exempt = set(exempt)
        self.timeout_threshold = timeout_threshold or config.BLACKLIST_TIMEOUT_THRESHOLD
        self.error_threshold = error_threshold or config.BLACKLIST_ERROR_THRESHOLD
        self.blocked_threshold = blocked_threshold or config.BLACKLIST_BLOCKED_THRESHOLD
        self.no_content_threshold = no_content_threshold or config.BLACKLIST_NO_CONTENT_THRESHOLD
        self._counts = {}
        self._lock = threading.Lock()

    def record(self, name, kind):
        """kind is timeout, error, blocked or no_gigs. Returns the updated counts."""
        def bump(counts_by_name):
            counts = counts_by_name.setdefault(name, _empty_counts())
            counts[kind if kind in counts else "error"] += 1
            return dict(counts)

        if self.store is not None:
            return self.store.update(lambda data: bump(data.setdefault("failures", {})))
        with self._lock:
            return bump(self._counts)

    def clear(self, name):
        if self.store is not None:
            self.store.update(lambda data: data.setdefault("failures", {}).pop(name, None))
        else:
            with self._lock:
                self._counts.pop(name, None)

    def counts(self, name):
        if self.store is not None:
            return self.store.get("failures", {}).get(name) or _empty_counts()
        with self._lock:
            return dict(self._counts.get(name) or _empty_counts())

    def blacklist_reason(self, name):
        """Reason text for blacklisting, or None while the target is still within its limits."""
        if name in self.exempt:
            return None
        counts = self.counts(name)
        if counts["timeout"] >= self.timeout_threshold:
            return f"timeout ({counts['timeout']} timeouts)"
        if counts["blocked"] >= self.blocked_threshold:
            return f"blocked ({counts['blocked']} blocks)"
        if counts["error"] >= self.error_threshold:
            return f"errors ({counts['error']} failures)"
        if counts["no_gigs"] >= self.no_content_threshold:
            return f"no content ({counts['no_gigs']} empty runs)"
        return None

    def should_retry(self, name):
        """True for a target with a timeout or error on record, but no more than the retry limit of either."""
        counts = self.counts(name)
        if not counts["timeout"] and not counts["error"]:
            return False
        return counts["timeout"] <= config.RETRY_FAILURE_LIMIT and counts["error"] <= config.RETRY_FAILURE_LIMIT
