import copy
import json
import os
import threading
from contextlib import contextmanager
from pathlib import Path

from gigscraper import config


class CacheStore:
    """
    One persisted JSON document, read through once and shared by all workers.

    Reads and read-modify-write updates are guarded by a lock; every flush writes
    a temp file and replaces the target so a crash never leaves half a document.
    Missing or corrupt files load as the default value.
    """

    def __init__(self, path, default_factory=dict, log_func=None):
        self.path = Path(path)
        self.default_factory = default_factory
        self.log = log_func or print
        self._lock = threading.RLock()
        self._data = None
        self._deferred = 0

    def _load(self):
        data = self.default_factory()
        try:
            if self.path.exists():
                with open(self.path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if isinstance(loaded, type(data)):
                    data = loaded
                else:
                    self.log(f"  Warning: ignoring malformed cache {self.path.name}")
        except Exception as e:
            self.log(f"  Warning: Could not load {self.path.name}: {e}")
            data = self.default_factory()
        return data

    @property
    def data(self):
        with self._lock:
            if self._data is None:
                self._data = self._load()
            return self._data

    def get(self, key, default=None):
        with self._lock:
            return copy.deepcopy(self.data.get(key, default))

    def snapshot(self):
        with self._lock:
            return copy.deepcopy(self.data)

    def set(self, key, value):
        with self._lock:
            self.data[key] = value
            self._flush_unless_deferred()

    def delete(self, key):
        with self._lock:
            if key in self.data:
                del self.data[key]
                self.flush()

    def update(self, mutate):
        """Apply ``mutate(data)`` under the lock, then flush unless deferred. Returns its result."""
        with self._lock:
            result = mutate(self.data)
            self._flush_unless_deferred()
            return result

    @contextmanager
    def deferred(self):
        """Hold set/update flushes until the outermost deferred block exits, then write once."""
        with self._lock:
            self._deferred += 1
        try:
            yield self
        finally:
            with self._lock:
                self._deferred -= 1
                if not self._deferred:
                    self.flush()

    def _flush_unless_deferred(self):
        if not self._deferred:
            self.flush()

    def replace(self, data):
        with self._lock:
            self._data = data
            self.flush()

    def flush(self):
        with self._lock:
            if self._data is None:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_path, self.path)

    def __len__(self):
        with self._lock:
            return len(self.data)


def _empty_blacklist():
    return {"timeout_venues": [], "dead_venues": [], "no_content_venues": []}


class RunState:
    """
    The persisted caches of one run, constructed once and passed to every worker.
    """

    def __init__(self, cache_dir=None, log_func=None):
        cache_dir = Path(cache_dir) if cache_dir else config.CACHE_DIR
        self.cache_dir = cache_dir
        self.complexity = CacheStore(cache_dir / config.COMPLEXITY_CACHE_PATH.name, dict, log_func)
        self.blacklist = CacheStore(cache_dir / config.BLACKLIST_PATH.name, _empty_blacklist, log_func)
        self.rate_limits = CacheStore(cache_dir / config.RATE_LIMIT_PATH.name, dict, log_func)
        self.ocr_preferences = CacheStore(cache_dir / config.OCR_PREFERENCES_PATH.name, dict, log_func)
        self.session = CacheStore(cache_dir / config.SESSION_LOG_PATH.name, dict, log_func)
        self.genres = CacheStore(cache_dir / config.SPOTIFY_GENRE_CACHE_PATH.name, dict, log_func)

    def stores(self):
        return [
            self.complexity,
            self.blacklist,
            self.rate_limits,
            self.ocr_preferences,
            self.session,
            self.genres,
        ]

    def sizes(self):
        return {store.path.stem: len(store) for store in self.stores()}

    def flush(self):
        for store in self.stores():
            store.flush()
