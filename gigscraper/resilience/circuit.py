import threading
import time
from dataclasses import dataclass, field

from gigscraper import config

FAILURE_CATEGORIES = ("timeout", "error", "blocked")


@dataclass
class CircuitState:
    failures: dict = field(default_factory=lambda: {category: 0 for category in FAILURE_CATEGORIES})
    last_failure: float = None
    opened_at: float = None
    half_open: bool = False

    @property
    def open(self):
        return self.opened_at is not None


class CircuitBreaker:
    """
    Per-target circuit. Opens when failures in one category reach that
    category's threshold; after the cooldown the next call is let through
    (half-open) and a success closes it again. Exempt targets never open.
    """

    def __init__(self, exempt=(), thresholds=None, cooldown=None, clock=time.time):
        self.exempt = set(exempt)
        self.thresholds = thresholds or {
            "timeout": config.CIRCUIT_TIMEOUT_THRESHOLD,
            "error": config.CIRCUIT_ERROR_THRESHOLD,
            "blocked": config.CIRCUIT_BLOCKED_THRESHOLD,
        }
        self.cooldown = cooldown if cooldown is not None else config.CIRCUIT_COOLDOWN_SECONDS
        self.clock = clock
        self._states = {}
        self._lock = threading.Lock()

    def state(self, name):
        with self._lock:
            return self._states.setdefault(name, CircuitState())

    def allow(self, name):
        """False while the circuit is open and cooling down."""
        if name in self.exempt:
            return True
        with self._lock:
            state = self._states.get(name)
            if state is None or not state.open:
                return True
            if self.clock() - state.opened_at >= self.cooldown:
                # Half-open: one attempt goes through, a failure reopens it
                state.opened_at = None
                state.half_open = True
                return True
            return False

    def is_open(self, name):
        if name in self.exempt:
            return False
        with self._lock:
            state = self._states.get(name)
            return bool(state and state.open)

    def record_success(self, name):
        with self._lock:
            self._states[name] = CircuitState()

    def record_failure(self, name, category="error"):
        if category not in FAILURE_CATEGORIES:
            category = "error"
        with self._lock:
            state = self._states.setdefault(name, CircuitState())
            state.failures[category] += 1
            state.last_failure = self.clock()
            if name in self.exempt:
                return state
            if state.half_open or any(state.failures[c] >= self.thresholds[c] for c in FAILURE_CATEGORIES):
                if state.opened_at is None:
                    state.opened_at = state.last_failure
                state.half_open = False
            return state

    def tracked(self):
        with self._lock:
            return {
                name: {"failures": dict(state.failures), "open": state.open}
                for name, state in self._states.items()
            }
