"""
Throttling for reconciliation passes and outbound requests.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class SyncThrottleState:
    """Tracks when reconciliation last ran."""

    last_attempt: Optional[float] = None
    attempts: int = 0
    skipped: int = 0


class SyncThrottle:
    """Suppresses reconciliation passes closer together than a minimum interval.

    The state object is owned by whoever creates the throttle and can be
    injected, so tests can reset it or pre-date the last attempt.
    """

    def __init__(
        self,
        min_interval_seconds: float = 300,
        state: Optional[SyncThrottleState] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.min_interval = min_interval_seconds
        self.state = state if state is not None else SyncThrottleState()
        self.clock = clock
        self.lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Record an attempt and return True, or return False if too soon."""
        with self.lock:
            now = self.clock()
            if self.state.last_attempt is not None and now - self.state.last_attempt < self.min_interval:
                self.state.skipped += 1
                return False
            self.state.last_attempt = now
            self.state.attempts += 1
            return True

    def seconds_until_allowed(self) -> float:
        with self.lock:
            if self.state.last_attempt is None:
                return 0.0
            remaining = self.min_interval - (self.clock() - self.state.last_attempt)
            return max(0.0, remaining)

    def reset(self):
        """Forget the last attempt (for testing/admin)."""
        with self.lock:
            self.state.last_attempt = None
            self.state.attempts = 0
            self.state.skipped = 0

    def get_state(self) -> SyncThrottleState:
        with self.lock:
            return SyncThrottleState(
                last_attempt=self.state.last_attempt, attempts=self.state.attempts, skipped=self.state.skipped
            )


class RequestSpacer:
    """Keeps a minimum gap between consecutive outbound requests."""

    def __init__(
        self,
        min_interval_ms: int = 100,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval_ms / 1000.0
        self.clock = clock
        self.sleep = sleep
        self.lock = threading.Lock()
        self.last_request = None

    def wait(self) -> float:
        """Block until the next request may go out. Returns the time slept."""
        with self.lock:
            now = self.clock()
            delay = 0.0
            if self.last_request is not None:
                delay = self.min_interval - (now - self.last_request)
            if delay > 0:
                self.sleep(delay)
                now = self.clock()
            self.last_request = now
            return max(delay, 0.0)
