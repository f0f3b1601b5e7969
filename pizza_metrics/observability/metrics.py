from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock

TRACKED_METHODS: tuple[str, ...] = ("GET", "PUT", "POST", "DELETE")


def _zero_counts() -> dict[str, int]:
    return {method: 0 for method in TRACKED_METHODS}


@dataclass
class WindowSnapshot:
    """Everything recorded during one aggregator window.

    ``active_users`` is a copy of the cumulative user map at snapshot time; it
    is not window-scoped.
    """

    request_counts_by_verb: dict[str, int] = field(default_factory=_zero_counts)
    request_latencies: list[float] = field(default_factory=list)
    order_latencies: list[float] = field(default_factory=list)
    order_success_count: int = 0
    order_failure_count: int = 0
    revenue: float = 0.0
    auth_success_count: int = 0
    auth_failure_count: int = 0
    active_users: dict[str, float] = field(default_factory=dict)

    @property
    def active_user_count(self) -> int:
        return len(self.active_users)

    @property
    def request_count(self) -> int:
        return sum(self.request_counts_by_verb.values())


class InMemoryMetrics:
    """Thread-safe, process-local aggregation window (resets on restart).

    Window data can only be read through :meth:`snapshot_and_reset`, which
    copies and clears under one lock so no event lands in two windows.
    """

    def __init__(
        self,
        active_user_ttl_s: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self.active_user_ttl_s = active_user_ttl_s
        self._window = WindowSnapshot()
        self._active_users: dict[str, float] = {}

    def record_request(self, method: str, duration_ms: float) -> None:
        verb = method.upper()
        if verb not in TRACKED_METHODS:
            return
        with self._lock:
            self._window.request_counts_by_verb[verb] += 1
            self._window.request_latencies.append(max(float(duration_ms), 0.0))

    def record_order(self, success: bool, duration_ms: float, revenue_delta: float = 0.0) -> None:
        with self._lock:
            self._window.order_latencies.append(max(float(duration_ms), 0.0))
            if success:
                self._window.order_success_count += 1
                self._window.revenue += max(float(revenue_delta), 0.0)
            else:
                self._window.order_failure_count += 1

    def record_auth(self, success: bool, user_id: str | None = None) -> None:
        with self._lock:
            if not success:
                self._window.auth_failure_count += 1
                return
            self._window.auth_success_count += 1
            if user_id:
                self._active_users[user_id] = self._clock()

    def snapshot_and_reset(self) -> WindowSnapshot:
        with self._lock:
            if self.active_user_ttl_s is not None:
                cutoff = self._clock() - self.active_user_ttl_s
                self._active_users = {u: ts for u, ts in self._active_users.items() if ts >= cutoff}

            snapshot = self._window
            snapshot.active_users = dict(self._active_users)
            self._window = WindowSnapshot()
            return snapshot


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def set_metrics(metrics: InMemoryMetrics | None) -> None:
    global _METRICS
    _METRICS = metrics


def reset_metrics() -> None:
    """Drop the process-wide aggregator, active users included (used by tests)."""

    set_metrics(None)
