"""Process-local health records for backend servers.

One :class:`HealthRecord` per server name, created lazily on first
reference and kept for the process lifetime (the server count is small and
fixed, so there is no eviction). All reads and writes go through a single
lock so that circuit transitions are never lost to a race.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from failover_sentinel.balancer.health.circuit_breaker import (
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_RESET_SECONDS,
    CircuitState,
)
from failover_sentinel.constants import DEFAULT_DOWN_TTL_SECONDS, LATENCY_WINDOW

logger = logging.getLogger(__name__)


@dataclass
class HealthRecord:
    """Mutable health record for one backend server."""

    consecutive_failures: int = 0
    last_failure_at: float = 0.0
    avg_response_time_ms: float = 0.0
    sample_count: int = 0
    circuit: CircuitState = CircuitState.CLOSED
    down_until: Optional[float] = None
    trial_in_flight: bool = False

    @property
    def circuit_open(self) -> bool:
        return self.circuit is CircuitState.OPEN

    def to_dict(self) -> dict:
        return {
            "consecutive_failures": self.consecutive_failures,
            "last_failure_at": self.last_failure_at,
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
            "sample_count": self.sample_count,
            "circuit": self.circuit.value,
            "down_until": self.down_until,
            "trial_in_flight": self.trial_in_flight,
        }


class HealthStore:
    """Thread-safe registry of :class:`HealthRecord` objects.

    Parameters
    ----------
    failure_threshold:
        Consecutive failures before a circuit opens.
    reset_seconds:
        Seconds an open circuit waits (since the last failure) before the
        next availability check moves it to half-open.
    down_ttl:
        Lifetime in seconds of a :meth:`mark_down` entry.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_seconds: float = DEFAULT_RESET_SECONDS,
        down_ttl: float = DEFAULT_DOWN_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self.down_ttl = down_ttl
        self._clock = clock
        self._records: Dict[str, HealthRecord] = {}
        self._lock = threading.Lock()

    # ── Reads ────────────────────────────────────────────────────────────

    def _record(self, name: str) -> HealthRecord:
        # Caller holds the lock.
        record = self._records.get(name)
        if record is None:
            record = HealthRecord()
            self._records[name] = record
        return record

    def get(self, name: str) -> HealthRecord:
        """Return a snapshot of the record for *name* (created if absent)."""
        with self._lock:
            return dataclasses.replace(self._record(name))

    def snapshot(self) -> Dict[str, HealthRecord]:
        """Return copies of all records known so far."""
        with self._lock:
            return {name: dataclasses.replace(rec) for name, rec in self._records.items()}

    def peek(self, name: str) -> HealthRecord:
        """Read-only view of *name* for reporting.

        The returned copy shows the circuit and down-cache state as the
        next request would see them, but nothing in the store changes:
        no record is created, no transition happens and no down entry
        expires.
        """
        with self._lock:
            stored = self._records.get(name)
            record = dataclasses.replace(stored) if stored is not None else HealthRecord()
            now = self._clock()
        if (
            record.circuit is CircuitState.OPEN
            and now - record.last_failure_at >= self.reset_seconds
        ):
            record.circuit = CircuitState.HALF_OPEN
            record.consecutive_failures = self.failure_threshold - 1
            record.trial_in_flight = False
        if record.down_until is not None and now >= record.down_until:
            record.down_until = None
        return record

    # ── Outcome reporting ────────────────────────────────────────────────

    def record_success(self, name: str, latency_ms: float) -> None:
        """Fold *latency_ms* into the rolling average and close the circuit."""
        with self._lock:
            record = self._record(name)
            record.sample_count += 1
            record.avg_response_time_ms += (latency_ms - record.avg_response_time_ms) / min(
                record.sample_count, LATENCY_WINDOW
            )
            prev = record.circuit
            record.consecutive_failures = 0
            record.circuit = CircuitState.CLOSED
            record.trial_in_flight = False
        if prev is not CircuitState.CLOSED:
            logger.info("[%s] Circuit breaker: %s → CLOSED (success)", name, prev.value)

    def record_failure(self, name: str) -> None:
        """Count a failure; may trip the breaker."""
        with self._lock:
            record = self._record(name)
            record.consecutive_failures += 1
            record.last_failure_at = self._clock()
            record.trial_in_flight = False
            prev = record.circuit
            if record.consecutive_failures >= self.failure_threshold:
                record.circuit = CircuitState.OPEN
            failures = record.consecutive_failures
        if prev is not CircuitState.OPEN and failures >= self.failure_threshold:
            logger.warning(
                "[%s] Circuit breaker: %s → OPEN (%d consecutive failures)",
                name,
                prev.value,
                failures,
            )

    # ── Circuit state ────────────────────────────────────────────────────

    def _refresh_circuit(self, name: str, record: HealthRecord) -> CircuitState:
        # Caller holds the lock.
        if record.circuit is CircuitState.OPEN:
            elapsed = self._clock() - record.last_failure_at
            if elapsed >= self.reset_seconds:
                record.circuit = CircuitState.HALF_OPEN
                # One more failure reopens the circuit; one success resets it.
                record.consecutive_failures = self.failure_threshold - 1
                record.trial_in_flight = False
                logger.info(
                    "[%s] Circuit breaker: OPEN → HALF_OPEN (%.1fs since last failure)",
                    name,
                    elapsed,
                )
        return record.circuit

    def circuit_state(self, name: str) -> CircuitState:
        """Current circuit state, with automatic OPEN → HALF_OPEN transition."""
        with self._lock:
            return self._refresh_circuit(name, self._record(name))

    def is_available(self, name: str) -> bool:
        """Whether *name* belongs in the primary eligible set.

        CLOSED is available; HALF_OPEN is available while no trial is in
        flight; OPEN is not.
        """
        with self._lock:
            record = self._record(name)
            state = self._refresh_circuit(name, record)
            if state is CircuitState.CLOSED:
                return True
            if state is CircuitState.HALF_OPEN:
                return not record.trial_in_flight
            return False

    def try_acquire(self, name: str) -> bool:
        """Claim the right to send a request to *name* now.

        Only a half-open circuit restricts this: the first caller gets the
        single trial slot and later callers are refused until the trial
        resolves through :meth:`record_success` / :meth:`record_failure`
        or is given back with :meth:`release`.
        """
        with self._lock:
            record = self._record(name)
            if self._refresh_circuit(name, record) is not CircuitState.HALF_OPEN:
                return True
            if record.trial_in_flight:
                return False
            record.trial_in_flight = True
            return True

    def release(self, name: str) -> None:
        """Give back an unresolved half-open trial slot (e.g. on cancellation)."""
        with self._lock:
            record = self._records.get(name)
            if record is not None:
                record.trial_in_flight = False

    # ── Down cache ───────────────────────────────────────────────────────

    def mark_down(self, name: str) -> None:
        """Skip *name* for ``down_ttl`` seconds (fast-failover cache)."""
        with self._lock:
            self._record(name).down_until = self._clock() + self.down_ttl
        logger.debug("[%s] Marked down for %.0fs", name, self.down_ttl)

    def mark_up(self, name: str) -> None:
        with self._lock:
            self._record(name).down_until = None

    def is_marked_down(self, name: str) -> bool:
        """True while a :meth:`mark_down` entry is unexpired (lazy expiry)."""
        with self._lock:
            record = self._record(name)
            if record.down_until is None:
                return False
            if self._clock() >= record.down_until:
                record.down_until = None
                return False
            return True
