"""
Per-identity suspicion state with time-based decay.

Mutations of a single identity's state are serialized through `hold()`;
different identities never contend beyond the brief map lookup.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from powshield.config import Settings
from powshield.models.trust_state import TrustState

logger = structlog.get_logger()

# Scores below this are treated as fully decayed for eviction
EVICTION_EPSILON = 1e-3


class TrustLedger:
    def __init__(
        self,
        decay_window: float = 600.0,
        decay_floor: float = 0.5,
        activity_window: float = 10.0,
    ):
        if decay_window <= 0:
            raise ValueError("decay_window must be positive")
        self.decay_window = decay_window
        self.decay_floor = decay_floor
        self.activity_window = activity_window
        self._states: dict[str, TrustState] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrustLedger":
        return cls(
            decay_window=settings.trust_decay_window_seconds,
            decay_floor=settings.trust_decay_floor,
            activity_window=settings.burst_window_seconds,
        )

    def get_or_create(self, identity: str, now: float) -> TrustState:
        with self._lock:
            state = self._states.get(identity)
            if state is None:
                state = TrustState(score=0.0, last_seen=now)
                self._states[identity] = state
            return state

    @contextmanager
    def hold(self, identity: str, now: float) -> Iterator[TrustState]:
        """Yield the identity's state with its lock held."""
        while True:
            state = self.get_or_create(identity, now)
            state.lock.acquire()
            # A sweep may have evicted the state between lookup and lock
            with self._lock:
                current = self._states.get(identity)
            if current is state:
                break
            state.lock.release()
        try:
            yield state
        finally:
            state.lock.release()

    def decay(self, state: TrustState, now: float) -> float:
        """Scale the score down for the time elapsed since it was last decayed."""
        elapsed = max(0.0, now - state.last_seen)
        multiplier = max(self.decay_floor, 1 - elapsed / self.decay_window)
        state.score = max(0.0, state.score * min(1.0, multiplier))
        state.last_seen = max(state.last_seen, now)
        return state.score

    def record_activity(self, state: TrustState, now: float) -> int:
        """Append a request timestamp and prune the sliding window. Returns window size."""
        window = state.recent_requests
        window.append(now)
        cutoff = now - self.activity_window
        while window and window[0] <= cutoff:
            window.popleft()
        return len(window)

    def discount(self, state: TrustState, factor: float) -> float:
        """Forgive part of the standing suspicion after a costly, successful solve."""
        state.score *= min(1.0, max(0.0, factor))
        return state.score

    def sweep(self, now: float) -> int:
        """
        Decay identities idle for a full decay window and drop those whose
        suspicion has reached zero. Returns count removed.

        The map lock is held only to snapshot and to delete, so lookups from
        other requests proceed during the scan. States currently held by a
        request are skipped until the next sweep.
        """
        with self._lock:
            candidates = list(self._states.items())

        removed = 0
        for identity, state in candidates:
            if not state.lock.acquire(blocking=False):
                continue
            try:
                if now - state.last_seen < self.decay_window:
                    continue
                self.decay(state, now)
                stale_window = not state.recent_requests or (
                    state.recent_requests[-1] <= now - self.activity_window
                )
                if state.score < EVICTION_EPSILON and stale_window:
                    with self._lock:
                        # The identity may have been replaced since the snapshot
                        if self._states.get(identity) is state:
                            del self._states[identity]
                            removed += 1
            finally:
                state.lock.release()
        if removed:
            logger.debug("trust_ledger_swept", removed=removed)
        return removed

    def __contains__(self, identity: str) -> bool:
        with self._lock:
            return identity in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
