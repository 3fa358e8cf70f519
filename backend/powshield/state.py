"""
Process-wide protocol state.

Everything that outlives a request (store, ledger, signing secret) lives on one
`Shield` object created in the application lifespan and injected into routes.
"""

import threading
import time
from dataclasses import dataclass, field

import structlog
from fastapi import Request

from powshield.config import Settings
from powshield.services.pow_service import ChallengeIssuer, ProofOfWorkVerifier
from powshield.services.risk_service import RiskScorer
from powshield.services.token_service import TokenAuthority
from powshield.services.trust_ledger import TrustLedger
from powshield.services.ttl_store import TTLStore, build_store

logger = structlog.get_logger()


@dataclass
class Shield:
    settings: Settings
    store: TTLStore
    ledger: TrustLedger
    scorer: RiskScorer
    authority: TokenAuthority
    issuer: ChallengeIssuer
    verifier: ProofOfWorkVerifier
    _last_sweep: float = 0.0
    _sweep_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def sweep(self, now: float | None = None) -> tuple[int, int]:
        """Scavenge expired store entries and fully decayed identities."""
        now = time.time() if now is None else now
        with self._sweep_lock:
            self._last_sweep = now
        expired = self.store.sweep(now)
        evicted = self.ledger.sweep(now)
        return expired, evicted

    def maybe_sweep(self, now: float) -> None:
        """Sweep if the last one is stale. Never waits on a sweep already running."""
        if now - self._last_sweep < self.settings.sweep_interval_seconds:
            return
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            if now - self._last_sweep < self.settings.sweep_interval_seconds:
                return
            self._last_sweep = now
        finally:
            self._sweep_lock.release()
        self.store.sweep(now)
        self.ledger.sweep(now)


def build_shield(settings: Settings, store: TTLStore | None = None) -> Shield:
    """Create the protocol state for one process."""
    store = store or build_store(settings)
    ledger = TrustLedger.from_settings(settings)
    scorer = RiskScorer.from_settings(settings)
    authority = TokenAuthority.from_settings(settings)
    shield = Shield(
        settings=settings,
        store=store,
        ledger=ledger,
        scorer=scorer,
        authority=authority,
        issuer=ChallengeIssuer(settings, store, ledger, scorer, authority),
        verifier=ProofOfWorkVerifier(settings, store, ledger),
        _last_sweep=time.time(),
    )
    logger.info(
        "shield_initialized",
        secret_version=authority.version,
        seeded_secret=settings.signing_secret is not None,
    )
    return shield


def get_shield(request: Request) -> Shield:
    """Dependency for FastAPI endpoints to get the process-wide protocol state."""
    return request.app.state.shield
