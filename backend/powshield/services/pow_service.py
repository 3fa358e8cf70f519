import hashlib
import math
import secrets

from powshield.config import Settings
from powshield.errors import ChallengeError, ProofOfWorkError, ReplayError
from powshield.models.challenge import ChallengeRecord, challenge_key, used_nonce_key
from powshield.services.risk_service import RiskScorer, RiskSignals
from powshield.services.token_service import TokenAuthority
from powshield.services.trust_ledger import TrustLedger
from powshield.services.ttl_store import TTLStore


def pow_digest(identity: str, nonce: str, counter: int) -> str:
    """Hex SHA-256 over identity || nonce || decimal counter."""
    return hashlib.sha256(f"{identity}{nonce}{counter}".encode()).hexdigest()


def meets_difficulty(digest: str, difficulty: int) -> bool:
    """True if the hex digest starts with `difficulty` zero digits."""
    return digest.startswith("0" * difficulty)


def solve(identity: str, nonce: str, difficulty: int, max_iterations: int = 50_000_000) -> int:
    """
    Brute-force a counter for a challenge.

    This is the client's half of the protocol; the server never calls it.
    """
    prefix = "0" * difficulty
    for counter in range(max_iterations):
        if pow_digest(identity, nonce, counter).startswith(prefix):
            return counter
    raise RuntimeError("Failed to solve PoW within iteration limit")


def difficulty_for_score(score: float, base: int, cap: int) -> int:
    """Base difficulty plus one digit per whole point of suspicion, at most `cap` extra."""
    return base + max(0, min(cap, math.floor(score)))


class ChallengeIssuer:
    def __init__(
        self,
        settings: Settings,
        store: TTLStore,
        ledger: TrustLedger,
        scorer: RiskScorer,
        authority: TokenAuthority,
    ):
        self.settings = settings
        self.store = store
        self.ledger = ledger
        self.scorer = scorer
        self.authority = authority

    def current_difficulty(self, score: float) -> int:
        return difficulty_for_score(
            score, self.settings.pow_base_difficulty, self.settings.pow_difficulty_cap
        )

    def issue(
        self,
        identity: str,
        now: float,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> ChallengeRecord:
        """Generate a challenge whose difficulty tracks the identity's current suspicion."""
        with self.ledger.hold(identity, now) as state:
            self.ledger.decay(state, now)
            self.ledger.record_activity(state, now)
            # Challenge requests carry no telemetry; only UA and burst count here
            score = self.scorer.compute_risk(
                RiskSignals(user_agent=user_agent), state, expect_telemetry=False
            )
            difficulty = self.current_difficulty(score)

        challenge = ChallengeRecord(
            nonce=secrets.token_hex(16),
            identity=identity,
            client_ip=client_ip if self.settings.bind_to_client_ip else None,
            issued_at=now,
            difficulty=difficulty,
            secret_version=self.authority.version,
        )

        # Kept past its own TTL so late submissions report EXPIRED rather than unknown
        retention = max(self.settings.challenge_ttl_seconds, self.settings.nonce_ttl_seconds)
        self.store.put(challenge.store_key, challenge.model_dump_json(), retention)

        return challenge


class ProofOfWorkVerifier:
    def __init__(self, settings: Settings, store: TTLStore, ledger: TrustLedger):
        self.settings = settings
        self.store = store
        self.ledger = ledger

    def verify(
        self,
        identity: str,
        nonce: str,
        counter: int,
        provided_hash: str,
        now: float,
        client_ip: str | None = None,
    ) -> ChallengeRecord:
        """
        Verify a proof-of-work solution and consume its challenge.

        Returns the consumed challenge, raises ChallengeError, ProofOfWorkError
        or ReplayError with the rejection code otherwise.
        """
        # Replays are rejected before anything else is looked at or mutated
        if self.store.exists(used_nonce_key(nonce)):
            raise ReplayError()

        raw = self.store.get(challenge_key(nonce))
        if raw is None:
            raise ChallengeError("INVALID_CHALLENGE")

        challenge = ChallengeRecord.model_validate_json(raw)
        if challenge.identity != identity:
            raise ChallengeError("INVALID_CHALLENGE")
        if challenge.client_ip is not None and challenge.client_ip != client_ip:
            raise ChallengeError("INVALID_CHALLENGE")

        if now - challenge.issued_at > self.settings.challenge_ttl_seconds:
            self.store.delete(challenge.store_key)
            raise ChallengeError("EXPIRED")

        expected = pow_digest(identity, nonce, counter)
        if provided_hash.lower() != expected:
            raise ProofOfWorkError("INVALID_POW")

        # Difficulty is re-derived from the score as it stands now, not at issue time
        with self.ledger.hold(identity, now) as state:
            score = self.ledger.decay(state, now)
        difficulty = difficulty_for_score(
            score, self.settings.pow_base_difficulty, self.settings.pow_difficulty_cap
        )
        if not meets_difficulty(expected, difficulty):
            raise ProofOfWorkError("DIFFICULTY_FAIL")

        if not self.store.put_if_absent(
            used_nonce_key(nonce), str(now), self.settings.nonce_ttl_seconds
        ):
            raise ReplayError()

        self.store.delete(challenge.store_key)
        return challenge
