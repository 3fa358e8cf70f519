"""
The /verify decision path: proof-of-work, then risk, then grant.

Interaction states: CHALLENGED -> SOLVED_PENDING_RISK -> one of
TOKEN_ISSUED, SHADOW_THROTTLED or DENIED.
"""

from dataclasses import dataclass

import structlog

from powshield.errors import RiskError
from powshield.services.risk_service import Decision, RiskSignals
from powshield.services.token_service import IssuedToken
from powshield.state import Shield

logger = structlog.get_logger()


@dataclass(frozen=True)
class VerificationOutcome:
    decision: Decision
    token: IssuedToken | None = None

    @property
    def shadow_throttled(self) -> bool:
        return self.decision is Decision.SHADOW_THROTTLE


def verify_and_grant(
    shield: Shield,
    identity: str,
    nonce: str,
    counter: int,
    provided_hash: str,
    signals: RiskSignals | None,
    now: float,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> VerificationOutcome:
    """
    Check a solution and decide whether to issue a token.

    Raises ChallengeError, ProofOfWorkError or ReplayError before any trust
    state changes, and RiskError when the score crosses the deny threshold.
    """
    challenge = shield.verifier.verify(
        identity=identity,
        nonce=nonce,
        counter=counter,
        provided_hash=provided_hash,
        now=now,
        client_ip=client_ip,
    )

    signals = signals or RiskSignals()
    if not signals.user_agent and user_agent:
        signals = signals.model_copy(update={"user_agent": user_agent})

    token = None
    with shield.ledger.hold(identity, now) as state:
        shield.ledger.decay(state, now)
        shield.ledger.record_activity(state, now)
        score = shield.scorer.compute_risk(signals, state)
        decision = shield.scorer.decide(score)

        if decision is Decision.ALLOW:
            token = shield.authority.issue_token(
                identity,
                now,
                client_ip=client_ip if shield.settings.bind_to_client_ip else None,
            )
            shield.ledger.discount(state, shield.settings.solve_discount_factor)

    logger.info(
        "verification_decided",
        decision=decision.value,
        difficulty=challenge.difficulty,
        flags=len(signals.flags),
    )

    if decision is Decision.DENY:
        raise RiskError()
    if decision is Decision.SHADOW_THROTTLE:
        return VerificationOutcome(decision=decision)
    return VerificationOutcome(decision=decision, token=token)
