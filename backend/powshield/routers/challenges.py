import time
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Query, Request

from powshield.config import settings
from powshield.errors import ClientError
from powshield.middleware.rate_limit import get_real_client_ip, limiter
from powshield.schemas.challenge import ChallengeCreate, ChallengeResponse
from powshield.state import Shield, get_shield

router = APIRouter()
logger = structlog.get_logger()


def issue_challenge(request: Request, shield: Shield, identity: str) -> ChallengeResponse:
    now = time.time()
    shield.maybe_sweep(now)

    challenge = shield.issuer.issue(
        identity=identity,
        now=now,
        client_ip=get_real_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )

    logger.info(
        "challenge_issued",
        difficulty=challenge.difficulty,
        secret_version=challenge.secret_version,
    )

    return ChallengeResponse(
        nonce=challenge.nonce,
        difficulty=challenge.difficulty,
        secret_version=challenge.secret_version,
        expires_at=datetime.fromtimestamp(
            challenge.issued_at + shield.settings.challenge_ttl_seconds, UTC
        ),
    )


@router.post("/challenge", response_model=ChallengeResponse)
@limiter.limit(settings.rate_limit_challenges)
def create_challenge(
    request: Request,
    challenge_data: ChallengeCreate,
    shield: Shield = Depends(get_shield),
):
    """
    Request a proof-of-work challenge bound to a client fingerprint.

    Difficulty grows with the identity's standing suspicion.
    """
    return issue_challenge(request, shield, challenge_data.identity)


@router.get("/challenge", response_model=ChallengeResponse)
@limiter.limit(settings.rate_limit_challenges)
def get_challenge(
    request: Request,
    identity: str | None = Query(None, min_length=1, max_length=256),
    shield: Shield = Depends(get_shield),
):
    """Same as POST /challenge, with the identity passed as a query parameter."""
    if not identity:
        raise ClientError()
    return issue_challenge(request, shield, identity)
