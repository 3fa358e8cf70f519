import time

import structlog
from fastapi import APIRouter, Depends, Request

from powshield.config import settings
from powshield.middleware.rate_limit import get_real_client_ip, limiter
from powshield.schemas.verification import (
    ShadowThrottledResponse,
    TokenResponse,
    VerificationRequest,
)
from powshield.services.verification_service import verify_and_grant
from powshield.state import Shield, get_shield

router = APIRouter()
logger = structlog.get_logger()


@router.post("/verify", response_model=TokenResponse | ShadowThrottledResponse)
@limiter.limit(settings.rate_limit_verifications)
def verify_solution(
    request: Request,
    verification: VerificationRequest,
    shield: Shield = Depends(get_shield),
):
    """
    Submit a proof-of-work solution with client telemetry.

    Returns a signed access token, or a shadow-throttled response that looks
    like success but carries no token.
    """
    now = time.time()
    shield.maybe_sweep(now)

    outcome = verify_and_grant(
        shield,
        identity=verification.identity,
        nonce=verification.nonce,
        counter=verification.counter,
        provided_hash=verification.hash,
        signals=verification.signals,
        now=now,
        client_ip=get_real_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )

    if outcome.token is None:
        return ShadowThrottledResponse()

    logger.info("token_issued", secret_version=outcome.token.payload["v"])
    return TokenResponse(payload=outcome.token.payload, signature=outcome.token.signature)
