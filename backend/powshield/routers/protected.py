import time

from fastapi import APIRouter, Depends, Request

from powshield.config import settings
from powshield.middleware.rate_limit import get_real_client_ip, limiter
from powshield.schemas.token import ProtectedRequest, ProtectedResponse
from powshield.state import Shield, get_shield

router = APIRouter()


@router.post("/protected", response_model=ProtectedResponse)
@limiter.limit(settings.rate_limit_protected)
def access_protected(
    request: Request,
    access: ProtectedRequest,
    shield: Shield = Depends(get_shield),
):
    """
    Example downstream resource gated by an access token.

    The body carries the token (`payload`, `signature`) and the `identity` of the
    caller presenting it; a token is only honoured for the identity it was issued
    to, so a body without `identity` is rejected as MALFORMED.

    Token checks are stateless: signature, expiry, then identity binding.
    """
    now = time.time()
    shield.maybe_sweep(now)

    shield.authority.require_valid(
        access.payload,
        access.signature,
        requester_identity=access.identity,
        now=now,
        requester_ip=get_real_client_ip(request) if shield.settings.bind_to_client_ip else None,
    )
    return ProtectedResponse(success=True)
