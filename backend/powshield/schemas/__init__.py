from powshield.schemas.challenge import ChallengeCreate, ChallengeResponse
from powshield.schemas.token import ProtectedRequest, ProtectedResponse
from powshield.schemas.verification import (
    ShadowThrottledResponse,
    TokenResponse,
    VerificationRequest,
)

__all__ = [
    "ChallengeCreate",
    "ChallengeResponse",
    "ProtectedRequest",
    "ProtectedResponse",
    "ShadowThrottledResponse",
    "TokenResponse",
    "VerificationRequest",
]
