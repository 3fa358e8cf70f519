from typing import Any, Literal

from pydantic import BaseModel, Field

from powshield.schemas.challenge import Identity
from powshield.services.risk_service import RiskSignals


class VerificationRequest(BaseModel):
    identity: Identity
    nonce: str = Field(..., min_length=32, max_length=32, pattern=r"^[a-f0-9]{32}$")
    counter: int = Field(..., ge=0, le=2**53)
    hash: str = Field(..., min_length=64, max_length=64, pattern=r"^[a-fA-F0-9]{64}$")
    signals: RiskSignals | None = None


class TokenResponse(BaseModel):
    payload: dict[str, Any]
    signature: str


class ShadowThrottledResponse(BaseModel):
    status: Literal["shadow_throttled"] = "shadow_throttled"
