from typing import Any

from pydantic import BaseModel, Field

from powshield.schemas.challenge import Identity


class ProtectedRequest(BaseModel):
    payload: dict[str, Any]
    signature: str = Field(..., min_length=1, max_length=128)
    identity: Identity


class ProtectedResponse(BaseModel):
    success: bool = True
