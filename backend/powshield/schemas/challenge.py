from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field

Identity = Annotated[
    str, Field(min_length=1, max_length=256, description="Client fingerprint hash")
]


class ChallengeCreate(BaseModel):
    identity: Identity


class ChallengeResponse(BaseModel):
    nonce: str
    difficulty: int
    secret_version: int
    expires_at: datetime
    algorithm: str = "sha256"
