from pydantic import BaseModel


class ChallengeRecord(BaseModel):
    """An issued challenge, stored in the TTL store keyed by nonce."""

    nonce: str
    identity: str
    client_ip: str | None = None
    issued_at: float
    difficulty: int
    secret_version: int

    @property
    def store_key(self) -> str:
        return challenge_key(self.nonce)


def challenge_key(nonce: str) -> str:
    return f"challenge:{nonce}"


def used_nonce_key(nonce: str) -> str:
    return f"used:{nonce}"
