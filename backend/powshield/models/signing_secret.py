from dataclasses import dataclass


@dataclass(frozen=True)
class SigningSecret:
    """Active HMAC key. Replaced wholesale on rotation, never mutated."""

    value: bytes
    version: int

    def __repr__(self) -> str:
        return f"SigningSecret(version={self.version})"
