import hashlib
import hmac
import json
import secrets
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from powshield.config import Settings
from powshield.errors import TokenError
from powshield.models.signing_secret import SigningSecret

logger = structlog.get_logger()

SECRET_BYTES = 32


class TokenStatus(str, Enum):
    VALID = "VALID"
    BAD_SIGNATURE = "BAD_SIGNATURE"
    EXPIRED = "EXPIRED"
    IDENTITY_MISMATCH = "IDENTITY_MISMATCH"


@dataclass(frozen=True)
class IssuedToken:
    payload: dict[str, Any]
    signature: str


def canonical(payload: dict[str, Any]) -> bytes:
    """Serialize a payload deterministically for signing."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode()


def to_millis(timestamp: float) -> int:
    return int(timestamp * 1000)


class TokenAuthority:
    """
    Issues and checks short-lived access tokens.

    Verification is stateless: a token is accepted if its HMAC matches under the
    active secret and it has not expired. Rotating the secret invalidates every
    outstanding token, so there is no revocation list.

    The secret lives in this process only. Workers seeded with the same
    `signing_secret` accept each other's tokens until their first rotation.
    """

    def __init__(self, token_ttl: float = 60, seed: str | None = None):
        self.token_ttl = token_ttl
        self._lock = threading.Lock()
        if seed:
            initial = hashlib.sha256(seed.encode()).digest()
        else:
            initial = secrets.token_bytes(SECRET_BYTES)
        self._secret = SigningSecret(value=initial, version=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenAuthority":
        return cls(token_ttl=settings.token_ttl_seconds, seed=settings.signing_secret)

    @property
    def active(self) -> SigningSecret:
        with self._lock:
            return self._secret

    @property
    def version(self) -> int:
        return self.active.version

    def rotate(self) -> SigningSecret:
        """Replace the active secret. Tokens signed with the old one stop verifying."""
        value = secrets.token_bytes(SECRET_BYTES)
        with self._lock:
            self._secret = SigningSecret(value=value, version=self._secret.version + 1)
            rotated = self._secret
        logger.info("signing_secret_rotated", version=rotated.version)
        return rotated

    def sign(self, payload: dict[str, Any], secret: SigningSecret | None = None) -> str:
        secret = secret or self.active
        return hmac.new(secret.value, canonical(payload), hashlib.sha256).hexdigest()

    def verify(self, payload: Any, signature: Any) -> bool:
        """Constant-time signature check against the active secret."""
        if not isinstance(payload, dict) or not isinstance(signature, str):
            return False
        try:
            expected = self.sign(payload)
        except (TypeError, ValueError):
            return False
        return hmac.compare_digest(expected.encode(), signature.encode())

    def issue_token(self, identity: str, now: float, client_ip: str | None = None) -> IssuedToken:
        # One snapshot for both the version stamp and the key
        secret = self.active
        issued_at = to_millis(now)
        payload: dict[str, Any] = {
            "identity": identity,
            "iat": issued_at,
            "exp": issued_at + to_millis(self.token_ttl),
            "v": secret.version,
        }
        if client_ip is not None:
            payload["ip"] = client_ip
        return IssuedToken(payload=payload, signature=self.sign(payload, secret))

    def check_token(
        self,
        payload: Any,
        signature: Any,
        requester_identity: str,
        now: float,
        requester_ip: str | None = None,
    ) -> TokenStatus:
        if not self.verify(payload, signature):
            return TokenStatus.BAD_SIGNATURE

        exp = payload.get("exp")
        if not isinstance(exp, int) or to_millis(now) >= exp:
            return TokenStatus.EXPIRED

        if not hmac.compare_digest(
            str(payload.get("identity", "")).encode(), requester_identity.encode()
        ):
            return TokenStatus.IDENTITY_MISMATCH

        bound_ip = payload.get("ip")
        if bound_ip is not None and requester_ip is not None and bound_ip != requester_ip:
            return TokenStatus.IDENTITY_MISMATCH

        return TokenStatus.VALID

    def require_valid(
        self,
        payload: Any,
        signature: Any,
        requester_identity: str,
        now: float,
        requester_ip: str | None = None,
    ) -> None:
        """Raise TokenError unless the token checks out."""
        status = self.check_token(payload, signature, requester_identity, now, requester_ip)
        if status is not TokenStatus.VALID:
            raise TokenError(status.value)
