"""
Rejection taxonomy for the challenge/verify/token protocol.

Each error carries an opaque reason code. Handlers surface only the code,
never scores or difficulty details.
"""


class ShieldError(Exception):
    """Base class for all protocol rejections."""

    status_code = 403

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class ClientError(ShieldError):
    """Malformed or missing request fields."""

    status_code = 400

    def __init__(self, code: str = "MALFORMED"):
        super().__init__(code)


class ChallengeError(ShieldError):
    """Unknown, mismatched, expired or already consumed challenge."""


class ProofOfWorkError(ShieldError):
    """Hash mismatch or insufficient difficulty."""


class ReplayError(ShieldError):
    """Nonce already claimed."""

    def __init__(self, code: str = "REPLAY"):
        super().__init__(code)


class RiskError(ShieldError):
    """Computed risk exceeds the deny threshold."""

    def __init__(self, code: str = "HIGH_RISK"):
        super().__init__(code)


class TokenError(ShieldError):
    """Bad signature, expired or identity-mismatched access token."""
