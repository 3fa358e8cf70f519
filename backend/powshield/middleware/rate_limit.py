from slowapi import Limiter
from starlette.requests import Request

from powshield.config import settings


def get_real_client_ip(request: Request) -> str:
    """Extract the client IP used for rate limiting and token binding.

    When `trust_forwarded_for` is enabled (deployed behind our own reverse
    proxy), the original client is the first entry of X-Forwarded-For.
    Otherwise the header is ignored, since any client can set it.
    """
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_real_client_ip)
