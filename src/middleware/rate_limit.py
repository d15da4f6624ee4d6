"""Rate limiting middleware using SlowAPI."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config import get_settings

settings = get_settings()


def get_principal_or_ip(request: Request) -> str:
    """
    Get rate limit key from the authenticated account or IP address.

    Uses the account if a gate has already run, falls back to IP address.
    """
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return f"account:{principal.account_id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_principal_or_ip,
    storage_uri=settings.rate_limit_storage_uri,
    strategy="fixed-window",
    enabled=settings.rate_limit_enabled,
)


# Custom rate limit decorators
def rate_limit_auth():
    """Rate limit for credential endpoints (login, password reset)."""
    return limiter.limit(
        f"{max(settings.rate_limit_per_minute // 6, 1)}/minute",
        key_func=get_remote_address,
    )


def rate_limit_verification():
    """Rate limit for the public verification endpoints."""
    return limiter.limit(
        f"{settings.verification_rate_limit_per_minute}/minute",
        key_func=get_remote_address,
    )


def rate_limit_general():
    """Rate limit for authenticated endpoints."""
    return limiter.limit(
        f"{settings.rate_limit_per_minute}/minute",
        key_func=get_principal_or_ip,
    )
