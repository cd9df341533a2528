"""
Rate limiting configuration for API endpoints.

Uses slowapi (FastAPI-compatible rate limiter).

Rate limiting strategy:
- Default: RATE_LIMIT_DEFAULT for every endpoint
- Message send: RATE_LIMIT_SEND_MESSAGE (prevent spam)
- Group creation: RATE_LIMIT_CREATE_GROUP
- Health check and metrics: no explicit limit

Rate limits are keyed by:
1. Asserted user id (X-User-ID header, set on request.state by RequestContextMiddleware)
2. Client IP for anonymous requests
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from typing import Optional

from groupchat.config import settings


def get_user_identifier(request: Request) -> str:
    """Rate limit key: user id when asserted, client IP otherwise."""
    user_id: Optional[str] = getattr(request.state, "user_id", None)

    if user_id:
        return f"user:{user_id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri="memory://",  # Use in-memory storage (for production: use Redis)
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)
