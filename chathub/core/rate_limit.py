"""
Rate limiting for message-producing endpoints.

Uses slowapi. Limits are keyed by the authenticated user id (set on
request.state by RequestContextMiddleware) and fall back to the client IP.

- Default: RATE_LIMIT_DEFAULT for every route
- Sending (personal, group, reply, forward): RATE_LIMIT_SEND
- Mutations (edit, delete, status update): RATE_LIMIT_MUTATE
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from typing import Optional

from chathub.config import settings


def get_user_identifier(request: Request) -> str:
    """Rate limit key: user id when authenticated, client IP otherwise."""
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
