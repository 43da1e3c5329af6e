"""
Bearer token validation.

Tokens are minted elsewhere (identity provider) and signed with the shared
HS256 secret. Chathub only validates them and reads the user id from `sub`.
"""

from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from chathub.config import settings
from chathub.core.exceptions import UnauthorizedError
from chathub.core.logging_config import get_logger

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """Caller identity extracted from an access token."""
    user_id: str
    expires_at: Optional[datetime] = None

    @classmethod
    def from_jwt_payload(cls, payload: dict) -> "AuthenticatedUser":
        expires_at = None
        if "exp" in payload:
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        return cls(user_id=str(payload["sub"]), expires_at=expires_at)


def decode_token_string(token: str) -> AuthenticatedUser:
    """
    Decode and validate a raw JWT string.

    Used for the Authorization header and for the WebSocket `token` query
    parameter.

    Raises:
        jwt.InvalidTokenError: If the token is malformed, expired, not an
            access token or carries no subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": False, "require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("access_token_expired")
        raise
    except jwt.InvalidTokenError:
        logger.warning("access_token_invalid")
        raise

    if payload.get("type", "access") != "access":
        logger.warning(
            "access_token_wrong_type",
            token_type=payload.get("type"),
            expected="access"
        )
        raise jwt.InvalidTokenError("Invalid token type")

    return AuthenticatedUser.from_jwt_payload(payload)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> AuthenticatedUser:
    """
    FastAPI dependency resolving the caller from `Authorization: Bearer <token>`.

    Raises:
        UnauthorizedError: Missing, invalid or expired token
    """
    if credentials is None:
        raise UnauthorizedError("Missing bearer token")

    try:
        return decode_token_string(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise UnauthorizedError(f"Invalid token: {e}")
