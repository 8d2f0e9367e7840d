"""
Café Aroma - Session Token Management

Creates and validates the JWT session tokens delivered as the
`access_token` cookie:
- id, name, email, role of the authenticated user
- iat / exp (1 hour)
- iss = TOKEN_ISSUER, aud = the user's email

Security:
- HS256 with a server-held SECRET_KEY; any tampered claim fails verification
- The token is advisory for identity only. Role and lock state are re-read
  from the database on every request (see aroma.auth.dependencies).
"""

import calendar
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Response
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, Field, ValidationError

from aroma.auth.errors import InternalAuthError
from aroma.auth.models import utcnow
from aroma.config import settings


logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "access_token"


class TokenPayload(BaseModel):
    """
    JWT token payload structure.

    Attributes:
        id: User ID
        name: Display name at issuance
        email: Email at issuance (also the audience)
        role: Role at issuance, informational only
        iat: Issued-at (epoch seconds)
        exp: Expiration (epoch seconds)
        iss: Issuer
        aud: Audience
    """
    id: str = Field(..., description="User ID")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="User email")
    role: str = Field(..., description="User role")
    iat: int = Field(..., description="Issued at time")
    exp: int = Field(..., description="Expiration time")
    iss: str = Field(..., description="Issuer")
    aud: str = Field(..., description="Audience")


class InvalidTokenError(Exception):
    """Raised when JWT validation fails (signature, claims, format)."""
    pass


class TokenExpiredError(InvalidTokenError):
    """Raised when a well-formed token is past its `exp`."""
    pass


def _epoch(moment: datetime) -> int:
    return calendar.timegm(moment.utctimetuple())


def get_token_expiry_seconds() -> int:
    """Token lifetime in seconds, shared with the cookie max_age."""
    return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


def create_access_token(identity, *, now: Optional[datetime] = None) -> str:
    """
    Mint a session token for an authenticated identity.

    Args:
        identity: Object with id, name, email and role attributes
        now: Issuance time (naive UTC); defaults to the current time

    Returns:
        Encoded JWT string

    Raises:
        InternalAuthError: SECRET_KEY is not configured
    """
    if not settings.SECRET_KEY:
        logger.error("SECRET_KEY is not configured; refusing to issue tokens")
        raise InternalAuthError()

    issued_at = now or utcnow()
    expire = issued_at + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    role = identity.role.value if hasattr(identity.role, "value") else str(identity.role)

    payload = {
        "id": str(identity.id),
        "name": identity.name,
        "email": identity.email,
        "role": role,
        "iat": _epoch(issued_at),
        "exp": _epoch(expire),
        "iss": settings.TOKEN_ISSUER,
        "aud": identity.email,
    }

    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> TokenPayload:
    """
    Verify and decode a session token.

    Args:
        token: Encoded JWT string

    Returns:
        Decoded TokenPayload

    Raises:
        TokenExpiredError: Signature valid but token expired
        InvalidTokenError: Bad signature, wrong issuer or audience, or
            missing claims

    Security:
        - Validates signature using SECRET_KEY
        - Requires iss == TOKEN_ISSUER
        - The audience is per-user, so it is checked against the email claim
    """
    if not settings.SECRET_KEY:
        raise InvalidTokenError("Token validation failed: no signing key configured")

    try:
        claims = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.TOKEN_ISSUER,
            options={"verify_aud": False},
        )
    except ExpiredSignatureError as e:
        raise TokenExpiredError(f"Token expired: {str(e)}")
    except JWTError as e:
        raise InvalidTokenError(f"Token validation failed: {str(e)}")

    try:
        payload = TokenPayload(**claims)
    except ValidationError:
        raise InvalidTokenError("Token validation failed: malformed claims")

    if payload.aud != payload.email:
        raise InvalidTokenError("Token validation failed: audience mismatch")

    return payload


def set_session_cookie(response: Response, token: str) -> None:
    """
    Attach the token as an HTTP-only cookie.

    Production runs the storefront on another origin, so the cookie must be
    SameSite=None and therefore Secure.
    """
    production = settings.is_production
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=production,
        samesite="none" if production else "lax",
        path="/",
        max_age=get_token_expiry_seconds(),
    )


def clear_session_cookie(response: Response) -> None:
    production = settings.is_production
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=production,
        samesite="none" if production else "lax",
    )
