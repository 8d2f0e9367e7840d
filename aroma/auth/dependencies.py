"""
Café Aroma - Request Gate

FastAPI dependencies for authentication and authorization.

Every protected request:
1. Extracts the session token (cookie first, then Authorization: Bearer)
2. Rejects malformed tokens before any cryptographic work
3. Verifies signature, expiry and issuer
4. Re-reads the user from the database (fresh role, existence check)
5. On lock-sensitive routes, re-checks the security row through the lock
   engine, lazily clearing an expired temporary lock

Usage:
    @router.get("/profile")
    async def profile(user: Principal = Depends(get_active_user)):
        ...

    @router.post("/lock")
    async def lock(user: Principal = Depends(require_write_access)):
        ...

Security:
- The token is trusted for identity continuity only; role and lock state
  come from storage, so a downgrade or lock applies on the next request
- RBAC is deny-by-default
- Storage failures fail closed (INTERNAL), never "not locked"
"""

import logging
import re
from datetime import datetime
from typing import Iterator, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlmodel import Session as DBSession

from aroma.auth import security_store
from aroma.auth.errors import (
    Forbidden,
    ReadOnlyAccess,
    SessionExpired,
    TokenInvalid,
    Unauthenticated,
    storage_errors,
)
from aroma.auth.lockout import LockDecision, evaluate, raise_for_verdict
from aroma.auth.models import Role, utcnow
from aroma.auth.tokens import (
    SESSION_COOKIE_NAME,
    InvalidTokenError,
    TokenExpiredError,
    verify_access_token,
)
from aroma.auth.users import get_user_by_id
from aroma.gateway.rbac import Permission, RBACPolicy


logger = logging.getLogger(__name__)

# HTTP Bearer scheme for clients that cannot use the cookie
bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9\-_.]+$")
MIN_TOKEN_LENGTH = 10


class Principal(BaseModel):
    """
    The authenticated identity attached to a request.

    Available in route handlers via Depends(get_current_user) and friends.
    """
    id: UUID
    email: str
    role: Role


def get_db(request: Request) -> Iterator[DBSession]:
    """Database session from app state, closed after the response."""
    db = request.app.state.db_session_factory()
    try:
        yield db
    finally:
        db.close()


def extract_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = None,
) -> Optional[str]:
    """Session cookie first, then the bearer header."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


def is_plausible_token(token: Optional[str]) -> bool:
    """Cheap format check: JWT alphabet only, longer than MIN_TOKEN_LENGTH."""
    return bool(token) and len(token) > MIN_TOKEN_LENGTH and bool(TOKEN_PATTERN.match(token))


async def authorize(
    db: DBSession,
    token: Optional[str],
    *,
    check_lock: bool = True,
    now: Optional[datetime] = None,
) -> Principal:
    """
    Resolve a session token to a live Principal.

    Args:
        db: Database session
        token: Raw token from cookie or header (may be None)
        check_lock: Re-check the account lock state
        now: Evaluation time (naive UTC)

    Raises:
        Unauthenticated: Missing/malformed token or user no longer exists
        SessionExpired: Token past its expiry
        TokenInvalid: Bad signature or claims
        AccountPermanentlyLocked / AccountLocked: check_lock and locked
        InternalAuthError: Storage failure
    """
    if not is_plausible_token(token):
        raise Unauthenticated()

    try:
        payload = verify_access_token(token)
        user_id = UUID(payload.id)
    except TokenExpiredError:
        raise SessionExpired()
    except (InvalidTokenError, ValueError) as e:
        logger.warning("Rejected session token: %s", e)
        raise TokenInvalid()

    current = now or utcnow()

    with storage_errors("request authorization"):
        user = await get_user_by_id(db, user_id)
        if user is None:
            logger.warning("Session token for missing user %s", user_id)
            raise Unauthenticated("Usuario no encontrado")

        principal = Principal(id=user.id, email=user.email, role=user.role)

        if check_lock:
            snapshot = await security_store.get_security_snapshot(db, user_id)
            if snapshot is not None:
                verdict = evaluate(snapshot, current)
                if not verdict.allowed:
                    logger.warning(
                        "Locked account %s denied (%s)", user_id, verdict.state.value
                    )
                    raise_for_verdict(verdict)
                if verdict.decision is LockDecision.EXPIRED_CLEAR_AND_ALLOW:
                    await security_store.clear_expired_lock(db, user_id, current)

    return principal


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: DBSession = Depends(get_db),
) -> Principal:
    """Token + identity re-resolution, no lock re-check."""
    principal = await authorize(db, extract_token(request, credentials), check_lock=False)
    request.state.principal = principal
    return principal


async def get_active_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: DBSession = Depends(get_db),
) -> Principal:
    """Token + identity + lock re-check, for lock-sensitive routes."""
    principal = await authorize(db, extract_token(request, credentials), check_lock=True)
    request.state.principal = principal
    return principal


def require_roles(*roles: Role):
    """
    Dependency factory requiring one of the given roles.

    Usage:
        @router.put("/users/{user_id}/role")
        async def change_role(user: Principal = Depends(require_roles(Role.ADMIN))):
            ...
    """
    allowed = tuple(roles)

    async def guard(principal: Principal = Depends(get_active_user)) -> Principal:
        if principal.role not in allowed:
            logger.warning(
                "User %s with role %s denied; requires %s",
                principal.id, principal.role.value, [r.value for r in allowed],
            )
            raise Forbidden(required=[r.value for r in allowed])
        return principal

    return guard


require_admin = require_roles(Role.ADMIN)


async def require_write_access(principal: Principal = Depends(get_active_user)) -> Principal:
    """`manage:security` holders only; viewers get a specific read-only denial."""
    if RBACPolicy().has_permission(principal.role, Permission.MANAGE_SECURITY):
        return principal
    if principal.role == Role.VIEWER:
        logger.warning("Viewer %s attempted a write", principal.id)
        raise ReadOnlyAccess()
    logger.warning("User %s attempted an admin write", principal.id)
    raise Forbidden(
        "Acceso denegado: Solo administradores",
        required=RBACPolicy().roles_granting(Permission.MANAGE_SECURITY),
    )


async def require_owner_or_admin(
    user_id: UUID,
    principal: Principal = Depends(get_active_user),
) -> Principal:
    """The path `user_id` must be the caller, unless the caller is an admin."""
    if principal.role == Role.ADMIN or principal.id == user_id:
        return principal
    logger.warning("User %s attempted to access data of user %s", principal.id, user_id)
    raise Forbidden("Acceso denegado: Solo puedes acceder a tus propios datos")


def require_permission(permission: Permission):
    """
    Dependency factory enforcing an RBAC permission from policies.yaml.

    Usage:
        @router.delete("/users/{user_id}")
        async def delete(user: Principal = Depends(require_permission(Permission.MANAGE_USERS))):
            ...
    """
    async def guard(principal: Principal = Depends(get_active_user)) -> Principal:
        if not RBACPolicy().has_permission(principal.role, permission):
            logger.warning(
                "User %s with role %s lacks permission %s",
                principal.id, principal.role.value, permission.value,
            )
            raise Forbidden(
                f"Permiso denegado: {permission.value}",
                required=RBACPolicy().roles_granting(permission),
            )
        return principal

    return guard
