"""
Café Aroma - Authenticator

Email/password login: credential lookup, lock-engine consultation, bcrypt
verification and attempt-counter mutation.

Every storage call and the bcrypt check is its own await point; nothing
here assumes atomicity across them. Counter changes are delegated to the
atomic statements in `security_store`, which re-check the lock state on
the database side.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel
from sqlmodel import Session as DBSession

from aroma.auth import security_store
from aroma.auth import users as user_service
from aroma.auth.errors import (
    AccountLocked,
    InvalidCredentials,
    InvalidInput,
    InvalidPassword,
    storage_errors,
)
from aroma.auth.lockout import (
    LockDecision,
    LockPolicy,
    SecuritySnapshot,
    evaluate,
    raise_for_verdict,
)
from aroma.auth.models import Role, User, utcnow
from aroma.auth.password import hash_password, needs_rehash, verify_password_async
from aroma.auth.users import get_user_with_security, normalize_email


logger = logging.getLogger(__name__)

_dummy_hash: Optional[str] = None


class Identity(BaseModel):
    """Public projection of an authenticated user (never the hash)."""
    id: UUID
    name: str
    email: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role)

    def public(self) -> dict:
        return {"id": str(self.id), "name": self.name, "email": self.email, "role": self.role.value}


def _timing_hash() -> str:
    """Hash compared against when the email is unknown, so both paths cost one bcrypt check."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password("aroma-timing-equalizer")
    return _dummy_hash


def _check_shape(email, password) -> tuple:
    """Fail fast on malformed input before touching storage."""
    email_clean = normalize_email(email) if isinstance(email, str) else ""
    password_clean = password.strip() if isinstance(password, str) else ""
    if not email_clean or "@" not in email_clean or not password_clean:
        raise InvalidInput()
    return email_clean, password_clean


async def authenticate(
    db: DBSession,
    email: str,
    password: str,
    *,
    policy: Optional[LockPolicy] = None,
    now: Optional[datetime] = None,
) -> Identity:
    """
    Authenticate a user with email and password.

    Steps:
    1. Validate input shape, normalize email
    2. Joined read of identity + security row
    3. Lazily create the security row
    4. Lock engine: permanent -> reject, temporary -> reject,
       expired -> clear and continue
    5. bcrypt verification
    6. Mismatch -> atomic increment (may lock)
    7. Match -> reset counter, stamp last_login

    Raises:
        InvalidInput: Empty or malformed email/password
        InvalidCredentials: Unknown email or account without a password
        InvalidPassword: Wrong password, attempts remaining
        AccountLocked: Temporary lock (existing or just triggered)
        AccountPermanentlyLocked: Admin lock
        InternalAuthError: Storage failure
    """
    policy = policy or LockPolicy.from_settings()
    email_clean, password_clean = _check_shape(email, password)
    current = now or utcnow()

    with storage_errors("login lookup"):
        found = await get_user_with_security(db, email_clean)

    if found is None:
        await verify_password_async(password_clean, _timing_hash())
        logger.warning("Login rejected: unknown email")
        raise InvalidCredentials()

    user, snapshot = found
    identity = Identity.from_user(user)
    password_hash = user.password_hash
    user_id = identity.id

    with storage_errors("login"):
        if snapshot is None:
            await security_store.ensure_security_row(db, user_id, current)
            snapshot = SecuritySnapshot()

        verdict = evaluate(snapshot, current)
        if verdict.decision is LockDecision.REJECT_PERMANENT:
            logger.warning("Login attempt on permanently locked account %s", user_id)
            raise_for_verdict(verdict)
        if verdict.decision is LockDecision.REJECT_TEMPORARY:
            logger.warning("Login attempt on temporarily locked account %s", user_id)
            raise_for_verdict(verdict)
        if verdict.decision is LockDecision.EXPIRED_CLEAR_AND_ALLOW:
            await security_store.clear_expired_lock(db, user_id, current)

        if not password_hash:
            # Federated account: no password to check, nothing to count
            await verify_password_async(password_clean, _timing_hash())
            logger.warning("Password login attempted on federated account %s", user_id)
            raise InvalidCredentials()

        matched = await verify_password_async(password_clean, password_hash)

        if not matched:
            await _register_failure(db, user_id, policy, current)

        if not await security_store.record_successful_login(db, user_id, current):
            latest = await security_store.get_security_snapshot(db, user_id) or SecuritySnapshot()
            logger.warning("Account %s was locked during login", user_id)
            raise_for_verdict(evaluate(latest, current))
            raise InvalidCredentials()

        if needs_rehash(password_hash):
            await user_service.set_password(db, user_id, password_clean)
            logger.info("Password hash of user %s upgraded", user_id)

    logger.info("Login successful for user %s", identity.id)
    return identity


async def _register_failure(
    db: DBSession,
    user_id: UUID,
    policy: LockPolicy,
    now: datetime,
) -> None:
    """Count a failed password check; always raises."""
    updated = await security_store.record_failed_attempt(db, user_id, policy, now)

    if updated is None:
        # Another request locked the row between our read and this write
        latest = await security_store.get_security_snapshot(db, user_id) or SecuritySnapshot()
        logger.warning("Failed login on account %s locked concurrently", user_id)
        raise_for_verdict(evaluate(latest, now))
        raise InvalidCredentials()

    if updated.is_locked:
        logger.warning(
            "Account %s locked for %s minutes after %s failed attempts",
            user_id, policy.lock_minutes, updated.login_attempts,
        )
        raise AccountLocked(
            remaining_minutes=policy.lock_minutes,
            locked_until=updated.locked_until,
            lock_reason=updated.lock_reason,
            message=f"Demasiados intentos fallidos. Cuenta bloqueada por {policy.lock_minutes} minutos.",
        )

    remaining = max(policy.max_attempts - updated.login_attempts, 0)
    logger.warning(
        "Wrong password for account %s (%s/%s)",
        user_id, updated.login_attempts, policy.max_attempts,
    )
    raise InvalidPassword(
        attempts=updated.login_attempts,
        remaining=remaining,
        max_attempts=policy.max_attempts,
    )
