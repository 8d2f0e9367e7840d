"""
Café Aroma - Account Lock Engine

Decides whether a login attempt (or an authenticated request) may proceed,
given a snapshot of the user's security row and the current time.

The engine is pure: it never touches storage. Callers persist the resulting
transition through the atomic statements in `aroma.auth.security_store`.

States (derived from the stored fields, never stored themselves):

    OPEN              not locked, attempts below the threshold
    TEMP_LOCKED       is_locked, or locked_until still in the future
    TEMP_EXPIRED      locked_until has passed but the row was not cleared yet
    PERMANENT_LOCKED  admin lock with no expiry; overrides everything else

Transitions:

    OPEN         --failure, attempts+1 <  max-->  OPEN
    OPEN         --failure, attempts+1 >= max-->  TEMP_LOCKED (now + 15 min)
    OPEN         --success------------------->   OPEN (attempts reset)
    TEMP_LOCKED  --now >= locked_until------->   TEMP_EXPIRED
    TEMP_EXPIRED --any check---------------->    OPEN (cleared)
    *            --admin lock, permanent----->   PERMANENT_LOCKED
    *            --admin lock, D minutes----->   TEMP_LOCKED (now + D)
    *            --admin unlock-------------->   OPEN
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from aroma.config import settings
from aroma.auth.errors import AccountLocked, AccountPermanentlyLocked, InvalidInput


SYSTEM_LOCK_REASON = "Demasiados intentos fallidos"


class LockState(str, Enum):
    OPEN = "open"
    TEMP_LOCKED = "temp_locked"
    TEMP_EXPIRED = "temp_expired"
    PERMANENT_LOCKED = "permanent_locked"


class LockDecision(str, Enum):
    ALLOW = "allow"
    REJECT_PERMANENT = "reject_permanent"
    REJECT_TEMPORARY = "reject_temporary"
    EXPIRED_CLEAR_AND_ALLOW = "expired_clear_and_allow"


@dataclass(frozen=True)
class LockPolicy:
    """Lockout thresholds; defaults come from settings."""
    max_attempts: int = 5
    lock_minutes: int = 15
    min_reason_length: int = 10

    @classmethod
    def from_settings(cls) -> "LockPolicy":
        return cls(
            max_attempts=settings.MAX_LOGIN_ATTEMPTS,
            lock_minutes=settings.LOCK_DURATION_MINUTES,
            min_reason_length=settings.MIN_LOCK_REASON_LENGTH,
        )


@dataclass(frozen=True)
class SecuritySnapshot:
    """Immutable view of one user_security row at read time."""
    login_attempts: int = 0
    is_locked: bool = False
    locked_until: Optional[datetime] = None
    is_permanently_locked: bool = False
    lock_reason: Optional[str] = None
    last_failed_login: Optional[datetime] = None
    last_login: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "SecuritySnapshot":
        """Build from an ORM object or a SQLAlchemy Row; None means a fresh OPEN row."""
        if row is None:
            return cls()
        mapping = row._mapping if hasattr(row, "_mapping") else None

        def get(name, default=None):
            if mapping is not None:
                return mapping.get(name, default)
            return getattr(row, name, default)

        return cls(
            login_attempts=get("login_attempts") or 0,
            is_locked=bool(get("is_locked")),
            locked_until=get("locked_until"),
            is_permanently_locked=bool(get("is_permanently_locked")),
            lock_reason=get("lock_reason"),
            last_failed_login=get("last_failed_login"),
            last_login=get("last_login"),
        )


@dataclass(frozen=True)
class LockVerdict:
    decision: LockDecision
    state: LockState
    remaining_minutes: int = 0
    locked_until: Optional[datetime] = None
    lock_reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision in (LockDecision.ALLOW, LockDecision.EXPIRED_CLEAR_AND_ALLOW)


def derive_state(snapshot: SecuritySnapshot, now: datetime) -> LockState:
    """Map stored fields to exactly one lock state."""
    if snapshot.is_permanently_locked:
        return LockState.PERMANENT_LOCKED
    if snapshot.locked_until is not None and now >= snapshot.locked_until:
        return LockState.TEMP_EXPIRED
    if snapshot.is_locked or (snapshot.locked_until is not None and now < snapshot.locked_until):
        return LockState.TEMP_LOCKED
    return LockState.OPEN


def remaining_minutes(locked_until: Optional[datetime], now: datetime) -> int:
    """Whole minutes left on a lock, rounded up, never below 1."""
    if locked_until is None:
        return 1
    seconds = (locked_until - now).total_seconds()
    return max(1, math.ceil(seconds / 60))


def lock_deadline(now: datetime, minutes: int) -> datetime:
    return now + timedelta(minutes=minutes)


def evaluate(snapshot: SecuritySnapshot, now: datetime) -> LockVerdict:
    """Decide what a login attempt or gated request may do."""
    state = derive_state(snapshot, now)

    if state is LockState.PERMANENT_LOCKED:
        return LockVerdict(
            decision=LockDecision.REJECT_PERMANENT,
            state=state,
            lock_reason=snapshot.lock_reason,
        )
    if state is LockState.TEMP_EXPIRED:
        return LockVerdict(decision=LockDecision.EXPIRED_CLEAR_AND_ALLOW, state=state)
    if state is LockState.TEMP_LOCKED:
        return LockVerdict(
            decision=LockDecision.REJECT_TEMPORARY,
            state=state,
            remaining_minutes=remaining_minutes(snapshot.locked_until, now),
            locked_until=snapshot.locked_until,
            lock_reason=snapshot.lock_reason,
        )
    return LockVerdict(decision=LockDecision.ALLOW, state=state)


def raise_for_verdict(verdict: LockVerdict) -> None:
    """Raise the matching AuthError for a rejecting verdict; no-op otherwise."""
    if verdict.decision is LockDecision.REJECT_PERMANENT:
        raise AccountPermanentlyLocked(lock_reason=verdict.lock_reason)
    if verdict.decision is LockDecision.REJECT_TEMPORARY:
        raise AccountLocked(
            remaining_minutes=verdict.remaining_minutes,
            locked_until=verdict.locked_until,
            lock_reason=verdict.lock_reason,
        )


def validate_lock_reason(reason: Optional[str], policy: LockPolicy) -> str:
    """
    Check an admin-supplied lock reason.

    System-triggered lockouts use SYSTEM_LOCK_REASON and skip this check.

    Raises:
        InvalidInput: Reason missing or shorter than policy.min_reason_length
    """
    cleaned = (reason or "").strip()
    if len(cleaned) < policy.min_reason_length:
        raise InvalidInput(
            f"La razón del bloqueo debe tener al menos {policy.min_reason_length} caracteres"
        )
    return cleaned
