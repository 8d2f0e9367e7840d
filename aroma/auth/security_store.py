"""
Café Aroma - Security State Store

Persistence for the per-user `user_security` row.

Every mutation is a single INSERT ... ON CONFLICT (user_id) statement
executed by the database, so:
- the row is created lazily and never duplicated
- the attempt counter is incremented server-side (no read-then-write)
- admin locks and automatic lockouts write the same row shape atomically

Functions are async like the rest of the auth layer; each one commits.
Storage errors propagate as SQLAlchemyError and are mapped to INTERNAL by
the callers (see `aroma.auth.errors.storage_errors`).
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, case, false, func, or_, select, true, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session as DBSession, col

from aroma.auth.lockout import (
    LockPolicy,
    SecuritySnapshot,
    SYSTEM_LOCK_REASON,
    lock_deadline,
    remaining_minutes,
)
from aroma.auth.models import User, UserSecurity, utcnow


logger = logging.getLogger(__name__)

security_table = UserSecurity.__table__

SECURITY_COLUMNS = (
    security_table.c.login_attempts,
    security_table.c.is_locked,
    security_table.c.locked_until,
    security_table.c.is_permanently_locked,
    security_table.c.lock_reason,
    security_table.c.last_failed_login,
    security_table.c.last_login,
)

PAGE_SIZE = 10


def _upsert(db: DBSession):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(security_table)
    if dialect == "sqlite":
        return sqlite.insert(security_table)
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")


def _not_locked():
    """Row is neither permanently nor temporarily locked."""
    return and_(
        security_table.c.is_permanently_locked == false(),
        security_table.c.is_locked == false(),
        security_table.c.locked_until.is_(None),
    )


def _not_actively_locked(now: datetime):
    """No temporary lock in force: no deadline and no flag, or a deadline already passed."""
    c = security_table.c
    return or_(
        and_(c.locked_until.is_not(None), c.locked_until <= now),
        and_(c.locked_until.is_(None), c.is_locked == false()),
    )


def _open_row(user_id: UUID, now: datetime) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "login_attempts": 0,
        "is_locked": False,
        "locked_until": None,
        "is_permanently_locked": False,
        "lock_reason": None,
        "updated_at": now,
    }


async def get_security_snapshot(db: DBSession, user_id: UUID) -> Optional[SecuritySnapshot]:
    """Read the current row; None if it was never created."""
    row = db.exec(
        select(*SECURITY_COLUMNS).where(security_table.c.user_id == user_id)
    ).first()
    if row is None:
        return None
    return SecuritySnapshot.from_row(row)


async def ensure_security_row(db: DBSession, user_id: UUID, now: Optional[datetime] = None) -> None:
    """Materialize an OPEN row if none exists (no-op otherwise)."""
    now = now or utcnow()
    stmt = _upsert(db).values(**_open_row(user_id, now)).on_conflict_do_nothing(
        index_elements=[security_table.c.user_id]
    )
    db.exec(stmt)
    db.commit()


async def record_failed_attempt(
    db: DBSession,
    user_id: UUID,
    policy: LockPolicy,
    now: Optional[datetime] = None,
) -> Optional[SecuritySnapshot]:
    """
    Count one failed password check and lock when the threshold is reached.

    The increment and the lock decision happen in one statement evaluated
    against the stored counter, and only while the row is unlocked. Two
    concurrent failures at attempts == max - 1 therefore end at exactly
    max: the first locks the row, the second is rejected by the guard.

    Returns:
        Snapshot after the update, or None if the row was already locked
        (the caller must re-read and report the lock).
    """
    now = now or utcnow()
    deadline = lock_deadline(now, policy.lock_minutes)
    attempts_after = security_table.c.login_attempts + 1
    reaches_limit = attempts_after >= policy.max_attempts
    locks_on_insert = policy.max_attempts <= 1

    stmt = _upsert(db).values(
        user_id=user_id,
        login_attempts=1,
        is_locked=locks_on_insert,
        locked_until=deadline if locks_on_insert else None,
        is_permanently_locked=False,
        lock_reason=SYSTEM_LOCK_REASON if locks_on_insert else None,
        last_failed_login=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[security_table.c.user_id],
        set_={
            "login_attempts": attempts_after,
            "is_locked": case((reaches_limit, True), else_=security_table.c.is_locked),
            "locked_until": case((reaches_limit, deadline), else_=security_table.c.locked_until),
            "lock_reason": case((reaches_limit, SYSTEM_LOCK_REASON), else_=security_table.c.lock_reason),
            "last_failed_login": now,
            "updated_at": now,
        },
        where=_not_locked(),
    ).returning(*SECURITY_COLUMNS)

    row = db.exec(stmt).first()
    db.commit()
    if row is None:
        return None
    return SecuritySnapshot.from_row(row)


async def record_successful_login(
    db: DBSession,
    user_id: UUID,
    now: Optional[datetime] = None,
) -> bool:
    """
    Reset the counter, drop stale temporary-lock fields and stamp last_login.

    Guarded so a lock applied after the caller's check (admin lock or a
    concurrent automatic lockout) is never undone. An expired temporary
    lock may still be cleared.

    Returns:
        False if the row is locked again; the caller must re-read it
    """
    now = now or utcnow()
    values = _open_row(user_id, now)
    values["last_login"] = now
    stmt = _upsert(db).values(**values).on_conflict_do_update(
        index_elements=[security_table.c.user_id],
        set_={
            "login_attempts": 0,
            "is_locked": False,
            "locked_until": None,
            "lock_reason": None,
            "last_failed_login": None,
            "last_login": now,
            "updated_at": now,
        },
        where=and_(
            security_table.c.is_permanently_locked == false(),
            _not_actively_locked(now),
        ),
    ).returning(security_table.c.user_id)

    row = db.exec(stmt).first()
    db.commit()
    return row is not None


async def clear_expired_lock(db: DBSession, user_id: UUID, now: Optional[datetime] = None) -> bool:
    """
    Lazily clear a temporary lock whose deadline has passed.

    Conditional on the deadline still being in the past, so a lock applied
    after the caller's read is left alone.

    Returns:
        True if a row was cleared
    """
    now = now or utcnow()
    stmt = (
        update(security_table)
        .where(
            security_table.c.user_id == user_id,
            security_table.c.is_permanently_locked == false(),
            security_table.c.locked_until.is_not(None),
            security_table.c.locked_until <= now,
        )
        .values(
            login_attempts=0,
            is_locked=False,
            locked_until=None,
            lock_reason=None,
            updated_at=now,
        )
    )
    result = db.exec(stmt)
    db.commit()
    cleared = result.rowcount > 0
    if cleared:
        logger.info("Expired temporary lock cleared for user %s", user_id)
    return cleared


async def clear_all_expired_locks(db: DBSession, now: Optional[datetime] = None) -> int:
    """Bulk lazy clear, run before admin listings."""
    now = now or utcnow()
    stmt = (
        update(security_table)
        .where(
            security_table.c.is_permanently_locked == false(),
            security_table.c.locked_until.is_not(None),
            security_table.c.locked_until <= now,
        )
        .values(
            login_attempts=0,
            is_locked=False,
            locked_until=None,
            lock_reason=None,
            updated_at=now,
        )
    )
    result = db.exec(stmt)
    db.commit()
    return result.rowcount


async def lock_account(
    db: DBSession,
    user_id: UUID,
    reason: str,
    permanent: bool,
    duration_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Admin lock. Permanent locks clear the temporary fields; temporary locks
    replace any previous lock (including a permanent one) with a deadline.
    """
    now = now or utcnow()
    if permanent:
        fields = {
            "is_permanently_locked": True,
            "is_locked": False,
            "locked_until": None,
            "lock_reason": reason,
            "updated_at": now,
        }
    else:
        fields = {
            "is_permanently_locked": False,
            "is_locked": True,
            "locked_until": lock_deadline(now, duration_minutes),
            "lock_reason": reason,
            "updated_at": now,
        }

    stmt = _upsert(db).values(user_id=user_id, login_attempts=0, **fields).on_conflict_do_update(
        index_elements=[security_table.c.user_id],
        set_=fields,
    )
    db.exec(stmt)
    db.commit()


async def unlock_account(db: DBSession, user_id: UUID, now: Optional[datetime] = None) -> None:
    """Full reset to OPEN, including the permanent flag. Idempotent."""
    now = now or utcnow()
    values = _open_row(user_id, now)
    stmt = _upsert(db).values(**values).on_conflict_do_update(
        index_elements=[security_table.c.user_id],
        set_={k: v for k, v in values.items() if k != "user_id"},
    )
    db.exec(stmt)
    db.commit()


async def reset_attempts(db: DBSession, user_id: UUID, now: Optional[datetime] = None) -> None:
    """Zero the counter; lock flags are left untouched."""
    now = now or utcnow()
    stmt = _upsert(db).values(**_open_row(user_id, now)).on_conflict_do_update(
        index_elements=[security_table.c.user_id],
        set_={"login_attempts": 0, "updated_at": now},
    )
    db.exec(stmt)
    db.commit()


def _day_bounds(now: datetime):
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


async def get_security_stats(db: DBSession, now: Optional[datetime] = None) -> Dict[str, int]:
    """Aggregate counters for the admin dashboard."""
    now = now or utcnow()
    day_start, day_end = _day_bounds(now)
    c = security_table.c

    def count(*conditions) -> int:
        stmt = select(func.count()).select_from(security_table).where(*conditions)
        return int(db.exec(stmt).one()[0] or 0)

    return {
        "permanently_locked": count(c.is_permanently_locked == true()),
        "locked_accounts": count(
            or_(c.is_locked == true(), and_(c.locked_until.is_not(None), c.locked_until > now))
        ),
        "accounts_with_attempts": count(
            c.login_attempts > 0,
            c.is_locked == false(),
            c.is_permanently_locked == false(),
        ),
        "failed_logins_today": count(c.last_failed_login >= day_start, c.last_failed_login < day_end),
        "successful_logins_today": count(c.last_login >= day_start, c.last_login < day_end),
    }


def _listing_filter(filter_name: str, now: datetime, policy: LockPolicy):
    c = security_table.c
    if filter_name == "locked":
        return and_(
            c.is_permanently_locked == false(),
            or_(c.is_locked == true(), and_(c.locked_until.is_not(None), c.locked_until > now)),
        )
    if filter_name == "permanent":
        return c.is_permanently_locked == true()
    if filter_name == "suspicious":
        return and_(c.login_attempts >= 2, c.login_attempts < policy.max_attempts)
    return None


async def list_security_overview(
    db: DBSession,
    search: str = "",
    filter_name: str = "all",
    page: int = 1,
    now: Optional[datetime] = None,
    policy: Optional[LockPolicy] = None,
) -> Dict[str, Any]:
    """
    Paginated user list joined with security state for the admin panel.

    Expired temporary locks are cleared first so the listing never shows
    a lock that would be lifted on the next login. "suspicious" means at
    least two failures but still below policy.max_attempts.
    """
    now = now or utcnow()
    policy = policy or LockPolicy.from_settings()
    await clear_all_expired_locks(db, now)

    c = security_table.c
    pattern = f"%{search}%"
    conditions = [or_(col(User.name).ilike(pattern), col(User.email).ilike(pattern))]
    extra = _listing_filter(filter_name, now, policy)
    if extra is not None:
        conditions.append(extra)

    base = (
        select(
            User.id,
            User.name,
            User.email,
            User.image,
            func.coalesce(c.login_attempts, 0).label("login_attempts"),
            func.coalesce(c.is_locked, False).label("is_locked"),
            func.coalesce(c.is_permanently_locked, False).label("is_permanently_locked"),
            c.locked_until,
            c.last_failed_login,
            c.lock_reason,
        )
        .select_from(User)
        .outerjoin(security_table, c.user_id == User.id)
        .where(*conditions)
    )

    locked_now = or_(c.is_locked == true(), c.locked_until > now)
    stmt = (
        base.order_by(
            func.coalesce(c.is_permanently_locked, False).desc(),
            func.coalesce(locked_now, False).desc(),
            func.coalesce(c.login_attempts, 0).desc(),
            col(User.name).asc(),
        )
        .limit(PAGE_SIZE)
        .offset((max(page, 1) - 1) * PAGE_SIZE)
    )

    rows = db.exec(stmt).all()
    total = db.exec(select(func.count()).select_from(base.subquery())).one()[0]

    users: List[Dict[str, Any]] = []
    for row in rows:
        item = dict(row._mapping)
        item["id"] = str(item["id"])
        locked_until = item["locked_until"]
        item["remaining_minutes"] = (
            remaining_minutes(locked_until, now) if locked_until and locked_until > now else 0
        )
        users.append(item)

    return {
        "users": users,
        "stats": await get_security_stats(db, now),
        "pagination": {
            "page": max(page, 1),
            "totalPages": (total + PAGE_SIZE - 1) // PAGE_SIZE,
            "total": total,
        },
    }


async def get_security_details(
    db: DBSession,
    user_id: UUID,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """Per-user security summary; None if the user does not exist."""
    now = now or utcnow()
    user = db.get(User, user_id)
    if user is None:
        return None
    snapshot = await get_security_snapshot(db, user_id) or SecuritySnapshot()
    failed_today = (
        snapshot.login_attempts
        if snapshot.last_failed_login and snapshot.last_failed_login.date() == now.date()
        else 0
    )
    return {
        "user": {"id": str(user.id), "name": user.name, "email": user.email},
        "security": {
            "login_attempts": snapshot.login_attempts,
            "is_locked": snapshot.is_locked,
            "locked_until": snapshot.locked_until,
            "is_permanently_locked": snapshot.is_permanently_locked,
            "lock_reason": snapshot.lock_reason,
            "last_failed_login": snapshot.last_failed_login,
            "last_login": snapshot.last_login,
        },
        "stats": {
            "total_failed": snapshot.login_attempts,
            "failed_today": failed_today,
        },
    }
