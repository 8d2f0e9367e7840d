"""
Café Aroma - Credential Store

Lookup and lifecycle of `users` rows: registration, federated (Google)
accounts, profile updates and the admin role/delete operations.
"""

import logging
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, func, select as sa_select
from sqlmodel import Session as DBSession, col, select

from aroma.auth.errors import InvalidCredentials, InvalidInput
from aroma.auth.lockout import SecuritySnapshot
from aroma.auth.models import AuthProvider, Role, User, UserSecurity, utcnow
from aroma.auth.password import hash_password, verify_password_async
from aroma.auth.security_store import SECURITY_COLUMNS, security_table


logger = logging.getLogger(__name__)

SECURITY_ROW_KEY = "security_user_id"
PLACEHOLDER_IMAGE = "https://via.placeholder.com/150"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


async def get_user_by_email(db: DBSession, email: str) -> Optional[User]:
    statement = select(User).where(func.lower(col(User.email)) == normalize_email(email))
    return db.exec(statement).first()


async def get_user_by_id(db: DBSession, user_id: UUID) -> Optional[User]:
    return db.exec(select(User).where(User.id == user_id)).first()


async def get_user_with_security(
    db: DBSession, email: str
) -> Optional[Tuple[User, Optional[SecuritySnapshot]]]:
    """
    Single joined read of the identity and its security row.

    Returns:
        (user, snapshot) where snapshot is None if the row does not exist
        yet, or None if no user has this email
    """
    statement = (
        sa_select(User, security_table.c.user_id.label(SECURITY_ROW_KEY), *SECURITY_COLUMNS)
        .outerjoin(security_table, security_table.c.user_id == User.id)
        .where(func.lower(col(User.email)) == normalize_email(email))
        .limit(1)
    )
    row = db.exec(statement).first()
    if row is None:
        return None
    user = row[0]
    if row._mapping[SECURITY_ROW_KEY] is None:
        return user, None
    return user, SecuritySnapshot.from_row(row)


async def create_local_user(
    db: DBSession,
    name: str,
    email: str,
    password: str,
    phone_number: Optional[str] = None,
    role: Role = Role.USER,
) -> User:
    """
    Register a password account.

    Raises:
        InvalidInput: Email already registered
    """
    email = normalize_email(email)
    if await get_user_by_email(db, email):
        raise InvalidInput("El email ya está registrado.")

    now = utcnow()
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        phone_number=phone_number,
        role=role,
        auth_provider=AuthProvider.LOCAL,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered local user %s", user.id)
    return user


async def upsert_federated_user(
    db: DBSession,
    google_id: str,
    email: str,
    picture: Optional[str] = None,
) -> User:
    """
    Create or refresh the account behind a verified Google identity.

    New accounts get the `user` role and no password hash. An existing
    local account with the same email is linked to the Google identity.
    """
    email = normalize_email(email)
    name = email.split("@")[0]
    image = picture if picture and picture.startswith("https://") else PLACEHOLDER_IMAGE

    statement = select(User).where(
        (col(User.google_id) == google_id) | (func.lower(col(User.email)) == email)
    )
    user = db.exec(statement).first()
    now = utcnow()

    if user is None:
        user = User(
            name=name,
            email=email,
            google_id=google_id,
            image=image,
            role=Role.USER,
            auth_provider=AuthProvider.GOOGLE,
            created_at=now,
            updated_at=now,
        )
        logger.info("Registered Google user %s", email)
    else:
        user.google_id = google_id
        user.name = name
        user.image = image
        user.auth_provider = AuthProvider.GOOGLE
        user.updated_at = now
        logger.info("Updated Google user %s", user.id)

    db.add(user)
    db.commit()
    db.refresh(user)
    return user


async def update_phone(db: DBSession, user_id: UUID, phone_number: str) -> Optional[User]:
    user = await get_user_by_id(db, user_id)
    if user is None:
        return None
    user.phone_number = phone_number
    user.updated_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


async def set_password(db: DBSession, user_id: UUID, password: str) -> Optional[User]:
    """Store a fresh bcrypt hash at the current work factor."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        return None
    user.password_hash = hash_password(password)
    user.updated_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


async def change_password(
    db: DBSession, user_id: UUID, current_password: str, new_password: str
) -> Optional[User]:
    """
    Replace the password of an account after checking the current one.

    A wrong current password is not counted toward the login lockout; the
    caller already holds a valid session.

    Raises:
        InvalidCredentials: Current password does not match (or the account
            has no password, e.g. Google-only)
        InvalidInput: New password equals the current one

    Returns:
        None if the user does not exist
    """
    user = await get_user_by_id(db, user_id)
    if user is None:
        return None

    if not await verify_password_async(current_password, user.password_hash):
        logger.warning("Password change for user %s rejected: wrong current password", user_id)
        raise InvalidCredentials("La contraseña actual es incorrecta")

    if await verify_password_async(new_password, user.password_hash):
        raise InvalidInput("La nueva contraseña debe ser diferente a la actual")

    user = await set_password(db, user_id, new_password)
    logger.info("Password of user %s changed", user_id)
    return user


async def change_role(db: DBSession, actor_id: UUID, target_id: UUID, new_role: Role) -> Optional[User]:
    """
    Change another user's role. The new role takes effect on that user's
    very next request, because the gate re-reads it.

    Raises:
        InvalidInput: Attempt to change one's own role
    """
    if actor_id == target_id:
        raise InvalidInput("No puedes cambiar tu propio rol")
    user = await get_user_by_id(db, target_id)
    if user is None:
        return None
    user.role = new_role
    user.updated_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.warning("Role of user %s changed to %s by %s", target_id, new_role.value, actor_id)
    return user


async def delete_user(db: DBSession, actor_id: UUID, target_id: UUID) -> bool:
    """
    Delete an account and its security row.

    Raises:
        InvalidInput: Deleting oneself, or the last remaining admin

    Returns:
        False if the user does not exist
    """
    if actor_id == target_id:
        raise InvalidInput("No puedes eliminar tu propia cuenta")

    user = await get_user_by_id(db, target_id)
    if user is None:
        return False

    if user.role == Role.ADMIN:
        admin_count = db.exec(
            select(func.count()).select_from(User).where(User.role == Role.ADMIN)
        ).one()
        if admin_count <= 1:
            raise InvalidInput("No puedes eliminar el último administrador")

    db.exec(delete(UserSecurity).where(col(UserSecurity.user_id) == target_id))
    db.delete(user)
    db.commit()
    logger.warning("User %s deleted by %s", target_id, actor_id)
    return True


def public_identity(user: User) -> dict:
    return {"id": str(user.id), "name": user.name, "email": user.email, "role": user.role.value}

