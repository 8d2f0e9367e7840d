"""
Café Aroma - Authentication Database Models

SQLModel-based models for user identity and per-user security state.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords stored as bcrypt hashes only (NULL for federated accounts)
- Security state lives in its own table, one row per user, upserted
- All timestamps are naive UTC
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Enum as SQLEnum


def utcnow() -> datetime:
    """Current time as naive UTC (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    """
    User roles for RBAC.

    Permissions are deny-by-default; each role has explicit grants.
    """
    USER = "user"
    ADMIN = "admin"
    VIEWER = "viewer"


class AuthProvider(str, Enum):
    """How the account proves its identity."""
    LOCAL = "local"
    GOOGLE = "google"


class User(SQLModel, table=True):
    """
    Storefront account.

    Attributes:
        id: Unique identifier (UUIDv4)
        name: Display name
        email: Login identifier (unique, stored lowercase)
        password_hash: bcrypt hash, NULL for Google-only accounts
        role: RBAC role, re-read on every authenticated request
        auth_provider: local or google
        google_id: Google `sub` claim for federated accounts
        phone_number: Contact number (digits only)
        image: Profile picture URL
    """
    __tablename__ = "users"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique user identifier"
    )
    name: str = Field(
        sa_column=Column(String(120), nullable=False),
        description="Display name"
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="User email address (login identifier)"
    )
    password_hash: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
        description="bcrypt password hash"
    )
    role: Role = Field(
        default=Role.USER,
        sa_column=Column(SQLEnum(Role), nullable=False, default=Role.USER),
        description="User role for RBAC"
    )
    auth_provider: AuthProvider = Field(
        default=AuthProvider.LOCAL,
        sa_column=Column(SQLEnum(AuthProvider), nullable=False, default=AuthProvider.LOCAL),
        description="Identity provider"
    )
    google_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), unique=True, nullable=True),
        description="Google subject identifier"
    )
    phone_number: Optional[str] = Field(
        default=None,
        sa_column=Column(String(20), nullable=True),
    )
    image: Optional[str] = Field(
        default=None,
        sa_column=Column(String(512), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
        description="Account creation timestamp"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
        description="Last update timestamp"
    )


class UserSecurity(SQLModel, table=True):
    """
    Per-user login-attempt and lock state.

    Created lazily on the first login attempt or admin action. Every write
    goes through an atomic INSERT ... ON CONFLICT (user_id) statement in
    `aroma.auth.security_store`; never modify rows through the ORM.

    Attributes:
        user_id: Owning user (primary key)
        login_attempts: Consecutive failed password checks
        is_locked: Temporary lock flag
        locked_until: Temporary lock deadline (cleared lazily once passed)
        is_permanently_locked: Admin lock with no expiry
        lock_reason: Why the account is locked
        last_failed_login: Timestamp of the last failed password check
        last_login: Timestamp of the last successful login
    """
    __tablename__ = "user_security"

    user_id: UUID = Field(
        foreign_key="users.id",
        primary_key=True,
        description="Reference to user"
    )
    login_attempts: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, default=0),
    )
    is_locked: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )
    locked_until: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    is_permanently_locked: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False),
    )
    lock_reason: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
    )
    last_failed_login: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    last_login: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
