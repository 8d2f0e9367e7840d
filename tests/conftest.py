"""
Café Aroma - Test Configuration

Pytest fixtures for authentication testing.
Provides test database, client, and user fixtures.
"""

import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-cafe-aroma-0123456789")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client.apps.googleusercontent.com")

from datetime import datetime
from typing import Generator, Optional
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from aroma.app import app
from aroma.auth.authenticator import Identity
from aroma.auth.database import get_engine, get_session_factory, init_db
from aroma.auth.models import AuthProvider, Role, User, UserSecurity, utcnow
from aroma.auth.password import hash_password
from aroma.auth.tokens import create_access_token


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

ADMIN_PASSWORD = "AdminPass123!"
VIEWER_PASSWORD = "ViewerPass123!"
USER_PASSWORD = "UserPass123!"


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh test database engine for each test."""
    engine = get_engine(TEST_DATABASE_URL)
    init_db(engine)

    yield engine

    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(scope="function")
def client(test_engine) -> Generator[TestClient, None, None]:
    """Create a test client with fresh database."""
    app.state.db_engine = test_engine
    app.state.db_session_factory = get_session_factory(test_engine)

    with TestClient(app) as c:
        yield c

    app.state.db_session_factory = None


def create_user(
    db: Session,
    email: str,
    password: Optional[str],
    role: Role = Role.USER,
    name: str = "Test User",
    provider: AuthProvider = AuthProvider.LOCAL,
) -> User:
    now = utcnow()
    user = User(
        id=uuid4(),
        name=name,
        email=email,
        password_hash=hash_password(password) if password else None,
        role=role,
        auth_provider=provider,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(scope="function")
def test_admin(db_session) -> User:
    """Create a test admin user."""
    return create_user(db_session, "admin@test.com", ADMIN_PASSWORD, Role.ADMIN, name="Admin")


@pytest.fixture(scope="function")
def test_viewer(db_session) -> User:
    """Create a test viewer user."""
    return create_user(db_session, "viewer@test.com", VIEWER_PASSWORD, Role.VIEWER, name="Viewer")


@pytest.fixture(scope="function")
def test_user(db_session) -> User:
    """Create a test customer account."""
    return create_user(db_session, "user@test.com", USER_PASSWORD, Role.USER, name="Cliente")


@pytest.fixture(scope="function")
def google_user(db_session) -> User:
    """Create a federated account without a password."""
    return create_user(
        db_session,
        "google@test.com",
        None,
        Role.USER,
        name="google",
        provider=AuthProvider.GOOGLE,
    )


def set_security(db: Session, user_id: UUID, **fields) -> None:
    """Seed or overwrite a user's security row."""
    row = db.get(UserSecurity, user_id)
    if row is None:
        row = UserSecurity(user_id=user_id)
    for name, value in fields.items():
        setattr(row, name, value)
    row.updated_at = utcnow()
    db.add(row)
    db.commit()
    db.expire_all()


def token_for(user: User, now: Optional[datetime] = None) -> str:
    return create_access_token(Identity.from_user(user), now=now)


def auth_headers(user: User) -> dict:
    """Bearer header for a user, without going through bcrypt login."""
    return {"Authorization": f"Bearer {token_for(user)}"}


def login_user(client: TestClient, email: str, password: str):
    """Helper function to login; returns the response."""
    return client.post("/api/auth/login", json={"email": email, "password": password})
