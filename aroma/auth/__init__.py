"""
Café Aroma - Authentication Package

- bcrypt password hashing
- Progressive lockout and admin permanent locks
- JWT session tokens in an HTTP-only cookie
- Per-request role and lock re-check
"""

from aroma.auth.models import User, UserSecurity, Role
from aroma.auth.authenticator import Identity, authenticate
from aroma.auth.dependencies import Principal, authorize, get_active_user, get_current_user
from aroma.auth.tokens import create_access_token, verify_access_token

__all__ = [
    "User",
    "UserSecurity",
    "Role",
    "Identity",
    "authenticate",
    "Principal",
    "authorize",
    "get_current_user",
    "get_active_user",
    "create_access_token",
    "verify_access_token",
]
