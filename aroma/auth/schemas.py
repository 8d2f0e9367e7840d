"""
Café Aroma - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.

Login bodies are deliberately loose: shape errors are reported by the
authenticator as INVALID_INPUT with the usual error body, and the password
strength policy is never applied at login.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


PHONE_PATTERN = re.compile(r"^\d{7,15}$")


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: Optional[str] = Field(default=None, description="User email address")
    password: Optional[str] = Field(default=None, description="User password")


class PublicUser(BaseModel):
    """Public projection of a user (never the password hash)."""
    id: str
    name: str
    email: str
    role: str


class LoginResponse(BaseModel):
    """Response body for successful login, registration and Google login."""
    message: str
    user: PublicUser


class MessageResponse(BaseModel):
    message: str


class ProfileResponse(BaseModel):
    """Response body for GET /auth/profile."""
    id: str
    name: str
    email: str
    phone_number: Optional[str] = None
    role: str
    image: Optional[str] = None


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""
    name: str = Field(default="", max_length=120)
    email: str = Field(default="")
    password: str = Field(default="")
    phone_number: str = Field(default="")

    @field_validator("name", "email", "password", mode="before")
    @classmethod
    def strip_strings(cls, v):
        return v.strip() if isinstance(v, str) else (v or "")

    @field_validator("phone_number", mode="before")
    @classmethod
    def digits_only(cls, v):
        """Keep digits only, like the storefront form does."""
        return re.sub(r"\D", "", str(v)) if v is not None else ""


class GoogleLoginRequest(BaseModel):
    """Request body for POST /auth/google."""
    credential: str = Field(default="", description="Google ID token")
    nonce: str = Field(default="", description="Nonce generated by the client")


class UpdatePhoneRequest(BaseModel):
    """Request body for PUT /auth/update-phone."""
    phone_number: str = Field(default="")

    @field_validator("phone_number", mode="before")
    @classmethod
    def digits_only(cls, v):
        return re.sub(r"\D", "", str(v)) if v is not None else ""


class UpdatePhoneResponse(BaseModel):
    message: str
    user: ProfileResponse


class ChangePasswordRequest(BaseModel):
    """Request body for PUT /auth/password."""
    current_password: str = Field(default="")
    new_password: str = Field(default="")


# =============================================================================
# Admin security panel
# =============================================================================

class LockRequest(BaseModel):
    """Request body for POST /admin/security/users/{id}/lock."""
    # Matches the user_security.lock_reason column
    reason: str = Field(default="", max_length=255)
    permanent: bool = Field(default=False)
    duration: Optional[int] = Field(
        default=None,
        ge=1,
        le=60 * 24 * 365,
        description="Minutes for a temporary lock (defaults to the lockout duration)",
    )


class LockResponse(BaseModel):
    success: bool = True
    permanent: bool
    message: str


class SuccessResponse(BaseModel):
    success: bool = True
    message: str


class SecurityStats(BaseModel):
    """Aggregate counters for GET /admin/security/stats."""
    permanently_locked: int
    locked_accounts: int
    accounts_with_attempts: int
    failed_logins_today: int
    successful_logins_today: int


class SecurityOverview(BaseModel):
    users: List[Dict[str, Any]]
    stats: SecurityStats
    pagination: Dict[str, int]


# =============================================================================
# Admin user management
# =============================================================================

class ChangeRoleRequest(BaseModel):
    """Request body for PUT /admin/users/{id}/role."""
    role: str = Field(default="")


class ChangeRoleResponse(BaseModel):
    success: bool = True
    user: PublicUser
