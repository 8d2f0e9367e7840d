"""
Café Aroma - Authentication Routes

API endpoints for the storefront account:
- POST /auth/login         - Email/password login, sets session cookie
- POST /auth/logout        - Clears session cookie
- GET  /auth/profile       - Current user profile (lock re-checked)
- POST /auth/register      - Create a local account, sets session cookie
- POST /auth/google        - Google Sign-In, sets session cookie
- PUT  /auth/update-phone  - Update own phone number
- PUT  /auth/password      - Change own password
- GET  /auth/users/{id}    - Public profile (owner or admin)

Failures are AuthError subclasses, rendered by the handlers registered in
aroma.auth.errors.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session as DBSession
from starlette.concurrency import run_in_threadpool

from aroma.auth import users as user_service
from aroma.auth.authenticator import Identity, authenticate
from aroma.auth.dependencies import (
    Principal,
    get_db,
    require_owner_or_admin,
    require_permission,
)
from aroma.auth.errors import InvalidInput, UserNotFound, storage_errors
from aroma.auth.federated import verify_google_id_token
from aroma.auth.models import User
from aroma.auth.password import check_password_strength
from aroma.auth.schemas import (
    ChangePasswordRequest,
    GoogleLoginRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PHONE_PATTERN,
    ProfileResponse,
    RegisterRequest,
    UpdatePhoneRequest,
    UpdatePhoneResponse,
)
from aroma.auth.tokens import clear_session_cookie, create_access_token, set_session_cookie
from aroma.gateway.rbac import Permission


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _profile(user: User) -> ProfileResponse:
    return ProfileResponse(
        id=str(user.id),
        name=user.name,
        email=user.email,
        phone_number=user.phone_number,
        role=user.role.value,
        image=user.image,
    )


def _start_session(response: Response, identity: Identity) -> None:
    set_session_cookie(response, create_access_token(identity))


@router.post("/login", response_model=LoginResponse, summary="Email/password login")
async def login(
    credentials: LoginRequest,
    response: Response,
    db: DBSession = Depends(get_db),
):
    """
    Authenticate with email and password.

    On success the session token is set as the `access_token` cookie.

    Raises:
        400: Missing or malformed email/password
        401: Unknown email or wrong password (with remaining attempts)
        423: Temporarily or permanently locked account
    """
    identity = await authenticate(db, credentials.email, credentials.password)
    _start_session(response, identity)
    return LoginResponse(message="Login exitoso", user=identity.public())


@router.post("/logout", response_model=MessageResponse, summary="Clear session cookie")
async def logout(response: Response):
    """Tokens are not stored server-side; logging out drops the cookie."""
    clear_session_cookie(response)
    return MessageResponse(message="✅ Logout exitoso")


@router.get("/profile", response_model=ProfileResponse, summary="Current user profile")
async def get_profile(
    principal: Principal = Depends(require_permission(Permission.READ_PROFILE)),
    db: DBSession = Depends(get_db),
):
    with storage_errors("profile lookup"):
        user = await user_service.get_user_by_id(db, principal.id)
    if user is None:
        raise UserNotFound()
    return _profile(user)


@router.post(
    "/register",
    response_model=LoginResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a local account",
)
async def register(
    body: RegisterRequest,
    response: Response,
    db: DBSession = Depends(get_db),
):
    """
    Register with name, phone, email and password.

    The password strength policy applies here and on password change, never at login.
    """
    ok, reason = check_password_strength(body.password)
    if not ok:
        raise InvalidInput(reason)

    if not body.name or not body.phone_number or "@" not in body.email:
        raise InvalidInput("Todos los campos son obligatorios.")

    with storage_errors("registration"):
        user = await user_service.create_local_user(
            db,
            name=body.name,
            email=body.email,
            password=body.password,
            phone_number=body.phone_number,
        )

    identity = Identity.from_user(user)
    _start_session(response, identity)
    return LoginResponse(message="✅ Registro exitoso", user=identity.public())


@router.post("/google", response_model=LoginResponse, summary="Google Sign-In")
async def google_login(
    body: GoogleLoginRequest,
    response: Response,
    db: DBSession = Depends(get_db),
):
    """
    Exchange a Google ID token for a session.

    First sign-in creates a `user` account without a password.
    """
    credential = body.credential.strip()
    nonce = body.nonce.strip()
    if not credential or not nonce:
        raise InvalidInput("Credenciales inválidas")

    claims = await run_in_threadpool(verify_google_id_token, credential, nonce)

    with storage_errors("google login"):
        user = await user_service.upsert_federated_user(
            db,
            google_id=str(claims["sub"]),
            email=str(claims["email"]),
            picture=claims.get("picture"),
        )

    identity = Identity.from_user(user)
    logger.info("Google sign-in for user %s", identity.id)
    _start_session(response, identity)
    return LoginResponse(message="✅ Inicio de sesión con Google exitoso", user=identity.public())


@router.put("/update-phone", response_model=UpdatePhoneResponse, summary="Update own phone")
async def update_phone(
    body: UpdatePhoneRequest,
    principal: Principal = Depends(require_permission(Permission.WRITE_PROFILE)),
    db: DBSession = Depends(get_db),
):
    if not PHONE_PATTERN.match(body.phone_number):
        raise InvalidInput("El teléfono debe tener entre 7 y 15 dígitos")

    with storage_errors("phone update"):
        user = await user_service.update_phone(db, principal.id, body.phone_number)
    if user is None:
        raise UserNotFound()
    return UpdatePhoneResponse(message="✅ Teléfono actualizado", user=_profile(user))


@router.get("/users/{user_id}", response_model=ProfileResponse, summary="Public profile")
async def get_user_profile(
    user_id: UUID,
    principal: Principal = Depends(require_owner_or_admin),
    db: DBSession = Depends(get_db),
):
    with storage_errors("profile lookup"):
        user = await user_service.get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFound()
    return _profile(user)


@router.put("/password", response_model=MessageResponse, summary="Change own password")
async def change_password(
    body: ChangePasswordRequest,
    principal: Principal = Depends(require_permission(Permission.WRITE_PROFILE)),
    db: DBSession = Depends(get_db),
):
    """
    Change the password of the signed-in account.

    Raises:
        400: Missing fields, weak new password, or new equals current
        401: Current password is wrong
    """
    if not body.current_password or not body.new_password:
        raise InvalidInput("Se requieren la contraseña actual y la nueva contraseña")

    ok, reason = check_password_strength(body.new_password)
    if not ok:
        raise InvalidInput(reason)

    with storage_errors("password change"):
        user = await user_service.change_password(
            db, principal.id, body.current_password, body.new_password
        )
    if user is None:
        raise UserNotFound()
    return MessageResponse(message="✅ Contraseña actualizada")
