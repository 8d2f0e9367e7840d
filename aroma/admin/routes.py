"""
Café Aroma - Admin API Routes

Endpoints for the account-security panel and user management:
- Security listing, details and stats (read:security)
- Lock / unlock / reset attempts (manage:security; viewers get a read-only denial)
- Role change and account deletion (admin)

Lock state is re-checked for the caller on every request, so a locked
admin loses access immediately.
"""

import logging
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session as DBSession

from aroma.auth import security_store
from aroma.auth import users as user_service
from aroma.auth.dependencies import (
    Principal,
    get_db,
    require_admin,
    require_permission,
    require_write_access,
)
from aroma.auth.errors import InvalidInput, UserNotFound, storage_errors
from aroma.auth.lockout import LockPolicy, validate_lock_reason
from aroma.auth.models import Role
from aroma.auth.schemas import (
    ChangeRoleRequest,
    ChangeRoleResponse,
    LockRequest,
    LockResponse,
    SecurityOverview,
    SecurityStats,
    SuccessResponse,
)
from aroma.gateway.rbac import Permission


logger = logging.getLogger(__name__)

router = APIRouter()

LISTING_FILTERS = ("all", "locked", "permanent", "suspicious")


async def _existing_user(db: DBSession, user_id: UUID) -> None:
    if await user_service.get_user_by_id(db, user_id) is None:
        raise UserNotFound()


# =============================================================================
# Account Security Panel
# =============================================================================

@router.get("/security/users", response_model=SecurityOverview, summary="Security listing")
async def list_security_users(
    search: str = Query("", max_length=100),
    filter_name: str = Query("all", alias="filter"),
    page: int = Query(1, ge=1),
    principal: Principal = Depends(require_permission(Permission.READ_SECURITY)),
    db: DBSession = Depends(get_db),
):
    """
    Paginated users with their lock state.

    Filters: all, locked, permanent, suspicious (2 or more failed attempts,
    still below the lockout threshold).
    """
    if filter_name not in LISTING_FILTERS:
        raise InvalidInput(f"Filtro inválido. Debe ser uno de: {', '.join(LISTING_FILTERS)}")
    with storage_errors("security listing"):
        return await security_store.list_security_overview(
            db, search=search.strip(), filter_name=filter_name, page=page
        )


@router.get("/security/users/{user_id}", summary="Security details")
async def get_security_details(
    user_id: UUID,
    principal: Principal = Depends(require_permission(Permission.READ_SECURITY)),
    db: DBSession = Depends(get_db),
) -> Dict[str, Any]:
    with storage_errors("security details"):
        details = await security_store.get_security_details(db, user_id)
    if details is None:
        raise UserNotFound()
    return details


@router.get("/security/stats", response_model=SecurityStats, summary="Security stats")
async def get_security_stats(
    principal: Principal = Depends(require_permission(Permission.READ_SECURITY)),
    db: DBSession = Depends(get_db),
):
    with storage_errors("security stats"):
        return await security_store.get_security_stats(db)


@router.post("/security/users/{user_id}/lock", response_model=LockResponse, summary="Lock account")
async def lock_user(
    user_id: UUID,
    body: LockRequest,
    principal: Principal = Depends(require_write_access),
    db: DBSession = Depends(get_db),
):
    """
    Lock an account, temporarily (duration minutes) or permanently.

    The reason is validated before anything is written.
    """
    policy = LockPolicy.from_settings()
    reason = validate_lock_reason(body.reason, policy)
    duration = body.duration or policy.lock_minutes

    with storage_errors("admin lock"):
        await _existing_user(db, user_id)
        await security_store.lock_account(
            db,
            user_id,
            reason=reason,
            permanent=body.permanent,
            duration_minutes=duration,
        )

    if body.permanent:
        logger.warning("User %s PERMANENTLY locked by %s: %s", user_id, principal.id, reason)
        message = "Usuario bloqueado permanentemente"
    else:
        logger.warning(
            "User %s locked for %s minutes by %s: %s", user_id, duration, principal.id, reason
        )
        message = f"Usuario bloqueado por {duration} minutos"

    return LockResponse(success=True, permanent=body.permanent, message=message)


@router.post("/security/users/{user_id}/unlock", response_model=SuccessResponse, summary="Unlock account")
async def unlock_user(
    user_id: UUID,
    principal: Principal = Depends(require_write_access),
    db: DBSession = Depends(get_db),
):
    with storage_errors("admin unlock"):
        await _existing_user(db, user_id)
        await security_store.unlock_account(db, user_id)
    logger.info("User %s unlocked by %s", user_id, principal.id)
    return SuccessResponse(success=True, message="Usuario desbloqueado")


@router.post(
    "/security/users/{user_id}/reset-attempts",
    response_model=SuccessResponse,
    summary="Reset failed attempts",
)
async def reset_user_attempts(
    user_id: UUID,
    principal: Principal = Depends(require_write_access),
    db: DBSession = Depends(get_db),
):
    with storage_errors("attempt reset"):
        await _existing_user(db, user_id)
        await security_store.reset_attempts(db, user_id)
    logger.info("Login attempts of user %s reset by %s", user_id, principal.id)
    return SuccessResponse(success=True, message="Intentos reiniciados")


# =============================================================================
# User Management
# =============================================================================

@router.put("/users/{user_id}/role", response_model=ChangeRoleResponse, summary="Change role")
async def change_user_role(
    user_id: UUID,
    body: ChangeRoleRequest,
    principal: Principal = Depends(require_admin),
    db: DBSession = Depends(get_db),
):
    """The new role applies on the target's next request."""
    try:
        new_role = Role(body.role.strip())
    except ValueError:
        raise InvalidInput("Rol inválido")

    with storage_errors("role change"):
        user = await user_service.change_role(db, principal.id, user_id, new_role)
    if user is None:
        raise UserNotFound()
    return ChangeRoleResponse(success=True, user=user_service.public_identity(user))


@router.delete("/users/{user_id}", response_model=SuccessResponse, summary="Delete user")
async def delete_user(
    user_id: UUID,
    principal: Principal = Depends(require_permission(Permission.MANAGE_USERS)),
    db: DBSession = Depends(get_db),
):
    """Admins cannot delete themselves or the last remaining admin."""
    with storage_errors("user deletion"):
        deleted = await user_service.delete_user(db, principal.id, user_id)
    if not deleted:
        raise UserNotFound()
    return SuccessResponse(success=True, message="Usuario eliminado")
