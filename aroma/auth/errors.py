"""
Café Aroma - Authentication Errors

Closed set of failures surfaced by the Authenticator and the Request Gate.
Each subclass fixes its `code` and HTTP status and carries only the fields
the client needs for that failure; `register_exception_handlers` turns them
into JSON responses so no raw storage or crypto exception reaches a client.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


GENERIC_CREDENTIALS_MESSAGE = "Credenciales inválidas"
INTERNAL_MESSAGE = "Error interno del servidor"
INVALID_REQUEST_MESSAGE = "Datos de entrada inválidos"


class AuthError(Exception):
    """Base class for every authentication/authorization failure."""

    code: str = "AUTH_ERROR"
    status_code: int = 400
    default_message: str = "Error de autenticación"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def extra(self) -> Dict[str, Any]:
        """Kind-specific fields added to the response body."""
        return {}

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra()}


class InvalidInput(AuthError):
    code = "INVALID_INPUT"
    status_code = 400
    default_message = "Email y contraseña son obligatorios."


class InvalidCredentials(AuthError):
    """No such identity, or it cannot log in with a password."""

    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = GENERIC_CREDENTIALS_MESSAGE


class InvalidPassword(AuthError):
    code = "INVALID_PASSWORD"
    status_code = 401

    def __init__(self, attempts: int, remaining: int, max_attempts: int):
        self.attempts = attempts
        self.remaining = remaining
        self.max_attempts = max_attempts
        plural = "s" if remaining > 1 else ""
        super().__init__(f"Contraseña incorrecta. Te quedan {remaining} intento{plural}.")

    def extra(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "remaining": self.remaining,
            "maxAttempts": self.max_attempts,
        }


class AccountLocked(AuthError):
    """Temporary lock still in force."""

    code = "ACCOUNT_LOCKED"
    status_code = 423

    def __init__(
        self,
        remaining_minutes: int,
        locked_until: Optional[datetime] = None,
        lock_reason: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.remaining_minutes = remaining_minutes
        self.locked_until = locked_until
        self.lock_reason = lock_reason
        if message is None:
            plural = "s" if remaining_minutes > 1 else ""
            message = f"Cuenta bloqueada. Intenta de nuevo en {remaining_minutes} minuto{plural}."
        super().__init__(message)

    def extra(self) -> Dict[str, Any]:
        return {
            "remainingMin": self.remaining_minutes,
            "lockedUntil": self.locked_until.isoformat() if self.locked_until else None,
            "lock_reason": self.lock_reason,
            "isPermanent": False,
        }


class AccountPermanentlyLocked(AuthError):
    code = "ACCOUNT_PERMANENTLY_LOCKED"
    status_code = 423
    default_message = (
        "Tu cuenta ha sido bloqueada permanentemente. Contacta con el administrador."
    )

    def __init__(self, lock_reason: Optional[str] = None):
        self.lock_reason = lock_reason
        super().__init__()

    def extra(self) -> Dict[str, Any]:
        return {"lock_reason": self.lock_reason, "isPermanent": True}


class Unauthenticated(AuthError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "No autorizado"


class SessionExpired(AuthError):
    code = "SESSION_EXPIRED"
    status_code = 401
    default_message = "Sesión expirada"


class TokenInvalid(AuthError):
    code = "TOKEN_INVALID"
    status_code = 403
    default_message = "Token manipulado o inválido"


class Forbidden(AuthError):
    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403
    default_message = "Acceso denegado: Permisos insuficientes"

    def __init__(self, message: Optional[str] = None, required: Sequence[str] = ()):
        self.required = list(required)
        super().__init__(message)

    def extra(self) -> Dict[str, Any]:
        return {"required": self.required} if self.required else {}


class ReadOnlyAccess(Forbidden):
    """Viewer attempting a write."""

    code = "READ_ONLY_ACCESS"
    default_message = "Acceso denegado: Solo lectura"


class FederatedAuthError(AuthError):
    """Google ID token rejected (signature, audience, issuer, nonce, expiry)."""

    code = "GOOGLE_AUTH_FAILED"
    status_code = 401
    default_message = "Error al autenticar con Google. Token inválido o expirado."


class UserNotFound(AuthError):
    code = "USER_NOT_FOUND"
    status_code = 404
    default_message = "Usuario no encontrado"


class InternalAuthError(AuthError):
    """Storage or crypto failure; details only go to the operator log."""

    code = "INTERNAL"
    status_code = 500
    default_message = INTERNAL_MESSAGE


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """
    Map storage failures inside the block to InternalAuthError.

    Fail closed: a timeout or lost connection is never read as
    "not locked" or "valid password".
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Storage failure during %s", action)
        raise InternalAuthError() from exc


def register_exception_handlers(app: FastAPI) -> None:
    """Map AuthError and malformed requests to JSON bodies; anything else becomes a 500."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # Field locations only; the rejected input is never echoed back
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        logger.warning("Malformed request on %s %s: %s", request.method, request.url.path, fields)
        error = InvalidInput(INVALID_REQUEST_MESSAGE)
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": INTERNAL_MESSAGE})
