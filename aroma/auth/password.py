"""
Café Aroma - Password Hashing Utilities

bcrypt hashing with work factor 12, plus the password strength policy.

Security:
- Never log or expose plaintext passwords
- Verification is constant-time (bcrypt.checkpw)
- Strength rules apply when a password is chosen (registration, password
  change); login accepts any non-empty password so responses do not reveal
  the policy
"""

import re
from typing import Optional, Tuple

import bcrypt
from starlette.concurrency import run_in_threadpool


BCRYPT_WORK_FACTOR = 12

SPECIAL_CHARACTERS = r"[!@#$%^&*(),.?\":{}|<>]"


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Returns:
        bcrypt hash string (includes salt)
    """
    salt = bcrypt.gensalt(rounds=BCRYPT_WORK_FACTOR)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a password against a bcrypt hash.

    Federated accounts have no hash; they never match.
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except (ValueError, TypeError):
        # Invalid hash format
        return False


async def verify_password_async(plain_password: str, hashed_password: Optional[str]) -> bool:
    """bcrypt is CPU bound; run it off the event loop."""
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


def needs_rehash(hashed_password: str, target_work_factor: int = BCRYPT_WORK_FACTOR) -> bool:
    """
    Check if a password hash was produced with a lower work factor.

    bcrypt hash format: $2b$XX$... where XX is the work factor.
    """
    try:
        _, work_factor_str, _ = hashed_password.split("$")[1:4]
        return int(work_factor_str) < target_work_factor
    except (ValueError, IndexError, AttributeError):
        return True


def check_password_strength(password: str) -> Tuple[bool, str]:
    """
    Registration password policy.

    Returns:
        (ok, reason); reason is empty when ok
    """
    p = (password or "").strip()
    if len(p) < 8:
        return False, "Debe tener al menos 8 caracteres"
    if not re.search(r"[A-Z]", p):
        return False, "Debe contener una letra mayúscula"
    if not re.search(r"[a-z]", p):
        return False, "Debe contener una letra minúscula"
    if not re.search(r"[0-9]", p):
        return False, "Debe contener un número"
    if not re.search(SPECIAL_CHARACTERS, p):
        return False, "Debe contener un carácter especial"
    return True, ""
