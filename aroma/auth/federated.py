"""
Café Aroma - Google Sign-In

Verification of Google ID tokens posted by the storefront's Sign-In button.
Signing keys come from Google's JWKS endpoint and are cached for an hour.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests
from jose import JWTError, jwt

from aroma.auth.errors import FederatedAuthError, InternalAuthError
from aroma.config import settings


logger = logging.getLogger(__name__)

GOOGLE_JWKS_URI = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
JWKS_CACHE_SECONDS = 3600

_jwks_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}


def _get_jwks(jwks_uri: str = GOOGLE_JWKS_URI) -> Dict[str, Any]:
    """
    Fetch Google's JSON Web Key Set.
    Caches result for 1 hour per JWKS URI.
    """
    ts, cached = _jwks_cache.get(jwks_uri, (0.0, None))
    now = time.time()
    if cached is not None and now - ts < JWKS_CACHE_SECONDS:
        return cached
    r = requests.get(jwks_uri, timeout=10)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid JWKS")
    _jwks_cache[jwks_uri] = (now, data)
    return data


def _signing_key(id_token: str) -> Dict[str, Any]:
    kid = str(jwt.get_unverified_header(id_token).get("kid") or "")
    if not kid:
        raise ValueError("ID token missing kid")

    keys = _get_jwks().get("keys")
    if not isinstance(keys, list):
        raise ValueError("Invalid JWKS keys")

    for key in keys:
        if isinstance(key, dict) and str(key.get("kid") or "") == kid:
            return key
    raise ValueError("Unknown signing key (kid)")


def verify_google_id_token(id_token: str, nonce: str) -> Dict[str, Any]:
    """
    Validate a Google ID token.

    - Verifies the RS256 signature against Google's published keys
    - Validates audience (GOOGLE_CLIENT_ID), issuer and expiry
    - Rejects a nonce that differs from the one the client generated
    - Requires `sub` and `email`, and a verified email when Google says so

    Returns:
        The token claims

    Raises:
        InternalAuthError: GOOGLE_CLIENT_ID not configured
        FederatedAuthError: Any validation failure or JWKS fetch error
    """
    if not settings.GOOGLE_CLIENT_ID:
        logger.error("GOOGLE_CLIENT_ID is not configured")
        raise InternalAuthError()

    try:
        key = _signing_key(id_token)
        claims = jwt.decode(
            id_token,
            key,
            algorithms=["RS256"],
            audience=settings.GOOGLE_CLIENT_ID,
            issuer=GOOGLE_ISSUERS,
        )
    except (JWTError, ValueError, requests.RequestException) as e:
        logger.warning("Google ID token rejected: %s", e)
        raise FederatedAuthError()

    token_nonce = claims.get("nonce")
    if token_nonce is not None and token_nonce != nonce:
        logger.warning("Google ID token rejected: nonce mismatch")
        raise FederatedAuthError()

    if not claims.get("sub") or not claims.get("email"):
        raise FederatedAuthError("Datos del usuario incompletos")

    email_verified = claims.get("email_verified")
    if email_verified is not None and email_verified is not True:
        logger.warning("Google ID token rejected: email not verified")
        raise FederatedAuthError()

    return claims
