"""
Bearer-token authentication for the ranking API.

Validates HS256 JWTs and extracts user_id from the `sub` claim.
Falls back to the X-User-Id header when ALLOW_USER_ID_HEADER is on (dev/tests).
"""
from typing import Any, Dict, Optional

import jwt
import logging
from fastapi import Header, HTTPException, Request

from liftrank.core.config import settings

logger = logging.getLogger(__name__)


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify a JWT and return its claims.

    Raises:
        HTTPException 401: Invalid, expired or unverifiable token
    """
    secret = settings.JWT_SECRET_KEY
    if not secret:
        raise HTTPException(status_code=401, detail="Token verification is not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return claims


def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def _remember_profile(user_id: str, claims: Optional[Dict[str, Any]] = None) -> None:
    # Profile upsert must never block authentication
    try:
        from liftrank.features.profiles.service import profile_directory
        claims = claims or {}
        profile_directory.upsert(
            user_id,
            display_name=claims.get("name") or claims.get("displayName"),
            photo_url=claims.get("picture") or claims.get("photoURL"),
        )
    except Exception as e:
        logger.warning(f"Failed to upsert profile for {user_id}: {e}")


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Dev/test user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (only when ALLOW_USER_ID_HEADER is enabled)
    3. Raise 401 Unauthorized
    """
    token = bearer_token(request)
    if token:
        claims = verify_jwt_token(token)
        user_id = claims["sub"]
        _remember_profile(user_id, claims)
        request.state.claims = claims
        return user_id

    if x_user_id and settings.ALLOW_USER_ID_HEADER:
        _remember_profile(x_user_id)
        return x_user_id

    raise HTTPException(
        status_code=401,
        detail="Missing Authorization (Bearer JWT) or X-User-Id header",
    )
