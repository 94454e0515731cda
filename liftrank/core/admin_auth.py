"""
Admin authentication for ranking administration.

Supports hybrid authentication:
- JWT (preferred): Bearer token whose claims carry an admin role
- Legacy X-Admin-Key: shared secret

Auth modes (ADMIN_AUTH_MODE):
- "jwt": Only JWT allowed
- "legacy": Only X-Admin-Key allowed
- "hybrid": Both allowed (legacy blocked when ENVIRONMENT=prod)
"""
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from fastapi import HTTPException, Request

from liftrank.core.auth import bearer_token, verify_jwt_token
from liftrank.core.config import settings


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["jwt", "legacy_key"]
    actor_id: str  # JWT subject or "legacy:<hash>"
    actor_display: Optional[str] = None


def is_admin_claims(claims: Dict[str, Any]) -> bool:
    """True when claims carry public_metadata.role == "admin" or org_role == "admin"."""
    public_metadata = claims.get("public_metadata", {})
    if isinstance(public_metadata, dict) and public_metadata.get("role") == "admin":
        return True
    return claims.get("org_role") == "admin"


def verify_legacy_key(request: Request) -> Optional[AdminActor]:
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or header_key != expected_key:
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_type="legacy_key",
        actor_id=f"legacy:{key_hash}",
        actor_display="Legacy Admin Key",
    )


def verify_admin_jwt(request: Request) -> Optional[AdminActor]:
    token = bearer_token(request)
    if not token or not settings.JWT_SECRET_KEY:
        return None
    try:
        claims = verify_jwt_token(token)
    except HTTPException:
        return None
    if not is_admin_claims(claims):
        return None
    return AdminActor(
        actor_type="jwt",
        actor_id=claims["sub"],
        actor_display=claims.get("name") or claims.get("email"),
    )


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """
    Attempt to authenticate admin from request.
    Returns AdminActor or None (does not raise).
    """
    mode = settings.ADMIN_AUTH_MODE.lower()
    env = settings.ENVIRONMENT.lower()

    if mode in {"jwt", "hybrid"}:
        actor = verify_admin_jwt(request)
        if actor:
            return actor

    if mode in {"legacy", "hybrid"}:
        if env == "prod" and mode != "legacy":
            return None
        return verify_legacy_key(request)

    return None


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.post("/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    actor = get_admin_actor(request)
    if actor:
        return actor

    if not settings.JWT_SECRET_KEY and not settings.ADMIN_KEY:
        raise HTTPException(
            status_code=503,
            detail="Admin authentication not configured: set ADMIN_KEY or JWT_SECRET_KEY",
        )
    raise HTTPException(
        status_code=401,
        detail=f"Unauthorized: invalid or missing admin credentials (mode: {settings.ADMIN_AUTH_MODE})",
    )
