"""
Admin authentication for the plan repair and diagnostics routes.

ADMIN_AUTH_MODE picks which credentials are accepted:
    clerk   Bearer token whose claims carry the admin role
    legacy  X-Admin-Key shared secret
    hybrid  either one (default); the shared key is refused when ENVIRONMENT=prod

The resolved AdminActor.actor_id is what plan changes record as their actor.
"""
import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Literal, Optional

import jwt
from fastapi import HTTPException, Request

from plansync.core.clerk_auth import is_admin_user, verify_jwt_token
from plansync.core.config import settings


@dataclass
class AdminActor:
    actor_type: Literal["clerk", "legacy_key"]
    actor_id: str
    actor_email: Optional[str] = None
    auth_mechanism: Literal["clerk_jwt", "x_admin_key"] = "clerk_jwt"


def get_admin_api_key() -> Optional[str]:
    return os.getenv("ADMIN_API_KEY") or settings.ADMIN_KEY


def verify_legacy_key(request: Request) -> Optional[AdminActor]:
    expected = get_admin_api_key()
    presented = request.headers.get("X-Admin-Key", "").strip()
    if not (expected and presented) or not hmac.compare_digest(presented, expected):
        return None
    # Never record the key itself as the actor
    fingerprint = hashlib.sha256(presented.encode()).hexdigest()[:16]
    return AdminActor("legacy_key", f"legacy:{fingerprint}", auth_mechanism="x_admin_key")


def verify_clerk_admin(request: Request) -> Optional[AdminActor]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    try:
        claims = verify_jwt_token(token.strip())
    except jwt.PyJWTError:
        return None
    if not is_admin_user(claims):
        return None
    return AdminActor("clerk", claims.get("sub", "unknown"), claims.get("email"))


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """Resolve the admin caller under the configured mode; None if not an admin."""
    mode = settings.ADMIN_AUTH_MODE.lower()

    if mode in ("clerk", "hybrid"):
        actor = verify_clerk_admin(request)
        if actor is not None:
            return actor

    legacy_allowed = mode == "legacy" or (mode == "hybrid" and settings.ENVIRONMENT.lower() != "prod")
    if legacy_allowed:
        return verify_legacy_key(request)
    return None


def require_admin(request: Request) -> AdminActor:
    """FastAPI dependency for admin-only plan routes."""
    actor = get_admin_actor(request)
    if actor is not None:
        return actor

    clerk_configured = bool(settings.CLERK_SECRET_KEY or settings.CLERK_JWKS_URL)
    if not clerk_configured and not get_admin_api_key():
        raise HTTPException(status_code=503, detail="Admin authentication not configured")
    raise HTTPException(
        status_code=401,
        detail=f"Admin credentials missing or invalid (mode: {settings.ADMIN_AUTH_MODE.lower()})",
    )
