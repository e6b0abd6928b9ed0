"""
Caller identity for user-facing routes.

Validates a Clerk Bearer JWT when present and falls back to the X-User-Id
header outside production (development and tests).
"""
import logging
from typing import Optional

import jwt
from fastapi import Header, HTTPException, Request

from plansync.core.clerk_auth import verify_jwt_token
from plansync.core.config import settings

logger = logging.getLogger("plansync.auth")


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test caller id"),
) -> str:
    """
    Resolve the calling user's id.

    Priority:
    1. Clerk JWT from the Authorization header
    2. X-User-Id header, outside production only
    3. 401
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        try:
            claims = verify_jwt_token(token)
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.PyJWTError as exc:
            logger.debug("auth.invalid_token", extra={"error_code": exc.__class__.__name__})
            raise HTTPException(status_code=401, detail="Invalid token")
        user_id = claims.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Token has no subject")
        return user_id

    if settings.ENV.lower() == "production":
        if x_user_id:
            logger.warning("auth.user_header_refused", extra={"error_code": "user_header_in_production"})
        raise HTTPException(status_code=401, detail="Missing Authorization (Bearer JWT)")

    if x_user_id:
        return x_user_id

    raise HTTPException(
        status_code=401,
        detail="Missing Authorization (Bearer JWT) or X-User-Id header",
    )
