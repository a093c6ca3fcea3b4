from __future__ import annotations
from typing import Any, Optional

import jwt
from fastapi import Depends, Header

from .config import Settings, get_settings
from .errors import Forbidden, Unauthorized


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


async def get_claims(authorization: Optional[str] = Header(None),
                     settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("No token provided")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthorized("No token provided")
    return decode_token(token, settings)


async def get_current_user_id(claims: dict[str, Any] = Depends(get_claims)) -> str:
    user_id = claims.get("sub") or claims.get("userId")
    if not user_id:
        raise Unauthorized("Token carries no user id")
    return str(user_id)


async def is_admin(claims: dict[str, Any] = Depends(get_claims)) -> bool:
    return claims.get("role") == "admin"


async def require_admin(admin: bool = Depends(is_admin)) -> None:
    if not admin:
        raise Forbidden("Admin privileges required")
