"""Bearer-token identity and permission checks for the analytics API.

Tokens are HS256 (by default) JWTs whose ``roles`` claim lists the permissions
granted to the caller. Requests without a valid token get an anonymous user
with no permissions, so every protected route answers 403 rather than 401.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from billing_analytics.core.config import get_settings


logger = logging.getLogger("billing_analytics.security")

REFRESH_PERMISSION = "analytics.refresh"
SANITY_READ_PERMISSION = "analytics.sanity.read"
METRICS_READ_PERMISSION = "system.metrics.read"

ANONYMOUS_SUBJECT = "anonymous"


@dataclass
class AuthUser:
    sub: str
    roles: list[str] = field(default_factory=list)

    def missing_permissions(self, permissions: Iterable[str]) -> list[str]:
        return [permission for permission in permissions if permission not in self.roles]


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_user(token: str) -> AuthUser | None:
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.info("auth.token.rejected", extra={"error": str(exc)})
        return None

    roles = claims.get("roles")
    if not isinstance(roles, list):
        roles = []
    return AuthUser(sub=str(claims.get("sub") or ANONYMOUS_SUBJECT), roles=[str(role) for role in roles])


async def get_current_user(request: Request) -> AuthUser:
    token = _bearer_token(request)
    user = decode_user(token) if token else None
    return user or AuthUser(sub=ANONYMOUS_SUBJECT)


def require_permissions(*permissions: str) -> Callable[[AuthUser], AuthUser]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        missing = user.missing_permissions(permissions)
        if missing:
            logger.warning("auth.permission.denied", extra={"error": f"{user.sub} lacks {', '.join(missing)}"})
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return user

    return checker
