"""Bearer-token role checks.

Tokens are issued elsewhere; this module only verifies the signature and
reads the ``sub`` and ``role`` claims.
"""

from enum import Enum
from typing import Any, Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from core.config import settings


logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)


class Role(str, Enum):
    USER = "user"
    OWNER = "owner"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {Role.USER: 0, Role.OWNER: 1, Role.ADMIN: 2}


class Principal(BaseModel):
    subject: str
    role: Role


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """Decoded payload, or None if the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        role = Role(payload.get("role", Role.USER.value))
    except ValueError:
        logger.warning("Token carries unknown role", role=payload.get("role"))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role")

    return Principal(subject=str(payload["sub"]), role=role)


def require_role(minimum: Role):
    """Dependency factory: admin satisfies owner, owner satisfies user."""

    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role.rank < minimum.rank:
            logger.info(
                "Insufficient role",
                subject=principal.subject,
                role=principal.role.value,
                required=minimum.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{minimum.value} role required",
            )
        return principal

    return dependency
