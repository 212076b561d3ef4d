"""
Authentication and Authorization

- PasswordHasher: bcrypt hashing through passlib
- TokenService: signed, time-bound identity tokens (HS256 JWT)
- get_current_identity / admin_only: FastAPI dependencies gating requests
- Permission table: the single place role-based decisions are made
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import jwt
from fastapi import Depends, Header, Request
from passlib.context import CryptContext

from context import get_context
from errors import Forbidden, Unauthorized
from schemas import ROLE_ADMIN, ROLE_USER

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
BEARER_SCHEME = "Bearer"


class PasswordHasher:
    def __init__(self, rounds: int = 12):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        return self._context.verify(password, password_hash)


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    role: str = ""


class TokenService:
    """Issues and verifies identity tokens carrying a user id and role."""

    def __init__(self, secret: str, ttl: timedelta = timedelta(hours=24)):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self.ttl = ttl

    def issue(self, user_id: str, role: str, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        claims = {
            "userId": user_id,
            "role": role,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise Unauthorized("Invalid or expired token")
        except jwt.InvalidTokenError as exc:
            logger.debug("Token rejected: %s", exc)
            raise Unauthorized("Invalid or expired token")

        user_id = claims.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise Unauthorized("Invalid user ID in token")
        role = claims.get("role")
        return TokenClaims(user_id=user_id, role=role if isinstance(role, str) else "")


# ===================== Permissions =====================

class Permission(str, Enum):
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_USERS = "manage_users"
    MANAGE_ORDERS = "manage_orders"
    VIEW_STATS = "view_stats"


ROLE_PERMISSIONS = {
    ROLE_ADMIN: frozenset(Permission),
    ROLE_USER: frozenset(),
}


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def has_permission(identity: Identity, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(identity.role, frozenset())


def can_act_on(identity: Identity, owner_id: Any, permission: Permission) -> bool:
    """True when the identity owns the resource or holds the permission."""
    if owner_id is not None and str(owner_id) == identity.user_id:
        return True
    return has_permission(identity, permission)


# ===================== Request guards =====================

def parse_bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Authorization header required")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != BEARER_SCHEME or not parts[1]:
        raise Unauthorized("Invalid authorization header format")
    return parts[1]


def get_current_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Identity:
    token = parse_bearer(authorization)
    claims = get_context(request).tokens.verify(token)
    return Identity(user_id=claims.user_id, role=claims.role)


def admin_only(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Admin access required")
    return identity


def require_permission(permission: Permission):
    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not has_permission(identity, permission):
            raise Forbidden("Admin access required")
        return identity

    return dependency
