"""
Authentication Middleware and Dependencies

Access tokens are issued by the identity provider and verified here with the
shared secret. The ``sub`` claim is the identity id.

Provides:
- decode_token: Validate a JWT and extract its claims
- get_current_user_required: Identity of the caller
- RoleChecker / require_admin: Role-based access control

Admin access comes from the token's ``role`` claim or from ``ADMIN_EMAILS``.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel

from config import get_settings
from sentry_integration import set_user

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


class UserRole(str, Enum):
    admin = "admin"
    user = "user"


class TokenData(BaseModel):
    """Data extracted from JWT token"""
    user_id: str
    email: str
    role: Optional[str] = None
    exp: Optional[datetime] = None
    token_type: str = "access"


class AuthUser(BaseModel):
    """Authenticated caller"""
    id: str
    email: str
    role: str = UserRole.user.value

    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value


# ==================== TOKENS ====================

def create_access_token(
    identity_id: str,
    email: str,
    role: Optional[str] = None,
    expires_delta: timedelta = timedelta(hours=1)
) -> str:
    """Mint an access token. Used by internal tooling and tests."""
    settings = get_settings()
    payload = {
        "sub": identity_id,
        "email": email,
        "type": "access",
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[TokenData]:
    """Decode and validate a JWT token"""
    settings = get_settings()
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is not configured; rejecting token")
        return None
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        return None

    exp = payload.get("exp")
    return TokenData(
        user_id=user_id,
        email=email,
        role=payload.get("role"),
        token_type=payload.get("type", "access"),
        exp=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None
    )


def resolve_role(token_data: TokenData) -> str:
    if token_data.role == UserRole.admin.value:
        return UserRole.admin.value
    if token_data.email.strip().lower() in get_settings().admin_emails_list:
        return UserRole.admin.value
    return UserRole.user.value


def _authenticate(credentials: Optional[HTTPAuthorizationCredentials]) -> AuthUser:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    token_data = decode_token(credentials.credentials)
    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if token_data.token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = AuthUser(id=token_data.user_id, email=token_data.email, role=resolve_role(token_data))
    set_user(user.id, user.role)
    return user


# ==================== DEPENDENCIES ====================

async def get_current_user_required(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthUser:
    """
    Extract current user from JWT token.
    Raises 401 if no token or invalid token.
    """
    return _authenticate(credentials)


class RoleChecker:
    """
    Dependency class for role-based access control.

    Usage:
        @router.get("/admin-only")
        async def admin_endpoint(user: AuthUser = Depends(RoleChecker(["admin"]))):
            ...
    """

    def __init__(self, allowed_roles: List[str]):
        self.allowed_roles = allowed_roles

    async def __call__(self, user: AuthUser = Depends(get_current_user_required)) -> AuthUser:
        if user.role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {self.allowed_roles}"
            )
        return user


require_admin = RoleChecker([UserRole.admin.value])
