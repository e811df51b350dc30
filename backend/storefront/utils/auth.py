"""
Auth Dependencies — Bearer JWT verification.
Tokens are issued by the account service; this side only verifies them.
"""
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from storefront.config import get_settings
from storefront.utils.errors import AuthError, ForbiddenError
from storefront.utils.rate_limiter import enforce

security = HTTPBearer(auto_error=False)

ROLE_ADMIN = "ADMIN"


@dataclass
class CurrentUser:
    user_id: str
    role: str = "USER"
    mobile: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_token(token: str) -> CurrentUser:
    settings = get_settings()
    try:
        payload = jwt.decode(token.strip(), settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired", error_code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid or expired token", error_code="INVALID_TOKEN")

    user_id = payload.get("user_id") or payload.get("userId") or payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token payload", error_code="INVALID_TOKEN")
    return CurrentUser(user_id=str(user_id), role=payload.get("role", "USER"), mobile=payload.get("mobile"))


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> CurrentUser:
    if not credentials or not credentials.credentials:
        raise AuthError("Authentication required")
    return decode_token(credentials.credentials)


def get_optional_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Optional[CurrentUser]:
    """Guests allowed; a bad token is treated as no token."""
    if not credentials or not credentials.credentials:
        return None
    try:
        return decode_token(credentials.credentials)
    except AuthError:
        return None


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


def rate_limit_user(scope: str):
    """Per-user rate limiting; resolves to the authenticated user."""
    def limiter(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        enforce(f"{scope}:{user.user_id}", scope)
        return user

    return limiter
