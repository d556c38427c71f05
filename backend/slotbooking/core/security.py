"""
Principal tokens.

Authentication lives with the identity provider; it hands every request a
signed bearer token whose claims describe the verified principal. This
module only verifies the signature and turns the claims into a Principal.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from slotbooking.core.config import get_settings
from slotbooking.core.logging import get_logger
from slotbooking.schemas.principal import Principal

logger = get_logger(__name__)
settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(principal: Principal, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {
        "sub": str(principal.id),
        "gender": principal.gender.value if principal.gender else None,
        "role": principal.role.value,
        "email_verified": principal.email_verified,
        "email": principal.email,
        "name": principal.name,
        "exp": expire,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_principal(token: str) -> Principal:
    """Raises jwt.InvalidTokenError on a bad signature, expiry or payload."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    try:
        return Principal(
            id=int(payload["sub"]),
            gender=payload.get("gender"),
            role=payload.get("role", "member"),
            email_verified=bool(payload.get("email_verified", False)),
            email=payload.get("email"),
            name=payload.get("name"),
        )
    except (KeyError, ValueError) as e:
        raise jwt.InvalidTokenError(f"Malformed principal claims: {e}") from e


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_principal(credentials.credentials)
    except jwt.InvalidTokenError as e:
        logger.warning("principal_token_rejected", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal
