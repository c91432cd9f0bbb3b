"""
Authentication Utilities
JWT access tokens for dashboard users
Source: https://fastapi.tiangolo.com/tutorial/security/oauth2-jwt/
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from revcycle.api.config import settings
from revcycle.core.enums import Role


def create_access_token(
    subject: str,
    role: Role,
    patient_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: User identifier (``sub``)
        role: Dashboard role the capability table is keyed on
        patient_id: Patient record the user may see, for patient logins
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    to_encode: dict[str, Any] = {"sub": subject, "role": Role(role).value}
    if patient_id:
        to_encode["patient_id"] = patient_id
    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[Any, Any] | None:
    """
    Decode and verify a JWT token.

    Returns:
        Token payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        return None
