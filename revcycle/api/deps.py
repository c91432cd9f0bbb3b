"""
FastAPI Dependencies
Dependency injection for authentication, capability checks and the engine
Source: https://fastapi.tiangolo.com/tutorial/dependencies/
"""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from revcycle.core.enums import Permission, Role
from revcycle.core.permissions import get_role_permissions, has_permission, is_patient_scoped
from revcycle.services.engine import RevenueCycleEngine
from revcycle.services.engine import get_engine as _get_engine
from revcycle.utils.auth import decode_token
from revcycle.utils.errors import AuthenticationError, PermissionDeniedError

# HTTP Bearer token security scheme
security = HTTPBearer()


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as read from the access token."""

    user_id: str
    role: Role
    patient_id: Optional[str] = None

    @property
    def permissions(self) -> list[str]:
        return get_role_permissions(self.role)

    @property
    def is_patient(self) -> bool:
        return is_patient_scoped(self.role)

    def scope_patient(self, requested: Optional[str]) -> Optional[str]:
        """
        Patient filter to apply to a listing.

        Patients are pinned to their own record; staff get what they asked for.
        """
        if not self.is_patient:
            return requested
        if requested is not None and requested != self.patient_id:
            raise PermissionDeniedError("Patients can only access their own records")
        return self.patient_id

    def ensure_owns(self, patient_id: str) -> None:
        if self.is_patient and patient_id != self.patient_id:
            raise PermissionDeniedError("Patients can only access their own records")


def get_engine() -> RevenueCycleEngine:
    """Engine dependency; tests override this with a fresh engine."""
    return _get_engine()


def actor_from_token(token: str) -> Actor:
    """
    Validate an access token and build the caller from its claims.

    Raises:
        AuthenticationError: If token is invalid or carries no usable role
    """
    payload = decode_token(token)
    if payload is None:
        raise AuthenticationError("Invalid token")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    user_id: str | None = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Invalid token payload")

    try:
        role = Role(payload.get("role"))
    except ValueError as err:
        raise AuthenticationError("Invalid role in token") from err

    patient_id = payload.get("patient_id")
    if role == Role.PATIENT and not patient_id:
        raise AuthenticationError("Patient token without patient id")

    return Actor(user_id=user_id, role=role, patient_id=patient_id)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """Get current authenticated actor from the bearer token."""
    return actor_from_token(credentials.credentials)


def require_permission(permission: Permission) -> Callable:
    """
    Dependency factory to require a specific permission.

    Usage:
        @router.get("/claims")
        async def list_claims(actor: Actor = Depends(require_permission(Permission.CLAIMS_READ))):
            ...
    """

    async def permission_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not has_permission(actor.role, permission):
            raise PermissionDeniedError(f"Permission denied: {permission.value} required")
        return actor

    return permission_checker
