"""
Role-Based Capability Table.

Which roles may read, create, decide, pay or rescore. Every API route
checks one entry of this table through ``require_permission``; nothing
else decides visibility.
"""

from revcycle.core.enums import Permission, Role

_STAFF = (Role.SUPER_ADMIN, Role.HOSPITAL_ADMIN, Role.BILLING)


def _grant(*roles: Role) -> frozenset[Role]:
    return frozenset(roles)


PERMISSION_ROLES: dict[Permission, frozenset[Role]] = {
    # Claims
    Permission.CLAIMS_READ: _grant(
        *_STAFF, Role.INSURANCE, Role.AI_ANALYST, Role.PATIENT
    ),
    Permission.CLAIMS_CREATE: _grant(*_STAFF),
    Permission.CLAIMS_DECIDE: _grant(
        Role.SUPER_ADMIN, Role.HOSPITAL_ADMIN, Role.INSURANCE
    ),
    Permission.CLAIMS_RESCORE: _grant(*_STAFF, Role.INSURANCE, Role.AI_ANALYST),
    Permission.CLAIMS_PREDICT: _grant(*_STAFF, Role.INSURANCE, Role.AI_ANALYST),
    # Invoices
    Permission.INVOICES_READ: _grant(*_STAFF, Role.PATIENT),
    Permission.INVOICES_CREATE: _grant(*_STAFF),
    # Payments
    Permission.PAYMENTS_READ: _grant(*_STAFF, Role.PATIENT),
    Permission.PAYMENTS_CREATE: _grant(*_STAFF, Role.PATIENT),
    # Doctor recommendations
    Permission.RECOMMENDATIONS_READ: _grant(*_STAFF, Role.DOCTOR, Role.PATIENT),
    Permission.RECOMMENDATIONS_CREATE: _grant(
        Role.SUPER_ADMIN, Role.HOSPITAL_ADMIN, Role.DOCTOR
    ),
    # Risk
    Permission.RISK_READ: _grant(
        *_STAFF, Role.INSURANCE, Role.AI_ANALYST, Role.PATIENT
    ),
}


ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    role: frozenset(p for p, roles in PERMISSION_ROLES.items() if role in roles)
    for role in Role
}


def has_permission(role: Role, permission: Permission) -> bool:
    """Check whether a role holds a permission."""
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def get_role_permissions(role: Role) -> list[str]:
    """Permission codes granted to a role, sorted for display."""
    return sorted(p.value for p in ROLE_PERMISSIONS.get(role, frozenset()))


def is_patient_scoped(role: Role) -> bool:
    """Patients only ever see their own claims, invoices and payments."""
    return role == Role.PATIENT
