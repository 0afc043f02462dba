# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control and create audit trail.
Engines receive an AuthContext and check it themselves, so the rules hold for
HTTP routes and CLI callers alike.

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Log denials only: Permission grants are not logged
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import SecurityEvent, User
from ..permissions import ALL_PERMISSIONS, ROLE_ADMIN, permissions_for_role
from bikeshop.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""

    def __init__(self, message: str, *, permission_code: str | None = None):
        super().__init__(message)
        self.permission_code = permission_code


@dataclass(frozen=True)
class AuthContext:
    """
    Who is performing an operation and what they may do.

    user_id is None for system actors (CLI maintenance commands).
    """
    user_id: int | None
    role: str
    permissions: frozenset = field(default_factory=frozenset)
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def for_user(cls, user: User, ip_address: str | None = None, user_agent: str | None = None) -> "AuthContext":
        return cls(
            user_id=user.id,
            role=user.role,
            permissions=permissions_for_role(user.role) if user.is_active else frozenset(),
            ip_address=ip_address,
            user_agent=user_agent,
        )

    @classmethod
    def system(cls) -> "AuthContext":
        return cls(user_id=None, role=ROLE_ADMIN, permissions=ALL_PERMISSIONS)

    def can(self, permission_code: str) -> bool:
        return permission_code in self.permissions


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    WHY: Immutable audit log for security monitoring.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - ROLE_ASSIGNED
    - USER_DELETED
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user_id: int) -> frozenset:
    """Permission codes for a user, from their single role."""
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        return frozenset()
    return permissions_for_role(user.role)


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def authorize(actor: AuthContext, permission_code: str, resource: str | None = None) -> None:
    """
    Require the actor to hold a permission, raise PermissionDeniedError if not.

    Denials are written to security_events before raising. Call this before
    opening any write transaction: it commits the security event.
    """
    if actor.can(permission_code):
        return

    log_security_event(
        user_id=actor.user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code} (role {actor.role})",
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}", permission_code=permission_code)


def authorize_any(actor: AuthContext, permission_codes: tuple, resource: str | None = None) -> None:
    if any(actor.can(code) for code in permission_codes):
        return

    log_security_event(
        user_id=actor.user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=f"ANY_OF:{','.join(permission_codes)}",
        reason=f"Missing any of: {', '.join(permission_codes)}",
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
    )
    raise PermissionDeniedError(f"Requires any of: {', '.join(permission_codes)}")
