# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication and User Management Service

WHY: Every action must be attributable. Uses bcrypt for secure password
hashing and validates password strength.

ACCOUNT LIFECYCLE:
- The first account ever registered becomes an approved admin
- Every later registration starts as "pending" (no permissions)
- An admin approves a pending user by assigning admin/editor/viewer

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
import re

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import User
from ..permissions import MANAGE_USERS, ROLE_ADMIN, ROLE_PENDING, ROLES
from . import session_service
from .permission_service import AuthContext, authorize, log_security_event
from bikeshop.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


def _clean_identity(username: str, email: str) -> tuple[str, str]:
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username:
        raise ValidationError("username is required")
    if len(username) > 64:
        raise ValidationError("username exceeds max length 64")
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    return username, email


def create_user(
    username: str,
    email: str,
    password: str,
    role: str = ROLE_PENDING,
    display_name: str | None = None,
    approved_by_user_id: int | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValidationError: bad username/email/role or weak password
        ConflictError: username or email already taken
    """
    username, email = _clean_identity(username, email)
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        display_name=(display_name or "").strip() or None,
        password_hash=hash_password(password),
        role=role,
    )
    if role != ROLE_PENDING:
        user.approved_at = utcnow()
        user.approved_by_user_id = approved_by_user_id

    db.session.add(user)
    db.session.commit()
    return user


def register_user(
    username: str,
    email: str,
    password: str,
    display_name: str | None = None,
) -> User:
    """
    Self-service registration.

    The first account in an empty system is an approved admin; every later one
    is pending until an admin assigns a role.
    """
    is_first = db.session.query(User.id).first() is None
    return create_user(
        username=username,
        email=email,
        password=password,
        role=ROLE_ADMIN if is_first else ROLE_PENDING,
        display_name=display_name,
    )


def authenticate(
    username: str,
    password: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise. Failures are recorded
    as LOGIN_FAILED security events.
    """
    identifier = (username or "").strip()
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier.lower()),
        User.is_active.is_(True),
    ).first()

    if user and verify_password(password or "", user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    log_security_event(
        user_id=user.id if user else None,
        event_type="LOGIN_FAILED",
        success=False,
        action=identifier,
        reason="Invalid credentials",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return None


def list_users(*, actor: AuthContext) -> list[User]:
    authorize(actor, MANAGE_USERS, resource="users")
    return db.session.query(User).order_by(User.created_at.asc(), User.id.asc()).all()


def _admin_count() -> int:
    return db.session.query(User).filter(User.role == ROLE_ADMIN, User.is_active.is_(True)).count()


def set_role(user_id: int, role: str, *, actor: AuthContext) -> User:
    """
    Assign a role. Moving a user out of pending records who approved them.

    The last active admin cannot be demoted.
    """
    authorize(actor, MANAGE_USERS, resource=f"users/{user_id}")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User", user_id)

    if user.role == role:
        return user

    if user.role == ROLE_ADMIN and _admin_count() <= 1:
        raise ConflictError("Cannot remove the last admin")

    previous = user.role
    user.role = role
    if previous == ROLE_PENDING and role != ROLE_PENDING:
        user.approved_at = utcnow()
        user.approved_by_user_id = actor.user_id
    db.session.commit()

    log_security_event(
        user_id=actor.user_id,
        event_type="ROLE_ASSIGNED",
        success=True,
        resource=f"users/{user_id}",
        action=role,
        reason=f"{previous} -> {role}",
    )
    return user


def delete_user(user_id: int, *, actor: AuthContext) -> None:
    """Delete an account and its sessions. Admins cannot delete themselves."""
    authorize(actor, MANAGE_USERS, resource=f"users/{user_id}")

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User", user_id)
    if actor.user_id == user.id:
        raise ConflictError("Cannot delete your own account")
    if user.role == ROLE_ADMIN and _admin_count() <= 1:
        raise ConflictError("Cannot remove the last admin")

    session_service.revoke_all_user_sessions(user.id, commit=False)
    db.session.delete(user)
    db.session.commit()

    log_security_event(
        user_id=actor.user_id,
        event_type="USER_DELETED",
        success=True,
        resource=f"users/{user_id}",
        action="DELETE",
    )
