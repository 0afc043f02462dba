"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Roles are fixed; a user holds exactly one
- Default role mappings follow principle of least privilege
- Admin has all permissions
- pending users (awaiting approval) can do nothing
"""

# =============================================================================
# PERMISSION CODES
# =============================================================================

VIEW = "VIEW"
CREATE = "CREATE"
EDIT = "EDIT"
DELETE = "DELETE"
MANAGE_USERS = "MANAGE_USERS"
EXPORT = "EXPORT"

# Each permission is defined as: (code, name, description)
PERMISSION_DEFINITIONS = [
    (VIEW, "View", "View bikes, loaners and reports"),
    (CREATE, "Create", "Register new bikes and loaners, upload images"),
    (EDIT, "Edit", "Edit records, change status, sell, loan and return"),
    (DELETE, "Delete", "Delete bikes and loaners"),
    (MANAGE_USERS, "Manage Users", "Approve users, assign roles, delete users"),
    (EXPORT, "Export", "Download CSV backups"),
]

ALL_PERMISSIONS = frozenset(code for code, _, _ in PERMISSION_DEFINITIONS)


# =============================================================================
# ROLES
# =============================================================================

ROLE_ADMIN = "admin"
ROLE_EDITOR = "editor"
ROLE_VIEWER = "viewer"
ROLE_PENDING = "pending"

ROLES = (ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER, ROLE_PENDING)

ROLE_PERMISSIONS = {
    ROLE_ADMIN: ALL_PERMISSIONS,
    ROLE_EDITOR: ALL_PERMISSIONS - {MANAGE_USERS},
    ROLE_VIEWER: frozenset({VIEW}),
    ROLE_PENDING: frozenset(),
}


def permissions_for_role(role: str | None) -> frozenset:
    """Unknown roles get nothing (fail closed)."""
    return ROLE_PERMISSIONS.get(role or "", frozenset())
