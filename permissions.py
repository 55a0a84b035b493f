"""
Admin role permissions.

Super admins can do everything. Other admins get the role defaults below,
widened by any flag set on their own record.
"""

from typing import Any, Dict

PERMISSIONS = (
    "dashboard",
    "posts",
    "payments",
    "applications",
    "guardians",
    "teachers",
    "ads",
    "invoices",
    "notifications",
    "settings",
)

ROLE_PERMISSIONS: Dict[str, Dict[str, bool]] = {
    "super_admin": {name: True for name in PERMISSIONS},
    "support_admin": {
        "dashboard": False,
        "posts": True,
        "payments": False,
        "applications": True,
        "guardians": True,
        "teachers": True,
        "ads": False,
        "invoices": True,
        "notifications": True,
        "settings": False,
    },
}

ROLE_DISPLAY_NAMES = {
    "super_admin": "Super Admin",
    "support_admin": "Support Admin",
}


def role_permissions(role: str) -> Dict[str, bool]:
    return dict(ROLE_PERMISSIONS.get(role, {}))


def has_permission(admin: Dict[str, Any], permission: str) -> bool:
    if permission not in PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission}")
    role = admin.get("role")
    if role == "super_admin":
        return True
    if (admin.get("permissions") or {}).get(permission) is True:
        return True
    return ROLE_PERMISSIONS.get(role, {}).get(permission) is True


def effective_permissions(admin: Dict[str, Any]) -> Dict[str, bool]:
    return {name: has_permission(admin, name) for name in PERMISSIONS}
