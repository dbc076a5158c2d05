"""
Enumerations shared by the identity and permission models.
"""

import enum


class UserStatus(str, enum.Enum):
    """
    Account status.

    Only ACTIVE accounts may authenticate; INACTIVE and SUSPENDED are set by
    administrators (or by deletion of an audited account).
    """
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class PermissionAction(str, enum.Enum):
    """Actions a permission can grant on a resource."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
