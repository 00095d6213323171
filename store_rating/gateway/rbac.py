"""
Store Rating - Role-Based Access Control (RBAC)

Capability table mapping each role to the resource:action pairs it may
perform. Policies are defined in policies.yaml and enforced at the route
level through the dependencies in store_rating.auth.dependencies.

Security:
- Deny-by-default: unknown roles and unlisted permissions are refused
- admin holds the "*" wildcard
- Role hierarchy is NOT inherited (explicit grants only)
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Set, Union

import yaml

from store_rating.auth.models import Role


WILDCARD = "*"
DEFAULT_POLICY_PATH = Path(__file__).parent / "policies.yaml"


class Permission(str, Enum):
    """Granular permissions for system actions."""
    # Stores
    STORE_READ = "store:read"
    STORE_CREATE = "store:create"
    STORE_UPDATE = "store:update"
    STORE_DELETE = "store:delete"

    # Reviews
    REVIEW_READ = "review:read"
    REVIEW_CREATE = "review:create"
    REVIEW_UPDATE = "review:update"
    REVIEW_DELETE = "review:delete"
    REVIEW_RESPOND = "review:respond"

    # Accounts (admin only)
    USER_MANAGE = "user:manage"


class RBACPolicy:
    """
    Manages role-to-permission mappings loaded from policies.yaml.

    Singleton: the table is read once per process.
    """

    _instance: Optional["RBACPolicy"] = None
    _policies: Dict[str, Set[str]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_policies(DEFAULT_POLICY_PATH)
        return cls._instance

    def _load_policies(self, policy_path: Path) -> None:
        """Load policies from YAML configuration file."""
        if not policy_path.exists():
            # Default deny-all if no policy file
            self._policies = {}
            return

        with open(policy_path, "r") as f:
            config = yaml.safe_load(f) or {}

        self._policies = {
            role: set(perms or [])
            for role, perms in config.get("roles", {}).items()
        }

    @classmethod
    def reload(cls, policy_path: Path = DEFAULT_POLICY_PATH) -> "RBACPolicy":
        """Re-read the capability table (used by tests and after edits)."""
        policy = cls()
        policy._load_policies(policy_path)
        return policy

    def has_permission(self, role: Union[Role, str], permission: Union[Permission, str]) -> bool:
        """
        Check if a role has a specific permission.

        Args:
            role: Account role
            permission: Required permission

        Returns:
            True if permitted, False otherwise (deny-by-default)
        """
        role_key = role.value if isinstance(role, Role) else str(role)
        perm_key = permission.value if isinstance(permission, Permission) else str(permission)
        role_perms = self._policies.get(role_key, set())
        return WILDCARD in role_perms or perm_key in role_perms

    def get_role_permissions(self, role: Union[Role, str]) -> Set[str]:
        """Get all permissions for a role (wildcard expanded)."""
        role_key = role.value if isinstance(role, Role) else str(role)
        role_perms = self._policies.get(role_key, set())
        if WILDCARD in role_perms:
            return {p.value for p in Permission}
        return set(role_perms)
