"""
Café Aroma - Role-Based Access Control (RBAC)

Permission grants per role, loaded from policies.yaml and enforced by the
`require_permission` route dependency in aroma.auth.dependencies.

Security:
- Deny-by-default: All actions require explicit permission
- Role hierarchy is NOT inherited (explicit grants only)
- The role checked is always the one re-read from the database
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set

import yaml


logger = logging.getLogger(__name__)

POLICY_PATH = Path(__file__).parent / "policies.yaml"


class Permission(str, Enum):
    """
    Granular permissions for RBAC.

    Permissions follow the action:resource pattern.
    """
    # Own account
    READ_PROFILE = "read:profile"
    WRITE_PROFILE = "write:profile"

    # Account security panel
    READ_SECURITY = "read:security"
    MANAGE_SECURITY = "manage:security"

    # User management (admin only)
    MANAGE_USERS = "manage:users"


class RBACPolicy:
    """
    Manages role-to-permission mappings loaded from policies.yaml.

    Singleton; call `RBACPolicy.reload()` after editing the file.
    """

    _instance: Optional["RBACPolicy"] = None
    _policies: Dict[str, Set[str]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_policies(POLICY_PATH)
        return cls._instance

    @classmethod
    def reload(cls, policy_path: Optional[Path] = None) -> "RBACPolicy":
        instance = cls()
        instance._load_policies(policy_path or POLICY_PATH)
        return instance

    def _load_policies(self, policy_path: Path):
        """Load policies from YAML configuration file."""
        if not policy_path.exists():
            # Default deny-all if no policy file
            logger.warning("RBAC policy file %s not found; denying everything", policy_path)
            self._policies = {}
            return

        with open(policy_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        self._policies = {
            role: set(perms or [])
            for role, perms in (config.get("roles") or {}).items()
        }

    def has_permission(self, role: str, permission: Permission) -> bool:
        """
        Check if a role has a specific permission.

        Args:
            role: User's role
            permission: Required permission

        Returns:
            True if permitted, False otherwise (deny-by-default)
        """
        role_value = role.value if isinstance(role, Enum) else role
        return permission.value in self._policies.get(role_value, set())

    def roles_granting(self, permission: Permission) -> List[str]:
        """Roles holding a permission, reported back in 403 bodies."""
        return sorted(role for role, perms in self._policies.items() if permission.value in perms)
