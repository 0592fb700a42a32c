"""
Role/entity permission matrix.

The matrix answers one question: may ``role`` perform an operation at
``level`` on ``entity_type``? Every component that touches storage asks it
first.

Rules:
- ``admin`` is permitted everything and never consults the table
- Levels do not contain each other: WRITE does not imply READ, and neither
  READ nor WRITE implies ADMIN (required for deletion)
- Unknown roles hold no permissions (fail closed)

The matrix is immutable once constructed; build it at startup and inject it.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ..api.exceptions import ConfigurationError
from .entities import EntityType

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class PermissionLevel(str, Enum):
    """Grant levels, ordered by privilege but not hierarchical."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


_R = PermissionLevel.READ
_W = PermissionLevel.WRITE
_A = PermissionLevel.ADMIN

# Default grants for the dashboard's mid-tier roles
DEFAULT_ROLE_GRANTS: dict[str, dict[EntityType, tuple[PermissionLevel, ...]]] = {
    "user": {
        EntityType.POWER_DATA: (_R,),
        EntityType.ENVIRONMENTAL_DATA: (_R,),
        EntityType.EQUIPMENT: (_R,),
        EntityType.SETTINGS: (_R,),
        EntityType.USER: (_R,),
        EntityType.AGENT_CONVERSATION: (_R, _W),
        EntityType.AGENT_MESSAGE: (_R, _W),
        EntityType.AGENT_TASK: (_R,),
        EntityType.AGENT_FUNCTION: (_R,),
        EntityType.AGENT_SETTING: (_R,),
        EntityType.SIGNAL_NOTIFICATION: (_R,),
        EntityType.ISSUE: (_R, _W),
        EntityType.COMMENT: (_R, _W),
    },
    "operator": {
        EntityType.POWER_DATA: (_R,),
        EntityType.ENVIRONMENTAL_DATA: (_R,),
        EntityType.EQUIPMENT: (_R, _W),
        EntityType.SETTINGS: (_R, _W),
        EntityType.USER: (_R,),
        EntityType.AGENT_CONVERSATION: (_R, _W),
        EntityType.AGENT_MESSAGE: (_R, _W),
        EntityType.AGENT_TASK: (_R, _W),
        EntityType.AGENT_FUNCTION: (_R,),
        EntityType.AGENT_SETTING: (_R, _W),
        EntityType.SIGNAL_NOTIFICATION: (_R, _W),
        EntityType.ISSUE: (_R, _W),
        EntityType.COMMENT: (_R, _W),
    },
    "manager": {
        EntityType.POWER_DATA: (_R,),
        EntityType.ENVIRONMENTAL_DATA: (_R,),
        EntityType.EQUIPMENT: (_R, _W),
        EntityType.SETTINGS: (_R, _W),
        EntityType.USER: (_R, _W),
        EntityType.AGENT_CONVERSATION: (_R, _W),
        EntityType.AGENT_MESSAGE: (_R, _W),
        EntityType.AGENT_TASK: (_R, _W),
        EntityType.AGENT_FUNCTION: (_R,),
        EntityType.AGENT_SETTING: (_R, _W),
        EntityType.SIGNAL_NOTIFICATION: (_R, _W, _A),
        EntityType.ISSUE: (_R, _W, _A),
        EntityType.COMMENT: (_R, _W, _A),
    },
}


class PermissionMatrix:
    """Immutable role -> entity -> levels table.

    Usage:
        matrix = PermissionMatrix.default()
        matrix.has_permission("operator", EntityType.EQUIPMENT, PermissionLevel.WRITE)
        # True
        matrix.has_permission("operator", EntityType.EQUIPMENT, PermissionLevel.ADMIN)
        # False - editing never implies deleting
    """

    def __init__(
        self,
        grants: Mapping[str, Mapping[EntityType, Iterable[PermissionLevel]]],
    ):
        """Build the matrix from a role -> entity -> levels mapping.

        Args:
            grants: Grants for every non-admin role

        Raises:
            ConfigurationError: If a grant names an unknown entity or level,
                or tries to redefine the admin role
        """
        table: dict[str, Mapping[EntityType, frozenset[PermissionLevel]]] = {}
        for role, entity_grants in grants.items():
            if role == ADMIN_ROLE:
                raise ConfigurationError(
                    "The admin role is implicit and cannot be configured",
                    details={"role": role},
                )
            row: dict[EntityType, frozenset[PermissionLevel]] = {}
            for entity, levels in entity_grants.items():
                try:
                    entity_type = EntityType(entity)
                    level_set = frozenset(PermissionLevel(level) for level in levels)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid grant for role '{role}': {e}",
                        details={"role": role},
                        cause=e,
                    )
                row[entity_type] = level_set
            table[role] = MappingProxyType(row)

        self._table: Mapping[str, Mapping[EntityType, frozenset[PermissionLevel]]] = (
            MappingProxyType(table)
        )

    @classmethod
    def default(cls) -> "PermissionMatrix":
        """Matrix with the dashboard's standard user/operator/manager grants."""
        return cls(DEFAULT_ROLE_GRANTS)

    @property
    def known_roles(self) -> frozenset[str]:
        """Every role this matrix recognizes, including admin."""
        return frozenset(self._table) | {ADMIN_ROLE}

    def permissions_for(self, role: str, entity_type: EntityType) -> frozenset[PermissionLevel]:
        """Levels ``role`` holds on ``entity_type`` (all of them for admin)."""
        if role == ADMIN_ROLE:
            return frozenset(PermissionLevel)
        return self._table.get(role, {}).get(entity_type, frozenset())

    def has_permission(
        self,
        role: Optional[str],
        entity_type: EntityType,
        level: PermissionLevel,
    ) -> bool:
        """Check whether ``role`` holds ``level`` on ``entity_type``.

        Args:
            role: Caller role as resolved by the auth layer
            entity_type: Entity being accessed
            level: Level the operation requires

        Returns:
            True if permitted, False otherwise (including unknown roles)
        """
        if role == ADMIN_ROLE:
            return True
        if role is None:
            return False
        return level in self._table.get(role, {}).get(entity_type, frozenset())

    def __repr__(self) -> str:
        return f"PermissionMatrix(roles={sorted(self.known_roles)})"
