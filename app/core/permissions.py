from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping

UNLIMITED = Decimal("Infinity")


class AdminRole(str, Enum):
    VIEWER = "viewer"
    REVIEWER = "reviewer"
    APPROVER = "approver"
    MANAGER = "manager"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def list_all(cls) -> List[str]:
        return [role.value for role in cls]

    @classmethod
    def coerce(cls, value: "AdminRole | str | None") -> "AdminRole":
        """Map arbitrary input to a role; anything unknown is treated as viewer."""
        if isinstance(value, AdminRole):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.VIEWER


class Capability(str, Enum):
    VIEW_APPLICATIONS = "view_applications"
    REVIEW_DUE_DILIGENCE = "review_due_diligence"
    REQUEST_CHANGES = "request_changes"
    APPROVE = "approve"
    ASSIGN_REVIEWS = "assign_reviews"
    MANAGE_ADMINS = "manage_admins"
    ACCESS_SYSTEM_CONFIG = "access_system_config"
    DISTRIBUTE_PROFITS = "distribute_profits"
    VIEW_REPORTS = "view_reports"
    EXPORT_DATA = "export_data"
    ACCESS_AUDIT_LOGS = "access_audit_logs"
    MANAGE_INVESTORS = "manage_investors"

    @classmethod
    def list_all(cls) -> List[str]:
        return [code.value for code in cls]


ROLE_HIERARCHY: Dict[AdminRole, int] = {
    AdminRole.VIEWER: 1,
    AdminRole.REVIEWER: 2,
    AdminRole.APPROVER: 3,
    AdminRole.MANAGER: 4,
    AdminRole.SUPER_ADMIN: 5,
}


@dataclass(frozen=True)
class RoleCapabilities:
    role: AdminRole
    capabilities: frozenset
    approval_limit: Decimal

    def has(self, capability: Capability | str) -> bool:
        return Capability(capability) in self.capabilities


_VIEWER = frozenset({Capability.VIEW_APPLICATIONS, Capability.VIEW_REPORTS})
_REVIEWER = _VIEWER | {
    Capability.REVIEW_DUE_DILIGENCE,
    Capability.REQUEST_CHANGES,
    Capability.EXPORT_DATA,
}
_APPROVER = _REVIEWER | {
    Capability.APPROVE,
    Capability.ACCESS_AUDIT_LOGS,
    Capability.MANAGE_INVESTORS,
}
_ALL = frozenset(Capability)

ROLE_DEFINITIONS: Dict[AdminRole, RoleCapabilities] = {
    AdminRole.VIEWER: RoleCapabilities(AdminRole.VIEWER, _VIEWER, Decimal("0")),
    AdminRole.REVIEWER: RoleCapabilities(AdminRole.REVIEWER, _REVIEWER, Decimal("0")),
    AdminRole.APPROVER: RoleCapabilities(AdminRole.APPROVER, _APPROVER, Decimal("5000000")),
    AdminRole.MANAGER: RoleCapabilities(AdminRole.MANAGER, _ALL, Decimal("100000000")),
    AdminRole.SUPER_ADMIN: RoleCapabilities(AdminRole.SUPER_ADMIN, _ALL, UNLIMITED),
}

SENIOR_ROLES = frozenset({AdminRole.MANAGER, AdminRole.SUPER_ADMIN})


def capabilities_for(role: AdminRole | str | None) -> RoleCapabilities:
    return ROLE_DEFINITIONS[AdminRole.coerce(role)]


def role_level(role: AdminRole | str | None) -> int:
    return ROLE_HIERARCHY[AdminRole.coerce(role)]


def has_role_level(role: AdminRole | str | None, minimum: AdminRole | str) -> bool:
    return role_level(role) >= role_level(minimum)


@dataclass(frozen=True)
class EffectivePermissions:
    """Resolved capability set for one admin.

    ``capabilities`` is the closed base set after per-admin overrides have been
    applied; ``custom`` holds every other key from the override map. Custom keys
    carry no built-in meaning and are only consulted through ``has_custom``.
    """

    role: AdminRole
    capabilities: frozenset
    custom: Mapping[str, bool] = field(default_factory=dict)

    def has(self, capability: Capability | str) -> bool:
        try:
            return Capability(capability) in self.capabilities
        except ValueError:
            return False

    def has_custom(self, key: str) -> bool:
        return bool(self.custom.get(key, False))

    def as_flags(self) -> Dict[str, bool]:
        return {code.value: code in self.capabilities for code in Capability}


def split_overrides(overrides: Mapping[str, Any] | None) -> tuple[Dict[Capability, bool], Dict[str, bool]]:
    base: Dict[Capability, bool] = {}
    custom: Dict[str, bool] = {}
    for key, value in (overrides or {}).items():
        try:
            base[Capability(key)] = bool(value)
        except ValueError:
            custom[str(key)] = bool(value)
    return base, custom


def effective_permissions(
    role: AdminRole | str | None, overrides: Mapping[str, Any] | None = None
) -> EffectivePermissions:
    defaults = capabilities_for(role)
    base_overrides, custom = split_overrides(overrides)
    granted = set(defaults.capabilities)
    for capability, enabled in base_overrides.items():
        if enabled:
            granted.add(capability)
        else:
            granted.discard(capability)
    return EffectivePermissions(role=defaults.role, capabilities=frozenset(granted), custom=custom)
