from decimal import Decimal

import pytest

from app.core.permissions import (
    ROLE_DEFINITIONS,
    UNLIMITED,
    AdminRole,
    Capability,
    capabilities_for,
    effective_permissions,
    has_role_level,
    role_level,
    split_overrides,
)


def test_role_limits_match_catalogue():
    assert capabilities_for("viewer").approval_limit == Decimal("0")
    assert capabilities_for("reviewer").approval_limit == Decimal("0")
    assert capabilities_for("approver").approval_limit == Decimal("5000000")
    assert capabilities_for("manager").approval_limit == Decimal("100000000")
    assert capabilities_for("super_admin").approval_limit == UNLIMITED


def test_capability_sets_grow_with_seniority():
    viewer = capabilities_for(AdminRole.VIEWER).capabilities
    reviewer = capabilities_for(AdminRole.REVIEWER).capabilities
    approver = capabilities_for(AdminRole.APPROVER).capabilities
    manager = capabilities_for(AdminRole.MANAGER).capabilities
    assert viewer == {Capability.VIEW_APPLICATIONS, Capability.VIEW_REPORTS}
    assert viewer < reviewer < approver < manager
    assert Capability.APPROVE not in reviewer
    assert Capability.APPROVE in approver
    assert manager == frozenset(Capability)
    assert ROLE_DEFINITIONS[AdminRole.SUPER_ADMIN].capabilities == frozenset(Capability)


def test_unknown_role_is_treated_as_viewer():
    assert AdminRole.coerce("auditor") == AdminRole.VIEWER
    assert AdminRole.coerce(None) == AdminRole.VIEWER
    assert capabilities_for("auditor").capabilities == capabilities_for("viewer").capabilities
    assert AdminRole.coerce(" Manager ") == AdminRole.MANAGER


def test_role_hierarchy_levels():
    assert role_level("viewer") == 1
    assert role_level("super_admin") == 5
    assert has_role_level("manager", "approver")
    assert not has_role_level("reviewer", "approver")


def test_overrides_grant_and_revoke_base_capabilities():
    permissions = effective_permissions(
        "reviewer",
        {"approve": True, "export_data": False, "can_view_sensitive_data": True},
    )
    assert permissions.has(Capability.APPROVE)
    assert not permissions.has(Capability.EXPORT_DATA)
    assert permissions.has(Capability.REVIEW_DUE_DILIGENCE)
    assert permissions.has_custom("can_view_sensitive_data")
    assert not permissions.has("can_view_sensitive_data")


def test_custom_keys_never_grant_base_capabilities():
    base, custom = split_overrides({"manage_admins_plus": True, "view_applications": False})
    assert base == {Capability.VIEW_APPLICATIONS: False}
    assert custom == {"manage_admins_plus": True}


def test_as_flags_covers_every_capability():
    flags = effective_permissions("approver").as_flags()
    assert set(flags) == set(Capability.list_all())
    assert flags["approve"] is True
    assert flags["manage_admins"] is False


@pytest.mark.parametrize("value", ["nonsense", "", "APPROVE "])
def test_has_rejects_unknown_codes(value):
    assert effective_permissions("super_admin").has(value) is False
