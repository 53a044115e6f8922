"""
WorkflowConfig validation and the WorkflowRegistry.
"""

import pytest

from approval_kernel.domain.positions import Position, parse_positions
from approval_kernel.domain.request import RequestKind
from approval_kernel.domain.workflow import WorkflowConfig, WorkflowRegistry
from approval_kernel.exceptions import InvalidInputError


def make_config(**overrides):
    fields = dict(
        kind=RequestKind.CASH_ADVANCE,
        levels=2,
        level_permissions={1: "approve_level1", 2: "approve_level2"},
        manage_permission="manage",
    )
    fields.update(overrides)
    return WorkflowConfig(**fields)


class TestWorkflowConfigValidation:

    def test_levels_must_be_one_or_two(self):
        with pytest.raises(ValueError, match="levels"):
            make_config(levels=3, level_permissions={1: "a", 2: "b", 3: "c"})

    def test_permission_key_required_for_every_level(self):
        with pytest.raises(ValueError, match="level_permissions"):
            make_config(level_permissions={1: "approve_level1"})

    def test_no_permission_key_for_unconfigured_level(self):
        with pytest.raises(ValueError, match="level_permissions"):
            make_config(levels=1)

    def test_empty_permission_key(self):
        with pytest.raises(ValueError, match="empty permission key"):
            make_config(level_permissions={1: "approve_level1", 2: "  "})

    def test_empty_manage_permission(self):
        with pytest.raises(ValueError, match="manage_permission"):
            make_config(manage_permission="")

    def test_override_roles_only_on_configured_levels(self):
        with pytest.raises(ValueError, match="override_roles"):
            make_config(
                levels=1,
                level_permissions={1: "approve"},
                override_roles={2: frozenset({Position.HR})},
            )

    def test_explicit_gating_level_must_exist(self):
        with pytest.raises(ValueError, match="gating_level"):
            make_config(levels=1, level_permissions={1: "approve"}, gating_level=2)


class TestGating:

    def test_gating_level_defaults_to_final_level_without_overrides(self):
        config = make_config()
        assert config.gating_level == 2
        assert not config.is_gated(1)
        assert not config.is_gated(2)

    def test_gating_level_is_highest_gated_level(self):
        config = make_config(override_roles={1: frozenset({Position.HR})})
        assert config.gating_level == 1
        assert config.is_gated(1)
        assert not config.is_gated(2)

    def test_override_roles_are_per_level(self):
        config = make_config(override_roles={2: frozenset({Position.MANAGING_DIRECTOR})})
        assert config.override_roles_for(2) == frozenset({Position.MANAGING_DIRECTOR})
        assert config.override_roles_for(1) == frozenset()

    def test_mappings_are_copied(self):
        permissions = {1: "approve_level1", 2: "approve_level2"}
        config = make_config(level_permissions=permissions)
        permissions[1] = "changed"
        assert config.permission_for(1) == "approve_level1"


class TestWorkflowRegistry:

    def test_lookup_by_enum_or_string(self):
        registry = WorkflowRegistry([make_config()])
        assert registry.get(RequestKind.CASH_ADVANCE).kind == RequestKind.CASH_ADVANCE
        assert registry.get("cash_advance").kind == RequestKind.CASH_ADVANCE
        assert RequestKind.CASH_ADVANCE in registry
        assert len(registry) == 1

    def test_unconfigured_kind_is_invalid_input(self):
        registry = WorkflowRegistry([make_config()])
        with pytest.raises(InvalidInputError) as exc_info:
            registry.get("overtime")
        assert exc_info.value.field == "kind"

    def test_duplicate_kind_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            WorkflowRegistry([make_config(), make_config()])


class TestPositions:

    @pytest.mark.parametrize("raw", ["Operations Manager", "operations_manager", "OPERATIONS-MANAGER"])
    def test_parse_normalizes_names(self, raw):
        assert Position.parse(raw) == Position.OPERATIONS_MANAGER

    def test_substring_does_not_match(self):
        # "HR Assistant" is not HR.
        with pytest.raises(ValueError):
            Position.parse("HR Assistant")

    def test_parse_positions(self):
        assert parse_positions(["HR", "Accounting"]) == frozenset({Position.HR, Position.ACCOUNTING})
        assert parse_positions(None) == frozenset()
