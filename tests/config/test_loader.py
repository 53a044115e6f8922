"""
Tests for the workflow YAML loader and runtime settings.
"""

from pathlib import Path

import pytest
import yaml

from approval_config import Settings, get_active_workflows
from approval_config.loader import (
    DEFAULT_WORKFLOWS_PATH,
    compute_checksum,
    load_permission_oracle,
    load_workflow_registry,
    load_yaml_file,
    parse_workflow_config,
)
from approval_kernel.domain.positions import Position
from approval_kernel.domain.request import RequestKind


def write_yaml(tmp_path: Path, data) -> Path:
    path = tmp_path / "workflows.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def liquidation_entry(**overrides):
    entry = {
        "kind": "liquidation",
        "levels": 2,
        "level_permissions": {1: "approve_liquidations_level1", 2: "approve_liquidations_level2"},
        "manage_permission": "manage_liquidation",
        "confidential_positions": ["HR", "Accounting"],
        "override_roles": {2: ["Managing Director"]},
    }
    entry.update(overrides)
    return entry


class TestPackagedPolicy:

    def test_all_kinds_configured(self, registry):
        assert set(registry.kinds) == set(RequestKind)

    def test_cash_advance(self, registry):
        config = registry.get(RequestKind.CASH_ADVANCE)
        assert config.levels == 2
        assert config.permission_for(1) == "approve_cash_advance_level1"
        assert config.permission_for(2) == "approve_cash_advance_level2"
        assert config.manage_permission == "manage_cash_flow"
        assert config.confidential_positions == frozenset({Position.OPERATIONS_MANAGER})
        expected = frozenset({Position.HR, Position.ACCOUNTING, Position.OPERATIONS_MANAGER})
        assert config.override_roles_for(1) == expected
        assert config.override_roles_for(2) == expected
        assert config.auto_approve_positions == frozenset()

    def test_overtime(self, registry):
        config = registry.get(RequestKind.OVERTIME)
        assert config.manage_permission == "manage_overtime"
        assert config.confidential_positions == frozenset()
        assert config.auto_approve_positions == frozenset({Position.OPERATIONS_MANAGER})

    def test_liquidation(self, registry):
        config = registry.get(RequestKind.LIQUIDATION)
        assert config.confidential_positions == frozenset({Position.HR, Position.ACCOUNTING})
        assert config.override_roles_for(2) == frozenset({Position.MANAGING_DIRECTOR})
        assert not config.is_gated(1)
        assert config.gating_level == 2

    def test_packaged_oracle_grants(self):
        oracle = load_permission_oracle(user_positions={"md": "Managing Director"})
        assert oracle.has_permission("md", "approve_liquidations_level2")
        assert not oracle.has_permission("md", "approve_liquidations_level1")


class TestParsing:

    def test_unknown_position_fails_the_load(self, tmp_path):
        path = write_yaml(tmp_path, {"workflows": [
            liquidation_entry(confidential_positions=["Head of Everything"]),
        ]})
        with pytest.raises(ValueError, match="Unknown position"):
            load_workflow_registry(path)

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown request kind"):
            parse_workflow_config(liquidation_entry(kind="vacation"))

    def test_missing_required_key(self):
        entry = liquidation_entry()
        del entry["manage_permission"]
        with pytest.raises(KeyError):
            parse_workflow_config(entry)

    def test_inconsistent_level_count(self):
        with pytest.raises(ValueError, match="level_permissions"):
            parse_workflow_config(liquidation_entry(levels=1))

    def test_empty_workflow_list(self, tmp_path):
        with pytest.raises(ValueError, match="non-empty"):
            load_workflow_registry(write_yaml(tmp_path, {"workflows": []}))

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_yaml_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow_registry(tmp_path / "absent.yaml")

    def test_load_is_logged_with_checksum(self, tmp_path, captured_logs):
        path = write_yaml(tmp_path, {"workflows": [liquidation_entry()]})
        load_workflow_registry(path)

        (record,) = [r for r in captured_logs() if r["message"] == "workflow_config_loaded"]
        assert record["kinds"] == ["liquidation"]
        assert record["checksum"] == compute_checksum({"workflows": [liquidation_entry()]})


class TestChecksum:

    def test_deterministic_and_key_order_independent(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})

    def test_changes_with_content(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestSettings:

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.database_url.startswith("sqlite:///")
        assert settings.workflows_path == DEFAULT_WORKFLOWS_PATH
        assert settings.log_level == "INFO"

    def test_from_environment(self, tmp_path):
        path = write_yaml(tmp_path, {"workflows": [liquidation_entry()]})
        settings = Settings.from_env({
            "APPROVAL_DATABASE_URL": "postgresql://approvals@db/approvals",
            "APPROVAL_WORKFLOWS_PATH": str(path),
            "APPROVAL_LOG_LEVEL": "debug",
        })
        assert settings.database_url == "postgresql://approvals@db/approvals"
        assert settings.log_level == "DEBUG"
        assert get_active_workflows(settings).kinds == (RequestKind.LIQUIDATION,)

    def test_unknown_log_level(self):
        with pytest.raises(ValueError, match="log level"):
            Settings(log_level="chatty")


class TestBuildApprovalEngine:

    def test_wires_engine_from_settings(self, monkeypatch, session_factory, oracle, memory_sink):
        import approval_config

        calls = []
        monkeypatch.setattr(approval_config, "configure_logging", lambda level: calls.append(level))
        monkeypatch.setattr(approval_config, "init_engine_from_url", calls.append)
        monkeypatch.setattr(approval_config, "create_tables", lambda: calls.append("tables"))
        monkeypatch.setattr(approval_config, "get_session_factory", lambda: session_factory)

        settings = Settings(database_url="sqlite:///wired.db", log_level="warning")
        engine = approval_config.build_approval_engine(oracle, settings, sinks=[memory_sink])

        assert calls == ["WARNING", "sqlite:///wired.db", "tables"]
        assert engine.registry.kinds == (
            RequestKind.CASH_ADVANCE, RequestKind.OVERTIME, RequestKind.LIQUIDATION,
        )
        engine.submit(RequestKind.CASH_ADVANCE, "emp-alice", {})
        assert len(memory_sink) == 1
