"""
Workflow configuration loader (``approval_config.loader``).

Responsibility
--------------
Loads the workflow YAML file and parses it into frozen
``WorkflowConfig`` instances, a ``WorkflowRegistry`` and, optionally, a
``StaticPermissionOracle`` seeded from the file's
``position_permissions`` table.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages at load time; no silent defaults for required fields.
* Position names resolve to the closed ``Position`` enum; an unknown name
  fails the load.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed
  definitions, for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from approval_kernel.domain.oracle import StaticPermissionOracle
from approval_kernel.domain.positions import Position, parse_positions
from approval_kernel.domain.request import RequestKind
from approval_kernel.domain.workflow import WorkflowConfig, WorkflowRegistry
from approval_kernel.logging_config import get_logger
from approval_kernel.utils.hashing import hash_payload

logger = get_logger("config.loader")

DEFAULT_WORKFLOWS_PATH = Path(__file__).parent / "workflows.yaml"


def load_yaml_file(path: Path | str) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _parse_level_key(value: Any, kind: str) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{kind}: level key {value!r} is not an integer") from None
    return level


def parse_workflow_config(data: dict[str, Any]) -> WorkflowConfig:
    """Parse one ``workflows`` entry into a ``WorkflowConfig``."""
    try:
        kind = RequestKind(str(data["kind"]).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown request kind: {data['kind']!r}") from None

    permissions = data["level_permissions"]
    if not isinstance(permissions, Mapping):
        raise ValueError(f"{kind.value}: level_permissions must be a mapping")

    override_roles = data.get("override_roles") or {}
    if not isinstance(override_roles, Mapping):
        raise ValueError(f"{kind.value}: override_roles must be a mapping")

    return WorkflowConfig(
        kind=kind,
        levels=int(data["levels"]),
        level_permissions={
            _parse_level_key(level, kind.value): str(key)
            for level, key in permissions.items()
        },
        manage_permission=str(data["manage_permission"]),
        confidential_positions=parse_positions(data.get("confidential_positions")),
        override_roles={
            _parse_level_key(level, kind.value): parse_positions(roles)
            for level, roles in override_roles.items()
        },
        auto_approve_positions=parse_positions(data.get("auto_approve_positions")),
        gating_level=(
            int(data["gating_level"]) if data.get("gating_level") is not None else None
        ),
    )


def parse_position_permissions(data: Mapping[str, Any]) -> dict[Position, frozenset[str]]:
    """Parse a ``position -> [permission keys]`` table."""
    table: dict[Position, frozenset[str]] = {}
    for name, keys in (data or {}).items():
        position = Position.parse(name)
        if position in table:
            raise ValueError(f"Duplicate position in position_permissions: {name!r}")
        table[position] = frozenset(str(k) for k in keys or ())
    return table


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of the canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    return hash_payload(data)


def load_workflow_registry(path: Path | str | None = None) -> WorkflowRegistry:
    """Load every workflow in ``path`` (default: the packaged file)."""
    path = Path(path) if path is not None else DEFAULT_WORKFLOWS_PATH
    data = load_yaml_file(path)
    entries = data["workflows"]
    if not isinstance(entries, list) or not entries:
        raise ValueError(f"{path}: 'workflows' must be a non-empty list")

    registry = WorkflowRegistry(parse_workflow_config(entry) for entry in entries)
    logger.info(
        "workflow_config_loaded",
        extra={
            "path": str(path),
            "kinds": sorted(k.value for k in registry.kinds),
            "checksum": compute_checksum({"workflows": entries}),
        },
    )
    return registry


def load_permission_oracle(
    path: Path | str | None = None,
    user_positions: Mapping[str, Position | str] | None = None,
) -> StaticPermissionOracle:
    """Build a static oracle from the file's ``position_permissions`` table."""
    path = Path(path) if path is not None else DEFAULT_WORKFLOWS_PATH
    data = load_yaml_file(path)
    table = parse_position_permissions(data.get("position_permissions") or {})
    return StaticPermissionOracle(table, user_positions)
