"""
approval_config -- workflow policy and runtime settings.

Responsibility:
    Turns the workflow YAML into the kernel's ``WorkflowRegistry`` and
    reads runtime settings from the environment.  The kernel never imports
    from this package; callers pass what it builds into ``ApprovalEngine``.

Failure modes:
    - ``FileNotFoundError`` / ``yaml.YAMLError`` for a missing or malformed
      file.
    - ``ValueError`` / ``KeyError`` for invalid definitions.
"""

from __future__ import annotations

from approval_config.loader import (
    DEFAULT_WORKFLOWS_PATH,
    compute_checksum,
    load_permission_oracle,
    load_workflow_registry,
    load_yaml_file,
    parse_workflow_config,
)
from approval_config.settings import Settings
from approval_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from approval_kernel.domain.oracle import PermissionOracle
from approval_kernel.domain.workflow import WorkflowRegistry
from approval_kernel.logging_config import configure_logging
from approval_kernel.services import ApprovalEngine, AuditTrailEmitter


def get_active_workflows(settings: Settings | None = None) -> WorkflowRegistry:
    """Load the registry named by ``settings`` (default: the environment)."""
    settings = settings or Settings.from_env()
    return load_workflow_registry(settings.workflows_path)


def build_approval_engine(
    oracle: PermissionOracle,
    settings: Settings | None = None,
    sinks=(),
) -> ApprovalEngine:
    """
    Wire an ApprovalEngine from settings.

    Configures logging, initializes the database engine, creates missing
    tables and loads the workflow registry.
    """
    settings = settings or Settings.from_env()
    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url)
    create_tables()
    return ApprovalEngine(
        session_factory=get_session_factory(),
        registry=get_active_workflows(settings),
        oracle=oracle,
        emitter=AuditTrailEmitter(sinks),
    )


__all__ = [
    "build_approval_engine",
    "DEFAULT_WORKFLOWS_PATH",
    "Settings",
    "compute_checksum",
    "get_active_workflows",
    "load_permission_oracle",
    "load_workflow_registry",
    "load_yaml_file",
    "parse_workflow_config",
]
