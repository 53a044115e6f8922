"""
Workflow configuration (``approval_kernel.domain.workflow``).

Responsibility
--------------
Static, per-kind policy table consumed by the engine and the
confidentiality policy: how many levels a kind has, which permission key
gates each level, which requester positions make a request confidential
or auto-approved, and which positions may act on confidential requests
at each gated level.

Architecture position
---------------------
**Kernel domain layer** -- frozen dataclasses, ZERO I/O.  Built by
``approval_config.loader`` from YAML or directly in code.

Invariants enforced
-------------------
* ``levels`` is 1 or 2.
* ``level_permissions`` has exactly one key per configured level.
* ``override_roles`` only names configured levels.
* ``gating_level`` is a configured level.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from approval_kernel.domain.positions import Position
from approval_kernel.domain.request import RequestKind, parse_kind
from approval_kernel.exceptions import InvalidInputError
from approval_kernel.logging_config import get_logger

logger = get_logger("domain.workflow")


@dataclass(frozen=True)
class WorkflowConfig:
    """Approval policy for one request kind."""

    kind: RequestKind
    levels: int
    level_permissions: Mapping[int, str]
    manage_permission: str
    confidential_positions: frozenset[Position] = frozenset()
    override_roles: Mapping[int, frozenset[Position]] = field(default_factory=dict)
    auto_approve_positions: frozenset[Position] = frozenset()
    gating_level: int | None = None

    def __post_init__(self):
        if self.levels not in (1, 2):
            raise ValueError(f"{self.kind.value}: levels must be 1 or 2, got {self.levels}")

        expected = set(range(1, self.levels + 1))
        if set(self.level_permissions) != expected:
            raise ValueError(
                f"{self.kind.value}: level_permissions must define exactly "
                f"levels {sorted(expected)}, got {sorted(self.level_permissions)}"
            )
        for level, key in self.level_permissions.items():
            if not key or not key.strip():
                raise ValueError(f"{self.kind.value}: empty permission key for level {level}")
        if not self.manage_permission or not self.manage_permission.strip():
            raise ValueError(f"{self.kind.value}: manage_permission cannot be empty")

        unknown = set(self.override_roles) - expected
        if unknown:
            raise ValueError(
                f"{self.kind.value}: override_roles names unconfigured levels {sorted(unknown)}"
            )

        if self.gating_level is None:
            # Highest gated level, else the final level.
            gated = sorted(self.override_roles)
            object.__setattr__(self, "gating_level", gated[-1] if gated else self.levels)
        elif self.gating_level not in expected:
            raise ValueError(
                f"{self.kind.value}: gating_level {self.gating_level} is not a configured level"
            )

        # Freeze the mappings so a shared config cannot drift at runtime.
        object.__setattr__(self, "level_permissions", dict(self.level_permissions))
        object.__setattr__(
            self,
            "override_roles",
            {level: frozenset(roles) for level, roles in self.override_roles.items()},
        )

    @property
    def final_level(self) -> int:
        return self.levels

    def has_level(self, level: int) -> bool:
        return 1 <= level <= self.levels

    def permission_for(self, level: int) -> str:
        """Permission key bound to ``(kind, level)``."""
        return self.level_permissions[level]

    def is_gated(self, level: int) -> bool:
        """True if confidentiality restrictions apply at ``level``."""
        return level in self.override_roles

    def override_roles_for(self, level: int) -> frozenset[Position]:
        return self.override_roles.get(level, frozenset())


class WorkflowRegistry:
    """Immutable kind -> WorkflowConfig lookup."""

    def __init__(self, configs: Iterable[WorkflowConfig]):
        by_kind: dict[RequestKind, WorkflowConfig] = {}
        for config in configs:
            if config.kind in by_kind:
                raise ValueError(f"Duplicate workflow config for kind {config.kind.value}")
            by_kind[config.kind] = config
        self._configs = by_kind
        logger.debug(
            "workflow_registry_built",
            extra={"kinds": sorted(k.value for k in by_kind)},
        )

    def get(self, kind: RequestKind | str) -> WorkflowConfig:
        """Return the config for ``kind``.

        Raises:
            InvalidInputError: if the kind is unknown or not configured.
        """
        parsed = parse_kind(kind)
        config = self._configs.get(parsed)
        if config is None:
            raise InvalidInputError("kind", parsed.value, "no workflow configured")
        return config

    def __contains__(self, kind: object) -> bool:
        return kind in self._configs

    def __iter__(self):
        return iter(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)

    @property
    def kinds(self) -> tuple[RequestKind, ...]:
        return tuple(self._configs)
