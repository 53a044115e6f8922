"""
Confidentiality policy (``approval_kernel.domain.confidentiality``).

Pure lookups against ``WorkflowConfig``; no I/O.

A request is confidential when its requester's position (snapshotted at
submission) is in the kind's ``confidential_positions``.  At a gated level
only positions in the kind's override set for that level may act on it.
Override sets differ per kind and are kept as configuration rather than
unified.

The engine gates writes only.  Callers that must hide confidential
requests from listings use ``filter_visible``.
"""

from __future__ import annotations

from collections.abc import Iterable

from approval_kernel.domain.positions import Position
from approval_kernel.domain.request import ApprovalRequest
from approval_kernel.domain.workflow import WorkflowConfig


def is_confidential(position: Position, config: WorkflowConfig) -> bool:
    """True if a request filed by ``position`` is confidential for this kind."""
    return position in config.confidential_positions


def may_act_on_confidential(
    position: Position | None,
    config: WorkflowConfig,
    level: int,
) -> bool:
    """True if ``position`` is in the kind's override set for ``level``.

    A level without an override set admits nobody; callers only consult
    this for gated levels.
    """
    if position is None:
        return False
    return position in config.override_roles_for(level)


def requires_override(request: ApprovalRequest, config: WorkflowConfig, level: int) -> bool:
    """True if acting on ``request`` at ``level`` needs an override position."""
    return request.confidential and config.is_gated(level)


def filter_visible(
    requests: Iterable[ApprovalRequest],
    position: Position | None,
    configs,
    level: int | None = None,
) -> list[ApprovalRequest]:
    """Drop confidential requests ``position`` may not act on.

    Args:
        requests: Snapshots to filter.
        position: The viewer's position.
        configs: A ``WorkflowRegistry`` (anything with ``get(kind)``).
        level: Level to evaluate; defaults to each kind's gating level.
    """
    visible = []
    for request in requests:
        if not request.confidential:
            visible.append(request)
            continue
        config = configs.get(request.kind)
        check_level = level if level is not None else config.gating_level
        if may_act_on_confidential(position, config, check_level):
            visible.append(request)
    return visible


class ConfidentialityPolicy:
    """Kind-keyed facade over the pure functions above."""

    def __init__(self, registry):
        self._registry = registry

    def is_confidential(self, position: Position, kind) -> bool:
        return is_confidential(position, self._registry.get(kind))

    def may_act_on_confidential(self, position: Position | None, kind, level: int) -> bool:
        return may_act_on_confidential(position, self._registry.get(kind), level)

    def filter_visible(
        self,
        requests: Iterable[ApprovalRequest],
        position: Position | None,
        level: int | None = None,
    ) -> list[ApprovalRequest]:
        return filter_visible(requests, position, self._registry, level)
