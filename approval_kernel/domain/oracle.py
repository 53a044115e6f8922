"""
Permission Oracle (``approval_kernel.domain.oracle``).

The engine never resolves identity or reads permission tables itself; it
asks an injected oracle two questions.  ``StaticPermissionOracle`` answers
them from in-memory tables shaped like the portal's
``position -> permission keys`` and ``user -> position`` assignments and
is what tests and embedded deployments use.  Production callers plug in
an adapter over their identity store.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol

from approval_kernel.domain.positions import Position


class PermissionOracle(Protocol):
    """Pluggable interface for permission and position lookups."""

    def has_permission(self, user_id: str, key: str) -> bool:
        """Return True if the user holds the permission key."""
        ...

    def position_of(self, user_id: str) -> Position | None:
        """Return the user's current position, or None if unassigned."""
        ...


class StaticPermissionOracle:
    """Permission oracle backed by static lookup tables.

    Permissions are granted to positions, never to users directly, as in
    the portal's ``position_permissions`` table.  A user without a
    position holds no permissions.
    """

    def __init__(
        self,
        position_permissions: Mapping[Position, Iterable[str]],
        user_positions: Mapping[str, Position] | None = None,
    ):
        self._position_permissions: dict[Position, frozenset[str]] = {
            Position.parse(p): frozenset(keys)
            for p, keys in position_permissions.items()
        }
        self._user_positions: dict[str, Position] = {
            user_id: Position.parse(p)
            for user_id, p in (user_positions or {}).items()
        }

    def has_permission(self, user_id: str, key: str) -> bool:
        position = self._user_positions.get(user_id)
        if position is None:
            return False
        return key in self._position_permissions.get(position, frozenset())

    def position_of(self, user_id: str) -> Position | None:
        return self._user_positions.get(user_id)

    def assign(self, user_id: str, position: Position | str) -> None:
        """Assign (or reassign) a user's position."""
        self._user_positions[user_id] = Position.parse(position)

    def holders_of(self, key: str) -> tuple[str, ...]:
        """Users whose position grants ``key`` (notification audiences)."""
        return tuple(
            sorted(
                user_id
                for user_id, position in self._user_positions.items()
                if key in self._position_permissions.get(position, frozenset())
            )
        )
