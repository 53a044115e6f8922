"""
Organizational positions (``approval_kernel.domain.positions``).

A closed set of positions replaces free-text position names.  Confidentiality
and auto-approval policy are expressed as sets of ``Position`` members, so a
renamed or misspelled position is a load-time error rather than a silent
authorization gap.
"""

from __future__ import annotations

from enum import Enum


class Position(str, Enum):
    """Positions a portal user can hold."""

    EMPLOYEE = "employee"
    ADMIN_TECH = "admin_tech"
    TECHNICAL_SUPPORT_ENGINEER = "technical_support_engineer"
    OPERATIONS_TECHNICAL_LEAD = "operations_technical_lead"
    OPERATIONS_MANAGER = "operations_manager"
    HR = "hr"
    ACCOUNTING = "accounting"
    MANAGING_DIRECTOR = "managing_director"

    @classmethod
    def parse(cls, value: Position | str) -> Position:
        """Parse a position from its value or member name (case-insensitive).

        ``"Operations Manager"``, ``"operations_manager"`` and
        ``"OPERATIONS_MANAGER"`` all resolve to the same member.

        Raises:
            ValueError: if the value names no known position.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown position: {value!r}") from None


def parse_positions(values) -> frozenset[Position]:
    """Parse an iterable of position names into a frozenset."""
    return frozenset(Position.parse(v) for v in values or ())
