"""
Shared-expense splitting.

An expense split between ``split_by`` people impacts the user's budget by
``amount / split_by``. When the expense belongs to a group, the group's split
factor wins over the expense's own.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Union


def normalize_split(split_by: Any) -> int:
    """Split factors below 1 (or missing) count as 1."""
    try:
        value = int(split_by)
    except (TypeError, ValueError):
        return 1
    return value if value >= 1 else 1


def effective_split_by(expense: dict[str, Any], group: Optional[dict[str, Any]] = None) -> int:
    if group is not None and group.get("split_by") is not None:
        return normalize_split(group["split_by"])
    return normalize_split(expense.get("split_by"))


def calculate_impact_share(amount: Union[Decimal, int], split_by: Any = 1) -> Decimal:
    return Decimal(amount) / normalize_split(split_by)
