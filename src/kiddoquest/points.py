"""Utilities for working with XP amounts in KiddoQuest."""

from __future__ import annotations

from decimal import Decimal
from typing import Union

from .exceptions import InvalidAmountError

PointsLike = Union[int, str, Decimal]


def to_points(value: PointsLike) -> int:
    """Convert ``value`` to a whole number of XP points."""

    if isinstance(value, bool):
        raise InvalidAmountError("XP amounts must be whole numbers, not booleans.")
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise InvalidAmountError(f"XP amounts must be whole numbers: {value}.")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise InvalidAmountError(f"Not a whole number of XP: {value!r}.") from exc
    raise InvalidAmountError(f"Unsupported XP amount type: {type(value)!r}")


def require_positive(amount: PointsLike, *, allow_zero: bool = False) -> int:
    """Return ``amount`` as points, ensuring it is positive (or zero when allowed)."""

    points = to_points(amount)
    if allow_zero:
        if points < 0:
            raise InvalidAmountError("Amount must be zero or greater.")
    elif points <= 0:
        raise InvalidAmountError("Amount must be greater than zero.")
    return points


def format_xp(amount: int) -> str:
    """Return ``amount`` formatted for display (e.g. ``1,250 XP`` or ``12.5k XP``)."""

    if amount >= 10_000:
        return f"{amount / 1000:.1f}k XP"
    return f"{amount:,} XP"


__all__ = ["PointsLike", "format_xp", "require_positive", "to_points"]
