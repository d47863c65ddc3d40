"""Normalization of declared pool capacity into an explicit bounded/unlimited value."""

from __future__ import annotations

from inventory_backend.domain.errors import InvalidCapacity
from inventory_backend.domain.models import Bounded, Capacity, InventoryPool, Unlimited


def resolve_capacity(
    total_capacity: int | None,
    capacity_unit: str | None,
    default_unit: str = "rooms",
) -> Capacity:
    """Return `Unlimited` when no total is declared, otherwise `Bounded`.

    A blank unit falls back to `default_unit`. Negative totals are rejected.
    """
    unit = (capacity_unit or "").strip() or default_unit
    if total_capacity is None:
        return Unlimited(unit=unit)
    if total_capacity < 0:
        raise InvalidCapacity(f"total_capacity must be >= 0, got {total_capacity}")
    return Bounded(total=int(total_capacity), unit=unit)


def resolve_pool_capacity(pool: InventoryPool, default_unit: str = "rooms") -> Capacity:
    return resolve_capacity(pool.total_capacity, pool.capacity_unit, default_unit)
