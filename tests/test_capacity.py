from __future__ import annotations

import pytest

from inventory_backend.domain.errors import InvalidCapacity
from inventory_backend.domain.models import Bounded, Unlimited
from inventory_backend.services.capacity_service import resolve_capacity


def test_missing_total_resolves_to_unlimited() -> None:
    capacity = resolve_capacity(None, "rooms")
    assert capacity == Unlimited(unit="rooms")
    assert capacity.is_bounded is False


def test_declared_total_resolves_to_bounded() -> None:
    capacity = resolve_capacity(100, "seats")
    assert capacity == Bounded(total=100, unit="seats")
    assert capacity.is_bounded is True


def test_zero_total_is_bounded_not_unlimited() -> None:
    assert resolve_capacity(0, "rooms") == Bounded(total=0, unit="rooms")


@pytest.mark.parametrize("unit", [None, "", "   "])
def test_blank_unit_falls_back_to_default(unit) -> None:
    assert resolve_capacity(10, unit, default_unit="beds") == Bounded(total=10, unit="beds")


def test_negative_total_raises() -> None:
    with pytest.raises(InvalidCapacity):
        resolve_capacity(-5, "rooms")
