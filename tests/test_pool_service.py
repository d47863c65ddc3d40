from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from inventory_backend.domain.errors import EntityNotFoundError, InvalidPoolConfiguration
from inventory_backend.domain.models import InventoryPool, PoolVariant, TenantContext
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.services.pool_service import (
    PoolService,
    cheapest_cost_per_capacity_unit,
    derive_pool_status,
)
from inventory_backend.services.weighting_service import PoolAllocationService
from inventory_backend.utils.config import get_settings


CONTEXT = TenantContext(org_id=1, actor="tester")
TODAY = date(2026, 6, 1)


def _build(tmp_path, filename: str):
    settings = replace(get_settings(), database_path=tmp_path / filename, seed_demo_data=False)
    repository = DataRepository(settings)
    repository.initialize_database()
    clock = lambda: datetime(TODAY.year, TODAY.month, TODAY.day, tzinfo=timezone.utc)  # noqa: E731
    return (
        PoolService(repository=repository, settings=settings, clock=clock),
        PoolAllocationService(repository=repository, settings=settings, clock=clock),
        repository,
    )


def _pool(**overrides) -> InventoryPool:
    fields = {
        "pool_id": None,
        "org_id": 0,
        "name": "Harbour Hotel Block",
        "pool_type": "committed",
        "valid_from": TODAY,
        "valid_to": TODAY + timedelta(days=60),
        "total_capacity": 100,
        "supplier_id": 9,
    }
    fields.update(overrides)
    return InventoryPool(**fields)


def _variants() -> list[PoolVariant]:
    return [
        PoolVariant(None, None, 101, 1.0, cost_per_unit=80.0, priority=10),
        PoolVariant(None, None, 102, 1.5, cost_per_unit=90.0, priority=20),
    ]


# --- Lifecycle rules ---

def test_derive_status_expires_after_validity() -> None:
    pool = _pool(valid_to=TODAY - timedelta(days=1))
    assert derive_pool_status(pool, TODAY) == "expired"


def test_derive_status_releases_on_release_date() -> None:
    pool = _pool(release_date=TODAY)
    assert derive_pool_status(pool, TODAY) == "released"
    assert derive_pool_status(pool, TODAY - timedelta(days=1)) == "active"


def test_derive_status_keeps_manual_statuses() -> None:
    pool = _pool(status="inactive", valid_to=TODAY - timedelta(days=10))
    assert derive_pool_status(pool, TODAY) == "inactive"


def test_cheapest_cost_is_per_capacity_unit() -> None:
    assert cheapest_cost_per_capacity_unit(_variants()) == pytest.approx(60.0)
    assert cheapest_cost_per_capacity_unit([PoolVariant(None, None, 101)]) == 0.0


# --- Service ---

def test_create_pool_scopes_tenant_and_defaults_unit(tmp_path) -> None:
    service, _, _ = _build(tmp_path, "create.db")

    pool, variants = service.create_pool(CONTEXT, _pool(capacity_unit=" "), _variants())

    assert pool.org_id == CONTEXT.org_id
    assert pool.capacity_unit == get_settings().default_capacity_unit
    assert [item.product_variant_id for item in variants] == [101, 102]
    loaded_pool, loaded_variants = service.get_pool(CONTEXT, pool.pool_id)
    assert loaded_pool == pool
    assert loaded_variants == variants


def test_create_pool_rejects_invalid_variant_before_saving(tmp_path) -> None:
    service, _, repository = _build(tmp_path, "invalid_variant.db")

    with pytest.raises(InvalidPoolConfiguration):
        service.create_pool(CONTEXT, _pool(), [PoolVariant(None, None, 101, capacity_weight=0.0)])
    assert repository.list_pools(CONTEXT.org_id) == []


def test_get_pool_of_other_tenant_is_not_found(tmp_path) -> None:
    service, _, _ = _build(tmp_path, "tenant.db")
    pool, _ = service.create_pool(CONTEXT, _pool())

    with pytest.raises(EntityNotFoundError):
        service.get_pool(TenantContext(org_id=2), pool.pool_id)


def test_refresh_persists_transitions(tmp_path) -> None:
    service, _, repository = _build(tmp_path, "refresh.db")
    expired, _ = service.create_pool(
        CONTEXT,
        _pool(valid_from=TODAY - timedelta(days=30), valid_to=TODAY - timedelta(days=1)),
    )
    released, _ = service.create_pool(CONTEXT, _pool(release_date=TODAY - timedelta(days=2)))
    untouched, _ = service.create_pool(CONTEXT, _pool())

    changed = service.refresh_pool_statuses(CONTEXT)

    assert {(pool.pool_id, pool.status) for pool in changed} == {
        (expired.pool_id, "expired"),
        (released.pool_id, "released"),
    }
    assert repository.load_pool(CONTEXT.org_id, untouched.pool_id).status == "active"
    assert service.refresh_pool_statuses(CONTEXT) == []


def test_release_warnings_report_unsold_capacity(tmp_path) -> None:
    service, allocation, _ = _build(tmp_path, "warnings.db")
    soon, _ = service.create_pool(CONTEXT, _pool(name="Soon", release_date=TODAY + timedelta(days=5)), _variants())
    allocation.allocate(CONTEXT, soon.pool_id, 40, product_variant_id=101)
    service.create_pool(CONTEXT, _pool(name="Later", release_date=TODAY + timedelta(days=45)), _variants())
    service.create_pool(CONTEXT, _pool(name="Unlimited", total_capacity=None, release_date=TODAY + timedelta(days=2)))
    sold_out, _ = service.create_pool(
        CONTEXT,
        _pool(name="Sold out", total_capacity=10, release_date=TODAY + timedelta(days=3)),
        _variants(),
    )
    allocation.allocate(CONTEXT, sold_out.pool_id, 10, product_variant_id=101)
    yesterday, _ = service.create_pool(
        CONTEXT,
        _pool(name="Yesterday", total_capacity=20, release_date=TODAY - timedelta(days=1)),
        _variants(),
    )

    warnings = service.release_warnings(CONTEXT)

    assert [item.pool_name for item in warnings] == ["Yesterday", "Soon"]
    assert warnings[0].days_until_release == -1
    soon_warning = warnings[1]
    assert soon_warning.days_until_release == 5
    assert soon_warning.remaining_capacity == pytest.approx(60.0)
    assert soon_warning.potential_loss == pytest.approx(3600.0)


def test_bulk_status_rejects_unknown_status(tmp_path) -> None:
    service, _, _ = _build(tmp_path, "bulk_status_invalid.db")

    with pytest.raises(InvalidPoolConfiguration):
        service.bulk_update_status(CONTEXT, [1], "archived")


def test_bulk_status_updates_all_pools(tmp_path) -> None:
    service, _, repository = _build(tmp_path, "bulk_status.db")
    first, _ = service.create_pool(CONTEXT, _pool())
    second, _ = service.create_pool(CONTEXT, _pool())

    outcomes = service.bulk_update_status(CONTEXT, [first.pool_id, second.pool_id], "inactive")

    assert all(item.status == "succeeded" for item in outcomes)
    assert {pool.status for pool in repository.list_pools(CONTEXT.org_id)} == {"inactive"}


def test_bulk_delete_refuses_pools_with_bookings(tmp_path) -> None:
    service, allocation, repository = _build(tmp_path, "bulk_delete.db")
    empty, _ = service.create_pool(CONTEXT, _pool(), _variants())
    booked, _ = service.create_pool(CONTEXT, _pool(), _variants())
    allocation.allocate(CONTEXT, booked.pool_id, 3)

    outcomes = service.bulk_delete(CONTEXT, [empty.pool_id, booked.pool_id])

    assert [item.status for item in outcomes] == ["rolled_back", "failed"]
    assert len(repository.list_pools(CONTEXT.org_id)) == 2

    outcomes = service.bulk_delete(CONTEXT, [empty.pool_id])
    assert outcomes[0].status == "succeeded"
    assert [pool.pool_id for pool in repository.list_pools(CONTEXT.org_id)] == [booked.pool_id]


def test_bulk_duplicate_copies_variants_without_consumption(tmp_path) -> None:
    service, allocation, repository = _build(tmp_path, "bulk_duplicate.db")
    source, _ = service.create_pool(CONTEXT, _pool(), _variants())
    allocation.allocate(CONTEXT, source.pool_id, 5)

    outcomes = service.bulk_duplicate(CONTEXT, [source.pool_id])

    assert outcomes[0].status == "succeeded"
    copy = repository.list_pools(CONTEXT.org_id)[-1]
    assert copy.pool_id != source.pool_id
    assert copy.name == "Harbour Hotel Block (copy)"
    copied_variants = repository.list_pool_variants(CONTEXT.org_id, copy.pool_id)
    assert [item.product_variant_id for item in copied_variants] == [101, 102]
    assert all(item.booked_units == 0 for item in copied_variants)
