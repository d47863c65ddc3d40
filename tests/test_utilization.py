from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date

import pytest

from inventory_backend.domain.errors import BucketIntegrityError, InvalidDateRange
from inventory_backend.domain.models import (
    AllocationBucket,
    DailyBucket,
    InventoryPool,
    PoolVariant,
    TenantContext,
)
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.services.utilization_service import (
    UtilizationService,
    bucket_utilization,
    pool_utilization,
    safe_percentage,
    utilization_tier,
)
from inventory_backend.utils.config import get_settings


CONTEXT = TenantContext(org_id=1)


def _bucket(**overrides) -> AllocationBucket:
    fields = {
        "bucket_id": 1,
        "org_id": 1,
        "product_variant_id": 101,
        "supplier_id": 9,
        "period": DailyBucket(date=date(2026, 6, 1)),
        "allocation_type": "committed",
        "quantity": 10,
    }
    fields.update(overrides)
    return AllocationBucket(**fields)


def _build_service(tmp_path, filename: str) -> tuple[UtilizationService, DataRepository]:
    settings = replace(get_settings(), database_path=tmp_path / filename, seed_demo_data=False)
    repository = DataRepository(settings)
    repository.initialize_database()
    return UtilizationService(repository=repository, settings=settings), repository


# --- Calculator ---

def test_zero_denominator_yields_zero_percent() -> None:
    assert safe_percentage(5, 0) == 0.0
    assert safe_percentage(5, None) == 0.0
    snapshot = bucket_utilization(_bucket(quantity=0))
    assert snapshot.utilization_percentage == 0.0
    assert snapshot.available_units == 0


@pytest.mark.parametrize(
    ("percentage", "tier"),
    [(0.0, "normal"), (74.9, "normal"), (75.0, "warning"), (89.99, "warning"), (90.0, "critical"), (130.0, "critical")],
)
def test_utilization_tiers(percentage: float, tier: str) -> None:
    assert utilization_tier(percentage) == tier


def test_bucket_utilization_counts_held_against_availability() -> None:
    snapshot = bucket_utilization(_bucket(booked=6, held=2))

    assert snapshot.available_units == 2
    assert snapshot.utilization_percentage == pytest.approx(60.0)
    assert snapshot.is_overbooked is False
    assert snapshot.tier == "normal"


def test_overbooked_bucket_is_flagged_and_floored() -> None:
    strict = bucket_utilization(_bucket(booked=9, held=2))
    relaxed = bucket_utilization(_bucket(booked=9, held=2, allow_overbooking=True, overbooking_limit=2))

    assert strict.is_overbooked is True
    assert strict.available_units == 0
    assert relaxed.available_units == -1
    assert strict.tier == "critical"


def test_blackout_bucket_has_no_availability() -> None:
    assert bucket_utilization(_bucket(booked=1, blackout=True)).available_units == 0


def test_unbounded_bucket_reports_no_availability_figure() -> None:
    snapshot = bucket_utilization(_bucket(allocation_type="freesale", quantity=None, booked=40))

    assert snapshot.available_units is None
    assert snapshot.utilization_percentage == 0.0
    assert snapshot.is_overbooked is False


def test_pool_utilization_uses_weighted_consumption() -> None:
    pool = InventoryPool(1, 1, "Block", "committed", date(2026, 6, 1), date(2026, 6, 30), total_capacity=100)
    variants = [
        PoolVariant(1, 1, 101, 1.0, booked_units=60),
        PoolVariant(2, 1, 102, 1.5, booked_units=20),
    ]

    report = pool_utilization(pool, variants)

    assert report.consumed_capacity == pytest.approx(90.0)
    assert report.remaining_capacity == pytest.approx(10.0)
    assert report.utilization_percentage == pytest.approx(90.0)
    assert report.tier == "critical"
    assert [item.consumed_capacity for item in report.variants] == [60.0, 30.0]


def test_unlimited_pool_reports_no_remaining_capacity() -> None:
    pool = InventoryPool(1, 1, "Freesale", "freesale", date(2026, 6, 1), date(2026, 6, 30))

    report = pool_utilization(pool, [PoolVariant(1, 1, 101, booked_units=500)])

    assert report.total_capacity is None
    assert report.remaining_capacity is None
    assert report.utilization_percentage == 0.0


def test_blank_pool_unit_uses_configured_default(tmp_path) -> None:
    settings = replace(
        get_settings(),
        database_path=tmp_path / "pool_unit.db",
        seed_demo_data=False,
        default_capacity_unit="seats",
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    pool = repository.save_pool(
        InventoryPool(
            None,
            1,
            "Charter",
            "committed",
            date(2026, 6, 1),
            date(2026, 6, 30),
            total_capacity=180,
            capacity_unit=" ",
        )
    )
    service = UtilizationService(repository=repository, settings=settings)

    assert service.for_pool(TenantContext(org_id=1), pool.pool_id).capacity_unit == "seats"
    assert pool_utilization(pool, [], default_unit="beds").capacity_unit == "beds"


# --- Service over stored rows ---

def _insert_malformed_bucket(repository: DataRepository) -> int:
    with sqlite3.connect(repository.database_path) as conn:
        cursor = conn.execute(
            """
            INSERT INTO AllocationBuckets (
                org_id, product_variant_id, supplier_id, period_key,
                bucket_date, event_start_date, event_end_date,
                allocation_type, quantity, booked
            )
            VALUES (1, 101, 9, 'broken', '2026-06-02', '2026-06-02', '2026-06-04', 'committed', 10, 4);
            """
        )
        conn.commit()
        return int(cursor.lastrowid)


def test_range_report_skips_and_flags_malformed_rows(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "malformed.db")
    repository.upsert_bucket(_bucket(bucket_id=None, booked=5))
    malformed_id = _insert_malformed_bucket(repository)

    report = service.for_range(
        CONTEXT,
        supplier_id=9,
        date_from=date(2026, 6, 1),
        date_to=date(2026, 6, 30),
    )

    assert report.skipped_bucket_ids == [malformed_id]
    assert len(report.rows) == 1
    assert report.total_booked == 5
    assert report.total_quantity == 10
    assert report.utilization_percentage == pytest.approx(50.0)


def test_single_malformed_bucket_raises_integrity_error(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "malformed_single.db")
    malformed_id = _insert_malformed_bucket(repository)

    with pytest.raises(BucketIntegrityError) as excinfo:
        service.for_bucket(CONTEXT, malformed_id)
    assert excinfo.value.bucket_id == malformed_id


def test_range_report_rejects_reversed_range(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "reversed.db")

    with pytest.raises(InvalidDateRange):
        service.for_range(CONTEXT, supplier_id=9, date_from=date(2026, 6, 2), date_to=date(2026, 6, 1))
