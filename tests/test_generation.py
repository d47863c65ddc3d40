from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from inventory_backend.domain.errors import (
    EntityNotFoundError,
    InvalidCapacity,
    InvalidDateRange,
    InvalidPoolConfiguration,
)
from inventory_backend.domain.models import EventBucket, RatePlan, TenantContext
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.services.generation_service import (
    AllocationGenerationService,
    build_buckets,
    daily_quantity,
    estimate_total_units,
)
from inventory_backend.utils.config import get_settings


CONTEXT = TenantContext(org_id=1, actor="tester")


def _build_service(tmp_path, filename: str) -> tuple[AllocationGenerationService, DataRepository]:
    settings = replace(get_settings(), database_path=tmp_path / filename, seed_demo_data=False)
    repository = DataRepository(settings)
    repository.initialize_database()
    return AllocationGenerationService(repository=repository, settings=settings), repository


def _plan(**overrides) -> RatePlan:
    fields = {
        "rate_plan_id": None,
        "org_id": CONTEXT.org_id,
        "product_variant_id": 101,
        "supplier_id": 9,
        "valid_from": date(2026, 6, 1),
        "valid_to": date(2026, 6, 7),
        "inventory_model": "committed",
    }
    fields.update(overrides)
    return RatePlan(**fields)


# --- Pure expansion rules ---

def test_weekend_multiplier_rounds_half_up() -> None:
    saturday = date(2026, 6, 6)
    assert daily_quantity(5, 1.3, saturday) == 7
    assert daily_quantity(5, 1.5, saturday) == 8
    assert daily_quantity(5, 1.5, date(2026, 6, 5)) == 5


def test_daily_mode_creates_one_bucket_per_day_with_weekend_scaling() -> None:
    buckets = build_buckets(_plan(), default_daily_quantity=10, weekend_multiplier=1.5)

    assert [bucket.period.date.day for bucket in buckets] == [1, 2, 3, 4, 5, 6, 7]
    assert [bucket.quantity for bucket in buckets] == [10, 10, 10, 10, 10, 15, 15]


def test_days_of_week_filter_limits_buckets() -> None:
    plan = _plan(valid_to=date(2026, 6, 14), days_of_week=("sat", "sun"))

    buckets = build_buckets(plan, default_daily_quantity=4, weekend_multiplier=1.0)

    assert [bucket.period.date for bucket in buckets] == [
        date(2026, 6, 6),
        date(2026, 6, 7),
        date(2026, 6, 13),
        date(2026, 6, 14),
    ]


@pytest.mark.parametrize("model", ["freesale", "on_request"])
def test_unbounded_models_carry_no_quantity(model: str) -> None:
    buckets = build_buckets(_plan(inventory_model=model), default_daily_quantity=10, weekend_multiplier=2.0)
    assert buckets
    assert all(bucket.quantity is None for bucket in buckets)


def test_event_mode_creates_single_bucket_for_whole_range() -> None:
    buckets = build_buckets(
        _plan(bucket_mode="event", valid_to=date(2026, 6, 3)),
        default_daily_quantity=40,
        weekend_multiplier=2.0,
    )

    assert len(buckets) == 1
    assert buckets[0].period == EventBucket(start=date(2026, 6, 1), end=date(2026, 6, 3))
    assert buckets[0].quantity == 40


def test_estimate_ignores_weekend_multiplier() -> None:
    assert estimate_total_units(date(2026, 6, 1), date(2026, 6, 30), 10) == 300


# --- Persistence behaviour ---

def test_generation_is_idempotent(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "idempotent.db")
    plan = service.create_rate_plan(CONTEXT, _plan())

    first = service.generate(CONTEXT, plan.rate_plan_id, 10, 1.5)
    second = service.generate(CONTEXT, plan.rate_plan_id, 10, 1.5)

    assert first.written_count == 7
    assert repository.count_buckets(CONTEXT.org_id) == 7
    assert first.buckets == second.buckets


def test_regeneration_preserves_buckets_with_bookings(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "non_destructive.db")
    plan = service.create_rate_plan(CONTEXT, _plan(valid_to=date(2026, 6, 3)))
    first = service.generate(CONTEXT, plan.rate_plan_id, 10)
    booked_bucket = next(bucket for bucket in first.buckets if bucket.period.date == date(2026, 6, 2))
    repository.update_bucket(replace(booked_bucket, booked=3))

    second = service.generate(CONTEXT, plan.rate_plan_id, 20)

    by_day = {bucket.period.date: bucket for bucket in second.buckets}
    assert by_day[date(2026, 6, 2)].quantity == 10
    assert by_day[date(2026, 6, 2)].booked == 3
    assert by_day[date(2026, 6, 1)].quantity == 20
    assert by_day[date(2026, 6, 3)].quantity == 20
    assert second.skipped_periods == ["D:2026-06-02"]
    assert second.written_count == 2


def test_invalid_range_writes_no_buckets(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "invalid_range.db")
    reversed_plan = _plan(rate_plan_id=1, valid_from=date(2026, 6, 10), valid_to=date(2026, 6, 1))

    with pytest.raises(InvalidDateRange):
        service.generate_for_plan(reversed_plan, 10)
    assert repository.count_buckets(CONTEXT.org_id) == 0


def test_create_rate_plan_rejects_reversed_range(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "reversed_plan.db")

    with pytest.raises(InvalidDateRange):
        service.create_rate_plan(CONTEXT, _plan(valid_from=date(2026, 6, 10), valid_to=date(2026, 6, 1)))


def test_create_rate_plan_requires_existing_pool(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "missing_pool.db")

    with pytest.raises(EntityNotFoundError):
        service.create_rate_plan(CONTEXT, _plan(pool_id=404))


def test_preview_reports_days_and_estimate(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "preview.db")
    plan = service.create_rate_plan(CONTEXT, _plan(valid_to=date(2026, 6, 30)))

    preview = service.preview(CONTEXT, plan.rate_plan_id, 10)

    assert preview.days == 30
    assert preview.estimated_total_units == 300
    assert repository.count_buckets(CONTEXT.org_id) == 0


def test_update_bucket_applies_flags(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "bucket_edit.db")
    plan = service.create_rate_plan(CONTEXT, _plan(valid_to=date(2026, 6, 1)))
    bucket = service.generate(CONTEXT, plan.rate_plan_id, 10).buckets[0]

    updated = service.update_bucket(
        CONTEXT,
        bucket.bucket_id,
        stop_sell=True,
        allow_overbooking=True,
        overbooking_limit=2,
        notes="sales freeze",
    )

    stored = repository.load_bucket(CONTEXT.org_id, bucket.bucket_id).to_bucket()
    assert stored == updated
    assert stored.stop_sell is True
    assert stored.overbooking_limit == 2


def test_update_bucket_rejects_non_editable_fields(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "bucket_edit_invalid.db")
    plan = service.create_rate_plan(CONTEXT, _plan(valid_to=date(2026, 6, 1)))
    bucket = service.generate(CONTEXT, plan.rate_plan_id, 10).buckets[0]

    with pytest.raises(InvalidPoolConfiguration):
        service.update_bucket(CONTEXT, bucket.bucket_id, booked=5)


def test_update_bucket_keeps_bookings_within_quantity(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "bucket_edit_bounds.db")
    plan = service.create_rate_plan(CONTEXT, _plan(valid_to=date(2026, 6, 1)))
    bucket = service.generate(CONTEXT, plan.rate_plan_id, 10).buckets[0]
    repository.update_bucket(replace(bucket, booked=8))

    with pytest.raises(InvalidCapacity):
        service.update_bucket(CONTEXT, bucket.bucket_id, quantity=2)

    overbooked = service.update_bucket(
        CONTEXT,
        bucket.bucket_id,
        quantity=5,
        allow_overbooking=True,
        overbooking_limit=3,
    )
    assert overbooked.quantity == 5

    with pytest.raises(InvalidCapacity):
        service.update_bucket(CONTEXT, bucket.bucket_id, allow_overbooking=False)
    with pytest.raises(InvalidCapacity):
        service.update_bucket(CONTEXT, bucket.bucket_id, overbooking_limit=2)

    stored = repository.load_bucket(CONTEXT.org_id, bucket.bucket_id).to_bucket()
    assert (stored.quantity, stored.booked, stored.allow_overbooking) == (5, 8, True)
