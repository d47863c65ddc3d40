"""Tests for attrition penalties, version status and contract version persistence."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from inventory_backend.domain.errors import (
    AttritionConfigIncomplete,
    AttritionNotApplicable,
    OverlappingContractVersion,
)
from inventory_backend.domain.models import (
    AllocationBucket,
    ContractVersion,
    DailyBucket,
    InventoryPool,
    PoolVariant,
    TenantContext,
)
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.services.attrition_service import (
    AttritionService,
    evaluate_attrition,
    power_curve,
    version_status,
)
from inventory_backend.utils.config import get_settings


CONTEXT = TenantContext(org_id=1, actor="tester")


def _version(**overrides) -> ContractVersion:
    fields = {
        "version_id": 1,
        "org_id": 1,
        "contract_id": 7,
        "valid_from": date(2026, 1, 1),
        "valid_to": date(2026, 7, 1),
        "attrition_applies": True,
        "committed_quantity": 100,
        "minimum_pickup_percent": 80.0,
        "penalty_calculation": "pay_for_unused",
        "grace_allowance": 5,
        "attrition_period_type": "seasonal",
        "unit_cost": 100.0,
    }
    fields.update(overrides)
    return ContractVersion(**fields)


def _build_service(tmp_path, filename: str, today: date = date(2026, 3, 1), **settings_overrides):
    settings = replace(
        get_settings(),
        database_path=tmp_path / filename,
        seed_demo_data=False,
        **settings_overrides,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    service = AttritionService(
        repository=repository,
        settings=settings,
        clock=lambda: datetime(today.year, today.month, today.day, tzinfo=timezone.utc),
    )
    return service, repository


# --- Penalty strategies ---

def test_grace_allowance_absorbs_part_of_shortfall() -> None:
    result = evaluate_attrition(_version(), 74)

    assert result.pickup_percent == pytest.approx(74.0)
    assert result.raw_shortfall == pytest.approx(6.0)
    assert result.shortfall_units == pytest.approx(1.0)
    assert result.shortfall_ratio == pytest.approx(0.01)
    assert result.penalty_amount == pytest.approx(100.0)


def test_shortfall_within_grace_costs_nothing() -> None:
    result = evaluate_attrition(_version(), 76)

    assert result.raw_shortfall == pytest.approx(4.0)
    assert result.shortfall_units == 0.0
    assert result.penalty_amount == 0.0


def test_pickup_above_minimum_has_no_shortfall() -> None:
    result = evaluate_attrition(_version(), 120)

    assert result.raw_shortfall == 0.0
    assert result.pickup_percent == pytest.approx(120.0)


def test_fixed_fee_is_binary() -> None:
    version = _version(penalty_calculation="fixed_fee", fixed_fee=500.0, unit_cost=None)

    assert evaluate_attrition(version, 74).penalty_amount == 500.0
    assert evaluate_attrition(version, 10).penalty_amount == 500.0
    assert evaluate_attrition(version, 80).penalty_amount == 0.0


def test_sliding_scale_scales_with_shortfall_ratio() -> None:
    version = _version(penalty_calculation="sliding_scale", grace_allowance=0)

    linear = evaluate_attrition(version, 60)
    squared = evaluate_attrition(version, 60, curve=power_curve(2.0))

    assert linear.shortfall_ratio == pytest.approx(0.2)
    assert linear.penalty_amount == pytest.approx(400.0)
    assert squared.penalty_amount == pytest.approx(80.0)


def test_explicit_cost_overrides_version_cost() -> None:
    assert evaluate_attrition(_version(), 74, cost_per_unit=250.0).penalty_amount == pytest.approx(250.0)


def test_missing_unit_cost_raises_incomplete() -> None:
    with pytest.raises(AttritionConfigIncomplete):
        evaluate_attrition(_version(unit_cost=None), 74)


def test_missing_fixed_fee_raises_incomplete() -> None:
    with pytest.raises(AttritionConfigIncomplete):
        evaluate_attrition(_version(penalty_calculation="fixed_fee"), 74)


def test_missing_terms_raise_incomplete() -> None:
    with pytest.raises(AttritionConfigIncomplete):
        evaluate_attrition(_version(minimum_pickup_percent=None), 74)


def test_version_without_attrition_is_not_applicable() -> None:
    with pytest.raises(AttritionNotApplicable):
        evaluate_attrition(_version(attrition_applies=False), 74)


# --- Temporal status ---

@pytest.mark.parametrize(
    ("today", "expected"),
    [
        (date(2025, 12, 31), "future"),
        (date(2026, 1, 1), "current"),
        (date(2026, 6, 30), "current"),
        (date(2026, 7, 1), "expired"),
    ],
)
def test_version_status_boundaries(today: date, expected: str) -> None:
    assert version_status(_version(), today) == expected


# --- Service ---

def test_overlapping_versions_are_rejected(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "overlap.db")
    first = service.save_version(CONTEXT, _version(version_id=None))

    with pytest.raises(OverlappingContractVersion):
        service.save_version(
            CONTEXT,
            _version(version_id=None, valid_from=date(2026, 6, 1), valid_to=date(2026, 9, 1)),
        )

    adjacent = service.save_version(
        CONTEXT,
        _version(version_id=None, valid_from=date(2026, 7, 1), valid_to=date(2026, 12, 1)),
    )
    resaved = service.save_version(CONTEXT, replace(first, grace_allowance=8))
    assert adjacent.version_id != first.version_id
    assert resaved.grace_allowance == 8


def test_status_uses_service_clock(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "status.db", today=date(2026, 8, 1))
    saved = service.save_version(CONTEXT, _version(version_id=None))

    assert service.status(CONTEXT, saved.version_id) == "expired"


def test_pickup_is_derived_from_bookings_inside_validity(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "pickup.db")
    saved = service.save_version(
        CONTEXT,
        _version(
            version_id=None,
            valid_from=date(2026, 6, 1),
            valid_to=date(2026, 6, 4),
            supplier_id=9,
            product_variant_id=101,
            committed_quantity=50,
        ),
    )
    for day, booked in [(1, 10), (2, 12), (3, 8), (4, 30)]:
        repository.upsert_bucket(
            AllocationBucket(
                bucket_id=None,
                org_id=CONTEXT.org_id,
                product_variant_id=101,
                supplier_id=9,
                period=DailyBucket(date=date(2026, 6, day)),
                allocation_type="committed",
                quantity=40,
                booked=booked,
            )
        )

    result = service.evaluate(CONTEXT, saved.version_id)

    assert result.actual_pickup == 30
    assert result.raw_shortfall == pytest.approx(10.0)
    assert result.shortfall_units == pytest.approx(5.0)
    assert result.penalty_amount == pytest.approx(500.0)


def test_pickup_without_supplier_scope_must_be_supplied(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "no_scope.db")
    saved = service.save_version(CONTEXT, _version(version_id=None))

    with pytest.raises(AttritionConfigIncomplete):
        service.evaluate(CONTEXT, saved.version_id)
    assert service.evaluate(CONTEXT, saved.version_id, actual_pickup=74).shortfall_units == pytest.approx(1.0)


def test_service_applies_configured_sliding_exponent(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "sliding.db", attrition_sliding_scale_exponent=2.0)
    saved = service.save_version(
        CONTEXT,
        _version(version_id=None, penalty_calculation="sliding_scale", grace_allowance=0),
    )

    assert service.evaluate(CONTEXT, saved.version_id, actual_pickup=60).penalty_amount == pytest.approx(80.0)


def test_bulk_delete_rolls_back_on_any_failure(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "bulk_versions.db")
    saved = service.save_version(CONTEXT, _version(version_id=None))

    outcomes = service.bulk_delete(CONTEXT, [saved.version_id, 999])

    assert [(item.entity_id, item.status) for item in outcomes] == [
        (saved.version_id, "rolled_back"),
        (999, "failed"),
    ]
    assert repository.load_contract_version(CONTEXT.org_id, saved.version_id) is not None

    outcomes = service.bulk_delete(CONTEXT, [saved.version_id])
    assert outcomes[0].status == "succeeded"
    assert repository.load_contract_version(CONTEXT.org_id, saved.version_id) is None


def _seed_costed_pool(repository: DataRepository, cost_per_unit: float, supplier_id: int = 9) -> None:
    pool = repository.save_pool(
        InventoryPool(
            pool_id=None,
            org_id=CONTEXT.org_id,
            name="Harbour Hotel Block",
            pool_type="committed",
            valid_from=date(2026, 1, 1),
            valid_to=date(2026, 12, 31),
            total_capacity=100,
            supplier_id=supplier_id,
        )
    )
    repository.save_pool_variant(
        CONTEXT.org_id,
        PoolVariant(None, pool.pool_id, 101, 1.0, cost_per_unit=cost_per_unit),
    )


def test_unit_cost_falls_back_to_pool_variant_cost(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "variant_cost.db")
    _seed_costed_pool(repository, cost_per_unit=120.0)
    saved = service.save_version(
        CONTEXT,
        _version(version_id=None, unit_cost=None, supplier_id=9, product_variant_id=101),
    )

    result = service.evaluate(CONTEXT, saved.version_id, actual_pickup=74)

    assert result.penalty_amount == pytest.approx(120.0)
    assert service.evaluate(CONTEXT, saved.version_id, actual_pickup=74, cost_per_unit=50.0).penalty_amount == 50.0


def test_version_cost_wins_over_pool_variant_cost(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "version_cost.db")
    _seed_costed_pool(repository, cost_per_unit=120.0)
    saved = service.save_version(
        CONTEXT,
        _version(version_id=None, supplier_id=9, product_variant_id=101),
    )

    assert service.evaluate(CONTEXT, saved.version_id, actual_pickup=74).penalty_amount == pytest.approx(100.0)


def test_save_requires_a_resolvable_unit_cost(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "no_cost.db")
    _seed_costed_pool(repository, cost_per_unit=120.0, supplier_id=4)

    with pytest.raises(AttritionConfigIncomplete):
        service.save_version(
            CONTEXT,
            _version(version_id=None, unit_cost=None, supplier_id=9, product_variant_id=101),
        )
    with pytest.raises(AttritionConfigIncomplete):
        service.save_version(CONTEXT, _version(version_id=None, unit_cost=None))


def test_save_requires_fixed_fee_amount(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "no_fee.db")

    with pytest.raises(AttritionConfigIncomplete):
        service.save_version(
            CONTEXT,
            _version(version_id=None, penalty_calculation="fixed_fee", unit_cost=None),
        )
    assert repository.list_contract_versions(CONTEXT.org_id, 7) == []

    saved = service.save_version(
        CONTEXT,
        _version(version_id=None, penalty_calculation="fixed_fee", unit_cost=None, fixed_fee=500.0),
    )
    assert service.evaluate(CONTEXT, saved.version_id, actual_pickup=90).penalty_amount == 0.0
