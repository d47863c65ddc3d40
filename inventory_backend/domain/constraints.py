"""Domain-level validation rules applied before any mutation."""

from __future__ import annotations

from datetime import date

from inventory_backend.domain.errors import (
    AttritionConfigIncomplete,
    InvalidCapacity,
    InvalidDateRange,
    InvalidPoolConfiguration,
)
from inventory_backend.domain.models import (
    ALLOCATION_TYPES,
    ATTRITION_PERIOD_TYPES,
    BUCKET_MODES,
    DAYS_OF_WEEK,
    PENALTY_CALCULATIONS,
    POOL_STATUSES,
    POOL_TYPES,
    VARIANT_STATUSES,
    AllocationBucket,
    ContractVersion,
    EventBucket,
    InventoryPool,
    PoolVariant,
    RatePlan,
)


def validate_date_range(valid_from: date, valid_to: date, *, strict: bool = False) -> None:
    """Reject ranges ending before they start; `strict` also rejects empty ranges."""
    if valid_to < valid_from:
        raise InvalidDateRange(
            f"valid_to ({valid_to.isoformat()}) is before valid_from ({valid_from.isoformat()})"
        )
    if strict and valid_to == valid_from:
        raise InvalidDateRange("valid_to must be after valid_from")


def validate_pool(pool: InventoryPool) -> None:
    if not pool.name.strip():
        raise InvalidPoolConfiguration("pool name must be non-empty")
    if pool.pool_type not in POOL_TYPES:
        raise InvalidPoolConfiguration(f"unknown pool_type '{pool.pool_type}'")
    if pool.status not in POOL_STATUSES:
        raise InvalidPoolConfiguration(f"unknown pool status '{pool.status}'")
    validate_date_range(pool.valid_from, pool.valid_to)
    if pool.total_capacity is not None and pool.total_capacity < 0:
        raise InvalidCapacity("total_capacity must be >= 0")
    if pool.release_date is not None and pool.release_date > pool.valid_to:
        raise InvalidPoolConfiguration("release_date must be on or before valid_to")
    if pool.cutoff_days is not None and pool.cutoff_days < 0:
        raise InvalidPoolConfiguration("cutoff_days must be >= 0")
    if pool.min_commitment is not None and pool.min_commitment < 0:
        raise InvalidPoolConfiguration("min_commitment must be >= 0")


def derive_pool_status(pool: InventoryPool, today: date) -> str:
    """Expire pools past validity and release pools past their release date.

    Only active pools transition; manual statuses are left alone.
    """
    if pool.status != "active":
        return pool.status
    if today > pool.valid_to:
        return "expired"
    if pool.release_date is not None and today >= pool.release_date:
        return "released"
    return pool.status


def validate_pool_variant(variant: PoolVariant) -> None:
    if variant.capacity_weight <= 0.0:
        raise InvalidPoolConfiguration("capacity_weight must be > 0")
    if variant.status not in VARIANT_STATUSES:
        raise InvalidPoolConfiguration(f"unknown variant status '{variant.status}'")
    if variant.cost_per_unit is not None and variant.cost_per_unit < 0:
        raise InvalidPoolConfiguration("cost_per_unit must be >= 0")
    if variant.sell_price_per_unit is not None and variant.sell_price_per_unit < 0:
        raise InvalidPoolConfiguration("sell_price_per_unit must be >= 0")
    if variant.booked_units < 0:
        raise InvalidPoolConfiguration("booked_units must be >= 0")


def validate_bucket(bucket: AllocationBucket) -> None:
    if bucket.allocation_type not in ALLOCATION_TYPES:
        raise InvalidPoolConfiguration(f"unknown allocation_type '{bucket.allocation_type}'")
    if isinstance(bucket.period, EventBucket):
        validate_date_range(bucket.period.start, bucket.period.end)
    if bucket.quantity is not None and bucket.quantity < 0:
        raise InvalidCapacity("bucket quantity must be >= 0")
    if bucket.booked < 0 or bucket.held < 0:
        raise InvalidPoolConfiguration("booked and held must be >= 0")
    if bucket.overbooking_limit is not None and bucket.overbooking_limit < 0:
        raise InvalidPoolConfiguration("overbooking_limit must be >= 0")
    if bucket.quantity is None or bucket.blackout:
        return
    floor = -(bucket.overbooking_limit or 0) if bucket.allow_overbooking else 0
    available = bucket.quantity - bucket.booked - bucket.held
    if available < floor:
        raise InvalidCapacity(
            f"booked + held ({bucket.booked + bucket.held}) exceeds quantity {bucket.quantity} "
            f"beyond the allowed overbooking of {-floor}"
        )


def validate_rate_plan(plan: RatePlan) -> None:
    validate_date_range(plan.valid_from, plan.valid_to)
    if plan.inventory_model not in ALLOCATION_TYPES:
        raise InvalidPoolConfiguration(f"unknown inventory_model '{plan.inventory_model}'")
    if plan.bucket_mode not in BUCKET_MODES:
        raise InvalidPoolConfiguration(f"unknown bucket_mode '{plan.bucket_mode}'")
    if plan.days_of_week is not None:
        unknown = [day for day in plan.days_of_week if day not in DAYS_OF_WEEK]
        if unknown:
            raise InvalidPoolConfiguration(f"unknown days_of_week: {', '.join(unknown)}")


def validate_generation_parameters(default_daily_quantity: int, weekend_multiplier: float) -> None:
    if default_daily_quantity < 0:
        raise InvalidCapacity("default_daily_quantity must be >= 0")
    if weekend_multiplier < 0.0:
        raise InvalidPoolConfiguration("weekend_multiplier must be >= 0")


def validate_contract_version(version: ContractVersion) -> None:
    """Validate the range and, when attrition applies, its required terms."""
    validate_date_range(version.valid_from, version.valid_to, strict=True)
    if version.grace_allowance < 0:
        raise AttritionConfigIncomplete("grace_allowance must be >= 0")
    if not version.attrition_applies:
        return

    missing = [
        name
        for name in (
            "committed_quantity",
            "minimum_pickup_percent",
            "penalty_calculation",
            "attrition_period_type",
        )
        if getattr(version, name) is None
    ]
    if missing:
        raise AttritionConfigIncomplete(
            "attrition applies but required fields are missing: " + ", ".join(missing)
        )
    if version.committed_quantity <= 0:
        raise AttritionConfigIncomplete("committed_quantity must be > 0")
    if not 0.0 <= version.minimum_pickup_percent <= 100.0:
        raise AttritionConfigIncomplete("minimum_pickup_percent must be between 0 and 100")
    if version.penalty_calculation not in PENALTY_CALCULATIONS:
        raise AttritionConfigIncomplete(
            f"unknown penalty_calculation '{version.penalty_calculation}'"
        )
    if version.attrition_period_type not in ATTRITION_PERIOD_TYPES:
        raise AttritionConfigIncomplete(
            f"unknown attrition_period_type '{version.attrition_period_type}'"
        )


def validate_penalty_terms(version: ContractVersion, unit_cost: float | None) -> None:
    """Require the amount the version's penalty strategy charges.

    `unit_cost` is the cost resolved for the version, from its own terms or
    from the pool variant it covers.
    """
    if not version.attrition_applies:
        return
    if version.penalty_calculation == "fixed_fee":
        if version.fixed_fee is None:
            raise AttritionConfigIncomplete("fixed_fee penalty requires fixed_fee")
        if version.fixed_fee < 0:
            raise AttritionConfigIncomplete("fixed_fee must be >= 0")
        return
    if unit_cost is None:
        raise AttritionConfigIncomplete(
            f"{version.penalty_calculation} penalty requires unit_cost or a costed pool variant"
        )
    if unit_cost < 0:
        raise AttritionConfigIncomplete("unit_cost must be >= 0")
