"""Weighted consumption of pool capacity by sellable variants."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from threading import Lock, RLock
from typing import Callable, Iterable, Optional

from inventory_backend.domain.constraints import derive_pool_status, validate_pool_variant
from inventory_backend.domain.errors import (
    BucketIntegrityError,
    ConsumptionConflict,
    EntityNotFoundError,
    InventoryValidationError,
)
from inventory_backend.domain.models import (
    AllocationBucket,
    AllocationOutcome,
    AllocationRejection,
    Bounded,
    Capacity,
    InsufficientCapacity,
    InventoryPool,
    PoolVariant,
    TenantContext,
)
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.services.capacity_service import resolve_pool_capacity
from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)


def capacity_units(value: float) -> Decimal:
    """Exact decimal form of a capacity amount for comparisons and sums."""
    return Decimal(str(value))


def add_capacity(first: float, second: float) -> float:
    return float(capacity_units(first) + capacity_units(second))


def remaining_capacity(ceiling: float | None, consumption: float) -> float | None:
    if ceiling is None:
        return None
    return float(capacity_units(ceiling) - capacity_units(consumption))


def resolve_consumption(variant: PoolVariant, units_sold: int) -> float:
    return float(capacity_units(variant.capacity_weight) * units_sold)


def current_consumption(variants: Iterable[PoolVariant]) -> float:
    """Capacity units already consumed across every variant of a pool."""
    return float(
        sum(
            (capacity_units(variant.capacity_weight) * variant.booked_units for variant in variants),
            Decimal(0),
        )
    )


def overbooking_allowance(buckets: Iterable[AllocationBucket]) -> int:
    return sum(
        bucket.overbooking_limit or 0
        for bucket in buckets
        if bucket.allow_overbooking
    )


def effective_capacity(capacity: Capacity, allowance: int = 0) -> float | None:
    if not isinstance(capacity, Bounded):
        return None
    return float(capacity.total + max(0, allowance))


def can_allocate(
    capacity: Capacity,
    variant: PoolVariant,
    units: int,
    consumption: float,
    allowance: int = 0,
) -> bool:
    """True when `units` of `variant` fit under the effective capacity.

    Unlimited pools always accept.
    """
    ceiling = effective_capacity(capacity, allowance)
    if ceiling is None:
        return True
    required = capacity_units(variant.capacity_weight) * units
    return capacity_units(consumption) + required <= capacity_units(ceiling)


def rank_variants(variants: Iterable[PoolVariant]) -> list[PoolVariant]:
    """Active auto-allocate variants, lowest priority first, then by variant id."""
    eligible = [
        variant
        for variant in variants
        if variant.auto_allocate and variant.status == "active"
    ]
    return sorted(eligible, key=lambda item: (item.priority, item.product_variant_id))


def choose_variant(
    capacity: Capacity,
    variants: list[PoolVariant],
    units: int,
    consumption: float,
    allowance: int = 0,
) -> PoolVariant | InsufficientCapacity:
    ranked = rank_variants(variants)
    for variant in ranked:
        if can_allocate(capacity, variant, units, consumption, allowance):
            return variant
    ceiling = effective_capacity(capacity, allowance)
    cheapest = min((resolve_consumption(variant, units) for variant in ranked), default=0.0)
    return InsufficientCapacity(
        code="insufficient_capacity",
        detail=(
            "no eligible variant can accept the requested units"
            if ranked
            else "pool has no active auto-allocate variants"
        ),
        requested_units=units,
        required_capacity=cheapest,
        available_capacity=remaining_capacity(ceiling, consumption) if ceiling is not None else 0.0,
    )


class PoolAllocationService:
    """Serializes capacity decisions per pool and records accepted consumption."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: dict[int, RLock] = {}
        self._locks_guard = Lock()

    def _pool_lock(self, pool_id: int) -> RLock:
        with self._locks_guard:
            lock = self._locks.get(pool_id)
            if lock is None:
                lock = RLock()
                self._locks[pool_id] = lock
            return lock

    def _load_pool(self, context: TenantContext, pool_id: int) -> InventoryPool:
        pool = self._repository.load_pool(context.org_id, pool_id)
        if pool is None:
            raise EntityNotFoundError(f"Pool {pool_id} not found")
        return pool

    def add_variant(self, context: TenantContext, pool_id: int, variant: PoolVariant) -> PoolVariant:
        """Attach or re-weight a variant; existing bookings are not re-validated."""
        self._load_pool(context, pool_id)
        candidate = replace(variant, pool_id=pool_id)
        validate_pool_variant(candidate)
        saved = self._repository.save_pool_variant(context.org_id, candidate)
        logger.info(
            "Pool variant saved | org_id=%s | pool_id=%s | product_variant_id=%s | weight=%.3f | priority=%s",
            context.org_id,
            pool_id,
            saved.product_variant_id,
            saved.capacity_weight,
            saved.priority,
        )
        return saved

    def _allowance_for(self, pool: InventoryPool, variants: list[PoolVariant], stay_date: date | None) -> int:
        if stay_date is None or pool.supplier_id is None:
            return 0
        variant_ids = {variant.product_variant_id for variant in variants}
        buckets: list[AllocationBucket] = []
        for record in self._repository.load_buckets_in_range(
            org_id=pool.org_id,
            supplier_id=pool.supplier_id,
            date_from=stay_date,
            date_to=stay_date,
        ):
            if record.product_variant_id not in variant_ids:
                continue
            try:
                buckets.append(record.to_bucket())
            except BucketIntegrityError as exc:
                logger.warning("Skipping malformed bucket | bucket_id=%s | %s", exc.bucket_id, exc)
        return overbooking_allowance(buckets)

    def _precheck(self, pool: InventoryPool, stay_date: date | None) -> AllocationRejection | None:
        today = self._clock().date()
        status = derive_pool_status(pool, today)
        if status != "active":
            return AllocationRejection("pool_not_active", f"pool status is '{status}'")
        if stay_date is None:
            return None
        if not pool.valid_from <= stay_date <= pool.valid_to:
            return AllocationRejection("outside_validity", "stay date is outside the pool validity")
        if pool.cutoff_days:
            days_ahead = (stay_date - today).days
            if days_ahead < pool.cutoff_days:
                return AllocationRejection(
                    "within_cutoff",
                    f"bookings close {pool.cutoff_days} days before the stay date",
                )
        return None

    def _decide(
        self,
        pool: InventoryPool,
        variants: list[PoolVariant],
        units: int,
        product_variant_id: int | None,
        stay_date: date | None,
    ) -> tuple[AllocationOutcome, PoolVariant | None]:
        capacity = resolve_pool_capacity(pool, self._settings.default_capacity_unit)
        consumption = current_consumption(variants)
        allowance = self._allowance_for(pool, variants, stay_date)
        ceiling = effective_capacity(capacity, allowance)

        def rejected(rejection: AllocationRejection) -> tuple[AllocationOutcome, None]:
            return (
                AllocationOutcome(
                    accepted=False,
                    pool_id=pool.pool_id,
                    requested_units=units,
                    product_variant_id=product_variant_id,
                    consumed_capacity=consumption,
                    remaining_capacity=remaining_capacity(ceiling, consumption),
                    rejection=rejection,
                ),
                None,
            )

        precheck = self._precheck(pool, stay_date)
        if precheck is not None:
            return rejected(precheck)

        if product_variant_id is None:
            choice = choose_variant(capacity, variants, units, consumption, allowance)
            if isinstance(choice, InsufficientCapacity):
                return rejected(choice)
            selected = choice
        else:
            selected = next(
                (item for item in variants if item.product_variant_id == product_variant_id),
                None,
            )
            if selected is None:
                raise EntityNotFoundError(
                    f"Product variant {product_variant_id} is not attached to pool {pool.pool_id}"
                )
            if selected.status != "active":
                return rejected(AllocationRejection("variant_not_active", "pool variant is inactive"))
            if not can_allocate(capacity, selected, units, consumption, allowance):
                return rejected(
                    InsufficientCapacity(
                        code="insufficient_capacity",
                        detail="requested units exceed remaining pool capacity",
                        requested_units=units,
                        required_capacity=resolve_consumption(selected, units),
                        available_capacity=remaining_capacity(ceiling, consumption),
                    )
                )

        consumed_after = add_capacity(consumption, resolve_consumption(selected, units))
        return (
            AllocationOutcome(
                accepted=True,
                pool_id=pool.pool_id,
                requested_units=units,
                pool_variant_id=selected.pool_variant_id,
                product_variant_id=selected.product_variant_id,
                consumed_capacity=consumed_after,
                remaining_capacity=remaining_capacity(ceiling, consumed_after),
            ),
            selected,
        )

    def check_allocation(
        self,
        context: TenantContext,
        pool_id: int,
        units: int,
        product_variant_id: int | None = None,
        stay_date: date | None = None,
    ) -> AllocationOutcome:
        """Dry-run: report whether the allocation would fit without recording it."""
        if units <= 0:
            raise InventoryValidationError("units must be > 0")
        pool = self._load_pool(context, pool_id)
        variants = self._repository.list_pool_variants(context.org_id, pool_id)
        outcome, _ = self._decide(pool, variants, units, product_variant_id, stay_date)
        return outcome

    def allocate(
        self,
        context: TenantContext,
        pool_id: int,
        units: int,
        product_variant_id: int | None = None,
        stay_date: date | None = None,
    ) -> AllocationOutcome:
        """Consume pool capacity for `units`, choosing a variant when none is given.

        Rejections are returned in the outcome; only lost compare-and-set races
        beyond the retry budget raise ConsumptionConflict.
        """
        if units <= 0:
            raise InventoryValidationError("units must be > 0")

        retries = max(1, self._settings.consumption_max_retries)
        with self._pool_lock(pool_id):
            for attempt in range(1, retries + 1):
                pool = self._load_pool(context, pool_id)
                variants = self._repository.list_pool_variants(context.org_id, pool_id)
                outcome, selected = self._decide(pool, variants, units, product_variant_id, stay_date)
                if selected is None:
                    logger.info(
                        "Allocation rejected | org_id=%s | pool_id=%s | units=%s | reason=%s",
                        context.org_id,
                        pool_id,
                        units,
                        outcome.rejection.code if outcome.rejection else "unknown",
                    )
                    return outcome
                try:
                    self._repository.record_pool_consumption(
                        org_id=context.org_id,
                        pool_id=pool_id,
                        pool_variant_id=selected.pool_variant_id,
                        units=units,
                        expected_version=pool.consumption_version,
                    )
                except ConsumptionConflict:
                    logger.warning(
                        "Pool consumption race | pool_id=%s | attempt=%s/%s",
                        pool_id,
                        attempt,
                        retries,
                    )
                    continue
                logger.info(
                    "Allocation accepted | org_id=%s | actor=%s | pool_id=%s | product_variant_id=%s | units=%s | consumed=%.3f",
                    context.org_id,
                    context.actor,
                    pool_id,
                    selected.product_variant_id,
                    units,
                    outcome.consumed_capacity,
                )
                return outcome
        raise ConsumptionConflict(
            f"Pool {pool_id} consumption kept changing; reload and retry"
        )
