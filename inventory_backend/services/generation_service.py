"""Expansion of rate plan validity into allocation buckets.

Generation never overwrites a bucket that already carries bookings or holds,
so repeated or concurrent runs over the same range converge to the same state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from inventory_backend.domain.constraints import (
    validate_bucket,
    validate_date_range,
    validate_generation_parameters,
    validate_rate_plan,
)
from inventory_backend.domain.errors import (
    BucketIntegrityError,
    EntityNotFoundError,
    InvalidPoolConfiguration,
)
from inventory_backend.domain.models import (
    DAYS_OF_WEEK,
    UNBOUNDED_ALLOCATION_TYPES,
    WEEKEND_DAYS,
    AllocationBucket,
    DailyBucket,
    EventBucket,
    GenerationResult,
    RatePlan,
    TenantContext,
)
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)

EDITABLE_BUCKET_FIELDS = frozenset(
    {"quantity", "stop_sell", "blackout", "allow_overbooking", "overbooking_limit", "notes"}
)


@dataclass(frozen=True)
class GenerationPreview:
    rate_plan_id: int | None
    valid_from: date
    valid_to: date
    days: int
    estimated_total_units: int


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def day_name(day: date) -> str:
    return DAYS_OF_WEEK[day.weekday()]


def daily_quantity(default_daily_quantity: int, weekend_multiplier: float, day: date) -> int:
    if day_name(day) not in WEEKEND_DAYS:
        return default_daily_quantity
    scaled = Decimal(str(default_daily_quantity)) * Decimal(str(weekend_multiplier))
    return round_half_up(scaled)


def count_days(valid_from: date, valid_to: date) -> int:
    validate_date_range(valid_from, valid_to)
    return (valid_to - valid_from).days + 1


def estimate_total_units(valid_from: date, valid_to: date, default_daily_quantity: int) -> int:
    """Coarse preview: the weekend multiplier is deliberately not applied."""
    return default_daily_quantity * count_days(valid_from, valid_to)


def build_buckets(
    plan: RatePlan,
    default_daily_quantity: int,
    weekend_multiplier: float,
) -> list[AllocationBucket]:
    """Return the buckets a plan would produce, without touching storage."""
    validate_rate_plan(plan)
    validate_generation_parameters(default_daily_quantity, weekend_multiplier)
    unbounded = plan.inventory_model in UNBOUNDED_ALLOCATION_TYPES

    def make(period, quantity: int) -> AllocationBucket:
        return AllocationBucket(
            bucket_id=None,
            org_id=plan.org_id,
            product_variant_id=plan.product_variant_id,
            supplier_id=plan.supplier_id,
            period=period,
            allocation_type=plan.inventory_model,
            quantity=None if unbounded else quantity,
            rate_plan_id=plan.rate_plan_id,
        )

    if plan.bucket_mode == "event":
        return [make(EventBucket(start=plan.valid_from, end=plan.valid_to), default_daily_quantity)]

    selected_days = set(plan.days_of_week) if plan.days_of_week else set(DAYS_OF_WEEK)
    return [
        make(DailyBucket(date=day), daily_quantity(default_daily_quantity, weekend_multiplier, day))
        for day in plan.iter_days()
        if day_name(day) in selected_days
    ]


class AllocationGenerationService:
    """Creates rate plans and materializes their buckets through the repository."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def create_rate_plan(self, context: TenantContext, plan: RatePlan) -> RatePlan:
        scoped = replace(plan, org_id=context.org_id, rate_plan_id=None)
        validate_rate_plan(scoped)
        if scoped.pool_id is not None and self._repository.load_pool(context.org_id, scoped.pool_id) is None:
            raise EntityNotFoundError(f"Pool {scoped.pool_id} not found")
        saved = self._repository.save_rate_plan(scoped)
        logger.info(
            "Rate plan created | org_id=%s | rate_plan_id=%s | %s..%s | model=%s",
            context.org_id,
            saved.rate_plan_id,
            saved.valid_from,
            saved.valid_to,
            saved.inventory_model,
        )
        return saved

    def _load_plan(self, context: TenantContext, rate_plan_id: int) -> RatePlan:
        plan = self._repository.load_rate_plan(context.org_id, rate_plan_id)
        if plan is None:
            raise EntityNotFoundError(f"Rate plan {rate_plan_id} not found")
        return plan

    def preview(
        self,
        context: TenantContext,
        rate_plan_id: int,
        default_daily_quantity: int,
    ) -> GenerationPreview:
        plan = self._load_plan(context, rate_plan_id)
        return GenerationPreview(
            rate_plan_id=plan.rate_plan_id,
            valid_from=plan.valid_from,
            valid_to=plan.valid_to,
            days=count_days(plan.valid_from, plan.valid_to),
            estimated_total_units=estimate_total_units(
                plan.valid_from, plan.valid_to, default_daily_quantity
            ),
        )

    def generate(
        self,
        context: TenantContext,
        rate_plan_id: int,
        default_daily_quantity: int,
        weekend_multiplier: float = 1.0,
    ) -> GenerationResult:
        plan = self._load_plan(context, rate_plan_id)
        return self.generate_for_plan(plan, default_daily_quantity, weekend_multiplier)

    def generate_for_plan(
        self,
        plan: RatePlan,
        default_daily_quantity: int,
        weekend_multiplier: float = 1.0,
    ) -> GenerationResult:
        """Write the plan's buckets, skipping periods that already carry activity.

        Validation happens before any write; an invalid range writes nothing.
        """
        candidates = build_buckets(plan, default_daily_quantity, weekend_multiplier)
        existing_records = self._repository.load_buckets_in_range(
            org_id=plan.org_id,
            supplier_id=plan.supplier_id,
            product_variant_id=plan.product_variant_id,
            date_from=plan.valid_from,
            date_to=plan.valid_to,
        )
        existing: dict[tuple[str, int], AllocationBucket] = {}
        for record in existing_records:
            try:
                bucket = record.to_bucket()
            except BucketIntegrityError as exc:
                logger.warning("Ignoring malformed bucket during generation | bucket_id=%s | %s", exc.bucket_id, exc)
                continue
            existing[(bucket.period.key, bucket.time_slot_id or 0)] = bucket

        written = 0
        skipped: list[str] = []
        for candidate in candidates:
            current = existing.get((candidate.period.key, candidate.time_slot_id or 0))
            if current is not None and current.has_activity:
                skipped.append(candidate.period.key)
                continue
            if self._repository.upsert_bucket(candidate):
                written += 1
            else:
                skipped.append(candidate.period.key)

        logger.info(
            "Buckets generated | org_id=%s | rate_plan_id=%s | written=%s | skipped=%s",
            plan.org_id,
            plan.rate_plan_id,
            written,
            len(skipped),
        )
        buckets: list[AllocationBucket] = []
        for record in self._repository.load_buckets_in_range(
            org_id=plan.org_id,
            supplier_id=plan.supplier_id,
            product_variant_id=plan.product_variant_id,
            date_from=plan.valid_from,
            date_to=plan.valid_to,
        ):
            try:
                buckets.append(record.to_bucket())
            except BucketIntegrityError:
                continue
        return GenerationResult(
            rate_plan_id=plan.rate_plan_id,
            written_count=written,
            skipped_periods=skipped,
            estimated_total_units=estimate_total_units(
                plan.valid_from, plan.valid_to, default_daily_quantity
            ),
            buckets=buckets,
        )

    def update_bucket(self, context: TenantContext, bucket_id: int, **changes) -> AllocationBucket:
        """Apply manual edits (flags, quantity, overbooking limit, notes) to one bucket."""
        unknown = set(changes) - EDITABLE_BUCKET_FIELDS
        if unknown:
            raise InvalidPoolConfiguration(f"fields are not editable: {', '.join(sorted(unknown))}")
        record = self._repository.load_bucket(context.org_id, bucket_id)
        if record is None:
            raise EntityNotFoundError(f"Bucket {bucket_id} not found")
        bucket = replace(record.to_bucket(), **changes)
        validate_bucket(bucket)
        self._repository.update_bucket(bucket)
        logger.info(
            "Bucket updated | org_id=%s | actor=%s | bucket_id=%s | fields=%s",
            context.org_id,
            context.actor,
            bucket_id,
            ",".join(sorted(changes)),
        )
        return bucket
