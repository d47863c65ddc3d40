"""Utilization, remaining capacity and overbooking reporting.

The calculator reports state; it never enforces limits. Enforcement happens
upstream in the weighting engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from inventory_backend.domain.constraints import validate_date_range
from inventory_backend.domain.errors import BucketIntegrityError, EntityNotFoundError
from inventory_backend.domain.models import (
    AllocationBucket,
    Bounded,
    BucketUtilization,
    InventoryPool,
    PoolUtilization,
    PoolVariant,
    TenantContext,
    VariantConsumption,
)
from inventory_backend.repository.data_repository import BucketRecord, DataRepository
from inventory_backend.services.capacity_service import resolve_pool_capacity
from inventory_backend.services.weighting_service import current_consumption
from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class BucketUtilizationRow:
    bucket: AllocationBucket
    utilization: BucketUtilization


@dataclass(frozen=True)
class RangeUtilizationReport:
    rows: list[BucketUtilizationRow] = field(default_factory=list)
    skipped_bucket_ids: list[int] = field(default_factory=list)
    total_booked: int = 0
    total_held: int = 0
    total_quantity: int = 0
    utilization_percentage: float = 0.0


def utilization_tier(
    percentage: float,
    warning_threshold: float = 75.0,
    critical_threshold: float = 90.0,
) -> str:
    if percentage >= critical_threshold:
        return "critical"
    if percentage >= warning_threshold:
        return "warning"
    return "normal"


def safe_percentage(numerator: float, denominator: float | None) -> float:
    if not denominator:
        return 0.0
    return float(numerator) / float(denominator) * 100.0


def bucket_utilization(
    bucket: AllocationBucket,
    warning_threshold: float = 75.0,
    critical_threshold: float = 90.0,
) -> BucketUtilization:
    """Compute the utilization snapshot for one bucket.

    Buckets without a quantity (freesale/on request) report no availability
    figure and zero pressure.
    """
    percentage = safe_percentage(bucket.booked, bucket.quantity)
    if bucket.quantity is None:
        available = None
        overbooked = False
    else:
        floor = -(bucket.overbooking_limit or 0) if bucket.allow_overbooking else 0
        available = max(bucket.quantity - bucket.booked - bucket.held, floor)
        overbooked = bucket.booked + bucket.held > bucket.quantity
    if bucket.blackout:
        available = 0
    return BucketUtilization(
        booked_units=bucket.booked,
        held_units=bucket.held,
        available_units=available,
        utilization_percentage=percentage,
        is_overbooked=overbooked,
        tier=utilization_tier(percentage, warning_threshold, critical_threshold),
    )


def pool_utilization(
    pool: InventoryPool,
    variants: list[PoolVariant],
    warning_threshold: float = 75.0,
    critical_threshold: float = 90.0,
    default_unit: str = "rooms",
) -> PoolUtilization:
    capacity = resolve_pool_capacity(pool, default_unit)
    consumed = current_consumption(variants)
    if isinstance(capacity, Bounded):
        total = capacity.total
        remaining = float(total) - consumed
        percentage = safe_percentage(consumed, total)
    else:
        total = None
        remaining = None
        percentage = 0.0
    return PoolUtilization(
        pool_id=pool.pool_id,
        capacity_unit=capacity.unit,
        total_capacity=total,
        consumed_capacity=consumed,
        remaining_capacity=remaining,
        utilization_percentage=percentage,
        tier=utilization_tier(percentage, warning_threshold, critical_threshold),
        variants=[
            VariantConsumption(
                pool_variant_id=variant.pool_variant_id,
                product_variant_id=variant.product_variant_id,
                booked_units=variant.booked_units,
                capacity_weight=variant.capacity_weight,
                consumed_capacity=variant.consumed_capacity,
            )
            for variant in variants
        ],
    )


def summarize_records(
    records: list[BucketRecord],
    warning_threshold: float = 75.0,
    critical_threshold: float = 90.0,
) -> RangeUtilizationReport:
    """Aggregate bucket utilization, flagging malformed records instead of failing."""
    rows: list[BucketUtilizationRow] = []
    skipped: list[int] = []
    for record in records:
        try:
            bucket = record.to_bucket()
        except BucketIntegrityError as exc:
            logger.warning("Excluding malformed bucket from report | bucket_id=%s | %s", exc.bucket_id, exc)
            skipped.append(record.bucket_id)
            continue
        rows.append(
            BucketUtilizationRow(
                bucket=bucket,
                utilization=bucket_utilization(bucket, warning_threshold, critical_threshold),
            )
        )

    bounded = [row.bucket for row in rows if row.bucket.quantity is not None]
    total_quantity = sum(bucket.quantity for bucket in bounded)
    bounded_booked = sum(bucket.booked for bucket in bounded)
    return RangeUtilizationReport(
        rows=rows,
        skipped_bucket_ids=skipped,
        total_booked=sum(row.bucket.booked for row in rows),
        total_held=sum(row.bucket.held for row in rows),
        total_quantity=total_quantity,
        utilization_percentage=safe_percentage(bounded_booked, total_quantity),
    )


class UtilizationService:
    """Read-side reporting over pools and buckets for the presentation layer."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    @property
    def _thresholds(self) -> tuple[float, float]:
        return (
            self._settings.utilization_warning_threshold,
            self._settings.utilization_critical_threshold,
        )

    def for_pool(self, context: TenantContext, pool_id: int) -> PoolUtilization:
        pool = self._repository.load_pool(context.org_id, pool_id)
        if pool is None:
            raise EntityNotFoundError(f"Pool {pool_id} not found")
        variants = self._repository.list_pool_variants(context.org_id, pool_id)
        return pool_utilization(
            pool,
            variants,
            *self._thresholds,
            default_unit=self._settings.default_capacity_unit,
        )

    def for_bucket(self, context: TenantContext, bucket_id: int) -> BucketUtilizationRow:
        record = self._repository.load_bucket(context.org_id, bucket_id)
        if record is None:
            raise EntityNotFoundError(f"Bucket {bucket_id} not found")
        bucket = record.to_bucket()
        return BucketUtilizationRow(bucket=bucket, utilization=bucket_utilization(bucket, *self._thresholds))

    def for_range(
        self,
        context: TenantContext,
        *,
        supplier_id: int,
        date_from: date,
        date_to: date,
        product_variant_id: int | None = None,
    ) -> RangeUtilizationReport:
        validate_date_range(date_from, date_to)
        records = self._repository.load_buckets_in_range(
            org_id=context.org_id,
            supplier_id=supplier_id,
            product_variant_id=product_variant_id,
            date_from=date_from,
            date_to=date_to,
        )
        return summarize_records(records, *self._thresholds)

    def list_buckets(
        self,
        context: TenantContext,
        *,
        product_variant_id: int | None = None,
        supplier_id: int | None = None,
    ) -> RangeUtilizationReport:
        records = self._repository.list_buckets(
            org_id=context.org_id,
            product_variant_id=product_variant_id,
            supplier_id=supplier_id,
        )
        return summarize_records(records, *self._thresholds)
