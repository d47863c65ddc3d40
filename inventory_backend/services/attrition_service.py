"""Attrition evaluation and temporal status for contract versions."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from inventory_backend.domain.constraints import validate_contract_version, validate_penalty_terms
from inventory_backend.domain.errors import (
    AttritionConfigIncomplete,
    AttritionNotApplicable,
    BucketIntegrityError,
    EntityNotFoundError,
    InventoryValidationError,
    OverlappingContractVersion,
)
from inventory_backend.domain.models import (
    AttritionResult,
    BulkItemOutcome,
    ContractVersion,
    TenantContext,
)
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)

SlidingScaleCurve = Callable[[float], float]

FUTURE = "future"
CURRENT = "current"
EXPIRED = "expired"


def power_curve(exponent: float = 1.0) -> SlidingScaleCurve:
    """Multiplier `ratio ** exponent`; exponent 1.0 scales linearly with the shortfall ratio."""

    def curve(ratio: float) -> float:
        return ratio**exponent

    return curve


def version_status(version: ContractVersion, today: date) -> str:
    if today < version.valid_from:
        return FUTURE
    if today < version.valid_to:
        return CURRENT
    return EXPIRED


def versions_overlap(first: ContractVersion, second: ContractVersion) -> bool:
    return first.valid_from < second.valid_to and second.valid_from < first.valid_to


def evaluate_attrition(
    version: ContractVersion,
    actual_pickup: int,
    *,
    cost_per_unit: float | None = None,
    fixed_fee: float | None = None,
    curve: SlidingScaleCurve | None = None,
) -> AttritionResult:
    """Compute pickup, shortfall after grace, and the strategy's penalty.

    `cost_per_unit` and `fixed_fee` override the version's own `unit_cost`
    and `fixed_fee` when given.
    """
    if not version.attrition_applies:
        raise AttritionNotApplicable(f"attrition does not apply to version {version.version_id}")
    validate_contract_version(version)
    if actual_pickup < 0:
        raise InventoryValidationError("actual_pickup must be >= 0")

    committed = version.committed_quantity
    pickup_percent = actual_pickup / committed * 100.0
    required = committed * version.minimum_pickup_percent / 100.0
    raw_shortfall = max(0.0, required - actual_pickup)
    shortfall_units = max(0.0, raw_shortfall - version.grace_allowance)
    shortfall_ratio = shortfall_units / committed

    strategy = version.penalty_calculation
    if strategy == "fixed_fee":
        fee = fixed_fee if fixed_fee is not None else version.fixed_fee
        if fee is None:
            raise AttritionConfigIncomplete("fixed_fee penalty requires a configured fee")
        penalty = float(fee) if shortfall_units > 0 else 0.0
    else:
        unit_cost = cost_per_unit if cost_per_unit is not None else version.unit_cost
        if unit_cost is None:
            raise AttritionConfigIncomplete(f"{strategy} penalty requires a cost per unit")
        penalty = shortfall_units * unit_cost
        if strategy == "sliding_scale":
            penalty *= (curve or power_curve())(shortfall_ratio)

    return AttritionResult(
        penalty_calculation=strategy,
        actual_pickup=actual_pickup,
        pickup_percent=pickup_percent,
        raw_shortfall=raw_shortfall,
        shortfall_units=shortfall_units,
        shortfall_ratio=shortfall_ratio,
        penalty_amount=round(penalty, 2),
    )


class AttritionService:
    """Persists contract versions and evaluates their attrition terms."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._curve = power_curve(self._settings.attrition_sliding_scale_exponent)

    def _load_version(self, context: TenantContext, version_id: int) -> ContractVersion:
        version = self._repository.load_contract_version(context.org_id, version_id)
        if version is None:
            raise EntityNotFoundError(f"Contract version {version_id} not found")
        return version

    def resolve_unit_cost(self, context: TenantContext, version: ContractVersion) -> float | None:
        """The version's own unit cost, else the cost of the pool variant it covers."""
        if version.unit_cost is not None:
            return version.unit_cost
        if version.product_variant_id is None:
            return None
        return self._repository.find_variant_unit_cost(
            org_id=context.org_id,
            product_variant_id=version.product_variant_id,
            supplier_id=version.supplier_id,
            date_from=version.valid_from,
            date_to=version.valid_to,
        )

    def save_version(self, context: TenantContext, version: ContractVersion) -> ContractVersion:
        scoped = replace(version, org_id=context.org_id)
        validate_contract_version(scoped)
        validate_penalty_terms(scoped, self.resolve_unit_cost(context, scoped))
        siblings = self._repository.list_contract_versions(context.org_id, scoped.contract_id)
        for sibling in siblings:
            if sibling.version_id == scoped.version_id:
                continue
            if versions_overlap(scoped, sibling):
                raise OverlappingContractVersion(
                    f"version overlaps version {sibling.version_id} "
                    f"({sibling.valid_from.isoformat()}..{sibling.valid_to.isoformat()})"
                )
        saved = self._repository.save_contract_version(scoped)
        logger.info(
            "Contract version saved | org_id=%s | contract_id=%s | version_id=%s | attrition=%s",
            context.org_id,
            saved.contract_id,
            saved.version_id,
            saved.attrition_applies,
        )
        return saved

    def status(self, context: TenantContext, version_id: int) -> str:
        version = self._load_version(context, version_id)
        return version_status(version, self._clock().date())

    def derive_pickup(self, context: TenantContext, version: ContractVersion) -> int:
        """Sum booked units of the version's buckets starting inside its validity."""
        if version.supplier_id is None:
            raise AttritionConfigIncomplete(
                "actual_pickup is required when the version has no supplier scope"
            )
        records = self._repository.load_buckets_in_range(
            org_id=context.org_id,
            supplier_id=version.supplier_id,
            product_variant_id=version.product_variant_id,
            date_from=version.valid_from,
            date_to=version.valid_to - timedelta(days=1),
        )
        total = 0
        for record in records:
            try:
                bucket = record.to_bucket()
            except BucketIntegrityError as exc:
                logger.warning("Excluding malformed bucket from pickup | bucket_id=%s | %s", exc.bucket_id, exc)
                continue
            if version.valid_from <= bucket.period.first_day < version.valid_to:
                total += bucket.booked
        return total

    def evaluate(
        self,
        context: TenantContext,
        version_id: int,
        actual_pickup: int | None = None,
        cost_per_unit: float | None = None,
        fixed_fee: float | None = None,
    ) -> AttritionResult:
        version = self._load_version(context, version_id)
        if not version.attrition_applies:
            raise AttritionNotApplicable(f"attrition does not apply to version {version_id}")
        pickup = actual_pickup if actual_pickup is not None else self.derive_pickup(context, version)
        if cost_per_unit is None:
            cost_per_unit = self.resolve_unit_cost(context, version)
        result = evaluate_attrition(
            version,
            pickup,
            cost_per_unit=cost_per_unit,
            fixed_fee=fixed_fee,
            curve=self._curve,
        )
        logger.info(
            "Attrition evaluated | org_id=%s | version_id=%s | pickup=%s | shortfall=%.2f | penalty=%.2f",
            context.org_id,
            version_id,
            pickup,
            result.shortfall_units,
            result.penalty_amount,
        )
        return result

    def bulk_delete(self, context: TenantContext, version_ids: Iterable[int]) -> list[BulkItemOutcome]:
        outcomes = self._repository.bulk_delete_contract_versions(context.org_id, version_ids)
        logger.info(
            "Bulk contract version delete | org_id=%s | items=%s | failed=%s",
            context.org_id,
            len(outcomes),
            sum(1 for item in outcomes if item.status == "failed"),
        )
        return outcomes
