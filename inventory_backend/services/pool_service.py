"""Pool lifecycle, release warnings and bulk pool maintenance."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional

from inventory_backend.domain.constraints import (
    derive_pool_status,
    validate_pool,
    validate_pool_variant,
)
from inventory_backend.domain.errors import EntityNotFoundError, InvalidPoolConfiguration
from inventory_backend.domain.models import (
    POOL_STATUSES,
    Bounded,
    BulkItemOutcome,
    InventoryPool,
    PoolVariant,
    ReleaseWarning,
    TenantContext,
)
from inventory_backend.repository.data_repository import DataRepository
from inventory_backend.services.capacity_service import resolve_pool_capacity
from inventory_backend.services.weighting_service import current_consumption
from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)


def cheapest_cost_per_capacity_unit(variants: Iterable[PoolVariant]) -> float:
    costs = [
        variant.cost_per_unit / variant.capacity_weight
        for variant in variants
        if variant.cost_per_unit is not None and variant.capacity_weight > 0
    ]
    return min(costs, default=0.0)


class PoolService:
    """Create, inspect and maintain inventory pools for a tenant."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _today(self) -> date:
        return self._clock().date()

    def create_pool(
        self,
        context: TenantContext,
        pool: InventoryPool,
        variants: Iterable[PoolVariant] = (),
    ) -> tuple[InventoryPool, list[PoolVariant]]:
        capacity = resolve_pool_capacity(pool, self._settings.default_capacity_unit)
        candidate = replace(
            pool,
            pool_id=None,
            org_id=context.org_id,
            capacity_unit=capacity.unit,
            consumption_version=0,
        )
        validate_pool(candidate)
        pending = list(variants)
        for variant in pending:
            validate_pool_variant(variant)

        saved = self._repository.save_pool(candidate)
        saved_variants = [
            self._repository.save_pool_variant(
                context.org_id,
                replace(variant, pool_id=saved.pool_id, booked_units=0),
            )
            for variant in pending
        ]
        logger.info(
            "Pool created | org_id=%s | actor=%s | pool_id=%s | capacity=%s %s | variants=%s",
            context.org_id,
            context.actor,
            saved.pool_id,
            capacity.total if isinstance(capacity, Bounded) else "unlimited",
            capacity.unit,
            len(saved_variants),
        )
        return saved, saved_variants

    def get_pool(self, context: TenantContext, pool_id: int) -> tuple[InventoryPool, list[PoolVariant]]:
        pool = self._repository.load_pool(context.org_id, pool_id)
        if pool is None:
            raise EntityNotFoundError(f"Pool {pool_id} not found")
        return pool, self._repository.list_pool_variants(context.org_id, pool_id)

    def refresh_pool_statuses(self, context: TenantContext) -> list[InventoryPool]:
        """Persist derived status transitions; returns the pools that changed."""
        today = self._today()
        changed: list[InventoryPool] = []
        for pool in self._repository.list_pools(context.org_id):
            status = derive_pool_status(pool, today)
            if status == pool.status:
                continue
            self._repository.update_pool_status(context.org_id, pool.pool_id, status)
            changed.append(replace(pool, status=status))
            logger.info(
                "Pool status refreshed | org_id=%s | pool_id=%s | %s -> %s",
                context.org_id,
                pool.pool_id,
                pool.status,
                status,
            )
        return changed

    def release_warnings(self, context: TenantContext) -> list[ReleaseWarning]:
        """Active bounded pools releasing soon with unsold capacity, soonest first."""
        today = self._today()
        window = self._settings.release_warning_window_days
        warnings: list[ReleaseWarning] = []
        for pool in self._repository.list_pools(context.org_id):
            if pool.status != "active" or pool.release_date is None:
                continue
            days_until = (pool.release_date - today).days
            if not -1 <= days_until <= window:
                continue
            capacity = resolve_pool_capacity(pool, self._settings.default_capacity_unit)
            if not isinstance(capacity, Bounded):
                continue
            variants = self._repository.list_pool_variants(context.org_id, pool.pool_id)
            remaining = capacity.total - current_consumption(variants)
            if remaining <= 0:
                continue
            warnings.append(
                ReleaseWarning(
                    pool_id=pool.pool_id,
                    pool_name=pool.name,
                    release_date=pool.release_date,
                    days_until_release=days_until,
                    remaining_capacity=remaining,
                    potential_loss=round(remaining * cheapest_cost_per_capacity_unit(variants), 2),
                    currency=pool.currency,
                )
            )
        warnings.sort(key=lambda item: (item.days_until_release, item.pool_id))
        return warnings

    def bulk_update_status(
        self,
        context: TenantContext,
        pool_ids: Iterable[int],
        status: str,
    ) -> list[BulkItemOutcome]:
        if status not in POOL_STATUSES:
            raise InvalidPoolConfiguration(f"unknown pool status '{status}'")
        outcomes = self._repository.bulk_update_pool_status(context.org_id, pool_ids, status)
        self._log_bulk("status", context, outcomes)
        return outcomes

    def bulk_delete(self, context: TenantContext, pool_ids: Iterable[int]) -> list[BulkItemOutcome]:
        outcomes = self._repository.bulk_delete_pools(context.org_id, pool_ids)
        self._log_bulk("delete", context, outcomes)
        return outcomes

    def bulk_duplicate(self, context: TenantContext, pool_ids: Iterable[int]) -> list[BulkItemOutcome]:
        outcomes = self._repository.bulk_duplicate_pools(context.org_id, pool_ids)
        self._log_bulk("duplicate", context, outcomes)
        return outcomes

    @staticmethod
    def _log_bulk(action: str, context: TenantContext, outcomes: list[BulkItemOutcome]) -> None:
        logger.info(
            "Bulk pool %s | org_id=%s | actor=%s | items=%s | failed=%s",
            action,
            context.org_id,
            context.actor,
            len(outcomes),
            sum(1 for item in outcomes if item.status == "failed"),
        )
