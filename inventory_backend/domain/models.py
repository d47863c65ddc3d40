"""Domain models for pools, allocation buckets and contract attrition."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta


POOL_TYPES = ("committed", "provisional", "on_request", "freesale")
POOL_STATUSES = ("active", "inactive", "released", "expired")
VARIANT_STATUSES = ("active", "inactive")
ALLOCATION_TYPES = ("committed", "freesale", "on_request")
UNBOUNDED_ALLOCATION_TYPES = ("freesale", "on_request")
BUCKET_MODES = ("daily", "event")
PENALTY_CALCULATIONS = ("pay_for_unused", "sliding_scale", "fixed_fee")
ATTRITION_PERIOD_TYPES = ("monthly", "seasonal", "event")
DAYS_OF_WEEK = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
WEEKEND_DAYS = ("sat", "sun")


@dataclass(frozen=True)
class TenantContext:
    """Organization scope and actor attached to every core operation."""

    org_id: int
    actor: str = "system"


@dataclass(frozen=True)
class Unlimited:
    unit: str

    @property
    def is_bounded(self) -> bool:
        return False


@dataclass(frozen=True)
class Bounded:
    total: int
    unit: str

    @property
    def is_bounded(self) -> bool:
        return True


Capacity = Unlimited | Bounded


@dataclass(frozen=True)
class InventoryPool:
    pool_id: int | None
    org_id: int
    name: str
    pool_type: str
    valid_from: date
    valid_to: date
    total_capacity: int | None = None
    capacity_unit: str = "rooms"
    reference: str | None = None
    supplier_id: int | None = None
    min_commitment: int | None = None
    release_date: date | None = None
    cutoff_days: int | None = None
    currency: str = "EUR"
    status: str = "active"
    notes: str | None = None
    consumption_version: int = 0


@dataclass(frozen=True)
class PoolVariant:
    pool_variant_id: int | None
    pool_id: int | None
    product_variant_id: int
    capacity_weight: float = 1.0
    cost_per_unit: float | None = None
    sell_price_per_unit: float | None = None
    priority: int = 100
    auto_allocate: bool = True
    status: str = "active"
    booked_units: int = 0

    @property
    def consumed_capacity(self) -> float:
        return self.booked_units * self.capacity_weight


@dataclass(frozen=True)
class DailyBucket:
    date: date

    @property
    def first_day(self) -> date:
        return self.date

    @property
    def last_day(self) -> date:
        return self.date

    @property
    def key(self) -> str:
        return f"D:{self.date.isoformat()}"


@dataclass(frozen=True)
class EventBucket:
    start: date
    end: date

    @property
    def first_day(self) -> date:
        return self.start

    @property
    def last_day(self) -> date:
        return self.end

    @property
    def key(self) -> str:
        return f"E:{self.start.isoformat()}/{self.end.isoformat()}"


BucketPeriod = DailyBucket | EventBucket


@dataclass(frozen=True)
class AllocationBucket:
    bucket_id: int | None
    org_id: int
    product_variant_id: int
    supplier_id: int
    period: BucketPeriod
    allocation_type: str
    quantity: int | None = None
    booked: int = 0
    held: int = 0
    time_slot_id: int | None = None
    rate_plan_id: int | None = None
    stop_sell: bool = False
    blackout: bool = False
    allow_overbooking: bool = False
    overbooking_limit: int | None = None
    notes: str | None = None

    @property
    def has_activity(self) -> bool:
        return self.booked > 0 or self.held > 0


@dataclass(frozen=True)
class RatePlan:
    rate_plan_id: int | None
    org_id: int
    product_variant_id: int
    supplier_id: int
    valid_from: date
    valid_to: date
    inventory_model: str
    bucket_mode: str = "daily"
    days_of_week: tuple[str, ...] | None = None
    pool_id: int | None = None
    name: str | None = None

    def iter_days(self):
        current = self.valid_from
        while current <= self.valid_to:
            yield current
            current += timedelta(days=1)


@dataclass(frozen=True)
class ContractVersion:
    version_id: int | None
    org_id: int
    contract_id: int
    valid_from: date
    valid_to: date
    currency: str = "EUR"
    attrition_applies: bool = False
    committed_quantity: int | None = None
    minimum_pickup_percent: float | None = None
    penalty_calculation: str | None = None
    grace_allowance: int = 0
    attrition_period_type: str | None = None
    unit_cost: float | None = None
    fixed_fee: float | None = None
    supplier_id: int | None = None
    product_variant_id: int | None = None


@dataclass(frozen=True)
class AllocationRejection:
    code: str
    detail: str


@dataclass(frozen=True)
class InsufficientCapacity(AllocationRejection):
    """No eligible variant can take the requested units under current weights."""

    requested_units: int = 0
    required_capacity: float = 0.0
    available_capacity: float = 0.0


@dataclass(frozen=True)
class AllocationOutcome:
    accepted: bool
    pool_id: int
    requested_units: int
    pool_variant_id: int | None = None
    product_variant_id: int | None = None
    consumed_capacity: float = 0.0
    remaining_capacity: float | None = None
    rejection: AllocationRejection | None = None


@dataclass(frozen=True)
class BucketUtilization:
    booked_units: int
    held_units: int
    available_units: int | None
    utilization_percentage: float
    is_overbooked: bool
    tier: str


@dataclass(frozen=True)
class VariantConsumption:
    pool_variant_id: int | None
    product_variant_id: int
    booked_units: int
    capacity_weight: float
    consumed_capacity: float


@dataclass(frozen=True)
class PoolUtilization:
    pool_id: int
    capacity_unit: str
    total_capacity: int | None
    consumed_capacity: float
    remaining_capacity: float | None
    utilization_percentage: float
    tier: str
    variants: list[VariantConsumption] = field(default_factory=list)


@dataclass(frozen=True)
class AttritionResult:
    penalty_calculation: str
    actual_pickup: int
    pickup_percent: float
    raw_shortfall: float
    shortfall_units: float
    shortfall_ratio: float
    penalty_amount: float


@dataclass(frozen=True)
class GenerationResult:
    rate_plan_id: int | None
    written_count: int
    skipped_periods: list[str]
    estimated_total_units: int
    buckets: list[AllocationBucket]


@dataclass(frozen=True)
class BulkItemOutcome:
    entity_id: int
    status: str
    detail: str | None = None


@dataclass(frozen=True)
class ReleaseWarning:
    pool_id: int
    pool_name: str
    release_date: date
    days_until_release: int
    remaining_capacity: float
    potential_loss: float
    currency: str
