"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from inventory_backend.domain.errors import (
    BucketIntegrityError,
    ConsumptionConflict,
    EntityNotFoundError,
    InventoryError,
)
from inventory_backend.domain.models import (
    AllocationBucket,
    BulkItemOutcome,
    ContractVersion,
    DailyBucket,
    EventBucket,
    InventoryPool,
    PoolVariant,
    RatePlan,
)
from inventory_backend.utils.config import Settings, get_settings
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)


def _to_date(value: str | None) -> date | None:
    if value is None:
        return None
    return date.fromisoformat(str(value))


def _to_iso(value: date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _optional_float(value) -> float | None:
    if value is None:
        return None
    return float(value)


def _optional_int(value) -> int | None:
    if value is None:
        return None
    return int(value)


@dataclass(frozen=True)
class BucketRecord:
    """Raw bucket row; temporal keys are checked only when converted."""

    bucket_id: int
    org_id: int
    product_variant_id: int
    supplier_id: int
    bucket_date: date | None
    event_start_date: date | None
    event_end_date: date | None
    time_slot_id: int | None
    rate_plan_id: int | None
    allocation_type: str
    quantity: int | None
    booked: int
    held: int
    stop_sell: bool
    blackout: bool
    allow_overbooking: bool
    overbooking_limit: int | None
    notes: str | None

    def to_bucket(self) -> AllocationBucket:
        has_daily = self.bucket_date is not None
        has_event = self.event_start_date is not None or self.event_end_date is not None
        if has_daily and has_event:
            raise BucketIntegrityError(
                self.bucket_id,
                f"bucket {self.bucket_id} carries both a date and an event period",
            )
        if not has_daily and not has_event:
            raise BucketIntegrityError(
                self.bucket_id,
                f"bucket {self.bucket_id} carries neither a date nor an event period",
            )
        if has_daily:
            period = DailyBucket(date=self.bucket_date)
        else:
            if self.event_start_date is None or self.event_end_date is None:
                raise BucketIntegrityError(
                    self.bucket_id,
                    f"bucket {self.bucket_id} has an incomplete event period",
                )
            period = EventBucket(start=self.event_start_date, end=self.event_end_date)
        return AllocationBucket(
            bucket_id=self.bucket_id,
            org_id=self.org_id,
            product_variant_id=self.product_variant_id,
            supplier_id=self.supplier_id,
            period=period,
            allocation_type=self.allocation_type,
            quantity=self.quantity,
            booked=self.booked,
            held=self.held,
            time_slot_id=self.time_slot_id,
            rate_plan_id=self.rate_plan_id,
            stop_sell=self.stop_sell,
            blackout=self.blackout,
            allow_overbooking=self.allow_overbooking,
            overbooking_limit=self.overbooking_limit,
            notes=self.notes,
        )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Every query is scoped by `org_id`; no row is reachable across tenants.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS InventoryPools (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        org_id INTEGER NOT NULL,
                        name TEXT NOT NULL,
                        reference TEXT,
                        supplier_id INTEGER,
                        pool_type TEXT NOT NULL,
                        valid_from TEXT NOT NULL,
                        valid_to TEXT NOT NULL,
                        total_capacity INTEGER CHECK (total_capacity IS NULL OR total_capacity >= 0),
                        capacity_unit TEXT NOT NULL DEFAULT 'rooms',
                        min_commitment INTEGER,
                        release_date TEXT,
                        cutoff_days INTEGER,
                        currency TEXT NOT NULL DEFAULT 'EUR',
                        status TEXT NOT NULL DEFAULT 'active',
                        notes TEXT,
                        consumption_version INTEGER NOT NULL DEFAULT 0,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PoolVariants (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        org_id INTEGER NOT NULL,
                        pool_id INTEGER NOT NULL,
                        product_variant_id INTEGER NOT NULL,
                        capacity_weight REAL NOT NULL DEFAULT 1.0 CHECK (capacity_weight > 0),
                        cost_per_unit REAL,
                        sell_price_per_unit REAL,
                        priority INTEGER NOT NULL DEFAULT 100,
                        auto_allocate INTEGER NOT NULL DEFAULT 1,
                        status TEXT NOT NULL DEFAULT 'active',
                        booked_units INTEGER NOT NULL DEFAULT 0 CHECK (booked_units >= 0),
                        FOREIGN KEY (pool_id) REFERENCES InventoryPools(id) ON DELETE CASCADE,
                        UNIQUE (pool_id, product_variant_id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RatePlans (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        org_id INTEGER NOT NULL,
                        name TEXT,
                        product_variant_id INTEGER NOT NULL,
                        supplier_id INTEGER NOT NULL,
                        pool_id INTEGER,
                        valid_from TEXT NOT NULL,
                        valid_to TEXT NOT NULL,
                        inventory_model TEXT NOT NULL,
                        bucket_mode TEXT NOT NULL DEFAULT 'daily',
                        days_of_week TEXT
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AllocationBuckets (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        org_id INTEGER NOT NULL,
                        product_variant_id INTEGER NOT NULL,
                        supplier_id INTEGER NOT NULL,
                        period_key TEXT NOT NULL,
                        slot_key INTEGER NOT NULL DEFAULT 0,
                        bucket_date TEXT,
                        event_start_date TEXT,
                        event_end_date TEXT,
                        time_slot_id INTEGER,
                        rate_plan_id INTEGER,
                        allocation_type TEXT NOT NULL,
                        quantity INTEGER,
                        booked INTEGER NOT NULL DEFAULT 0 CHECK (booked >= 0),
                        held INTEGER NOT NULL DEFAULT 0 CHECK (held >= 0),
                        stop_sell INTEGER NOT NULL DEFAULT 0,
                        blackout INTEGER NOT NULL DEFAULT 0,
                        allow_overbooking INTEGER NOT NULL DEFAULT 0,
                        overbooking_limit INTEGER,
                        notes TEXT,
                        UNIQUE (org_id, product_variant_id, supplier_id, period_key, slot_key)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ContractVersions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        org_id INTEGER NOT NULL,
                        contract_id INTEGER NOT NULL,
                        supplier_id INTEGER,
                        product_variant_id INTEGER,
                        valid_from TEXT NOT NULL,
                        valid_to TEXT NOT NULL,
                        currency TEXT NOT NULL DEFAULT 'EUR',
                        attrition_applies INTEGER NOT NULL DEFAULT 0,
                        committed_quantity INTEGER,
                        minimum_pickup_percent REAL,
                        penalty_calculation TEXT,
                        grace_allowance INTEGER NOT NULL DEFAULT 0,
                        attrition_period_type TEXT,
                        unit_cost REAL,
                        fixed_fee REAL
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_buckets_variant_supplier
                    ON AllocationBuckets(org_id, supplier_id, product_variant_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_versions_contract
                    ON ContractVersions(org_id, contract_id, valid_from);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data_if_empty(self, org_id: int) -> int:
        """Seed one demo pool with two variants and a rate plan; return pools created."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COUNT(*) AS count FROM InventoryPools WHERE org_id = ?;",
                (org_id,),
            )
            if int(cursor.fetchone()["count"]) > 0:
                logger.info("Demo data already present; skipping seed | org_id=%s", org_id)
                return 0

        today = datetime.now(timezone.utc).date()
        pool = self.save_pool(
            InventoryPool(
                pool_id=None,
                org_id=org_id,
                name="Demo City Hotel Block",
                reference="DEMO-001",
                supplier_id=1,
                pool_type="committed",
                valid_from=today,
                valid_to=today + timedelta(days=90),
                total_capacity=100,
                capacity_unit=self._settings.default_capacity_unit,
                release_date=today + timedelta(days=60),
                cutoff_days=3,
                currency=self._settings.default_currency,
            )
        )
        self.save_pool_variant(
            org_id,
            PoolVariant(
                pool_variant_id=None,
                pool_id=pool.pool_id,
                product_variant_id=101,
                capacity_weight=1.0,
                cost_per_unit=80.0,
                sell_price_per_unit=120.0,
                priority=10,
            ),
        )
        self.save_pool_variant(
            org_id,
            PoolVariant(
                pool_variant_id=None,
                pool_id=pool.pool_id,
                product_variant_id=102,
                capacity_weight=1.5,
                cost_per_unit=130.0,
                sell_price_per_unit=190.0,
                priority=20,
            ),
        )
        self.save_rate_plan(
            RatePlan(
                rate_plan_id=None,
                org_id=org_id,
                name="Demo Standard Room BAR",
                product_variant_id=101,
                supplier_id=1,
                pool_id=pool.pool_id,
                valid_from=today,
                valid_to=today + timedelta(days=30),
                inventory_model="committed",
            )
        )
        logger.info("Demo data seeded | org_id=%s | pool_id=%s", org_id, pool.pool_id)
        return 1

    # --- Pools -----------------------------------------------------------

    @staticmethod
    def _pool_from_row(row: sqlite3.Row) -> InventoryPool:
        return InventoryPool(
            pool_id=int(row["id"]),
            org_id=int(row["org_id"]),
            name=str(row["name"]),
            reference=row["reference"],
            supplier_id=_optional_int(row["supplier_id"]),
            pool_type=str(row["pool_type"]),
            valid_from=_to_date(row["valid_from"]),
            valid_to=_to_date(row["valid_to"]),
            total_capacity=_optional_int(row["total_capacity"]),
            capacity_unit=str(row["capacity_unit"]),
            min_commitment=_optional_int(row["min_commitment"]),
            release_date=_to_date(row["release_date"]),
            cutoff_days=_optional_int(row["cutoff_days"]),
            currency=str(row["currency"]),
            status=str(row["status"]),
            notes=row["notes"],
            consumption_version=int(row["consumption_version"]),
        )

    def save_pool(self, pool: InventoryPool) -> InventoryPool:
        """Insert or update a pool; the consumption version is never written here."""
        values = (
            pool.name,
            pool.reference,
            pool.supplier_id,
            pool.pool_type,
            _to_iso(pool.valid_from),
            _to_iso(pool.valid_to),
            pool.total_capacity,
            pool.capacity_unit,
            pool.min_commitment,
            _to_iso(pool.release_date),
            pool.cutoff_days,
            pool.currency,
            pool.status,
            pool.notes,
        )
        with self._connect() as conn:
            cursor = conn.cursor()
            if pool.pool_id is None:
                cursor.execute(
                    """
                    INSERT INTO InventoryPools (
                        name, reference, supplier_id, pool_type, valid_from, valid_to,
                        total_capacity, capacity_unit, min_commitment, release_date,
                        cutoff_days, currency, status, notes, org_id
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    values + (pool.org_id,),
                )
                pool_id = int(cursor.lastrowid)
            else:
                cursor.execute(
                    """
                    UPDATE InventoryPools
                    SET name = ?, reference = ?, supplier_id = ?, pool_type = ?,
                        valid_from = ?, valid_to = ?, total_capacity = ?,
                        capacity_unit = ?, min_commitment = ?, release_date = ?,
                        cutoff_days = ?, currency = ?, status = ?, notes = ?
                    WHERE id = ? AND org_id = ?;
                    """,
                    values + (pool.pool_id, pool.org_id),
                )
                if cursor.rowcount == 0:
                    raise EntityNotFoundError(f"Pool {pool.pool_id} not found")
                pool_id = pool.pool_id
            conn.commit()
        saved = self.load_pool(pool.org_id, pool_id)
        if saved is None:
            raise EntityNotFoundError(f"Pool {pool_id} not found after save")
        return saved

    def load_pool(self, org_id: int, pool_id: int) -> Optional[InventoryPool]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM InventoryPools WHERE id = ? AND org_id = ?;",
                (pool_id, org_id),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._pool_from_row(row)

    def list_pools(self, org_id: int) -> list[InventoryPool]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM InventoryPools WHERE org_id = ? ORDER BY id ASC;",
                (org_id,),
            )
            return [self._pool_from_row(row) for row in cursor.fetchall()]

    def update_pool_status(self, org_id: int, pool_id: int, status: str) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE InventoryPools SET status = ? WHERE id = ? AND org_id = ?;",
                (status, pool_id, org_id),
            )
            conn.commit()

    # --- Pool variants ---------------------------------------------------

    @staticmethod
    def _variant_from_row(row: sqlite3.Row) -> PoolVariant:
        return PoolVariant(
            pool_variant_id=int(row["id"]),
            pool_id=int(row["pool_id"]),
            product_variant_id=int(row["product_variant_id"]),
            capacity_weight=float(row["capacity_weight"]),
            cost_per_unit=_optional_float(row["cost_per_unit"]),
            sell_price_per_unit=_optional_float(row["sell_price_per_unit"]),
            priority=int(row["priority"]),
            auto_allocate=bool(row["auto_allocate"]),
            status=str(row["status"]),
            booked_units=int(row["booked_units"]),
        )

    def save_pool_variant(self, org_id: int, variant: PoolVariant) -> PoolVariant:
        """Insert, or update weight/priority/prices; booked units are left untouched."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO PoolVariants (
                    org_id, pool_id, product_variant_id, capacity_weight,
                    cost_per_unit, sell_price_per_unit, priority, auto_allocate, status
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (pool_id, product_variant_id) DO UPDATE SET
                    capacity_weight = excluded.capacity_weight,
                    cost_per_unit = excluded.cost_per_unit,
                    sell_price_per_unit = excluded.sell_price_per_unit,
                    priority = excluded.priority,
                    auto_allocate = excluded.auto_allocate,
                    status = excluded.status;
                """,
                (
                    org_id,
                    variant.pool_id,
                    variant.product_variant_id,
                    variant.capacity_weight,
                    variant.cost_per_unit,
                    variant.sell_price_per_unit,
                    variant.priority,
                    int(variant.auto_allocate),
                    variant.status,
                ),
            )
            conn.commit()
            cursor.execute(
                """
                SELECT * FROM PoolVariants
                WHERE org_id = ? AND pool_id = ? AND product_variant_id = ?;
                """,
                (org_id, variant.pool_id, variant.product_variant_id),
            )
            return self._variant_from_row(cursor.fetchone())

    def list_pool_variants(self, org_id: int, pool_id: int) -> list[PoolVariant]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT * FROM PoolVariants
                WHERE org_id = ? AND pool_id = ?
                ORDER BY priority ASC, id ASC;
                """,
                (org_id, pool_id),
            )
            return [self._variant_from_row(row) for row in cursor.fetchall()]

    def find_variant_unit_cost(
        self,
        org_id: int,
        product_variant_id: int,
        supplier_id: Optional[int],
        date_from: date,
        date_to: date,
    ) -> Optional[float]:
        """Cost per unit of the earliest pool variant covering `[date_from, date_to)`."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT v.cost_per_unit
                FROM PoolVariants v
                JOIN InventoryPools p ON p.id = v.pool_id AND p.org_id = v.org_id
                WHERE v.org_id = ?
                  AND v.product_variant_id = ?
                  AND v.cost_per_unit IS NOT NULL
                  AND (? IS NULL OR p.supplier_id = ?)
                  AND p.valid_from < ?
                  AND p.valid_to >= ?
                ORDER BY p.valid_from ASC, p.id ASC
                LIMIT 1;
                """,
                (
                    org_id,
                    product_variant_id,
                    supplier_id,
                    supplier_id,
                    date_to.isoformat(),
                    date_from.isoformat(),
                ),
            )
            row = cursor.fetchone()
            return float(row["cost_per_unit"]) if row is not None else None

    def record_pool_consumption(
        self,
        *,
        org_id: int,
        pool_id: int,
        pool_variant_id: int,
        units: int,
        expected_version: int,
    ) -> int:
        """Add booked units to a variant if the pool's version is still `expected_version`.

        Returns the new consumption version. Raises ConsumptionConflict when
        another writer advanced the version first.
        """
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE InventoryPools
                SET consumption_version = consumption_version + 1
                WHERE id = ? AND org_id = ? AND consumption_version = ?;
                """,
                (pool_id, org_id, expected_version),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise ConsumptionConflict(
                    f"Pool {pool_id} consumption changed since version {expected_version}"
                )
            cursor.execute(
                """
                UPDATE PoolVariants
                SET booked_units = booked_units + ?
                WHERE id = ? AND pool_id = ? AND org_id = ?;
                """,
                (units, pool_variant_id, pool_id, org_id),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise EntityNotFoundError(
                    f"Pool variant {pool_variant_id} not found in pool {pool_id}"
                )
            conn.commit()
        return expected_version + 1

    # --- Rate plans ------------------------------------------------------

    @staticmethod
    def _rate_plan_from_row(row: sqlite3.Row) -> RatePlan:
        days = row["days_of_week"]
        return RatePlan(
            rate_plan_id=int(row["id"]),
            org_id=int(row["org_id"]),
            name=row["name"],
            product_variant_id=int(row["product_variant_id"]),
            supplier_id=int(row["supplier_id"]),
            pool_id=_optional_int(row["pool_id"]),
            valid_from=_to_date(row["valid_from"]),
            valid_to=_to_date(row["valid_to"]),
            inventory_model=str(row["inventory_model"]),
            bucket_mode=str(row["bucket_mode"]),
            days_of_week=tuple(days.split(",")) if days else None,
        )

    def save_rate_plan(self, plan: RatePlan) -> RatePlan:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO RatePlans (
                    org_id, name, product_variant_id, supplier_id, pool_id,
                    valid_from, valid_to, inventory_model, bucket_mode, days_of_week
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    plan.org_id,
                    plan.name,
                    plan.product_variant_id,
                    plan.supplier_id,
                    plan.pool_id,
                    _to_iso(plan.valid_from),
                    _to_iso(plan.valid_to),
                    plan.inventory_model,
                    plan.bucket_mode,
                    ",".join(plan.days_of_week) if plan.days_of_week else None,
                ),
            )
            conn.commit()
            return replace(plan, rate_plan_id=int(cursor.lastrowid))

    def load_rate_plan(self, org_id: int, rate_plan_id: int) -> Optional[RatePlan]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM RatePlans WHERE id = ? AND org_id = ?;",
                (rate_plan_id, org_id),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._rate_plan_from_row(row)

    # --- Allocation buckets ----------------------------------------------

    @staticmethod
    def _bucket_record_from_row(row: sqlite3.Row) -> BucketRecord:
        return BucketRecord(
            bucket_id=int(row["id"]),
            org_id=int(row["org_id"]),
            product_variant_id=int(row["product_variant_id"]),
            supplier_id=int(row["supplier_id"]),
            bucket_date=_to_date(row["bucket_date"]),
            event_start_date=_to_date(row["event_start_date"]),
            event_end_date=_to_date(row["event_end_date"]),
            time_slot_id=_optional_int(row["time_slot_id"]),
            rate_plan_id=_optional_int(row["rate_plan_id"]),
            allocation_type=str(row["allocation_type"]),
            quantity=_optional_int(row["quantity"]),
            booked=int(row["booked"]),
            held=int(row["held"]),
            stop_sell=bool(row["stop_sell"]),
            blackout=bool(row["blackout"]),
            allow_overbooking=bool(row["allow_overbooking"]),
            overbooking_limit=_optional_int(row["overbooking_limit"]),
            notes=row["notes"],
        )

    def load_buckets_in_range(
        self,
        *,
        org_id: int,
        supplier_id: int,
        date_from: date,
        date_to: date,
        product_variant_id: int | None = None,
    ) -> list[BucketRecord]:
        """Return buckets whose period overlaps `[date_from, date_to]`.

        `product_variant_id=None` returns every variant of the supplier.
        """
        query = """
            SELECT * FROM AllocationBuckets
            WHERE org_id = ?
              AND supplier_id = ?
              AND COALESCE(bucket_date, event_start_date) <= ?
              AND COALESCE(bucket_date, event_end_date) >= ?
        """
        params: list = [org_id, supplier_id, _to_iso(date_to), _to_iso(date_from)]
        if product_variant_id is not None:
            query += " AND product_variant_id = ?"
            params.append(product_variant_id)
        query += " ORDER BY COALESCE(bucket_date, event_start_date) ASC, id ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, tuple(params))
            return [self._bucket_record_from_row(row) for row in cursor.fetchall()]

    def list_buckets(
        self,
        *,
        org_id: int,
        product_variant_id: int | None = None,
        supplier_id: int | None = None,
    ) -> list[BucketRecord]:
        query = "SELECT * FROM AllocationBuckets WHERE org_id = ?"
        params: list = [org_id]
        if product_variant_id is not None:
            query += " AND product_variant_id = ?"
            params.append(product_variant_id)
        if supplier_id is not None:
            query += " AND supplier_id = ?"
            params.append(supplier_id)
        query += " ORDER BY id ASC;"
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(query, tuple(params))
            return [self._bucket_record_from_row(row) for row in cursor.fetchall()]

    def load_bucket(self, org_id: int, bucket_id: int) -> Optional[BucketRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM AllocationBuckets WHERE id = ? AND org_id = ?;",
                (bucket_id, org_id),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._bucket_record_from_row(row)

    @staticmethod
    def _bucket_temporal_columns(bucket: AllocationBucket) -> tuple[str | None, str | None, str | None]:
        if isinstance(bucket.period, DailyBucket):
            return _to_iso(bucket.period.date), None, None
        return None, _to_iso(bucket.period.start), _to_iso(bucket.period.end)

    def upsert_bucket(self, bucket: AllocationBucket) -> bool:
        """Write a bucket unless the stored one already carries bookings or holds.

        The guard lives in the conflict clause so concurrent generators converge.
        Returns True when a row was inserted or rewritten.
        """
        bucket_date, event_start, event_end = self._bucket_temporal_columns(bucket)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO AllocationBuckets (
                    org_id, product_variant_id, supplier_id, period_key, slot_key,
                    bucket_date, event_start_date, event_end_date, time_slot_id,
                    rate_plan_id, allocation_type, quantity, booked, held,
                    stop_sell, blackout, allow_overbooking, overbooking_limit, notes
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (org_id, product_variant_id, supplier_id, period_key, slot_key)
                DO UPDATE SET
                    rate_plan_id = excluded.rate_plan_id,
                    allocation_type = excluded.allocation_type,
                    quantity = excluded.quantity,
                    stop_sell = excluded.stop_sell,
                    blackout = excluded.blackout,
                    allow_overbooking = excluded.allow_overbooking,
                    overbooking_limit = excluded.overbooking_limit,
                    notes = excluded.notes
                WHERE AllocationBuckets.booked = 0 AND AllocationBuckets.held = 0;
                """,
                (
                    bucket.org_id,
                    bucket.product_variant_id,
                    bucket.supplier_id,
                    bucket.period.key,
                    bucket.time_slot_id or 0,
                    bucket_date,
                    event_start,
                    event_end,
                    bucket.time_slot_id,
                    bucket.rate_plan_id,
                    bucket.allocation_type,
                    bucket.quantity,
                    bucket.booked,
                    bucket.held,
                    int(bucket.stop_sell),
                    int(bucket.blackout),
                    int(bucket.allow_overbooking),
                    bucket.overbooking_limit,
                    bucket.notes,
                ),
            )
            written = cursor.rowcount > 0
            conn.commit()
            return written

    def update_bucket(self, bucket: AllocationBucket) -> None:
        """Persist manual edits to an existing bucket (flags, quantity, counters, notes)."""
        if bucket.bucket_id is None:
            raise EntityNotFoundError("Bucket id is required for updates")
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE AllocationBuckets
                SET quantity = ?, booked = ?, held = ?, stop_sell = ?, blackout = ?,
                    allow_overbooking = ?, overbooking_limit = ?, notes = ?
                WHERE id = ? AND org_id = ?;
                """,
                (
                    bucket.quantity,
                    bucket.booked,
                    bucket.held,
                    int(bucket.stop_sell),
                    int(bucket.blackout),
                    int(bucket.allow_overbooking),
                    bucket.overbooking_limit,
                    bucket.notes,
                    bucket.bucket_id,
                    bucket.org_id,
                ),
            )
            if cursor.rowcount == 0:
                raise EntityNotFoundError(f"Bucket {bucket.bucket_id} not found")
            conn.commit()

    def count_buckets(self, org_id: int) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COUNT(*) AS count FROM AllocationBuckets WHERE org_id = ?;",
                (org_id,),
            )
            return int(cursor.fetchone()["count"])

    # --- Contract versions -----------------------------------------------

    @staticmethod
    def _version_from_row(row: sqlite3.Row) -> ContractVersion:
        return ContractVersion(
            version_id=int(row["id"]),
            org_id=int(row["org_id"]),
            contract_id=int(row["contract_id"]),
            supplier_id=_optional_int(row["supplier_id"]),
            product_variant_id=_optional_int(row["product_variant_id"]),
            valid_from=_to_date(row["valid_from"]),
            valid_to=_to_date(row["valid_to"]),
            currency=str(row["currency"]),
            attrition_applies=bool(row["attrition_applies"]),
            committed_quantity=_optional_int(row["committed_quantity"]),
            minimum_pickup_percent=_optional_float(row["minimum_pickup_percent"]),
            penalty_calculation=row["penalty_calculation"],
            grace_allowance=int(row["grace_allowance"]),
            attrition_period_type=row["attrition_period_type"],
            unit_cost=_optional_float(row["unit_cost"]),
            fixed_fee=_optional_float(row["fixed_fee"]),
        )

    def save_contract_version(self, version: ContractVersion) -> ContractVersion:
        values = (
            version.contract_id,
            version.supplier_id,
            version.product_variant_id,
            _to_iso(version.valid_from),
            _to_iso(version.valid_to),
            version.currency,
            int(version.attrition_applies),
            version.committed_quantity,
            version.minimum_pickup_percent,
            version.penalty_calculation,
            version.grace_allowance,
            version.attrition_period_type,
            version.unit_cost,
            version.fixed_fee,
        )
        with self._connect() as conn:
            cursor = conn.cursor()
            if version.version_id is None:
                cursor.execute(
                    """
                    INSERT INTO ContractVersions (
                        contract_id, supplier_id, product_variant_id, valid_from,
                        valid_to, currency, attrition_applies, committed_quantity,
                        minimum_pickup_percent, penalty_calculation, grace_allowance,
                        attrition_period_type, unit_cost, fixed_fee, org_id
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    values + (version.org_id,),
                )
                version_id = int(cursor.lastrowid)
            else:
                cursor.execute(
                    """
                    UPDATE ContractVersions
                    SET contract_id = ?, supplier_id = ?, product_variant_id = ?,
                        valid_from = ?, valid_to = ?, currency = ?,
                        attrition_applies = ?, committed_quantity = ?,
                        minimum_pickup_percent = ?, penalty_calculation = ?,
                        grace_allowance = ?, attrition_period_type = ?,
                        unit_cost = ?, fixed_fee = ?
                    WHERE id = ? AND org_id = ?;
                    """,
                    values + (version.version_id, version.org_id),
                )
                if cursor.rowcount == 0:
                    raise EntityNotFoundError(f"Contract version {version.version_id} not found")
                version_id = version.version_id
            conn.commit()
        return replace(version, version_id=version_id)

    def load_contract_version(self, org_id: int, version_id: int) -> Optional[ContractVersion]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM ContractVersions WHERE id = ? AND org_id = ?;",
                (version_id, org_id),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._version_from_row(row)

    def list_contract_versions(self, org_id: int, contract_id: int) -> list[ContractVersion]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT * FROM ContractVersions
                WHERE org_id = ? AND contract_id = ?
                ORDER BY valid_from ASC, id ASC;
                """,
                (org_id, contract_id),
            )
            return [self._version_from_row(row) for row in cursor.fetchall()]

    # --- Bulk operations -------------------------------------------------

    def _run_batch(
        self,
        entity_ids: Sequence[int],
        handler: Callable[[sqlite3.Cursor, int], None],
    ) -> list[BulkItemOutcome]:
        """Apply `handler` per id inside one transaction.

        Any failed item rolls the batch back; the other items are then
        reported as `rolled_back` rather than `succeeded`.
        """
        outcomes: list[BulkItemOutcome] = []
        with self._connect() as conn:
            cursor = conn.cursor()
            for entity_id in entity_ids:
                try:
                    handler(cursor, entity_id)
                except InventoryError as exc:
                    outcomes.append(BulkItemOutcome(entity_id, "failed", str(exc)))
                else:
                    outcomes.append(BulkItemOutcome(entity_id, "succeeded"))

            if any(outcome.status == "failed" for outcome in outcomes):
                conn.rollback()
                return [
                    outcome
                    if outcome.status == "failed"
                    else BulkItemOutcome(outcome.entity_id, "rolled_back", "batch rolled back")
                    for outcome in outcomes
                ]
            conn.commit()
        return outcomes

    def bulk_update_pool_status(
        self,
        org_id: int,
        pool_ids: Iterable[int],
        status: str,
    ) -> list[BulkItemOutcome]:
        def handler(cursor: sqlite3.Cursor, pool_id: int) -> None:
            cursor.execute(
                "UPDATE InventoryPools SET status = ? WHERE id = ? AND org_id = ?;",
                (status, pool_id, org_id),
            )
            if cursor.rowcount == 0:
                raise EntityNotFoundError(f"Pool {pool_id} not found")

        return self._run_batch(list(pool_ids), handler)

    def bulk_delete_pools(self, org_id: int, pool_ids: Iterable[int]) -> list[BulkItemOutcome]:
        def handler(cursor: sqlite3.Cursor, pool_id: int) -> None:
            cursor.execute(
                """
                SELECT COALESCE(SUM(booked_units), 0) AS booked
                FROM PoolVariants WHERE pool_id = ? AND org_id = ?;
                """,
                (pool_id, org_id),
            )
            if int(cursor.fetchone()["booked"]) > 0:
                raise InventoryError(f"Pool {pool_id} has booked units and cannot be deleted")
            cursor.execute(
                "DELETE FROM PoolVariants WHERE pool_id = ? AND org_id = ?;",
                (pool_id, org_id),
            )
            cursor.execute(
                "DELETE FROM InventoryPools WHERE id = ? AND org_id = ?;",
                (pool_id, org_id),
            )
            if cursor.rowcount == 0:
                raise EntityNotFoundError(f"Pool {pool_id} not found")

        return self._run_batch(list(pool_ids), handler)

    def bulk_duplicate_pools(self, org_id: int, pool_ids: Iterable[int]) -> list[BulkItemOutcome]:
        """Copy pools and their variants; copies start active with zero consumption."""

        def handler(cursor: sqlite3.Cursor, pool_id: int) -> None:
            cursor.execute(
                """
                INSERT INTO InventoryPools (
                    org_id, name, reference, supplier_id, pool_type, valid_from,
                    valid_to, total_capacity, capacity_unit, min_commitment,
                    release_date, cutoff_days, currency, status, notes
                )
                SELECT org_id, name || ' (copy)', reference, supplier_id, pool_type,
                       valid_from, valid_to, total_capacity, capacity_unit,
                       min_commitment, release_date, cutoff_days, currency,
                       'active', notes
                FROM InventoryPools
                WHERE id = ? AND org_id = ?;
                """,
                (pool_id, org_id),
            )
            if cursor.rowcount == 0:
                raise EntityNotFoundError(f"Pool {pool_id} not found")
            new_pool_id = int(cursor.lastrowid)
            cursor.execute(
                """
                INSERT INTO PoolVariants (
                    org_id, pool_id, product_variant_id, capacity_weight,
                    cost_per_unit, sell_price_per_unit, priority, auto_allocate, status
                )
                SELECT org_id, ?, product_variant_id, capacity_weight, cost_per_unit,
                       sell_price_per_unit, priority, auto_allocate, status
                FROM PoolVariants
                WHERE pool_id = ? AND org_id = ?;
                """,
                (new_pool_id, pool_id, org_id),
            )

        return self._run_batch(list(pool_ids), handler)

    def bulk_delete_contract_versions(
        self,
        org_id: int,
        version_ids: Iterable[int],
    ) -> list[BulkItemOutcome]:
        def handler(cursor: sqlite3.Cursor, version_id: int) -> None:
            cursor.execute(
                "DELETE FROM ContractVersions WHERE id = ? AND org_id = ?;",
                (version_id, org_id),
            )
            if cursor.rowcount == 0:
                raise EntityNotFoundError(f"Contract version {version_id} not found")

        return self._run_batch(list(version_ids), handler)
