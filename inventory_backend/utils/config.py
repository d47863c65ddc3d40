"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    admin_token: str | None
    default_organization_id: int
    default_capacity_unit: str
    default_currency: str
    default_variant_priority: int
    utilization_warning_threshold: float
    utilization_critical_threshold: float
    release_warning_window_days: int
    attrition_sliding_scale_exponent: float
    consumption_max_retries: int
    seed_demo_data: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings(
        app_name=os.getenv("INVENTORY_APP_NAME", "Inventory Allocation Service"),
        app_version=os.getenv("INVENTORY_APP_VERSION", "0.1.0"),
        log_level=os.getenv("INVENTORY_LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("INVENTORY_DATABASE_PATH", "data/inventory.db")),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        default_organization_id=int(os.getenv("INVENTORY_DEFAULT_ORG_ID", "1")),
        default_capacity_unit=os.getenv("INVENTORY_DEFAULT_CAPACITY_UNIT", "rooms"),
        default_currency=os.getenv("INVENTORY_DEFAULT_CURRENCY", "EUR"),
        default_variant_priority=int(os.getenv("INVENTORY_DEFAULT_VARIANT_PRIORITY", "100")),
        utilization_warning_threshold=float(
            os.getenv("INVENTORY_UTILIZATION_WARNING_THRESHOLD", "75")
        ),
        utilization_critical_threshold=float(
            os.getenv("INVENTORY_UTILIZATION_CRITICAL_THRESHOLD", "90")
        ),
        release_warning_window_days=int(os.getenv("INVENTORY_RELEASE_WARNING_DAYS", "30")),
        attrition_sliding_scale_exponent=float(
            os.getenv("INVENTORY_SLIDING_SCALE_EXPONENT", "1.0")
        ),
        consumption_max_retries=int(os.getenv("INVENTORY_CONSUMPTION_MAX_RETRIES", "3")),
        seed_demo_data=_env_bool("INVENTORY_SEED_DEMO_DATA", True),
    )
