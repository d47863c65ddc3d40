"""Exception hierarchy shared by services and controllers."""

from __future__ import annotations


class InventoryError(Exception):
    """Base failure for inventory allocation workflows."""


class InventoryValidationError(InventoryError):
    """Input rejected before any mutation happened."""


class InvalidCapacity(InventoryValidationError):
    """Raised when a declared total capacity is negative."""


class InvalidDateRange(InventoryValidationError):
    """Raised when a validity range ends before it starts."""


class InvalidPoolConfiguration(InventoryValidationError):
    """Raised when pool or pool variant attributes are inconsistent."""


class AttritionConfigIncomplete(InventoryValidationError):
    """Raised when attrition applies but its required terms are missing."""


class AttritionNotApplicable(InventoryValidationError):
    """Raised when attrition is evaluated for a version without attrition terms."""


class OverlappingContractVersion(InventoryValidationError):
    """Raised when a contract version overlaps a sibling version."""


class EntityNotFoundError(InventoryError):
    """Raised when a pool, bucket, rate plan or version does not exist for the tenant."""


class ConsumptionConflict(InventoryError):
    """Raised when a pool's running consumption changed underneath an allocation.

    Callers should reload the pool and retry.
    """


class BucketIntegrityError(InventoryError):
    """Raised when a stored bucket carries both temporal keys or neither."""

    def __init__(self, bucket_id: int | None, message: str) -> None:
        super().__init__(message)
        self.bucket_id = bucket_id
