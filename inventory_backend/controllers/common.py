"""DTOs shared across controllers."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field, field_validator

from inventory_backend.domain.models import AllocationBucket, BulkItemOutcome, EventBucket


class BulkIdsRequest(BaseModel):
    ids: list[int] = Field(min_length=1)

    @field_validator("ids")
    @classmethod
    def validate_ids(cls, value: list[int]) -> list[int]:
        for entity_id in value:
            if entity_id <= 0:
                raise ValueError("ids values must be positive integers")
        if len(set(value)) != len(value):
            raise ValueError("ids must not contain duplicates")
        return value


class BulkItemResponse(BaseModel):
    entity_id: int
    status: str
    detail: str | None = None


class BulkResponse(BaseModel):
    outcomes: list[BulkItemResponse]
    succeeded: int = Field(ge=0)
    failed: int = Field(ge=0)
    rolled_back: int = Field(ge=0)


def to_bulk_response(outcomes: list[BulkItemOutcome]) -> BulkResponse:
    return BulkResponse(
        outcomes=[
            BulkItemResponse(entity_id=item.entity_id, status=item.status, detail=item.detail)
            for item in outcomes
        ],
        succeeded=sum(1 for item in outcomes if item.status == "succeeded"),
        failed=sum(1 for item in outcomes if item.status == "failed"),
        rolled_back=sum(1 for item in outcomes if item.status == "rolled_back"),
    )


class BucketResponse(BaseModel):
    bucket_id: int | None
    product_variant_id: int
    supplier_id: int
    bucket_mode: str
    bucket_date: date | None = None
    event_start_date: date | None = None
    event_end_date: date | None = None
    allocation_type: str
    quantity: int | None
    booked: int = Field(ge=0)
    held: int = Field(ge=0)
    time_slot_id: int | None
    rate_plan_id: int | None
    stop_sell: bool
    blackout: bool
    allow_overbooking: bool
    overbooking_limit: int | None
    notes: str | None


def to_bucket_response(bucket: AllocationBucket) -> BucketResponse:
    if isinstance(bucket.period, EventBucket):
        temporal = {
            "bucket_mode": "event",
            "event_start_date": bucket.period.start,
            "event_end_date": bucket.period.end,
        }
    else:
        temporal = {"bucket_mode": "daily", "bucket_date": bucket.period.date}
    return BucketResponse(
        bucket_id=bucket.bucket_id,
        product_variant_id=bucket.product_variant_id,
        supplier_id=bucket.supplier_id,
        allocation_type=bucket.allocation_type,
        quantity=bucket.quantity,
        booked=bucket.booked,
        held=bucket.held,
        time_slot_id=bucket.time_slot_id,
        rate_plan_id=bucket.rate_plan_id,
        stop_sell=bucket.stop_sell,
        blackout=bucket.blackout,
        allow_overbooking=bucket.allow_overbooking,
        overbooking_limit=bucket.overbooking_limit,
        notes=bucket.notes,
        **temporal,
    )
