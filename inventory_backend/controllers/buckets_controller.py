"""HTTP controller layer for allocation buckets and their utilization."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from inventory_backend.controllers.common import BucketResponse, to_bucket_response
from inventory_backend.controllers.dependencies import (
    get_generation_service,
    get_tenant_context,
    get_utilization_service,
)
from inventory_backend.domain.errors import (
    BucketIntegrityError,
    EntityNotFoundError,
    InventoryValidationError,
)
from inventory_backend.domain.models import TenantContext
from inventory_backend.services.generation_service import AllocationGenerationService
from inventory_backend.services.utilization_service import (
    BucketUtilizationRow,
    UtilizationService,
)
from inventory_backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/buckets", tags=["buckets"])

NULLABLE_BUCKET_FIELDS = ("quantity", "overbooking_limit", "notes")


class BucketUtilizationResponse(BaseModel):
    booked_units: int = Field(ge=0)
    held_units: int = Field(ge=0)
    available_units: int | None
    utilization_percentage: float = Field(ge=0.0)
    is_overbooked: bool
    tier: str


class BucketRowResponse(BaseModel):
    bucket: BucketResponse
    utilization: BucketUtilizationResponse


class BucketListResponse(BaseModel):
    rows: list[BucketRowResponse]
    skipped_bucket_ids: list[int]
    total_booked: int = Field(ge=0)
    total_held: int = Field(ge=0)
    total_quantity: int = Field(ge=0)
    utilization_percentage: float = Field(ge=0.0)


class BucketUpdateRequest(BaseModel):
    quantity: int | None = Field(default=None, ge=0)
    stop_sell: bool | None = None
    blackout: bool | None = None
    allow_overbooking: bool | None = None
    overbooking_limit: int | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=2000)


def _row_response(row: BucketUtilizationRow) -> BucketRowResponse:
    return BucketRowResponse(
        bucket=to_bucket_response(row.bucket),
        utilization=BucketUtilizationResponse(
            booked_units=row.utilization.booked_units,
            held_units=row.utilization.held_units,
            available_units=row.utilization.available_units,
            utilization_percentage=row.utilization.utilization_percentage,
            is_overbooked=row.utilization.is_overbooked,
            tier=row.utilization.tier,
        ),
    )


@router.get("", response_model=BucketListResponse)
async def list_buckets(
    product_variant_id: int | None = Query(default=None, gt=0),
    supplier_id: int | None = Query(default=None, gt=0),
    date_from: date | None = None,
    date_to: date | None = None,
    context: TenantContext = Depends(get_tenant_context),
    service: UtilizationService = Depends(get_utilization_service),
) -> BucketListResponse:
    """List buckets with utilization; malformed rows are reported, not returned."""
    try:
        if date_from is not None or date_to is not None:
            if date_from is None or date_to is None or supplier_id is None:
                raise InventoryValidationError(
                    "date_from, date_to and supplier_id are required for range queries"
                )
            report = service.for_range(
                context,
                supplier_id=supplier_id,
                date_from=date_from,
                date_to=date_to,
                product_variant_id=product_variant_id,
            )
        else:
            report = service.list_buckets(
                context,
                product_variant_id=product_variant_id,
                supplier_id=supplier_id,
            )
        return BucketListResponse(
            rows=[_row_response(row) for row in report.rows],
            skipped_bucket_ids=report.skipped_bucket_ids,
            total_booked=report.total_booked,
            total_held=report.total_held,
            total_quantity=report.total_quantity,
            utilization_percentage=report.utilization_percentage,
        )
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected bucket listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list buckets",
        ) from exc


@router.patch("/{bucket_id}", response_model=BucketResponse)
async def update_bucket(
    bucket_id: int,
    payload: BucketUpdateRequest,
    context: TenantContext = Depends(get_tenant_context),
    service: AllocationGenerationService = Depends(get_generation_service),
) -> BucketResponse:
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_BUCKET_FIELDS
    }
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one field must be provided",
        )
    try:
        return to_bucket_response(service.update_bucket(context, bucket_id, **changes))
    except EntityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InventoryValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except BucketIntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected bucket update failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update bucket",
        ) from exc


@router.get("/{bucket_id}/utilization", response_model=BucketRowResponse)
async def bucket_utilization(
    bucket_id: int,
    context: TenantContext = Depends(get_tenant_context),
    service: UtilizationService = Depends(get_utilization_service),
) -> BucketRowResponse:
    try:
        return _row_response(service.for_bucket(context, bucket_id))
    except EntityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except BucketIntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected bucket utilization failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute bucket utilization",
        ) from exc
