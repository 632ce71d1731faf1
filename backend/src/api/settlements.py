"""
Settlement API endpoints.

Ingests a period's spreadsheet rows for one specialty, computes the batch and
exposes the persisted result, including manual review of line items.
"""

import logging
from datetime import date, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    DoctorPayerSummaryResponse,
    DoctorSummaryResponse,
    ExcludedRowResponse,
    HoursLineItemResponse,
    LineItemListResponse,
    LineItemResponse,
    SettlementBatchResponse,
    SettlementRunResponse,
    SettlementTotalsResponse,
    SettlementWarningResponse,
    money,
)
from core.database import get_db
from models.line_item import LineItem
from models.settlement_batch import SettlementBatch
from services.settlement_service import InvalidBatchTransition, SettlementService
from services.settlement_types import Period, SettlementResult, SettlementWarning, Specialty

logger = logging.getLogger(__name__)

router = APIRouter()


class SettlementUploadRequest(BaseModel):
    """Spreadsheet rows for one batch, as header -> cell mappings."""
    rows: List[Dict[str, Any]]
    hours_rows: Optional[List[Dict[str, Any]]] = None  # Clinical shifts only
    file_name: Optional[str] = Field(default=None, max_length=255)


class LineItemReviewRequest(BaseModel):
    """Manual review decision for one line item."""
    review_state: str = Field(..., max_length=20)


def _jsonable(value: Any) -> Any:
    """Make warning details JSON friendly (money as floats, dates as ISO strings)."""
    if isinstance(value, Decimal):
        return money(value)
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _parse_key(specialty: str, year: int, month: int) -> tuple:
    """Validate path parameters, raising 400 for an unknown specialty or month."""
    try:
        return Specialty.parse(specialty), Period(month=month, year=year)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _warning_response(warning: SettlementWarning) -> SettlementWarningResponse:
    return SettlementWarningResponse(
        code=warning['code'],
        message=warning['message'],
        row_index=warning['row_index'],
        details=_jsonable(warning['details']),
    )


def _batch_response(batch: SettlementBatch) -> SettlementBatchResponse:
    return SettlementBatchResponse(
        id=batch.id,
        specialty=batch.specialty,
        month=batch.month,
        year=batch.year,
        state=batch.state,
        file_name=batch.file_name,
        error_message=batch.error_message,
        totals=SettlementTotalsResponse(
            line_count=batch.line_count or 0,
            gross_amount=money(batch.gross_amount or Decimal("0")),
            retention_amount=money(batch.retention_amount or Decimal("0")),
            additional_amount=money(batch.additional_amount or Decimal("0")),
            net_amount=money(batch.net_amount or Decimal("0")),
        ),
        processed_at=batch.processed_at,
    )


def _run_response(batch: SettlementBatch, result: SettlementResult) -> SettlementRunResponse:
    return SettlementRunResponse(
        batch=_batch_response(batch),
        doctor_summaries=[
            DoctorSummaryResponse(
                doctor_id=summary['doctor_id'],
                doctor_name=summary['doctor_name'],
                line_count=summary['line_count'],
                gross_amount=money(summary['gross_amount']),
                retention_amount=money(summary['retention_amount']),
                additional_amount=money(summary['additional_amount']),
                net_amount=money(summary['net_amount']),
                training_exempt_count=summary['training_exempt_count'],
                training_exempt_value=money(summary['training_exempt_value']),
                band_value=money(summary['band_value']),
                top_up=money(summary['top_up']),
            )
            for summary in result.doctor_summaries
        ],
        payer_summaries=[
            DoctorPayerSummaryResponse(
                doctor_id=summary['doctor_id'],
                doctor_name=summary['doctor_name'],
                payer_name=summary['payer_name'],
                line_count=summary['line_count'],
                gross_amount=money(summary['gross_amount']),
                net_amount=money(summary['net_amount']),
            )
            for summary in result.payer_summaries
        ],
        warnings=[_warning_response(warning) for warning in result.warnings],
        exclusions=[ExcludedRowResponse(**excluded) for excluded in result.exclusions],
    )


def _line_item_response(item: LineItem) -> LineItemResponse:
    return LineItemResponse(
        id=item.id,
        source_row_index=item.source_row_index,
        doctor_id=item.doctor_id,
        doctor_name=item.doctor_name,
        is_resident=item.is_resident,
        visit_date=item.visit_date,
        visit_time=item.visit_time,
        patient=item.patient,
        payer_name=item.payer_name,
        billed_amount=money(item.billed_amount),
        retention_pct=money(item.retention_pct),
        retention_amount=money(item.retention_amount),
        additional_amount=money(item.additional_amount),
        computed_amount=money(item.computed_amount),
        training_hours_exempt=item.training_hours_exempt,
        is_duplicate=item.is_duplicate,
        review_state=item.review_state,
    )


@router.post("/{specialty}/{year}/{month}", summary="Compute a settlement batch")
async def process_settlement(
    specialty: str,
    year: int,
    month: int,
    request: SettlementUploadRequest,
    db: Session = Depends(get_db)
) -> SettlementRunResponse:
    """
    Compute (or recompute) the batch for a specialty and month.

    Replaces any previously computed line items of the same batch. Returns 422
    with the batch errors when nothing could be computed.
    """
    batch_specialty, period = _parse_key(specialty, year, month)

    try:
        batch, result = SettlementService.process_batch(
            db,
            batch_specialty,
            period,
            request.rows,
            hours_rows=request.hours_rows,
            file_name=request.file_name,
        )
    except InvalidBatchTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "batch_id": batch.id,
                "state": batch.state,
                "errors": [_warning_response(error).model_dump() for error in result.errors],
            },
        )

    return _run_response(batch, result)


@router.get("/{specialty}/{year}/{month}", summary="Get a settlement batch")
async def get_settlement(
    specialty: str,
    year: int,
    month: int,
    db: Session = Depends(get_db)
) -> SettlementBatchResponse:
    """Get a batch's state and totals."""
    batch_specialty, period = _parse_key(specialty, year, month)
    batch = SettlementService.get_batch(db, batch_specialty, period)
    if batch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Settlement batch not found")
    return _batch_response(batch)


@router.get("/{specialty}/{year}/{month}/line-items", summary="List a batch's line items")
async def list_line_items(
    specialty: str,
    year: int,
    month: int,
    db: Session = Depends(get_db)
) -> LineItemListResponse:
    """List persisted line items in source-row order."""
    batch_specialty, period = _parse_key(specialty, year, month)
    batch = SettlementService.get_batch(db, batch_specialty, period)
    if batch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Settlement batch not found")

    line_items = [_line_item_response(item) for item in SettlementService.get_line_items(db, batch.id)]
    hours_line_items = [
        HoursLineItemResponse(
            id=hours.id,
            source_row_index=hours.source_row_index,
            doctor_id=hours.doctor_id,
            doctor_name=hours.doctor_name,
            weekday_8_16_hours=float(hours.weekday_8_16_hours),
            weekday_16_8_hours=float(hours.weekday_16_8_hours),
            weekend_hours=float(hours.weekend_hours),
            weekend_night_hours=float(hours.weekend_night_hours),
            total_band_value=money(hours.total_band_value),
        )
        for hours in SettlementService.get_hours_line_items(db, batch.id)
    ]
    return LineItemListResponse(batch_id=batch.id, line_items=line_items, hours_line_items=hours_line_items)


@router.patch("/{specialty}/{year}/{month}/line-items/{line_item_id}", summary="Review a line item")
async def review_line_item(
    specialty: str,
    year: int,
    month: int,
    line_item_id: int,
    request: LineItemReviewRequest,
    db: Session = Depends(get_db)
) -> LineItemResponse:
    """
    Set a line item's review state.

    Reviewing never changes amounts or batch totals.
    """
    batch_specialty, period = _parse_key(specialty, year, month)

    try:
        batch = SettlementService.get_batch(db, batch_specialty, period)
        if batch is None or SettlementService.get_line_item(db, batch.id, line_item_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Line item not found")

        item = SettlementService.update_review_state(db, batch, line_item_id, request.review_state)
        db.commit()
        return _line_item_response(item)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.exception(f"Error reviewing line item {line_item_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update line item"
        )
