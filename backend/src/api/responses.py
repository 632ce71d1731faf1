"""
Shared response models for API endpoints.

This module contains Pydantic response models for the settlement and reference
data endpoints. Money is serialized as floats rounded to cents.
"""

from datetime import datetime, date, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from core.constants import MONEY_QUANTUM


def money(value: Optional[Decimal]) -> Optional[float]:
    """Decimal amount as a float rounded to cents."""
    if value is None:
        return None
    return float(Decimal(value).quantize(MONEY_QUANTUM))


class SettlementTotalsResponse(BaseModel):
    """Batch money totals."""
    line_count: int
    gross_amount: float
    retention_amount: float
    additional_amount: float  # Payer additives, hour bands and guaranteed-minimum top-ups
    net_amount: float


class SettlementBatchResponse(BaseModel):
    """Response model for a settlement batch."""
    id: int
    specialty: str
    month: int
    year: int
    state: str
    file_name: Optional[str] = None
    error_message: Optional[str] = None  # Only set when state == "error"
    totals: SettlementTotalsResponse
    processed_at: Optional[datetime] = None


class SettlementWarningResponse(BaseModel):
    """A row-level warning or batch-level error."""
    code: str
    message: str
    row_index: Optional[int] = None  # 0-based source row, None for batch/doctor-level issues
    details: Dict[str, Any] = {}


class ExcludedRowResponse(BaseModel):
    """A row that produced no line item."""
    source_row_index: int
    reason: str
    doctor_name: str
    patient: str


class DoctorSummaryResponse(BaseModel):
    """Per-doctor rollup."""
    doctor_id: Optional[int] = None  # None when the sheet name matched no roster entry
    doctor_name: str
    line_count: int
    gross_amount: float
    retention_amount: float
    additional_amount: float
    net_amount: float
    training_exempt_count: int = 0
    training_exempt_value: float = 0.0
    band_value: float = 0.0
    top_up: float = 0.0


class DoctorPayerSummaryResponse(BaseModel):
    """Per-doctor, per-payer rollup."""
    doctor_id: Optional[int] = None
    doctor_name: str
    payer_name: str
    line_count: int
    gross_amount: float
    net_amount: float


class SettlementRunResponse(BaseModel):
    """Response model for a settlement run."""
    batch: SettlementBatchResponse
    doctor_summaries: List[DoctorSummaryResponse]
    payer_summaries: List[DoctorPayerSummaryResponse]
    warnings: List[SettlementWarningResponse]
    exclusions: List[ExcludedRowResponse]


class LineItemResponse(BaseModel):
    """Response model for a persisted consultation line item."""
    id: int
    source_row_index: int
    doctor_id: Optional[int] = None
    doctor_name: str
    is_resident: bool
    visit_date: Optional[date] = None
    visit_time: Optional[time] = None
    patient: str
    payer_name: Optional[str] = None
    billed_amount: float
    retention_pct: Optional[float] = None
    retention_amount: Optional[float] = None
    additional_amount: float
    computed_amount: Optional[float] = None
    training_hours_exempt: bool
    is_duplicate: bool
    review_state: str


class HoursLineItemResponse(BaseModel):
    """Response model for a persisted hour-band line item."""
    id: int
    source_row_index: int
    doctor_id: Optional[int] = None
    doctor_name: str
    weekday_8_16_hours: float
    weekday_16_8_hours: float
    weekend_hours: float
    weekend_night_hours: float
    total_band_value: float


class LineItemListResponse(BaseModel):
    """Response model for listing a batch's line items."""
    batch_id: int
    line_items: List[LineItemResponse]
    hours_line_items: List[HoursLineItemResponse]


class DoctorResponse(BaseModel):
    """Response model for a roster entry."""
    id: int
    full_name: str
    provincial_license: Optional[str] = None
    tax_id: Optional[str] = None
    specialty: Optional[str] = None
    active: bool
    is_resident: bool


class DoctorListResponse(BaseModel):
    doctors: List[DoctorResponse]


class RosterImportResponse(BaseModel):
    """Response model for a roster import."""
    created: List[DoctorResponse]
    skipped: int  # Rows naming a doctor already on the roster
    errors: List[str]


class PayerRateResponse(BaseModel):
    id: int
    payer_name: str
    consult_type: str
    month: int
    year: int
    unit_value: float


class PayerRateListResponse(BaseModel):
    rates: List[PayerRateResponse]


class AdditionalConfigResponse(BaseModel):
    """Response model for a payer additive."""
    id: int
    payer_name: str
    specialty: str
    month: int
    year: int
    applies: bool
    base_amount: float
    doctor_share_percent: float
    doctor_amount: float  # base_amount x doctor_share_percent / 100


class AdditionalConfigListResponse(BaseModel):
    configs: List[AdditionalConfigResponse]


class DoctorGroupResponse(BaseModel):
    id: int
    doctor_id: int
    month: int
    year: int
    group_type: str


class DoctorGroupListResponse(BaseModel):
    groups: List[DoctorGroupResponse]


class HourlyRateConfigResponse(BaseModel):
    """Response model for a period's hour-band rates."""
    id: int
    month: int
    year: int
    weekday_8_16: float
    weekday_16_8: float
    weekend: float
    weekend_night: float
    guaranteed_min_per_hour: float
