"""
Type definitions for settlement calculations.

TypedDicts describe the row-shaped data flowing through the pipeline
(normalized spreadsheet rows, computed line items, warnings, summaries).
Frozen dataclasses hold the immutable reference snapshots loaded once per
batch (roster, rates, configuration) and the intermediate per-doctor totals.
"""
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, TypedDict, get_args


class Specialty(str, Enum):
    """Payment scheme a settlement batch is computed under."""
    PEDIATRICS = "pediatrics"
    GYNECOLOGY = "gynecology"
    CLINICAL_SHIFTS = "clinical_shifts"
    CLINICAL_ADMISSIONS = "clinical_admissions"

    @classmethod
    def parse(cls, value: str) -> "Specialty":
        """Parse a specialty string, raising ValueError for unknown values."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown specialty '{value}'. Expected one of: {valid}")


class BatchState(str, Enum):
    """Settlement batch lifecycle states."""
    DRAFT = "draft"
    PROCESSING = "processing"
    FINALIZED = "finalized"
    ERROR = "error"


DateStatus = Literal["ok", "missing", "invalid"]
ReviewState = Literal["pending", "duplicate", "approved", "rejected"]
REVIEW_STATES: Tuple[str, ...] = get_args(ReviewState)


@dataclass(frozen=True)
class Period:
    """A settlement period (calendar month)."""
    month: int
    year: int

    def __post_init__(self) -> None:
        if not 1 <= int(self.month) <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")
        if self.year < 1:
            raise ValueError(f"Invalid year {self.year}")

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class DoctorRecord:
    """Roster entry. A doctor without a provincial license is a resident."""
    id: int
    full_name: str
    provincial_license: Optional[str] = None
    tax_id: Optional[str] = None
    specialty: Optional[str] = None
    active: bool = True

    @property
    def is_resident(self) -> bool:
        return not self.provincial_license


@dataclass(frozen=True)
class PayerRateRecord:
    """Unit value billed to a payer for one consult type in one period."""
    payer_name: str
    consult_type: str
    month: int
    year: int
    unit_value: Decimal


@dataclass(frozen=True)
class AdditionalConfigRecord:
    """Per-payer additive paid on top of the consultation value."""
    payer_name: str
    specialty: str
    month: int
    year: int
    applies: bool
    base_amount: Decimal
    doctor_share_percent: Decimal

    @property
    def doctor_amount(self) -> Decimal:
        return self.base_amount * self.doctor_share_percent / Decimal("100")


@dataclass(frozen=True)
class DoctorGroupRecord:
    """Clinical-shift tier assignment of a doctor for one period."""
    doctor_id: int
    month: int
    year: int
    group_type: str


@dataclass(frozen=True)
class HourlyRates:
    """Clinical-shift hour-band rates and guaranteed minimum for one period."""
    weekday_8_16: Decimal
    weekday_16_8: Decimal
    weekend: Decimal
    weekend_night: Decimal
    guaranteed_min_per_hour: Decimal


class NormalizedRow(TypedDict):
    """
    A consultation spreadsheet row after header resolution and cell parsing.

    Missing cells are None (or empty strings for free text).
    """
    source_row_index: int  # 0-based position in the input sequence
    doctor_name: str
    patient: str
    payer: str
    visit_date: Optional[date]
    visit_time: Optional[time]
    date_status: DateStatus
    duration: Optional[Decimal]
    schedule_group: Optional[str]
    visit_type: Optional[str]
    billed_gross: Optional[Decimal]


class HoursRow(TypedDict):
    """A clinical-shift hour-band spreadsheet row after parsing."""
    source_row_index: int
    doctor_name: str
    weekday_8_16_hours: Decimal
    weekday_16_8_hours: Decimal
    weekend_hours: Decimal
    weekend_night_hours: Decimal


class LineItem(TypedDict):
    """
    A computed consultation record.

    computed_amount is None only while a clinical-shift line awaits the
    per-doctor apportioning pass; it is never negative once set.
    """
    source_row_index: int
    doctor_id: Optional[int]
    doctor_name: str  # Roster name when resolved, free text otherwise
    doctor_key: str  # Grouping key: str(doctor_id) or "name:<normalized>"
    is_resident: bool
    visit_date: Optional[date]
    visit_time: Optional[time]
    patient: str
    payer_name: Optional[str]
    billed_amount: Decimal
    retention_pct: Optional[Decimal]
    retention_amount: Optional[Decimal]
    additional_amount: Decimal
    computed_amount: Optional[Decimal]
    training_hours_exempt: bool
    is_duplicate: bool
    review_state: ReviewState


class HoursLineItem(TypedDict):
    """Per-doctor worked hours by band, valued at the period's band rates."""
    source_row_index: int
    doctor_id: Optional[int]
    doctor_name: str
    doctor_key: str
    weekday_8_16_hours: Decimal
    weekday_16_8_hours: Decimal
    weekend_hours: Decimal
    weekend_night_hours: Decimal
    weekday_8_16_value: Decimal
    weekday_16_8_value: Decimal
    weekend_value: Decimal
    weekend_night_value: Decimal
    total_band_value: Decimal


class SettlementWarning(TypedDict):
    """A non-fatal issue (or a fatal batch error) with a machine-readable code."""
    code: str
    message: str
    row_index: Optional[int]
    details: Dict[str, Any]


class ExcludedRow(TypedDict):
    """A consultation row that produced no line item, with its reason code."""
    source_row_index: int
    reason: str
    doctor_name: str
    patient: str


class DoctorSummary(TypedDict):
    """Per-doctor rollup of a batch."""
    doctor_key: str
    doctor_id: Optional[int]
    doctor_name: str
    line_count: int
    gross_amount: Decimal
    retention_amount: Decimal
    additional_amount: Decimal
    net_amount: Decimal
    training_exempt_count: int
    training_exempt_value: Decimal  # Notional value of exempt lines (not paid)
    band_value: Decimal
    top_up: Decimal


class DoctorPayerSummary(TypedDict):
    """Per-doctor, per-payer rollup of a batch."""
    doctor_key: str
    doctor_id: Optional[int]
    doctor_name: str
    payer_name: str
    line_count: int
    gross_amount: Decimal
    net_amount: Decimal


class SettlementTotals(TypedDict):
    """Batch totals persisted on the SettlementBatch."""
    line_count: int
    gross_amount: Decimal
    retention_amount: Decimal
    additional_amount: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class DoctorTotals:
    """Pass-1 clinical-shift totals for one doctor."""
    doctor_key: str
    doctor_id: Optional[int]
    doctor_name: str
    gross_consultation: Decimal
    net_consultation: Decimal
    total_band_value: Decimal
    total_worked_hours: Decimal

    @property
    def earned(self) -> Decimal:
        return self.net_consultation + self.total_band_value


@dataclass(frozen=True)
class DoctorSettlement:
    """Pass-2 result: a doctor's totals after the guaranteed-minimum correction."""
    totals: DoctorTotals
    floor: Decimal
    top_up: Decimal
    final_total: Decimal


@dataclass
class SettlementResult:
    """Everything a single engine run produces for one batch."""
    specialty: Specialty
    period: Period
    line_items: List[LineItem] = field(default_factory=list)
    hours_line_items: List[HoursLineItem] = field(default_factory=list)
    totals: Optional[SettlementTotals] = None
    doctor_summaries: List[DoctorSummary] = field(default_factory=list)
    payer_summaries: List[DoctorPayerSummary] = field(default_factory=list)
    doctor_settlements: List[DoctorSettlement] = field(default_factory=list)
    exclusions: List[ExcludedRow] = field(default_factory=list)
    warnings: List[SettlementWarning] = field(default_factory=list)
    errors: List[SettlementWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
