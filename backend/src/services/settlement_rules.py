"""
Per-specialty line rules for settlement calculations.

Each specialty is described by a small SpecialtyPolicy record: which rate
table it reads, which line rule turns a normalized row into a LineItem (or an
Exclusion), how duplicates are handled, and whether hour-band rows apply.
The engine is the same for all four schemes; only the policy differs.
"""
import logging
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Callable, Dict, Optional, Union

from core.constants import (
    ADMISSION_FLAT_FEE,
    CONSULT_TYPE_CLINICAL_SHIFTS,
    CONSULT_TYPE_GYNECOLOGY,
    CONSULT_TYPE_PEDIATRICS,
    GYNECOLOGY_RETENTION_PERCENT,
    NO_COVERAGE_MARKER,
    PEDIATRICS_RETENTION_PERCENT,
    TIER_SHARE_PERCENT,
    TRAINING_WINDOW_END,
    TRAINING_WINDOW_START,
    TRAINING_WINDOW_WEEKDAYS,
)
from services import settlement_warnings as codes
from services.rate_resolver import AdditionalResolver, RateResolver, is_self_pay
from services.settlement_dedup import (
    AdmissionDeduplicator,
    Deduplicator,
    ExactTupleDeduplicator,
)
from services.settlement_types import (
    DoctorRecord,
    HourlyRates,
    HoursLineItem,
    HoursRow,
    LineItem,
    NormalizedRow,
    Period,
    Specialty,
)
from services.settlement_warnings import WarningCollector
from utils.name_utils import normalize_name

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")


@dataclass(frozen=True)
class Exclusion:
    """A row that produced no line item."""
    reason: str
    message: str


LineOutcome = Union[LineItem, Exclusion]


@dataclass(frozen=True)
class ResolvedDoctor:
    doctor: Optional[DoctorRecord]
    key: str
    display_name: str

    @property
    def doctor_id(self) -> Optional[int]:
        return self.doctor.id if self.doctor else None

    @property
    def is_resident(self) -> bool:
        return self.doctor.is_resident if self.doctor else False


def doctor_key(doctor: Optional[DoctorRecord], free_text: str) -> str:
    """Grouping key: the doctor id, or the normalized free text when unresolved."""
    if doctor is not None:
        return str(doctor.id)
    return f"name:{normalize_name(free_text)}"


class BatchContext:
    """
    Read-only lookups shared by every row of one batch.

    Built once by the engine from the memoized name map and the period's
    configuration snapshots. Unresolved names and payers are reported once
    per distinct value through the warning collector.
    """

    def __init__(
        self,
        period: Period,
        name_map: Dict[str, Optional[DoctorRecord]],
        warnings: WarningCollector,
        rates: Optional[RateResolver] = None,
        additives: Optional[AdditionalResolver] = None,
        tiers: Optional[Dict[int, str]] = None,
        hourly_rates: Optional[HourlyRates] = None
    ):
        self.period = period
        self.name_map = name_map
        self.warnings = warnings
        self.rates = rates
        self.additives = additives
        self.tiers = tiers or {}
        self.hourly_rates = hourly_rates

    def doctor_for(self, free_text: str, row_index: int) -> ResolvedDoctor:
        normalized = normalize_name(free_text)
        doctor = self.name_map.get(normalized)
        if doctor is None:
            message = (
                f"Doctor not found in roster: '{free_text}'" if normalized
                else "Row has no doctor name"
            )
            self.warnings.warn_subject(codes.UNRESOLVED_DOCTOR, normalized, message, row_index)
        display = doctor.full_name if doctor else free_text
        return ResolvedDoctor(doctor=doctor, key=doctor_key(doctor, free_text), display_name=display)

    def canonical_payer(self, payer: str) -> str:
        if self.rates is None:
            return payer.strip()
        return self.rates.canonical_payer(payer)

    def rate_for(self, payer: str, row_index: int) -> Decimal:
        """Unit value for a canonical payer; 0 with a warning when unconfigured."""
        value = self.rates.resolve(payer) if self.rates else None
        if value is None:
            self.warnings.warn_subject(
                codes.UNRESOLVED_RATE,
                payer,
                f"No rate configured for payer '{payer}' in {self.period}",
                row_index
            )
            return ZERO
        return value

    def additive_for(self, payer: str) -> Decimal:
        return self.additives.resolve(payer) if self.additives else ZERO

    def tier_for(self, resolved: ResolvedDoctor, row_index: int) -> Optional[str]:
        tier = self.tiers.get(resolved.doctor_id) if resolved.doctor_id is not None else None
        if tier not in TIER_SHARE_PERCENT:
            self.warnings.warn_subject(
                codes.MISSING_TIER,
                resolved.key,
                f"No tier assigned to {resolved.display_name} in {self.period}; share is 0%",
                row_index
            )
            return None
        return tier


def _date_exclusion(row: NormalizedRow) -> Optional[Exclusion]:
    if row['date_status'] == "missing":
        return Exclusion(codes.MISSING_DATE, "Row has no visit date")
    if row['date_status'] == "invalid":
        return Exclusion(codes.INVALID_DATE, f"Visit date out of range: {row['visit_date']}")
    return None


def _duration_exclusion(row: NormalizedRow) -> Optional[Exclusion]:
    if row['duration'] is None:
        return Exclusion(codes.MISSING_DURATION, "Row has no duration")
    if row['duration'] == 0:
        return Exclusion(codes.ZERO_DURATION, "Row has zero duration")
    return None


def is_pediatrics_row(row: NormalizedRow) -> bool:
    """
    Schedule-group check for pediatrics sheets.

    "Grupo agenda" decides when present, otherwise "Tipo visita"; a sheet
    with neither is assumed to be pre-filtered.
    """
    tag = row['schedule_group'] or row['visit_type']
    if not tag:
        return True
    return "pediatr" in normalize_name(tag)


def is_training_hours(visit_date: Optional[date], visit_time: Optional[time]) -> bool:
    """Monday to Saturday, 07:00 inclusive to 15:00 exclusive."""
    if visit_date is None or visit_time is None:
        return False
    if visit_date.weekday() not in TRAINING_WINDOW_WEEKDAYS:
        return False
    return TRAINING_WINDOW_START <= visit_time < TRAINING_WINDOW_END


def _line_item(
    row: NormalizedRow,
    resolved: ResolvedDoctor,
    payer: Optional[str],
    billed: Decimal,
    visit_date: Optional[date] = None
) -> LineItem:
    return LineItem(
        source_row_index=row['source_row_index'],
        doctor_id=resolved.doctor_id,
        doctor_name=resolved.display_name,
        doctor_key=resolved.key,
        is_resident=resolved.is_resident,
        visit_date=visit_date or row['visit_date'],
        visit_time=row['visit_time'],
        patient=row['patient'],
        payer_name=payer,
        billed_amount=billed,
        retention_pct=None,
        retention_amount=None,
        additional_amount=ZERO,
        computed_amount=billed,
        training_hours_exempt=False,
        is_duplicate=False,
        review_state="pending",
    )


def pediatrics_line(row: NormalizedRow, context: BatchContext) -> LineOutcome:
    """Flat 30% retention on the payer rate, plus the payer additive."""
    if not is_pediatrics_row(row):
        tag = row['schedule_group'] or row['visit_type']
        return Exclusion(codes.SCHEDULE_GROUP_MISMATCH, f"Schedule group is not pediatrics: '{tag}'")
    exclusion = _duration_exclusion(row) or _date_exclusion(row)
    if exclusion:
        return exclusion

    index = row['source_row_index']
    resolved = context.doctor_for(row['doctor_name'], index)
    payer = context.canonical_payer(row['payer'])
    billed = context.rate_for(payer, index)
    retention = billed * PEDIATRICS_RETENTION_PERCENT / HUNDRED
    additive = context.additive_for(payer)

    item = _line_item(row, resolved, payer, billed)
    item['retention_pct'] = PEDIATRICS_RETENTION_PERCENT
    item['retention_amount'] = retention
    item['additional_amount'] = additive
    item['computed_amount'] = billed - retention + additive
    return item


def gynecology_line(row: NormalizedRow, context: BatchContext) -> LineOutcome:
    """Full payer rate per line; residents are not paid inside training hours."""
    exclusion = _date_exclusion(row)
    if exclusion:
        return exclusion

    index = row['source_row_index']
    resolved = context.doctor_for(row['doctor_name'], index)
    payer = context.canonical_payer(row['payer'])
    billed = context.rate_for(payer, index)
    item = _line_item(row, resolved, payer, billed)

    if resolved.is_resident and is_training_hours(row['visit_date'], row['visit_time']):
        item['billed_amount'] = ZERO
        item['computed_amount'] = ZERO
        item['training_hours_exempt'] = True
        context.warnings.warn(
            codes.TRAINING_HOURS_EXEMPT,
            f"Resident {resolved.display_name} seen within training hours; not payable",
            index,
            doctor_key=resolved.key,
            notional_value=billed,
        )
    return item


def clinical_shift_line(row: NormalizedRow, context: BatchContext) -> LineOutcome:
    """
    Consultation billed at the sheet's gross value; the doctor's tier share is
    applied per doctor after all rows are known, so computed_amount stays None.
    """
    if row['duration'] is not None and row['duration'] == 0:
        return Exclusion(codes.ZERO_DURATION, "Row has zero duration")
    if row['visit_time'] is None:
        return Exclusion(codes.MISSING_TIME, "Row has no visit time")

    raw_payer = row['payer']
    payer = context.canonical_payer(raw_payer)
    if is_self_pay(payer) or NO_COVERAGE_MARKER in raw_payer.upper():
        return Exclusion(codes.SELF_PAY_NOT_BILLABLE, f"Self-pay rows are not billed: '{raw_payer}'")

    index = row['source_row_index']
    visit_date = row['visit_date']
    if row['date_status'] != "ok":
        visit_date = context.period.first_day
        context.warnings.warn(
            codes.DEFAULT_DATE_SUBSTITUTED,
            f"Row {index} has a {row['date_status']} date; using {visit_date.isoformat()}",
            index,
            date_status=row['date_status'],
        )

    resolved = context.doctor_for(row['doctor_name'], index)
    if row['billed_gross'] is not None:
        billed = max(row['billed_gross'], ZERO)
    else:
        billed = context.rate_for(payer, index)

    tier = context.tier_for(resolved, index)
    share = TIER_SHARE_PERCENT[tier] if tier else ZERO

    item = _line_item(row, resolved, payer, billed, visit_date=visit_date)
    item['retention_pct'] = HUNDRED - share
    item['computed_amount'] = None
    return item


def admission_line(row: NormalizedRow, context: BatchContext) -> LineOutcome:
    """Flat fee per admission; no payer, no retention."""
    exclusion = _date_exclusion(row)
    if exclusion:
        return exclusion

    resolved = context.doctor_for(row['doctor_name'], row['source_row_index'])
    item = _line_item(row, resolved, None, ADMISSION_FLAT_FEE)
    item['visit_time'] = None
    return item


def hours_line(row: HoursRow, context: BatchContext) -> HoursLineItem:
    """Value each hour band at the period's configured band rate."""
    rates = context.hourly_rates
    if rates is None:
        raise ValueError("Hourly rates are required to value hour-band rows")

    resolved = context.doctor_for(row['doctor_name'], row['source_row_index'])
    weekday_8_16_value = row['weekday_8_16_hours'] * rates.weekday_8_16
    weekday_16_8_value = row['weekday_16_8_hours'] * rates.weekday_16_8
    weekend_value = row['weekend_hours'] * rates.weekend
    weekend_night_value = row['weekend_night_hours'] * rates.weekend_night

    return HoursLineItem(
        source_row_index=row['source_row_index'],
        doctor_id=resolved.doctor_id,
        doctor_name=resolved.display_name,
        doctor_key=resolved.key,
        weekday_8_16_hours=row['weekday_8_16_hours'],
        weekday_16_8_hours=row['weekday_16_8_hours'],
        weekend_hours=row['weekend_hours'],
        weekend_night_hours=row['weekend_night_hours'],
        weekday_8_16_value=weekday_8_16_value,
        weekday_16_8_value=weekday_16_8_value,
        weekend_value=weekend_value,
        weekend_night_value=weekend_night_value,
        total_band_value=weekday_8_16_value + weekday_16_8_value + weekend_value + weekend_night_value,
    )


LineRule = Callable[[NormalizedRow, BatchContext], LineOutcome]


@dataclass(frozen=True)
class SpecialtyPolicy:
    """Everything that distinguishes one payment scheme from another."""
    specialty: Specialty
    consult_type: Optional[str]
    line_rule: LineRule
    deduplicator: Callable[[], Deduplicator]
    applies_additives: bool = False
    uses_hours: bool = False
    aggregation_retention_percent: Decimal = ZERO


POLICIES: Dict[Specialty, SpecialtyPolicy] = {
    Specialty.PEDIATRICS: SpecialtyPolicy(
        specialty=Specialty.PEDIATRICS,
        consult_type=CONSULT_TYPE_PEDIATRICS,
        line_rule=pediatrics_line,
        deduplicator=ExactTupleDeduplicator,
        applies_additives=True,
    ),
    Specialty.GYNECOLOGY: SpecialtyPolicy(
        specialty=Specialty.GYNECOLOGY,
        consult_type=CONSULT_TYPE_GYNECOLOGY,
        line_rule=gynecology_line,
        deduplicator=ExactTupleDeduplicator,
        aggregation_retention_percent=GYNECOLOGY_RETENTION_PERCENT,
    ),
    Specialty.CLINICAL_SHIFTS: SpecialtyPolicy(
        specialty=Specialty.CLINICAL_SHIFTS,
        consult_type=CONSULT_TYPE_CLINICAL_SHIFTS,
        line_rule=clinical_shift_line,
        deduplicator=ExactTupleDeduplicator,
        uses_hours=True,
    ),
    Specialty.CLINICAL_ADMISSIONS: SpecialtyPolicy(
        specialty=Specialty.CLINICAL_ADMISSIONS,
        consult_type=None,
        line_rule=admission_line,
        deduplicator=AdmissionDeduplicator,
    ),
}


def policy_for(specialty: Union[Specialty, str]) -> SpecialtyPolicy:
    """Look up the policy of a specialty, raising ValueError for unknown values."""
    if not isinstance(specialty, Specialty):
        specialty = Specialty.parse(specialty)
    return POLICIES[specialty]


