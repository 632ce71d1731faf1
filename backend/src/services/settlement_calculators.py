"""
Aggregation calculators for settlement batches.

Each calculator computes one rollup from already-computed line items.
Clinical shifts need two passes: pass 1 produces immutable DoctorTotals, and
pass 2 applies the guaranteed-minimum floor to them. Every other scheme
aggregates in a single pass over final per-line amounts.
"""
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from core.constants import MONEY_QUANTUM
from services import settlement_warnings as codes
from services.settlement_types import (
    DoctorPayerSummary,
    DoctorSettlement,
    DoctorSummary,
    DoctorTotals,
    HourlyRates,
    HoursLineItem,
    LineItem,
    SettlementTotals,
)
from services.settlement_warnings import WarningCollector
from utils.name_utils import normalize_name

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _counted(items: Sequence[LineItem]) -> List[LineItem]:
    """Line items that count towards money totals (duplicates excluded)."""
    return [item for item in items if not item['is_duplicate']]


def _sort_key(name: str, key: str) -> Tuple[str, str]:
    return normalize_name(name), key


class DoctorTotalsCalculator:
    """Pass 1 of the clinical-shift aggregation."""

    @staticmethod
    def calculate(
        items: Sequence[LineItem],
        hours_items: Sequence[HoursLineItem]
    ) -> List[DoctorTotals]:
        """
        Sum each doctor's gross consultations, tier-share net and hour bands.

        The tier share is read from the lines' retention_pct (share = 100 - pct).
        Only weekend and weekend-night hours count as worked hours.

        Returns:
            One DoctorTotals per doctor with lines or hours, in first-seen order
        """
        names: Dict[str, Tuple[Optional[int], str]] = OrderedDict()
        gross: Dict[str, Decimal] = {}
        net: Dict[str, Decimal] = {}
        band_value: Dict[str, Decimal] = {}
        worked_hours: Dict[str, Decimal] = {}

        for item in _counted(items):
            key = item['doctor_key']
            names.setdefault(key, (item['doctor_id'], item['doctor_name']))
            share = HUNDRED - (item['retention_pct'] if item['retention_pct'] is not None else HUNDRED)
            gross[key] = gross.get(key, ZERO) + item['billed_amount']
            net[key] = net.get(key, ZERO) + item['billed_amount'] * share / HUNDRED

        for hours in hours_items:
            key = hours['doctor_key']
            names.setdefault(key, (hours['doctor_id'], hours['doctor_name']))
            band_value[key] = band_value.get(key, ZERO) + hours['total_band_value']
            worked_hours[key] = (
                worked_hours.get(key, ZERO) + hours['weekend_hours'] + hours['weekend_night_hours']
            )

        return [
            DoctorTotals(
                doctor_key=key,
                doctor_id=doctor_id,
                doctor_name=name,
                gross_consultation=gross.get(key, ZERO),
                net_consultation=net.get(key, ZERO),
                total_band_value=band_value.get(key, ZERO),
                total_worked_hours=worked_hours.get(key, ZERO),
            )
            for key, (doctor_id, name) in names.items()
        ]


class GuaranteedMinimumCalculator:
    """Pass 2 of the clinical-shift aggregation: the per-hour floor."""

    @staticmethod
    def apply_floor(totals: DoctorTotals, guaranteed_min_per_hour: Decimal) -> DoctorSettlement:
        """
        Clamp a doctor's earnings to guaranteed_min_per_hour x worked hours.

        If consultations plus bands fall short of the floor, the facility pays
        the shortfall as a top-up and the final total equals the floor.
        """
        floor = guaranteed_min_per_hour * totals.total_worked_hours
        earned = totals.earned
        if earned < floor:
            return DoctorSettlement(totals=totals, floor=floor, top_up=floor - earned, final_total=floor)
        return DoctorSettlement(totals=totals, floor=floor, top_up=ZERO, final_total=earned)

    @staticmethod
    def calculate(
        doctor_totals: Sequence[DoctorTotals],
        rates: HourlyRates,
        warnings: Optional[WarningCollector] = None
    ) -> List[DoctorSettlement]:
        settlements: List[DoctorSettlement] = []
        for totals in doctor_totals:
            settlement = GuaranteedMinimumCalculator.apply_floor(totals, rates.guaranteed_min_per_hour)
            if settlement.top_up > 0 and warnings is not None:
                warnings.warn(
                    codes.GUARANTEED_MINIMUM_TOP_UP,
                    f"{totals.doctor_name} earned {totals.earned} below the guaranteed "
                    f"minimum {settlement.floor}; top-up {settlement.top_up}",
                    None,
                    doctor_key=totals.doctor_key,
                    floor=settlement.floor,
                    top_up=settlement.top_up,
                )
            settlements.append(settlement)
        return settlements


class ConsultationApportioner:
    """Distributes each doctor's net consultation total over their lines."""

    @staticmethod
    def calculate(items: Sequence[LineItem], doctor_totals: Sequence[DoctorTotals]) -> List[LineItem]:
        """
        Set computed_amount = net_consultation x (billed / gross_consultation).

        Amounts are rounded to cents and the rounding remainder goes on the
        doctor's last line, so each doctor's lines add up to net_consultation
        rounded to cents. retention_amount is the remainder of billed.
        """
        by_key = {totals.doctor_key: totals for totals in doctor_totals}
        apportioned: List[LineItem] = []
        last_line: Dict[str, int] = {}
        allotted: Dict[str, Decimal] = {}
        for item in items:
            updated = LineItem(**item)
            key = item['doctor_key']
            totals = by_key.get(key)
            if totals is None or totals.gross_consultation <= 0 or item['is_duplicate']:
                computed = ZERO
            else:
                computed = (
                    totals.net_consultation * item['billed_amount'] / totals.gross_consultation
                ).quantize(MONEY_QUANTUM)
                if item['billed_amount'] > 0:
                    last_line[key] = len(apportioned)
                allotted[key] = allotted.get(key, ZERO) + computed
            updated['computed_amount'] = computed
            apportioned.append(updated)

        for key, position in last_line.items():
            remainder = by_key[key].net_consultation.quantize(MONEY_QUANTUM) - allotted[key]
            apportioned[position]['computed_amount'] += remainder

        for updated in apportioned:
            updated['retention_amount'] = updated['billed_amount'] - updated['computed_amount']
        return apportioned


class DoctorSummaryCalculator:
    """Per-doctor rollup for all schemes."""

    @staticmethod
    def calculate(
        items: Sequence[LineItem],
        aggregation_retention_percent: Decimal = ZERO,
        settlements: Optional[Sequence[DoctorSettlement]] = None
    ) -> List[DoctorSummary]:
        """
        Build per-doctor summaries.

        Args:
            items: Final line items of the batch
            aggregation_retention_percent: Retention applied to each doctor's
                gross at aggregation (gynecology), 0 otherwise
            settlements: Clinical-shift pass-2 results; when given, net is the
                final total and additional covers bands plus top-up

        Returns:
            Summaries sorted by doctor name
        """
        summaries: Dict[str, DoctorSummary] = OrderedDict()

        def summary_for(key: str, doctor_id: Optional[int], name: str) -> DoctorSummary:
            if key not in summaries:
                summaries[key] = DoctorSummary(
                    doctor_key=key,
                    doctor_id=doctor_id,
                    doctor_name=name,
                    line_count=0,
                    gross_amount=ZERO,
                    retention_amount=ZERO,
                    additional_amount=ZERO,
                    net_amount=ZERO,
                    training_exempt_count=0,
                    training_exempt_value=ZERO,
                    band_value=ZERO,
                    top_up=ZERO,
                )
            return summaries[key]

        for item in _counted(items):
            summary = summary_for(item['doctor_key'], item['doctor_id'], item['doctor_name'])
            summary['line_count'] += 1
            summary['gross_amount'] += item['billed_amount']
            summary['retention_amount'] += item['retention_amount'] or ZERO
            summary['additional_amount'] += item['additional_amount']
            summary['net_amount'] += item['computed_amount'] or ZERO
            if item['training_hours_exempt']:
                summary['training_exempt_count'] += 1

        if aggregation_retention_percent > 0:
            for summary in summaries.values():
                retention = summary['gross_amount'] * aggregation_retention_percent / HUNDRED
                summary['retention_amount'] = retention
                summary['net_amount'] = summary['gross_amount'] - retention

        for settlement in settlements or []:
            totals = settlement.totals
            summary = summary_for(totals.doctor_key, totals.doctor_id, totals.doctor_name)
            summary['gross_amount'] = totals.gross_consultation
            summary['retention_amount'] = totals.gross_consultation - totals.net_consultation
            summary['band_value'] = totals.total_band_value
            summary['top_up'] = settlement.top_up
            summary['additional_amount'] = totals.total_band_value + settlement.top_up
            summary['net_amount'] = settlement.final_total

        return sorted(summaries.values(), key=lambda s: _sort_key(s['doctor_name'], s['doctor_key']))

    @staticmethod
    def attach_training_values(
        summaries: List[DoctorSummary],
        notional_values: Dict[str, Decimal]
    ) -> None:
        """Record the notional (unpaid) value of training-exempt lines per doctor."""
        for summary in summaries:
            summary['training_exempt_value'] = notional_values.get(summary['doctor_key'], ZERO)


class DoctorPayerSummaryCalculator:
    """Per-doctor, per-payer rollup."""

    @staticmethod
    def calculate(
        items: Sequence[LineItem],
        aggregation_retention_percent: Decimal = ZERO
    ) -> List[DoctorPayerSummary]:
        summaries: Dict[Tuple[str, str], DoctorPayerSummary] = OrderedDict()

        for item in _counted(items):
            payer = item['payer_name'] or ""
            key = (item['doctor_key'], payer)
            if key not in summaries:
                summaries[key] = DoctorPayerSummary(
                    doctor_key=item['doctor_key'],
                    doctor_id=item['doctor_id'],
                    doctor_name=item['doctor_name'],
                    payer_name=payer,
                    line_count=0,
                    gross_amount=ZERO,
                    net_amount=ZERO,
                )
            summary = summaries[key]
            summary['line_count'] += 1
            summary['gross_amount'] += item['billed_amount']
            summary['net_amount'] += item['computed_amount'] or ZERO

        if aggregation_retention_percent > 0:
            keep = (HUNDRED - aggregation_retention_percent) / HUNDRED
            for summary in summaries.values():
                summary['net_amount'] = summary['net_amount'] * keep

        return sorted(
            summaries.values(),
            key=lambda s: (*_sort_key(s['doctor_name'], s['doctor_key']), s['payer_name'])
        )


class SettlementTotalsCalculator:
    """Batch totals, derived from the per-doctor summaries."""

    @staticmethod
    def calculate(summaries: Sequence[DoctorSummary]) -> SettlementTotals:
        totals = SettlementTotals(
            line_count=0,
            gross_amount=ZERO,
            retention_amount=ZERO,
            additional_amount=ZERO,
            net_amount=ZERO,
        )
        for summary in summaries:
            totals['line_count'] += summary['line_count']
            totals['gross_amount'] += summary['gross_amount']
            totals['retention_amount'] += summary['retention_amount']
            totals['additional_amount'] += summary['additional_amount']
            totals['net_amount'] += summary['net_amount']
        return totals
