"""
Calculation engine for settlement batches.

Orchestrates row extraction, name and rate resolution, the specialty line
rule, deduplication and aggregation. The engine is pure: it performs no I/O,
keeps no state between calls and never raises for bad row data. Identical
inputs always produce identical results.
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from decimal import Decimal
import logging

from services import settlement_warnings as codes
from services.name_resolver import build_name_map
from services.rate_resolver import AdditionalResolver, RateResolver
from services.settlement_calculators import (
    ConsultationApportioner,
    DoctorPayerSummaryCalculator,
    DoctorSummaryCalculator,
    DoctorTotalsCalculator,
    GuaranteedMinimumCalculator,
    SettlementTotalsCalculator,
)
from services.settlement_extractor import SettlementRowExtractor
from services.settlement_rules import (
    BatchContext,
    Exclusion,
    SpecialtyPolicy,
    hours_line,
    policy_for,
)
from services.settlement_types import (
    AdditionalConfigRecord,
    DoctorGroupRecord,
    DoctorRecord,
    ExcludedRow,
    HourlyRates,
    HoursLineItem,
    LineItem,
    NormalizedRow,
    PayerRateRecord,
    Period,
    SettlementResult,
    Specialty,
)
from services.settlement_warnings import WarningCollector

logger = logging.getLogger(__name__)

RawRow = Mapping[str, Any]


class SettlementEngine:
    """
    Computes one settlement batch.

    This engine coordinates:
    1. Row normalization
    2. Batch-scoped name and rate resolution (memoized up front)
    3. Per-row specialty rules
    4. Deduplication
    5. Aggregation (two passes for clinical shifts)
    """

    def __init__(self):
        self.extractor = SettlementRowExtractor()
        self.doctor_totals_calculator = DoctorTotalsCalculator()
        self.minimum_calculator = GuaranteedMinimumCalculator()
        self.apportioner = ConsultationApportioner()
        self.doctor_calculator = DoctorSummaryCalculator()
        self.payer_calculator = DoctorPayerSummaryCalculator()
        self.totals_calculator = SettlementTotalsCalculator()

    def compute(
        self,
        rows: Sequence[RawRow],
        specialty: Union[Specialty, str],
        period: Period,
        roster: Sequence[DoctorRecord],
        rates: Iterable[PayerRateRecord] = (),
        additional_config: Iterable[AdditionalConfigRecord] = (),
        group_config: Iterable[DoctorGroupRecord] = (),
        hourly_config: Optional[HourlyRates] = None,
        hours_rows: Optional[Sequence[RawRow]] = None
    ) -> SettlementResult:
        """
        Compute line items, summaries and totals for one batch.

        Args:
            rows: Consultation (or admission) rows, header -> raw cell
            specialty: Payment scheme
            period: Settlement month
            roster: Doctor snapshot; its order breaks name-matching ties
            rates: Payer rate snapshot
            additional_config: Payer additive snapshot
            group_config: Clinical-shift tier snapshot
            hourly_config: Clinical-shift band rates; required for clinical shifts
            hours_rows: Clinical-shift hour-band rows

        Returns:
            SettlementResult; result.errors is non-empty only when no batch
            could be produced

        Raises:
            ValueError: If the specialty is unknown
        """
        policy = policy_for(specialty)
        warnings = WarningCollector()
        result = SettlementResult(specialty=policy.specialty, period=period)

        if policy.uses_hours and hourly_config is None:
            warnings.error(
                codes.MISSING_HOURLY_CONFIG,
                f"No hourly rate configuration for {period}"
            )
            return self._finish(result, warnings)

        normalized = self.extractor.extract_rows(rows)
        hours_input = self.extractor.extract_hours_rows(hours_rows or []) if policy.uses_hours else []
        logger.info(
            f"Computing {policy.specialty.value} settlement for {period}: "
            f"{len(normalized)} rows, {len(hours_input)} hour rows"
        )

        name_map = build_name_map(
            [row['doctor_name'] for row in normalized] + [row['doctor_name'] for row in hours_input],
            roster
        )
        context = self._build_context(
            policy, period, name_map, warnings, rates, additional_config, group_config, hourly_config
        )

        items: List[LineItem] = []
        for row in normalized:
            outcome = policy.line_rule(row, context)
            if isinstance(outcome, Exclusion):
                self._exclude(result, warnings, row, outcome.reason, outcome.message)
                continue
            items.append(outcome)

        items, dropped = policy.deduplicator().apply(items, warnings)
        by_index = {row['source_row_index']: row for row in normalized}
        for item in dropped:
            result.exclusions.append(ExcludedRow(
                source_row_index=item['source_row_index'],
                reason=codes.DUPLICATE,
                doctor_name=by_index[item['source_row_index']]['doctor_name'],
                patient=item['patient'],
            ))

        hours_items: List[HoursLineItem] = [hours_line(row, context) for row in hours_input]

        if not items and not hours_items:
            warnings.error(
                codes.NO_PROCESSABLE_ROWS,
                f"No processable rows among {len(normalized)} input rows",
                excluded=len(result.exclusions)
            )
            return self._finish(result, warnings)

        self._aggregate(result, policy, items, hours_items, context)
        logger.info(
            f"Settlement {policy.specialty.value} {period}: {len(result.line_items)} lines, "
            f"{len(result.exclusions)} excluded, net {result.totals['net_amount'] if result.totals else 0}"
        )
        return self._finish(result, warnings)

    @staticmethod
    def _build_context(
        policy: SpecialtyPolicy,
        period: Period,
        name_map: Dict[str, Optional[DoctorRecord]],
        warnings: WarningCollector,
        rates: Iterable[PayerRateRecord],
        additional_config: Iterable[AdditionalConfigRecord],
        group_config: Iterable[DoctorGroupRecord],
        hourly_config: Optional[HourlyRates]
    ) -> BatchContext:
        rate_resolver = RateResolver(rates, policy.consult_type, period) if policy.consult_type else None
        additives = (
            AdditionalResolver(additional_config, policy.specialty.value, period)
            if policy.applies_additives else None
        )
        tiers: Dict[int, str] = {}
        if policy.uses_hours:
            for group in group_config:
                if group.month == period.month and group.year == period.year:
                    tiers.setdefault(group.doctor_id, group.group_type)
        return BatchContext(
            period=period,
            name_map=name_map,
            warnings=warnings,
            rates=rate_resolver,
            additives=additives,
            tiers=tiers,
            hourly_rates=hourly_config,
        )

    @staticmethod
    def _exclude(
        result: SettlementResult,
        warnings: WarningCollector,
        row: NormalizedRow,
        reason: str,
        message: str
    ) -> None:
        index = row['source_row_index']
        result.exclusions.append(ExcludedRow(
            source_row_index=index,
            reason=reason,
            doctor_name=row['doctor_name'],
            patient=row['patient'],
        ))
        warnings.warn(reason, f"Row {index} excluded: {message}", index)

    def _aggregate(
        self,
        result: SettlementResult,
        policy: SpecialtyPolicy,
        items: List[LineItem],
        hours_items: List[HoursLineItem],
        context: BatchContext
    ) -> None:
        if policy.uses_hours:
            # Pass 1: per-doctor sums; pass 2: floor correction
            doctor_totals = self.doctor_totals_calculator.calculate(items, hours_items)
            settlements = self.minimum_calculator.calculate(
                doctor_totals, context.hourly_rates, context.warnings
            )
            items = self.apportioner.calculate(items, doctor_totals)
            result.doctor_settlements = settlements
        else:
            settlements = None

        summaries = self.doctor_calculator.calculate(
            items,
            aggregation_retention_percent=policy.aggregation_retention_percent,
            settlements=settlements,
        )
        notional = self._training_exempt_values(items, context)
        if notional:
            self.doctor_calculator.attach_training_values(summaries, notional)

        result.line_items = sorted(items, key=lambda i: i['source_row_index'])
        result.hours_line_items = hours_items
        result.doctor_summaries = summaries
        result.payer_summaries = self.payer_calculator.calculate(
            items, policy.aggregation_retention_percent
        )
        result.totals = self.totals_calculator.calculate(summaries)

    @staticmethod
    def _training_exempt_values(items: Sequence[LineItem], context: BatchContext) -> Dict[str, Decimal]:
        values: Dict[str, Decimal] = {}
        if context.rates is None:
            return values
        for item in items:
            if item['training_hours_exempt']:
                values[item['doctor_key']] = (
                    values.get(item['doctor_key'], Decimal("0"))
                    + context.rates.value_for(item['payer_name'])
                )
        return values

    @staticmethod
    def _finish(result: SettlementResult, warnings: WarningCollector) -> SettlementResult:
        result.warnings = warnings.warnings
        result.errors = warnings.errors
        if result.errors:
            # No partial results leave the engine
            result.line_items = []
            result.hours_line_items = []
            result.totals = None
            result.doctor_summaries = []
            result.payer_summaries = []
            result.doctor_settlements = []
        return result


def compute_settlement(
    rows: Sequence[RawRow],
    specialty: Union[Specialty, str],
    period: Period,
    roster: Sequence[DoctorRecord],
    rates: Iterable[PayerRateRecord] = (),
    additional_config: Iterable[AdditionalConfigRecord] = (),
    group_config: Iterable[DoctorGroupRecord] = (),
    hourly_config: Optional[HourlyRates] = None,
    hours_rows: Optional[Sequence[RawRow]] = None
) -> SettlementResult:
    """Module-level entry point; see SettlementEngine.compute."""
    return SettlementEngine().compute(
        rows,
        specialty,
        period,
        roster,
        rates=rates,
        additional_config=additional_config,
        group_config=group_config,
        hourly_config=hourly_config,
        hours_rows=hours_rows,
    )
