"""
Service for processing and persisting settlement batches.

Loads the period's reference data as immutable snapshots, runs the settlement
engine and replaces the batch's derived rows in a single transaction.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from models.additional_config import AdditionalConfig
from models.doctor import Doctor
from models.doctor_group_config import DoctorGroupConfig
from models.hourly_rate_config import HourlyRateConfig
from models.line_item import HoursLineItem, LineItem
from models.payer_rate import PayerRate
from models.processing_log import ProcessingLog
from models.settlement_batch import SettlementBatch
from services.settlement_engine import SettlementEngine
from services.settlement_rules import policy_for
from services.settlement_types import (
    AdditionalConfigRecord,
    BatchState,
    DoctorGroupRecord,
    DoctorRecord,
    HourlyRates,
    PayerRateRecord,
    Period,
    REVIEW_STATES,
    SettlementResult,
    Specialty,
)
from utils.datetime_utils import local_now

logger = logging.getLogger(__name__)

RawRow = Mapping[str, Any]

ALLOWED_TRANSITIONS: Dict[BatchState, Tuple[BatchState, ...]] = {
    BatchState.DRAFT: (BatchState.PROCESSING,),
    BatchState.PROCESSING: (BatchState.FINALIZED, BatchState.ERROR),
    BatchState.FINALIZED: (BatchState.PROCESSING,),
    BatchState.ERROR: (BatchState.PROCESSING,),
}


class InvalidBatchTransition(Exception):
    """Raised when a batch is moved to a state its current state cannot reach."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move settlement batch from '{current}' to '{target}'")
        self.current = current
        self.target = target


@dataclass(frozen=True)
class BatchInputs:
    """Reference data snapshot for one (specialty, period)."""
    roster: List[DoctorRecord]
    rates: List[PayerRateRecord] = field(default_factory=list)
    additional_config: List[AdditionalConfigRecord] = field(default_factory=list)
    group_config: List[DoctorGroupRecord] = field(default_factory=list)
    hourly_config: Optional[HourlyRates] = None


class SettlementService:
    """Service for settlement batch operations."""

    @staticmethod
    def load_inputs(db: Session, specialty: Specialty, period: Period) -> BatchInputs:
        """
        Load every reference table the engine needs for one batch.

        Args:
            db: Database session
            specialty: Payment scheme
            period: Settlement month

        Returns:
            BatchInputs with the active roster ordered by id
        """
        policy = policy_for(specialty)

        roster = [
            doctor.to_record()
            for doctor in db.query(Doctor).filter(Doctor.active == True).order_by(Doctor.id).all()
        ]

        rates: List[PayerRateRecord] = []
        if policy.consult_type:
            rates = [
                rate.to_record()
                for rate in db.query(PayerRate).filter(
                    PayerRate.consult_type == policy.consult_type,
                    PayerRate.month == period.month,
                    PayerRate.year == period.year
                ).order_by(PayerRate.id).all()
            ]

        additional_config = [
            config.to_record()
            for config in db.query(AdditionalConfig).filter(
                AdditionalConfig.specialty == policy.specialty.value,
                AdditionalConfig.month == period.month,
                AdditionalConfig.year == period.year
            ).order_by(AdditionalConfig.id).all()
        ]

        group_config: List[DoctorGroupRecord] = []
        hourly_config: Optional[HourlyRates] = None
        if policy.uses_hours:
            group_config = [
                group.to_record()
                for group in db.query(DoctorGroupConfig).filter(
                    DoctorGroupConfig.month == period.month,
                    DoctorGroupConfig.year == period.year
                ).order_by(DoctorGroupConfig.id).all()
            ]
            hourly = db.query(HourlyRateConfig).filter(
                HourlyRateConfig.month == period.month,
                HourlyRateConfig.year == period.year
            ).first()
            hourly_config = hourly.to_rates() if hourly else None

        return BatchInputs(
            roster=roster,
            rates=rates,
            additional_config=additional_config,
            group_config=group_config,
            hourly_config=hourly_config,
        )

    @staticmethod
    def get_batch(db: Session, specialty: Specialty, period: Period) -> Optional[SettlementBatch]:
        """Get the batch for a (specialty, period), or None if it was never ingested."""
        return db.query(SettlementBatch).filter(
            SettlementBatch.specialty == specialty.value,
            SettlementBatch.month == period.month,
            SettlementBatch.year == period.year
        ).first()

    @staticmethod
    def get_or_create_batch(db: Session, specialty: Specialty, period: Period) -> Tuple[SettlementBatch, bool]:
        """
        Get the batch for a (specialty, period), creating a draft if needed.

        Returns:
            Tuple of (batch, created)
        """
        batch = SettlementService.get_batch(db, specialty, period)
        if batch is not None:
            return batch, False

        batch = SettlementBatch(
            specialty=specialty.value,
            month=period.month,
            year=period.year,
            state=BatchState.DRAFT.value,
        )
        db.add(batch)
        db.flush()
        logger.info(f"Created settlement batch {batch.id} for {specialty.value} {period}")
        return batch, True

    @staticmethod
    def transition(batch: SettlementBatch, target: BatchState) -> None:
        """
        Move a batch to another state.

        Raises:
            InvalidBatchTransition: If the move is not allowed from the current state
        """
        current = BatchState(batch.state)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidBatchTransition(current.value, target.value)
        batch.state = target.value

    @staticmethod
    def process_batch(
        db: Session,
        specialty: Union[Specialty, str],
        period: Period,
        rows: Sequence[RawRow],
        hours_rows: Optional[Sequence[RawRow]] = None,
        file_name: Optional[str] = None
    ) -> Tuple[SettlementBatch, SettlementResult]:
        """
        Compute a batch and replace its derived rows.

        On an engine error the batch moves to the error state and keeps its
        previous line items. On success, line items are deleted and re-inserted,
        totals are written and a ProcessingLog entry is added. Either way the
        work is committed as one transaction; any exception rolls it back.

        Args:
            db: Database session
            specialty: Payment scheme
            period: Settlement month
            rows: Consultation (or admission) rows, header -> raw cell
            hours_rows: Clinical-shift hour-band rows
            file_name: Name of the ingested spreadsheet

        Returns:
            Tuple of (batch, engine result)

        Raises:
            ValueError: If the specialty is unknown
            InvalidBatchTransition: If the batch is already being processed
        """
        policy = policy_for(specialty)
        specialty = policy.specialty

        try:
            inputs = SettlementService.load_inputs(db, specialty, period)
            batch, created = SettlementService.get_or_create_batch(db, specialty, period)
            SettlementService.transition(batch, BatchState.PROCESSING)
            db.flush()

            result = SettlementEngine().compute(
                rows,
                specialty,
                period,
                inputs.roster,
                rates=inputs.rates,
                additional_config=inputs.additional_config,
                group_config=inputs.group_config,
                hourly_config=inputs.hourly_config,
                hours_rows=hours_rows,
            )

            if not result.ok:
                SettlementService.transition(batch, BatchState.ERROR)
                batch.error_message = "; ".join(error['message'] for error in result.errors)
                db.commit()
                logger.warning(
                    f"Settlement batch {batch.id} ({specialty.value} {period}) failed: {batch.error_message}"
                )
                return batch, result

            SettlementService._replace_derived_rows(db, batch, result)
            SettlementService._write_totals(batch, result, file_name)
            SettlementService.transition(batch, BatchState.FINALIZED)
            db.add(SettlementService._processing_log(batch, result, rows, file_name, created))
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Finalized settlement batch {batch.id} ({specialty.value} {period}): "
            f"{len(result.line_items)} lines, {len(result.warnings)} warnings"
        )
        return batch, result

    @staticmethod
    def _replace_derived_rows(db: Session, batch: SettlementBatch, result: SettlementResult) -> None:
        db.query(LineItem).filter(LineItem.batch_id == batch.id).delete(synchronize_session=False)
        db.query(HoursLineItem).filter(HoursLineItem.batch_id == batch.id).delete(synchronize_session=False)
        db.expire(batch, ['line_items', 'hours_line_items'])

        for item in result.line_items:
            db.add(LineItem(
                batch_id=batch.id,
                doctor_id=item['doctor_id'],
                doctor_name=item['doctor_name'],
                is_resident=item['is_resident'],
                visit_date=item['visit_date'],
                visit_time=item['visit_time'],
                patient=item['patient'],
                payer_name=item['payer_name'],
                billed_amount=item['billed_amount'],
                retention_pct=item['retention_pct'],
                retention_amount=item['retention_amount'],
                additional_amount=item['additional_amount'],
                computed_amount=item['computed_amount'],
                training_hours_exempt=item['training_hours_exempt'],
                is_duplicate=item['is_duplicate'],
                review_state=item['review_state'],
                source_row_index=item['source_row_index'],
            ))

        for hours in result.hours_line_items:
            db.add(HoursLineItem(
                batch_id=batch.id,
                doctor_id=hours['doctor_id'],
                doctor_name=hours['doctor_name'],
                weekday_8_16_hours=hours['weekday_8_16_hours'],
                weekday_16_8_hours=hours['weekday_16_8_hours'],
                weekend_hours=hours['weekend_hours'],
                weekend_night_hours=hours['weekend_night_hours'],
                weekday_8_16_value=hours['weekday_8_16_value'],
                weekday_16_8_value=hours['weekday_16_8_value'],
                weekend_value=hours['weekend_value'],
                weekend_night_value=hours['weekend_night_value'],
                total_band_value=hours['total_band_value'],
                source_row_index=hours['source_row_index'],
            ))

    @staticmethod
    def _write_totals(batch: SettlementBatch, result: SettlementResult, file_name: Optional[str]) -> None:
        totals = result.totals
        if totals is None:
            raise ValueError("A successful settlement result must carry totals")
        batch.line_count = totals['line_count']
        batch.gross_amount = totals['gross_amount']
        batch.retention_amount = totals['retention_amount']
        batch.additional_amount = totals['additional_amount']
        batch.net_amount = totals['net_amount']
        batch.error_message = None
        batch.processed_at = local_now()
        if file_name:
            batch.file_name = file_name

    @staticmethod
    def _processing_log(
        batch: SettlementBatch,
        result: SettlementResult,
        rows: Sequence[RawRow],
        file_name: Optional[str],
        created: bool
    ) -> ProcessingLog:
        warning_codes = Counter(warning['code'] for warning in result.warnings)
        exclusion_reasons = Counter(excluded['reason'] for excluded in result.exclusions)
        return ProcessingLog(
            batch_id=batch.id,
            action="created" if created else "reprocessed",
            file_name=file_name,
            row_count=len(rows),
            line_count=len(result.line_items),
            excluded_count=len(result.exclusions),
            warning_count=len(result.warnings),
            details={
                "warning_codes": dict(warning_codes),
                "exclusion_reasons": dict(exclusion_reasons),
                "net_amount": str(result.totals['net_amount']) if result.totals else "0",
            },
        )

    @staticmethod
    def get_line_items(db: Session, batch_id: int) -> List[LineItem]:
        """Get a batch's persisted line items in source-row order."""
        return db.query(LineItem).filter(
            LineItem.batch_id == batch_id
        ).order_by(LineItem.source_row_index, LineItem.id).all()

    @staticmethod
    def get_line_item(db: Session, batch_id: int, line_item_id: int) -> Optional[LineItem]:
        return db.query(LineItem).filter(
            LineItem.id == line_item_id,
            LineItem.batch_id == batch_id
        ).first()

    @staticmethod
    def get_hours_line_items(db: Session, batch_id: int) -> List[HoursLineItem]:
        """Get a batch's persisted hour-band line items in source-row order."""
        return db.query(HoursLineItem).filter(
            HoursLineItem.batch_id == batch_id
        ).order_by(HoursLineItem.source_row_index, HoursLineItem.id).all()

    @staticmethod
    def update_review_state(db: Session, batch: SettlementBatch, line_item_id: int, review_state: str) -> LineItem:
        """
        Mark a line item after manual review.

        The review state is a marker only: totals are recomputed solely by
        reprocessing the batch.

        Raises:
            ValueError: If the line item is not in the batch or the state is unknown
        """
        if review_state not in REVIEW_STATES:
            raise ValueError(f"Unknown review_state '{review_state}'. Expected one of: {', '.join(REVIEW_STATES)}")

        item = SettlementService.get_line_item(db, batch.id, line_item_id)
        if not item:
            raise ValueError("Line item not found")

        item.review_state = review_state
        db.flush()
        logger.info(f"Line item {item.id} of batch {batch.id} marked {review_state}")
        return item
