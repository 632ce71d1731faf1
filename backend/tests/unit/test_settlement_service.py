"""
Unit tests for SettlementService.

Tests batch persistence, the batch lifecycle and reference data loading
against an in-memory database.
"""
import pytest
from decimal import Decimal
from sqlalchemy.orm import Session

from core.constants import CONSULT_TYPE_PEDIATRICS
from models.doctor import Doctor
from models.line_item import HoursLineItem, LineItem
from models.processing_log import ProcessingLog
from models.settlement_batch import SettlementBatch
from services import settlement_warnings as codes
from services.settlement_service import InvalidBatchTransition, SettlementService
from services.settlement_types import BatchState, Period, Specialty
from tests.conftest import PERIOD, consultation_row, hours_row, seed_reference_data


class TestLoadInputs:
    """Test reference data snapshots."""

    def test_pediatrics_inputs(self, db_session: Session):
        """Test that only the pediatrics rate table is loaded."""
        seed_reference_data(db_session)

        inputs = SettlementService.load_inputs(db_session, Specialty.PEDIATRICS, PERIOD)

        assert [d.id for d in inputs.roster] == [1, 2, 3]
        assert len(inputs.rates) == 2
        assert all(rate.consult_type == CONSULT_TYPE_PEDIATRICS for rate in inputs.rates)
        assert inputs.hourly_config is None
        assert inputs.group_config == []

    def test_clinical_shift_inputs(self, db_session: Session):
        """Test that tiers and hourly rates are loaded for clinical shifts."""
        seed_reference_data(db_session)

        inputs = SettlementService.load_inputs(db_session, Specialty.CLINICAL_SHIFTS, PERIOD)

        assert inputs.hourly_config.guaranteed_min_per_hour == Decimal("600")
        assert [(g.doctor_id, g.group_type) for g in inputs.group_config] == [(1, "TIER_A")]

    def test_inactive_doctors_excluded(self, db_session: Session):
        """Test that inactive doctors are left out of the roster."""
        seed_reference_data(db_session)
        db_session.get(Doctor, 2).active = False
        db_session.commit()

        inputs = SettlementService.load_inputs(db_session, Specialty.PEDIATRICS, PERIOD)

        assert [d.id for d in inputs.roster] == [1, 3]


class TestBatchLifecycle:
    """Test batch state transitions."""

    def test_get_or_create_batch(self, db_session: Session):
        """Test that a batch is created once per specialty and period."""
        batch, created = SettlementService.get_or_create_batch(db_session, Specialty.PEDIATRICS, PERIOD)
        again, created_again = SettlementService.get_or_create_batch(db_session, Specialty.PEDIATRICS, PERIOD)

        assert created is True
        assert created_again is False
        assert again.id == batch.id
        assert batch.state == BatchState.DRAFT.value

    @pytest.mark.parametrize("current,target", [
        (BatchState.DRAFT, BatchState.FINALIZED),
        (BatchState.DRAFT, BatchState.ERROR),
        (BatchState.PROCESSING, BatchState.PROCESSING),
        (BatchState.FINALIZED, BatchState.ERROR),
    ])
    def test_invalid_transitions(self, current, target):
        """Test moves the state machine does not allow."""
        batch = SettlementBatch(specialty="pediatrics", month=3, year=2024, state=current.value)

        with pytest.raises(InvalidBatchTransition):
            SettlementService.transition(batch, target)

        assert batch.state == current.value

    def test_reprocessing_allowed_from_finished_states(self):
        """Test that finalized and errored batches can be processed again."""
        for state in (BatchState.FINALIZED, BatchState.ERROR):
            batch = SettlementBatch(specialty="pediatrics", month=3, year=2024, state=state.value)

            SettlementService.transition(batch, BatchState.PROCESSING)

            assert batch.state == BatchState.PROCESSING.value


class TestProcessBatch:
    """Test batch processing and persistence."""

    def test_process_batch_persists_result(self, db_session: Session):
        """Test a successful run: line items, totals, state and log."""
        seed_reference_data(db_session)
        rows = [consultation_row(), consultation_row(payer="", patient="Diaz Tomas")]

        batch, result = SettlementService.process_batch(
            db_session, Specialty.PEDIATRICS, PERIOD, rows, file_name="pediatria_marzo.xlsx"
        )

        assert result.ok
        assert batch.state == BatchState.FINALIZED.value
        assert batch.file_name == "pediatria_marzo.xlsx"
        assert batch.line_count == 2
        assert batch.gross_amount == Decimal("2500")
        assert batch.net_amount == Decimal("1750")
        assert batch.processed_at is not None

        items = SettlementService.get_line_items(db_session, batch.id)
        assert [item.source_row_index for item in items] == [0, 1]
        assert items[1].payer_name == "042 - PARTICULARES"
        assert items[1].computed_amount == Decimal("700")

        logs = db_session.query(ProcessingLog).filter(ProcessingLog.batch_id == batch.id).all()
        assert len(logs) == 1
        assert logs[0].action == "created"
        assert logs[0].row_count == 2
        assert Decimal(logs[0].details["net_amount"]) == Decimal("1750")

    def test_reprocessing_replaces_line_items(self, db_session: Session):
        """Test that a second ingestion replaces rows instead of appending."""
        seed_reference_data(db_session)
        SettlementService.process_batch(
            db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row(), consultation_row(patient="Diaz Tomas")]
        )

        batch, _ = SettlementService.process_batch(
            db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row()]
        )

        assert db_session.query(SettlementBatch).count() == 1
        assert db_session.query(LineItem).filter(LineItem.batch_id == batch.id).count() == 1
        assert batch.line_count == 1
        actions = [log.action for log in db_session.query(ProcessingLog).order_by(ProcessingLog.id)]
        assert actions == ["created", "reprocessed"]

    def test_failed_run_keeps_previous_line_items(self, db_session: Session):
        """Test that an errored run records the error and keeps prior results."""
        seed_reference_data(db_session)
        SettlementService.process_batch(db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row()])

        batch, result = SettlementService.process_batch(
            db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row(duration=0)]
        )

        assert not result.ok
        assert batch.state == BatchState.ERROR.value
        assert batch.error_message
        assert result.errors[0]['code'] == codes.NO_PROCESSABLE_ROWS
        assert db_session.query(LineItem).filter(LineItem.batch_id == batch.id).count() == 1

        batch, result = SettlementService.process_batch(
            db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row()]
        )
        assert result.ok
        assert batch.state == BatchState.FINALIZED.value
        assert batch.error_message is None

    def test_batch_in_processing_is_rejected(self, db_session: Session):
        """Test that a batch already being processed cannot be processed again."""
        seed_reference_data(db_session)
        batch, _ = SettlementService.get_or_create_batch(db_session, Specialty.PEDIATRICS, PERIOD)
        SettlementService.transition(batch, BatchState.PROCESSING)
        db_session.commit()

        with pytest.raises(InvalidBatchTransition):
            SettlementService.process_batch(db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row()])

        assert db_session.query(LineItem).count() == 0

    def test_clinical_shifts_persist_hours(self, db_session: Session):
        """Test hour-band line items and the top-up in the batch totals."""
        seed_reference_data(db_session)

        batch, result = SettlementService.process_batch(
            db_session,
            Specialty.CLINICAL_SHIFTS,
            PERIOD,
            [consultation_row(billed_gross="1000", schedule_group=None)],
            hours_rows=[hours_row(weekend=10)],
        )

        assert result.ok
        hours = SettlementService.get_hours_line_items(db_session, batch.id)
        assert len(hours) == 1
        assert hours[0].total_band_value == Decimal("5000")
        assert batch.net_amount == Decimal("6000")
        assert db_session.query(HoursLineItem).count() == 1

    def test_missing_hourly_config_errors_batch(self, db_session: Session):
        """Test a clinical-shift run for a period without hourly rates."""
        seed_reference_data(db_session)
        other_period = Period(month=4, year=2024)

        batch, result = SettlementService.process_batch(
            db_session, Specialty.CLINICAL_SHIFTS, other_period, [consultation_row()]
        )

        assert batch.state == BatchState.ERROR.value
        assert result.errors[0]['code'] == codes.MISSING_HOURLY_CONFIG

    def test_unknown_specialty(self, db_session: Session):
        """Test that an unknown specialty raises ValueError."""
        with pytest.raises(ValueError):
            SettlementService.process_batch(db_session, "oncology", PERIOD, [consultation_row()])


class TestReviewState:
    """Test manual review of line items."""

    def test_mark_approved(self, db_session: Session):
        """Test that a review decision leaves amounts and totals untouched."""
        seed_reference_data(db_session)
        batch, _ = SettlementService.process_batch(db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row()])
        item = SettlementService.get_line_items(db_session, batch.id)[0]

        reviewed = SettlementService.update_review_state(db_session, batch, item.id, "approved")

        assert reviewed.review_state == "approved"
        assert reviewed.computed_amount == Decimal("1050")
        assert batch.net_amount == Decimal("1050")

    def test_unknown_state(self, db_session: Session):
        seed_reference_data(db_session)
        batch, _ = SettlementService.process_batch(db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row()])
        item = SettlementService.get_line_items(db_session, batch.id)[0]

        with pytest.raises(ValueError, match="Unknown review_state 'paid'"):
            SettlementService.update_review_state(db_session, batch, item.id, "paid")

    def test_item_outside_batch(self, db_session: Session):
        seed_reference_data(db_session)
        batch, _ = SettlementService.process_batch(db_session, Specialty.PEDIATRICS, PERIOD, [consultation_row()])

        with pytest.raises(ValueError, match="Line item not found"):
            SettlementService.update_review_state(db_session, batch, 9999, "rejected")
