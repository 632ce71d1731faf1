"""
Line item models: the derived rows of a settlement batch.

LineItem holds one consultation (or admission); HoursLineItem holds one
clinical-shift hour-band row. Both are deleted and re-inserted as a set on
every successful run of their batch.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, ForeignKey, TIMESTAMP, Integer, Boolean, Numeric, Date, Time, Index, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_STRING_LENGTH
from core.database import Base


class LineItem(Base):
    """
    A computed consultation record.

    Invariants (enforced by the engine, checked by the database):
    - computed_amount is never negative
    - a training-hours-exempt line has billed_amount = computed_amount = 0
    """

    __tablename__ = "line_items"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the line item."""

    batch_id: Mapped[int] = mapped_column(ForeignKey("settlement_batches.id", ondelete="CASCADE"))
    """Reference to the owning batch."""

    doctor_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("doctors.id", ondelete="SET NULL"), nullable=True
    )
    """Resolved doctor; NULL when the free-text name matched nobody."""

    doctor_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    """Roster name when resolved, free text from the sheet otherwise."""

    is_resident: Mapped[bool] = mapped_column(Boolean, default=False)
    """Residency of the resolved doctor at processing time."""

    visit_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    """Visit date."""

    visit_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    """Visit start time (NULL for admissions)."""

    patient: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH), default="")
    """Patient name as written in the sheet."""

    payer_name: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)
    """Canonical payer (NULL for admissions)."""

    billed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Amount billed for the line."""

    retention_pct: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    """Retention percentage applied to the line, if any."""

    retention_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    """Amount retained by the facility, if any."""

    additional_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    """Payer additive paid on top of the line."""

    computed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    """Amount payable to the doctor for the line."""

    training_hours_exempt: Mapped[bool] = mapped_column(Boolean, default=False)
    """Resident seen inside training hours; nothing is paid."""

    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False)
    """Later admission of an already-admitted (patient, date); kept for review."""

    review_state: Mapped[str] = mapped_column(String(20), default="pending")
    """Manual review state ("pending" or "duplicate")."""

    source_row_index: Mapped[int] = mapped_column(Integer)
    """0-based position of the source row in the ingested sheet."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the line item was created."""

    batch = relationship("SettlementBatch", back_populates="line_items")
    """Relationship to the SettlementBatch entity."""

    __table_args__ = (
        Index('idx_line_items_batch_row', 'batch_id', 'source_row_index'),
        Index('idx_line_items_doctor', 'doctor_id'),
        CheckConstraint('computed_amount IS NULL OR computed_amount >= 0', name='chk_computed_amount_non_negative'),
    )


class HoursLineItem(Base):
    """Clinical-shift worked hours by band, valued at the period's band rates."""

    __tablename__ = "hours_line_items"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the hours line item."""

    batch_id: Mapped[int] = mapped_column(ForeignKey("settlement_batches.id", ondelete="CASCADE"))
    """Reference to the owning batch."""

    doctor_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("doctors.id", ondelete="SET NULL"), nullable=True
    )
    """Resolved doctor; NULL when unresolved."""

    doctor_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    """Roster name when resolved, free text otherwise."""

    weekday_8_16_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"))
    weekday_16_8_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"))
    weekend_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"))
    weekend_night_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"))

    weekday_8_16_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    weekday_16_8_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    weekend_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    weekend_night_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    total_band_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    """Sum of the four band values."""

    source_row_index: Mapped[int] = mapped_column(Integer)
    """0-based position of the source row in the hours sheet."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the hours line item was created."""

    batch = relationship("SettlementBatch", back_populates="hours_line_items")
    """Relationship to the SettlementBatch entity."""

    __table_args__ = (
        Index('idx_hours_line_items_batch', 'batch_id'),
    )
