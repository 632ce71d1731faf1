"""
Settlement batch model: one (specialty, month, year) unit of work.

A batch is created on the first ingestion of a period's spreadsheet. Every
later ingestion for the same key replaces its derived rows; rows are never
appended.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import String, TIMESTAMP, Integer, Numeric, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from services.settlement_types import BatchState


class SettlementBatch(Base):
    """
    Settlement batch with its state and money totals.

    State machine: draft -> processing -> finalized, or -> error. A finalized
    or errored batch may re-enter processing when the period is re-ingested.
    """

    __tablename__ = "settlement_batches"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the batch."""

    specialty: Mapped[str] = mapped_column(String(50))
    """Payment scheme (pediatrics, gynecology, clinical_shifts, clinical_admissions)."""

    month: Mapped[int] = mapped_column(Integer)
    """Period month (1-12)."""

    year: Mapped[int] = mapped_column(Integer)
    """Period year."""

    state: Mapped[str] = mapped_column(String(20), default=BatchState.DRAFT.value)
    """Lifecycle state: draft, processing, finalized or error."""

    file_name: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)
    """Name of the last ingested spreadsheet."""

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Why the last run failed (only set in the error state)."""

    line_count: Mapped[int] = mapped_column(Integer, default=0)
    """Number of line items counted in the totals."""

    gross_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    """Sum of billed amounts."""

    retention_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    """Sum of amounts retained by the facility."""

    additional_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    """Sum of additives (payer additives, hour bands and guaranteed-minimum top-ups)."""

    net_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    """Total payable to doctors."""

    processed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """When the batch was last finalized."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the batch was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the batch was last updated."""

    # Relationships
    line_items: Mapped[List["LineItem"]] = relationship(
        "LineItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="LineItem.source_row_index",
    )
    """Consultation line items of the last successful run."""

    hours_line_items: Mapped[List["HoursLineItem"]] = relationship(
        "HoursLineItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="HoursLineItem.source_row_index",
    )
    """Hour-band line items of the last successful run (clinical shifts only)."""

    processing_logs: Mapped[List["ProcessingLog"]] = relationship(
        "ProcessingLog",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="ProcessingLog.id",
    )
    """History of successful runs."""

    __table_args__ = (
        UniqueConstraint('specialty', 'month', 'year', name='uq_settlement_batches_specialty_period'),
        Index('idx_settlement_batches_state', 'state'),
    )

    def __repr__(self) -> str:
        return f"<SettlementBatch(id={self.id}, specialty='{self.specialty}', period={self.year}-{self.month:02d}, state='{self.state}')>"
