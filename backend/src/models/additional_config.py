"""
Additional config model: a per-payer additive paid to the doctor on top of the
consultation value, shared between facility and doctor.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, TIMESTAMP, Integer, Boolean, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from services.settlement_types import AdditionalConfigRecord


class AdditionalConfig(Base):
    """
    Payer additive configuration for one specialty and period.

    The doctor-facing additive is base_amount x doctor_share_percent / 100.
    """

    __tablename__ = "additional_configs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the config."""

    payer_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    """Payer name; matched against row payers by case-insensitive containment."""

    specialty: Mapped[str] = mapped_column(String(50))
    """Specialty this additive applies to (e.g., "pediatrics")."""

    month: Mapped[int] = mapped_column(Integer)
    """Period month (1-12)."""

    year: Mapped[int] = mapped_column(Integer)
    """Period year."""

    applies: Mapped[bool] = mapped_column(Boolean, default=True)
    """Whether the additive is currently paid."""

    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Total additive amount per consultation."""

    doctor_share_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    """Percentage of base_amount paid to the doctor."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the config was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the config was last updated."""

    __table_args__ = (
        Index('idx_additional_configs_period', 'specialty', 'year', 'month'),
    )

    def to_record(self) -> AdditionalConfigRecord:
        return AdditionalConfigRecord(
            payer_name=self.payer_name,
            specialty=self.specialty,
            month=self.month,
            year=self.year,
            applies=self.applies,
            base_amount=Decimal(self.base_amount),
            doctor_share_percent=Decimal(self.doctor_share_percent),
        )
