"""
Payer rate model: the unit value billed to a payer per consult type and month.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, TIMESTAMP, Integer, Numeric, UniqueConstraint, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from services.settlement_types import PayerRateRecord


class PayerRate(Base):
    """One row per (payer, consult type, period)."""

    __tablename__ = "payer_rates"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the rate."""

    payer_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    """Payer name as it appears in activity exports (e.g., "042 - PARTICULARES")."""

    consult_type: Mapped[str] = mapped_column(String(100))
    """Consult-type tag selecting the rate table (e.g., "CONSULTA GINECOLOGICA")."""

    month: Mapped[int] = mapped_column(Integer)
    """Period month (1-12)."""

    year: Mapped[int] = mapped_column(Integer)
    """Period year."""

    unit_value: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Amount billed per consultation."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the rate was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the rate was last updated."""

    __table_args__ = (
        UniqueConstraint('payer_name', 'consult_type', 'month', 'year', name='uq_payer_rates_payer_type_period'),
        Index('idx_payer_rates_period', 'consult_type', 'year', 'month'),
        CheckConstraint('unit_value >= 0', name='chk_unit_value_non_negative'),
    )

    def to_record(self) -> PayerRateRecord:
        return PayerRateRecord(
            payer_name=self.payer_name,
            consult_type=self.consult_type,
            month=self.month,
            year=self.year,
            unit_value=Decimal(self.unit_value),
        )
