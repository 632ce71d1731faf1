"""
Hourly rate config model: clinical-shift hour-band rates and the guaranteed
minimum per worked hour, one row per period.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import TIMESTAMP, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base
from services.settlement_types import HourlyRates


class HourlyRateConfig(Base):
    """Band rates for one period. Clinical shifts cannot be settled without it."""

    __tablename__ = "hourly_rate_configs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the config."""

    month: Mapped[int] = mapped_column(Integer)
    """Period month (1-12)."""

    year: Mapped[int] = mapped_column(Integer)
    """Period year."""

    weekday_8_16: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Rate per weekday hour between 08:00 and 16:00."""

    weekday_16_8: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Rate per weekday hour between 16:00 and 08:00."""

    weekend: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Rate per weekend or holiday hour."""

    weekend_night: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Rate per weekend night hour."""

    guaranteed_min_per_hour: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    """Floor paid per worked (weekend + weekend night) hour."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the config was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the config was last updated."""

    __table_args__ = (
        UniqueConstraint('month', 'year', name='uq_hourly_rate_configs_period'),
    )

    def to_rates(self) -> HourlyRates:
        return HourlyRates(
            weekday_8_16=Decimal(self.weekday_8_16),
            weekday_16_8=Decimal(self.weekday_16_8),
            weekend=Decimal(self.weekend),
            weekend_night=Decimal(self.weekend_night),
            guaranteed_min_per_hour=Decimal(self.guaranteed_min_per_hour),
        )
