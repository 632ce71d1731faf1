"""
Doctor group config model: the clinical-shift tier (share of billing) assigned
to a doctor for one period.
"""

from datetime import datetime

from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base
from services.settlement_types import DoctorGroupRecord


class DoctorGroupConfig(Base):
    """Tier assignment: TIER_A (70% share) or TIER_B (40% share)."""

    __tablename__ = "doctor_group_configs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the assignment."""

    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id", ondelete="CASCADE"))
    """Reference to the doctor."""

    month: Mapped[int] = mapped_column(Integer)
    """Period month (1-12)."""

    year: Mapped[int] = mapped_column(Integer)
    """Period year."""

    group_type: Mapped[str] = mapped_column(String(20))
    """Tier code ("TIER_A" or "TIER_B")."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the assignment was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the assignment was last updated."""

    doctor = relationship("Doctor")
    """Relationship to the Doctor entity."""

    __table_args__ = (
        UniqueConstraint('doctor_id', 'month', 'year', name='uq_doctor_group_configs_doctor_period'),
    )

    def to_record(self) -> DoctorGroupRecord:
        return DoctorGroupRecord(
            doctor_id=self.doctor_id,
            month=self.month,
            year=self.year,
            group_type=self.group_type,
        )
