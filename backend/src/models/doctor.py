"""
Doctor model representing the roster of medical staff that can be settled.

The roster is reference data: settlement runs read it as an immutable snapshot.
A doctor without a provincial license is a resident.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, TIMESTAMP, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import MAX_STRING_LENGTH
from core.database import Base
from services.settlement_types import DoctorRecord


class Doctor(Base):
    """
    Doctor entity in the settlement roster.

    Spreadsheet rows reference doctors by free-text name only; the name resolver
    maps those names onto this table.
    """

    __tablename__ = "doctors"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the doctor."""

    full_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    """Full name as it should appear on settlements (e.g., "PEREZ, Juan Carlos")."""

    provincial_license: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Provincial license number. NULL means the doctor is a resident."""

    tax_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    """Tax identification number (CUIT)."""

    specialty: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Specialty the doctor usually settles under (informational)."""

    active: Mapped[bool] = mapped_column(Boolean, default=True)
    """Inactive doctors are left out of roster snapshots."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the doctor was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the doctor was last updated."""

    __table_args__ = (
        Index('idx_doctors_active', 'active'),
    )

    def to_record(self) -> DoctorRecord:
        """Immutable snapshot used by the settlement engine."""
        return DoctorRecord(
            id=self.id,
            full_name=self.full_name,
            provincial_license=self.provincial_license,
            tax_id=self.tax_id,
            specialty=self.specialty,
            active=self.active,
        )

    def __repr__(self) -> str:
        return f"<Doctor(id={self.id}, full_name='{self.full_name}')>"
