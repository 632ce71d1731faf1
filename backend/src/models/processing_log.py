"""
Processing log model: an audit entry for every successful batch run.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_STRING_LENGTH
from core.database import Base


class ProcessingLog(Base):
    """One entry per successful (re)processing of a batch."""

    __tablename__ = "processing_logs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the log entry."""

    batch_id: Mapped[int] = mapped_column(ForeignKey("settlement_batches.id", ondelete="CASCADE"))
    """Reference to the processed batch."""

    action: Mapped[str] = mapped_column(String(50))
    """What happened ("created" for the first run, "reprocessed" afterwards)."""

    file_name: Mapped[Optional[str]] = mapped_column(String(MAX_STRING_LENGTH), nullable=True)
    """Name of the ingested spreadsheet."""

    row_count: Mapped[int] = mapped_column(Integer, default=0)
    """Number of input rows."""

    line_count: Mapped[int] = mapped_column(Integer, default=0)
    """Number of line items produced."""

    excluded_count: Mapped[int] = mapped_column(Integer, default=0)
    """Number of rows excluded."""

    warning_count: Mapped[int] = mapped_column(Integer, default=0)
    """Number of warnings raised."""

    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    """
    Run summary. Schema:

    {
        "warning_codes": {str: int},     # Warning code -> occurrences
        "exclusion_reasons": {str: int}, # Exclusion reason -> occurrences
        "net_amount": str                # Batch net as a decimal string
    }
    """

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the entry was created."""

    batch = relationship("SettlementBatch", back_populates="processing_logs")
    """Relationship to the SettlementBatch entity."""
