"""
Warning collection for a single settlement run.

Collects non-blocking row-level issues and fatal batch errors. One collector
is created per engine invocation, so nothing leaks between batches processed
in the same process.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from services.settlement_types import SettlementWarning

logger = logging.getLogger(__name__)

# Row-level warning codes
UNRESOLVED_DOCTOR = "unresolved_doctor"
UNRESOLVED_RATE = "unresolved_rate"
MISSING_DATE = "missing_date"
INVALID_DATE = "invalid_date"
DEFAULT_DATE_SUBSTITUTED = "default_date_substituted"
MISSING_TIME = "missing_time"
MISSING_DURATION = "missing_duration"
ZERO_DURATION = "zero_duration"
SCHEDULE_GROUP_MISMATCH = "schedule_group_mismatch"
SELF_PAY_NOT_BILLABLE = "self_pay_not_billable"
DUPLICATE = "duplicate"
FCFS_DUPLICATE = "fcfs_duplicate"
MISSING_TIER = "missing_tier"

# Advisory codes (amount changed, row kept)
TRAINING_HOURS_EXEMPT = "training_hours_exempt"
GUARANTEED_MINIMUM_TOP_UP = "guaranteed_minimum_top_up"

# Batch-level error codes
NO_PROCESSABLE_ROWS = "no_processable_rows"
MISSING_HOURLY_CONFIG = "missing_hourly_config"


class WarningCollector:
    """
    Accumulates warnings and errors for one batch.

    Issues about a repeated subject (the same unresolved doctor name or the
    same unconfigured payer) are reported once, with the first offending row
    as row_index and every offending row listed in details["rows"].
    """

    def __init__(self) -> None:
        self._warnings: List[SettlementWarning] = []
        self._errors: List[SettlementWarning] = []
        self._by_subject: Dict[Tuple[str, str], SettlementWarning] = {}

    def warn(
        self,
        code: str,
        message: str,
        row_index: Optional[int] = None,
        **details: Any
    ) -> SettlementWarning:
        """Record a row-level warning."""
        warning = SettlementWarning(
            code=code,
            message=message,
            row_index=row_index,
            details=dict(details)
        )
        self._warnings.append(warning)
        return warning

    def warn_subject(
        self,
        code: str,
        subject: str,
        message: str,
        row_index: Optional[int]
    ) -> None:
        """Record a warning once per distinct (code, subject), collecting row indexes."""
        key = (code, subject)
        existing = self._by_subject.get(key)
        if existing is not None:
            if row_index is not None:
                existing['details']['rows'].append(row_index)
            return

        logger.warning(message)
        rows: List[int] = [row_index] if row_index is not None else []
        self._by_subject[key] = self.warn(code, message, row_index, subject=subject, rows=rows)

    def error(self, code: str, message: str, **details: Any) -> None:
        """Record a fatal batch-level error."""
        logger.error(f"Settlement batch error [{code}]: {message}")
        self._errors.append(SettlementWarning(
            code=code,
            message=message,
            row_index=None,
            details=dict(details)
        ))

    @property
    def warnings(self) -> List[SettlementWarning]:
        return list(self._warnings)

    @property
    def errors(self) -> List[SettlementWarning]:
        return list(self._errors)
