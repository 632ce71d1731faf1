"""
Duplicate detection for settlement line items.

Two policies exist:
- Exact tuple: a later line with the same (doctor, patient, date, time) as an
  earlier one is dropped.
- First-come-first-served (admissions): lines are grouped by (patient, date)
  regardless of doctor; the first is the admission of record and later ones
  stay in the output flagged as duplicates, with no amount.

Both operate in original row order and are scoped to a single batch.
"""
import logging
from datetime import date, time
from decimal import Decimal
from typing import Dict, Hashable, List, Optional, Tuple

from services import settlement_warnings as codes
from services.settlement_types import LineItem
from services.settlement_warnings import WarningCollector
from utils.name_utils import normalize_name

logger = logging.getLogger(__name__)


class Deduplicator:
    """Base class: split line items into kept and dropped."""

    def apply(
        self,
        items: List[LineItem],
        warnings: WarningCollector
    ) -> Tuple[List[LineItem], List[LineItem]]:
        raise NotImplementedError


class ExactTupleDeduplicator(Deduplicator):
    """Drops later occurrences of an identical (doctor, patient, date, time) tuple."""

    @staticmethod
    def key(item: LineItem) -> Tuple[str, str, Optional[date], Optional[time]]:
        return (
            item['doctor_key'],
            normalize_name(item['patient']),
            item['visit_date'],
            item['visit_time'],
        )

    def apply(
        self,
        items: List[LineItem],
        warnings: WarningCollector
    ) -> Tuple[List[LineItem], List[LineItem]]:
        first_seen: Dict[Hashable, int] = {}
        kept: List[LineItem] = []
        dropped: List[LineItem] = []

        for item in sorted(items, key=lambda i: i['source_row_index']):
            key = self.key(item)
            if key in first_seen:
                dropped.append(item)
                warnings.warn(
                    codes.DUPLICATE,
                    f"Row {item['source_row_index']} duplicates row {first_seen[key]}",
                    item['source_row_index'],
                    kept_row=first_seen[key],
                )
                continue
            first_seen[key] = item['source_row_index']
            kept.append(item)

        if dropped:
            logger.info(f"Dropped {len(dropped)} exact duplicate rows")
        return kept, dropped


class AdmissionDeduplicator(Deduplicator):
    """
    First-come-first-served admissions.

    Rows without a patient name are never grouped. Duplicates are returned
    among the kept items (flagged), so the dropped list is always empty.
    """

    @staticmethod
    def key(item: LineItem) -> Optional[Tuple[str, Optional[date]]]:
        patient = normalize_name(item['patient'])
        if not patient:
            return None
        return patient, item['visit_date']

    def apply(
        self,
        items: List[LineItem],
        warnings: WarningCollector
    ) -> Tuple[List[LineItem], List[LineItem]]:
        of_record: Dict[Hashable, int] = {}
        result: List[LineItem] = []

        for item in sorted(items, key=lambda i: i['source_row_index']):
            key = self.key(item)
            if key is None or key not in of_record:
                if key is not None:
                    of_record[key] = item['source_row_index']
                result.append(item)
                continue

            flagged = LineItem(**item)
            flagged['is_duplicate'] = True
            flagged['review_state'] = "duplicate"
            flagged['computed_amount'] = Decimal("0")
            result.append(flagged)
            warnings.warn(
                codes.FCFS_DUPLICATE,
                f"Row {item['source_row_index']} repeats the admission in row {of_record[key]}",
                item['source_row_index'],
                kept_row=of_record[key],
            )

        flagged_count = sum(1 for item in result if item['is_duplicate'])
        if flagged_count:
            logger.info(f"Flagged {flagged_count} duplicate admissions for review")
        return result, []
