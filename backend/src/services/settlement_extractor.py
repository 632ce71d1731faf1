"""
Spreadsheet row extractor for settlement calculations.

Turns raw spreadsheet rows (header -> cell mappings) into NormalizedRow and
HoursRow records, handling header spelling variants and malformed cells
gracefully. Bad cells become None; nothing here raises for row data.
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from datetime import date
from decimal import Decimal, InvalidOperation
import logging
import math
import re

from core.constants import MAX_VALID_YEAR, MIN_VALID_YEAR
from services.settlement_types import DateStatus, HoursRow, NormalizedRow
from utils.datetime_utils import parse_sheet_date, parse_sheet_time
from utils.name_utils import MIN_TOKEN_LENGTH, strip_accents

logger = logging.getLogger(__name__)

RawRow = Mapping[str, Any]

# Header variants per field, most specific first
DATE_HEADERS = [
    'Fecha Visita', 'Fecha', 'Fecha de visita', 'Fecha de atención',
    'Fecha Atención', 'Fecha de la consulta', 'Fecha Consulta', 'Date',
]
TIME_HEADERS = [
    'Hora inicio visita', 'Hora inicio', 'Hora de inicio', 'Hora', 'Horario', 'Time',
]
PATIENT_HEADERS = [
    'Paciente', 'Nombre paciente', 'Nombre del paciente', 'Patient',
]
PAYER_HEADERS = [
    'Cliente', 'Obra Social', 'ObraSocial', 'Obra Social / Cliente', 'Payer',
]
DOCTOR_HEADERS = [
    'Responsable', 'Responsable de admisión', 'Médico', 'Médico responsable',
    'Profesional', 'Doctor',
]
SCHEDULE_GROUP_HEADERS = ['Grupo agenda', 'Schedule group']
VISIT_TYPE_HEADERS = ['Tipo visita', 'Tipo de visita', 'Tipo de consulta', 'Visit type']
DURATION_HEADERS = ['Duración', 'Duracion', 'Tiempo', 'Minutos', 'Duration']
BILLED_GROSS_HEADERS = ['Total Bruto', 'Monto Facturado', 'Importe', 'Monto', 'Total']

HOURS_DOCTOR_HEADERS = ['Médico', 'Responsable', 'Profesional', 'Doctor']
WEEKDAY_8_16_HEADERS = [
    'Horas semanales de 8 a 16 hs', 'Horas semanales de 8 a 16',
    '8 a 16', '8-16', 'Semanal 8 a 16', 'Semanal 8-16',
]
WEEKDAY_16_8_HEADERS = [
    'Horas semanales de 16 a 8 hs', 'Horas semanales de 16 a 8',
    '16 a 8', '16-8', 'Semanal 16 a 8', 'Semanal 16-8',
]
WEEKEND_HEADERS = [
    'Horas fin de semana / feriados', 'Horas fin de semana',
    'Fin de semana', 'Weekend', 'Horas weekend',
]
WEEKEND_NIGHT_HEADERS = [
    'Horas nocturnas fin de semana', 'Horas nocturnas fin de semana /',
    'Noche finde', 'Weekend night', 'Horas noche finde',
]

_NUMBER = re.compile(r"-?[\d.,]+")
_SPACES = re.compile(r"\s+")


def normalize_header(header: str) -> str:
    """Lower-case, strip accents and collapse whitespace in a column header."""
    return _SPACES.sub(" ", strip_accents(str(header).lower())).strip()


def _is_blank(value: Any) -> bool:
    """None, whitespace-only strings, and NaN or infinite numbers count as empty cells."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, Decimal):
        return not value.is_finite()
    return False


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a numeric cell.

    Accepts numbers, and strings with an optional "$", thousands separators
    and either a decimal point or a decimal comma ("1.234,50", "1,234.50",
    "20,5", "$ 1500").

    Returns:
        The value as a Decimal, or None for blank or non-numeric cells
    """
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    match = _NUMBER.search(str(value).replace("$", "").replace(" ", ""))
    if not match:
        return None
    text = match.group(0)

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".") if text.count(",") == 1 else text.replace(",", "")
    elif text.count(".") > 1:
        text = text.replace(".", "")

    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def classify_date(value: Any) -> Tuple[Optional[date], DateStatus]:
    """
    Parse a date cell and classify it.

    Returns:
        (date, "ok") for a usable date, (None, "missing") for blank or
        unparseable cells, (date, "invalid") when the year is out of range
    """
    if _is_blank(value):
        return None, "missing"
    parsed = parse_sheet_date(value)
    if parsed is None:
        return None, "missing"
    if not MIN_VALID_YEAR <= parsed.year <= MAX_VALID_YEAR:
        return parsed, "invalid"
    return parsed, "ok"


class HeaderIndex:
    """
    Resolves field header variants against one sheet's headers.

    Lookup strategies, first one that finds any header wins:
    1. Exact case-insensitive match
    2. Match after accent normalization
    3. Every significant keyword of a variant contained in the header
    """

    def __init__(self, headers: Sequence[str]):
        self.headers: List[str] = [h for h in headers if isinstance(h, str)]
        self._cache: Dict[Tuple[str, ...], List[str]] = {}

    def columns_for(self, variants: Sequence[str]) -> List[str]:
        """Matching headers for a field, in priority order."""
        key = tuple(variants)
        if key not in self._cache:
            self._cache[key] = self._resolve(variants)
        return self._cache[key]

    def _resolve(self, variants: Sequence[str]) -> List[str]:
        lowered = [(h, h.lower().strip()) for h in self.headers]
        exact = [
            header
            for variant in variants
            for header, low in lowered
            if low == variant.lower().strip()
        ]
        if exact:
            return _unique(exact)

        normalized = [(h, normalize_header(h)) for h in self.headers]
        by_normalization = [
            header
            for variant in variants
            for header, norm in normalized
            if norm == normalize_header(variant)
        ]
        if by_normalization:
            return _unique(by_normalization)

        by_keywords: List[str] = []
        for variant in variants:
            keywords = [w for w in normalize_header(variant).split(" ") if len(w) >= MIN_TOKEN_LENGTH]
            if not keywords:
                continue
            by_keywords.extend(
                header for header, norm in normalized
                if all(keyword in norm for keyword in keywords)
            )
        return _unique(by_keywords)

    def value(self, row: RawRow, variants: Sequence[str]) -> Any:
        """First non-blank cell among the field's matching columns, or None."""
        for column in self.columns_for(variants):
            cell = row.get(column)
            if not _is_blank(cell):
                return cell.strip() if isinstance(cell, str) else cell
        return None


def _unique(headers: List[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for header in headers:
        seen.setdefault(header, None)
    return list(seen)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


class SettlementRowExtractor:
    """
    Extracts normalized rows from raw spreadsheet rows.

    Handles:
    - Header spelling variants (Spanish/English, accents, casing)
    - Excel serial dates, day-first text dates, ISO dates
    - Text, fractional-day and native times
    - Currency strings with "$" and decimal commas
    """

    @staticmethod
    def _headers(rows: Sequence[RawRow]) -> List[str]:
        headers: Dict[str, None] = {}
        for row in rows:
            for header in row.keys():
                headers.setdefault(header, None)
        return list(headers)

    @staticmethod
    def extract_rows(rows: Sequence[RawRow]) -> List[NormalizedRow]:
        """
        Normalize consultation rows.

        Args:
            rows: Raw rows in sheet order

        Returns:
            One NormalizedRow per input row; source_row_index is the 0-based position
        """
        index = HeaderIndex(SettlementRowExtractor._headers(rows))
        normalized: List[NormalizedRow] = []

        for position, row in enumerate(rows):
            visit_date, date_status = classify_date(index.value(row, DATE_HEADERS))
            schedule_group = index.value(row, SCHEDULE_GROUP_HEADERS)
            visit_type = index.value(row, VISIT_TYPE_HEADERS)
            normalized.append(NormalizedRow(
                source_row_index=position,
                doctor_name=_text(index.value(row, DOCTOR_HEADERS)),
                patient=_text(index.value(row, PATIENT_HEADERS)),
                payer=_text(index.value(row, PAYER_HEADERS)),
                visit_date=visit_date,
                visit_time=parse_sheet_time(index.value(row, TIME_HEADERS)),
                date_status=date_status,
                duration=parse_decimal(index.value(row, DURATION_HEADERS)),
                schedule_group=_text(schedule_group) if schedule_group is not None else None,
                visit_type=_text(visit_type) if visit_type is not None else None,
                billed_gross=parse_decimal(index.value(row, BILLED_GROSS_HEADERS)),
            ))

        logger.debug(f"Normalized {len(normalized)} consultation rows")
        return normalized

    @staticmethod
    def extract_hours_rows(rows: Sequence[RawRow]) -> List[HoursRow]:
        """
        Normalize clinical-shift hour-band rows.

        Rows without a doctor name are skipped; blank band cells count as 0 hours.
        """
        index = HeaderIndex(SettlementRowExtractor._headers(rows))
        hours_rows: List[HoursRow] = []

        def hours(row: RawRow, variants: Sequence[str]) -> Decimal:
            value = parse_decimal(index.value(row, variants))
            return value if value is not None and value > 0 else Decimal("0")

        for position, row in enumerate(rows):
            doctor_name = _text(index.value(row, HOURS_DOCTOR_HEADERS))
            if not doctor_name:
                logger.debug(f"Skipping hours row {position}: no doctor name")
                continue
            hours_rows.append(HoursRow(
                source_row_index=position,
                doctor_name=doctor_name,
                weekday_8_16_hours=hours(row, WEEKDAY_8_16_HEADERS),
                weekday_16_8_hours=hours(row, WEEKDAY_16_8_HEADERS),
                weekend_hours=hours(row, WEEKEND_HEADERS),
                weekend_night_hours=hours(row, WEEKEND_NIGHT_HEADERS),
            ))

        logger.debug(f"Normalized {len(hours_rows)} hour-band rows")
        return hours_rows
