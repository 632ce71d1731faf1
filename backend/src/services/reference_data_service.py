"""
Service for managing the reference data settlement runs read.

Covers the doctor roster (including spreadsheet roster imports), payer rates,
payer additives, clinical-shift tiers and hour-band rates. Methods flush but
never commit; the caller owns the transaction.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from core.constants import MAX_STRING_LENGTH, TIER_SHARE_PERCENT
from models.additional_config import AdditionalConfig
from models.doctor import Doctor
from models.doctor_group_config import DoctorGroupConfig
from models.hourly_rate_config import HourlyRateConfig
from models.payer_rate import PayerRate
from services.settlement_extractor import HeaderIndex
from services.settlement_types import HourlyRates, Period, Specialty
from utils.name_utils import normalize_name

logger = logging.getLogger(__name__)

ROSTER_NAME_HEADERS = ['Nombre', 'Name']
ROSTER_LICENSE_HEADERS = [
    'Mat. provinc', 'Mat. Provincial', 'Matricula Provincial', 'Matrícula Provincial',
    'Matricula', 'Matrícula', 'License',
]
ROSTER_TAX_ID_HEADERS = ['CUIT', 'Tax ID']
ROSTER_SPECIALTY_HEADERS = ['Especialidad', 'Specialty']
ROSTER_PROFILE_HEADERS = ['Perfil', 'Profile']
ROSTER_ACTIVE_HEADERS = ['Activo', 'Estado', 'Active']

TRUTHY_CELLS = frozenset({"si", "sí", "yes", "true", "1"})
DOCTOR_FIELDS = ("full_name", "provincial_license", "tax_id", "specialty", "active")

_NON_DIGITS = re.compile(r"\D")


@dataclass
class RosterImportResult:
    """Outcome of a roster import. Errors are "Row N: ..." with N the sheet row (header is row 1)."""
    created: List[Doctor] = field(default_factory=list)
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _parse_active(value: Any) -> bool:
    """Blank cells mean active; otherwise only si/sí/yes/true/1 (or a true boolean) do."""
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return _cell_text(value).lower() in TRUTHY_CELLS


def _require_non_negative(name: str, value: Decimal) -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0")


class ReferenceDataService:
    """Service for reference data operations."""

    # Doctors

    @staticmethod
    def list_doctors(db: Session, active_only: bool = False) -> List[Doctor]:
        """List the roster ordered by id."""
        query = db.query(Doctor)
        if active_only:
            query = query.filter(Doctor.active == True)
        return query.order_by(Doctor.id).all()

    @staticmethod
    def get_doctor_by_id(db: Session, doctor_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.id == doctor_id).first()

    @staticmethod
    def create_doctor(
        db: Session,
        full_name: str,
        provincial_license: Optional[str] = None,
        tax_id: Optional[str] = None,
        specialty: Optional[str] = None,
        active: bool = True
    ) -> Doctor:
        """
        Add a doctor to the roster.

        Raises:
            ValueError: If full_name is blank
        """
        if not full_name or not full_name.strip():
            raise ValueError("full_name is required")

        doctor = Doctor(
            full_name=full_name.strip(),
            provincial_license=(provincial_license or "").strip() or None,
            tax_id=(tax_id or "").strip() or None,
            specialty=(specialty or "").strip() or None,
            active=active,
        )
        db.add(doctor)
        db.flush()
        logger.info(f"Created doctor {doctor.id} ({doctor.full_name})")
        return doctor

    @staticmethod
    def update_doctor(db: Session, doctor_id: int, changes: Mapping[str, Any]) -> Doctor:
        """
        Update a roster entry.

        Only the keys present in ``changes`` are written, so passing
        ``provincial_license=None`` turns the doctor into a resident.

        Raises:
            ValueError: If the doctor is not found, a field is unknown or full_name is blank
        """
        doctor = ReferenceDataService.get_doctor_by_id(db, doctor_id)
        if not doctor:
            raise ValueError("Doctor not found")

        unknown = set(changes) - set(DOCTOR_FIELDS)
        if unknown:
            raise ValueError(f"Unknown doctor fields: {', '.join(sorted(unknown))}")
        if "full_name" in changes and not (changes["full_name"] or "").strip():
            raise ValueError("full_name is required")
        if "active" in changes and changes["active"] is None:
            raise ValueError("active must be true or false")

        for name, value in changes.items():
            if isinstance(value, str):
                value = value.strip() or None
            setattr(doctor, name, value)

        db.flush()
        return doctor

    @staticmethod
    def import_roster(db: Session, rows: Sequence[Mapping[str, Any]]) -> RosterImportResult:
        """
        Create doctors from roster spreadsheet rows.

        Each row needs a name, a specialty and a provincial license or a CUIT.
        Rows whose profile mentions "residente" are imported without a license.
        Rows naming a doctor already on the roster (or earlier in the sheet)
        are skipped. Invalid rows are reported and do not stop the import.
        """
        result = RosterImportResult()
        index = HeaderIndex([header for row in rows for header in row.keys()])
        known = {normalize_name(doctor.full_name) for doctor in db.query(Doctor).all()}

        for i, row in enumerate(rows):
            sheet_row = i + 2
            name = _cell_text(index.value(row, ROSTER_NAME_HEADERS))
            license_number = _cell_text(index.value(row, ROSTER_LICENSE_HEADERS))[:50]
            tax_id = _NON_DIGITS.sub("", _cell_text(index.value(row, ROSTER_TAX_ID_HEADERS)))[:20]
            specialty = _cell_text(index.value(row, ROSTER_SPECIALTY_HEADERS))[:50]
            profile = _cell_text(index.value(row, ROSTER_PROFILE_HEADERS)).lower()

            if not name:
                result.errors.append(f"Row {sheet_row}: name is required")
                continue
            if not license_number and not tax_id:
                result.errors.append(f"Row {sheet_row}: a provincial license or CUIT is required")
                continue
            if not specialty:
                result.errors.append(f"Row {sheet_row}: specialty is required")
                continue

            key = normalize_name(name)
            if key in known:
                result.skipped += 1
                continue
            known.add(key)

            is_resident = "resident" in profile
            doctor = ReferenceDataService.create_doctor(
                db,
                full_name=name[:MAX_STRING_LENGTH],
                provincial_license=None if is_resident else license_number,
                tax_id=tax_id,
                specialty=specialty,
                active=_parse_active(index.value(row, ROSTER_ACTIVE_HEADERS)),
            )
            result.created.append(doctor)

        logger.info(
            f"Roster import: {len(result.created)} created, {result.skipped} skipped, "
            f"{len(result.errors)} rejected"
        )
        return result

    # Payer rates

    @staticmethod
    def list_payer_rates(db: Session, period: Period, consult_type: Optional[str] = None) -> List[PayerRate]:
        query = db.query(PayerRate).filter(
            PayerRate.month == period.month,
            PayerRate.year == period.year
        )
        if consult_type:
            query = query.filter(PayerRate.consult_type == consult_type)
        return query.order_by(PayerRate.consult_type, PayerRate.payer_name).all()

    @staticmethod
    def upsert_payer_rate(
        db: Session,
        payer_name: str,
        consult_type: str,
        period: Period,
        unit_value: Decimal
    ) -> PayerRate:
        """
        Set the unit value of a payer for one consult type and period.

        Raises:
            ValueError: If a name is blank or unit_value is negative
        """
        if not payer_name or not payer_name.strip():
            raise ValueError("payer_name is required")
        if not consult_type or not consult_type.strip():
            raise ValueError("consult_type is required")
        _require_non_negative("unit_value", unit_value)

        rate = db.query(PayerRate).filter(
            PayerRate.payer_name == payer_name.strip(),
            PayerRate.consult_type == consult_type.strip(),
            PayerRate.month == period.month,
            PayerRate.year == period.year
        ).first()
        if rate:
            rate.unit_value = unit_value
        else:
            rate = PayerRate(
                payer_name=payer_name.strip(),
                consult_type=consult_type.strip(),
                month=period.month,
                year=period.year,
                unit_value=unit_value,
            )
            db.add(rate)
        db.flush()
        return rate

    @staticmethod
    def delete_payer_rate(db: Session, rate_id: int) -> None:
        """
        Raises:
            ValueError: If the rate is not found
        """
        rate = db.query(PayerRate).filter(PayerRate.id == rate_id).first()
        if not rate:
            raise ValueError("Payer rate not found")
        db.delete(rate)
        db.flush()

    # Payer additives

    @staticmethod
    def list_additional_configs(db: Session, specialty: Specialty, period: Period) -> List[AdditionalConfig]:
        return db.query(AdditionalConfig).filter(
            AdditionalConfig.specialty == specialty.value,
            AdditionalConfig.month == period.month,
            AdditionalConfig.year == period.year
        ).order_by(AdditionalConfig.id).all()

    @staticmethod
    def get_additional_config_by_id(db: Session, config_id: int) -> Optional[AdditionalConfig]:
        return db.query(AdditionalConfig).filter(AdditionalConfig.id == config_id).first()

    @staticmethod
    def _validate_additive(base_amount: Optional[Decimal], doctor_share_percent: Optional[Decimal]) -> None:
        if base_amount is not None:
            _require_non_negative("base_amount", base_amount)
        if doctor_share_percent is not None and not Decimal("0") <= doctor_share_percent <= Decimal("100"):
            raise ValueError("doctor_share_percent must be between 0 and 100")

    @staticmethod
    def create_additional_config(
        db: Session,
        payer_name: str,
        specialty: Specialty,
        period: Period,
        base_amount: Decimal,
        doctor_share_percent: Decimal,
        applies: bool = True
    ) -> AdditionalConfig:
        """
        Add a payer additive for a specialty and period.

        Raises:
            ValueError: If payer_name is blank, base_amount is negative or the share is outside 0-100
        """
        if not payer_name or not payer_name.strip():
            raise ValueError("payer_name is required")
        ReferenceDataService._validate_additive(base_amount, doctor_share_percent)

        config = AdditionalConfig(
            payer_name=payer_name.strip(),
            specialty=specialty.value,
            month=period.month,
            year=period.year,
            applies=applies,
            base_amount=base_amount,
            doctor_share_percent=doctor_share_percent,
        )
        db.add(config)
        db.flush()
        return config

    @staticmethod
    def update_additional_config(
        db: Session,
        config_id: int,
        payer_name: Optional[str] = None,
        base_amount: Optional[Decimal] = None,
        doctor_share_percent: Optional[Decimal] = None,
        applies: Optional[bool] = None
    ) -> AdditionalConfig:
        """
        Update a payer additive.

        Raises:
            ValueError: If the config is not found or a value is out of range
        """
        config = ReferenceDataService.get_additional_config_by_id(db, config_id)
        if not config:
            raise ValueError("Additional config not found")
        ReferenceDataService._validate_additive(base_amount, doctor_share_percent)

        if payer_name is not None:
            if not payer_name.strip():
                raise ValueError("payer_name is required")
            config.payer_name = payer_name.strip()
        if base_amount is not None:
            config.base_amount = base_amount
        if doctor_share_percent is not None:
            config.doctor_share_percent = doctor_share_percent
        if applies is not None:
            config.applies = applies

        db.flush()
        return config

    @staticmethod
    def delete_additional_config(db: Session, config_id: int) -> None:
        config = ReferenceDataService.get_additional_config_by_id(db, config_id)
        if not config:
            raise ValueError("Additional config not found")
        db.delete(config)
        db.flush()

    # Clinical-shift tiers

    @staticmethod
    def list_doctor_groups(db: Session, period: Period) -> List[DoctorGroupConfig]:
        return db.query(DoctorGroupConfig).filter(
            DoctorGroupConfig.month == period.month,
            DoctorGroupConfig.year == period.year
        ).order_by(DoctorGroupConfig.doctor_id).all()

    @staticmethod
    def upsert_doctor_group(db: Session, doctor_id: int, period: Period, group_type: str) -> DoctorGroupConfig:
        """
        Assign a doctor's tier for one period.

        Raises:
            ValueError: If the doctor is not found or the tier is unknown
        """
        if group_type not in TIER_SHARE_PERCENT:
            valid = ", ".join(sorted(TIER_SHARE_PERCENT))
            raise ValueError(f"Unknown group_type '{group_type}'. Expected one of: {valid}")
        if not ReferenceDataService.get_doctor_by_id(db, doctor_id):
            raise ValueError("Doctor not found")

        group = db.query(DoctorGroupConfig).filter(
            DoctorGroupConfig.doctor_id == doctor_id,
            DoctorGroupConfig.month == period.month,
            DoctorGroupConfig.year == period.year
        ).first()
        if group:
            group.group_type = group_type
        else:
            group = DoctorGroupConfig(
                doctor_id=doctor_id,
                month=period.month,
                year=period.year,
                group_type=group_type,
            )
            db.add(group)
        db.flush()
        return group

    # Hour-band rates

    @staticmethod
    def get_hourly_config(db: Session, period: Period) -> Optional[HourlyRateConfig]:
        return db.query(HourlyRateConfig).filter(
            HourlyRateConfig.month == period.month,
            HourlyRateConfig.year == period.year
        ).first()

    @staticmethod
    def upsert_hourly_config(db: Session, period: Period, rates: HourlyRates) -> HourlyRateConfig:
        """
        Set the hour-band rates and guaranteed minimum for one period.

        Raises:
            ValueError: If any rate is negative
        """
        values: Dict[str, Decimal] = {
            "weekday_8_16": rates.weekday_8_16,
            "weekday_16_8": rates.weekday_16_8,
            "weekend": rates.weekend,
            "weekend_night": rates.weekend_night,
            "guaranteed_min_per_hour": rates.guaranteed_min_per_hour,
        }
        for name, value in values.items():
            _require_non_negative(name, value)

        config = ReferenceDataService.get_hourly_config(db, period)
        if config is None:
            config = HourlyRateConfig(month=period.month, year=period.year, **values)
            db.add(config)
        else:
            for name, value in values.items():
                setattr(config, name, value)
        db.flush()
        return config
