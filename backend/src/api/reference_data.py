"""
Reference data API endpoints.

Manages the roster and the per-period configuration settlement runs read:
payer rates, payer additives, clinical-shift tiers and hour-band rates.
Changes only affect batches processed afterwards.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    AdditionalConfigListResponse,
    AdditionalConfigResponse,
    DoctorGroupListResponse,
    DoctorGroupResponse,
    DoctorListResponse,
    DoctorResponse,
    HourlyRateConfigResponse,
    PayerRateListResponse,
    PayerRateResponse,
    RosterImportResponse,
    money,
)
from core.constants import MAX_STRING_LENGTH
from core.database import get_db
from models.additional_config import AdditionalConfig
from models.doctor import Doctor
from models.doctor_group_config import DoctorGroupConfig
from models.hourly_rate_config import HourlyRateConfig
from models.payer_rate import PayerRate
from services.reference_data_service import ReferenceDataService
from services.settlement_types import HourlyRates, Period, Specialty

logger = logging.getLogger(__name__)

router = APIRouter()


class DoctorCreateRequest(BaseModel):
    """Request model for adding a doctor to the roster."""
    full_name: str = Field(..., max_length=MAX_STRING_LENGTH)
    provincial_license: Optional[str] = Field(None, max_length=50)  # Omit for residents
    tax_id: Optional[str] = Field(None, max_length=20)
    specialty: Optional[str] = Field(None, max_length=50)
    active: bool = True


class DoctorUpdateRequest(BaseModel):
    """Request model for updating a doctor. Only fields sent are changed."""
    full_name: Optional[str] = Field(None, max_length=MAX_STRING_LENGTH)
    provincial_license: Optional[str] = Field(None, max_length=50)
    tax_id: Optional[str] = Field(None, max_length=20)
    specialty: Optional[str] = Field(None, max_length=50)
    active: Optional[bool] = None


class RosterImportRequest(BaseModel):
    """Roster spreadsheet rows as header -> cell mappings."""
    rows: List[Dict[str, Any]]


class PayerRateUpsertRequest(BaseModel):
    payer_name: str = Field(..., max_length=MAX_STRING_LENGTH)
    consult_type: str = Field(..., max_length=100)
    unit_value: Decimal = Field(..., ge=0)


class AdditionalConfigCreateRequest(BaseModel):
    """Request model for adding a payer additive."""
    payer_name: str = Field(..., max_length=MAX_STRING_LENGTH)
    base_amount: Decimal = Field(..., ge=0)
    doctor_share_percent: Decimal = Field(..., ge=0, le=100)
    applies: bool = True


class AdditionalConfigUpdateRequest(BaseModel):
    payer_name: Optional[str] = Field(None, max_length=MAX_STRING_LENGTH)
    base_amount: Optional[Decimal] = Field(None, ge=0)
    doctor_share_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    applies: Optional[bool] = None


class DoctorGroupUpsertRequest(BaseModel):
    group_type: str = Field(..., max_length=20)


class HourlyRateConfigRequest(BaseModel):
    """Hour-band rates and guaranteed minimum per worked hour."""
    weekday_8_16: Decimal = Field(..., ge=0)
    weekday_16_8: Decimal = Field(..., ge=0)
    weekend: Decimal = Field(..., ge=0)
    weekend_night: Decimal = Field(..., ge=0)
    guaranteed_min_per_hour: Decimal = Field(..., ge=0)


def _parse_period(year: int, month: int) -> Period:
    try:
        return Period(month=month, year=year)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _parse_specialty(specialty: str) -> Specialty:
    try:
        return Specialty.parse(specialty)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _doctor_response(doctor: Doctor) -> DoctorResponse:
    return DoctorResponse(
        id=doctor.id,
        full_name=doctor.full_name,
        provincial_license=doctor.provincial_license,
        tax_id=doctor.tax_id,
        specialty=doctor.specialty,
        active=doctor.active,
        is_resident=doctor.to_record().is_resident,
    )


def _rate_response(rate: PayerRate) -> PayerRateResponse:
    return PayerRateResponse(
        id=rate.id,
        payer_name=rate.payer_name,
        consult_type=rate.consult_type,
        month=rate.month,
        year=rate.year,
        unit_value=money(rate.unit_value),
    )


def _additional_response(config: AdditionalConfig) -> AdditionalConfigResponse:
    return AdditionalConfigResponse(
        id=config.id,
        payer_name=config.payer_name,
        specialty=config.specialty,
        month=config.month,
        year=config.year,
        applies=config.applies,
        base_amount=money(config.base_amount),
        doctor_share_percent=float(config.doctor_share_percent),
        doctor_amount=money(config.to_record().doctor_amount),
    )


def _group_response(group: DoctorGroupConfig) -> DoctorGroupResponse:
    return DoctorGroupResponse(
        id=group.id,
        doctor_id=group.doctor_id,
        month=group.month,
        year=group.year,
        group_type=group.group_type,
    )


def _hourly_response(config: HourlyRateConfig) -> HourlyRateConfigResponse:
    rates = config.to_rates()
    return HourlyRateConfigResponse(
        id=config.id,
        month=config.month,
        year=config.year,
        weekday_8_16=money(rates.weekday_8_16),
        weekday_16_8=money(rates.weekday_16_8),
        weekend=money(rates.weekend),
        weekend_night=money(rates.weekend_night),
        guaranteed_min_per_hour=money(rates.guaranteed_min_per_hour),
    )


def _failure(db: Session, action: str, e: Exception) -> HTTPException:
    db.rollback()
    logger.exception(f"Error trying to {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# Doctors

@router.get("/doctors", response_model=DoctorListResponse, summary="List the roster")
async def list_doctors(
    active_only: bool = Query(False),
    db: Session = Depends(get_db)
):
    doctors = ReferenceDataService.list_doctors(db, active_only=active_only)
    return DoctorListResponse(doctors=[_doctor_response(doctor) for doctor in doctors])


@router.post("/doctors", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED, summary="Add a doctor")
async def create_doctor(
    request: DoctorCreateRequest,
    db: Session = Depends(get_db)
):
    try:
        doctor = ReferenceDataService.create_doctor(
            db=db,
            full_name=request.full_name,
            provincial_license=request.provincial_license,
            tax_id=request.tax_id,
            specialty=request.specialty,
            active=request.active
        )
        db.commit()
        return _doctor_response(doctor)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise _failure(db, "create doctor", e)


@router.put("/doctors/{doctor_id}", response_model=DoctorResponse, summary="Update a doctor")
async def update_doctor(
    doctor_id: int,
    request: DoctorUpdateRequest,
    db: Session = Depends(get_db)
):
    """
    Update a roster entry.

    Sending ``provincial_license: null`` turns the doctor into a resident.
    """
    try:
        if not ReferenceDataService.get_doctor_by_id(db, doctor_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")

        doctor = ReferenceDataService.update_doctor(db, doctor_id, request.model_dump(exclude_unset=True))
        db.commit()
        return _doctor_response(doctor)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        raise _failure(db, "update doctor", e)


@router.post("/doctors/import", response_model=RosterImportResponse, summary="Import a roster spreadsheet")
async def import_roster(
    request: RosterImportRequest,
    db: Session = Depends(get_db)
):
    """
    Create doctors from roster rows.

    Invalid rows are reported in ``errors``; the valid ones are still imported.
    """
    if not request.rows:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Roster has no rows")

    try:
        result = ReferenceDataService.import_roster(db, request.rows)
        db.commit()
        return RosterImportResponse(
            created=[_doctor_response(doctor) for doctor in result.created],
            skipped=result.skipped,
            errors=result.errors,
        )

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise _failure(db, "import roster", e)


# Payer rates

@router.get("/payer-rates/{year}/{month}", response_model=PayerRateListResponse, summary="List payer rates")
async def list_payer_rates(
    year: int,
    month: int,
    consult_type: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    period = _parse_period(year, month)
    rates = ReferenceDataService.list_payer_rates(db, period, consult_type=consult_type)
    return PayerRateListResponse(rates=[_rate_response(rate) for rate in rates])


@router.put("/payer-rates/{year}/{month}", response_model=PayerRateResponse, summary="Set a payer rate")
async def upsert_payer_rate(
    year: int,
    month: int,
    request: PayerRateUpsertRequest,
    db: Session = Depends(get_db)
):
    """Create or replace the unit value of a (payer, consult type) in the period."""
    period = _parse_period(year, month)

    try:
        rate = ReferenceDataService.upsert_payer_rate(
            db=db,
            payer_name=request.payer_name,
            consult_type=request.consult_type,
            period=period,
            unit_value=request.unit_value
        )
        db.commit()
        return _rate_response(rate)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise _failure(db, "save payer rate", e)


@router.delete("/payer-rates/{rate_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a payer rate")
async def delete_payer_rate(
    rate_id: int,
    db: Session = Depends(get_db)
):
    try:
        ReferenceDataService.delete_payer_rate(db, rate_id)
        db.commit()

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise _failure(db, "delete payer rate", e)


# Payer additives

@router.get(
    "/additional-configs/{specialty}/{year}/{month}",
    response_model=AdditionalConfigListResponse,
    summary="List payer additives"
)
async def list_additional_configs(
    specialty: str,
    year: int,
    month: int,
    db: Session = Depends(get_db)
):
    batch_specialty = _parse_specialty(specialty)
    period = _parse_period(year, month)
    configs = ReferenceDataService.list_additional_configs(db, batch_specialty, period)
    return AdditionalConfigListResponse(configs=[_additional_response(config) for config in configs])


@router.post(
    "/additional-configs/{specialty}/{year}/{month}",
    response_model=AdditionalConfigResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a payer additive"
)
async def create_additional_config(
    specialty: str,
    year: int,
    month: int,
    request: AdditionalConfigCreateRequest,
    db: Session = Depends(get_db)
):
    batch_specialty = _parse_specialty(specialty)
    period = _parse_period(year, month)

    try:
        config = ReferenceDataService.create_additional_config(
            db=db,
            payer_name=request.payer_name,
            specialty=batch_specialty,
            period=period,
            base_amount=request.base_amount,
            doctor_share_percent=request.doctor_share_percent,
            applies=request.applies
        )
        db.commit()
        return _additional_response(config)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise _failure(db, "create additional config", e)


@router.put("/additional-configs/{config_id}", response_model=AdditionalConfigResponse, summary="Update a payer additive")
async def update_additional_config(
    config_id: int,
    request: AdditionalConfigUpdateRequest,
    db: Session = Depends(get_db)
):
    try:
        if not ReferenceDataService.get_additional_config_by_id(db, config_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Additional config not found")

        config = ReferenceDataService.update_additional_config(
            db=db,
            config_id=config_id,
            payer_name=request.payer_name,
            base_amount=request.base_amount,
            doctor_share_percent=request.doctor_share_percent,
            applies=request.applies
        )
        db.commit()
        return _additional_response(config)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        raise _failure(db, "update additional config", e)


@router.delete(
    "/additional-configs/{config_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a payer additive"
)
async def delete_additional_config(
    config_id: int,
    db: Session = Depends(get_db)
):
    try:
        ReferenceDataService.delete_additional_config(db, config_id)
        db.commit()

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        raise _failure(db, "delete additional config", e)


# Clinical-shift tiers

@router.get("/doctor-groups/{year}/{month}", response_model=DoctorGroupListResponse, summary="List tier assignments")
async def list_doctor_groups(
    year: int,
    month: int,
    db: Session = Depends(get_db)
):
    period = _parse_period(year, month)
    groups = ReferenceDataService.list_doctor_groups(db, period)
    return DoctorGroupListResponse(groups=[_group_response(group) for group in groups])


@router.put(
    "/doctor-groups/{year}/{month}/{doctor_id}",
    response_model=DoctorGroupResponse,
    summary="Assign a doctor's tier"
)
async def upsert_doctor_group(
    year: int,
    month: int,
    doctor_id: int,
    request: DoctorGroupUpsertRequest,
    db: Session = Depends(get_db)
):
    period = _parse_period(year, month)

    try:
        if not ReferenceDataService.get_doctor_by_id(db, doctor_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Doctor not found")

        group = ReferenceDataService.upsert_doctor_group(db, doctor_id, period, request.group_type)
        db.commit()
        return _group_response(group)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except HTTPException:
        db.rollback()
        raise
    except Exception as e:
        raise _failure(db, "assign tier", e)


# Hour-band rates

@router.get("/hourly-rates/{year}/{month}", response_model=HourlyRateConfigResponse, summary="Get hour-band rates")
async def get_hourly_config(
    year: int,
    month: int,
    db: Session = Depends(get_db)
):
    period = _parse_period(year, month)
    config = ReferenceDataService.get_hourly_config(db, period)
    if config is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hourly rates not configured for this period")
    return _hourly_response(config)


@router.put("/hourly-rates/{year}/{month}", response_model=HourlyRateConfigResponse, summary="Set hour-band rates")
async def upsert_hourly_config(
    year: int,
    month: int,
    request: HourlyRateConfigRequest,
    db: Session = Depends(get_db)
):
    period = _parse_period(year, month)

    try:
        config = ReferenceDataService.upsert_hourly_config(db, period, HourlyRates(**request.model_dump()))
        db.commit()
        return _hourly_response(config)

    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise _failure(db, "save hourly rates", e)
