"""
Test configuration and shared fixtures for the settlement backend test suite.

Uses an in-memory SQLite database shared through a StaticPool. Every test
that asks for a session gets freshly created tables.
"""

import pytest
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.constants import (
    CONSULT_TYPE_CLINICAL_SHIFTS,
    CONSULT_TYPE_GYNECOLOGY,
    CONSULT_TYPE_PEDIATRICS,
    SELF_PAY_PAYER,
)
from core.database import Base, get_db

# Import all models to ensure they're registered with SQLAlchemy before tables are created
from models.doctor import Doctor
from models.payer_rate import PayerRate
from models.additional_config import AdditionalConfig
from models.doctor_group_config import DoctorGroupConfig
from models.hourly_rate_config import HourlyRateConfig
from models.settlement_batch import SettlementBatch
from models.line_item import LineItem, HoursLineItem
from models.processing_log import ProcessingLog
from services.settlement_types import (
    AdditionalConfigRecord,
    DoctorGroupRecord,
    DoctorRecord,
    HourlyRates,
    PayerRateRecord,
    Period,
)


TEST_DATABASE_URL = "sqlite://"

PERIOD = Period(month=3, year=2024)


@pytest.fixture(scope="session")
def db_engine():
    """
    Create a database engine for the test session.

    StaticPool keeps the single in-memory connection alive so every session
    (including the ones FastAPI opens in request threads) sees the same data.
    """
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session over freshly created tables."""
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSession = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)
    session = TestingSession()

    yield session

    session.close()
    Base.metadata.drop_all(bind=db_engine)


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """TestClient whose requests use the test session."""
    from main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def period() -> Period:
    return PERIOD


@pytest.fixture
def roster() -> List[DoctorRecord]:
    """A small roster: two licensed doctors and one resident."""
    return [
        DoctorRecord(id=1, full_name="PEREZ, Juan Carlos", provincial_license="MP-1001"),
        DoctorRecord(id=2, full_name="GOMEZ, Maria Laura", provincial_license="MP-1002"),
        DoctorRecord(id=3, full_name="RODRIGUEZ, Ana", provincial_license=None),
    ]


@pytest.fixture
def hourly_rates() -> HourlyRates:
    return HourlyRates(
        weekday_8_16=Decimal("100"),
        weekday_16_8=Decimal("150"),
        weekend=Decimal("500"),
        weekend_night=Decimal("800"),
        guaranteed_min_per_hour=Decimal("600"),
    )


# Helper functions for building engine inputs
def make_rate(
    payer: str,
    value: str,
    consult_type: str = CONSULT_TYPE_PEDIATRICS,
    period: Period = PERIOD
) -> PayerRateRecord:
    """Build a payer rate record for the given period."""
    return PayerRateRecord(
        payer_name=payer,
        consult_type=consult_type,
        month=period.month,
        year=period.year,
        unit_value=Decimal(value),
    )


def make_additional(
    payer: str,
    base: str,
    share: str,
    applies: bool = True,
    specialty: str = "pediatrics",
    period: Period = PERIOD
) -> AdditionalConfigRecord:
    """Build an additive config record for the given period."""
    return AdditionalConfigRecord(
        payer_name=payer,
        specialty=specialty,
        month=period.month,
        year=period.year,
        applies=applies,
        base_amount=Decimal(base),
        doctor_share_percent=Decimal(share),
    )


def make_tier(doctor_id: int, group_type: str, period: Period = PERIOD) -> DoctorGroupRecord:
    return DoctorGroupRecord(doctor_id=doctor_id, month=period.month, year=period.year, group_type=group_type)


def consultation_row(
    doctor: str = "PEREZ, Juan Carlos",
    patient: str = "Lopez Sofia",
    payer: str = "OSDE",
    visit_date: Any = "05/03/2024",
    visit_time: Any = "10:00",
    duration: Any = 20,
    schedule_group: Optional[str] = "Pediatría",
    billed_gross: Any = None
) -> Dict[str, Any]:
    """Build a raw spreadsheet row with the headers the scheduling export uses."""
    row: Dict[str, Any] = {
        "Fecha Visita": visit_date,
        "Hora inicio visita": visit_time,
        "Paciente": patient,
        "Cliente": payer,
        "Responsable": doctor,
        "Duración": duration,
    }
    if schedule_group is not None:
        row["Grupo agenda"] = schedule_group
    if billed_gross is not None:
        row["Total Bruto"] = billed_gross
    return row


def hours_row(
    doctor: str = "PEREZ, Juan Carlos",
    weekday_8_16: Any = 0,
    weekday_16_8: Any = 0,
    weekend: Any = 0,
    weekend_night: Any = 0
) -> Dict[str, Any]:
    """Build a raw hour-band row."""
    return {
        "Médico": doctor,
        "Horas semanales de 8 a 16 hs": weekday_8_16,
        "Horas semanales de 16 a 8 hs": weekday_16_8,
        "Horas fin de semana / feriados": weekend,
        "Horas nocturnas fin de semana": weekend_night,
    }


def seed_reference_data(db_session: Session, period: Period = PERIOD) -> None:
    """Insert a roster, rates for every consult type and the hourly config."""
    db_session.add_all([
        Doctor(id=1, full_name="PEREZ, Juan Carlos", provincial_license="MP-1001"),
        Doctor(id=2, full_name="GOMEZ, Maria Laura", provincial_license="MP-1002"),
        Doctor(id=3, full_name="RODRIGUEZ, Ana", provincial_license=None),
    ])
    for consult_type in (CONSULT_TYPE_PEDIATRICS, CONSULT_TYPE_GYNECOLOGY, CONSULT_TYPE_CLINICAL_SHIFTS):
        db_session.add_all([
            PayerRate(payer_name="OSDE", consult_type=consult_type, month=period.month,
                      year=period.year, unit_value=Decimal("1500")),
            PayerRate(payer_name=SELF_PAY_PAYER, consult_type=consult_type, month=period.month,
                      year=period.year, unit_value=Decimal("1000")),
        ])
    db_session.add(HourlyRateConfig(
        month=period.month,
        year=period.year,
        weekday_8_16=Decimal("100"),
        weekday_16_8=Decimal("150"),
        weekend=Decimal("500"),
        weekend_night=Decimal("800"),
        guaranteed_min_per_hour=Decimal("600"),
    ))
    db_session.add(DoctorGroupConfig(doctor_id=1, month=period.month, year=period.year, group_type="TIER_A"))
    db_session.commit()
