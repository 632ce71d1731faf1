"""
Unit tests for per-specialty line rules.
"""
import pytest
from datetime import date, time
from decimal import Decimal

from core.constants import (
    ADMISSION_FLAT_FEE,
    CONSULT_TYPE_CLINICAL_SHIFTS,
    CONSULT_TYPE_GYNECOLOGY,
    CONSULT_TYPE_PEDIATRICS,
    SELF_PAY_PAYER,
    TIER_A,
    TIER_B,
)
from services import settlement_warnings as codes
from services.name_resolver import build_name_map
from services.rate_resolver import AdditionalResolver, RateResolver
from services.settlement_dedup import AdmissionDeduplicator, ExactTupleDeduplicator
from services.settlement_extractor import SettlementRowExtractor
from services.settlement_rules import (
    BatchContext,
    Exclusion,
    POLICIES,
    admission_line,
    clinical_shift_line,
    doctor_key,
    gynecology_line,
    hours_line,
    is_pediatrics_row,
    is_training_hours,
    pediatrics_line,
    policy_for,
)
from services.settlement_types import Specialty
from services.settlement_warnings import WarningCollector
from tests.conftest import PERIOD, consultation_row, hours_row, make_additional, make_rate


def normalized(**kwargs):
    return SettlementRowExtractor.extract_rows([consultation_row(**kwargs)])[0]


def context_for(roster, rows=(), rates=(), consult_type=CONSULT_TYPE_PEDIATRICS,
                additives=None, tiers=None, hourly_rates=None):
    names = [row['doctor_name'] for row in rows] + [d.full_name for d in roster]
    return BatchContext(
        period=PERIOD,
        name_map=build_name_map(names, roster),
        warnings=WarningCollector(),
        rates=RateResolver(rates, consult_type, PERIOD),
        additives=additives,
        tiers=tiers,
        hourly_rates=hourly_rates,
    )


class TestTrainingHours:
    """Test the resident training window (Monday-Saturday, 07:00 to 15:00)."""

    @pytest.mark.parametrize("visit_date,visit_time,expected", [
        (date(2024, 3, 5), time(7, 0), True),     # Tuesday, window start
        (date(2024, 3, 5), time(14, 59), True),
        (date(2024, 3, 5), time(15, 0), False),   # end is exclusive
        (date(2024, 3, 5), time(6, 59), False),
        (date(2024, 3, 2), time(10, 0), True),    # Saturday
        (date(2024, 3, 3), time(10, 0), False),   # Sunday
        (None, time(10, 0), False),
        (date(2024, 3, 5), None, False),
    ])
    def test_is_training_hours(self, visit_date, visit_time, expected):
        """Test window boundaries and missing values."""
        assert is_training_hours(visit_date, visit_time) is expected


class TestIsPediatricsRow:
    """Test the schedule-group filter."""

    def test_schedule_group_decides(self):
        """Test the schedule group tag."""
        assert is_pediatrics_row(normalized(schedule_group="PEDIATRÍA GENERAL")) is True
        assert is_pediatrics_row(normalized(schedule_group="Clínica Médica")) is False

    def test_missing_tag_passes(self):
        """Test that a sheet without the column is assumed pre-filtered."""
        assert is_pediatrics_row(normalized(schedule_group=None)) is True


class TestDoctorKey:
    """Test grouping keys."""

    def test_doctor_key(self, roster):
        """Test resolved and unresolved keys."""
        assert doctor_key(roster[0], "whatever") == "1"
        assert doctor_key(None, "  Dr. HOUSE ") == "name:dr. house"


class TestPediatricsLine:
    """Test the pediatrics rule."""

    def test_rate_retention_and_additive(self, roster):
        """Test 30% retention on the rate plus the payer additive."""
        row = normalized(payer="OSDE")
        context = context_for(
            roster, [row], [make_rate("OSDE", "1500")],
            additives=AdditionalResolver([make_additional("OSDE", "1000", "50")], "pediatrics", PERIOD),
        )

        item = pediatrics_line(row, context)

        assert item['doctor_id'] == 1
        assert item['payer_name'] == "OSDE"
        assert item['billed_amount'] == Decimal("1500")
        assert item['retention_pct'] == Decimal("30")
        assert item['retention_amount'] == Decimal("450")
        assert item['additional_amount'] == Decimal("500")
        assert item['computed_amount'] == Decimal("1550")
        assert item['review_state'] == "pending"

    def test_blank_payer_is_self_pay(self, roster):
        """Test that a blank payer is billed at the self-pay rate."""
        row = normalized(payer="")
        context = context_for(roster, [row], [make_rate(SELF_PAY_PAYER, "1000")])

        item = pediatrics_line(row, context)

        assert item['payer_name'] == SELF_PAY_PAYER
        assert item['billed_amount'] == Decimal("1000")
        assert item['retention_amount'] == Decimal("300")
        assert item['computed_amount'] == Decimal("700")

    def test_unconfigured_payer_bills_zero(self, roster):
        """Test that a payer without a rate bills 0 with a warning."""
        row = normalized(payer="105 GALENO")
        context = context_for(roster, [row])

        item = pediatrics_line(row, context)

        assert item['billed_amount'] == Decimal("0")
        assert item['computed_amount'] == Decimal("0")
        assert [w['code'] for w in context.warnings.warnings] == [codes.UNRESOLVED_RATE]

    @pytest.mark.parametrize("kwargs,reason", [
        ({"schedule_group": "Clínica Médica"}, codes.SCHEDULE_GROUP_MISMATCH),
        ({"duration": None}, codes.MISSING_DURATION),
        ({"duration": 0}, codes.ZERO_DURATION),
        ({"visit_date": None}, codes.MISSING_DATE),
        ({"visit_date": "05/03/1999"}, codes.INVALID_DATE),
    ])
    def test_exclusions(self, roster, kwargs, reason):
        """Test rows that produce no line item."""
        row = normalized(**kwargs)

        outcome = pediatrics_line(row, context_for(roster, [row]))

        assert isinstance(outcome, Exclusion)
        assert outcome.reason == reason

    def test_unresolved_doctor_kept(self, roster):
        """Test that an unknown doctor keeps the line under the free-text name."""
        row = normalized(doctor="Fernandez, Pablo")
        context = context_for(roster, [row], [make_rate("OSDE", "1500")])

        item = pediatrics_line(row, context)

        assert item['doctor_id'] is None
        assert item['doctor_name'] == "Fernandez, Pablo"
        assert item['doctor_key'] == "name:fernandez, pablo"
        assert codes.UNRESOLVED_DOCTOR in [w['code'] for w in context.warnings.warnings]


class TestGynecologyLine:
    """Test the gynecology rule."""

    def make_context(self, roster, row):
        return context_for(
            roster, [row], [make_rate("OSDE", "1500", consult_type=CONSULT_TYPE_GYNECOLOGY)],
            consult_type=CONSULT_TYPE_GYNECOLOGY,
        )

    def test_full_rate_no_line_retention(self, roster):
        """Test that the line carries the full rate."""
        row = normalized(schedule_group=None)
        item = gynecology_line(row, self.make_context(roster, row))

        assert item['billed_amount'] == Decimal("1500")
        assert item['computed_amount'] == Decimal("1500")
        assert item['retention_pct'] is None
        assert item['training_hours_exempt'] is False

    def test_resident_in_training_hours(self, roster):
        """Test that a resident inside the window is not paid."""
        row = normalized(doctor="RODRIGUEZ, Ana", visit_date="05/03/2024", visit_time="07:00")
        context = self.make_context(roster, row)

        item = gynecology_line(row, context)

        assert item['is_resident'] is True
        assert item['training_hours_exempt'] is True
        assert item['billed_amount'] == Decimal("0")
        assert item['computed_amount'] == Decimal("0")
        warning = context.warnings.warnings[0]
        assert warning['code'] == codes.TRAINING_HOURS_EXEMPT
        assert warning['details']['notional_value'] == Decimal("1500")

    @pytest.mark.parametrize("visit_date,visit_time", [
        ("05/03/2024", "15:00"),
        ("03/03/2024", "10:00"),
    ])
    def test_resident_outside_training_hours(self, roster, visit_date, visit_time):
        """Test that a resident is paid at the window end and on Sundays."""
        row = normalized(doctor="RODRIGUEZ, Ana", visit_date=visit_date, visit_time=visit_time)

        item = gynecology_line(row, self.make_context(roster, row))

        assert item['training_hours_exempt'] is False
        assert item['billed_amount'] == Decimal("1500")

    def test_licensed_doctor_in_training_hours(self, roster):
        """Test that licensed doctors are never exempt."""
        row = normalized(visit_time="10:00")

        item = gynecology_line(row, self.make_context(roster, row))

        assert item['training_hours_exempt'] is False
        assert item['computed_amount'] == Decimal("1500")


class TestClinicalShiftLine:
    """Test the clinical-shift consultation rule."""

    def make_context(self, roster, row, tiers=None):
        return context_for(
            roster, [row], [make_rate("OSDE", "1200", consult_type=CONSULT_TYPE_CLINICAL_SHIFTS)],
            consult_type=CONSULT_TYPE_CLINICAL_SHIFTS,
            tiers=tiers if tiers is not None else {1: TIER_A, 2: TIER_B},
        )

    def test_billed_gross_and_tier_share(self, roster):
        """Test that the sheet value is billed and the tier sets the retention."""
        row = normalized(billed_gross="2.000,00")

        item = clinical_shift_line(row, self.make_context(roster, row))

        assert item['billed_amount'] == Decimal("2000.00")
        assert item['retention_pct'] == Decimal("30")
        assert item['computed_amount'] is None

    def test_rate_when_no_billed_gross(self, roster):
        """Test the payer rate fallback and the tier B share."""
        row = normalized(doctor="GOMEZ, Maria Laura")

        item = clinical_shift_line(row, self.make_context(roster, row))

        assert item['billed_amount'] == Decimal("1200")
        assert item['retention_pct'] == Decimal("60")

    @pytest.mark.parametrize("payer", ["", "PARTICULARES", "SIN COBERTURA - Lopez"])
    def test_self_pay_excluded(self, roster, payer):
        """Test that self-pay and uncovered rows are not billed."""
        row = normalized(payer=payer)

        outcome = clinical_shift_line(row, self.make_context(roster, row))

        assert isinstance(outcome, Exclusion)
        assert outcome.reason == codes.SELF_PAY_NOT_BILLABLE

    def test_missing_time_and_zero_duration(self, roster):
        """Test the time and duration exclusions."""
        no_time = normalized(visit_time=None)
        zero = normalized(duration=0)

        assert clinical_shift_line(no_time, self.make_context(roster, no_time)).reason == codes.MISSING_TIME
        assert clinical_shift_line(zero, self.make_context(roster, zero)).reason == codes.ZERO_DURATION

    def test_missing_date_substituted(self, roster):
        """Test that a missing date falls back to the first day of the period."""
        row = normalized(visit_date=None)
        context = self.make_context(roster, row)

        item = clinical_shift_line(row, context)

        assert item['visit_date'] == date(2024, 3, 1)
        assert [w['code'] for w in context.warnings.warnings] == [codes.DEFAULT_DATE_SUBSTITUTED]

    def test_missing_tier(self, roster):
        """Test that a doctor without a tier gets no share."""
        row = normalized()
        context = self.make_context(roster, row, tiers={})

        item = clinical_shift_line(row, context)

        assert item['retention_pct'] == Decimal("100")
        assert codes.MISSING_TIER in [w['code'] for w in context.warnings.warnings]


class TestAdmissionLine:
    """Test the admission rule."""

    def test_flat_fee(self, roster):
        """Test that each admission pays the flat fee with no payer."""
        row = normalized(payer="OSDE")

        item = admission_line(row, context_for(roster, [row]))

        assert item['billed_amount'] == ADMISSION_FLAT_FEE
        assert item['computed_amount'] == ADMISSION_FLAT_FEE
        assert item['payer_name'] is None
        assert item['visit_time'] is None

    def test_missing_date_excluded(self, roster):
        """Test that an admission needs a date."""
        row = normalized(visit_date="")

        assert admission_line(row, context_for(roster, [row])).reason == codes.MISSING_DATE


class TestHoursLine:
    """Test hour-band valuation."""

    def test_band_values(self, roster, hourly_rates):
        """Test each band at its rate."""
        row = SettlementRowExtractor.extract_hours_rows([
            hours_row(weekday_8_16=8, weekday_16_8=4, weekend=2, weekend_night=1)
        ])[0]
        context = context_for(roster, hourly_rates=hourly_rates)

        item = hours_line(row, context)

        assert item['doctor_id'] == 1
        assert item['weekday_8_16_value'] == Decimal("800")
        assert item['weekday_16_8_value'] == Decimal("600")
        assert item['weekend_value'] == Decimal("1000")
        assert item['weekend_night_value'] == Decimal("800")
        assert item['total_band_value'] == Decimal("3200")

    def test_requires_hourly_rates(self, roster):
        """Test that valuing bands without rates raises."""
        row = SettlementRowExtractor.extract_hours_rows([hours_row(weekend=1)])[0]

        with pytest.raises(ValueError):
            hours_line(row, context_for(roster))


class TestPolicies:
    """Test specialty policies."""

    def test_every_specialty_has_a_policy(self):
        """Test the policy table covers all specialties."""
        assert set(POLICIES) == set(Specialty)

    def test_policy_for_string(self):
        """Test lookup by specialty string."""
        policy = policy_for("Clinical_Shifts")

        assert policy.specialty == Specialty.CLINICAL_SHIFTS
        assert policy.uses_hours is True

    def test_policy_for_unknown(self):
        """Test that unknown specialties raise ValueError."""
        with pytest.raises(ValueError):
            policy_for("cardiology")

    def test_deduplicators(self):
        """Test which duplicate policy each scheme uses."""
        assert isinstance(policy_for(Specialty.CLINICAL_ADMISSIONS).deduplicator(), AdmissionDeduplicator)
        assert isinstance(policy_for(Specialty.PEDIATRICS).deduplicator(), ExactTupleDeduplicator)
