"""
Property-based tests for settlement calculations.

These tests verify accounting invariants that must always hold true,
regardless of input data. Uses Hypothesis for property-based testing.
"""
from decimal import Decimal

from hypothesis import given, settings, strategies as st

from core.constants import CONSULT_TYPE_CLINICAL_SHIFTS, SELF_PAY_PAYER, TIER_A, TIER_B
from services.settlement_engine import compute_settlement
from services.settlement_types import DoctorRecord, HourlyRates, Specialty
from tests.conftest import PERIOD, consultation_row, hours_row, make_additional, make_rate, make_tier
from utils.name_utils import normalize_name


ROSTER = [
    DoctorRecord(id=1, full_name="PEREZ, Juan Carlos", provincial_license="MP-1001"),
    DoctorRecord(id=2, full_name="GOMEZ, Maria Laura", provincial_license="MP-1002"),
    DoctorRecord(id=3, full_name="RODRIGUEZ, Ana", provincial_license=None),
]

HOURLY_RATES = HourlyRates(
    weekday_8_16=Decimal("100"),
    weekday_16_8=Decimal("150"),
    weekend=Decimal("500"),
    weekend_night=Decimal("800"),
    guaranteed_min_per_hour=Decimal("600"),
)

row_strategy = st.builds(
    consultation_row,
    doctor=st.sampled_from(["PEREZ, Juan Carlos", "Gomez Maria", "Rodriguez, A.", "Fernandez, Pablo", ""]),
    patient=st.sampled_from(["Lopez Sofia", "Diaz Tomas", "Ruiz Ana", ""]),
    payer=st.sampled_from(["OSDE", "", "PARTICULARES", "105 GALENO", "Lopez Sofia", "SIN COBERTURA"]),
    visit_date=st.sampled_from(["05/03/2024", "06/03/2024", "", "05/03/1999", 45356]),
    visit_time=st.sampled_from(["10:00", "07:30", "15:00", None, float("nan")]),
    duration=st.sampled_from([20, 0, None, "15", float("nan")]),
    schedule_group=st.sampled_from(["Pediatría", "Clínica Médica", None]),
    billed_gross=st.sampled_from([None, "1000", "2.500,50", "-5", float("nan")]),
)

hours_strategy = st.builds(
    hours_row,
    doctor=st.sampled_from(["PEREZ, Juan Carlos", "GOMEZ, Maria Laura", "Fernandez, Pablo"]),
    weekday_8_16=st.integers(min_value=0, max_value=40),
    weekday_16_8=st.integers(min_value=0, max_value=40),
    weekend=st.one_of(st.integers(min_value=0, max_value=24), st.just(float("nan"))),
    weekend_night=st.integers(min_value=0, max_value=12),
)


class TestPediatricsInvariants:
    """Invariants of pediatrics batches."""

    @given(rows=st.lists(row_strategy, max_size=12))
    @settings(max_examples=60, deadline=None)
    def test_every_row_accounted_for(self, rows):
        """Every input row is either a line item or an exclusion."""
        result = compute_settlement(
            rows, Specialty.PEDIATRICS, PERIOD, ROSTER,
            rates=[make_rate("OSDE", "1500"), make_rate(SELF_PAY_PAYER, "1000")],
        )

        if result.ok:
            assert len(result.line_items) + len(result.exclusions) == len(rows)
        else:
            assert result.line_items == []
            assert len(result.exclusions) == len(rows)

    @given(rows=st.lists(row_strategy, min_size=1, max_size=12))
    @settings(max_examples=60, deadline=None)
    def test_totals_match_line_items(self, rows):
        """Totals equal the sums of line amounts, and amounts are never negative."""
        result = compute_settlement(
            rows, Specialty.PEDIATRICS, PERIOD, ROSTER,
            rates=[make_rate("OSDE", "1500"), make_rate(SELF_PAY_PAYER, "1000")],
            additional_config=[make_additional("OSDE", "1000", "50")],
        )
        if not result.ok:
            return

        assert all(item['computed_amount'] >= 0 for item in result.line_items)
        assert all(
            item['computed_amount'] == item['billed_amount'] - item['retention_amount'] + item['additional_amount']
            for item in result.line_items
        )
        assert result.totals['line_count'] == len(result.line_items)
        assert result.totals['net_amount'] == sum(
            (item['computed_amount'] for item in result.line_items), Decimal("0")
        )
        assert result.totals['gross_amount'] == sum(
            (s['gross_amount'] for s in result.doctor_summaries), Decimal("0")
        )

    @given(rows=st.lists(row_strategy, max_size=8))
    @settings(max_examples=30, deadline=None)
    def test_deterministic(self, rows):
        """The same batch computed twice gives the same result."""
        kwargs = dict(rates=[make_rate("OSDE", "1500")])

        first = compute_settlement(rows, Specialty.PEDIATRICS, PERIOD, ROSTER, **kwargs)
        second = compute_settlement(rows, Specialty.PEDIATRICS, PERIOD, ROSTER, **kwargs)

        assert first == second


class TestClinicalShiftInvariants:
    """Invariants of the two-pass clinical-shift aggregation."""

    @given(
        rows=st.lists(row_strategy, max_size=10),
        hours=st.lists(hours_strategy, max_size=4),
    )
    @settings(max_examples=60, deadline=None)
    def test_floor_and_apportioning(self, rows, hours):
        """Final totals never fall below the floor, and line amounts add up to the net."""
        result = compute_settlement(
            rows, Specialty.CLINICAL_SHIFTS, PERIOD, ROSTER,
            rates=[make_rate("OSDE", "1200", consult_type=CONSULT_TYPE_CLINICAL_SHIFTS)],
            group_config=[make_tier(1, TIER_A), make_tier(2, TIER_B)],
            hourly_config=HOURLY_RATES,
            hours_rows=hours,
        )
        if not result.ok:
            return

        for settlement in result.doctor_settlements:
            assert settlement.final_total >= settlement.floor
            assert settlement.final_total == max(settlement.totals.earned, settlement.floor)
            assert settlement.top_up == settlement.final_total - settlement.totals.earned

            lines = [
                item for item in result.line_items
                if item['doctor_key'] == settlement.totals.doctor_key
            ]
            apportioned = sum((item['computed_amount'] for item in lines), Decimal("0"))
            assert apportioned == settlement.totals.net_consultation.quantize(Decimal("0.01"))

        assert all(item['computed_amount'] >= 0 for item in result.line_items)


class TestAdmissionInvariants:
    """Invariants of first-come-first-served admissions."""

    @given(rows=st.lists(row_strategy, min_size=1, max_size=12))
    @settings(max_examples=60, deadline=None)
    def test_one_paid_admission_per_patient_and_day(self, rows):
        """Each named patient is paid at most once per day."""
        result = compute_settlement(rows, Specialty.CLINICAL_ADMISSIONS, PERIOD, ROSTER)
        if not result.ok:
            return

        paid = [item for item in result.line_items if not item['is_duplicate']]
        keys = [
            (normalize_name(item['patient']), item['visit_date'])
            for item in paid if normalize_name(item['patient'])
        ]
        assert len(keys) == len(set(keys))
        assert result.totals['line_count'] == len(paid)
        assert all(
            item['computed_amount'] == Decimal("0")
            for item in result.line_items if item['is_duplicate']
        )
