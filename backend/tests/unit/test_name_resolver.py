"""
Unit tests for doctor name resolution.
"""
import pytest

from services.name_resolver import (
    Candidate,
    NameResolver,
    PreparedName,
    build_name_map,
    match_containment,
    match_similarity,
    match_surname,
)
from services.settlement_types import DoctorRecord


def candidates_for(roster):
    return [Candidate(doctor=d, name=PreparedName.from_text(d.full_name)) for d in roster]


class TestPreparedName:
    """Test name preparation."""

    def test_surname_from_comma(self):
        """Test that the part before the comma is the surname."""
        name = PreparedName.from_text("  PÉREZ, Juan Carlos ")

        assert name.raw == "PÉREZ, Juan Carlos"
        assert name.normalized == "perez, juan carlos"
        assert name.tokens == ("perez", "juan", "carlos")
        assert name.surname == "perez"

    def test_surname_without_comma(self):
        """Test that the first token is the surname when there is no comma."""
        assert PreparedName.from_text("Gomez Maria").surname == "gomez"


class TestNameResolver:
    """Test the matching cascade."""

    def test_raw_exact(self, roster):
        """Test an identical roster spelling."""
        assert NameResolver(roster).resolve("PEREZ, Juan Carlos").id == 1

    def test_normalized_exact(self, roster):
        """Test matching after case, accent and whitespace normalization."""
        assert NameResolver(roster).resolve("  pérez,   JUAN carlos").id == 1

    def test_token_set(self, roster):
        """Test that token order does not matter."""
        assert NameResolver(roster).resolve("Juan Carlos Perez").id == 1

    def test_surname_with_initial(self, roster):
        """Test a surname followed by an initial."""
        assert NameResolver(roster).resolve("Pérez, J.").id == 1

    def test_containment(self, roster):
        """Test a name with an extra title token."""
        assert NameResolver(roster).resolve("Dra Ana Rodriguez").id == 3

    def test_similarity(self, roster):
        """Test a misspelled surname with two matching given names."""
        assert NameResolver(roster).resolve("Laura Maria Gomes").id == 2

    def test_unresolved(self, roster):
        """Test that an unknown name resolves to None."""
        assert NameResolver(roster).resolve("Fernandez, Pablo") is None

    @pytest.mark.parametrize("name", [None, "", "   "])
    def test_blank_names(self, roster, name):
        """Test that blank names resolve to None without raising."""
        assert NameResolver(roster).resolve(name) is None

    def test_empty_roster(self):
        """Test that nothing resolves against an empty roster."""
        assert NameResolver([]).resolve("PEREZ, Juan Carlos") is None

    def test_custom_strategy_order(self, roster):
        """Test that only the given strategies are tried."""
        resolver = NameResolver(roster, strategies=[match_surname])

        assert resolver.resolve("Juan Carlos Perez") is None
        assert resolver.resolve("Perez, Carlos").id == 1


class TestStrategies:
    """Test individual matching strategies."""

    def test_surname_ranked_by_overlap(self):
        """Test that the candidate sharing more tokens wins among namesakes."""
        roster = [
            DoctorRecord(id=10, full_name="PEREZ, Juan", provincial_license="MP-1"),
            DoctorRecord(id=11, full_name="PEREZ, Jose", provincial_license="MP-2"),
        ]
        query = PreparedName.from_text("Perez, Jose Maria")

        assert match_surname(query, candidates_for(roster)).id == 11

    def test_surname_tie_keeps_roster_order(self):
        """Test that equal scores resolve to the first candidate in roster order."""
        roster = [
            DoctorRecord(id=10, full_name="PEREZ, Juan", provincial_license="MP-1"),
            DoctorRecord(id=11, full_name="PEREZ, Jose", provincial_license="MP-2"),
        ]
        query = PreparedName.from_text("Perez, M.")

        assert match_surname(query, candidates_for(roster)).id == 10

    def test_surname_too_short(self, roster):
        """Test that surnames shorter than three characters never match."""
        query = PreparedName.from_text("Li, Juan")

        assert match_surname(query, candidates_for(roster)) is None

    def test_containment_either_direction(self, roster):
        """Test containment of candidate tokens in the query."""
        query = PreparedName.from_text("Dra Ana Rodriguez")

        assert match_containment(query, candidates_for(roster)).id == 3

    def test_similarity_needs_two_tokens(self, roster):
        """Test that a single overlapping token is not enough."""
        query = PreparedName.from_text("Maria Fernandez")

        assert match_similarity(query, candidates_for(roster)) is None


class TestBuildNameMap:
    """Test batch-scoped name memoization."""

    def test_keys_are_normalized_and_blanks_skipped(self, roster):
        """Test that spellings sharing a normalized form share one entry."""
        name_map = build_name_map(
            ["PEREZ, Juan Carlos", "perez,  juan carlos", "", None, "Nadie Conocido"],
            roster
        )

        assert set(name_map) == {"perez, juan carlos", "nadie conocido"}
        assert name_map["perez, juan carlos"].id == 1
        assert name_map["nadie conocido"] is None

    def test_resolves_each_name_once(self, roster, monkeypatch):
        """Test that a repeated name is resolved a single time."""
        calls = []
        original = NameResolver.resolve

        def counting_resolve(self, name):
            calls.append(name)
            return original(self, name)

        monkeypatch.setattr(NameResolver, "resolve", counting_resolve)
        build_name_map(["GOMEZ, Maria Laura"] * 5, roster)

        assert calls == ["GOMEZ, Maria Laura"]
