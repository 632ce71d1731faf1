"""
Unit tests for name canonicalization helpers.
"""

from utils.name_utils import name_tokens, normalize_name, strip_accents


class TestStripAccents:
    """Test diacritic removal."""

    def test_strip_accents(self):
        """Test that accents and tildes are removed."""
        assert strip_accents("Pérez Núñez") == "Perez Nunez"

    def test_plain_text_unchanged(self):
        """Test that plain ASCII is returned unchanged."""
        assert strip_accents("Gomez") == "Gomez"


class TestNormalizeName:
    """Test name normalization."""

    def test_normalize_name(self):
        """Test lower-casing, accent removal, whitespace collapse and trim."""
        assert normalize_name("  PÉREZ,   José ") == "perez, jose"

    def test_none_and_empty(self):
        """Test that None and blanks normalize to an empty string."""
        assert normalize_name(None) == ""
        assert normalize_name("") == ""
        assert normalize_name("   ") == ""

    def test_idempotent(self):
        """Test that normalizing twice changes nothing."""
        once = normalize_name("  Gómez,\tMaría  Laura ")
        assert normalize_name(once) == once


class TestNameTokens:
    """Test name tokenization."""

    def test_splits_on_commas_and_spaces(self):
        """Test that commas separate tokens like whitespace."""
        assert name_tokens("PEREZ,Juan Carlos") == ["perez", "juan", "carlos"]

    def test_short_tokens_dropped(self):
        """Test that tokens shorter than three characters are discarded."""
        assert name_tokens("Juan C. de la Cruz") == ["juan", "cruz"]

    def test_empty(self):
        """Test that empty input yields no tokens."""
        assert name_tokens(None) == []
        assert name_tokens("  ") == []
