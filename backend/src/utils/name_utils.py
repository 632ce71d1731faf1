"""
Name canonicalization helpers shared by doctor matching, payer lookup and
spreadsheet header resolution.
"""

import re
import unicodedata
from typing import List, Optional

_WHITESPACE = re.compile(r"\s+")
_TOKEN_SEPARATORS = re.compile(r"[\s,]+")

# Tokens of two characters or fewer ("de", "la", initials) carry no matching signal
MIN_TOKEN_LENGTH = 3


def strip_accents(text: str) -> str:
    """Remove diacritics by decomposing to NFD and dropping combining marks."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(name: Optional[str]) -> str:
    """
    Canonicalize a free-text name for comparison.

    Lower-cases, strips accents, collapses internal whitespace and trims.
    None is treated as an empty string.

    Example:
        >>> normalize_name("  PÉREZ,   José ")
        'perez, jose'
    """
    if not name:
        return ""
    return _WHITESPACE.sub(" ", strip_accents(str(name).lower())).strip()


def name_tokens(name: Optional[str]) -> List[str]:
    """
    Split a name into its significant tokens, in order.

    The name is normalized first, then split on whitespace and commas.
    Tokens shorter than three characters are discarded.
    """
    normalized = normalize_name(name)
    if not normalized:
        return []
    return [
        token for token in _TOKEN_SEPARATORS.split(normalized)
        if len(token) >= MIN_TOKEN_LENGTH
    ]
