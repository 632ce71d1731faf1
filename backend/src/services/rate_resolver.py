"""
Payer rate and additive resolution for a settlement period.

Rates are loaded once per batch from the configuration snapshot and looked up
by payer name. The two historical spellings of the self-pay catch-all are
folded together before any lookup happens.
"""
import logging
import re
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from core.constants import SELF_PAY_ALIASES, SELF_PAY_PAYER
from services.settlement_types import (
    AdditionalConfigRecord,
    PayerRateRecord,
    Period,
)
from utils.name_utils import normalize_name

logger = logging.getLogger(__name__)

_LEADING_DIGITS = re.compile(r"^\d+")
_HAS_LETTER = re.compile(r"[^\W\d_]", re.UNICODE)

_SELF_PAY_KEYS = tuple(normalize_name(alias) for alias in SELF_PAY_ALIASES)


def payer_key(payer: Optional[str]) -> str:
    """Lookup key for a payer name (case, accent and whitespace insensitive)."""
    return normalize_name(payer)


def is_self_pay(payer: Optional[str]) -> bool:
    """True for either self-pay spelling."""
    return payer_key(payer) in _SELF_PAY_KEYS


def looks_like_person_name(value: Optional[str]) -> bool:
    """
    Heuristic for payer cells that hold the patient's own name.

    Such cells show up when the front desk types the patient instead of an
    insurer. Coded payers ("042 - ...", "105 OSDE") never qualify.
    """
    if not value or not value.strip():
        return False

    text = value.strip()
    if _LEADING_DIGITS.match(text) or len(text) < 3:
        return False

    words = text.split()
    if 2 <= len(words) <= 4:
        return all(_HAS_LETTER.search(word) for word in words)

    if len(words) == 1 and len(text) > 5:
        return text != text.upper() and text != text.lower()

    return False


class RateResolver:
    """
    Resolves the unit value billed to a payer for one consult type and period.

    If only one self-pay spelling has a configured rate, the other spelling is
    back-filled with the same value, so either can be used for lookups.
    """

    def __init__(
        self,
        rates: Iterable[PayerRateRecord],
        consult_type: str,
        period: Period
    ):
        self.consult_type = consult_type
        self.period = period
        self._values: Dict[str, Decimal] = {}

        for rate in rates:
            if rate.consult_type != consult_type:
                continue
            if rate.month != period.month or rate.year != period.year:
                continue
            key = payer_key(rate.payer_name)
            if key and key not in self._values:
                self._values[key] = max(Decimal(rate.unit_value), Decimal("0"))

        self._backfill_self_pay()
        logger.debug(
            f"Loaded {len(self._values)} payer rates for {consult_type} in {period}"
        )

    def _backfill_self_pay(self) -> None:
        configured = [key for key in _SELF_PAY_KEYS if key in self._values]
        if not configured:
            return
        value = self._values[configured[0]]
        for key in _SELF_PAY_KEYS:
            self._values.setdefault(key, value)

    def has_rate(self, payer: Optional[str]) -> bool:
        return payer_key(payer) in self._values

    def resolve(self, payer: Optional[str]) -> Optional[Decimal]:
        """Return the configured unit value, or None when the payer has no rate."""
        return self._values.get(payer_key(payer))

    def value_for(self, payer: Optional[str]) -> Decimal:
        """Return the configured unit value, or 0 when the payer has no rate."""
        value = self.resolve(payer)
        return value if value is not None else Decimal("0")

    def canonical_payer(self, payer: Optional[str]) -> str:
        """
        Canonicalize a payer cell.

        Blank cells and person-name cells are self-pay; a payer with a
        configured rate is never re-classified.
        """
        text = (payer or "").strip()
        if not text:
            return SELF_PAY_PAYER
        if is_self_pay(text):
            return SELF_PAY_PAYER
        if self.has_rate(text):
            return text
        if looks_like_person_name(text):
            return SELF_PAY_PAYER
        return text


class AdditionalResolver:
    """
    Resolves the per-payer additive paid to the doctor on top of the rate.

    A config matches when its payer name is contained in, or contains, the
    row payer (case-insensitive). The first eligible config wins.
    """

    def __init__(
        self,
        configs: Iterable[AdditionalConfigRecord],
        specialty: str,
        period: Period
    ):
        self.configs: List[AdditionalConfigRecord] = [
            config for config in configs
            if config.specialty == specialty
            and config.month == period.month
            and config.year == period.year
            and config.applies
            and config.base_amount > 0
            and config.doctor_share_percent > 0
        ]

    def resolve(self, payer: Optional[str]) -> Decimal:
        key = payer_key(payer)
        if not key:
            return Decimal("0")
        for config in self.configs:
            config_key = payer_key(config.payer_name)
            if config_key and (config_key in key or key in config_key):
                return config.doctor_amount
        return Decimal("0")
