"""
Doctor name resolution for settlement spreadsheets.

Free-text doctor names in activity exports rarely match the roster exactly
("PEREZ, Juan Carlos" vs "Juan C. Pérez"). Resolution runs an ordered cascade
of matching strategies; the first strategy that yields a candidate wins.
Each strategy is a plain function so it can be tested on its own.

Strategy order:
1. Exact match on the raw trimmed string
2. Exact match after normalization
3. Token-set equality (order-insensitive)
4. Surname match, ranked by overlapping tokens
5. Full containment in either direction
6. Similarity fallback (at least two overlapping tokens)
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from services.settlement_types import DoctorRecord
from utils.name_utils import MIN_TOKEN_LENGTH, name_tokens, normalize_name

logger = logging.getLogger(__name__)

# Minimum overlapping tokens for the similarity fallback
MIN_SIMILARITY_OVERLAP = 2


@dataclass(frozen=True)
class PreparedName:
    """A name in every form the strategies compare."""
    raw: str
    normalized: str
    tokens: Tuple[str, ...]
    surname: str

    @classmethod
    def from_text(cls, text: str) -> "PreparedName":
        raw = (text or "").strip()
        normalized = normalize_name(raw)
        tokens = tuple(name_tokens(raw))
        if "," in normalized:
            surname = normalized.split(",")[0].strip()
        elif tokens:
            surname = tokens[0]
        else:
            surname = normalized
        return cls(raw=raw, normalized=normalized, tokens=tokens, surname=surname)


@dataclass(frozen=True)
class Candidate:
    doctor: DoctorRecord
    name: PreparedName


Strategy = Callable[[PreparedName, Sequence[Candidate]], Optional[DoctorRecord]]


def _tokens_overlap(a: str, b: str) -> bool:
    return a == b or a in b or b in a


def _overlap_count(query_tokens: Iterable[str], candidate_tokens: Sequence[str]) -> int:
    return sum(
        1 for token in query_tokens
        if any(_tokens_overlap(token, other) for other in candidate_tokens)
    )


def match_raw_exact(query: PreparedName, candidates: Sequence[Candidate]) -> Optional[DoctorRecord]:
    """Strategy 1: identical trimmed text, no normalization."""
    for candidate in candidates:
        if candidate.name.raw == query.raw:
            return candidate.doctor
    return None


def match_normalized_exact(query: PreparedName, candidates: Sequence[Candidate]) -> Optional[DoctorRecord]:
    """Strategy 2: identical after case, accent and whitespace normalization."""
    for candidate in candidates:
        if candidate.name.normalized == query.normalized:
            return candidate.doctor
    return None


def match_token_set(query: PreparedName, candidates: Sequence[Candidate]) -> Optional[DoctorRecord]:
    """Strategy 3: same set of significant tokens, in any order."""
    if not query.tokens:
        return None
    query_set = set(query.tokens)
    for candidate in candidates:
        if candidate.name.tokens and set(candidate.name.tokens) == query_set:
            return candidate.doctor
    return None


def match_surname(query: PreparedName, candidates: Sequence[Candidate]) -> Optional[DoctorRecord]:
    """
    Strategy 4: exact surname, ranked by how many query tokens overlap.

    Ties keep the first candidate in roster order. A surname match with no
    overlapping tokens at all does not count.
    """
    if len(query.surname) < MIN_TOKEN_LENGTH:
        return None

    best: Optional[DoctorRecord] = None
    best_score = 0
    for candidate in candidates:
        if candidate.name.surname != query.surname:
            continue
        score = _overlap_count(query.tokens, candidate.name.tokens)
        if score > best_score:
            best_score = score
            best = candidate.doctor
    return best


def match_containment(query: PreparedName, candidates: Sequence[Candidate]) -> Optional[DoctorRecord]:
    """Strategy 5: every query token appears in the candidate, or vice versa."""
    if not query.tokens:
        return None
    for candidate in candidates:
        if all(token in candidate.name.normalized for token in query.tokens):
            return candidate.doctor
        if candidate.name.tokens and all(
            token in query.normalized for token in candidate.name.tokens
        ):
            return candidate.doctor
    return None


def match_similarity(query: PreparedName, candidates: Sequence[Candidate]) -> Optional[DoctorRecord]:
    """Strategy 6: the candidate sharing the most substring-overlapping tokens (at least two)."""
    if len(query.tokens) < MIN_SIMILARITY_OVERLAP:
        return None

    best: Optional[DoctorRecord] = None
    best_score = 0
    for candidate in candidates:
        score = _overlap_count(query.tokens, candidate.name.tokens)
        if score >= MIN_SIMILARITY_OVERLAP and score > best_score:
            best_score = score
            best = candidate.doctor
    return best


STRATEGIES: List[Strategy] = [
    match_raw_exact,
    match_normalized_exact,
    match_token_set,
    match_surname,
    match_containment,
    match_similarity,
]


class NameResolver:
    """
    Resolves free-text doctor names against a roster snapshot.

    The roster is prepared once at construction; the roster order given is
    the tie-breaking order for every strategy.
    """

    def __init__(
        self,
        roster: Sequence[DoctorRecord],
        strategies: Optional[Sequence[Strategy]] = None
    ):
        self.candidates: List[Candidate] = [
            Candidate(doctor=doctor, name=PreparedName.from_text(doctor.full_name))
            for doctor in roster
        ]
        self.strategies: List[Strategy] = list(strategies or STRATEGIES)

    def resolve(self, name: Optional[str]) -> Optional[DoctorRecord]:
        """
        Resolve one free-text name.

        Returns:
            The matched doctor, or None when no strategy matches (never raises)
        """
        if not name or not str(name).strip():
            return None

        query = PreparedName.from_text(str(name))
        for strategy in self.strategies:
            # Strategy 1 compares raw text; the rest need a non-empty normalized form
            if strategy is not match_raw_exact and not query.normalized:
                break
            doctor = strategy(query, self.candidates)
            if doctor is not None:
                logger.debug(f"Resolved doctor name via {strategy.__name__}: id={doctor.id}")
                return doctor
        return None


def build_name_map(
    names: Iterable[Optional[str]],
    roster: Sequence[DoctorRecord]
) -> Dict[str, Optional[DoctorRecord]]:
    """
    Resolve every distinct name of a batch exactly once.

    Names are keyed by their normalized form; spellings that normalize to the
    same text share one resolution (made with the first spelling seen).

    Returns:
        Mapping of normalized name -> doctor (None when unresolved)
    """
    resolver = NameResolver(roster)
    resolved: Dict[str, Optional[DoctorRecord]] = {}
    for name in names:
        key = normalize_name(name)
        if not key or key in resolved:
            continue
        resolved[key] = resolver.resolve(name)

    unresolved = sum(1 for doctor in resolved.values() if doctor is None)
    logger.info(
        f"Resolved {len(resolved) - unresolved}/{len(resolved)} distinct doctor names "
        f"against a roster of {len(roster)}"
    )
    return resolved
