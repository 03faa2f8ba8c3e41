"""
Resolve free-text model output (diagnosis, medicine and examination names)
onto reference catalog entries.

Resolution order, first success wins:

1. exact, case-insensitive equality with the entry name (or the code, for
   diagnoses);
2. diagnoses only: the shortest catalog code that starts with the query;
3. fuzzy scoring with :func:`calculate_score`, accepted only above
   :data:`ACCEPT_THRESHOLD`.

Failing to resolve is a normal outcome: every lookup returns ``None``
instead of raising.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from consult_assist.core.logging import get_logger
from consult_assist.models.catalog import (
    AnyCatalogEntry,
    CatalogEntry,
    CatalogKind,
    DiagnosisEntry,
    ExaminationEntry,
    MedicalCatalog,
    MedicineEntry,
)

logger = get_logger(__name__)

ACCEPT_THRESHOLD = 0.3

TARGET_CONTAINS_QUERY = 0.9
KEYWORD_IN_QUERY = 0.85
QUERY_CONTAINS_TARGET = 0.8


class MatchMethod(str, Enum):
    EXACT = "exact"
    CODE_PREFIX = "code_prefix"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class MatchResult:
    entry: AnyCatalogEntry
    score: float
    method: MatchMethod


def normalize_query(query: Optional[str]) -> str:
    return query.strip().lower() if query else ""


def calculate_score(query: str, target: str, keywords: Optional[Iterable[str]] = None) -> float:
    """
    Similarity in [0, 1]. Containment outranks keyword aliases, which
    outrank plain character overlap. Not symmetric.
    """
    q = query.lower()
    t = target.lower()
    if not q or not t:
        # An empty string is a substring of everything
        return 0.0

    if q in t:
        return TARGET_CONTAINS_QUERY
    if t in q:
        return QUERY_CONTAINS_TARGET

    for keyword in keywords or ():
        k = keyword.lower()
        if k and k in q:
            return KEYWORD_IN_QUERY

    # Jaccard index over distinct characters
    q_chars = set(q)
    t_chars = set(t)
    union = q_chars | t_chars
    if not union:
        return 0.0
    return len(q_chars & t_chars) / len(union)


def _entry_score(query: str, entry: CatalogEntry) -> float:
    score = calculate_score(query, entry.name, entry.keywords)
    if isinstance(entry, MedicineEntry):
        score = max(score, calculate_score(query, entry.generic_name, entry.keywords))
    return score


def _exact_match(query: str, entries: Sequence[CatalogEntry]) -> Optional[CatalogEntry]:
    for entry in entries:
        if entry.name and entry.name.strip().lower() == query:
            return entry
        if isinstance(entry, DiagnosisEntry) and entry.code and entry.code.strip().lower() == query:
            return entry
    return None


def _code_prefix_match(query: str, entries: Sequence[CatalogEntry]) -> Optional[DiagnosisEntry]:
    candidates = [
        entry for entry in entries
        if isinstance(entry, DiagnosisEntry) and entry.code and entry.code.lower().startswith(query)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda entry: (len(entry.code), entry.code))


def find_best_match(query: Optional[str], entries: Sequence[AnyCatalogEntry]) -> Optional[MatchResult]:
    """Resolve ``query`` against ``entries`` and report how it was resolved."""
    normalized = normalize_query(query)
    if not normalized:
        return None

    exact = _exact_match(normalized, entries)
    if exact is not None:
        return MatchResult(entry=exact, score=1.0, method=MatchMethod.EXACT)

    prefixed = _code_prefix_match(normalized, entries)
    if prefixed is not None:
        return MatchResult(
            entry=prefixed,
            score=len(normalized) / len(prefixed.code),
            method=MatchMethod.CODE_PREFIX,
        )

    best_entry = None
    best_score = 0.0
    for entry in entries:
        score = _entry_score(normalized, entry)
        if score > best_score:
            best_score = score
            best_entry = entry

    if best_entry is None or best_score <= ACCEPT_THRESHOLD:
        logger.debug(f"No catalog match for '{normalized}' (best score {best_score:.2f})")
        return None
    return MatchResult(entry=best_entry, score=best_score, method=MatchMethod.FUZZY)


def match(query: Optional[str], entries: Sequence[AnyCatalogEntry]) -> Optional[AnyCatalogEntry]:
    result = find_best_match(query, entries)
    return result.entry if result else None


def get_related(code: str, diagnoses: Sequence[DiagnosisEntry]) -> List[DiagnosisEntry]:
    """Diagnoses sharing the category prefix (up to 3 characters before the first '.')."""
    prefix = (code or "").strip().split(".", 1)[0][:3].upper()
    if not prefix:
        return []
    return [entry for entry in diagnoses if entry.code.upper().startswith(prefix)]


class EntityMatcher:
    """Matcher bound to one loaded catalog"""

    def __init__(self, catalog: MedicalCatalog):
        self.catalog = catalog

    def find(self, kind: CatalogKind, query: Optional[str]) -> Optional[MatchResult]:
        return find_best_match(query, self.catalog.entries_for(kind))

    def match_diagnosis(self, query: Optional[str]) -> Optional[DiagnosisEntry]:
        return match(query, self.catalog.diagnoses)

    def match_medicine(self, query: Optional[str]) -> Optional[MedicineEntry]:
        return match(query, self.catalog.medicines)

    def match_examination(self, query: Optional[str]) -> Optional[ExaminationEntry]:
        return match(query, self.catalog.items)

    def get_related(self, code: str) -> List[DiagnosisEntry]:
        return get_related(code, self.catalog.diagnoses)
