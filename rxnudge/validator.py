"""
Drug name validation against the terminology service.

1. Exact lookup (name or known synonym) → confidence 1.0.
2. Otherwise approximate search; the closest candidate by edit distance is
   accepted when its similarity is above 0.6 and returned as a correction.
3. Otherwise the name is rejected with up to three raw search hits as
   suggestions.

Which spelling the patient sees after a correction is decided by
``NameValidationResult.display_name`` using ``KEEP_ORIGINAL_CONFIDENCE``.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

from .exceptions import ServiceUnavailableError
from .fuzzy import DEFAULT_MIN_SIMILARITY, best_match
from .models import KEEP_ORIGINAL_CONFIDENCE, UNREADABLE_SENTINEL, NameValidationResult
from .utils import normalize_drug_name

logger = logging.getLogger(__name__)

MAX_APPROXIMATE_CANDIDATES = 5
MAX_SUGGESTIONS = 3

__all__ = ["DrugNameValidator", "KEEP_ORIGINAL_CONFIDENCE", "TerminologyService"]


class TerminologyService(Protocol):
    def find_rxcui(self, name: str) -> Optional[str]: ...

    def approximate_term(self, term: str, max_entries: int = 5) -> List[Dict[str, Any]]: ...


class DrugNameValidator:

    def __init__(self, terminology: TerminologyService,
                 min_similarity: float = DEFAULT_MIN_SIMILARITY,
                 max_candidates: int = MAX_APPROXIMATE_CANDIDATES):
        self.terminology = terminology
        self.min_similarity = min_similarity
        self.max_candidates = max_candidates

    def _exact_lookup(self, name: str) -> Optional[str]:
        rxcui = self.terminology.find_rxcui(name)
        if rxcui:
            return rxcui

        # "Tab. Amoxicillin (Mox)" style lines often resolve once the form words are gone
        normalized = normalize_drug_name(name)
        if normalized and normalized != name.lower().strip():
            return self.terminology.find_rxcui(normalized)
        return None

    def validate(self, name: str) -> NameValidationResult:
        if not name or not name.strip() or name.strip().upper() == UNREADABLE_SENTINEL:
            return NameValidationResult(original_name=name or "", valid=False)

        name = name.strip()
        logger.info(f"Validating drug name: '{name}'")

        exact_failed = False
        try:
            rxcui = self._exact_lookup(name)
        except ServiceUnavailableError as e:
            logger.warning(f"⚠️ Exact lookup unavailable for '{name}': {e}")
            rxcui = None
            exact_failed = True

        if rxcui:
            logger.info(f"✅ Exact match for '{name}' (RxCUI {rxcui})")
            return NameValidationResult(
                original_name=name,
                valid=True,
                confidence=1.0,
                canonical_id=rxcui,
                was_corrected=False,
            )

        try:
            candidates = self.terminology.approximate_term(name, max_entries=self.max_candidates)
        except ServiceUnavailableError as e:
            logger.warning(f"⚠️ Approximate search unavailable for '{name}': {e}")
            candidates = []

        candidate_names = [c.get('name') for c in candidates if c.get('name')]
        match = best_match(name, candidate_names, self.min_similarity)

        if match:
            rxcui = next((c.get('rxcui') for c in candidates if c.get('name') == match.candidate), None)
            logger.info(
                f"📝 Spelling correction: '{name}' → '{match.candidate}' "
                f"(confidence: {match.similarity:.0%})"
            )
            return NameValidationResult(
                original_name=name,
                valid=True,
                corrected_name=match.candidate,
                confidence=match.similarity,
                canonical_id=rxcui,
                was_corrected=True,
            )

        lookup_unavailable = exact_failed and not candidate_names
        if lookup_unavailable:
            logger.error(f"❌ Could not validate '{name}': terminology service unreachable")
        else:
            logger.info(f"❌ No valid drug found for: '{name}'")

        return NameValidationResult(
            original_name=name,
            valid=False,
            suggestions=candidate_names[:MAX_SUGGESTIONS],
            lookup_unavailable=lookup_unavailable,
        )
