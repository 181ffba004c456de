import json
import logging
import threading
import time
from functools import lru_cache
from typing import Any, Dict, List, Optional

import requests

from .exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://rxnav.nlm.nih.gov/REST"


class RxNavClient:
    """
    Rate-limited JSON client for the RxNav REST services
    """

    service_name = "rxnav"

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 10,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'rx-nudge/1.0',
            'Accept': 'application/json'
        })

        # Rate limiting
        self.last_request_time = 0.0
        self.min_request_interval = 0.1  # 100ms between requests
        self._rate_lock = threading.Lock()

    def _make_request(self, endpoint: str, params: dict = None) -> dict:
        """
        Make a rate-limited request; raises ServiceUnavailableError on any transport or decode failure
        """
        with self._rate_lock:
            time_since_last_request = time.time() - self.last_request_time
            if time_since_last_request < self.min_request_interval:
                time.sleep(self.min_request_interval - time_since_last_request)
            self.last_request_time = time.time()

        url = f"{self.base_url}/{endpoint}"

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json() or {}
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.service_name} request to {endpoint} failed: {e}")
            raise ServiceUnavailableError(self.service_name, str(e)) from e
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to parse {self.service_name} response from {endpoint}: {e}")
            raise ServiceUnavailableError(self.service_name, f"invalid JSON: {e}") from e


class RxNormAPI(RxNavClient):
    """
    Terminology lookups: exact name → RxCUI, approximate (fuzzy) search, concept names
    """

    service_name = "rxnorm"

    @lru_cache(maxsize=1000)
    def find_rxcui(self, name: str) -> Optional[str]:
        """
        RxCUI for a name or a known synonym (normalized match), None if unknown
        """
        if not name or not name.strip():
            return None

        data = self._make_request("rxcui.json", {"name": name.strip(), "search": 1})
        rxcuis = (data.get('idGroup') or {}).get('rxnormId') or []
        if rxcuis:
            logger.info(f"Found RxCUI for '{name}': {rxcuis[0]}")
            return rxcuis[0]
        return None

    def approximate_term(self, term: str, max_entries: int = 5) -> List[Dict[str, Any]]:
        """
        Approximate-match candidates, best ranked first: [{'name', 'rxcui', 'score'}]
        """
        if not term or not term.strip():
            return []

        data = self._make_request("approximateTerm.json", {"term": term.strip(), "maxEntries": max_entries})
        candidates = (data.get('approximateGroup') or {}).get('candidate') or []
        if isinstance(candidates, dict):
            candidates = [candidates]

        results = []
        seen = set()
        for candidate in candidates:
            if isinstance(candidate, str):
                candidate = {'name': candidate}
            rxcui = candidate.get('rxcui')
            name = candidate.get('name')
            if not name and rxcui:
                name = self.get_concept_name(rxcui)
            key = (name or '').lower()
            if not name or key in seen:
                continue
            seen.add(key)
            results.append({'name': name, 'rxcui': rxcui, 'score': candidate.get('score')})

        logger.info(f"Approximate search for '{term}' returned {len(results)} candidates")
        return results[:max_entries]

    def get_concept_name(self, rxcui: str) -> Optional[str]:
        try:
            data = self._make_request(f"rxcui/{rxcui}/property.json", {"propName": "RxNorm Name"})
        except ServiceUnavailableError:
            return None
        concepts = (data.get('propConceptGroup') or {}).get('propConcept') or []
        return concepts[0].get('propValue') if concepts else None

    def lookup_drug(self, name: str) -> Dict[str, Any]:
        """
        Drug concepts (clinical and branded products) for a name
        """
        try:
            data = self._make_request("drugs.json", {"name": name})
        except ServiceUnavailableError as e:
            return {'found': False, 'name': name, 'message': str(e)}

        groups = (data.get('drugGroup') or {}).get('conceptGroup') or []
        concepts = []
        for group in groups:
            for concept in group.get('conceptProperties') or []:
                concepts.append({
                    'rxcui': concept.get('rxcui', ''),
                    'name': concept.get('name', ''),
                    'synonym': concept.get('synonym', ''),
                    'tty': concept.get('tty', '')
                })

        if not concepts:
            return {'found': False, 'name': name, 'message': 'Drug not found in RxNorm'}
        return {'found': True, 'name': name, 'concepts': concepts}


class InteractionAPI(RxNavClient):
    """
    Pairwise and multi-drug interaction lookups by RxCUI
    """

    service_name = "interaction"

    @staticmethod
    def _pairs(type_groups: List[Dict], type_key: str) -> List[Dict[str, Any]]:
        pairs = []
        for group in type_groups or []:
            for interaction_type in group.get(type_key) or []:
                for pair in interaction_type.get('interactionPair') or []:
                    names = [
                        (concept.get('minConceptItem') or {}).get('name')
                        for concept in pair.get('interactionConcept') or []
                    ]
                    pairs.append({
                        'drugs': ' + '.join(n for n in names if n),
                        'description': pair.get('description') or '',
                        'severity': pair.get('severity') or 'N/A',
                    })
        return pairs

    def interactions_for(self, rxcui: str) -> List[Dict[str, Any]]:
        """Every known interaction of one drug."""
        data = self._make_request("interaction/interaction.json", {"rxcui": rxcui})
        return self._pairs(data.get('interactionTypeGroup'), 'interactionType')

    def interactions_among(self, rxcuis: List[str]) -> List[Dict[str, Any]]:
        """Interactions between the members of a medication list."""
        if len(rxcuis) < 2:
            return []
        data = self._make_request("interaction/list.json", {"rxcuis": " ".join(rxcuis)})
        return self._pairs(data.get('fullInteractionTypeGroup'), 'fullInteractionType')
