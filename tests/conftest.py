import io

import pytest
from PIL import Image

from rxnudge.cache import ResultCache
from rxnudge.exceptions import CacheStoreError, ServiceUnavailableError
from rxnudge.extraction import ExtractionChain, ExtractionResult, Extractor
from rxnudge.interactions import InteractionChecker
from rxnudge.models import MedicationCandidate
from rxnudge.nudge import NudgeGenerator
from rxnudge.pipeline import PrescriptionPipeline
from rxnudge.validator import DrugNameValidator


class FakeTerminology:
    """In-memory stand-in for RxNormAPI"""

    def __init__(self, exact=None, approximate=None, unavailable=False):
        self.exact = {k.lower(): v for k, v in (exact or {}).items()}
        self.approximate = {k.lower(): v for k, v in (approximate or {}).items()}
        self.unavailable = unavailable
        self.calls = []

    def find_rxcui(self, name):
        self.calls.append(('find_rxcui', name))
        if self.unavailable:
            raise ServiceUnavailableError("rxnorm", "connection refused")
        return self.exact.get(name.lower())

    def approximate_term(self, term, max_entries=5):
        self.calls.append(('approximate_term', term))
        if self.unavailable:
            raise ServiceUnavailableError("rxnorm", "connection refused")
        return list(self.approximate.get(term.lower(), []))[:max_entries]

    def lookup_drug(self, name):
        rxcui = self.exact.get(name.lower())
        if not rxcui:
            return {'found': False, 'name': name, 'message': 'Drug not found in RxNorm'}
        return {'found': True, 'name': name, 'concepts': [{'rxcui': rxcui, 'name': name, 'synonym': '', 'tty': 'IN'}]}


class FakeInteractionAPI:

    def __init__(self, by_rxcui=None, among=None, unavailable=False):
        self.by_rxcui = by_rxcui or {}
        self.among = among or []
        self.unavailable = unavailable
        self.calls = 0

    def interactions_for(self, rxcui):
        self.calls += 1
        if self.unavailable:
            raise ServiceUnavailableError("interaction", "timed out")
        return list(self.by_rxcui.get(rxcui, []))

    def interactions_among(self, rxcuis):
        if self.unavailable:
            raise ServiceUnavailableError("interaction", "timed out")
        return list(self.among)


class FakeLLM:
    """
    Scripted generation backend. Each call consumes the next response;
    exception instances are raised instead of returned.
    """

    def __init__(self, responses=None, available=True):
        self.responses = list(responses or [])
        self._available = available
        self.prompts = []

    @property
    def available(self):
        return self._available

    def _next(self, parts):
        self.prompts.append(parts)
        if not self.responses:
            raise AssertionError("FakeLLM called more times than scripted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def generate_json(self, parts):
        return self._next(parts)

    def generate_text(self, parts):
        return self._next(parts)


class FakeOcrEngine:

    def __init__(self, text=""):
        self.text = text
        self.calls = 0

    def extract_text_from_images(self, pages):
        self.calls += 1
        return self.text


class ScriptedExtractor(Extractor):
    """Returns a fixed result and counts how often the chain asked for one"""

    name = "scripted"

    def __init__(self, medications):
        self.medications = medications
        self.calls = 0

    def extract(self, image):
        self.calls += 1
        return ExtractionResult(medications=[MedicationCandidate.from_dict(m.to_dict()) for m in self.medications],
                                stage=self.name,
                                raw={'medications': [m.to_dict() for m in self.medications]})


class FakeClock:

    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class MemoryStore:
    """Durable cache tier backed by a dict"""

    def __init__(self, broken=False):
        self.entries = {}
        self.broken = broken
        self.purged_at = []

    def get(self, image_hash):
        if self.broken:
            raise CacheStoreError("disk unavailable")
        return self.entries.get(image_hash)

    def put(self, entry):
        if self.broken:
            raise CacheStoreError("disk unavailable")
        self.entries[entry.image_hash] = entry

    def delete(self, image_hash):
        self.entries.pop(image_hash, None)

    def purge_expired(self, now):
        self.purged_at.append(now)
        expired = [h for h, e in self.entries.items() if e.is_expired(now)]
        for image_hash in expired:
            del self.entries[image_hash]
        return len(expired)


class RecordingSink:

    def __init__(self):
        self.saved = []

    def save(self, medication):
        self.saved.append(medication)
        return medication


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new('RGB', (40, 20), 'white').save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def terminology():
    return FakeTerminology(
        exact={
            'lisinopril': '29046',
            'metformin': '6809',
            'warfarin': '11289',
            'aspirin': '1191',
            'diphenhydramine': '3498',
            'amoxicillin': '723',
        },
        approximate={
            'listnopril': [{'name': 'Lisinopril', 'rxcui': '29046'}, {'name': 'Lisinopril 10 MG', 'rxcui': '314076'}],
            'asprin': [{'name': 'aspirin', 'rxcui': '1191'}],
            'zzqx': [{'name': 'Zyrtec', 'rxcui': '58930'}, {'name': 'Zantac', 'rxcui': '152695'},
                     {'name': 'Zocor', 'rxcui': '196503'}, {'name': 'Zoloft', 'rxcui': '82728'}],
        },
    )


@pytest.fixture
def interaction_api():
    return FakeInteractionAPI()


@pytest.fixture
def checker(terminology, interaction_api):
    return InteractionChecker(terminology, interaction_api)


@pytest.fixture
def make_pipeline(terminology, checker, clock):
    """Pipeline over fakes; pass extractors, a nudge backend or a sink to override."""

    def _make(extractors, nudge_llm=None, sink=None, durable=None):
        return PrescriptionPipeline(
            chain=ExtractionChain(extractors),
            validator=DrugNameValidator(terminology),
            checker=checker,
            nudge_generator=NudgeGenerator(nudge_llm),
            cache=ResultCache(durable=durable, ttl_seconds=1800, clock=clock),
            terminology=terminology,
            max_workers=2,
            sink=sink,
        )

    return _make
