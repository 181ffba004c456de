"""
Tiered medication extraction from a prescription image.

An ExtractionChain tries its extractors strictly in order and stops at the
first one that reads at least one medication name:

1. VisionExtractor   - multimodal model reads the image directly
2. OcrTextExtractor  - Tesseract OCR, then a text model structures the text
3. PatternExtractor  - regular expressions over the OCR text, no model needed

A failing stage (timeout, bad JSON, missing backend) raises ExtractionError
and the chain moves on. Stages that only produce unreadable-name sentinels do
not stop the chain, but their sentinels are kept so the caller can report
them.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .exceptions import ExtractionError, GenerationError, OcrError, UnreadableImageError
from .gemini import image_part
from .models import UNREADABLE_SENTINEL, DosingSource, MedicationCandidate
from .ocr import load_images
from .schemas import TextExtraction, VisionResponse
from .utils import DOSE_RE, dose_timing_for_frequency, hash_image_bytes, standardize_frequency

# Set up logging
logger = logging.getLogger(__name__)

MIN_OCR_CHARS = 5

UNREADABLE_IMAGE = "UNREADABLE_IMAGE"
NO_MEDICATIONS_FOUND = "NO_MEDICATIONS_FOUND"
EXTRACTION_FAILED = "EXTRACTION_FAILED"

VISION_PROMPT = """You are a medical prescription reader. Extract ALL medications from the prescription image.

CRITICAL EXTRACTION RULES:
1. Extract EXACTLY what is written. Do not guess at anything that is not clearly visible.
2. Read each medication line separately. Each line has its own dosage and frequency.
3. If a medication name cannot be read, set drug_name to "CLARIFICATION_NEEDED".

FREQUENCY AND DOSE TIMING RULES:
4. If the frequency IS visible in the image:
   - "once daily", "OD", "QD", "1x a day" = frequency "Once daily", dose_timing "1-0-0"
   - "twice daily", "BD", "BID", "2x a day" = frequency "Twice daily", dose_timing "1-0-1"
   - "three times daily", "TDS", "TID", "3x a day" = frequency "Three times daily", dose_timing "1-1-1"
   - "at bedtime", "HS", "QHS" = frequency "At bedtime", dose_timing "0-0-1"
   - "four times daily", "QID" = frequency "Four times daily", dose_timing ""
   - Several units per dose: "2 caps 3x a day" = dose_timing "2-2-2"
   - Set dosing_source to "prescription".
5. If the frequency is NOT visible in the image:
   - Suggest the standard adult dosing for that medication.
   - You MUST set dosing_source to "ai_generated".

DOSAGE FIELD:
6. Give the strength of a SINGLE tablet or capsule (e.g. "50mg", not "100mg").

OUTPUT FORMAT (valid JSON only):
{
  "medications": [
    {
      "drug_name": "Medicine name exactly as written",
      "dosage": "Single tablet/capsule strength",
      "frequency": "How often in plain text",
      "dose_timing": "Morning-noon-evening count of units, e.g. 1-0-1",
      "dosing_source": "prescription or ai_generated",
      "duration": "Duration if written (e.g. 7 days, Finish course)",
      "route": "Oral unless another route is written",
      "instructions": "Any extra directions written for this line (e.g. after food)"
    }
  ]
}

EXAMPLES:
"Amoxicillin 500mg Cap#21, Sig: 1 cap 3x a day per seven days"
-> {"drug_name": "Amoxicillin", "dosage": "500mg", "frequency": "Three times daily", "dose_timing": "1-1-1", "dosing_source": "prescription", "duration": "7 days", "route": "Oral", "instructions": ""}
"Amoxicillin 250mg - Finish course"
-> {"drug_name": "Amoxicillin", "dosage": "250mg", "frequency": "Three times daily", "dose_timing": "1-1-1", "dosing_source": "ai_generated", "duration": "Finish course", "route": "Oral", "instructions": ""}

Extract all medication information from this prescription image:"""

TEXT_PROMPT = """Extract drug data from this prescription text.
Return ONLY valid JSON with this exact structure:
{{
  "drug_name": "Standardized drug name",
  "dosage": "Amount + unit (e.g. 10mg)",
  "frequency": "Plain English (e.g. Once daily, Twice daily)",
  "dosing_source": "prescription if the frequency is written in the text, ai_generated if you suggested it",
  "duration": "e.g. 30 days",
  "route": "e.g. Oral, Topical",
  "instructions": "Extra directions written in the text, if any"
}}
If the text is ambiguous or illegible, set drug_name to "CLARIFICATION_NEEDED" and explain in a "note" field.

Prescription text:

{ocr_text}"""

# Generic name -> spellings seen on prescriptions (brand names included)
DRUG_ALIASES = {
    'Amlodipine': ['amlodipine', 'amlo', 'norvasc'],
    'Metformin': ['metformin', 'glucophage'],
    'Atorvastatin': ['atorvastatin', 'lipitor'],
    'Losartan': ['losartan', 'cozaar'],
    'Warfarin': ['warfarin', 'coumadin'],
    'Sertraline': ['sertraline', 'zoloft'],
    'Omeprazole': ['omeprazole', 'prilosec'],
    'Lisinopril': ['lisinopril', 'zestril'],
    'Levothyroxine': ['levothyroxine', 'synthroid', 'thyronorm'],
    'Gabapentin': ['gabapentin', 'neurontin'],
    'Clopidogrel': ['clopidogrel', 'plavix'],
    'Ciprofloxacin': ['ciprofloxacin', 'cipro'],
    'Insulin Glargine': [r'insulin\s*glargine', 'lantus'],
    'Aspirin': ['aspirin', 'ecosprin'],
    'Amoxicillin': ['amoxicillin', 'amoxil', 'mox'],
    'Ibuprofen': ['ibuprofen', 'advil', 'motrin', 'brufen'],
    'Acetaminophen': ['acetaminophen', 'paracetamol', 'tylenol', 'crocin', 'dolo'],
    'Metoprolol': ['metoprolol', 'betaloc', 'lopressor'],
    'Simvastatin': ['simvastatin', 'zocor'],
    'Diphenhydramine': ['diphenhydramine', 'benadryl'],
}

DRUG_PATTERNS = [
    (name, re.compile(rf"\b(?:{'|'.join(aliases)})\b", re.IGNORECASE))
    for name, aliases in DRUG_ALIASES.items()
]

ROUTE_PATTERNS = [
    (r'\b(?:iv|intravenous(?:ly)?|inj(?:ection)?|im|intramuscular(?:ly)?)\b', 'Injection'),
    (r'\b(?:topical(?:ly)?|apply|cream|ointment|gel)\b', 'Topical'),
    (r'\b(?:inhale[rd]?|inhalation|puffs?)\b', 'Inhalation'),
    (r'\b(?:sublingual|sl|under\s+(?:the\s+)?tongue)\b', 'Sublingual'),
    (r'\b(?:eye|ear)\s+drops?\b', 'Drops'),
]

DEFAULT_FREQUENCY = "Once daily"


class PrescriptionImage:
    """
    One uploaded prescription. Decoded pages and OCR text are computed once
    and shared by every extractor that needs them.
    """

    def __init__(self, image_bytes: bytes, mime_type: str = "image/jpeg"):
        self.image_bytes = image_bytes
        self.mime_type = mime_type or "image/jpeg"
        self.digest = hash_image_bytes(image_bytes)
        self._pages = None
        self._ocr_text = None
        self._ocr_error = None

    def pages(self):
        if self._pages is None:
            self._pages = load_images(self.image_bytes, self.mime_type)
        return self._pages

    def vision_parts(self) -> List[Dict[str, Any]]:
        """Inline image payloads; PDFs are sent as rendered PNG pages."""
        if self.mime_type != 'application/pdf':
            return [image_part(self.image_bytes, self.mime_type)]

        parts = []
        for page in self.pages():
            buffer = io.BytesIO()
            page.save(buffer, format='PNG')
            parts.append(image_part(buffer.getvalue(), 'image/png'))
        return parts

    def ocr_text(self, engine) -> str:
        """
        OCR text of the image; raises UnreadableImageError when it is shorter than 5 characters
        """
        if self._ocr_error is not None:
            raise self._ocr_error

        if self._ocr_text is None:
            try:
                self._ocr_text = engine.extract_text_from_images(self.pages())
            except OcrError as e:
                self._ocr_error = e
                raise

        if len(self._ocr_text.strip()) < MIN_OCR_CHARS:
            raise UnreadableImageError(
                "Unable to read prescription clearly. The image may be too blurry "
                "or the handwriting is not legible.")
        return self._ocr_text

    @property
    def ocr_text_if_done(self) -> str:
        return self._ocr_text or ""


@dataclass
class ExtractionResult:
    medications: List[MedicationCandidate] = field(default_factory=list)
    error: Optional[str] = None
    stage: str = ""
    ocr_text: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)
    note: str = ""

    @property
    def readable(self) -> List[MedicationCandidate]:
        return [m for m in self.medications if m.is_readable]

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.readable)


class Extractor:
    """One extraction strategy. Subclasses raise ExtractionError on failure."""

    name = "extractor"

    def extract(self, image: PrescriptionImage) -> ExtractionResult:
        raise NotImplementedError


class VisionExtractor(Extractor):
    name = "vision"

    def __init__(self, llm):
        self.llm = llm

    def extract(self, image: PrescriptionImage) -> ExtractionResult:
        if self.llm is None or not self.llm.available:
            raise GenerationError("vision backend not configured")

        logger.info("Analyzing prescription image with vision model...")
        payload = self.llm.generate_json([VISION_PROMPT] + image.vision_parts())

        try:
            parsed = VisionResponse.model_validate(payload)
        except ValidationError as e:
            raise GenerationError(f"vision response not in expected format: {e}") from e

        medications = [m.to_candidate() for m in parsed.medications]
        logger.info(f"✅ Vision model returned {len(medications)} medication line(s)")
        return ExtractionResult(medications=medications, stage=self.name, raw=payload)


class OcrTextExtractor(Extractor):
    name = "ocr_text"

    def __init__(self, ocr_engine, llm):
        self.ocr_engine = ocr_engine
        self.llm = llm

    def extract(self, image: PrescriptionImage) -> ExtractionResult:
        ocr_text = image.ocr_text(self.ocr_engine)

        if self.llm is None or not self.llm.available:
            raise GenerationError("text backend not configured")

        payload = self.llm.generate_json(TEXT_PROMPT.format(ocr_text=ocr_text))
        if isinstance(payload, list):
            payload = payload[0] if payload else {}

        try:
            parsed = TextExtraction.model_validate(payload)
        except ValidationError as e:
            raise GenerationError(f"text model response not in expected format: {e}") from e

        return ExtractionResult(
            medications=[parsed.to_candidate()],
            stage=self.name,
            ocr_text=ocr_text,
            raw=payload if isinstance(payload, dict) else {'response': payload},
            note=parsed.note,
        )


class PatternExtractor(Extractor):
    """
    Deterministic fallback: known drug names (generic and brand) plus the
    dosage, frequency and route written on the same line
    """

    name = "pattern"

    def __init__(self, ocr_engine):
        self.ocr_engine = ocr_engine

    @staticmethod
    def _route(text: str) -> str:
        for pattern, route in ROUTE_PATTERNS:
            if re.search(pattern, text, re.IGNORECASE):
                return route
        return "Oral"

    @staticmethod
    def _candidate(drug_name: str, line: str, match_end: int = 0) -> MedicationCandidate:
        # Strength written right after the name wins over any other number on the line
        dose_match = DOSE_RE.search(line, match_end) or DOSE_RE.search(line)
        dosage = f"{dose_match.group(1)}{dose_match.group(2).lower()}" if dose_match else ""

        frequency = standardize_frequency(line)
        if frequency == line.strip():
            frequency = ""

        if frequency:
            source = DosingSource.PRESCRIPTION.value
        else:
            frequency = DEFAULT_FREQUENCY
            source = DosingSource.AI_GENERATED.value

        return MedicationCandidate(
            drug_name=drug_name,
            dosage=dosage,
            frequency=frequency,
            dose_timing=dose_timing_for_frequency(frequency),
            dosing_source=source,
            route=PatternExtractor._route(line),
        )

    def parse(self, ocr_text: str) -> List[MedicationCandidate]:
        medications = []
        seen = set()

        for line in ocr_text.splitlines():
            for name, pattern in DRUG_PATTERNS:
                match = pattern.search(line)
                if match and name not in seen:
                    seen.add(name)
                    medications.append(self._candidate(name, line, match.end()))

        if not medications:
            # Keep what could be read so the user can fill in the name
            medications.append(self._candidate(UNREADABLE_SENTINEL, ocr_text))

        return medications

    def extract(self, image: PrescriptionImage) -> ExtractionResult:
        ocr_text = image.ocr_text(self.ocr_engine)
        medications = self.parse(ocr_text)
        return ExtractionResult(
            medications=medications,
            stage=self.name,
            ocr_text=ocr_text,
            raw={'pattern_matches': [m.drug_name for m in medications]},
        )


class ExtractionChain:
    """
    Ordered fallback over extractors; the first stage that reads a medication name wins
    """

    def __init__(self, extractors: List[Extractor]):
        self.extractors = list(extractors)

    def extract(self, image: PrescriptionImage) -> ExtractionResult:
        unclear = None
        unreadable = None
        last_error = None

        for extractor in self.extractors:
            try:
                result = extractor.extract(image)
            except UnreadableImageError as e:
                logger.warning(f"⚠️ {extractor.name} stage: {e}")
                unreadable = e
                continue
            except ExtractionError as e:
                logger.warning(f"⚠️ {extractor.name} stage failed, falling back: {e}")
                last_error = e
                continue

            result.ocr_text = result.ocr_text or image.ocr_text_if_done
            if result.readable:
                logger.info(f"✅ Extracted {len(result.readable)} medication(s) at {extractor.name} stage")
                return result

            logger.info(f"{extractor.name} stage found no readable medication names")
            unclear = result

        if unclear is not None:
            unclear.error = NO_MEDICATIONS_FOUND
            unclear.note = unclear.note or "Could not extract any clear medication names from prescription"
            return unclear

        if unreadable is not None:
            return ExtractionResult(error=UNREADABLE_IMAGE, stage="ocr",
                                    ocr_text=image.ocr_text_if_done, note=str(unreadable))

        return ExtractionResult(
            error=EXTRACTION_FAILED,
            stage=getattr(last_error, 'stage', 'extraction'),
            note=str(last_error) if last_error else "No extraction backend available",
        )
