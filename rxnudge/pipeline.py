"""
Prescription pipeline orchestrator.

Two calls per prescription:

``process``  image → cache lookup → extraction → per-medication name
             validation, interaction check and safety flag. Nothing is
             generated yet; the result waits for the patient to confirm.
``confirm``  patient-edited medication list → re-validation, interactions
             recomputed against the confirmed set → nudge cards → sink.

Only this module turns adapter exceptions and rejected candidates into the
structured failure entries the UI shows.
"""

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple, Union

from .cache import ResultCache
from .config import Settings, get_settings
from .exceptions import CacheStoreError
from .extraction import (
    EXTRACTION_FAILED, UNREADABLE_IMAGE, ExtractionChain, OcrTextExtractor, PatternExtractor,
    PrescriptionImage, VisionExtractor,
)
from .gemini import GeminiClient
from .interactions import InteractionChecker, determine_safety_flag
from .models import (
    CandidateState, FailedExtraction, FailureReason, MedicationCandidate, PatientContext,
)
from .nudge import NudgeGenerator
from .ocr import OcrEngine
from .rxnorm import InteractionAPI, RxNormAPI
from .safety import enhanced_safety_check, safety_warning_text
from .store import FileCacheStore
from .validator import DrugNameValidator

# Set up logging
logger = logging.getLogger(__name__)

RETAKE_PROMPT = "The prescription image may be unclear. Please try taking a clearer photo with good lighting."

Outcome = Tuple[Optional[Dict[str, Any]], Optional[FailedExtraction]]


def _patient(patient_context: Union[PatientContext, Dict[str, Any], None]) -> PatientContext:
    if isinstance(patient_context, PatientContext):
        return patient_context
    return PatientContext.from_dict(patient_context)


def _names(medications: Optional[List[str]]) -> List[str]:
    return [m.strip() for m in (medications or []) if isinstance(m, str) and m.strip()]


class PrescriptionPipeline:

    def __init__(self, chain: ExtractionChain, validator: DrugNameValidator, checker: InteractionChecker,
                 nudge_generator: NudgeGenerator, cache: ResultCache, terminology=None,
                 max_workers: int = 4, sink=None):
        self.chain = chain
        self.validator = validator
        self.checker = checker
        self.nudge_generator = nudge_generator
        self.cache = cache
        self.terminology = terminology
        self.max_workers = max(1, max_workers)
        self.sink = sink

    def _map(self, fn, items: List) -> List:
        """Run per-medication work in parallel; results keep input order."""
        if len(items) <= 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            return list(executor.map(fn, items))

    # ── Validation ──

    def _validate(self, candidate: MedicationCandidate, keep_display_name: bool = False) -> Outcome:
        """
        Validate one candidate's name in place. Returns (validation dict, None) or (None, failure).
        """
        if not candidate.is_readable:
            logger.info("Skipping medication with unclear name")
            return None, FailedExtraction(
                reason=FailureReason.UNCLEAR_NAME,
                message="Could not read medication name clearly",
                extracted_data=candidate.to_dict(),
            )

        validation = self.validator.validate(candidate.drug_name)

        if not validation.valid:
            if validation.lookup_unavailable:
                return None, FailedExtraction(
                    reason=FailureReason.LOOKUP_UNAVAILABLE,
                    message=f'Could not verify "{candidate.drug_name}" because the drug database '
                            f'is unreachable. Please try again shortly.',
                    original_name=candidate.drug_name,
                    extracted_data=candidate.to_dict(),
                )
            logger.info(f"⚠️ Invalid drug name: \"{candidate.drug_name}\"")
            return None, FailedExtraction(
                reason=FailureReason.INVALID_DRUG,
                message=f'"{candidate.drug_name}" is not a recognized medication',
                original_name=candidate.drug_name,
                suggestions=list(validation.suggestions),
                extracted_data=candidate.to_dict(),
            )

        candidate.canonical_name = validation.canonical_name
        candidate.rxcui = validation.canonical_id
        candidate.name_confidence = validation.confidence
        if not keep_display_name:
            candidate.drug_name = validation.display_name

        if validation.was_corrected:
            logger.info(f"✅ Validated & corrected: \"{validation.original_name}\" → "
                        f"\"{validation.corrected_name}\" (showing \"{candidate.drug_name}\")")
        return validation.to_dict(), None

    def _assess(self, candidate: MedicationCandidate, other_drugs: List[str],
                patient: PatientContext) -> Dict[str, Any]:
        """Interactions, safety flag and static safety rules for a validated candidate."""
        findings = self.checker.check_interactions(candidate.lookup_name, other_drugs)
        verdict = determine_safety_flag(findings)
        report = enhanced_safety_check(candidate.lookup_name, candidate.dosage, patient.age,
                                       other_drugs, frequency=candidate.frequency)
        logger.info(f"Safety for {candidate.lookup_name}: {verdict.flag.value}, "
                    f"{len(findings)} interaction(s), {report.overall_severity} severity")
        return {
            'findings': findings,
            'safety_flag': verdict.flag.value,
            'safety_reasoning': verdict.reasoning,
            'interactions': [f.to_dict() for f in findings],
            'enhanced_safety': report.to_dict(),
            'safety_text': safety_warning_text(report),
        }

    # ── Stage 1: extraction ──

    def _process_candidate(self, candidate: MedicationCandidate, active: List[str],
                           patient: PatientContext) -> Outcome:
        validation, failure = self._validate(candidate)
        if failure:
            return None, failure

        assessment = self._assess(candidate, active, patient)
        return {
            'extracted_data': candidate.to_dict(),
            'name_validation': validation,
            'safety_flag': assessment['safety_flag'],
            'safety_reasoning': assessment['safety_reasoning'],
            'interactions': assessment['interactions'],
            'enhanced_safety': assessment['enhanced_safety'],
            'patient_facing_card': None,
            'state': CandidateState.AWAITING_CONFIRMATION.value,
        }, None

    def process(self, image_bytes: bytes, mime_type: str = "image/jpeg",
                active_medications: Optional[List[str]] = None,
                patient_context: Union[PatientContext, Dict[str, Any], None] = None,
                force_refresh: bool = False) -> Dict[str, Any]:
        """
        Extract, validate and safety-check every medication on a prescription image
        """
        image = PrescriptionImage(image_bytes, mime_type)
        image_hash = image.digest
        active = _names(active_medications)
        patient = _patient(patient_context)

        logger.info(f"Processing prescription {image_hash[:12]} (force refresh: {force_refresh})")

        if not force_refresh:
            entry = self.cache.get(image_hash)
            if entry is not None:
                return copy.deepcopy(entry.normalized_result)
        else:
            logger.info("🔄 Force refresh - skipping cache lookup")

        extraction = self.chain.extract(image)

        if extraction.error in (UNREADABLE_IMAGE, EXTRACTION_FAILED):
            failures = []
            if extraction.error == UNREADABLE_IMAGE:
                failures.append(FailedExtraction(
                    reason=FailureReason.UNREADABLE_IMAGE,
                    message=extraction.note or RETAKE_PROMPT,
                ).to_dict())
            return {
                'status': 'failed',
                'image_hash': image_hash,
                'error': 'Unable to read prescription',
                'detail': extraction.note or 'The prescription image is not clear enough. Please take a clearer photo.',
                'stage': extraction.stage,
                'medications': [],
                'total_medications': 0,
                'failedExtractions': failures,
                'suggestions': RETAKE_PROMPT,
            }

        logger.info(f"Found {len(extraction.medications)} medication line(s) at {extraction.stage} stage")

        outcomes = self._map(lambda c: self._process_candidate(c, active, patient), extraction.medications)
        medications = [m for m, _ in outcomes if m is not None]
        failed = [f.to_dict() for _, f in outcomes if f is not None]

        if not medications:
            logger.warning(f"⚠️ No medications validated for {image_hash[:12]}")
            return {
                'status': 'failed',
                'image_hash': image_hash,
                'error': 'Unable to extract medication information',
                'detail': 'Could not read any medication names from the prescription.',
                'stage': extraction.stage,
                'medications': [],
                'total_medications': 0,
                'failedExtractions': failed,
                'suggestions': RETAKE_PROMPT if failed else None,
            }

        result = {
            'status': 'ok',
            'image_hash': image_hash,
            'medications': medications,
            'total_medications': len(medications),
            'failedExtractions': failed,
            'warnings': (f"{len(failed)} medication(s) could not be processed. "
                         f"Please verify the extracted information.") if failed else None,
        }

        self.cache.put(image_hash, result, raw_extraction=extraction.raw)
        logger.info(f"✅ Result cached for {image_hash[:12]}")
        return copy.deepcopy(result)

    # ── Stage 2: confirmation ──

    def confirm(self, medications: List[Dict[str, Any]],
                patient_context: Union[PatientContext, Dict[str, Any], None] = None,
                active_medications: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Generate nudge cards for the patient-confirmed medications.

        Entries may be full ``process`` results or bare extracted_data dicts.
        An entry with ``skip_validation`` (or ``skipValidation``) and a known
        canonical name is not looked up again.
        """
        patient = _patient(patient_context)
        active = _names(active_medications)

        candidates = []
        for med in medications or []:
            data = med.get('extracted_data', med) if isinstance(med, dict) else {}
            candidate = MedicationCandidate.from_dict(data)
            skip = bool(med.get('skip_validation') or med.get('skipValidation')) if isinstance(med, dict) else False
            candidates.append((candidate, skip))

        def validate(item) -> Outcome:
            candidate, skip = item
            if skip and candidate.is_readable and candidate.canonical_name:
                return {'skipped': True}, None
            # The name the patient confirmed stays on screen; lookups use the canonical one
            return self._validate(candidate, keep_display_name=True)

        validations = self._map(validate, candidates)

        confirmed = [(c, v) for (c, _), (v, f) in zip(candidates, validations) if f is None]
        failed = [f.to_dict() for _, f in validations if f is not None]

        def generate(index: int) -> Dict[str, Any]:
            candidate, validation = confirmed[index]
            others = [c.lookup_name for i, (c, _) in enumerate(confirmed) if i != index] + active
            assessment = self._assess(candidate, others, patient)

            card = self.nudge_generator.generate(candidate, patient, assessment['findings'],
                                                 assessment['safety_text'])
            entry = {
                'extracted_data': candidate.to_dict(),
                'name_validation': validation,
                'safety_flag': assessment['safety_flag'],
                'safety_reasoning': assessment['safety_reasoning'],
                'interactions': assessment['interactions'],
                'enhanced_safety': assessment['enhanced_safety'],
                'patient_facing_card': card.to_dict(),
                'state': CandidateState.NUDGE_GENERATED.value,
            }
            return self._persist(entry)

        results = self._map(generate, list(range(len(confirmed))))
        logger.info(f"✅ Generated {len(results)} nudge card(s), {len(failed)} rejected")

        return {
            'medications': results,
            'total_medications': len(results),
            'failedExtractions': failed,
        }

    def _persist(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        if self.sink is None:
            return entry
        try:
            self.sink.save(dict(entry, state=CandidateState.PERSISTED.value))
        except CacheStoreError as e:
            logger.error(f"Could not persist {entry['extracted_data']['drug_name']}: {e}")
            return entry
        entry['state'] = CandidateState.PERSISTED.value
        return entry

    # ── Other operations ──

    def invalidate(self, image_hash: str) -> Dict[str, Any]:
        """Drop a cached scan so the same photo is extracted again."""
        removed = self.cache.invalidate(image_hash)
        return {'image_hash': image_hash, 'invalidated': removed}

    def check_interactions(self, drug_name: str, current_meds: Optional[List[str]] = None) -> Dict[str, Any]:
        findings = self.checker.check_interactions(drug_name, _names(current_meds))
        return {
            'interactions': [f.to_dict() for f in findings],
            'safetyFlag': determine_safety_flag(findings).to_dict(),
        }

    def lookup_drug(self, name: str) -> Dict[str, Any]:
        if self.terminology is None:
            return {'found': False, 'name': name, 'message': 'Drug lookup not configured'}
        return self.terminology.lookup_drug(name)

    def translate(self, text: str, language: str) -> Dict[str, Any]:
        return {
            'original': text,
            'translated': self.nudge_generator.translate(text, language),
            'targetLanguage': language,
        }


def build_pipeline(settings: Optional[Settings] = None, sink=None, start_sweeper: bool = True) -> PrescriptionPipeline:
    """
    Wire the pipeline to the real services described by settings
    """
    settings = settings or get_settings()

    terminology = RxNormAPI(settings.rxnav_base_url, timeout=settings.request_timeout)
    interaction_api = InteractionAPI(settings.rxnav_base_url, timeout=settings.request_timeout)

    vision_llm = GeminiClient(settings.gemini_api_key, settings.gemini_vision_model,
                              timeout=settings.vision_timeout, temperature=0.0)
    text_llm = GeminiClient(settings.gemini_api_key, settings.gemini_text_model,
                            timeout=settings.request_timeout * 3, temperature=0.3)
    ocr_engine = OcrEngine(settings.ocr_lang, timeout=settings.ocr_timeout,
                           tesseract_cmd=settings.tesseract_cmd)

    chain = ExtractionChain([
        VisionExtractor(vision_llm),
        OcrTextExtractor(ocr_engine, text_llm),
        PatternExtractor(ocr_engine),
    ])

    cache = ResultCache(
        durable=FileCacheStore(settings.cache_dir),
        ttl_seconds=settings.cache_ttl_seconds,
        sweep_interval=settings.cache_sweep_interval,
    )
    if start_sweeper:
        cache.start_sweeper()

    return PrescriptionPipeline(
        chain=chain,
        validator=DrugNameValidator(terminology),
        checker=InteractionChecker(terminology, interaction_api, settings.fallback_interactions_path),
        nudge_generator=NudgeGenerator(text_llm),
        cache=cache,
        terminology=terminology,
        max_workers=settings.max_workers,
        sink=sink,
    )
