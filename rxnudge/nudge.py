"""
Patient-facing "nudge" cards.

The generation backend only ever sees verified prescription fields. Its
answer must parse against a strict schema and pass the plain-language gate
(after word-level simplification if needed); anything else falls back to a
minimal card built from the extracted instructions alone.
"""

import json
import logging
from typing import Iterable, List, Optional

from pydantic import ValidationError

from . import readability
from .exceptions import GenerationError
from .models import InteractionFinding, MedicationCandidate, NudgeCard, PatientContext
from .schemas import NudgeResponse

# Set up logging
logger = logging.getLogger(__name__)

INTERACTION_WARNING = "May interact with other medications"
FALLBACK_HEADLINE = "Follow this prescription as your doctor directed"

EXAMPLE_CARD = {
    "headline": "Short title that mentions this drug or timing",
    "plain_instruction": "Clear directions using the actual dosage and frequency from this prescription",
    "the_why": "Specific benefit of this drug (if you know it), otherwise empty string",
    "habit_hook": "Link to patient's lifestyle if provided, otherwise empty string",
    "warning_label": "Specific warnings for this drug if any, otherwise empty string",
}

# Text a model may copy back instead of writing a real card
PLACEHOLDER_TEXTS = {text.lower() for text in EXAMPLE_CARD.values()} | {
    "simple instruction based on actual prescription",
}

NUDGE_PROMPT = """You are Dr. Nudge, a medication adherence expert.
Generate personalized, accurate medication instructions. Never invent information that was not provided.

Given this EXACT prescription data:
- Drug: {drug_name}
- Dosage: {dosage}
- Frequency: {frequency}
- Duration: {duration}
- Route: {route}
- Instructions: {instructions}

Patient context:
- Name: {name}
- Age: {age}
- Lifestyle: {lifestyle}
- Concerns: {concerns}
{interaction_lines}
CRITICAL RULES:
1. Use ONLY the information provided above
2. DO NOT add generic advice like "helps your body heal"
3. DO NOT invent dosage, frequency, or instructions
4. If information is missing, leave that field empty
5. Be specific to THIS drug and THIS prescription
6. If frequency/dosage is not clear, say "as prescribed by your doctor"
7. Use short sentences and everyday words (reading grade 8 or lower)

Generate a personalized adherence card in JSON format.
Do NOT copy the example text below verbatim; fill it with content specific to THIS prescription.
Example shape (fields must exist, but content must be customized):
{example}"""

TRANSLATE_PROMPT = """Translate the following medical instruction to {language}.
Keep it simple, use everyday words. This is for a patient, not a doctor.
If the target language uses a non-Latin script, provide both the script and a transliteration.

{text}"""

UNTRANSLATED_LANGUAGES = {"", "en", "english"}


def _is_placeholder(text: str) -> bool:
    return (text or "").strip().lower() in PLACEHOLDER_TEXTS


def template_headline(candidate: MedicationCandidate) -> str:
    """Headline built only from verified fields."""
    parts = []
    if candidate.drug_name:
        parts.append(f"Taking {candidate.drug_name}")
    if candidate.dosage:
        parts.append(candidate.dosage)
    if candidate.frequency:
        parts.append(f"as {candidate.frequency}")
    return " ".join(parts) if parts else FALLBACK_HEADLINE


def _join_warnings(*warnings: str) -> str:
    return "\n".join(w for w in warnings if w and w.strip())


class NudgeGenerator:

    def __init__(self, llm=None):
        self.llm = llm

    @property
    def available(self) -> bool:
        return self.llm is not None and self.llm.available

    def minimal_card(self, candidate: MedicationCandidate,
                     findings: Iterable[InteractionFinding] = (), safety_text: str = "") -> NudgeCard:
        """
        Card with the extracted instructions only; nothing generated
        """
        instructions = candidate.instructions or ""
        return NudgeCard(
            headline=instructions,
            plain_instruction=instructions,
            the_why="",
            habit_hook="",
            warning_label=_join_warnings(INTERACTION_WARNING if list(findings) else "", safety_text),
        )

    def build_prompt(self, candidate: MedicationCandidate, patient: PatientContext,
                     findings: List[InteractionFinding]) -> str:
        interaction_lines = ""
        if findings:
            lines = [f"- {f.involved_drug}: {f.description}" for f in findings[:5]]
            interaction_lines = "\nKnown interactions:\n" + "\n".join(lines) + "\n"

        return NUDGE_PROMPT.format(
            drug_name=candidate.drug_name,
            dosage=candidate.dosage or "not specified",
            frequency=candidate.frequency or "not specified",
            duration=candidate.duration or "not specified",
            route=candidate.route or "not specified",
            instructions=candidate.instructions or "not specified",
            name=patient.name or "Patient",
            age=patient.age if patient.age is not None else "not specified",
            lifestyle=patient.lifestyle or "not specified",
            concerns=patient.concerns or "not specified",
            interaction_lines=interaction_lines,
            example=json.dumps(EXAMPLE_CARD, indent=2),
        )

    def generate(self, candidate: MedicationCandidate, patient_context: Optional[PatientContext] = None,
                 findings: Iterable[InteractionFinding] = (), safety_text: str = "") -> NudgeCard:
        """
        Nudge card for one confirmed medication; never raises on backend trouble
        """
        if not candidate.is_readable:
            raise ValueError("Cannot generate nudge: drug name not extracted from prescription")

        findings = list(findings)
        patient = patient_context or PatientContext()

        if not self.available:
            return self.minimal_card(candidate, findings, safety_text)

        try:
            payload = self.llm.generate_json(self.build_prompt(candidate, patient, findings))
            parsed = NudgeResponse.model_validate(payload)
        except GenerationError as e:
            logger.error(f"Nudge generation failed for {candidate.drug_name}: {e}")
            return self.minimal_card(candidate, findings, safety_text)
        except ValidationError as e:
            logger.warning(f"⚠️ Nudge response rejected by schema for {candidate.drug_name}: {e.error_count()} error(s)")
            return self.minimal_card(candidate, findings, safety_text)

        card = NudgeCard(**parsed.model_dump())

        # Echoed example text is never shown; the headline gets a template instead
        for name in ("plain_instruction", "the_why", "habit_hook", "warning_label"):
            if _is_placeholder(getattr(card, name)):
                setattr(card, name, "")
        if not card.headline.strip() or _is_placeholder(card.headline):
            card.headline = template_headline(candidate)

        if not card.warning_label and findings:
            card.warning_label = INTERACTION_WARNING
        # Warning text is simplified whether or not the gate passes
        card.warning_label = readability.simplify(card.warning_label)

        result = readability.validate(card.text())
        if not result.is_plain:
            logger.info(f"⚠️ Text not plain enough (Grade {result.grade_level}), jargon: {result.jargon}")
            card = NudgeCard(
                headline=readability.simplify(card.headline),
                plain_instruction=readability.simplify(card.plain_instruction),
                the_why=readability.simplify(card.the_why),
                habit_hook=readability.simplify(card.habit_hook),
                warning_label=card.warning_label,
            )
            result = readability.validate(card.text())
            if not result.is_plain:
                logger.warning(f"⚠️ Simplified card still at Grade {result.grade_level}, using minimal card")
                return self.minimal_card(candidate, findings, safety_text)
            logger.info("✅ Applied automatic simplification")
        else:
            logger.info(f"✅ Plain language validated (Grade {result.grade_level})")

        card.warning_label = _join_warnings(card.warning_label, safety_text)
        return card

    def translate(self, text: str, language: str) -> str:
        """
        Translate patient text; on failure the original text is returned, tagged
        """
        if not text or (language or "").strip().lower() in UNTRANSLATED_LANGUAGES:
            return text

        if not self.available:
            return f"[Translation unavailable] {text}"

        try:
            return self.llm.generate_text(TRANSLATE_PROMPT.format(language=language, text=text))
        except GenerationError as e:
            logger.error(f"Translation to {language} failed: {e}")
            return f"[Translation unavailable] {text}"
