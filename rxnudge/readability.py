"""
Plain-language checks for patient-facing text.

Scores text with the Flesch-Kincaid grade level and flags clinical jargon.
Text is "plain" when it reads at grade 8 or below and uses no jargon.
``simplify`` swaps jargon for everyday words; it cannot shorten sentences.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)

TARGET_GRADE = 8.0

JARGON_WORDS = [
    'contraindicated', 'contraindication', 'comorbidity', 'efficacy', 'pharmacological',
    'therapeutic', 'administered', 'cardiovascular', 'hypertension',
    'hypotension', 'metabolize', 'bioavailability', 'prophylactic',
    'systemic', 'topical', 'subcutaneous', 'intravenous', 'titration',
    'renal', 'hepatic', 'gastrointestinal', 'prognosis', 'diagnosis',
    'adverse', 'reaction', 'indication',
    'ventricular', 'remodeling', 'afterload', 'preload',
]

# Longest phrases first so "adverse reaction" wins over "reaction"
MEDICAL_TO_PLAIN = {
    'adverse reaction': 'bad side effect',
    'contraindicated': 'should not be used',
    'contraindication': 'reason not to use it',
    'comorbidity': 'other health condition',
    'efficacy': 'how well it works',
    'pharmacological': 'medicine',
    'therapeutic': 'treatment',
    'administered': 'given',
    'cardiovascular': 'heart and blood vessels',
    'hypertension': 'high blood pressure',
    'hypotension': 'low blood pressure',
    'metabolize': 'break down',
    'bioavailability': 'how much medicine gets into your blood',
    'prophylactic': 'preventive',
    'systemic': 'whole body',
    'topical': 'on the skin',
    'subcutaneous': 'under the skin',
    'intravenous': 'into a vein',
    'titration': 'slow dose change',
    'renal': 'kidney',
    'hepatic': 'liver',
    'gastrointestinal': 'stomach and gut',
    'prognosis': 'likely outcome',
    'diagnosis': 'what the doctor found',
    'adverse': 'bad',
    'reaction': 'response',
    'indication': 'reason to use',
    'ventricular': 'heart chamber',
    'remodeling': 'heart changes',
    'afterload': 'heart strain',
    'preload': 'heart filling',
}


def _term_pattern(term: str) -> re.Pattern:
    # Whole word, allowing plural/verb endings ("reactions", "metabolized")
    return re.compile(rf"\b{re.escape(term)}(?:s|es|d|ed)?\b", re.IGNORECASE)


_JARGON_PATTERNS = [(word, _term_pattern(word)) for word in JARGON_WORDS]
_PLAIN_PATTERNS = [
    (_term_pattern(term), plain)
    for term, plain in sorted(MEDICAL_TO_PLAIN.items(), key=lambda item: -len(item[0]))
]


@dataclass
class ReadabilityResult:
    is_plain: bool
    grade_level: float
    jargon: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    target_grade: float = TARGET_GRADE


def count_syllables(word: str) -> int:
    """Rough syllable count: vowel groups, minus a silent trailing 'e'."""
    word = re.sub(r'[^a-z]', '', word.lower())
    if len(word) <= 3:
        return 1

    vowel_groups = re.findall(r'[aeiouy]+', word)
    count = len(vowel_groups) if vowel_groups else 1

    if word.endswith('e'):
        count -= 1

    return max(1, count)


def flesch_kincaid_grade(text: str) -> float:
    if not text or not text.strip():
        return 0.0

    clean = ' '.join(text.split())

    sentences = [s for s in re.split(r'[.!?]+', clean) if s.strip()]
    sentence_count = len(sentences) or 1

    words = [w for w in clean.split(' ') if w]
    word_count = len(words) or 1

    syllable_count = sum(count_syllables(w) for w in words)

    grade = 0.39 * (word_count / sentence_count) + 11.8 * (syllable_count / word_count) - 15.59
    return max(0.0, grade)


def detect_jargon(text: str) -> List[str]:
    if not text:
        return []
    return [word for word, pattern in _JARGON_PATTERNS if pattern.search(text)]


def validate(text: str) -> ReadabilityResult:
    """
    Score text against the plain-language bar (grade <= 8, no jargon)
    """
    grade = round(flesch_kincaid_grade(text), 1)
    jargon = detect_jargon(text)

    suggestions = []
    if grade > TARGET_GRADE:
        suggestions.append(f"Reading level too high (Grade {grade:.1f}). Use shorter sentences and simpler words.")
    if jargon:
        suggestions.append(f"Medical jargon detected: {', '.join(jargon)}. Use everyday language.")

    return ReadabilityResult(
        is_plain=grade <= TARGET_GRADE and not jargon,
        grade_level=grade,
        jargon=jargon,
        suggestions=suggestions,
    )


def simplify(text: str) -> str:
    """
    Replace known jargon with plain equivalents, word for word
    """
    if not text:
        return ""

    simplified = text
    for pattern, plain in _PLAIN_PATTERNS:
        simplified = pattern.sub(plain, simplified)

    if simplified != text:
        logger.debug("Simplified jargon in patient text")
    return simplified
