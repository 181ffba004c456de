import hashlib
import re
from typing import Any, Dict, Optional

# Frequency phrases, most specific first; values are (normalized text, times per day)
FREQUENCY_PATTERNS = [
    (r"\b(?:four\s+times|4\s*(?:x|times))\s*(?:a\s+day|daily|per\s+day)?\b|\bqid\b|\bq6h\b", ("Four times daily", 4)),
    (r"\b(?:three\s+times|thrice|3\s*(?:x|times))\s*(?:a\s+day|daily|per\s+day)?\b|\b(?:tid|tds)\b|\bq8h\b", ("Three times daily", 3)),
    (r"\b(?:twice|two\s+times|2\s*(?:x|times))\s*(?:a\s+day|daily|per\s+day)?\b|\b(?:bid|bd)\b|\bq12h\b", ("Twice daily", 2)),
    (r"\b(?:once|one\s+time|1\s*(?:x|time))\s*(?:a\s+day|daily|per\s+day)\b|\b(?:od|qd)\b|\bdaily\b", ("Once daily", 1)),
    (r"\b(?:qhs|at\s+bedtime|at\s+night)\b", ("At bedtime", 1)),
    (r"\b(?:prn|as\s+needed)\b", ("As needed", None)),
]

# Morning-noon-evening slots for a single unit per dose
DOSE_TIMING_BY_FREQUENCY = {
    "Once daily": "1-0-0",
    "Twice daily": "1-0-1",
    "Three times daily": "1-1-1",
    "At bedtime": "0-0-1",
}

DOSE_TIMING_RE = re.compile(r"^\d+-\d+-\d+$")

DOSE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(mg|mcg|µg|g|ml|units?|iu)\b", re.IGNORECASE)


def hash_image_bytes(image_bytes: bytes) -> str:
    """Content digest used as the cache key for an uploaded image."""
    return hashlib.sha256(image_bytes).hexdigest()


def normalize_drug_name(drug_name: str) -> str:
    """
    Normalize drug names for table lookups
    """
    if not drug_name:
        return ""

    normalized = drug_name.lower().strip()

    # Remove dosage-form words
    for term in ['tab', 'tablet', 'tablets', 'cap', 'capsule', 'capsules', 'inj', 'injection', 'syrup', 'suspension']:
        normalized = re.sub(rf'\b{term}\b\.?', '', normalized).strip()

    # Remove brand name indicators in parentheses
    normalized = re.sub(r'\([^)]*\)', '', normalized).strip()

    return ' '.join(normalized.split())


def standardize_frequency(frequency: str) -> str:
    """
    Map frequency shorthand (BID, TDS, 2x a day...) to plain text
    """
    if not frequency:
        return ""

    for pattern, (normalized, _) in FREQUENCY_PATTERNS:
        if re.search(pattern, frequency, re.IGNORECASE):
            return normalized

    return frequency.strip()


def times_per_day(frequency: str) -> Optional[int]:
    if not frequency:
        return None
    for pattern, (_, times) in FREQUENCY_PATTERNS:
        if re.search(pattern, frequency, re.IGNORECASE):
            return times
    return None


def is_valid_dose_timing(value: str) -> bool:
    return bool(value) and bool(DOSE_TIMING_RE.match(value.strip()))


def dose_timing_for_frequency(frequency: str) -> str:
    """Derive a morning-noon-evening triple from a frequency phrase, or '' if it has none."""
    return DOSE_TIMING_BY_FREQUENCY.get(standardize_frequency(frequency), "")


def parse_dose_mg(dosage_string: str) -> Optional[float]:
    """
    Parse the per-unit strength of a dosage string in milligrams
    """
    if not dosage_string:
        return None

    match = DOSE_RE.search(dosage_string)
    if not match:
        return None

    value = float(match.group(1))
    unit = match.group(2).lower()

    if unit == 'g':
        return value * 1000
    if unit in ('mcg', 'µg'):
        return value / 1000
    if unit == 'mg':
        return value
    return None


def strip_code_fences(content: str) -> str:
    """Remove markdown code fences that generative models wrap JSON in."""
    cleaned = (content or "").strip()
    cleaned = re.sub(r"```(?:json)?\s*", "", cleaned)
    return cleaned.replace("```", "").strip()


def format_interaction(finding: Dict[str, Any]) -> str:
    """
    Format an interaction finding for display
    """
    tier = finding.get('tier', 3)
    marker = {1: '🔴', 2: '🟡', 3: '🟢'}.get(tier, '⚪')
    drug = finding.get('involved_drug', 'Unknown')
    description = finding.get('description', 'No description available')
    return f"{marker} {drug} (tier {tier}): {description}"
