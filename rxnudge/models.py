"""
Data model shared by every pipeline stage.

Dataclasses serialise to the plain-dict shapes the UI and the cache work
with; ``from_dict`` constructors ignore unknown keys so user-edited payloads
coming back for confirmation round-trip safely.
"""

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

# Reserved drug name emitted by extraction backends for an illegible line
UNREADABLE_SENTINEL = "CLARIFICATION_NEEDED"

# Fuzzy corrections above this similarity are treated as OCR noise: the
# patient keeps seeing the spelling from their own prescription.
KEEP_ORIGINAL_CONFIDENCE = 0.85


class DosingSource(str, Enum):
    PRESCRIPTION = "prescription"
    AI_GENERATED = "ai_generated"


class SafetyFlag(str, Enum):
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"


class CandidateState(str, Enum):
    EXTRACTED = "extracted"
    VALIDATED = "validated"
    INTERACTION_CHECKED = "interaction_checked"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    NUDGE_GENERATED = "nudge_generated"
    PERSISTED = "persisted"
    REJECTED = "rejected"


class FailureReason(str, Enum):
    UNCLEAR_NAME = "unclear_name"
    INVALID_DRUG = "invalid_drug"
    LOOKUP_UNAVAILABLE = "lookup_unavailable"
    UNREADABLE_IMAGE = "unreadable_image"


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class MedicationCandidate:
    drug_name: str = ""
    dosage: str = ""
    frequency: str = ""
    dose_timing: str = ""
    dosing_source: str = DosingSource.PRESCRIPTION.value
    duration: str = ""
    route: str = "Oral"
    instructions: str = ""
    name_confidence: Optional[float] = None
    canonical_name: Optional[str] = None
    rxcui: Optional[str] = None

    @property
    def is_readable(self) -> bool:
        name = (self.drug_name or "").strip()
        return bool(name) and name.upper() != UNREADABLE_SENTINEL

    @property
    def lookup_name(self) -> str:
        """Name to use for terminology and interaction lookups."""
        return self.canonical_name or self.drug_name

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MedicationCandidate":
        values = _known_fields(cls, data)
        for key in ("drug_name", "dosage", "frequency", "dose_timing", "duration", "route", "instructions"):
            if key in values and values[key] is None:
                values[key] = ""
            elif key in values:
                values[key] = str(values[key]).strip()
        return cls(**values)


@dataclass
class NameValidationResult:
    original_name: str
    valid: bool
    corrected_name: Optional[str] = None
    confidence: float = 0.0
    canonical_id: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    was_corrected: bool = False
    lookup_unavailable: bool = False

    @property
    def canonical_name(self) -> str:
        if self.was_corrected and self.corrected_name:
            return self.corrected_name
        return self.original_name

    @property
    def display_name(self) -> str:
        """Name shown to the patient after applying the correction policy."""
        if not (self.was_corrected and self.corrected_name):
            return self.original_name
        if self.confidence > KEEP_ORIGINAL_CONFIDENCE:
            return self.original_name
        return self.corrected_name

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["display_name"] = self.display_name
        return data


@dataclass
class InteractionFinding:
    tier: int
    involved_drug: str
    description: str
    severity: str = "N/A"
    recommendation: str = ""
    source: str = "rxnav"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InteractionFinding":
        return cls(**_known_fields(cls, data))


@dataclass
class SafetyVerdict:
    flag: SafetyFlag
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {"flag": self.flag.value, "reasoning": self.reasoning}


@dataclass
class SafetyReport:
    drug_name: str
    food_interactions: Dict[str, Any] = field(default_factory=lambda: {"hasFoodInteraction": False})
    age_warnings: List[Dict[str, Any]] = field(default_factory=list)
    dosage_alerts: List[Dict[str, Any]] = field(default_factory=list)
    overall_severity: str = "low"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "drugName": self.drug_name,
            "foodInteractions": dict(self.food_interactions),
            "ageWarnings": [dict(w) for w in self.age_warnings],
            "dosageAlerts": [dict(a) for a in self.dosage_alerts],
            "overallSeverity": self.overall_severity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyReport":
        return cls(
            drug_name=data.get("drugName", ""),
            food_interactions=data.get("foodInteractions") or {"hasFoodInteraction": False},
            age_warnings=list(data.get("ageWarnings") or []),
            dosage_alerts=list(data.get("dosageAlerts") or []),
            overall_severity=data.get("overallSeverity", "low"),
        )


@dataclass
class NudgeCard:
    headline: str = ""
    plain_instruction: str = ""
    the_why: str = ""
    habit_hook: str = ""
    warning_label: str = ""

    def text(self) -> str:
        """Patient-visible prose, in the order the readability gate scores it."""
        parts = [self.plain_instruction, self.the_why, self.habit_hook, self.headline]
        return " ".join(p for p in parts if p)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PatientContext:
    name: str = ""
    age: Optional[int] = None
    language: str = ""
    lifestyle: str = ""
    concerns: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PatientContext":
        values = _known_fields(cls, data or {})
        age = values.get("age")
        if age is not None:
            try:
                age = int(float(age))
                values["age"] = age if 0 <= age <= 120 else None
            except (TypeError, ValueError):
                values["age"] = None
        for key in ("name", "language", "lifestyle", "concerns"):
            if values.get(key) is None:
                values.pop(key, None)
            elif key in values:
                values[key] = str(values[key])
        return cls(**values)


@dataclass
class FailedExtraction:
    reason: FailureReason
    message: str
    original_name: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    extracted_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason.value,
            "originalName": self.original_name,
            "suggestions": list(self.suggestions),
            "extractedData": self.extracted_data,
            "message": self.message,
            "state": CandidateState.REJECTED.value,
        }


@dataclass
class CacheEntry:
    image_hash: str
    raw_extraction: Dict[str, Any]
    normalized_result: Dict[str, Any]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            image_hash=data["image_hash"],
            raw_extraction=data.get("raw_extraction") or {},
            normalized_result=data["normalized_result"],
            expires_at=float(data["expires_at"]),
        )
