"""
Pydantic schemas for the JSON that generation backends return.

Extraction payloads are parsed leniently (nulls and numbers coerced to text,
unknown keys ignored) and then normalized. Nudge payloads are parsed
strictly: a missing or non-string field rejects the whole card.
"""

from typing import Any, List

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .models import UNREADABLE_SENTINEL, DosingSource, MedicationCandidate
from .utils import dose_timing_for_frequency, is_valid_dose_timing, standardize_frequency

_DOSING_SOURCES = {s.value for s in DosingSource}
_BLANK_VALUES = {'na', 'n/a', 'none', 'not specified', 'unknown', 'as directed'}


class ExtractedMedication(BaseModel):
    model_config = ConfigDict(extra='ignore')

    drug_name: str = ""
    dosage: str = ""
    frequency: str = ""
    dose_timing: str = ""
    dosing_source: str = DosingSource.PRESCRIPTION.value
    duration: str = ""
    route: str = "Oral"
    instructions: str = ""
    note: str = ""

    @field_validator('*', mode='before')
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator('dosage', 'frequency', 'duration')
    @classmethod
    def blank_placeholders(cls, value: str) -> str:
        return "" if value.lower() in _BLANK_VALUES else value

    @field_validator('drug_name')
    @classmethod
    def normalize_sentinel(cls, value: str) -> str:
        # "CLARIFICATION_NEEDED: handwriting unclear" still means unreadable
        if value.upper().startswith(UNREADABLE_SENTINEL):
            return UNREADABLE_SENTINEL
        return value

    @model_validator(mode='after')
    def normalize_dosing(self) -> 'ExtractedMedication':
        source = self.dosing_source.lower().replace('-', '_').replace(' ', '_')
        self.dosing_source = source if source in _DOSING_SOURCES else DosingSource.AI_GENERATED.value

        if self.frequency:
            self.frequency = standardize_frequency(self.frequency)
        if not is_valid_dose_timing(self.dose_timing):
            self.dose_timing = dose_timing_for_frequency(self.frequency)
        if not self.route:
            self.route = "Oral"
        return self

    def to_candidate(self) -> MedicationCandidate:
        return MedicationCandidate(
            drug_name=self.drug_name,
            dosage=self.dosage,
            frequency=self.frequency,
            dose_timing=self.dose_timing,
            dosing_source=self.dosing_source,
            duration=self.duration,
            route=self.route,
            instructions=self.instructions,
        )


class VisionMedication(ExtractedMedication):
    # A vision result that does not say where its dosing came from cannot be trusted as read
    dosing_source: str = DosingSource.AI_GENERATED.value


class VisionResponse(BaseModel):
    model_config = ConfigDict(extra='ignore')

    medications: List[VisionMedication]


class TextExtraction(ExtractedMedication):
    pass


class NudgeResponse(BaseModel):
    model_config = ConfigDict(extra='ignore', strict=True)

    headline: str
    plain_instruction: str
    the_why: str
    habit_hook: str
    warning_label: str
