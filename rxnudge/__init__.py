"""
Rx Nudge - Prescription Extraction & Safety Pipeline

This package turns a photographed prescription into verified medication
records:
- Tiered extraction (vision model, OCR + text model, pattern matching)
- Drug name validation against RxNorm with fuzzy correction
- Drug interaction and safety checks
- Plain-language nudge cards for patients
- Content-addressed caching of scan results
"""

__version__ = "1.0.0"
__author__ = "Rx Nudge Team"

# Import main entry points for easy access
from .pipeline import PrescriptionPipeline, build_pipeline
from .cache import ResultCache
from .extraction import ExtractionChain, PrescriptionImage
from .validator import DrugNameValidator, KEEP_ORIGINAL_CONFIDENCE
from .interactions import InteractionChecker, determine_safety_flag
from .safety import enhanced_safety_check
from .nudge import NudgeGenerator
from .readability import validate as validate_readability, simplify

__all__ = [
    "PrescriptionPipeline",
    "build_pipeline",
    "ResultCache",
    "ExtractionChain",
    "PrescriptionImage",
    "DrugNameValidator",
    "KEEP_ORIGINAL_CONFIDENCE",
    "InteractionChecker",
    "determine_safety_flag",
    "enhanced_safety_check",
    "NudgeGenerator",
    "validate_readability",
    "simplify",
]
