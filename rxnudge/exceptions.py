"""
Exception types raised at the external-service seams of the pipeline.
"""


class RxNudgeError(Exception):
    """Base class for all pipeline errors."""


class ServiceUnavailableError(RxNudgeError):
    """Terminology or interaction service could not be reached (or timed out)."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service} unavailable: {message}")


class ExtractionError(RxNudgeError):
    """An extraction backend failed to produce a usable result."""

    stage = "extraction"


class OcrError(ExtractionError):
    stage = "ocr"


class UnreadableImageError(OcrError):
    """OCR produced too little text to work with (blurry photo, illegible handwriting)."""


class GenerationError(ExtractionError):
    """The generative backend failed, timed out or returned unparseable output."""

    stage = "generation"


class CacheStoreError(RxNudgeError):
    """The durable cache tier failed to read or write an entry."""
