import json
import logging
from typing import Any, Dict, List, Optional, Union

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .exceptions import GenerationError
from .utils import strip_code_fences

# Set up logging
logger = logging.getLogger(__name__)

Part = Union[str, Dict[str, Any]]

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    # Medication instructions trip the dangerous-content filter at lower thresholds
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]


def image_part(image_bytes: bytes, mime_type: str) -> Dict[str, Any]:
    """Inline image payload for a multimodal request."""
    return {"mime_type": mime_type, "data": image_bytes}


class GeminiClient:
    """
    Thin wrapper over one Gemini model with a per-call timeout
    """

    def __init__(self, api_key: Optional[str], model_name: str = "gemini-1.5-flash",
                 timeout: float = 60, temperature: float = 0.2):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self.temperature = temperature
        self.model = None
        self.setup_api()

    def setup_api(self) -> bool:
        """Initialize the Gemini model"""
        if not self.api_key:
            logger.warning("Gemini API key not found. Generation backend disabled.")
            return False

        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(
            model_name=self.model_name,
            generation_config={"temperature": self.temperature, "max_output_tokens": 2048},
            safety_settings=SAFETY_SETTINGS,
        )
        logger.info(f"✅ Gemini model {self.model_name} initialized")
        return True

    @property
    def available(self) -> bool:
        return self.model is not None

    def _generate(self, parts: Union[Part, List[Part]], json_mode: bool = False) -> str:
        if not self.available:
            raise GenerationError(f"Gemini model {self.model_name} is not configured")

        config = {"response_mime_type": "application/json"} if json_mode else None
        try:
            response = self.model.generate_content(
                parts,
                generation_config=config,
                request_options={"timeout": self.timeout},
            )
            text = response.text
        except google_exceptions.DeadlineExceeded as e:
            logger.warning(f"⚠️ Gemini {self.model_name} timed out after {self.timeout}s")
            raise GenerationError(f"timed out after {self.timeout}s") from e
        except google_exceptions.GoogleAPIError as e:
            logger.error(f"Gemini {self.model_name} request failed: {e}")
            raise GenerationError(str(e)) from e
        except ValueError as e:
            # response.text raises ValueError when the candidate was blocked or empty
            logger.warning(f"⚠️ Gemini {self.model_name} returned no text: {e}")
            raise GenerationError(f"empty or blocked response: {e}") from e

        if not text or not text.strip():
            raise GenerationError("empty response")
        return text.strip()

    def generate_text(self, parts: Union[Part, List[Part]]) -> str:
        return self._generate(parts)

    def generate_json(self, parts: Union[Part, List[Part]]) -> Any:
        """
        Request a JSON response and decode it; code fences are tolerated
        """
        raw = self._generate(parts, json_mode=True)
        try:
            return json.loads(strip_code_fences(raw))
        except json.JSONDecodeError as e:
            logger.error(f"Gemini {self.model_name} returned invalid JSON: {raw[:200]}")
            raise GenerationError(f"invalid JSON: {e}") from e
