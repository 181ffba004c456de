"""
Central configuration

All tunables come from environment variables (optionally loaded from a
.env file in the working directory). Defaults are the operating values.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PACKAGE_DIR = Path(__file__).parent
DEFAULT_FALLBACK_INTERACTIONS = PACKAGE_DIR / "data" / "fallback_interactions.csv"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    gemini_api_key: Optional[str] = None
    gemini_vision_model: str = "gemini-1.5-flash"
    gemini_text_model: str = "gemini-1.5-flash"

    rxnav_base_url: str = "https://rxnav.nlm.nih.gov/REST"
    request_timeout: int = 10
    vision_timeout: int = 60
    ocr_timeout: int = 30
    ocr_lang: str = "eng"
    tesseract_cmd: Optional[str] = None

    cache_ttl_seconds: int = 30 * 60
    cache_sweep_interval: int = 5 * 60
    cache_dir: str = "data/cache/scans"

    fallback_interactions_path: str = str(DEFAULT_FALLBACK_INTERACTIONS)
    max_workers: int = 4
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        load_dotenv(override=False)
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_vision_model=os.getenv("GEMINI_VISION_MODEL", cls.gemini_vision_model),
            gemini_text_model=os.getenv("GEMINI_TEXT_MODEL", cls.gemini_text_model),
            rxnav_base_url=os.getenv("RXNAV_BASE_URL", cls.rxnav_base_url).rstrip("/"),
            request_timeout=_env_int("REQUEST_TIMEOUT", cls.request_timeout),
            vision_timeout=_env_int("VISION_TIMEOUT", cls.vision_timeout),
            ocr_timeout=_env_int("OCR_TIMEOUT", cls.ocr_timeout),
            ocr_lang=os.getenv("OCR_LANG", cls.ocr_lang),
            tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
            cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", cls.cache_ttl_seconds),
            cache_sweep_interval=_env_int("CACHE_SWEEP_INTERVAL", cls.cache_sweep_interval),
            cache_dir=os.getenv("CACHE_DIR", cls.cache_dir),
            fallback_interactions_path=os.getenv(
                "FALLBACK_INTERACTIONS_PATH", str(DEFAULT_FALLBACK_INTERACTIONS)
            ),
            max_workers=_env_int("MAX_WORKERS", cls.max_workers),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def setup_logging(level: Optional[str] = None):
    """Configure root logging once for the app and scripts."""
    logging.basicConfig(
        level=getattr(logging, (level or get_settings().log_level), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
