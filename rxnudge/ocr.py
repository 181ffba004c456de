import io
import logging
import re
from typing import List, Optional

import cv2
import numpy as np
import pytesseract
from PIL import Image, UnidentifiedImageError
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError

from .exceptions import OcrError

# Set up logging
logger = logging.getLogger(__name__)

MAX_DIMENSION = 3000
MAX_PDF_PAGES = 5

OCR_CONFIGS = [
    '--oem 3 --psm 6',  # Uniform block of text
    '--oem 3 --psm 4',  # Single column of text
    '--oem 3 --psm 3',  # Fully automatic page segmentation
]

MEDICAL_KEYWORDS = ['mg', 'ml', 'tablet', 'capsule', 'daily', 'twice', 'once', 'prescription', 'rx']

SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)


def load_images(file_bytes: bytes, mime_type: str) -> List[Image.Image]:
    """
    Decode an upload into RGB page images; PDFs are rasterised (first 5 pages)
    """
    try:
        if mime_type == 'application/pdf':
            pages = convert_from_bytes(file_bytes, dpi=300, first_page=1, last_page=MAX_PDF_PAGES)
            return [page.convert('RGB') for page in pages]

        image = Image.open(io.BytesIO(file_bytes))
        if image.mode != 'RGB':
            image = image.convert('RGB')
        return [image]

    except (UnidentifiedImageError, PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError,
            OSError, ValueError) as e:
        logger.error(f"Could not decode {mime_type} upload: {e}")
        raise OcrError(f"Could not read uploaded file: {e}") from e


def preprocess_image(image) -> np.ndarray:
    """
    Normalize an image for OCR: cap size, grayscale, stretch contrast, sharpen,
    remove speckle noise and brighten slightly
    """
    if isinstance(image, Image.Image):
        image = cv2.cvtColor(np.array(image.convert('RGB')), cv2.COLOR_RGB2BGR)

    # Resize if too large, never enlarge
    h, w = image.shape[:2]
    scale = min(1.0, MAX_DIMENSION / float(max(h, w)))
    if scale < 1.0:
        image = cv2.resize(image, (int(w * scale), int(h * scale)), interpolation=cv2.INTER_AREA)

    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image

    normalized = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)
    sharpened = cv2.filter2D(normalized, -1, SHARPEN_KERNEL)
    denoised = cv2.medianBlur(sharpened, 3)

    return cv2.convertScaleAbs(denoised, alpha=1.1, beta=0)


def score_text(text: str) -> int:
    """Longer text with prescription vocabulary scores higher."""
    score = len(text.strip())
    lowered = text.lower()
    for keyword in MEDICAL_KEYWORDS:
        if keyword in lowered:
            score += 50
    return score


def clean_extracted_text(text: str) -> str:
    """
    Fix common OCR misreads of units and drop stray symbols, keeping line breaks
    """
    if not text:
        return ""

    corrections = {
        r'\brnl\b': 'ml',
        r'\brng\b': 'mg',
        r'\brnilli': 'milli',
        r'R[x×]\s*:': 'Rx:',
    }

    lines = []
    for line in text.splitlines():
        line = ' '.join(line.split())
        for pattern, replacement in corrections.items():
            line = re.sub(pattern, replacement, line, flags=re.IGNORECASE)
        line = re.sub(r'[^\w\s\-\.\,\(\)\[\]\/\:\%\+\=]', '', line).strip()
        if line:
            lines.append(line)

    return '\n'.join(lines)


class OcrEngine:
    """
    Tesseract OCR over preprocessed images, trying several page segmentation
    modes and keeping the best-scoring text
    """

    def __init__(self, lang: str = 'eng', timeout: float = 30, tesseract_cmd: Optional[str] = None,
                 configs: Optional[List[str]] = None):
        self.lang = lang
        self.timeout = timeout
        self.configs = configs or OCR_CONFIGS
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def image_to_text(self, image: Image.Image) -> str:
        processed = Image.fromarray(preprocess_image(image))

        best_text = ""
        best_score = 0
        errors = []

        for config in self.configs:
            try:
                text = pytesseract.image_to_string(processed, lang=self.lang, config=config, timeout=self.timeout)
            except (pytesseract.TesseractError, RuntimeError, OSError) as e:
                # RuntimeError is how pytesseract reports a timeout
                logger.warning(f"OCR config {config} failed: {e}")
                errors.append(e)
                continue

            score = score_text(text)
            logger.info(f"OCR attempt with {config}: score {score}, length {len(text)}")
            if score > best_score:
                best_text = text
                best_score = score

        if errors and len(errors) == len(self.configs):
            raise OcrError(f"Tesseract failed for every configuration: {errors[-1]}")

        return clean_extracted_text(best_text)

    def extract_text(self, file_bytes: bytes, mime_type: str) -> str:
        """
        OCR text of an uploaded image or PDF; pages are joined with blank lines
        """
        pages = load_images(file_bytes, mime_type)
        return self.extract_text_from_images(pages)

    def extract_text_from_images(self, pages: List[Image.Image]) -> str:
        texts = []
        for i, page in enumerate(pages):
            if len(pages) > 1:
                logger.info(f"Processing page {i + 1}")
            texts.append(self.image_to_text(page))

        full_text = "\n\n".join(t for t in texts if t)
        logger.info(f"✅ Extracted {len(full_text)} characters from {len(pages)} page(s)")
        return full_text
