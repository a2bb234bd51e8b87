"""OCR adapter: page image → text + mean word confidence (Tesseract)."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import pytesseract
from PIL import Image
from pytesseract import Output

from .exceptions import PageAcquisitionError

logger = logging.getLogger(__name__)


@dataclass
class OcrResult:
    text: str
    confidence: float  # mean word confidence, 0-100
    word_count: int


class TesseractOcr:
    """Stateless per call; every Tesseract invocation has a hard timeout."""

    def __init__(self, lang: str = "eng", timeout_sec: int = 25):
        self.lang = lang
        self.timeout_sec = timeout_sec

    def recognize(self, png: bytes) -> OcrResult:
        """Recognize text in a PNG page image.

        Raises:
            PageAcquisitionError: Tesseract missing, timed out, or image unreadable.
        """
        try:
            image = Image.open(io.BytesIO(png))
            data = pytesseract.image_to_data(
                image, lang=self.lang, output_type=Output.DICT, timeout=self.timeout_sec
            )
            text = pytesseract.image_to_string(image, lang=self.lang, timeout=self.timeout_sec)
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            raise PageAcquisitionError(f"OCR failed: {e}") from e

        confidences = []
        for word, conf in zip(data.get("text", []), data.get("conf", [])):
            score = float(conf)
            if word.strip() and score >= 0:
                confidences.append(score)

        mean = sum(confidences) / len(confidences) if confidences else 0.0
        logger.debug("OCR recognized %d words (confidence %.1f)", len(confidences), mean)
        return OcrResult(text=text, confidence=mean, word_count=len(confidences))
