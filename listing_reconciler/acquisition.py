"""
Text acquisition tier — one page at a time:

  1. Text layer   probe for machine-readable text; if present, use it
  2. Vision       render the page; a configured vision model returns
                  structured listings directly (skips the reconstructor)
  3. OCR          render the page; Tesseract returns text

A page that fails every tier contributes zero records. The failure is
logged and recorded, and the run carries on.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import fitz  # PyMuPDF

from .exceptions import PageAcquisitionError
from .extractor_llm import VisionExtractor, apply_corrections
from .extractor_regex import normalize_ocr_text
from .models import PageChunk, PropertyRecord
from .ocr import TesseractOcr

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-zA-Z]{2,}")


@dataclass
class AcquisitionResult:
    page_texts: dict[int, str] = field(default_factory=dict)
    page_sources: dict[int, str] = field(default_factory=dict)  # "text" | "ocr" | "vision"
    vision_records: list[PropertyRecord] = field(default_factory=list)
    failed_pages: dict[int, str] = field(default_factory=dict)
    ocr_confidence: dict[int, float] = field(default_factory=dict)


def has_selectable_text(text: str, min_chars: int = 50, min_words: int = 5) -> bool:
    """More than `min_chars` non-space characters and more than `min_words` words."""
    cleaned = re.sub(r"\s+", " ", text).strip()
    return len(cleaned) > min_chars and len(_WORD.findall(cleaned)) > min_words


def render_page_png(page: fitz.Page, dpi: int = 300) -> bytes:
    matrix = fitz.Matrix(dpi / 72, dpi / 72)
    return page.get_pixmap(matrix=matrix).tobytes("png")


class TextAcquirer:
    def __init__(
        self,
        ocr: Optional[TesseractOcr] = None,
        vision: Optional[VisionExtractor] = None,
        min_text_chars: int = 50,
        min_text_words: int = 5,
        dpi: int = 300,
        verify_vision: bool = False,
    ):
        self.ocr = ocr or TesseractOcr()
        self.vision = vision
        self.min_text_chars = min_text_chars
        self.min_text_words = min_text_words
        self.dpi = dpi
        self.verify_vision = verify_vision

    def acquire(self, chunks: list[PageChunk], run_id: str) -> AcquisitionResult:
        result = AcquisitionResult()
        for chunk in chunks:
            try:
                doc = fitz.open(stream=chunk.content, filetype="pdf")
            except Exception as e:
                for page_number in chunk.page_numbers:
                    self._record_failure(result, page_number, f"Chunk unreadable: {e}")
                continue

            try:
                for offset, page in enumerate(doc):
                    page_number = chunk.page_start + offset
                    try:
                        self._acquire_page(page, page_number, run_id, result)
                    except PageAcquisitionError as e:
                        self._record_failure(result, page_number, str(e))
                    except Exception as e:
                        self._record_failure(result, page_number, f"Unexpected error: {e}")
            finally:
                doc.close()

        logger.info(
            "Acquired %d text pages, %d vision records, %d failed pages",
            len(result.page_texts), len(result.vision_records), len(result.failed_pages),
        )
        return result

    def _acquire_page(
        self, page: fitz.Page, page_number: int, run_id: str, result: AcquisitionResult
    ) -> None:
        text = page.get_text("text")
        if has_selectable_text(text, self.min_text_chars, self.min_text_words):
            result.page_texts[page_number] = text
            result.page_sources[page_number] = "text"
            return

        png = render_page_png(page, self.dpi)

        if self.vision is not None and self.vision.configured:
            records = self.vision.extract(png, page_number, run_id)
            if records:
                if self.verify_vision:
                    corrections = self.vision.verify(records, png)
                    applied = apply_corrections(records, corrections)
                    if applied:
                        logger.info("Applied %d vision corrections on page %d", applied, page_number)
                result.vision_records.extend(records)
                result.page_sources[page_number] = "vision"
                return
            logger.info("Vision produced nothing for page %d; falling back to OCR", page_number)

        ocr_result = self.ocr.recognize(png)
        result.page_texts[page_number] = normalize_ocr_text(ocr_result.text)
        result.page_sources[page_number] = "ocr"
        result.ocr_confidence[page_number] = ocr_result.confidence

    @staticmethod
    def _record_failure(result: AcquisitionResult, page_number: int, reason: str) -> None:
        logger.warning("Page %d acquisition failed: %s", page_number, reason)
        result.failed_pages[page_number] = reason
