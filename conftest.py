"""Pytest configuration — ensures the project root is importable."""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import fitz
import pytest

sys.path.insert(0, str(Path(__file__).parent))

from listing_reconciler.ocr import OcrResult, TesseractOcr  # noqa: E402


@pytest.fixture(autouse=True)
def _no_llm_calls():
    """Block real vision-model calls during tests."""
    with patch(
        "listing_reconciler.extractor_llm.VisionExtractor.extract", return_value=None
    ), patch("listing_reconciler.extractor_llm.VisionExtractor.verify", return_value=[]):
        yield


@pytest.fixture
def make_pdf():
    """Build PDF bytes with one page per string; an empty string gives a blank page."""

    def _make(pages: list[str]) -> bytes:
        doc = fitz.open()
        for text in pages:
            page = doc.new_page()
            if text:
                page.insert_text((36, 72), text, fontsize=9)
        data = doc.tobytes()
        doc.close()
        return data

    return _make


@pytest.fixture
def fake_ocr():
    """OCR stand-in: no Tesseract binary needed. Set `.recognize.return_value` per test."""
    ocr = MagicMock(spec=TesseractOcr)
    ocr.recognize.return_value = OcrResult(text="", confidence=0.0, word_count=0)
    return ocr
