"""
Tests for the page splitter and the text acquisition tiers.

PDFs are generated in memory with PyMuPDF. Tesseract is replaced by the
`fake_ocr` fixture and the vision model by patched instance methods, so no
binary or API key is needed.

Run: pytest tests/ -v
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from listing_reconciler.acquisition import TextAcquirer, has_selectable_text
from listing_reconciler.exceptions import DocumentStructureError, PageAcquisitionError, VisionExtractionError
from listing_reconciler.extractor_llm import (
    VisionExtractor,
    _correction_from_item,
    _record_from_item,
    apply_corrections,
)
from listing_reconciler.models import CorrectableField, FieldCorrection, PageChunk, PropertyRecord
from listing_reconciler.ocr import OcrResult
from listing_reconciler.splitter import compute_document_hash, split_document

RUN = "run-test"
LIMIT = 50 * 1024 * 1024

LISTING_TEXT = (
    "123 Main St, Memphis, TN 38111\n"
    "Asking: $85,000\n"
    "Rent: $1,100\n"
    "Brick ranch home with a large fenced yard\n"
)


# ═══════════════════════════════════════════════════════════════════
# SPLITTER
# ═══════════════════════════════════════════════════════════════════


class TestSplitter:
    def test_one_chunk_per_page(self, make_pdf) -> None:
        result = split_document(make_pdf(["one", "two", "three"]), RUN, LIMIT)

        assert result.total_pages == 3
        assert [(c.page_start, c.page_end) for c in result.chunks] == [(1, 1), (2, 2), (3, 3)]
        assert all(c.run_id == RUN for c in result.chunks)
        assert result.warnings == []

    def test_multi_page_chunks(self, make_pdf) -> None:
        result = split_document(make_pdf(["a", "b", "c"]), RUN, LIMIT, pages_per_chunk=2)
        assert [c.page_numbers for c in result.chunks] == [[1, 2], [3]]

    def test_oversize_group_is_resplit_with_warnings(self, make_pdf) -> None:
        result = split_document(make_pdf(["a", "b", "c"]), RUN, max_chunk_bytes=1, pages_per_chunk=2)

        assert [c.page_numbers for c in result.chunks] == [[1], [2], [3]]
        assert len(result.warnings) == 3
        assert result.warnings[0].startswith("Page 1 exceeds max chunk size")

    def test_chunks_are_standalone_pdfs(self, make_pdf) -> None:
        result = split_document(make_pdf(["a", "b"]), RUN, LIMIT)
        for chunk in result.chunks:
            assert chunk.content.startswith(b"%PDF")
            assert chunk.size == len(chunk.content)

    def test_chunks_record_whether_pages_have_text(self, make_pdf) -> None:
        result = split_document(make_pdf([LISTING_TEXT, ""]), RUN, LIMIT)
        assert [c.has_text for c in result.chunks] == [True, False]

    def test_grouped_chunk_has_text_if_any_page_does(self, make_pdf) -> None:
        result = split_document(make_pdf(["", LISTING_TEXT]), RUN, LIMIT, pages_per_chunk=2)
        assert [c.has_text for c in result.chunks] == [True]

    def test_empty_input(self) -> None:
        with pytest.raises(DocumentStructureError) as exc:
            split_document(b"", RUN, LIMIT)
        assert "empty" in str(exc.value)

    def test_corrupt_input(self) -> None:
        with pytest.raises(DocumentStructureError):
            split_document(b"this is not a pdf at all", RUN, LIMIT)

    def test_hash_is_stable(self, make_pdf) -> None:
        data = make_pdf(["a"])
        assert compute_document_hash(data) == compute_document_hash(data)
        assert len(compute_document_hash(data)) == 64


# ═══════════════════════════════════════════════════════════════════
# TEXT PROBE
# ═══════════════════════════════════════════════════════════════════


class TestSelectableText:
    def test_listing_text(self) -> None:
        assert has_selectable_text(LISTING_TEXT)

    def test_too_short(self) -> None:
        assert not has_selectable_text("Page 3")

    def test_numbers_without_words(self) -> None:
        assert not has_selectable_text("1 2 3 4 5 6 7 8 9 10 11 12 13 14 15 16 17 18 19 20 21 22 23 24")

    def test_custom_thresholds(self) -> None:
        assert has_selectable_text("Asking price one two three", min_chars=10, min_words=3)


# ═══════════════════════════════════════════════════════════════════
# ACQUISITION TIERS
# ═══════════════════════════════════════════════════════════════════


def _chunks(pdf: bytes) -> list[PageChunk]:
    return split_document(pdf, RUN, LIMIT).chunks


class TestTextAcquirer:
    def test_text_layer_wins(self, make_pdf, fake_ocr) -> None:
        result = TextAcquirer(ocr=fake_ocr, dpi=72).acquire(_chunks(make_pdf([LISTING_TEXT])), RUN)

        assert "Asking: $85,000" in result.page_texts[1]
        assert result.page_sources == {1: "text"}
        fake_ocr.recognize.assert_not_called()

    def test_blank_page_goes_to_ocr(self, make_pdf, fake_ocr) -> None:
        fake_ocr.recognize.return_value = OcrResult(text="Asking: $ 85 k", confidence=91.5, word_count=3)
        result = TextAcquirer(ocr=fake_ocr, dpi=72).acquire(_chunks(make_pdf([LISTING_TEXT, ""])), RUN)

        assert result.page_sources == {1: "text", 2: "ocr"}
        assert result.page_texts[2] == "Asking: $85k"
        assert result.ocr_confidence == {2: 91.5}
        fake_ocr.recognize.assert_called_once()

    def test_failed_page_does_not_stop_the_run(self, make_pdf, fake_ocr) -> None:
        fake_ocr.recognize.side_effect = PageAcquisitionError("OCR failed: tesseract is not installed")
        result = TextAcquirer(ocr=fake_ocr, dpi=72).acquire(_chunks(make_pdf(["", LISTING_TEXT])), RUN)

        assert result.failed_pages == {1: "OCR failed: tesseract is not installed"}
        assert list(result.page_texts) == [2]

    def test_unexpected_error_is_recorded(self, make_pdf, fake_ocr) -> None:
        fake_ocr.recognize.side_effect = ValueError("bad image")
        result = TextAcquirer(ocr=fake_ocr, dpi=72).acquire(_chunks(make_pdf([""])), RUN)
        assert result.failed_pages == {1: "Unexpected error: bad image"}

    def test_unreadable_chunk_fails_all_its_pages(self, fake_ocr) -> None:
        chunk = PageChunk(run_id=RUN, page_start=4, page_end=5, content=b"garbage", size=7)
        result = TextAcquirer(ocr=fake_ocr).acquire([chunk], RUN)
        assert set(result.failed_pages) == {4, 5}
        assert result.failed_pages[4].startswith("Chunk unreadable")


class TestVisionTier:
    def _vision_record(self) -> PropertyRecord:
        return PropertyRecord(
            run_id=RUN, source_page=1, source_chunk="vision", address="44 Cedar Dr", asking_price=9_000
        )

    def test_vision_records_skip_ocr(self, make_pdf, fake_ocr) -> None:
        vision = VisionExtractor(api_key="test-key")
        record = self._vision_record()
        with patch.object(vision, "extract", return_value=[record]) as extract:
            result = TextAcquirer(ocr=fake_ocr, vision=vision, dpi=72).acquire(
                _chunks(make_pdf([""])), RUN
            )

        extract.assert_called_once()
        assert result.vision_records == [record]
        assert result.page_sources == {1: "vision"}
        assert result.page_texts == {}
        fake_ocr.recognize.assert_not_called()

    def test_empty_vision_result_falls_back_to_ocr(self, make_pdf, fake_ocr) -> None:
        vision = VisionExtractor(api_key="test-key")
        with patch.object(vision, "extract", return_value=[]):
            result = TextAcquirer(ocr=fake_ocr, vision=vision, dpi=72).acquire(
                _chunks(make_pdf([""])), RUN
            )
        assert result.page_sources == {1: "ocr"}

    def test_verification_corrections_are_applied(self, make_pdf, fake_ocr) -> None:
        vision = VisionExtractor(api_key="test-key")
        record = self._vision_record()
        correction = FieldCorrection(
            field=CorrectableField.ASKING_PRICE,
            extracted_value=9_000,
            corrected_value=90_000,
            reason="dropped a zero",
        )
        with patch.object(vision, "extract", return_value=[record]), patch.object(
            vision, "verify", return_value=[("44 Cedar Dr", correction)]
        ):
            TextAcquirer(ocr=fake_ocr, vision=vision, dpi=72, verify_vision=True).acquire(
                _chunks(make_pdf([""])), RUN
            )
        assert record.asking_price == 90_000

    def test_unconfigured_vision_is_not_used(self, make_pdf, fake_ocr) -> None:
        vision = VisionExtractor(api_key=None)
        assert not vision.configured
        result = TextAcquirer(ocr=fake_ocr, vision=vision, dpi=72).acquire(_chunks(make_pdf([""])), RUN)
        assert result.page_sources == {1: "ocr"}


# ═══════════════════════════════════════════════════════════════════
# VISION OUTPUT HANDLING
# ═══════════════════════════════════════════════════════════════════


class TestVisionItems:
    def test_item_to_record(self) -> None:
        item = {
            "address": " 1611 15th Ave N ",
            "city": "Birmingham",
            "state": "al",
            "askingPrice": "$85,000",
            "askingPriceConfidence": 95,
            "rehabConfidence": 90,
            "rentMin": 1300,
            "rentMax": 1400,
            "bathrooms": "1.5",
            "occupied": "yes",
        }
        record = _record_from_item(item, page=3, run_id=RUN)

        assert record is not None
        assert record.address == "1611 15th Ave N"
        assert record.state == "AL"
        assert record.asking_price == 85_000
        assert (record.rent_min, record.rent_max, record.rent) == (1300, 1400, 1400)
        assert record.bathrooms == 1.5
        assert record.occupied is None
        assert record.source_page == 3
        assert record.needs_manual_review is False

    def test_k_suffixed_strings_are_scaled(self) -> None:
        item = {
            "address": "9 Elm St",
            "askingPrice": "$110k",
            "arv": "145K",
            "rent": "$1.2k",
            "bathrooms": "1.5",
        }
        record = _record_from_item(item, page=1, run_id=RUN)

        assert record is not None
        assert record.asking_price == 110_000
        assert record.arv == 145_000
        assert record.rent == 1_200
        assert record.bathrooms == 1.5

    def test_low_confidence_is_flagged(self) -> None:
        item = {"address": "9 Elm St", "askingPrice": 60000, "askingPriceConfidence": 95, "rehabConfidence": 40}
        record = _record_from_item(item, page=1, run_id=RUN)

        assert record is not None
        assert record.needs_manual_review is True
        assert record.review_notes == "Low confidence: asking=95%, rehab=40%"

    def test_correction_item(self) -> None:
        correction = _correction_from_item(
            {"field": "asking Price", "extracted": 9000, "actual": "90,000", "reason": "misread"}
        )
        assert correction is not None
        assert correction.field == CorrectableField.ASKING_PRICE
        assert correction.corrected_value == 90_000

    def test_unknown_correction_field(self) -> None:
        assert _correction_from_item({"field": "bedrooms", "actual": 3}) is None
        assert _correction_from_item("not a dict") is None

    def test_apply_corrections_matches_by_address(self) -> None:
        record = PropertyRecord(run_id=RUN, address="44 Cedar Dr", rent=900)
        correction = FieldCorrection(
            field=CorrectableField.RENT, extracted_value=900, corrected_value=1_050, reason="misread"
        )
        applied = apply_corrections(
            [record], [(" 44 cedar dr ", correction), ("1 Nowhere Rd", correction)]
        )
        assert applied == 1
        assert record.rent == 1_050

    def test_invalid_json_raises(self) -> None:
        vision = VisionExtractor(api_key="test-key")
        client = MagicMock()
        client.chat.completions.create.return_value.choices[0].message.content = "not json"
        vision._client = client

        with pytest.raises(VisionExtractionError):
            vision._ask("prompt", b"png")
