"""
Page splitter — partitions the source PDF into page-addressable chunks.

Strategy:
  1. Group pages into chunks of `pages_per_chunk`.
  2. If a group exceeds the size ceiling, re-split it page by page.
  3. A single page that still exceeds the ceiling is kept with a soft warning.

Only a corrupt or empty document is fatal.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field

import fitz  # PyMuPDF

from .acquisition import has_selectable_text
from .exceptions import DocumentStructureError
from .models import PageChunk

logger = logging.getLogger(__name__)


@dataclass
class SplitResult:
    total_pages: int
    chunks: list[PageChunk]
    warnings: list[str] = field(default_factory=list)


def compute_document_hash(data: bytes) -> str:
    """SHA-256 of the uploaded bytes, stored on the run for audit."""
    return hashlib.sha256(data).hexdigest()


def open_document(data: bytes) -> fitz.Document:
    """Open PDF bytes, converting any parser failure to a structural error."""
    if not data:
        raise DocumentStructureError("Document is empty (0 bytes)")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise DocumentStructureError(
            f"Document could not be opened as a PDF: {e}", {"size": len(data)}
        ) from e
    if doc.page_count == 0:
        doc.close()
        raise DocumentStructureError("Document has no pages")
    return doc


def split_document(
    data: bytes,
    run_id: str,
    max_chunk_bytes: int,
    pages_per_chunk: int = 1,
) -> SplitResult:
    """Split PDF bytes into ordered PageChunks honoring the size ceiling.

    Raises:
        DocumentStructureError: corrupt or zero-page input.
    """
    src = open_document(data)
    chunks: list[PageChunk] = []
    warnings: list[str] = []

    try:
        total_pages = src.page_count
        for start in range(0, total_pages, pages_per_chunk):
            end = min(start + pages_per_chunk, total_pages) - 1
            content = _extract_pages(src, start, end)

            if len(content) > max_chunk_bytes and end > start:
                logger.info(
                    "Pages %d-%d exceed %d bytes; splitting page by page",
                    start + 1, end + 1, max_chunk_bytes,
                )
                for index in range(start, end + 1):
                    single = _extract_pages(src, index, index)
                    if len(single) > max_chunk_bytes:
                        warnings.append(_oversize_warning(index, len(single), max_chunk_bytes))
                    chunks.append(_make_chunk(src, run_id, index, index, single))
                continue

            if len(content) > max_chunk_bytes:
                warnings.append(_oversize_warning(start, len(content), max_chunk_bytes))
            chunks.append(_make_chunk(src, run_id, start, end, content))
    finally:
        src.close()

    for warning in warnings:
        logger.warning(warning)

    return SplitResult(total_pages=total_pages, chunks=chunks, warnings=warnings)


# ─── Internal Helpers ────────────────────────────────────────────────


def _extract_pages(src: fitz.Document, start: int, end: int) -> bytes:
    out = fitz.open()
    try:
        out.insert_pdf(src, from_page=start, to_page=end)
        return out.tobytes(garbage=3, deflate=True)
    finally:
        out.close()


def _make_chunk(
    src: fitz.Document, run_id: str, start: int, end: int, content: bytes
) -> PageChunk:
    # 0-indexed internally, 1-indexed on the chunk
    return PageChunk(
        run_id=run_id,
        page_start=start + 1,
        page_end=end + 1,
        content=content,
        size=len(content),
        has_text=any(has_selectable_text(src[i].get_text()) for i in range(start, end + 1)),
    )


def _oversize_warning(index: int, size: int, limit: int) -> str:
    return (
        f"Page {index + 1} exceeds max chunk size "
        f"({size / 1024 / 1024:.2f}MB > {limit / 1024 / 1024:.2f}MB)"
    )
