"""
Record reconstructor — turns per-page text into candidate records.

One listing's identity, price and rent are not guaranteed to share a page,
so extraction runs in layers:

  Pass 1  single page        split on boundary markers, parse each segment
  Pass 2  boundary merge     pages with zero records are re-read glued to
                             the previous page; a candidate survives only if
                             its money value is printed on the CURRENT page
  Pass 3  forward price      rent-but-no-asking records look for an asking
                             price on the next page, ahead of its first listing
  Pass 4  in-batch collapse  same normalized address or URL → first wins

Vision-path pages arrive already structured; they skip Passes 1-2 but take
part in Passes 3-4.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .extractor_regex import extract_records, find_asking_price, text_before_first_listing
from .models import PropertyRecord
from .normalization import normalize_address, normalize_url
from .price_parsing import value_appears_in

logger = logging.getLogger(__name__)


@dataclass
class ReconstructionResult:
    records: list[PropertyRecord]
    collapsed: list[PropertyRecord] = field(default_factory=list)
    merged_pages: list[int] = field(default_factory=list)


def reconstruct(
    page_texts: dict[int, str],
    run_id: str,
    prestructured: Optional[Iterable[PropertyRecord]] = None,
    page_sources: Optional[dict[int, str]] = None,
) -> ReconstructionResult:
    """Run Passes 1-4 over a page→text map (1-indexed page numbers)."""
    page_sources = page_sources or {}
    vision_records = list(prestructured or [])
    vision_pages = {r.source_page for r in vision_records}

    accepted: list[PropertyRecord] = []
    merged_pages: list[int] = []

    for page in sorted(page_texts):
        text = page_texts[page]
        source = page_sources.get(page, "text")

        records = extract_records(text, run_id, source_page=page, source_chunk=source)
        if records:
            accepted.extend(records)
            continue

        previous = page_texts.get(page - 1)
        if previous is None or page in vision_pages:
            continue

        recovered = merge_boundary(previous, text, page, run_id, accepted, source)
        if recovered:
            merged_pages.append(page)
            accepted.extend(recovered)

    accepted.extend(vision_records)
    accepted.sort(key=lambda r: r.source_page or 0)

    complete_forward_prices(accepted, page_texts)
    unique, collapsed = collapse_in_batch(accepted)

    logger.info(
        "Reconstructed %d records from %d pages (%d boundary merges, %d collapsed)",
        len(unique), len(page_texts), len(merged_pages), len(collapsed),
    )
    return ReconstructionResult(records=unique, collapsed=collapsed, merged_pages=merged_pages)


# ─── Pass 2 ──────────────────────────────────────────────────────────


def merge_boundary(
    previous_text: str,
    current_text: str,
    page: int,
    run_id: str,
    accepted: list[PropertyRecord],
    source_chunk: str = "text",
) -> list[PropertyRecord]:
    """Recover records split across the page break before `page`.

    Candidates whose asking price or rent is not printed on the current page
    belong wholly to the previous page and are dropped. Duplicates are checked
    against records already accepted, including earlier candidates from this
    window, but not against candidates still pending.
    """
    window = f"{previous_text}\n\n{current_text}"
    known = list(accepted)
    recovered: list[PropertyRecord] = []

    for candidate in extract_records(window, run_id, source_page=page, source_chunk=source_chunk):
        on_current_page = value_appears_in(candidate.asking_price, current_text) or value_appears_in(
            candidate.rent, current_text
        )
        if not on_current_page:
            continue
        if _matches_any(candidate, known):
            logger.debug("Boundary candidate on page %d duplicates an accepted record", page)
            continue

        candidate.add_note(f"Recovered via boundary merge with page {page - 1}")
        known.append(candidate)
        recovered.append(candidate)

    return recovered


# ─── Pass 3 ──────────────────────────────────────────────────────────


def complete_forward_prices(records: list[PropertyRecord], page_texts: dict[int, str]) -> int:
    """Fill a missing asking price from the following page. Returns merges made."""
    merged = 0
    for record in records:
        if record.rent is None or record.asking_price is not None or record.source_page is None:
            continue
        next_text = page_texts.get(record.source_page + 1)
        if not next_text:
            continue
        # later listings on the next page own their prices
        price = find_asking_price(text_before_first_listing(next_text))
        if price is None:
            continue
        record.asking_price = price
        record.add_note(f"Asking price merged from page {record.source_page + 1}")
        merged += 1
    return merged


# ─── Pass 4 ──────────────────────────────────────────────────────────


def collapse_in_batch(
    records: list[PropertyRecord],
) -> tuple[list[PropertyRecord], list[PropertyRecord]]:
    """Keep the first record per normalized address or URL."""
    seen_addresses: set[str] = set()
    seen_urls: set[str] = set()
    unique: list[PropertyRecord] = []
    collapsed: list[PropertyRecord] = []

    for record in records:
        address_key = normalize_address(record.address)
        url_key = normalize_url(record.marketplace_url)
        if (address_key and address_key in seen_addresses) or (url_key and url_key in seen_urls):
            collapsed.append(record)
            continue
        if address_key:
            seen_addresses.add(address_key)
        if url_key:
            seen_urls.add(url_key)
        unique.append(record)

    return unique, collapsed


def _matches_any(candidate: PropertyRecord, records: list[PropertyRecord]) -> bool:
    address_key = normalize_address(candidate.address)
    url_key = normalize_url(candidate.marketplace_url)
    for record in records:
        if address_key and address_key == normalize_address(record.address):
            return True
        if url_key and url_key == normalize_url(record.marketplace_url):
            return True
    return False
