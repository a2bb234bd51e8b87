"""
Deterministic regex-based extraction of listing records from one page of text.

This module handles a SINGLE text block (one page, or two pages glued together
by the reconstructor). It does two things:

  1. Split the text into one-listing-per-segment chunks on ordered boundary
     markers: marketplace URL, address with a type descriptor ("DUPLEX"),
     numbered-street address ("1611 15th Ave N"), generic street address.
  2. Parse each segment into a candidate PropertyRecord.

Philosophy: a candidate with no identity or no money value is not a listing.
We return nothing rather than a half-record nobody can act on.
"""

from __future__ import annotations

import re
from typing import Optional

from .models import MarketStatus, PropertyRecord
from .normalization import MARKETPLACE_URL_PATTERN, decode_marketplace_url, url_street_number
from .price_parsing import parse_price, parse_range, word_to_int

RAW_TEXT_LIMIT = 2000
MIN_ADDRESS_LENGTH = 5

# ─── Building Blocks ─────────────────────────────────────────────────

_SUFFIX = (
    r"(?:St(?:reet)?|Ave(?:nue)?|Rd|Road|Blvd|Boulevard|Dr(?:ive)?|Ln|Lane|Ct|Court|"
    r"Pl(?:ace)?|Way|Cir(?:cle)?|Pkwy|Parkway|Ter(?:race)?|Trl|Trail|Hwy|Highway)"
)
_DIRECTION = r"(?:NE|NW|SE|SW|N|S|E|W)"
_TYPES = (
    r"(?:DUPLEX|TRIPLEX|FOURPLEX|QUADPLEX|SINGLE[\s-]FAMILY|SFR|MULTI[\s-]?FAMILY|"
    r"CONDO|TOWNHOME|TOWNHOUSE)"
)
_WORDS = r"(?:[A-Za-z0-9]+\.?[ \t]+){0,4}?"
_SP = r"[ \t]*"
_NUM = rf"\$?{_SP}(\d[\d,]*(?:\.\d+)?){_SP}(k\b)?"
_RANGE = (
    rf"\$?{_SP}(\d[\d,]*(?:\.\d+)?{_SP}k?)\b"
    rf"(?:{_SP}(?:-|–|to){_SP}\$?{_SP}(\d[\d,]*(?:\.\d+)?{_SP}k?)\b)?"
)
_LABEL_SEP = rf"{_SP}[:\-–]?{_SP}"
_SPELLED = r"\d+(?:\.\d)?|one|two|three|four|five|six|seven|eight|nine|ten"

# ─── Boundary Markers (highest priority first) ───────────────────────

URL_BOUNDARY = re.compile(r"(?=https?://(?:www\.)?zillow\.com/homedetails/)", re.IGNORECASE)

TYPED_ADDRESS_BOUNDARY = re.compile(
    rf"(?=^[ \t]*(?:{_TYPES}\b[^\n\d]{{0,20}}\d{{1,5}}[ \t]+{_WORDS}{_SUFFIX}\b"
    rf"|\d{{1,5}}[ \t]+{_WORDS}{_SUFFIX}\b[^\n]*\b{_TYPES}\b))",
    re.IGNORECASE | re.MULTILINE,
)

NUMBERED_STREET_BOUNDARY = re.compile(
    rf"(?=^[ \t]*\d{{1,5}}[ \t]+(?:{_DIRECTION}\.?[ \t]+)?\d+(?:st|nd|rd|th)[ \t]+{_SUFFIX}\b)",
    re.IGNORECASE | re.MULTILINE,
)

GENERIC_ADDRESS_BOUNDARY = re.compile(
    rf"(?=^[ \t]*\d{{1,5}}[ \t]+{_WORDS}{_SUFFIX}\b)",
    re.IGNORECASE | re.MULTILINE,
)

ADDRESS_BOUNDARIES = (TYPED_ADDRESS_BOUNDARY, NUMBERED_STREET_BOUNDARY, GENERIC_ADDRESS_BOUNDARY)

_LEADING_STREET_NUMBER = re.compile(r"\s*(?:\S+[ \t]+){0,3}?(\d{1,5})[ \t]+")

# ─── Field Patterns ──────────────────────────────────────────────────

STREET_ADDRESS = re.compile(
    rf"\b(\d{{1,5}}[ \t]+(?:{_DIRECTION}\.?[ \t]+)?{_WORDS}{_SUFFIX}\b\.?"
    rf"(?:[ \t]+{_DIRECTION}\b\.?)?)",
    re.IGNORECASE,
)
CITY_STATE_ZIP = re.compile(
    r"^[ \t]*,?[ \t]*([A-Za-z][A-Za-z .'-]*?)[ \t]*,[ \t]*([A-Z]{2})\b(?:[ \t]+(\d{5}))?"
)
PROPERTY_TYPE = re.compile(rf"\b({_TYPES})\b", re.IGNORECASE)

PRICE_TOKEN = re.compile(
    r"\$\s*\d[\d,]*(?:\.\d+)?|\b\d+(?:\.\d+)?\s*k\b"
    r"|\b(?:asking|price|rent|arv|offer)\b[^\n\d]{0,15}\d",
    re.IGNORECASE,
)

# Labels bind to a value on the same line only.
SUGGESTED_OFFER = re.compile(
    rf"\b(?:suggested[ \t]+offer(?:[ \t]+price)?|offer[ \t]+price){_LABEL_SEP}{_NUM}",
    re.IGNORECASE,
)
ASKING_LABELED = re.compile(
    rf"\b(?:asking(?:[ \t]+price)?|list(?:ing)?[ \t]+price){_LABEL_SEP}{_NUM}", re.IGNORECASE
)
ASKING_TRAILING = re.compile(rf"{_NUM}{_SP}(?:asking|ask)\b", re.IGNORECASE)
BARE_PRICE = re.compile(rf"\bprice{_LABEL_SEP}{_NUM}", re.IGNORECASE)

RENT_LABELED = re.compile(
    rf"\b(?:(?:estimated[ \t]+)?section[ \t]*8[ \t]+rent|rent){_LABEL_SEP}{_RANGE}",
    re.IGNORECASE,
)
RENT_TRAILING = re.compile(
    rf"\$(\d[\d,]*)(?:{_SP}(?:-|–){_SP}\$?(\d[\d,]*))?{_SP}(?:/{_SP}mo(?:nth)?{_SP})?"
    rf"(?:(?:estimated[ \t]+)?section[ \t]*8[ \t]+)?rent\b",
    re.IGNORECASE,
)
ARV = re.compile(rf"\b(?:estimated[ \t]+)?ARV\b{_LABEL_SEP}{_RANGE}", re.IGNORECASE)
REHAB = re.compile(rf"\brehab(?:[ \t]+needed)?{_LABEL_SEP}~?{_SP}{_NUM}", re.IGNORECASE)

BEDS_FROM_URL = re.compile(r"(\d+)-bd", re.IGNORECASE)
BATHS_FROM_URL = re.compile(r"(\d+(?:\.\d)?)-ba", re.IGNORECASE)
BEDS = re.compile(rf"\b({_SPELLED})\s*(?:bed(?:room)?s?|bd|br)\b", re.IGNORECASE)
BATHS = re.compile(rf"\b({_SPELLED})\s*(?:bath(?:room)?s?|ba)\b", re.IGNORECASE)
SQFT = re.compile(r"\b(\d[\d,]{2,})\s*(?:sq\.?\s*ft\.?|sqft|square\s+feet)", re.IGNORECASE)
YEAR_BUILT = re.compile(r"\b(?:year\s+built|built(?:\s+in)?)\s*[:\-]?\s*((?:18|19|20)\d{2})\b", re.IGNORECASE)

OFF_MARKET = re.compile(r"\bOFF[\s-]+MARKET\b", re.IGNORECASE)
UNDER_CONTRACT = re.compile(r"\b(?:UNDER\s+CONTRACT|PENDING|CONTINGENT)\b", re.IGNORECASE)
SECTION8_TENANT = re.compile(
    r"\b(?:section\s*8\s+tenant|tenant\s+(?:in\s+place|application\s+accepted))", re.IGNORECASE
)
OCCUPIED = re.compile(r"\b(?:occupied|tenant\s+(?:in\s+place|application))", re.IGNORECASE)

# Renovation narrative ("Needs: new roof, new HVAC, ...") is not a listing.
RENOVATION_INDICATORS = re.compile(
    r"\b(?:new\s+roof|new\s+hvac|hvac|new\s+floor(?:ing|s)?|fresh\s+paint|new\s+paint|"
    r"new\s+windows|water\s+heater|new\s+kitchen|kitchen\s+remodel|bathroom\s+remodel|"
    r"renovated|remodeled|updated\s+kitchen|needs\s*:|new\s+cabinets|new\s+plumbing|"
    r"new\s+electrical|foundation\s+repair)",
    re.IGNORECASE,
)


# ─── Public API ──────────────────────────────────────────────────────


def extract_records(
    text: str,
    run_id: str,
    source_page: Optional[int] = None,
    source_chunk: str = "text",
) -> list[PropertyRecord]:
    """Extract every candidate listing from a block of page text.

    If no segment qualifies as a listing, the whole block is tried once as a
    single candidate.
    """
    segments = split_into_segments(text)
    if not segments:
        record = parse_candidate(text, run_id, source_page, source_chunk)
        return [record] if record else []

    records = []
    for segment in segments:
        record = parse_candidate(segment, run_id, source_page, source_chunk)
        if record is not None:
            records.append(record)
    return records


def split_into_segments(text: str) -> list[str]:
    """Split text on ordered boundary markers and keep listing-like segments.

    A URL-led segment keeps the address lines of its own listing and is only
    cut where an address with a different street number begins. Everything
    else is split on each address marker in turn.
    """
    parts = [p for p in URL_BOUNDARY.split(text) if p.strip()]

    for boundary in ADDRESS_BOUNDARIES:
        expanded: list[str] = []
        for part in parts:
            if URL_BOUNDARY.match(part.lstrip()):
                expanded.extend(_split_url_segment(part, boundary))
            else:
                expanded.extend(p for p in boundary.split(part) if p.strip())
        parts = expanded

    return [
        part.strip()
        for part in parts
        if not is_renovation_narrative(part) and has_price_token(part) and has_identity_token(part)
    ]


def _split_url_segment(part: str, boundary: re.Pattern[str]) -> list[str]:
    url_match = MARKETPLACE_URL_PATTERN.search(part)
    own_number = url_street_number(url_match.group(0)) if url_match else None
    pieces = [p for p in boundary.split(part) if p.strip()]
    if own_number is None or len(pieces) < 2:
        return [part]

    segments = [pieces[0]]
    for piece in pieces[1:]:
        number = _LEADING_STREET_NUMBER.match(piece)
        if number and number.group(1) != own_number:
            segments.append(piece)
        else:
            segments[-1] += piece
    return segments


def parse_candidate(
    text: str,
    run_id: str,
    source_page: Optional[int] = None,
    source_chunk: str = "text",
) -> PropertyRecord | None:
    """Parse one segment into a raw PropertyRecord, or None if it is not a listing."""
    record = PropertyRecord(
        run_id=run_id,
        source_page=source_page,
        source_chunk=source_chunk,
        raw_text=text[:RAW_TEXT_LIMIT],
    )

    url_match = MARKETPLACE_URL_PATTERN.search(text)
    if url_match:
        url = url_match.group(0).rstrip(".,;")
        record.marketplace_url = url
        slug = decode_marketplace_url(url)
        record.address = slug.address
        record.city = slug.city
        record.state = slug.state
        record.zip = slug.zip
        record.bedrooms = _int_or_none(BEDS_FROM_URL.search(url))
        baths = BATHS_FROM_URL.search(url)
        if baths:
            record.bathrooms = float(baths.group(1))

    if not record.address:
        _fill_street_address(record, text)

    type_match = PROPERTY_TYPE.search(text)
    if type_match:
        record.property_type = re.sub(r"\s+", " ", type_match.group(1).upper())

    _fill_pricing(record, text)
    _fill_structure(record, text)
    _fill_indicators(record, text)

    has_identity = bool(record.marketplace_url) or (
        record.address is not None and len(record.address) >= MIN_ADDRESS_LENGTH
    )
    has_money = any(
        v is not None for v in (record.asking_price, record.suggested_offer, record.rent)
    )
    if not (has_identity and has_money):
        return None
    return record


def text_before_first_listing(text: str) -> str:
    """Text ahead of the first URL or address marker; empty when the text opens with one."""
    cut = len(text)
    for boundary in (URL_BOUNDARY, *ADDRESS_BOUNDARIES):
        match = boundary.search(text)
        if match and match.start() < cut:
            cut = match.start()
    return text[:cut]


def find_asking_price(text: str) -> int | None:
    """Asking price from labeled or trailing forms ("Asking: $95k", "$95k asking")."""
    without_offer = SUGGESTED_OFFER.sub(" ", text)
    for pattern in (ASKING_LABELED, ASKING_TRAILING, BARE_PRICE):
        match = pattern.search(without_offer)
        if match:
            return parse_price(match.group(1), has_k=bool(match.group(2)))
    return None


def find_rent(text: str) -> tuple[int | None, int | None]:
    """(min, max) monthly rent from labeled or trailing forms."""
    match = RENT_LABELED.search(text) or RENT_TRAILING.search(text)
    if not match:
        return None, None
    return parse_range(match.group(1), match.group(2), price_scale=False)


def has_price_token(text: str) -> bool:
    return bool(PRICE_TOKEN.search(text))


def has_identity_token(text: str) -> bool:
    return bool(MARKETPLACE_URL_PATTERN.search(text) or STREET_ADDRESS.search(text))


def is_renovation_narrative(text: str) -> bool:
    """Two or more renovation phrases and no identity or price token."""
    if len(RENOVATION_INDICATORS.findall(text)) < 2:
        return False
    return not (has_identity_token(text) or has_price_token(text))


def normalize_ocr_text(text: str) -> str:
    """Clean common OCR artifacts while keeping line structure intact."""
    text = re.sub(r"l(?=\d)", "1", text)  # lowercase L before digit
    text = re.sub(r"O(?=\d)", "0", text)  # capital O before digit
    text = re.sub(r"\$\s+", "$", text)
    text = re.sub(r"(\d)\s*[kK]\b", r"\1k", text)
    text = re.sub(r"[ \t]+", " ", text)
    return "\n".join(line.strip() for line in text.splitlines()).strip()


# ─── Field Extractors ────────────────────────────────────────────────


def _fill_street_address(record: PropertyRecord, text: str) -> None:
    for line in text.splitlines():
        if is_renovation_narrative(line):
            continue
        match = STREET_ADDRESS.search(line)
        if not match:
            continue
        record.address = re.sub(r"\s+", " ", match.group(1)).strip().rstrip(".")
        locality = CITY_STATE_ZIP.match(line[match.end():])
        if locality:
            record.city = locality.group(1).strip()
            record.state = locality.group(2)
            record.zip = locality.group(3)
        return


def _fill_pricing(record: PropertyRecord, text: str) -> None:
    record.asking_price = find_asking_price(text)

    offer = SUGGESTED_OFFER.search(text)
    if offer:
        record.suggested_offer = parse_price(offer.group(1), has_k=bool(offer.group(2)))

    rent_min, rent_max = find_rent(text)
    if rent_max is not None:
        record.rent_min = rent_min
        record.rent_max = rent_max
        record.rent = rent_max

    arv = ARV.search(text)
    if arv:
        arv_min, arv_max = parse_range(arv.group(1), arv.group(2))
        record.arv_min = arv_min
        record.arv_max = arv_max
        record.arv = arv_max

    rehab = REHAB.search(text)
    if rehab:
        record.rehab_needed = parse_price(rehab.group(1), has_k=bool(rehab.group(2)))


def _fill_structure(record: PropertyRecord, text: str) -> None:
    if record.bedrooms is None:
        beds = BEDS.search(text)
        if beds:
            value = word_to_int(beds.group(1).split(".")[0])
            if value is not None:
                record.bedrooms = value
    if record.bathrooms is None:
        baths = BATHS.search(text)
        if baths:
            raw = baths.group(1)
            record.bathrooms = float(raw) if raw[0].isdigit() else float(word_to_int(raw))

    sqft = SQFT.search(text)
    if sqft:
        record.sqft = int(sqft.group(1).replace(",", ""))

    year = YEAR_BUILT.search(text)
    if year:
        record.year_built = int(year.group(1))


def _fill_indicators(record: PropertyRecord, text: str) -> None:
    record.section8_tenant = bool(SECTION8_TENANT.search(text))
    record.occupied = bool(OCCUPIED.search(text)) or record.section8_tenant

    if OFF_MARKET.search(text):
        record.is_off_market_deal = True
    elif UNDER_CONTRACT.search(text):
        record.marketplace_status = MarketStatus.PENDING
        record.availability_details = "Listing text says under contract"


def _int_or_none(match: re.Match | None) -> int | None:
    return int(match.group(1)) if match else None
