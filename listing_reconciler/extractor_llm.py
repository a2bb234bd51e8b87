"""
Vision-model extraction for pages with no usable text layer.

The model reads the rendered page image and returns structured listings
directly, so these pages skip the regex reconstructor. We still never trust
it blindly: low self-reported confidence flags the record for review, every
record goes through the same deterministic validators as regex output, and an
optional second pass asks the model to re-read its own numbers and returns
typed FieldCorrections.

Design:
  - JSON mode enforced (structured output, not free text)
  - temperature 0
  - Graceful fallback: no API key or any failure → None → page goes to OCR
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Optional

from openai import OpenAI

from .exceptions import VisionExtractionError
from .models import CorrectableField, FieldCorrection, PropertyRecord
from .price_parsing import has_k_suffix

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 70


# ─── Prompts ─────────────────────────────────────────────────────────

EXTRACTION_PROMPT = """\
You are extracting property data from a bulk real-estate investment listing.

CRITICAL RULES:
1. Process each property INDEPENDENTLY - never mix data between properties.
2. Read EXACTLY what is shown. If you cannot clearly read a value, use null.
3. Report CONFIDENCE (0-100) for askingPrice and rehabNeeded.

ADDRESSES:
A property may show its address as a text line ("1611 15th Ave N") or ONLY
inside a Zillow URL (/homedetails/1340-43rd-Street-Birmingham-AL-35208/...).
If only the URL is shown, parse address, city, state and zip from it.

RANGES:
Rent and ARV often show ranges. "$1,300-$1,400" → rentMin=1300, rentMax=1400.
A single value fills both min and max. "$135k-$145k" → arvMin=135000, arvMax=145000.

FIELDS (numbers as plain integers, "$110k" = 110000):
address, city, state (2 letters), zip, askingPrice, askingPriceConfidence,
suggestedOffer, rentMin, rentMax, rehabNeeded, rehabConfidence, arvMin, arvMax,
bedrooms ("FOUR BEDROOM" = 4), bathrooms, sqft, zillowUrl, occupied,
section8Tenant

Scan the ENTIRE image including all columns; pages often hold 10+ properties.

Return ONLY valid JSON:
{"properties": [...], "pagePropertyCount": <number>}
"""

VERIFY_PROMPT = """\
Below are values previously extracted from this page image. Re-read the image
and check each askingPrice, rent and rehabNeeded. Report ONLY values that are
wrong.

Extracted:
{listing}

Return ONLY valid JSON:
{{"corrections": [{{"address": "...", "field": "askingPrice|rent|rehabNeeded",
"extracted": <number or null>, "actual": <number>, "reason": "..."}}]}}
"""

_FIELD_NAMES: dict[str, CorrectableField] = {
    "askingprice": CorrectableField.ASKING_PRICE,
    "asking_price": CorrectableField.ASKING_PRICE,
    "rent": CorrectableField.RENT,
    "rehabneeded": CorrectableField.REHAB_NEEDED,
    "rehab_needed": CorrectableField.REHAB_NEEDED,
}


class VisionExtractor:
    """OpenAI vision adapter. The client is created on first use."""

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o"):
        self.api_key = api_key
        self.model = model
        self._client: Optional[OpenAI] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def extract(self, png: bytes, page: int, run_id: str) -> list[PropertyRecord] | None:
        """Structured listings from one page image.

        Returns:
            A list (possibly empty) on success, None if unavailable or failed.
            Failure is NOT an error; the caller falls back to OCR.
        """
        if not self.configured:
            logger.info("No OPENAI_API_KEY set; skipping vision for page %d", page)
            return None

        try:
            data = self._ask(EXTRACTION_PROMPT, png)
        except Exception as e:
            logger.error("Vision extraction failed on page %d: %s", page, e)
            return None

        items = data if isinstance(data, list) else data.get("properties") or []
        records = []
        for item in items:
            if not isinstance(item, dict):
                continue
            record = _record_from_item(item, page, run_id)
            if record is not None:
                records.append(record)

        logger.info("Vision extracted %d properties from page %d", len(records), page)
        return records

    def verify(
        self, records: list[PropertyRecord], png: bytes
    ) -> list[tuple[str, FieldCorrection]]:
        """Second pass over the same image. Returns (address, correction) pairs."""
        if not self.configured or not records:
            return []

        listing = "\n".join(
            f"- {r.address}: askingPrice={r.asking_price}, rent={r.rent}, rehabNeeded={r.rehab_needed}"
            for r in records
        )
        try:
            data = self._ask(VERIFY_PROMPT.format(listing=listing), png)
        except Exception as e:
            logger.error("Vision verification failed: %s", e)
            return []

        corrections = []
        items = data.get("corrections") or [] if isinstance(data, dict) else []
        for item in items:
            correction = _correction_from_item(item)
            if correction is not None:
                corrections.append((str(item.get("address") or ""), correction))
        return corrections

    def _ask(self, prompt: str, png: bytes):
        data_url = f"data:image/png;base64,{base64.b64encode(png).decode('ascii')}"
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                    ],
                }
            ],
            max_tokens=8192,
            temperature=0,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or "{}"
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise VisionExtractionError(f"Model returned invalid JSON: {e}") from e
        if not isinstance(data, (dict, list)):
            raise VisionExtractionError(f"Unexpected response type {type(data).__name__}")
        return data


def apply_corrections(
    records: list[PropertyRecord], corrections: list[tuple[str, FieldCorrection]]
) -> int:
    """Apply corrections to records whose address matches. Returns count applied."""
    by_address = {(r.address or "").strip().lower(): r for r in records}
    applied = 0
    for address, correction in corrections:
        record = by_address.get(address.strip().lower())
        if record is None:
            continue
        record.apply_correction(correction)
        applied += 1
    return applied


# ─── Safe Type Converters ────────────────────────────────────────────


def _safe_number(value: object) -> float | None:
    """Numbers from model output; strings like "$1,400" or "$110k" are tolerated."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value)
    cleaned = re.sub(r"[^0-9.]", "", text)
    try:
        number = float(cleaned) if cleaned else None
    except ValueError:
        return None
    if number is not None and has_k_suffix(text):
        number *= 1000
    return number


def _safe_int(value: object) -> int | None:
    number = _safe_number(value)
    return int(round(number)) if number is not None else None


def _safe_str(value: object) -> str | None:
    return value.strip() or None if isinstance(value, str) else None


def _safe_bool(value: object) -> bool | None:
    return value if isinstance(value, bool) else None


def _record_from_item(item: dict, page: int, run_id: str) -> PropertyRecord | None:
    rent_min = _safe_int(item.get("rentMin"))
    rent_max = _safe_int(item.get("rentMax"))
    arv_min = _safe_int(item.get("arvMin"))
    arv_max = _safe_int(item.get("arvMax"))
    state = _safe_str(item.get("state"))

    try:
        record = PropertyRecord(
            run_id=run_id,
            source_page=page,
            source_chunk="vision",
            address=_safe_str(item.get("address")),
            city=_safe_str(item.get("city")),
            state=state.upper() if state and len(state) == 2 else None,
            zip=_safe_str(item.get("zip")),
            asking_price=_safe_int(item.get("askingPrice")),
            suggested_offer=_safe_int(item.get("suggestedOffer")),
            rent=rent_max if rent_max is not None else _safe_int(item.get("rent")),
            rent_min=rent_min,
            rent_max=rent_max,
            rehab_needed=_safe_int(item.get("rehabNeeded")),
            arv=arv_max if arv_max is not None else _safe_int(item.get("arv")),
            arv_min=arv_min,
            arv_max=arv_max,
            bedrooms=_safe_int(item.get("bedrooms")),
            bathrooms=_safe_number(item.get("bathrooms")),
            sqft=_safe_int(item.get("sqft")),
            marketplace_url=_safe_str(item.get("zillowUrl")),
            occupied=_safe_bool(item.get("occupied")),
            section8_tenant=_safe_bool(item.get("section8Tenant")),
        )
    except ValueError as e:
        logger.warning("Dropping unreadable vision item on page %d: %s", page, e)
        return None

    asking_conf = _safe_number(item.get("askingPriceConfidence")) or 0
    rehab_conf = _safe_number(item.get("rehabConfidence")) or 0
    if asking_conf < CONFIDENCE_THRESHOLD or rehab_conf < CONFIDENCE_THRESHOLD:
        record.add_note(
            f"Low confidence: asking={asking_conf:g}%, rehab={rehab_conf:g}%", flag=True
        )
    return record


def _correction_from_item(item: object) -> FieldCorrection | None:
    if not isinstance(item, dict):
        return None
    field = _FIELD_NAMES.get(str(item.get("field") or "").replace(" ", "").lower())
    actual = _safe_int(item.get("actual"))
    if field is None or actual is None:
        return None
    return FieldCorrection(
        field=field,
        extracted_value=_safe_int(item.get("extracted")),
        corrected_value=actual,
        reason=str(item.get("reason") or ""),
    )
