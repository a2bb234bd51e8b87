"""
Deterministic plausibility checks — the hallucination detector.

Extraction (regex, OCR or vision) can misread a number by an order of
magnitude or pair a price with the wrong listing. These validators run PURE
CODE checks on each record. They NEVER call a model and NEVER discard a
record: every finding becomes a review flag plus a note.

Each validator function:
  - Takes a PropertyRecord (and the thresholds it needs)
  - Returns a list of ValidationFinding objects (empty = all clear)
  - Is independently testable

validate_all() runs every check; apply_findings() writes them onto the record.
"""

from __future__ import annotations

from .config import ValidationThresholds
from .models import PropertyRecord, Severity, ValidationFinding
from .normalization import url_street_number


# ─── Orchestrator ────────────────────────────────────────────────────


def validate_all(
    record: PropertyRecord, thresholds: ValidationThresholds | None = None
) -> list[ValidationFinding]:
    """Run ALL validators and collect findings."""
    thresholds = thresholds or ValidationThresholds()
    findings: list[ValidationFinding] = []
    findings.extend(validate_completeness(record))
    findings.extend(validate_price_band(record, thresholds))
    findings.extend(validate_rent_yield(record, thresholds))
    findings.extend(validate_arv_coverage(record, thresholds))
    findings.extend(validate_url_address_match(record))
    findings.extend(validate_ranges(record, thresholds))
    findings.extend(validate_rehab(record, thresholds))
    return findings


def apply_findings(record: PropertyRecord, findings: list[ValidationFinding]) -> None:
    """Flag the record for review and append one note per WARNING."""
    for finding in findings:
        if finding.severity == Severity.WARNING:
            record.add_note(finding.message, flag=True)


def validate_records(
    records: list[PropertyRecord], thresholds: ValidationThresholds | None = None
) -> int:
    """Validate and annotate a batch in place. Returns the number flagged."""
    flagged = 0
    for record in records:
        findings = validate_all(record, thresholds)
        apply_findings(record, findings)
        if any(f.severity == Severity.WARNING for f in findings):
            flagged += 1
    return flagged


# ─── Individual Validators ───────────────────────────────────────────


def validate_completeness(record: PropertyRecord) -> list[ValidationFinding]:
    """A record without address, asking price or rent cannot be underwritten."""
    missing = [
        name
        for name, value in (
            ("address", record.address),
            ("asking price", record.asking_price),
            ("rent", record.rent),
        )
        if value is None
    ]
    if not missing:
        return []
    return [
        ValidationFinding(
            severity=Severity.WARNING,
            code="MISSING_FIELDS",
            field=missing[0].replace(" ", "_"),
            message=f"Missing {', '.join(missing)}",
            details={"missing": missing},
        )
    ]


def validate_price_band(
    record: PropertyRecord, thresholds: ValidationThresholds
) -> list[ValidationFinding]:
    """Asking prices outside the band are usually misread digits."""
    price = record.asking_price
    if price is None:
        return []

    if price < thresholds.price_min:
        message = f"Price ${price:,} seems too low - verify extraction"
    elif price > thresholds.price_max:
        message = f"Price ${price:,} seems too high for this market"
    else:
        return []

    return [
        ValidationFinding(
            severity=Severity.WARNING,
            code="PRICE_OUT_OF_RANGE",
            field="asking_price",
            message=message,
            details={
                "asking_price": price,
                "price_min": thresholds.price_min,
                "price_max": thresholds.price_max,
            },
        )
    ]


def validate_rent_yield(
    record: PropertyRecord, thresholds: ValidationThresholds
) -> list[ValidationFinding]:
    """Annual rent / price outside the band means price or rent was misread.

    Yield is computed exactly as (rent * 12) / price.
    """
    if not record.asking_price or not record.rent:
        return []

    annual_yield = (record.rent * 12) / record.asking_price
    if thresholds.yield_min <= annual_yield <= thresholds.yield_max:
        return []

    direction = "low" if annual_yield < thresholds.yield_min else "high"
    return [
        ValidationFinding(
            severity=Severity.WARNING,
            code="YIELD_OUT_OF_RANGE",
            field="rent",
            message=(
                f"Rent yield {annual_yield:.1%} seems too {direction} "
                f"(${record.rent:,}/mo on ${record.asking_price:,})"
            ),
            details={
                "yield": round(annual_yield, 4),
                "yield_min": thresholds.yield_min,
                "yield_max": thresholds.yield_max,
            },
        )
    ]


def validate_arv_coverage(
    record: PropertyRecord, thresholds: ValidationThresholds
) -> list[ValidationFinding]:
    """Price plus rehab should not exceed ARV by more than the allowed overrun."""
    if not record.asking_price or not record.arv:
        return []

    total_cost = record.asking_price + (record.rehab_needed or 0)
    ceiling = record.arv * (1 + thresholds.arv_overrun)
    if total_cost <= ceiling:
        return []

    return [
        ValidationFinding(
            severity=Severity.WARNING,
            code="COST_EXCEEDS_ARV",
            field="arv",
            message=f"Price + rehab (${total_cost:,}) exceeds ARV (${record.arv:,})",
            details={"total_cost": total_cost, "arv": record.arv},
        )
    ]


def validate_url_address_match(record: PropertyRecord) -> list[ValidationFinding]:
    """The street number in the marketplace URL must match the parsed address.

    A mismatch means the URL was attributed to the wrong listing.
    """
    if not record.marketplace_url or not record.address:
        return []

    url_number = url_street_number(record.marketplace_url)
    address_number = record.address.split()[0] if record.address.split() else None
    if not url_number or not address_number or not address_number.isdigit():
        return []
    if url_number == address_number:
        return []

    return [
        ValidationFinding(
            severity=Severity.WARNING,
            code="URL_ADDRESS_MISMATCH",
            field="marketplace_url",
            message=(
                f"URL address number ({url_number}) doesn't match "
                f"extracted address ({address_number})"
            ),
            details={"url_number": url_number, "address_number": address_number},
        )
    ]


def validate_ranges(
    record: PropertyRecord, thresholds: ValidationThresholds
) -> list[ValidationFinding]:
    """Range bounds must be ordered; monthly rent must be plausible."""
    findings: list[ValidationFinding] = []

    if record.rent_min is not None and record.rent_max is not None and record.rent_min > record.rent_max:
        findings.append(
            ValidationFinding(
                severity=Severity.WARNING,
                code="RENT_RANGE_INVERTED",
                field="rent_min",
                message=f"Rent min (${record.rent_min:,}) > max (${record.rent_max:,})",
                details={"rent_min": record.rent_min, "rent_max": record.rent_max},
            )
        )

    if record.rent_max is not None and record.rent_max > thresholds.rent_max:
        findings.append(
            ValidationFinding(
                severity=Severity.WARNING,
                code="RENT_TOO_HIGH",
                field="rent_max",
                message=f"Rent ${record.rent_max:,}/mo seems too high",
                details={"rent_max": record.rent_max, "limit": thresholds.rent_max},
            )
        )

    if record.arv_min is not None and record.arv_max is not None and record.arv_min > record.arv_max:
        findings.append(
            ValidationFinding(
                severity=Severity.WARNING,
                code="ARV_RANGE_INVERTED",
                field="arv_min",
                message=f"ARV min (${record.arv_min:,}) > max (${record.arv_max:,})",
                details={"arv_min": record.arv_min, "arv_max": record.arv_max},
            )
        )

    return findings


def validate_rehab(
    record: PropertyRecord, thresholds: ValidationThresholds
) -> list[ValidationFinding]:
    rehab = record.rehab_needed
    if rehab is None:
        return []
    if rehab < 0:
        message = f"Rehab estimate is negative (${rehab:,})"
    elif rehab > thresholds.rehab_max:
        message = f"Rehab ${rehab:,} seems too high"
    else:
        return []
    return [
        ValidationFinding(
            severity=Severity.WARNING,
            code="REHAB_OUT_OF_RANGE",
            field="rehab_needed",
            message=message,
            details={"rehab_needed": rehab, "rehab_max": thresholds.rehab_max},
        )
    ]
