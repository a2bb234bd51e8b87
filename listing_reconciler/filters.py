"""
Post-review screening.

Runs on resume, after a human has reviewed the deduped records and before
anything goes to the analyzer. Unlike the validator, a failing screen DOES
discard the record (status "discarded", reasons joined with "; ").
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel

from .config import FilterCriteria
from .models import ProcessingStatus, PropertyRecord


class FilterReason(BaseModel):
    field: str
    reason: str


@dataclass
class FilterResult:
    passed: list[PropertyRecord] = field(default_factory=list)
    failed: list[PropertyRecord] = field(default_factory=list)
    by_reason: dict[str, int] = field(default_factory=dict)


def filter_reasons(record: PropertyRecord, criteria: FilterCriteria) -> list[FilterReason]:
    """Every screen the record fails. Missing values only fail the required ones."""
    reasons: list[FilterReason] = []

    if record.rent is not None and record.rent < criteria.min_rent:
        reasons.append(FilterReason(field="rent", reason=f"Rent ${record.rent} below minimum ${criteria.min_rent}"))

    if record.bedrooms is not None and record.bedrooms < criteria.min_bedrooms:
        reasons.append(
            FilterReason(
                field="bedrooms",
                reason=f"{record.bedrooms} bedrooms below minimum {criteria.min_bedrooms}",
            )
        )

    if record.bathrooms is not None and record.bathrooms < criteria.min_bathrooms:
        reasons.append(
            FilterReason(
                field="bathrooms",
                reason=f"{record.bathrooms:g} bathrooms below minimum {criteria.min_bathrooms:g}",
            )
        )

    if criteria.occupied_section8_only and not (record.occupied and record.section8_tenant):
        reasons.append(FilterReason(field="occupancy", reason="Not occupied by Section 8 tenant"))

    if record.asking_price is not None and record.suggested_offer is not None:
        gap = record.asking_price - record.suggested_offer
        if gap > criteria.offer_gap_threshold:
            reasons.append(
                FilterReason(
                    field="offer_gap",
                    reason=f"Offer gap ${gap} exceeds threshold ${criteria.offer_gap_threshold}",
                )
            )

    if record.rent is None:
        reasons.append(FilterReason(field="rent", reason="Rent is missing"))
    if record.asking_price is None:
        reasons.append(FilterReason(field="asking_price", reason="Asking price is missing"))

    return reasons


def apply_filters(records: list[PropertyRecord], criteria: FilterCriteria) -> FilterResult:
    """Mark passing records "filtered" and failing ones "discarded"."""
    result = FilterResult()
    for record in records:
        reasons = filter_reasons(record, criteria)
        if not reasons:
            record.status = ProcessingStatus.FILTERED
            record.touch()
            result.passed.append(record)
            continue

        record.status = ProcessingStatus.DISCARDED
        record.discard_reason = "; ".join(r.reason for r in reasons)
        record.touch()
        result.failed.append(record)
        for r in reasons:
            result.by_reason[r.field] = result.by_reason.get(r.field, 0) + 1
    return result
