"""
Manual availability path: generate a status-check prompt, parse the pasted
answer, match each line back to a record.

Accepted line shapes (STATUS is ACTIVE, PENDING, SOLD, OFF-MARKET,
NOT-FOUND or UNKNOWN, any case):

    1. 123 Main St, Memphis, TN | SOLD | Sold Dec 2024
    1. 123 Main St, Memphis, TN: SOLD - Sold Dec 2024
    1. 123 Main St, Memphis, TN - SOLD (Sold Dec 2024)
    123 Main St, Memphis, TN | SOLD | Sold Dec 2024
    123 Main St, Memphis, TN | SOLD

Matching is by normalized address first, then by the line's 1-based index
into the prompt's property list. A line matching neither is reported as a
failure with its reason; it never silently disappears.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from .models import AvailabilityResult, AvailabilitySource, MarketStatus, ProcessingStatus, PropertyRecord
from .normalization import normalize_address

logger = logging.getLogger(__name__)

_STATUS = r"(ACTIVE|PENDING|SOLD|OFF-MARKET|OFF MARKET|NOT-FOUND|NOT FOUND|UNKNOWN)"

NUMBERED_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(rf"^(\d+)[.)]\s*(.+?)\s*\|\s*{_STATUS}\s*(?:\|\s*(.*))?$", re.IGNORECASE),
    re.compile(rf"^(\d+)[.)]\s*(.+?):\s*{_STATUS}\s*(?:-\s*(.*))?$", re.IGNORECASE),
    re.compile(rf"^(\d+)[.)]\s*(.+?)\s*-\s*{_STATUS}\s*(?:\((.+)\))?$", re.IGNORECASE),
)

UNNUMBERED_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(rf"^(.+?)\s*\|\s*{_STATUS}\s*\|\s*(.+)$", re.IGNORECASE),
    re.compile(rf"^(.+?)\s*\|\s*{_STATUS}\s*$", re.IGNORECASE),
    re.compile(rf"^(.+?):\s*{_STATUS}\s*-\s*(.+)$", re.IGNORECASE),
    re.compile(rf"^(.+?)\s*-\s*{_STATUS}\s*\((.+)\)$", re.IGNORECASE),
)

_HEADER_PREFIXES = ("here", "i ", "let me", "checking", "based on", "results", "property")
_HEADER_PHRASES = ("status check", "the following")

_STATUS_MAP: dict[str, MarketStatus] = {
    "ACTIVE": MarketStatus.ACTIVE,
    "PENDING": MarketStatus.PENDING,
    "SOLD": MarketStatus.SOLD,
    "OFF-MARKET": MarketStatus.OFF_MARKET,
}


# ─── Models ──────────────────────────────────────────────────────────


class StatusLine(BaseModel):
    index: Optional[int] = None  # None for un-numbered lines
    address: str
    status: MarketStatus
    details: Optional[str] = None
    raw: str


class StatusSummary(BaseModel):
    total: int = 0
    active: int = 0
    pending: int = 0
    sold: int = 0
    off_market: int = 0
    not_found: int = 0


class ParsedReport(BaseModel):
    lines: list[StatusLine] = Field(default_factory=list)
    unparsed_lines: list[str] = Field(default_factory=list)
    summary: StatusSummary = Field(default_factory=StatusSummary)


class ImportUpdate(BaseModel):
    record_id: str
    status: MarketStatus
    details: Optional[str] = None
    matched_by: str  # "address" or "index"


class ImportFailure(BaseModel):
    index: Optional[int] = None
    address: str
    reason: str


class ImportReport(BaseModel):
    parsed: int = 0
    updates: list[ImportUpdate] = Field(default_factory=list)
    failures: list[ImportFailure] = Field(default_factory=list)
    unparsed_lines: list[str] = Field(default_factory=list)
    summary: StatusSummary = Field(default_factory=StatusSummary)
    message: str = ""


# ─── Parsing ─────────────────────────────────────────────────────────


def parse_status_report(text: str) -> ParsedReport:
    """Parse free-form status text line by line."""
    report = ParsedReport()
    for line in (raw.strip() for raw in text.splitlines()):
        if not line:
            continue
        parsed = parse_status_line(line)
        if parsed is not None:
            report.lines.append(parsed)
        elif not _is_header_line(line):
            report.unparsed_lines.append(line)

    statuses = [line.status for line in report.lines]
    report.summary = StatusSummary(
        total=len(statuses),
        active=statuses.count(MarketStatus.ACTIVE),
        pending=statuses.count(MarketStatus.PENDING),
        sold=statuses.count(MarketStatus.SOLD),
        off_market=statuses.count(MarketStatus.OFF_MARKET),
        not_found=statuses.count(MarketStatus.UNKNOWN),
    )
    return report


def parse_status_line(line: str) -> StatusLine | None:
    for pattern in NUMBERED_PATTERNS:
        match = pattern.match(line)
        if match:
            return StatusLine(
                index=int(match.group(1)),
                address=match.group(2).strip(),
                status=map_status(match.group(3)),
                details=(match.group(4) or "").strip() or None,
                raw=line,
            )
    for pattern in UNNUMBERED_PATTERNS:
        match = pattern.match(line)
        if match:
            details = match.group(3) if match.lastindex and match.lastindex >= 3 else None
            return StatusLine(
                address=match.group(1).strip(),
                status=map_status(match.group(2)),
                details=(details or "").strip() or None,
                raw=line,
            )
    return None


def map_status(raw: str) -> MarketStatus:
    """NOT-FOUND and UNKNOWN both map to unknown."""
    return _STATUS_MAP.get(re.sub(r"\s+", "-", raw.strip().upper()), MarketStatus.UNKNOWN)


def _is_header_line(line: str) -> bool:
    lowered = line.lower().strip()
    return lowered.startswith(_HEADER_PREFIXES) or any(p in lowered for p in _HEADER_PHRASES)


# ─── Prompt + Matching Maps ──────────────────────────────────────────


def records_needing_check(records: list[PropertyRecord]) -> list[PropertyRecord]:
    """Unique records whose marketplace status is missing or inconclusive."""
    return [
        r
        for r in records
        if r.status == ProcessingStatus.DEDUPED
        and (r.marketplace_status is None or not r.marketplace_status.is_definitive)
    ]


def _checkable(records: list[PropertyRecord]) -> list[PropertyRecord]:
    return [r for r in records if r.address and r.city and r.state]


def _listing_line(record: PropertyRecord) -> str:
    line = f"{record.address}, {record.city}, {record.state}"
    return f"{line} {record.zip}" if record.zip else line


def build_status_prompt(records: list[PropertyRecord]) -> str:
    """Prompt asking an assistant (or a person) to report each listing's status."""
    checkable = _checkable(records)
    if not checkable:
        return "No properties with complete addresses to check."

    listing = "\n".join(f"{i}. {_listing_line(r)}" for i, r in enumerate(checkable, start=1))
    return (
        f"Check the availability status of these {len(checkable)} properties on Zillow.\n"
        "For each property, search on Zillow and report the current status.\n\n"
        f"Properties to check:\n{listing}\n\n"
        "Return your results in this EXACT format (one per line):\n"
        "[ADDRESS] | [STATUS] | [DETAILS]\n\n"
        "Where STATUS must be one of: ACTIVE, PENDING, SOLD, OFF-MARKET, NOT-FOUND\n\n"
        "Example format:\n"
        "123 Main St, Memphis, TN 38116 | SOLD | Sold Dec 15, 2024 for $125,000\n"
        "456 Oak Ave, Memphis, TN 38118 | ACTIVE | Listed at $89,900\n"
        "789 Pine Rd, Memphis, TN 38120 | PENDING | Under contract\n"
        "321 Elm St, Memphis, TN 38122 | NOT-FOUND | No Zillow listing found"
    )


def build_index_map(records: list[PropertyRecord]) -> dict[int, str]:
    """1-based prompt position → record id."""
    return {i: r.id for i, r in enumerate(_checkable(records), start=1)}


def build_address_map(records: list[PropertyRecord]) -> dict[str, str]:
    """Normalized address variants (with zip, without zip, space-joined) → record id."""
    mapping: dict[str, str] = {}
    for record in _checkable(records):
        variants = (
            _listing_line(record),
            f"{record.address}, {record.city}, {record.state}",
            f"{record.address} {record.city} {record.state}",
        )
        for variant in variants:
            key = normalize_address(variant)
            if key:
                mapping[key] = record.id
    return mapping


# ─── Apply ───────────────────────────────────────────────────────────


def apply_status_report(records: list[PropertyRecord], text: str) -> ImportReport:
    """Match parsed lines to records and set status with source "imported".

    Only records still needing a check are eligible, and the index map is
    built over that same list, so numbering matches the generated prompt.
    Matched records are updated in place; the caller persists them.
    """
    candidates = records_needing_check(records)
    by_id = {r.id: r for r in candidates}
    index_map = build_index_map(candidates)
    address_map = build_address_map(candidates)

    parsed = parse_status_report(text)
    report = ImportReport(
        parsed=len(parsed.lines),
        unparsed_lines=parsed.unparsed_lines,
        summary=parsed.summary,
    )

    for line in parsed.lines:
        record_id = address_map.get(normalize_address(line.address) or "")
        matched_by = "address"
        if record_id is None and line.index is not None:
            record_id = index_map.get(line.index)
            matched_by = "index"

        if record_id is None:
            reason = (
                f'No property found for index {line.index} or address "{line.address}"'
                if line.index is not None
                else f'No property found for address "{line.address}"'
            )
            report.failures.append(ImportFailure(index=line.index, address=line.address, reason=reason))
            continue

        by_id[record_id].set_availability(
            AvailabilityResult(
                status=line.status, source=AvailabilitySource.IMPORTED, details=line.details
            )
        )
        report.updates.append(
            ImportUpdate(record_id=record_id, status=line.status, details=line.details, matched_by=matched_by)
        )

    report.message = _summarize(len(parsed.lines), len(candidates))
    logger.info(
        "Status import: %d parsed, %d updated, %d failed",
        report.parsed, len(report.updates), len(report.failures),
    )
    return report


def _summarize(found: int, expected: int) -> str:
    if found == 0:
        return (
            "No property statuses found in the response. Make sure it follows the "
            'format: "Address | STATUS | details"'
        )
    if found < expected:
        return f"Found {found} of {expected} expected properties. Some may not have been parsed."
    return f"Successfully parsed {found} property statuses."
