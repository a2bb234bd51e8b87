"""
Pydantic models for listing data — the record contract shared by every stage.

Every stage reads and writes these types; the datastore re-validates them at
its write boundary, so the stored shape can never drift from the in-memory one.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ─── Enumerations ───────────────────────────────────────────────────


class MarketStatus(str, Enum):
    """Current marketplace sale status of a listing."""

    ACTIVE = "active"
    PENDING = "pending"
    SOLD = "sold"
    OFF_MARKET = "off-market"
    UNKNOWN = "unknown"
    NEEDS_REVIEW = "needs-review"

    @property
    def is_definitive(self) -> bool:
        return self not in (MarketStatus.UNKNOWN, MarketStatus.NEEDS_REVIEW)

    @property
    def is_unavailable(self) -> bool:
        return self in (MarketStatus.SOLD, MarketStatus.PENDING, MarketStatus.OFF_MARKET)


class ProcessingStatus(str, Enum):
    """Where a record is in its lifecycle. ANALYZED and DISCARDED are terminal."""

    RAW = "raw"
    FILTERED = "filtered"
    DEDUPED = "deduped"
    REVIEWED = "reviewed"
    ANALYZED = "analyzed"
    DISCARDED = "discarded"


class AvailabilitySource(str, Enum):
    """How a record's marketplace status was obtained."""

    MARKETPLACE = "marketplace"
    WEB_SEARCH = "web-search"
    MANUAL = "manual"
    IMPORTED = "imported"
    NONE = "none"


class RunStatus(str, Enum):
    """Pipeline stage of a run, polled by external readers."""

    PENDING = "pending"
    SPLITTING = "splitting"
    EXTRACTING = "extracting"
    PARSING = "parsing"
    DEDUPING = "deduping"
    CHECKING_AVAILABILITY = "checking-availability"
    WAITING_FOR_REVIEW = "waiting-for-review"
    FILTERING = "filtering"
    UNDERWRITING = "underwriting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Severity(str, Enum):
    """Severity of a validation finding."""

    WARNING = "WARNING"  # Implausible, needs human review
    INFO = "INFO"  # Informational observation


class CorrectableField(str, Enum):
    """Fields a verification pass is allowed to correct."""

    ASKING_PRICE = "asking_price"
    RENT = "rent"
    REHAB_NEEDED = "rehab_needed"


# ─── Validation Finding ─────────────────────────────────────────────


class ValidationFinding(BaseModel):
    """A single plausibility finding with a machine-readable code."""

    severity: Severity
    code: str  # Machine-readable, e.g. "YIELD_OUT_OF_RANGE"
    field: str
    message: str
    details: dict = Field(default_factory=dict)


# ─── Corrections ────────────────────────────────────────────────────


class FieldCorrection(BaseModel):
    """A verified correction to one extracted value."""

    field: CorrectableField
    extracted_value: Optional[int] = None
    corrected_value: int
    reason: str = ""


# ─── Page Chunk ─────────────────────────────────────────────────────


class PageChunk(BaseModel):
    """A page-addressable slice of the source document. Immutable once split."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    run_id: str
    page_start: int  # 1-indexed, inclusive
    page_end: int  # 1-indexed, inclusive
    content: bytes = Field(repr=False)
    size: int
    has_text: bool = False

    @property
    def page_numbers(self) -> list[int]:
        return list(range(self.page_start, self.page_end + 1))


# ─── Property Record ────────────────────────────────────────────────


class PropertyRecord(BaseModel):
    """A candidate or finalized property listing.

    Fields are Optional because extraction is best-effort: a record may be
    missing any individual value and is flagged for review rather than dropped.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id)
    run_id: str

    # Address
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, max_length=2)
    zip: Optional[str] = None
    property_type: Optional[str] = None  # e.g. "DUPLEX"

    # Pricing (whole dollars)
    asking_price: Optional[int] = Field(default=None, ge=0)
    suggested_offer: Optional[int] = Field(default=None, ge=0)

    # Rent (rent mirrors the upper bound of the range)
    rent: Optional[int] = Field(default=None, ge=0)
    rent_min: Optional[int] = None
    rent_max: Optional[int] = None

    # After-repair value and rehab
    arv: Optional[int] = Field(default=None, ge=0)
    arv_min: Optional[int] = None
    arv_max: Optional[int] = None
    rehab_needed: Optional[int] = None

    # Structure
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0)
    sqft: Optional[int] = Field(default=None, ge=0)
    year_built: Optional[int] = None

    # Occupancy
    occupied: Optional[bool] = None
    section8_tenant: Optional[bool] = None

    # Marketplace
    marketplace_url: Optional[str] = None
    marketplace_status: Optional[MarketStatus] = None
    valuation_estimate: Optional[int] = None
    status_checked_at: Optional[datetime] = None
    is_off_market_deal: bool = False
    availability_source: Optional[AvailabilitySource] = None
    availability_details: Optional[str] = None

    # Processing
    status: ProcessingStatus = ProcessingStatus.RAW
    discard_reason: Optional[str] = None
    needs_manual_review: bool = False
    review_notes: Optional[str] = None

    # Provenance
    source_page: Optional[int] = None
    source_chunk: Optional[str] = None  # "text", "ocr" or "vision"
    raw_text: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def add_note(self, note: str, flag: bool = False) -> None:
        """Append a free-text note; optionally raise the review flag."""
        self.review_notes = f"{self.review_notes}; {note}" if self.review_notes else note
        if flag:
            self.needs_manual_review = True
        self.touch()

    def touch(self) -> None:
        self.updated_at = utc_now()

    def apply_correction(self, correction: FieldCorrection) -> None:
        """Apply a verified correction through the typed field enum."""
        setattr(self, correction.field.value, correction.corrected_value)
        if correction.field is CorrectableField.RENT:
            self.rent_max = correction.corrected_value
        self.add_note(
            f"Corrected {correction.field.value}: {correction.extracted_value} -> "
            f"{correction.corrected_value} ({correction.reason})"
        )

    def set_availability(self, result: AvailabilityResult) -> None:
        """Record an availability outcome and backfill missing structure."""
        self.marketplace_status = result.status
        self.availability_source = result.source
        self.status_checked_at = result.checked_at
        self.availability_details = result.details
        if result.data is not None:
            data = result.data
            if data.valuation_estimate is not None:
                self.valuation_estimate = data.valuation_estimate
            if self.bedrooms is None and data.bedrooms is not None:
                self.bedrooms = data.bedrooms
            if self.bathrooms is None and data.bathrooms is not None:
                self.bathrooms = data.bathrooms
            if self.sqft is None and data.sqft is not None:
                self.sqft = data.sqft
            if self.year_built is None and data.year_built is not None:
                self.year_built = data.year_built
        self.touch()

    @property
    def full_address(self) -> Optional[str]:
        if not self.address:
            return None
        parts = [self.address]
        if self.city:
            parts.append(self.city)
        if self.state:
            parts.append(f"{self.state} {self.zip}" if self.zip else self.state)
        return ", ".join(parts)


# ─── Availability ───────────────────────────────────────────────────


class ListingDetails(BaseModel):
    """Structured data scraped alongside a status, used for backfilling."""

    valuation_estimate: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    sqft: Optional[int] = None
    year_built: Optional[int] = None


class AvailabilityResult(BaseModel):
    status: MarketStatus
    source: AvailabilitySource
    checked_at: datetime = Field(default_factory=utc_now)
    details: Optional[str] = None
    data: Optional[ListingDetails] = None


# ─── Dedup Cache ────────────────────────────────────────────────────


class DedupCacheEntry(BaseModel):
    """Persisted identity keys of an accepted record. Append-only."""

    id: str
    address_normalized: Optional[str] = None
    url_normalized: Optional[str] = None
    run_id: str
    created_at: datetime = Field(default_factory=utc_now)


# ─── Run State ──────────────────────────────────────────────────────


class RunState(BaseModel):
    """Snapshot of a pipeline run as seen by status pollers."""

    id: str = Field(default_factory=new_id)
    file_hash: str = ""
    file_name: str = ""
    file_size: int = 0

    status: RunStatus = RunStatus.PENDING
    current_step: Optional[str] = None
    progress: float = Field(default=0, ge=0, le=100)

    total_pages: Optional[int] = None
    chunks_created: Optional[int] = None
    properties_extracted: Optional[int] = None
    properties_filtered: Optional[int] = None
    properties_deduped: Optional[int] = None
    properties_unavailable: Optional[int] = None
    properties_analyzed: Optional[int] = None

    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ─── Pipeline Result ────────────────────────────────────────────────


class PipelineResult(BaseModel):
    """What a run (or a resume) hands back to its caller."""

    success: bool
    run: RunState
    records: list[PropertyRecord] = Field(default_factory=list)
    duplicates: list[PropertyRecord] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def run_id(self) -> str:
        return self.run.id
