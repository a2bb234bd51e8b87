"""
Custom exception hierarchy for the listing pipeline.

Only structural failures reach the caller as run failures. Per-page and
per-record failures are raised inside a stage and absorbed by that stage.
"""

from __future__ import annotations


class ListingPipelineError(Exception):
    """Base exception for all pipeline failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class DocumentStructureError(ListingPipelineError):
    """The uploaded document is corrupt or has no pages. Fatal for the run."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INVALID_DOCUMENT", message, details)


class PageAcquisitionError(ListingPipelineError):
    """Text could not be obtained for a single page."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PAGE_ACQUISITION_FAILED", message, details)


class VisionExtractionError(ListingPipelineError):
    """The vision service returned nothing usable for a page."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("VISION_EXTRACTION_FAILED", message, details)


class AvailabilityCheckError(ListingPipelineError):
    """One availability method failed (network, block, bad response)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("AVAILABILITY_CHECK_FAILED", message, details)


class RunNotFoundError(ListingPipelineError):
    def __init__(self, run_id: str):
        super().__init__("RUN_NOT_FOUND", f"Run {run_id} not found", {"run_id": run_id})


class RecordNotFoundError(ListingPipelineError):
    def __init__(self, record_id: str):
        super().__init__(
            "RECORD_NOT_FOUND", f"Property {record_id} not found", {"record_id": record_id}
        )


class RunStateError(ListingPipelineError):
    """The run is not in a state that allows the requested transition."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INVALID_RUN_STATE", message, details)
