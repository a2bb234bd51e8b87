"""
Listing Reconciler — FastAPI Server
===================================

Upload, poll and review surface for the listing pipeline.

Endpoints:
    POST /runs                          Upload a listing PDF and process it
    GET  /runs                          Recent runs
    GET  /runs/{run_id}                 Poll run state
    GET  /runs/{run_id}/properties      Records of a run (optionally by status)
    POST /runs/{run_id}/resume          Screen + analyze a reviewed run
    GET  /runs/{run_id}/status-prompt   Manual status-check prompt
    POST /runs/{run_id}/import-status   Apply a pasted status report
    PUT  /properties/{record_id}/status Manual status override
    GET  /health                        Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from listing_reconciler import __version__
from listing_reconciler.config import PipelineSettings
from listing_reconciler.exceptions import (
    ListingPipelineError,
    RecordNotFoundError,
    RunNotFoundError,
    RunStateError,
)
from listing_reconciler.models import (
    MarketStatus,
    ProcessingStatus,
    PropertyRecord,
    RunState,
)
from listing_reconciler.pipeline import ListingPipeline
from listing_reconciler.status_import import ImportReport

# ─── Load .env if available ──────────────────────────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


MAX_UPLOAD_BYTES = 50 * 1024 * 1024


# ─── Application Lifespan ────────────────────────────────────────────

_pipeline: ListingPipeline | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the datastore and build the pipeline on startup."""
    global _pipeline  # noqa: PLW0603
    _pipeline = ListingPipeline(PipelineSettings.from_env())
    yield
    _pipeline.store.close()
    _pipeline = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Listing Reconciler API",
    description=(
        "Bulk listing PDFs in, deduplicated property records out. "
        "Tiered text acquisition, cross-page record reconstruction, "
        "plausibility flags, cross-run dedup and marketplace status checks."
    ),
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ListingPipelineError)
async def _pipeline_error(request: Request, exc: ListingPipelineError) -> JSONResponse:
    status_code = 400
    if isinstance(exc, (RunNotFoundError, RecordNotFoundError)):
        status_code = 404
    elif isinstance(exc, RunStateError):
        status_code = 409
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "detail": str(exc), "details": exc.details},
    )


# ─── Request / Response Schemas ─────────────────────────────────────


class RunResponse(BaseModel):
    """A run snapshot plus the records the call produced."""

    success: bool
    run: RunState
    error: Optional[str] = None
    properties: list[PropertyRecord] = Field(default_factory=list)
    duplicates: list[PropertyRecord] = Field(default_factory=list)


class ResumeRequest(BaseModel):
    check_availability: bool = False


class ImportStatusRequest(BaseModel):
    text: str = Field(
        ...,
        min_length=1,
        description="Free-form status report, one property per line.",
        json_schema_extra={"example": "1. 123 Main St, Memphis, TN | SOLD | Sold Dec 2024"},
    )


class StatusOverrideRequest(BaseModel):
    status: MarketStatus
    details: Optional[str] = None


class StatusPromptResponse(BaseModel):
    run_id: str
    prompt: str


class HealthResponse(BaseModel):
    status: str
    version: str
    vision_configured: bool
    availability_enabled: bool


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_pipeline() -> ListingPipeline:
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialised")
    return _pipeline


def _build_response(result) -> RunResponse:
    return RunResponse(
        success=result.success,
        run=result.run,
        error=result.error,
        properties=result.records,
        duplicates=result.duplicates,
    )


# ─── Runs ────────────────────────────────────────────────────────────


@app.post(
    "/runs",
    summary="Upload a listing PDF",
    tags=["Runs"],
    responses={
        413: {"description": "File too large"},
        422: {"description": "File is empty or not a PDF"},
        503: {"description": "Pipeline not yet initialised"},
    },
)
async def create_run(file: UploadFile, check_availability: Optional[bool] = None) -> RunResponse:
    """Process an uploaded PDF up to the review checkpoint.

    A corrupt or empty document still creates a run; it comes back with
    `success: false` and the run's `status` set to `failed`.
    """
    if file.size and file.size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 50 MB)")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=422, detail="Uploaded file is empty")
    if not content.startswith(b"%PDF"):
        raise HTTPException(status_code=422, detail="Uploaded file is not a PDF")

    pipeline = _get_pipeline()
    result = await asyncio.to_thread(
        pipeline.run, content, file.filename or "document.pdf", check_availability
    )
    return _build_response(result)


@app.get("/runs", summary="List recent runs", tags=["Runs"])
def list_runs(limit: int = 20) -> list[RunState]:
    return _get_pipeline().store.list_runs(limit)


@app.get(
    "/runs/{run_id}",
    summary="Poll a run",
    tags=["Runs"],
    responses={404: {"description": "Run not found"}},
)
def get_run(run_id: str) -> RunState:
    return _get_pipeline().store.get_run(run_id)


@app.get(
    "/runs/{run_id}/properties",
    summary="Records of a run",
    tags=["Runs"],
    responses={404: {"description": "Run not found"}},
)
def get_run_properties(run_id: str, status: Optional[ProcessingStatus] = None) -> list[PropertyRecord]:
    pipeline = _get_pipeline()
    pipeline.store.get_run(run_id)
    return pipeline.store.get_records(run_id, status)


@app.post(
    "/runs/{run_id}/resume",
    summary="Resume a reviewed run",
    tags=["Runs"],
    responses={
        404: {"description": "Run not found"},
        409: {"description": "Run is not waiting for review"},
    },
)
async def resume_run(run_id: str, request: Optional[ResumeRequest] = None) -> RunResponse:
    """Apply screening, analyze the survivors and complete the run."""
    request = request or ResumeRequest()
    pipeline = _get_pipeline()
    result = await asyncio.to_thread(
        pipeline.resume, run_id, None, request.check_availability
    )
    return _build_response(result)


# ─── Review ──────────────────────────────────────────────────────────


@app.get(
    "/runs/{run_id}/status-prompt",
    summary="Manual status-check prompt",
    tags=["Review"],
    responses={404: {"description": "Run not found"}},
)
def get_status_prompt(run_id: str) -> StatusPromptResponse:
    return StatusPromptResponse(run_id=run_id, prompt=_get_pipeline().status_prompt(run_id))


@app.post(
    "/runs/{run_id}/import-status",
    summary="Import a pasted status report",
    tags=["Review"],
    responses={404: {"description": "Run not found"}},
)
def import_status(run_id: str, request: ImportStatusRequest) -> ImportReport:
    """Match each line to a record by address (then index) and set its status.

    Lines that match nothing come back under `failures` with a reason.
    """
    return _get_pipeline().import_status(run_id, request.text)


@app.put(
    "/properties/{record_id}/status",
    summary="Override a property's marketplace status",
    tags=["Review"],
    responses={404: {"description": "Property not found"}},
)
def override_status(record_id: str, request: StatusOverrideRequest) -> PropertyRecord:
    return _get_pipeline().override_status(record_id, request.status, request.details)


# ─── System ──────────────────────────────────────────────────────────


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Pipeline not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    pipeline = _get_pipeline()
    return HealthResponse(
        status="healthy",
        version=__version__,
        vision_configured=pipeline.settings.vision_configured,
        availability_enabled=pipeline.settings.availability_enabled,
    )
