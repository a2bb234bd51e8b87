"""
Listing pipeline — orchestrates one upload from PDF bytes to reviewable records.

Flow:
  ┌──────────┐
  │   PDF    │
  └────┬─────┘
       │
  ┌────▼─────┐
  │  Split   │   ← page chunks under a size ceiling
  └────┬─────┘
       │
  ┌────▼─────┐
  │ Acquire  │   ← text layer → vision → OCR, page by page
  └────┬─────┘
       │
  ┌────▼─────┐
  │ Rebuild  │   ← Passes 1-4 across page breaks
  └────┬─────┘
       │
  ┌────▼─────┐
  │ Validate │   ← pure code plausibility flags
  └────┬─────┘
       │
  ┌────▼─────┐
  │  Dedup   │   ← batch + persisted cross-run cache
  └────┬─────┘
       │
  ┌────▼─────┐
  │  Status  │   ← optional availability chain
  └────┬─────┘
       │
   waiting-for-review  ──resume──▶  filter → analyze → completed

Design principles:
  - Run state is persisted after every stage; pollers always see a committed
    snapshot, and counters from finished stages survive a later failure.
  - Only stage-level unexpected exceptions fail a run. Page and record level
    failures are absorbed inside their stage.
  - Resume re-enters at screening/analysis from stored records; extraction
    never re-runs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .acquisition import TextAcquirer
from .availability import AvailabilityResolver
from .config import PipelineSettings
from .dedup import Deduplicator
from .exceptions import RunStateError
from .extractor_llm import VisionExtractor
from .filters import apply_filters
from .models import (
    AvailabilityResult,
    AvailabilitySource,
    MarketStatus,
    PipelineResult,
    ProcessingStatus,
    PropertyRecord,
    RunState,
    RunStatus,
    utc_now,
)
from .ocr import TesseractOcr
from .reconstructor import reconstruct
from .splitter import compute_document_hash, split_document
from .status_import import ImportReport, apply_status_report, build_status_prompt, records_needing_check
from .store import ListingStore
from .validators import validate_records

logger = logging.getLogger(__name__)

Analyzer = Callable[[list[PropertyRecord]], Any]
ResolverFactory = Callable[[], AvailabilityResolver]

REVIEWABLE = (ProcessingStatus.DEDUPED, ProcessingStatus.REVIEWED)


class ListingPipeline:
    """Orchestrates the full listing workflow.

    Usage:
        pipeline = ListingPipeline(PipelineSettings.from_env())
        result = pipeline.run(pdf_bytes, "listing.pdf")
        # ... human review, status overrides, status import ...
        pipeline.resume(result.run_id, analyzer=underwrite)
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        store: Optional[ListingStore] = None,
        acquirer: Optional[TextAcquirer] = None,
        resolver_factory: Optional[ResolverFactory] = None,
    ):
        self.settings = settings or PipelineSettings()
        self.store = store or ListingStore(self.settings.database_url)
        self.acquirer = acquirer or TextAcquirer(
            ocr=TesseractOcr(self.settings.ocr_lang, self.settings.ocr_timeout_sec),
            vision=(
                VisionExtractor(self.settings.openai_api_key, self.settings.vision_model)
                if self.settings.vision_configured
                else None
            ),
            min_text_chars=self.settings.min_text_chars,
            min_text_words=self.settings.min_text_words,
            dpi=self.settings.ocr_dpi,
            verify_vision=self.settings.vision_verify,
        )
        self.resolver_factory = resolver_factory or (lambda: AvailabilityResolver(self.settings))
        self.deduplicator = Deduplicator(self.store)

    # ─── Run ─────────────────────────────────────────────────────────

    def run(
        self,
        pdf_bytes: bytes,
        file_name: str = "document.pdf",
        check_availability: Optional[bool] = None,
    ) -> PipelineResult:
        """Process one upload up to the human-review checkpoint."""
        if check_availability is None:
            check_availability = self.settings.availability_enabled

        run = self.store.create_run(
            RunState(
                file_hash=compute_document_hash(pdf_bytes),
                file_name=file_name,
                file_size=len(pdf_bytes),
            )
        )
        logger.info("Run %s started for %s (%d bytes)", run.id, file_name, len(pdf_bytes))

        try:
            run.started_at = utc_now()
            self._advance(run, RunStatus.SPLITTING, "Splitting PDF into pages", 5)
            split = split_document(
                pdf_bytes,
                run.id,
                self.settings.max_chunk_bytes,
                self.settings.pages_per_chunk,
            )
            run.total_pages = split.total_pages
            run.chunks_created = len(split.chunks)
            run.warnings.extend(split.warnings)

            self._advance(run, RunStatus.EXTRACTING, "Extracting text from pages", 15)
            acquired = self.acquirer.acquire(split.chunks, run.id)
            for page, reason in sorted(acquired.failed_pages.items()):
                run.warnings.append(f"Page {page} skipped: {reason}")
            self._advance(run, RunStatus.EXTRACTING, f"Acquired {split.total_pages} pages", 45)

            self._advance(run, RunStatus.PARSING, "Reconstructing records", 50)
            rebuilt = reconstruct(
                acquired.page_texts,
                run.id,
                prestructured=acquired.vision_records,
                page_sources=acquired.page_sources,
            )
            records = rebuilt.records
            flagged = validate_records(records, self.settings.validation)
            run.properties_extracted = len(records)
            logger.info("Extracted %d records (%d flagged for review)", len(records), flagged)

            for collapsed in rebuilt.collapsed:
                collapsed.status = ProcessingStatus.DISCARDED
                collapsed.discard_reason = "Collapsed into an earlier record in this document"

            self._advance(run, RunStatus.DEDUPING, "Deduplicating properties", 62)
            deduped = self.deduplicator.deduplicate(records, run.id, persist=False)
            duplicates = rebuilt.collapsed + deduped.duplicates
            run.properties_deduped = len(deduped.unique)
            self.store.save_dedup(deduped.unique + duplicates, deduped.cache_entries)
            self._advance(
                run, RunStatus.DEDUPING, f"{len(deduped.unique)} unique properties after dedup", 65
            )

            if check_availability and deduped.unique:
                self._check_availability(run, deduped.unique)

            run.status = RunStatus.WAITING_FOR_REVIEW
            run.current_step = "Waiting for review"
            self.store.update_run(run)
            logger.info("Run %s waiting for review", run.id)
            return PipelineResult(
                success=True, run=run, records=deduped.unique, duplicates=duplicates
            )

        except Exception as e:
            return self._fail(run, e)

    # ─── Resume ──────────────────────────────────────────────────────

    def resume(
        self,
        run_id: str,
        analyzer: Optional[Analyzer] = None,
        check_availability: bool = False,
    ) -> PipelineResult:
        """Continue a run paused for review: screen, analyze, complete.

        Raises:
            RunNotFoundError: unknown run id.
            RunStateError: the run is not waiting for review.
        """
        run = self.store.get_run(run_id)
        if run.status != RunStatus.WAITING_FOR_REVIEW:
            raise RunStateError(
                f"Run {run_id} is {run.status.value}, not waiting for review",
                {"run_id": run_id, "status": run.status.value},
            )

        try:
            records = [r for r in self.store.get_records(run_id) if r.status in REVIEWABLE]

            self._advance(run, RunStatus.FILTERING, "Applying filters", 55)
            screened = apply_filters(records, self.settings.filters)
            run.properties_filtered = len(screened.passed)
            self.store.upsert_records(screened.passed + screened.failed)
            self._advance(
                run, RunStatus.FILTERING, f"{len(screened.passed)} properties passed filters", 60
            )

            if check_availability and screened.passed:
                self._check_availability(run, screened.passed)

            available = [
                r
                for r in screened.passed
                if not (r.marketplace_status and r.marketplace_status.is_unavailable)
            ]
            run.properties_unavailable = len(screened.passed) - len(available)

            self._advance(run, RunStatus.UNDERWRITING, "Running analysis", 75)
            if analyzer is not None and available:
                analyzer(available)
            for record in available:
                record.status = ProcessingStatus.ANALYZED
                record.touch()
            self.store.upsert_records(available)
            run.properties_analyzed = len(available)

            run.completed_at = utc_now()
            self._advance(run, RunStatus.COMPLETED, "Completed", 100)
            logger.info("Run %s completed: %d analyzed", run.id, len(available))
            return PipelineResult(success=True, run=run, records=available)

        except Exception as e:
            return self._fail(run, e)

    # ─── Review Surface ──────────────────────────────────────────────

    def override_status(
        self, record_id: str, status: MarketStatus, details: Optional[str] = None
    ) -> PropertyRecord:
        """Directly set a record's marketplace status (source "manual")."""
        record = self.store.get_record(record_id)
        record.set_availability(
            AvailabilityResult(status=status, source=AvailabilitySource.MANUAL, details=details)
        )
        if record.status == ProcessingStatus.DEDUPED:
            record.status = ProcessingStatus.REVIEWED
        self.store.upsert_records([record])
        logger.info("Record %s manually set to %s", record_id, status.value)
        return record

    def status_prompt(self, run_id: str) -> str:
        self.store.get_run(run_id)
        return build_status_prompt(records_needing_check(self.store.get_records(run_id)))

    def import_status(self, run_id: str, text: str) -> ImportReport:
        """Apply a pasted status report to the run's records."""
        self.store.get_run(run_id)
        records = self.store.get_records(run_id)
        report = apply_status_report(records, text)
        updated_ids = {u.record_id for u in report.updates}
        self.store.upsert_records(r for r in records if r.id in updated_ids)
        return report

    # ─── Internal ────────────────────────────────────────────────────

    def _advance(self, run: RunState, status: RunStatus, step: str, progress: float) -> None:
        run.status = status
        run.current_step = step
        run.progress = progress
        self.store.update_run(run)
        logger.info("[%s] %s (%d%%)", status.value, step, progress)

    def _check_availability(self, run: RunState, records: list[PropertyRecord]) -> None:
        pending = [
            r for r in records if not (r.marketplace_status and r.marketplace_status.is_definitive)
        ]
        self._advance(
            run, RunStatus.CHECKING_AVAILABILITY, f"Checking availability for {len(pending)}", 67
        )

        def on_progress(done: int, total: int, record: PropertyRecord, _result) -> None:
            self.store.upsert_records([record])
            self._advance(
                run,
                RunStatus.CHECKING_AVAILABILITY,
                f"Checking availability {done}/{total}",
                67 + 8 * done / total,
            )

        asyncio.run(self._resolve_all(pending, on_progress))
        run.properties_unavailable = sum(
            1 for r in records if r.marketplace_status and r.marketplace_status.is_unavailable
        )
        self.store.update_run(run)

    async def _resolve_all(self, records: list[PropertyRecord], on_progress) -> None:
        async with self.resolver_factory() as resolver:
            await resolver.check_batch(records, on_progress)

    def _fail(self, run: RunState, error: Exception) -> PipelineResult:
        logger.error("Run %s failed: %s", run.id, error)
        run.status = RunStatus.FAILED
        run.error = str(error)
        run.completed_at = utc_now()
        self.store.update_run(run)
        return PipelineResult(success=False, run=run, error=str(error))
