#!/usr/bin/env python3
"""
Listing Reconciler — Entry Point
================================

Runs the listing pipeline on a bulk listing PDF and prints a run report.

Usage:
    python main.py listing.pdf                          # Split, extract, dedup, pause for review
    python main.py listing.pdf --check-availability     # ... plus marketplace status checks
    python main.py --resume RUN_ID                      # Screen + analyze a reviewed run
    python main.py --status-prompt --run RUN_ID         # Print the manual status-check prompt
    python main.py --import-status answers.txt --run RUN_ID
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from listing_reconciler.config import PipelineSettings
from listing_reconciler.exceptions import ListingPipelineError
from listing_reconciler.pipeline import ListingPipeline

# ─── Load .env if available (optional dependency) ────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _money(value) -> str:
    return f"${value:,}" if value is not None else "-"


def _print_counters(run) -> None:
    """Print per-stage counters of a run."""
    print(f"  Pages:       {run.total_pages if run.total_pages is not None else '-'}")
    print(f"  Chunks:      {run.chunks_created if run.chunks_created is not None else '-'}")
    for label, value in (
        ("Extracted", run.properties_extracted),
        ("Deduped", run.properties_deduped),
        ("Filtered", run.properties_filtered),
        ("Unavailable", run.properties_unavailable),
        ("Analyzed", run.properties_analyzed),
    ):
        if value is not None:
            print(f"  {label + ':':<13}{value}")


def _print_record(record) -> None:
    color = _YELLOW if record.needs_manual_review else _GREEN
    address = record.full_address or record.marketplace_url or "(no address)"
    print(f"    {color}{address}{_RESET}  {_DIM}p.{record.source_page}{_RESET}")
    print(
        f"      asking {_money(record.asking_price)}  rent {_money(record.rent)}"
        f"  arv {_money(record.arv)}  rehab {_money(record.rehab_needed)}"
    )
    if record.marketplace_status is not None:
        print(f"      status {record.marketplace_status.value} ({record.availability_source.value})")
    if record.review_notes:
        print(f"      {_DIM}{record.review_notes}{_RESET}")


def _print_records_group(records, color: str, label: str) -> None:
    if not records:
        return
    print(f"\n  {color}{_BOLD}{label} ({len(records)}){_RESET}")
    for record in records:
        _print_record(record)


def _print_duplicates(records) -> None:
    if not records:
        return
    print(f"\n  {_CYAN}DISCARDED ({len(records)}){_RESET}")
    for record in records:
        print(f"    {record.address or record.marketplace_url}: {record.discard_reason}")


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_report(result) -> int:
    """Pretty-print a pipeline result with ANSI color codes.

    Returns:
        0 if the run succeeded, 1 if it failed.
    """
    run = result.run
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  LISTING RECONCILIATION REPORT{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Run:         {run.id}")
    print(f"  Document:    {run.file_name}")
    if run.file_hash:
        print(f"  Audit Hash:  {_DIM}{run.file_hash[:16]}...{_RESET}")
    print(f"  Status:      {run.status.value}")
    print(f"{'─' * _WIDTH}")

    _print_counters(run)

    if run.warnings:
        print(f"\n  {_YELLOW}{_BOLD}WARNINGS ({len(run.warnings)}){_RESET}")
        for warning in run.warnings:
            print(f"    {warning}")

    flagged = [r for r in result.records if r.needs_manual_review]
    clean = [r for r in result.records if not r.needs_manual_review]
    _print_records_group(clean, _GREEN, "PROPERTIES")
    _print_records_group(flagged, _YELLOW, "NEEDS REVIEW")
    _print_duplicates(result.duplicates)

    print(f"\n{'=' * _WIDTH}")
    if result.success:
        print(f"  {_GREEN}{_BOLD}RUN {run.status.value.upper()}{_RESET}")
    else:
        print(f"  {_RED}{_BOLD}RUN FAILED  --  {result.error}{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 0 if result.success else 1


def print_import_report(report) -> int:
    print(f"\n  {_BOLD}{report.message}{_RESET}")
    for update in report.updates:
        print(f"    {_GREEN}{update.record_id}{_RESET} -> {update.status.value} (by {update.matched_by})")
    for failure in report.failures:
        print(f"    {_RED}{failure.address}{_RESET}")
        print(f"      {_DIM}{failure.reason}{_RESET}")
    print()
    return 0 if not report.failures else 1


# ─── Main ────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="listing-reconciler",
        description="Turn bulk listing PDFs into deduplicated property records.",
    )
    parser.add_argument("pdf", nargs="?", type=Path, help="Listing PDF to process")
    parser.add_argument(
        "--check-availability", action="store_true", help="Check marketplace status per property"
    )
    parser.add_argument("--resume", metavar="RUN_ID", help="Resume a run waiting for review")
    parser.add_argument("--run", metavar="RUN_ID", help="Run targeted by the status options")
    parser.add_argument(
        "--status-prompt", action="store_true", help="Print the manual status-check prompt"
    )
    parser.add_argument(
        "--import-status", metavar="FILE", type=Path, help="Apply a pasted status report"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Dispatch one CLI action and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = PipelineSettings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    pipeline = ListingPipeline(settings)

    try:
        if args.resume:
            result = pipeline.resume(args.resume, check_availability=args.check_availability)
            return print_report(result)

        if args.status_prompt or args.import_status:
            if not args.run:
                parser.error("--run is required with --status-prompt / --import-status")
            if args.status_prompt:
                print(pipeline.status_prompt(args.run))
                return 0
            text = args.import_status.read_text(encoding="utf-8")
            return print_import_report(pipeline.import_status(args.run, text))

        if args.pdf is None:
            parser.error("a PDF path is required")

        print("\n  Starting Listing Reconciler...")
        print(f"  Processing {args.pdf.name}...\n")
        result = pipeline.run(
            args.pdf.read_bytes(),
            args.pdf.name,
            check_availability=args.check_availability or None,
        )
        return print_report(result)

    except ListingPipelineError as e:
        print(f"  {_RED}{_BOLD}[{e.code}]{_RESET} {e}")
        return 2
    finally:
        pipeline.store.close()


if __name__ == "__main__":
    sys.exit(main())
