"""
Tests for the datastore and two-level deduplication.

Every test gets its own in-memory SQLite store.

Run: pytest tests/ -v
"""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from listing_reconciler.dedup import Deduplicator
from listing_reconciler.exceptions import RecordNotFoundError, RunNotFoundError
from listing_reconciler.models import ProcessingStatus, PropertyRecord, RunState, RunStatus
from listing_reconciler.store import ListingStore


@pytest.fixture
def store():
    store = ListingStore("sqlite://")
    yield store
    store.close()


def _make_record(run_id: str = "run-1", **overrides: Any) -> PropertyRecord:
    defaults: dict[str, Any] = {
        "run_id": run_id,
        "address": "123 Main St",
        "city": "Memphis",
        "state": "TN",
        "asking_price": 90_000,
        "rent": 1_100,
    }
    defaults.update(overrides)
    return PropertyRecord(**defaults)


# ═══════════════════════════════════════════════════════════════════
# STORE
# ═══════════════════════════════════════════════════════════════════


class TestRunStore:
    def test_create_and_get(self, store: ListingStore) -> None:
        run = store.create_run(RunState(file_name="a.pdf", file_hash="abc"))
        loaded = store.get_run(run.id)
        assert loaded.file_name == "a.pdf"
        assert loaded.status == RunStatus.PENDING

    def test_update_is_a_full_snapshot(self, store: ListingStore) -> None:
        run = store.create_run(RunState(file_name="a.pdf"))
        run.status = RunStatus.PARSING
        run.progress = 50
        run.total_pages = 7
        run.warnings.append("Page 3 skipped: OCR failed")
        store.update_run(run)

        loaded = store.get_run(run.id)
        assert loaded.status == RunStatus.PARSING
        assert loaded.progress == 50
        assert loaded.total_pages == 7
        assert loaded.warnings == ["Page 3 skipped: OCR failed"]

    def test_unknown_run(self, store: ListingStore) -> None:
        with pytest.raises(RunNotFoundError) as exc:
            store.get_run("missing")
        assert exc.value.code == "RUN_NOT_FOUND"

    def test_list_runs(self, store: ListingStore) -> None:
        for name in ("a.pdf", "b.pdf", "c.pdf"):
            store.create_run(RunState(file_name=name))
        assert len(store.list_runs()) == 3
        assert len(store.list_runs(limit=2)) == 2


class TestRecordStore:
    def test_upsert_is_keyed_by_id(self, store: ListingStore) -> None:
        record = _make_record()
        store.upsert_records([record])
        record.asking_price = 95_000
        store.upsert_records([record])

        records = store.get_records("run-1")
        assert len(records) == 1
        assert records[0].asking_price == 95_000

    def test_filter_by_status(self, store: ListingStore) -> None:
        kept = _make_record(status=ProcessingStatus.DEDUPED)
        dropped = _make_record(address="9 Elm St", status=ProcessingStatus.DISCARDED)
        store.upsert_records([kept, dropped])

        deduped = store.get_records("run-1", ProcessingStatus.DEDUPED)
        assert [r.id for r in deduped] == [kept.id]

    def test_round_trip_preserves_contract(self, store: ListingStore) -> None:
        record = _make_record(rent_min=1_000, rent_max=1_100, bathrooms=1.5)
        record.add_note("Recovered via boundary merge with page 3", flag=True)
        store.upsert_records([record])

        loaded = store.get_record(record.id)
        assert loaded == record

    def test_unknown_record(self, store: ListingStore) -> None:
        with pytest.raises(RecordNotFoundError):
            store.get_record("missing")


# ═══════════════════════════════════════════════════════════════════
# DEDUPLICATION
# ═══════════════════════════════════════════════════════════════════


class TestInBatchDedup:
    def test_suffix_synonyms_are_duplicates(self, store: ListingStore) -> None:
        first = _make_record(address="123 Main St")
        second = _make_record(address="123 Main Street")
        result = Deduplicator(store).deduplicate([first, second], "run-1")

        assert result.unique == [first]
        assert result.duplicates == [second]
        assert first.status == ProcessingStatus.DEDUPED
        assert second.status == ProcessingStatus.DISCARDED
        assert second.discard_reason == "Duplicate address in batch"

    def test_url_duplicates(self, store: ListingStore) -> None:
        url = "https://www.zillow.com/homedetails/5-Ash-Ct-Memphis-TN-38111/9_zpid/"
        first = _make_record(address=None, marketplace_url=url)
        second = _make_record(address=None, marketplace_url=url.rstrip("/") + "?x=1")
        result = Deduplicator(store).deduplicate([first, second], "run-1")

        assert second.discard_reason == "Duplicate Zillow URL in batch"
        assert len(result.unique) == 1

    def test_discarded_records_pass_through(self, store: ListingStore) -> None:
        collapsed = _make_record(status=ProcessingStatus.DISCARDED, discard_reason="collapsed")
        result = Deduplicator(store).deduplicate([collapsed], "run-1")
        assert result.duplicates == [collapsed]
        assert collapsed.discard_reason == "collapsed"

    def test_records_without_keys_are_unique(self, store: ListingStore) -> None:
        records = [_make_record(address=None), _make_record(address=None)]
        result = Deduplicator(store).deduplicate(records, "run-1")
        assert len(result.unique) == 2


class TestCrossRunDedup:
    def test_second_upload_is_discarded(self, store: ListingStore) -> None:
        """Two uploads both containing 456 Oak Ave, Memphis, TN."""
        deduper = Deduplicator(store)
        run1 = _make_record("run-1", address="456 Oak Ave")
        run2 = _make_record("run-2", address="456 Oak Avenue")

        first = deduper.deduplicate([run1], "run-1")
        second = deduper.deduplicate([run2], "run-2")

        assert first.unique == [run1]
        assert second.unique == []
        assert run2.status == ProcessingStatus.DISCARDED
        assert run2.discard_reason == f"Duplicate of existing property {run1.id}"

    def test_url_match_across_runs(self, store: ListingStore) -> None:
        deduper = Deduplicator(store)
        url = "https://www.zillow.com/homedetails/5-Ash-Ct-Memphis-TN-38111/9_zpid/"
        deduper.deduplicate([_make_record("run-1", address="5 Ash Ct", marketplace_url=url)], "run-1")
        later = _make_record("run-2", address="5 Ash Court Unit B", marketplace_url=url.upper())
        result = deduper.deduplicate([later], "run-2")
        assert result.duplicates == [later]

    def test_cache_records_run_id(self, store: ListingStore) -> None:
        record = _make_record("run-1")
        Deduplicator(store).deduplicate([record], "run-1")
        entry = store.find_cache_by_address("123 main st")
        assert entry is not None
        assert entry.id == record.id
        assert entry.run_id == "run-1"

    def test_deferred_entries_are_committed_with_records(self, store: ListingStore) -> None:
        record = _make_record("run-1")
        result = Deduplicator(store).deduplicate([record], "run-1", persist=False)

        assert store.find_cache_by_address("123 main st") is None
        assert [e.id for e in result.cache_entries] == [record.id]

        store.save_dedup(result.unique, result.cache_entries)
        assert store.find_cache_by_address("123 main st").id == record.id
        assert store.get_record(record.id).status == ProcessingStatus.DEDUPED

    def test_save_dedup_is_all_or_nothing(self, store: ListingStore) -> None:
        good = _make_record("run-1")
        result = Deduplicator(store).deduplicate([good], "run-1", persist=False)
        # skips validation, so the negative price only fails at the write boundary
        fields = _make_record("run-1", address="9 Elm St").model_dump()
        broken = PropertyRecord.model_construct(**{**fields, "asking_price": -5})

        with pytest.raises(ValidationError):
            store.save_dedup([good, broken], result.cache_entries)

        assert store.find_cache_by_address("123 main st") is None
        assert store.get_records("run-1") == []


class TestIdempotence:
    def test_rerun_yields_no_new_duplicates(self, store: ListingStore) -> None:
        deduper = Deduplicator(store)
        records = [
            _make_record(address="123 Main St"),
            _make_record(address="9 Elm St"),
            _make_record(address="123 Main Street"),
        ]
        first = deduper.deduplicate(records, "run-1")
        again = deduper.deduplicate(first.unique, "run-1")

        assert len(first.unique) == 2
        assert again.duplicates == []
        assert [r.id for r in again.unique] == [r.id for r in first.unique]
