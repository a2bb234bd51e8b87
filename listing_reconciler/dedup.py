"""
Two-level deduplication: within one upload, then against every earlier run.

Resolution order per record (first hit wins):
  a. same-batch normalized address
  b. same-batch normalized URL
  c. cache normalized address   (any run)
  d. cache normalized URL       (any run)

A hit discards the record with a reason. A miss marks it `deduped` and
appends its keys to the cache, so the next upload sees it. With
`persist=False` the new cache entries are only returned, for the caller to
commit together with the records (`ListingStore.save_dedup`).

The identity key is the normalized STREET address; city/state/zip are not
part of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .models import DedupCacheEntry, ProcessingStatus, PropertyRecord
from .normalization import normalize_address, normalize_url
from .store import ListingStore

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    unique: list[PropertyRecord] = field(default_factory=list)
    duplicates: list[PropertyRecord] = field(default_factory=list)
    cache_entries: list[DedupCacheEntry] = field(default_factory=list)


class Deduplicator:
    """Classify records as deduped or discarded against batch and cache."""

    def __init__(self, store: ListingStore):
        self.store = store

    def deduplicate(
        self, records: list[PropertyRecord], run_id: str, persist: bool = True
    ) -> DedupResult:
        result = DedupResult()
        batch_addresses: set[str] = set()
        batch_urls: set[str] = set()

        for record in records:
            if record.status == ProcessingStatus.DISCARDED:
                result.duplicates.append(record)
                continue

            address_key = normalize_address(record.address)
            url_key = normalize_url(record.marketplace_url)

            reason = self._match_reason(record, address_key, url_key, batch_addresses, batch_urls)
            if reason:
                record.status = ProcessingStatus.DISCARDED
                record.discard_reason = reason
                record.touch()
                result.duplicates.append(record)
                logger.info("Discarded %s: %s", record.address or record.marketplace_url, reason)
                continue

            if address_key:
                batch_addresses.add(address_key)
            if url_key:
                batch_urls.add(url_key)

            record.status = ProcessingStatus.DEDUPED
            record.touch()
            result.unique.append(record)
            entry = self._cache_entry(record, address_key, url_key, run_id)
            if entry is not None:
                result.cache_entries.append(entry)
                if persist:
                    self.store.add_cache_entry(entry)

        logger.info(
            "Dedup: %d unique, %d duplicates", len(result.unique), len(result.duplicates)
        )
        return result

    def _match_reason(
        self,
        record: PropertyRecord,
        address_key: str | None,
        url_key: str | None,
        batch_addresses: set[str],
        batch_urls: set[str],
    ) -> str | None:
        if address_key and address_key in batch_addresses:
            return "Duplicate address in batch"
        if url_key and url_key in batch_urls:
            return "Duplicate Zillow URL in batch"

        if address_key:
            entry = self.store.find_cache_by_address(address_key)
            if entry is not None and entry.id != record.id:
                return f"Duplicate of existing property {entry.id}"
        if url_key:
            entry = self.store.find_cache_by_url(url_key)
            if entry is not None and entry.id != record.id:
                return f"Duplicate of existing property {entry.id}"
        return None

    def _cache_entry(
        self, record: PropertyRecord, address_key: str | None, url_key: str | None, run_id: str
    ) -> DedupCacheEntry | None:
        if not (address_key or url_key):
            return None
        # A record re-run through dedup already has its own entry.
        if address_key and self.store.find_cache_by_address(address_key) is not None:
            return None
        if url_key and self.store.find_cache_by_url(url_key) is not None:
            return None
        return DedupCacheEntry(
            id=record.id,
            address_normalized=address_key,
            url_normalized=url_key,
            run_id=run_id,
        )
