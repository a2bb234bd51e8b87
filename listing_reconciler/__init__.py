"""
Listing Reconciler — bulk listing documents in, deduplicated property records out.

Architecture: Split → Acquire text (text layer / vision / OCR) → Reconstruct records
              → Validate → Deduplicate → Resolve availability → Human review → Analyze
Philosophy:  Never drop a page silently. Never let one page or one network call stall a batch.
"""

__version__ = "1.0.0"
