"""
Pipeline configuration.

Values come from the environment (a `.env` file is loaded by the entry points).
Every external service is optional: leaving its settings empty makes the
pipeline fall through to the next tier instead of failing.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "LISTINGS_"


class ValidationThresholds(BaseModel):
    """Plausibility bands for the validator."""

    price_min: int = 20_000
    price_max: int = 250_000
    yield_min: float = 0.06  # annual rent / price
    yield_max: float = 0.25
    arv_overrun: float = 0.10  # price + rehab may exceed ARV by at most this share
    rent_max: int = 5_000
    rehab_max: int = 100_000


class FilterCriteria(BaseModel):
    """Screening applied after review, before records go to analysis."""

    min_rent: int = 1_300
    min_bedrooms: int = 2
    min_bathrooms: float = 1
    occupied_section8_only: bool = False
    offer_gap_threshold: int = 10_000


class PipelineSettings(BaseModel):
    database_url: str = "sqlite:///data/listings.db"
    log_level: str = "INFO"

    # Splitting / acquisition
    pages_per_chunk: int = Field(default=1, ge=1)
    max_chunk_size_mb: float = 10
    min_text_chars: int = 50
    min_text_words: int = 5
    ocr_dpi: int = 300
    ocr_lang: str = "eng"
    ocr_timeout_sec: int = 25

    # Vision fallback
    openai_api_key: Optional[str] = None
    vision_enabled: bool = False
    vision_model: str = "gpt-4o"
    vision_verify: bool = False

    # Availability
    availability_enabled: bool = False
    availability_timeout_sec: float = 45
    record_delay_sec: float = 3
    marketplace_attempts: int = Field(default=3, ge=1)
    marketplace_retry_delay_sec: float = 5
    http_timeout_sec: float = 10
    browser_timeout_sec: float = 15
    browser_headless: bool = True

    validation: ValidationThresholds = Field(default_factory=ValidationThresholds)
    filters: FilterCriteria = Field(default_factory=FilterCriteria)

    @property
    def max_chunk_bytes(self) -> int:
        return int(self.max_chunk_size_mb * 1024 * 1024)

    @property
    def vision_configured(self) -> bool:
        return self.vision_enabled and bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> PipelineSettings:
        """Build settings from LISTINGS_* environment variables.

        Unset variables keep their defaults; nested groups are addressed as
        LISTINGS_VALIDATION_PRICE_MIN, LISTINGS_FILTERS_MIN_RENT, etc.
        """
        values: dict = {}
        for name in cls.model_fields:
            if name in ("validation", "filters", "openai_api_key"):
                continue
            raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw

        values["openai_api_key"] = os.environ.get("OPENAI_API_KEY") or None

        for group, model in (("validation", ValidationThresholds), ("filters", FilterCriteria)):
            nested = {}
            for name in model.model_fields:
                raw = os.environ.get(f"{ENV_PREFIX}{group.upper()}_{name.upper()}")
                if raw is not None:
                    nested[name] = raw
            values[group] = model.model_validate(nested)

        return cls.model_validate(values)
