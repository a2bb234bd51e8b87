"""
Identity normalization for addresses and marketplace URLs.

Normalized strings are comparison keys only. They are never shown to users.
Both functions are deterministic and insensitive to case, punctuation and
common synonyms, so "123 Main St." and "123 MAIN STREET" collapse to one key.

The marketplace is Zillow; its `homedetails` slug doubles as an address source:

    /homedetails/1611-15th-Ave-N-Birmingham-AL-35204/...
      → address="1611 15th Ave N", city="Birmingham", state="AL", zip="35204"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

MARKETPLACE_HOST = "zillow.com"

MARKETPLACE_URL_PATTERN = re.compile(
    r"https?://(?:www\.)?zillow\.com/homedetails/[^\s)\]>\"']+", re.IGNORECASE
)

_SLUG_PATTERN = re.compile(r"homedetails/([^/]+)-([A-Za-z]{2})-(\d{5})", re.IGNORECASE)
_URL_STREET_NUMBER = re.compile(r"homedetails/(\d+)-[^/]+-", re.IGNORECASE)

# ─── Canonical Token Tables ──────────────────────────────────────────

_DIRECTIONALS: dict[str, str] = {
    "n": "north",
    "s": "south",
    "e": "east",
    "w": "west",
    "ne": "northeast",
    "nw": "northwest",
    "se": "southeast",
    "sw": "southwest",
}

_STREET_SUFFIXES: dict[str, str] = {
    "street": "st",
    "str": "st",
    "avenue": "ave",
    "av": "ave",
    "road": "rd",
    "drive": "dr",
    "lane": "ln",
    "court": "ct",
    "place": "pl",
    "boulevard": "blvd",
    "circle": "cir",
    "terrace": "ter",
    "highway": "hwy",
    "parkway": "pkwy",
    "expressway": "expy",
    "trail": "trl",
    "crossing": "xing",
}

_SUFFIX_TOKENS = frozenset(_STREET_SUFFIXES) | frozenset(_STREET_SUFFIXES.values()) | {"way"}

_UNIT_TOKENS: dict[str, str] = {
    "apartment": "apt",
    "suite": "ste",
    "floor": "fl",
    "building": "bldg",
}


# ─── Address ─────────────────────────────────────────────────────────


def normalize_address(address: str | None) -> str | None:
    """Canonical comparison key for a street address.

    Lower-cases, strips periods/commas, expands directionals (N → north),
    collapses suffix synonyms (Street → st) and unit words (Suite → ste),
    and folds "apt #5" / "unit # 5" into "#5".
    """
    if not address:
        return None

    normalized = address.lower().strip()
    normalized = re.sub(r"[.,]", " ", normalized)
    normalized = re.sub(r"#\s*", "#", normalized)

    tokens = []
    for token in normalized.split():
        token = _DIRECTIONALS.get(token, token)
        token = _STREET_SUFFIXES.get(token, token)
        token = _UNIT_TOKENS.get(token, token)
        tokens.append(token)

    normalized = " ".join(tokens)
    normalized = re.sub(r"\b(?:apt|unit)\s+#", "#", normalized)
    return normalized.strip() or None


# ─── URL ─────────────────────────────────────────────────────────────


def normalize_url(url: str | None) -> str | None:
    """Canonical comparison key for a marketplace URL.

    Drops scheme, `www.`, query, fragment, trailing slash and the internal
    `/<id>_zpid` suffix; keeps host + the structural path.
    """
    if not url:
        return None

    candidate = url.strip()
    try:
        parsed = urlparse(candidate if "://" in candidate else f"https://{candidate}")
    except ValueError:
        return candidate.lower()

    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if not host.endswith(MARKETPLACE_HOST):
        return candidate.lower().rstrip("/")

    path = parsed.path.lower().rstrip("/")
    path = re.sub(r"/(?:zpid|\d+_zpid)$", "", path)
    return f"{MARKETPLACE_HOST}{path}"


# ─── Marketplace Slug ────────────────────────────────────────────────


@dataclass
class SlugAddress:
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None


def _title(word: str) -> str:
    if word.lower() in _DIRECTIONALS:
        return word.upper()
    return word[:1].upper() + word[1:].lower()


def decode_marketplace_url(url: str) -> SlugAddress:
    """Decode street/city/state/zip from a marketplace `homedetails` slug."""
    match = _SLUG_PATTERN.search(url)
    if not match:
        return SlugAddress()

    place_slug, state, zip_code = match.groups()
    street, city = _split_street_and_city([part for part in place_slug.split("-") if part])
    return SlugAddress(
        address=" ".join(_title(part) for part in street) or None,
        city=" ".join(_title(part) for part in city) or None,
        state=state.upper(),
        zip=zip_code,
    )



def _split_street_and_city(tokens: list[str]) -> tuple[list[str], list[str]]:
    """The street ends at its last suffix (plus a trailing directional); the rest is the city."""
    end = None
    for index, token in enumerate(tokens[:-1]):
        if index > 0 and token.lower() in _SUFFIX_TOKENS:
            end = index + 1
    if end is None:
        return tokens[:-1], tokens[-1:]
    if end < len(tokens) - 1 and tokens[end].lower() in _DIRECTIONALS:
        end += 1
    return tokens[:end], tokens[end:]


def url_street_number(url: str) -> str | None:
    match = _URL_STREET_NUMBER.search(url)
    return match.group(1) if match else None


def _slugify(value: str) -> str:
    value = re.sub(r"\s+", "-", value.strip().lower())
    return re.sub(r"[^a-z0-9-]", "", value)


def construct_marketplace_url(
    address: str, city: str, state: str, zip_code: str | None = None
) -> str:
    """Build the canonical `homedetails` URL for an address."""
    slug = f"{_slugify(address)}-{_slugify(city)}-{state.lower()}"
    if zip_code:
        slug += f"-{zip_code}"
    return f"https://www.{MARKETPLACE_HOST}/homedetails/{slug}/"
