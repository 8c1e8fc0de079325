from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

MAX_SCORE = 100
DETAILED_DESCRIPTION_MIN_CHARS = 50

FACTOR_PRIMARY_IMAGE = "Has primary image"
FACTOR_MULTIPLE_IMAGES = "Multiple images"
FACTOR_COMPREHENSIVE_PHOTOS = "Comprehensive photos"
FACTOR_GEOLOCATION = "Geolocation provided"
FACTOR_ADDRESS = "Address provided"
FACTOR_CONTACT_PHONE = "Contact phone provided"
FACTOR_FARMER_PHONE_VERIFIED = "Farmer phone verified"
FACTOR_DETAILED_DESCRIPTION = "Detailed description"
FACTOR_VARIETY = "Crop variety specified"

# Evaluation order; also the tie-break order when ranking by trust.
FACTOR_ORDER = (
    FACTOR_PRIMARY_IMAGE,
    FACTOR_MULTIPLE_IMAGES,
    FACTOR_COMPREHENSIVE_PHOTOS,
    FACTOR_GEOLOCATION,
    FACTOR_ADDRESS,
    FACTOR_CONTACT_PHONE,
    FACTOR_FARMER_PHONE_VERIFIED,
    FACTOR_DETAILED_DESCRIPTION,
    FACTOR_VARIETY,
)

_UNKNOWN = "unknown"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class VerificationAssessment:
    score: int
    factors: tuple[str, ...]


def score_listing(listing: dict[str, Any]) -> VerificationAssessment:
    """Compute the additive trust score for a listing.

    Photos, a precise location and a reachable contact weigh the most; the
    result is a read-time projection and is never written back to the store.
    """
    score = 0
    factors: list[str] = []

    def credit(points: int, label: str) -> None:
        nonlocal score
        score += points
        factors.append(label)

    images = _image_urls(listing)
    if images:
        credit(20, FACTOR_PRIMARY_IMAGE)
        if len(images) >= 2:
            credit(10, FACTOR_MULTIPLE_IMAGES)
        if len(images) >= 3:
            credit(10, FACTOR_COMPREHENSIVE_PHOTOS)

    location = listing.get("location")
    if not isinstance(location, dict):
        location = {}
    if _is_coordinate(location.get("latitude")) and _is_coordinate(location.get("longitude")):
        credit(25, FACTOR_GEOLOCATION)
    elif _free_text_address(location):
        credit(15, FACTOR_ADDRESS)

    if _text(listing.get("contact_phone")):
        credit(15, FACTOR_CONTACT_PHONE)
    if listing.get("farmer_phone_verified") is True:
        credit(5, FACTOR_FARMER_PHONE_VERIFIED)

    description = _text(listing.get("description")) or ""
    if len(description) > DETAILED_DESCRIPTION_MIN_CHARS:
        credit(10, FACTOR_DETAILED_DESCRIPTION)
    if _text(listing.get("variety_name")):
        credit(5, FACTOR_VARIETY)

    return VerificationAssessment(score=min(score, MAX_SCORE), factors=tuple(factors))


def rank_listings(listings: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order listings by trust, highest first."""

    def sort_key(listing: dict[str, Any]) -> tuple[Any, ...]:
        assessment = score_listing(listing)
        # Satisfying an earlier rule ranks first among equal scores.
        missing_mask = tuple(label not in assessment.factors for label in FACTOR_ORDER)
        return (-assessment.score, missing_mask)

    ordered = sorted(listings, key=lambda listing: str(listing.get("id") or ""))
    ordered.sort(key=lambda listing: _created_at(listing), reverse=True)
    ordered.sort(key=sort_key)
    return ordered


def _image_urls(listing: dict[str, Any]) -> list[str]:
    urls = [url for url in listing.get("image_urls") or [] if _text(url)]
    primary = _text(listing.get("primary_image_url"))
    if primary and primary not in urls:
        urls.insert(0, primary)
    return urls


def _is_coordinate(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _free_text_address(location: dict[str, Any]) -> bool:
    address = _text(location.get("address"))
    if address is not None:
        return address.lower() != _UNKNOWN
    parts = [_text(location.get(key)) for key in ("village", "district", "state")]
    return any(part is not None and part.lower() != _UNKNOWN for part in parts)


def _created_at(listing: dict[str, Any]) -> datetime:
    value = listing.get("created_at")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return _EPOCH


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
