from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ListingStatus = Literal["pending", "approved", "rejected", "sold", "expired", "withdrawn"]
ReviewDecision = Literal["approved", "rejected"]
QueueStatus = Literal["pending", "rejected"]
ListingSortBy = Literal["created_at", "price_per_unit", "trust"]
QueueSortBy = Literal["created_at", "trust"]
SortDir = Literal["asc", "desc"]


class LocationIn(BaseModel):
    village: str | None = None
    district: str | None = None
    state: str | None = None
    pincode: str | None = None
    address: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class LocationOut(BaseModel):
    village: str | None = None
    district: str | None = None
    state: str | None = None
    pincode: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class ListingDraftRequest(BaseModel):
    """Submission form; required-field checks run in the moderation service."""

    crop_name: str | None = None
    variety_name: str | None = None
    crop_type: str | None = None
    description: str | None = Field(default=None, max_length=5000)
    sowing_date: date | None = None
    expected_harvest_date: date | None = None
    expected_yield: float | None = None
    yield_unit: str | None = None
    quantity: float | None = None
    quantity_unit: str | None = None
    price_per_unit: float | None = None
    packaging_type: str | None = None
    contact_phone: str | None = None
    location: LocationIn | None = None
    image_urls: list[str] = Field(default_factory=list, max_length=10)


class ListingPatchRequest(BaseModel):
    crop_name: str | None = None
    variety_name: str | None = None
    crop_type: str | None = None
    description: str | None = Field(default=None, max_length=5000)
    sowing_date: date | None = None
    expected_harvest_date: date | None = None
    expected_yield: float | None = None
    yield_unit: str | None = None
    quantity: float | None = None
    quantity_unit: str | None = None
    price_per_unit: float | None = None
    packaging_type: str | None = None
    contact_phone: str | None = None
    location: LocationIn | None = None
    image_urls: list[str] | None = Field(default=None, max_length=10)


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    notes: str | None = Field(default=None, max_length=2000)


class ReopenRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class VerificationOut(BaseModel):
    score: int
    factors: list[str] = Field(default_factory=list)


class ListingOut(BaseModel):
    id: str
    farmer_id: str
    crop_name: str
    variety_name: str | None = None
    crop_type: str | None = None
    description: str | None = None
    sowing_date: date | None = None
    expected_harvest_date: date | None = None
    expected_yield: float | None = None
    yield_unit: str | None = None
    quantity: float
    quantity_unit: str | None = None
    price_per_unit: float
    packaging_type: str | None = None
    contact_phone: str | None = None
    location: LocationOut
    primary_image_url: str | None = None
    image_urls: list[str] = Field(default_factory=list)
    status: ListingStatus
    admin_notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_history: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None
    farmer_name: str | None = None
    farmer_phone: str | None = None
    farmer_phone_verified: bool | None = None
    verification: VerificationOut | None = None


class ExpireDueOut(BaseModel):
    count: int
