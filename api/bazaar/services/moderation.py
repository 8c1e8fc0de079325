from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Literal

from bazaar.core.auth import Principal
from bazaar.core.errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from bazaar.services.notifications import (
    TYPE_CROP_POST_REEVALUATED,
    TYPE_CROP_POST_RESUBMITTED,
    TYPE_CROP_POST_REVIEWED,
    TYPE_CROP_POST_STATUS_CHANGED,
    TYPE_NEW_CROP_POST,
    AdminEvent,
    NotificationFanOut,
)
from bazaar.services.store import Filter, OrderBy, RecordStore, StoreConflictError
from bazaar.services.verification import rank_listings

logger = logging.getLogger(__name__)

ListingStatus = Literal["pending", "approved", "rejected", "sold", "expired", "withdrawn"]
ReviewDecision = Literal["approved", "rejected"]

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"approved", "rejected"},
    "approved": {"sold", "expired", "withdrawn"},
    # Re-entry edges, reachable only through resubmit/reopen.
    "rejected": {"pending"},
    "withdrawn": {"pending"},
    "sold": set(),
    "expired": set(),
}
CLOSED_AFTER_APPROVAL = {"sold", "expired", "withdrawn"}

DRAFT_FIELDS = {
    "crop_name",
    "variety_name",
    "crop_type",
    "description",
    "sowing_date",
    "expected_harvest_date",
    "expected_yield",
    "yield_unit",
    "quantity",
    "quantity_unit",
    "price_per_unit",
    "packaging_type",
    "contact_phone",
    "location",
    "image_urls",
}
LOCATION_FIELDS = ("village", "district", "state", "pincode", "address", "latitude", "longitude")


def validate_transition(*, from_status: str, to_status: str) -> None:
    allowed = ALLOWED_TRANSITIONS.get(from_status)
    if not allowed or to_status not in allowed:
        raise InvalidStateError(from_status, f"invalid listing transition: {from_status} -> {to_status}")


def validate_draft(draft: dict[str, Any]) -> dict[str, Any]:
    """Normalize a listing draft, raising ValidationError on the first bad field."""
    unknown = sorted(set(draft) - DRAFT_FIELDS)
    if unknown:
        raise ValidationError(unknown[0], "field cannot be set on a listing")

    crop_name = _text(draft.get("crop_name"))
    if not crop_name:
        raise ValidationError("crop_name", "crop name is required")

    image_urls = [url.strip() for url in draft.get("image_urls") or [] if isinstance(url, str) and url.strip()]
    if not image_urls:
        raise ValidationError("image_urls", "at least one image is required")

    location = _normalize_location(draft.get("location"))
    price = _positive_number(draft.get("price_per_unit"), "price_per_unit", "price must be greater than zero")
    quantity = _positive_number(draft.get("quantity"), "quantity", "quantity must be greater than zero")

    expected_yield = draft.get("expected_yield")
    if expected_yield is not None:
        expected_yield = _positive_number(expected_yield, "expected_yield", "expected yield must be greater than zero")

    return {
        "crop_name": crop_name,
        "variety_name": _text(draft.get("variety_name")),
        "crop_type": _text(draft.get("crop_type")) or crop_name,
        "description": _text(draft.get("description")),
        "sowing_date": _coerce_date(draft.get("sowing_date"), "sowing_date"),
        "expected_harvest_date": _coerce_date(draft.get("expected_harvest_date"), "expected_harvest_date"),
        "expected_yield": expected_yield,
        "yield_unit": _text(draft.get("yield_unit")) or "kg/acre",
        "quantity": quantity,
        "quantity_unit": _text(draft.get("quantity_unit")) or "quintals",
        "price_per_unit": price,
        "packaging_type": _text(draft.get("packaging_type")) or "bulk",
        "contact_phone": _text(draft.get("contact_phone")),
        "location": location,
        "primary_image_url": image_urls[0],
        "image_urls": image_urls,
    }


class ModerationService:
    def __init__(self, store: RecordStore, notifier: NotificationFanOut, *, listing_ttl_days: int = 30) -> None:
        self.store = store
        self.notifier = notifier
        self.listing_ttl = timedelta(days=max(1, listing_ttl_days))

    async def submit(self, draft: dict[str, Any], actor: Principal, *, now: datetime | None = None) -> dict[str, Any]:
        if actor.role not in {"farmer", "admin"} or not actor.actor_id:
            raise AuthorizationError("permission denied")
        fields = validate_draft(draft)
        current = now or datetime.now(timezone.utc)

        listing = await self.store.create(
            "listings",
            {
                **fields,
                "farmer_id": actor.actor_id,
                "status": "pending",
                "admin_notes": None,
                "reviewed_by": None,
                "reviewed_at": None,
                "review_history": [],
                "created_at": current,
                "updated_at": current,
                "expires_at": current + self.listing_ttl,
            },
        )
        logger.info("listing submitted id=%s farmer_id=%s", listing["id"], listing["farmer_id"])

        await self.notifier.notify_admins(
            AdminEvent(
                type=TYPE_NEW_CROP_POST,
                title="New Crop Post Requires Review",
                message=f"{listing['crop_name']} - {listing.get('variety_name') or 'N/A'} posted by farmer needs admin review",
                data={"crop_post_id": listing["id"]},
            )
        )
        return await self._with_farmer(listing)

    async def get(self, listing_id: str, actor: Principal | None = None) -> dict[str, Any]:
        listing = await self._require(listing_id)
        visible = listing["status"] == "approved" or (
            actor is not None and (actor.is_admin or actor.owns(listing))
        )
        if not visible:
            raise NotFoundError("listing not found")
        return await self._with_farmer(listing)

    async def list_for_farmer(self, farmer_id: str, *, status: ListingStatus | None = None) -> list[dict[str, Any]]:
        filters = [Filter("farmer_id", "eq", farmer_id)]
        if status:
            filters.append(Filter("status", "eq", status))
        rows = await self.store.list("listings", filters=filters, order_by=[("created_at", "desc")])
        return await self._attach_farmers(rows)

    async def browse(
        self,
        *,
        crop_name: str | None = None,
        state: str | None = None,
        district: str | None = None,
        price_min: float | None = None,
        price_max: float | None = None,
        sort_by: Literal["created_at", "price_per_unit", "trust"] = "created_at",
        sort_dir: Literal["asc", "desc"] = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        filters = [Filter("status", "eq", "approved")]
        if crop_name:
            filters.append(Filter("crop_name", "ilike", f"%{crop_name}%"))
        if state:
            filters.append(Filter("location.state", "eq", state))
        if district:
            filters.append(Filter("location.district", "eq", district))
        if price_min is not None:
            filters.append(Filter("price_per_unit", "gte", price_min))
        if price_max is not None:
            filters.append(Filter("price_per_unit", "lte", price_max))

        if sort_by == "trust":
            rows = await self._attach_farmers(await self.store.list("listings", filters=filters))
            return rank_listings(rows)[offset : offset + limit]

        order_by: list[OrderBy] = [(sort_by, sort_dir)]
        rows = await self.store.list("listings", filters=filters, order_by=order_by, limit=limit, offset=offset)
        return await self._attach_farmers(rows)

    async def review_queue(
        self,
        actor: Principal,
        *,
        status: Literal["pending", "rejected"] = "pending",
        sort_by: Literal["created_at", "trust"] = "created_at",
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        self._require_admin(actor)
        rows = await self.store.list(
            "listings",
            filters=[Filter("status", "eq", status)],
            order_by=[("created_at", "desc")],
        )
        rows = await self._attach_farmers(rows)
        if sort_by == "trust":
            rows = rank_listings(rows)
        return rows[offset : offset + limit]

    async def review(
        self,
        listing_id: str,
        decision: ReviewDecision,
        actor: Principal,
        notes: str | None = None,
    ) -> dict[str, Any]:
        self._require_admin(actor)
        if decision not in {"approved", "rejected"}:
            raise ValidationError("decision", "decision must be approved or rejected")

        listing = await self._require(listing_id)
        validate_transition(from_status=listing["status"], to_status=decision)

        now = datetime.now(timezone.utc)
        patch: dict[str, Any] = {"reviewed_by": actor.actor_id, "reviewed_at": now}
        cleaned_notes = _text(notes)
        if cleaned_notes:
            patch["admin_notes"] = cleaned_notes

        updated = await self._transition(listing, decision, patch, now=now)
        logger.info("listing reviewed id=%s status=%s reviewer=%s", listing_id, decision, actor.actor_id)

        await self.notifier.notify_owner(updated, decision, cleaned_notes, notification_type=TYPE_CROP_POST_REVIEWED)
        return await self._with_farmer(updated)

    async def mark_sold(self, listing_id: str, actor: Principal) -> dict[str, Any]:
        listing, _ = await self._close(listing_id, "sold", actor=actor)
        return await self._with_farmer(listing)

    async def withdraw(self, listing_id: str, actor: Principal) -> dict[str, Any]:
        listing, _ = await self._close(listing_id, "withdrawn", actor=actor)
        return await self._with_farmer(listing)

    async def expire(self, listing_id: str, *, now: datetime | None = None) -> dict[str, Any]:
        listing, _ = await self._close(listing_id, "expired", now=now)
        return await self._with_farmer(listing)

    async def expire_due(self, *, now: datetime | None = None, limit: int = 100) -> int:
        current = now or datetime.now(timezone.utc)
        due = await self.store.list(
            "listings",
            filters=[Filter("status", "eq", "approved"), Filter("expires_at", "lt", current)],
            order_by=[("expires_at", "asc")],
            limit=limit,
        )
        expired = 0
        for listing in due:
            try:
                _, changed = await self._close(listing["id"], "expired", now=current)
            except (InvalidStateError, NotFoundError) as exc:
                logger.info("skipping expiry id=%s reason=%s", listing["id"], exc)
                continue
            expired += int(changed)
        if expired:
            logger.info("expired listings count=%s", expired)
        return expired

    async def resubmit(
        self,
        listing_id: str,
        actor: Principal,
        changes: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        listing = await self._require(listing_id)
        if not actor.owns(listing):
            raise AuthorizationError("permission denied")
        if listing["status"] not in {"rejected", "withdrawn"}:
            raise InvalidStateError(listing["status"])

        fields: dict[str, Any] = {}
        if changes:
            fields = validate_draft(_merge_changes(listing, changes))

        current = now or datetime.now(timezone.utc)
        patch = {**fields, **self._new_review_cycle(listing, current)}
        updated = await self._transition(listing, "pending", patch, now=current)
        logger.info("listing resubmitted id=%s from=%s", listing_id, listing["status"])

        await self.notifier.notify_admins(
            AdminEvent(
                type=TYPE_CROP_POST_RESUBMITTED,
                title="Crop Post Resubmitted For Review",
                message=f"{updated['crop_name']} - {updated.get('variety_name') or 'N/A'} was resubmitted by farmer",
                data={"crop_post_id": updated["id"], "previous_status": listing["status"]},
            )
        )
        return await self._with_farmer(updated)

    async def reopen(self, listing_id: str, actor: Principal, notes: str | None = None) -> dict[str, Any]:
        self._require_admin(actor)
        listing = await self._require(listing_id)
        if listing["status"] != "rejected":
            raise InvalidStateError(listing["status"])

        current = datetime.now(timezone.utc)
        cycle = self._new_review_cycle(listing, current)
        cleaned_notes = _text(notes)
        cycle["review_history"][-1]["reopened_by"] = actor.actor_id
        cycle["review_history"][-1]["reopen_notes"] = cleaned_notes

        updated = await self._transition(listing, "pending", cycle, now=current)
        logger.info("listing reopened id=%s by=%s", listing_id, actor.actor_id)

        await self.notifier.notify_owner(updated, "pending", cleaned_notes, notification_type=TYPE_CROP_POST_REEVALUATED)
        return await self._with_farmer(updated)

    async def update(self, listing_id: str, actor: Principal, changes: dict[str, Any]) -> dict[str, Any]:
        listing = await self._require(listing_id)
        if not actor.owns(listing):
            raise AuthorizationError("permission denied")
        if listing["status"] != "pending":
            raise InvalidStateError(listing["status"], "only pending listings can be edited")

        fields = validate_draft(_merge_changes(listing, changes))
        try:
            updated = await self.store.update(
                "listings",
                listing_id,
                {**fields, "updated_at": datetime.now(timezone.utc)},
                expected={"status": "pending"},
            )
        except StoreConflictError:
            raise InvalidStateError(await self._current_status(listing_id)) from None
        return await self._with_farmer(updated)

    async def delete(self, listing_id: str, actor: Principal) -> None:
        listing = await self._require(listing_id)
        if not actor.owns(listing):
            raise AuthorizationError("permission denied")
        if not await self.store.delete("listings", listing_id):
            raise NotFoundError("listing not found")
        logger.info("listing deleted id=%s farmer_id=%s", listing_id, listing["farmer_id"])

    async def _close(
        self,
        listing_id: str,
        target: str,
        *,
        actor: Principal | None = None,
        now: datetime | None = None,
    ) -> tuple[dict[str, Any], bool]:
        listing = await self._require(listing_id)
        if actor is not None and not (actor.is_admin or actor.owns(listing)):
            raise AuthorizationError("permission denied")
        if listing["status"] in CLOSED_AFTER_APPROVAL:
            return listing, False
        validate_transition(from_status=listing["status"], to_status=target)

        current = now or datetime.now(timezone.utc)
        if target == "expired":
            expires_at = _coerce_datetime(listing.get("expires_at"))
            if expires_at is None or current <= expires_at:
                raise InvalidStateError(listing["status"], "listing has not reached its expiry time")

        try:
            updated = await self._transition(listing, target, {}, now=current)
        except InvalidStateError as exc:
            if exc.current_state in CLOSED_AFTER_APPROVAL:
                return await self._require(listing_id), False
            raise
        logger.info("listing closed id=%s status=%s", listing_id, target)

        await self.notifier.notify_owner(updated, target, notification_type=TYPE_CROP_POST_STATUS_CHANGED)
        return updated, True

    async def _transition(
        self,
        listing: dict[str, Any],
        target: str,
        patch: dict[str, Any],
        *,
        now: datetime,
    ) -> dict[str, Any]:
        try:
            return await self.store.update(
                "listings",
                listing["id"],
                {**patch, "status": target, "updated_at": now},
                expected={"status": listing["status"]},
            )
        except StoreConflictError:
            # Another caller moved the listing first.
            raise InvalidStateError(await self._current_status(listing["id"])) from None

    def _new_review_cycle(self, listing: dict[str, Any], now: datetime) -> dict[str, Any]:
        history = list(listing.get("review_history") or [])
        history.append(
            {
                "status": listing["status"],
                "reviewed_by": listing.get("reviewed_by"),
                "reviewed_at": _isoformat(listing.get("reviewed_at")),
                "admin_notes": listing.get("admin_notes"),
                "closed_at": now.isoformat(),
            }
        )
        return {
            "reviewed_by": None,
            "reviewed_at": None,
            "admin_notes": None,
            "review_history": history,
            "expires_at": now + self.listing_ttl,
        }

    async def _attach_farmers(self, listings: list[dict[str, Any]]) -> list[dict[str, Any]]:
        profiles: dict[str, dict[str, Any] | None] = {}
        for listing in listings:
            farmer_id = listing.get("farmer_id")
            if farmer_id not in profiles:
                profiles[farmer_id] = await self.store.get("user_profiles", farmer_id) if farmer_id else None
            profile = profiles[farmer_id] or {}
            listing["farmer_name"] = profile.get("name")
            listing["farmer_phone"] = profile.get("phone")
            listing["farmer_phone_verified"] = bool(profile.get("phone_verified"))
        return listings

    async def _with_farmer(self, listing: dict[str, Any]) -> dict[str, Any]:
        return (await self._attach_farmers([listing]))[0]

    async def _require(self, listing_id: str) -> dict[str, Any]:
        listing = await self.store.get("listings", listing_id)
        if listing is None:
            raise NotFoundError("listing not found")
        return listing

    async def _current_status(self, listing_id: str) -> str:
        return (await self._require(listing_id))["status"]

    @staticmethod
    def _require_admin(actor: Principal) -> None:
        if not actor.is_admin:
            raise AuthorizationError("permission denied")


def _draft_of(listing: dict[str, Any]) -> dict[str, Any]:
    return {name: listing.get(name) for name in DRAFT_FIELDS}


def _merge_changes(listing: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    draft = {**_draft_of(listing), **changes}
    # Partial location edits keep the untouched keys.
    if isinstance(changes.get("location"), dict) and isinstance(listing.get("location"), dict):
        draft["location"] = {**listing["location"], **changes["location"]}
    return draft


def _normalize_location(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError("location", "location is required")
    location: dict[str, Any] = {}
    for key in ("village", "district", "state", "pincode", "address"):
        location[key] = _text(value.get(key))
    for key in ("latitude", "longitude"):
        raw = value.get(key)
        if raw is None:
            location[key] = None
            continue
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise ValidationError(f"location.{key}", "coordinates must be numeric")
        location[key] = float(raw)
    if (location["latitude"] is None) != (location["longitude"] is None):
        raise ValidationError("location", "latitude and longitude must be provided together")
    if not any(location[key] is not None for key in LOCATION_FIELDS):
        raise ValidationError("location", "location is required")
    return location


def _positive_number(value: Any, field: str, message: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, message)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(field, message) from None
    if not number > 0:
        raise ValidationError(field, message)
    return number


def _coerce_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(field, "expected an ISO date")


def _coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _isoformat(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
