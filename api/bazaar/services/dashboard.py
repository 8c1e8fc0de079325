from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Literal

from bazaar.core.errors import ValidationError
from bazaar.services.store import Filter, RecordStore

Role = Literal["farmer", "buyer", "admin"]

LISTING_STATUSES = ("pending", "approved", "rejected", "sold", "expired", "withdrawn")
ACTIVE_DEAL_STATUSES = {"initiated", "pending", "accepted", "in_progress"}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class DashboardAggregator:
    """Read-and-reduce summaries; nothing computed here is persisted."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def compute_stats(self, role: Role, user_id: str) -> dict[str, Any]:
        if role == "farmer":
            return await self._farmer_stats(user_id)
        if role == "buyer":
            return await self._buyer_stats(user_id)
        if role == "admin":
            return await self._admin_stats()
        raise ValidationError("role", f"unsupported role: {role}")

    async def recent_activity(self, limit: int = 8) -> list[dict[str, Any]]:
        if limit <= 0:
            return []
        listings = await self.store.list("listings", order_by=[("created_at", "desc")], limit=limit)
        deals = await self.store.list("deals", order_by=[("created_at", "desc")], limit=limit)

        names: dict[str, str] = {}

        async def display_name(user_id: str | None) -> str:
            if not user_id:
                return "Unknown"
            if user_id not in names:
                profile = await self.store.get("user_profiles", user_id)
                names[user_id] = (profile or {}).get("name") or "Unknown"
            return names[user_id]

        activities: list[dict[str, Any]] = []
        for listing in listings:
            farmer_name = await display_name(listing.get("farmer_id"))
            activities.append(
                {
                    "id": f"listing-{listing['id']}",
                    "type": "post_created",
                    "description": f"New {listing.get('status')} post: {listing.get('crop_name')} by {farmer_name}",
                    "timestamp": listing.get("created_at"),
                    "user_name": farmer_name,
                }
            )
        for deal in deals:
            farmer_name = await display_name(deal.get("farmer_id"))
            buyer_name = await display_name(deal.get("buyer_id"))
            amount = deal.get("total_amount")
            if amount is None:
                amount = deal.get("offer_price")
            activities.append(
                {
                    "id": f"deal-{deal['id']}",
                    "type": "deal_created",
                    "description": f"New deal: ₹{_format_amount(amount)} between {farmer_name} and {buyer_name}",
                    "timestamp": deal.get("created_at"),
                    "user_name": buyer_name,
                }
            )

        # Equal timestamps fall back to the event id.
        activities.sort(key=lambda item: item["id"])
        activities.sort(key=lambda item: _timestamp(item["timestamp"]), reverse=True)
        return activities[:limit]

    async def _farmer_stats(self, user_id: str) -> dict[str, Any]:
        listings = await self.store.list("listings", filters=[Filter("farmer_id", "eq", user_id)])
        counts = Counter(listing.get("status") for listing in listings)
        stats: dict[str, Any] = {"role": "farmer", "total_posts": len(listings)}
        stats.update({f"{status}_count": counts.get(status, 0) for status in LISTING_STATUSES})
        stats["total_value"] = sum(
            _number(listing.get("quantity")) * _number(listing.get("price_per_unit"))
            for listing in listings
            if listing.get("status") == "approved"
        )
        return stats

    async def _buyer_stats(self, user_id: str) -> dict[str, Any]:
        deals = await self.store.list("deals", filters=[Filter("buyer_id", "eq", user_id)])
        return {
            "role": "buyer",
            "total_deals": len(deals),
            "active_deals": sum(1 for deal in deals if deal.get("status") in ACTIVE_DEAL_STATUSES),
            "completed_deals": sum(1 for deal in deals if deal.get("status") == "completed"),
            "total_spend": sum(
                _number(deal.get("total_amount")) for deal in deals if deal.get("status") != "cancelled"
            ),
        }

    async def _admin_stats(self) -> dict[str, Any]:
        listings = await self.store.list("listings")
        users = await self.store.list("user_profiles")
        deals = await self.store.list("deals")

        counts = Counter(listing.get("status") for listing in listings)
        roles = Counter(user.get("role") for user in users)
        stats: dict[str, Any] = {"role": "admin", "total_posts": len(listings)}
        stats.update({f"{status}_count": counts.get(status, 0) for status in LISTING_STATUSES})
        stats.update(
            {
                "total_users": len(users),
                "farmers": roles.get("farmer", 0),
                "buyers": roles.get("buyer", 0),
                "farmers_with_approved_posts": len(
                    {listing.get("farmer_id") for listing in listings if listing.get("status") == "approved"}
                ),
                "total_deals": len(deals),
                "completed_deals": sum(1 for deal in deals if deal.get("status") == "completed"),
                "total_revenue": sum(
                    _number(deal.get("total_amount")) for deal in deals if deal.get("status") == "completed"
                ),
            }
        )
        return stats


def _number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _format_amount(value: Any) -> str:
    number = _number(value)
    return f"{number:,.0f}" if number.is_integer() else f"{number:,.2f}"


def _timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return _EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _EPOCH
