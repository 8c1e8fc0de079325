from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bazaar.core.errors import ValidationError
from bazaar.services.dashboard import DashboardAggregator
from bazaar.services.store import InMemoryRecordStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _seed(store: InMemoryRecordStore) -> None:
    profiles = [
        {"id": "admin-1", "name": "Asha", "role": "admin"},
        {"id": "farmer-1", "name": "Ramesh", "role": "farmer"},
        {"id": "farmer-2", "name": "Sita", "role": "farmer"},
        {"id": "buyer-1", "name": "Kiran", "role": "buyer"},
    ]
    listings = [
        {"id": "l1", "farmer_id": "farmer-1", "crop_name": "Wheat", "status": "approved", "quantity": 10, "price_per_unit": 100},
        {"id": "l2", "farmer_id": "farmer-1", "crop_name": "Rice", "status": "approved", "quantity": 5, "price_per_unit": 200},
        {"id": "l3", "farmer_id": "farmer-1", "crop_name": "Onion", "status": "pending", "quantity": 7, "price_per_unit": 50},
        {"id": "l4", "farmer_id": "farmer-2", "crop_name": "Tur", "status": "sold", "quantity": 3, "price_per_unit": 900},
    ]
    deals = [
        {"id": "d1", "buyer_id": "buyer-1", "farmer_id": "farmer-1", "status": "completed", "total_amount": 1000},
        {"id": "d2", "buyer_id": "buyer-1", "farmer_id": "farmer-1", "status": "accepted", "total_amount": 500},
        {"id": "d3", "buyer_id": "buyer-1", "farmer_id": "farmer-2", "status": "cancelled", "total_amount": 300},
        {"id": "d4", "buyer_id": "buyer-1", "farmer_id": "farmer-2", "status": "initiated", "total_amount": None},
    ]
    for offset, listing in enumerate(listings):
        listing["created_at"] = NOW - timedelta(hours=2 * offset)
        asyncio.run(store.create("listings", listing))
    for offset, deal in enumerate(deals):
        deal["created_at"] = NOW - timedelta(hours=2 * offset + 1)
        asyncio.run(store.create("deals", deal))
    for profile in profiles:
        asyncio.run(store.create("user_profiles", profile))


def _aggregator() -> DashboardAggregator:
    store = InMemoryRecordStore()
    _seed(store)
    return DashboardAggregator(store)


def test_farmer_stats_count_statuses_and_value_approved_stock() -> None:
    stats = asyncio.run(_aggregator().compute_stats("farmer", "farmer-1"))

    assert stats["total_posts"] == 3
    assert stats["approved_count"] == 2
    assert stats["pending_count"] == 1
    assert stats["sold_count"] == 0
    assert stats["total_value"] == 2000


def test_buyer_stats_exclude_cancelled_spend() -> None:
    stats = asyncio.run(_aggregator().compute_stats("buyer", "buyer-1"))

    assert stats == {
        "role": "buyer",
        "total_deals": 4,
        "active_deals": 2,
        "completed_deals": 1,
        "total_spend": 1500,
    }


def test_admin_stats_cover_platform() -> None:
    stats = asyncio.run(_aggregator().compute_stats("admin", "admin-1"))

    assert stats["total_posts"] == 4
    assert stats["approved_count"] == 2
    assert stats["sold_count"] == 1
    assert stats["total_users"] == 4
    assert stats["farmers"] == 2
    assert stats["buyers"] == 1
    assert stats["farmers_with_approved_posts"] == 1
    assert stats["total_deals"] == 4
    assert stats["completed_deals"] == 1
    assert stats["total_revenue"] == 1000


def test_unknown_role_is_rejected() -> None:
    with pytest.raises(ValidationError):
        asyncio.run(_aggregator().compute_stats("moderator", "x"))  # type: ignore[arg-type]


def test_recent_activity_merges_both_streams_newest_first() -> None:
    activity = asyncio.run(_aggregator().recent_activity(5))

    assert len(activity) == 5
    assert [item["id"] for item in activity] == ["listing-l1", "deal-d1", "listing-l2", "deal-d2", "listing-l3"]
    timestamps = [item["timestamp"] for item in activity]
    assert timestamps == sorted(timestamps, reverse=True)
    assert {item["type"] for item in activity} == {"post_created", "deal_created"}
    assert activity[0]["description"] == "New approved post: Wheat by Ramesh"
    assert activity[1]["description"] == "New deal: ₹1,000 between Ramesh and Kiran"
    assert activity[1]["user_name"] == "Kiran"


def test_recent_activity_breaks_timestamp_ties_by_id() -> None:
    store = InMemoryRecordStore()
    for listing_id in ("b", "a"):
        asyncio.run(store.create("listings", {"id": listing_id, "farmer_id": "ghost", "crop_name": "Jowar", "status": "pending", "created_at": NOW}))

    activity = asyncio.run(DashboardAggregator(store).recent_activity(2))

    assert [item["id"] for item in activity] == ["listing-a", "listing-b"]
    assert activity[0]["user_name"] == "Unknown"
