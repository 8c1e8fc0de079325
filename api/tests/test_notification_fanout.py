from __future__ import annotations

import asyncio

import pytest

from bazaar.core.errors import NotFoundError, StoreError, ValidationError
from bazaar.services.notifications import TYPE_GENERAL, AdminEvent, NotificationFanOut
from bazaar.services.store import InMemoryRecordStore


def _store_with_users() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    for user_id, role in [("admin-1", "admin"), ("admin-2", "admin"), ("farmer-1", "farmer"), ("buyer-1", "buyer")]:
        asyncio.run(store.create("user_profiles", {"id": user_id, "name": user_id, "role": role}))
    return store


def test_notify_admins_writes_one_row_per_admin() -> None:
    store = _store_with_users()
    notifier = NotificationFanOut(store)

    delivered = asyncio.run(
        notifier.notify_admins(AdminEvent(type="new_crop_post", title="New", message="Review me", data={"crop_post_id": "l-1"}))
    )

    rows = asyncio.run(store.list("notifications"))
    assert delivered == 2
    assert sorted(row["user_id"] for row in rows) == ["admin-1", "admin-2"]
    assert all(row["is_read"] is False for row in rows)
    assert all(row["data"] == {"crop_post_id": "l-1"} for row in rows)


def test_notify_admins_with_no_admins_delivers_nothing() -> None:
    store = InMemoryRecordStore()
    delivered = asyncio.run(NotificationFanOut(store).notify_admins(AdminEvent(type="t", title="t", message="m")))
    assert delivered == 0


class _FlakyStore(InMemoryRecordStore):
    def __init__(self, failing_user: str) -> None:
        super().__init__()
        self.failing_user = failing_user

    async def create(self, table, record):
        if table == "notifications" and record["user_id"] == self.failing_user:
            raise StoreError("insert failed")
        return await super().create(table, record)


def test_one_failed_recipient_does_not_block_the_rest() -> None:
    store = _FlakyStore("admin-1")
    for user_id in ("admin-1", "admin-2"):
        asyncio.run(store.create("user_profiles", {"id": user_id, "role": "admin"}))

    delivered = asyncio.run(NotificationFanOut(store).notify_admins(AdminEvent(type="t", title="t", message="m")))

    assert delivered == 1
    assert [row["user_id"] for row in asyncio.run(store.list("notifications"))] == ["admin-2"]


def test_notify_owner_formats_status_change_without_admin_suffix() -> None:
    store = _store_with_users()
    listing = {"id": "l-1", "farmer_id": "farmer-1", "crop_name": "Onion", "variety_name": None}

    row = asyncio.run(NotificationFanOut(store).notify_owner(listing, "sold", notification_type="crop_post_status_changed"))

    assert row["message"] == "Onion - N/A has been sold"
    assert row["type"] == "crop_post_status_changed"
    assert row["user_id"] == "farmer-1"


def test_notify_users_deduplicates_and_requires_recipients() -> None:
    store = _store_with_users()
    notifier = NotificationFanOut(store)

    delivered = asyncio.run(notifier.notify_users(["buyer-1", "farmer-1", "buyer-1", ""], title="Mandi closed", message="Holiday"))

    assert delivered == 2
    rows = asyncio.run(store.list("notifications"))
    assert {row["type"] for row in rows} == {TYPE_GENERAL}
    with pytest.raises(ValidationError):
        asyncio.run(notifier.notify_users([], title="x", message="y"))


def test_read_state_is_per_recipient() -> None:
    store = _store_with_users()
    notifier = NotificationFanOut(store)
    asyncio.run(notifier.notify_users(["buyer-1", "farmer-1"], title="Rain alert", message="Cover your produce"))
    buyer_row = asyncio.run(notifier.list_for_user("buyer-1"))[0]

    marked = asyncio.run(notifier.mark_read(buyer_row["id"], "buyer-1"))

    assert marked["is_read"] is True
    assert marked["read_at"] is not None
    assert asyncio.run(notifier.list_for_user("buyer-1", unread_only=True)) == []
    assert len(asyncio.run(notifier.list_for_user("farmer-1", unread_only=True))) == 1


def test_mark_read_hides_other_users_notifications() -> None:
    store = _store_with_users()
    notifier = NotificationFanOut(store)
    asyncio.run(notifier.notify_users(["buyer-1"], title="t", message="m"))
    row = asyncio.run(notifier.list_for_user("buyer-1"))[0]

    with pytest.raises(NotFoundError):
        asyncio.run(notifier.mark_read(row["id"], "farmer-1"))
    with pytest.raises(NotFoundError):
        asyncio.run(notifier.mark_read("missing", "buyer-1"))


def test_mark_all_read_counts_only_unread() -> None:
    store = _store_with_users()
    notifier = NotificationFanOut(store)
    for index in range(3):
        asyncio.run(notifier.notify_users(["farmer-1"], title=f"t{index}", message="m"))
    first = asyncio.run(notifier.list_for_user("farmer-1"))[0]
    asyncio.run(notifier.mark_read(first["id"], "farmer-1"))

    assert asyncio.run(notifier.mark_all_read("farmer-1")) == 2
    assert asyncio.run(notifier.mark_all_read("farmer-1")) == 0
