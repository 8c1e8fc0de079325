from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class ListingCounts(BaseModel):
    total_posts: int
    pending_count: int
    approved_count: int
    rejected_count: int
    sold_count: int
    expired_count: int
    withdrawn_count: int


class FarmerStatsOut(ListingCounts):
    role: Literal["farmer"] = "farmer"
    total_value: float


class BuyerStatsOut(BaseModel):
    role: Literal["buyer"] = "buyer"
    total_deals: int
    active_deals: int
    completed_deals: int
    total_spend: float


class AdminStatsOut(ListingCounts):
    role: Literal["admin"] = "admin"
    total_users: int
    farmers: int
    buyers: int
    farmers_with_approved_posts: int
    total_deals: int
    completed_deals: int
    total_revenue: float


StatsOut = Annotated[FarmerStatsOut | BuyerStatsOut | AdminStatsOut, Field(discriminator="role")]


class ActivityOut(BaseModel):
    id: str
    type: Literal["post_created", "deal_created"]
    description: str
    timestamp: datetime | None = None
    user_name: str | None = None
