import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from bazaar.api.deps import get_moderation_service, require_scopes
from bazaar.api.routes.listings import listing_out
from bazaar.core.auth import PrincipalType
from bazaar.core.config import Settings, get_settings
from bazaar.core.security import get_expiry_principal, get_human_principal
from bazaar.schemas.listings import ExpireDueOut, ListingOut, QueueSortBy, QueueStatus, ReopenRequest, ReviewRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/queue", response_model=list[ListingOut])
async def review_queue(
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
    queue_status: QueueStatus = Query(default="pending", alias="status"),
    sort_by: QueueSortBy = Query(default="created_at"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ListingOut]:
    require_scopes(principal, {"moderation:read"})
    rows = await service.review_queue(principal, status=queue_status, sort_by=sort_by, limit=limit, offset=offset)
    return [listing_out(row) for row in rows]


@router.post("/listings/{listing_id}/review", response_model=ListingOut)
async def review_listing(
    listing_id: str,
    payload: ReviewRequest,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    require_scopes(principal, {"moderation:write"})
    listing = await service.review(listing_id, payload.decision, principal, payload.notes)
    return listing_out(listing)


@router.post("/listings/{listing_id}/reopen", response_model=ListingOut)
async def reopen_listing(
    listing_id: str,
    payload: ReopenRequest | None = None,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    require_scopes(principal, {"moderation:write"})
    listing = await service.reopen(listing_id, principal, payload.notes if payload is not None else None)
    return listing_out(listing)


@router.post("/expire-due", response_model=ExpireDueOut)
async def expire_due_listings(
    principal=Depends(get_expiry_principal),
    service=Depends(get_moderation_service),
    settings: Settings = Depends(get_settings),
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> ExpireDueOut:
    required = {"listings:expire"} if principal.principal_type == PrincipalType.MACHINE else {"moderation:write"}
    require_scopes(principal, required)
    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid principal")

    count = await service.expire_due(limit=limit or settings.expire_batch_limit)
    logger.info("expiry sweep requested by=%s expired=%s", principal.subject, count)
    return ExpireDueOut(count=count)
