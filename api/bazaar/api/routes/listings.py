from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status

from bazaar.api.deps import get_moderation_service, require_scopes
from bazaar.core.security import get_human_principal, get_optional_human_principal
from bazaar.schemas.listings import (
    ListingDraftRequest,
    ListingOut,
    ListingPatchRequest,
    ListingSortBy,
    ListingStatus,
    SortDir,
    VerificationOut,
)
from bazaar.services.verification import score_listing

router = APIRouter()


def _verification(listing: dict[str, Any]) -> VerificationOut:
    assessment = score_listing(listing)
    return VerificationOut(score=assessment.score, factors=list(assessment.factors))


def listing_out(listing: dict[str, Any]) -> ListingOut:
    return ListingOut(**listing, verification=_verification(listing))


@router.post("", response_model=ListingOut, status_code=status.HTTP_201_CREATED)
async def submit_listing(
    payload: ListingDraftRequest,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    require_scopes(principal, {"listings:write"})
    listing = await service.submit(payload.model_dump(exclude_none=True), principal)
    return listing_out(listing)


@router.get("", response_model=list[ListingOut])
async def browse_listings(
    service=Depends(get_moderation_service),
    crop_name: str | None = Query(default=None, max_length=100),
    state: str | None = Query(default=None, max_length=100),
    district: str | None = Query(default=None, max_length=100),
    price_min: float | None = Query(default=None, ge=0),
    price_max: float | None = Query(default=None, ge=0),
    sort_by: ListingSortBy = Query(default="created_at"),
    sort_dir: SortDir = Query(default="desc"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[ListingOut]:
    rows = await service.browse(
        crop_name=crop_name,
        state=state,
        district=district,
        price_min=price_min,
        price_max=price_max,
        sort_by=sort_by,
        sort_dir=sort_dir,
        limit=limit,
        offset=offset,
    )
    return [listing_out(row) for row in rows]


@router.get("/mine", response_model=list[ListingOut])
async def list_my_listings(
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
    listing_status: ListingStatus | None = Query(default=None, alias="status"),
) -> list[ListingOut]:
    require_scopes(principal, {"listings:write"})
    rows = await service.list_for_farmer(principal.actor_id, status=listing_status)
    return [listing_out(row) for row in rows]


@router.get("/{listing_id}", response_model=ListingOut)
async def get_listing(
    listing_id: str,
    principal=Depends(get_optional_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    return listing_out(await service.get(listing_id, principal))


@router.get("/{listing_id}/verification", response_model=VerificationOut)
async def get_listing_verification(
    listing_id: str,
    principal=Depends(get_optional_human_principal),
    service=Depends(get_moderation_service),
) -> VerificationOut:
    return _verification(await service.get(listing_id, principal))


@router.patch("/{listing_id}", response_model=ListingOut)
async def patch_listing(
    listing_id: str,
    payload: ListingPatchRequest,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    require_scopes(principal, {"listings:write"})
    listing = await service.update(listing_id, principal, payload.model_dump(exclude_unset=True))
    return listing_out(listing)


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(
    listing_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> Response:
    require_scopes(principal, {"listings:write"})
    await service.delete(listing_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{listing_id}/sold", response_model=ListingOut)
async def mark_listing_sold(
    listing_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    require_scopes(principal, {"listings:write"})
    return listing_out(await service.mark_sold(listing_id, principal))


@router.post("/{listing_id}/withdraw", response_model=ListingOut)
async def withdraw_listing(
    listing_id: str,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    require_scopes(principal, {"listings:write"})
    return listing_out(await service.withdraw(listing_id, principal))


@router.post("/{listing_id}/resubmit", response_model=ListingOut)
async def resubmit_listing(
    listing_id: str,
    payload: ListingPatchRequest | None = None,
    principal=Depends(get_human_principal),
    service=Depends(get_moderation_service),
) -> ListingOut:
    require_scopes(principal, {"listings:write"})
    changes = payload.model_dump(exclude_unset=True) if payload is not None else None
    return listing_out(await service.resubmit(listing_id, principal, changes))
