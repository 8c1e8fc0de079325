from fastapi import APIRouter, Depends, Query

from bazaar.api.deps import get_dashboard, require_scopes
from bazaar.core.security import DEFAULT_ROLE, get_human_principal
from bazaar.schemas.dashboard import ActivityOut, StatsOut

router = APIRouter()


@router.get("/stats", response_model=StatsOut)
async def dashboard_stats(
    principal=Depends(get_human_principal),
    dashboard=Depends(get_dashboard),
):
    require_scopes(principal, {"dashboard:read"})
    return await dashboard.compute_stats(principal.role or DEFAULT_ROLE, principal.actor_id)


@router.get("/activity", response_model=list[ActivityOut])
async def dashboard_activity(
    principal=Depends(get_human_principal),
    dashboard=Depends(get_dashboard),
    limit: int = Query(default=8, ge=1, le=50),
) -> list[ActivityOut]:
    require_scopes(principal, {"moderation:read"})
    return [ActivityOut(**item) for item in await dashboard.recent_activity(limit=limit)]
