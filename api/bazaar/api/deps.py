from fastapi import Depends

from bazaar.core.auth import Principal
from bazaar.core.config import Settings, get_settings
from bazaar.core.errors import AuthorizationError
from bazaar.services.dashboard import DashboardAggregator
from bazaar.services.moderation import ModerationService
from bazaar.services.notifications import NotificationFanOut
from bazaar.services.store import get_store


def get_notifier(store=Depends(get_store)) -> NotificationFanOut:
    return NotificationFanOut(store)


def get_moderation_service(
    store=Depends(get_store),
    notifier: NotificationFanOut = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> ModerationService:
    return ModerationService(store, notifier, listing_ttl_days=settings.listing_ttl_days)


def get_dashboard(store=Depends(get_store)) -> DashboardAggregator:
    return DashboardAggregator(store)


def require_scopes(principal: Principal, scopes: set[str]) -> None:
    try:
        principal.require_scopes(scopes)
    except PermissionError as exc:
        # The missing scopes are logged by the 403 handler, never returned.
        raise AuthorizationError("permission denied") from exc
