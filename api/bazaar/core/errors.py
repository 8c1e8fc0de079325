class MarketplaceError(Exception):
    """Base error for marketplace operations."""


class ValidationError(MarketplaceError):
    """Raised when a submitted field is missing or invalid."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(MarketplaceError):
    """Raised when a referenced listing, notification or user does not exist."""


class InvalidStateError(MarketplaceError):
    """Raised when a transition is not permitted from the current state."""

    def __init__(self, current_state: str, message: str | None = None) -> None:
        super().__init__(message or f"transition not allowed from state: {current_state}")
        self.current_state = current_state


class AuthorizationError(MarketplaceError):
    """Raised when the caller lacks the capability for an operation."""


class StoreError(MarketplaceError):
    """Raised when the record store is unavailable or a call fails."""
