"""Error taxonomy shared by the cart, the cache and the mutation pipeline."""

from __future__ import annotations

from typing import Any


class StorefrontError(Exception):
    """Base exception for storefront operations.

    ``code`` carries the HTTP status when the error came from the server.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


# ---------------------------------------------------------------------------
# Local invariant violations (raised before any network call)
# ---------------------------------------------------------------------------


class CrossStoreConflict(StorefrontError):
    """The cart is bound to another store; clear it before adding."""

    def __init__(self, active_store_id: str, requested_store_id: str) -> None:
        super().__init__(
            "You can only order from one store at a time. Clear your cart first."
        )
        self.active_store_id = active_store_id
        self.requested_store_id = requested_store_id


class InsufficientStock(StorefrontError):
    """Requested quantity exceeds the product's available stock."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(f"Only {available} available")
        self.product_id = product_id
        self.requested = requested
        self.available = available


class MutationInProgress(StorefrontError):
    """A mutation with the same scope is still pending."""


class ConversationNotActive(StorefrontError):
    """A chat message was sent before the conversation was started."""


# ---------------------------------------------------------------------------
# Remote failures
# ---------------------------------------------------------------------------


class AuthenticationRequired(StorefrontError):
    """401/403, or no identity present for an authenticated action."""


class NotFound(StorefrontError):
    """404 — resource not found."""


class ValidationFailure(StorefrontError):
    """400/409/422 — the server rejected the request fields."""

    def __init__(
        self,
        message: str,
        code: int | None = None,
        field_errors: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code)
        self.field_errors = field_errors or {}


class NetworkFailure(StorefrontError):
    """Transport failure, timeout or 5xx response."""
