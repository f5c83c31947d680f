"""Order tools: listings, checkout and status transitions.

Status transitions patch the cached order detail immediately and roll the
patch back if the server refuses. Each order has at most one pending
transition at a time.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from campuzon.api_client import StorefrontClient
from campuzon.cart import PersistedCart
from campuzon.errors import ValidationFailure
from campuzon.models import Order
from campuzon.mutations import Mutation, MutationPipeline, Patch
from campuzon.query_cache import QueryCache
from campuzon.query_keys import QueryKey, order_keys

logger = logging.getLogger(__name__)

CHECKOUT_SCOPE = "checkout"
DELIVERY_METHODS = ("pickup", "delivery", "digital")


def _orders(data: Any) -> list[Order]:
    if isinstance(data, dict):
        data = data.get("items", [])
    return [Order.from_dict(o) for o in data or []]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def my_orders(api: StorefrontClient, cache: QueryCache) -> list[Order]:
    async def fetcher(key: QueryKey) -> list[Order]:
        return _orders(await api.get("/orders"))

    return await cache.fetch(order_keys.mine(), fetcher)


async def get_order(api: StorefrontClient, cache: QueryCache, order_id: str) -> Order:
    async def fetcher(key: QueryKey) -> Order:
        return Order.from_dict(await api.get(f"/orders/{order_id}") or {})

    return await cache.fetch(order_keys.detail(order_id), fetcher)


async def store_orders(api: StorefrontClient, cache: QueryCache, store_id: str) -> list[Order]:
    """Orders received by a store (seller view)."""
    async def fetcher(key: QueryKey) -> list[Order]:
        return _orders(await api.get(f"/stores/{store_id}/orders"))

    return await cache.fetch(order_keys.by_store(store_id), fetcher)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


def place_order(
    api: StorefrontClient,
    pipeline: MutationPipeline,
    cart: PersistedCart,
    delivery_method: str,
    delivery_address: dict[str, Any] | None = None,
    delivery_notes: str | None = None,
    buyer_note: str | None = None,
) -> Mutation:
    """Submit the cart as an order. The cart is cleared once the server accepts it.

    Raises ``ValidationFailure`` (before any request) for an empty cart or an
    unknown delivery method, and ``MutationInProgress`` while a previous
    checkout is still pending.
    """
    if cart.is_empty:
        raise ValidationFailure("Your cart is empty.")
    if delivery_method not in DELIVERY_METHODS:
        raise ValidationFailure(
            f"Unknown delivery method: {delivery_method}",
            field_errors={"deliveryMethod": delivery_method},
        )

    payload: dict[str, Any] = {
        "storeID": cart.active_store_id,
        "items": [
            {"productID": line.product_id, "quantity": line.quantity}
            for line in cart.lines
        ],
        "deliveryMethod": delivery_method,
    }
    if delivery_address is not None:
        payload["deliveryAddress"] = delivery_address
    if delivery_notes:
        payload["deliveryNotes"] = delivery_notes
    if buyer_note:
        payload["buyerNote"] = buyer_note

    async def remote_call() -> Any:
        return await api.post("/orders", payload)

    def on_success(result: Any) -> None:
        cart.clear()
        if isinstance(result, dict):
            logger.info("Order %s placed.", result.get("orderNumber") or result.get("id"))

    return pipeline.run(
        remote_call,
        invalidate=(order_keys.all,),
        scope=CHECKOUT_SCOPE,
        success_message="Order placed successfully!",
        on_success=on_success,
    )


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def _status_patch(status: str) -> Patch:
    def patch(order: Any) -> Any:
        if isinstance(order, Order):
            return replace(order, status=status)
        return order

    return patch


def _transition(
    cache: QueryCache,
    pipeline: MutationPipeline,
    order_id: str,
    status: str,
    remote_call: Any,
    success_message: str,
) -> Mutation:
    key = order_keys.detail(order_id)
    # Only an order already on screen gets the optimistic status.
    patches = {key: _status_patch(status)} if cache.get_data(key) is not None else {}
    return pipeline.run(
        remote_call,
        patches=patches,
        invalidate=(order_keys.mine(), order_keys.stores()),
        scope=("order", order_id),
        success_message=success_message,
    )


def cancel_order(
    api: StorefrontClient, cache: QueryCache, pipeline: MutationPipeline, order_id: str,
) -> Mutation:
    async def remote_call() -> Any:
        return await api.post(f"/orders/{order_id}/cancel")

    return _transition(cache, pipeline, order_id, "cancelled", remote_call, "Order cancelled")


def confirm_delivery(
    api: StorefrontClient, cache: QueryCache, pipeline: MutationPipeline, order_id: str,
) -> Mutation:
    async def remote_call() -> Any:
        return await api.post(f"/orders/{order_id}/confirm-delivery")

    return _transition(
        cache, pipeline, order_id, "delivered", remote_call,
        "Delivery confirmed! Funds released to seller.",
    )


def request_refund(
    api: StorefrontClient,
    cache: QueryCache,
    pipeline: MutationPipeline,
    order_id: str,
    reason: str,
) -> Mutation:
    if not reason.strip():
        raise ValidationFailure("Please give a reason for the refund.", field_errors={"reason": ""})

    async def remote_call() -> Any:
        return await api.post(f"/orders/{order_id}/refund", {"reason": reason.strip()})

    return _transition(
        cache, pipeline, order_id, "disputed", remote_call, "Refund requested successfully",
    )


def update_order_status(
    api: StorefrontClient,
    cache: QueryCache,
    pipeline: MutationPipeline,
    order_id: str,
    status: str,
) -> Mutation:
    """Seller-side status change (e.g. ``processing`` → ``shipped``)."""
    async def remote_call() -> Any:
        return await api.patch(f"/orders/{order_id}/status", {"status": status})

    return _transition(cache, pipeline, order_id, status, remote_call, "Order status updated")
