"""Storefront data model.

Pure data, no I/O. ``from_dict`` accepts the server's camelCase payloads
and ``to_dict`` writes the same shape back, so snapshots persisted inside
the cart round-trip through the API format unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

logger = logging.getLogger(__name__)


def _decimal(raw: Any) -> Decimal:
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        logger.warning("Unparseable price %r; treating as zero.", raw)
        return Decimal("0")


def _mapping(raw: Any) -> dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class User:
    """The signed-in shopper, as exposed by the identity provider."""

    id: str
    display_name: str = ""
    email: str = ""
    store_id: str | None = None  # set when the user also owns a store

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        store = _mapping(data.get("store"))
        return cls(
            id=str(data.get("id", "")),
            display_name=str(
                data.get("displayName") or data.get("firstName") or ""
            ),
            email=str(data.get("email", "")),
            store_id=data.get("storeID") or store.get("id"),
        )


# ---------------------------------------------------------------------------
# ProductSnapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductSnapshot:
    """A product as last seen by the client.

    ``available_stock`` is the server's ``quantity`` field; the cart uses it
    as the upper bound for line quantities.
    """

    id: str
    store_id: str
    name: str
    price: Decimal
    available_stock: int
    slug: str = ""
    thumbnail: str | None = None
    store_name: str | None = None
    store_slug: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "storeID": self.store_id,
            "name": self.name,
            "slug": self.slug,
            "price": str(self.price),
            "quantity": self.available_stock,
            "thumbnail": self.thumbnail,
        }
        if self.store_name is not None or self.store_slug is not None:
            data["store"] = {
                "id": self.store_id,
                "name": self.store_name,
                "slug": self.store_slug,
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProductSnapshot:
        store = _mapping(data.get("store"))
        return cls(
            id=str(data.get("id", "")),
            store_id=str(data.get("storeID") or store.get("id") or ""),
            name=str(data.get("name", "")),
            price=_decimal(data.get("price", 0)),
            available_stock=int(data.get("quantity", 0)),
            slug=str(data.get("slug", "")),
            thumbnail=data.get("thumbnail"),
            store_name=store.get("name"),
            store_slug=store.get("slug"),
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Store:
    id: str
    name: str
    slug: str = ""
    status: str = "active"
    rating: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Store:
        rating = data.get("rating")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("storeName") or data.get("name") or ""),
            slug=str(data.get("storeSlug") or data.get("slug") or ""),
            status=str(data.get("status", "active")),
            rating=float(rating) if rating is not None else None,
        )


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Page:
    """One page of a paginated listing."""

    items: list[Any]
    page: int = 1
    per_page: int = 20
    total: int = 0
    pages: int = 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @classmethod
    def from_dict(cls, data: dict[str, Any], item_type: Any) -> Page:
        pagination = _mapping(data.get("pagination"))
        items = [item_type.from_dict(i) for i in data.get("items", [])]
        return cls(
            items=items,
            page=int(pagination.get("page", data.get("page", 1))),
            per_page=int(pagination.get("perPage", data.get("perPage", len(items) or 20))),
            total=int(pagination.get("total", data.get("total", len(items)))),
            pages=int(pagination.get("pages", data.get("pages", 1))),
        )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderItem:
    product_id: str | None
    product_name: str
    unit_price: Decimal
    quantity: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrderItem:
        return cls(
            product_id=data.get("productID"),
            product_name=str(data.get("productName", "")),
            unit_price=_decimal(data.get("unitPrice", 0)),
            quantity=int(data.get("quantity", 0)),
        )


@dataclass(frozen=True)
class Order:
    id: str
    order_number: str
    store_id: str
    status: str
    total_amount: Decimal
    date_created: str = ""
    items: tuple[OrderItem, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        return cls(
            id=str(data.get("id", "")),
            order_number=str(data.get("orderNumber", "")),
            store_id=str(data.get("storeID", "")),
            status=str(data.get("status", "pending")),
            total_amount=_decimal(data.get("totalAmount", 0)),
            date_created=str(data.get("dateCreated", "")),
            items=tuple(OrderItem.from_dict(i) for i in data.get("items") or []),
        )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Conversation:
    id: str
    participant_store_id: str
    date_created: str = ""
    buyer_id: str | None = None
    unread_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        return cls(
            id=str(data.get("id", "")),
            participant_store_id=str(data.get("storeID", "")),
            date_created=str(data.get("dateCreated", "")),
            buyer_id=data.get("buyerID"),
            unread_count=int(data.get("unreadCount", data.get("buyerUnreadCount", 0))),
        )


@dataclass(frozen=True)
class Message:
    """A chat message; ``id`` is a ``temp-`` token while optimistic."""

    id: str
    conversation_id: str
    sender_id: str | None
    content: str
    date_created: str = ""
    is_optimistic: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data.get("id", "")),
            conversation_id=str(data.get("conversationID", "")),
            sender_id=data.get("senderID"),
            content=str(data.get("content", "")),
            date_created=str(data.get("dateCreated", "")),
        )


@dataclass(frozen=True)
class WishlistEntry:
    product: ProductSnapshot
    added_at: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WishlistEntry:
        return cls(
            product=ProductSnapshot.from_dict(data),
            added_at=str(data.get("addedAt", "")),
        )

