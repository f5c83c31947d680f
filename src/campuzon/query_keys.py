"""Hierarchical cache keys.

A key is a tuple: the leading elements name the resource family, the
trailing ones its parameters. Invalidating a prefix invalidates every key
that starts with it, so ``product_keys.lists()`` covers every filtered
product listing.
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from typing import Any, Tuple

QueryKey = Tuple[Hashable, ...]


def freeze(params: Mapping[str, Any] | None) -> tuple[tuple[str, Any], ...]:
    """Turn a filter mapping into a hashable, order-independent key part.

    ``None`` values are dropped so ``{"page": 1, "category": None}`` and
    ``{"page": 1}`` name the same entry.
    """
    if not params:
        return ()
    return tuple(sorted((k, v) for k, v in params.items() if v is not None))


def matches(key: QueryKey, prefix: QueryKey) -> bool:
    """True when ``key`` equals ``prefix`` or lies beneath it."""
    return len(key) >= len(prefix) and key[: len(prefix)] == prefix


class _ProductKeys:
    all: QueryKey = ("products",)

    def lists(self) -> QueryKey:
        return (*self.all, "list")

    def list(self, filters: Mapping[str, Any] | None = None) -> QueryKey:
        return (*self.lists(), freeze(filters))

    def details(self) -> QueryKey:
        return (*self.all, "detail")

    def detail(self, product_id: str) -> QueryKey:
        return (*self.details(), product_id)

    def by_store(self, store_id: str) -> QueryKey:
        return (*self.all, "store", store_id)

    def search(self, query: str) -> QueryKey:
        return (*self.all, "search", query)


class _StoreKeys:
    all: QueryKey = ("stores",)

    def lists(self) -> QueryKey:
        return (*self.all, "list")

    def detail(self, store_id: str) -> QueryKey:
        return (*self.all, "detail", store_id)

    def by_slug(self, slug: str) -> QueryKey:
        return (*self.all, "slug", slug)

    def my(self) -> QueryKey:
        return (*self.all, "my")


class _OrderKeys:
    all: QueryKey = ("orders",)

    def details(self) -> QueryKey:
        return (*self.all, "detail")

    def detail(self, order_id: str) -> QueryKey:
        return (*self.details(), order_id)

    def mine(self) -> QueryKey:
        return (*self.all, "my")

    def stores(self) -> QueryKey:
        return (*self.all, "store")

    def by_store(self, store_id: str) -> QueryKey:
        return (*self.stores(), store_id)


class _WishlistKeys:
    all: QueryKey = ("wishlist",)

    def list(self) -> QueryKey:
        return (*self.all, "list")

    def check(self, product_id: str) -> QueryKey:
        return (*self.all, "check", product_id)


class _ChatKeys:
    all: QueryKey = ("chat",)

    def conversations(self) -> QueryKey:
        return (*self.all, "conversations")

    def conversation(self, conversation_id: str) -> QueryKey:
        return (*self.all, "conversation", conversation_id)

    def messages(self, conversation_id: str) -> QueryKey:
        return (*self.all, "messages", conversation_id)


product_keys = _ProductKeys()
store_keys = _StoreKeys()
order_keys = _OrderKeys()
wishlist_keys = _WishlistKeys()
chat_keys = _ChatKeys()
