"""Catalog tools: product and store reads, plus the seller's product and store edits.

Edits are not patched into the cache. Once the server accepts one, the whole
product (or store) family is invalidated and refetched where observed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from campuzon.api_client import StorefrontClient
from campuzon.constants import MIN_SEARCH_LENGTH
from campuzon.errors import ValidationFailure
from campuzon.models import Page, ProductSnapshot, Store
from campuzon.mutations import Mutation, MutationPipeline
from campuzon.query_cache import QueryCache
from campuzon.query_keys import QueryKey, product_keys, store_keys

logger = logging.getLogger(__name__)

# Listing filter name → query-string parameter understood by the API
_FILTER_PARAMS = {
    "page": "page",
    "per_page": "per_page",
    "category": "category",
    "min_price": "min_price",
    "max_price": "max_price",
    "search": "search",
    "sort_by": "sort_by",
    "sort_order": "sort_order",
    "store_id": "store_id",
}


def _listing_params(filters: Mapping[str, Any] | None) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for name, value in (filters or {}).items():
        param = _FILTER_PARAMS.get(name)
        if param is None:
            raise ValueError(f"Unknown product filter: {name!r}")
        if value is not None and value != "":
            params[param] = str(value)
    return params


def _products(data: Any) -> list[ProductSnapshot]:
    if isinstance(data, dict):
        data = data.get("items", [])
    return [ProductSnapshot.from_dict(p) for p in data or []]


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


async def list_products(
    api: StorefrontClient,
    cache: QueryCache,
    filters: Mapping[str, Any] | None = None,
) -> Page:
    """One page of the product listing for ``filters``."""
    params = _listing_params(filters)

    async def fetcher(key: QueryKey) -> Page:
        data = await api.get("/products", params=params)
        return Page.from_dict(data or {}, ProductSnapshot)

    return await cache.fetch(product_keys.list(filters), fetcher)


async def get_product(
    api: StorefrontClient, cache: QueryCache, product_id: str,
) -> ProductSnapshot:
    async def fetcher(key: QueryKey) -> ProductSnapshot:
        return ProductSnapshot.from_dict(await api.get(f"/products/{product_id}") or {})

    return await cache.fetch(product_keys.detail(product_id), fetcher)


async def store_products(
    api: StorefrontClient, cache: QueryCache, store_id: str,
) -> list[ProductSnapshot]:
    async def fetcher(key: QueryKey) -> list[ProductSnapshot]:
        return _products(await api.get(f"/stores/{store_id}/products"))

    return await cache.fetch(product_keys.by_store(store_id), fetcher)


async def search_products(
    api: StorefrontClient, cache: QueryCache, query: str,
) -> list[ProductSnapshot]:
    """Search by name. Queries shorter than two characters return nothing."""
    query = query.strip()
    if len(query) < MIN_SEARCH_LENGTH:
        logger.debug("Search query %r too short; not sent.", query)
        return []

    async def fetcher(key: QueryKey) -> list[ProductSnapshot]:
        return _products(await api.get("/products/search", params={"q": query}))

    return await cache.fetch(product_keys.search(query), fetcher)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


async def list_stores(api: StorefrontClient, cache: QueryCache) -> list[Store]:
    async def fetcher(key: QueryKey) -> list[Store]:
        data = await api.get("/stores")
        if isinstance(data, dict):
            data = data.get("items", [])
        return [Store.from_dict(s) for s in data or []]

    return await cache.fetch(store_keys.lists(), fetcher)


async def get_store(api: StorefrontClient, cache: QueryCache, store_id: str) -> Store:
    async def fetcher(key: QueryKey) -> Store:
        return Store.from_dict(await api.get(f"/stores/{store_id}") or {})

    return await cache.fetch(store_keys.detail(store_id), fetcher)


async def get_store_by_slug(api: StorefrontClient, cache: QueryCache, slug: str) -> Store:
    async def fetcher(key: QueryKey) -> Store:
        return Store.from_dict(await api.get(f"/stores/slug/{slug}") or {})

    return await cache.fetch(store_keys.by_slug(slug), fetcher)


async def my_store(api: StorefrontClient, cache: QueryCache) -> Store:
    """The signed-in seller's own store."""
    async def fetcher(key: QueryKey) -> Store:
        return Store.from_dict(await api.get("/stores/my") or {})

    return await cache.fetch(store_keys.my(), fetcher)


# ---------------------------------------------------------------------------
# Product and store edits
# ---------------------------------------------------------------------------


def _required(fields: Mapping[str, Any], name: str, label: str) -> dict[str, Any]:
    payload = dict(fields)
    if not str(payload.get(name) or "").strip():
        raise ValidationFailure(f"{label} is required.", field_errors={name: "required"})
    return payload


def create_product(
    api: StorefrontClient, pipeline: MutationPipeline, fields: Mapping[str, Any],
) -> Mutation:
    """Raises ``ValidationFailure`` (before any request) without a ``name``."""
    payload = _required(fields, "name", "Product name")

    async def remote_call() -> Any:
        return await api.post("/products", payload)

    return pipeline.run(
        remote_call,
        invalidate=(product_keys.all,),
        success_message="Product created successfully",
    )


def update_product(
    api: StorefrontClient,
    pipeline: MutationPipeline,
    product_id: str,
    fields: Mapping[str, Any],
) -> Mutation:
    payload = dict(fields)
    if not payload:
        raise ValidationFailure("Nothing to update.")

    async def remote_call() -> Any:
        return await api.put(f"/products/{product_id}", payload)

    return pipeline.run(
        remote_call,
        invalidate=(product_keys.all,),
        scope=("product", product_id),
        success_message="Product updated successfully",
    )


def delete_product(
    api: StorefrontClient, pipeline: MutationPipeline, product_id: str,
) -> Mutation:
    async def remote_call() -> Any:
        return await api.delete(f"/products/{product_id}")

    return pipeline.run(
        remote_call,
        invalidate=(product_keys.all,),
        scope=("product", product_id),
        success_message="Product deleted successfully",
    )


def create_store(
    api: StorefrontClient, pipeline: MutationPipeline, fields: Mapping[str, Any],
) -> Mutation:
    """Open a store for the signed-in user. One creation runs at a time."""
    payload = _required(fields, "storeName", "Store name")

    async def remote_call() -> Any:
        return await api.post("/stores", payload)

    return pipeline.run(
        remote_call,
        invalidate=(store_keys.all,),
        scope=("store", "create"),
        success_message="Store created successfully",
    )


def update_store(
    api: StorefrontClient,
    pipeline: MutationPipeline,
    store_id: str,
    fields: Mapping[str, Any],
) -> Mutation:
    payload = dict(fields)
    if not payload:
        raise ValidationFailure("Nothing to update.")

    async def remote_call() -> Any:
        return await api.put(f"/stores/{store_id}", payload)

    return pipeline.run(
        remote_call,
        invalidate=(store_keys.all,),
        scope=("store", store_id),
        success_message="Store updated successfully",
    )
