"""Wishlist tools with optimistic membership toggles."""

from __future__ import annotations

from typing import Any

from campuzon.api_client import StorefrontClient
from campuzon.models import ProductSnapshot, WishlistEntry
from campuzon.mutations import Mutation, MutationPipeline, Patch
from campuzon.query_cache import QueryCache
from campuzon.query_keys import QueryKey, wishlist_keys


async def get_wishlist(api: StorefrontClient, cache: QueryCache) -> list[WishlistEntry]:
    async def fetcher(key: QueryKey) -> list[WishlistEntry]:
        data = await api.get("/wishlist")
        if isinstance(data, dict):
            data = data.get("items", [])
        return [WishlistEntry.from_dict(p) for p in data or []]

    return await cache.fetch(wishlist_keys.list(), fetcher)


async def is_in_wishlist(api: StorefrontClient, cache: QueryCache, product_id: str) -> bool:
    async def fetcher(key: QueryKey) -> bool:
        data = await api.get(f"/wishlist/check/{product_id}")
        if isinstance(data, dict):
            return bool(data.get("inWishlist", data.get("isInWishlist", False)))
        return bool(data)

    return await cache.fetch(wishlist_keys.check(product_id), fetcher)


def _product_id(product: ProductSnapshot | str) -> str:
    return product.id if isinstance(product, ProductSnapshot) else product


def _with_entry(product: ProductSnapshot) -> Patch:
    def patch(entries: Any) -> Any:
        if entries is None:
            return entries
        if any(e.product.id == product.id for e in entries):
            return entries
        return [*entries, WishlistEntry(product=product)]

    return patch


def _without_entry(product_id: str) -> Patch:
    def patch(entries: Any) -> Any:
        if entries is None:
            return entries
        return [e for e in entries if e.product.id != product_id]

    return patch


def _patches(
    cache: QueryCache, product: ProductSnapshot | str, member: bool,
) -> dict[QueryKey, Patch]:
    product_id = _product_id(product)
    patches: dict[QueryKey, Patch] = {wishlist_keys.check(product_id): lambda _: member}
    # The list is only patched when already cached; adding needs the snapshot.
    if cache.get_data(wishlist_keys.list()) is not None:
        if not member:
            patches[wishlist_keys.list()] = _without_entry(product_id)
        elif isinstance(product, ProductSnapshot):
            patches[wishlist_keys.list()] = _with_entry(product)
    return patches


def _list_refresh(patches: dict[QueryKey, Patch]) -> tuple[QueryKey, ...]:
    # A patched list is refreshed by the pipeline once no other toggle is pending.
    return () if wishlist_keys.list() in patches else (wishlist_keys.list(),)


def add_to_wishlist(
    api: StorefrontClient,
    cache: QueryCache,
    pipeline: MutationPipeline,
    product: ProductSnapshot | str,
) -> Mutation:
    product_id = _product_id(product)

    async def remote_call() -> Any:
        return await api.post("/wishlist", {"productId": product_id})

    patches = _patches(cache, product, True)
    return pipeline.run(
        remote_call,
        patches=patches,
        invalidate=_list_refresh(patches),
        scope=("wishlist", product_id),
        success_message="Added to wishlist",
        on_success=lambda _: cache.write(wishlist_keys.check(product_id), True),
    )


def remove_from_wishlist(
    api: StorefrontClient,
    cache: QueryCache,
    pipeline: MutationPipeline,
    product: ProductSnapshot | str,
) -> Mutation:
    product_id = _product_id(product)

    async def remote_call() -> Any:
        return await api.delete(f"/wishlist/{product_id}")

    patches = _patches(cache, product, False)
    return pipeline.run(
        remote_call,
        patches=patches,
        invalidate=_list_refresh(patches),
        scope=("wishlist", product_id),
        success_message="Removed from wishlist",
        on_success=lambda _: cache.write(wishlist_keys.check(product_id), False),
    )


def toggle_wishlist(
    api: StorefrontClient,
    cache: QueryCache,
    pipeline: MutationPipeline,
    product: ProductSnapshot | str,
    in_wishlist: bool | None = None,
) -> Mutation:
    """Add or remove ``product``; membership defaults to the cached flag."""
    if in_wishlist is None:
        in_wishlist = bool(cache.get_data(wishlist_keys.check(_product_id(product)), False))
    if in_wishlist:
        return remove_from_wishlist(api, cache, pipeline, product)
    return add_to_wishlist(api, cache, pipeline, product)
