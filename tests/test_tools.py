"""Tests for catalog, order and wishlist tools."""

import asyncio
from decimal import Decimal

import pytest
from unittest.mock import AsyncMock, MagicMock

from campuzon.cart import PersistedCart
from campuzon.errors import MutationInProgress, NetworkFailure, ValidationFailure
from campuzon.models import Order, ProductSnapshot, WishlistEntry
from campuzon.mutations import MutationPipeline
from campuzon.query_cache import QueryCache
from campuzon.query_keys import order_keys, product_keys, store_keys, wishlist_keys
from campuzon.storages import MemoryCartStorage
from campuzon.tools import catalog, orders, wishlist


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _api(**responses) -> MagicMock:
    api = MagicMock()
    for method in ("get", "post", "put", "patch", "delete"):
        setattr(api, method, AsyncMock(return_value=responses.get(method)))
    return api


def _product_data(product_id: str = "p1", store_id: str = "s1") -> dict:
    return {
        "id": product_id,
        "storeID": store_id,
        "name": "Lamp",
        "price": "25.00",
        "quantity": 4,
        "store": {"id": store_id, "name": "Lights", "slug": "lights"},
    }


def _order(status: str = "paid") -> Order:
    return Order(
        id="o1", order_number="CZ-1", store_id="s1", status=status,
        total_amount=Decimal("25.00"),
    )


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    @pytest.mark.asyncio
    async def test_list_products_paginated(self) -> None:
        api = _api(get={
            "items": [_product_data()],
            "pagination": {"page": 1, "perPage": 20, "total": 41, "pages": 3},
        })
        cache = QueryCache()
        page = await catalog.list_products(api, cache, {"category": "home", "page": 1})
        assert page.total == 41
        assert page.has_next
        assert page.items[0].available_stock == 4
        api.get.assert_called_once_with("/products", params={"category": "home", "page": "1"})
        assert product_keys.list({"page": 1, "category": "home"}) in cache

    @pytest.mark.asyncio
    async def test_unknown_filter_rejected(self) -> None:
        with pytest.raises(ValueError):
            await catalog.list_products(_api(), QueryCache(), {"colour": "red"})

    @pytest.mark.asyncio
    async def test_get_product_cached(self) -> None:
        api = _api(get=_product_data())
        cache = QueryCache()
        first = await catalog.get_product(api, cache, "p1")
        second = await catalog.get_product(api, cache, "p1")
        assert first == second
        assert first.store_name == "Lights"
        api.get.assert_called_once_with("/products/p1")

    @pytest.mark.asyncio
    async def test_short_search_not_sent(self) -> None:
        api = _api(get=[_product_data()])
        assert await catalog.search_products(api, QueryCache(), " a ") == []
        api.get.assert_not_called()
        results = await catalog.search_products(api, QueryCache(), "lamp")
        assert [p.id for p in results] == ["p1"]
        api.get.assert_called_once_with("/products/search", params={"q": "lamp"})

    @pytest.mark.asyncio
    async def test_store_lookups(self) -> None:
        api = _api(get={"id": "s1", "storeName": "Lights", "storeSlug": "lights"})
        cache = QueryCache()
        store = await catalog.get_store_by_slug(api, cache, "lights")
        assert store.id == "s1"
        api.get.assert_called_once_with("/stores/slug/lights")
        await catalog.get_store(api, cache, "s1")
        api.get.assert_called_with("/stores/s1")

    @pytest.mark.asyncio
    async def test_my_store(self) -> None:
        api = _api(get={"id": "s9", "storeName": "Mine"})
        cache = QueryCache()
        store = await catalog.my_store(api, cache)
        assert store.name == "Mine"
        api.get.assert_called_once_with("/stores/my")
        assert cache.get_data(store_keys.my()) == store


class TestCatalogEdits:
    @pytest.mark.asyncio
    async def test_create_product_invalidates_product_family(self) -> None:
        api = _api(post={"id": "p2"})
        cache = QueryCache()
        cache.write(product_keys.detail("p1"), "cached")
        cache.write(product_keys.by_store("s1"), ["cached"])
        cache.write(store_keys.my(), "mine")
        notifier = MagicMock()
        pipeline = MutationPipeline(cache, notifier=notifier)
        mutation = catalog.create_product(api, pipeline, {"name": "Lamp", "price": 25})
        assert await mutation == {"id": "p2"}
        api.post.assert_called_once_with("/products", {"name": "Lamp", "price": 25})
        assert cache.get(product_keys.detail("p1")).is_stale
        assert cache.get(product_keys.by_store("s1")).is_stale
        assert not cache.get(store_keys.my()).is_stale
        notifier.success.assert_called_once_with("Product created successfully")

    def test_create_product_requires_name(self) -> None:
        api = _api()
        with pytest.raises(ValidationFailure) as info:
            catalog.create_product(api, MagicMock(), {"name": "  "})
        assert info.value.field_errors == {"name": "required"}
        api.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_and_delete_product(self) -> None:
        api = _api()
        cache = QueryCache()
        cache.write(product_keys.detail("p1"), "cached")
        pipeline = MutationPipeline(cache)
        await catalog.update_product(api, pipeline, "p1", {"price": 30})
        api.put.assert_called_once_with("/products/p1", {"price": 30})
        assert cache.get(product_keys.detail("p1")).is_stale
        await catalog.delete_product(api, pipeline, "p1")
        api.delete.assert_called_once_with("/products/p1")

    @pytest.mark.asyncio
    async def test_one_edit_per_product_at_a_time(self) -> None:
        api = _api()
        gate = asyncio.Event()

        async def slow_put(path, body):
            await gate.wait()

        api.put = AsyncMock(side_effect=slow_put)
        pipeline = MutationPipeline(QueryCache())
        first = catalog.update_product(api, pipeline, "p1", {"price": 30})
        with pytest.raises(MutationInProgress):
            catalog.delete_product(api, pipeline, "p1")
        gate.set()
        await first
        assert not pipeline.is_busy(("product", "p1"))

    @pytest.mark.asyncio
    async def test_failed_update_reports_error(self) -> None:
        api = _api()
        api.put.side_effect = NetworkFailure("Server unavailable")
        cache = QueryCache()
        cache.write(product_keys.detail("p1"), "cached")
        notifier = MagicMock()
        pipeline = MutationPipeline(cache, notifier=notifier)
        with pytest.raises(NetworkFailure):
            await catalog.update_product(api, pipeline, "p1", {"price": 30})
        assert not cache.get(product_keys.detail("p1")).is_stale
        notifier.error.assert_called_once_with("Server unavailable")

    @pytest.mark.asyncio
    async def test_store_edits_invalidate_store_family(self) -> None:
        api = _api(post={"id": "s9"})
        cache = QueryCache()
        cache.write(store_keys.my(), "mine")
        cache.write(store_keys.detail("s9"), "detail")
        pipeline = MutationPipeline(cache)
        await catalog.create_store(api, pipeline, {"storeName": "Mine"})
        api.post.assert_called_once_with("/stores", {"storeName": "Mine"})
        assert cache.get(store_keys.my()).is_stale
        cache.write(store_keys.my(), "mine")
        await catalog.update_store(api, pipeline, "s9", {"description": "Lamps"})
        api.put.assert_called_once_with("/stores/s9", {"description": "Lamps"})
        assert cache.get(store_keys.my()).is_stale
        assert cache.get(store_keys.detail("s9")).is_stale

    def test_store_needs_name_and_update_needs_fields(self) -> None:
        with pytest.raises(ValidationFailure):
            catalog.create_store(_api(), MagicMock(), {})
        with pytest.raises(ValidationFailure):
            catalog.update_store(_api(), MagicMock(), "s9", {})


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class TestPlaceOrder:
    def _cart(self) -> PersistedCart:
        cart = PersistedCart(MemoryCartStorage())
        cart.add_item(ProductSnapshot.from_dict(_product_data()), 2)
        return cart

    @pytest.mark.asyncio
    async def test_builds_request_and_clears_cart(self) -> None:
        api = _api(post={"id": "o1", "orderNumber": "CZ-1"})
        cache = QueryCache()
        cache.write(order_keys.mine(), [])
        cart = self._cart()
        mutation = orders.place_order(
            api, MutationPipeline(cache), cart, "delivery",
            delivery_address={"city": "Lima"}, buyer_note="Ring twice",
        )
        await mutation
        api.post.assert_called_once_with("/orders", {
            "storeID": "s1",
            "items": [{"productID": "p1", "quantity": 2}],
            "deliveryMethod": "delivery",
            "deliveryAddress": {"city": "Lima"},
            "buyerNote": "Ring twice",
        })
        assert cart.is_empty
        assert cache.get(order_keys.mine()).is_stale

    @pytest.mark.asyncio
    async def test_failure_keeps_cart(self) -> None:
        api = _api()
        api.post.side_effect = NetworkFailure("Server unavailable")
        cart = self._cart()
        mutation = orders.place_order(api, MutationPipeline(QueryCache()), cart, "pickup")
        with pytest.raises(NetworkFailure):
            await mutation
        assert cart.item_count == 2

    @pytest.mark.asyncio
    async def test_single_checkout_at_a_time(self) -> None:
        api = _api()
        release = asyncio.Event()

        async def slow_post(path, body=None):
            await release.wait()

        api.post.side_effect = slow_post
        pipeline = MutationPipeline(QueryCache())
        cart = self._cart()
        first = orders.place_order(api, pipeline, cart, "pickup")
        with pytest.raises(MutationInProgress):
            orders.place_order(api, pipeline, cart, "pickup")
        release.set()
        await first

    def test_empty_cart_rejected(self) -> None:
        with pytest.raises(ValidationFailure, match="empty"):
            orders.place_order(
                _api(), MagicMock(), PersistedCart(MemoryCartStorage()), "pickup",
            )

    def test_unknown_delivery_method(self) -> None:
        with pytest.raises(ValidationFailure):
            orders.place_order(_api(), MagicMock(), self._cart(), "teleport")


class TestOrderTransitions:
    @pytest.mark.asyncio
    async def test_cancel_patches_status_then_confirms(self) -> None:
        api = _api()
        release = asyncio.Event()

        async def slow_post(path, body=None):
            await release.wait()

        api.post.side_effect = slow_post
        cache = QueryCache()
        cache.write(order_keys.detail("o1"), _order("paid"))
        mutation = orders.cancel_order(api, cache, MutationPipeline(cache), "o1")
        assert cache.get_data(order_keys.detail("o1")).status == "cancelled"
        release.set()
        await mutation
        api.post.assert_called_once_with("/orders/o1/cancel")
        assert cache.get(order_keys.detail("o1")).is_stale

    @pytest.mark.asyncio
    async def test_rejected_transition_rolls_back(self) -> None:
        api = _api()
        api.patch.side_effect = ValidationFailure("Order already shipped", code=409)
        cache = QueryCache()
        cache.write(order_keys.detail("o1"), _order("shipped"))
        before = cache.snapshot(order_keys.detail("o1"))
        mutation = orders.update_order_status(
            api, cache, MutationPipeline(cache), "o1", "processing",
        )
        with pytest.raises(ValidationFailure):
            await mutation
        assert cache.snapshot(order_keys.detail("o1")) == before
        api.patch.assert_called_once_with("/orders/o1/status", {"status": "processing"})

    @pytest.mark.asyncio
    async def test_uncached_order_not_patched(self) -> None:
        cache = QueryCache()
        await orders.confirm_delivery(_api(), cache, MutationPipeline(cache), "o1")
        assert order_keys.detail("o1") not in cache

    @pytest.mark.asyncio
    async def test_refund_requires_reason(self) -> None:
        cache = QueryCache()
        with pytest.raises(ValidationFailure):
            orders.request_refund(_api(), cache, MutationPipeline(cache), "o1", "  ")
        api = _api()
        await orders.request_refund(api, cache, MutationPipeline(cache), "o1", "Broken")
        api.post.assert_called_once_with("/orders/o1/refund", {"reason": "Broken"})

    @pytest.mark.asyncio
    async def test_my_orders(self) -> None:
        api = _api(get=[{"id": "o1", "orderNumber": "CZ-1", "storeID": "s1", "status": "paid"}])
        result = await orders.my_orders(api, QueryCache())
        assert result[0].order_number == "CZ-1"
        api.get.assert_called_once_with("/orders")


# ---------------------------------------------------------------------------
# Wishlist
# ---------------------------------------------------------------------------


class TestWishlist:
    @pytest.mark.asyncio
    async def test_is_in_wishlist(self) -> None:
        api = _api(get=True)
        assert await wishlist.is_in_wishlist(api, QueryCache(), "p1") is True
        api.get.assert_called_once_with("/wishlist/check/p1")

    @pytest.mark.asyncio
    async def test_add_is_optimistic(self) -> None:
        api = _api()
        release = asyncio.Event()

        async def slow_post(path, body=None):
            await release.wait()

        api.post.side_effect = slow_post
        cache = QueryCache()
        cache.write(wishlist_keys.list(), [])
        product = ProductSnapshot.from_dict(_product_data())
        mutation = wishlist.add_to_wishlist(api, cache, MutationPipeline(cache), product)
        assert cache.get_data(wishlist_keys.check("p1")) is True
        assert [e.product.id for e in cache.get_data(wishlist_keys.list())] == ["p1"]
        release.set()
        await mutation
        api.post.assert_called_once_with("/wishlist", {"productId": "p1"})
        assert cache.get_data(wishlist_keys.check("p1")) is True
        assert not cache.get(wishlist_keys.check("p1")).is_stale
        assert cache.get(wishlist_keys.list()).is_stale

    @pytest.mark.asyncio
    async def test_failed_remove_restores_list(self) -> None:
        api = _api()
        api.delete.side_effect = NetworkFailure("down")
        cache = QueryCache()
        entry = WishlistEntry(product=ProductSnapshot.from_dict(_product_data()))
        cache.write(wishlist_keys.list(), [entry])
        cache.write(wishlist_keys.check("p1"), True)
        mutation = wishlist.remove_from_wishlist(api, cache, MutationPipeline(cache), "p1")
        assert cache.get_data(wishlist_keys.list()) == []
        assert cache.get_data(wishlist_keys.check("p1")) is False
        with pytest.raises(NetworkFailure):
            await mutation
        assert cache.get_data(wishlist_keys.list()) == [entry]
        assert cache.get_data(wishlist_keys.check("p1")) is True

    @pytest.mark.asyncio
    async def test_toggle_uses_cached_flag(self) -> None:
        api = _api()
        cache = QueryCache()
        pipeline = MutationPipeline(cache)
        cache.write(wishlist_keys.check("p1"), True)
        await wishlist.toggle_wishlist(api, cache, pipeline, "p1")
        api.delete.assert_called_once_with("/wishlist/p1")
        await wishlist.toggle_wishlist(api, cache, pipeline, "p1")
        api.post.assert_called_once_with("/wishlist", {"productId": "p1"})

    @pytest.mark.asyncio
    async def test_double_toggle_rejected_while_pending(self) -> None:
        api = _api()
        release = asyncio.Event()

        async def slow_post(path, body=None):
            await release.wait()

        api.post.side_effect = slow_post
        cache = QueryCache()
        pipeline = MutationPipeline(cache)
        first = wishlist.add_to_wishlist(api, cache, pipeline, "p1")
        with pytest.raises(MutationInProgress):
            wishlist.remove_from_wishlist(api, cache, pipeline, "p1")
        release.set()
        await first
