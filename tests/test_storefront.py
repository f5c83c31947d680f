"""Tests for the Storefront container."""

import time

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from unittest.mock import AsyncMock

from campuzon.config import CampuzonConfig
from campuzon.errors import AuthenticationRequired
from campuzon.query_keys import order_keys, product_keys
from campuzon.storages import FileCartStorage, MemoryCartStorage
from campuzon.storefront import Storefront


class TestStorefront:
    @pytest.mark.asyncio
    async def test_defaults_wire_collaborators(self) -> None:
        storefront = Storefront(CampuzonConfig(stale_after_secs=5.0))
        assert storefront.cart.is_empty
        assert storefront.health()["authenticated"] is False
        await storefront.aclose()

    @pytest.mark.asyncio
    async def test_file_storage_from_config(self, tmp_path) -> None:
        storefront = Storefront(CampuzonConfig(cart_storage_dir=str(tmp_path)))
        assert isinstance(storefront.cart._storage, FileCartStorage)
        await storefront.aclose()

    @pytest.mark.asyncio
    async def test_sign_in_with_token(self) -> None:
        private_key = Ed25519PrivateKey.generate()
        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        token = jwt.encode(
            {"sub": "u1", "exp": int(time.time()) + 600}, private_key, algorithm="EdDSA",
        )
        async with Storefront(CampuzonConfig(session_public_key=public_pem)) as storefront:
            storefront.sign_in_with_token(token)
            assert storefront.identity.current_user.id == "u1"
            assert storefront.api._auth_headers() == {"Authorization": f"Bearer {token}"}

    @pytest.mark.asyncio
    async def test_sign_in_without_key_configured(self) -> None:
        async with Storefront(storage=MemoryCartStorage()) as storefront:
            with pytest.raises(AuthenticationRequired):
                storefront.sign_in_with_token("a.b.c")

    @pytest.mark.asyncio
    async def test_sign_out_drops_user_queries(self) -> None:
        async with Storefront(storage=MemoryCartStorage()) as storefront:
            storefront.cache.write(order_keys.mine(), [])
            storefront.cache.write(product_keys.detail("p1"), {})
            storefront.sign_out()
            assert storefront.cache.get(order_keys.mine()).is_stale
            assert not storefront.cache.get(product_keys.detail("p1")).is_stale

    @pytest.mark.asyncio
    async def test_aclose_closes_client(self) -> None:
        storefront = Storefront(storage=MemoryCartStorage())
        storefront.api._client.aclose = AsyncMock()
        await storefront.aclose()
        storefront.api._client.aclose.assert_called_once()
