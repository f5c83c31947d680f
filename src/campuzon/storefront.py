"""Process-level wiring of the sync layer.

A ``Storefront`` owns one of each collaborator: API client, identity,
persisted cart, query cache, mutation pipeline, poller and chat hub. Build
it once per process and ``aclose()`` it on shutdown.
"""

from __future__ import annotations

import logging

from campuzon.api_client import StorefrontClient
from campuzon.cart import PersistedCart
from campuzon.chat import ChatHub
from campuzon.config import CampuzonConfig
from campuzon.errors import AuthenticationRequired
from campuzon.identity import SessionIdentity
from campuzon.mutations import MutationPipeline
from campuzon.notify import LoggingNotifier, Notifier
from campuzon.poller import LivePoller
from campuzon.query_cache import QueryCache, QueryPolicy
from campuzon.query_keys import chat_keys, order_keys, wishlist_keys
from campuzon.storage import CartStorage
from campuzon.storages import FileCartStorage, MemoryCartStorage

logger = logging.getLogger(__name__)


class Storefront:
    def __init__(
        self,
        config: CampuzonConfig | None = None,
        storage: CartStorage | None = None,
        notifier: Notifier | None = None,
        identity: SessionIdentity | None = None,
    ) -> None:
        self.config = config or CampuzonConfig()
        if storage is None:
            if self.config.cart_storage_dir:
                storage = FileCartStorage(self.config.cart_storage_dir)
            else:
                logger.warning("No cart storage directory configured; cart will not survive restarts.")
                storage = MemoryCartStorage()
        self.notifier = notifier or LoggingNotifier()
        self.identity = identity or SessionIdentity()
        self.api = StorefrontClient(
            self.config.api_base_url,
            identity=self.identity,
            connect_timeout=self.config.connect_timeout_secs,
            read_timeout=self.config.read_timeout_secs,
        )
        self.cart = PersistedCart(
            storage, record_name=self.config.cart_record_name, notifier=self.notifier,
        )
        self.cache = QueryCache(
            QueryPolicy(
                stale_after=self.config.stale_after_secs,
                gc_after=self.config.gc_after_secs,
            )
        )
        self.pipeline = MutationPipeline(self.cache, notifier=self.notifier)
        self.poller = LivePoller(
            self.cache, default_interval=self.config.messages_poll_interval_secs,
        )
        self.chat = ChatHub(
            self.api, self.cache, self.pipeline, self.poller, self.identity,
            notifier=self.notifier,
            poll_interval=self.config.messages_poll_interval_secs,
        )

    def sign_in_with_token(self, token: str) -> None:
        """Verify ``token`` against the configured session key and sign in."""
        if not self.config.session_public_key:
            raise AuthenticationRequired("No session public key configured.")
        session = SessionIdentity.from_token(token, self.config.session_public_key)
        user = session.current_user
        if user is None:
            raise AuthenticationRequired("Session token carries no user.")
        self.identity.sign_in(user, session.access_token)
        logger.info("Signed in as %s.", user.id)

    def sign_out(self) -> None:
        """Drop the session and every cached per-user query; the cart is kept."""
        self.chat.close_all()
        self.identity.sign_out()
        for prefix in (order_keys.all, wishlist_keys.all, chat_keys.all):
            self.cache.invalidate(prefix, refetch_active=False)

    def health(self) -> dict[str, object]:
        return {
            "authenticated": self.identity.is_authenticated,
            "cart_items": self.cart.item_count,
            "cache": self.cache.health(),
            "mutations": self.pipeline.health(),
            "poller": self.poller.health(),
        }

    async def aclose(self) -> None:
        """Stop polling and close the HTTP client."""
        self.chat.close_all()
        await self.poller.stop()
        await self.api.close()

    async def __aenter__(self) -> Storefront:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
