"""Shopper-to-store messaging with optimistic sends.

A ``ChatSession`` moves NO_CONVERSATION → STARTING → ACTIVE. Once active,
each sent message is shown at once with a ``temp-`` id and is tracked on
its own: a failed send removes it from view, a confirmed one stays until a
message-list fetch issued after the confirmation lands. From then on the
server's list is the only copy shown.

``ChatHub`` keeps one session per (shopper, store) pair.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from campuzon.constants import ChatState, MessageStatus, TEMP_MESSAGE_PREFIX
from campuzon.errors import ConversationNotActive, StorefrontError
from campuzon.identity import require_user
from campuzon.models import Conversation, Message
from campuzon.mutations import error_message
from campuzon.notify import safe_notify
from campuzon.query_keys import QueryKey, chat_keys

if TYPE_CHECKING:
    from campuzon.api_client import StorefrontClient
    from campuzon.identity import IdentityProvider
    from campuzon.mutations import Mutation, MutationPipeline
    from campuzon.notify import Notifier
    from campuzon.poller import LivePoller
    from campuzon.query_cache import QueryCache, QueryResult

logger = logging.getLogger(__name__)

MessagesListener = Callable[[list[Message]], None]


@dataclass
class OutgoingMessage:
    """A message the shopper sent from this session."""

    message: Message
    status: MessageStatus = MessageStatus.COMPOSED
    mutation: Mutation | None = None
    server_id: str | None = None
    confirmed_generation: int = 0

    @property
    def temp_id(self) -> str:
        return self.message.id

    async def wait(self) -> Any:
        """Await the send; raises the send error if it failed."""
        if self.mutation is None:
            raise ConversationNotActive("Message was never sent.")
        return await self.mutation.wait()


class _OverlayEffect:
    """Puts an outgoing message on the session's optimistic overlay."""

    def __init__(self, session: ChatSession, outgoing: OutgoingMessage) -> None:
        self._session = session
        self._outgoing = outgoing

    def apply(self) -> None:
        self._outgoing.status = MessageStatus.SENDING
        self._session._overlay[self._outgoing.temp_id] = self._outgoing
        self._session._emit()

    def revert(self) -> None:
        self._outgoing.status = MessageStatus.FAILED
        self._session._overlay.pop(self._outgoing.temp_id, None)
        self._session._emit()


# ---------------------------------------------------------------------------
# ChatSession
# ---------------------------------------------------------------------------


class ChatSession:
    """Conversation between the signed-in shopper and one store."""

    def __init__(
        self,
        api: StorefrontClient,
        cache: QueryCache,
        pipeline: MutationPipeline,
        poller: LivePoller,
        identity: IdentityProvider,
        store_id: str,
        notifier: Notifier | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._pipeline = pipeline
        self._poller = poller
        self._identity = identity
        self._notifier = notifier
        self._poll_interval = poll_interval
        self.store_id = store_id
        self.state = ChatState.NO_CONVERSATION
        self.conversation: Conversation | None = None
        self.draft = ""
        self._overlay: dict[str, OutgoingMessage] = {}
        self._starting: asyncio.Task[Conversation] | None = None
        self._listeners: list[MessagesListener] = []
        self._detach_poll: Callable[[], None] | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # -- lifecycle -----------------------------------------------------------

    async def open(self) -> Conversation:
        """Start or resume the conversation with the store.

        Raises ``AuthenticationRequired`` before any request when signed out.
        Concurrent and repeated calls converge on the same conversation.
        """
        require_user(self._identity)
        if self.state is ChatState.ACTIVE and self.conversation is not None:
            self._attach()
            return self.conversation
        if self._starting is None:
            self._starting = asyncio.get_running_loop().create_task(self._start())
            self._starting.add_done_callback(
                lambda t: t.cancelled() or t.exception()
            )
        return await asyncio.shield(self._starting)

    async def _start(self) -> Conversation:
        self.state = ChatState.STARTING
        try:
            data = await self._api.post(
                "/chat/conversations", {"recipientId": self.store_id}
            )
        except StorefrontError as e:
            self.state = ChatState.NO_CONVERSATION
            safe_notify(self._notifier, "error", error_message(e))
            raise
        except asyncio.CancelledError:
            self.state = ChatState.NO_CONVERSATION
            raise
        finally:
            self._starting = None

        self.conversation = Conversation.from_dict(data or {})
        self.state = ChatState.ACTIVE
        self._cache.invalidate(chat_keys.conversations())
        self._attach()
        logger.info(
            "Conversation %s active with store %s.", self.conversation.id, self.store_id
        )
        return self.conversation

    def close(self) -> None:
        """Stop polling; the conversation is kept for the next ``open()``."""
        if self._detach_poll is not None:
            self._detach_poll()
            self._detach_poll = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def messages_key(self) -> QueryKey | None:
        if self.conversation is None:
            return None
        return chat_keys.messages(self.conversation.id)

    def _attach(self) -> None:
        key = self.messages_key
        if key is None or self._detach_poll is not None:
            return
        self._unsubscribe = self._cache.subscribe(key, self._on_messages)
        self._cache.read(key, self._fetch_messages)
        self._detach_poll = self._poller.attach(
            key, self._fetch_messages, self._poll_interval
        )

    async def _fetch_messages(self, key: QueryKey) -> list[Message]:
        conversation_id = key[-1]
        data = await self._api.get(f"/chat/conversations/{conversation_id}/messages")
        return [Message.from_dict(m) for m in data or []]

    # -- sending -------------------------------------------------------------

    def send(self, content: str | None = None) -> OutgoingMessage | None:
        """Send ``content`` (or the current draft) optimistically.

        The draft is cleared immediately. Blank content is ignored.
        """
        if content is None:
            content = self.draft
        self.draft = ""
        text = content.strip()
        if not text:
            return None
        if self.state is not ChatState.ACTIVE or self.conversation is None:
            raise ConversationNotActive("Start the conversation before sending messages.")

        conversation_id = self.conversation.id
        user = self._identity.current_user
        outgoing = OutgoingMessage(
            message=Message(
                id=f"{TEMP_MESSAGE_PREFIX}{uuid.uuid4().hex}",
                conversation_id=conversation_id,
                sender_id=user.id if user else None,
                content=text,
                date_created=datetime.now(timezone.utc).isoformat(),
                is_optimistic=True,
            )
        )

        async def remote_call() -> Any:
            return await self._api.post(
                f"/chat/conversations/{conversation_id}/messages", {"content": text}
            )

        outgoing.mutation = self._pipeline.run(
            remote_call,
            effect=_OverlayEffect(self, outgoing),
            invalidate=(chat_keys.messages(conversation_id), chat_keys.conversations()),
            on_success=lambda result: self._confirm(outgoing, result),
            on_error=lambda e: safe_notify(self._notifier, "error", error_message(e)),
            notify_errors=False,
        )
        return outgoing

    def _confirm(self, outgoing: OutgoingMessage, result: Any) -> None:
        outgoing.status = MessageStatus.SENT
        if isinstance(result, dict) and result.get("id"):
            outgoing.server_id = str(result["id"])
        key = chat_keys.messages(outgoing.message.conversation_id)
        outgoing.confirmed_generation = self._cache.generation(key)
        self._emit()

    async def mark_read(self) -> None:
        if self.conversation is None:
            raise ConversationNotActive("No conversation to mark as read.")
        conversation_id = self.conversation.id
        await self._api.post(f"/chat/conversations/{conversation_id}/read")
        self._cache.invalidate(chat_keys.conversation(conversation_id))
        self._cache.invalidate(chat_keys.conversations())

    # -- reading -------------------------------------------------------------

    def messages(self) -> list[Message]:
        """Server-confirmed messages followed by the optimistic overlay."""
        key = self.messages_key
        server: list[Message] = list(self._cache.get_data(key, [])) if key else []
        server_ids = {m.id for m in server}
        overlay = [
            o.message for o in self._overlay.values()
            if o.server_id is None or o.server_id not in server_ids
        ]
        return server + overlay

    def pending(self) -> list[OutgoingMessage]:
        return list(self._overlay.values())

    def subscribe(self, listener: MessagesListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _on_messages(self, view: QueryResult) -> None:
        if view.is_success:
            superseded = [
                temp_id for temp_id, o in self._overlay.items()
                if o.status is MessageStatus.SENT and view.token >= o.confirmed_generation
            ]
            for temp_id in superseded:
                del self._overlay[temp_id]
        self._emit()

    def _emit(self) -> None:
        if not self._listeners:
            return
        visible = self.messages()
        for listener in list(self._listeners):
            try:
                listener(visible)
            except Exception:
                logger.warning("Chat listener failed.", exc_info=True)


# ---------------------------------------------------------------------------
# ChatHub
# ---------------------------------------------------------------------------


class ChatHub:
    """Registry of chat sessions, one per (shopper, store)."""

    def __init__(
        self,
        api: StorefrontClient,
        cache: QueryCache,
        pipeline: MutationPipeline,
        poller: LivePoller,
        identity: IdentityProvider,
        notifier: Notifier | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._pipeline = pipeline
        self._poller = poller
        self._identity = identity
        self._notifier = notifier
        self._poll_interval = poll_interval
        self._sessions: dict[tuple[str, str], ChatSession] = {}

    def session_for(self, store_id: str) -> ChatSession:
        user = require_user(self._identity)
        key = (user.id, store_id)
        session = self._sessions.get(key)
        if session is None:
            session = ChatSession(
                self._api, self._cache, self._pipeline, self._poller,
                self._identity, store_id,
                notifier=self._notifier, poll_interval=self._poll_interval,
            )
            self._sessions[key] = session
        return session

    async def conversations(self) -> list[Conversation]:
        require_user(self._identity)
        return await self._cache.fetch(chat_keys.conversations(), self._fetch_conversations)

    async def _fetch_conversations(self, key: QueryKey) -> list[Conversation]:
        data = await self._api.get("/chat/conversations")
        return [Conversation.from_dict(c) for c in data or []]

    async def conversation(self, conversation_id: str) -> Conversation:
        """One conversation by id; ``mark_read`` marks it stale."""
        require_user(self._identity)
        return await self._cache.fetch(
            chat_keys.conversation(conversation_id), self._fetch_conversation
        )

    async def _fetch_conversation(self, key: QueryKey) -> Conversation:
        data = await self._api.get(f"/chat/conversations/{key[-1]}")
        return Conversation.from_dict(data or {})

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
