"""Campuzon storefront sync layer.

Local-first cart, query cache, optimistic mutations and live chat for the
Campuzon marketplace client.
"""

__version__ = "0.1.0"

from campuzon.api_client import StorefrontClient
from campuzon.cart import CartLedger, CartLine, PersistedCart
from campuzon.chat import ChatHub, ChatSession, OutgoingMessage
from campuzon.config import CampuzonConfig
from campuzon.constants import ChatState, MessageStatus, MutationStatus, QueryState
from campuzon.errors import (
    AuthenticationRequired,
    ConversationNotActive,
    CrossStoreConflict,
    InsufficientStock,
    MutationInProgress,
    NetworkFailure,
    NotFound,
    StorefrontError,
    ValidationFailure,
)
from campuzon.identity import IdentityProvider, SessionIdentity
from campuzon.models import Conversation, Message, Order, Page, ProductSnapshot, Store, User
from campuzon.mutations import Mutation, MutationPipeline
from campuzon.notify import LoggingNotifier, Notifier
from campuzon.poller import LivePoller
from campuzon.query_cache import QueryCache, QueryPolicy, QueryResult
from campuzon.storage import CartStorage
from campuzon.storages import FileCartStorage, MemoryCartStorage
from campuzon.storefront import Storefront

__all__ = [
    "StorefrontClient",
    "CartLedger",
    "CartLine",
    "PersistedCart",
    "ChatHub",
    "ChatSession",
    "OutgoingMessage",
    "CampuzonConfig",
    "ChatState",
    "MessageStatus",
    "MutationStatus",
    "QueryState",
    "AuthenticationRequired",
    "ConversationNotActive",
    "CrossStoreConflict",
    "InsufficientStock",
    "MutationInProgress",
    "NetworkFailure",
    "NotFound",
    "StorefrontError",
    "ValidationFailure",
    "IdentityProvider",
    "SessionIdentity",
    "Conversation",
    "Message",
    "Order",
    "Page",
    "ProductSnapshot",
    "Store",
    "User",
    "Mutation",
    "MutationPipeline",
    "LoggingNotifier",
    "Notifier",
    "LivePoller",
    "QueryCache",
    "QueryPolicy",
    "QueryResult",
    "CartStorage",
    "FileCartStorage",
    "MemoryCartStorage",
    "Storefront",
]
