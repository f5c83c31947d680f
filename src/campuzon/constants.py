"""Constants for the storefront sync layer."""

from enum import Enum


CART_RECORD_NAME = "campuzon-cart"
CART_SCHEMA_VERSION = 1

DEFAULT_STALE_AFTER_SECS = 30.0
DEFAULT_GC_AFTER_SECS = 300.0  # unobserved entries live five minutes
MESSAGES_POLL_INTERVAL_SECS = 5.0

MIN_SEARCH_LENGTH = 2
TEMP_MESSAGE_PREFIX = "temp-"


class QueryState(str, Enum):
    """Lifecycle of a cache entry."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class MutationStatus(str, Enum):
    """Terminal and non-terminal states of an optimistic mutation."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolledBack"


class ChatState(str, Enum):
    NO_CONVERSATION = "no_conversation"
    STARTING = "starting"
    ACTIVE = "active"


class MessageStatus(str, Enum):
    COMPOSED = "composed"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
