"""Fire-and-forget user notifications (the toast sink).

Notifications are informational only; nothing in the sync layer depends
on them being delivered.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Default sink: routes notifications to the ``campuzon.notify`` logger."""

    def success(self, message: str) -> None:
        logger.info("%s", message)

    def error(self, message: str) -> None:
        logger.warning("%s", message)


def safe_notify(notifier: Notifier | None, kind: str, message: str | None) -> None:
    """Deliver a notification, logging (never raising) on sink failure."""
    if notifier is None or not message:
        return
    try:
        getattr(notifier, kind)(message)
    except Exception:
        logger.warning("Notifier failed to deliver %s message.", kind, exc_info=True)
