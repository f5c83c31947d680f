"""Periodic refetch of cache keys for data without push delivery.

One loop runs per polled key while at least one consumer is attached.
A tick that fires while the previous request is still outstanding is
skipped, never queued, so a key has at most one outstanding poll request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from campuzon.constants import MESSAGES_POLL_INTERVAL_SECS

if TYPE_CHECKING:
    from campuzon.query_cache import Fetcher, QueryCache
    from campuzon.query_keys import QueryKey

logger = logging.getLogger(__name__)


@dataclass
class _PollTarget:
    key: QueryKey
    fetcher: Fetcher
    interval: float
    consumers: int = 0
    loop_task: asyncio.Task[None] | None = None
    outstanding: asyncio.Task[Any] | None = None
    ticks: int = 0
    skipped: int = 0
    unsubscribe: Callable[[], None] | None = field(default=None, repr=False)


class LivePoller:
    """Consumer-counted polling on top of a ``QueryCache``.

    - ``attach()`` returns a detach callable; the loop starts with the
      first consumer and stops with the last.
    - Polled keys are registered as cache observers, so invalidating
      them also refetches immediately.
    - On final detach any in-flight poll result is discarded.
    """

    def __init__(
        self,
        cache: QueryCache,
        default_interval: float = MESSAGES_POLL_INTERVAL_SECS,
    ) -> None:
        self._cache = cache
        self._default_interval = default_interval
        self._targets: dict[QueryKey, _PollTarget] = {}

    def attach(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        interval: float | None = None,
    ) -> Callable[[], None]:
        """Start (or join) polling ``key``. Returns a one-shot detach callable."""
        target = self._targets.get(key)
        if target is None:
            target = _PollTarget(
                key=key,
                fetcher=fetcher,
                interval=interval or self._default_interval,
            )
            self._targets[key] = target
            target.unsubscribe = self._cache.subscribe(key, lambda _view: None)
            target.loop_task = asyncio.get_running_loop().create_task(
                self._poll_loop(target)
            )
            logger.info("Polling %r every %.1fs.", key, target.interval)
        target.consumers += 1

        detached = False

        def detach() -> None:
            nonlocal detached
            if detached:
                return
            detached = True
            self._detach(key)

        return detach

    def _detach(self, key: QueryKey) -> None:
        target = self._targets.get(key)
        if target is None:
            return
        target.consumers -= 1
        if target.consumers > 0:
            return
        self._teardown(target)

    def _teardown(self, target: _PollTarget) -> None:
        del self._targets[target.key]
        if target.loop_task is not None:
            target.loop_task.cancel()
        if target.outstanding is not None and not target.outstanding.done():
            self._cache.cancel(target.key)
        if target.unsubscribe is not None:
            target.unsubscribe()
        logger.info(
            "Stopped polling %r after %d tick(s), %d skipped.",
            target.key, target.ticks, target.skipped,
        )

    async def _poll_loop(self, target: _PollTarget) -> None:
        try:
            while True:
                await asyncio.sleep(target.interval)
                target.ticks += 1
                if target.outstanding is not None and not target.outstanding.done():
                    target.skipped += 1
                    logger.debug("Skipping poll tick for %r (request outstanding).", target.key)
                    continue
                target.outstanding = asyncio.get_running_loop().create_task(
                    self._cache.refetch(target.key, target.fetcher)
                )
                target.outstanding.add_done_callback(self._log_failure)
        except asyncio.CancelledError:
            pass

    @staticmethod
    def _log_failure(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Poll request failed: %s", exc)

    async def stop(self) -> None:
        """Cancel every poll loop (used during shutdown)."""
        targets = list(self._targets.values())
        for target in targets:
            self._teardown(target)
        loops = [t.loop_task for t in targets if t.loop_task is not None]
        if loops:
            await asyncio.gather(*loops, return_exceptions=True)

    def is_polling(self, key: QueryKey) -> bool:
        return key in self._targets

    def consumer_count(self, key: QueryKey) -> int:
        target = self._targets.get(key)
        return target.consumers if target else 0

    def health(self) -> dict[str, object]:
        return {
            "polled_keys": len(self._targets),
            "outstanding": sum(
                1 for t in self._targets.values()
                if t.outstanding is not None and not t.outstanding.done()
            ),
            "skipped_ticks": sum(t.skipped for t in self._targets.values()),
        }
