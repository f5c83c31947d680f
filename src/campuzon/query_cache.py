"""Keyed, time-stamped cache of server-derived data.

Readers get the cached value immediately; a missing or stale entry
triggers a background refetch while the old value stays visible
(stale-while-revalidate). Concurrent readers of one key share a single
in-flight request.

Every fetch is issued a per-key token. A result is applied only if its
token is still the latest issued for the key, so a slow response that
started earlier can never overwrite a newer value. Invalidation,
cancellation and direct writes advance the token as well.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from campuzon.constants import (
    DEFAULT_GC_AFTER_SECS,
    DEFAULT_STALE_AFTER_SECS,
    QueryState,
)
from campuzon.query_keys import QueryKey, matches

logger = logging.getLogger(__name__)

Fetcher = Callable[[QueryKey], Awaitable[Any]]
Listener = Callable[["QueryResult"], None]


@dataclass(frozen=True)
class QueryPolicy:
    """Per-key freshness policy (seconds)."""

    stale_after: float = DEFAULT_STALE_AFTER_SECS
    gc_after: float = DEFAULT_GC_AFTER_SECS


@dataclass(frozen=True)
class QueryResult:
    """Read-only view of a cache entry handed to consumers."""

    key: QueryKey
    value: Any
    has_value: bool
    state: QueryState
    fetched_at: float | None
    error: BaseException | None
    is_stale: bool
    is_fetching: bool
    token: int

    @property
    def is_loading(self) -> bool:
        return self.state is QueryState.LOADING

    @property
    def is_success(self) -> bool:
        return self.state is QueryState.SUCCESS


@dataclass(frozen=True)
class EntrySnapshot:
    """Exact copy of an entry's visible state, used for rollback."""

    value: Any
    has_value: bool
    state: QueryState
    fetched_at: float | None
    error: BaseException | None
    is_invalidated: bool
    data_token: int


@dataclass
class _CacheEntry:
    key: QueryKey
    policy: QueryPolicy
    value: Any = None
    has_value: bool = False
    state: QueryState = QueryState.IDLE
    fetched_at: float | None = None
    error: BaseException | None = None
    is_invalidated: bool = False
    latest_token: int = 0
    data_token: int = 0
    inflight: asyncio.Task[Any] | None = None
    inflight_token: int = 0
    fetcher: Fetcher | None = None
    listeners: list[Listener] = field(default_factory=list)
    updated_at: float = 0.0


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # Background fetch failures are recorded on the entry; mark them retrieved.
    if not task.cancelled():
        task.exception()


class QueryCache:
    """Process-wide query cache.

    - ``read()`` returns a ``QueryResult`` and schedules a refetch when stale.
    - ``fetch()`` / ``refetch()`` await a value, sharing in-flight requests.
    - ``write()`` sets a value without a network call.
    - ``invalidate()`` marks a key family stale and refetches observed keys.
    - Unobserved entries idle longer than ``gc_after`` are collected,
      opportunistically from ``read()`` or explicitly via ``gc()``.
    """

    def __init__(
        self,
        default_policy: QueryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_policy = default_policy or QueryPolicy()
        self._clock = clock
        self._entries: dict[QueryKey, _CacheEntry] = {}
        self._total_fetches = 0
        self._discarded_results = 0
        self._last_gc_check = clock()

    # -- entry helpers -------------------------------------------------------

    def _entry(self, key: QueryKey, policy: QueryPolicy | None = None) -> _CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _CacheEntry(
                key=key,
                policy=policy or self._default_policy,
                updated_at=self._clock(),
            )
            self._entries[key] = entry
        elif policy is not None:
            entry.policy = policy
        return entry

    def _is_stale(self, entry: _CacheEntry) -> bool:
        if entry.is_invalidated or entry.fetched_at is None:
            return True
        return self._clock() - entry.fetched_at >= entry.policy.stale_after

    def _is_current(self, entry: _CacheEntry, token: int) -> bool:
        return token == entry.latest_token and self._entries.get(entry.key) is entry

    def _view(self, entry: _CacheEntry) -> QueryResult:
        return QueryResult(
            key=entry.key,
            value=entry.value,
            has_value=entry.has_value,
            state=entry.state,
            fetched_at=entry.fetched_at,
            error=entry.error,
            is_stale=self._is_stale(entry),
            is_fetching=entry.inflight is not None and not entry.inflight.done(),
            token=entry.data_token,
        )

    def _notify(self, entry: _CacheEntry) -> None:
        entry.updated_at = self._clock()
        if not entry.listeners:
            return
        view = self._view(entry)
        for listener in list(entry.listeners):
            try:
                listener(view)
            except Exception:
                logger.warning("Cache listener failed for %r.", entry.key, exc_info=True)

    def _supersede(self, entry: _CacheEntry) -> None:
        """Advance the token so any in-flight result for ``entry`` is discarded."""
        entry.latest_token += 1
        entry.inflight = None
        if entry.state is QueryState.LOADING:
            entry.state = QueryState.IDLE

    # -- fetching ------------------------------------------------------------

    def _start_fetch(self, entry: _CacheEntry) -> asyncio.Task[Any]:
        """Return the current in-flight fetch for ``entry``, starting one if needed."""
        inflight = entry.inflight
        if (
            inflight is not None
            and not inflight.done()
            and entry.inflight_token == entry.latest_token
        ):
            return inflight
        if entry.fetcher is None:
            raise ValueError(f"No fetcher registered for {entry.key!r}")

        entry.latest_token += 1
        token = entry.latest_token
        task = asyncio.get_running_loop().create_task(
            self._run_fetch(entry, entry.fetcher, token)
        )
        task.add_done_callback(_retrieve_exception)
        entry.inflight = task
        entry.inflight_token = token
        self._total_fetches += 1
        if not entry.has_value:
            entry.state = QueryState.LOADING
        self._notify(entry)
        return task

    @staticmethod
    def _clear_inflight(entry: _CacheEntry, token: int) -> None:
        if entry.inflight_token == token:
            entry.inflight = None

    async def _run_fetch(self, entry: _CacheEntry, fetcher: Fetcher, token: int) -> Any:
        try:
            value = await fetcher(entry.key)
        except asyncio.CancelledError:
            self._clear_inflight(entry, token)
            raise
        except Exception as exc:
            self._clear_inflight(entry, token)
            if self._is_current(entry, token):
                entry.state = QueryState.ERROR
                entry.error = exc
                self._notify(entry)
            else:
                self._discarded_results += 1
                logger.debug("Discarding failed fetch %d for %r (superseded).", token, entry.key)
            raise

        self._clear_inflight(entry, token)
        if self._is_current(entry, token):
            entry.value = value
            entry.has_value = True
            entry.fetched_at = self._clock()
            entry.state = QueryState.SUCCESS
            entry.error = None
            entry.is_invalidated = False
            entry.data_token = token
            self._notify(entry)
        else:
            self._discarded_results += 1
            logger.debug("Discarding fetch %d for %r (superseded).", token, entry.key)
        return value

    def read(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        policy: QueryPolicy | None = None,
    ) -> QueryResult:
        """Return the entry for ``key``; refetch in the background if stale."""
        self._maybe_gc()
        entry = self._entry(key, policy)
        entry.fetcher = fetcher
        if self._is_stale(entry):
            self._start_fetch(entry)
        return self._view(entry)

    async def fetch(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        policy: QueryPolicy | None = None,
    ) -> Any:
        """Return a fresh value for ``key``, fetching only when stale.

        Raises whatever the fetcher raised when a fetch was needed and failed.
        """
        entry = self._entry(key, policy)
        entry.fetcher = fetcher
        if entry.state is QueryState.SUCCESS and not self._is_stale(entry):
            return entry.value
        return await self._settled(entry, self._start_fetch(entry))

    async def refetch(self, key: QueryKey, fetcher: Fetcher | None = None) -> Any:
        """Fetch ``key`` regardless of staleness (still de-duplicated)."""
        entry = self._entry(key)
        if fetcher is not None:
            entry.fetcher = fetcher
        return await self._settled(entry, self._start_fetch(entry))

    async def _settled(self, entry: _CacheEntry, task: asyncio.Task[Any]) -> Any:
        """Await ``task`` and return what the cache settled on for ``entry``.

        A fetch superseded while in flight never hands back its own result:
        the caller follows the newer fetch, or gets the value that replaced it.
        """
        token = entry.inflight_token
        while True:
            error: Exception | None = None
            value: Any = None
            try:
                value = await asyncio.shield(task)
            except Exception as exc:
                error = exc
            if not self._is_current(entry, token):
                inflight = entry.inflight
                if inflight is not None and not inflight.done():
                    task, token = inflight, entry.inflight_token
                    continue
                if entry.has_value:
                    return entry.value
            if error is not None:
                raise error
            return value

    # -- direct manipulation --------------------------------------------------

    def get(self, key: QueryKey) -> QueryResult | None:
        entry = self._entries.get(key)
        return self._view(entry) if entry else None

    def get_data(self, key: QueryKey, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return default
        return entry.value

    def write(self, key: QueryKey, value: Any) -> None:
        """Set ``key`` to ``value`` as if it had just been fetched."""
        entry = self._entry(key)
        self._supersede(entry)
        entry.value = value
        entry.has_value = True
        entry.fetched_at = self._clock()
        entry.state = QueryState.SUCCESS
        entry.error = None
        entry.is_invalidated = False
        entry.data_token = entry.latest_token
        self._notify(entry)

    def update(self, key: QueryKey, fn: Callable[[Any], Any]) -> None:
        """``write(key, fn(current))``; ``current`` is None when absent."""
        self.write(key, fn(self.get_data(key)))

    def invalidate(self, prefix: QueryKey, *, refetch_active: bool = True) -> int:
        """Mark every key under ``prefix`` stale. Returns the number matched.

        Observed entries with a known fetcher are refetched immediately.
        """
        matched = 0
        for entry in list(self._entries.values()):
            if not matches(entry.key, prefix):
                continue
            matched += 1
            self._supersede(entry)
            entry.is_invalidated = True
            if refetch_active and entry.listeners and entry.fetcher is not None:
                self._start_fetch(entry)
            else:
                self._notify(entry)
        return matched

    def cancel(self, key: QueryKey) -> None:
        """Discard the result of any in-flight fetch for ``key``."""
        entry = self._entries.get(key)
        if entry is None or entry.inflight is None:
            return
        self._supersede(entry)
        self._notify(entry)

    def generation(self, key: QueryKey) -> int:
        """Latest token issued for ``key`` (0 when unknown)."""
        entry = self._entries.get(key)
        return entry.latest_token if entry else 0

    def snapshot(self, key: QueryKey) -> EntrySnapshot | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return EntrySnapshot(
            value=entry.value,
            has_value=entry.has_value,
            state=entry.state,
            fetched_at=entry.fetched_at,
            error=entry.error,
            is_invalidated=entry.is_invalidated,
            data_token=entry.data_token,
        )

    def restore(self, key: QueryKey, snapshot: EntrySnapshot | None) -> None:
        """Put ``key`` back exactly as captured; None restores an absent entry."""
        if snapshot is None:
            entry = self._entries.get(key)
            if entry is None:
                return
            snapshot = EntrySnapshot(
                value=None,
                has_value=False,
                state=QueryState.IDLE,
                fetched_at=None,
                error=None,
                is_invalidated=False,
                data_token=0,
            )
        else:
            entry = self._entry(key)
        entry.value = snapshot.value
        entry.has_value = snapshot.has_value
        entry.state = snapshot.state
        entry.fetched_at = snapshot.fetched_at
        entry.error = snapshot.error
        entry.is_invalidated = snapshot.is_invalidated
        entry.data_token = snapshot.data_token
        self._notify(entry)

    # -- observers -----------------------------------------------------------

    def subscribe(
        self,
        key: QueryKey,
        listener: Listener,
        policy: QueryPolicy | None = None,
    ) -> Callable[[], None]:
        """Register ``listener`` for changes to ``key``. Returns an unsubscribe."""
        entry = self._entry(key, policy)
        entry.listeners.append(listener)

        def unsubscribe() -> None:
            current = self._entries.get(key)
            if current is not None and listener in current.listeners:
                current.listeners.remove(listener)
                current.updated_at = self._clock()

        return unsubscribe

    def observer_count(self, key: QueryKey) -> int:
        entry = self._entries.get(key)
        return len(entry.listeners) if entry else 0

    # -- garbage collection --------------------------------------------------

    def _maybe_gc(self) -> None:
        """Collect idle entries if enough time has passed since the last sweep.

        Called from read() to piggyback on consumer activity.
        """
        now = self._clock()
        if now - self._last_gc_check < self._default_policy.gc_after:
            return
        self._last_gc_check = now
        self.gc()

    def gc(self) -> int:
        """Drop unobserved, idle entries. Returns the number removed."""
        now = self._clock()
        removed = 0
        for key, entry in list(self._entries.items()):
            if entry.listeners or entry.inflight is not None:
                continue
            if now - entry.updated_at >= entry.policy.gc_after:
                del self._entries[key]
                removed += 1
        if removed:
            logger.info("Cache GC removed %d idle entr%s.", removed, "y" if removed == 1 else "ies")
        return removed

    # -- metrics -------------------------------------------------------------

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def size(self) -> int:
        """Number of entries currently in cache."""
        return len(self._entries)

    def health(self) -> dict[str, object]:
        """Return cache health metrics for monitoring."""
        return {
            "cache_size": self.size,
            "observed_entries": sum(1 for e in self._entries.values() if e.listeners),
            "in_flight": sum(
                1 for e in self._entries.values()
                if e.inflight is not None and not e.inflight.done()
            ),
            "total_fetches": self._total_fetches,
            "discarded_results": self._discarded_results,
        }
