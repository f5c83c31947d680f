"""Optimistic mutations: apply locally now, confirm or roll back later.

``MutationPipeline.run()`` applies each patch to its cache key at once and
returns a ``Mutation`` handle without waiting for the server. When the
remote call resolves, target keys are invalidated so they refetch the
authoritative state. When it fails, every target key is restored to the
exact snapshot taken before the patch and the error is re-raised to
whoever awaits the handle.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Union

from campuzon.constants import MutationStatus
from campuzon.errors import MutationInProgress, StorefrontError
from campuzon.notify import safe_notify

if TYPE_CHECKING:
    from campuzon.notify import Notifier
    from campuzon.query_cache import EntrySnapshot, QueryCache
    from campuzon.query_keys import QueryKey

logger = logging.getLogger(__name__)

Patch = Callable[[Any], Any]
RemoteCall = Callable[[], Awaitable[Any]]


class LocalEffect(Protocol):
    """Tentative state outside the query cache (cart, chat overlay)."""

    def apply(self) -> None: ...

    def revert(self) -> None: ...


# ---------------------------------------------------------------------------
# Mutation state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pending:
    patches: Mapping[QueryKey, Patch]
    rollback: Mapping[QueryKey, EntrySnapshot | None]


@dataclass(frozen=True)
class Confirmed:
    result: Any


@dataclass(frozen=True)
class RolledBack:
    error: BaseException


MutationState = Union[Pending, Confirmed, RolledBack]

_STATUS = {
    Pending: MutationStatus.PENDING,
    Confirmed: MutationStatus.CONFIRMED,
    RolledBack: MutationStatus.ROLLED_BACK,
}


def _mark_retrieved(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


def error_message(exc: BaseException) -> str:
    """User-facing text for a failed mutation."""
    if isinstance(exc, StorefrontError):
        return exc.message
    return str(exc) or "Something went wrong. Please try again."


class Mutation:
    """Handle for one optimistic mutation. Await it for the remote result."""

    def __init__(
        self,
        patches: Mapping[QueryKey, Patch],
        rollback: Mapping[QueryKey, EntrySnapshot | None],
        scope: Hashable | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.scope = scope
        self.target_keys: frozenset[QueryKey] = frozenset(patches)
        self.state: MutationState = Pending(dict(patches), dict(rollback))
        self._future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._future.add_done_callback(_mark_retrieved)

    @property
    def status(self) -> MutationStatus:
        return _STATUS[type(self.state)]

    @property
    def is_pending(self) -> bool:
        return isinstance(self.state, Pending)

    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> Any:
        """Return the remote result, or raise the error that rolled us back."""
        return await asyncio.shield(self._future)

    def __await__(self):
        return self.wait().__await__()

    def __repr__(self) -> str:
        return f"Mutation({self.id[:8]}, {self.status.value})"

    # -- transitions (driven by the pipeline) ---------------------------------

    def _rebase(self, key: QueryKey, snapshot: EntrySnapshot | None) -> None:
        if not isinstance(self.state, Pending):
            return
        rollback = dict(self.state.rollback)
        rollback[key] = snapshot
        self.state = Pending(self.state.patches, rollback)

    def _confirm(self, result: Any) -> None:
        self.state = Confirmed(result)
        self._future.set_result(result)

    def _roll_back(self, error: BaseException) -> None:
        self.state = RolledBack(error)
        if isinstance(error, asyncio.CancelledError):
            self._future.cancel()
        else:
            self._future.set_exception(error)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class MutationPipeline:
    """Runs optimistic mutations against a ``QueryCache``.

    Several mutations may be pending on one key; each is confirmed or
    rolled back on its own. Rolling one back restores its snapshot and
    re-applies the patches of later mutations still pending on that key.
    Passing ``scope`` limits a caller path to one pending mutation.
    """

    def __init__(self, cache: QueryCache, notifier: Notifier | None = None) -> None:
        self._cache = cache
        self._notifier = notifier
        self._pending_by_key: dict[QueryKey, list[Mutation]] = {}
        self._scopes: dict[Hashable, Mutation] = {}
        self._deferred: set[QueryKey] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._confirmed = 0
        self._rolled_back = 0

    def run(
        self,
        remote_call: RemoteCall,
        *,
        patches: Mapping[QueryKey, Patch] | None = None,
        effect: LocalEffect | None = None,
        invalidate: Iterable[QueryKey] = (),
        scope: Hashable | None = None,
        success_message: str | None = None,
        on_success: Callable[[Any], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        notify_errors: bool = True,
    ) -> Mutation:
        """Apply ``patches`` and ``effect`` now; settle ``remote_call`` in the background.

        Raises ``MutationInProgress`` (before touching anything) when
        ``scope`` already has a pending mutation. With ``notify_errors``
        off the caller owns the failure toast, usually through ``on_error``.
        """
        if scope is not None and scope in self._scopes:
            raise MutationInProgress(
                "Please wait for the previous request to finish.",
            )
        patches = dict(patches or {})

        rollback: dict[QueryKey, EntrySnapshot | None] = {}
        try:
            for key, patch in patches.items():
                self._cache.cancel(key)
                rollback[key] = self._cache.snapshot(key)
                self._cache.update(key, patch)
        except Exception:
            for key, snapshot in rollback.items():
                self._cache.restore(key, snapshot)
            raise

        if effect is not None:
            try:
                effect.apply()
            except Exception:
                for key, snapshot in rollback.items():
                    self._cache.restore(key, snapshot)
                raise

        mutation = Mutation(patches, rollback, scope)
        for key in patches:
            self._pending_by_key.setdefault(key, []).append(mutation)
        if scope is not None:
            self._scopes[scope] = mutation

        task = asyncio.get_running_loop().create_task(
            self._settle(
                mutation, remote_call, effect, tuple(invalidate),
                success_message, on_success, on_error, notify_errors,
            )
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return mutation

    async def _settle(
        self,
        mutation: Mutation,
        remote_call: RemoteCall,
        effect: LocalEffect | None,
        invalidate: tuple[QueryKey, ...],
        success_message: str | None,
        on_success: Callable[[Any], None] | None,
        on_error: Callable[[BaseException], None] | None,
        notify_errors: bool,
    ) -> None:
        try:
            result = await remote_call()
        except asyncio.CancelledError as exc:
            try:
                self._rollback(mutation, effect)
                self._rolled_back += 1
                logger.info("Mutation %s cancelled; rolled back.", mutation.id[:8])
            finally:
                mutation._roll_back(exc)
            raise
        except Exception as exc:
            try:
                self._rollback(mutation, effect)
                self._rolled_back += 1
                logger.info("Mutation %s rolled back: %s", mutation.id[:8], exc)
                if notify_errors:
                    safe_notify(self._notifier, "error", error_message(exc))
                if on_error is not None:
                    try:
                        on_error(exc)
                    except Exception:
                        logger.warning("on_error hook failed for %s.", mutation, exc_info=True)
            finally:
                mutation._roll_back(exc)
            return

        # A key still carrying other pending patches is invalidated when the
        # last of them settles.
        freed = self._release(mutation)
        for key in mutation.target_keys:
            if key in freed:
                self._deferred.discard(key)
                self._cache.invalidate(key)
            else:
                self._deferred.add(key)
        for prefix in invalidate:
            self._cache.invalidate(prefix)
        self._confirmed += 1
        if on_success is not None:
            try:
                on_success(result)
            except Exception:
                logger.warning("on_success hook failed for %s.", mutation, exc_info=True)
        safe_notify(self._notifier, "success", success_message)
        mutation._confirm(result)

    def _rollback(self, mutation: Mutation, effect: LocalEffect | None) -> None:
        state = mutation.state
        if not isinstance(state, Pending):
            return
        for key, snapshot in state.rollback.items():
            queue = self._pending_by_key.get(key, [])
            later = queue[queue.index(mutation) + 1:] if mutation in queue else []
            self._cache.restore(key, snapshot)
            for other in later:
                other._rebase(key, self._cache.snapshot(key))
                other_state = other.state
                if isinstance(other_state, Pending):
                    self._cache.update(key, other_state.patches[key])
        for key in self._release(mutation) & self._deferred:
            self._deferred.discard(key)
            self._cache.invalidate(key)
        if effect is not None:
            effect.revert()

    def _release(self, mutation: Mutation) -> set[QueryKey]:
        """Drop ``mutation`` from the pending queues; return keys left with none."""
        freed: set[QueryKey] = set()
        for key in mutation.target_keys:
            queue = self._pending_by_key.get(key)
            if queue and mutation in queue:
                queue.remove(mutation)
            if not queue:
                self._pending_by_key.pop(key, None)
                freed.add(key)
        if mutation.scope is not None and self._scopes.get(mutation.scope) is mutation:
            del self._scopes[mutation.scope]
        return freed

    def pending(self, key: QueryKey) -> tuple[Mutation, ...]:
        return tuple(self._pending_by_key.get(key, ()))

    def is_busy(self, scope: Hashable) -> bool:
        return scope in self._scopes

    def health(self) -> dict[str, object]:
        return {
            "pending_keys": len(self._pending_by_key),
            "pending_scopes": len(self._scopes),
            "confirmed": self._confirmed,
            "rolled_back": self._rolled_back,
        }
