"""Abstract persistence interface for the cart ledger.

Defines the CartStorage Protocol that PersistedCart depends on.
Concrete implementations live in ``campuzon.storages``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CartStorage(Protocol):
    """Synchronous key-value store that survives process restarts.

    ``save`` must be durable when it returns; the cart persists before
    every mutating call completes.
    """

    def load(self, name: str) -> str | None: ...

    def save(self, name: str, blob: str) -> None: ...
