"""In-process CartStorage, for tests and ephemeral sessions."""

from __future__ import annotations


class MemoryCartStorage:
    """Dict-backed storage. Survives ``PersistedCart`` re-creation, not the process."""

    def __init__(self, records: dict[str, str] | None = None) -> None:
        self.records: dict[str, str] = dict(records or {})

    def load(self, name: str) -> str | None:
        return self.records.get(name)

    def save(self, name: str, blob: str) -> None:
        self.records[name] = blob
