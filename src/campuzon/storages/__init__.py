"""Concrete CartStorage backends."""

from campuzon.storages.file import FileCartStorage
from campuzon.storages.memory import MemoryCartStorage

__all__ = ["FileCartStorage", "MemoryCartStorage"]
