"""FileCartStorage — CartStorage backed by one JSON file per record.

Writes go to a temporary sibling file which is fsynced and then moved
over the target with ``os.replace``, so a crash mid-write leaves either
the old record or the new one, never a torn file.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class FileCartStorage:
    """Durable storage rooted at ``directory`` (created on first save)."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self._directory / f"{_UNSAFE.sub('_', name)}.json"

    def load(self, name: str) -> str | None:
        """Return the stored blob, or None when the record does not exist."""
        path = self._path(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Failed to read cart record %s.", path)
            return None

    def save(self, name: str, blob: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(name)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._directory, prefix=f".{path.stem}-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(blob)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
