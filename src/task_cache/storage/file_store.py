from __future__ import annotations

import logging
import os
import typing as t
from pathlib import Path
from urllib.parse import quote, unquote

from task_cache.core.errors import QuotaExceededError

from .base import PersistentStore

_logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class FileStore(PersistentStore):
    """One file per key under a directory, bounded by a total byte quota.

    File names are the percent-encoded key, so any key round-trips.
    """

    def __init__(self, directory: t.Union[str, Path], quota_bytes: int = 5 * 1024 * 1024) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._quota = quota_bytes

    def _path(self, key: str) -> Path:
        return self._dir / (quote(key, safe="") + _SUFFIX)

    def _files(self) -> t.List[Path]:
        return [p for p in self._dir.iterdir() if p.is_file() and p.name.endswith(_SUFFIX)]

    def _used_bytes(self, exclude: t.Optional[Path] = None) -> int:
        total = 0
        for path in self._files():
            if path == exclude:
                continue
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
        return total

    async def get_item(self, key: str) -> t.Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    async def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        encoded = value.encode("utf-8")
        needed = self._used_bytes(exclude=path) + len(encoded)
        if needed > self._quota:
            raise QuotaExceededError(key, needed, self._quota)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(encoded)
        os.replace(tmp, path)

    async def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    async def keys(self) -> t.List[str]:
        return [unquote(p.name[: -len(_SUFFIX)]) for p in self._files()]

    async def is_healthy(self) -> bool:
        try:
            return self._dir.is_dir() and os.access(self._dir, os.W_OK)
        except OSError as exc:
            _logger.warning("file store health check failed: %s", exc)
            return False
