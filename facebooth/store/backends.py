"""Key-value backends for the label store.

A backend stores str -> str and must make `set` atomic per key: after a failed
write the previous value (or absence) is still what `get` returns.
"""

from __future__ import annotations

import errno
import json
import os
import tempfile
import threading

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from facebooth.errors import CorruptStoreError, StorageQuotaError
from facebooth.utils.log import get_logger

logger = get_logger(__name__)


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class KeyValueBackend(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value; raise StorageQuotaError when the store refuses it."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key; return whether it existed."""

    @abstractmethod
    def keys(self) -> Iterator[str]:
        """Iterate keys in store order."""


class MemoryBackend(KeyValueBackend):
    """Dict-backed store with an optional byte capacity (like a browser's localStorage quota)."""

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = None if max_bytes is None else int(max_bytes)
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _used_bytes(self, exclude: Optional[str] = None) -> int:
        return sum(_entry_size(k, v) for k, v in self._data.items() if k != exclude)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            if self.max_bytes is not None:
                needed = self._used_bytes(exclude=key) + _entry_size(key, value)
                if needed > self.max_bytes:
                    raise StorageQuotaError(
                        f"writing {key!r} needs {needed} bytes, capacity is {self.max_bytes}"
                    )
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> Iterator[str]:
        with self._lock:
            snapshot = list(self._data.keys())
        return iter(snapshot)


class JsonFileBackend(KeyValueBackend):
    """All keys in one JSON object on disk.

    Writes go to a temp file in the same directory and are moved into place with
    os.replace, so a crash or a full disk leaves the previous file intact.
    """

    def __init__(self, path: Union[str, Path], max_bytes: Optional[int] = None):
        self.path = Path(path)
        self.max_bytes = None if max_bytes is None else int(max_bytes)
        self._lock = threading.RLock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                text = f.read()
            if not text.strip():
                return {}
            data = json.loads(text)
        except (ValueError, RecursionError) as e:
            raise CorruptStoreError(f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CorruptStoreError(f"{self.path} does not contain a JSON object")
        # Values are opaque strings; anything else is left for the caller to reject.
        return data

    def _write(self, data: Dict[str, str]) -> None:
        payload = json.dumps(data, ensure_ascii=False, indent=1)
        if self.max_bytes is not None:
            size = len(payload.encode("utf-8"))
            if size > self.max_bytes:
                raise StorageQuotaError(f"store would grow to {size} bytes, capacity is {self.max_bytes}")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            if e.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
                raise StorageQuotaError(f"no space left writing {self.path}: {e}") from e
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return value

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)
            logger.debug(f"wrote {key} -> {self.path}")

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._read()
            if key not in data:
                return False
            del data[key]
            self._write(data)
            return True

    def keys(self) -> Iterator[str]:
        with self._lock:
            snapshot = list(self._read().keys())
        return iter(snapshot)
