"""Persistent label store.

- Key-value backends (in-memory, single JSON file)
- `LabelStore`: label -> LabelRecord over a namespaced key space
"""

from __future__ import annotations

from .backends import JsonFileBackend, KeyValueBackend, MemoryBackend
from .label_store import DEFAULT_KEY_PREFIX, LabelStore

__all__ = [
    "DEFAULT_KEY_PREFIX",
    "JsonFileBackend",
    "KeyValueBackend",
    "LabelStore",
    "MemoryBackend",
]
