from __future__ import annotations

import json

from typing import Iterator, List, Optional

from facebooth.errors import CorruptRecordError, InvalidLabelError, NotFoundError
from facebooth.face.types import LabelRecord
from facebooth.store.backends import KeyValueBackend, MemoryBackend
from facebooth.utils.log import get_logger
from facebooth.utils.serializer import dumps_record, loads_record, serialize_record

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "faceData_"


def validate_label(label) -> str:
    """Return the label unchanged if usable, else raise InvalidLabelError."""
    if not isinstance(label, str):
        raise InvalidLabelError(f"label must be a string, got {type(label).__name__}")
    if not label.strip():
        raise InvalidLabelError("label must not be empty")
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in label):
        raise InvalidLabelError(f"label contains control characters: {label!r}")
    return label


class LabelStore:
    """label -> LabelRecord over a key-value backend.

    Every key is `<prefix><label>`; keys without the prefix belong to someone else
    and are never read or touched. Writes are last-write-wins per label.
    """

    def __init__(self, backend: Optional[KeyValueBackend] = None, prefix: str = DEFAULT_KEY_PREFIX):
        if not prefix:
            raise ValueError("prefix must not be empty")
        self.backend = backend if backend is not None else MemoryBackend()
        self.prefix = str(prefix)

    def key_for(self, label: str) -> str:
        return f"{self.prefix}{label}"

    def _decode(self, key: str, raw) -> LabelRecord:
        if not isinstance(raw, str):
            raise CorruptRecordError(key, f"value is {type(raw).__name__}, expected JSON text")
        try:
            record = loads_record(raw)
        except (ValueError, KeyError, TypeError, OverflowError, RecursionError) as e:
            # json.JSONDecodeError is a ValueError
            raise CorruptRecordError(key, str(e) or type(e).__name__) from e
        expected = key[len(self.prefix):]
        if record.label != expected:
            raise CorruptRecordError(key, f"name {record.label!r} does not match key")
        return record

    def put(self, label: str, record: LabelRecord) -> None:
        """Store `record` under `label`, replacing any previous record.

        The record is fully encoded before the backend is touched, and the backend
        write is a single call, so on failure (StorageQuotaError included) the
        previous state is kept.
        """
        validate_label(label)
        if record.label != label:
            record = LabelRecord(label=label, samples=record.samples, collected_at=record.collected_at)
        payload = dumps_record(record)
        self.backend.set(self.key_for(label), payload)
        logger.info(f"Saved face data for {label} ({len(record.samples)} samples)")

    def get(self, label: str) -> LabelRecord:
        key = self.key_for(label)
        raw = self.backend.get(key)
        if raw is None:
            raise NotFoundError(f"no face data stored for {label!r}")
        return self._decode(key, raw)

    def get_all(self) -> Iterator[LabelRecord]:
        """Lazily yield every decodable record in backend order; corrupt entries are skipped."""
        for key in self.backend.keys():
            if not key.startswith(self.prefix):
                continue
            raw = self.backend.get(key)
            if raw is None:
                # deleted between keys() and get()
                continue
            try:
                record = self._decode(key, raw)
            except CorruptRecordError as e:
                logger.warning(f"skipping {e}")
                continue
            yield record

    def delete(self, label: str) -> None:
        if not self.backend.delete(self.key_for(label)):
            raise NotFoundError(f"no face data stored for {label!r}")
        logger.info(f"Deleted face data for {label}")

    def labels(self) -> List[str]:
        return [k[len(self.prefix):] for k in self.backend.keys() if k.startswith(self.prefix)]

    def __contains__(self, label: object) -> bool:
        return isinstance(label, str) and self.backend.get(self.key_for(label)) is not None

    def __len__(self) -> int:
        return len(self.labels())


def dump_store(store: LabelStore) -> str:
    """All decodable records as one JSON document (for export/backup)."""
    return json.dumps([serialize_record(r) for r in store.get_all()], ensure_ascii=False, indent=2)
