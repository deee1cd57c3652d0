"""Exception taxonomy shared by the collector, label store and matcher."""


class FaceBoothError(Exception):
    """Base class for all facebooth errors."""


class InvalidLabelError(FaceBoothError, ValueError):
    """Label is empty or malformed; raised before any state change."""


class StorageQuotaError(FaceBoothError):
    """The backing store rejected a write. Nothing was committed."""


class NotFoundError(FaceBoothError, KeyError):
    """No record is stored under the requested label."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""


class EmptyStoreError(FaceBoothError):
    """Recognition cannot start because the store holds no usable label."""


class CorruptRecordError(FaceBoothError):
    """A stored value could not be decoded into a LabelRecord."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"corrupt record {key!r}: {reason}")
        self.key = key
        self.reason = reason


class CorruptStoreError(FaceBoothError, ValueError):
    """The backing file as a whole is unreadable (not JSON, or not a JSON object)."""
