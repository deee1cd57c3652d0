from __future__ import annotations

import threading
import time

from enum import Enum
from typing import Callable, Optional, Tuple

from facebooth.errors import StorageQuotaError
from facebooth.face.types import CollectionSession, Detection, LabelRecord, Sample
from facebooth.store.label_store import LabelStore, validate_label
from facebooth.utils.log import get_logger

logger = get_logger(__name__)


class CollectorState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    FLUSHING = "flushing"


def _now_ms() -> int:
    return int(time.time() * 1000)


class SampleCollector:
    """Collects `target` samples for one label, then writes them to the store.

    IDLE -> COLLECTING (start) -> FLUSHING (target reached) -> IDLE.

    Only the detection handed to `on_detection` is sampled. The acquisition loop
    passes the first face of each frame; with several people in view the samples
    may come from different faces. This is a known limitation of a single-subject
    capture booth.
    """

    def __init__(
        self,
        store: LabelStore,
        target: int = 30,
        clock: Callable[[], int] = _now_ms,
    ):
        if int(target) <= 0:
            raise ValueError(f"target must be > 0, got {target}")
        self.store = store
        self.target = int(target)
        self._clock = clock
        self._state = CollectorState.IDLE
        self._session: Optional[CollectionSession] = None
        self._last_ts = 0
        # Bumped on every start/stop so callers can tell sessions apart.
        self._generation = 0
        self._lock = threading.RLock()

    @property
    def state(self) -> CollectorState:
        return self._state

    @property
    def label(self) -> Optional[str]:
        session = self._session
        return session.label if session is not None else None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def progress(self) -> Tuple[int, int]:
        session = self._session
        return (session.count if session is not None else 0, self.target)

    def start(self, label: str) -> None:
        validate_label(label)
        with self._lock:
            if self._session is not None:
                logger.info(f"Discarding unfinished session for {self._session.label} ({self._session.count} samples)")
            self._session = CollectionSession(label=label, target=self.target)
            self._last_ts = 0
            self._generation += 1
            self._state = CollectorState.COLLECTING
        logger.info(f"Started collecting data for {label}")

    def stop(self) -> None:
        """Abandon the current session without writing anything."""
        with self._lock:
            if self._session is not None and self._state == CollectorState.COLLECTING:
                logger.info(f"Stopped collecting for {self._session.label} at {self._session.count}/{self.target}")
            self._session = None
            self._generation += 1
            self._state = CollectorState.IDLE

    def on_detection(self, detection: Optional[Detection], generation: Optional[int] = None) -> Optional[LabelRecord]:
        """Feed one detection; returns the written record when this sample completed the session.

        `generation` is the value of `self.generation` when the frame was captured;
        a detection from an earlier session is dropped.
        """
        with self._lock:
            if self._state != CollectorState.COLLECTING or detection is None:
                return None
            if generation is not None and generation != self._generation:
                logger.debug("dropping detection from a previous session")
                return None
            session = self._session
            if session is None or session.complete:
                return None

            # Keep timestamps non-decreasing within a session even if the wall clock steps back.
            ts = max(int(self._clock()), self._last_ts)
            self._last_ts = ts
            session.append(Sample.from_detection(detection, ts))
            logger.info(f"Collected sample {session.count}/{self.target}")

            if not session.complete:
                return None
            return self._flush(session)

    def _flush(self, session: CollectionSession) -> LabelRecord:
        self._state = CollectorState.FLUSHING
        record = session.to_record()
        try:
            self.store.put(session.label, record)
        except StorageQuotaError:
            logger.error(f"Could not save face data for {session.label}: storage quota exceeded")
            raise
        finally:
            self._session = None
            self._state = CollectorState.IDLE
        return record
