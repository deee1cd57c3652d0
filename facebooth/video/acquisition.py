from __future__ import annotations

import threading
import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from facebooth.config import BoothConfig
from facebooth.errors import StorageQuotaError
from facebooth.face.collector import CollectorState, SampleCollector
from facebooth.face.matcher import MatcherIndex, build_matcher
from facebooth.face.types import Detection, FaceOracle, LabelRecord, MatchResult
from facebooth.store.label_store import LabelStore
from facebooth.utils.log import get_logger

logger = get_logger(__name__)


class LoopMode(str, Enum):
    IDLE = "idle"
    COLLECT = "collect"
    RECOGNIZE = "recognize"


@dataclass
class TickResult:
    mode: LoopMode
    detections: List[Detection] = field(default_factory=list)
    matches: List[MatchResult] = field(default_factory=list)
    # Set on the tick whose sample completed a collection session.
    record: Optional[LabelRecord] = None
    error: Optional[Exception] = None
    # True when the tick was dropped because the previous one was still running.
    skipped: bool = False


class AcquisitionLoop:
    """Periodic frame -> oracle -> collector/matcher pipeline.

    At most one tick runs at a time: a tick that fires while the previous one is
    still waiting on the camera or the model is dropped, not queued. Mode and
    collector state are re-read at the top of every tick, so `stop_mode()` takes
    effect on the next tick without cancelling anything in flight.
    """

    def __init__(
        self,
        source,
        oracle: FaceOracle,
        store: LabelStore,
        config: Optional[BoothConfig] = None,
        canvas=None,
        on_collected: Optional[Callable[[LabelRecord], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.config = config or BoothConfig()
        self.source = source
        self.oracle = oracle
        self.store = store
        self.canvas = canvas
        self.on_collected = on_collected
        self.on_error = on_error
        self.collector = SampleCollector(store, target=self.config.required_samples)

        self.last_error: Optional[Exception] = None
        self.tick_count = 0

        self._mode = LoopMode.IDLE
        self._matcher: Optional[MatcherIndex] = None
        self._state_lock = threading.RLock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._scheduler: Optional[threading.Thread] = None

    # ---- mode control -------------------------------------------------------------

    @property
    def mode(self) -> LoopMode:
        return self._mode

    @property
    def matcher(self) -> Optional[MatcherIndex]:
        return self._matcher

    def start_collection(self, label: str) -> None:
        """Begin a labeled session; InvalidLabelError leaves the current mode untouched."""
        with self._state_lock:
            self.collector.start(label)
            self._matcher = None
            self._mode = LoopMode.COLLECT
            self.last_error = None

    def start_recognition(self) -> MatcherIndex:
        """Index the store and switch to recognition; EmptyStoreError leaves the mode untouched."""
        matcher = build_matcher(
            self.store,
            threshold=self.config.match_threshold,
            unknown_label=self.config.unknown_label,
        )
        with self._state_lock:
            self.collector.stop()
            self._matcher = matcher
            self._mode = LoopMode.RECOGNIZE
        logger.info("Face recognition model trained and ready")
        return matcher

    def stop_mode(self) -> None:
        with self._state_lock:
            self.collector.stop()
            self._matcher = None
            self._mode = LoopMode.IDLE

    def status_text(self) -> str:
        mode = self._mode
        if mode == LoopMode.COLLECT:
            done, target = self.collector.progress
            return f"Collecting {self.collector.label}: {done}/{target}"
        if mode == LoopMode.RECOGNIZE and self._matcher is not None:
            return f"Recognizing ({len(self._matcher.labels)} labels)"
        return ""

    # ---- one tick -----------------------------------------------------------------

    def tick(self) -> TickResult:
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("previous tick still running, skipping")
            return TickResult(mode=self._mode, skipped=True)
        try:
            self.tick_count += 1
            return self._run_tick()
        finally:
            self._tick_lock.release()

    def _read_frame(self) -> Optional[np.ndarray]:
        try:
            return self.source.read()
        except Exception as e:
            logger.warning(f"frame acquisition failed: {e}")
            return None

    def _detect(self, frame: np.ndarray) -> List[Detection]:
        try:
            return list(self.oracle.detect_all(frame) or [])
        except Exception as e:
            logger.warning(f"face detection failed: {e}")
            return []

    def _run_tick(self) -> TickResult:
        with self._state_lock:
            mode = self._mode
            matcher = self._matcher
            generation = self.collector.generation

        frame = self._read_frame()
        detections = self._detect(frame) if frame is not None else []
        result = TickResult(mode=mode, detections=detections)
        labels: Optional[List[str]] = None

        if mode == LoopMode.COLLECT:
            self._route_collect(detections, result, generation)
        elif mode == LoopMode.RECOGNIZE and matcher is not None and detections:
            try:
                result.matches = matcher.match_all(d.descriptor for d in detections)
                labels = [str(m) for m in result.matches]
            except ValueError as e:
                # e.g. the store was built with a different model (descriptor size)
                logger.warning(f"matching failed: {e}")

        if self.canvas is not None and frame is not None:
            self.canvas.render(frame, detections, labels, status=self.status_text())
        return result

    def _route_collect(self, detections: List[Detection], result: TickResult, generation: int) -> None:
        # One sample per tick, from the first face only.
        first = detections[0] if detections else None
        try:
            record = self.collector.on_detection(first, generation)
        except StorageQuotaError as e:
            self.last_error = e
            result.error = e
            self._leave_collect()
            if self.on_error is not None:
                self.on_error(e)
            return

        if self.collector.state == CollectorState.IDLE:
            self._leave_collect()
        if record is not None:
            result.record = record
            if self.on_collected is not None:
                self.on_collected(record)

    def _leave_collect(self) -> None:
        with self._state_lock:
            if self._mode == LoopMode.COLLECT and self.collector.state == CollectorState.IDLE:
                self._mode = LoopMode.IDLE

    # ---- scheduling ---------------------------------------------------------------

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            logger.exception("acquisition tick failed")

    def _schedule(self) -> None:
        period = self.config.capture_interval_sec
        next_at = time.monotonic()
        while not self._stop_event.is_set():
            # Each tick gets its own thread so a hung model call cannot delay the
            # schedule; overlapping ticks are dropped by the tick lock.
            threading.Thread(target=self._safe_tick, name="facebooth-tick", daemon=True).start()
            next_at += period
            delay = next_at - time.monotonic()
            if delay < 0:
                next_at = time.monotonic()
                delay = 0.0
            self._stop_event.wait(delay)

    def start(self) -> None:
        """Run ticks every `capture_interval_ms` on background threads."""
        if self._scheduler is not None and self._scheduler.is_alive():
            return
        self._stop_event.clear()
        self._scheduler = threading.Thread(target=self._schedule, name="facebooth-scheduler", daemon=True)
        self._scheduler.start()
        logger.info(f"Acquisition started, every {self.config.capture_interval_ms} ms")

    def stop(self, timeout: Optional[float] = 2.0) -> None:
        self._stop_event.set()
        if self._scheduler is not None:
            self._scheduler.join(timeout)
            self._scheduler = None
        logger.info("Acquisition stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_alive()

    def run(
        self,
        max_ticks: Optional[int] = None,
        after_tick: Optional[Callable[[TickResult], bool]] = None,
    ) -> int:
        """Blocking loop on the calling thread; returns the number of ticks run.

        `after_tick` returning False ends the loop, as does `stop()` from another thread.
        """
        self._stop_event.clear()
        period = self.config.capture_interval_sec
        n = 0
        while not self._stop_event.is_set():
            started = time.monotonic()
            result = self.tick()
            n += 1
            if after_tick is not None and after_tick(result) is False:
                break
            if max_ticks is not None and n >= max_ticks:
                break
            remaining = period - (time.monotonic() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)
        return n
