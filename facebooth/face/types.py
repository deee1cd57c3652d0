from __future__ import annotations

import math

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Point:
    x: float
    y: float


def _as_points(landmarks: Any) -> Tuple[Point, ...]:
    if landmarks is None:
        return ()
    arr = np.asarray(landmarks, dtype=np.float32)
    if arr.size == 0:
        return ()
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"landmarks must be (N, 2), got shape {arr.shape}")
    return tuple(Point(float(x), float(y)) for x, y in arr)


def _as_descriptor(descriptor: Any) -> np.ndarray:
    arr = np.asarray(descriptor, dtype=np.float32).reshape(-1)
    if arr.size == 0:
        raise ValueError("descriptor must not be empty")
    if not np.all(np.isfinite(arr)):
        raise ValueError("descriptor contains non-finite values")
    return arr


@dataclass(frozen=True, eq=False)
class Detection:
    """One face as reported by the oracle for a single frame.

    Build through `Detection.create` so the shapes are checked once at the boundary.
    """

    box: Tuple[float, float, float, float]  # x1, y1, x2, y2 in frame coords
    landmarks: Tuple[Point, ...]
    descriptor: np.ndarray  # (D,) float32
    score: float = 1.0

    @classmethod
    def create(
        cls,
        box: Sequence[float],
        landmarks: Any,
        descriptor: Any,
        score: float = 1.0,
    ) -> "Detection":
        b = [float(v) for v in np.asarray(box, dtype=np.float32).reshape(-1)]
        if len(b) != 4:
            raise ValueError(f"box must have 4 values, got {len(b)}")
        desc = _as_descriptor(descriptor)
        desc.setflags(write=False)
        return cls(
            box=(b[0], b[1], b[2], b[3]),
            landmarks=_as_points(landmarks),
            descriptor=desc,
            score=float(score),
        )

    @property
    def landmarks_array(self) -> np.ndarray:
        return np.asarray([(p.x, p.y) for p in self.landmarks], dtype=np.float32).reshape(-1, 2)

    def scaled(self, sx: float, sy: float) -> "Detection":
        """Geometry rescaled by (sx, sy); the descriptor is shared."""
        x1, y1, x2, y2 = self.box
        return Detection(
            box=(x1 * sx, y1 * sy, x2 * sx, y2 * sy),
            landmarks=tuple(Point(p.x * sx, p.y * sy) for p in self.landmarks),
            descriptor=self.descriptor,
            score=self.score,
        )


@dataclass(frozen=True)
class Sample:
    landmarks: Tuple[Point, ...]
    descriptor: Tuple[float, ...]
    timestamp: int  # ms since epoch

    @classmethod
    def from_detection(cls, detection: Detection, timestamp: int) -> "Sample":
        return cls(
            landmarks=tuple(detection.landmarks),
            descriptor=tuple(float(v) for v in detection.descriptor),
            timestamp=int(timestamp),
        )

    def descriptor_array(self) -> np.ndarray:
        return np.asarray(self.descriptor, dtype=np.float32)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LabelRecord:
    label: str
    samples: Tuple[Sample, ...]
    collected_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        # Allow callers to pass a list.
        object.__setattr__(self, "samples", tuple(self.samples))


@dataclass(frozen=True)
class MatchResult:
    label: str
    distance: float
    is_unknown: bool = False

    def __str__(self) -> str:
        # Same rendering as the overlay label: "alice (0.42)"
        d = self.distance
        return f"{self.label} ({d:.2f})" if math.isfinite(d) else f"{self.label}"


@dataclass
class CollectionSession:
    """Samples gathered for one label; owned by the collector while active."""

    label: str
    target: int
    samples: list = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.samples)

    @property
    def complete(self) -> bool:
        return len(self.samples) >= self.target

    def append(self, sample: Sample) -> None:
        if self.complete:
            raise RuntimeError(f"session for {self.label!r} already holds {self.target} samples")
        self.samples.append(sample)

    def to_record(self, collected_at: Optional[datetime] = None) -> LabelRecord:
        return LabelRecord(
            label=self.label,
            samples=tuple(self.samples),
            collected_at=collected_at or utc_now(),
        )


class FaceOracle(ABC):
    """Face detection + landmarks + descriptor, treated as a black box."""

    @abstractmethod
    def detect_all(self, frame: np.ndarray) -> Sequence[Detection]:
        """Return every face found in `frame`, in the model's own order."""
