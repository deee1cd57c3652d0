"""JSON encoding of label records.

Stored shape (one value per label):

    {
      "name": "alice",
      "samples": [
        {"landmarks": [{"x": 1.0, "y": 2.0}, ...], "descriptor": [0.1, ...], "timestamp": 1700000000000}
      ],
      "dateCollected": "2024-01-01T12:00:00.000Z"
    }
"""

from __future__ import annotations

import json
import math

from datetime import datetime, timezone
from typing import Any, Dict, List

import numpy as np

from facebooth.face.types import LabelRecord, Point, Sample


def format_timestamp(dt: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(text: str) -> datetime:
    if not isinstance(text, str):
        raise ValueError(f"dateCollected must be a string, got {type(text).__name__}")
    s = text.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def serialize_sample(sample: Sample) -> Dict[str, Any]:
    return {
        "landmarks": [{"x": float(p.x), "y": float(p.y)} for p in sample.landmarks],
        "descriptor": [float(v) for v in sample.descriptor],
        "timestamp": int(sample.timestamp),
    }


def serialize_record(record: LabelRecord) -> Dict[str, Any]:
    return {
        "name": str(record.label),
        "samples": [serialize_sample(s) for s in record.samples],
        "dateCollected": format_timestamp(record.collected_at),
    }


def _parse_descriptor(raw: Any) -> List[float]:
    # Browsers JSON-encode a Float32Array as {"0": v0, "1": v1, ...}.
    if isinstance(raw, dict):
        try:
            items = sorted(raw.items(), key=lambda kv: int(kv[0]))
        except (TypeError, ValueError):
            raise ValueError("descriptor object keys must be indices")
        raw = [v for _, v in items]
    if not isinstance(raw, list) or not raw:
        raise ValueError("descriptor must be a non-empty array")
    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in raw):
        raise ValueError("descriptor elements must be numbers")
    arr = np.asarray(raw, dtype=np.float64)
    if arr.ndim != 1 or not np.all(np.isfinite(arr)):
        raise ValueError("descriptor must be a flat array of finite numbers")
    return [float(v) for v in arr]


def _parse_landmarks(raw: Any) -> List[Point]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("landmarks must be an array")
    out: List[Point] = []
    for p in raw:
        if isinstance(p, dict):
            out.append(Point(float(p["x"]), float(p["y"])))
        elif isinstance(p, (list, tuple)) and len(p) == 2:
            out.append(Point(float(p[0]), float(p[1])))
        else:
            raise ValueError(f"bad landmark point: {p!r}")
    return out


def deserialize_sample(raw: Any) -> Sample:
    if not isinstance(raw, dict):
        raise ValueError("sample must be an object")
    ts = raw.get("timestamp")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        raise ValueError("sample timestamp must be a number")
    if not math.isfinite(ts):
        raise ValueError(f"sample timestamp must be finite, got {ts}")
    return Sample(
        landmarks=tuple(_parse_landmarks(raw.get("landmarks"))),
        descriptor=tuple(_parse_descriptor(raw.get("descriptor"))),
        timestamp=int(ts),
    )


def deserialize_record(data: Any) -> LabelRecord:
    """Inverse of `serialize_record`. Raises ValueError/KeyError/TypeError on bad input."""
    if not isinstance(data, dict):
        raise ValueError("record must be an object")
    name = data["name"]
    if not isinstance(name, str) or not name:
        raise ValueError("record name must be a non-empty string")
    samples = data["samples"]
    if not isinstance(samples, list):
        raise ValueError("samples must be an array")
    return LabelRecord(
        label=name,
        samples=tuple(deserialize_sample(s) for s in samples),
        collected_at=parse_timestamp(data["dateCollected"]),
    )


def dumps_record(record: LabelRecord) -> str:
    # allow_nan=False: NaN/Infinity are not JSON and would not load elsewhere.
    return json.dumps(serialize_record(record), ensure_ascii=False, allow_nan=False)


def loads_record(text: str) -> LabelRecord:
    return deserialize_record(json.loads(text))
