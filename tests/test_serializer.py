from __future__ import annotations

import json
import sys

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facebooth.face.types import LabelRecord, Point, Sample
from facebooth.utils.serializer import (
    deserialize_record,
    dumps_record,
    format_timestamp,
    loads_record,
    parse_timestamp,
)


def test_timestamp_format_matches_browser_iso_strings():
    dt = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
    assert format_timestamp(dt) == "2024-01-02T03:04:05.678Z"


def test_naive_and_offset_datetimes_are_written_as_utc():
    assert format_timestamp(datetime(2024, 1, 1, 0, 0, 0)) == "2024-01-01T00:00:00.000Z"
    plus2 = timezone(timedelta(hours=2))
    assert format_timestamp(datetime(2024, 1, 1, 2, 0, 0, tzinfo=plus2)) == "2024-01-01T00:00:00.000Z"


def test_parse_timestamp_accepts_z_suffix():
    assert parse_timestamp("2024-01-02T03:04:05.678Z") == datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)


def test_record_text_roundtrip():
    rec = LabelRecord(
        label="Zoë",
        samples=(Sample((Point(1.5, 2.5),), (0.125, -3.0), 1700000000000),),
        collected_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    text = dumps_record(rec)
    assert "Zoë" in text  # stored as readable UTF-8
    assert loads_record(text) == rec


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"name": "", "samples": [], "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": {}, "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": [], "dateCollected": "yesterday"},
        {"name": "a", "samples": [{"descriptor": [], "timestamp": 1}], "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": [{"descriptor": [1, "x"], "timestamp": 1}], "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": [{"descriptor": [1.0], "timestamp": "now"}], "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": [{"descriptor": [1.0], "timestamp": 1, "landmarks": [[1, 2, 3]]}], "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": [{"descriptor": ["0.1", "0.2"], "timestamp": 1}], "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": [{"descriptor": [True, 0.5], "timestamp": 1}], "dateCollected": "2024-01-01T00:00:00Z"},
        {"name": "a", "samples": [{"descriptor": {"0": "0.1"}, "timestamp": 1}], "dateCollected": "2024-01-01T00:00:00Z"},
    ],
)
def test_malformed_records_are_rejected(data):
    with pytest.raises((ValueError, KeyError, TypeError)):
        deserialize_record(json.loads(json.dumps(data)))


@pytest.mark.parametrize("ts", ["Infinity", "-Infinity", "NaN", "1e400"])
def test_non_finite_timestamp_is_rejected(ts):
    text = '{"name": "a", "samples": [{"descriptor": [1.0], "timestamp": %s}], "dateCollected": "2024-01-01T00:00:00Z"}' % ts
    with pytest.raises(ValueError):
        loads_record(text)
