from __future__ import annotations

import sys

from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facebooth.errors import InvalidLabelError, StorageQuotaError
from facebooth.face.collector import CollectorState, SampleCollector
from facebooth.face.types import Detection, LabelRecord, Point, Sample
from facebooth.store import LabelStore, MemoryBackend


def _det(*descriptor: float) -> Detection:
    return Detection.create(
        box=[10, 20, 110, 140],
        landmarks=[[30.0, 50.0], [80.0, 50.0], [55.0, 90.0]],
        descriptor=list(descriptor),
        score=0.9,
    )


class _Clock:
    def __init__(self, *values: int):
        self.values = list(values)
        self.calls = 0

    def __call__(self) -> int:
        v = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return v


@pytest.mark.parametrize("label", ["Alice", "李雷", "x", "Mary Ann"])
def test_full_session_writes_exactly_one_record(label: str):
    store = LabelStore()
    collector = SampleCollector(store, target=3)

    collector.start(label)
    assert collector.state == CollectorState.COLLECTING
    assert collector.on_detection(_det(0.0, 1.0)) is None
    assert collector.on_detection(_det(0.5, 1.5)) is None
    assert collector.progress == (2, 3)

    record = collector.on_detection(_det(1.0, 2.0))

    assert isinstance(record, LabelRecord)
    assert collector.state == CollectorState.IDLE
    assert collector.progress == (0, 3)
    assert store.labels() == [label]
    stored = store.get(label)
    assert len(stored.samples) == 3
    assert [s.descriptor for s in stored.samples] == [(0.0, 1.0), (0.5, 1.5), (1.0, 2.0)]


def test_sample_carries_landmarks_and_timestamp():
    collector = SampleCollector(LabelStore(), target=5, clock=_Clock(1234))
    collector.start("Alice")
    collector.on_detection(_det(0.25, 0.75))

    sample = collector._session.samples[0]
    assert isinstance(sample, Sample)
    assert sample.landmarks == (Point(30.0, 50.0), Point(80.0, 50.0), Point(55.0, 90.0))
    assert sample.timestamp == 1234


def test_timestamps_never_go_backwards():
    store = LabelStore()
    collector = SampleCollector(store, target=3, clock=_Clock(1000, 900, 1100))
    collector.start("A")
    for _ in range(3):
        collector.on_detection(_det(0.0))
    assert [s.timestamp for s in store.get("A").samples] == [1000, 1000, 1100]


def test_no_face_and_idle_ticks_are_ignored():
    store = LabelStore()
    collector = SampleCollector(store, target=2)

    assert collector.on_detection(_det(1.0)) is None
    assert collector.state == CollectorState.IDLE

    collector.start("A")
    assert collector.on_detection(None) is None
    assert collector.progress == (0, 2)
    assert store.labels() == []


@pytest.mark.parametrize("bad", ["", "   ", "a\nb", None, 42])
def test_invalid_label_is_rejected_without_state_change(bad):
    store = LabelStore()
    collector = SampleCollector(store, target=2)
    collector.start("Alice")
    collector.on_detection(_det(0.0))
    collector.on_detection(_det(1.0))
    before = store.get("Alice")

    collector.start("Bob")
    collector.on_detection(_det(5.0))

    with pytest.raises(InvalidLabelError):
        collector.start(bad)

    # the running session is untouched and the earlier record survives
    assert collector.state == CollectorState.COLLECTING
    assert collector.label == "Bob"
    assert collector.progress == (1, 2)
    assert store.get("Alice").samples == before.samples


def test_restart_discards_unfinished_buffer():
    store = LabelStore()
    collector = SampleCollector(store, target=2)
    collector.start("A")
    collector.on_detection(_det(9.0))

    collector.start("B")
    assert collector.progress == (0, 2)
    collector.on_detection(_det(1.0))
    collector.on_detection(_det(2.0))

    assert store.labels() == ["B"]
    assert [s.descriptor for s in store.get("B").samples] == [(1.0,), (2.0,)]


def test_stop_abandons_session():
    store = LabelStore()
    collector = SampleCollector(store, target=2)
    collector.start("A")
    collector.on_detection(_det(1.0))
    collector.stop()

    assert collector.state == CollectorState.IDLE
    assert collector.on_detection(_det(2.0)) is None
    assert store.labels() == []


def test_detection_from_earlier_session_is_dropped():
    store = LabelStore()
    collector = SampleCollector(store, target=2)
    collector.start("A")
    stale = collector.generation
    collector.stop()
    collector.start("B")

    assert collector.on_detection(_det(9.0), stale) is None
    assert collector.progress == (0, 2)
    collector.on_detection(_det(1.0), collector.generation)
    assert collector.progress == (1, 2)


def test_count_never_exceeds_target():
    store = LabelStore()
    collector = SampleCollector(store, target=2)
    collector.start("A")
    for i in range(5):
        collector.on_detection(_det(float(i)))
    assert len(store.get("A").samples) == 2


def test_quota_error_propagates_and_resets_to_idle():
    store = LabelStore(MemoryBackend(max_bytes=16))
    collector = SampleCollector(store, target=2)
    collector.start("A")
    collector.on_detection(_det(1.0))

    with pytest.raises(StorageQuotaError):
        collector.on_detection(_det(2.0))

    assert collector.state == CollectorState.IDLE
    assert store.labels() == []


def test_target_must_be_positive():
    with pytest.raises(ValueError):
        SampleCollector(LabelStore(), target=0)
