from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List

import numpy as np

from facebooth.errors import EmptyStoreError
from facebooth.face.types import LabelRecord, MatchResult
from facebooth.store.label_store import LabelStore
from facebooth.utils.log import get_logger
from facebooth.utils.math import euclidean_distances

logger = get_logger(__name__)


@dataclass
class MatcherConfig:
    # Max Euclidean distance for a positive match; beyond it the face is unknown.
    threshold: float = 1.1
    unknown_label: str = "unknown"


class MatcherIndex:
    """Read-only nearest-neighbour index over every stored descriptor.

    Flattened layout:
    - matrix: (N, D) float32, one row per stored sample
    - label_ids: (N,) int32, row -> index into `labels`
    Rows keep store iteration order, so `np.argmin` breaks distance ties in favour
    of the vector seen first.
    """

    def __init__(self, labels: List[str], matrix: np.ndarray, label_ids: np.ndarray, config: MatcherConfig):
        self.config = config
        self._labels = list(labels)
        self._matrix = np.ascontiguousarray(matrix, dtype=np.float32)
        self._label_ids = np.asarray(label_ids, dtype=np.int32)
        self._matrix.setflags(write=False)
        self._label_ids.setflags(write=False)

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    @property
    def size(self) -> int:
        return int(self._matrix.shape[0])

    @property
    def dim(self) -> int:
        return int(self._matrix.shape[1])

    @property
    def threshold(self) -> float:
        return float(self.config.threshold)

    def match(self, descriptor) -> MatchResult:
        dists = euclidean_distances(self._matrix, descriptor)
        best = int(np.argmin(dists))
        best_dist = float(dists[best])
        if best_dist > self.threshold:
            return MatchResult(label=self.config.unknown_label, distance=best_dist, is_unknown=True)
        return MatchResult(label=self._labels[int(self._label_ids[best])], distance=best_dist)

    def match_all(self, descriptors: Iterable) -> List[MatchResult]:
        return [self.match(d) for d in descriptors]


def build_matcher_from_records(records: Iterable[LabelRecord], config: MatcherConfig) -> MatcherIndex:
    label_pos: Dict[str, int] = {}
    labels: List[str] = []
    rows: List[np.ndarray] = []
    ids: List[int] = []
    dim = 0

    for record in records:
        vecs: List[np.ndarray] = []
        for sample in record.samples:
            vec = sample.descriptor_array()
            if dim == 0:
                dim = int(vec.shape[0])
            if int(vec.shape[0]) != dim:
                logger.warning(f"skipping sample of {record.label!r}: descriptor D={vec.shape[0]}, index D={dim}")
                continue
            vecs.append(vec)
        if not vecs:
            continue

        # Labels are unique keys in the store; the guard only matters for hand-built inputs.
        if record.label not in label_pos:
            label_pos[record.label] = len(labels)
            labels.append(record.label)
        pos = label_pos[record.label]
        rows.extend(vecs)
        ids.extend([pos] * len(vecs))

    if not rows:
        raise EmptyStoreError("no usable face data stored; collect at least one label first")

    matrix = np.stack(rows, axis=0).astype(np.float32, copy=False)
    index = MatcherIndex(labels, matrix, np.asarray(ids, dtype=np.int32), config)
    logger.info(f"Matcher ready: {len(labels)} labels, {index.size} descriptors, threshold={config.threshold}")
    return index


def build_matcher(
    store: LabelStore,
    threshold: float = 1.1,
    unknown_label: str = "unknown",
) -> MatcherIndex:
    """Read every record from `store` and index its descriptors.

    Raises EmptyStoreError if the store has no usable record.
    """
    return build_matcher_from_records(
        store.get_all(),
        MatcherConfig(threshold=float(threshold), unknown_label=str(unknown_label)),
    )
