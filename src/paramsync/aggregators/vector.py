"""Concurrency-safe combiners for flat numeric vectors and scalar scores"""

import threading
from typing import Iterable, List, Optional

import numpy as np
import torch

from paramsync.errors import ShapeMismatchError


def to_flat_vector(values) -> np.ndarray:
    """Convert a tensor, array or sequence into a 1-D float64 vector"""
    if isinstance(values, torch.Tensor):
        return values.detach().cpu().numpy().astype(np.float64).ravel()
    return np.asarray(values, dtype=np.float64).ravel()


class VectorAdder:
    """Running element-wise sum of fixed-length vectors.

    Many partitions may call ``add`` concurrently; two adders built over
    disjoint partition subsets can be merged with ``merge``. The length is
    fixed at construction and every added vector must match it.
    """

    def __init__(self, length: int):
        if length < 0:
            raise ValueError("length must be non-negative")
        self.length = length
        self._sum = np.zeros(length, dtype=np.float64)
        self._count = 0
        self._lock = threading.Lock()

    def add(self, vector) -> None:
        """Fold one vector into the running sum"""
        flat = to_flat_vector(vector)
        if flat.shape[0] != self.length:
            raise ShapeMismatchError(
                f"Expected vector of length {self.length}, got {flat.shape[0]}",
                expected=self.length,
                actual=flat.shape[0]
            )
        with self._lock:
            self._sum += flat
            self._count += 1

    def add_all(self, vectors: Iterable) -> "VectorAdder":
        for vector in vectors:
            self.add(vector)
        return self

    def merge(self, other: "VectorAdder") -> "VectorAdder":
        """Merge another adder's partial sum into this one"""
        if other.length != self.length:
            raise ShapeMismatchError(
                f"Cannot merge adders of length {self.length} and {other.length}",
                expected=self.length,
                actual=other.length
            )
        with other._lock:
            other_sum = other._sum.copy()
            other_count = other._count
        with self._lock:
            self._sum += other_sum
            self._count += other_count
        return self

    @property
    def count(self) -> int:
        """Number of vectors folded in so far"""
        with self._lock:
            return self._count

    def value(self) -> np.ndarray:
        """Copy of the current sum"""
        with self._lock:
            return self._sum.copy()

    def mean(self) -> np.ndarray:
        """Element-wise mean of the folded vectors"""
        with self._lock:
            if self._count == 0:
                raise ValueError("mean of an empty VectorAdder")
            return self._sum / self._count


class ScoreCollector:
    """Collects per-partition scalar scores for one round"""

    def __init__(self):
        self._scores: List[float] = []
        self._lock = threading.Lock()

    def add(self, score: Optional[float]) -> None:
        if score is None:
            return
        with self._lock:
            self._scores.append(float(score))

    def collect(self) -> List[float]:
        with self._lock:
            return list(self._scores)

    def mean(self) -> float:
        """Arithmetic mean, or NaN when nothing was collected"""
        scores = self.collect()
        if not scores:
            return float('nan')
        return float(np.mean(scores))

    def __len__(self) -> int:
        with self._lock:
            return len(self._scores)
