"""Process-wide best score tracking across rounds and partitions"""

import math
import threading
from typing import Optional


class BestScoreTracker:
    """Running minimum of all reported scores (lower is better).

    Keeping the minimum is commutative and monotone, so concurrent
    updates from any number of partitions give the same final value
    regardless of the order in which they land.
    """

    def __init__(self, initial: float = math.inf):
        self._best = initial
        self._initial = initial
        self._updates = 0
        self._lock = threading.Lock()

    def update(self, score: Optional[float]) -> float:
        """Offer a score; returns the best value after the update"""
        if score is None or math.isnan(score):
            return self.value
        with self._lock:
            self._updates += 1
            if score < self._best:
                self._best = float(score)
            return self._best

    def merge(self, other: "BestScoreTracker") -> "BestScoreTracker":
        """Fold another tracker's best value into this one"""
        self.update(other.value)
        return self

    @property
    def value(self) -> float:
        with self._lock:
            return self._best

    @property
    def has_score(self) -> bool:
        """Whether any real score has been offered yet"""
        with self._lock:
            return self._updates > 0

    def reset(self) -> None:
        with self._lock:
            self._best = self._initial
            self._updates = 0
