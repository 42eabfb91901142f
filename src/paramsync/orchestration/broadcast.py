"""Per-round broadcast of the global state.

Each round publishes exactly one immutable ``StateSnapshot``: read-only
copies of the parameter vector and optimizer state plus a SHA-256 hash
of their contents. Every partition of the round reads the same snapshot;
the driver only installs a new global state after the round's barrier.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from paramsync.aggregators.optimizer_state import OptimizerState


def freeze_params(params: np.ndarray) -> np.ndarray:
    """Read-only float64 copy of a parameter vector"""
    frozen = np.array(params, dtype=np.float64, copy=True)
    frozen.setflags(write=False)
    return frozen


def compute_state_hash(params: np.ndarray, optimizer_state: Optional[OptimizerState] = None) -> str:
    """
    Compute SHA-256 hash of a parameter vector and optimizer state.

    Args:
        params: Flat parameter vector
        optimizer_state: Optional optimizer state

    Returns:
        Hex string of SHA-256 hash
    """
    hasher = hashlib.sha256()
    hasher.update(b'params')
    hasher.update(np.ascontiguousarray(params, dtype=np.float64).tobytes())

    if optimizer_state is not None:
        hasher.update(optimizer_state.rule.encode('utf-8'))
        for name in sorted(optimizer_state.buffers.keys()):
            hasher.update(name.encode('utf-8'))
            hasher.update(np.ascontiguousarray(optimizer_state.buffers[name]).tobytes())

    return hasher.hexdigest()


@dataclass(frozen=True, eq=False)
class StateSnapshot:
    """Read-only view of the global state for one round"""
    round_number: int
    params: np.ndarray
    optimizer_state: Optional[OptimizerState]
    state_hash: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def num_params(self) -> int:
        return int(self.params.shape[0])

    def verify(self) -> bool:
        """Check the snapshot still matches the hash it was published with"""
        return compute_state_hash(self.params, self.optimizer_state) == self.state_hash


class SnapshotPublisher:
    """
    Publishes one snapshot per round and keeps a short publication log.

    Features:
    - Defensive copy of the state at publication time
    - Read-only arrays so partitions cannot alter the shared value
    - Hash per publication for integrity checks
    """

    def __init__(self, history_size: int = 16):
        self.history_size = history_size
        self.current: Optional[StateSnapshot] = None
        self._history: List[Dict] = []
        self.publish_count = 0

    def publish(
        self,
        params: np.ndarray,
        optimizer_state: Optional[OptimizerState],
        round_number: int
    ) -> StateSnapshot:
        """
        Create the round's broadcast value.

        Args:
            params: Current global parameter vector
            optimizer_state: Current global optimizer state
            round_number: Round the snapshot belongs to

        Returns:
            Immutable StateSnapshot
        """
        frozen_params = freeze_params(params)
        frozen_state = optimizer_state.frozen() if optimizer_state is not None else None

        snapshot = StateSnapshot(
            round_number=round_number,
            params=frozen_params,
            optimizer_state=frozen_state,
            state_hash=compute_state_hash(frozen_params, frozen_state)
        )

        self.current = snapshot
        self.publish_count += 1
        self._history.append({
            'round': round_number,
            'hash': snapshot.state_hash,
            'num_params': snapshot.num_params,
            'timestamp': snapshot.timestamp
        })
        if len(self._history) > self.history_size:
            self._history = self._history[-self.history_size:]

        return snapshot

    def get_history(self) -> List[Dict]:
        """Get simplified publication history"""
        return list(self._history)
