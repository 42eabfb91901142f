"""Orchestration of synchronous training rounds.

Provides:
- SyncTrainingDriver, the public training entry point
- RoundExecutor and the two reduction strategies
- Per-round immutable state snapshots
"""

from paramsync.orchestration.state import GlobalState
from paramsync.orchestration.broadcast import (
    SnapshotPublisher,
    StateSnapshot,
    compute_state_hash,
    freeze_params
)
from paramsync.orchestration.round_executor import (
    RoundExecutor,
    ReductionStrategy,
    RoundPhase,
    RoundRecord,
    RoundOutcome,
    RoundReduction,
    PartitionResult,
    ParameterAveraging,
    GradientAccumulation,
    create_reducer
)
from paramsync.orchestration.driver import SyncTrainingDriver, train

__all__ = [
    'GlobalState',
    'SnapshotPublisher',
    'StateSnapshot',
    'compute_state_hash',
    'freeze_params',
    'RoundExecutor',
    'ReductionStrategy',
    'RoundPhase',
    'RoundRecord',
    'RoundOutcome',
    'RoundReduction',
    'PartitionResult',
    'ParameterAveraging',
    'GradientAccumulation',
    'create_reducer',
    'SyncTrainingDriver',
    'train'
]
