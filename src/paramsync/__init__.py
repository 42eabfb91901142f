"""paramsync: synchronous data-parallel training with periodic reduction.

Trains one model across many data partitions. Each round broadcasts the
global state, trains every partition locally, waits for all of them and
reduces their results into the next global state, either by averaging
parameters or by accumulating parameter updates.

Main modules:
- orchestration: driver, round executor, state snapshots
- aggregators: vector sums, best score, optimizer-state aggregation
- data: partitioned datasets, split scheduling, minibatching
- client: local trainer capability and a torch implementation
- compute: sequential and thread-pool partition executors
- config: training options and YAML loading
- logging: round-aware structured logging
"""

__version__ = "0.1.0"

from paramsync.config import TrainingConfig
from paramsync.data import PartitionedDataset
from paramsync.orchestration import GlobalState, ReductionStrategy, SyncTrainingDriver, train

__all__ = [
    'TrainingConfig',
    'PartitionedDataset',
    'GlobalState',
    'ReductionStrategy',
    'SyncTrainingDriver',
    'train',
]
