"""Data handling for synchronous partitioned training.

Provides utilities for:
- Holding examples as an in-process partitioned dataset
- Scheduling a dataset into bounded training rounds
- Creating minibatches from labeled points
"""

from paramsync.data.partitioned import PartitionedDataset
from paramsync.data.splits import Split, SplitScheduler, compute_num_splits
from paramsync.data.loader import create_minibatches, from_labeled_points, count_examples

__all__ = [
    'PartitionedDataset',
    'Split',
    'SplitScheduler',
    'compute_num_splits',
    'create_minibatches',
    'from_labeled_points',
    'count_examples',
]
