"""Minibatch creation for partitioned training.

Turns labeled points or a torch Dataset into ``(features, labels)``
minibatches, then spreads the minibatches across partitions.
"""

from typing import List, Optional, Tuple

import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset, TensorDataset

from paramsync.data.partitioned import PartitionedDataset


Batch = Tuple[torch.Tensor, torch.Tensor]


def create_minibatches(
    dataset: Dataset,
    batch_size: int = 32,
    shuffle: bool = False,
    seed: Optional[int] = None
) -> List[Batch]:
    """Materialise a torch Dataset as a list of minibatches.

    Args:
        dataset: Dataset yielding ``(features, label)`` pairs
        batch_size: Examples per minibatch
        shuffle: Whether to shuffle before batching
        seed: Seed for the shuffle

    Returns:
        List of ``(features, labels)`` tensors
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    generator = None
    if shuffle and seed is not None:
        generator = torch.Generator().manual_seed(seed)

    loader = DataLoader(
        dataset,
        batch_size=batch_size,
        shuffle=shuffle,
        generator=generator,
        drop_last=False
    )
    return [(data, labels) for data, labels in loader]


def from_labeled_points(
    features,
    labels,
    batch_size: int = 32,
    num_partitions: int = 1,
    seed: Optional[int] = None
) -> PartitionedDataset:
    """Build a partitioned minibatch dataset from labeled points.

    Args:
        features: ``(n, d)`` array or tensor of feature vectors
        labels: ``(n,)`` integer class labels
        batch_size: Examples per minibatch
        num_partitions: Partitions to spread minibatches across
        seed: Shuffle seed (no shuffle when None)

    Returns:
        PartitionedDataset of ``(features, labels)`` minibatches
    """
    x = torch.as_tensor(np.asarray(features), dtype=torch.float32)
    y = torch.as_tensor(np.asarray(labels), dtype=torch.long)
    if x.shape[0] != y.shape[0]:
        raise ValueError(
            f"features and labels disagree on example count: {x.shape[0]} vs {y.shape[0]}"
        )

    batches = create_minibatches(
        TensorDataset(x, y),
        batch_size=batch_size,
        shuffle=seed is not None,
        seed=seed
    )
    return PartitionedDataset.from_examples(batches, num_partitions)


def count_examples(dataset: PartitionedDataset) -> int:
    """Number of labeled examples held in a minibatch dataset"""
    return sum(int(batch[0].shape[0]) for batch in dataset.examples())
