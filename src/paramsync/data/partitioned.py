"""In-process partitioned dataset.

A ``PartitionedDataset`` is an ordered list of partitions, each an ordered
list of examples. Examples are opaque to the training core; the local
trainer decides what they contain (usually ``(features, labels)``
minibatches).
"""

from typing import Any, Iterator, List, Optional, Sequence

import numpy as np


class PartitionedDataset:
    """Examples grouped into independently processable partitions"""

    def __init__(self, partitions: Sequence[Sequence[Any]]):
        self.partitions: List[List[Any]] = [list(p) for p in partitions]

    @classmethod
    def from_examples(
        cls,
        examples: Sequence[Any],
        num_partitions: int,
        seed: Optional[int] = None,
        shuffle: bool = False
    ) -> "PartitionedDataset":
        """Spread examples across ``num_partitions`` partitions.

        Args:
            examples: Flat sequence of examples
            num_partitions: Number of partitions to create (>= 1)
            seed: Random seed used when shuffling
            shuffle: Shuffle examples before distributing

        Returns:
            New PartitionedDataset
        """
        if num_partitions < 1:
            raise ValueError("num_partitions must be >= 1")

        examples = list(examples)
        indices = np.arange(len(examples))
        if shuffle:
            indices = np.random.RandomState(seed).permutation(len(examples))

        chunks = np.array_split(indices, num_partitions)
        return cls([[examples[i] for i in chunk] for chunk in chunks])

    @property
    def num_partitions(self) -> int:
        return len(self.partitions)

    def count(self) -> int:
        """Total number of examples across all partitions"""
        return sum(len(p) for p in self.partitions)

    def examples(self) -> Iterator[Any]:
        for partition in self.partitions:
            yield from partition

    def collect(self) -> List[Any]:
        return list(self.examples())

    def repartition(self, num_partitions: int, seed: Optional[int] = None) -> "PartitionedDataset":
        """Redistribute all examples evenly over ``num_partitions`` partitions"""
        return PartitionedDataset.from_examples(
            self.collect(), num_partitions, seed=seed, shuffle=seed is not None
        )

    def random_split(self, weights: Sequence[float], seed: Optional[int] = None) -> List["PartitionedDataset"]:
        """Split into disjoint subsets with approximately the given weights.

        Every example is drawn into exactly one subset with probability
        proportional to its weight, so subset sizes are approximate. Each
        subset keeps the partition structure of this dataset.

        Args:
            weights: Non-negative relative weights, one per subset
            seed: Random seed

        Returns:
            One PartitionedDataset per weight
        """
        weights = np.asarray(weights, dtype=np.float64)
        if weights.ndim != 1 or len(weights) == 0:
            raise ValueError("weights must be a non-empty 1-D sequence")
        if np.any(weights < 0) or weights.sum() <= 0:
            raise ValueError("weights must be non-negative with a positive sum")

        bounds = np.cumsum(weights / weights.sum())
        bounds[-1] = 1.0
        rng = np.random.RandomState(seed)

        subsets = [[[] for _ in self.partitions] for _ in weights]
        for p_idx, partition in enumerate(self.partitions):
            draws = rng.random_sample(len(partition))
            targets = np.searchsorted(bounds, draws, side='right')
            for example, target in zip(partition, targets):
                subsets[min(int(target), len(weights) - 1)][p_idx].append(example)

        return [PartitionedDataset(parts) for parts in subsets]

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"PartitionedDataset(partitions={self.num_partitions}, examples={self.count()})"
