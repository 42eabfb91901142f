"""Split scheduling: carving one dataset into bounded training rounds.

Training on a large dataset proceeds as: train on roughly
``examples_per_round`` examples -> reduce -> train on the next subset ->
reduce, and so on until every example has been seen once.

The number of rounds rounds up: with ``examples_per_round=1000`` and
1200 examples there are two rounds of about 600 examples each. Subsets
are drawn by weighted random assignment, so their sizes are approximate.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional

from paramsync.data.partitioned import PartitionedDataset
from paramsync.errors import SplitScheduleInconsistency


@dataclass
class Split:
    """Subset of the dataset assigned to one round"""
    index: int
    num_splits: int
    dataset: PartitionedDataset

    @property
    def num_examples(self) -> int:
        return self.dataset.count()

    @property
    def num_partitions(self) -> int:
        return self.dataset.num_partitions


def compute_num_splits(examples_per_round: Optional[int], total_examples: int) -> int:
    """Number of rounds needed to cover ``total_examples``.

    An unset, non-positive or oversized bound means a single round.
    """
    if examples_per_round is None or examples_per_round <= 0:
        return 1
    if examples_per_round >= total_examples:
        return 1
    if total_examples % examples_per_round == 0:
        return total_examples // examples_per_round
    return total_examples // examples_per_round + 1


class SplitScheduler:
    """Produces the ordered sequence of Splits for one pass over a dataset"""

    def __init__(self, seed: Optional[int] = None, logger: Optional[logging.Logger] = None):
        """Initialize split scheduler.

        Args:
            seed: Base random seed; subset assignment and repartitioning
                are reproducible when set
            logger: Logger instance
        """
        self.seed = seed
        self.logger = logger or logging.getLogger("paramsync.splits")
        self._passes = 0

    def _next_seed(self, offset: int = 0) -> Optional[int]:
        if self.seed is None:
            return None
        return self.seed + 1000 * self._passes + offset

    def schedule(
        self,
        dataset: PartitionedDataset,
        examples_per_round: Optional[int],
        total_examples: int,
        num_partitions: int
    ) -> List[Split]:
        """Carve ``dataset`` into rounds.

        Args:
            dataset: Full training data
            examples_per_round: Target examples per round (None for all)
            total_examples: Number of examples in ``dataset``
            num_partitions: Partitions each subset is spread over

        Returns:
            Ordered list of Splits covering the dataset once
        """
        if num_partitions < 1:
            raise ValueError("num_partitions must be >= 1")

        if examples_per_round is not None and examples_per_round <= 0:
            warnings.warn(
                f"examples_per_round={examples_per_round} is not positive; "
                "training on the whole dataset in one round",
                SplitScheduleInconsistency
            )
            self.logger.warning(
                f"Non-positive examples per round ({examples_per_round}), using a single round"
            )

        num_splits = compute_num_splits(examples_per_round, total_examples)
        self._passes += 1

        if num_splits == 1:
            return [Split(index=0, num_splits=1, dataset=dataset)]

        weights = [1.0 / num_splits] * num_splits
        subsets = dataset.random_split(weights, seed=self._next_seed())

        splits = []
        for i, subset in enumerate(subsets):
            splits.append(Split(
                index=i,
                num_splits=num_splits,
                dataset=subset.repartition(num_partitions, seed=self._next_seed(i + 1))
            ))

        self.logger.debug(
            f"Scheduled {num_splits} splits of ~{total_examples / num_splits:.0f} examples "
            f"over {num_partitions} partitions"
        )
        return splits
