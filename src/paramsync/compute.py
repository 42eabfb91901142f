"""Partitioned compute: run one function per partition of a dataset.

Each executor calls ``fn(partition_index, examples)`` exactly once per
partition and returns the results in partition order. ``map_partitions``
only returns once every partition has finished, which is the barrier a
round reduces behind. The first partition failure is re-raised and the
round's results are discarded.
"""

import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, List, Optional

from paramsync.data.partitioned import PartitionedDataset
from paramsync.errors import EmptyPartitionSetError


PartitionFn = Callable[[int, List[Any]], Any]


class PartitionExecutor(ABC):
    """Runs a function over every partition of a dataset"""

    @abstractmethod
    def map_partitions(self, fn: PartitionFn, dataset: PartitionedDataset) -> List[Any]:
        """Apply ``fn`` to each partition.

        Args:
            fn: Called as ``fn(partition_index, examples)``
            dataset: Partitioned input

        Returns:
            One result per partition, in partition order
        """
        pass

    @staticmethod
    def _check_partitions(dataset: PartitionedDataset) -> None:
        if dataset.num_partitions == 0:
            raise EmptyPartitionSetError("Cannot run a round over zero partitions")


class SequentialExecutor(PartitionExecutor):
    """Runs partitions one after another in the calling thread"""

    def map_partitions(self, fn: PartitionFn, dataset: PartitionedDataset) -> List[Any]:
        self._check_partitions(dataset)
        return [fn(i, examples) for i, examples in enumerate(dataset.partitions)]


class ThreadPoolPartitionExecutor(PartitionExecutor):
    """Runs partitions concurrently on a thread pool"""

    def __init__(self, max_workers: Optional[int] = None, logger: Optional[logging.Logger] = None):
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self.logger = logger or logging.getLogger("paramsync.compute")

    def _resolve_workers(self, num_partitions: int) -> int:
        cpu = os.cpu_count() or 1
        if self.max_workers is None:
            return max(1, min(cpu, num_partitions))
        return max(1, min(self.max_workers, num_partitions))

    def map_partitions(self, fn: PartitionFn, dataset: PartitionedDataset) -> List[Any]:
        self._check_partitions(dataset)
        workers = self._resolve_workers(dataset.num_partitions)

        if workers == 1:
            return [fn(i, examples) for i, examples in enumerate(dataset.partitions)]

        self.logger.debug(
            f"Running {dataset.num_partitions} partitions on {workers} workers"
        )

        results: List[Any] = [None] * dataset.num_partitions
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(fn, i, examples): i
                for i, examples in enumerate(dataset.partitions)
            }
            try:
                for fut in as_completed(futures):
                    results[futures[fut]] = fut.result()
            except BaseException:
                for fut in futures:
                    fut.cancel()
                raise

        return results


def create_executor(max_workers: Optional[int] = None) -> PartitionExecutor:
    """Thread pool executor, or sequential when a single worker is requested"""
    if max_workers == 1:
        return SequentialExecutor()
    return ThreadPoolPartitionExecutor(max_workers=max_workers)
