"""Public entry point for synchronous partitioned training.

The driver owns the global state. It chooses the reduction strategy from
configuration, runs rounds through the RoundExecutor, schedules large
datasets into bounded rounds with the SplitScheduler and exposes
prediction, scoring and evaluation on the current state.

Training progresses as: broadcast state -> train every partition ->
barrier -> reduce -> install new state, once per round. With
``average_each_iteration`` the configured local iteration count is
split into single-iteration rounds so partitions re-synchronise after
every pass over their data.
"""

import functools
import logging
import math
import threading
from typing import Any, Dict, List, Optional, Union

import numpy as np

from paramsync.aggregators.score import BestScoreTracker
from paramsync.client.trainer import LocalTrainer
from paramsync.compute import PartitionExecutor, create_executor
from paramsync.config.training import TrainingConfig
from paramsync.data.loader import from_labeled_points
from paramsync.data.partitioned import PartitionedDataset
from paramsync.data.splits import SplitScheduler
from paramsync.errors import EmptyPartitionSetError
from paramsync.evaluation import Evaluation
from paramsync.logging import TrainingLogger
from paramsync.orchestration.broadcast import SnapshotPublisher, freeze_params
from paramsync.orchestration.round_executor import (
    ReductionStrategy,
    RoundExecutor,
    RoundRecord
)
from paramsync.orchestration.state import GlobalState
from paramsync.simulation.metrics import RoundMetricsCollector


class SyncTrainingDriver:
    """Drives synchronous data-parallel training of one model.

    Exactly one GlobalState is current at any time. A round that fails
    leaves the state of the last successful round in place.
    """

    def __init__(
        self,
        trainer: LocalTrainer,
        config: Optional[Union[TrainingConfig, Dict[str, Any]]] = None,
        executor: Optional[PartitionExecutor] = None,
        initial_state: Optional[GlobalState] = None,
        logger: Optional[logging.Logger] = None,
        training_logger: Optional[TrainingLogger] = None
    ):
        """Initialize driver.

        Args:
            trainer: Local-trainer capability
            config: TrainingConfig or options dict (validated here)
            executor: Partitioned-compute capability (thread pool if None)
            initial_state: Starting global state (trainer defaults if None)
            logger: Logger instance
            training_logger: Structured round logger
        """
        if config is None:
            config = TrainingConfig()
        elif not isinstance(config, TrainingConfig):
            config = TrainingConfig.from_dict(config)
        else:
            config.validate()

        self.trainer = trainer
        self.config = config
        self.logger = logger or logging.getLogger("paramsync.driver")
        self.training_logger = training_logger

        self.strategy = (
            ReductionStrategy.ACCUMULATION if config.accumulate_gradient
            else ReductionStrategy.AVERAGING
        )
        self.executor = executor or create_executor(config.max_workers)
        self.best_score_tracker = BestScoreTracker()
        self.publisher = SnapshotPublisher()
        self.round_executor = RoundExecutor(
            trainer,
            strategy=self.strategy,
            executor=self.executor,
            divide_accumulated_gradient=config.divide_accumulated_gradient,
            best_score=self.best_score_tracker,
            publisher=self.publisher
        )
        self.scheduler = SplitScheduler(seed=config.seed)
        self.metrics = RoundMetricsCollector()

        if initial_state is None:
            initial_state = GlobalState(
                params=trainer.init_params(),
                optimizer_state=trainer.init_optimizer_state()
            )
        self._state = initial_state
        self._state_lock = threading.Lock()
        self._last_score = float('nan')

    # ------------------------------------------------------------------
    # state

    @property
    def state(self) -> GlobalState:
        """The current global state"""
        with self._state_lock:
            return self._state

    def _install(self, state: GlobalState, score: float) -> None:
        with self._state_lock:
            self._state = state
            self._last_score = score

    def last_score(self) -> float:
        """Score of the most recent round (NaN before any round)"""
        with self._state_lock:
            return self._last_score

    @property
    def best_score(self) -> float:
        """Lowest partition score observed in this session"""
        return self.best_score_tracker.value

    # ------------------------------------------------------------------
    # training

    def _run_round(self, dataset: PartitionedDataset, split_index: int = 0) -> RoundRecord:
        current = self.state
        round_num = current.iteration + 1
        num_iterations = self.config.num_iterations

        if self.training_logger is not None:
            self.training_logger.log_round_start(
                round_num, dataset.num_partitions, self.strategy.value, num_iterations
            )

        outcome = self.round_executor.run_round(
            current, dataset, num_iterations=num_iterations, round_number=round_num
        )
        self._install(outcome.state, outcome.score)

        metrics = outcome.record.to_metrics()
        self.metrics.record_round(metrics, split_index=split_index)
        if self.training_logger is not None:
            self.training_logger.log_round_end(
                round_num, outcome.record.duration,
                metrics={'score': outcome.score, 'num_partitions': outcome.record.num_partitions}
            )
            self.training_logger.log_metrics({'score': outcome.score, 'best_score': self.best_score})

        return outcome.record

    def fit(self, dataset: PartitionedDataset, split_index: int = 0) -> GlobalState:
        """Run one full pass over ``dataset``.

        Args:
            dataset: Partitioned training data
            split_index: Index of the split being trained (for metrics)

        Returns:
            The trained global state
        """
        if dataset.num_partitions == 0:
            raise EmptyPartitionSetError("Cannot fit on a dataset with zero partitions")

        iterations = self.config.num_iterations
        self.logger.info(
            f"Running distributed training: (averaging each iteration = "
            f"{self.config.average_each_iteration}), (iterations = {iterations}), "
            f"(num partitions = {dataset.num_partitions})"
        )

        if not self.config.average_each_iteration:
            self._run_round(dataset, split_index)
            return self.state

        # One single-iteration round per configured iteration
        self.config.num_iterations = 1
        try:
            for _ in range(iterations):
                self._run_round(dataset, split_index)
        finally:
            self.config.num_iterations = iterations

        return self.state

    def fit_scheduled(
        self,
        dataset: PartitionedDataset,
        examples_per_round: Optional[int],
        total_examples: Optional[int] = None,
        num_partitions: Optional[int] = None
    ) -> GlobalState:
        """Fit in bounded rounds of roughly ``examples_per_round`` examples.

        Args:
            dataset: Partitioned training data
            examples_per_round: Examples to learn on between reductions
                (None or >= total trains everything in one pass)
            total_examples: Examples in ``dataset`` (counted if None)
            num_partitions: Partitions each split is spread over
                (defaults to the dataset's partition count)

        Returns:
            The trained global state
        """
        if total_examples is None:
            total_examples = dataset.count()
        if num_partitions is None:
            num_partitions = dataset.num_partitions

        splits = self.scheduler.schedule(dataset, examples_per_round, total_examples, num_partitions)
        for split in splits:
            if split.num_splits > 1:
                self.logger.info(
                    f"Initiating distributed training of subset {split.index + 1} of {split.num_splits}"
                )
                if self.training_logger is not None:
                    self.training_logger.log_split(split.index, split.num_splits, split.num_examples)
            self.fit(split.dataset, split_index=split.index)

        return self.state

    def fit_labeled(
        self,
        features,
        labels,
        batch_size: int = 32,
        num_partitions: int = 1
    ) -> GlobalState:
        """Fit on labeled points, batching them into minibatches first"""
        dataset = from_labeled_points(
            features, labels, batch_size=batch_size,
            num_partitions=num_partitions, seed=self.config.seed
        )
        return self.fit(dataset)

    # ------------------------------------------------------------------
    # inference and scoring

    def predict(self, features) -> np.ndarray:
        """Model output on the current state; never changes the state"""
        return self.trainer.output(self.state.params, features)

    def calculate_score(self, dataset: PartitionedDataset, average: bool = True) -> float:
        """Total loss over ``dataset``, or the per-example mean when ``average``"""
        params = freeze_params(self.state.params)
        trainer = self.trainer

        results = self.executor.map_partitions(
            lambda index, examples: trainer.score(params, examples), dataset
        )
        total = float(sum(score for score, _ in results))
        count = sum(n for _, n in results)

        if not average:
            return total
        if count == 0:
            return float('nan')
        return total / count

    def evaluate(self, dataset: PartitionedDataset, labels: Optional[List[str]] = None) -> Evaluation:
        """Classification evaluation over ``dataset``, reduced across partitions"""
        params = freeze_params(self.state.params)
        trainer = self.trainer

        evaluations = self.executor.map_partitions(
            lambda index, examples: trainer.evaluate(params, examples, labels), dataset
        )
        return functools.reduce(lambda a, b: a.merge(b), evaluations)

    def get_training_summary(self) -> Dict[str, Any]:
        summary = self.metrics.get_summary()
        summary.update({
            'strategy': self.strategy.value,
            'iteration': self.state.iteration,
            'last_score': self.last_score(),
            'best_score': self.best_score if self.best_score_tracker.has_score else math.nan
        })
        return summary


def train(
    trainer: LocalTrainer,
    dataset: PartitionedDataset,
    config: Optional[Union[TrainingConfig, Dict[str, Any]]] = None,
    examples_per_round: Optional[int] = None,
    **kwargs
) -> GlobalState:
    """Build a driver and train it on ``dataset``.

    Args:
        trainer: Local-trainer capability
        dataset: Partitioned training data
        config: Training options
        examples_per_round: Optional round size bound
        **kwargs: Forwarded to SyncTrainingDriver

    Returns:
        The trained global state
    """
    driver = SyncTrainingDriver(trainer, config=config, **kwargs)
    if examples_per_round is None:
        return driver.fit(dataset)
    return driver.fit_scheduled(dataset, examples_per_round)


__all__ = [
    'SyncTrainingDriver',
    'GlobalState',
    'train',
]
