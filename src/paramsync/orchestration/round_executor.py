"""Round execution for synchronous partitioned training.

One round:
1. Broadcast - publish the global state once as an immutable snapshot
2. Local training - every partition trains from the snapshot
3. Barrier - wait for all partitions to finish
4. Reduction - combine partition results with the selected strategy
5. Apply - build the next global state

Two reduction strategies share this loop:
- Parameter averaging: new params = mean of partition params
- Gradient accumulation: new params = previous params + sum of partition
  updates (optionally divided by the partition count)
"""

import logging
import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from paramsync.aggregators.optimizer_state import OptimizerState, aggregate_states
from paramsync.aggregators.score import BestScoreTracker
from paramsync.aggregators.vector import ScoreCollector, VectorAdder, to_flat_vector
from paramsync.client.trainer import LocalTrainer
from paramsync.compute import PartitionExecutor, SequentialExecutor
from paramsync.data.partitioned import PartitionedDataset
from paramsync.errors import EmptyPartitionSetError, MissingOptimizerState, ShapeMismatchError
from paramsync.orchestration.broadcast import SnapshotPublisher, StateSnapshot
from paramsync.orchestration.state import GlobalState


class ReductionStrategy(Enum):
    """How partition results are combined into the next global state"""
    AVERAGING = "averaging"
    ACCUMULATION = "accumulation"


class RoundPhase(Enum):
    """Phases within a single round"""
    BROADCAST = "broadcast"
    LOCAL_TRAINING = "local_training"
    REDUCTION = "reduction"
    APPLY = "apply"
    COMPLETE = "complete"


@dataclass
class PartitionResult:
    """Output of local training on one partition.

    Averaging rounds fill ``params``; accumulation rounds fill ``gradient``.
    """
    partition_index: int
    optimizer_state: Optional[OptimizerState]
    score: Optional[float] = None
    params: Optional[np.ndarray] = None
    gradient: Optional[np.ndarray] = None


@dataclass
class RoundReduction:
    """Combined result of one round's partitions"""
    params: np.ndarray
    optimizer_state: Optional[OptimizerState]
    score: float
    num_partitions: int


@dataclass
class RoundRecord:
    """Timing and outcome of a completed round"""
    round_num: int
    strategy: ReductionStrategy
    num_partitions: int
    num_iterations: int
    state_hash: str = ""
    score: float = float('nan')
    phase_durations: Dict[RoundPhase, float] = field(default_factory=dict)
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_metrics(self) -> Dict[str, Any]:
        return {
            'round': self.round_num,
            'strategy': self.strategy.value,
            'num_partitions': self.num_partitions,
            'num_iterations': self.num_iterations,
            'score': self.score,
            'duration': self.duration,
            **{f"{phase.value}_sec": secs for phase, secs in self.phase_durations.items()}
        }


@dataclass
class RoundOutcome:
    """New global state plus the round's score and record"""
    state: GlobalState
    score: float
    record: RoundRecord


def _check_cardinality(results: Sequence[PartitionResult], num_partitions: int) -> None:
    if not results:
        raise EmptyPartitionSetError("No partition results to reduce")
    if len(results) != num_partitions:
        raise ShapeMismatchError(
            f"Expected {num_partitions} partition results, got {len(results)}",
            expected=num_partitions,
            actual=len(results)
        )


class ParameterAveraging:
    """Mean of independently trained partition parameters"""

    strategy = ReductionStrategy.AVERAGING

    def reduce(self, results: Sequence[PartitionResult], previous: GlobalState,
               num_partitions: int) -> RoundReduction:
        _check_cardinality(results, num_partitions)

        adder = VectorAdder(previous.num_params)
        scores = ScoreCollector()
        for result in results:
            if result.params is None:
                raise ValueError(
                    f"Partition {result.partition_index} returned no parameters in an averaging round"
                )
            adder.add(result.params)
            scores.add(result.score)

        new_params = adder.value() / num_partitions

        # No seed: the first folded partition state types the aggregate
        combined_state = aggregate_states([r.optimizer_state for r in results], seed=None)

        return RoundReduction(
            params=new_params,
            optimizer_state=combined_state,
            score=scores.mean(),
            num_partitions=num_partitions
        )


class GradientAccumulation:
    """Additive update: previous params plus summed partition updates"""

    strategy = ReductionStrategy.ACCUMULATION

    def __init__(self, divide_by_partitions: bool = False):
        self.divide_by_partitions = divide_by_partitions

    def reduce(self, results: Sequence[PartitionResult], previous: GlobalState,
               num_partitions: int) -> RoundReduction:
        _check_cardinality(results, num_partitions)

        adder = VectorAdder(previous.num_params)
        scores = ScoreCollector()
        for result in results:
            if result.gradient is None:
                raise ValueError(
                    f"Partition {result.partition_index} returned no gradient in an accumulation round"
                )
            adder.add(result.gradient)
            scores.add(result.score)

        accumulated = adder.value()
        if self.divide_by_partitions:
            accumulated /= num_partitions

        new_params = previous.params + accumulated

        # Seeded with an empty aggregate typed after the first partition's state
        first = next((r.optimizer_state for r in results if r.optimizer_state is not None), None)
        seed = (lambda: first.aggregator(include_self=False)) if first is not None else None
        combined_state = aggregate_states([r.optimizer_state for r in results], seed=seed)

        return RoundReduction(
            params=new_params,
            optimizer_state=combined_state,
            score=scores.mean(),
            num_partitions=num_partitions
        )


def create_reducer(strategy: ReductionStrategy, divide_accumulated_gradient: bool = False):
    """Reducer object for a strategy"""
    if strategy == ReductionStrategy.AVERAGING:
        return ParameterAveraging()
    if strategy == ReductionStrategy.ACCUMULATION:
        return GradientAccumulation(divide_by_partitions=divide_accumulated_gradient)
    raise ValueError(f"Unknown reduction strategy: {strategy}")


class RoundExecutor:
    """Runs one synchronization round over a partitioned dataset.

    The executor never mutates the state it is given; it returns a new
    GlobalState which the driver installs. Any partition failure aborts
    the round before anything is reduced.
    """

    def __init__(
        self,
        trainer: LocalTrainer,
        strategy: ReductionStrategy = ReductionStrategy.AVERAGING,
        executor: Optional[PartitionExecutor] = None,
        divide_accumulated_gradient: bool = False,
        best_score: Optional[BestScoreTracker] = None,
        publisher: Optional[SnapshotPublisher] = None,
        logger: Optional[logging.Logger] = None
    ):
        """Initialize round executor.

        Args:
            trainer: Local-trainer capability
            strategy: Reduction strategy
            executor: Partitioned-compute capability (sequential if None)
            divide_accumulated_gradient: Divide summed updates by the
                partition count (accumulation only)
            best_score: Shared best-score tracker fed by every partition
            publisher: Snapshot publisher used for the broadcast
            logger: Logger instance
        """
        self.trainer = trainer
        self.strategy = strategy
        self.executor = executor or SequentialExecutor()
        self.reducer = create_reducer(strategy, divide_accumulated_gradient)
        self.best_score = best_score if best_score is not None else BestScoreTracker()
        self.publisher = publisher or SnapshotPublisher()
        self.logger = logger or logging.getLogger("paramsync.round_executor")

    def _ensure_optimizer_state(self, state: Optional[OptimizerState], where: str) -> OptimizerState:
        if state is not None:
            return state
        message = f"Unable to propagate null optimizer state ({where}); using a fresh default"
        warnings.warn(message, MissingOptimizerState)
        self.logger.warning(message)
        return self.trainer.init_optimizer_state()

    def _partition_fn(self, snapshot: StateSnapshot, num_iterations: int) -> Callable:
        strategy = self.strategy
        trainer = self.trainer
        best_score = self.best_score

        def run_partition(index: int, examples: List[Any]) -> PartitionResult:
            if strategy == ReductionStrategy.AVERAGING:
                params, opt_state, score = trainer.fit(
                    snapshot.params, snapshot.optimizer_state, examples, num_iterations
                )
                best_score.update(score)
                return PartitionResult(
                    partition_index=index,
                    optimizer_state=opt_state,
                    score=score,
                    params=to_flat_vector(params)
                )

            gradient, opt_state, score = trainer.gradient(
                snapshot.params, snapshot.optimizer_state, examples, num_iterations
            )
            best_score.update(score)
            return PartitionResult(
                partition_index=index,
                optimizer_state=opt_state,
                score=score,
                gradient=to_flat_vector(gradient)
            )

        return run_partition

    def run_round(
        self,
        state: GlobalState,
        dataset: PartitionedDataset,
        num_iterations: int = 1,
        round_number: Optional[int] = None
    ) -> RoundOutcome:
        """Execute one round.

        Args:
            state: Current global state (left untouched)
            dataset: Partitioned examples for this round
            num_iterations: Local iterations each partition runs
            round_number: Round number for logging (defaults to
                ``state.iteration + 1``)

        Returns:
            RoundOutcome with the next global state and round score
        """
        num_partitions = dataset.num_partitions
        if num_partitions == 0:
            raise EmptyPartitionSetError("Cannot run a round over zero partitions")
        if state.num_params != self.trainer.num_params():
            raise ShapeMismatchError(
                f"Global state has {state.num_params} parameters, trainer expects "
                f"{self.trainer.num_params()}",
                expected=self.trainer.num_params(),
                actual=state.num_params
            )

        round_num = round_number if round_number is not None else state.iteration + 1
        record = RoundRecord(
            round_num=round_num,
            strategy=self.strategy,
            num_partitions=num_partitions,
            num_iterations=num_iterations,
            start_time=time.time()
        )

        # Broadcast
        phase_start = time.time()
        self.logger.info(f"Broadcasting initial parameters of length {state.num_params}")
        optimizer_state = self._ensure_optimizer_state(state.optimizer_state, "global state")
        snapshot = self.publisher.publish(state.params, optimizer_state, round_num)
        record.state_hash = snapshot.state_hash
        record.phase_durations[RoundPhase.BROADCAST] = time.time() - phase_start

        # Local training; returns only after every partition finished
        phase_start = time.time()
        results = self.executor.map_partitions(
            self._partition_fn(snapshot, num_iterations), dataset
        )
        record.phase_durations[RoundPhase.LOCAL_TRAINING] = time.time() - phase_start

        # Reduction
        phase_start = time.time()
        self.logger.info("Processing updaters")
        for result in results:
            result.optimizer_state = self._ensure_optimizer_state(
                result.optimizer_state, f"partition {result.partition_index}"
            )
        reduction = self.reducer.reduce(results, state, num_partitions)
        self.logger.info("Accumulated parameters")
        record.phase_durations[RoundPhase.REDUCTION] = time.time() - phase_start

        # Apply
        phase_start = time.time()
        new_state = GlobalState(
            params=reduction.params,
            optimizer_state=reduction.optimizer_state,
            iteration=state.iteration + 1
        )
        self.logger.info("Set parameters")
        if new_state.optimizer_state is not None:
            self.logger.info("Set updater")
        record.phase_durations[RoundPhase.APPLY] = time.time() - phase_start

        record.score = reduction.score
        record.end_time = time.time()
        self.logger.info(
            f"Round {round_num} complete ({self.strategy.value}, {num_partitions} partitions, "
            f"score={reduction.score:.6f}, {record.duration:.2f}s)"
        )

        return RoundOutcome(state=new_state, score=reduction.score, record=record)
