"""Aggregation primitives for combining partition results.

Provides:
- Vector adders for parameter and gradient sums
- Score collection and best-score tracking
- Optimizer-state aggregation with tree-shaped folds
"""

from paramsync.aggregators.vector import VectorAdder, ScoreCollector, to_flat_vector
from paramsync.aggregators.score import BestScoreTracker
from paramsync.aggregators.optimizer_state import (
    OptimizerState,
    OptimizerStateAggregator,
    element_combiner,
    aggregator_combiner,
    tree_aggregate,
    aggregate_states,
    COMBINE_AVERAGE,
    COMBINE_SUM
)

__all__ = [
    'VectorAdder',
    'ScoreCollector',
    'to_flat_vector',
    'BestScoreTracker',
    'OptimizerState',
    'OptimizerStateAggregator',
    'element_combiner',
    'aggregator_combiner',
    'tree_aggregate',
    'aggregate_states',
    'COMBINE_AVERAGE',
    'COMBINE_SUM'
]
