"""Optimizer-state aggregation across partitions.

Each partition returns its own optimizer bookkeeping (momentum buffers,
adaptive step-size accumulators, ...). These are merged with a two-phase
fold so partial results can be combined in any tree shape:

- ``element_combiner`` folds one partition's state into a running
  aggregate
- ``aggregator_combiner`` merges two running aggregates

Aggregates only keep sums and counts; the combination rule ("average"
or "sum") is applied when the result is read. That keeps the merge
associative and commutative, so the outcome does not depend on the
order or topology the fold happens to use.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np

from paramsync.errors import ShapeMismatchError


COMBINE_AVERAGE = "average"
COMBINE_SUM = "sum"
COMBINE_RULES = (COMBINE_AVERAGE, COMBINE_SUM)


@dataclass
class OptimizerState:
    """Named per-parameter optimizer buffers plus their combination rule.

    The rule is chosen by the local trainer that produced the state:
    momentum-style buffers are usually averaged, counters summed.
    """
    buffers: Dict[str, np.ndarray] = field(default_factory=dict)
    rule: str = COMBINE_AVERAGE
    step: int = 0

    def __post_init__(self):
        if self.rule not in COMBINE_RULES:
            raise ValueError(
                f"Unknown combination rule '{self.rule}', expected one of {COMBINE_RULES}"
            )
        self.buffers = {
            name: np.asarray(buf, dtype=np.float64) for name, buf in self.buffers.items()
        }

    @classmethod
    def zeros(cls, length: int, names: Sequence[str] = ("momentum",), rule: str = COMBINE_AVERAGE) -> "OptimizerState":
        """Fresh state with zeroed buffers of the given length"""
        return cls(
            buffers={name: np.zeros(length, dtype=np.float64) for name in names},
            rule=rule
        )

    def shapes(self) -> Dict[str, tuple]:
        return {name: buf.shape for name, buf in self.buffers.items()}

    def copy(self) -> "OptimizerState":
        return OptimizerState(
            buffers={name: buf.copy() for name, buf in self.buffers.items()},
            rule=self.rule,
            step=self.step
        )

    def frozen(self) -> "OptimizerState":
        """Read-only copy, safe to hand to many partitions at once"""
        state = self.copy()
        for buf in state.buffers.values():
            buf.setflags(write=False)
        return state

    def aggregator(self, include_self: bool = True) -> "OptimizerStateAggregator":
        """Aggregator typed after this state.

        Args:
            include_self: Whether this state's buffers are already folded
                into the returned aggregator. With ``False`` the
                aggregator only borrows the rule and buffer layout.
        """
        agg = OptimizerStateAggregator(rule=self.rule, shapes=self.shapes())
        if include_self:
            agg.add(self)
        return agg

    def allclose(self, other: "OptimizerState", rtol: float = 1e-7, atol: float = 1e-9) -> bool:
        if self.rule != other.rule or self.shapes() != other.shapes():
            return False
        return all(
            np.allclose(self.buffers[name], other.buffers[name], rtol=rtol, atol=atol)
            for name in self.buffers
        )


class OptimizerStateAggregator:
    """Running aggregate of optimizer states sharing one rule and layout"""

    def __init__(self, rule: str = COMBINE_AVERAGE, shapes: Optional[Dict[str, tuple]] = None):
        if rule not in COMBINE_RULES:
            raise ValueError(f"Unknown combination rule '{rule}'")
        self.rule = rule
        self.shapes = dict(shapes) if shapes is not None else None
        self._sums: Dict[str, np.ndarray] = {}
        self._step_total = 0
        self.count = 0
        if self.shapes is not None:
            self._sums = {
                name: np.zeros(shape, dtype=np.float64) for name, shape in self.shapes.items()
            }

    def _check_compatible(self, rule: str, shapes: Dict[str, tuple]) -> None:
        if rule != self.rule:
            raise ShapeMismatchError(
                f"Cannot combine optimizer states with rules '{self.rule}' and '{rule}'",
                expected=self.rule,
                actual=rule
            )
        if self.shapes is not None and shapes != self.shapes:
            raise ShapeMismatchError(
                f"Optimizer buffer layout mismatch: expected {self.shapes}, got {shapes}",
                expected=self.shapes,
                actual=shapes
            )

    def add(self, state: OptimizerState) -> "OptimizerStateAggregator":
        """Fold one partition's state in"""
        shapes = state.shapes()
        self._check_compatible(state.rule, shapes)
        if self.shapes is None:
            self.shapes = shapes
            self._sums = {name: np.zeros(shape, dtype=np.float64) for name, shape in shapes.items()}

        for name, buf in state.buffers.items():
            self._sums[name] += buf
        self._step_total += state.step
        self.count += 1
        return self

    def merge(self, other: "OptimizerStateAggregator") -> "OptimizerStateAggregator":
        """Merge another partial aggregate into this one"""
        if other.shapes is None:
            self._check_compatible(other.rule, self.shapes or {})
            return self
        self._check_compatible(other.rule, other.shapes)
        if self.shapes is None:
            self.shapes = dict(other.shapes)
            self._sums = {name: np.zeros(shape, dtype=np.float64) for name, shape in self.shapes.items()}

        for name, buf in other._sums.items():
            self._sums[name] += buf
        self._step_total += other._step_total
        self.count += other.count
        return self

    def result(self) -> Optional[OptimizerState]:
        """Combined state, or None when nothing has been folded in"""
        if self.count == 0:
            return None

        if self.rule == COMBINE_AVERAGE:
            buffers = {name: buf / self.count for name, buf in self._sums.items()}
            step = int(round(self._step_total / self.count))
        else:
            buffers = {name: buf.copy() for name, buf in self._sums.items()}
            step = self._step_total

        return OptimizerState(buffers=buffers, rule=self.rule, step=step)


def element_combiner(
    aggregate: Optional[OptimizerStateAggregator],
    state: Optional[OptimizerState]
) -> Optional[OptimizerStateAggregator]:
    """Fold a single partition state into a (possibly absent) aggregate"""
    if state is None:
        return aggregate
    if aggregate is None:
        return state.aggregator(include_self=True)
    return aggregate.add(state)


def aggregator_combiner(
    left: Optional[OptimizerStateAggregator],
    right: Optional[OptimizerStateAggregator]
) -> Optional[OptimizerStateAggregator]:
    """Merge two partial aggregates, either of which may be absent"""
    if left is None:
        return right
    if right is None:
        return left
    return left.merge(right)


def tree_aggregate(
    items: Iterable[Any],
    zero: Callable[[], Any],
    seq_op: Callable[[Any, Any], Any],
    comb_op: Callable[[Any, Any], Any],
    fan_in: int = 2
) -> Any:
    """Hierarchical fold over ``items``.

    Items are grouped into leaves of ``fan_in`` elements, each leaf is
    folded with ``seq_op`` from a fresh ``zero()``, and the partial
    results are merged pairwise with ``comb_op`` until one remains.

    Args:
        items: Values to fold
        zero: Factory for a fresh neutral starting value
        seq_op: Folds one item into a partial result
        comb_op: Merges two partial results
        fan_in: Number of items folded per leaf (>= 1)

    Returns:
        The combined result (``zero()`` when there are no items)
    """
    if fan_in < 1:
        raise ValueError("fan_in must be >= 1")

    items = list(items)
    if not items:
        return zero()

    partials: List[Any] = []
    for start in range(0, len(items), fan_in):
        acc = zero()
        for item in items[start:start + fan_in]:
            acc = seq_op(acc, item)
        partials.append(acc)

    while len(partials) > 1:
        merged = []
        for i in range(0, len(partials), 2):
            if i + 1 < len(partials):
                merged.append(comb_op(partials[i], partials[i + 1]))
            else:
                merged.append(partials[i])
        partials = merged

    return partials[0]


def aggregate_states(
    states: Sequence[Optional[OptimizerState]],
    seed: Optional[Callable[[], Optional[OptimizerStateAggregator]]] = None,
    fan_in: Optional[int] = None
) -> Optional[OptimizerState]:
    """Combine partition optimizer states into one.

    Args:
        states: One state per partition
        seed: Factory for the starting aggregate of each leaf. ``None``
            starts every leaf empty, so the first folded state decides
            the aggregate's rule and layout.
        fan_in: Leaf size for the tree fold; defaults to
            ``ceil(sqrt(len(states)))``

    Returns:
        The combined optimizer state, or None if no state was provided
    """
    if fan_in is None:
        fan_in = max(1, int(math.ceil(math.sqrt(max(len(states), 1)))))
    zero = seed if seed is not None else (lambda: None)

    aggregate = tree_aggregate(states, zero, element_combiner, aggregator_combiner, fan_in=fan_in)
    if aggregate is None:
        return None
    return aggregate.result()
