"""Global training state owned by the driver"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from paramsync.aggregators.optimizer_state import OptimizerState


@dataclass(eq=False)
class GlobalState:
    """Current model state from the driver's point of view.

    Replaced wholesale after each round; never mutated while a round is
    in flight.
    """
    params: np.ndarray
    optimizer_state: Optional[OptimizerState] = None
    iteration: int = 0

    def __post_init__(self):
        self.params = np.asarray(self.params, dtype=np.float64).ravel()

    @property
    def num_params(self) -> int:
        return int(self.params.shape[0])
