"""Run metrics for training sessions"""

from paramsync.simulation.metrics import RoundMetricsCollector

__all__ = [
    'RoundMetricsCollector',
]
