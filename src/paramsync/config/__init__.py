"""Configuration loading and training options"""

from paramsync.config.manager import ConfigManager
from paramsync.config.training import (
    TrainingConfig,
    AVERAGE_EACH_ITERATION,
    ACCUM_GRADIENT,
    DIVIDE_ACCUM_GRADIENT
)

__all__ = [
    'ConfigManager',
    'TrainingConfig',
    'AVERAGE_EACH_ITERATION',
    'ACCUM_GRADIENT',
    'DIVIDE_ACCUM_GRADIENT',
]
