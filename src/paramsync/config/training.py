"""Training options recognised by the driver"""

import copy
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from paramsync.config.manager import ConfigManager
from paramsync.errors import ConfigurationError


AVERAGE_EACH_ITERATION = "paramsync.iteration.average"
ACCUM_GRADIENT = "paramsync.iteration.accumgrad"
DIVIDE_ACCUM_GRADIENT = "paramsync.iteration.dividegrad"

OPTION_KEYS = {
    AVERAGE_EACH_ITERATION: 'average_each_iteration',
    ACCUM_GRADIENT: 'accumulate_gradient',
    DIVIDE_ACCUM_GRADIENT: 'divide_accumulated_gradient',
}


@dataclass
class TrainingConfig:
    """Options for synchronous partitioned training"""
    # Reduction cadence and strategy
    average_each_iteration: bool = False
    accumulate_gradient: bool = False
    divide_accumulated_gradient: bool = False

    # Local work per round
    num_iterations: int = 1

    # Partitioned compute
    max_workers: Optional[int] = None
    seed: Optional[int] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError on malformed options"""
        for name in ('average_each_iteration', 'accumulate_gradient', 'divide_accumulated_gradient'):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ConfigurationError(f"{name} must be a bool, got {value!r}")

        if isinstance(self.num_iterations, bool) or not isinstance(self.num_iterations, int) \
                or self.num_iterations < 1:
            raise ConfigurationError(f"num_iterations must be an int >= 1, got {self.num_iterations!r}")

        if self.max_workers is not None and (
                isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int)
                or self.max_workers < 1):
            raise ConfigurationError(f"max_workers must be None or an int >= 1, got {self.max_workers!r}")

        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise ConfigurationError(f"seed must be None or an int, got {self.seed!r}")

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]]) -> "TrainingConfig":
        """Build from a flat or nested options dict.

        Accepts the field names directly as well as the dotted option keys
        (``paramsync.iteration.average`` and friends), either literally or
        as nested mappings.
        """
        options = dict(options or {})
        field_names = {f.name for f in fields(cls)}

        unknown = set(options) - field_names - set(OPTION_KEYS) - {'paramsync'}
        if unknown:
            raise ConfigurationError(f"Unknown training options: {sorted(unknown)}")

        manager = ConfigManager(defaults=copy.deepcopy(options))
        values: Dict[str, Any] = {}
        for key, name in OPTION_KEYS.items():
            value = manager.get(key)
            if value is not None:
                values[name] = value

        for name in field_names:
            if name in options:
                values[name] = options[name]

        return cls(**values)

    @classmethod
    def from_yaml(cls, config_path: str, section: str = 'training') -> "TrainingConfig":
        """Load from the given section of a YAML/JSON config file"""
        manager = ConfigManager(config_path)
        return cls.from_dict(manager.section(section))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
