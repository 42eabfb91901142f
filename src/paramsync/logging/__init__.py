"""Round-aware logging for synchronous training.

Provides structured logging with round tracking, metrics logging,
and separate log streams per component.
"""

import csv
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class LogLevel(Enum):
    """Log levels for training logging"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass
class TrainingLogRecord:
    """Structured log record for training events"""
    timestamp: str
    round_num: int
    component: str
    event_type: str  # 'round_start', 'round_end', 'split', 'metrics', ...
    message: str
    metrics: Optional[Dict[str, Any]] = None
    split_index: Optional[int] = None
    level: str = "INFO"

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), default=str)


class _RoundFilter(logging.Filter):
    """Stamps the current round onto records that do not carry one"""

    def __init__(self, owner: "TrainingLogger"):
        super().__init__()
        self.owner = owner

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'round'):
            record.round = self.owner.current_round
        return True


class TrainingLogger:
    """Logger for synchronous partitioned training.

    Provides:
    - Round-aware log messages
    - Structured JSON lines per component
    - Metrics CSV export

    Component loggers below ``name`` in the logging hierarchy (for
    example ``paramsync.round_executor`` under ``paramsync``) are written
    through the same handlers with the current round stamped in.
    """

    def __init__(
        self,
        name: str = "paramsync",
        log_dir: str = "outputs/logs",
        level: LogLevel = LogLevel.INFO,
        enable_console: bool = True,
        enable_file: bool = True,
        enable_json: bool = True
    ):
        """Initialize training logger.

        Args:
            name: Logger name (component name)
            log_dir: Directory for log files
            level: Minimum log level
            enable_console: Enable console output
            enable_file: Enable file logging
            enable_json: Enable JSON structured logs
        """
        self.name = name
        self.log_dir = log_dir
        self.level = level
        self.current_round = 0

        if enable_file or enable_json:
            os.makedirs(log_dir, exist_ok=True)

        self.logger = logging.getLogger(name)
        self.logger.setLevel(level.value)
        self.logger.handlers = []

        self.formatter = logging.Formatter(
            '%(asctime)s | %(name)s | R%(round)s | %(levelname)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self._round_filter = _RoundFilter(self)

        if enable_console:
            self._add_handler(logging.StreamHandler())
        if enable_file:
            self._add_handler(logging.FileHandler(os.path.join(log_dir, f"{name}.log"), mode='a'))

        self._json_file = None
        if enable_json:
            self._json_file = open(os.path.join(log_dir, f"{name}.jsonl"), 'a')

        self._metrics_buffer: List[Dict] = []
        self._lock = threading.Lock()

    def _add_handler(self, handler: logging.Handler) -> None:
        handler.setLevel(self.level.value)
        handler.setFormatter(self.formatter)
        handler.addFilter(self._round_filter)
        self.logger.addHandler(handler)

    def set_round(self, round_num: int) -> None:
        """Set current round number for logging"""
        self.current_round = round_num

    def _log(
        self,
        level: LogLevel,
        message: str,
        event_type: str = "general",
        metrics: Optional[Dict] = None,
        split_index: Optional[int] = None
    ) -> None:
        self.logger.log(level.value, message, extra={'round': self.current_round})

        if self._json_file is not None and level.value >= self.level.value:
            record = TrainingLogRecord(
                timestamp=datetime.now().isoformat(),
                round_num=self.current_round,
                component=self.name,
                event_type=event_type,
                message=message,
                metrics=metrics,
                split_index=split_index,
                level=level.name
            )
            with self._lock:
                self._json_file.write(record.to_json() + '\n')
                self._json_file.flush()

    def debug(self, message: str, event_type: str = "debug", **kwargs) -> None:
        self._log(LogLevel.DEBUG, message, event_type, **kwargs)

    def info(self, message: str, event_type: str = "info", **kwargs) -> None:
        self._log(LogLevel.INFO, message, event_type, **kwargs)

    def warning(self, message: str, event_type: str = "warning", **kwargs) -> None:
        self._log(LogLevel.WARNING, message, event_type, **kwargs)

    def error(self, message: str, event_type: str = "error", **kwargs) -> None:
        self._log(LogLevel.ERROR, message, event_type, **kwargs)

    # Training-specific logging methods

    def log_round_start(
        self,
        round_num: int,
        num_partitions: int,
        strategy: str,
        num_iterations: int = 1
    ) -> None:
        """Log start of a synchronization round"""
        self.set_round(round_num)
        self.info(
            f"Round {round_num} started: {num_partitions} partitions, "
            f"{strategy}, {num_iterations} local iteration(s)",
            event_type="round_start",
            metrics={
                'num_partitions': num_partitions,
                'strategy': strategy,
                'num_iterations': num_iterations
            }
        )

    def log_round_end(
        self,
        round_num: int,
        duration: float,
        metrics: Optional[Dict] = None
    ) -> None:
        """Log end of a synchronization round"""
        all_metrics = {'duration_sec': duration}
        if metrics:
            all_metrics.update(metrics)

        self.info(
            f"Round {round_num} completed in {duration:.2f}s",
            event_type="round_end",
            metrics=all_metrics
        )

    def log_split(self, split_index: int, num_splits: int, num_examples: int) -> None:
        """Log the start of training on one scheduled split"""
        self.info(
            f"Initiating distributed training of subset {split_index + 1} of {num_splits} "
            f"(~{num_examples} examples)",
            event_type="split",
            metrics={'num_splits': num_splits, 'num_examples': num_examples},
            split_index=split_index
        )

    def log_metrics(self, metrics: Dict[str, Any], prefix: str = "") -> None:
        """Log metrics and buffer them for CSV export"""
        record = {
            'round': self.current_round,
            'timestamp': datetime.now().isoformat()
        }
        for key, value in metrics.items():
            record[f"{prefix}_{key}" if prefix else key] = value

        with self._lock:
            self._metrics_buffer.append(record)

        metrics_str = ", ".join(
            f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
            for k, v in metrics.items()
        )
        self.info(f"Metrics: {metrics_str}", event_type="metrics", metrics=metrics)

    def export_metrics_csv(self, filepath: Optional[str] = None) -> str:
        """Export buffered metrics to CSV"""
        if filepath is None:
            filepath = os.path.join(self.log_dir, f"{self.name}_metrics.csv")

        with self._lock:
            if not self._metrics_buffer:
                return filepath

            all_keys = set()
            for record in self._metrics_buffer:
                all_keys.update(record.keys())

            with open(filepath, 'w', newline='') as f:
                writer = csv.DictWriter(f, fieldnames=sorted(all_keys))
                writer.writeheader()
                writer.writerows(self._metrics_buffer)

        return filepath

    def close(self) -> None:
        """Close handlers and export buffered metrics"""
        if self._metrics_buffer:
            os.makedirs(self.log_dir, exist_ok=True)
            self.export_metrics_csv()

        if self._json_file is not None:
            self._json_file.close()
            self._json_file = None

        for handler in self.logger.handlers[:]:
            handler.close()
            self.logger.removeHandler(handler)


class TrainingLoggerFactory:
    """Factory for creating training loggers with consistent configuration"""

    _loggers: Dict[str, TrainingLogger] = {}
    _log_dir: str = "outputs/logs"
    _default_level: LogLevel = LogLevel.INFO

    @classmethod
    def configure(cls, log_dir: str = "outputs/logs", default_level: LogLevel = LogLevel.INFO) -> None:
        cls._log_dir = log_dir
        cls._default_level = default_level

    @classmethod
    def get_logger(cls, name: str = "paramsync", level: Optional[LogLevel] = None) -> TrainingLogger:
        """Get or create a logger"""
        if name not in cls._loggers:
            cls._loggers[name] = TrainingLogger(
                name=name,
                log_dir=cls._log_dir,
                level=level or cls._default_level
            )
        return cls._loggers[name]

    @classmethod
    def close_all(cls) -> None:
        for logger in cls._loggers.values():
            logger.close()
        cls._loggers.clear()


__all__ = [
    'LogLevel',
    'TrainingLogRecord',
    'TrainingLogger',
    'TrainingLoggerFactory',
]
