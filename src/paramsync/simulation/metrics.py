"""Per-round metrics collection and reporting"""

from typing import Any, Dict, List

import numpy as np
import pandas as pd


class RoundMetricsCollector:
    """Collects per-round training metrics"""

    COLUMNS = ['round', 'split', 'strategy', 'num_partitions', 'num_iterations', 'score', 'duration']

    def __init__(self):
        """Initialize metrics collector"""
        self.rounds: List[Dict[str, Any]] = []

    def record_round(self, record_metrics: Dict[str, Any], split_index: int = 0) -> None:
        """Record metrics for one completed round"""
        row = {column: record_metrics.get(column) for column in self.COLUMNS}
        row['split'] = split_index
        self.rounds.append(row)

    def scores(self) -> List[float]:
        return [r['score'] for r in self.rounds if r['score'] is not None]

    def get_summary(self) -> dict:
        """Get summary of all metrics"""
        scores = [s for s in self.scores() if not np.isnan(s)]
        return {
            'total_rounds': len(self.rounds),
            'final_score': scores[-1] if scores else float('nan'),
            'best_round_score': float(np.min(scores)) if scores else float('nan'),
            'avg_score': float(np.mean(scores)) if scores else float('nan'),
            'total_duration': float(sum(r['duration'] or 0.0 for r in self.rounds))
        }

    def get_dataframe(self) -> pd.DataFrame:
        """Get metrics as pandas DataFrame"""
        return pd.DataFrame(self.rounds, columns=self.COLUMNS)

    def export_csv(self, filepath: str):
        """Export metrics to CSV file"""
        self.get_dataframe().to_csv(filepath, index=False)

    def reset(self):
        self.rounds = []
