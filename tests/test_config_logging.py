"""Tests for configuration loading, training logs and round metrics"""

import csv
import json
import logging
import os
import sys

import numpy as np
import pytest
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from fakes import ScriptedTrainer, make_partitions

from paramsync import SyncTrainingDriver
from paramsync.config import ConfigManager, TrainingConfig
from paramsync.data import PartitionedDataset
from paramsync.errors import ConfigurationError
from paramsync.evaluation import Evaluation
from paramsync.logging import LogLevel, TrainingLogger
from paramsync.simulation import RoundMetricsCollector


class TestTrainingConfig:
    """Option parsing and validation"""

    def test_defaults(self):
        config = TrainingConfig()
        assert not config.average_each_iteration
        assert not config.accumulate_gradient
        assert not config.divide_accumulated_gradient
        assert config.num_iterations == 1

    def test_dotted_keys(self):
        config = TrainingConfig.from_dict({
            'paramsync.iteration.average': True,
            'paramsync.iteration.accumgrad': True,
            'paramsync.iteration.dividegrad': True,
        })
        assert config.average_each_iteration
        assert config.accumulate_gradient
        assert config.divide_accumulated_gradient

    def test_nested_keys(self):
        config = TrainingConfig.from_dict({
            'paramsync': {'iteration': {'accumgrad': True}},
            'num_iterations': 5
        })
        assert config.accumulate_gradient
        assert not config.average_each_iteration
        assert config.num_iterations == 5

    @pytest.mark.parametrize("options", [
        {'num_iterations': 0},
        {'num_iterations': 1.5},
        {'max_workers': 0},
        {'seed': 'abc'},
        {'divide_accumulated_gradient': 1},
        {'paramsync.iteration.average': 'true'},
        {'unknown': 1},
    ])
    def test_invalid_options(self, options):
        with pytest.raises(ConfigurationError):
            TrainingConfig.from_dict(options)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            TrainingConfig(num_iterations=-1)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "training.yaml"
        path.write_text(yaml.safe_dump({
            'training': {
                'accumulate_gradient': True,
                'num_iterations': 3,
                'seed': 7
            },
            'data': {'num_partitions': 4}
        }))

        config = TrainingConfig.from_yaml(str(path))
        assert config.accumulate_gradient
        assert config.num_iterations == 3
        assert config.seed == 7

    def test_round_trip_dict(self):
        config = TrainingConfig(average_each_iteration=True, num_iterations=2)
        assert TrainingConfig.from_dict(config.to_dict()) == config


class TestConfigManager:
    """Nested configuration access"""

    def test_get_nested_and_literal(self):
        manager = ConfigManager(defaults={
            'training': {'num_iterations': 2},
            'a.b': 'literal'
        })
        assert manager.get('training.num_iterations') == 2
        assert manager.get('a.b') == 'literal'
        assert manager.get('training.missing', 'fallback') == 'fallback'

    def test_set_and_merge(self):
        manager = ConfigManager()
        manager.set('model.hidden_dim', 16)
        manager.merge_config({'model': {'learning_rate': 0.1}})
        assert manager.section('model') == {'hidden_dim': 16, 'learning_rate': 0.1}
        assert manager.section('absent') == {}

    def test_save_and_reload(self, tmp_path):
        path = str(tmp_path / "saved.yaml")
        manager = ConfigManager(defaults={'training': {'seed': 3}})
        manager.save_config(path)
        assert ConfigManager(path).get('training.seed') == 3

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({'training': {'num_iterations': 4}}))
        assert ConfigManager(str(path)).get('training.num_iterations') == 4


class TestTrainingLogger:
    """Structured training logs"""

    def test_json_lines(self, tmp_path):
        logger = TrainingLogger(name="paramsync_test_json", log_dir=str(tmp_path), enable_console=False)
        logger.log_round_start(1, num_partitions=4, strategy="averaging", num_iterations=2)
        logger.log_round_end(1, 0.5, metrics={'score': 0.25})
        logger.log_split(0, 3, 100)
        logger.close()

        with open(tmp_path / "paramsync_test_json.jsonl") as f:
            records = [json.loads(line) for line in f]

        assert [r['event_type'] for r in records] == ['round_start', 'round_end', 'split']
        assert records[0]['round_num'] == 1
        assert records[0]['metrics']['num_partitions'] == 4
        assert records[1]['metrics']['score'] == 0.25
        assert records[2]['split_index'] == 0

    def test_log_file_has_round(self, tmp_path):
        logger = TrainingLogger(name="paramsync_test_file", log_dir=str(tmp_path),
                                enable_console=False, enable_json=False)
        logger.set_round(3)
        logger.info("hello")
        logging.getLogger("paramsync_test_file.component").info("from child")
        logger.close()

        content = (tmp_path / "paramsync_test_file.log").read_text()
        assert "R3 | INFO | hello" in content
        assert "R3 | INFO | from child" in content

    def test_level_filters_json(self, tmp_path):
        logger = TrainingLogger(name="paramsync_test_level", log_dir=str(tmp_path),
                                level=LogLevel.WARNING, enable_console=False, enable_file=False)
        logger.info("dropped")
        logger.warning("kept")
        logger.close()

        with open(tmp_path / "paramsync_test_level.jsonl") as f:
            messages = [json.loads(line)['message'] for line in f]
        assert messages == ['kept']

    def test_metrics_csv(self, tmp_path):
        logger = TrainingLogger(name="paramsync_test_csv", log_dir=str(tmp_path),
                                enable_console=False, enable_file=False, enable_json=False)
        logger.set_round(1)
        logger.log_metrics({'score': 0.5})
        logger.set_round(2)
        logger.log_metrics({'score': 0.25, 'best_score': 0.2})
        path = logger.export_metrics_csv(str(tmp_path / "metrics.csv"))
        logger.close()

        with open(path, newline='') as f:
            rows = list(csv.DictReader(f))
        assert [row['round'] for row in rows] == ['1', '2']
        assert rows[1]['best_score'] == '0.2'

    def test_driver_logs_rounds(self, tmp_path):
        training_logger = TrainingLogger(name="paramsync_test_driver", log_dir=str(tmp_path),
                                         enable_console=False, enable_file=False)
        driver = SyncTrainingDriver(ScriptedTrainer(), training_logger=training_logger)
        driver.fit(PartitionedDataset(make_partitions([[1.0, 2.0, 3.0], [3.0, 2.0, 1.0]], [0.2, 0.4])))
        training_logger.close()

        with open(tmp_path / "paramsync_test_driver.jsonl") as f:
            events = [json.loads(line)['event_type'] for line in f]
        assert events == ['round_start', 'round_end', 'metrics']
        assert os.path.exists(tmp_path / "paramsync_test_driver_metrics.csv")


class TestRoundMetricsCollector:
    """Per-round metrics table"""

    def test_dataframe_and_summary(self, tmp_path):
        collector = RoundMetricsCollector()
        collector.record_round({'round': 1, 'strategy': 'averaging', 'score': 0.8, 'duration': 1.0})
        collector.record_round({'round': 2, 'strategy': 'averaging', 'score': 0.5, 'duration': 2.0},
                               split_index=1)

        df = collector.get_dataframe()
        assert list(df.columns) == RoundMetricsCollector.COLUMNS
        assert list(df['split']) == [0, 1]

        summary = collector.get_summary()
        assert summary['total_rounds'] == 2
        assert summary['final_score'] == pytest.approx(0.5)
        assert summary['best_round_score'] == pytest.approx(0.5)
        assert summary['total_duration'] == pytest.approx(3.0)

        path = str(tmp_path / "rounds.csv")
        collector.export_csv(path)
        assert os.path.exists(path)

    def test_empty_summary(self):
        summary = RoundMetricsCollector().get_summary()
        assert summary['total_rounds'] == 0
        assert np.isnan(summary['final_score'])


class TestEvaluation:
    """Mergeable classification evaluation"""

    def test_merge_equals_single_pass(self):
        actual = [0, 1, 1, 0, 2, 2]
        predicted = [0, 1, 0, 0, 2, 1]

        whole = Evaluation(3)
        whole.eval(actual, predicted)

        left, right = Evaluation(3), Evaluation(3)
        left.eval(actual[:3], predicted[:3])
        right.eval(actual[3:], predicted[3:])
        merged = left.merge(right)

        np.testing.assert_array_equal(merged.confusion, whole.confusion)
        assert merged.accuracy() == pytest.approx(4 / 6)
        assert merged.recall(2) == pytest.approx(0.5)
        assert merged.precision(0) == pytest.approx(2 / 3)

    def test_class_mismatch(self):
        with pytest.raises(ValueError):
            Evaluation(2).merge(Evaluation(3))

    def test_summary_uses_labels(self):
        evaluation = Evaluation(2, labels=['neg', 'pos'])
        evaluation.eval([0, 1], [0, 1])
        assert evaluation.summary()['per_class_recall'] == {'neg': 1.0, 'pos': 1.0}


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
