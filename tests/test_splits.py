"""Tests for partitioned datasets and split scheduling"""

import os
import sys
import warnings
from collections import Counter

import numpy as np
import pytest
import torch

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from paramsync.data import (
    PartitionedDataset,
    SplitScheduler,
    compute_num_splits,
    count_examples,
    from_labeled_points,
)
from paramsync.errors import SplitScheduleInconsistency


class TestComputeNumSplits:
    """Round count calculation"""

    @pytest.mark.parametrize("total, bound, expected", [
        (1000, 300, 4),
        (1000, 250, 4),
        (1000, sys.maxsize, 1),
        (1000, None, 1),
        (1000, 1000, 1),
        (1000, 5000, 1),
        (1200, 1000, 2),
        (1000, 999, 2),
        (1000, 0, 1),
        (1000, -5, 1),
    ])
    def test_num_splits(self, total, bound, expected):
        assert compute_num_splits(bound, total) == expected


class TestPartitionedDataset:
    """Tests for PartitionedDataset"""

    def test_from_examples(self):
        dataset = PartitionedDataset.from_examples(list(range(10)), num_partitions=3)
        assert dataset.num_partitions == 3
        assert dataset.count() == 10
        assert sorted(dataset.collect()) == list(range(10))

    def test_invalid_partition_count(self):
        with pytest.raises(ValueError):
            PartitionedDataset.from_examples([1, 2], num_partitions=0)

    def test_repartition_keeps_examples(self):
        dataset = PartitionedDataset([[1, 2, 3], [4], [5, 6]])
        repartitioned = dataset.repartition(4, seed=3)
        assert repartitioned.num_partitions == 4
        assert sorted(repartitioned.collect()) == [1, 2, 3, 4, 5, 6]
        sizes = [len(p) for p in repartitioned.partitions]
        assert max(sizes) - min(sizes) <= 1

    def test_random_split_is_disjoint_and_complete(self):
        dataset = PartitionedDataset.from_examples(list(range(1000)), num_partitions=5)
        subsets = dataset.random_split([0.25] * 4, seed=7)

        combined = Counter()
        for subset in subsets:
            combined.update(subset.collect())
        assert combined == Counter(range(1000))

    def test_random_split_sizes_are_approximate(self):
        dataset = PartitionedDataset.from_examples(list(range(4000)), num_partitions=4)
        subsets = dataset.random_split([0.5, 0.5], seed=11)
        for subset in subsets:
            assert 1700 < subset.count() < 2300

    def test_random_split_bad_weights(self):
        dataset = PartitionedDataset([[1, 2]])
        with pytest.raises(ValueError):
            dataset.random_split([])
        with pytest.raises(ValueError):
            dataset.random_split([-1.0, 2.0])


class TestSplitScheduler:
    """Tests for SplitScheduler"""

    def test_single_round_keeps_dataset(self):
        dataset = PartitionedDataset.from_examples(list(range(100)), num_partitions=3)
        splits = SplitScheduler(seed=0).schedule(dataset, None, 100, num_partitions=5)

        assert len(splits) == 1
        assert splits[0].dataset is dataset
        assert splits[0].num_splits == 1

    @pytest.mark.parametrize("bound, expected", [(300, 4), (250, 4), (sys.maxsize, 1)])
    def test_split_counts(self, bound, expected):
        dataset = PartitionedDataset.from_examples(list(range(1000)), num_partitions=4)
        splits = SplitScheduler(seed=1).schedule(dataset, bound, 1000, num_partitions=4)
        assert len(splits) == expected
        assert [s.index for s in splits] == list(range(expected))

    def test_pass_covers_dataset_exactly_once(self):
        """The multiset union of all splits equals the dataset."""
        dataset = PartitionedDataset.from_examples(list(range(1000)), num_partitions=4)
        splits = SplitScheduler(seed=2).schedule(dataset, 300, 1000, num_partitions=3)

        combined = Counter()
        for split in splits:
            combined.update(split.dataset.collect())
        assert combined == Counter(range(1000))

    def test_splits_are_repartitioned(self):
        dataset = PartitionedDataset.from_examples(list(range(1000)), num_partitions=2)
        splits = SplitScheduler(seed=3).schedule(dataset, 250, 1000, num_partitions=6)
        for split in splits:
            assert split.num_partitions == 6

    def test_split_sizes_are_approximate(self):
        dataset = PartitionedDataset.from_examples(list(range(1000)), num_partitions=2)
        splits = SplitScheduler(seed=4).schedule(dataset, 250, 1000, num_partitions=2)
        for split in splits:
            assert 150 < split.num_examples < 350

    def test_non_positive_bound_warns(self):
        dataset = PartitionedDataset.from_examples(list(range(10)), num_partitions=2)
        with pytest.warns(SplitScheduleInconsistency):
            splits = SplitScheduler().schedule(dataset, 0, 10, num_partitions=2)
        assert len(splits) == 1

    def test_oversized_bound_is_silent(self):
        dataset = PartitionedDataset.from_examples(list(range(10)), num_partitions=2)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            splits = SplitScheduler().schedule(dataset, 50, 10, num_partitions=2)
        assert len(splits) == 1

    def test_invalid_partition_count(self):
        dataset = PartitionedDataset([[1]])
        with pytest.raises(ValueError):
            SplitScheduler().schedule(dataset, 1, 1, num_partitions=0)


class TestLabeledPoints:
    """Tests for minibatch creation"""

    def test_from_labeled_points(self):
        features = np.random.randn(50, 4).astype(np.float32)
        labels = np.random.randint(0, 3, size=50)

        dataset = from_labeled_points(features, labels, batch_size=8, num_partitions=3)

        assert dataset.num_partitions == 3
        assert dataset.count() == 7  # ceil(50 / 8) minibatches
        assert count_examples(dataset) == 50
        data, targets = dataset.partitions[0][0]
        assert data.shape == (8, 4)
        assert targets.dtype == torch.long

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError):
            from_labeled_points(np.zeros((5, 2)), np.zeros(4), batch_size=2)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
