"""Deterministic local trainer used by the round and driver tests.

Every example is a ``(vector, score)`` pair. A partition's "training"
returns the mean of its example vectors as parameters (or their sum as
the parameter update), the same mean as its momentum buffer and the
mean of its example scores.
"""

import threading

import numpy as np

from paramsync.aggregators.optimizer_state import OptimizerState
from paramsync.client.trainer import LocalTrainer
from paramsync.evaluation import Evaluation


def make_partitions(vectors, scores=None):
    """One partition per vector, each holding a single example"""
    if scores is None:
        scores = [0.0] * len(vectors)
    return [[(np.asarray(v, dtype=np.float64), s)] for v, s in zip(vectors, scores)]


class ScriptedTrainer(LocalTrainer):
    """Local trainer with fully predictable results"""

    def __init__(self, length=3, fail_on=None, drop_state_on=None, rule="average"):
        self.length = length
        self.fail_on = fail_on
        self.drop_state_on = drop_state_on
        self.rule = rule
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, kind, params, examples, num_iterations):
        with self._lock:
            self.calls.append({
                'kind': kind,
                'params': np.array(params),
                'num_examples': len(examples),
                'num_iterations': num_iterations,
                'writeable': params.flags.writeable
            })

    def _check(self, examples):
        vectors = [np.asarray(v) for v, _ in examples]
        if self.fail_on is not None and any(np.allclose(v, self.fail_on) for v in vectors):
            raise RuntimeError("partition failed")
        return vectors, [s for _, s in examples]

    def _state(self, vectors, examples):
        if self.drop_state_on is not None and any(
                np.allclose(v, self.drop_state_on) for v in vectors):
            return None
        return OptimizerState({'momentum': np.mean(vectors, axis=0)}, rule=self.rule, step=1)

    def num_params(self):
        return self.length

    def init_params(self):
        return np.zeros(self.length)

    def init_optimizer_state(self):
        return OptimizerState.zeros(self.length, rule=self.rule)

    def fit(self, params, optimizer_state, examples, num_iterations):
        self._record('fit', params, examples, num_iterations)
        vectors, scores = self._check(examples)
        return np.mean(vectors, axis=0), self._state(vectors, examples), float(np.mean(scores))

    def gradient(self, params, optimizer_state, examples, num_iterations):
        self._record('gradient', params, examples, num_iterations)
        vectors, scores = self._check(examples)
        return np.sum(vectors, axis=0), self._state(vectors, examples), float(np.mean(scores))

    def output(self, params, features):
        return np.asarray(features, dtype=np.float64) * params.sum()

    def score(self, params, examples):
        return float(sum(s for _, s in examples)), len(examples)

    def evaluate(self, params, examples, labels=None):
        evaluation = Evaluation(2, labels)
        for vector, _ in examples:
            evaluation.eval([0], [int(np.asarray(vector).sum() > 0)])
        return evaluation
