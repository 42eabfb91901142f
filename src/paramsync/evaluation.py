"""Classification evaluation that can be computed per partition and merged"""

from typing import Dict, List, Optional

import numpy as np
import torch


class Evaluation:
    """Confusion-matrix based classification summary.

    Partitions each build their own Evaluation; ``merge`` adds the
    confusion matrices so the reduced result equals an evaluation over
    all examples at once.
    """

    def __init__(self, num_classes: int, labels: Optional[List[str]] = None):
        if num_classes < 1:
            raise ValueError("num_classes must be >= 1")
        if labels is not None and len(labels) != num_classes:
            raise ValueError(
                f"Got {len(labels)} label names for {num_classes} classes"
            )
        self.num_classes = num_classes
        self.labels = list(labels) if labels is not None else None
        self.confusion = np.zeros((num_classes, num_classes), dtype=np.int64)

    def eval(self, actual, predicted) -> None:
        """Record a batch of true and predicted class indices"""
        if isinstance(actual, torch.Tensor):
            actual = actual.detach().cpu().numpy()
        if isinstance(predicted, torch.Tensor):
            predicted = predicted.detach().cpu().numpy()
        actual = np.asarray(actual, dtype=np.int64).ravel()
        predicted = np.asarray(predicted, dtype=np.int64).ravel()
        np.add.at(self.confusion, (actual, predicted), 1)

    def merge(self, other: "Evaluation") -> "Evaluation":
        """Add another evaluation's counts into this one"""
        if other.num_classes != self.num_classes:
            raise ValueError(
                f"Cannot merge evaluations over {self.num_classes} and {other.num_classes} classes"
            )
        self.confusion += other.confusion
        if self.labels is None:
            self.labels = other.labels
        return self

    @property
    def total(self) -> int:
        return int(self.confusion.sum())

    def accuracy(self) -> float:
        if self.total == 0:
            return 0.0
        return float(np.trace(self.confusion) / self.total)

    def precision(self, cls: Optional[int] = None) -> float:
        """Precision for one class, or macro-average over predicted classes"""
        predicted = self.confusion.sum(axis=0)
        if cls is not None:
            return float(self.confusion[cls, cls] / predicted[cls]) if predicted[cls] else 0.0
        mask = predicted > 0
        if not mask.any():
            return 0.0
        return float(np.mean(np.diag(self.confusion)[mask] / predicted[mask]))

    def recall(self, cls: Optional[int] = None) -> float:
        """Recall for one class, or macro-average over present classes"""
        actual = self.confusion.sum(axis=1)
        if cls is not None:
            return float(self.confusion[cls, cls] / actual[cls]) if actual[cls] else 0.0
        mask = actual > 0
        if not mask.any():
            return 0.0
        return float(np.mean(np.diag(self.confusion)[mask] / actual[mask]))

    def f1(self) -> float:
        p, r = self.precision(), self.recall()
        if p + r == 0:
            return 0.0
        return 2 * p * r / (p + r)

    def class_name(self, cls: int) -> str:
        if self.labels is not None:
            return self.labels[cls]
        return str(cls)

    def summary(self) -> Dict:
        return {
            'accuracy': self.accuracy(),
            'precision': self.precision(),
            'recall': self.recall(),
            'f1': self.f1(),
            'total': self.total,
            'per_class_recall': {
                self.class_name(c): self.recall(c) for c in range(self.num_classes)
            }
        }

    def __repr__(self) -> str:
        return (
            f"Evaluation(classes={self.num_classes}, examples={self.total}, "
            f"accuracy={self.accuracy():.4f})"
        )
