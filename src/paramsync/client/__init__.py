"""Partition-side local training.

Provides:
- LocalTrainer capability interface
- TorchLocalTrainer for torch models trained with SGD + momentum
"""

from paramsync.client.trainer import LocalTrainer, TorchLocalTrainer

__all__ = [
    'LocalTrainer',
    'TorchLocalTrainer',
]
