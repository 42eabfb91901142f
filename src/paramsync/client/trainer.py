"""Local training on a single partition.

The training core treats local training as a capability: given the
broadcast parameters, the broadcast optimizer state and a partition's
examples, return either updated parameters or a parameter update,
together with the updated optimizer state and a score.

``TorchLocalTrainer`` implements that capability for any torch
``nn.Module`` trained with SGD + momentum, exporting the momentum
buffers as the partition's optimizer state.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
from torch.nn.utils import parameters_to_vector, vector_to_parameters

from paramsync.aggregators.optimizer_state import OptimizerState, COMBINE_AVERAGE
from paramsync.errors import ShapeMismatchError
from paramsync.evaluation import Evaluation


class LocalTrainer(ABC):
    """Capability interface for per-partition local training"""

    @abstractmethod
    def num_params(self) -> int:
        """Total number of model parameters"""
        pass

    @abstractmethod
    def init_params(self) -> np.ndarray:
        """Initial flat parameter vector"""
        pass

    @abstractmethod
    def init_optimizer_state(self) -> OptimizerState:
        """Fresh default optimizer state"""
        pass

    @abstractmethod
    def fit(
        self,
        params: np.ndarray,
        optimizer_state: OptimizerState,
        examples: Sequence[Any],
        num_iterations: int
    ) -> Tuple[np.ndarray, OptimizerState, Optional[float]]:
        """Train locally and return (parameters, optimizer state, score).

        The score is None when the partition held no examples.
        """
        pass

    @abstractmethod
    def gradient(
        self,
        params: np.ndarray,
        optimizer_state: OptimizerState,
        examples: Sequence[Any],
        num_iterations: int
    ) -> Tuple[np.ndarray, OptimizerState, Optional[float]]:
        """Train locally and return (parameter update, optimizer state, score).

        The update is added to the global parameters by the caller, so it
        already carries the learning rate and sign of the step.
        """
        pass

    @abstractmethod
    def output(self, params: np.ndarray, features) -> np.ndarray:
        """Model output for ``features`` under ``params``"""
        pass

    @abstractmethod
    def score(self, params: np.ndarray, examples: Sequence[Any]) -> Tuple[float, int]:
        """Summed loss over ``examples`` and the number of examples scored"""
        pass

    @abstractmethod
    def evaluate(
        self,
        params: np.ndarray,
        examples: Sequence[Any],
        labels: Optional[List[str]] = None
    ) -> Evaluation:
        """Classification evaluation over ``examples``"""
        pass


class TorchLocalTrainer(LocalTrainer):
    """Local SGD trainer for a torch model.

    Every call works on a private copy of the template model, so one
    instance can serve many partitions concurrently.
    """

    def __init__(
        self,
        model: nn.Module,
        learning_rate: float = 0.01,
        momentum: float = 0.9,
        weight_decay: float = 0.0,
        criterion: Optional[Callable] = None,
        device: Optional[str] = None
    ):
        """Initialize trainer with model and hyperparameters.

        Args:
            model: Template PyTorch model, also the source of initial params
            learning_rate: Learning rate for SGD
            momentum: SGD momentum
            weight_decay: L2 regularization weight
            criterion: Loss function (defaults to cross entropy)
            device: Device to train on ('cuda', 'cpu', or None for auto)
        """
        if learning_rate <= 0:
            raise ValueError("learning_rate must be positive")
        self.device = device or ('cuda' if torch.cuda.is_available() else 'cpu')
        self.model = model.to(self.device)
        self.learning_rate = learning_rate
        self.momentum = momentum
        self.weight_decay = weight_decay
        self.criterion = criterion or nn.CrossEntropyLoss()
        self._num_params = sum(p.numel() for p in self.model.parameters())
        self._template_lock = threading.Lock()

    # ------------------------------------------------------------------
    # parameter plumbing

    def num_params(self) -> int:
        return self._num_params

    def init_params(self) -> np.ndarray:
        with torch.no_grad():
            return parameters_to_vector(self.model.parameters()).detach().cpu().numpy().astype(np.float64)

    def init_optimizer_state(self) -> OptimizerState:
        return OptimizerState.zeros(self._num_params, names=("momentum",), rule=COMBINE_AVERAGE)

    def _check_length(self, params: np.ndarray) -> None:
        if len(params) != self._num_params:
            raise ShapeMismatchError(
                f"Parameter vector has length {len(params)}, model expects {self._num_params}",
                expected=self._num_params,
                actual=len(params)
            )

    def _build_model(self, params: np.ndarray) -> nn.Module:
        self._check_length(params)
        with self._template_lock:
            model = copy.deepcopy(self.model)
        vector = torch.tensor(np.asarray(params), dtype=torch.float32, device=self.device)
        with torch.no_grad():
            vector_to_parameters(vector, model.parameters())
        return model

    def _build_optimizer(self, model: nn.Module, optimizer_state: Optional[OptimizerState]) -> torch.optim.SGD:
        optimizer = torch.optim.SGD(
            model.parameters(),
            lr=self.learning_rate,
            momentum=self.momentum,
            weight_decay=self.weight_decay
        )
        if optimizer_state is None or 'momentum' not in optimizer_state.buffers or self.momentum == 0:
            return optimizer

        buf = optimizer_state.buffers['momentum']
        if buf.shape[0] != self._num_params:
            raise ShapeMismatchError(
                f"Momentum buffer has length {buf.shape[0]}, model expects {self._num_params}",
                expected=self._num_params,
                actual=buf.shape[0]
            )

        offset = 0
        for param in model.parameters():
            n = param.numel()
            chunk = torch.tensor(buf[offset:offset + n], dtype=param.dtype, device=self.device)
            optimizer.state[param]['momentum_buffer'] = chunk.view_as(param).clone()
            offset += n
        return optimizer

    def _export_state(self, model: nn.Module, optimizer: torch.optim.SGD, steps: int,
                      previous: Optional[OptimizerState]) -> OptimizerState:
        chunks = []
        for param in model.parameters():
            buf = optimizer.state.get(param, {}).get('momentum_buffer')
            if buf is None:
                chunks.append(np.zeros(param.numel(), dtype=np.float64))
            else:
                chunks.append(buf.detach().cpu().numpy().astype(np.float64).ravel())
        prior_steps = previous.step if previous is not None else 0
        return OptimizerState(
            buffers={'momentum': np.concatenate(chunks) if chunks else np.zeros(0)},
            rule=COMBINE_AVERAGE,
            step=prior_steps + steps
        )

    # ------------------------------------------------------------------
    # training

    def _train(self, params, optimizer_state, examples, num_iterations):
        if num_iterations < 1:
            raise ValueError("num_iterations must be >= 1")

        model = self._build_model(params)
        optimizer = self._build_optimizer(model, optimizer_state)
        model.train()

        steps = 0
        last_loss = 0.0
        last_samples = 0
        for _ in range(num_iterations):
            epoch_loss = 0.0
            epoch_samples = 0
            for data, labels in examples:
                data = data.to(self.device)
                labels = labels.to(self.device)

                optimizer.zero_grad()
                outputs = model(data)
                loss = self.criterion(outputs, labels)
                loss.backward()
                optimizer.step()
                steps += 1

                batch_size = data.size(0)
                epoch_loss += loss.item() * batch_size
                epoch_samples += batch_size
            last_loss, last_samples = epoch_loss, epoch_samples

        # No examples seen: no score to report
        score = last_loss / last_samples if last_samples > 0 else None
        state = self._export_state(model, optimizer, steps, optimizer_state)
        with torch.no_grad():
            new_params = parameters_to_vector(model.parameters()).detach().cpu().numpy().astype(np.float64)
        return new_params, state, score

    def fit(self, params, optimizer_state, examples, num_iterations):
        return self._train(params, optimizer_state, examples, num_iterations)

    def gradient(self, params, optimizer_state, examples, num_iterations):
        new_params, state, score = self._train(params, optimizer_state, examples, num_iterations)
        return new_params - np.asarray(params, dtype=np.float64), state, score

    # ------------------------------------------------------------------
    # inference

    def output(self, params: np.ndarray, features) -> np.ndarray:
        model = self._build_model(params)
        model.eval()
        x = torch.as_tensor(np.asarray(features), dtype=torch.float32, device=self.device)
        single = x.dim() == 1
        if single:
            x = x.unsqueeze(0)
        with torch.no_grad():
            out = model(x).detach().cpu().numpy()
        return out[0] if single else out

    def score(self, params: np.ndarray, examples: Sequence[Any]) -> Tuple[float, int]:
        model = self._build_model(params)
        model.eval()
        total = 0.0
        count = 0
        with torch.no_grad():
            for data, labels in examples:
                data = data.to(self.device)
                labels = labels.to(self.device)
                loss = self.criterion(model(data), labels)
                total += loss.item() * data.size(0)
                count += data.size(0)
        return total, count

    def evaluate(self, params, examples, labels=None) -> Evaluation:
        model = self._build_model(params)
        model.eval()
        evaluation = None
        with torch.no_grad():
            for data, targets in examples:
                outputs = model(data.to(self.device))
                if evaluation is None:
                    evaluation = Evaluation(outputs.shape[1], labels)
                _, predicted = torch.max(outputs, 1)
                evaluation.eval(targets, predicted)
        if evaluation is None:
            evaluation = Evaluation(len(labels) if labels else self._output_size(), labels)
        return evaluation

    def _output_size(self) -> int:
        last = None
        for module in self.model.modules():
            if isinstance(module, nn.Linear):
                last = module
        return last.out_features if last is not None else 1
