"""The network orchestrator: an ordered list of layers and the training loop."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from .batch_handler import BatchHandler, LastBatchPolicy
from .convolutional_layer import ConvolutionalLayer
from .fully_connected_layer import FullyConnectedLayer
from .layer import LayerKind, SequencingError
from .operators import ActivationKind, PoolingKind
from .pooling_layer import PoolingLayer
from .tensor import Tensor
from .tensor_data import FormatMismatchError, as_format, check_same_format

if TYPE_CHECKING:
    from typing import Callable, Iterable, List, Optional

    from .config import TrainingConfig
    from .data_space import DataSpace
    from .layer import Layer
    from .tensor_data import Format

logger = logging.getLogger(__name__)

DEFAULT_LEARNING_RATE = 0.1


class EmptyNetworkError(RuntimeError):
    """Exception raised when an operation needs layers the network does not have."""

    pass


def ms_to_str(ms: int) -> str:
    """Render a duration in milliseconds as e.g. `1m 2s 30ms`."""
    minutes, rest = divmod(int(ms), 60_000)
    seconds, millis = divmod(rest, 1000)
    parts = []
    if minutes:
        parts.append(f"{minutes}m")
    if minutes or seconds:
        parts.append(f"{seconds}s")
    parts.append(f"{millis}ms")
    return " ".join(parts)


@dataclass
class TestResult:
    """Outcome of one `Network.test` pass."""

    __test__ = False  # not a pytest test class

    data_count: int = 0
    time_in_ms: int = 0
    avg_cost: float = 0.0
    accuracy: float = 0.0

    def to_string(self) -> str:
        return (
            f"Data count: {self.data_count}\n"
            f"Time taken: {ms_to_str(self.time_in_ms)}\n"
            f"Avg cost: {self.avg_cost:f}\n"
            f"Accuracy: {self.accuracy * 100:f}%\n"
        )


def same_result(output: Tensor, label: Tensor) -> bool:
    """Whether a prediction matches its label.

    Multi-value outputs compare the arg-max; a single output compares
    which side of 0.5 both values fall on.
    """
    out = output.to_numpy().ravel()
    expected = label.to_numpy().ravel()
    if out.size == 1:
        return bool((out[0] >= 0.5) == (expected[0] >= 0.5))
    return int(np.argmax(out)) == int(np.argmax(expected))


def default_log_fn(epoch: int, avg_cost: float) -> None:
    logger.info("Epoch %d avg cost %f", epoch, avg_cost)


class Network:
    """Owns an ordered list of layers and drives forward and backward passes.

    Layer `i` reads the activations of layer `i - 1` (the network input
    for the first layer) and, during back propagation, adds its upstream
    error into the error tensor of layer `i - 1`.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.layers: List[Layer] = []
        self.parameter_layer_indices: List[int] = []
        self.input_format: Optional[Format] = None
        self.output_format: Optional[Format] = None
        self._rng = rng if rng is not None else random.Random()
        self._input: Optional[Tensor] = None

    # Topology

    def set_input_format(self, fmt: Iterable[int]) -> None:
        if self.input_format is not None:
            raise SequencingError("Cannot set input format twice.")
        self.input_format = _format_of(fmt)

    def set_output_format(self, fmt: Iterable[int]) -> None:
        if self.output_format is not None:
            raise SequencingError("Cannot set output format twice.")
        self.output_format = _format_of(fmt)

    def get_last_layer(self) -> Optional[Layer]:
        return self.layers[-1] if self.layers else None

    def add_layer(self, layer: Layer) -> None:
        """Append `layer`, binding its input format to the previous output.

        The first layer is bound to the network's input format. Every layer
        but a pooling layer is recorded as a parameter layer.
        """
        last = self.get_last_layer()
        if last is None:
            if self.input_format is None:
                raise SequencingError("Set the input format before adding layers.")
            layer.set_input_format(self.input_format)
        else:
            assert last.output_format is not None
            layer.set_input_format(last.output_format)

        if layer.kind != LayerKind.POOLING:
            self.parameter_layer_indices.append(len(self.layers))
        self.layers.append(layer)
        logger.debug(
            "added %s layer %d with output %s",
            layer.kind.value,
            len(self.layers) - 1,
            layer.output_format,
        )

    def _layer_rng(self) -> random.Random:
        return random.Random(self._rng.getrandbits(64))

    def add_fully_connected_layer(
        self, num_neurons: int, activation_fn: ActivationKind
    ) -> None:
        self.add_layer(FullyConnectedLayer(num_neurons, activation_fn, self._layer_rng()))

    def add_last_fully_connected_layer(self, activation_fn: ActivationKind) -> None:
        """Append a fully-connected layer whose activations have the output format."""
        if self.output_format is None:
            raise SequencingError("Set the output format before adding the last layer.")
        self.add_layer(
            FullyConnectedLayer(self.output_format, activation_fn, self._layer_rng())
        )

    def add_convolutional_layer(
        self,
        number_of_kernels: int,
        kernel_size: int,
        stride: int,
        activation_fn: ActivationKind,
    ) -> None:
        self.add_layer(
            ConvolutionalLayer(
                number_of_kernels, kernel_size, stride, activation_fn, self._layer_rng()
            )
        )

    def add_pooling_layer(
        self, kernel_size: int, stride: int, pooling_fn: PoolingKind
    ) -> None:
        self.add_layer(PoolingLayer(kernel_size, stride, pooling_fn))

    def get_output(self) -> Optional[Tensor]:
        """The last layer's activations, or None without layers."""
        last = self.get_last_layer()
        return last.activations if last is not None else None

    # Parameters

    def set_all_parameter(self, value: float) -> None:
        for idx in self.parameter_layer_indices:
            self.layers[idx].set_all_parameter(value)

    def apply_noise(self, value_range: float) -> None:
        for idx in self.parameter_layer_indices:
            self.layers[idx].apply_noise(value_range)

    def mutate(self, value_range: float) -> None:
        """Perturb one scalar parameter of one uniformly chosen parameter layer."""
        if not self.parameter_layer_indices:
            raise EmptyNetworkError("Cannot mutate. No parameter layers have been added yet.")
        idx = self._rng.choice(self.parameter_layer_indices)
        self.layers[idx].mutate(value_range)

    def apply_deltas(
        self, training_data_count: int, learning_rate: float = DEFAULT_LEARNING_RATE
    ) -> None:
        """Average and apply the deltas of every parameter layer."""
        for idx in self.parameter_layer_indices:
            self.layers[idx].apply_deltas(training_data_count, learning_rate)

    # Propagation

    def set_input(self, input: Tensor) -> None:
        if self.input_format is None:
            raise SequencingError("Could not set input. Input format is not set.")
        check_same_format(self.input_format, input.format)
        if not self.layers:
            raise EmptyNetworkError("Could not set input. No layers have been added yet.")
        self._input = input

    def forward_propagation(self, input: Tensor) -> None:
        self.set_input(input)
        previous = input
        for layer in self.layers:
            layer.forward_propagation(previous)
            previous = layer.activations

    def back_propagation(self) -> None:
        """Run every layer's backward pass, last layer first."""
        if self._input is None:
            raise SequencingError("Run a forward pass before back propagating.")
        for i in reversed(range(len(self.layers))):
            if i == 0:
                self.layers[i].back_propagation(self._input, None)
            else:
                previous = self.layers[i - 1]
                self.layers[i].back_propagation(previous.activations, previous.error)

    def calculate_cost(self, expected_output: Tensor) -> float:
        """Sum of squared errors between the last output and `expected_output`."""
        output = self.get_output()
        if output is None or self._input is None:
            raise SequencingError("No output yet, run a forward pass first.")
        if not Tensor.equal_format(output, expected_output):
            raise FormatMismatchError(
                f"Output format {output.format} does not match {expected_output.format}."
            )
        diff = output.to_numpy() - expected_output.to_numpy()
        return float(np.sum(diff * diff))

    # Training

    def learn_once(
        self,
        data: Tensor,
        label: Tensor,
        apply_changes: bool = True,
        learning_rate: float = DEFAULT_LEARNING_RATE,
    ) -> None:
        """Forward `data`, seed the error from `label` and back propagate.

        With `apply_changes` the deltas are applied right away (online
        learning); otherwise they stay accumulated for a later
        `apply_deltas`.
        """
        if self.output_format is None:
            raise SequencingError("Set the output format before learning.")
        check_same_format(self.output_format, label.format)

        self.forward_propagation(data)
        last = self.layers[-1]
        last.set_error_for_last_layer(label)
        self.back_propagation()

        if apply_changes:
            self.apply_deltas(1, learning_rate)

    def learn(
        self,
        training_data: DataSpace,
        batch_size: int = 1,
        epochs: int = 1,
        learning_rate: float = DEFAULT_LEARNING_RATE,
        last_batch: LastBatchPolicy = LastBatchPolicy.SHRINK,
        log_fn: Optional[Callable[[int, float], None]] = default_log_fn,
        config: Optional[TrainingConfig] = None,
    ) -> List[float]:
        """Mini-batch gradient descent over `training_data`.

        Every example of a batch accumulates deltas, then one
        `apply_deltas(len(batch))` averages them. The data space is
        reshuffled between epochs.

        Args:
        ----
            training_data: labelled examples in the network's formats.
            batch_size: examples averaged into one update.
            epochs: passes over `training_data`.
            learning_rate: step size of each update.
            last_batch: handling of a short final batch.
            log_fn: called with (epoch, average cost) after every epoch.
            config: when given, replaces the four hyperparameters above and
                seeds the shuffling with `config.seed`.

        Returns
        -------
            List[float]: the average cost of every epoch, measured before
            each example's update.

        """
        if config is not None:
            if config.seed is not None:
                self._rng.seed(config.seed)
            batch_size = config.batch_size
            epochs = config.epochs
            learning_rate = config.learning_rate
            last_batch = config.last_batch

        data = Tensor.from_format(training_data.get_data_format())
        label = Tensor.from_format(training_data.get_label_format())
        batches = BatchHandler(training_data, batch_size, last_batch, self._rng)

        costs = []
        for epoch in range(1, epochs + 1):
            total_cost = 0.0
            seen = 0
            for batch in batches:
                for idx in batch:
                    training_data.observe_data_at_idx(data, idx)
                    training_data.observe_label_at_idx(label, idx)
                    self.learn_once(data, label, apply_changes=False)
                    total_cost += self.calculate_cost(label)
                    seen += 1
                self.apply_deltas(len(batch), learning_rate)
            batches.calculate_new_batch()

            avg_cost = total_cost / seen if seen else 0.0
            costs.append(avg_cost)
            if log_fn is not None:
                log_fn(epoch, avg_cost)
        return costs

    def train(
        self,
        training_data: DataSpace,
        config: TrainingConfig,
        log_fn: Optional[Callable[[int, float], None]] = default_log_fn,
    ) -> List[float]:
        """`learn` driven by a `TrainingConfig`."""
        return self.learn(training_data, log_fn=log_fn, config=config)

    def test(self, test_data: DataSpace) -> TestResult:
        """Forward every example and report accuracy and average cost."""
        result = TestResult(data_count=test_data.get_item_count())
        data = Tensor.from_format(test_data.get_data_format())
        label = Tensor.from_format(test_data.get_label_format())
        output = self.get_output()

        correct_predictions = 0
        cost_sum = 0.0
        start = time.perf_counter()
        for idx in range(result.data_count):
            test_data.observe_data_at_idx(data, idx)
            test_data.observe_label_at_idx(label, idx)
            self.forward_propagation(data)
            assert output is not None
            if same_result(output, label):
                correct_predictions += 1
            cost_sum += self.calculate_cost(label)
        end = time.perf_counter()

        result.time_in_ms = int((end - start) * 1000)
        if result.data_count:
            result.accuracy = correct_predictions / result.data_count
            result.avg_cost = cost_sum / result.data_count
        return result

    # Execution mode

    def enable_gpu_mode(self) -> None:
        """Move every layer to the device; fails on layer kinds without a device path."""
        if not self.layers:
            raise EmptyNetworkError("Cannot enable gpu mode. No layers have been added yet.")
        for layer in self.layers:
            layer.enable_gpu_mode()
        logger.info("network of %d layer(s) moved to the device", len(self.layers))

    def disable_gpu_mode(self) -> None:
        """Copy every layer back to the host."""
        for layer in self.layers:
            layer.disable_gpu_mode()
        logger.info("network of %d layer(s) moved to the host", len(self.layers))

    def is_in_gpu_mode(self) -> bool:
        return bool(self.layers) and all(layer.is_in_gpu_mode() for layer in self.layers)


def _format_of(fmt: Iterable[int]) -> Format:
    if isinstance(fmt, Tensor):
        return fmt.format
    return as_format(fmt)
