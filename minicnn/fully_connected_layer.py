from __future__ import annotations

import numbers
import random
from typing import TYPE_CHECKING

import numpy as np

from .layer import LayerKind, LayerState
from .operators import ActivationKind
from .tensor import Tensor, check_same_mode
from .tensor_data import Format, as_format

if TYPE_CHECKING:
    from typing import Iterable, Optional, Union


class FullyConnectedLayer:
    """A dense layer computing `activations = f(W . input + b)`.

    The weights form an (input_count x output_count x 1) tensor addressed
    by (input index, output neuron index). The backward pass recovers each
    neuron's unactivated value through the activation's inverse instead of
    caching it.

    Args:
    ----
        neurons: number of output neurons (a 1 x n x 1 activation) or an
            explicit activation format.
        activation_fn: activation applied to every neuron.
        rng: random source for `mutate` and `apply_noise`.

    """

    kind = LayerKind.FULLY_CONNECTED

    def __init__(
        self,
        neurons: Union[int, Iterable[int]],
        activation_fn: ActivationKind,
        rng: Optional[random.Random] = None,
    ):
        if isinstance(neurons, numbers.Integral):
            if neurons <= 0:
                raise ValueError("number_of_neurons must be greater than 0")
            activation_format = Format(1, int(neurons), 1)
        else:
            activation_format = as_format(neurons)
            if activation_format.item_count() == 0:
                raise ValueError("activation format must hold at least one neuron")
        self.activation_fn = ActivationKind(activation_fn)
        self.state = LayerState(self.kind)
        self._activation_format = activation_format
        self._rng = rng if rng is not None else random.Random()

        self.weights = Tensor()
        self.weight_deltas = Tensor()
        self.biases = Tensor.from_format(activation_format)
        self.bias_deltas = Tensor.from_format(activation_format)

    @property
    def activations(self) -> Tensor:
        return self.state.activations

    @property
    def error(self) -> Tensor:
        return self.state.error

    @property
    def input_format(self) -> Optional[Format]:
        return self.state.input_format

    @property
    def output_format(self) -> Optional[Format]:
        return self.state.output_format

    def set_input_format(self, input_format: Format) -> None:
        self.state.bind(input_format, self._activation_format)
        weight_format = (
            input_format.item_count(),
            self._activation_format.item_count(),
            1,
        )
        self.weights.resize(weight_format)
        self.weight_deltas.resize(weight_format)

    def get_weight_at(self, input_idx: int, neuron_idx: int) -> float:
        return self.weights.get_at(input_idx, neuron_idx, 0)

    def set_weight_at(self, input_idx: int, neuron_idx: int, value: float) -> None:
        self.weights.set_at(input_idx, neuron_idx, 0, value)

    def get_weight_delta_at(self, input_idx: int, neuron_idx: int) -> float:
        return self.weight_deltas.get_at(input_idx, neuron_idx, 0)

    def set_all_parameter(self, value: float) -> None:
        """Set every weight and bias to `value`."""
        self.state.require_bound()
        self.weights.set_all(value)
        self.biases.set_all(value)

    def apply_noise(self, value_range: float) -> None:
        """Add uniform(-value_range, value_range) to every weight and bias."""
        self.state.require_bound()
        gen = np.random.default_rng(self._rng.getrandbits(32))
        self.weights.apply_noise(value_range, gen)
        self.biases.apply_noise(value_range, gen)

    def mutate(self, value_range: float) -> None:
        """Add uniform(-value_range, value_range) to one weight or one bias.

        Weights and biases are chosen in proportion to their counts.
        """
        self.state.require_bound()
        weight_count = self.weights.item_count()
        bias_count = self.biases.item_count()
        if self._rng.random() * (weight_count + bias_count) < weight_count:
            self.weights.mutate(value_range, self._rng)
        else:
            self.biases.mutate(value_range, self._rng)

    def forward_propagation(self, input: Tensor) -> None:
        self.state.check_input(input)
        activations = self.state.activations
        Tensor.dot_product_flat(self.weights, input, activations)
        Tensor.add_flat(activations, self.biases, activations)
        activations.apply_activation_function(self.activation_fn)
        self.state.propagated = True

    def back_propagation(self, input: Tensor, passing_error: Optional[Tensor]) -> None:
        """Accumulate this example's deltas and the upstream error.

        Consumes and clears the error tensor. `passing_error` is the
        previous layer's error tensor, added to rather than overwritten;
        it is None for the first layer.
        """
        self.state.check_input(input)
        self.state.require_propagated()
        self.state.check_passing_error(passing_error)
        activations = self.state.activations
        error = self.state.error
        check_same_mode(input, activations, self.weights)

        pass_error = passing_error is not None
        # unused by the kernel when pass_error is False
        upstream = passing_error if passing_error is not None else self.bias_deltas
        check_same_mode(upstream, activations)

        backward = activations.backend.fully_connected_backward[self.activation_fn]
        backward(
            error.storage,
            activations.storage,
            input.storage,
            self.weights.storage,
            self.weight_deltas.storage,
            self.bias_deltas.storage,
            upstream.storage,
            pass_error,
        )
        self.state.pending_examples += 1

    def apply_deltas(self, count: int, learning_rate: float) -> None:
        """Average the accumulated deltas over `count` examples and descend.

        Both delta tensors are zeroed afterwards.
        """
        self.state.take_pending_examples()
        Tensor.apply_deltas(self.biases, self.bias_deltas, count, learning_rate)
        Tensor.apply_deltas(self.weights, self.weight_deltas, count, learning_rate)

    def set_error_for_last_layer(self, label: Tensor) -> None:
        self.state.set_error_for_last_layer(label)

    def enable_gpu_mode(self) -> None:
        self.state.enable_gpu_mode()
        self.weights.enable_gpu_mode()
        self.biases.enable_gpu_mode()
        self.weight_deltas.enable_gpu_mode()
        self.bias_deltas.enable_gpu_mode()

    def disable_gpu_mode(self) -> None:
        self.state.disable_gpu_mode()
        self.weights.disable_gpu_mode()
        self.biases.disable_gpu_mode()
        self.weight_deltas.disable_gpu_mode()
        self.bias_deltas.disable_gpu_mode()

    def is_in_gpu_mode(self) -> bool:
        return self.state.activations.is_in_gpu_mode()
