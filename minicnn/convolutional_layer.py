from __future__ import annotations

import random
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

from .fast_conv import tensor_conv_backward
from .layer import LayerKind, LayerState
from .operators import DERIVATIVE, INVERSE, ActivationKind
from .tensor import Tensor, check_same_mode
from .tensor_data import Format, window_output_format
from .tensor_ops import UnsupportedModeError

if TYPE_CHECKING:
    from typing import List, Optional, Tuple


_BACKWARD = {
    kind: tensor_conv_backward(INVERSE[kind], DERIVATIVE[kind]) for kind in ActivationKind
}


class ConvKernel(NamedTuple):
    """Read-only view of one kernel: its weights and its bias."""

    weights: Tensor
    bias: float


class ConvolutionalLayer:
    """A layer of square kernels laid over the input with a valid cross-correlation.

    Each kernel owns a (kernel_size x kernel_size x input_depth) weight
    tensor and one bias; kernel k produces plane k of the activations.

    Args:
    ----
        kernel_count: number of kernels (output depth).
        kernel_size: side length of every kernel.
        stride: step between two windows, at most `kernel_size`.
        activation_fn: activation applied to every output cell.
        rng: random source for `mutate` and `apply_noise`.

    """

    kind = LayerKind.CONVOLUTION

    def __init__(
        self,
        kernel_count: int,
        kernel_size: int,
        stride: int,
        activation_fn: ActivationKind,
        rng: Optional[random.Random] = None,
    ):
        if kernel_count <= 0:
            raise ValueError("number_of_kernels must be greater than 0")
        if kernel_size <= 0:
            raise ValueError("kernel_size must be greater than 0")
        if stride <= 0:
            raise ValueError("stride must be greater than 0")
        if stride > kernel_size:
            raise ValueError("stride must be smaller or equal than the kernel_size")

        self.kernel_count = kernel_count
        self.kernel_size = kernel_size
        self.stride = stride
        self.activation_fn = ActivationKind(activation_fn)
        self.state = LayerState(self.kind)
        self._rng = rng if rng is not None else random.Random()

        self.weights: List[Tensor] = [Tensor() for _ in range(kernel_count)]
        self.weight_deltas: List[Tensor] = [Tensor() for _ in range(kernel_count)]
        self.biases = Tensor(1, 1, kernel_count)
        self.bias_deltas = Tensor(1, 1, kernel_count)

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

    @property
    def kernels(self) -> Tuple[ConvKernel, ...]:
        return tuple(
            ConvKernel(w, self.biases.get_at_flat(k)) for k, w in enumerate(self.weights)
        )

    def set_input_format(self, input_format: Format) -> None:
        """Bind the input format and size the kernels to its depth.

        Raises
        ------
            ValueError: if `(input_dim - kernel_size) / stride + 1` is not
                whole on both spatial axes.

        """
        output_format = window_output_format(
            input_format, self.kernel_size, self.stride, self.kernel_count
        )
        self.state.bind(input_format, output_format)
        kernel_format = (self.kernel_size, self.kernel_size, input_format.depth)
        for weights, deltas in zip(self.weights, self.weight_deltas):
            weights.resize(kernel_format)
            deltas.resize(kernel_format)

    def set_all_parameter(self, value: float) -> None:
        """Set every weight and bias to `value`."""
        self.state.require_bound()
        for weights in self.weights:
            weights.set_all(value)
        self.biases.set_all(value)

    def apply_noise(self, value_range: float) -> None:
        """Perturb every weight and bias of every kernel independently."""
        self.state.require_bound()
        gen = np.random.default_rng(self._rng.getrandbits(32))
        for weights in self.weights:
            weights.apply_noise(value_range, gen)
        self.biases.apply_noise(value_range, gen)

    def mutate(self, value_range: float) -> None:
        """Perturb one weight or the bias of one uniformly chosen kernel.

        Within the kernel a weight is chosen over the bias in proportion
        #weights : 1.
        """
        self.state.require_bound()
        kernel_idx = self._rng.randrange(self.kernel_count)
        weights = self.weights[kernel_idx]
        weight_count = weights.item_count()
        if self._rng.random() * (weight_count + 1) < weight_count:
            weights.mutate(value_range, self._rng)
        else:
            self.biases.add_at_flat(
                kernel_idx, self._rng.uniform(-value_range, value_range)
            )

    def forward_propagation(self, input: Tensor) -> None:
        self.state.check_input(input)
        activations = self.state.activations
        Tensor.valid_cross_correlation(input, self.weights, activations, self.stride)
        Tensor.add_each_depth(activations, self.biases, activations)
        activations.apply_activation_function(self.activation_fn)
        self.state.propagated = True

    def back_propagation(self, input: Tensor, passing_error: Optional[Tensor]) -> None:
        """Accumulate kernel deltas and the upstream error for one example.

        Every output cell's error is consumed and cleared; `passing_error`
        (None for the first layer) is added to, never overwritten.
        """
        self.state.check_input(input)
        self.state.require_propagated()
        self.state.check_passing_error(passing_error)
        activations = self.state.activations
        error = self.state.error
        check_same_mode(input, activations)

        pass_error = passing_error is not None
        # unused by the kernel when pass_error is False
        upstream = passing_error if passing_error is not None else input
        backward = _BACKWARD[self.activation_fn]
        for plane in range(self.kernel_count):
            bias_delta = backward(
                error.storage,
                activations.storage,
                activations.width,
                activations.height,
                plane,
                input.storage,
                input.width,
                input.height,
                input.depth,
                self.weights[plane].storage,
                self.weight_deltas[plane].storage,
                self.kernel_size,
                self.stride,
                upstream.storage,
                pass_error,
            )
            self.bias_deltas.add_at_flat(plane, bias_delta)
        self.state.pending_examples += 1

    def apply_deltas(self, count: int, learning_rate: float) -> None:
        """Average the accumulated deltas over `count` examples and descend."""
        self.state.take_pending_examples()
        for weights, deltas in zip(self.weights, self.weight_deltas):
            Tensor.apply_deltas(weights, deltas, count, learning_rate)
        Tensor.apply_deltas(self.biases, self.bias_deltas, count, learning_rate)

    def set_error_for_last_layer(self, label: Tensor) -> None:
        self.state.set_error_for_last_layer(label)

    def enable_gpu_mode(self) -> None:
        raise UnsupportedModeError("The convolutional layer has no gpu implementation.")

    def disable_gpu_mode(self) -> None:
        pass

    def is_in_gpu_mode(self) -> bool:
        return False
