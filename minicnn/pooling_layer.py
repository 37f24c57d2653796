from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .fast_conv import tensor_pool, tensor_pool_backward
from .layer import LayerKind, LayerState
from .operators import PoolingKind
from .tensor import Tensor, check_same_mode
from .tensor_data import Format, window_output_format
from .tensor_ops import UnsupportedModeError

if TYPE_CHECKING:
    from typing import Optional


class PoolingLayer:
    """A parameter-free layer reducing each window of each depth plane to one value.

    Args:
    ----
        filter_size: side length of the pooling window.
        stride: step between two windows, at most `filter_size`.
        pooling_fn: max, min or average pooling.

    """

    kind = LayerKind.POOLING

    def __init__(self, filter_size: int, stride: int, pooling_fn: PoolingKind):
        if filter_size <= 0:
            raise ValueError("filter_size must be greater than 0")
        if stride <= 0:
            raise ValueError("stride must be greater than 0")
        if stride > filter_size:
            raise ValueError("stride must be smaller or equal than the filter_size")
        self.filter_size = filter_size
        self.stride = stride
        self.pooling_fn = PoolingKind(pooling_fn)
        self.state = LayerState(self.kind)
        # input position chosen by each output cell in the last forward pass
        self._chosen = np.zeros(0, dtype=np.int64)

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
        output_format = window_output_format(
            input_format, self.filter_size, self.stride, input_format.depth
        )
        self.state.bind(input_format, output_format)
        self._chosen = np.zeros(output_format.item_count(), dtype=np.int64)

    def forward_propagation(self, input: Tensor) -> None:
        self.state.check_input(input)
        activations = self.state.activations
        check_same_mode(input, activations)
        tensor_pool(
            activations.storage,
            activations.width,
            activations.height,
            input.storage,
            input.width,
            input.height,
            input.depth,
            self.filter_size,
            self.stride,
            int(self.pooling_fn),
            self._chosen,
        )
        self.state.propagated = True

    def back_propagation(self, input: Tensor, passing_error: Optional[Tensor]) -> None:
        """Route the error to the cells each window drew from, then clear it."""
        self.state.check_input(input)
        self.state.require_propagated()
        self.state.check_passing_error(passing_error)
        error = self.state.error
        if passing_error is None:
            # first layer: nothing upstream to feed
            error.set_all(0.0)
            return
        tensor_pool_backward(
            error.storage,
            error.width,
            error.height,
            input.width,
            input.height,
            self.filter_size,
            self.stride,
            int(self.pooling_fn),
            self._chosen,
            passing_error.storage,
        )

    def apply_deltas(self, count: int, learning_rate: float) -> None:
        pass

    def mutate(self, value_range: float) -> None:
        pass

    def apply_noise(self, value_range: float) -> None:
        pass

    def set_all_parameter(self, value: float) -> None:
        pass

    def set_error_for_last_layer(self, label: Tensor) -> None:
        self.state.set_error_for_last_layer(label)

    def enable_gpu_mode(self) -> None:
        raise UnsupportedModeError("The pooling layer has no gpu implementation.")

    def disable_gpu_mode(self) -> None:
        pass

    def is_in_gpu_mode(self) -> bool:
        return False
