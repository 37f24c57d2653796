from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from numba import njit as _njit
from numba import prange

from .fast_conv import tensor_cross_correlation
from .tensor_ops import BackwardProto, MapProto, TensorOps

if TYPE_CHECKING:
    from typing import Callable

    from .tensor_data import Storage

# TIP: Use `NUMBA_DISABLE_JIT=1 pytest tests/` to run these kernels without JIT.

Fn = TypeVar("Fn")


def njit(fn: Fn, **kwargs: Any) -> Fn:
    """JIT compiles `fn` for the host, always inlining it into its callers.

    Args:
    ----
        fn (Fn): The function to compile.
        **kwargs (Any): Additional options for numba (e.g. `parallel=True`).

    Returns:
    -------
        Fn: The compiled dispatcher.

    """
    return _njit(inline="always", **kwargs)(fn)  # type: ignore


class FastOps(TensorOps):
    @staticmethod
    def map(fn: Callable[[float], float]) -> MapProto:
        """See `tensor_ops.py`"""
        # This line JIT compiles the scalar function into the map kernel
        return tensor_map(njit(fn))

    @staticmethod
    def fully_connected_backward(
        inverse: Callable[[float], float], derivative: Callable[[float], float]
    ) -> BackwardProto:
        """See `tensor_ops.py`"""
        return tensor_fully_connected_backward(njit(inverse), njit(derivative))

    @staticmethod
    def set_all(out: Storage, value: float) -> None:
        """See `tensor_ops.py`"""
        tensor_fill(out, value)

    @staticmethod
    def add_flat(out: Storage, a: Storage, b: Storage) -> None:
        """See `tensor_ops.py`"""
        tensor_add(out, a, b)

    @staticmethod
    def add_each_depth(out: Storage, a: Storage, b: Storage, plane_size: int) -> None:
        """See `tensor_ops.py`"""
        tensor_add_each_depth(out, a, b, plane_size)

    @staticmethod
    def dot_product_flat(
        out: Storage, weights: Storage, input: Storage, input_count: int
    ) -> None:
        """Dense matrix-vector product over flat storages ::

            for n:
              for i:
                out[n] += weights[i + n * input_count] * input[i]

        """
        tensor_dot_product(out, weights, input, input_count)

    @staticmethod
    def cross_correlation(
        out: Storage,
        out_width: int,
        out_height: int,
        plane: int,
        input: Storage,
        in_width: int,
        in_height: int,
        depth: int,
        kernel: Storage,
        kernel_size: int,
        stride: int,
    ) -> None:
        """See `fast_conv.py`"""
        tensor_cross_correlation(
            out,
            out_width,
            out_height,
            plane,
            input,
            in_width,
            in_height,
            depth,
            kernel,
            kernel_size,
            stride,
        )

    @staticmethod
    def apply_deltas(params: Storage, deltas: Storage, scale: float) -> None:
        """See `tensor_ops.py`"""
        tensor_apply_deltas(params, deltas, scale)


# Implementations


def tensor_map(fn: Callable[[float], float]) -> MapProto:
    """NUMBA low_level tensor_map function.

    Optimizations:

    * Main loop in parallel
    * `out` may alias `in_storage` (in-place activation)

    Args:
    ----
        fn: function mappings floats-to-floats to apply.

    Returns:
    -------
        Tensor map function.

    """

    def _map(out: Storage, in_storage: Storage) -> None:
        for i in prange(len(out)):
            out[i] = fn(in_storage[i])

    return njit(_map, parallel=True)  # type: ignore


def tensor_fully_connected_backward(
    inverse: Callable[[float], float], derivative: Callable[[float], float]
) -> BackwardProto:
    """NUMBA fully-connected backward kernel for one activation kind.

    For every output neuron `n` the accumulated error is read and cleared,
    the unactivated value is recovered through `inverse` and the local
    slope `derivative(unactivated)` scales the error. The bias delta of `n`
    gets `slope * error`, every weight delta `(i, n)` gets
    `slope * error * input[i]` and, when `pass_error` is set, the upstream
    error of input `i` gets `slope * error * weight(i, n)`.

    Runs serially: every neuron adds into the shared `passing_error`.

    Args:
    ----
        inverse: activation inverse.
        derivative: activation derivative of the unactivated value.

    Returns:
    -------
        Backward function.

    """

    def _backward(
        error: Storage,
        activations: Storage,
        input: Storage,
        weights: Storage,
        weight_deltas: Storage,
        bias_deltas: Storage,
        passing_error: Storage,
        pass_error: bool,
    ) -> None:
        input_count = len(input)
        for n in range(len(activations)):
            error_value = error[n]
            # clear the error so a repeated call does not count it twice
            error[n] = 0.0
            slope = derivative(inverse(activations[n])) * error_value
            bias_deltas[n] += slope
            for i in range(input_count):
                pos = i + n * input_count
                weight_deltas[pos] += slope * input[i]
                if pass_error:
                    passing_error[i] += slope * weights[pos]

    return njit(_backward)  # type: ignore


def _tensor_fill(out: Storage, value: float) -> None:
    for i in prange(len(out)):
        out[i] = value


def _tensor_add(out: Storage, a: Storage, b: Storage) -> None:
    for i in prange(len(out)):
        out[i] = a[i] + b[i]


def _tensor_add_each_depth(
    out: Storage, a: Storage, b: Storage, plane_size: int
) -> None:
    # b holds one value per depth plane of a
    for i in prange(len(out)):
        out[i] = a[i] + b[i // plane_size]


def _tensor_dot_product(
    out: Storage, weights: Storage, input: Storage, input_count: int
) -> None:
    for n in prange(len(out)):
        tmp = 0.0
        for i in range(input_count):
            tmp += weights[i + n * input_count] * input[i]
        out[n] = tmp


def _tensor_apply_deltas(params: Storage, deltas: Storage, scale: float) -> None:
    for i in prange(len(params)):
        params[i] -= deltas[i] * scale
        deltas[i] = 0.0


tensor_fill = njit(_tensor_fill, parallel=True)
tensor_add = njit(_tensor_add, parallel=True)
tensor_add_each_depth = njit(_tensor_add_each_depth, parallel=True)
tensor_dot_product = njit(_tensor_dot_product, parallel=True)
tensor_apply_deltas = njit(_tensor_apply_deltas, parallel=True)
