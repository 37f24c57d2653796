from typing import Any, Callable, TypeVar

import numpy as np
import numpy.typing as npt
from numba import njit as _njit
from numba import prange

from .tensor_data import Storage

Fn = TypeVar("Fn")


def njit(fn: Fn, **kwargs: Any) -> Fn:
    """JIT compiles `fn` for the host, always inlining it into its callers.

    Args:
    ----
        fn (Fn): The function to compile.
        **kwargs (Any): Additional options for numba.

    Returns:
    -------
        Fn: The compiled dispatcher.

    """
    return _njit(inline="always", **kwargs)(fn)  # type: ignore


# Every kernel below indexes flat storages with x fastest, then y, then z:
#   position(x, y, z) = x + width * (y + height * z)
# Kernel weights use the same layout with width = height = kernel_size.


def _tensor_cross_correlation(
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
    """Valid (unpadded) 2D cross-correlation of one kernel.

    Given an input of

       `in_width, in_height, depth`

    and a kernel of

       `kernel_size, kernel_size, depth`

    fills plane `plane` of an output of

       `out_width, out_height, n_kernels`

    where output cell `(x, y)` is the dot product of the kernel with the
    input window whose top-left corner is `(x * stride, y * stride)`. The
    kernel is not flipped and every window lies fully inside the input.

    Args:
    ----
        out (Storage): storage for `out` tensor.
        out_width (int): width of `out`.
        out_height (int): height of `out`.
        plane (int): depth index of `out` this kernel writes.
        input (Storage): storage for `input` tensor.
        in_width (int): width of `input`.
        in_height (int): height of `input`.
        depth (int): depth shared by `input` and `kernel`.
        kernel (Storage): storage for the kernel weights.
        kernel_size (int): side length of the kernel.
        stride (int): step between two windows.

    """
    plane_offset = plane * out_width * out_height
    # For each position in output height
    for y in prange(out_height):
        # For each position in output width
        for x in range(out_width):
            temp = 0.0
            for z in range(depth):
                for ky in range(kernel_size):
                    in_row = in_width * ((y * stride + ky) + in_height * z)
                    k_row = kernel_size * (ky + kernel_size * z)
                    for kx in range(kernel_size):
                        temp += input[in_row + x * stride + kx] * kernel[k_row + kx]
            out[plane_offset + x + out_width * y] = temp


tensor_cross_correlation = njit(_tensor_cross_correlation, parallel=True, fastmath=True)


def tensor_conv_backward(
    inverse: Callable[[float], float], derivative: Callable[[float], float]
) -> Callable[..., float]:
    """Convolution backward kernel for one kernel and one activation kind.

    Mirrors the fully-connected rule, one output cell at a time: the cell's
    error is read and cleared, `slope = error * derivative(inverse(a))`,
    every weight of the kernel accumulates `slope` times the input value it
    was laid over, and (when `pass_error` is set) every input cell of the
    window accumulates `slope` times the weight laid over it.

    Args:
    ----
        inverse: activation inverse.
        derivative: activation derivative of the unactivated value.

    Returns:
    -------
        Backward function returning the bias delta of the kernel.

    """
    inverse = njit(inverse)
    derivative = njit(derivative)

    def _backward(
        error: Storage,
        activations: Storage,
        out_width: int,
        out_height: int,
        plane: int,
        input: Storage,
        in_width: int,
        in_height: int,
        depth: int,
        kernel: Storage,
        kernel_delta: Storage,
        kernel_size: int,
        stride: int,
        passing_error: Storage,
        pass_error: bool,
    ) -> float:
        plane_offset = plane * out_width * out_height
        bias_delta = 0.0
        for y in range(out_height):
            for x in range(out_width):
                out_pos = plane_offset + x + out_width * y
                error_value = error[out_pos]
                error[out_pos] = 0.0
                slope = derivative(inverse(activations[out_pos])) * error_value
                bias_delta += slope
                for z in range(depth):
                    for ky in range(kernel_size):
                        in_row = in_width * ((y * stride + ky) + in_height * z)
                        k_row = kernel_size * (ky + kernel_size * z)
                        for kx in range(kernel_size):
                            in_pos = in_row + x * stride + kx
                            k_pos = k_row + kx
                            kernel_delta[k_pos] += slope * input[in_pos]
                            if pass_error:
                                passing_error[in_pos] += slope * kernel[k_pos]
        return bias_delta

    return njit(_backward)  # type: ignore


POOL_MAX = 0
POOL_MIN = 1
POOL_AVERAGE = 2


def _tensor_pool(
    out: Storage,
    out_width: int,
    out_height: int,
    input: Storage,
    in_width: int,
    in_height: int,
    depth: int,
    filter_size: int,
    stride: int,
    kind: int,
    chosen: npt.NDArray[np.int64],
) -> None:
    """Strided window pooling, one output plane per input plane.

    `chosen` records, per output cell, the input position that won a max or
    min window so the backward pass can route the error to it. Average
    pooling records -1.
    """
    for z in prange(depth):
        for y in range(out_height):
            for x in range(out_width):
                out_pos = x + out_width * (y + out_height * z)
                best_pos = (x * stride) + in_width * ((y * stride) + in_height * z)
                best = input[best_pos]
                total = 0.0
                for ky in range(filter_size):
                    in_row = in_width * ((y * stride + ky) + in_height * z)
                    for kx in range(filter_size):
                        pos = in_row + x * stride + kx
                        value = input[pos]
                        total += value
                        if kind == POOL_MAX and value > best:
                            best = value
                            best_pos = pos
                        elif kind == POOL_MIN and value < best:
                            best = value
                            best_pos = pos
                if kind == POOL_AVERAGE:
                    out[out_pos] = total / (filter_size * filter_size)
                    chosen[out_pos] = -1
                else:
                    out[out_pos] = best
                    chosen[out_pos] = best_pos


tensor_pool = njit(_tensor_pool, parallel=True)


def _tensor_pool_backward(
    error: Storage,
    out_width: int,
    out_height: int,
    in_width: int,
    in_height: int,
    filter_size: int,
    stride: int,
    kind: int,
    chosen: npt.NDArray[np.int64],
    passing_error: Storage,
) -> None:
    """Route pooled errors back to the input cells they came from."""
    share = 1.0 / (filter_size * filter_size)
    for out_pos in range(len(error)):
        error_value = error[out_pos]
        error[out_pos] = 0.0
        if kind != POOL_AVERAGE:
            passing_error[chosen[out_pos]] += error_value
        else:
            x = out_pos % out_width
            rest = out_pos // out_width
            y = rest % out_height
            z = rest // out_height
            for ky in range(filter_size):
                in_row = in_width * ((y * stride + ky) + in_height * z)
                for kx in range(filter_size):
                    passing_error[in_row + x * stride + kx] += error_value * share


tensor_pool_backward = njit(_tensor_pool_backward)
