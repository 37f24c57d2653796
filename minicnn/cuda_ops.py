# type: ignore
# Currently pyright doesn't support numba.cuda

from typing import Any, Callable, TypeVar

from numba import cuda
from numba.cuda import jit as _jit

from .tensor_data import Storage
from .tensor_ops import BackwardProto, MapProto, TensorOps

FakeCUDAKernel = Any

Fn = TypeVar("Fn")


def device_jit(fn: Fn, **kwargs: Any) -> Fn:
    """JIT-compile a function for device execution (e.g., GPU).

    Args:
    ----
        fn (Fn): The function to compile.
        **kwargs (Any): Additional options for JIT compilation.

    Returns:
    -------
        Fn: Compiled function optimized for device execution.

    """
    return _jit(device=True, **kwargs)(fn)  # type: ignore


def jit(fn: Fn, **kwargs: Any) -> FakeCUDAKernel:
    """JIT-compile a function as a CUDA kernel.

    Args:
    ----
        fn (Fn): The function to compile.
        **kwargs (Any): Additional options for JIT compilation.

    Returns:
    -------
        FakeCUDAKernel: Compiled kernel.

    """
    return _jit(**kwargs)(fn)  # type: ignore


THREADS_PER_BLOCK = 32


def _blocks(size: int) -> int:
    return (size + THREADS_PER_BLOCK - 1) // THREADS_PER_BLOCK


class CudaOps(TensorOps):
    cuda = True

    @staticmethod
    def map(fn: Callable[[float], float]) -> MapProto:
        """See `tensor_ops.py`"""
        cufn: Callable[[float], float] = device_jit(fn)
        f = tensor_map(cufn)

        def ret(out: Storage, a: Storage) -> None:
            # Instantiate and run the cuda kernel.
            f[_blocks(out.size), THREADS_PER_BLOCK](out, a, out.size)

        return ret

    @staticmethod
    def fully_connected_backward(
        inverse: Callable[[float], float], derivative: Callable[[float], float]
    ) -> BackwardProto:
        """See `tensor_ops.py`"""
        f = tensor_fully_connected_backward(device_jit(inverse), device_jit(derivative))

        def ret(
            error: Storage,
            activations: Storage,
            input: Storage,
            weights: Storage,
            weight_deltas: Storage,
            bias_deltas: Storage,
            passing_error: Storage,
            pass_error: bool,
        ) -> None:
            # One thread per output neuron.
            f[_blocks(activations.size), THREADS_PER_BLOCK](
                error,
                activations,
                input,
                weights,
                weight_deltas,
                bias_deltas,
                passing_error,
                pass_error,
                activations.size,
                input.size,
            )

        return ret

    @staticmethod
    def set_all(out: Storage, value: float) -> None:
        """See `tensor_ops.py`"""
        jit_fill[_blocks(out.size), THREADS_PER_BLOCK](out, value, out.size)

    @staticmethod
    def add_flat(out: Storage, a: Storage, b: Storage) -> None:
        """See `tensor_ops.py`"""
        jit_add[_blocks(out.size), THREADS_PER_BLOCK](out, a, b, out.size)

    @staticmethod
    def add_each_depth(out: Storage, a: Storage, b: Storage, plane_size: int) -> None:
        """See `tensor_ops.py`"""
        jit_add_each_depth[_blocks(out.size), THREADS_PER_BLOCK](
            out, a, b, plane_size, out.size
        )

    @staticmethod
    def dot_product_flat(
        out: Storage, weights: Storage, input: Storage, input_count: int
    ) -> None:
        """See `tensor_ops.py`"""
        jit_dot_product[_blocks(out.size), THREADS_PER_BLOCK](
            out, weights, input, input_count, out.size
        )

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
        threadsperblock = (THREADS_PER_BLOCK, THREADS_PER_BLOCK)
        blockspergrid = (_blocks(out_width), _blocks(out_height))
        jit_cross_correlation[blockspergrid, threadsperblock](
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
        jit_apply_deltas[_blocks(params.size), THREADS_PER_BLOCK](
            params, deltas, scale, params.size
        )


# Implement


def tensor_map(fn: Callable[[float], float]) -> FakeCUDAKernel:
    """CUDA higher-order tensor map function. ::

      fn_map = tensor_map(fn)
      fn_map[blocks, threads](out, a, size)

    Args:
    ----
        fn: function mappings floats-to-floats to apply.

    Returns:
    -------
        Tensor map kernel.

    """

    def _map(out: Storage, in_storage: Storage, size: int) -> None:
        # our thread's position in the grid
        i = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
        # guard
        if i < size:
            out[i] = fn(in_storage[i])

    return cuda.jit()(_map)  # type: ignore


def tensor_fully_connected_backward(
    inverse: Callable[[float], float], derivative: Callable[[float], float]
) -> FakeCUDAKernel:
    """CUDA fully-connected backward kernel, one thread per output neuron.

    Each thread owns its bias delta and its column of weight deltas, so
    only the shared upstream error needs atomic adds.
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
        out_size: int,
        input_count: int,
    ) -> None:
        n = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
        if n < out_size:
            error_value = error[n]
            error[n] = 0.0
            slope = derivative(inverse(activations[n])) * error_value
            bias_deltas[n] += slope
            for i in range(input_count):
                pos = i + n * input_count
                weight_deltas[pos] += slope * input[i]
                if pass_error:
                    cuda.atomic.add(passing_error, i, slope * weights[pos])

    return cuda.jit()(_backward)  # type: ignore


def _fill(out: Storage, value: float, size: int) -> None:
    i = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    if i < size:
        out[i] = value


def _add(out: Storage, a: Storage, b: Storage, size: int) -> None:
    i = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    if i < size:
        out[i] = a[i] + b[i]


def _add_each_depth(
    out: Storage, a: Storage, b: Storage, plane_size: int, size: int
) -> None:
    i = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    if i < size:
        out[i] = a[i] + b[i // plane_size]


def _dot_product(
    out: Storage, weights: Storage, input: Storage, input_count: int, size: int
) -> None:
    # each thread computes the dot product of one weight column with the input
    n = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    if n < size:
        tmp = 0.0
        for i in range(input_count):
            tmp += weights[i + n * input_count] * input[i]
        out[n] = tmp


def _cross_correlation(
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
    # one thread per output cell of the plane
    x = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    y = cuda.blockIdx.y * cuda.blockDim.y + cuda.threadIdx.y
    if x < out_width and y < out_height:
        temp = 0.0
        for z in range(depth):
            for ky in range(kernel_size):
                in_row = in_width * ((y * stride + ky) + in_height * z)
                k_row = kernel_size * (ky + kernel_size * z)
                for kx in range(kernel_size):
                    temp += input[in_row + x * stride + kx] * kernel[k_row + kx]
        out[plane * out_width * out_height + x + out_width * y] = temp


def _apply_deltas(params: Storage, deltas: Storage, scale: float, size: int) -> None:
    i = cuda.blockIdx.x * cuda.blockDim.x + cuda.threadIdx.x
    if i < size:
        params[i] -= deltas[i] * scale
        deltas[i] = 0.0


jit_fill = jit(_fill)
jit_add = jit(_add)
jit_add_each_depth = jit(_add_each_depth)
jit_dot_product = jit(_dot_product)
jit_cross_correlation = jit(_cross_correlation)
jit_apply_deltas = jit(_apply_deltas)
