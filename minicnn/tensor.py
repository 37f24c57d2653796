"""The 3-dimensional (width x height x depth) tensor used by every layer."""

from __future__ import annotations

import logging
import numbers
import random
from typing import TYPE_CHECKING

import numba.cuda
import numpy as np

from .fast_ops import FastOps
from .operators import ActivationKind
from .tensor_data import (
    Format,
    FormatMismatchError,
    IndexingError,
    as_format,
    check_index,
    check_same_format,
    index_to_position,
    strides_from_format,
    to_index,
    window_output_format,
)
from .tensor_ops import TensorBackend, UnsupportedModeError

if TYPE_CHECKING:
    from typing import Iterable, Optional, Sequence, Tuple, Union

    import numpy.typing as npt

    from .tensor_data import Storage, UserIndex

logger = logging.getLogger(__name__)

HostBackend = TensorBackend(FastOps)
_device_backend: Optional[TensorBackend] = None


def device_backend() -> TensorBackend:
    """Return the shared CUDA backend, building it on first use.

    Raises
    ------
        UnsupportedModeError: if numba cannot find a CUDA device.

    """
    global _device_backend
    if not numba.cuda.is_available():
        raise UnsupportedModeError("No CUDA device is available for gpu mode.")
    if _device_backend is None:
        from .cuda_ops import CudaOps

        _device_backend = TensorBackend(CudaOps)
        logger.info("CUDA backend initialised")
    return _device_backend


def check_same_mode(*tensors: Tensor) -> None:
    first = tensors[0].is_in_gpu_mode()
    for t in tensors[1:]:
        if t.is_in_gpu_mode() != first:
            raise UnsupportedModeError(
                "Operands must all live on the host or all on the device."
            )


class Tensor:
    """A float64 tensor of fixed format with a host or device backing store.

    The store is flat, x moving fastest, so one row (fixed y and z) is a
    contiguous run of `width` values. A tensor may observe a row of a
    larger packed tensor instead of owning its store; it then shares the
    source's values and execution mode.
    """

    backend: TensorBackend
    _storage: Storage
    _format: Format
    _strides: Tuple[int, int, int]
    _source: Optional[Tensor]

    def __init__(
        self,
        width: int = 0,
        height: int = 0,
        depth: int = 1,
        storage: Optional[Storage] = None,
        backend: Optional[TensorBackend] = None,
    ):
        """Initializes a tensor of the given format, zero-filled unless `storage` is given."""
        self._set_format(as_format((width, height, depth)))
        if storage is None:
            storage = np.zeros(self._format.item_count(), dtype=np.float64)
        elif len(storage) != self._format.item_count():
            raise FormatMismatchError(
                f"Storage of length {len(storage)} does not fit format {self._format}."
            )
        self._storage = storage
        self.backend = backend if backend is not None else HostBackend
        self._source = None

    def _set_format(self, fmt: Format) -> None:
        self._format = fmt
        self._strides = strides_from_format(fmt)

    # Constructors

    @staticmethod
    def from_format(fmt: Iterable[int]) -> Tensor:
        """Creates a zero-filled host tensor of the given format."""
        fmt = as_format(fmt)
        return Tensor(fmt.width, fmt.height, fmt.depth)

    @staticmethod
    def make(values: Union[Sequence[float], Storage], fmt: Iterable[int]) -> Tensor:
        """Creates a host tensor from flat values laid out x, then y, then z."""
        fmt = as_format(fmt)
        storage = np.array(values, dtype=np.float64).ravel()
        return Tensor(fmt.width, fmt.height, fmt.depth, storage=storage)

    @staticmethod
    def from_numpy(array: npt.NDArray[np.float64]) -> Tensor:
        """Creates a host tensor from an array shaped (depth, height, width).

        1-D arrays become a (1 x n x 1) column, 2-D arrays a single plane.
        """
        array = np.asarray(array, dtype=np.float64)
        if array.ndim == 1:
            depth, height, width = 1, array.shape[0], 1
        elif array.ndim == 2:
            depth, (height, width) = 1, array.shape
        elif array.ndim == 3:
            depth, height, width = array.shape
        else:
            raise IndexingError(f"Cannot build a tensor from {array.ndim} dims.")
        return Tensor(width, height, depth, storage=array.ravel().copy())

    def copy(self) -> Tensor:
        """Returns an owning copy in the same execution mode."""
        out = Tensor(
            self.width, self.height, self.depth, storage=self._host_storage().copy()
        )
        if self.is_in_gpu_mode():
            out.enable_gpu_mode()
        return out

    # Format

    @property
    def format(self) -> Format:
        """The (width, height, depth) format."""
        return self._format

    @property
    def width(self) -> int:
        return self._format.width

    @property
    def height(self) -> int:
        return self._format.height

    @property
    def depth(self) -> int:
        return self._format.depth

    @property
    def size(self) -> int:
        """Returns the number of scalars in the tensor."""
        return self._format.item_count()

    def item_count(self) -> int:
        return self._format.item_count()

    def is_initialized(self) -> bool:
        """A tensor is initialized once its format holds at least one value."""
        return self.size != 0

    def owns_storage(self) -> bool:
        """False while the tensor observes a row of another tensor."""
        return self._source is None

    def resize(self, fmt: Iterable[int]) -> None:
        """Destructively reallocates the tensor to a new zero-filled format.

        The execution mode is kept and any observation ends.
        """
        fmt = as_format(fmt)
        self._set_format(fmt)
        storage = np.zeros(fmt.item_count(), dtype=np.float64)
        self._storage = numba.cuda.to_device(storage) if self.is_in_gpu_mode() else storage
        self._source = None

    # Element access

    def get_at(self, x: int, y: int = 0, z: int = 0) -> float:
        """Get the value at (x, y, z)."""
        return self.get_at_flat(self._position((x, y, z)))

    def set_at(self, x: int, y: int, z: int, value: float) -> None:
        """Set the value at (x, y, z)."""
        self.set_at_flat(self._position((x, y, z)), value)

    def add_at(self, x: int, y: int, z: int, value: float) -> None:
        """Add `value` to the value at (x, y, z)."""
        self.add_at_flat(self._position((x, y, z)), value)

    def get_at_flat(self, idx: int) -> float:
        self._check_flat(idx)
        return float(self._storage[idx])

    def set_at_flat(self, idx: int, value: float) -> None:
        self._check_flat(idx)
        self._storage[idx] = value

    def add_at_flat(self, idx: int, value: float) -> None:
        self._check_flat(idx)
        self._storage[idx] = float(self._storage[idx]) + value

    def __getitem__(self, key: Union[int, UserIndex]) -> float:
        """Gets a value by flat index or by (x, y, z)."""
        if isinstance(key, numbers.Integral):
            return self.get_at_flat(key)
        return self.get_at(*key)

    def __setitem__(self, key: Union[int, UserIndex], val: float) -> None:
        """Sets a value by flat index or by (x, y, z)."""
        if isinstance(key, numbers.Integral):
            self.set_at_flat(key, val)
        else:
            x, y, z = key
            self.set_at(x, y, z, val)

    def _position(self, index: UserIndex) -> int:
        check_index(index, self._format)
        return index_to_position(index, self._strides)

    def _check_flat(self, idx: int) -> None:
        if idx < 0 or idx >= self.size:
            raise IndexingError(f"Flat index {idx} out of range {self._format}.")

    def flat(self) -> Storage:
        """The live host store; writes go straight into the tensor.

        Raises
        ------
            UnsupportedModeError: in gpu mode, where the store is device memory.

        """
        if self.is_in_gpu_mode():
            raise UnsupportedModeError("flat() needs a host tensor, use to_numpy().")
        return self._storage

    @property
    def storage(self) -> Storage:
        """The backing store in the current mode (numpy or CUDA device array)."""
        return self._storage

    def _host_storage(self) -> Storage:
        if self.is_in_gpu_mode():
            return self._storage.copy_to_host()
        return self._storage

    def to_numpy(self) -> npt.NDArray[np.float64]:
        """Host copy shaped (depth, height, width)."""
        return self._host_storage().copy().reshape(self.depth, self.height, self.width)

    # In-place whole tensor operations

    def set_all(self, value: float) -> None:
        """Set every element to `value`."""
        self.backend.set_all(self._storage, float(value))

    def assign_flat(self, values: Union[Sequence[float], Storage]) -> None:
        """Overwrite every element, in place and in the current mode, from flat values."""
        host = np.ascontiguousarray(values, dtype=np.float64).ravel()
        if len(host) != self.size:
            raise FormatMismatchError(
                f"{len(host)} values do not fit format {self._format}."
            )
        if self.is_in_gpu_mode():
            self._storage.copy_to_device(host)
        else:
            self._storage[:] = host

    def apply_noise(
        self, value_range: float, rng: Optional[np.random.Generator] = None
    ) -> None:
        """Add an independent uniform(-value_range, value_range) value to every element."""
        gen = rng if rng is not None else np.random.default_rng()
        noise = gen.uniform(-value_range, value_range, self.size)
        if self.is_in_gpu_mode():
            host = self._storage.copy_to_host()
            host += noise
            self._storage.copy_to_device(host)
        else:
            self._storage += noise

    def mutate(self, value_range: float, rng: Optional[random.Random] = None) -> None:
        """Add a uniform(-value_range, value_range) value to one uniformly chosen element."""
        if self.size == 0:
            raise IndexingError("Cannot mutate a tensor without elements.")
        gen = rng if rng is not None else random
        idx = gen.randrange(self.size)
        self.add_at_flat(idx, gen.uniform(-value_range, value_range))

    def apply_activation_function(self, kind: ActivationKind) -> None:
        """Apply the activation function of `kind` to every element in place."""
        fn = self.backend.activation_map[ActivationKind(kind)]
        fn(self._storage, self._storage)

    # Comparisons

    @staticmethod
    def equal_format(a: Tensor, b: Tensor) -> bool:
        return a.format == b.format

    @staticmethod
    def are_equal(a: Tensor, b: Tensor) -> bool:
        """Exact elementwise equality; tensors of different formats are never equal."""
        if not Tensor.equal_format(a, b):
            return False
        return bool(np.array_equal(a._host_storage(), b._host_storage()))

    # Binary operations

    @staticmethod
    def add_flat(a: Tensor, b: Tensor, out: Tensor) -> None:
        """out = a + b, all three of identical format."""
        check_same_format(a.format, b.format, out.format)
        check_same_mode(a, b, out)
        out.backend.add_flat(out._storage, a._storage, b._storage)

    @staticmethod
    def add_each_depth(a: Tensor, b: Tensor, out: Tensor) -> None:
        """out = a + b where `b` (1 x 1 x depth) holds one value per depth plane of `a`."""
        check_same_format(a.format, out.format)
        check_same_format(Format(1, 1, a.depth), b.format)
        check_same_mode(a, b, out)
        out.backend.add_each_depth(
            out._storage, a._storage, b._storage, a.width * a.height
        )

    @staticmethod
    def dot_product_flat(weights: Tensor, input: Tensor, out: Tensor) -> None:
        """out[n] = sum_i weights(i, n) * input[i].

        `weights` must be (input.size x out.size x 1); `input` and `out` are
        read flat whatever their formats.
        """
        check_same_format(Format(input.size, out.size, 1), weights.format)
        check_same_mode(weights, input, out)
        out.backend.dot_product_flat(
            out._storage, weights._storage, input._storage, input.size
        )

    @staticmethod
    def valid_cross_correlation(
        input: Tensor, kernels: Sequence[Tensor], out: Tensor, stride: int
    ) -> None:
        """Lay every kernel over `input` without padding; kernel k fills plane k of `out`.

        Args:
        ----
            input: tensor of (w x h x d).
            kernels: square kernels, each (k x k x d).
            out: tensor of ((w - k) / stride + 1 x (h - k) / stride + 1 x len(kernels)).
            stride: step between two windows.

        Raises:
        ------
            FormatMismatchError: if a kernel's depth differs from the input's,
                kernels differ in size or `out` has the wrong format.

        """
        if not kernels:
            raise FormatMismatchError("At least one kernel is required.")
        kernel_size = kernels[0].width
        for kernel in kernels:
            check_same_format(Format(kernel_size, kernel_size, input.depth), kernel.format)
        try:
            expected = window_output_format(input.format, kernel_size, stride, len(kernels))
        except ValueError as e:
            raise FormatMismatchError(str(e)) from e
        check_same_format(expected, out.format)
        check_same_mode(input, out, *kernels)
        for plane, kernel in enumerate(kernels):
            out.backend.cross_correlation(
                out._storage,
                out.width,
                out.height,
                plane,
                input._storage,
                input.width,
                input.height,
                input.depth,
                kernel._storage,
                kernel_size,
                stride,
            )

    @staticmethod
    def apply_deltas(
        params: Tensor, deltas: Tensor, count: int, learning_rate: float
    ) -> None:
        """params -= deltas / count * learning_rate, then deltas are zeroed."""
        if count <= 0:
            raise ValueError("count must be greater than 0")
        check_same_format(params.format, deltas.format)
        check_same_mode(params, deltas)
        params.backend.apply_deltas(
            params._storage, deltas._storage, learning_rate / count
        )

    # Rows of packed tensors

    def _row_range(self, source: Tensor, row: int, offset: int) -> Tuple[int, int]:
        if source.depth != 1:
            raise FormatMismatchError(f"Packed tensor {source.format} must have depth 1.")
        if row < 0 or row >= source.height:
            raise IndexingError(f"Row {row} out of range {source.format}.")
        if offset < 0 or offset + self.size > source.width:
            raise FormatMismatchError(
                f"{self.size} values at column {offset} do not fit a row of {source.format}."
            )
        start = row * source.width + offset
        return start, start + self.size

    def observe_row(self, source: Tensor, row: int, offset: int = 0) -> None:
        """Alias this tensor onto `size` values of `source`'s row, without copying.

        The format of this tensor is kept, any previous observation ends and
        the execution mode of `source` is adopted.
        """
        if not self.is_initialized():
            raise FormatMismatchError("An observer needs a format before observing.")
        start, end = self._row_range(source, row, offset)
        self._storage = source._storage[start:end]
        self.backend = source.backend
        self._source = source

    def set_row_from_tensor(self, source: Tensor, row: int, offset: int = 0) -> None:
        """Copy `source`'s values into this packed tensor's row `row` at column `offset`."""
        start, end = source._row_range(self, row, offset)
        values = source._host_storage()
        if self.is_in_gpu_mode():
            self._storage[start:end].copy_to_device(np.ascontiguousarray(values))
        else:
            self._storage[start:end] = values

    # Execution mode

    def is_in_gpu_mode(self) -> bool:
        return self.backend.cuda

    def _require_owned_storage(self) -> None:
        if not self.owns_storage():
            raise UnsupportedModeError(
                "An observing tensor follows the mode of the tensor it observes."
            )

    def enable_gpu_mode(self) -> None:
        """Move the store to the CUDA device; later operations run there.

        Raises
        ------
            UnsupportedModeError: if no CUDA device is available, or if this
                tensor observes a row of another tensor. Move the observed
                tensor instead and observe again.

        """
        if self.is_in_gpu_mode():
            return
        self._require_owned_storage()
        backend = device_backend()
        self._storage = numba.cuda.to_device(np.ascontiguousarray(self._storage))
        self.backend = backend
        logger.debug("moved %s tensor to the device", self._format)

    def disable_gpu_mode(self) -> None:
        """Copy the store back to the host; observing tensors raise as in `enable_gpu_mode`."""
        if not self.is_in_gpu_mode():
            return
        self._require_owned_storage()
        self._storage = self._storage.copy_to_host()
        self.backend = HostBackend

    def __repr__(self) -> str:
        """Returns a string representation of the tensor, one plane at a time."""
        values = self._host_storage()
        s = f"Tensor({self._format})"
        for ordinal in range(self.size):
            x, y, z = to_index(ordinal, self._format)
            if x == 0 and y == 0:
                s += f"\n[z={z}]"
            if x == 0:
                s += "\n["
            s += f"{values[ordinal]:3.2f}"
            s += "]" if x == self.width - 1 else " "
        return s
