from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from .operators import ACTIVATION, DERIVATIVE, INVERSE, ActivationKind

if TYPE_CHECKING:
    from typing import Callable, Dict, Type

    from .tensor_data import Storage


class UnsupportedModeError(RuntimeError):
    """Exception raised when an operation has no implementation for the requested mode."""

    pass


class MapProto(Protocol):
    def __call__(self, out: Storage, a: Storage) -> None:
        """Apply a scalar function from `a` into `out` (which may be `a` itself)."""
        ...


class BackwardProto(Protocol):
    def __call__(
        self,
        error: Storage,
        activations: Storage,
        input: Storage,
        weights: Storage,
        weight_deltas: Storage,
        bias_deltas: Storage,
        passing_error: Storage,
        pass_error: bool,
    ) -> None:
        """Accumulate fully-connected deltas and the upstream error."""
        ...


class TensorOps:
    """Capability interface every execution backend implements.

    All functions work on flat storages; format checks happen in `Tensor`
    before dispatch.
    """

    cuda = False

    @staticmethod
    def map(fn: Callable[[float], float]) -> MapProto:
        """Elementwise in-place capable map."""
        raise NotImplementedError("Implemented by each backend")

    @staticmethod
    def fully_connected_backward(
        inverse: Callable[[float], float], derivative: Callable[[float], float]
    ) -> BackwardProto:
        """Backward kernel of a fully-connected layer for one activation kind."""
        raise NotImplementedError("Implemented by each backend")

    @staticmethod
    def set_all(out: Storage, value: float) -> None:
        raise NotImplementedError("Implemented by each backend")

    @staticmethod
    def add_flat(out: Storage, a: Storage, b: Storage) -> None:
        raise NotImplementedError("Implemented by each backend")

    @staticmethod
    def add_each_depth(out: Storage, a: Storage, b: Storage, plane_size: int) -> None:
        raise NotImplementedError("Implemented by each backend")

    @staticmethod
    def dot_product_flat(
        out: Storage, weights: Storage, input: Storage, input_count: int
    ) -> None:
        raise NotImplementedError("Implemented by each backend")

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
        raise NotImplementedError("Implemented by each backend")

    @staticmethod
    def apply_deltas(params: Storage, deltas: Storage, scale: float) -> None:
        raise NotImplementedError("Implemented by each backend")


class TensorBackend:
    def __init__(self, ops: Type[TensorOps]):
        """Dynamically construct a tensor backend based on a `tensor_ops` object
        that implements map, the flat arithmetic, correlation and deltas.

        Activation maps and fully-connected backward kernels are built once
        per `ActivationKind` so that every layer shares the compiled kernels.

        Args:
        ----
            ops : tensor operations object see `tensor_ops.py`

        """
        self.ops = ops
        self.cuda = ops.cuda

        self.activation_map: Dict[ActivationKind, MapProto] = {
            kind: ops.map(fn) for kind, fn in ACTIVATION.items()
        }
        self.fully_connected_backward: Dict[ActivationKind, BackwardProto] = {
            kind: ops.fully_connected_backward(INVERSE[kind], DERIVATIVE[kind])
            for kind in ActivationKind
        }

        self.set_all = ops.set_all
        self.add_flat = ops.add_flat
        self.add_each_depth = ops.add_each_depth
        self.dot_product_flat = ops.dot_product_flat
        self.cross_correlation = ops.cross_correlation
        self.apply_deltas = ops.apply_deltas
