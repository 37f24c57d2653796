"""The protocol shared by every layer kind and the state each layer carries.

A layer moves through four states:

* unbound: constructed, no input format yet.
* bound: `set_input_format` fixed the input and output formats and sized
  the activation, error and parameter tensors.
* propagated: `forward_propagation` filled the activations.
* error-set: the error tensor holds downstream contributions that the
  next `back_propagation` consumes and clears.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol

from .tensor import Tensor
from .tensor_data import Format, FormatMismatchError, check_same_format

if TYPE_CHECKING:
    from typing import Optional


class SequencingError(RuntimeError):
    """Exception raised when a one-time setup step is missing or repeated."""

    pass


class LayerKind(Enum):
    CONVOLUTION = "convolution"
    FULLY_CONNECTED = "fully_connected"
    POOLING = "pooling"


class Layer(Protocol):
    """Capabilities every layer kind provides.

    Layers are plain classes that satisfy this protocol; the network keeps
    them in one ordered list and dispatches through these methods only.
    """

    kind: LayerKind
    state: LayerState

    @property
    def activations(self) -> Tensor: ...

    @property
    def error(self) -> Tensor: ...

    @property
    def input_format(self) -> Optional[Format]: ...

    @property
    def output_format(self) -> Optional[Format]: ...

    def set_input_format(self, input_format: Format) -> None: ...

    def forward_propagation(self, input: Tensor) -> None: ...

    def back_propagation(self, input: Tensor, passing_error: Optional[Tensor]) -> None: ...

    def apply_deltas(self, count: int, learning_rate: float) -> None: ...

    def mutate(self, value_range: float) -> None: ...

    def apply_noise(self, value_range: float) -> None: ...

    def set_all_parameter(self, value: float) -> None: ...

    def set_error_for_last_layer(self, label: Tensor) -> None: ...

    def enable_gpu_mode(self) -> None: ...

    def disable_gpu_mode(self) -> None: ...

    def is_in_gpu_mode(self) -> bool: ...


class LayerState:
    """Activation and error tensors plus the state machine of one layer.

    The activation and error tensors are owned here and always share the
    output format. The input tensor is never stored: it is passed to each
    propagation call by the network.
    """

    def __init__(self, kind: LayerKind):
        self.kind = kind
        self.input_format: Optional[Format] = None
        self.activations = Tensor()
        self.error = Tensor()
        self.propagated = False
        self.pending_examples = 0

    @property
    def output_format(self) -> Optional[Format]:
        if self.input_format is None:
            return None
        return self.activations.format

    def is_bound(self) -> bool:
        return self.input_format is not None

    def bind(self, input_format: Format, output_format: Format) -> None:
        """Fix the input format once and size the activation and error tensors.

        Raises
        ------
            SequencingError: if the layer was already bound.

        """
        if self.input_format is not None:
            raise SequencingError("Cannot set input format twice.")
        self.input_format = input_format
        self.activations.resize(output_format)
        self.error.resize(output_format)

    def require_bound(self) -> None:
        if self.input_format is None:
            raise SequencingError(
                f"The {self.kind.value} layer has no input format yet."
            )

    def check_input(self, input: Tensor) -> None:
        """Raise unless the layer is bound and `input` matches its input format."""
        self.require_bound()
        assert self.input_format is not None
        check_same_format(self.input_format, input.format)

    def check_passing_error(self, passing_error: Optional[Tensor]) -> None:
        if passing_error is not None:
            assert self.input_format is not None
            check_same_format(self.input_format, passing_error.format)

    def require_propagated(self) -> None:
        if not self.propagated:
            raise SequencingError(
                f"The {self.kind.value} layer has no activations, run a forward pass first."
            )

    def take_pending_examples(self) -> None:
        """Consume the example count accumulated since the last parameter update."""
        if self.pending_examples == 0:
            raise SequencingError(
                "No deltas accumulated, run back_propagation before apply_deltas."
            )
        self.pending_examples = 0

    def set_error_for_last_layer(self, label: Tensor) -> None:
        """Seed the error with the squared-error derivative 2 * (activation - label)."""
        self.require_propagated()
        if not Tensor.equal_format(self.activations, label):
            raise FormatMismatchError(
                f"Label format {label.format} does not match {self.activations.format}."
            )
        values = 2.0 * (self.activations.to_numpy() - label.to_numpy())
        self.error.assign_flat(values)

    def enable_gpu_mode(self) -> None:
        self.activations.enable_gpu_mode()
        self.error.enable_gpu_mode()

    def disable_gpu_mode(self) -> None:
        self.activations.disable_gpu_mode()
        self.error.disable_gpu_mode()
