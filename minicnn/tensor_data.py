from __future__ import annotations

from typing import Iterable, NamedTuple, Sequence, Tuple

import numpy as np
import numpy.typing as npt
from typing_extensions import TypeAlias


class IndexingError(RuntimeError):
    """Exception raised for indexing errors."""

    pass


class FormatMismatchError(ValueError):
    """Exception raised when operand formats disagree."""

    pass


Storage: TypeAlias = npt.NDArray[np.float64]
Index: TypeAlias = npt.NDArray[np.int32]
Strides: TypeAlias = npt.NDArray[np.int32]

UserIndex: TypeAlias = Sequence[int]


class Format(NamedTuple):
    """The fixed (width, height, depth) shape of a tensor."""

    width: int
    height: int
    depth: int = 1

    def item_count(self) -> int:
        """Number of scalars a tensor of this format holds."""
        return self.width * self.height * self.depth

    def __str__(self) -> str:
        return f"{self.width}x{self.height}x{self.depth}"


def as_format(fmt: Iterable[int]) -> Format:
    """Coerce a tuple-like (width, height[, depth]) into a `Format`."""
    if isinstance(fmt, Format):
        return fmt
    values = tuple(int(v) for v in fmt)
    if len(values) == 2:
        values = values + (1,)
    if len(values) != 3:
        raise IndexingError(f"Format {values} must have 2 or 3 dims.")
    if any(v < 0 for v in values):
        raise IndexingError(f"Format {values} must not be negative.")
    return Format(*values)


def strides_from_format(fmt: Format) -> Tuple[int, int, int]:
    """Return the strides for a given format.

    x moves fastest, then y, then z, so a full row (fixed y, z) is one
    contiguous run of `width` values.
    """
    return (1, fmt.width, fmt.width * fmt.height)


def index_to_position(index: UserIndex, strides: Sequence[int]) -> int:
    """Convert a multi-dimensional index to a single position based on strides."""
    pos = 0
    for a, b in zip(index, strides):
        pos += a * b
    return pos


def to_index(ordinal: int, fmt: Format) -> Tuple[int, int, int]:
    """Convert an ordinal value to an (x, y, z) index."""
    x = ordinal % fmt.width
    rest = ordinal // fmt.width
    y = rest % fmt.height
    z = rest // fmt.height
    return (x, y, z)


def is_whole_number(value: float) -> bool:
    """Check whether a float has no fractional part."""
    return float(value).is_integer()


def check_index(index: UserIndex, fmt: Format) -> None:
    """Raise `IndexingError` unless `index` addresses a cell of `fmt`."""
    if len(index) != 3:
        raise IndexingError(f"Index {tuple(index)} must be size 3.")
    for ind, bound in zip(index, fmt):
        if ind < 0:
            raise IndexingError(f"Negative indexing for {tuple(index)} not supported.")
        if ind >= bound:
            raise IndexingError(f"Index {tuple(index)} out of range {fmt}.")


def check_same_format(*formats: Format) -> None:
    """Raise `FormatMismatchError` unless all formats are equal."""
    first = formats[0]
    for other in formats[1:]:
        if other != first:
            raise FormatMismatchError(f"Format {other} does not match {first}.")


def window_output_format(
    input_format: Format, window: int, stride: int, depth: int
) -> Format:
    """Output format of a strided, unpadded window sweep.

    Args:
    ----
        input_format (Format): format of the swept tensor.
        window (int): side length of the square window.
        stride (int): step between two window origins.
        depth (int): depth of the produced format.

    Returns:
    -------
        Format: `((w - window) / stride + 1, (h - window) / stride + 1, depth)`.

    Raises:
    ------
        ValueError: if either spatial axis does not yield a whole number of steps.

    """
    out_w = (input_format.width - window) / stride + 1
    out_h = (input_format.height - window) / stride + 1
    if out_w < 1 or out_h < 1 or not is_whole_number(out_w) or not is_whole_number(out_h):
        raise ValueError(
            f"input format {input_format} is not compatible with "
            f"window {window} and stride {stride}"
        )
    return Format(int(out_w), int(out_h), depth)
