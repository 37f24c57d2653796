"""Storage of a whole training corpus in one packed tensor."""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from .layer import SequencingError
from .tensor import Tensor
from .tensor_data import Format, FormatMismatchError, IndexingError, as_format

if TYPE_CHECKING:
    from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

    FormatLike = Union[Tensor, Format, Iterable[int]]

logger = logging.getLogger(__name__)

NO_LABEL = Format(0, 0, 0)


def _format_of(fmt: FormatLike) -> Format:
    if isinstance(fmt, Tensor):
        return fmt.format
    return as_format(fmt)


class DataSpace:
    """All examples of a corpus packed into one tensor, with a shuffle table.

    Row `r` of the packed tensor holds one example: its data values
    followed by its label values. Rows never move; `shuffle` only permutes
    the table that positions are looked up through, and every accessor
    takes a position into that table.

    Args:
    ----
        data_format: format of every data tensor (a `Format`, a tuple or a
            tensor whose format is used).
        data: the data tensors.
        label_format: format of every label tensor, None for unlabelled data.
        labels: the label tensors, parallel to `data`.
        rng: random source for `shuffle`.

    """

    def __init__(
        self,
        data_format: FormatLike,
        data: Sequence[Tensor] = (),
        label_format: Optional[FormatLike] = None,
        labels: Optional[Sequence[Tensor]] = None,
        rng: Optional[random.Random] = None,
    ):
        if labels is not None and label_format is None:
            raise ValueError("labels given without a label format")
        if label_format is not None and labels is not None and len(data) != len(labels):
            raise ValueError("data and label size mismatch")
        if label_format is not None and labels is None and len(data) > 0:
            raise ValueError("data and label size mismatch")

        self._allocate(
            len(data),
            _format_of(data_format),
            _format_of(label_format) if label_format is not None else NO_LABEL,
        )
        self._rng = rng if rng is not None else random.Random()

        for i, item in enumerate(data):
            self._set_data_in_table_at(item, i)
        for i, item in enumerate(labels or ()):
            self._set_label_in_table_at(item, i)
        logger.debug(
            "packed %d item(s) of data %s and label %s",
            self.item_count,
            self.data_format,
            self.label_format,
        )

    @classmethod
    def empty(
        cls,
        item_count: int,
        data_format: FormatLike,
        label_format: Optional[FormatLike] = None,
        rng: Optional[random.Random] = None,
    ) -> DataSpace:
        """A zero-filled data space of `item_count` items, filled later with `set_data`/`set_label`."""
        if item_count < 0:
            raise ValueError("item_count must not be negative")
        space = cls(data_format, (), label_format, None, rng)
        space._allocate(item_count, space.data_format, space.label_format)
        return space

    def _allocate(self, item_count: int, data_format: Format, label_format: Format) -> None:
        self.item_count = item_count
        self.data_format = data_format
        self.label_format = label_format
        self.data_table = Tensor(
            data_format.item_count() + label_format.item_count(), item_count, 1
        )
        self.shuffle_table: List[int] = list(range(item_count))
        self.iterator_idx = 0

    def _set_data_in_table_at(self, m: Tensor, row: int) -> None:
        if m.format != self.data_format:
            raise FormatMismatchError(
                f"Data format {m.format} does not match {self.data_format}."
            )
        self.data_table.set_row_from_tensor(m, row)

    def _set_label_in_table_at(self, m: Tensor, row: int) -> None:
        self._require_labels()
        if m.format != self.label_format:
            raise FormatMismatchError(
                f"Label format {m.format} does not match {self.label_format}."
            )
        self.data_table.set_row_from_tensor(m, row, self.data_item_count())

    def _require_labels(self) -> None:
        if not self.has_labels():
            raise SequencingError("This data space holds no labels.")

    def _row(self, idx: int) -> int:
        if idx < 0 or idx >= self.item_count:
            raise IndexingError(f"Item {idx} out of range {self.item_count}.")
        return self.shuffle_table[idx]

    # Formats and sizes

    def get_item_count(self) -> int:
        return self.item_count

    def __len__(self) -> int:
        return self.item_count

    def get_data_format(self) -> Format:
        return self.data_format

    def get_label_format(self) -> Format:
        return self.label_format

    def data_item_count(self) -> int:
        return self.data_format.item_count()

    def label_item_count(self) -> int:
        return self.label_format.item_count()

    def has_labels(self) -> bool:
        return self.label_format.item_count() != 0

    # Shuffling and iteration

    def shuffle(self, rng: Optional[random.Random] = None) -> None:
        """Permute the shuffle table in place (Fisher-Yates); the packed rows stay put."""
        gen = rng if rng is not None else self._rng
        gen.shuffle(self.shuffle_table)

    def iterator_reset(self) -> None:
        self.iterator_idx = 0

    def iterator_next(self) -> None:
        if self.iterator_idx >= self.item_count:
            raise IndexingError("The iterator is already past the last item.")
        self.iterator_idx += 1

    def iterator_has_next(self) -> bool:
        return self.iterator_idx + 1 < self.item_count

    def __iter__(self) -> Iterator[Tuple[Tensor, Optional[Tensor]]]:
        """Yield (data, label) views in shuffled order; label is None without labels."""
        for idx in range(self.item_count):
            data = Tensor.from_format(self.data_format)
            self.observe_data_at_idx(data, idx)
            label = None
            if self.has_labels():
                label = Tensor.from_format(self.label_format)
                self.observe_label_at_idx(label, idx)
            yield data, label

    # Views

    def observe_data_at_idx(self, observer: Tensor, idx: int) -> None:
        """Alias `observer` onto the data of the item at position `idx`, without copying.

        The observer adopts the packed tensor's host or device mode; a
        previous observation of `observer` ends.
        """
        if observer.format != self.data_format:
            raise FormatMismatchError(
                f"Observer format {observer.format} does not match {self.data_format}."
            )
        observer.observe_row(self.data_table, self._row(idx))

    def observe_label_at_idx(self, observer: Tensor, idx: int) -> None:
        """Alias `observer` onto the label of the item at position `idx`, without copying."""
        self._require_labels()
        if observer.format != self.label_format:
            raise FormatMismatchError(
                f"Observer format {observer.format} does not match {self.label_format}."
            )
        observer.observe_row(self.data_table, self._row(idx), self.data_item_count())

    def get_next_data(self) -> Tensor:
        """A new view of the data at the iterator position."""
        view = Tensor.from_format(self.data_format)
        self.observe_data_at_idx(view, self.iterator_idx)
        return view

    def get_next_label(self) -> Tensor:
        """A new view of the label at the iterator position."""
        self._require_labels()
        view = Tensor.from_format(self.label_format)
        self.observe_label_at_idx(view, self.iterator_idx)
        return view

    def set_data(self, m: Tensor, idx: int) -> None:
        """Overwrite the data of the item at position `idx`."""
        self._set_data_in_table_at(m, self._row(idx))

    def set_label(self, m: Tensor, idx: int) -> None:
        """Overwrite the label of the item at position `idx`."""
        self._set_label_in_table_at(m, self._row(idx))

    # Execution mode

    def copy_to_gpu(self) -> None:
        """Move the packed tensor to the device.

        Views observed afterwards live on the device too; views observed
        before keep their host values.
        """
        self.data_table.enable_gpu_mode()
        logger.info("data space of %d item(s) moved to the device", self.item_count)

    def is_in_gpu_mode(self) -> bool:
        return self.data_table.is_in_gpu_mode()
