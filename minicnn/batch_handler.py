from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import random
    from typing import Iterator, List, Optional

    from .data_space import DataSpace

logger = logging.getLogger(__name__)


class LastBatchPolicy(Enum):
    """What to do with the remainder when the corpus size is not a multiple of the batch size."""

    SHRINK = "shrink"  # keep a shorter last batch
    DROP = "drop"  # skip the remainder for this epoch
    PAD = "pad"  # top the last batch up from the start of the epoch's order


class BatchHandler:
    """Cuts one epoch of a data space into fixed-size batches.

    A batch is a list of positions into the data space's permutation, so
    `data_space.observe_data_at_idx(view, position)` yields the shuffled
    example. The handler never owns the corpus; `calculate_new_batch`
    reshuffles it and starts the next epoch.
    """

    def __init__(
        self,
        data_space: DataSpace,
        batch_size: int,
        last_batch: LastBatchPolicy = LastBatchPolicy.SHRINK,
        rng: Optional[random.Random] = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")
        self.data_space = data_space
        self.batch_size = batch_size
        self.last_batch = LastBatchPolicy(last_batch)
        self.epoch = 0
        self._rng = rng

    def batch_count(self) -> int:
        """Number of batches one epoch yields under the last-batch policy."""
        full, rest = divmod(self.data_space.get_item_count(), self.batch_size)
        if rest and self.last_batch != LastBatchPolicy.DROP:
            return full + 1
        return full

    def __len__(self) -> int:
        return self.batch_count()

    def __iter__(self) -> Iterator[List[int]]:
        item_count = self.data_space.get_item_count()
        for start in range(0, item_count, self.batch_size):
            batch = list(range(start, min(start + self.batch_size, item_count)))
            if len(batch) < self.batch_size:
                if self.last_batch == LastBatchPolicy.DROP:
                    logger.debug("dropping %d trailing item(s)", len(batch))
                    return
                if self.last_batch == LastBatchPolicy.PAD:
                    missing = self.batch_size - len(batch)
                    batch.extend(i % item_count for i in range(missing))
            yield batch

    def calculate_new_batch(self) -> None:
        """Reshuffle the data space and advance to the next epoch."""
        self.data_space.shuffle(self._rng)
        self.epoch += 1
        logger.debug("batch handler moved to epoch %d", self.epoch)
