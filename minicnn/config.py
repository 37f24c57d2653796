from dataclasses import dataclass
from typing import Optional

from .batch_handler import LastBatchPolicy


@dataclass
class TrainingConfig:
    """Hyperparameters of one `Network.train` run.

    Attributes
    ----------
        batch_size (int): examples averaged into one parameter update.
        epochs (int): passes over the data space.
        learning_rate (float): step size applied to the averaged deltas.
        last_batch (LastBatchPolicy): handling of a short final batch.
        seed (Optional[int]): seeds the shuffling between epochs when set.

    """

    batch_size: int = 1
    epochs: int = 1
    learning_rate: float = 0.1
    last_batch: LastBatchPolicy = LastBatchPolicy.SHRINK
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")
        if self.epochs < 0:
            raise ValueError("epochs must not be negative")
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be greater than 0")
        self.last_batch = LastBatchPolicy(self.last_batch)
