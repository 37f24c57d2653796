import random

import numpy as np
import pytest

from minicnn import DataSpace, Tensor


@pytest.fixture
def rng() -> random.Random:
    return random.Random(0)


@pytest.fixture
def counting_input() -> Tensor:
    """3 x 3 x 1 tensor holding 1..9, x moving fastest."""
    return Tensor.make(np.arange(1.0, 10.0), (3, 3, 1))


@pytest.fixture
def two_item_space(rng: random.Random) -> DataSpace:
    """Two items of data 2 x 2 x 3 and label 1 x 1 x 1, item i filled with i + 1."""
    data = [Tensor.make(np.full(12, float(i + 1)), (2, 2, 3)) for i in range(2)]
    labels = [Tensor.make([float(i)], (1, 1, 1)) for i in range(2)]
    return DataSpace((2, 2, 3), data, (1, 1, 1), labels, rng)
