import math
import random
from typing import Callable, Dict, List, Optional, Tuple

from .data_space import DataSpace
from .tensor import Tensor

POINT_FORMAT = (1, 2, 1)
LABEL_FORMAT = (1, 1, 1)


def make_pts(N: int, rng: Optional[random.Random] = None) -> List[Tuple[float, float]]:
    """Generates a list of N random 2D points within the range [0, 1].

    Args:
    ----
        N (int): The number of points to generate.
        rng (Optional[random.Random]): source of the coordinates.

    Returns:
    -------
        List[Tuple[float, float]]: one (x_1, x_2) tuple per point.

    """
    gen = rng if rng is not None else random
    X = []
    for i in range(N):
        x_1 = gen.random()
        x_2 = gen.random()
        X.append((x_1, x_2))
    return X


def to_data_space(
    X: List[Tuple[float, float]], y: List[int], rng: Optional[random.Random] = None
) -> DataSpace:
    """Packs points as (1 x 2 x 1) data tensors and labels as (1 x 1 x 1) tensors."""
    data = [Tensor.make(pt, POINT_FORMAT) for pt in X]
    labels = [Tensor.make([float(label)], LABEL_FORMAT) for label in y]
    return DataSpace(POINT_FORMAT, data, LABEL_FORMAT, labels, rng)


def _labelled(
    N: int, rule: Callable[[float, float], bool], rng: Optional[random.Random]
) -> DataSpace:
    X = make_pts(N, rng)
    y = [1 if rule(x_1, x_2) else 0 for x_1, x_2 in X]
    return to_data_space(X, y, rng)


def simple(N: int, rng: Optional[random.Random] = None) -> DataSpace:
    """Label is 1 if the x-coordinate of the point is less than 0.5, else 0."""
    return _labelled(N, lambda x_1, x_2: x_1 < 0.5, rng)


def diag(N: int, rng: Optional[random.Random] = None) -> DataSpace:
    """Label is 1 if the sum of both coordinates is less than 0.5, else 0."""
    return _labelled(N, lambda x_1, x_2: x_1 + x_2 < 0.5, rng)


def split(N: int, rng: Optional[random.Random] = None) -> DataSpace:
    """Label is 1 if the x-coordinate is less than 0.2 or greater than 0.8, else 0."""
    return _labelled(N, lambda x_1, x_2: x_1 < 0.2 or x_1 > 0.8, rng)


def xor(N: int, rng: Optional[random.Random] = None) -> DataSpace:
    """Label is 1 if the point falls in opposite quadrants, else 0."""
    return _labelled(
        N,
        lambda x_1, x_2: (x_1 < 0.5 and x_2 > 0.5) or (x_1 > 0.5 and x_2 < 0.5),
        rng,
    )


def circle(N: int, rng: Optional[random.Random] = None) -> DataSpace:
    """Label is 1 if the point is outside a circle of radius sqrt(0.1) centered at (0.5, 0.5)."""

    def outside(x_1: float, x_2: float) -> bool:
        x1, x2 = x_1 - 0.5, x_2 - 0.5
        return x1 * x1 + x2 * x2 > 0.1

    return _labelled(N, outside, rng)


def spiral(N: int, rng: Optional[random.Random] = None) -> DataSpace:
    """Two interleaved spirals, N // 2 points each, labelled 0 and 1.

    The points are deterministic; `rng` only seeds the data space's shuffling.
    """

    def x(t: float) -> float:
        return t * math.cos(t) / 20.0

    def y(t: float) -> float:
        return t * math.sin(t) / 20.0

    half = N // 2
    X = [
        (x(10.0 * (float(i) / half)) + 0.5, y(10.0 * (float(i) / half)) + 0.5)
        for i in range(5 + 0, 5 + half)
    ]
    X = X + [
        (y(-10.0 * (float(i) / half)) + 0.5, x(-10.0 * (float(i) / half)) + 0.5)
        for i in range(5 + 0, 5 + half)
    ]
    labels = [0] * half + [1] * half
    return to_data_space(X, labels, rng)


datasets: Dict[str, Callable[..., DataSpace]] = {
    "Simple": simple,
    "Diag": diag,
    "Split": split,
    "Xor": xor,
    "Circle": circle,
    "Spiral": spiral,
}
