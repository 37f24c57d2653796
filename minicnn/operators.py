"""Activation functions, their derivatives and inverses.

Every function here is a pure scalar function so that the backends can
compile it with numba (host `njit` or CUDA device functions).
"""

import math
from enum import IntEnum
from typing import Callable, Dict

LEAKY_SLOPE = 0.01
# Keeps the sigmoid/tanh inverses finite on saturated activations.
SATURATION_EPS = 1e-7


class ActivationKind(IntEnum):
    IDENTITY = 0
    SIGMOID = 1
    RELU = 2
    LEAKY_RELU = 3
    TANH = 4


class PoolingKind(IntEnum):
    MAX = 0
    MIN = 1
    AVERAGE = 2


def identity(x: float) -> float:
    """Returns the input unchanged.

    Args:
    ----
        x (float): The input number.

    Returns:
    -------
        float: The same input number.

    """
    return x


def identity_derivative(x: float) -> float:
    """Derivative of the identity, 1 everywhere."""
    return 1.0


def sigmoid(x: float) -> float:
    """Computes the sigmoid function for the input number.

    Args:
    ----
        x (float): The input number.

    Returns:
    -------
        float: The sigmoid of x.

    """
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-1.0 * x))
    else:
        a = math.exp(x)
        return a / (1.0 + a)


def sigmoid_derivative(x: float) -> float:
    """Computes the derivative of the sigmoid at the unactivated value x.

    Args:
    ----
        x (float): The unactivated input.

    Returns:
    -------
        float: sigmoid(x) * (1 - sigmoid(x)).

    """
    # Kept self-contained: numba cannot call the plain `sigmoid` above.
    if x >= 0:
        s = 1.0 / (1.0 + math.exp(-1.0 * x))
    else:
        e = math.exp(x)
        s = e / (1.0 + e)
    return s * (1.0 - s)


def sigmoid_inverse(a: float) -> float:
    """Recovers the unactivated value from a sigmoid activation (the logit).

    Args:
    ----
        a (float): An activation in (0, 1). Values at the bounds are clamped.

    Returns:
    -------
        float: log(a / (1 - a)).

    """
    if a < SATURATION_EPS:
        a = SATURATION_EPS
    elif a > 1.0 - SATURATION_EPS:
        a = 1.0 - SATURATION_EPS
    return math.log(a / (1.0 - a))


def relu(x: float) -> float:
    """Applies the ReLU (Rectified Linear Unit) function.

    Args:
    ----
        x (float): The input number.

    Returns:
    -------
        float: x if x is greater than 0, otherwise 0.

    """
    if x < 0:
        return 0.0
    return x


def relu_derivative(x: float) -> float:
    """1 for positive inputs, 0 otherwise."""
    if x > 0:
        return 1.0
    return 0.0


def relu_inverse(a: float) -> float:
    # Not invertible below zero; any non-positive preimage has derivative 0.
    if a > 0:
        return a
    return 0.0


def leaky_relu(x: float) -> float:
    """ReLU with a small slope for negative inputs."""
    if x < 0:
        return LEAKY_SLOPE * x
    return x


def leaky_relu_derivative(x: float) -> float:
    if x < 0:
        return LEAKY_SLOPE
    return 1.0


def leaky_relu_inverse(a: float) -> float:
    if a < 0:
        return a / LEAKY_SLOPE
    return a


def tanh(x: float) -> float:
    """Hyperbolic tangent."""
    return math.tanh(x)


def tanh_derivative(x: float) -> float:
    t = math.tanh(x)
    return 1.0 - t * t


def tanh_inverse(a: float) -> float:
    """Recovers the unactivated value from a tanh activation.

    Args:
    ----
        a (float): An activation in (-1, 1). Values at the bounds are clamped.

    Returns:
    -------
        float: atanh(a).

    """
    bound = 1.0 - SATURATION_EPS
    if a > bound:
        a = bound
    elif a < -bound:
        a = -bound
    return math.atanh(a)


ACTIVATION: Dict[ActivationKind, Callable[[float], float]] = {
    ActivationKind.IDENTITY: identity,
    ActivationKind.SIGMOID: sigmoid,
    ActivationKind.RELU: relu,
    ActivationKind.LEAKY_RELU: leaky_relu,
    ActivationKind.TANH: tanh,
}

DERIVATIVE: Dict[ActivationKind, Callable[[float], float]] = {
    ActivationKind.IDENTITY: identity_derivative,
    ActivationKind.SIGMOID: sigmoid_derivative,
    ActivationKind.RELU: relu_derivative,
    ActivationKind.LEAKY_RELU: leaky_relu_derivative,
    ActivationKind.TANH: tanh_derivative,
}

INVERSE: Dict[ActivationKind, Callable[[float], float]] = {
    ActivationKind.IDENTITY: identity,
    ActivationKind.SIGMOID: sigmoid_inverse,
    ActivationKind.RELU: relu_inverse,
    ActivationKind.LEAKY_RELU: leaky_relu_inverse,
    ActivationKind.TANH: tanh_inverse,
}
