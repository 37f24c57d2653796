import math

import pytest

from minicnn import operators
from minicnn.operators import ACTIVATION, DERIVATIVE, INVERSE, ActivationKind


def test_sigmoid():
    assert operators.sigmoid(0.0) == pytest.approx(0.5)
    assert operators.sigmoid(-50.0) == pytest.approx(0.0, abs=1e-12)
    assert operators.sigmoid(2.0) == pytest.approx(1.0 / (1.0 + math.exp(-2.0)))
    assert operators.sigmoid_derivative(0.0) == pytest.approx(0.25)


def test_relu_family():
    assert operators.relu(-3.0) == 0.0
    assert operators.relu(2.5) == 2.5
    assert operators.relu_derivative(-1.0) == 0.0
    assert operators.relu_derivative(1.0) == 1.0
    assert operators.leaky_relu(-2.0) == pytest.approx(-2.0 * operators.LEAKY_SLOPE)
    assert operators.leaky_relu_derivative(-2.0) == operators.LEAKY_SLOPE


@pytest.mark.parametrize(
    "kind", [ActivationKind.IDENTITY, ActivationKind.SIGMOID, ActivationKind.LEAKY_RELU, ActivationKind.TANH]
)
@pytest.mark.parametrize("x", [-1.5, -0.2, 0.3, 1.2])
def test_inverse_recovers_unactivated_value(kind, x):
    assert INVERSE[kind](ACTIVATION[kind](x)) == pytest.approx(x, rel=1e-6)


def test_relu_inverse_of_positive_activation():
    assert operators.relu_inverse(1.5) == 1.5
    assert DERIVATIVE[ActivationKind.RELU](operators.relu_inverse(0.0)) == 0.0


def test_saturated_inverses_stay_finite():
    assert math.isfinite(operators.sigmoid_inverse(1.0))
    assert math.isfinite(operators.sigmoid_inverse(0.0))
    assert math.isfinite(operators.tanh_inverse(1.0))
    assert math.isfinite(operators.tanh_inverse(-1.0))


def test_every_kind_has_all_three_functions():
    for kind in ActivationKind:
        assert kind in ACTIVATION
        assert kind in DERIVATIVE
        assert kind in INVERSE
