import random

import numpy as np
import pytest

from minicnn import ActivationKind, Format, FormatMismatchError, FullyConnectedLayer, Tensor
from minicnn.layer import SequencingError


def make_layer() -> FullyConnectedLayer:
    """One identity neuron with weights (0.5, -1) and bias 0.25 over a 1 x 2 x 1 input."""
    layer = FullyConnectedLayer(1, ActivationKind.IDENTITY, random.Random(0))
    layer.set_input_format(Format(1, 2, 1))
    layer.set_weight_at(0, 0, 0.5)
    layer.set_weight_at(1, 0, -1.0)
    layer.biases.set_all(0.25)
    return layer


def test_formats():
    layer = FullyConnectedLayer(4, ActivationKind.SIGMOID)
    assert layer.output_format is None
    layer.set_input_format(Format(2, 3, 2))
    assert layer.output_format == Format(1, 4, 1)
    assert layer.weights.format == Format(12, 4, 1)
    assert layer.biases.format == Format(1, 4, 1)


def test_explicit_activation_format():
    layer = FullyConnectedLayer((2, 2, 1), ActivationKind.IDENTITY)
    layer.set_input_format(Format(1, 3, 1))
    assert layer.output_format == Format(2, 2, 1)
    assert layer.weights.format == Format(3, 4, 1)


def test_invalid_construction():
    with pytest.raises(ValueError):
        FullyConnectedLayer(0, ActivationKind.RELU)


def test_input_format_only_once():
    layer = FullyConnectedLayer(1, ActivationKind.RELU)
    layer.set_input_format(Format(1, 1, 1))
    with pytest.raises(SequencingError):
        layer.set_input_format(Format(1, 1, 1))


def test_forward():
    layer = make_layer()
    layer.forward_propagation(Tensor.make([1.0, 2.0], (1, 2, 1)))
    assert layer.activations.get_at_flat(0) == pytest.approx(-1.25)


def test_forward_requires_input_format():
    layer = FullyConnectedLayer(1, ActivationKind.RELU)
    with pytest.raises(SequencingError):
        layer.forward_propagation(Tensor(1, 1, 1))


def test_forward_rejects_wrong_input():
    with pytest.raises(FormatMismatchError):
        make_layer().forward_propagation(Tensor(2, 1, 1))


def test_backward_accumulates_deltas_and_upstream_error():
    layer = make_layer()
    input = Tensor.make([1.0, 2.0], (1, 2, 1))
    layer.forward_propagation(input)
    layer.set_error_for_last_layer(Tensor.make([0.0], (1, 1, 1)))
    assert layer.error.get_at_flat(0) == pytest.approx(-2.5)

    upstream = Tensor(1, 2, 1)
    upstream.set_all(1.0)
    layer.back_propagation(input, upstream)

    assert layer.bias_deltas.get_at_flat(0) == pytest.approx(-2.5)
    assert layer.get_weight_delta_at(0, 0) == pytest.approx(-2.5)
    assert layer.get_weight_delta_at(1, 0) == pytest.approx(-5.0)
    # added to the previous contents
    np.testing.assert_allclose(upstream.flat(), [1.0 - 1.25, 1.0 + 2.5])
    # the error is consumed
    assert layer.error.get_at_flat(0) == 0.0


def test_apply_deltas_descends():
    layer = make_layer()
    input = Tensor.make([1.0, 2.0], (1, 2, 1))
    layer.forward_propagation(input)
    layer.set_error_for_last_layer(Tensor.make([0.0], (1, 1, 1)))
    layer.back_propagation(input, None)
    layer.apply_deltas(1, 0.1)

    assert layer.biases.get_at_flat(0) == pytest.approx(0.5)
    assert layer.get_weight_at(0, 0) == pytest.approx(0.75)
    assert layer.get_weight_at(1, 0) == pytest.approx(-0.5)
    assert layer.get_weight_delta_at(1, 0) == 0.0

    layer.forward_propagation(input)
    assert layer.activations.get_at_flat(0) == pytest.approx(0.25)


def test_backward_before_forward():
    layer = make_layer()
    with pytest.raises(SequencingError):
        layer.back_propagation(Tensor(1, 2, 1), None)


def test_apply_deltas_without_backward():
    with pytest.raises(SequencingError):
        make_layer().apply_deltas(1, 0.1)


def test_sigmoid_backward_uses_the_activation_slope():
    layer = FullyConnectedLayer(1, ActivationKind.SIGMOID)
    layer.set_input_format(Format(1, 1, 1))
    layer.set_all_parameter(0.0)
    input = Tensor.make([2.0], (1, 1, 1))
    layer.forward_propagation(input)
    assert layer.activations.get_at_flat(0) == pytest.approx(0.5)
    layer.set_error_for_last_layer(Tensor.make([1.0], (1, 1, 1)))
    layer.back_propagation(input, None)
    # error -1 times sigmoid'(0) = 0.25
    assert layer.bias_deltas.get_at_flat(0) == pytest.approx(-0.25)
    assert layer.get_weight_delta_at(0, 0) == pytest.approx(-0.5)


def test_set_all_parameter_and_noise():
    layer = make_layer()
    layer.set_all_parameter(0.0)
    assert np.count_nonzero(layer.weights.flat()) == 0
    layer.apply_noise(0.1)
    assert np.all(np.abs(layer.weights.flat()) <= 0.1)
    assert np.all(np.abs(layer.biases.flat()) <= 0.1)


def test_mutate_changes_one_parameter():
    layer = FullyConnectedLayer(3, ActivationKind.RELU, random.Random(2))
    layer.set_input_format(Format(1, 4, 1))
    for _ in range(10):
        before = np.concatenate([layer.weights.flat(), layer.biases.flat()])
        layer.mutate(0.5)
        after = np.concatenate([layer.weights.flat(), layer.biases.flat()])
        diff = after - before
        assert np.count_nonzero(diff) == 1
        assert np.max(np.abs(diff)) <= 0.5


def test_numpy_integer_neuron_count():
    layer = FullyConnectedLayer(np.int64(3), ActivationKind.RELU)
    layer.set_input_format(Format(1, 2, 1))
    assert layer.output_format == Format(1, 3, 1)
    with pytest.raises(ValueError):
        FullyConnectedLayer(np.int64(0), ActivationKind.RELU)


def test_disable_gpu_mode_on_host_is_a_no_op():
    layer = make_layer()
    layer.disable_gpu_mode()
    assert not layer.is_in_gpu_mode()
    layer.forward_propagation(Tensor.make([1.0, 2.0], (1, 2, 1)))
    assert layer.activations.get_at_flat(0) == pytest.approx(-1.25)
