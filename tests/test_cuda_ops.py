import random

import numba.cuda
import numpy as np
import pytest

from minicnn import (
    ActivationKind,
    DataSpace,
    Format,
    FullyConnectedLayer,
    Network,
    Tensor,
    UnsupportedModeError,
)

pytestmark = pytest.mark.skipif(
    not numba.cuda.is_available(), reason="requires a CUDA device"
)


def test_round_trip_keeps_values():
    t = Tensor.make(np.arange(6.0), (3, 2, 1))
    t.enable_gpu_mode()
    assert t.is_in_gpu_mode()
    assert t.get_at(2, 1, 0) == 5.0
    t.set_at(0, 0, 0, -1.0)
    t.disable_gpu_mode()
    np.testing.assert_array_equal(t.flat(), [-1.0, 1.0, 2.0, 3.0, 4.0, 5.0])


def test_device_operations_match_host():
    a = Tensor.make(np.linspace(-1, 1, 8), (2, 2, 2))
    b = Tensor.make(np.linspace(2, 3, 8), (2, 2, 2))
    expected = Tensor(2, 2, 2)
    Tensor.add_flat(a, b, expected)
    expected.apply_activation_function(ActivationKind.SIGMOID)

    for t in (a, b):
        t.enable_gpu_mode()
    out = Tensor(2, 2, 2)
    out.enable_gpu_mode()
    Tensor.add_flat(a, b, out)
    out.apply_activation_function(ActivationKind.SIGMOID)
    np.testing.assert_allclose(out.to_numpy(), expected.to_numpy())


def test_device_cross_correlation_matches_host():
    input = Tensor.make(np.arange(16.0), (4, 4, 1))
    kernel = Tensor.make([1.0, -1.0, 0.5, 2.0], (2, 2, 1))
    expected = Tensor(3, 3, 1)
    Tensor.valid_cross_correlation(input, [kernel], expected, 1)

    input.enable_gpu_mode()
    kernel.enable_gpu_mode()
    out = Tensor(3, 3, 1)
    out.enable_gpu_mode()
    Tensor.valid_cross_correlation(input, [kernel], out, 1)
    np.testing.assert_allclose(out.to_numpy(), expected.to_numpy())


def test_fully_connected_layer_on_device_matches_host():
    layers = []
    for device in (False, True):
        layer = FullyConnectedLayer(3, ActivationKind.TANH, random.Random(0))
        layer.set_input_format(Format(1, 4, 1))
        layer.apply_noise(0.5)
        input = Tensor.make([0.1, -0.2, 0.3, 0.4], (1, 4, 1))
        if device:
            layer.enable_gpu_mode()
            input.enable_gpu_mode()
        layer.forward_propagation(input)
        layer.set_error_for_last_layer(Tensor.make([1.0, 0.0, -1.0], (1, 3, 1)))
        layer.back_propagation(input, None)
        layer.apply_deltas(1, 0.1)
        layers.append(layer)

    host, device = layers
    np.testing.assert_allclose(device.weights.to_numpy(), host.weights.to_numpy())
    np.testing.assert_allclose(device.biases.to_numpy(), host.biases.to_numpy())


def test_network_learns_on_device():
    data = [Tensor.make([1.0, 0.0], (1, 2, 1)), Tensor.make([0.0, 1.0], (1, 2, 1))]
    labels = [Tensor.make([1.0], (1, 1, 1)), Tensor.make([0.0], (1, 1, 1))]
    space = DataSpace((1, 2, 1), data, (1, 1, 1), labels, random.Random(0))
    space.copy_to_gpu()
    assert space.is_in_gpu_mode()

    network = Network(random.Random(0))
    network.set_input_format((1, 2, 1))
    network.set_output_format((1, 1, 1))
    network.add_fully_connected_layer(2, ActivationKind.SIGMOID)
    network.add_last_fully_connected_layer(ActivationKind.IDENTITY)
    network.apply_noise(0.5)
    network.enable_gpu_mode()
    assert network.is_in_gpu_mode()

    costs = network.learn(space, 2, 5, 0.1, log_fn=None)
    assert len(costs) == 5
    assert network.test(space).data_count == 2


def test_network_returns_to_host():
    network = Network(random.Random(0))
    network.set_input_format((1, 2, 1))
    network.set_output_format((1, 1, 1))
    network.add_last_fully_connected_layer(ActivationKind.TANH)
    network.apply_noise(0.5)
    weights = network.layers[0].weights.to_numpy()

    network.enable_gpu_mode()
    network.disable_gpu_mode()

    assert not network.is_in_gpu_mode()
    layer = network.layers[0]
    for t in (layer.weights, layer.biases, layer.weight_deltas, layer.bias_deltas):
        assert not t.is_in_gpu_mode()
    np.testing.assert_array_equal(layer.weights.flat(), weights.ravel())


def test_observer_of_a_device_tensor_stays_on_the_device():
    packed = Tensor.make(np.arange(8.0), (4, 2, 1))
    packed.enable_gpu_mode()
    view = Tensor(2, 2, 1)
    view.observe_row(packed, 1)
    with pytest.raises(UnsupportedModeError):
        view.disable_gpu_mode()
    assert view.is_in_gpu_mode()
