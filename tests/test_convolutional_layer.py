import random

import numpy as np
import pytest

from minicnn import (
    ActivationKind,
    ConvolutionalLayer,
    Format,
    Tensor,
    UnsupportedModeError,
)


def test_output_format():
    layer = ConvolutionalLayer(4, 2, 1, ActivationKind.RELU)
    layer.set_input_format(Format(3, 3, 1))
    assert layer.output_format == Format(2, 2, 4)
    assert all(k.weights.format == Format(2, 2, 1) for k in layer.kernels)
    assert layer.biases.format == Format(1, 1, 4)


def test_kernels_span_the_input_depth():
    layer = ConvolutionalLayer(2, 3, 1, ActivationKind.RELU)
    layer.set_input_format(Format(5, 5, 3))
    assert layer.output_format == Format(3, 3, 2)
    assert layer.weights[0].format == Format(3, 3, 3)


def test_non_whole_geometry():
    layer = ConvolutionalLayer(1, 3, 2, ActivationKind.RELU)
    with pytest.raises(ValueError):
        layer.set_input_format(Format(4, 4, 1))


@pytest.mark.parametrize(
    "kernel_count, kernel_size, stride",
    [(0, 2, 1), (1, 0, 1), (1, 2, 0), (1, 2, 3)],
)
def test_invalid_construction(kernel_count, kernel_size, stride):
    with pytest.raises(ValueError):
        ConvolutionalLayer(kernel_count, kernel_size, stride, ActivationKind.RELU)


def test_forward(counting_input):
    layer = ConvolutionalLayer(2, 2, 1, ActivationKind.IDENTITY)
    layer.set_input_format(counting_input.format)
    layer.set_all_parameter(1.0)
    layer.forward_propagation(counting_input)
    out = layer.activations.to_numpy()
    np.testing.assert_allclose(out[0], [[13, 17], [25, 29]])
    np.testing.assert_allclose(out[1], [[13, 17], [25, 29]])
    assert layer.kernels[1].bias == 1.0


def test_backward(counting_input):
    layer = ConvolutionalLayer(1, 2, 1, ActivationKind.IDENTITY)
    layer.set_input_format(counting_input.format)
    layer.set_all_parameter(1.0)
    layer.forward_propagation(counting_input)
    layer.error.set_all(1.0)
    upstream = Tensor(3, 3, 1)

    layer.back_propagation(counting_input, upstream)

    np.testing.assert_allclose(layer.weight_deltas[0].to_numpy()[0], [[12, 16], [24, 28]])
    assert layer.bias_deltas.get_at_flat(0) == pytest.approx(4.0)
    # every input cell gathers one unit per window it belongs to
    np.testing.assert_allclose(upstream.to_numpy()[0], [[1, 2, 1], [2, 4, 2], [1, 2, 1]])
    assert np.count_nonzero(layer.error.flat()) == 0


def test_apply_deltas(counting_input):
    layer = ConvolutionalLayer(1, 2, 1, ActivationKind.IDENTITY)
    layer.set_input_format(counting_input.format)
    layer.set_all_parameter(1.0)
    layer.forward_propagation(counting_input)
    layer.error.set_all(1.0)
    layer.back_propagation(counting_input, None)
    layer.apply_deltas(2, 0.1)
    np.testing.assert_allclose(
        layer.weights[0].to_numpy()[0], [[1 - 0.6, 1 - 0.8], [1 - 1.2, 1 - 1.4]]
    )
    assert layer.biases.get_at_flat(0) == pytest.approx(0.8)


def test_mutate_changes_one_parameter():
    layer = ConvolutionalLayer(3, 2, 1, ActivationKind.RELU, random.Random(5))
    layer.set_input_format(Format(4, 4, 2))

    def params():
        return np.concatenate([w.flat() for w in layer.weights] + [layer.biases.flat()])

    for _ in range(10):
        before = params()
        layer.mutate(0.5)
        diff = params() - before
        assert np.count_nonzero(diff) == 1
        assert np.max(np.abs(diff)) <= 0.5


def test_no_gpu_mode():
    layer = ConvolutionalLayer(1, 2, 1, ActivationKind.RELU)
    with pytest.raises(UnsupportedModeError):
        layer.enable_gpu_mode()
    assert not layer.is_in_gpu_mode()


def test_forward_over_two_planes_with_stride():
    input = Tensor.make(np.concatenate([np.arange(16.0), np.full(16, 2.0)]), (4, 4, 2))
    layer = ConvolutionalLayer(1, 2, 2, ActivationKind.RELU)
    layer.set_input_format(input.format)
    layer.set_all_parameter(1.0)
    layer.biases.set_all(-20.0)
    layer.forward_propagation(input)
    # window sums of plane 0 are 10, 18, 42 and 50; plane 1 adds 8 to each
    np.testing.assert_allclose(layer.activations.to_numpy()[0], [[0, 6], [30, 38]])
