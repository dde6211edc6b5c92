"""
Tests for Layers
================

Unit tests for dense, convolutional, pooling, flatten, normalization and
regularization layers.
"""

import numpy as np
import pytest
import sys
import os

# Add package root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from backprop.exceptions import LayerStateError
from backprop.layers import (Activation, AveragePooling2D, BatchNorm, Conv2D, DenseLayer,
                             Dropout, FlattenLayer, MaxPooling2D)
from backprop.tensor import Tensor


class TestDenseLayer:
    """Tests for DenseLayer."""

    def test_forward_shape(self):
        dense = DenseLayer(10, 5)
        output = dense.forward(Tensor(np.random.randn(4, 10)))
        assert output.shape == (1, 4, 5)

    def test_forward_values(self):
        dense = DenseLayer(2, 2)
        dense.params['weight'][...] = [[1.0, 2.0], [3.0, 4.0]]
        dense.params['bias'][...] = [0.5, -0.5]
        out = dense.forward(np.array([[1.0, 1.0]])).get_single_matrix()
        np.testing.assert_allclose(out, [[3.5, 6.5]])

    def test_activation_applied(self):
        dense = DenseLayer(3, 4, activation='relu')
        out = dense.forward(np.random.randn(6, 3)).numpy()
        assert np.all(out >= 0)

    def test_backward_shapes(self):
        dense = DenseLayer(10, 5)
        x = np.random.randn(4, 10)
        dense.forward(x)
        grad_input = dense.backward(np.random.randn(4, 5))

        assert grad_input.shape == (1, 4, 10)
        assert dense.grads['weight'].shape == dense.params['weight'].shape
        assert dense.grads['bias'].shape == dense.params['bias'].shape

    def test_without_bias(self):
        dense = DenseLayer(3, 2, use_bias=False)
        assert 'bias' not in dense.params
        dense.forward(np.ones((1, 3)))
        dense.backward(np.ones((1, 2)))
        assert set(dense.grads) == {'weight'}

    def test_wrong_input_size(self):
        with pytest.raises(ValueError):
            DenseLayer(3, 2).forward(np.ones((2, 4)))

    def test_empty_input(self):
        with pytest.raises(ValueError):
            DenseLayer(3, 2).forward(np.zeros((0, 3)))

    def test_backward_before_forward(self):
        with pytest.raises(LayerStateError):
            DenseLayer(3, 2).backward(np.ones((1, 2)))

    def test_gradients_overwritten_not_accumulated(self):
        dense = DenseLayer(3, 2)
        x = np.random.randn(2, 3)
        g = np.random.randn(2, 2)
        dense.forward(x)
        dense.backward(g)
        first = dense.grads['weight'].copy()
        dense.forward(x)
        dense.backward(g)
        np.testing.assert_allclose(dense.grads['weight'], first)

    def test_num_params(self):
        assert DenseLayer(10, 5).num_params() == 55


class TestConv2D:
    """Tests for Conv2D layer."""

    def test_forward_shape(self):
        """Test output shape is correct."""
        conv = Conv2D(in_channels=1, out_channels=8, kernel_size=3, padding='same')
        output = conv.forward(np.random.randn(1, 28, 28))

        assert output.shape == (8, 28, 28), f"Expected (8, 28, 28), got {output.shape}"

    def test_forward_valid_padding(self):
        conv = Conv2D(in_channels=1, out_channels=8, kernel_size=3, padding='valid')
        output = conv.forward(np.random.randn(1, 28, 28))

        # With valid padding and 3x3 kernel: 28 - 3 + 1 = 26
        assert output.shape == (8, 26, 26)

    @pytest.mark.parametrize('in_c,out_c,k,stride,padding,h,w', [
        (1, 2, 3, 1, 0, 5, 5),
        (2, 3, 3, 2, 1, 7, 6),
        (3, 1, 2, 3, 2, 9, 10),
        (2, 4, 5, 1, 2, 5, 5),
    ])
    def test_shape_formula(self, in_c, out_c, k, stride, padding, h, w):
        conv = Conv2D(in_c, out_c, k, stride=stride, padding=padding)
        x = np.random.randn(in_c, h, w)
        output = conv.forward(x)

        expected = (out_c, (h + 2 * padding - k) // stride + 1, (w + 2 * padding - k) // stride + 1)
        assert output.shape == expected

        grad_input = conv.backward(np.random.randn(*expected))
        assert grad_input.shape == x.shape
        assert conv.grads['weight'].shape == conv.params['weight'].shape
        assert conv.grads['bias'].shape == conv.params['bias'].shape

    def test_known_values(self):
        """A 2x2 kernel of ones sums each window."""
        conv = Conv2D(1, 1, kernel_size=2)
        conv.params['weight'][...] = 1.0
        x = np.arange(9.0).reshape(1, 3, 3)
        out = conv.forward(x).numpy()
        np.testing.assert_allclose(out[0], [[8, 12], [20, 24]])

    def test_output_shape_resolved_per_input(self):
        conv = Conv2D(1, 2, kernel_size=3)
        assert conv.output_shape is None
        conv.forward(np.random.randn(1, 5, 5))
        assert conv.output_shape == (2, 3, 3)
        conv.forward(np.random.randn(1, 7, 6))
        assert conv.output_shape == (2, 5, 4)

    def test_wrong_channels(self):
        with pytest.raises(ValueError):
            Conv2D(3, 2, 3).forward(np.random.randn(1, 5, 5))

    def test_kernel_larger_than_input(self):
        with pytest.raises(ValueError):
            Conv2D(1, 2, 5).forward(np.random.randn(1, 3, 3))

    def test_unknown_padding(self):
        with pytest.raises(ValueError):
            Conv2D(1, 2, 3, padding='full')


class TestMaxPooling2D:
    """Tests for MaxPooling2D layer."""

    def test_forward_shape(self):
        pool = MaxPooling2D(pool_size=2)
        output = pool.forward(np.random.randn(8, 28, 28))

        assert output.shape == (8, 14, 14)

    def test_max_values(self):
        """Test that max values are correctly extracted."""
        pool = MaxPooling2D(pool_size=2)
        x = np.array([[[1, 2, 5, 6],
                       [3, 4, 7, 8],
                       [9, 10, 13, 14],
                       [11, 12, 15, 16]]], dtype=np.float64)
        output = pool.forward(x).numpy()

        np.testing.assert_array_equal(output[0], [[4, 8], [12, 16]])

    def test_backward_gradient_routing(self):
        """Gradient reaches the argmax of each window and nothing else."""
        np.random.seed(3)
        pool = MaxPooling2D(pool_size=2)
        x = np.random.randn(2, 4, 6)
        pool.forward(x)
        grad_output = np.random.randn(2, 2, 3) + 5.0
        grad_input = pool.backward(grad_output).numpy()

        for c in range(2):
            for i in range(2):
                for j in range(3):
                    window = x[c, 2 * i:2 * i + 2, 2 * j:2 * j + 2]
                    grad_window = grad_input[c, 2 * i:2 * i + 2, 2 * j:2 * j + 2]
                    r, k = np.unravel_index(np.argmax(window), window.shape)
                    assert grad_window[r, k] == grad_output[c, i, j]
                    assert np.count_nonzero(grad_window) == 1

    def test_overlapping_windows_accumulate(self):
        """With stride < pool size a shared max collects every window's gradient."""
        pool = MaxPooling2D(pool_size=2, stride=1)
        x = np.zeros((1, 3, 3))
        x[0, 1, 1] = 10.0
        pool.forward(x)
        grad_input = pool.backward(np.ones((1, 2, 2))).numpy()

        assert grad_input.shape == (1, 3, 3)
        assert grad_input[0, 1, 1] == 4.0
        assert grad_input.sum() == 4.0

    def test_input_not_divisible(self):
        pool = MaxPooling2D(pool_size=2)
        x = np.random.randn(1, 5, 5)
        out = pool.forward(x)
        assert out.shape == (1, 2, 2)
        assert pool.backward(np.ones((1, 2, 2))).shape == (1, 5, 5)

    def test_wrong_gradient_shape(self):
        pool = MaxPooling2D(pool_size=2)
        pool.forward(np.random.randn(1, 4, 4))
        with pytest.raises(ValueError):
            pool.backward(np.ones((1, 3, 3)))


class TestAveragePooling2D:
    """Tests for AveragePooling2D layer."""

    def test_forward_shape(self):
        pool = AveragePooling2D(pool_size=2)
        output = pool.forward(np.random.randn(8, 28, 28))

        assert output.shape == (8, 14, 14)

    def test_average_values(self):
        pool = AveragePooling2D(pool_size=2)
        x = np.array([[[1, 2, 5, 6],
                       [3, 4, 7, 8],
                       [9, 10, 13, 14],
                       [11, 12, 15, 16]]], dtype=np.float64)
        output = pool.forward(x).numpy()

        np.testing.assert_allclose(output[0], [[2.5, 6.5], [10.5, 14.5]])

    def test_backward_spreads_evenly(self):
        pool = AveragePooling2D(pool_size=2)
        pool.forward(np.random.randn(1, 4, 4))
        grad_input = pool.backward(np.ones((1, 2, 2))).numpy()
        np.testing.assert_allclose(grad_input, 0.25)


class TestFlattenLayer:
    """Tests for FlattenLayer."""

    def test_rowwise_layout(self):
        flatten = FlattenLayer()
        x = np.arange(2 * 3 * 4, dtype=np.float64).reshape(2, 3, 4)
        out = flatten.forward(x).get_single_matrix()

        assert out.shape == (3, 8)
        # Row r is channel 0's row r followed by channel 1's row r
        np.testing.assert_array_equal(out[1], np.concatenate([x[0, 1], x[1, 1]]))

    def test_rowwise_backward_inverts_forward(self):
        flatten = FlattenLayer()
        x = np.random.randn(3, 2, 5)
        out = flatten.forward(x)
        np.testing.assert_array_equal(flatten.backward(out).numpy(), x)

    def test_whole_sample(self):
        flatten = FlattenLayer(rowwise=False)
        x = np.random.randn(4, 3, 3)
        out = flatten.forward(x)
        assert out.shape == (1, 1, 36)
        np.testing.assert_array_equal(out.numpy().ravel(), x.ravel())
        np.testing.assert_array_equal(flatten.backward(out).numpy(), x)

    def test_fixed_input_shape(self):
        flatten = FlattenLayer(input_shape=(2, 3, 3))
        flatten.forward(np.random.randn(2, 3, 3))
        with pytest.raises(ValueError, match='rows'):
            flatten.forward(np.random.randn(2, 4, 3))

    def test_wrong_gradient_shape(self):
        flatten = FlattenLayer()
        flatten.forward(np.random.randn(2, 3, 3))
        with pytest.raises(ValueError):
            flatten.backward(np.ones((3, 5)))


class TestDropout:
    """Tests for Dropout layer."""

    def test_training_mode(self):
        """Test that dropout zeros some values during training."""
        np.random.seed(0)
        dropout = Dropout(rate=0.5)
        x = np.ones((100, 100))
        output = dropout.forward(x).numpy()

        # Some values should be zero
        assert np.sum(output == 0) > 0
        # Non-zero values should be scaled by 1/(1-rate) = 2
        assert np.allclose(output[output != 0], 2.0)

    def test_eval_mode(self):
        dropout = Dropout(rate=0.5)
        dropout.set_training(False)
        x = np.random.randn(10, 10)
        output = dropout.forward(x).numpy()

        np.testing.assert_array_equal(output, x[np.newaxis])
        grad = dropout.backward(np.ones((10, 10))).get_single_matrix()
        np.testing.assert_array_equal(grad, np.ones((10, 10)))

    def test_backward_uses_forward_mask(self):
        np.random.seed(1)
        dropout = Dropout(rate=0.3)
        output = dropout.forward(np.ones((20, 20))).numpy()
        grad = dropout.backward(np.ones((20, 20))).numpy()
        # Dropped positions get no gradient, kept ones pass it unscaled
        np.testing.assert_array_equal(grad, (output != 0).astype(float))
        assert set(np.unique(grad)) == {0.0, 1.0}

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            Dropout(rate=1.0)
        with pytest.raises(ValueError):
            Dropout(rate=-0.1)


class TestBatchNorm:
    """Tests for BatchNorm."""

    def test_normalization(self):
        bn = BatchNorm(num_features=4)
        x = np.random.randn(32, 4) * 3 + 7
        output = bn.forward(x).get_single_matrix()

        np.testing.assert_allclose(output.mean(axis=0), 0, atol=1e-7)
        np.testing.assert_allclose(output.std(axis=0), 1, atol=1e-3)

    def test_running_statistics(self):
        bn = BatchNorm(num_features=2)
        x = np.array([[1.0, 10.0], [3.0, 20.0]])
        bn.forward(x)

        np.testing.assert_allclose(bn.running_mean, 0.1 * x.mean(axis=0))
        np.testing.assert_allclose(bn.running_var, 0.9 * 1.0 + 0.1 * x.var(axis=0))

    def test_eval_mode_uses_running_stats(self):
        bn = BatchNorm(num_features=3)
        for _ in range(10):
            bn.forward(np.random.randn(16, 3) + 2)

        bn.set_training(False)
        mean_before = bn.running_mean.copy()
        x = np.random.randn(4, 3)
        out = bn.forward(x).get_single_matrix()

        expected = (x - bn.running_mean) / np.sqrt(bn.running_var + bn.epsilon)
        np.testing.assert_allclose(out, expected)
        np.testing.assert_array_equal(bn.running_mean, mean_before)

    def test_backward_after_eval_forward(self):
        bn = BatchNorm(num_features=3)
        bn.set_training(False)
        bn.forward(np.random.randn(4, 3))
        with pytest.raises(LayerStateError):
            bn.backward(np.ones((4, 3)))

    def test_backward_before_forward(self):
        with pytest.raises(LayerStateError):
            BatchNorm(num_features=3).backward(np.ones((4, 3)))

    def test_wrong_features(self):
        with pytest.raises(ValueError):
            BatchNorm(num_features=3).forward(np.ones((4, 2)))


class TestActivationLayer:
    """Tests for the Activation wrapper layer."""

    def test_relu(self):
        layer = Activation('relu')
        x = np.array([[-1.0, 2.0], [3.0, -4.0]])
        output = layer.forward(x).numpy()[0]
        np.testing.assert_array_equal(output, [[0, 2], [3, 0]])

    def test_multichannel(self):
        layer = Activation('tanh')
        x = np.random.randn(3, 4, 4)
        np.testing.assert_allclose(layer.forward(x).numpy(), np.tanh(x))
        assert layer.backward(np.ones((3, 4, 4))).shape == (3, 4, 4)

    def test_softmax(self):
        layer = Activation('softmax')
        output = layer.forward(np.random.randn(4, 10)).get_single_matrix()
        np.testing.assert_allclose(output.sum(axis=1), np.ones(4))

    def test_no_weights(self):
        layer = Activation('relu')
        assert not layer.has_weights()
        assert layer.num_params() == 0
