"""
Tests for Loss Functions
========================
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from backprop.exceptions import LayerStateError
from backprop.losses import (BinaryCrossEntropyLoss, CategoricalCrossEntropyLoss,
                             CrossEntropyLoss, MSELoss, get_loss)
from backprop.tensor import Tensor


class TestLiteralValues:
    """Known loss values."""

    def test_categorical_cross_entropy(self):
        loss = CategoricalCrossEntropyLoss()
        predictions = np.array([[0.25, 0.25, 0.25, 0.25],
                                [0.01, 0.01, 0.01, 0.96]])
        targets = np.array([[0, 0, 0, 1],
                            [0, 0, 0, 1]], dtype=np.float64)
        assert loss.forward(predictions, targets) == pytest.approx(0.713558, abs=1e-5)

    def test_mse(self):
        loss = MSELoss()
        predictions = np.array([[0.2, 0.5], [0.3, 0.1], [0.3, 0.6]])
        targets = np.array([[0.1, 0.5], [0.2, 0.0], [0.3, 0.7]])
        assert loss.forward(predictions, targets) == pytest.approx(0.006667, abs=1e-5)

    def test_mse_gradient_scaling(self):
        loss = MSELoss()
        loss.forward(np.array([[1.0, 2.0]]), np.array([[0.0, 0.0]]))
        np.testing.assert_allclose(loss.backward().get_single_matrix(), [[1.0, 2.0]])

    def test_cross_entropy_uniform_logits(self):
        loss = CrossEntropyLoss()
        value = loss.forward(np.zeros((2, 4)), np.eye(4)[[1, 3]])
        assert value == pytest.approx(np.log(4))

    def test_binary_cross_entropy(self):
        loss = BinaryCrossEntropyLoss()
        value = loss.forward(np.array([[0.8], [0.3]]), np.array([[1.0], [0.0]]))
        assert value == pytest.approx(-(np.log(0.8) + np.log(0.7)) / 2)


class TestLossBehaviour:
    """Caching, clipping and error handling."""

    def test_backward_returns_tensor(self):
        loss = MSELoss()
        loss.forward(Tensor(np.ones((2, 3))), Tensor(np.zeros((2, 3))))
        grad = loss.backward()
        assert isinstance(grad, Tensor)
        assert grad.shape == (1, 2, 3)

    def test_backward_before_forward(self):
        for loss in (MSELoss(), CrossEntropyLoss(), CategoricalCrossEntropyLoss(),
                     BinaryCrossEntropyLoss()):
            with pytest.raises(LayerStateError):
                loss.backward()

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            MSELoss().forward(np.ones((2, 3)), np.ones((3, 2)))

    def test_clipping_keeps_loss_finite(self):
        loss = CategoricalCrossEntropyLoss()
        value = loss.forward(np.array([[0.0, 1.0]]), np.array([[1.0, 0.0]]))
        assert np.isfinite(value)
        assert value == pytest.approx(-np.log(1e-7))
        assert np.all(np.isfinite(loss.backward().numpy()))

    def test_fused_gradient(self):
        loss = CrossEntropyLoss()
        logits = np.array([[1.0, 2.0, 3.0]])
        targets = np.array([[0.0, 0.0, 1.0]])
        loss.forward(logits, targets)
        softmax = np.exp(logits) / np.exp(logits).sum()
        np.testing.assert_allclose(loss.backward().get_single_matrix(), softmax - targets)


class TestRegistry:
    """Tests for get_loss."""

    @pytest.mark.parametrize('name,cls', [
        ('mse', MSELoss),
        ('cross_entropy', CrossEntropyLoss),
        ('categorical_cross_entropy', CategoricalCrossEntropyLoss),
        ('binary-crossentropy', BinaryCrossEntropyLoss),
    ])
    def test_by_name(self, name, cls):
        assert isinstance(get_loss(name), cls)

    def test_kwargs(self):
        assert get_loss('cce', epsilon=1e-3).epsilon == 1e-3

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_loss('hinge')
