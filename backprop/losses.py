"""
Loss Functions
==============

Loss functions measure how wrong the model's predictions are.
The goal of training is to minimize the loss.

Each loss implements:
- forward(predictions, targets): Compute loss value, caching both inputs
- backward(): Gradient of the cached loss w.r.t. the predictions

Predictions and targets are single matrices with one sample per row.

Every gradient is the exact derivative of the value forward() reports, so
the two can be checked against each other with finite differences.
"""

import numpy as np

from .exceptions import LayerStateError
from .tensor import Tensor, as_matrix


class Loss:
    """Base class for loss functions."""

    name = 'loss'

    def __init__(self):
        self._cache = None

    def forward(self, predictions, targets):
        """Compute loss value."""
        raise NotImplementedError

    def backward(self):
        """Compute gradient of loss w.r.t. the cached predictions."""
        raise NotImplementedError

    def _store(self, predictions, targets):
        predictions = as_matrix(predictions).copy()
        targets = as_matrix(targets).copy()
        if predictions.shape != targets.shape:
            raise ValueError(f"{self.__class__.__name__}: predictions {predictions.shape} and "
                             f"targets {targets.shape} differ in shape")
        self._cache = (predictions, targets)
        return predictions, targets

    def _cached(self):
        if self._cache is None:
            raise LayerStateError(f"{self.__class__.__name__}.backward called before forward")
        return self._cache

    def get_config(self):
        return {}

    def __call__(self, predictions, targets):
        return self.forward(predictions, targets)

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class MSELoss(Loss):
    """
    Mean Squared Error Loss for regression.

    Formula: L = sum((y_pred - y_true)^2) / (rows * cols)

    Gradient: dL/dy_pred = 2 * (y_pred - y_true) / (rows * cols)
    """

    name = 'mse'

    def forward(self, predictions, targets):
        """Compute mean squared error."""
        predictions, targets = self._store(predictions, targets)
        return float(np.mean((predictions - targets) ** 2))

    def backward(self):
        """Compute gradient of MSE."""
        predictions, targets = self._cached()
        return Tensor(2 * (predictions - targets) / predictions.size)


class _ClippedLoss(Loss):
    """Losses that clip probabilities into [epsilon, 1 - epsilon] before log."""

    def __init__(self, epsilon=1e-7):
        super().__init__()
        self.epsilon = epsilon

    def _clip(self, p):
        return np.clip(p, self.epsilon, 1 - self.epsilon)

    def get_config(self):
        return {'epsilon': self.epsilon}

    def __repr__(self):
        return f"{self.__class__.__name__}(epsilon={self.epsilon})"


class CategoricalCrossEntropyLoss(_ClippedLoss):
    """
    Categorical Cross-Entropy on probabilities.

    Formula: L = -sum(y_true * log(p)) / rows

    Predictions must already be probabilities (e.g. the output of a Softmax
    activation). The gradient is the raw one, -y_true / p / rows; the
    Softmax backward turns it into the gradient w.r.t. the logits.

    Args:
        epsilon: Clip bound to prevent log(0)
    """

    name = 'categorical_cross_entropy'

    def forward(self, predictions, targets):
        predictions, targets = self._store(predictions, targets)
        p = self._clip(predictions)
        return float(-np.sum(targets * np.log(p)) / predictions.shape[0])

    def backward(self):
        predictions, targets = self._cached()
        p = self._clip(predictions)
        return Tensor(-targets / p / predictions.shape[0])


class CrossEntropyLoss(_ClippedLoss):
    """
    Cross-Entropy Loss on logits (softmax fused in).

    Formula: L = -sum(y_true * log(softmax(z))) / rows

    Because softmax is applied here, the gradient w.r.t. the logits
    simplifies to:
        dL/dz = (softmax(z) - y_true) / rows

    Do not put a Softmax activation in front of this loss.

    Args:
        epsilon: Clip bound to prevent log(0)
    """

    name = 'cross_entropy'

    @staticmethod
    def _softmax(z):
        shifted = z - np.max(z, axis=1, keepdims=True)
        exp_z = np.exp(shifted)
        return exp_z / np.sum(exp_z, axis=1, keepdims=True)

    def forward(self, predictions, targets):
        logits, targets = self._store(predictions, targets)
        p = self._clip(self._softmax(logits))
        return float(-np.sum(targets * np.log(p)) / logits.shape[0])

    def backward(self):
        logits, targets = self._cached()
        return Tensor((self._softmax(logits) - targets) / logits.shape[0])


class BinaryCrossEntropyLoss(_ClippedLoss):
    """
    Binary Cross-Entropy for binary (or multi-label) classification.

    Formula: L = -sum(y * log(p) + (1 - y) * log(1 - p)) / rows

    Use when every output is an independent probability from a sigmoid.
    """

    name = 'binary_cross_entropy'

    def forward(self, predictions, targets):
        predictions, targets = self._store(predictions, targets)
        p = self._clip(predictions)
        loss = -(targets * np.log(p) + (1 - targets) * np.log(1 - p))
        return float(np.sum(loss) / predictions.shape[0])

    def backward(self):
        predictions, targets = self._cached()
        p = self._clip(predictions)
        return Tensor((p - targets) / (p * (1 - p)) / predictions.shape[0])


# ============================================================================
# Loss Registry
# ============================================================================

LOSSES = {
    'mse': MSELoss,
    'mean_squared_error': MSELoss,
    'cross_entropy': CrossEntropyLoss,
    'crossentropy': CrossEntropyLoss,
    'ce': CrossEntropyLoss,
    'categorical_cross_entropy': CategoricalCrossEntropyLoss,
    'categorical_crossentropy': CategoricalCrossEntropyLoss,
    'cce': CategoricalCrossEntropyLoss,
    'binary_cross_entropy': BinaryCrossEntropyLoss,
    'binary_crossentropy': BinaryCrossEntropyLoss,
    'bce': BinaryCrossEntropyLoss,
}


def get_loss(name, **kwargs):
    """
    Get loss function by name.

    Args:
        name: String name or Loss instance
        **kwargs: Constructor arguments (e.g. epsilon)

    Returns:
        Loss instance
    """
    if isinstance(name, Loss):
        return name

    name_lower = name.lower().replace('-', '_').replace(' ', '_')
    if name_lower not in LOSSES:
        available = ', '.join(sorted(set(LOSSES.keys())))
        raise ValueError(f"Unknown loss '{name}'. Available: {available}")

    return LOSSES[name_lower](**kwargs)
