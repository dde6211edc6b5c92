"""
Activation Functions
====================

Non-linear activation functions used by the dense and recurrent layers.

Each activation implements:
- forward(x): apply the function and cache what backward needs
- backward(grad_output): chain rule through the cached forward pass
- derivative(x): stateless element-wise derivative at pre-activation x

Recurrent layers call the same activation once per time step, so they use
derivative() with their own cached pre-activations instead of backward().

Mathematical Background:
- Without non-linearities, stacking layers = single linear transformation
- Activations introduce non-linearity, enabling universal function approximation
"""

import numpy as np

from .exceptions import LayerStateError


class Activation:
    """Base class for all activation functions."""

    name = 'activation'

    def __init__(self):
        self._cache = None

    def forward(self, x):
        """Apply activation function."""
        raise NotImplementedError

    def backward(self, grad_output):
        """Gradient w.r.t. the input of the last forward call."""
        raise NotImplementedError

    def derivative(self, x):
        """Compute derivative of activation w.r.t. input."""
        raise NotImplementedError

    def _cached(self):
        if self._cache is None:
            raise LayerStateError(f"{self.__class__.__name__}.backward called before forward")
        return self._cache

    def get_config(self):
        return {}

    def __call__(self, x):
        return self.forward(x)

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class ReLU(Activation):
    """
    Rectified Linear Unit: f(x) = max(0, x)

    Properties:
    - Computationally efficient (just a threshold)
    - Non-saturating for positive values (no vanishing gradient)
    - Sparse activation (many zeros)

    Derivative:
        f'(x) = 1 if x > 0 else 0
    """

    name = 'relu'

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        self._cache = x > 0
        return np.maximum(0, x)

    def backward(self, grad_output):
        return grad_output * self._cached()

    def derivative(self, x):
        return (x > 0).astype(np.float64)


class LeakyReLU(Activation):
    """
    Leaky ReLU: f(x) = x if x > 0 else alpha * x

    Fixes dying ReLU by allowing small negative gradients.

    Args:
        alpha: Slope for negative values (default: 0.01)
    """

    name = 'leaky_relu'

    def __init__(self, alpha=0.01):
        super().__init__()
        self.alpha = alpha

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        self._cache = self.derivative(x)
        return np.where(x > 0, x, self.alpha * x)

    def backward(self, grad_output):
        return grad_output * self._cached()

    def derivative(self, x):
        return np.where(x > 0, 1.0, self.alpha)

    def get_config(self):
        return {'alpha': self.alpha}

    def __repr__(self):
        return f"LeakyReLU(alpha={self.alpha})"


class Sigmoid(Activation):
    """
    Sigmoid: f(x) = 1 / (1 + exp(-x))

    Squashes output to (0, 1). Used for binary classification outputs and
    for the GRU gates.

    Derivative:
        f'(x) = f(x) * (1 - f(x))
    """

    name = 'sigmoid'

    @staticmethod
    def _sigmoid(x):
        # Clip for numerical stability
        x_clipped = np.clip(x, -500, 500)
        return 1.0 / (1.0 + np.exp(-x_clipped))

    def forward(self, x):
        out = self._sigmoid(np.asarray(x, dtype=np.float64))
        self._cache = out
        return out

    def backward(self, grad_output):
        s = self._cached()
        return grad_output * s * (1 - s)

    def derivative(self, x):
        s = self._sigmoid(x)
        return s * (1 - s)


class Tanh(Activation):
    """
    Hyperbolic Tangent: f(x) = tanh(x)

    Output range: (-1, 1), zero-centered.

    Derivative:
        f'(x) = 1 - tanh(x)^2
    """

    name = 'tanh'

    def forward(self, x):
        out = np.tanh(np.asarray(x, dtype=np.float64))
        self._cache = out
        return out

    def backward(self, grad_output):
        t = self._cached()
        return grad_output * (1 - t ** 2)

    def derivative(self, x):
        t = np.tanh(x)
        return 1 - t ** 2


class Softmax(Activation):
    """
    Softmax: f(x_i) = exp(x_i) / sum(exp(x_j)), applied to each row.

    Numerical Stability:
        We subtract max(x) before exp to prevent overflow.

    Backward applies the per-row Jacobian J = diag(s) - s s^T to grad_output
    without building it:
        dL/dx = s * (dL/ds - sum(dL/ds * s))

    Pair with CategoricalCrossEntropyLoss (probability input). Do not put it
    in front of CrossEntropyLoss, which applies softmax itself.
    """

    name = 'softmax'

    @staticmethod
    def _softmax(x):
        if x.ndim == 1:
            x_shifted = x - np.max(x)
            exp_x = np.exp(x_shifted)
            return exp_x / np.sum(exp_x)

        x_shifted = x - np.max(x, axis=-1, keepdims=True)
        exp_x = np.exp(x_shifted)
        return exp_x / np.sum(exp_x, axis=-1, keepdims=True)

    def forward(self, x):
        out = self._softmax(np.asarray(x, dtype=np.float64))
        self._cache = out
        return out

    def backward(self, grad_output):
        s = self._cached()
        dot = np.sum(grad_output * s, axis=-1, keepdims=True)
        return s * (grad_output - dot)

    def derivative(self, x):
        """
        Full Jacobian of softmax.
        For single sample: J[i,j] = s[i] * (delta[i,j] - s[j])
        """
        s = self._softmax(np.asarray(x, dtype=np.float64))
        if s.ndim == 1:
            return np.diag(s) - np.outer(s, s)

        batch_size, n_classes = s.shape
        jacobians = np.zeros((batch_size, n_classes, n_classes))
        for i in range(batch_size):
            jacobians[i] = np.diag(s[i]) - np.outer(s[i], s[i])
        return jacobians


class Linear(Activation):
    """Identity activation: f(x) = x"""

    name = 'linear'

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        self._cache = x.shape
        return x

    def backward(self, grad_output):
        self._cached()
        return grad_output

    def derivative(self, x):
        return np.ones_like(x, dtype=np.float64)


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    'relu': ReLU,
    'leaky_relu': LeakyReLU,
    'leakyrelu': LeakyReLU,
    'sigmoid': Sigmoid,
    'tanh': Tanh,
    'softmax': Softmax,
    'linear': Linear,
    'none': Linear,
}


def get_activation(name, **kwargs):
    """
    Get activation function by name.

    Args:
        name: String name ('relu', 'sigmoid', etc.), Activation instance or None
        **kwargs: Constructor arguments (e.g. alpha for leaky_relu)

    Returns:
        Activation instance (a fresh one for string names)

    Example:
        >>> act = get_activation('relu')
        >>> act(np.array([[-1.0, 0.0, 1.0]]))
        array([[0., 0., 1.]])
    """
    if isinstance(name, Activation):
        return name

    if name is None:
        return Linear()

    name_lower = name.lower().replace('-', '_')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower](**kwargs)
