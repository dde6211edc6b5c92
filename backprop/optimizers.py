"""
Optimizers
==========

Optimizers update network weights based on computed gradients.
The choice of optimizer significantly affects training speed and convergence.

This module implements:
- SGD: Plain gradient descent, with optional classical momentum
- Adam: Adaptive learning rates, works well out of the box

optimize(layer) visits every (parameter, gradient) pair a layer exposes
(weights and biases alike) and updates the parameter arrays in place, so a
layer never sees its parameters replaced or resized.
"""

import numpy as np


def _is_bias(name):
    return name == 'bias' or name == 'beta' or name.startswith('b_')


class Optimizer:
    """Base class for optimizers."""

    name = 'optimizer'

    def __init__(self, learning_rate, weight_decay=0.0, clip_grad=None):
        self.learning_rate = learning_rate
        self.weight_decay = weight_decay
        self.clip_grad = clip_grad

    def optimize(self, layer):
        """Update the parameters of one layer."""
        raise NotImplementedError

    def step(self, layers):
        """Update weights for all layers that have any."""
        for layer in layers:
            if layer.has_weights():
                self.optimize(layer)

    def _prepare_grad(self, name, param, grad):
        """Apply gradient clipping and L2 weight decay to a copy of grad."""
        grad = grad.copy()

        # Gradient clipping
        if self.clip_grad is not None:
            grad_norm = np.linalg.norm(grad)
            if grad_norm > self.clip_grad:
                grad = grad * (self.clip_grad / (grad_norm + 1e-8))

        # Weight decay (L2 regularization), biases excluded
        if self.weight_decay > 0 and not _is_bias(name):
            grad = grad + self.weight_decay * param

        return grad

    def get_lr(self):
        """Get current learning rate."""
        return self.learning_rate

    def reset(self):
        """Reset optimizer state."""

    def get_config(self):
        return {
            'learning_rate': self.learning_rate,
            'weight_decay': self.weight_decay,
            'clip_grad': self.clip_grad,
        }


class SGD(Optimizer):
    """
    Stochastic Gradient Descent.

    Update: param -= lr * grad

    With momentum > 0 a velocity is kept per layer and parameter:
        v = momentum * v + grad
        param -= lr * v

    Args:
        learning_rate: Step size (default: 0.01)
        momentum: Momentum factor (default: 0, plain SGD)
        weight_decay: L2 regularization (default: 0)
        clip_grad: Max gradient norm (default: None)
    """

    name = 'sgd'

    def __init__(self, learning_rate=0.01, momentum=0.0, weight_decay=0.0, clip_grad=None):
        super().__init__(learning_rate, weight_decay, clip_grad)
        self.momentum = momentum

        # Velocity per layer identity
        self._velocity = {}

    def optimize(self, layer):
        """
        Update one layer's parameters with SGD.

        Args:
            layer: Layer with computed gradients
        """
        for name, param in layer.params.items():
            grad = self._prepare_grad(name, param, layer.grads[name])

            if self.momentum > 0:
                velocity = self._velocity.setdefault(layer, {})
                v = velocity.get(name)
                if v is None:
                    v = np.zeros_like(param)
                    velocity[name] = v
                v *= self.momentum
                v += grad
                grad = v

            param -= self.learning_rate * grad

    def reset(self):
        self._velocity = {}

    def get_config(self):
        config = super().get_config()
        config['momentum'] = self.momentum
        return config

    def __repr__(self):
        return f"SGD(learning_rate={self.learning_rate}, momentum={self.momentum})"


class Adam(Optimizer):
    """
    Adam (Adaptive Moment Estimation) optimizer.

    Combines the benefits of:
    - Momentum: Uses running average of gradients
    - RMSprop: Uses running average of squared gradients

    The moment buffers are allocated lazily (zero-filled) the first time a
    layer is optimized. The time step t is global: it increments once per
    optimize() call whichever layer is passed, and every layer's bias
    correction uses it.

    Update for each parameter:
        m = beta1 * m + (1 - beta1) * grad
        v = beta2 * v + (1 - beta2) * grad^2
        m_hat = m / (1 - beta1^t)
        v_hat = v / (1 - beta2^t)
        param -= lr * m_hat / (sqrt(v_hat) + epsilon)

    Args:
        learning_rate: Step size (default: 0.001)
        beta1: Decay rate for first moment (default: 0.9)
        beta2: Decay rate for second moment (default: 0.999)
        epsilon: Small constant for numerical stability (default: 1e-8)
        weight_decay: L2 regularization strength (default: 0)
        clip_grad: Max gradient norm for clipping (default: None)
    """

    name = 'adam'

    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999,
                 epsilon=1e-8, weight_decay=0.0, clip_grad=None):
        super().__init__(learning_rate, weight_decay, clip_grad)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon

        self.t = 0  # Time step for bias correction

        # Per-layer first and second moment caches
        self._moments = {}

    def _layer_moments(self, layer):
        """Moment buffers of a layer, allocated on first encounter."""
        if layer not in self._moments:
            self._moments[layer] = {
                name: (np.zeros_like(param), np.zeros_like(param))
                for name, param in layer.params.items()
            }
        return self._moments[layer]

    def bias_corrections(self):
        """Current bias-correction denominators (1 - beta1^t, 1 - beta2^t)."""
        return 1 - self.beta1 ** self.t, 1 - self.beta2 ** self.t

    def optimize(self, layer):
        """
        Update one layer's parameters using the Adam algorithm.

        Args:
            layer: Layer with computed gradients
        """
        moments = self._layer_moments(layer)

        self.t += 1
        correction1, correction2 = self.bias_corrections()

        for name, param in layer.params.items():
            grad = self._prepare_grad(name, param, layer.grads[name])
            m, v = moments[name]

            # Update biased first moment estimate
            m *= self.beta1
            m += (1 - self.beta1) * grad

            # Update biased second raw moment estimate
            v *= self.beta2
            v += (1 - self.beta2) * grad ** 2

            # Bias-corrected estimates
            m_hat = m / correction1
            v_hat = v / correction2

            param -= self.learning_rate * m_hat / (np.sqrt(v_hat) + self.epsilon)

    def reset(self):
        """Reset optimizer state."""
        self.t = 0
        self._moments = {}

    def get_config(self):
        config = super().get_config()
        config.update({'beta1': self.beta1, 'beta2': self.beta2, 'epsilon': self.epsilon})
        return config

    def __repr__(self):
        return f"Adam(learning_rate={self.learning_rate}, beta1={self.beta1}, beta2={self.beta2})"


# ============================================================================
# Optimizer Registry
# ============================================================================

OPTIMIZERS = {
    'sgd': SGD,
    'adam': Adam,
}


def get_optimizer(name, **kwargs):
    """
    Get optimizer by name.

    Args:
        name: 'adam' or 'sgd', or an Optimizer instance
        **kwargs: Optimizer-specific arguments

    Returns:
        Optimizer instance
    """
    if isinstance(name, Optimizer):
        return name

    name_lower = name.lower()
    if name_lower not in OPTIMIZERS:
        available = ', '.join(OPTIMIZERS.keys())
        raise ValueError(f"Unknown optimizer '{name}'. Available: {available}")

    return OPTIMIZERS[name_lower](**kwargs)
