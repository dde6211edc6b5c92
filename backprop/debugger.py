"""
Debugging Helpers
=================

Tools for watching a network while it trains:

- Debugger: tracks layers and reports how far their weights moved since the
  last snapshot and how large their gradients are
- Timer: context manager that logs the elapsed wall time of a block
"""

import time

import numpy as np

from .console import get_logger

logger = get_logger(__name__)


class Debugger:
    """
    Track weight updates and gradient magnitudes of selected layers.

    Example:
        >>> debugger = Debugger()
        >>> debugger.track_layer(model.get_layer(0))
        >>> debugger.save_previous_weights()
        >>> model.train(...)
        >>> debugger.print_weight_changes()
    """

    def __init__(self):
        self.layers = []
        self._previous = {}

    def _label(self, index, layer):
        return f"{index}:{layer.__class__.__name__}"

    def track_layer(self, layer):
        """Start tracking a layer (weightless layers are accepted and report nothing)."""
        if any(tracked is layer for tracked in self.layers):
            return
        self.layers.append(layer)

    def save_previous_weights(self):
        """Snapshot the current parameters of every tracked layer."""
        self._previous = {
            self._label(i, layer): {name: param.copy() for name, param in layer.params.items()}
            for i, layer in enumerate(self.layers)
        }

    def weight_change_norms(self):
        """
        Frobenius norm of (current - snapshot) per tracked parameter.

        Returns:
            {layer_label: {param_name: norm}}
        """
        if not self._previous:
            raise RuntimeError("save_previous_weights() must be called before weight_change_norms()")

        changes = {}
        for i, layer in enumerate(self.layers):
            label = self._label(i, layer)
            previous = self._previous.get(label, {})
            changes[label] = {
                name: float(np.linalg.norm(param - previous[name]))
                for name, param in layer.params.items()
                if name in previous
            }
        return changes

    def gradient_norms(self):
        """
        Frobenius norm of every tracked gradient.

        Returns:
            {layer_label: {param_name: norm}}
        """
        return {
            self._label(i, layer): {name: float(np.linalg.norm(grad)) for name, grad in layer.grads.items()}
            for i, layer in enumerate(self.layers)
        }

    def _log_norms(self, title, norms):
        logger.info(title)
        for label, values in norms.items():
            for name, value in values.items():
                logger.info(f"  {label} {name}: {value:.6e}")

    def print_weight_changes(self):
        changes = self.weight_change_norms()
        self._log_norms("Weight changes since last snapshot:", changes)
        return changes

    def print_gradients(self):
        norms = self.gradient_norms()
        self._log_norms("Gradient norms:", norms)
        return norms


class Timer:
    """
    Log how long a block takes.

    Example:
        >>> with Timer("epoch"):
        ...     model.train(data, labels, epochs=1)
    """

    def __init__(self, label='block'):
        self.label = label
        self.elapsed_ms = None
        self._start = None

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
        logger.info(f"{self.label} took {self.elapsed_ms:.3f} ms")
        return False
