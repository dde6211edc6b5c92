"""Exception types raised by the library beyond the built-in ones."""


class LayerStateError(RuntimeError):
    """
    A layer (or loss/activation) was asked to run backward without a matching
    forward pass, e.g. backward before any forward, or BatchNorm backward
    after an inference-mode forward.
    """


class ModelFormatError(ValueError):
    """A saved model file is not in a format this version can read."""
