"""
Tensor
======

Multi-channel activations as an ordered stack of equal-shaped 2-D matrices.

The outer index (depth) means different things to different layers:
- Conv2D / pooling: channels of one image, shape (channels, height, width)
- Dense / BatchNorm / losses: a single matrix, shape (1, batch, features)
- RNN / GRU: a single matrix, shape (1, time_steps, features)
- Model.train: a pre-batched dataset, one batch per channel

Tensors have value semantics: every constructor copies its input, so a layer
that caches a Tensor never shares memory with the caller.
"""

import numpy as np

from .console import get_logger

logger = get_logger(__name__)


class Tensor:
    """
    Ordered sequence of 2-D float matrices sharing one (rows, cols) shape.

    Args:
        data: One of
            - None: empty tensor (depth 0)
            - tuple (depth, rows, cols): zero-filled tensor
            - 2-D array: single-matrix tensor
            - 3-D array: depth x rows x cols
            - sequence of 2-D arrays: one channel each
            - another Tensor: copy

    Example:
        >>> t = Tensor((2, 3, 3))
        >>> t[0] += 1.0
        >>> t.shape
        (2, 3, 3)
    """

    def __init__(self, data=None):
        if data is None:
            self._data = np.zeros((0, 0, 0))
        elif isinstance(data, Tensor):
            self._data = data._data.copy()
        elif isinstance(data, tuple) and len(data) == 3 and all(isinstance(d, (int, np.integer)) for d in data):
            if any(d < 0 for d in data):
                raise ValueError(f"Tensor dimensions must be non-negative, got {data}")
            self._data = np.zeros(data)
        elif isinstance(data, np.ndarray):
            self._data = self._from_array(data)
        elif isinstance(data, (list, tuple)):
            self._data = self._from_matrices(data)
        else:
            raise ValueError(f"Cannot build a Tensor from {type(data).__name__}")

    @staticmethod
    def _from_array(array):
        array = np.array(array, dtype=np.float64)
        if array.ndim == 2:
            return array[np.newaxis, ...]
        if array.ndim == 3:
            return array
        raise ValueError(f"Tensor expects a 2-D or 3-D array, got {array.ndim}-D")

    @staticmethod
    def _from_matrices(matrices):
        if len(matrices) == 0:
            return np.zeros((0, 0, 0))

        mats = [np.array(m, dtype=np.float64) for m in matrices]
        for m in mats:
            if m.ndim != 2:
                raise ValueError(f"Every channel must be a 2-D matrix, got {m.ndim}-D")
            if m.shape != mats[0].shape:
                raise ValueError(f"All channels must share one shape: {m.shape} != {mats[0].shape}")
        return np.stack(mats)

    @classmethod
    def zeros(cls, depth, rows, cols):
        """Zero-filled tensor of the given dimensions."""
        return cls((int(depth), int(rows), int(cols)))

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def depth(self):
        return self._data.shape[0]

    @property
    def shape(self):
        """(depth, rows, cols), or (0, 0, 0) when empty."""
        if self._data.shape[0] == 0:
            return (0, 0, 0)
        return tuple(int(d) for d in self._data.shape)

    def __len__(self):
        return self.depth

    def numpy(self):
        """Copy of the underlying (depth, rows, cols) array."""
        return self._data.copy()

    def copy(self):
        return Tensor(self)

    def resize(self, depth, rows, cols):
        """
        Resize in place. Existing channels are kept (cropped or zero-padded
        to the new matrix size); new channels are zero-filled.
        """
        resized = np.zeros((depth, rows, cols))
        d = min(depth, self._data.shape[0])
        r = min(rows, self._data.shape[1]) if self._data.ndim == 3 else 0
        c = min(cols, self._data.shape[2]) if self._data.ndim == 3 else 0
        resized[:d, :r, :c] = self._data[:d, :r, :c]
        self._data = resized

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def _check_channel(self, index):
        if not isinstance(index, (int, np.integer)):
            raise TypeError(f"Channel index must be an integer, got {type(index).__name__}")
        if index < 0 or index >= self.depth:
            raise IndexError(f"Channel index {index} out of range for depth {self.depth}")

    def __getitem__(self, index):
        if isinstance(index, tuple):
            if len(index) != 3:
                raise IndexError("Element access needs (channel, row, col)")
            channel, row, col = index
            self._check_channel(channel)
            return self._data[channel][row, col]

        self._check_channel(index)
        return self._data[index]

    def __setitem__(self, index, value):
        if isinstance(index, tuple):
            if len(index) != 3:
                raise IndexError("Element access needs (channel, row, col)")
            channel, row, col = index
            self._check_channel(channel)
            self._data[channel][row, col] = value
            return

        self._check_channel(index)
        value = np.asarray(value, dtype=np.float64)
        if value.shape != self._data.shape[1:]:
            raise ValueError(f"Channel shape {value.shape} does not match {self._data.shape[1:]}")
        self._data[index] = value

    def __iter__(self):
        return iter(self._data)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __imul__(self, scalar):
        self._data *= scalar
        return self

    def __mul__(self, scalar):
        result = self.copy()
        result *= scalar
        return result

    __rmul__ = __mul__

    def __isub__(self, scalar):
        self._data -= scalar
        return self

    def __sub__(self, scalar):
        result = self.copy()
        result -= scalar
        return result

    def __itruediv__(self, scalar):
        if scalar == 0:
            raise ValueError("Division by zero is not allowed.")
        self._data /= scalar
        return self

    def __truediv__(self, scalar):
        result = self.copy()
        result /= scalar
        return result

    def __iadd__(self, other):
        if not isinstance(other, Tensor):
            raise ValueError(f"Can only add a Tensor to a Tensor, got {type(other).__name__}")
        if self.depth != other.depth:
            raise ValueError(f"Tensors must have the same depth for addition: {self.depth} != {other.depth}")
        if self.shape != other.shape:
            raise ValueError(f"Tensors must have the same shape for addition: {self.shape} != {other.shape}")
        self._data += other._data
        return self

    def __add__(self, other):
        result = self.copy()
        result += other
        return result

    def __eq__(self, other):
        if not isinstance(other, Tensor):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self._data, other._data)

    __hash__ = None

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def flatten(self):
        """Stack every channel by row concatenation: (depth * rows, cols)."""
        if self.depth == 0:
            return np.zeros((0, 0))
        depth, rows, cols = self._data.shape
        return self._data.reshape(depth * rows, cols).copy()

    def slice(self, index):
        """
        Single-channel copy of channel ``index``.

        Raises:
            IndexError: index out of range (logged first)
        """
        if index < 0 or index >= self.depth:
            logger.error(f"Batch index {index} out of range for depth {self.depth}")
            raise IndexError(f"Batch index {index} out of range for depth {self.depth}")
        return Tensor(self._data[index])

    def push_back(self, matrix):
        """Append a channel."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2:
            raise ValueError(f"push_back expects a 2-D matrix, got {matrix.ndim}-D")
        if self.depth == 0:
            self._data = matrix[np.newaxis, ...].copy()
            return
        if matrix.shape != self._data.shape[1:]:
            raise ValueError(f"Channel shape {matrix.shape} does not match {self._data.shape[1:]}")
        self._data = np.concatenate([self._data, matrix[np.newaxis, ...]], axis=0)

    def pop_back(self):
        """Remove and return the last channel."""
        if self.depth == 0:
            raise RuntimeError("Cannot pop from an empty tensor.")
        last = self._data[-1].copy()
        self._data = self._data[:-1]
        return last

    def is_single_matrix(self):
        return self.depth == 1

    def get_single_matrix(self):
        """
        The only channel of a depth-1 tensor.

        Raises:
            RuntimeError: depth is not 1
        """
        if not self.is_single_matrix():
            raise RuntimeError(f"Tensor does not contain a single matrix (depth={self.depth}).")
        return self._data[0]

    def set_random(self):
        """Fill with uniform values in [-1, 1]."""
        self._data = np.random.uniform(-1.0, 1.0, size=self._data.shape)

    def __repr__(self):
        return f"Tensor(shape={self.shape})"


def as_tensor(x):
    """Wrap arrays as Tensors; Tensors pass through unchanged."""
    if isinstance(x, Tensor):
        return x
    return Tensor(np.asarray(x, dtype=np.float64))


def as_matrix(x):
    """The single matrix of a Tensor, or a 2-D float array."""
    if isinstance(x, Tensor):
        return x.get_single_matrix()
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 1:
        x = x.reshape(1, -1)
    if x.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got {x.ndim}-D")
    return x
