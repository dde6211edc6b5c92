"""
Utility Functions
=================

Data plumbing around the core library:
- One-hot encoding
- Batching into pre-batched Tensors, or splitting into per-sample Tensors
- Train/test split and normalization
- Evaluation metrics
- Random seed control
"""

import numpy as np

from .console import get_logger
from .tensor import Tensor

logger = get_logger(__name__)


def one_hot_encode(labels, num_classes=None):
    """
    Convert integer labels to one-hot encoded vectors.

    Args:
        labels: Integer labels, shape (N,)
        num_classes: Number of classes (inferred if None)

    Returns:
        One-hot matrix, shape (N, num_classes)
    """
    labels = np.asarray(labels).astype(int)

    if num_classes is None:
        num_classes = labels.max() + 1
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(f"Labels must lie in [0, {num_classes}), got [{labels.min()}, {labels.max()}]")

    one_hot = np.zeros((len(labels), num_classes), dtype=np.float64)
    one_hot[np.arange(len(labels)), labels] = 1.0

    return one_hot


def _as_rows(a):
    a = np.asarray(a, dtype=np.float64)
    if a.ndim == 1:
        return a.reshape(-1, 1)
    if a.ndim != 2:
        raise ValueError(f"Expected (N, features) data, got shape {a.shape}")
    return a


def to_batches(X, y, batch_size, shuffle=True):
    """
    Pack row data into pre-batched Tensors for Model.train.

    Every channel of the returned Tensors is one mini-batch. A final batch
    smaller than batch_size is dropped so all channels share a shape.

    Args:
        X: Features, shape (N, features)
        y: Targets, shape (N, outputs) or (N,)
        batch_size: Rows per batch
        shuffle: Whether to shuffle before batching

    Returns:
        (X_batches, y_batches), Tensors of depth N // batch_size
    """
    X = _as_rows(X)
    y = _as_rows(y)
    n_samples = len(X)

    if len(y) != n_samples:
        raise ValueError(f"X has {n_samples} rows but y has {len(y)}")
    if batch_size < 1 or batch_size > n_samples:
        raise ValueError(f"batch_size must be in [1, {n_samples}], got {batch_size}")

    if shuffle:
        indices = np.random.permutation(n_samples)
        X = X[indices]
        y = y[indices]

    n_batches = n_samples // batch_size
    if n_batches * batch_size < n_samples:
        logger.debug(f"Dropping {n_samples - n_batches * batch_size} samples of the ragged final batch")

    used = n_batches * batch_size
    X_batches = X[:used].reshape(n_batches, batch_size, X.shape[1])
    y_batches = y[:used].reshape(n_batches, batch_size, y.shape[1])

    return Tensor(X_batches), Tensor(y_batches)


def to_samples(X):
    """
    Split a dataset into one Tensor per sample.

    Args:
        X: (N, features): each row becomes a (1, features) Tensor
           (N, rows, cols): each sample is a single-matrix Tensor (sequences)
           (N, C, H, W): each sample is a C-channel Tensor (images)

    Returns:
        List of Tensors
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 2:
        return [Tensor(row.reshape(1, -1)) for row in X]
    if X.ndim in (3, 4):
        return [Tensor(sample) for sample in X]
    raise ValueError(f"Cannot split data of shape {X.shape} into samples")


def accuracy_score(y_true, y_pred):
    """
    Compute classification accuracy.

    Args:
        y_true: True labels (integers or one-hot)
        y_pred: Predictions (probabilities or one-hot)

    Returns:
        Accuracy as float
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if y_true.ndim > 1:
        y_true = np.argmax(y_true, axis=1)
    if y_pred.ndim > 1:
        y_pred = np.argmax(y_pred, axis=1)

    return float(np.mean(y_true == y_pred))


def confusion_matrix(y_true, y_pred, num_classes=None):
    """
    Compute confusion matrix.

    Args:
        y_true: True labels
        y_pred: Predicted labels
        num_classes: Number of classes

    Returns:
        Confusion matrix, shape (num_classes, num_classes), rows = true class
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if y_true.ndim > 1:
        y_true = np.argmax(y_true, axis=1)
    if y_pred.ndim > 1:
        y_pred = np.argmax(y_pred, axis=1)

    if num_classes is None:
        num_classes = max(y_true.max(), y_pred.max()) + 1

    cm = np.zeros((num_classes, num_classes), dtype=int)
    np.add.at(cm, (y_true.astype(int), y_pred.astype(int)), 1)

    return cm


def normalize_data(X, method='minmax'):
    """
    Normalize data.

    Args:
        X: Data to normalize
        method: 'minmax' (0-1) or 'zscore' (mean=0, std=1), over the whole array

    Returns:
        Normalized data
    """
    X = np.asarray(X, dtype=np.float64)

    if method == 'minmax':
        X_min, X_max = X.min(), X.max()
        if X_max - X_min > 0:
            return (X - X_min) / (X_max - X_min)
        return X
    elif method == 'zscore':
        mean = X.mean()
        std = X.std()
        return (X - mean) / (std + 1e-8)
    else:
        raise ValueError(f"Unknown normalization method: {method}")


def train_test_split(X, y, test_size=0.2, shuffle=True, random_state=None):
    """
    Split data into train and test sets.

    Args:
        X: Features
        y: Labels
        test_size: Fraction for test set
        shuffle: Whether to shuffle
        random_state: Random seed

    Returns:
        X_train, X_test, y_train, y_test
    """
    X = np.asarray(X)
    y = np.asarray(y)
    if len(X) != len(y):
        raise ValueError(f"X has {len(X)} samples but y has {len(y)}")
    if not 0.0 <= test_size < 1.0:
        raise ValueError(f"test_size must be in [0, 1), got {test_size}")

    n_samples = len(X)
    n_test = int(n_samples * test_size)

    if shuffle:
        rng = np.random.RandomState(random_state) if random_state is not None else np.random
        indices = rng.permutation(n_samples)
    else:
        indices = np.arange(n_samples)

    test_indices = indices[:n_test]
    train_indices = indices[n_test:]

    return X[train_indices], X[test_indices], y[train_indices], y[test_indices]


def set_random_seed(seed):
    """Set random seed for reproducibility."""
    np.random.seed(seed)
    logger.debug(f"Random seed set to {seed}")
