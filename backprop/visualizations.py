"""
Visualization Utilities
=======================

This module provides functions for visualizing:
- Training progress (loss/accuracy curves)
- Convolutional filters
- Feature maps (the channels of a Tensor)

Every function returns the matplotlib Figure and can save it to a file.
"""

import numpy as np
import matplotlib.pyplot as plt

from .console import get_logger
from .tensor import Tensor

logger = get_logger(__name__)


def _finish(fig, save_path, what, show):
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"{what} saved to {save_path}")

    if show:
        plt.show()
    return fig


def _grid(n_items, figsize):
    n_cols = int(np.ceil(np.sqrt(n_items)))
    n_rows = int(np.ceil(n_items / n_cols))

    fig, axes = plt.subplots(n_rows, n_cols, figsize=figsize)
    axes = np.array(axes).flatten()

    # Hide unused subplots
    for ax in axes[n_items:]:
        ax.axis('off')
    return fig, axes


def plot_training_history(history, figsize=(14, 5), save_path=None, show=False):
    """
    Plot training history (loss and accuracy curves).

    Args:
        history: Dictionary with 'loss', 'accuracy', 'val_loss', 'val_accuracy'
            as returned by Model.train
        figsize: Figure size
        save_path: Path to save figure
        show: Call plt.show() before returning
    """
    if not history.get('loss'):
        raise ValueError("History holds no epochs to plot")

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    epochs = range(1, len(history['loss']) + 1)

    # Loss plot
    axes[0].plot(epochs, history['loss'], 'b-', label='Training Loss', linewidth=2)
    if history.get('val_loss'):
        axes[0].plot(epochs, history['val_loss'], 'r-', label='Validation Loss', linewidth=2)
    axes[0].set_xlabel('Epoch', fontsize=12)
    axes[0].set_ylabel('Loss', fontsize=12)
    axes[0].set_title('Training and Validation Loss', fontsize=14)
    axes[0].legend(fontsize=10)
    axes[0].grid(True, alpha=0.3)

    # Accuracy plot
    if history.get('accuracy'):
        axes[1].plot(epochs, history['accuracy'], 'b-', label='Training Accuracy', linewidth=2)
    if history.get('val_accuracy'):
        axes[1].plot(epochs, history['val_accuracy'], 'r-', label='Validation Accuracy', linewidth=2)
    axes[1].set_xlabel('Epoch', fontsize=12)
    axes[1].set_ylabel('Accuracy', fontsize=12)
    axes[1].set_title('Training and Validation Accuracy', fontsize=14)
    axes[1].legend(fontsize=10)
    axes[1].grid(True, alpha=0.3)

    return _finish(fig, save_path, "Training history plot", show)


def visualize_filters(filters, max_filters=32, figsize=(12, 8), save_path=None, show=False):
    """
    Visualize convolutional filter weights.

    Args:
        filters: Conv2D weights, shape (out_channels, in_channels, k, k), or
            the Conv2D layer itself
        max_filters: Maximum number of filters to display
        figsize: Figure size
        save_path: Path to save figure
        show: Call plt.show() before returning
    """
    if hasattr(filters, 'params'):
        filters = filters.params['weight']
    filters = np.asarray(filters, dtype=np.float64)
    if filters.ndim != 4:
        raise ValueError(f"Expected (out, in, k, k) filter weights, got shape {filters.shape}")

    n_filters = min(filters.shape[0], max_filters)
    fig, axes = _grid(n_filters, figsize)

    for i in range(n_filters):
        # Average across input channels
        filter_img = np.mean(filters[i], axis=0)

        # Normalize for visualization
        filter_img = (filter_img - filter_img.min()) / (filter_img.max() - filter_img.min() + 1e-8)

        axes[i].imshow(filter_img, cmap='gray')
        axes[i].set_title(f'Filter {i}', fontsize=8)
        axes[i].axis('off')

    fig.suptitle('Convolutional Filters', fontsize=14)
    return _finish(fig, save_path, "Filters visualization", show)


def visualize_feature_maps(feature_maps, max_maps=16, figsize=(12, 12), save_path=None, show=False):
    """
    Visualize the channels of a layer output.

    Args:
        feature_maps: Tensor or array of shape (channels, height, width)
        max_maps: Maximum number of feature maps to display
        figsize: Figure size
        save_path: Path to save figure
        show: Call plt.show() before returning
    """
    if isinstance(feature_maps, Tensor):
        feature_maps = feature_maps.numpy()
    feature_maps = np.asarray(feature_maps, dtype=np.float64)
    if feature_maps.ndim != 3 or feature_maps.shape[0] == 0:
        raise ValueError(f"Expected (channels, height, width) feature maps, got shape {feature_maps.shape}")

    n_maps = min(feature_maps.shape[0], max_maps)
    fig, axes = _grid(n_maps, figsize)

    for i in range(n_maps):
        axes[i].imshow(feature_maps[i], cmap='viridis')
        axes[i].set_title(f'Channel {i}', fontsize=8)
        axes[i].axis('off')

    fig.suptitle('Feature Maps', fontsize=14)
    return _finish(fig, save_path, "Feature maps", show)
