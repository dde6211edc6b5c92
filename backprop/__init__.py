"""
Backprop: Neural Networks from Scratch
======================================

A small neural-network training library using only NumPy, with every
backward pass derived by hand (no autodiff). It includes:
- A multi-channel Tensor container
- Dense, 2D convolution, pooling, flatten layers
- Recurrent layers (RNN, GRU) with backpropagation through time
- Batch Normalization and Dropout
- MSE and cross-entropy losses
- SGD and Adam optimizers
- A sequential Model with training loop, callbacks and save/load
"""

from .activations import ReLU, LeakyReLU, Sigmoid, Tanh, Softmax, Linear, get_activation
from .tensor import Tensor
from .layers import Layer, DenseLayer, Conv2D, MaxPooling2D, AveragePooling2D, FlattenLayer
from .layers import Dropout, BatchNorm, Activation
from .recurrent import RNNLayer, GRULayer
from .losses import (MSELoss, CrossEntropyLoss, CategoricalCrossEntropyLoss,
                     BinaryCrossEntropyLoss, get_loss)
from .optimizers import SGD, Adam, get_optimizer
from .callbacks import Callback, EarlyStopping, PrintLoss, SaveModel, get_callback
from .model import Model, LAYERS
from .debugger import Debugger, Timer
from .exceptions import LayerStateError, ModelFormatError
from .utils import one_hot_encode, to_batches, to_samples
from . import console

__version__ = "1.0.0"
__all__ = [
    # Core container
    'Tensor',
    # Activations
    'ReLU', 'LeakyReLU', 'Sigmoid', 'Tanh', 'Softmax', 'Linear', 'get_activation',
    # Layers
    'Layer', 'DenseLayer', 'Conv2D', 'MaxPooling2D', 'AveragePooling2D', 'FlattenLayer',
    'Dropout', 'BatchNorm', 'Activation', 'RNNLayer', 'GRULayer', 'LAYERS',
    # Losses
    'MSELoss', 'CrossEntropyLoss', 'CategoricalCrossEntropyLoss', 'BinaryCrossEntropyLoss',
    'get_loss',
    # Optimizers
    'SGD', 'Adam', 'get_optimizer',
    # Callbacks
    'Callback', 'EarlyStopping', 'PrintLoss', 'SaveModel', 'get_callback',
    # Main class
    'Model',
    # Debugging
    'Debugger', 'Timer',
    # Errors
    'LayerStateError', 'ModelFormatError',
    # Utilities
    'one_hot_encode', 'to_batches', 'to_samples', 'console',
]
