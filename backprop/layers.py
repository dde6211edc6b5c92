"""
Layers - Hand-Derived Forward and Backward Passes
=================================================

This module contains the building blocks of a network implemented using only
NumPy. Each layer implements its own forward pass and the matching backward
pass (the chain rule, derived by hand - there is no autodiff here).

Layers implemented:
- DenseLayer: Fully connected layer with optional activation
- Conv2D: 2D Convolution (im2col forward, col2im reverse convolution backward)
- MaxPooling2D: Max pooling, gradient routed through cached argmax indices
- AveragePooling2D: Average pooling
- FlattenLayer: Multi-channel tensor -> single matrix
- Dropout: Inverted dropout
- BatchNorm: Batch normalization over the batch (row) dimension
- Activation: Activation function wrapped as a layer

The recurrent layers (RNNLayer, GRULayer) live in recurrent.py.

Every layer follows the same protocol: backward() consumes the cache written
by the previous forward() and raises LayerStateError if there was none.
"""

import numpy as np

from .activations import get_activation
from .exceptions import LayerStateError
from .tensor import Tensor, as_tensor, as_matrix


class Layer:
    """Base class for all layers."""

    name = 'layer'

    def __init__(self):
        self.params = {}    # Trainable parameters
        self.grads = {}     # Gradients of parameters, same shapes as params
        self.training = True
        self.cache = {}
        self._forwarded = False

    def forward(self, x):
        """Forward pass."""
        raise NotImplementedError

    def backward(self, grad_output):
        """Backward pass."""
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)

    def set_training(self, mode):
        """Set training mode."""
        self.training = bool(mode)

    def has_weights(self):
        return len(self.params) > 0

    def get_weights(self):
        return self.params

    def get_grads(self):
        return self.grads

    def get_buffers(self):
        """Non-trainable state saved with the model (e.g. running statistics)."""
        return {}

    def set_buffers(self, buffers):
        pass

    def num_params(self):
        return int(sum(p.size for p in self.params.values()))

    def get_config(self):
        return {}

    def _init_grads(self):
        self.grads = {name: np.zeros_like(param) for name, param in self.params.items()}

    def _mark_forwarded(self):
        self._forwarded = True

    def _require_forward(self):
        if not self._forwarded:
            raise LayerStateError(f"{self!r}: backward called before forward")


def _init_scale(fan_in, weight_init):
    if weight_init == 'he':
        return np.sqrt(2.0 / fan_in)
    if weight_init == 'xavier':
        return np.sqrt(1.0 / fan_in)
    raise ValueError(f"Unknown weight_init '{weight_init}'. Available: he, xavier")


class DenseLayer(Layer):
    """
    Fully Connected (Dense) Layer.

    Each output is connected to every input. Samples are rows.

    Args:
        input_size: Number of input features
        output_size: Number of output features
        activation: Activation name or instance applied to the output (default: linear)
        use_bias: Whether to use bias (default: True)
        weight_init: 'he' or 'xavier'

    Input shape: (batch, input_size)
    Output shape: (batch, output_size)

    Forward: output = activation(x @ W^T + b), W has shape (output_size, input_size)
    """

    name = 'dense'

    def __init__(self, input_size, output_size, activation=None, use_bias=True,
                 weight_init='he'):
        super().__init__()

        self.input_size = input_size
        self.output_size = output_size
        self.use_bias = use_bias
        self.weight_init = weight_init
        self.activation = get_activation(activation)

        scale = _init_scale(input_size, weight_init)
        self.params['weight'] = np.random.randn(output_size, input_size) * scale

        if use_bias:
            self.params['bias'] = np.zeros(output_size)

        self._init_grads()

    def forward(self, x):
        """Forward pass: y = activation(x @ W^T + b)"""
        x = as_matrix(x)
        if x.size == 0:
            raise ValueError("DenseLayer.forward received an empty input matrix")
        if x.shape[1] != self.input_size:
            raise ValueError(f"DenseLayer expects {self.input_size} input features, got {x.shape[1]}")

        self.cache['x'] = x.copy()

        z = x @ self.params['weight'].T
        if self.use_bias:
            z = z + self.params['bias']

        self._mark_forwarded()
        return Tensor(self.activation.forward(z))

    def backward(self, grad_output):
        """
        Backward pass.

        delta = activation'(z) * grad_output
        dL/dW = delta^T @ x
        dL/db = sum(delta) over rows
        dL/dx = delta @ W
        """
        self._require_forward()
        x = self.cache['x']
        grad = as_matrix(grad_output)
        if grad.shape != (x.shape[0], self.output_size):
            raise ValueError(f"DenseLayer gradient shape {grad.shape} does not match output "
                             f"{(x.shape[0], self.output_size)}")

        delta = self.activation.backward(grad)

        self.grads['weight'][...] = delta.T @ x
        if self.use_bias:
            self.grads['bias'][...] = np.sum(delta, axis=0)

        return Tensor(delta @ self.params['weight'])

    def get_config(self):
        return {
            'input_size': self.input_size,
            'output_size': self.output_size,
            'activation': self.activation.name,
            'activation_config': self.activation.get_config(),
            'use_bias': self.use_bias,
            'weight_init': self.weight_init,
        }

    def __repr__(self):
        return f"DenseLayer({self.input_size}, {self.output_size}, activation={self.activation.name})"


class Conv2D(Layer):
    """
    2D Convolutional Layer.

    Performs spatial cross-correlation over one multi-channel sample.

    Args:
        in_channels: Number of input channels (e.g., 1 for grayscale, 3 for RGB)
        out_channels: Number of output channels (number of filters)
        kernel_size: Side of the square kernel
        stride: Stride of convolution (default: 1)
        padding: Zero padding on each side: int, 'valid' (0) or 'same' (kernel_size // 2)
        use_bias: Whether to use bias (default: True)
        weight_init: 'he' or 'xavier' (default: 'he')

    Input shape: (in_channels, height, width)
    Output shape: (out_channels, out_height, out_width)

    Where:
        out_height = (height + 2*pad - kernel_size) // stride + 1
        out_width = (width + 2*pad - kernel_size) // stride + 1

    Height and width are not known until the first forward call; the output
    shape is resolved there and again whenever the spatial size changes.

    The backward pass computes:
    1. dL/dW: correlation of cached input patches with grad_output
    2. dL/db: sum of grad_output per output channel
    3. dL/dX: reverse convolution (col2im scatter), then the padding is cropped
    """

    name = 'conv2d'

    def __init__(self, in_channels, out_channels, kernel_size, stride=1,
                 padding=0, use_bias=True, weight_init='he'):
        super().__init__()

        if kernel_size < 1 or stride < 1:
            raise ValueError(f"kernel_size and stride must be positive, got {kernel_size}, {stride}")

        self.in_channels = in_channels
        self.out_channels = out_channels
        self.kernel_size = kernel_size
        self.stride = stride
        self.use_bias = use_bias
        self.weight_init = weight_init

        if padding == 'same':
            # Keeps the spatial size for stride 1 and odd kernels
            self.padding = kernel_size // 2
        elif padding == 'valid':
            self.padding = 0
        elif isinstance(padding, (int, np.integer)) and padding >= 0:
            self.padding = int(padding)
        else:
            raise ValueError(f"Unknown padding {padding!r}. Use a non-negative int, 'same' or 'valid'")

        fan_in = in_channels * kernel_size * kernel_size
        scale = _init_scale(fan_in, weight_init)

        # Weights shape: (out_channels, in_channels, kernel, kernel)
        self.params['weight'] = np.random.randn(out_channels, in_channels, kernel_size, kernel_size) * scale

        if use_bias:
            self.params['bias'] = np.zeros(out_channels)

        self._init_grads()

        # Resolved lazily from the first input
        self.input_shape = (in_channels, None, None)
        self.output_shape = None

    def _output_shape(self, height, width):
        k, s, p = self.kernel_size, self.stride, self.padding
        h_out = (height + 2 * p - k) // s + 1
        w_out = (width + 2 * p - k) // s + 1
        return (self.out_channels, h_out, w_out)

    def _pad_input(self, x):
        """Apply zero padding to every channel."""
        if self.padding == 0:
            return x
        p = self.padding
        return np.pad(x, ((0, 0), (p, p), (p, p)), mode='constant')

    def _im2col(self, x_padded, h_out, w_out):
        """
        Convert image patches to columns for efficient convolution.

        Uses numpy stride tricks to create a view (no memory copy) of all patches
        that would be convolved with the kernel, then reshapes for matrix multiply.

        Returns:
            col: Shape (h_out * w_out, in_channels * k * k)
        """
        k, s = self.kernel_size, self.stride
        shape = (x_padded.shape[0], k, k, h_out, w_out)
        strides = (
            x_padded.strides[0],      # channel stride
            x_padded.strides[1],      # kernel height stride
            x_padded.strides[2],      # kernel width stride
            x_padded.strides[1] * s,  # output height stride (strided)
            x_padded.strides[2] * s,  # output width stride (strided)
        )
        patches = np.lib.stride_tricks.as_strided(x_padded, shape=shape, strides=strides)

        # (C, k, k, h_out, w_out) -> (h_out * w_out, C * k * k)
        return patches.transpose(3, 4, 0, 1, 2).reshape(h_out * w_out, -1)

    def _col2im(self, dcol, x_padded_shape, h_out, w_out):
        """
        Scatter columns back to image positions (inverse of im2col).

        Every output position (i, j) adds its kernel-weighted gradient to the
        receptive field it was computed from; overlapping fields accumulate.
        """
        k, s = self.kernel_size, self.stride
        channels = x_padded_shape[0]
        dcol = dcol.reshape(h_out, w_out, channels, k, k)

        dx_padded = np.zeros(x_padded_shape, dtype=dcol.dtype)
        for i in range(h_out):
            for j in range(w_out):
                h_start = i * s
                w_start = j * s
                dx_padded[:, h_start:h_start + k, w_start:w_start + k] += dcol[i, j]

        return dx_padded

    def forward(self, x):
        """
        Forward pass using im2col for efficient matrix multiplication.

        Args:
            x: Tensor of shape (in_channels, height, width)

        Returns:
            Tensor of shape (out_channels, out_height, out_width)
        """
        x = as_tensor(x).numpy()
        channels, height, width = x.shape
        if channels != self.in_channels:
            raise ValueError(f"Conv2D expects {self.in_channels} input channels, got {channels}")

        if self.input_shape != (channels, height, width):
            self.input_shape = (channels, height, width)
            self.output_shape = self._output_shape(height, width)

        _, h_out, w_out = self.output_shape
        if h_out < 1 or w_out < 1:
            raise ValueError(f"Kernel {self.kernel_size} with padding {self.padding} does not fit "
                             f"input {height}x{width}")

        x_padded = self._pad_input(x)
        col = self._im2col(x_padded, h_out, w_out)

        # (out_channels, in_channels * k * k)
        W_col = self.params['weight'].reshape(self.out_channels, -1)

        # (h_out * w_out, in_channels * k * k) @ (in_channels * k * k, out_channels)
        output = col @ W_col.T
        output = output.reshape(h_out, w_out, self.out_channels).transpose(2, 0, 1)

        if self.use_bias:
            output = output + self.params['bias'].reshape(-1, 1, 1)

        # Cache for backward pass
        self.cache['x_padded_shape'] = x_padded.shape
        self.cache['col'] = col

        self._mark_forwarded()
        return Tensor(output)

    def backward(self, grad_output):
        """
        Backward pass using im2col for efficient computation.

        Args:
            grad_output: Tensor of shape (out_channels, h_out, w_out)

        Returns:
            Tensor of shape (in_channels, height, width)
        """
        self._require_forward()
        grad_output = as_tensor(grad_output).numpy()
        if grad_output.shape != self.output_shape:
            raise ValueError(f"Conv2D gradient shape {grad_output.shape} does not match output {self.output_shape}")

        col = self.cache['col']
        x_padded_shape = self.cache['x_padded_shape']
        _, h_out, w_out = self.output_shape

        W = self.params['weight']
        W_col = W.reshape(self.out_channels, -1)

        # (out_channels, h_out, w_out) -> (h_out * w_out, out_channels)
        grad_rows = grad_output.transpose(1, 2, 0).reshape(-1, self.out_channels)

        # Gradient w.r.t. weights: col.T @ grad_rows
        self.grads['weight'][...] = (col.T @ grad_rows).T.reshape(W.shape)

        if self.use_bias:
            self.grads['bias'][...] = np.sum(grad_output, axis=(1, 2))

        # Gradient w.r.t. input: grad_rows @ W_col, scattered back by col2im
        dcol = grad_rows @ W_col
        dx_padded = self._col2im(dcol, x_padded_shape, h_out, w_out)

        # Remove padding from gradient
        _, height, width = self.input_shape
        p = self.padding
        dx = dx_padded[:, p:p + height, p:p + width]

        return Tensor(dx)

    def get_config(self):
        return {
            'in_channels': self.in_channels,
            'out_channels': self.out_channels,
            'kernel_size': self.kernel_size,
            'stride': self.stride,
            'padding': self.padding,
            'use_bias': self.use_bias,
            'weight_init': self.weight_init,
        }

    def __repr__(self):
        return (f"Conv2D({self.in_channels}, {self.out_channels}, "
                f"kernel_size={self.kernel_size}, stride={self.stride}, "
                f"padding={self.padding})")


class _Pooling2D(Layer):
    """Shared window bookkeeping for the pooling layers."""

    def __init__(self, pool_size=2, stride=None):
        super().__init__()

        self.pool_size = pool_size
        self.stride = stride if stride is not None else pool_size
        if self.pool_size < 1 or self.stride < 1:
            raise ValueError(f"pool_size and stride must be positive, got {pool_size}, {stride}")

        self.input_shape = None
        self.output_shape = None

    def _windows(self, x):
        """
        View of all pooling windows: (channels, h_out, w_out, pool, pool).
        """
        channels, h_in, w_in = x.shape
        p, s = self.pool_size, self.stride

        h_out = (h_in - p) // s + 1
        w_out = (w_in - p) // s + 1
        if h_out < 1 or w_out < 1:
            raise ValueError(f"Pool size {p} does not fit input {h_in}x{w_in}")

        shape = (channels, h_out, w_out, p, p)
        strides = (
            x.strides[0],           # channel
            x.strides[1] * s,       # output height (strided)
            x.strides[2] * s,       # output width (strided)
            x.strides[1],           # pool height
            x.strides[2],           # pool width
        )

        self.input_shape = x.shape
        self.output_shape = (channels, h_out, w_out)

        return np.lib.stride_tricks.as_strided(x, shape=shape, strides=strides)

    def _check_grad(self, grad_output):
        self._require_forward()
        grad_output = as_tensor(grad_output).numpy()
        if grad_output.shape != self.output_shape:
            raise ValueError(f"{self.__class__.__name__} gradient shape {grad_output.shape} "
                             f"does not match output {self.output_shape}")
        return grad_output

    def get_config(self):
        return {'pool_size': self.pool_size, 'stride': self.stride}

    def __repr__(self):
        return f"{self.__class__.__name__}(pool_size={self.pool_size}, stride={self.stride})"


class MaxPooling2D(_Pooling2D):
    """
    Max Pooling Layer (Vectorized).

    Downsamples by taking maximum value in each window.

    Args:
        pool_size: Side of the square pooling window
        stride: Stride (default: same as pool_size)

    Backprop: Gradient flows only to the max element in each window. The
    gradient tensor is sized from the cached input shape, and contributions
    are accumulated, so overlapping windows (stride < pool_size) are exact.
    """

    name = 'max_pooling2d'

    def forward(self, x):
        """
        Forward pass: max pooling using vectorized operations.

        Args:
            x: Tensor of shape (channels, height, width)

        Returns:
            Tensor of shape (channels, h_out, w_out)
        """
        x = as_tensor(x).numpy()
        windows = self._windows(x)
        channels, h_out, w_out = self.output_shape

        windows_flat = windows.reshape(channels, h_out, w_out, -1)

        output = np.max(windows_flat, axis=-1)

        # Cache flat argmax per output cell for backward pass
        self.cache['max_indices'] = np.argmax(windows_flat, axis=-1)

        self._mark_forwarded()
        return Tensor(output)

    def backward(self, grad_output):
        """
        Backward pass: route gradient to max positions only.
        """
        grad_output = self._check_grad(grad_output)
        max_indices = self.cache['max_indices']
        channels, h_out, w_out = self.output_shape
        p, s = self.pool_size, self.stride

        grad_input = np.zeros(self.input_shape, dtype=grad_output.dtype)

        # Convert flat indices to (h, w) offsets within pool window
        max_h = max_indices // p
        max_w = max_indices % p

        # Absolute positions in input: (channels, h_out, w_out)
        abs_h = np.arange(h_out).reshape(1, h_out, 1) * s + max_h
        abs_w = np.arange(w_out).reshape(1, 1, w_out) * s + max_w

        c_idx = np.broadcast_to(np.arange(channels).reshape(channels, 1, 1), (channels, h_out, w_out))

        # Scatter gradients to max positions
        np.add.at(grad_input, (c_idx, abs_h, abs_w), grad_output)

        return Tensor(grad_input)


class AveragePooling2D(_Pooling2D):
    """
    Average Pooling Layer.

    Downsamples by taking average value in each window.

    Backprop: Gradient is distributed equally to all elements in window.
    """

    name = 'average_pooling2d'

    def forward(self, x):
        """Average pooling forward pass using vectorized operations."""
        x = as_tensor(x).numpy()
        windows = self._windows(x)

        # Compute mean over last two dimensions (the pool window)
        output = np.mean(windows, axis=(3, 4))

        self._mark_forwarded()
        return Tensor(output)

    def backward(self, grad_output):
        """Distribute gradient equally to all positions in each window."""
        grad_output = self._check_grad(grad_output)
        _, h_out, w_out = self.output_shape
        p, s = self.pool_size, self.stride
        area = p * p

        grad_input = np.zeros(self.input_shape, dtype=grad_output.dtype)

        # Overlapping windows each contribute, hence +=
        for i in range(h_out):
            for j in range(w_out):
                h_start = i * s
                w_start = j * s
                grad_input[:, h_start:h_start + p, w_start:w_start + p] += \
                    grad_output[:, i:i + 1, j:j + 1] / area

        return Tensor(grad_input)


class FlattenLayer(Layer):
    """
    Flatten layer: multi-channel tensor to a single matrix.

    Args:
        input_shape: Optional (channels, rows, cols) fixed at construction;
            any mismatching dimension raises ValueError
        rowwise: True: (C, R, W) -> (R, C * W), row r being the concatenation
            of every channel's row r. False: the whole sample becomes one row
            (1, C * R * W), channel-major, to feed a conv stack into a dense head.
    """

    name = 'flatten'

    def __init__(self, input_shape=None, rowwise=True):
        super().__init__()
        self.input_shape = tuple(input_shape) if input_shape is not None else None
        self.rowwise = rowwise
        self.output_shape = None

    def _check_input(self, shape):
        if self.input_shape is None:
            return
        for axis, (expected, actual) in enumerate(zip(self.input_shape, shape)):
            if expected != actual:
                dims = ('channels', 'rows', 'cols')
                raise ValueError(f"FlattenLayer expects {dims[axis]}={expected}, got {actual}")

    def forward(self, x):
        """Flatten input into a single matrix."""
        x = as_tensor(x).numpy()
        self._check_input(x.shape)

        channels, rows, cols = x.shape
        self.cache['x_shape'] = x.shape

        if self.rowwise:
            output = x.transpose(1, 0, 2).reshape(rows, channels * cols)
        else:
            output = x.reshape(1, -1)

        self.output_shape = output.shape
        self._mark_forwarded()
        return Tensor(output)

    def backward(self, grad_output):
        """Reshape gradient back to original shape."""
        self._require_forward()
        grad = as_matrix(grad_output)
        if grad.shape != self.output_shape:
            raise ValueError(f"FlattenLayer gradient shape {grad.shape} does not match output {self.output_shape}")

        channels, rows, cols = self.cache['x_shape']
        if self.rowwise:
            grad_input = grad.reshape(rows, channels, cols).transpose(1, 0, 2)
        else:
            grad_input = grad.reshape(channels, rows, cols)

        return Tensor(grad_input)

    def get_config(self):
        return {
            'input_shape': list(self.input_shape) if self.input_shape is not None else None,
            'rowwise': self.rowwise,
        }

    def __repr__(self):
        return f"FlattenLayer(input_shape={self.input_shape}, rowwise={self.rowwise})"


class Dropout(Layer):
    """
    Dropout Layer for regularization.

    Randomly sets activations to zero during training.
    Uses "inverted dropout": surviving activations are scaled by 1/(1-rate)
    so we don't need to scale at test time.

    The cached mask is the binary keep-mask; backward multiplies by it
    without the 1/(1-rate) factor, which only scales the forward output.

    Args:
        rate: Fraction of activations to drop (default: 0.5)
    """

    name = 'dropout'

    def __init__(self, rate=0.5):
        super().__init__()
        if not 0.0 <= rate < 1.0:
            raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
        self.rate = rate

    def forward(self, x):
        """Apply dropout during training."""
        x = as_tensor(x).numpy()

        if self.training and self.rate > 0:
            # 1 = keep, 0 = drop
            self.cache['mask'] = (np.random.rand(*x.shape) > self.rate).astype(np.float64)
            output = x * self.cache['mask'] / (1 - self.rate)
        else:
            self.cache['mask'] = None
            output = x

        self._mark_forwarded()
        return Tensor(output)

    def backward(self, grad_output):
        """Route gradient through non-dropped positions only."""
        self._require_forward()
        grad_output = as_tensor(grad_output)
        mask = self.cache['mask']
        if mask is None:
            return grad_output.copy()

        grad = grad_output.numpy()
        if grad.shape != mask.shape:
            raise ValueError(f"Dropout gradient shape {grad.shape} does not match output {mask.shape}")
        return Tensor(grad * mask)

    def get_config(self):
        return {'rate': self.rate}

    def __repr__(self):
        return f"Dropout(rate={self.rate})"


class BatchNorm(Layer):
    """
    Batch Normalization for dense activations.

    Normalizes each feature (column) across the batch (rows).
    This stabilizes training and acts as a regularizer.

    Args:
        num_features: Number of features (columns)
        momentum: Weight of the batch statistics in the running averages (default: 0.1)
        epsilon: Small constant for numerical stability

    Forward pass:
        x_norm = (x - mean) / sqrt(var + eps)
        output = gamma * x_norm + beta

    During training: use batch statistics and update the running statistics
        running = (1 - momentum) * running + momentum * batch
    During inference: use running statistics, nothing is updated

    Learnable parameters:
        gamma (scale): initialized to 1
        beta (shift): initialized to 0
    """

    name = 'batch_norm'

    def __init__(self, num_features, momentum=0.1, epsilon=1e-5):
        super().__init__()

        self.num_features = num_features
        self.momentum = momentum
        self.epsilon = epsilon

        # Learnable parameters
        self.params['gamma'] = np.ones(num_features)
        self.params['beta'] = np.zeros(num_features)
        self._init_grads()

        # Running statistics for inference
        self.running_mean = np.zeros(num_features)
        self.running_var = np.ones(num_features)

    def forward(self, x):
        """
        Forward pass with batch normalization.

        Args:
            x: Tensor holding one (batch, num_features) matrix

        Returns:
            Normalized Tensor, same shape as input
        """
        x = as_matrix(x)
        if x.shape[1] != self.num_features:
            raise ValueError(f"BatchNorm expects {self.num_features} features, got {x.shape[1]}")

        gamma = self.params['gamma']
        beta = self.params['beta']

        if self.training:
            mean = np.mean(x, axis=0)
            var = np.var(x, axis=0)

            self.running_mean = (1 - self.momentum) * self.running_mean + self.momentum * mean
            self.running_var = (1 - self.momentum) * self.running_var + self.momentum * var
        else:
            mean = self.running_mean
            var = self.running_var

        std_inv = 1.0 / np.sqrt(var + self.epsilon)
        x_centered = x - mean
        x_norm = x_centered * std_inv

        # Cache for backward pass
        self.cache['x_centered'] = x_centered
        self.cache['x_norm'] = x_norm
        self.cache['std_inv'] = std_inv
        self.cache['training'] = self.training

        self._mark_forwarded()
        return Tensor(gamma * x_norm + beta)

    def backward(self, grad_output):
        """
        Backward pass through batch normalization.

        This is tricky because the normalization couples all samples in the
        batch: every input moves the mean and the variance.
        """
        self._require_forward()
        if not self.cache['training']:
            raise LayerStateError("BatchNorm.backward needs a training-mode forward pass")

        grad_output = as_matrix(grad_output)
        x_centered = self.cache['x_centered']
        x_norm = self.cache['x_norm']
        std_inv = self.cache['std_inv']
        gamma = self.params['gamma']

        if grad_output.shape != x_norm.shape:
            raise ValueError(f"BatchNorm gradient shape {grad_output.shape} does not match output {x_norm.shape}")

        batch_size = x_norm.shape[0]

        self.grads['gamma'][...] = np.sum(grad_output * x_norm, axis=0)
        self.grads['beta'][...] = np.sum(grad_output, axis=0)

        dx_norm = grad_output * gamma

        # Gradient w.r.t. variance
        dvar = np.sum(dx_norm * x_centered * -0.5 * std_inv ** 3, axis=0)

        # Gradient w.r.t. mean
        dmean = np.sum(dx_norm * -std_inv, axis=0) + dvar * np.mean(-2 * x_centered, axis=0)

        grad_input = dx_norm * std_inv + dvar * 2 * x_centered / batch_size + dmean / batch_size

        return Tensor(grad_input)

    def get_buffers(self):
        return {'running_mean': self.running_mean, 'running_var': self.running_var}

    def set_buffers(self, buffers):
        if 'running_mean' in buffers:
            self.running_mean = np.array(buffers['running_mean'], dtype=np.float64)
        if 'running_var' in buffers:
            self.running_var = np.array(buffers['running_var'], dtype=np.float64)

    def get_config(self):
        return {'num_features': self.num_features, 'momentum': self.momentum, 'epsilon': self.epsilon}

    def __repr__(self):
        return f"BatchNorm({self.num_features})"


class Activation(Layer):
    """
    Activation layer wrapper.

    Wraps activation functions as layers for use in sequential models.
    Works on any tensor shape, element-wise (softmax row-wise).
    """

    name = 'activation'

    def __init__(self, activation='relu', **kwargs):
        super().__init__()
        self.activation = get_activation(activation, **kwargs)

    def forward(self, x):
        """Apply activation function."""
        x = as_tensor(x).numpy()
        self._mark_forwarded()
        return Tensor(self.activation.forward(x))

    def backward(self, grad_output):
        """Multiply by activation derivative."""
        self._require_forward()
        return Tensor(self.activation.backward(as_tensor(grad_output).numpy()))

    def get_config(self):
        config = {'activation': self.activation.name}
        config.update(self.activation.get_config())
        return config

    def __repr__(self):
        return f"Activation({self.activation.name})"
