"""
Model - Sequential Container and Training Loop
==============================================

This is the main class that ties everything together:
- Layer stacking
- Forward pass
- Backward pass (backpropagation, layer by layer in reverse)
- Optimization step
- Training / evaluation loops with callbacks
- Model saving/loading

Example:
    >>> from backprop import Model, DenseLayer, CrossEntropyLoss, Adam
    >>> model = Model()
    >>> model.add(DenseLayer(4, 16, activation='relu'))
    >>> model.add(DenseLayer(16, 3))
    >>> history = model.train(X_batches, y_batches, epochs=20,
    ...                       loss_function=CrossEntropyLoss(), optimizer=Adam(0.01))
    >>> loss, accuracy = model.test(X_test_batches, y_test_batches)
"""

import json
import os
import zipfile

import numpy as np
from tqdm import tqdm

from .activations import get_activation
from .callbacks import CALLBACKS, Callback
from .console import get_logger, warn
from .exceptions import ModelFormatError
from .layers import (Activation, AveragePooling2D, BatchNorm, Conv2D, DenseLayer,
                     Dropout, FlattenLayer, MaxPooling2D)
from .losses import get_loss
from .optimizers import get_optimizer
from .recurrent import GRULayer, RNNLayer
from .tensor import Tensor, as_tensor, as_matrix

logger = get_logger(__name__)

MAGIC = 'BACKPROP-MODEL'
FORMAT_VERSION = 1

# ============================================================================
# Layer Registry
# ============================================================================

LAYERS = {
    cls.name: cls
    for cls in (DenseLayer, Conv2D, MaxPooling2D, AveragePooling2D, FlattenLayer,
                Dropout, BatchNorm, Activation, RNNLayer, GRULayer)
}


def _build_layer(layer_type, config):
    """Instantiate a registered layer from its saved config."""
    if layer_type not in LAYERS:
        raise ModelFormatError(f"Unknown layer type '{layer_type}'")

    config = dict(config)
    try:
        # Activation settings such as LeakyReLU's alpha travel beside the name
        for key in ('activation', 'gate_activation'):
            if f'{key}_config' in config:
                config[key] = get_activation(config[key], **config.pop(f'{key}_config'))
        return LAYERS[layer_type](**config)
    except (TypeError, ValueError) as e:
        raise ModelFormatError(f"Cannot rebuild '{layer_type}' layer: {e}") from e


def _pairs(data, labels):
    """
    Pair inputs with targets.

    A Tensor is a pre-batched dataset (one batch per channel); any other
    sequence holds one sample or batch per element.
    """
    if isinstance(data, Tensor) or isinstance(labels, Tensor):
        data, labels = as_tensor(data), as_tensor(labels)
        if data.depth != labels.depth:
            raise ValueError(f"Data has {data.depth} batches but labels have {labels.depth}")
        return [(data.slice(i), labels.slice(i)) for i in range(data.depth)]

    if len(data) != len(labels):
        raise ValueError(f"Got {len(data)} inputs but {len(labels)} targets")
    return list(zip(data, labels))


def _count_correct(predictions, targets):
    """Rows whose argmax matches the target's argmax, and the row count."""
    predictions = as_matrix(predictions)
    targets = as_matrix(targets)
    correct = np.sum(np.argmax(predictions, axis=1) == np.argmax(targets, axis=1))
    return int(correct), predictions.shape[0]


class Model:
    """
    Sequential neural network.

    Owns an ordered list of layers; references one optimizer and one loss.

    Args:
        layers: Optional initial list of layers
        optimizer: Optimizer used by optimize() and train()
        loss_function: Loss used by backward() and train()
    """

    def __init__(self, layers=None, optimizer=None, loss_function=None):
        self.layers = []
        self.callbacks = []
        self.optimizer = get_optimizer(optimizer) if optimizer is not None else None
        self.loss_function = get_loss(loss_function) if loss_function is not None else None
        self.training = True

        self.history = self._empty_history()

        for layer in layers or []:
            self.add(layer)

    @staticmethod
    def _empty_history():
        return {'loss': [], 'accuracy': [], 'val_loss': [], 'val_accuracy': []}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add(self, layer):
        """Append a layer."""
        layer.set_training(self.training)
        self.layers.append(layer)
        return self

    def add_callback(self, callback):
        if not isinstance(callback, Callback):
            raise ValueError(f"Expected a Callback, got {type(callback).__name__}")
        self.callbacks.append(callback)
        return self

    def get_layer(self, index):
        if index < 0 or index >= len(self.layers):
            raise IndexError(f"Layer index {index} out of range for {len(self.layers)} layers")
        return self.layers[index]

    def num_layers(self):
        return len(self.layers)

    def set_optimizer(self, optimizer):
        self.optimizer = get_optimizer(optimizer)

    def set_loss_function(self, loss_function):
        self.loss_function = get_loss(loss_function)

    def set_train(self):
        """Training mode: dropout active, batch statistics in BatchNorm."""
        self.training = True
        for layer in self.layers:
            layer.set_training(True)

    def set_inference(self):
        """Inference mode: dropout off, running statistics in BatchNorm."""
        self.training = False
        for layer in self.layers:
            layer.set_training(False)

    def reset_states(self):
        """Zero the hidden state of every recurrent layer."""
        for layer in self.layers:
            if hasattr(layer, 'reset_state'):
                layer.reset_state()

    # ------------------------------------------------------------------
    # Forward / backward / update
    # ------------------------------------------------------------------

    def forward(self, x):
        """
        Forward pass through every layer in order.

        Args:
            x: Tensor (or array) accepted by the first layer

        Returns:
            Output Tensor of the last layer
        """
        output = as_tensor(x)
        for layer in self.layers:
            output = layer.forward(output)
        return output

    def backward(self, grad=None):
        """
        Backward pass through every layer in reverse order.

        Args:
            grad: Gradient w.r.t. the model output. Defaults to the gradient
                of the loss computed by the last loss forward.

        Returns:
            Gradient w.r.t. the model input
        """
        if grad is None:
            if self.loss_function is None:
                logger.error("backward() without a gradient needs a loss function")
                raise RuntimeError("No loss function set")
            grad = self.loss_function.backward()

        grad = as_tensor(grad)
        for layer in reversed(self.layers):
            grad = layer.backward(grad)
        return grad

    def optimize(self):
        """Apply the optimizer to every layer that has weights."""
        if self.optimizer is None:
            logger.error("optimize() needs an optimizer")
            raise RuntimeError("No optimizer set")

        for layer in self.layers:
            if layer.has_weights():
                self.optimizer.optimize(layer)

    # ------------------------------------------------------------------
    # Training / evaluation
    # ------------------------------------------------------------------

    def train(self, data, labels, epochs, loss_function=None, optimizer=None,
              callbacks=None, validation_data=None, verbose=False):
        """
        Train the model.

        Args:
            data: Pre-batched Tensor (one batch per channel) or a sequence of
                Tensors/arrays, one sample or batch each
            labels: Targets, in the same form as data
            epochs: Number of training epochs
            loss_function: Loss to use (default: the one already set)
            optimizer: Optimizer to use (default: the one already set)
            callbacks: Extra callbacks for this call, run after the model's own
            validation_data: Optional (data, labels) evaluated after each epoch
            verbose: Show a progress bar and log an epoch summary

        Returns:
            Training history dictionary
        """
        if loss_function is not None:
            self.set_loss_function(loss_function)
        if optimizer is not None:
            self.set_optimizer(optimizer)

        if self.loss_function is None:
            logger.error("train() needs a loss function")
            raise RuntimeError("No loss function set")
        if self.optimizer is None:
            logger.error("train() needs an optimizer")
            raise RuntimeError("No optimizer set")

        pairs = _pairs(data, labels)
        if not pairs:
            raise ValueError("No training data")

        active_callbacks = self.callbacks + list(callbacks or [])

        # Reset history
        self.history = self._empty_history()
        self.set_train()

        for callback in active_callbacks:
            callback.on_train_begin()

        for epoch in range(1, epochs + 1):
            epoch_loss = 0.0
            epoch_correct = 0
            n_rows = 0

            # Progress bar for batches
            if verbose:
                pbar = tqdm(pairs, total=len(pairs), desc=f"Epoch {epoch}/{epochs}")
            else:
                pbar = pairs

            for x_batch, y_batch in pbar:
                # Forward pass
                predictions = self.forward(x_batch)

                # Compute loss
                loss = self.loss_function.forward(predictions, y_batch)
                epoch_loss += loss

                # Track accuracy
                correct, rows = _count_correct(predictions, y_batch)
                epoch_correct += correct
                n_rows += rows

                # Backward pass
                self.backward()

                # Update weights
                self.optimize()

                if verbose:
                    pbar.set_postfix({'loss': f'{loss:.4f}'})

            # Epoch metrics
            avg_loss = epoch_loss / len(pairs)
            if not np.isfinite(avg_loss):
                warn(f"Non-finite training loss {avg_loss} at epoch {epoch}", logger=logger)
            self.history['loss'].append(avg_loss)
            self.history['accuracy'].append(epoch_correct / n_rows)

            # Validation
            if validation_data is not None:
                val_loss, val_accuracy = self.test(*validation_data)
                self.history['val_loss'].append(val_loss)
                self.history['val_accuracy'].append(val_accuracy)
                self.set_train()

            if verbose:
                msg = f"Epoch {epoch}/{epochs} - Loss: {avg_loss:.4f} - Acc: {self.history['accuracy'][-1]:.4f}"
                if validation_data is not None:
                    msg += f" - Val Loss: {val_loss:.4f} - Val Acc: {val_accuracy:.4f}"
                logger.info(msg)

            for callback in active_callbacks:
                callback.on_epoch_end(epoch, avg_loss)

            if any(callback.should_stop() for callback in active_callbacks):
                logger.info(f"Training stopped by callback after epoch {epoch}")
                break

        return self.history

    def test(self, data, labels, loss_function=None):
        """
        Evaluate the model in inference mode.

        Args:
            data: Inputs, in any form train() accepts
            labels: Targets
            loss_function: Loss to report (default: the one already set)

        Returns:
            Tuple of (mean loss, accuracy)
        """
        loss_function = get_loss(loss_function) if loss_function is not None else self.loss_function
        if loss_function is None:
            logger.error("test() needs a loss function")
            raise RuntimeError("No loss function set")

        pairs = _pairs(data, labels)
        if not pairs:
            raise ValueError("No test data")

        self.set_inference()

        total_loss = 0.0
        total_correct = 0
        n_rows = 0
        for x_batch, y_batch in pairs:
            predictions = self.forward(x_batch)
            total_loss += loss_function.forward(predictions, y_batch)
            correct, rows = _count_correct(predictions, y_batch)
            total_correct += correct
            n_rows += rows

        loss = total_loss / len(pairs)
        accuracy = total_correct / n_rows
        logger.info(f"Test loss: {loss:.6f} - Test accuracy: {accuracy:.4f}")
        return loss, accuracy

    def predict(self, x):
        """
        Inference-mode forward pass. The previous mode is restored afterwards.

        Args:
            x: One input Tensor/array

        Returns:
            Output Tensor
        """
        was_training = self.training
        self.set_inference()
        try:
            return self.forward(x)
        finally:
            if was_training:
                self.set_train()

    def summary(self):
        """Log model summary and return the trainable parameter count."""
        logger.info("=" * 70)
        logger.info("Model Summary")
        logger.info("=" * 70)

        total_params = 0
        for i, layer in enumerate(self.layers):
            n_params = layer.num_params()
            total_params += n_params
            logger.info(f"{i:3d}. {str(layer):<45} Params: {n_params:,}")

        logger.info("-" * 70)
        logger.info(f"Total trainable parameters: {total_params:,}")
        logger.info("=" * 70)

        return total_params

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def get_config(self):
        """Architecture description: layer, optimizer, loss and callback configs."""
        def describe(component):
            if component is None:
                return None
            return {'type': component.name, 'config': component.get_config()}

        return {
            'layers': [describe(layer) for layer in self.layers],
            'optimizer': describe(self.optimizer),
            'loss': describe(self.loss_function),
            'callbacks': [describe(callback) for callback in self.callbacks],
        }

    def save(self, filepath):
        """
        Save architecture and weights to a single .npz file.

        Args:
            filepath: Destination path, written as given
        """
        arrays = {
            'magic': np.array(MAGIC),
            'version': np.array(FORMAT_VERSION),
            'architecture': np.array(json.dumps(self.get_config())),
        }

        for i, layer in enumerate(self.layers):
            for name, param in layer.params.items():
                arrays[f'layer_{i}_{name}'] = param
            # Non-trainable state (running statistics, hidden state)
            for name, buffer in layer.get_buffers().items():
                arrays[f'layer_{i}_buffer_{name}'] = buffer

        try:
            with open(filepath, 'wb') as f:
                np.savez(f, **arrays)
        except OSError as e:
            logger.error(f"Could not save model to {filepath}: {e}")
            raise

        logger.info(f"Model saved to {filepath}")

    @staticmethod
    def _read_archive(filepath):
        """Load and validate a saved archive into a plain dict of arrays."""
        if not os.path.exists(filepath):
            logger.error(f"Model file not found: {filepath}")
            raise FileNotFoundError(filepath)

        try:
            archive = np.load(filepath, allow_pickle=False)
        except (ValueError, OSError, zipfile.BadZipFile) as e:
            raise ModelFormatError(f"{filepath} is not a saved model: {e}") from e

        # A bare .npy file loads as an array, not an archive
        if not hasattr(archive, 'files'):
            raise ModelFormatError(f"{filepath} is not a saved model archive")
        with archive:
            data = {key: archive[key] for key in archive.files}

        if 'magic' not in data or str(data['magic']) != MAGIC:
            raise ModelFormatError(f"{filepath} is not a saved model (bad magic)")
        version = int(data['version']) if 'version' in data else None
        if version != FORMAT_VERSION:
            raise ModelFormatError(f"Unsupported model format version {version} (expected {FORMAT_VERSION})")

        return data

    def _assign_weights(self, data, filepath):
        for i, layer in enumerate(self.layers):
            for name, param in layer.params.items():
                key = f'layer_{i}_{name}'
                if key not in data:
                    raise ModelFormatError(f"{filepath} has no parameter {key}")
                if data[key].shape != param.shape:
                    raise ModelFormatError(f"{key}: saved shape {data[key].shape} does not match {param.shape}")
                param[...] = data[key]

            buffers = {}
            for name in layer.get_buffers():
                key = f'layer_{i}_buffer_{name}'
                if key in data:
                    buffers[name] = data[key]
            layer.set_buffers(buffers)

    def load_weights(self, filepath):
        """
        Load parameters into this model, which must have the saved architecture.

        Args:
            filepath: Path to a file written by save()
        """
        data = self._read_archive(filepath)
        saved_layers = json.loads(str(data['architecture']))['layers']

        if len(saved_layers) != len(self.layers):
            raise ModelFormatError(f"{filepath} holds {len(saved_layers)} layers, model has {len(self.layers)}")
        for i, (saved, layer) in enumerate(zip(saved_layers, self.layers)):
            if saved['type'] != layer.name:
                raise ModelFormatError(f"Layer {i}: saved '{saved['type']}' but model has '{layer.name}'")

        self._assign_weights(data, filepath)
        logger.info(f"Weights loaded from {filepath}")

    @classmethod
    def load(cls, filepath):
        """
        Rebuild a complete model (layers, weights, optimizer, loss, callbacks).

        Args:
            filepath: Path to a file written by save()

        Returns:
            Model
        """
        data = cls._read_archive(filepath)
        try:
            architecture = json.loads(str(data['architecture']))
        except (KeyError, json.JSONDecodeError) as e:
            raise ModelFormatError(f"{filepath} has no readable architecture: {e}") from e

        model = cls()
        for entry in architecture['layers']:
            model.add(_build_layer(entry['type'], entry['config']))

        try:
            if architecture.get('optimizer'):
                entry = architecture['optimizer']
                model.optimizer = get_optimizer(entry['type'], **entry['config'])
            if architecture.get('loss'):
                entry = architecture['loss']
                model.loss_function = get_loss(entry['type'], **entry['config'])
        except ValueError as e:
            raise ModelFormatError(str(e)) from e

        for entry in architecture.get('callbacks', []):
            if entry['type'] not in CALLBACKS:
                raise ModelFormatError(f"Unknown callback type '{entry['type']}'")
            callback_cls = CALLBACKS[entry['type']]
            config = dict(entry['config'])
            if getattr(callback_cls, 'needs_model', False):
                config['model'] = model
            model.add_callback(callback_cls(**config))

        model._assign_weights(data, filepath)
        logger.info(f"Model loaded from {filepath}")
        return model

    def __repr__(self):
        return f"Model(layers={len(self.layers)})"
