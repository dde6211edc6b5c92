"""
Training Callbacks
==================

Hooks the Model calls once at the end of every training epoch.

- EarlyStopping: stop when the loss has not improved for a number of epochs
- PrintLoss: log the epoch loss at a fixed interval
- SaveModel: checkpoint the model at a fixed interval

Epochs are numbered from 1.
"""

import numpy as np

from .console import get_logger

logger = get_logger(__name__)


class Callback:
    """Base class for callbacks."""

    name = 'callback'

    def on_train_begin(self):
        """Called by Model.train before the first epoch."""

    def on_epoch_end(self, epoch, loss):
        """Called by Model.train after every epoch."""

    def should_stop(self):
        """True when training should end after the current epoch."""
        return False

    def get_config(self):
        return {}

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class EarlyStopping(Callback):
    """
    Stop training once the loss stops improving.

    Args:
        patience: Number of consecutive epochs without a strictly lower
            loss after which training stops (default: 10)
    """

    name = 'early_stopping'

    def __init__(self, patience=10):
        if patience < 1:
            raise ValueError(f"patience must be at least 1, got {patience}")
        self.patience = patience
        self.on_train_begin()

    def on_train_begin(self):
        self.best_loss = np.inf
        self.wait = 0
        self.stopped_epoch = None

    def on_epoch_end(self, epoch, loss):
        if loss < self.best_loss:
            self.best_loss = loss
            self.wait = 0
            return

        self.wait += 1
        if self.wait >= self.patience and self.stopped_epoch is None:
            self.stopped_epoch = epoch
            logger.info(f"Early stopping at epoch {epoch}: no improvement in {self.patience} epochs "
                        f"(best loss {self.best_loss:.6f})")

    def should_stop(self):
        return self.stopped_epoch is not None

    def get_config(self):
        return {'patience': self.patience}

    def __repr__(self):
        return f"EarlyStopping(patience={self.patience})"


class PrintLoss(Callback):
    """
    Log the training loss every ``print_interval`` epochs.

    Args:
        print_interval: Epoch interval between messages (default: 1)
    """

    name = 'print_loss'

    def __init__(self, print_interval=1):
        if print_interval < 1:
            raise ValueError(f"print_interval must be at least 1, got {print_interval}")
        self.print_interval = print_interval

    def on_epoch_end(self, epoch, loss):
        if epoch % self.print_interval == 0:
            logger.info(f"Epoch: {epoch} Loss: {loss:.6f}")

    def get_config(self):
        return {'print_interval': self.print_interval}

    def __repr__(self):
        return f"PrintLoss(print_interval={self.print_interval})"


class SaveModel(Callback):
    """
    Save the model every ``save_interval`` epochs.

    Args:
        model: Model to checkpoint
        save_path: Destination file, overwritten at every checkpoint
        save_interval: Epoch interval between saves (default: 5)
    """

    name = 'save_model'
    needs_model = True

    def __init__(self, model, save_path, save_interval=5):
        if save_interval < 1:
            raise ValueError(f"save_interval must be at least 1, got {save_interval}")
        self.model = model
        self.save_path = save_path
        self.save_interval = save_interval

    def on_epoch_end(self, epoch, loss):
        if epoch % self.save_interval == 0:
            self.model.save(self.save_path)
            logger.debug(f"Checkpoint written at epoch {epoch} to {self.save_path}")

    def get_config(self):
        return {'save_path': str(self.save_path), 'save_interval': self.save_interval}

    def __repr__(self):
        return f"SaveModel(save_path={self.save_path!r}, save_interval={self.save_interval})"


# ============================================================================
# Callback Registry
# ============================================================================

CALLBACKS = {
    'early_stopping': EarlyStopping,
    'print_loss': PrintLoss,
    'save_model': SaveModel,
}


def get_callback(name, **config):
    """
    Build a callback by name.

    Args:
        name: Registered callback name, or a Callback instance
        **config: Constructor arguments (SaveModel also needs ``model``)

    Returns:
        Callback instance
    """
    if isinstance(name, Callback):
        return name

    name_lower = name.lower()
    if name_lower not in CALLBACKS:
        available = ', '.join(CALLBACKS.keys())
        raise ValueError(f"Unknown callback '{name}'. Available: {available}")

    return CALLBACKS[name_lower](**config)
