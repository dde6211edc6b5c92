"""
Console Logging
===============

Thin layer over the standard ``logging`` module for the whole library.

All modules log through children of the ``backprop`` logger. The process-wide
behaviour (debug output, quiet mode, errors only, warnings promoted to errors)
is set once at startup with :func:`configure`.

Example:
    >>> from backprop import console
    >>> console.configure(debug=True)
    >>> console.log("starting", level="debug")
"""

import logging
import sys

LOGGER_NAME = 'backprop'

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}

_FORMAT = '[%(levelname)s] %(name)s: %(message)s'


class LoggedWarningError(RuntimeError):
    """Raised by :func:`warn` when warnings are treated as errors."""


class ConsoleConfig:
    """Process-wide console flags. Only :func:`configure` writes them."""

    def __init__(self, debug=False, quiet=False, only_errors=False,
                 warnings_as_errors=False):
        self.debug = debug
        self.quiet = quiet
        self.only_errors = only_errors
        self.warnings_as_errors = warnings_as_errors

    @property
    def level(self):
        if self.quiet:
            return logging.CRITICAL + 1
        if self.only_errors:
            return logging.ERROR
        if self.debug:
            return logging.DEBUG
        return logging.INFO

    def __repr__(self):
        return (f"ConsoleConfig(debug={self.debug}, quiet={self.quiet}, "
                f"only_errors={self.only_errors}, "
                f"warnings_as_errors={self.warnings_as_errors})")


_config = ConsoleConfig()
_handler = None


def get_logger(name=None):
    """
    Get the package logger or one of its children.

    Args:
        name: Module name, e.g. ``__name__``. Names outside the package are
            nested under it.

    Returns:
        logging.Logger
    """
    if name is None or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if not name.startswith(LOGGER_NAME + '.'):
        name = f'{LOGGER_NAME}.{name}'
    return logging.getLogger(name)


def configure(debug=False, quiet=False, only_errors=False,
              warnings_as_errors=False, stream=None):
    """
    Configure console output for the process.

    Calling it again replaces the previous configuration; handlers are never
    stacked.

    Args:
        debug: Emit DEBUG messages
        quiet: Suppress every message, errors included
        only_errors: Emit ERROR messages only
        warnings_as_errors: Make :func:`warn` raise after logging
        stream: Output stream for the handler (default: stderr)

    Returns:
        The active ConsoleConfig
    """
    global _config, _handler

    _config = ConsoleConfig(debug=debug, quiet=quiet, only_errors=only_errors,
                            warnings_as_errors=warnings_as_errors)

    logger = get_logger()
    if _handler is not None:
        logger.removeHandler(_handler)

    _handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    _handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(_handler)
    logger.setLevel(_config.level)

    return _config


def get_config():
    """Return the active ConsoleConfig."""
    return _config


def log(message, level='info', logger=None):
    """Log ``message`` at a named severity ('debug', 'info', 'warning', 'error')."""
    level_lower = level.lower()
    if level_lower not in _LEVELS:
        raise ValueError(f"Unknown log level '{level}'. Available: {', '.join(_LEVELS)}")

    if level_lower == 'warning':
        warn(message, logger=logger)
        return

    (logger or get_logger()).log(_LEVELS[level_lower], message)


def warn(message, logger=None):
    """
    Log a warning.

    With ``warnings_as_errors`` the message is logged at ERROR level and
    LoggedWarningError is raised.
    """
    logger = logger or get_logger()
    if _config.warnings_as_errors:
        logger.error(message)
        raise LoggedWarningError(message)
    logger.warning(message)
