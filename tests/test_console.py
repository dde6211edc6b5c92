"""
Tests for Console Logging
=========================
"""

import io
import logging

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from backprop import console


@pytest.fixture(autouse=True)
def restore_console():
    yield
    console.configure()


def configured(**flags):
    stream = io.StringIO()
    console.configure(stream=stream, **flags)
    return stream


class TestConfigure:
    """Tests for console.configure."""

    def test_default_info(self):
        stream = configured()
        console.log('hello')
        console.log('hidden', level='debug')
        output = stream.getvalue()
        assert '[INFO] backprop: hello' in output
        assert 'hidden' not in output

    def test_debug(self):
        stream = configured(debug=True)
        console.log('details', level='debug')
        assert 'details' in stream.getvalue()

    def test_only_errors(self):
        stream = configured(only_errors=True)
        console.log('info message')
        console.warn('warning message')
        console.log('error message', level='error')
        output = stream.getvalue()
        assert 'info message' not in output
        assert 'warning message' not in output
        assert 'error message' in output

    def test_quiet(self):
        stream = configured(quiet=True)
        console.log('error message', level='error')
        assert stream.getvalue() == ''

    def test_reconfigure_does_not_stack_handlers(self):
        configured()
        stream = configured()
        console.log('once')
        assert stream.getvalue().count('once') == 1
        assert len(logging.getLogger('backprop').handlers) == 1

    def test_config_exposed(self):
        configured(debug=True, warnings_as_errors=True)
        config = console.get_config()
        assert config.debug and config.warnings_as_errors
        assert config.level == logging.DEBUG


class TestWarnings:
    """Tests for warn() and warnings-as-errors."""

    def test_warning_logged(self):
        stream = configured()
        console.warn('careful')
        assert '[WARNING] backprop: careful' in stream.getvalue()

    def test_warnings_as_errors(self):
        stream = configured(warnings_as_errors=True)
        with pytest.raises(console.LoggedWarningError):
            console.warn('careful')
        assert '[ERROR] backprop: careful' in stream.getvalue()

    def test_log_warning_level_routes_to_warn(self):
        configured(warnings_as_errors=True)
        with pytest.raises(console.LoggedWarningError):
            console.log('careful', level='warning')


class TestLoggers:
    """Tests for get_logger and log()."""

    def test_children_nested_under_package(self):
        assert console.get_logger().name == 'backprop'
        assert console.get_logger('backprop.model').name == 'backprop.model'
        assert console.get_logger('scripts').name == 'backprop.scripts'

    def test_module_loggers_reach_handler(self):
        stream = configured()
        console.get_logger('backprop.model').info('from module')
        assert '[INFO] backprop.model: from module' in stream.getvalue()

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            console.log('x', level='verbose')
