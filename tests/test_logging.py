"""
Tests for the logging module.

Tests verify:
- configure_logging installs a structlog configuration once
- force=True reconfigures
"""

import logging

import pytest
import structlog

import mqtt_exec.logging as mqtt_logging
from mqtt_exec.logging import configure_logging, get_logger, is_configured


@pytest.fixture(autouse=True)
def reset_structlog():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    structlog.reset_defaults()
    mqtt_logging._configured = False
    yield
    structlog.reset_defaults()
    mqtt_logging._configured = False
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_not_configured_initially(self):
        assert is_configured() is False

    def test_configures_structlog(self):
        configure_logging(level="DEBUG", json_format=True)

        assert is_configured() is True
        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.processors.JSONRenderer)

    def test_console_renderer(self):
        configure_logging(json_format=False)

        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.dev.ConsoleRenderer)

    def test_second_call_is_noop(self):
        configure_logging(json_format=True)
        configure_logging(json_format=False)

        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.processors.JSONRenderer)

    def test_force_reconfigures(self):
        configure_logging(json_format=True)
        configure_logging(json_format=False, force=True)

        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.dev.ConsoleRenderer)

    def test_stdlib_level_follows(self):
        configure_logging(level="WARNING", json_format=True)
        assert logging.getLogger().level == logging.WARNING


class TestGetLogger:
    def test_returns_structlog_logger(self):
        log = get_logger("mqtt_exec.test")
        assert hasattr(log, "info")
        assert hasattr(log, "bind")
