"""Unit tests for structured logging setup."""

from __future__ import annotations

import json
import logging

import structlog

from ecan.config import LoggingConfig
from ecan.telemetry import setup_logging


def test_json_logging_carries_instance_id(capsys):
    setup_logging(LoggingConfig(level="DEBUG", format="json"), instance_id="ecan-test")
    try:
        structlog.get_logger("ecan.tests").info("attention_allocated", kernels=3)
        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "attention_allocated"
        assert record["kernels"] == 3
        assert record["instance_id"] == "ecan-test"
        assert record["level"] == "info"
        assert logging.getLogger().level == logging.DEBUG
    finally:
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()


def test_unknown_level_falls_back_to_info():
    setup_logging(LoggingConfig(level="chatty"))
    try:
        assert logging.getLogger().level == logging.INFO
    finally:
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()


def test_per_logger_levels():
    setup_logging(LoggingConfig(levels={"ecan.systems.gate": "error", "ecan.noisy": "bogus"}))
    try:
        assert logging.getLogger("ecan.systems.gate").level == logging.ERROR
        assert logging.getLogger("ecan.noisy").level == logging.WARNING
    finally:
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()
        logging.getLogger("ecan.systems.gate").setLevel(logging.NOTSET)
        logging.getLogger("ecan.noisy").setLevel(logging.NOTSET)
