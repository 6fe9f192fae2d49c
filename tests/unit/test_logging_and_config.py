"""Tests for the JSON log formatter and environment-driven settings."""

from __future__ import annotations

import json
import logging
import sys

from bills_ai.core.config import get_settings, reset_settings
from bills_ai.utils.logging import JsonFormatter, setup_logging


def _record(msg="ai.ollama.analyze", exc_info=None, **extra):
    record = logging.LogRecord(
        name="bills_ai.test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_basic_format(self):
        data = json.loads(JsonFormatter().format(_record()))
        assert data == {"level": "INFO", "message": "ai.ollama.analyze", "logger": "bills_ai.test"}

    def test_structured_extras(self):
        record = _record(backend="ollama", method="ollama_image", confidence=0.8, unrelated="dropped")
        data = json.loads(JsonFormatter().format(record))
        assert data["backend"] == "ollama"
        assert data["method"] == "ollama_image"
        assert data["confidence"] == 0.8
        assert "unrelated" not in data

    def test_exception_info(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(exc_info=sys.exc_info())
        data = json.loads(JsonFormatter().format(record))
        assert "ValueError: boom" in data["exc_info"]


def test_setup_logging_installs_json_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("debug")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)


class TestSettings:
    def test_defaults(self):
        settings = get_settings()
        assert settings.OLLAMA_MODEL == "gemma3:4b"
        assert settings.OLLAMA_BASE_URL == "http://127.0.0.1:11434"
        assert settings.OLLAMA_START_TIMEOUT_S == 60.0
        assert settings.OLLAMA_PULL_TIMEOUT_S == 600.0
        assert settings.CLOUD_MAX_FILE_MB == 20

    def test_env_override_and_cache(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_MODEL", "gemma3:12b")
        monkeypatch.setenv("CLOUD_MAX_FILE_MB", "5")
        reset_settings()
        settings = get_settings()
        assert settings.OLLAMA_MODEL == "gemma3:12b"
        assert settings.CLOUD_MAX_FILE_MB == 5
        assert get_settings() is settings
