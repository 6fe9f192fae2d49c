import os

import pytest

from bills_ai.core.config import reset_settings

# List of environment variables that may be modified by tests
_ENV_VARS_TO_ISOLATE = [
    "AI_DEFAULT_BACKEND",
    "AI_SETTINGS_PATH",
    "OLLAMA_BASE_URL",
    "OLLAMA_MODEL",
    "OLLAMA_BIN",
    "OLLAMA_START_TIMEOUT_S",
    "OLLAMA_PULL_TIMEOUT_S",
    "OLLAMA_GENERATE_TIMEOUT_S",
    "OPENAI_BASE_URL",
    "OPENAI_MODEL",
    "CLOUD_MAX_FILE_MB",
]


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


@pytest.fixture(autouse=True)
def settings_isolation():
    """Drop the cached Settings so env changes in one test never leak."""
    reset_settings()
    try:
        yield
    finally:
        reset_settings()
