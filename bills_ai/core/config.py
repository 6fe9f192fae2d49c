"""Runtime settings for the analysis layer."""

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    AI_DEFAULT_BACKEND: str = "ollama"  # ollama|openai
    AI_SETTINGS_PATH: str = "data/ai_settings.json"

    # Local runtime (ollama)
    OLLAMA_BASE_URL: str = "http://127.0.0.1:11434"
    OLLAMA_MODEL: str = "gemma3:4b"
    OLLAMA_BIN: Optional[str] = None
    OLLAMA_SEARCH_DIRS: List[str] = ["/opt/homebrew/bin", "/usr/local/bin", "/usr/bin"]
    OLLAMA_HEALTH_TIMEOUT_S: float = 2.0
    OLLAMA_START_TIMEOUT_S: float = 60.0
    OLLAMA_POLL_INTERVAL_S: float = 1.0
    OLLAMA_PULL_TIMEOUT_S: float = 600.0
    OLLAMA_GENERATE_TIMEOUT_S: float = 120.0
    OLLAMA_TEMPERATURE: float = 0.1

    # Cloud vision (openai)
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_S: float = 60.0
    CLOUD_MAX_FILE_MB: int = 20

    # Characters of extracted text embedded into text-fallback prompts
    TEXT_EXCERPT_CHARS: int = 2000

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    global _settings_cache
    _settings_cache = None
