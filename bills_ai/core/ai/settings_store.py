"""Persistent key/value settings consumed by the manager.

The application owns the real store; this module defines the narrow
protocol the analysis layer needs plus in-memory and JSON-file versions.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

BACKEND_KEY = "ai_backend"
CREDENTIAL_KEY = "openai_key"


class SettingsStore(Protocol):
    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...


class CredentialRecord(BaseModel):
    """Stored cloud credential, plaintext or encrypted with the session key."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    encrypted: bool
    plaintext: Optional[str] = Field(None, alias="plainText")
    key: Optional[str] = None  # legacy plaintext field
    iv: Optional[str] = None
    cipher_text: Optional[str] = Field(None, alias="cipherText")

    @classmethod
    def parse(cls, raw: Any) -> Optional["CredentialRecord"]:
        """Parse the stored value (JSON text or mapping); ``None`` if unusable."""
        if not raw:
            return None
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
            return cls.model_validate(data)
        except (json.JSONDecodeError, ValidationError, TypeError):
            logger.warning("ai.settings.credential_unparsable")
            return None

    @property
    def plain_value(self) -> Optional[str]:
        return self.plaintext or self.key


class InMemorySettingsStore:
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileSettingsStore:
    """Settings persisted as one JSON object; writes go through a temp file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("ai.settings.file_corrupt", extra={"stage": str(self.path)})
            return {}
        return data if isinstance(data, dict) else {}

    async def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = self._load()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
