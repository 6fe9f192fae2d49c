"""Provider manager: backend selection, credential resolution and routing.

The selected backend is persisted and re-read on every call so a switch
applies to the next analysis without rebuilding providers. There is no
automatic failover between backends; switching is a user action.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Tuple

from pydantic import BaseModel

from bills_ai.core.config import get_settings
from bills_ai.utils.metrics import (
    ai_analysis_duration_seconds,
    ai_confidence_distribution,
    ai_errors_total,
    ai_requests_total,
    safe_inc,
    safe_observe,
)

from .base import (
    AnalysisProvider,
    AnalysisResult,
    Backend,
    DocumentType,
    DownloadProgress,
    ProviderState,
    ProviderStatus,
)
from .exceptions import AnalysisError, CredentialMissingError, UnknownBackendError
from .providers import OpenAIVisionProvider, create_providers
from .session_keys import SecretDecryptor
from .settings_store import BACKEND_KEY, CREDENTIAL_KEY, CredentialRecord, SettingsStore

logger = logging.getLogger(__name__)

_BACKEND_ALIASES = {
    "openai": Backend.OPENAI,
    "gpt": Backend.OPENAI,
    "cloud": Backend.OPENAI,
    "ollama": Backend.OLLAMA,
    "local": Backend.OLLAMA,
}


def normalize_backend(value: "str | Backend") -> Backend:
    """Map a backend id or alias (case-insensitive) onto ``Backend``."""
    if isinstance(value, Backend):
        return value
    key = str(value or "").strip().lower().replace("-", "_")
    try:
        return _BACKEND_ALIASES[key]
    except KeyError:
        raise UnknownBackendError(f"Unknown AI backend: {value}") from None


class ManagerStatus(BaseModel):
    backend: Backend
    local_status: ProviderState
    local_error: Optional[str] = None
    local_download: Optional[DownloadProgress] = None
    cloud_configured: bool
    current_provider: ProviderStatus


class ManagerConfig(BaseModel):
    backend: Backend
    openai_key: Optional[str] = None  # masked, never the real key


class ProviderManager:
    def __init__(
        self,
        settings_store: SettingsStore,
        decryptor: Optional[SecretDecryptor] = None,
        providers: Optional[Dict[Backend, AnalysisProvider]] = None,
        default_backend: "str | Backend | None" = None,
    ):
        self.settings_store = settings_store
        self.decryptor = decryptor
        self.providers: Dict[Backend, AnalysisProvider] = providers or create_providers()
        missing = set(Backend) - set(self.providers)
        if missing:
            raise ValueError(f"providers missing for: {sorted(b.value for b in missing)}")
        self.default_backend = normalize_backend(default_backend or get_settings().AI_DEFAULT_BACKEND)
        self.current_backend: Backend = self.default_backend

    @property
    def local(self) -> AnalysisProvider:
        return self.providers[Backend.OLLAMA]

    async def initialize(self) -> None:
        """Load the persisted backend and try to bring it up.

        Failures stay in the provider's status; they are retried lazily on
        the next analysis call.
        """
        self.current_backend = await self.get_backend()
        try:
            await self._resolve_provider()
        except AnalysisError as e:
            logger.warning(
                "ai.manager.initialize_deferred",
                extra={"backend": self.current_backend.value, "error_code": e.code.value},
            )
            return
        logger.info("ai.manager.initialized", extra={"backend": self.current_backend.value})

    # ---- routing ---------------------------------------------------------

    async def analyze_document(self, path: str, document_type: "str | DocumentType") -> AnalysisResult:
        doc_type = DocumentType(document_type)
        start = time.time()
        backend: Optional[Backend] = None
        try:
            backend, provider = await self._resolve_provider()
            result = await provider.analyze_document(path, doc_type)
        except AnalysisError as e:
            label = (backend or self.current_backend).value
            safe_inc(ai_errors_total, backend=label, code=e.code.value)
            safe_inc(ai_requests_total, backend=label, status="error")
            raise
        safe_inc(ai_requests_total, backend=backend.value, status="success")
        safe_observe(ai_analysis_duration_seconds, time.time() - start, backend=backend.value)
        safe_observe(ai_confidence_distribution, result.confidence, backend=backend.value)
        logger.info(
            "ai.manager.analyze",
            extra={
                "backend": backend.value,
                "document_type": doc_type.value,
                "method": result.method,
                "confidence": result.confidence,
                "latency_ms": int((time.time() - start) * 1000),
            },
        )
        return result

    async def extract_text(self, path: str) -> str:
        _, provider = await self._resolve_provider()
        return await provider.extract_text(path)

    async def _resolve_provider(self) -> Tuple[Backend, AnalysisProvider]:
        """Current backend's provider, credentialed and initialized."""
        backend = await self.get_backend()
        self.current_backend = backend
        provider = self.providers[backend]
        if backend == Backend.OPENAI:
            api_key = await self.get_openai_key()
            if not api_key:
                raise CredentialMissingError()
            if isinstance(provider, OpenAIVisionProvider):
                provider.set_api_key(api_key)
        if not provider.is_ready():
            await provider.initialize()
        return backend, provider

    # ---- selection / credentials ----------------------------------------

    async def get_backend(self) -> Backend:
        try:
            raw = await self.settings_store.get(BACKEND_KEY)
        except Exception:
            logger.warning("ai.manager.backend_read_failed", exc_info=True)
            return self.default_backend
        if not raw:
            return self.default_backend
        try:
            return normalize_backend(raw)
        except UnknownBackendError:
            return self.default_backend

    async def set_backend(self, backend: "str | Backend") -> Backend:
        selected = normalize_backend(backend)
        await self.settings_store.set(BACKEND_KEY, selected.value)
        self.current_backend = selected
        logger.info("ai.manager.backend_switched", extra={"backend": selected.value})
        return selected

    async def get_openai_key(self) -> Optional[str]:
        """Resolve the stored cloud credential; a locked session yields ``None``."""
        try:
            raw = await self.settings_store.get(CREDENTIAL_KEY)
        except Exception:
            logger.warning("ai.manager.credential_read_failed", exc_info=True)
            return None
        record = CredentialRecord.parse(raw)
        if record is None:
            return None
        if not record.encrypted:
            return record.plain_value
        if not record.iv or not record.cipher_text or self.decryptor is None:
            return None
        if not self.decryptor.has_session_key():
            return None
        try:
            return self.decryptor.decrypt_secret(record.iv, record.cipher_text)
        except Exception:
            logger.warning("ai.manager.credential_decrypt_failed", extra={"stage": "credential"})
            return None

    async def get_config(self) -> ManagerConfig:
        key = await self.get_openai_key()
        return ManagerConfig(backend=await self.get_backend(), openai_key="***" if key else None)

    # ---- status / lifecycle ---------------------------------------------

    async def get_status(self) -> ManagerStatus:
        backend = await self.get_backend()
        local = self.local.get_status()
        if local.loading:
            local_state = ProviderState.starting
        elif local.status in (ProviderState.running, ProviderState.error):
            local_state = local.status
        else:
            local_state = ProviderState.stopped
        return ManagerStatus(
            backend=backend,
            local_status=local_state,
            local_error=local.error,
            local_download=local.download,
            cloud_configured=(await self.get_openai_key()) is not None,
            current_provider=self.providers[backend].get_status(),
        )

    async def start_local(self) -> ProviderState:
        """Explicit start: server up and model loaded, not just the process."""
        await self.local.initialize()
        await self.local.warmup()
        return (await self.get_status()).local_status

    async def stop_local(self) -> ProviderState:
        await self.local.cleanup()
        return (await self.get_status()).local_status

    async def cleanup(self) -> None:
        logger.info("ai.manager.cleanup")
        for backend, provider in self.providers.items():
            try:
                await provider.cleanup()
            except Exception:
                logger.exception("ai.manager.cleanup_failed", extra={"backend": backend.value})
