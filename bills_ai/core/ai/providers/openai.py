"""OpenAI Vision provider.

Stateless wrapper issuing one structured-output chat completion per
document. The API key is passed explicitly into each request; nothing
process-wide is touched, so concurrent calls from other backends never see
this provider's credential.

API Documentation: https://platform.openai.com/docs/guides/structured-outputs
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError

from bills_ai.core.config import get_settings
from bills_ai.core.errors import ErrorCode

from ..base import (
    AnalysisProvider,
    AnalysisResult,
    Backend,
    DocumentType,
    ProviderState,
    ProviderStatus,
)
from ..exceptions import (
    AnalysisError,
    CredentialMissingError,
    DocumentNotAccessibleError,
    FileTooLargeError,
    GenerationTimeoutError,
    ProviderRequestError,
    TextExtractionUnsupportedError,
)
from ..prompts import clean_fields, cloud_output_schema, cloud_prompt

logger = logging.getLogger(__name__)

METHOD_VISION = "openai_vision"
CLOUD_CONFIDENCE = 0.9

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".webp": "image/webp",
}


class OpenAIVisionProvider(AnalysisProvider):
    """Cloud backend; ready as soon as it holds a credential."""

    name = Backend.OPENAI

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_file_mb: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: Credential; usually injected later by the manager
            base_url: API base URL (can be overridden for compatible gateways)
            model: Model name supporting image input and structured outputs
            timeout_seconds: Request timeout
            max_file_mb: Attachment size ceiling
            transport: Optional httpx transport (tests)
        """
        settings = get_settings()
        self._api_key: Optional[str] = api_key
        self._initialized = api_key is not None
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.model = model or settings.OPENAI_MODEL
        self.timeout_seconds = timeout_seconds or settings.OPENAI_TIMEOUT_S
        self.max_file_bytes = (max_file_mb or settings.CLOUD_MAX_FILE_MB) * 1024 * 1024
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def set_api_key(self, api_key: Optional[str]) -> None:
        self._api_key = api_key or None
        self._initialized = self._api_key is not None

    @property
    def has_credential(self) -> bool:
        return self._api_key is not None

    async def initialize(self) -> None:
        if not self._api_key:
            raise CredentialMissingError("OpenAI API key is required for initialization")
        self._initialized = True
        logger.info("ai.openai.initialized", extra={"backend": self.name.value})

    def is_ready(self) -> bool:
        return self._initialized and self._api_key is not None

    def get_status(self) -> ProviderStatus:
        if self.is_ready():
            return ProviderStatus(status=ProviderState.running, initialized=True, loading=False)
        return ProviderStatus(status=ProviderState.stopped, initialized=False, loading=False)

    async def analyze_document(self, path: str, document_type: DocumentType) -> AnalysisResult:
        api_key = self._api_key
        if not api_key:
            raise CredentialMissingError()
        start = time.time()
        try:
            data_url, mime_type = await self._load_inline(path)
            payload = self._build_payload(data_url, mime_type, Path(path).name, document_type)
            content = await self._complete(payload, api_key)
            fields = self._parse_fields(content, document_type)
        except AnalysisError as e:
            logger.error(
                "ai.openai.analyze_failed",
                extra={"backend": self.name.value, "error_code": e.code.value, "stage": e.stage},
            )
            raise
        logger.info(
            "ai.openai.analyze",
            extra={
                "backend": self.name.value,
                "document_type": document_type.value,
                "method": METHOD_VISION,
                "fields_count": len(fields),
                "latency_ms": int((time.time() - start) * 1000),
            },
        )
        return AnalysisResult(
            fields=fields,
            text="",
            confidence=CLOUD_CONFIDENCE,
            backend=self.name,
            method=METHOD_VISION,
        )

    async def extract_text(self, path: str) -> str:
        raise TextExtractionUnsupportedError(
            "Text extraction not supported by OpenAI provider - use analyze_document instead",
            provider=self.name.value,
        )

    async def cleanup(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    # ---- internals -------------------------------------------------------

    async def _load_inline(self, path: str) -> Tuple[str, str]:
        """Size-check then base64 the file; the size check never reads the body."""
        p = Path(path)
        try:
            size = p.stat().st_size
        except OSError as e:
            raise DocumentNotAccessibleError(
                f"Document not accessible: {path}", provider=self.name.value, stage="read"
            ) from e
        if size > self.max_file_bytes:
            limit_mb = self.max_file_bytes // (1024 * 1024)
            raise FileTooLargeError(
                f"File is too large (max {limit_mb}MB)", provider=self.name.value, stage="read"
            )
        mime_type = MIME_TYPES.get(p.suffix.lower(), "application/octet-stream")
        try:
            raw = await asyncio.to_thread(p.read_bytes)
        except OSError as e:
            raise DocumentNotAccessibleError(
                f"Document not accessible: {path}", provider=self.name.value, stage="read"
            ) from e
        encoded = base64.b64encode(raw).decode("ascii")
        return f"data:{mime_type};base64,{encoded}", mime_type

    def _build_payload(
        self, data_url: str, mime_type: str, filename: str, document_type: DocumentType
    ) -> Dict[str, Any]:
        if mime_type.startswith("image/"):
            attachment: Dict[str, Any] = {"type": "image_url", "image_url": {"url": data_url}}
        else:
            attachment = {"type": "file", "file": {"filename": filename, "file_data": data_url}}
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [{"type": "text", "text": cloud_prompt(document_type)}, attachment],
                }
            ],
            "temperature": 0.1,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": f"{document_type.value}_fields",
                    "strict": True,
                    "schema": cloud_output_schema(document_type),
                },
            },
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds), transport=self._transport
            )
        return self._client

    async def _complete(self, payload: Dict[str, Any], api_key: str) -> str:
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(
                f"Request timeout after {self.timeout_seconds:.0f}s",
                provider=self.name.value,
                stage="generate",
            ) from e
        except httpx.RequestError as e:
            raise ProviderRequestError(
                f"Request failed: {e}",
                provider=self.name.value,
                stage="generate",
                code=ErrorCode.NETWORK_ERROR,
            ) from e

        if response.status_code != 200:
            detail = response.text[:500]
            if response.status_code in (401, 403):
                code = ErrorCode.AUTH_FAILED
            elif response.status_code == 429:
                code = ErrorCode.QUOTA_EXCEEDED
            else:
                code = ErrorCode.EXTERNAL_SERVICE_ERROR
            raise ProviderRequestError(
                f"API request failed with status {response.status_code}: {detail}",
                provider=self.name.value,
                stage="generate",
                code=code,
                status_code=response.status_code,
            )
        try:
            choices = response.json().get("choices") or []
        except ValueError as e:
            raise ProviderRequestError(
                "Invalid JSON response", provider=self.name.value, stage="parse"
            ) from e
        if not choices:
            raise ProviderRequestError(
                "No response choices returned", provider=self.name.value, stage="parse"
            )
        message = choices[0].get("message") or {}
        if message.get("refusal"):
            raise ProviderRequestError(
                f"Model refused: {message['refusal']}", provider=self.name.value, stage="parse"
            )
        return message.get("content") or ""

    def _parse_fields(self, content: str, document_type: DocumentType) -> Dict[str, Any]:
        try:
            data = json.loads(content)
            return clean_fields(document_type, data)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            raise ProviderRequestError(
                f"Response did not match the {document_type.value} schema: {e}",
                provider=self.name.value,
                stage="parse",
            ) from e
