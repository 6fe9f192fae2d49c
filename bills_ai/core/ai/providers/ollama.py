"""Ollama provider: supervises a local inference server and its model.

Lifecycle: stopped -> starting (optionally downloading the model) -> running,
with error reachable from any state. The provider locates the ``ollama``
binary (never auto-installs it), starts ``ollama serve`` when the loopback
health probe does not answer, pulls the model with streamed progress and
runs bounded-time generation requests. Model output is parsed best effort;
malformed completions degrade to low-confidence empty results.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from bills_ai.core.config import get_settings
from bills_ai.utils.metrics import (
    ai_fallback_triggered_total,
    ai_model_pull_progress_ratio,
    ai_runtime_starts_total,
    safe_inc,
    safe_set,
)

from ..base import (
    AnalysisProvider,
    AnalysisResult,
    Backend,
    DocumentType,
    DownloadProgress,
    ProviderState,
    ProviderStatus,
)
from ..exceptions import (
    INSTALL_HINT,
    AnalysisError,
    BinaryNotFoundError,
    DocumentNotAccessibleError,
    GenerationTimeoutError,
    ModelPullError,
    ModelPullTimeoutError,
    ProviderRequestError,
    ServerStartTimeoutError,
    UnsupportedDocumentFormatError,
)
from ..parsing import PromptVariant, recover_json, score_confidence
from ..prompts import local_schema_prompt, local_strict_retry_prompt, local_text_prompt
from ..text_reader import DocumentTextReader, PdfTextReader
from .runtime import PullProgressTracker, RuntimeProcess, parse_progress_line, resolve_binary

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}

METHOD_IMAGE = "ollama_image"
METHOD_FILE = "ollama_file"
METHOD_FILE_RETRY = "ollama_file_strict_retry"
METHOD_TEXT = "ollama_text_fallback"
METHOD_TEXT_RETRY = "ollama_text_fallback_strict_retry"


class OllamaProvider(AnalysisProvider):
    name = Backend.OLLAMA

    def __init__(
        self,
        base_url: Optional[str] = None,
        model_name: Optional[str] = None,
        binary_override: Optional[str] = None,
        search_dirs: Optional[Iterable[str]] = None,
        text_reader: Optional[DocumentTextReader] = None,
        health_timeout: Optional[float] = None,
        start_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        pull_timeout: Optional[float] = None,
        generate_timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        text_excerpt_chars: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model_name = model_name or settings.OLLAMA_MODEL
        self.binary_override = binary_override or settings.OLLAMA_BIN
        self.search_dirs = list(search_dirs if search_dirs is not None else settings.OLLAMA_SEARCH_DIRS)
        self.text_reader = text_reader or PdfTextReader()
        self.health_timeout = health_timeout or settings.OLLAMA_HEALTH_TIMEOUT_S
        self.start_timeout = start_timeout or settings.OLLAMA_START_TIMEOUT_S
        self.poll_interval = poll_interval or settings.OLLAMA_POLL_INTERVAL_S
        self.pull_timeout = pull_timeout or settings.OLLAMA_PULL_TIMEOUT_S
        self.generate_timeout = generate_timeout or settings.OLLAMA_GENERATE_TIMEOUT_S
        self.temperature = settings.OLLAMA_TEMPERATURE if temperature is None else temperature
        self.text_excerpt_chars = text_excerpt_chars or settings.TEXT_EXCERPT_CHARS

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._binary: Optional[str] = None
        self._process: Optional[RuntimeProcess] = None
        self._initialized = False
        self._model_ready = False
        self._starting = False
        self._error: Optional[str] = None
        self._not_installed = False
        self._download = DownloadProgress()
        # Serializes server start + model pull across overlapping callers
        self._readiness_lock = asyncio.Lock()

    # ---- lifecycle -------------------------------------------------------

    async def initialize(self) -> None:
        if self._initialized and self._error is None:
            return
        self._error = None
        self._not_installed = False
        try:
            logger.info("ai.ollama.initialize", extra={"model": self.model_name})
            if self._binary is None:
                self._discover_binary()
            await self._ensure_ready()
            self._initialized = True
            logger.info("ai.ollama.initialized", extra={"model": self.model_name})
        except AnalysisError as e:
            self._record_error(e)
            raise

    def is_ready(self) -> bool:
        return self._initialized and not self._starting and self._error is None and self._model_ready

    def get_status(self) -> ProviderStatus:
        download = self._download if self._download.in_progress else None
        if self._starting or self._download.in_progress:
            return ProviderStatus(
                status=ProviderState.starting,
                initialized=self._initialized,
                loading=True,
                download=download,
            )
        if self._error is not None:
            # A missing binary is "not running yet", not a runtime failure.
            state = ProviderState.stopped if self._not_installed else ProviderState.error
            return ProviderStatus(
                status=state, initialized=self._initialized, loading=False, error=self._error
            )
        if self.is_ready():
            return ProviderStatus(status=ProviderState.running, initialized=True, loading=False)
        return ProviderStatus(status=ProviderState.stopped, initialized=self._initialized, loading=False)

    async def warmup(self) -> None:
        """Initialize, then make the server load the model into memory."""
        await self.initialize()
        try:
            await self._post_json(
                "/api/generate",
                {"model": self.model_name, "prompt": "", "stream": False},
                timeout=self.generate_timeout,
            )
        except httpx.TimeoutException as e:
            err = GenerationTimeoutError(
                f"Model warmup timed out after {self.generate_timeout:.0f}s",
                provider=self.name.value,
                stage="warmup",
            )
            self._record_error(err)
            raise err from e
        except AnalysisError as e:
            self._record_error(e)
            raise
        logger.info("ai.ollama.warm", extra={"model": self.model_name})

    async def cleanup(self) -> None:
        if self._process is not None:
            logger.info("ai.ollama.stop", extra={"pid": self._process.pid})
            process, self._process = self._process, None
            await process.terminate()
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
        self._initialized = False
        self._model_ready = False
        self._starting = False
        self._error = None
        self._not_installed = False

    # ---- analysis --------------------------------------------------------

    async def analyze_document(self, path: str, document_type: DocumentType) -> AnalysisResult:
        start = time.time()
        try:
            if Path(path).suffix.lower() in IMAGE_EXTENSIONS:
                result = await self._analyze_image(path, document_type)
            else:
                result = await self._analyze_file(path, document_type)
        except AnalysisError as e:
            self._record_error(e)
            raise
        self._error = None
        logger.info(
            "ai.ollama.analyze",
            extra={
                "backend": self.name.value,
                "document_type": document_type.value,
                "method": result.method,
                "confidence": result.confidence,
                "fields_count": len(result.fields),
                "latency_ms": int((time.time() - start) * 1000),
            },
        )
        return result

    async def _analyze_image(self, path: str, document_type: DocumentType) -> AnalysisResult:
        completion = await self.generate(local_schema_prompt(document_type), images=[path])
        fields = recover_json(completion)
        return AnalysisResult(
            fields=fields,
            text="[image]",
            confidence=score_confidence(len(fields), PromptVariant.IMAGE),
            backend=self.name,
            method=METHOD_IMAGE,
        )

    async def _analyze_file(self, path: str, document_type: DocumentType) -> AnalysisResult:
        prompt = local_schema_prompt(document_type)
        fields: Dict[str, Any] = {}
        file_call_failed = False
        try:
            fields = recover_json(await self.generate(prompt, images=[path]))
        except (ProviderRequestError, GenerationTimeoutError) as e:
            file_call_failed = True
            safe_inc(ai_fallback_triggered_total, reason="file_call_failed")
            logger.warning(
                "ai.ollama.file_call_failed",
                extra={"error_code": e.code.value, "stage": "generate"},
            )
        if fields:
            return self._file_result(fields, PromptVariant.FILE, METHOD_FILE)

        excerpt: Optional[str] = None
        try:
            excerpt = (await self.text_reader.read_text(path))[: self.text_excerpt_chars]
        except AnalysisError:
            # Without text the attached-file failure is the real error.
            if file_call_failed:
                raise
            logger.info("ai.ollama.text_unavailable", extra={"stage": "read"})

        if excerpt and excerpt.strip():
            safe_inc(ai_fallback_triggered_total, reason="text_fallback")
            fields = recover_json(
                await self.generate(
                    local_text_prompt(document_type, excerpt, self.text_excerpt_chars)
                )
            )
            if fields:
                return self._file_result(fields, PromptVariant.TEXT_FALLBACK, METHOD_TEXT)
            retry_method = METHOD_TEXT_RETRY
        elif file_call_failed:
            raise UnsupportedDocumentFormatError(
                "No extractable text found in document", provider=self.name.value, stage="read"
            )
        else:
            retry_method = METHOD_FILE_RETRY

        safe_inc(ai_fallback_triggered_total, reason="strict_retry")
        retry_prompt = local_strict_retry_prompt(document_type, excerpt or None)
        images = None if excerpt else [path]
        fields = recover_json(await self.generate(retry_prompt, images=images))
        return self._file_result(fields, PromptVariant.STRICT_RETRY, retry_method)

    def _file_result(self, fields: Dict[str, Any], variant: PromptVariant, method: str) -> AnalysisResult:
        return AnalysisResult(
            fields=fields,
            text="[file]",
            confidence=score_confidence(len(fields), variant),
            backend=self.name,
            method=method,
        )

    async def extract_text(self, path: str) -> str:
        text = await self.text_reader.read_text(path)
        if not text or not text.strip():
            raise UnsupportedDocumentFormatError(
                "No extractable text found in document", provider=self.name.value, stage="read"
            )
        return text

    # ---- generation ------------------------------------------------------

    async def generate(self, prompt: str, images: Optional[List[str]] = None) -> str:
        """Run one non-streaming completion, making sure server and model are up."""
        await self._ensure_ready()
        payload: Dict[str, Any] = {
            "model": self.model_name,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        if images:
            payload["images"] = [await self._encode_image(p) for p in images]
        try:
            data = await self._post_json("/api/generate", payload, timeout=self.generate_timeout)
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(
                f"Generation timed out after {self.generate_timeout:.0f}s",
                provider=self.name.value,
                stage="generate",
            ) from e
        text = data.get("response")
        if text is None:
            text = (data.get("message") or {}).get("content", "")
        return str(text or "")

    @staticmethod
    async def _encode_image(path: str) -> str:
        try:
            raw = await asyncio.to_thread(Path(path).read_bytes)
        except OSError as e:
            raise DocumentNotAccessibleError(f"Document not accessible: {path}", stage="read") from e
        return base64.b64encode(raw).decode("ascii")

    # ---- readiness -------------------------------------------------------

    def _discover_binary(self) -> None:
        resolved = resolve_binary("ollama", override=self.binary_override, search_dirs=self.search_dirs)
        if not resolved:
            self._not_installed = True
            raise BinaryNotFoundError(INSTALL_HINT, provider=self.name.value)
        self._binary = resolved
        logger.info("ai.ollama.binary_resolved", extra={"binary": resolved})

    async def _ensure_ready(self) -> None:
        async with self._readiness_lock:
            await self.ensure_server_running()
            await self.ensure_model_pulled()

    async def ping(self) -> bool:
        try:
            client = await self._get_client()
            response = await client.get("/api/version", timeout=self.health_timeout)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def ensure_server_running(self) -> None:
        if await self.ping():
            return
        if self._binary is None:
            self._discover_binary()
        self._starting = True
        try:
            if self._process is None or not self._process.alive:
                self._process = await RuntimeProcess.spawn(
                    self._binary or "ollama", ("serve",), self.search_dirs
                )
            logger.info("ai.ollama.waiting_for_server", extra={"stage": "start"})
            deadline = time.monotonic() + self.start_timeout
            up = False
            while time.monotonic() < deadline:
                if await self.ping():
                    up = True
                    break
                await asyncio.sleep(self.poll_interval)
        finally:
            self._starting = False
        if not up and not await self.ping():
            safe_inc(ai_runtime_starts_total, outcome="timeout")
            raise ServerStartTimeoutError(
                "Ollama server failed to start", provider=self.name.value, stage="start"
            )
        safe_inc(ai_runtime_starts_total, outcome="success")
        logger.info("ai.ollama.server_started", extra={"stage": "start"})

    async def ensure_model_pulled(self) -> None:
        if self._model_ready:
            return
        if await self._has_model():
            self._model_ready = True
            return
        logger.info("ai.ollama.pull", extra={"model": self.model_name})
        await self._pull_model()
        if not await self._has_model():
            raise ModelPullError(
                f"Model {self.model_name} not available after pull",
                provider=self.name.value,
                stage="pull",
            )
        self._model_ready = True
        logger.info("ai.ollama.model_ready", extra={"model": self.model_name})

    def _model_matches(self, name: str) -> bool:
        # An untagged model name refers to its ":latest" tag
        target = self.model_name if ":" in self.model_name else f"{self.model_name}:latest"
        return name == self.model_name or name.startswith(target)

    async def _has_model(self) -> bool:
        try:
            client = await self._get_client()
            response = await client.get("/api/tags", timeout=30.0)
            response.raise_for_status()
            models = response.json().get("models") or []
        except (httpx.HTTPError, ValueError, AttributeError):
            return False
        return any(self._model_matches(str((m or {}).get("name", ""))) for m in models)

    async def _pull_model(self) -> None:
        tracker = PullProgressTracker()
        self._download = tracker.snapshot
        try:
            await asyncio.wait_for(self._stream_pull(tracker), timeout=self.pull_timeout)
        except asyncio.TimeoutError as e:
            raise ModelPullTimeoutError(
                f"Model download timed out after {self.pull_timeout:.0f}s",
                provider=self.name.value,
                stage="pull",
            ) from e
        except httpx.HTTPError as e:
            raise ModelPullError(
                f"Model download failed: {e}", provider=self.name.value, stage="pull"
            ) from e
        finally:
            self._download = DownloadProgress(in_progress=False)
            safe_set(ai_model_pull_progress_ratio, 0.0)

    async def _stream_pull(self, tracker: PullProgressTracker) -> None:
        client = await self._get_client()
        async with client.stream(
            "POST",
            "/api/pull",
            json={"name": self.model_name, "stream": True},
            timeout=httpx.Timeout(30.0, read=None),
        ) as response:
            if response.status_code != 200:
                raise ModelPullError(
                    f"HTTP {response.status_code}", provider=self.name.value, stage="pull"
                )
            async for line in response.aiter_lines():
                event = parse_progress_line(line)
                if event is None:
                    continue
                self._download = tracker.apply(event)
                if self._download.ratio is not None:
                    safe_set(ai_model_pull_progress_ratio, self._download.ratio)
                if isinstance(event.get("error"), str):
                    raise ModelPullError(
                        f"Model download failed: {event['error']}",
                        provider=self.name.value,
                        stage="pull",
                    )

    # ---- http ------------------------------------------------------------

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, transport=self._transport)
        return self._client

    async def _post_json(self, path: str, payload: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(path, json=payload, timeout=timeout)
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as e:
            raise ProviderRequestError(
                f"Request to {path} failed: {e}", provider=self.name.value, stage="generate"
            ) from e
        if response.status_code != 200:
            raise ProviderRequestError(
                f"HTTP {response.status_code} from {path}: {response.text[:200]}",
                provider=self.name.value,
                stage="generate",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _record_error(self, error: AnalysisError) -> None:
        self._error = error.message
        logger.error(
            "ai.ollama.error",
            extra={"error_code": error.code.value, "stage": error.stage},
        )
