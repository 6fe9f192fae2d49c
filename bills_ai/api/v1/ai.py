"""Document analysis endpoints used by the desktop front end."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from bills_ai.core.ai.base import DocumentType, ProviderState
from bills_ai.core.ai.exceptions import AnalysisError
from bills_ai.core.ai.manager import ManagerConfig, ManagerStatus, ProviderManager
from bills_ai.core.ai.session_keys import SessionKeyring
from bills_ai.core.ai.settings_store import JsonFileSettingsStore
from bills_ai.core.config import get_settings
from bills_ai.core.errors import ErrorCode

logger = logging.getLogger(__name__)
router = APIRouter()

# Process-wide singletons (the desktop shell runs one app instance)
_manager: ProviderManager | None = None
_keyring = SessionKeyring()


def get_keyring() -> SessionKeyring:
    return _keyring


def get_manager() -> ProviderManager:
    global _manager
    if _manager is None:
        settings = get_settings()
        _manager = ProviderManager(
            settings_store=JsonFileSettingsStore(settings.AI_SETTINGS_PATH),
            decryptor=_keyring,
        )
    return _manager


def set_manager(manager: ProviderManager | None) -> None:
    global _manager
    _manager = manager


class AnalyzeRequest(BaseModel):
    file_path: str = Field(..., min_length=1)
    document_type: DocumentType


class AnalyzeResponse(BaseModel):
    success: bool = True
    backend: Optional[str] = None
    confidence: Optional[float] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    method: Optional[str] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None


class ExtractTextRequest(BaseModel):
    file_path: str = Field(..., min_length=1)


class ExtractTextResponse(BaseModel):
    success: bool = True
    text: Optional[str] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None


class SetBackendRequest(BaseModel):
    backend: str


class ActionResponse(BaseModel):
    ok: bool
    status: Optional[ProviderState] = None
    backend: Optional[str] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None


def _file_missing(path: str) -> bool:
    return not Path(path).is_file()


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_document(payload: AnalyzeRequest) -> AnalyzeResponse:
    if _file_missing(payload.file_path):
        return AnalyzeResponse(success=False, error="File not found", code=ErrorCode.FILE_NOT_FOUND)
    manager = get_manager()
    try:
        result = await manager.analyze_document(payload.file_path, payload.document_type)
    except AnalysisError as e:
        return AnalyzeResponse(success=False, backend=e.provider, error=e.message, code=e.code)
    except Exception:
        logger.exception("ai.api.analyze_failed")
        return AnalyzeResponse(
            success=False, error="Document analysis failed", code=ErrorCode.INTERNAL_ERROR
        )
    return AnalyzeResponse(
        backend=result.backend.value,
        confidence=result.confidence,
        fields=result.fields,
        method=result.method,
    )


@router.post("/extract-text", response_model=ExtractTextResponse)
async def extract_text(payload: ExtractTextRequest) -> ExtractTextResponse:
    if _file_missing(payload.file_path):
        return ExtractTextResponse(success=False, error="File not found", code=ErrorCode.FILE_NOT_FOUND)
    try:
        text = await get_manager().extract_text(payload.file_path)
    except AnalysisError as e:
        return ExtractTextResponse(success=False, error=e.message, code=e.code)
    except Exception:
        logger.exception("ai.api.extract_text_failed")
        return ExtractTextResponse(
            success=False, error="Text extraction failed", code=ErrorCode.INTERNAL_ERROR
        )
    return ExtractTextResponse(text=text)


@router.get("/status", response_model=ManagerStatus)
async def get_status() -> ManagerStatus:
    return await get_manager().get_status()


@router.get("/config", response_model=ManagerConfig)
async def get_config() -> ManagerConfig:
    return await get_manager().get_config()


@router.post("/backend", response_model=ActionResponse)
async def set_backend(payload: SetBackendRequest) -> ActionResponse:
    try:
        selected = await get_manager().set_backend(payload.backend)
    except AnalysisError as e:
        return ActionResponse(ok=False, error=e.message, code=e.code)
    return ActionResponse(ok=True, backend=selected.value)


@router.post("/local/start", response_model=ActionResponse)
async def start_local() -> ActionResponse:
    manager = get_manager()
    try:
        status = await manager.start_local()
    except AnalysisError as e:
        current = await manager.get_status()
        return ActionResponse(ok=False, status=current.local_status, error=e.message, code=e.code)
    return ActionResponse(ok=True, status=status)


@router.post("/local/stop", response_model=ActionResponse)
async def stop_local() -> ActionResponse:
    status = await get_manager().stop_local()
    return ActionResponse(ok=True, status=status)
