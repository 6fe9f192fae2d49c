"""Analysis core data models and abstract provider interface.

Provides:
- Backend / document type enums (the closed set of backend identifiers)
- Status snapshot models (ProviderStatus, DownloadProgress)
- AnalysisResult value object
- AnalysisProvider abstract base class every backend implements
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Backend(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"


class DocumentType(str, Enum):
    EXPENSE = "expense"
    BILL = "bill"


class ProviderState(str, Enum):
    stopped = "stopped"
    starting = "starting"
    running = "running"
    error = "error"


class DownloadProgress(BaseModel):
    """Snapshot of a model pull. Replaced wholesale, never merged."""

    model_config = ConfigDict(frozen=True)

    in_progress: bool = False
    percent: Optional[float] = None
    completed_bytes: Optional[int] = None
    total_bytes: Optional[int] = None
    message: Optional[str] = None

    @property
    def ratio(self) -> Optional[float]:
        if self.percent is not None:
            return max(0.0, min(1.0, self.percent / 100.0))
        if self.total_bytes and self.completed_bytes is not None:
            return max(0.0, min(1.0, self.completed_bytes / self.total_bytes))
        return None


class ProviderStatus(BaseModel):
    status: ProviderState = ProviderState.stopped
    initialized: bool = False
    loading: bool = False
    error: Optional[str] = None
    download: Optional[DownloadProgress] = None


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    fields: Dict[str, Any] = Field(default_factory=dict)
    text: str = ""
    confidence: float = Field(..., ge=0.0, le=1.0)
    backend: Backend
    method: str = Field(..., description="Code path that produced the result")


class AnalysisProvider(ABC):
    """Contract each analysis backend implements.

    Side effects stay inside the instance: a provider never touches another
    provider's state.
    """

    name: Backend

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend for use. Idempotent."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Cheap, side-effect free readiness check."""

    @abstractmethod
    def get_status(self) -> ProviderStatus:
        """Cheap status snapshot derived from live state."""

    @abstractmethod
    async def analyze_document(self, path: str, document_type: DocumentType) -> AnalysisResult:
        """Extract structured fields from the document at ``path``."""

    @abstractmethod
    async def extract_text(self, path: str) -> str:
        """Return raw text of the document, if the backend supports it."""

    async def warmup(self) -> None:
        await self.initialize()

    async def cleanup(self) -> None:  # optional no-op
        return None
