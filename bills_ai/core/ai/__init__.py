"""Document analysis provider layer."""

from .base import (
    AnalysisProvider,
    AnalysisResult,
    Backend,
    DocumentType,
    DownloadProgress,
    ProviderState,
    ProviderStatus,
)
from .exceptions import AnalysisError
from .manager import ManagerConfig, ManagerStatus, ProviderManager, normalize_backend

__all__ = [
    "AnalysisProvider",
    "AnalysisResult",
    "Backend",
    "DocumentType",
    "DownloadProgress",
    "ProviderState",
    "ProviderStatus",
    "AnalysisError",
    "ManagerConfig",
    "ManagerStatus",
    "ProviderManager",
    "normalize_backend",
]
