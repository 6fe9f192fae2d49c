"""Analysis exception taxonomy.

Every failure a caller can see is an ``AnalysisError`` carrying an
``ErrorCode``; the subclasses exist so callers and tests can match on the
exact condition.
"""

from __future__ import annotations

from typing import Optional

from bills_ai.core.errors import ErrorCode

INSTALL_HINT = (
    "Ollama is not installed. Install with: brew install ollama (macOS) "
    "or see https://ollama.com for installers."
)


class AnalysisError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        stage: Optional[str] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.provider = provider
        self.stage = stage
        self.message = message

    def to_dict(self):
        return {
            "code": self.code.value,
            "message": self.message,
            "provider": self.provider,
            "stage": self.stage,
        }


class BinaryNotFoundError(AnalysisError):
    code = ErrorCode.BINARY_NOT_FOUND

    def __init__(self, message: str = INSTALL_HINT, provider: Optional[str] = "ollama"):
        super().__init__(message, provider=provider, stage="discover")


class RuntimeSpawnError(AnalysisError):
    code = ErrorCode.PROVIDER_DOWN


class ServerStartTimeoutError(AnalysisError):
    code = ErrorCode.SERVER_START_TIMEOUT


class ModelPullTimeoutError(AnalysisError):
    code = ErrorCode.MODEL_PULL_TIMEOUT


class ModelPullError(AnalysisError):
    code = ErrorCode.MODEL_PULL_FAILED


class GenerationTimeoutError(AnalysisError):
    code = ErrorCode.GENERATION_TIMEOUT


class ProviderRequestError(AnalysisError):
    """HTTP-level failure talking to a backend (status, transport, auth, quota)."""

    code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        stage: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider=provider, stage=stage, code=code)
        self.status_code = status_code


class CredentialMissingError(AnalysisError):
    code = ErrorCode.CREDENTIAL_MISSING

    def __init__(self, message: str = "OpenAI API key not configured", provider: Optional[str] = "openai"):
        super().__init__(message, provider=provider, stage="credential")


class FileTooLargeError(AnalysisError):
    code = ErrorCode.FILE_TOO_LARGE


class UnsupportedDocumentFormatError(AnalysisError):
    code = ErrorCode.UNSUPPORTED_FORMAT


class DocumentNotAccessibleError(AnalysisError):
    code = ErrorCode.NOT_ACCESSIBLE


class TextExtractionUnsupportedError(AnalysisError):
    code = ErrorCode.NOT_SUPPORTED


class UnknownBackendError(AnalysisError):
    code = ErrorCode.UNKNOWN_BACKEND


class UnparsableModelOutputError(AnalysisError):
    """Raised by the strict JSON parser; absorbed by ``recover_json``."""

    code = ErrorCode.PARSE_FAILED


class SessionLockedError(Exception):
    """No session key is unlocked, secrets cannot be decrypted."""


__all__ = [
    "INSTALL_HINT",
    "AnalysisError",
    "BinaryNotFoundError",
    "RuntimeSpawnError",
    "ServerStartTimeoutError",
    "ModelPullTimeoutError",
    "ModelPullError",
    "GenerationTimeoutError",
    "ProviderRequestError",
    "CredentialMissingError",
    "FileTooLargeError",
    "UnsupportedDocumentFormatError",
    "DocumentNotAccessibleError",
    "TextExtractionUnsupportedError",
    "UnknownBackendError",
    "UnparsableModelOutputError",
    "SessionLockedError",
]
