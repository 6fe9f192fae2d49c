"""Shared error codes for analysis responses.

Centralizes the machine-readable codes used by providers, the manager and
the HTTP layer so callers can map failures to actionable messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INPUT_ERROR = "INPUT_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PROVIDER_DOWN = "PROVIDER_DOWN"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    UNKNOWN_BACKEND = "UNKNOWN_BACKEND"
    # Local runtime lifecycle
    BINARY_NOT_FOUND = "BINARY_NOT_FOUND"  # runtime not installed
    SERVER_START_TIMEOUT = "SERVER_START_TIMEOUT"  # health probe never answered
    MODEL_PULL_TIMEOUT = "MODEL_PULL_TIMEOUT"  # pull exceeded overall budget
    MODEL_PULL_FAILED = "MODEL_PULL_FAILED"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    # Request / credential
    CREDENTIAL_MISSING = "CREDENTIAL_MISSING"
    AUTH_FAILED = "AUTH_FAILED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    # Documents
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    NOT_ACCESSIBLE = "NOT_ACCESSIBLE"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    PARSE_FAILED = "PARSE_FAILED"  # absorbed, never returned to callers


__all__ = ["ErrorCode"]
