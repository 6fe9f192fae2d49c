"""Confidence scoring for local-runtime analysis results."""

from __future__ import annotations

from enum import Enum


class PromptVariant(str, Enum):
    IMAGE = "image"  # raster image attached to a schema prompt
    FILE = "file"  # non-image document attached directly
    TEXT_FALLBACK = "text_fallback"  # extracted text embedded in the prompt
    STRICT_RETRY = "strict_retry"  # terse "JSON only" retry


EMPTY_CONFIDENCE = 0.4

_RECOVERED_CONFIDENCE = {
    PromptVariant.IMAGE: 0.8,
    PromptVariant.FILE: 0.7,
    PromptVariant.TEXT_FALLBACK: 0.7,
    PromptVariant.STRICT_RETRY: 0.7,
}


def score_confidence(fields_count: int, variant: PromptVariant) -> float:
    if fields_count <= 0:
        return EMPTY_CONFIDENCE
    return _RECOVERED_CONFIDENCE[variant]
