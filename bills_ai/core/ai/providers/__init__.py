"""Analysis providers and the backend -> factory dispatch table."""

from __future__ import annotations

from typing import Callable, Dict

from ..base import AnalysisProvider, Backend
from .ollama import OllamaProvider
from .openai import OpenAIVisionProvider

PROVIDER_FACTORIES: Dict[Backend, Callable[[], AnalysisProvider]] = {
    Backend.OPENAI: OpenAIVisionProvider,
    Backend.OLLAMA: OllamaProvider,
}

if set(PROVIDER_FACTORIES) != set(Backend):  # every Backend member needs a factory
    raise RuntimeError("unmapped backend in PROVIDER_FACTORIES")


def create_providers() -> Dict[Backend, AnalysisProvider]:
    return {backend: factory() for backend, factory in PROVIDER_FACTORIES.items()}


__all__ = [
    "PROVIDER_FACTORIES",
    "OllamaProvider",
    "OpenAIVisionProvider",
    "create_providers",
]
