"""
Pipeline dependencies for FastAPI routes.

Each stage is built from settings by its own provider so tests (or a
different deployment) can swap one piece via ``app.dependency_overrides``
without touching the others.
"""
from __future__ import annotations

import functools

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.database import get_session_factory
from app.services.context_compressor import ContextCompressor
from app.services.fallback import FallbackStrategySelector
from app.services.llm_client import OllamaLLMService, TextBackend
from app.services.orchestrator import GenerationOrchestrator
from app.services.persistence import PersistenceCoordinator
from app.services.section_generator import SectionGenerator
from app.services.section_plans import SectionPlanRegistry, load_default_registry


@functools.lru_cache(maxsize=1)
def get_llm_backend() -> TextBackend:
    """One Ollama client per process so its concurrency cap is global."""
    return OllamaLLMService()


def get_plan_registry() -> SectionPlanRegistry:
    return load_default_registry()


def get_strategy_selector(
    backend: TextBackend = Depends(get_llm_backend),
    registry: SectionPlanRegistry = Depends(get_plan_registry),
) -> FallbackStrategySelector:
    generator = SectionGenerator(backend, compressor=ContextCompressor(backend))
    orchestrator = GenerationOrchestrator(generator, registry)
    return FallbackStrategySelector(orchestrator, backend)


def get_persistence(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> PersistenceCoordinator:
    return PersistenceCoordinator(session_factory)
