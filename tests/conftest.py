"""
Shared fixtures for Quire backend tests.

Each test gets its own SQLite database file (via aiosqlite) under pytest's
tmp_path, with tables created from the ORM metadata.  The Ollama backend is
replaced by FakeBackend, a scripted stand-in that answers prompts by
substring match, so no test talks to a real model.
"""
from __future__ import annotations

import asyncio
import os
from typing import AsyncGenerator, AsyncIterator, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine never point at PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from app.database import Base, get_db, get_session_factory  # noqa: E402
from app.dependencies.generation import (  # noqa: E402
    get_llm_backend,
    get_plan_registry,
    get_strategy_selector,
)
from app.main import app  # noqa: E402
from app.services.context_compressor import ContextCompressor  # noqa: E402
from app.services.exceptions import BackendError  # noqa: E402
from app.services.fallback import FallbackStrategySelector  # noqa: E402
from app.services.orchestrator import GenerationOrchestrator  # noqa: E402
from app.services.section_generator import SectionGenerator  # noqa: E402
from app.services.section_plans import (  # noqa: E402
    SectionDescriptor,
    SectionPlan,
    SectionPlanRegistry,
)


# ---------------------------------------------------------------------------
# Fake text backend
# ---------------------------------------------------------------------------

class FakeBackend:
    """
    Scripted text backend.

    * ``replies``: prompt substring -> reply text (first match wins)
    * ``fail_on``: prompt substrings whose calls raise BackendError
    * ``delays``: prompt substring -> seconds to sleep before answering
    * ``break_stream_on``: prompt substrings whose streams fail halfway
    """

    def __init__(
        self,
        replies: Optional[Dict[str, str]] = None,
        default: str = "Generic generated text for this part of the report.",
        fail_on: Iterable[str] = (),
        delays: Optional[Dict[str, float]] = None,
        break_stream_on: Iterable[str] = (),
        fragment_size: int = 7,
    ) -> None:
        self.replies = dict(replies or {})
        self.default = default
        self.fail_on = list(fail_on)
        self.delays = dict(delays or {})
        self.break_stream_on = list(break_stream_on)
        self.fragment_size = fragment_size
        self.healthy = True
        self.prompts: List[str] = []
        self.stream_prompts: List[str] = []

    def calls_matching(self, needle: str) -> List[str]:
        return [p for p in self.prompts + self.stream_prompts if needle in p]

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return await self._reply(prompt)

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        self.stream_prompts.append(prompt)
        text = await self._reply(prompt)
        breaks = any(needle in prompt for needle in self.break_stream_on)
        cut = len(text) // 2 if breaks else len(text)

        for start in range(0, cut, self.fragment_size):
            yield text[start:min(start + self.fragment_size, cut)]
            await asyncio.sleep(0)
        if breaks:
            raise BackendError("stream dropped")

    async def check_health(self) -> bool:
        return self.healthy

    async def _reply(self, prompt: str) -> str:
        for needle, delay in self.delays.items():
            if needle in prompt:
                await asyncio.sleep(delay)
                break
        if any(needle in prompt for needle in self.fail_on):
            raise BackendError("scripted failure")
        for needle, reply in self.replies.items():
            if needle in prompt:
                return reply
        return self.default


# ---------------------------------------------------------------------------
# Pipeline helpers
# ---------------------------------------------------------------------------

def section_prompt(display_name: str) -> str:
    """Substring that only the section prompt for *display_name* contains."""
    return f'Write the "{display_name}" section'


def proposal_registry() -> SectionPlanRegistry:
    """Two-section plan: independent "Intro", dependent "Methodology"."""
    plan = SectionPlan(
        document_type="proposal",
        sections=(
            SectionDescriptor(key="intro", display_name="Intro", order=1, independent=True),
            SectionDescriptor(
                key="methodology", display_name="Methodology", order=2, independent=False
            ),
        ),
    )
    return SectionPlanRegistry({"proposal": plan})


def make_selector(
    backend: FakeBackend,
    registry: Optional[SectionPlanRegistry] = None,
    min_chars: int = 1,
    refinement_enabled: bool = False,
    max_concurrent: int = 4,
) -> FallbackStrategySelector:
    generator = SectionGenerator(
        backend,
        compressor=ContextCompressor(backend),
        min_chars=min_chars,
        refinement_enabled=refinement_enabled,
    )
    orchestrator = GenerationOrchestrator(
        generator, registry or proposal_registry(), max_concurrent=max_concurrent
    )
    return FallbackStrategySelector(orchestrator, backend, min_chars=min_chars)


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory bound to a fresh SQLite file with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'quire_test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """A session on the per-test database, for direct assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend(
        replies={
            section_prompt("Intro"): "Intro text.",
            section_prompt("Methodology"): "Method text.",
        }
    )


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker,
    fake_backend: FakeBackend,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app, with the database and the
    generation pipeline dependencies overridden for the test.
    """
    registry = proposal_registry()
    selector = make_selector(fake_backend, registry)

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_llm_backend] = lambda: fake_backend
    app.dependency_overrides[get_plan_registry] = lambda: registry
    app.dependency_overrides[get_strategy_selector] = lambda: selector

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "test1@example.com",
    "X-User-Name": "Test User 1",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "test2@example.com",
    "X-User-Name": "Test User 2",
}
