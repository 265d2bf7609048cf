"""Tests for the two-phase orchestrator, blocking and streaming."""
import asyncio
from typing import List

import pytest

from app.models.schemas import GenerationRequest
from app.services.exceptions import NoContentGeneratedError, UnknownDocumentType
from app.services.orchestrator import (
    EventType,
    GenerationOrchestrator,
    GenerationPhase,
    GenerationRun,
)
from app.services.section_generator import SectionGenerator
from app.services.section_plans import SectionDescriptor, SectionPlan, SectionPlanRegistry
from tests.conftest import FakeBackend, proposal_registry, section_prompt

REQUEST = GenerationRequest(title="Smart Campus Navigator", report_type="proposal", user_id="u1")


def _orchestrator(backend, registry=None, max_concurrent=4) -> GenerationOrchestrator:
    generator = SectionGenerator(backend, min_chars=1, refinement_enabled=False)
    return GenerationOrchestrator(
        generator, registry or proposal_registry(), max_concurrent=max_concurrent
    )


def _registry(document_type: str, *sections: SectionDescriptor) -> SectionPlanRegistry:
    return SectionPlanRegistry({document_type: SectionPlan(document_type, tuple(sections))})


def _wide_registry() -> SectionPlanRegistry:
    """Four independent sections followed by two dependent ones."""
    names = ["Alpha", "Beta", "Gamma", "Delta"]
    sections = [
        SectionDescriptor(key=name.lower(), display_name=name, order=i + 1, independent=True)
        for i, name in enumerate(names)
    ]
    sections.append(SectionDescriptor(key="epsilon", display_name="Epsilon", order=5, independent=False))
    sections.append(SectionDescriptor(key="zeta", display_name="Zeta", order=6, independent=False))
    return _registry("wide", *sections)


WIDE_REQUEST = GenerationRequest(title="Wide Report", report_type="wide", user_id="u1")
WIDE_REPLIES = {
    section_prompt(name): f"{name} text."
    for name in ["Alpha", "Beta", "Gamma", "Delta", "Epsilon", "Zeta"]
}


# ---------------------------------------------------------------------------
# Blocking strategy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_two_section_proposal_assembles_exactly(fake_backend: FakeBackend):
    document = await _orchestrator(fake_backend).run(REQUEST)

    assert document.content == "INTRO\n\nIntro text.\n\nMETHODOLOGY\n\nMethod text."
    assert document.is_complete
    assert document.strategy == "structured"
    assert [s["key"] for s in document.per_section_status] == ["intro", "methodology"]


@pytest.mark.asyncio
async def test_assembly_order_ignores_completion_order():
    # Alpha finishes last, Delta first
    backend = FakeBackend(
        replies=WIDE_REPLIES,
        delays={
            section_prompt("Alpha"): 0.04,
            section_prompt("Beta"): 0.03,
            section_prompt("Gamma"): 0.02,
            section_prompt("Delta"): 0.0,
        },
    )

    document = await _orchestrator(backend, _wide_registry()).run(WIDE_REQUEST)

    headings = [line for line in document.content.split("\n\n") if line.isupper()]
    assert headings == ["ALPHA", "BETA", "GAMMA", "DELTA", "EPSILON", "ZETA"]


@pytest.mark.asyncio
async def test_independent_sections_get_no_context():
    backend = FakeBackend(replies=WIDE_REPLIES)

    await _orchestrator(backend, _wide_registry()).run(WIDE_REQUEST)

    for name in ["Alpha", "Beta", "Gamma", "Delta"]:
        (prompt,) = backend.calls_matching(section_prompt(name))
        assert "PREVIOUSLY GENERATED SECTIONS" not in prompt


@pytest.mark.asyncio
async def test_dependent_sections_see_all_earlier_output():
    backend = FakeBackend(replies=WIDE_REPLIES)

    await _orchestrator(backend, _wide_registry()).run(WIDE_REQUEST)

    (epsilon_prompt,) = backend.calls_matching(section_prompt("Epsilon"))
    (zeta_prompt,) = backend.calls_matching(section_prompt("Zeta"))
    for key in ["ALPHA", "BETA", "GAMMA", "DELTA"]:
        assert f"{key}:\n" in epsilon_prompt
        assert f"{key}:\n" in zeta_prompt
    assert "EPSILON:\nEpsilon text." in zeta_prompt
    assert "EPSILON:" not in epsilon_prompt


@pytest.mark.asyncio
async def test_independent_concurrency_is_bounded():
    in_flight = 0
    peak = 0

    class CountingBackend(FakeBackend):
        async def generate(self, prompt: str) -> str:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await asyncio.sleep(0.01)
                return await super().generate(prompt)
            finally:
                in_flight -= 1

    backend = CountingBackend(replies=WIDE_REPLIES)

    document = await _orchestrator(backend, _wide_registry(), max_concurrent=2).run(WIDE_REQUEST)

    assert document.is_complete
    assert peak == 2


@pytest.mark.asyncio
async def test_one_failed_dependent_section_leaves_run_done():
    backend = FakeBackend(replies=WIDE_REPLIES, fail_on=[section_prompt("Epsilon")])
    run = GenerationRun(request=WIDE_REQUEST)

    document = await _orchestrator(backend, _wide_registry()).run(WIDE_REQUEST, state=run)

    assert run.phase == GenerationPhase.DONE
    assert run.progress() == 100.0
    assert not document.is_complete
    assert [r.key for r in document.failed_sections] == ["epsilon"]
    assert "EPSILON" not in document.content
    assert "ZETA\n\nZeta text." in document.content

    # Zeta is told Epsilon is missing
    (zeta_prompt,) = backend.calls_matching(section_prompt("Zeta"))
    assert "not available: Epsilon." in zeta_prompt


@pytest.mark.asyncio
async def test_failed_independent_section_is_excluded_from_context():
    backend = FakeBackend(
        replies={section_prompt("Methodology"): "Method text."},
        fail_on=[section_prompt("Intro")],
    )

    document = await _orchestrator(backend).run(REQUEST)

    assert document.content == "METHODOLOGY\n\nMethod text."
    (prompt,) = backend.calls_matching(section_prompt("Methodology"))
    assert "PREVIOUSLY GENERATED SECTIONS" not in prompt
    assert "not available: Intro." in prompt


@pytest.mark.asyncio
async def test_all_sections_failing_raises():
    backend = FakeBackend(fail_on=['Write the "'])
    run = GenerationRun(request=REQUEST)

    with pytest.raises(NoContentGeneratedError) as exc_info:
        await _orchestrator(backend).run(REQUEST, state=run)

    assert run.phase == GenerationPhase.FAILED
    assert set(exc_info.value.failures) == {"intro", "methodology"}


@pytest.mark.asyncio
async def test_unknown_document_type_raises(fake_backend: FakeBackend):
    request = GenerationRequest(title="X", report_type="nonexistent", user_id="u1")

    with pytest.raises(UnknownDocumentType):
        await _orchestrator(fake_backend).run(request)

    assert fake_backend.prompts == []


@pytest.mark.asyncio
async def test_progress_callback_sees_phases_in_order(fake_backend: FakeBackend):
    phases: List[GenerationPhase] = []
    progress: List[float] = []

    def _on_progress(run: GenerationRun) -> None:
        if not phases or phases[-1] != run.phase:
            phases.append(run.phase)
        progress.append(run.progress())

    await _orchestrator(fake_backend).run(REQUEST, on_progress=_on_progress)

    assert phases == [
        GenerationPhase.PLANNING,
        GenerationPhase.GENERATING_INDEPENDENT,
        GenerationPhase.GENERATING_DEPENDENT,
        GenerationPhase.ASSEMBLING,
        GenerationPhase.DONE,
    ]
    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert all(p < 100.0 for p in progress[:-1])


# ---------------------------------------------------------------------------
# Streaming strategy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_events_and_final_content(fake_backend: FakeBackend):
    orchestrator = _orchestrator(fake_backend)

    events = [event async for event in orchestrator.stream(REQUEST)]
    kinds = [event.event for event in events]

    assert kinds[0] == EventType.SECTION_COMPLETED
    assert events[0].section_key == "intro"
    assert kinds[1] == EventType.SECTION_STARTED
    assert events[1].section_key == "methodology"
    assert kinds[-2] == EventType.SECTION_COMPLETED
    assert kinds[-1] == EventType.COMPLETE

    fragments = [e.fragment for e in events if e.event == EventType.FRAGMENT]
    assert fragments
    assert "".join(fragments) == "Method text."
    assert events[-2].content == "Method text."

    assert events[-1].content == "INTRO\n\nIntro text.\n\nMETHODOLOGY\n\nMethod text."
    assert events[-1].document.is_complete


@pytest.mark.asyncio
async def test_stream_progress_is_monotonic_and_ends_at_100(fake_backend: FakeBackend):
    events = [event async for event in _orchestrator(fake_backend).stream(REQUEST)]
    progress = [event.progress for event in events]

    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert all(p < 100.0 for p in progress[:-1])


@pytest.mark.asyncio
async def test_stream_dependent_failure_mid_stream():
    backend = FakeBackend(
        replies={
            section_prompt("Intro"): "Intro text.",
            section_prompt("Methodology"): "Method text that will be cut off.",
        },
        break_stream_on=[section_prompt("Methodology")],
    )
    run = GenerationRun(request=REQUEST)

    events = [event async for event in _orchestrator(backend).stream(REQUEST, state=run)]

    failed = [e for e in events if e.event == EventType.SECTION_FAILED]
    assert [e.section_key for e in failed] == ["methodology"]
    assert "stream dropped" in failed[0].error

    final = events[-1]
    assert final.event == EventType.COMPLETE
    assert final.content == "INTRO\n\nIntro text."
    assert not final.document.is_complete
    assert run.phase == GenerationPhase.DONE


@pytest.mark.asyncio
async def test_stream_all_failing_ends_with_error():
    backend = FakeBackend(fail_on=['Write the "'])
    run = GenerationRun(request=REQUEST)

    events = [event async for event in _orchestrator(backend).stream(REQUEST, state=run)]

    assert events[-1].event == EventType.ERROR
    assert events[-1].progress < 100.0
    assert run.phase == GenerationPhase.FAILED
    assert isinstance(run.error, NoContentGeneratedError)
