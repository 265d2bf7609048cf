"""Tests for strategy selection and the single-prompt fallback."""
import pytest

from app.models.schemas import GenerationRequest, ReportRequirements
from app.services.exceptions import (
    GenerationUnavailableError,
    NoContentGeneratedError,
    UnknownDocumentType,
)
from app.services.orchestrator import EventType
from tests.conftest import FakeBackend, make_selector

REQUEST = GenerationRequest(title="Smart Campus Navigator", report_type="proposal", user_id="u1")
SINGLE_PROMPT = "Generate a comprehensive"
ALL_SECTIONS = 'Write the "'


@pytest.mark.asyncio
async def test_structured_success_never_uses_single_prompt(fake_backend: FakeBackend):
    outcome = await make_selector(fake_backend).select(REQUEST)

    assert outcome.ok
    assert outcome.strategy == "structured"
    assert outcome.structured_error is None
    assert fake_backend.calls_matching(SINGLE_PROMPT) == []


@pytest.mark.asyncio
async def test_partial_structured_result_is_not_retried():
    backend = FakeBackend(
        replies={'Write the "Intro"': "Intro text."},
        fail_on=['Write the "Methodology"'],
    )

    outcome = await make_selector(backend).select(REQUEST)

    assert outcome.strategy == "structured"
    assert not outcome.document.is_complete
    assert backend.calls_matching(SINGLE_PROMPT) == []


@pytest.mark.asyncio
async def test_fallback_runs_single_prompt_exactly_once():
    backend = FakeBackend(
        replies={SINGLE_PROMPT: "INTRO\n\nA **whole** report in one go."},
        fail_on=[ALL_SECTIONS],
    )

    outcome = await make_selector(backend).select(REQUEST)

    assert outcome.ok
    assert outcome.strategy == "single_prompt"
    assert isinstance(outcome.structured_error, NoContentGeneratedError)
    assert outcome.document.content == "INTRO\n\nA whole report in one go."
    assert outcome.document.sections == []
    assert len(backend.calls_matching(SINGLE_PROMPT)) == 1


@pytest.mark.asyncio
async def test_both_strategies_failing_raises_unavailable():
    backend = FakeBackend(fail_on=[ALL_SECTIONS, SINGLE_PROMPT])
    selector = make_selector(backend)

    outcome = await selector.select(REQUEST)
    assert not outcome.ok
    assert isinstance(outcome.error, GenerationUnavailableError)
    assert isinstance(outcome.error.structured_error, NoContentGeneratedError)

    with pytest.raises(GenerationUnavailableError):
        await selector.produce(REQUEST)


@pytest.mark.asyncio
async def test_too_short_single_prompt_counts_as_failure():
    backend = FakeBackend(replies={SINGLE_PROMPT: "Too short."}, fail_on=[ALL_SECTIONS])

    with pytest.raises(GenerationUnavailableError) as exc_info:
        await make_selector(backend, min_chars=20).produce(REQUEST)

    assert "too short" in str(exc_info.value.fallback_error)


@pytest.mark.asyncio
async def test_unknown_type_is_not_retried(fake_backend: FakeBackend):
    request = GenerationRequest(title="X", report_type="nonexistent", user_id="u1")

    with pytest.raises(UnknownDocumentType):
        await make_selector(fake_backend).select(request)

    assert fake_backend.prompts == []


def test_single_prompt_carries_structure_and_formatting():
    request = GenerationRequest(
        title="Smart Campus Navigator",
        report_type="project_proposal",
        user_id="u1",
        requirements=ReportRequirements(font_family="Arial", font_size=11, line_height=2),
    )
    selector = make_selector(FakeBackend())

    prompt = selector.build_prompt(request, "1. INTRO\n2. METHODOLOGY")

    assert "project proposal report" in prompt
    assert "1. INTRO\n2. METHODOLOGY" in prompt
    assert "Font Family: Arial" in prompt
    assert "Font Size: 11pt" in prompt
    assert "Line Height: 2" in prompt


@pytest.mark.asyncio
async def test_stream_falls_back_after_structured_failure():
    backend = FakeBackend(
        replies={SINGLE_PROMPT: "The whole report as one text."},
        fail_on=[ALL_SECTIONS],
    )

    events = [event async for event in make_selector(backend).produce_stream(REQUEST)]
    kinds = [event.event for event in events]

    assert EventType.ERROR not in kinds
    assert kinds.count(EventType.SECTION_FAILED) == 2
    assert kinds[-1] == EventType.COMPLETE
    assert events[-1].progress == 100.0
    assert events[-1].content == "The whole report as one text."
    assert events[-1].document.strategy == "single_prompt"


@pytest.mark.asyncio
async def test_stream_reports_unavailable_when_both_fail():
    backend = FakeBackend(fail_on=[ALL_SECTIONS, SINGLE_PROMPT])

    events = [event async for event in make_selector(backend).produce_stream(REQUEST)]

    assert events[-1].event == EventType.ERROR
    assert "unavailable" in events[-1].error
    assert [e.event for e in events].count(EventType.COMPLETE) == 0
