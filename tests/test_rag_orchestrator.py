# tests/test_rag_orchestrator.py

import asyncio
from contextlib import aclosing

import pytest

from fakes import FakeChat, FakeIndex, doc_result
from passage_rag.application.rag_orchestrator import (
    MAX_SEARCH_DOCUMENTS,
    MIN_RELEVANCE_SCORE,
    NO_DOCUMENTS_MESSAGE,
    RagOrchestrator,
    build_context,
)
from passage_rag.domain.errors import GenerationError


async def _collect(agen):
    return [item async for item in agen]


# ── Gate ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_low_score_yields_only_the_fixed_message():
    chat = FakeChat()
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.20)]), chat)

    fragments = await _collect(orchestrator.generate_answer("What is an enzyme?"))

    assert fragments == [NO_DOCUMENTS_MESSAGE]
    assert chat.answer_calls == []


@pytest.mark.asyncio
async def test_no_documents_yields_only_the_fixed_message():
    chat = FakeChat()
    orchestrator = RagOrchestrator(FakeIndex([]), chat)

    events = await _collect(orchestrator.stream_events("What is an enzyme?"))

    assert [e.type for e in events] == ["no_results", "done"]
    assert events[0].text == NO_DOCUMENTS_MESSAGE
    assert chat.answer_calls == []


@pytest.mark.asyncio
async def test_score_at_threshold_still_generates():
    chat = FakeChat()
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", MIN_RELEVANCE_SCORE)]), chat)

    assert await _collect(orchestrator.generate_answer("q")) == ["Hello", " world"]
    assert len(chat.answer_calls) == 1


# ── Rewrite → retrieve → generate ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_relevant_documents_are_sent_as_labeled_context():
    chat = FakeChat(fragments=["Enzymes ", "are ", "catalysts."])
    index = FakeIndex([
        doc_result("a", 0.80, content="Alpha full text.", title="Alpha"),
        doc_result("b", 0.60, content="Beta full text.", title="Beta"),
    ])
    orchestrator = RagOrchestrator(index, chat)

    fragments = await _collect(orchestrator.generate_answer("What do enzymes do?"))

    assert fragments == ["Enzymes ", "are ", "catalysts."]
    assert len(chat.answer_calls) == 1
    question, context = chat.answer_calls[0]
    assert question == "What do enzymes do?"
    assert "=== Document 1: Alpha ===\nAlpha full text." in context
    assert "=== Document 2: Beta ===\nBeta full text." in context
    assert context.index("Document 1") < context.index("Document 2")


@pytest.mark.asyncio
async def test_rewritten_query_is_used_only_for_retrieval():
    chat = FakeChat()
    index = FakeIndex([doc_result("a", 0.9)])
    orchestrator = RagOrchestrator(index, chat)

    fragments = await _collect(orchestrator.generate_answer("  enzymes?  "))

    assert chat.rewrite_calls == ["enzymes?"]
    assert index.queries == [("rewritten: enzymes?", MAX_SEARCH_DOCUMENTS)]
    assert chat.answer_calls[0][0] == "enzymes?"
    assert all("rewritten" not in f for f in fragments)


def test_build_context_numbers_documents_in_order():
    context = build_context([doc_result("x", 0.9, "X text", "X"), doc_result("y", 0.5, "Y text", "Y")])
    assert context == "=== Document 1: X ===\nX text\n\n=== Document 2: Y ===\nY text\n\n"


# ── Events, errors, cancellation ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stream_events_ends_with_done():
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.9)]), FakeChat())

    events = await _collect(orchestrator.stream_events("q"))

    assert [e.type for e in events] == ["fragment", "fragment", "done"]


@pytest.mark.asyncio
async def test_generation_failure_is_a_terminal_error_event():
    chat = FakeChat(fragments=["one", "two", "three"], fail_after=1)
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.9)]), chat)

    events = await _collect(orchestrator.stream_events("q"))

    assert [e.type for e in events] == ["fragment", "error"]
    assert events[0].text == "one"
    assert "upstream went away" in events[1].text
    assert chat.closed


@pytest.mark.asyncio
async def test_rewrite_failure_is_a_terminal_error_event():
    chat = FakeChat(rewrite_error=GenerationError("rewrite unavailable"))
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.9)]), chat)

    events = await _collect(orchestrator.stream_events("q"))

    assert [e.type for e in events] == ["error"]
    assert chat.answer_calls == []


@pytest.mark.asyncio
async def test_empty_question_is_an_error_event():
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.9)]), FakeChat())

    events = await _collect(orchestrator.stream_events("   "))

    assert [e.type for e in events] == ["error"]


@pytest.mark.asyncio
async def test_generate_answer_propagates_generation_errors():
    chat = FakeChat(fail_after=0)
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.9)]), chat)

    with pytest.raises(GenerationError):
        await _collect(orchestrator.generate_answer("q"))


@pytest.mark.asyncio
async def test_consumer_stopping_early_keeps_fragments_and_closes_stream():
    chat = FakeChat(fragments=["f1", "f2", "f3", "f4", "f5"])
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.9)]), chat)

    received = []
    async with aclosing(orchestrator.generate_answer("q")) as fragments:
        async for fragment in fragments:
            received.append(fragment)
            if len(received) == 2:
                break

    assert received == ["f1", "f2"]
    assert chat.closed
    assert chat.emitted == 2


@pytest.mark.asyncio
async def test_cancelled_task_keeps_observed_fragments():
    chat = FakeChat(fragments=["f1", "f2", "f3", "f4", "f5"])
    orchestrator = RagOrchestrator(FakeIndex([doc_result("a", 0.9)]), chat)
    received = []
    two_seen = asyncio.Event()

    async def consume():
        async with aclosing(orchestrator.stream_events("q")) as events:
            async for event in events:
                received.append(event.text)
                if len(received) == 2:
                    two_seen.set()
                    await asyncio.sleep(3600)

    task = asyncio.create_task(consume())
    await two_seen.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert received == ["f1", "f2"]
    assert chat.closed
