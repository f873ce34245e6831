# passage_rag/application/rag_orchestrator.py

import logging
import uuid
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator, Sequence

from passage_rag.application.vector_index import VectorIndex
from passage_rag.domain.interfaces import ChatCompletionPort
from passage_rag.domain.models import AnswerEvent, DocumentSearchResult

logger = logging.getLogger(__name__)


MAX_SEARCH_DOCUMENTS = 3
# Below this best score nothing retrieved is considered relevant and the
# model is never asked.
MIN_RELEVANCE_SCORE = 0.35

NO_DOCUMENTS_MESSAGE = (
    "There are no documents in the knowledge base that match your question. "
    "Please upload relevant documents first or try rephrasing your question."
)


class RagState(str, Enum):
    START = "start"
    QUERY_REWRITE = "query_rewrite"
    RETRIEVE = "retrieve"
    NO_RESULTS = "no_results"
    CONTEXT_BUILD = "context_build"
    GENERATE = "generate"
    DONE = "done"


def build_context(documents: Sequence[DocumentSearchResult]) -> str:
    """Labeled sections, numbered from 1 in the given (rank) order."""
    return "".join(
        f"=== Document {n}: {doc.title} ===\n{doc.content}\n\n"
        for n, doc in enumerate(documents, start=1)
    )


class RagOrchestrator:
    """
    Answers one question per call:

        START → QUERY_REWRITE → RETRIEVE ─┬→ NO_RESULTS → DONE
                                          └→ CONTEXT_BUILD → GENERATE → DONE

    The rewritten query is used for retrieval only. Fragments are forwarded
    as they arrive; a consumer that stops iterating closes the upstream
    stream, and whatever it already received stays valid.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        chat: ChatCompletionPort,
        max_documents: int = MAX_SEARCH_DOCUMENTS,
        min_relevance_score: float = MIN_RELEVANCE_SCORE,
    ):
        self._index = vector_index
        self._chat = chat
        self._max_documents = max_documents
        self._min_relevance_score = min_relevance_score

    async def generate_answer(self, question: str) -> AsyncIterator[str]:
        """Answer text fragments; the no-documents message is a single fragment."""
        async with aclosing(self._run(question)) as events:
            async for event in events:
                yield event.text

    async def stream_events(self, question: str) -> AsyncIterator[AnswerEvent]:
        """
        Same flow as generate_answer, as typed events. Always ends with
        exactly one terminal event: "done", or "error" carrying the message
        of whatever failed. Cancellation is not an error and ends the stream
        without a terminal event.
        """
        try:
            async with aclosing(self._run(question)) as events:
                async for event in events:
                    yield event
        except Exception as e:
            logger.error("rag.failed error=%s", e)
            yield AnswerEvent(type="error", text=str(e))
            return

        yield AnswerEvent(type="done")

    # ─── Private ──────────────────────────────────────────────────────────────

    async def _run(self, question: str) -> AsyncIterator[AnswerEvent]:
        request = uuid.uuid4().hex[:8]
        question = question.strip()
        if not question:
            raise ValueError("Question cannot be empty.")

        self._enter(request, RagState.QUERY_REWRITE)
        rewritten = await self._chat.rewrite_query(question)

        self._enter(request, RagState.RETRIEVE)
        documents = await self._index.search_documents(rewritten, self._max_documents)

        if not documents or documents[0].best_score < self._min_relevance_score:
            self._enter(request, RagState.NO_RESULTS)
            logger.info(
                "rag.gate request=%s documents=%d best=%.4f",
                request, len(documents), documents[0].best_score if documents else 0.0,
            )
            yield AnswerEvent(type="no_results", text=NO_DOCUMENTS_MESSAGE)
            self._enter(request, RagState.DONE)
            return

        self._enter(request, RagState.CONTEXT_BUILD)
        context = build_context(documents)

        self._enter(request, RagState.GENERATE)
        fragments = 0
        try:
            async with aclosing(self._chat.stream_answer_with_context(question, context)) as stream:
                async for fragment in stream:
                    fragments += 1
                    yield AnswerEvent(type="fragment", text=fragment)
        finally:
            logger.info("rag.generate request=%s fragments=%d", request, fragments)

        self._enter(request, RagState.DONE)

    @staticmethod
    def _enter(request: str, state: RagState) -> None:
        logger.debug("rag.state request=%s state=%s", request, state.value)
