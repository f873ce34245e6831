# main.py

import asyncio
import logging
import os
import signal
import sys
from contextlib import contextmanager
from typing import List, Tuple

from passage_rag.application.rag_orchestrator import RagOrchestrator
from passage_rag.application.vector_index import VectorIndex
from passage_rag.domain.errors import ConfigurationError, EmbeddingDimensionError
from passage_rag.domain.interfaces import EmbeddingPort
from passage_rag.infrastructure.chroma_store import ChromaVectorStore
from passage_rag.infrastructure.document_loader import DocumentLoader
from passage_rag.infrastructure.document_store import InMemoryDocumentStore
from passage_rag.infrastructure.embedding_engine import (
    OnnxEmbeddingEngine,
    SentenceTransformerEngine,
)
from passage_rag.infrastructure.logger import init_logger
from passage_rag.infrastructure.onnx_model import OnnxModel
from passage_rag.infrastructure.openai_chat import OpenAIChatCompletion
from passage_rag.infrastructure.remote_embedding import OpenAIEmbeddingEngine
from passage_rag.infrastructure.segmenter import BoundarySegmenter
from passage_rag.infrastructure.settings import Settings, load_settings
from passage_rag.interface.cli import (
    ask_continue,
    begin_answer,
    display_error,
    display_ingestion_summary,
    display_no_results,
    display_welcome_banner,
    end_answer,
    print_fragment,
    prompt_for_question,
)

logger = logging.getLogger(__name__)


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as error:
        display_error(str(error))
        sys.exit(1)

    init_logger(settings)
    display_welcome_banner(settings.COLLECTION_NAME, settings.EMBEDDING_BACKEND)

    # Inference sessions are opened once here and closed once on exit.
    models: List[OnnxModel] = []
    loop = asyncio.new_event_loop()
    chat = None

    try:
        # ── 1. Initialize infrastructure ─────────────────────────────────────
        try:
            api_key = _openai_api_key(settings)
            segmenter = _build_segmenter(settings, models)
            embedder = _build_embedder(settings, models, api_key)
            store = ChromaVectorStore(
                vector_size=settings.VECTOR_SIZE,
                collection_name=settings.COLLECTION_NAME,
                persist_directory=settings.CHROMA_PERSIST_DIRECTORY,
                host=settings.CHROMA_HOST,
                port=settings.CHROMA_PORT,
            )
        except ConfigurationError as error:
            display_error(str(error))
            sys.exit(1)

        chat = OpenAIChatCompletion(
            api_key=api_key,
            model=settings.OPENAI_CHAT_MODEL,
            base_url=settings.OPENAI_BASE_URL,
            timeout_seconds=settings.OPENAI_TIMEOUT_SECONDS,
        )
        documents = InMemoryDocumentStore()
        index = VectorIndex(store, segmenter, embedder, documents)
        orchestrator = RagOrchestrator(index, chat)

        # ── 2. Ingest the data directory ─────────────────────────────────────
        try:
            rows = loop.run_until_complete(_ingest_directory(settings.DATA_DIRECTORY, index, documents))
        except (FileNotFoundError, ConfigurationError, EmbeddingDimensionError) as error:
            display_error(str(error))
            sys.exit(1)

        display_ingestion_summary(rows, store.count())

        # ── 3. Interactive question loop ─────────────────────────────────────
        while True:
            question = prompt_for_question()
            if question.strip():
                _answer(loop, orchestrator, question)
            else:
                display_error("Question cannot be empty.")

            if not ask_continue():
                break

    finally:
        for model in models:
            model.close()
        if chat is not None:
            loop.run_until_complete(chat.close())
        loop.close()


def _openai_api_key(settings: Settings) -> str:
    api_key = settings.OPENAI_API_KEY or os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise ConfigurationError(
            "No OpenAI API key configured. Set PASSAGE_RAG_OPENAI_API_KEY or OPENAI_API_KEY."
        )
    return api_key


def _build_segmenter(settings: Settings, models: List[OnnxModel]) -> BoundarySegmenter:
    model = OnnxModel.load(
        settings.SEGMENTER_MODEL_PATH,
        settings.SEGMENTER_TOKENIZER_PATH,
        name="segmenter",
    )
    models.append(model)
    return BoundarySegmenter(
        model,
        max_length=settings.SEGMENTER_MAX_LENGTH,
        threshold=settings.SEGMENTER_THRESHOLD,
    )


def _build_embedder(settings: Settings, models: List[OnnxModel], api_key: str) -> EmbeddingPort:
    """Embedding strategy chosen by EMBEDDING_BACKEND; all produce VECTOR_SIZE dimensions."""
    backend = settings.EMBEDDING_BACKEND

    if backend == "openai":
        return OpenAIEmbeddingEngine(
            api_key=api_key,
            model=settings.OPENAI_EMBEDDING_MODEL,
            dimensions=settings.VECTOR_SIZE,
            base_url=settings.OPENAI_BASE_URL,
        )

    if backend == "sentence-transformers":
        try:
            return SentenceTransformerEngine(settings.EMBEDDING_MODEL_NAME, dimensions=settings.VECTOR_SIZE)
        except EmbeddingDimensionError as error:
            raise ConfigurationError(str(error)) from error

    model = OnnxModel.load(
        settings.EMBEDDING_MODEL_PATH,
        settings.EMBEDDING_TOKENIZER_PATH,
        name="embedding",
    )
    models.append(model)
    return OnnxEmbeddingEngine(model, settings.VECTOR_SIZE, max_tokens=settings.EMBEDDING_MAX_TOKENS)


async def _ingest_directory(
    directory: str,
    index: VectorIndex,
    documents: InMemoryDocumentStore,
) -> List[Tuple[str, int]]:
    """Load every supported file and (re)index it; a document's old points are replaced."""
    rows: List[Tuple[str, int]] = []

    for document in DocumentLoader().load_directory(directory):
        await documents.put(document)
        passages = await index.add_document(document, replace=True)
        rows.append((document.title, len(passages)))

    if not rows:
        logger.warning("ingest.empty directory=%s", directory)
    return rows


def _answer(loop: asyncio.AbstractEventLoop, orchestrator: RagOrchestrator, question: str) -> None:
    """Stream one answer. Ctrl-C cancels it; text already printed stays on screen."""
    task = loop.create_task(_print_answer(orchestrator, question))
    with _cancel_on_interrupt(loop, task):
        try:
            loop.run_until_complete(task)
        except asyncio.CancelledError:
            end_answer(cancelled=True)


async def _print_answer(orchestrator: RagOrchestrator, question: str) -> None:
    begin_answer()
    async for event in orchestrator.stream_events(question):
        if event.type == "fragment":
            print_fragment(event.text)
        elif event.type == "no_results":
            display_no_results(event.text)
        elif event.type == "error":
            display_error(event.text)
    end_answer()


@contextmanager
def _cancel_on_interrupt(loop: asyncio.AbstractEventLoop, task: asyncio.Task):
    # Signal handlers on the loop are POSIX-only; elsewhere Ctrl-C keeps its default behavior.
    try:
        loop.add_signal_handler(signal.SIGINT, task.cancel)
    except NotImplementedError:
        yield
        return

    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


if __name__ == "__main__":
    main()
