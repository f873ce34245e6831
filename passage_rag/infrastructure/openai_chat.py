# passage_rag/infrastructure/openai_chat.py

import logging
from typing import AsyncGenerator, Dict, List, Mapping, Optional, Sequence

import openai
from openai import AsyncOpenAI

from passage_rag.domain.errors import GenerationError
from passage_rag.domain.interfaces import ChatCompletionPort
from passage_rag.infrastructure.timing import timed

logger = logging.getLogger(__name__)


DEFAULT_CHAT_MODEL = "gpt-4o-mini"

QUERY_REWRITE_SYSTEM_PROMPT = """\
You turn a user's question into a search query for a semantic vector database.

Rules:
- Keep the key concepts, names and terms of the question
- Drop filler words and conversational phrasing
- Stay short but do not lose meaning
- Reply with the rewritten query only, nothing else
"""

RAG_SYSTEM_PROMPT = """\
You are an assistant that answers questions about the user's documents. \
Answer using ONLY the information in the document context you are given.

Rules:
- Base every statement on the provided document context
- Never reply that you do not know or that the documents do not cover the question
- When the exact answer is missing, give the most relevant help the context allows
- Combine information from different documents and passages where it helps
- Be direct and confident, without disclaimers about reasonable inferences
- Refer to the documents by title when that makes the answer clearer
"""

USER_PROMPT_TEMPLATE = "Document Context:\n{context}\n\nQuestion: {question}"

_KNOWN_ROLES = {"user", "assistant", "system"}


def build_chat_messages(
    messages: Sequence[Mapping[str, str]], system_prompt: Optional[str] = None
) -> List[Dict[str, str]]:
    """
    System prompt first (when given), then the conversation. Roles are
    matched case-insensitively; anything unknown is sent as "user".
    """
    result: List[Dict[str, str]] = []
    if system_prompt and system_prompt.strip():
        result.append({"role": "system", "content": system_prompt})

    for message in messages:
        role = str(message.get("role", "user")).lower()
        if role not in _KNOWN_ROLES:
            role = "user"
        result.append({"role": role, "content": message.get("content", "")})

    return result


class OpenAIChatCompletion(ChatCompletionPort):
    """
    Chat Completions client: a single request to rewrite queries,
    streamed requests for answers. Upstream failures surface as
    GenerationError; cancellation passes through untouched and closes the
    HTTP stream.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_CHAT_MODEL,
        base_url: Optional[str] = None,
        timeout_seconds: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._client = client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout_seconds
        )
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def close(self) -> None:
        await self._client.close()

    async def rewrite_query(self, question: str) -> str:
        """Search-optimized form of `question`; the question itself if the model returns nothing."""
        messages = build_chat_messages(
            [{"role": "user", "content": question}], QUERY_REWRITE_SYSTEM_PROMPT
        )
        try:
            with timed(logger, "chat.rewrite", model=self._model):
                response = await self._client.chat.completions.create(
                    model=self._model,
                    messages=messages,
                )
        except openai.OpenAIError as e:
            raise GenerationError(f"Query rewrite failed: {e}") from e

        rewritten = (response.choices[0].message.content or "").strip() if response.choices else ""
        logger.debug("chat.rewrite question=%r rewritten=%r", question, rewritten)
        return rewritten or question

    def stream_answer_with_context(
        self, question: str, document_context: str
    ) -> AsyncGenerator[str, None]:
        user_prompt = USER_PROMPT_TEMPLATE.format(context=document_context, question=question)
        messages = build_chat_messages(
            [{"role": "user", "content": user_prompt}], RAG_SYSTEM_PROMPT
        )
        return self._stream(messages)

    def stream_completion(
        self, messages: Sequence[Mapping[str, str]], system_prompt: str
    ) -> AsyncGenerator[str, None]:
        return self._stream(build_chat_messages(messages, system_prompt))

    # ─── Private ──────────────────────────────────────────────────────────────

    async def _stream(self, messages: List[Dict[str, str]]) -> AsyncGenerator[str, None]:
        try:
            stream = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                stream=True,
            )
        except openai.OpenAIError as e:
            raise GenerationError(f"Answer generation failed: {e}") from e

        fragments = 0
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is not None and delta.content:
                    fragments += 1
                    yield delta.content
        except openai.OpenAIError as e:
            raise GenerationError(f"Answer stream interrupted: {e}") from e
        finally:
            await stream.close()
            logger.info("chat.stream.closed model=%s fragments=%d", self._model, fragments)
