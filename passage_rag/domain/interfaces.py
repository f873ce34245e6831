# passage_rag/domain/interfaces.py

from abc import ABC, abstractmethod
from typing import AsyncGenerator, List, Mapping, Optional, Sequence
import numpy as np

from .models import IndexedPoint, SearchHit


class SegmenterPort(ABC):
    """Splits one document's plain text into ordered passage texts."""

    @abstractmethod
    def segment(self, text: str) -> List[str]: ...


class EmbeddingPort(ABC):
    """
    Port for any embedding engine, local or remote.
    Blank input is not an error: encode_single returns an empty vector and
    encode drops blank entries before dispatch.
    """

    @property
    @abstractmethod
    def dimensions(self) -> int: ...

    @abstractmethod
    def encode(self, texts: Sequence[str]) -> np.ndarray: ...

    @abstractmethod
    def encode_single(self, text: str) -> np.ndarray: ...


class VectorStorePort(ABC):
    """
    Wire contract of the vector database. Calls are blocking; callers on an
    event loop dispatch them to a worker thread.
    """

    @abstractmethod
    def ensure_collection(self) -> None:
        """Create the collection if absent. Safe to race."""
        ...

    @abstractmethod
    def list_collections(self) -> List[str]: ...

    @abstractmethod
    def upsert(self, points: Sequence[IndexedPoint]) -> None: ...

    @abstractmethod
    def search(self, vector: np.ndarray, limit: int) -> List[SearchHit]: ...

    @abstractmethod
    def delete_by_document(self, document_id: str) -> None: ...

    @abstractmethod
    def count(self) -> int: ...


class DocumentStorePort(ABC):

    @abstractmethod
    async def get_full_text(self, document_id: str) -> Optional[str]:
        """Return the stored document text, or None when unknown."""
        ...


class ChatCompletionPort(ABC):
    """
    Text-generation collaborator. Streams are async generators of text
    fragments; closing the generator cancels the upstream request.
    """

    @abstractmethod
    async def rewrite_query(self, question: str) -> str: ...

    @abstractmethod
    def stream_answer_with_context(
        self, question: str, document_context: str
    ) -> AsyncGenerator[str, None]: ...

    @abstractmethod
    def stream_completion(
        self, messages: Sequence[Mapping[str, str]], system_prompt: str
    ) -> AsyncGenerator[str, None]: ...
