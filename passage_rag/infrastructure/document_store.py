# passage_rag/infrastructure/document_store.py

import asyncio
import logging
from typing import Dict, List, Optional

from passage_rag.domain.interfaces import DocumentStorePort
from passage_rag.domain.models import Document

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStorePort):
    """Full document texts keyed by document id, held for the process lifetime."""

    def __init__(self):
        self._documents: Dict[str, Document] = {}
        self._lock = asyncio.Lock()

    async def put(self, document: Document) -> None:
        async with self._lock:
            self._documents[document.document_id] = document
        logger.debug("docstore.put document=%s chars=%d", document.document_id, len(document.content))

    async def get_full_text(self, document_id: str) -> Optional[str]:
        document = self._documents.get(document_id)
        return document.content if document is not None else None

    async def remove(self, document_id: str) -> bool:
        async with self._lock:
            removed = self._documents.pop(document_id, None) is not None
        return removed

    def all(self) -> List[Document]:
        return list(self._documents.values())

    def __len__(self) -> int:
        return len(self._documents)
