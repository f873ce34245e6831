# passage_rag/application/vector_index.py

import asyncio
import logging
import uuid
from typing import Dict, List, Sequence

from passage_rag.domain.interfaces import (
    DocumentStorePort,
    EmbeddingPort,
    SegmenterPort,
    VectorStorePort,
)
from passage_rag.domain.models import (
    Document,
    DocumentSearchResult,
    IndexedPoint,
    Passage,
    SearchHit,
)

logger = logging.getLogger(__name__)


UPSERT_BATCH_SIZE = 100
# Raw hits requested per wanted document, so that enough distinct
# documents survive grouping.
OVERFETCH_FACTOR = 5
MAX_RELEVANT_PASSAGES = 3


def group_hits_by_document(hits: Sequence[SearchHit]) -> List[DocumentSearchResult]:
    """
    One result per document id: best_score is the max hit score, and
    relevant_passages the top passages by score. Groups are ordered by
    best_score descending. Both sorts are stable, so ties keep the order in
    which documents first appear in `hits`.
    """
    groups: Dict[str, List[SearchHit]] = {}
    for hit in hits:
        groups.setdefault(hit.document_id, []).append(hit)

    results: List[DocumentSearchResult] = []
    for document_id, group in groups.items():
        ranked = sorted(group, key=lambda h: h.score, reverse=True)
        results.append(DocumentSearchResult(
            document_id       = document_id,
            title             = ranked[0].title,
            content           = "",
            best_score        = ranked[0].score,
            relevant_passages = [h.passage_text for h in ranked[:MAX_RELEVANT_PASSAGES]],
        ))

    results.sort(key=lambda r: r.best_score, reverse=True)
    return results


class VectorIndex:
    """
    Owns the passage collection: ingestion (segment → embed → upsert) and
    retrieval (embed → search → group by document → hydrate).

    The collection is ensured before every operation. Store calls and local
    inference are blocking, so they run on worker threads.
    """

    def __init__(
        self,
        store: VectorStorePort,
        segmenter: SegmenterPort,
        embedder: EmbeddingPort,
        document_store: DocumentStorePort,
        batch_size: int = UPSERT_BATCH_SIZE,
    ):
        self._store = store
        self._segmenter = segmenter
        self._embedder = embedder
        self._document_store = document_store
        self._batch_size = batch_size

    async def ensure_collection(self) -> None:
        await asyncio.to_thread(self._store.ensure_collection)

    async def add_document(self, document: Document, replace: bool = False) -> List[Passage]:
        """
        Segment, embed and upsert one document. Returns the passages in index
        order. Batches go out in order; a failing batch leaves earlier ones in
        place. With `replace`, the document's previous points are removed
        first.
        """
        await self.ensure_collection()
        if replace:
            await asyncio.to_thread(self._store.delete_by_document, document.document_id)

        texts = await asyncio.to_thread(self._segmenter.segment, document.content)
        passages = [
            Passage(
                passage_id  = str(uuid.uuid4()),
                document_id = document.document_id,
                index       = i,
                text        = text,
            )
            for i, text in enumerate(texts)
        ]
        if not passages:
            logger.warning("index.add.empty document=%s", document.document_id)
            return []

        batches = range(0, len(passages), self._batch_size)
        for batch_no, start in enumerate(batches, start=1):
            batch = passages[start:start + self._batch_size]
            vectors = await asyncio.to_thread(self._embedder.encode, [p.text for p in batch])
            points = [
                IndexedPoint(
                    point_id      = p.passage_id,
                    vector        = vec.tolist(),
                    document_id   = document.document_id,
                    title         = document.title,
                    passage_index = p.index,
                    passage_text  = p.text,
                )
                for p, vec in zip(batch, vectors)
            ]
            await asyncio.to_thread(self._store.upsert, points)
            logger.info(
                "index.batch document=%s batch=%d/%d points=%d",
                document.document_id, batch_no, len(batches), len(points),
            )

        logger.info("index.add document=%s passages=%d", document.document_id, len(passages))
        return passages

    async def search(self, query: str, limit: int = 5) -> List[SearchHit]:
        """Passage-level hits, best first. No grouping."""
        await self.ensure_collection()

        vector = await asyncio.to_thread(self._embedder.encode_single, query)
        if vector.size == 0:
            logger.warning("index.search.empty_query")
            return []

        hits = await asyncio.to_thread(self._store.search, vector, limit)
        logger.debug("index.search query=%r hits=%d", query, len(hits))
        return hits[:limit]

    async def search_documents(self, query: str, document_limit: int = 3) -> List[DocumentSearchResult]:
        """
        Top `document_limit` documents for `query`, each hydrated with its full
        stored text. A document missing from the store gets its relevant
        passages, blank-line joined, as content.
        """
        if document_limit <= 0:
            return []

        hits = await self.search(query, limit=document_limit * OVERFETCH_FACTOR)
        results = group_hits_by_document(hits)[:document_limit]

        for result in results:
            full_text = await self._document_store.get_full_text(result.document_id)
            if full_text is None:
                logger.warning("index.hydrate.missing document=%s", result.document_id)
                full_text = "\n\n".join(result.relevant_passages)
            result.content = full_text

        logger.info(
            "index.search_documents hits=%d documents=%d best=%.4f",
            len(hits), len(results), results[0].best_score if results else 0.0,
        )
        return results

    async def delete_document(self, document_id: str) -> None:
        """Remove every point of `document_id`. Unknown ids are a no-op."""
        await self.ensure_collection()
        await asyncio.to_thread(self._store.delete_by_document, document_id)
