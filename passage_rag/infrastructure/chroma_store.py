# passage_rag/infrastructure/chroma_store.py

import logging
import threading
from pathlib import Path
from typing import Any, List, Optional, Sequence

import chromadb
import numpy as np
from chromadb.config import Settings

from passage_rag.domain.errors import ConfigurationError, EmbeddingDimensionError
from passage_rag.domain.interfaces import VectorStorePort
from passage_rag.domain.models import IndexedPoint, SearchHit
from passage_rag.infrastructure.timing import timed

logger = logging.getLogger(__name__)


# ── Constants ─────────────────────────────────────────────────────────────────

DEFAULT_COLLECTION_NAME = "documents"
DISTANCE_METRIC = "cosine"
DIMENSION_KEY = "dimension"


class ChromaVectorStore(VectorStorePort):
    """
    ChromaDB-backed passage collection.

    ┌──────────────────────────────────────────────────────────────┐
    │  one point per passage, id = passage id                      │
    │  vector    → embedding (cosine space)                        │
    │  document  → passage text                                    │
    │  metadata  → document_id, title, passage_index               │
    └──────────────────────────────────────────────────────────────┘

    Chroma reports cosine *distance* (1 - cos); hits carry the similarity.
    The collection records its dimensionality in its metadata, so a store
    opened with a different vector size fails instead of mixing spaces.
    """

    def __init__(
        self,
        vector_size: int,
        collection_name: str = DEFAULT_COLLECTION_NAME,
        persist_directory: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 8000,
        client: Optional[Any] = None,
    ):
        """
        Args:
            vector_size:       Dimensionality every stored vector must have.
            collection_name:   Shared namespace for all documents.
            persist_directory: On-disk location for an embedded database.
            host, port:        Remote Chroma server; takes precedence over
                               persist_directory.
            client:            Pre-built chromadb client (tests, custom setups).
        """
        if vector_size <= 0:
            raise ConfigurationError(f"vector_size must be positive, got {vector_size}")

        self._vector_size = vector_size
        self._collection_name = collection_name
        self._collection = None
        self._lock = threading.Lock()

        if client is not None:
            self._client = client
            return

        try:
            if host:
                self._client = chromadb.HttpClient(
                    host=host,
                    port=port,
                    settings=Settings(anonymized_telemetry=False),
                )
                logger.info("chroma.connect host=%s port=%d", host, port)
            else:
                directory = persist_directory or "./data/chroma_db"
                path = Path(directory)
                if path.exists() and not path.is_dir():
                    raise ConfigurationError(
                        f"Failed to initialize ChromaDB: path '{directory}' is a file."
                    )
                path.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(
                    path=directory,
                    settings=Settings(anonymized_telemetry=False),
                )
                logger.info("chroma.open path=%s", directory)
        except ConfigurationError:
            raise
        except Exception as error:
            raise ConfigurationError(
                f"Failed to initialize ChromaDB.\n"
                f"The database may be locked by another process, corrupted or unreachable.\n"
                f"Original error: {error}"
            ) from error

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def vector_size(self) -> int:
        return self._vector_size

    # ─── VectorStorePort ──────────────────────────────────────────────────────

    def ensure_collection(self) -> None:
        """
        An existing collection is opened as is; otherwise it is created with
        get_or_create, so a concurrent creator winning first is not an error.
        The lock only keeps this process from issuing duplicate creates.
        """
        with self._lock:
            if self._collection_name in self.list_collections():
                collection = self._client.get_collection(name=self._collection_name)
            else:
                collection = self._client.get_or_create_collection(
                    name=self._collection_name,
                    metadata={
                        "hnsw:space": DISTANCE_METRIC,
                        DIMENSION_KEY: self._vector_size,
                    },
                )
                logger.info("chroma.collection.created name=%s dim=%d", self._collection_name, self._vector_size)
            stored = (collection.metadata or {}).get(DIMENSION_KEY)
            if stored is not None and int(stored) != self._vector_size:
                raise ConfigurationError(
                    f"Collection '{self._collection_name}' holds {stored}-dimensional "
                    f"vectors, configured vector size is {self._vector_size}."
                )
            self._collection = collection

    def list_collections(self) -> List[str]:
        # chromadb returns names in some releases and Collection objects in others
        return [c if isinstance(c, str) else c.name for c in self._client.list_collections()]

    def upsert(self, points: Sequence[IndexedPoint]) -> None:
        if not points:
            return

        for point in points:
            if len(point.vector) != self._vector_size:
                raise EmbeddingDimensionError(self._vector_size, len(point.vector))

        collection = self._require_collection()
        with timed(logger, "chroma.upsert", n=len(points)):
            collection.upsert(
                ids        = [p.point_id for p in points],
                embeddings = [np.asarray(p.vector, dtype=np.float32).tolist() for p in points],
                documents  = [p.passage_text for p in points],
                metadatas  = [{
                    "document_id":   p.document_id,
                    "title":         p.title,
                    "passage_index": p.passage_index,
                } for p in points],
            )

    def search(self, vector: np.ndarray, limit: int) -> List[SearchHit]:
        """
        Nearest passages by cosine similarity, best first. Never asks Chroma
        for more results than the collection holds.
        """
        collection = self._require_collection()
        available = collection.count()
        if available == 0 or limit <= 0:
            return []

        with timed(logger, "chroma.query", limit=limit):
            raw = collection.query(
                query_embeddings = [np.asarray(vector, dtype=np.float32).tolist()],
                n_results        = min(limit, available),
                include          = ["documents", "metadatas", "distances"],
            )

        hits = self._map_to_hits(raw)
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    def delete_by_document(self, document_id: str) -> None:
        collection = self._require_collection()
        collection.delete(where={"document_id": document_id})
        logger.info("chroma.delete document=%s", document_id)

    def count(self) -> int:
        return self._require_collection().count()

    # ─── Private ──────────────────────────────────────────────────────────────

    def _require_collection(self):
        if self._collection is None:
            self.ensure_collection()
        return self._collection

    @staticmethod
    def _map_to_hits(raw: dict) -> List[SearchHit]:
        """Rows without a document id in their metadata are dropped."""
        hits: List[SearchHit] = []

        for pid, text, metadata, distance in zip(
            raw["ids"][0],
            raw["documents"][0],
            raw["metadatas"][0],
            raw["distances"][0],
        ):
            metadata = metadata or {}
            document_id = metadata.get("document_id")
            if not document_id:
                continue

            hits.append(SearchHit(
                document_id   = str(document_id),
                title         = str(metadata.get("title", "")),
                passage_text  = text or "",
                passage_index = int(metadata.get("passage_index", 0)),
                score         = 1.0 - float(distance),
                passage_id    = pid,
            ))

        return hits
