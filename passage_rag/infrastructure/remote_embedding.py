# passage_rag/infrastructure/remote_embedding.py

import logging
from typing import Optional, Sequence

import numpy as np
from openai import OpenAI

from passage_rag.domain.errors import EmbeddingDimensionError
from passage_rag.domain.interfaces import EmbeddingPort
from passage_rag.infrastructure.timing import timed

logger = logging.getLogger(__name__)


class OpenAIEmbeddingEngine(EmbeddingPort):
    """
    Embeddings API with a fixed output dimensionality. Vectors come back
    one per input, in input order.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ):
        self._client = client or OpenAI(api_key=api_key, base_url=base_url)
        self._model = model
        self._dimensions = dimensions
        logger.info("embed.remote.ready model=%s dims=%d", model, dimensions)

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        kept = [t for t in texts if t and t.strip()]
        if not kept:
            logger.warning("embed.batch.empty")
            return np.empty((0, self._dimensions), dtype=np.float32)

        with timed(logger, "embed.remote", n=len(kept), model=self._model):
            response = self._client.embeddings.create(
                model=self._model,
                input=kept,
                dimensions=self._dimensions,
            )

        rows = sorted(response.data, key=lambda d: d.index)
        vecs = np.asarray([row.embedding for row in rows], dtype=np.float32)
        if vecs.shape[1] != self._dimensions:
            raise EmbeddingDimensionError(self._dimensions, vecs.shape[1])
        return vecs

    def encode_single(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            logger.warning("embed.empty")
            return np.empty(0, dtype=np.float32)
        return self.encode([text])[0]
