# passage_rag/infrastructure/embedding_engine.py
# Local embedding strategies. Both return L2-normalized float32 vectors.

import logging
from typing import List, Protocol, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from passage_rag.domain.errors import EmbeddingDimensionError
from passage_rag.domain.interfaces import EmbeddingPort
from passage_rag.infrastructure.onnx_model import TokenizedText
from passage_rag.infrastructure.timing import timed

logger = logging.getLogger(__name__)


DEFAULT_MODEL_NAME = "sentence-transformers/all-mpnet-base-v2"


def mean_pool(hidden_state: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    """
    Attention-mask-weighted mean over the sequence axis.
    hidden_state: [1, seq, hidden], attention_mask: [1, seq] -> [hidden]
    Padding positions (mask 0) do not contribute.
    """
    hidden = np.asarray(hidden_state, dtype=np.float32)
    mask = np.asarray(attention_mask, dtype=np.float32)[..., np.newaxis]

    summed = (hidden * mask).sum(axis=1)[0]
    valid = float(mask.sum())
    if valid > 0:
        summed /= valid
    return summed


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """v / ||v||, left untouched when the norm is zero."""
    norm = float(np.linalg.norm(vector))
    if norm > 0:
        return vector / norm
    return vector


class EncoderModel(Protocol):
    def tokenize(
        self, text: str, max_tokens: int | None = None, add_special_tokens: bool = False
    ) -> TokenizedText: ...

    def run(self, input_ids: Sequence[int], attention_mask: Sequence[int]) -> np.ndarray: ...


def _empty_batch(dimensions: int) -> np.ndarray:
    return np.empty((0, dimensions), dtype=np.float32)


class OnnxEmbeddingEngine(EmbeddingPort):
    """
    Transformer encoder run through onnxruntime; last hidden state is mean
    pooled and L2 normalized.
    """

    def __init__(self, model: EncoderModel, dimensions: int, max_tokens: int = 512):
        self._model = model
        self._dimensions = dimensions
        self._max_tokens = max_tokens

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        kept = [t for t in texts if t and t.strip()]
        if not kept:
            logger.warning("embed.batch.empty")
            return _empty_batch(self._dimensions)

        with timed(logger, "embed.encode", n=len(kept)):
            return np.stack([self.encode_single(t) for t in kept])

    def encode_single(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            logger.warning("embed.empty")
            return np.empty(0, dtype=np.float32)

        tokens = self._model.tokenize(text, max_tokens=self._max_tokens, add_special_tokens=True)
        mask = np.asarray([tokens.mask], dtype=np.int64)

        hidden_state = np.asarray(self._model.run(tokens.ids, tokens.mask))
        if hidden_state.ndim != 3:
            raise RuntimeError(
                f"Embedding model returned shape {hidden_state.shape}, expected [1, seq, hidden]."
            )

        vector = l2_normalize(mean_pool(hidden_state, mask)).astype(np.float32, copy=False)
        if vector.shape[0] != self._dimensions:
            raise EmbeddingDimensionError(self._dimensions, vector.shape[0])
        return vector


class SentenceTransformerEngine(EmbeddingPort):
    """sentence-transformers model; pooling and normalization done by the library."""

    def __init__(self, model_name: str = DEFAULT_MODEL_NAME, dimensions: int | None = None):
        with timed(logger, "embed.model.load", model=model_name):
            self._model = SentenceTransformer(model_name, device="cpu")
        self._model_name = model_name

        native = self._model.get_sentence_embedding_dimension()
        if dimensions is not None and native != dimensions:
            raise EmbeddingDimensionError(dimensions, native)
        self._dimensions = native

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        kept: List[str] = [t for t in texts if t and t.strip()]
        if not kept:
            return _empty_batch(self._dimensions)
        with timed(logger, "embed.encode", n=len(kept)):
            vecs = self._model.encode(
                kept,
                convert_to_numpy=True,
                batch_size=32,
                normalize_embeddings=True,
            )
        return vecs.astype(np.float32, copy=False)

    def encode_single(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            return np.empty(0, dtype=np.float32)
        vec = self._model.encode(
            text,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return vec.astype(np.float32, copy=False)
