# tests/test_remote_embedding.py

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from passage_rag.domain.errors import EmbeddingDimensionError
from passage_rag.infrastructure.remote_embedding import OpenAIEmbeddingEngine


def _client(rows):
    client = MagicMock()
    client.embeddings.create.return_value = SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=vec) for i, vec in rows]
    )
    return client


def test_encode_sends_only_non_blank_texts_with_dimensions():
    client = _client([(0, [1.0, 0.0]), (1, [0.0, 1.0])])
    engine = OpenAIEmbeddingEngine(api_key="k", model="emb-model", dimensions=2, client=client)

    vecs = engine.encode(["alpha", "   ", "beta", ""])

    client.embeddings.create.assert_called_once_with(
        model="emb-model", input=["alpha", "beta"], dimensions=2
    )
    assert vecs.shape == (2, 2)


def test_encode_restores_input_order():
    client = _client([(1, [0.0, 1.0]), (0, [1.0, 0.0])])
    engine = OpenAIEmbeddingEngine(api_key="k", dimensions=2, client=client)

    vecs = engine.encode(["first", "second"])

    np.testing.assert_array_equal(vecs[0], [1.0, 0.0])
    np.testing.assert_array_equal(vecs[1], [0.0, 1.0])


def test_blank_inputs_never_reach_the_api():
    client = MagicMock()
    engine = OpenAIEmbeddingEngine(api_key="k", dimensions=4, client=client)

    assert engine.encode_single("  ").size == 0
    assert engine.encode(["", " "]).shape == (0, 4)
    client.embeddings.create.assert_not_called()


def test_wrong_dimensionality_is_rejected():
    client = _client([(0, [1.0, 0.0, 0.0])])
    engine = OpenAIEmbeddingEngine(api_key="k", dimensions=2, client=client)

    with pytest.raises(EmbeddingDimensionError):
        engine.encode_single("text")
