# tests/test_boundary_scores.py

import numpy as np
import pytest

from passage_rag.infrastructure.boundary_scores import (
    Rank1Scores,
    Rank2Scores,
    Rank3Scores,
    boundary_indices,
    resolve_scores,
    sigmoid,
)


LOGITS = np.array([-4.0, 3.0, -1.0, 0.5], dtype=np.float32)


def test_sigmoid_midpoint_and_extremes():
    assert sigmoid(np.array([0.0]))[0] == pytest.approx(0.5)
    out = sigmoid(np.array([-1e6, 1e6]))
    assert out[0] == pytest.approx(0.0)
    assert out[1] == pytest.approx(1.0)


def test_resolve_rank1():
    assert isinstance(resolve_scores(LOGITS), Rank1Scores)


def test_resolve_rank2():
    assert isinstance(resolve_scores(LOGITS[np.newaxis, :]), Rank2Scores)


def test_resolve_rank3_uses_boundary_class():
    output = np.stack([-LOGITS, LOGITS], axis=-1)[np.newaxis, :, :]
    scores = resolve_scores(output)
    assert isinstance(scores, Rank3Scores)
    np.testing.assert_allclose(scores.token_scores(), LOGITS)


@pytest.mark.parametrize("layout", ["rank1", "rank2", "rank3"])
def test_all_layouts_give_same_boundaries(layout):
    if layout == "rank1":
        output = LOGITS
    elif layout == "rank2":
        output = LOGITS[np.newaxis, :]
    else:
        output = np.stack([-LOGITS, LOGITS], axis=-1)[np.newaxis, :, :]

    assert boundary_indices(output, token_count=4, threshold=0.5) == [1, 3]


def test_float16_output_is_accepted():
    assert boundary_indices(LOGITS.astype(np.float16), 4, 0.5) == [1, 3]


def test_threshold_is_inclusive():
    assert boundary_indices(np.array([0.0, -0.1], dtype=np.float32), 2, 0.5) == [0]


def test_scores_beyond_token_count_are_ignored():
    assert boundary_indices(LOGITS, token_count=2, threshold=0.5) == [1]


def test_integer_output_is_unsupported(caplog):
    assert resolve_scores(np.array([1, 2, 3], dtype=np.int64)) is None
    assert boundary_indices(np.array([5, 5], dtype=np.int64), 2, 0.5) == []
    assert "segment.output.unsupported" in caplog.text


def test_unsupported_rank_yields_no_boundaries():
    assert boundary_indices(np.zeros((1, 1, 4, 2), dtype=np.float32), 4, 0.5) == []


def test_rank3_without_boundary_class_is_unsupported():
    assert resolve_scores(np.zeros((1, 4, 1), dtype=np.float32)) is None
