# passage_rag/infrastructure/boundary_scores.py
"""
Boundary-classification output handling.

Segmentation models disagree on output layout. Three layouts are accepted:

    Rank1Scores        [seq]                 one score per token
    Rank2Scores        [batch, seq]          one score per token, batch of 1
    Rank3Scores        [batch, seq, classes] class BOUNDARY_CLASS is "boundary"

`resolve_scores` picks the variant once per inference call; everything
downstream works on the uniform per-token probability array.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np

logger = logging.getLogger(__name__)

BOUNDARY_CLASS = 1
SUPPORTED_DTYPES = (np.float16, np.float32, np.float64)


@dataclass(frozen=True)
class Rank1Scores:
    scores: np.ndarray

    def token_scores(self) -> np.ndarray:
        return self.scores


@dataclass(frozen=True)
class Rank2Scores:
    scores: np.ndarray

    def token_scores(self) -> np.ndarray:
        return self.scores[0]


@dataclass(frozen=True)
class Rank3Scores:
    scores: np.ndarray

    def token_scores(self) -> np.ndarray:
        return self.scores[0, :, BOUNDARY_CLASS]


BoundaryScores = Union[Rank1Scores, Rank2Scores, Rank3Scores]


def sigmoid(x: np.ndarray) -> np.ndarray:
    # clip keeps exp() finite for extreme logits
    x = np.clip(np.asarray(x, dtype=np.float64), -500.0, 500.0)
    return 1.0 / (1.0 + np.exp(-x))


def resolve_scores(output) -> Optional[BoundaryScores]:
    """
    Classify a raw model output. Returns None (after a warning) when the
    dtype or shape is not one of the supported layouts.
    """
    arr = np.asarray(output)
    if not any(arr.dtype == dt for dt in SUPPORTED_DTYPES):
        logger.warning("segment.output.unsupported dtype=%s", arr.dtype)
        return None

    arr = arr.astype(np.float32, copy=False)
    if arr.ndim == 3 and arr.shape[2] > BOUNDARY_CLASS:
        return Rank3Scores(arr)
    if arr.ndim == 2:
        return Rank2Scores(arr)
    if arr.ndim == 1:
        return Rank1Scores(arr)

    logger.warning("segment.output.unsupported shape=%s", arr.shape)
    return None


def boundary_probabilities(scores: BoundaryScores, token_count: int) -> np.ndarray:
    """Per-token boundary probability, truncated to the real token count."""
    return sigmoid(scores.token_scores()[:token_count])


def boundary_indices(output, token_count: int, threshold: float) -> List[int]:
    """
    Token positions whose boundary probability is at least `threshold`.
    Unsupported outputs yield no boundaries.
    """
    scores = resolve_scores(output)
    if scores is None:
        return []
    probs = boundary_probabilities(scores, token_count)
    return [int(i) for i in np.flatnonzero(probs >= threshold)]
