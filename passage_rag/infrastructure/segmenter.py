# passage_rag/infrastructure/segmenter.py

import logging
import re
from typing import List, Protocol, Sequence, Tuple

import numpy as np

from passage_rag.domain.errors import ConfigurationError
from passage_rag.domain.interfaces import SegmenterPort
from passage_rag.infrastructure.boundary_scores import boundary_indices
from passage_rag.infrastructure.onnx_model import TokenizedText
from passage_rag.infrastructure.timing import timed

logger = logging.getLogger(__name__)


# Passages shorter than this (characters) are folded into their successor.
MIN_CHUNK_SIZE = 100
# Merged passages stay under max_length * MERGE_CHARS_PER_TOKEN characters.
MERGE_CHARS_PER_TOKEN = 4
MERGE_SEPARATOR = "\n\n"

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


class BoundaryModel(Protocol):
    def tokenize(self, text: str) -> TokenizedText: ...

    def run(self, input_ids: Sequence[int], attention_mask: Sequence[int]) -> np.ndarray: ...


def split_at_boundaries(
    text: str,
    offsets: Sequence[Tuple[int, int]],
    boundaries: Sequence[int],
) -> List[str]:
    """
    Cut `text` after each boundary token. `offsets` are character offsets
    into `text`. A boundary whose end offset does not move forward, or falls
    outside the text, is skipped. Whatever follows the last cut is kept.
    """
    if not boundaries or not text:
        return [text.strip()] if text and text.strip() else []

    result: List[str] = []
    last_end = 0

    for boundary in boundaries:
        if boundary < 0 or boundary >= len(offsets):
            continue
        cut = offsets[boundary][1]
        if cut <= last_end or cut > len(text):
            continue
        chunk = text[last_end:cut].strip()
        if chunk:
            result.append(chunk)
        last_end = cut

    remaining = text[last_end:].strip()
    if remaining:
        result.append(remaining)

    return result


def merge_small_passages(
    passages: Sequence[str],
    min_chunk_size: int = MIN_CHUNK_SIZE,
    max_chunk_chars: int = 512 * MERGE_CHARS_PER_TOKEN,
) -> List[str]:
    """
    Fold undersized passages forward. While the running accumulator is
    shorter than `min_chunk_size`, the next passage is appended to it,
    provided the joined text stays within `max_chunk_chars`. Otherwise the
    accumulator is flushed and a new one starts. No text is dropped.
    """
    if len(passages) <= 1:
        return [p.strip() for p in passages if p.strip()]

    result: List[str] = []
    current = ""

    for passage in passages:
        if not current.strip():
            current = passage
        elif (
            len(current) < min_chunk_size
            and len(current) + len(passage) + len(MERGE_SEPARATOR) <= max_chunk_chars
        ):
            current += MERGE_SEPARATOR + passage
        else:
            result.append(current)
            current = passage

    if current.strip():
        result.append(current)

    return [p.strip() for p in result if p.strip()]


class BoundarySegmenter(SegmenterPort):
    """
    Splits text into passages with a per-token boundary classifier.

    Pipeline:
        1. split on blank lines into blocks
        2. tokenize each block; blocks longer than `max_length` tokens are
           processed in consecutive non-overlapping windows
        3. sigmoid-threshold the model's per-token scores into boundaries
        4. cut at the boundary tokens' character offsets
        5. merge undersized passages, trim, drop empties
    """

    def __init__(
        self,
        model: BoundaryModel,
        max_length: int = 512,
        threshold: float = 0.5,
        min_chunk_size: int = MIN_CHUNK_SIZE,
    ):
        if max_length <= 0:
            raise ConfigurationError(f"max_length must be positive, got {max_length}")
        if not 0.0 < threshold < 1.0:
            raise ConfigurationError(f"threshold must be in (0, 1), got {threshold}")

        self._model = model
        self._max_length = max_length
        self._threshold = threshold
        self._min_chunk_size = min_chunk_size

    @property
    def max_length(self) -> int:
        return self._max_length

    def segment(self, text: str) -> List[str]:
        if not text or not text.strip():
            logger.warning("segment.empty")
            return []

        blocks = [b.strip() for b in PARAGRAPH_BREAK.split(text) if b.strip()]

        passages: List[str] = []
        with timed(logger, "segment", blocks=len(blocks)):
            for block in blocks:
                passages.extend(self._segment_block(block))

        merged = merge_small_passages(
            passages,
            min_chunk_size=self._min_chunk_size,
            max_chunk_chars=self._max_length * MERGE_CHARS_PER_TOKEN,
        )
        logger.info("segment.passages raw=%d merged=%d", len(passages), len(merged))
        return merged

    # ─── Private ─────────────────────────────────────────────────────────────

    def _segment_block(self, block: str) -> List[str]:
        tokens = self._model.tokenize(block)

        if len(tokens) == 0:
            return [block.strip()] if block.strip() else []

        if len(tokens) > self._max_length:
            return self._segment_long_block(block, tokens)

        boundaries = self._predict_boundaries(tokens)
        return split_at_boundaries(block, tokens.offsets, boundaries)

    def _segment_long_block(self, block: str, tokens: TokenizedText) -> List[str]:
        """
        Windows of at most `max_length` tokens. Each window owns the text from
        the previous window's end up to its last token's end (the final window
        runs to the end of the block), so every character lands in exactly one
        window.
        """
        result: List[str] = []
        span_start = 0
        total = len(tokens)

        for start in range(0, total, self._max_length):
            end = min(start + self._max_length, total)
            window = tokens.window(start, end)

            is_last = end == total
            span_end = len(block) if is_last else min(window.offsets[-1][1], len(block))
            if span_end <= span_start:
                continue

            span = block[span_start:span_end]
            local_offsets = [(s - span_start, e - span_start) for s, e in window.offsets]

            boundaries = self._predict_boundaries(window)
            result.extend(split_at_boundaries(span, local_offsets, boundaries))
            span_start = span_end

        logger.debug("segment.long_block tokens=%d windows=%d", total, -(-total // self._max_length))
        return result

    def _predict_boundaries(self, tokens: TokenizedText) -> List[int]:
        with timed(logger, "segment.infer", level=logging.DEBUG, tokens=len(tokens)):
            output = self._model.run(tokens.ids, tokens.mask)
        boundaries = boundary_indices(output, len(tokens), self._threshold)
        logger.debug("segment.boundaries tokens=%d boundaries=%d", len(tokens), len(boundaries))
        return boundaries
