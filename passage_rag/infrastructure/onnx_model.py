# passage_rag/infrastructure/onnx_model.py
"""
Long-lived inference handle: an onnxruntime session plus its tokenizer.

Loaded once at startup, shared read-only by every request, released once
at shutdown. Each `run` call builds its own input arrays and receives its
own output arrays, so concurrent callers never share tensors.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import onnxruntime as ort
from tokenizers import Tokenizer

from passage_rag.domain.errors import ConfigurationError
from passage_rag.infrastructure.timing import timed

logger = logging.getLogger(__name__)

_ONNX_INPUT_DTYPES = {
    "tensor(int64)": np.int64,
    "tensor(int32)": np.int32,
    "tensor(float16)": np.float16,
    "tensor(float)": np.float32,
}


@dataclass(frozen=True)
class TokenizedText:
    """
    Token ids with (start, end) character offsets into the source text and
    the tokenizer's attention mask. Without a mask every position is real.
    """
    ids: List[int]
    offsets: List[Tuple[int, int]]
    attention_mask: Optional[List[int]] = None

    def __len__(self) -> int:
        return len(self.ids)

    @property
    def mask(self) -> List[int]:
        if self.attention_mask is None:
            return [1] * len(self.ids)
        return list(self.attention_mask)

    def window(self, start: int, end: int) -> "TokenizedText":
        return TokenizedText(
            ids=self.ids[start:end],
            offsets=self.offsets[start:end],
            attention_mask=self.mask[start:end],
        )


class OnnxModel:

    def __init__(self, session: ort.InferenceSession, tokenizer: Tokenizer, name: str = "model"):
        self._session: Optional[ort.InferenceSession] = session
        self._tokenizer = tokenizer
        self._name = name

    @classmethod
    def load(cls, model_path: str, tokenizer_path: str, name: str = "model") -> "OnnxModel":
        """
        Load model and tokenizer from disk. Missing files are a configuration
        error, raised before anything is loaded.
        """
        for label, path in (("model", model_path), ("tokenizer", tokenizer_path)):
            if not Path(path).is_file():
                raise ConfigurationError(f"{name} {label} not found at path: {path}")

        with timed(logger, "onnx.load", model=name):
            session = ort.InferenceSession(model_path, providers=["CPUExecutionProvider"])
            tokenizer = Tokenizer.from_file(tokenizer_path)
            # Sequences are encoded one at a time, unpadded and untruncated.
            tokenizer.no_padding()
            tokenizer.no_truncation()

        logger.info("onnx.ready model=%s path=%s", name, model_path)
        return cls(session, tokenizer, name=name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._session is None

    def tokenize(
        self,
        text: str,
        max_tokens: Optional[int] = None,
        add_special_tokens: bool = False,
    ) -> TokenizedText:
        """
        Encode `text`. With `max_tokens` the encoding is truncated so that the
        final sequence, special tokens included, fits the budget. The shared
        tokenizer is never reconfigured; truncation is applied per encoding.
        """
        encoding = self._tokenizer.encode(text, add_special_tokens=False)

        if max_tokens is not None:
            reserved = self._tokenizer.num_special_tokens_to_add(False) if add_special_tokens else 0
            budget = max(0, max_tokens - reserved)
            if len(encoding.ids) > budget:
                encoding.truncate(budget)

        if add_special_tokens:
            encoding = self._tokenizer.post_process(encoding)

        return TokenizedText(
            ids=list(encoding.ids),
            offsets=[(int(s), int(e)) for s, e in encoding.offsets],
            attention_mask=list(encoding.attention_mask),
        )

    def run(
        self,
        input_ids: Sequence[int],
        attention_mask: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        """
        Run one forward pass for a single sequence and return the first output.
        Input tensor dtypes follow the model's declared input metadata.
        """
        if self._session is None:
            raise RuntimeError(f"{self._name} session is closed.")

        mask = list(attention_mask) if attention_mask is not None else [1] * len(input_ids)
        feed = {}
        for meta in self._session.get_inputs():
            dtype = _ONNX_INPUT_DTYPES.get(meta.type, np.int64)
            name = meta.name
            if name == "attention_mask" or "mask" in name:
                values = mask
            elif name == "input_ids" or "input" in name:
                values = list(input_ids)
            elif "token_type" in name:
                values = [0] * len(input_ids)
            else:
                continue
            feed[name] = np.asarray(values, dtype=dtype).reshape(1, -1)

        outputs = self._session.run(None, feed)
        return outputs[0]

    def close(self) -> None:
        if self._session is None:
            return
        self._session = None
        logger.info("onnx.closed model=%s", self._name)

    def __enter__(self) -> "OnnxModel":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
