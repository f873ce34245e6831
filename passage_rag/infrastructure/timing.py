# passage_rag/infrastructure/timing.py

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator


@contextmanager
def timed(
    logger: logging.Logger, name: str, level: int = logging.INFO, **kv: Any
) -> Iterator[None]:
    """
    Usage:
      with timed(logger, "segment.infer", level=logging.DEBUG, tokens=312):
          ...
    On success emits one record at `level`: "<name>.done ms=<int> key=val ..."
    If the block raises, emits "<name>.failed ms=<int> error=<type> key=val ..."
    at WARNING (or `level`, if higher) and lets the exception propagate.
    """
    suffix = "".join(f" {k}={v}" for k, v in kv.items())
    t0 = time.perf_counter()
    try:
        yield
    except BaseException as e:
        dt_ms = int((time.perf_counter() - t0) * 1000)
        logger.log(
            max(level, logging.WARNING),
            "%s.failed ms=%d error=%s%s", name, dt_ms, type(e).__name__, suffix,
        )
        raise
    dt_ms = int((time.perf_counter() - t0) * 1000)
    logger.log(level, "%s.done ms=%d%s", name, dt_ms, suffix)
