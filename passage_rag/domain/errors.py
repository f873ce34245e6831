# passage_rag/domain/errors.py


class ConfigurationError(RuntimeError):
    """Invalid settings or missing model assets. Fatal at startup."""


class EmbeddingDimensionError(ValueError):
    """A vector's length does not match the configured collection size."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding has {actual} dimensions, collection expects {expected}."
        )
        self.expected = expected
        self.actual = actual


class GenerationError(RuntimeError):
    """The text-generation service failed while rewriting or answering."""
