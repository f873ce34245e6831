# passage_rag/infrastructure/settings.py

from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from passage_rag.domain.errors import ConfigurationError


EmbeddingBackend = Literal["onnx", "sentence-transformers", "openai"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PASSAGE_RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data
    DATA_DIRECTORY: str = "data"

    # Segmenter (boundary-classification model)
    SEGMENTER_MODEL_PATH: str = "models/sat-3l-sm.onnx"
    SEGMENTER_TOKENIZER_PATH: str = "models/segmenter-tokenizer.json"
    SEGMENTER_MAX_LENGTH: int = Field(default=512, gt=0)
    SEGMENTER_THRESHOLD: float = Field(default=0.5, gt=0.0, lt=1.0)

    # Embedding
    EMBEDDING_BACKEND: EmbeddingBackend = "onnx"
    EMBEDDING_MODEL_PATH: str = "models/embedding.onnx"
    EMBEDDING_TOKENIZER_PATH: str = "models/embedding-tokenizer.json"
    EMBEDDING_MAX_TOKENS: int = Field(default=512, gt=0)
    EMBEDDING_MODEL_NAME: str = "sentence-transformers/all-mpnet-base-v2"

    # Vector store
    CHROMA_PERSIST_DIRECTORY: str = "./data/chroma_db"
    CHROMA_HOST: Optional[str] = None
    CHROMA_PORT: int = 8000
    COLLECTION_NAME: str = "documents"
    VECTOR_SIZE: int = Field(default=768, gt=0)

    # OpenAI (chat + remote embeddings)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    OPENAI_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0.0)

    # Logging knobs
    LOGGER_NAME: str = "passage-rag"
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"
    LOG_FILE_NAME: str = "passage-rag.log"
    LOG_MAX_BYTES: int = 50 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 5

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level '{v}'")
        return level


def load_settings(**overrides) -> Settings:
    """
    Build Settings from the environment (and .env). Every invalid field is
    reported in one ConfigurationError so startup can fail fast.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        lines = []
        for err in e.errors():
            loc = ".".join(str(x) for x in err.get("loc", []))
            lines.append(f" - {loc}: {err.get('msg', '')}")
        raise ConfigurationError(
            "Missing/invalid settings:\n" + "\n".join(lines)
        ) from e
