"""Configuration management for the LevRAG service."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .errors import InvalidSettingValue

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)

CHUNK_STORE_BACKENDS = frozenset({"memory", "sqlite"})
SIMILARITY_INDEXES = frozenset({"bruteforce", "faiss"})


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI-compatible provider configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get the provider API key from environment variables.

        Returns:
            API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Chunking Configuration (word based)
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "400"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "50"))
    MIN_CHUNK_CHARS: int = int(os.getenv("MIN_CHUNK_CHARS", "50"))

    # Embedding Configuration
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_DIMENSION: int = int(os.getenv("EMBEDDING_DIMENSION", "768"))
    EMBEDDING_REQUEST_DELAY: float = float(
        os.getenv("EMBEDDING_REQUEST_DELAY", "1.0")
    )

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "1000"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))

    # Outbound call policy
    REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "30.0"))
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY: float = float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    RETRY_MAX_DELAY: float = float(os.getenv("RETRY_MAX_DELAY", "10.0"))

    # Retrieval Configuration
    SIMILARITY_THRESHOLD: float = float(os.getenv("SIMILARITY_THRESHOLD", "0.3"))
    TOP_K: int = int(os.getenv("TOP_K", "5"))
    SIMILARITY_INDEX: str = os.getenv("SIMILARITY_INDEX", "bruteforce").lower()

    # Chunk Store Configuration
    CHUNK_STORE_BACKEND: str = os.getenv("CHUNK_STORE_BACKEND", "memory").lower()
    CHUNK_STORE_DB_PATH: Path = Path(
        os.getenv("CHUNK_STORE_DB_PATH", "data/chunks.db")
    )
    CORPUS_DIR: Path = Path(os.getenv("CORPUS_DIR", "data/corpus"))

    # Conversation Configuration
    MAX_CONTEXT_TOKENS: int = int(os.getenv("MAX_CONTEXT_TOKENS", "2000"))
    MESSAGE_TOKEN_ESTIMATE: int = int(os.getenv("MESSAGE_TOKEN_ESTIMATE", "100"))
    MAX_MESSAGES_PER_SESSION: int = int(os.getenv("MAX_MESSAGES_PER_SESSION", "50"))
    SESSION_TIMEOUT_HOURS: float = float(os.getenv("SESSION_TIMEOUT_HOURS", "24"))

    # Evaluation Configuration
    EVALUATION_RECENT_RESULTS: int = int(os.getenv("EVALUATION_RECENT_RESULTS", "50"))

    # HTTP Server Configuration
    API_HOST: str = os.getenv("API_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("API_PORT", "3030"))

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            InvalidSettingValue: If OPENAI_API_KEY is not set or a numeric
                setting is out of range.
        """
        if not cls.get_openai_api_key():
            msg = (
                "OPENAI_API_KEY is required. Please set it in .env file or environment."
            )
            raise InvalidSettingValue(msg)

        checks: list[tuple[bool, str]] = [
            (cls.CHUNK_SIZE >= 1, f"CHUNK_SIZE must be positive, got {cls.CHUNK_SIZE}"),
            (
                0 <= cls.CHUNK_OVERLAP < cls.CHUNK_SIZE,
                f"CHUNK_OVERLAP must be in [0, {cls.CHUNK_SIZE}), "
                f"got {cls.CHUNK_OVERLAP}",
            ),
            (cls.TOP_K >= 1, f"TOP_K must be at least 1, got {cls.TOP_K}"),
            (
                -1.0 <= cls.SIMILARITY_THRESHOLD <= 1.0,
                "SIMILARITY_THRESHOLD must be in [-1, 1], "
                f"got {cls.SIMILARITY_THRESHOLD}",
            ),
            (
                cls.EMBEDDING_DIMENSION >= 1,
                f"EMBEDDING_DIMENSION must be positive, got {cls.EMBEDDING_DIMENSION}",
            ),
            (
                cls.RETRY_MAX_ATTEMPTS >= 1,
                f"RETRY_MAX_ATTEMPTS must be at least 1, got {cls.RETRY_MAX_ATTEMPTS}",
            ),
            (
                cls.CHUNK_STORE_BACKEND in CHUNK_STORE_BACKENDS,
                f"Unsupported CHUNK_STORE_BACKEND: {cls.CHUNK_STORE_BACKEND}",
            ),
            (
                cls.SIMILARITY_INDEX in SIMILARITY_INDEXES,
                f"Unsupported SIMILARITY_INDEX: {cls.SIMILARITY_INDEX}",
            ),
        ]
        for ok, msg in checks:
            if not ok:
                raise InvalidSettingValue(msg)

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment.

        Returns:
            True if environment is production.
        """
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        provider_level = getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        for name in ("openai", "httpx"):
            logging.getLogger(name).setLevel(provider_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)


config = Config()
