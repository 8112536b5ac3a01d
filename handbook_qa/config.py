"""Application configuration with sensible defaults.

Values are read from the environment once and frozen into a ``Settings``
instance that is handed to the pipeline, the stores and the HTTP app.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from handbook_qa.errors import ConfigurationError

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# OpenAI-compatible endpoints
OPENAI_BASE_URL = "https://api.openai.com/v1"
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIM = 1536  # text-embedding-3-small
CHAT_MODEL = "gpt-4o-mini"
TEMPERATURE = 0.3

# Chunking (word-based)
CHUNK_TARGET_WORDS = 600
CHUNK_MIN_WORDS = 400
CHUNK_MAX_WORDS = 800
CHUNK_OVERLAP_WORDS = 50

# Retrieval
RETRIEVAL_TOP_K = 5
VECTOR_BACKENDS = ("supabase", "faiss")

# Timeouts (seconds)
HTTP_TIMEOUT = 30.0
REQUEST_TIMEOUT = 60.0

# Corpus
CORPUS_NAME = "Lincoln school handbooks"
HANDBOOK_PREFIX = "LincolnHandbook"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration.

    Attributes:
        openai_api_key: Credential for the embedding and chat endpoints.
        openai_base_url: Base URL of the OpenAI-compatible API.
        embedding_model: Embedding model id, shared by ingestion and queries.
        embedding_dim: Expected embedding dimension.
        chat_model: Chat completion model id.
        temperature: Sampling temperature for answers.
        top_k: Number of chunks retrieved per question.
        chunk_target_words: Preferred chunk size in words.
        chunk_min_words: Floor below which a chunk is never closed.
        chunk_max_words: Ceiling that triggers a chunk boundary.
        chunk_overlap_words: Words carried from one chunk into the next.
        vector_backend: ``supabase`` or ``faiss``.
        supabase_url: Supabase project URL.
        supabase_service_role_key: Supabase service role key (server-side only).
        data_dir: Directory for the local FAISS index and SQLite database.
        http_timeout: Per-call timeout for external services.
        request_timeout: Wall-clock budget for answering one question.
        corpus_name: Human name of the corpus, used in the system instruction.
        handbook_prefix: Raw document-name prefix recognised by the label normalizer.
        log_level: Logging level name.
    """

    openai_api_key: str = ""
    openai_base_url: str = OPENAI_BASE_URL
    embedding_model: str = EMBEDDING_MODEL
    embedding_dim: int = EMBEDDING_DIM
    chat_model: str = CHAT_MODEL
    temperature: float = TEMPERATURE
    top_k: int = RETRIEVAL_TOP_K

    chunk_target_words: int = CHUNK_TARGET_WORDS
    chunk_min_words: int = CHUNK_MIN_WORDS
    chunk_max_words: int = CHUNK_MAX_WORDS
    chunk_overlap_words: int = CHUNK_OVERLAP_WORDS

    vector_backend: str = "supabase"
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    data_dir: Path = DATA_DIR

    http_timeout: float = HTTP_TIMEOUT
    request_timeout: float = REQUEST_TIMEOUT

    corpus_name: str = CORPUS_NAME
    handbook_prefix: str = HANDBOOK_PREFIX
    log_level: str = LOG_LEVEL

    @property
    def db_path(self) -> Path:
        return self.data_dir / "handbook.sqlite"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings from environment variables.

        Returns:
            Settings instance with values loaded from the environment
        """
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_base_url=os.getenv("OPENAI_BASE_URL", OPENAI_BASE_URL).rstrip("/"),
            embedding_model=os.getenv("EMBEDDING_MODEL", EMBEDDING_MODEL),
            embedding_dim=int(os.getenv("EMBEDDING_DIM", str(EMBEDDING_DIM))),
            chat_model=os.getenv("CHAT_MODEL", CHAT_MODEL),
            temperature=float(os.getenv("TEMPERATURE", str(TEMPERATURE))),
            top_k=int(os.getenv("RETRIEVAL_TOP_K", str(RETRIEVAL_TOP_K))),
            chunk_target_words=int(os.getenv("CHUNK_TARGET_WORDS", str(CHUNK_TARGET_WORDS))),
            chunk_min_words=int(os.getenv("CHUNK_MIN_WORDS", str(CHUNK_MIN_WORDS))),
            chunk_max_words=int(os.getenv("CHUNK_MAX_WORDS", str(CHUNK_MAX_WORDS))),
            chunk_overlap_words=int(
                os.getenv("CHUNK_OVERLAP_WORDS", str(CHUNK_OVERLAP_WORDS))
            ),
            vector_backend=os.getenv("VECTOR_BACKEND", "supabase").lower(),
            supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
            data_dir=Path(os.getenv("DATA_DIR", str(DATA_DIR))),
            http_timeout=float(os.getenv("HTTP_TIMEOUT", str(HTTP_TIMEOUT))),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", str(REQUEST_TIMEOUT))),
            corpus_name=os.getenv("CORPUS_NAME", CORPUS_NAME),
            handbook_prefix=os.getenv("HANDBOOK_PREFIX", HANDBOOK_PREFIX),
            log_level=os.getenv("LOG_LEVEL", LOG_LEVEL),
        )

    def missing_credentials(self) -> List[str]:
        """List the required environment variables that are not set."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if self.vector_backend == "supabase":
            if not self.supabase_url:
                missing.append("SUPABASE_URL")
            if not self.supabase_service_role_key:
                missing.append("SUPABASE_SERVICE_ROLE_KEY")
        return missing

    def validate(self) -> "Settings":
        """Check that the settings can drive the pipeline.

        Returns:
            The same Settings instance, for chaining

        Raises:
            ConfigurationError: If credentials are missing or a value is unusable
        """
        if self.vector_backend not in VECTOR_BACKENDS:
            raise ConfigurationError(
                f"Unknown VECTOR_BACKEND '{self.vector_backend}' "
                f"(expected one of: {', '.join(VECTOR_BACKENDS)})"
            )

        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        if self.top_k < 1:
            raise ConfigurationError(f"RETRIEVAL_TOP_K must be positive, got {self.top_k}")

        return self


def mask_value(value: Optional[str], show_chars: int = 10) -> str:
    """Mask a secret for diagnostics output."""
    if not value:
        return "NOT SET"
    if len(value) <= show_chars:
        return "set (too short to mask)"
    return f"set ({value[:show_chars]}***)"
