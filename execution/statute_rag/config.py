"""
Environment-driven settings for Statute RAG

Component configs (ChunkConfig, EmbeddingConfig, VectorStoreConfig,
CitationConfig, RetrievalConfig) carry their own defaults; RAGSettings reads
the environment once and builds them. Entry points call
dotenv.load_dotenv() before RAGSettings.from_env().
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from .chunker import ChunkConfig
from .citation import CitationConfig
from .embeddings import EmbeddingConfig, PROVIDER_DEFAULTS
from .language_config import LanguageConfig, DEFAULT_LANGUAGE
from .vector_store import VectorStoreConfig, DEFAULT_STORAGE_PATH

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class RetrievalConfig:
    """Configuration for the retrieval orchestrator."""
    top_k: int = 20
    # Fragments embedded and stored per step; a failure reports the steps already done
    index_batch_size: int = 100


@dataclass
class RAGSettings:
    """All settings of the RAG core, resolved from the environment."""
    vector_store_path: str = DEFAULT_STORAGE_PATH
    language: str = DEFAULT_LANGUAGE
    embedding_provider: str = "openai"
    embedding_fallback_provider: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_cache_dir: Optional[str] = None
    chunk_size: int = 1500
    subchunk_size: int = 1000
    top_k: int = 20
    max_embedding_length: int = 6000
    embedding_batch_size: int = 100
    max_citation_length: int = 1000
    citation_threshold: int = 800
    citation_key_length: int = 100
    citation_fallback: bool = True

    @classmethod
    def from_env(cls) -> "RAGSettings":
        """Build settings from environment variables, falling back to defaults."""
        provider = os.getenv("EMBEDDING_PROVIDER", "openai").strip().lower()
        provider_defaults = PROVIDER_DEFAULTS.get(provider, PROVIDER_DEFAULTS["openai"])

        settings = cls(
            vector_store_path=os.getenv("VECTOR_STORE_PATH") or DEFAULT_STORAGE_PATH,
            language=os.getenv("RAG_LANGUAGE", DEFAULT_LANGUAGE).strip().lower(),
            embedding_provider=provider,
            embedding_fallback_provider=(os.getenv("EMBEDDING_FALLBACK_PROVIDER") or "").strip().lower() or None,
            embedding_model=(
                os.getenv("OPENAI_EMBEDDING_MODEL", provider_defaults["model"])
                if provider == "openai"
                else os.getenv("EMBEDDING_MODEL", provider_defaults["model"])
            ),
            embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", provider_defaults["dimensions"]),
            embedding_cache_dir=os.getenv("EMBEDDING_CACHE_DIR") or None,
            chunk_size=_env_int("RAG_CHUNK_SIZE", 1500),
            subchunk_size=_env_int("RAG_SUBCHUNK_SIZE", 1000),
            top_k=_env_int("RAG_TOP_K", 20),
            max_embedding_length=_env_int("RAG_MAX_EMBEDDING_LENGTH", 6000),
            embedding_batch_size=_env_int("RAG_EMBEDDING_BATCH_SIZE", provider_defaults["batch_size"]),
            max_citation_length=_env_int("RAG_MAX_CITATION_LENGTH", 1000),
            citation_threshold=_env_int("RAG_CITATION_THRESHOLD", 800),
            citation_key_length=_env_int("RAG_CITATION_KEY_LENGTH", 100),
            citation_fallback=_env_bool("RAG_CITATION_FALLBACK", True),
        )
        logger.debug(f"Loaded settings: provider={settings.embedding_provider}, store={settings.vector_store_path}")
        return settings

    def language_config(self) -> LanguageConfig:
        config = LanguageConfig.for_language(self.language)
        config.embedding_provider = self.embedding_provider
        config.embedding_model = self.embedding_model
        config.embedding_dimensions = self.embedding_dimensions
        return config

    def chunk_config(self) -> ChunkConfig:
        return ChunkConfig(
            max_atom_chars=self.chunk_size,
            max_subchunk_chars=self.subchunk_size,
        )

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            provider=self.embedding_provider,
            model=self.embedding_model,
            dimensions=self.embedding_dimensions,
            batch_size=self.embedding_batch_size,
            max_text_length=self.max_embedding_length,
            chars_per_token=self.language_config().chars_per_token,
            cache_dir=self.embedding_cache_dir,
        )

    def vector_store_config(self) -> VectorStoreConfig:
        return VectorStoreConfig(storage_path=self.vector_store_path)

    def citation_config(self) -> CitationConfig:
        return CitationConfig(
            max_snippet_length=self.max_citation_length,
            sentence_threshold=self.citation_threshold,
            key_length=self.citation_key_length,
            fallback_to_first_candidate=self.citation_fallback,
        )

    def retrieval_config(self) -> RetrievalConfig:
        return RetrievalConfig(
            top_k=self.top_k,
            index_batch_size=self.embedding_batch_size,
        )
