"""
Embedding Gateway for Statute RAG

Turns fragment and query text into fixed-length vectors. OpenAI
text-embedding-3-small is the default provider; Voyage AI, Cohere and a local
sentence-transformers model are interchangeable alternatives, and any of them
can be paired with a fallback provider.

Architecture:
    BaseEmbeddingService  -- shared caching, batching, truncation, embed, embed_batch
        OpenAIEmbeddingService    -- OpenAI text-embedding-3 provider (default)
        VoyageEmbeddingService    -- Voyage AI voyage-law-2 provider
        CohereEmbeddingService    -- Cohere embed-v3 provider
        LocalEmbeddingService     -- local sentence-transformers model
    FallbackEmbeddingService  -- primary provider with a secondary on failure

Guarantees of embed_batch: one vector per input, in input order; blank inputs
map to zero vectors; over-long inputs are truncated (with a warning) rather
than rejected.
"""

import os
import json
import hashlib
import logging
from typing import Optional, Union
from dataclasses import dataclass, replace
from pathlib import Path

from .errors import (
    EmptyInputError,
    EmbeddingProviderError,
    OperationCancelledError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "openai"  # "openai", "voyage", "cohere" or "local"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    max_text_length: int = 6000  # Characters; longer texts are truncated
    max_tokens_per_batch: int = 100000
    chars_per_token: float = 3.0  # ~4 for English, ~3 for Polish
    cache_dir: Optional[str] = None
    use_cache: bool = True


# Per-provider defaults used by the factory
PROVIDER_DEFAULTS = {
    "openai": {"model": "text-embedding-3-small", "dimensions": 1536, "batch_size": 100},
    "voyage": {"model": "voyage-law-2", "dimensions": 1024, "batch_size": 128},
    "cohere": {"model": "embed-multilingual-v3.0", "dimensions": 1024, "batch_size": 96},
    "local": {"model": "BAAI/bge-m3", "dimensions": 1024, "batch_size": 32},
}


class BaseEmbeddingService:
    """
    Base class for embedding services.

    Provides shared functionality:
    - Input preparation (blank detection, truncation)
    - Batched embedding with progress logging and cancellation
    - Memory and file-based caching
    - Document vs query input type distinction

    Subclasses only need to implement:
    - _init_client(): Initialize the provider-specific client
    - _call_provider(): Only if the client does not expose
      client.embed(texts=..., model=..., input_type=...)

    And set these class attributes:
    - _provider_name: Human-readable provider name for error messages
    - _env_var_name: Environment variable name for the API key
    - _doc_input_type: Input type string for document embeddings
    - _query_input_type: Input type string for query embeddings
    """

    # Subclasses must override these
    _provider_name: str = "Base"
    _env_var_name: str = ""
    _doc_input_type: str = "document"
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._cache = {}

        # Set up cache directory
        if self.config.cache_dir:
            self._cache_path = Path(self.config.cache_dir)
            self._cache_path.mkdir(parents=True, exist_ok=True)
        else:
            self._cache_path = None

        # Initialize provider-specific client
        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific API client. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _init_client()")

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def is_available(self) -> bool:
        """True when a client is configured."""
        return self._client is not None

    def _require_client(self) -> None:
        if not self._client:
            raise ProviderUnavailableError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}.",
                provider=self._provider_name,
            )

    def _prepare_text(self, text: Optional[str]) -> Optional[str]:
        """Return the text to send, truncated if needed, or None when blank."""
        if text is None or not text.strip():
            return None

        limit = self.config.max_text_length
        if len(text) > limit:
            logger.warning(
                f"Text of {len(text)} chars exceeds {limit} chars; truncating before embedding"
            )
            return text[:limit]
        return text

    def _create_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches respecting both item count and token limits."""
        batches = []
        current_batch = []
        current_tokens = 0
        cpt = self.config.chars_per_token

        for text in texts:
            est_tokens = len(text) / cpt
            # Start new batch if adding this text would exceed limits
            if current_batch and (
                len(current_batch) >= self.config.batch_size
                or current_tokens + est_tokens > self.config.max_tokens_per_batch
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0
            current_batch.append(text)
            current_tokens += est_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    def embed(self, text: str) -> list[float]:
        """
        Generate the embedding for a single text (typically a search query).

        Uses the query input type for better query-document matching.

        Args:
            text: Non-blank text

        Returns:
            Embedding vector

        Raises:
            EmptyInputError: If text is blank
            ProviderUnavailableError: If no client is configured
        """
        prepared = self._prepare_text(text)
        if prepared is None:
            raise EmptyInputError("Cannot embed blank text")

        self._require_client()

        result = self._embed_batch([prepared], input_type=self._query_input_type)
        return result[0]

    def embed_batch(self, texts: list[str], cancel_event=None) -> list[list[float]]:
        """
        Generate embeddings for document fragments.

        Args:
            texts: Texts to embed; blank entries yield zero vectors
            cancel_event: Optional threading.Event checked between provider calls

        Returns:
            One embedding per input text, in input order

        Raises:
            ProviderUnavailableError: If no client is configured
            OperationCancelledError: If cancel_event is set between batches
            EmbeddingProviderError: If a provider call fails
        """
        if not texts:
            return []

        self._require_client()

        prepared = [self._prepare_text(t) for t in texts]
        pending = [(i, t) for i, t in enumerate(prepared) if t is not None]
        results: list[Optional[list[float]]] = [None] * len(texts)

        batches = self._create_batches([t for _, t in pending])
        blank_count = len(texts) - len(pending)

        logger.info(
            f"Embedding {len(pending)} texts in {len(batches)} batches"
            f" with {self._provider_name}"
            + (f" ({blank_count} blank inputs get zero vectors)" if blank_count else "")
        )

        cursor = 0
        for batch_idx, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(
                    f"Embedding cancelled after {batch_idx}/{len(batches)} batches"
                )

            batch_embeddings = self._embed_batch(batch, input_type=self._doc_input_type)
            for offset, embedding in enumerate(batch_embeddings):
                results[pending[cursor + offset][0]] = embedding
            cursor += len(batch)

            if (batch_idx + 1) % 10 == 0:
                logger.info(f"Processed batch {batch_idx + 1}/{len(batches)}")

        zero_vector = [0.0] * self.dimensions
        return [r if r is not None else list(zero_vector) for r in results]

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        """Call the provider API for one batch. Voyage and Cohere share this shape."""
        response = self._client.embed(
            texts=texts,
            model=self.config.model,
            input_type=input_type,
        )
        return [list(e) for e in response.embeddings]

    def _embed_batch(
        self,
        texts: list[str],
        input_type: str = "document"
    ) -> list[list[float]]:
        """Embed a batch of texts using the provider API."""
        # Check cache for each text
        results = []
        uncached_texts = []
        uncached_indices = []

        for i, text in enumerate(texts):
            cache_key = self._get_cache_key(text, input_type)
            cached = self._get_cached(cache_key)
            if cached is not None:
                results.append((i, cached))
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        # Get embeddings for uncached texts
        if uncached_texts:
            try:
                embeddings = self._call_provider(uncached_texts, input_type)
            except Exception as e:
                logger.error(f"{self._provider_name} embedding failed: {e}")
                raise EmbeddingProviderError(
                    f"{self._provider_name} embedding failed: {e}",
                    provider=self._provider_name,
                ) from e

            if len(embeddings) != len(uncached_texts):
                raise EmbeddingProviderError(
                    f"{self._provider_name} returned {len(embeddings)} embeddings "
                    f"for {len(uncached_texts)} texts",
                    provider=self._provider_name,
                )

            # Cache and collect results
            for idx, embedding in zip(uncached_indices, embeddings):
                cache_key = self._get_cache_key(texts[idx], input_type)
                self._set_cached(cache_key, embedding)
                results.append((idx, embedding))

        # Sort by original index and return embeddings
        results.sort(key=lambda x: x[0])
        return [emb for _, emb in results]

    def _get_cache_key(self, text: str, input_type: str) -> str:
        """Generate cache key for text."""
        content = f"{self.config.model}:{input_type}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        """Get cached embedding."""
        if not self.config.use_cache:
            return None

        # Check memory cache
        if key in self._cache:
            return self._cache[key]

        # Check file cache
        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            if cache_file.exists():
                try:
                    with open(cache_file) as f:
                        embedding = json.load(f)
                        self._cache[key] = embedding
                        return embedding
                except (OSError, ValueError) as e:
                    logger.debug(f"Failed to read embedding cache file {cache_file}: {e}")

        return None

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        """Cache an embedding."""
        if not self.config.use_cache:
            return

        # Memory cache
        self._cache[key] = embedding

        # File cache
        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            try:
                with open(cache_file, 'w') as f:
                    json.dump(embedding, f)
            except OSError as e:
                logger.warning(f"Failed to cache embedding: {e}")

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions


class OpenAIEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using OpenAI's text-embedding-3 models.

    text-embedding-3-small provides:
    - 1536-dimensional embeddings (shortenable via the dimensions parameter)
    - Good multilingual coverage, including Polish legal text
    - No document/query input type distinction
    """

    _provider_name = "OpenAI"
    _env_var_name = "OPENAI_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the OpenAI client."""
        api_key = os.getenv("OPENAI_API_KEY")

        if not api_key:
            logger.warning(
                "OPENAI_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        try:
            from openai import OpenAI
            self._client = OpenAI(api_key=api_key)
            logger.info(f"OpenAI client initialized with model {self.config.model}")
        except ImportError:
            logger.error("openai package not installed. Run: pip install openai")
            raise

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        response = self._client.embeddings.create(
            model=self.config.model,
            input=texts,
            dimensions=self.config.dimensions,
        )
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI's voyage-law-2 model.

    voyage-law-2 provides:
    - 1024-dimensional embeddings
    - Better retrieval on legal benchmarks vs general models
    - Different input types for documents vs queries
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the Voyage AI client."""
        api_key = os.getenv("VOYAGE_API_KEY")

        if not api_key:
            logger.warning(
                "VOYAGE_API_KEY not found. Embeddings will fail. "
                "Get your API key at https://dash.voyageai.com/"
            )
            return

        try:
            import voyageai
            self._client = voyageai.Client(api_key=api_key)
            logger.info(f"Voyage AI client initialized with model {self.config.model}")
        except ImportError:
            logger.error("voyageai package not installed. Run: pip install voyageai")
            raise


class CohereEmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using Cohere's embed-v3 models.

    embed-multilingual-v3.0 provides:
    - 1024-dimensional embeddings
    - Different input types for documents vs queries
    """

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _doc_input_type = "search_document"
    _query_input_type = "search_query"

    def _init_client(self):
        """Initialize the Cohere client."""
        api_key = os.getenv("COHERE_API_KEY")

        if not api_key:
            logger.warning(
                "COHERE_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        try:
            import cohere
            self._client = cohere.Client(api_key)
            logger.info(f"Cohere client initialized with model {self.config.model}")
        except ImportError:
            logger.error("Cohere package not installed. Run: pip install cohere")
            raise


class LocalEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using a local sentence-transformers model.

    Uses BGE-M3 by default for cost-free embeddings. Good for development
    or high-volume batch processing; never needs an API key.
    """

    _provider_name = "Local"
    _env_var_name = "sentence-transformers"

    def _init_client(self):
        """Load the local model."""
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers not installed. "
                "Run: pip install sentence-transformers"
            )

        self._client = SentenceTransformer(self.config.model)
        # Model decides the vector length
        self.config.dimensions = self._client.get_sentence_embedding_dimension()
        logger.info(f"Local embedding model loaded: {self.config.model}")

    def _call_provider(self, texts: list[str], input_type: str) -> list[list[float]]:
        embeddings = self._client.encode(texts, show_progress_bar=len(texts) > 32)
        return embeddings.tolist()


class FallbackEmbeddingService:
    """
    Wraps a primary provider with a secondary one.

    Provider failures (unavailable or failing calls) on the primary are
    retried once on the fallback. Caller errors such as blank input and
    cancellation propagate unchanged.
    """

    _retryable = (ProviderUnavailableError, EmbeddingProviderError)

    def __init__(self, primary: BaseEmbeddingService, fallback: Optional[BaseEmbeddingService] = None):
        self.primary = primary
        self.fallback = fallback

        if fallback is not None and fallback.dimensions != primary.dimensions:
            logger.warning(
                f"Fallback provider {fallback.provider_name} produces {fallback.dimensions}-dim "
                f"vectors, primary {primary.provider_name} produces {primary.dimensions}; "
                f"a mixed collection will be rejected by the vector store"
            )

    @property
    def provider_name(self) -> str:
        return self.primary.provider_name

    @property
    def is_available(self) -> bool:
        return self.primary.is_available or bool(self.fallback and self.fallback.is_available)

    @property
    def dimensions(self) -> int:
        return self.primary.dimensions

    def embed(self, text: str) -> list[float]:
        try:
            return self.primary.embed(text)
        except self._retryable as e:
            if self.fallback is None:
                raise
            logger.warning(f"{self.primary.provider_name} failed ({e}); using {self.fallback.provider_name}")
            return self.fallback.embed(text)

    def embed_batch(self, texts: list[str], cancel_event=None) -> list[list[float]]:
        try:
            return self.primary.embed_batch(texts, cancel_event=cancel_event)
        except self._retryable as e:
            if self.fallback is None:
                raise
            logger.warning(f"{self.primary.provider_name} failed ({e}); using {self.fallback.provider_name}")
            return self.fallback.embed_batch(texts, cancel_event=cancel_event)


EmbeddingServiceType = Union[BaseEmbeddingService, FallbackEmbeddingService]

_PROVIDER_CLASSES = {
    "openai": OpenAIEmbeddingService,
    "voyage": VoyageEmbeddingService,
    "cohere": CohereEmbeddingService,
    "local": LocalEmbeddingService,
}


def _build_service(provider: str, base_config: Optional[EmbeddingConfig]) -> BaseEmbeddingService:
    if provider not in _PROVIDER_CLASSES:
        raise ProviderUnavailableError(f"Unknown embedding provider: {provider}", provider=provider)

    defaults = PROVIDER_DEFAULTS[provider]
    if base_config is not None and base_config.provider == provider:
        config = base_config
    elif base_config is not None:
        # Keep shared limits, swap provider-specific model settings
        config = replace(base_config, provider=provider, **defaults)
    else:
        config = EmbeddingConfig(provider=provider, **defaults)

    return _PROVIDER_CLASSES[provider](config)


def get_embedding_service(
    provider: str = "openai",
    fallback_provider: Optional[str] = None,
    config: Optional[EmbeddingConfig] = None,
    language_config=None,
) -> EmbeddingServiceType:
    """
    Factory function to get appropriate embedding service.

    Args:
        provider: "openai" (default), "voyage", "cohere" or "local"
        fallback_provider: Optional secondary provider used when the primary fails
        config: Optional EmbeddingConfig for the primary provider
        language_config: Optional LanguageConfig; supplies provider, model and token ratio

    Returns:
        Configured embedding service
    """
    if config is None and language_config is not None:
        provider = language_config.embedding_provider
        defaults = PROVIDER_DEFAULTS.get(provider, PROVIDER_DEFAULTS["openai"])
        config = EmbeddingConfig(
            provider=provider,
            model=language_config.embedding_model,
            dimensions=language_config.embedding_dimensions,
            batch_size=defaults["batch_size"],
            chars_per_token=language_config.chars_per_token,
        )
    elif config is not None:
        provider = config.provider

    primary = _build_service(provider, config)
    if not fallback_provider or fallback_provider == provider:
        return primary

    fallback = _build_service(fallback_provider, config)
    return FallbackEmbeddingService(primary, fallback)


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    provider = os.getenv("EMBEDDING_PROVIDER", "openai")
    print(f"Using embedding provider: {provider}")

    service = get_embedding_service(provider=provider)

    if len(sys.argv) > 1:
        query = " ".join(sys.argv[1:])
    else:
        query = "Jakie są obowiązki administratora danych?"

    print(f"Query: {query}")
    embedding = service.embed(query)
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")
