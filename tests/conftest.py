"""
Shared fixtures and test utilities for Statute RAG tests.

Provides mock services, sample statute text, and reusable fixtures so that
all tests can run without API keys or external network access.
"""

import re
import sys
import hashlib
from pathlib import Path

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

# ---------------------------------------------------------------------------
# Sample statute text
# ---------------------------------------------------------------------------
SAMPLE_TITLE = "Ustawa o ochronie danych testowych"

SAMPLE_STATUTE = """USTAWA o ochronie danych testowych

Dział I
Przepisy ogólne

Rozdział 1. Zakres ustawy

Art. 1. Ustawa określa zasady ochrony danych testowych.

Art. 2. 1. Administratorem jest podmiot ustalający cele przetwarzania.
2. Podmiot przetwarzający działa w imieniu administratora.

Rozdział 2. Obowiązki administratora

Art. 3. Administrator prowadzi rejestr czynności przetwarzania.

§ 1. Rejestr prowadzi się w formie elektronicznej.

Dział II
Przepisy końcowe

Art. 4. Ustawa wchodzi w życie po upływie 14 dni od dnia ogłoszenia.
"""

SAMPLE_STATUTE_FRAGMENTS = 5

MINIMAL_CHAPTER_TEXT = "Rozdział 1. Ogólne\n\nArt. 1. Treść pierwsza.\nArt. 2. Treść druga."


@pytest.fixture
def sample_statute():
    return SAMPLE_STATUTE


@pytest.fixture
def sample_metadata():
    """Return DocumentMetadata for the sample statute."""
    from execution.statute_rag.document_parser import DocumentMetadata
    return DocumentMetadata(
        title=SAMPLE_TITLE,
        source_url="https://isap.example/ustawa-testowa",
    )


@pytest.fixture
def chunker():
    """Return a default LegalChunker instance."""
    from execution.statute_rag.chunker import LegalChunker
    return LegalChunker()


@pytest.fixture
def sample_fragments(chunker, sample_metadata):
    """Return fragments produced from the sample statute."""
    return chunker.chunk(SAMPLE_STATUTE, sample_metadata)


def make_fragment(fragment_id, raw_text, title="Kodeks testowy", article="Art. 1", **metadata):
    """Build a Fragment directly, bypassing the chunker."""
    from execution.statute_rag.chunker import CitationInfo, Fragment, FragmentMetadata
    return Fragment(
        id=fragment_id,
        display_text=raw_text,
        raw_text=raw_text,
        metadata=FragmentMetadata(
            title=title,
            atom_type=metadata.pop("atom_type", "article"),
            atom_number=metadata.pop("atom_number", "1"),
            **metadata,
        ),
        citation_info=CitationInfo(source=title, article=article),
    )


@pytest.fixture
def fragment_factory():
    return make_fragment


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """
    Deterministic mock embedding service -- never calls external APIs.

    Hashes each word into a bucket, so texts sharing words are similar.
    """

    def __init__(self, dimensions=64):
        self._dimensions = dimensions
        self.embed_calls = 0
        self.batch_calls = 0
        self.fail_after_batches = None

    provider_name = "Mock"
    is_available = True

    def embed(self, text):
        from execution.statute_rag.errors import EmptyInputError
        if not text or not text.strip():
            raise EmptyInputError("Cannot embed blank text")
        self.embed_calls += 1
        return self._bag_of_words(text)

    def embed_batch(self, texts, cancel_event=None):
        from execution.statute_rag.errors import EmbeddingProviderError
        if self.fail_after_batches is not None and self.batch_calls >= self.fail_after_batches:
            raise EmbeddingProviderError("mock provider down", provider="Mock")
        self.batch_calls += 1
        return [self._bag_of_words(t) if t.strip() else [0.0] * self._dimensions for t in texts]

    def _bag_of_words(self, text):
        vector = [0.0] * self._dimensions
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.sha256(word.encode()).hexdigest()[:8], 16) % self._dimensions
            vector[bucket] += 1.0
        return vector

    @property
    def dimensions(self):
        return self._dimensions


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService(dimensions=64)


# ---------------------------------------------------------------------------
# Vector store on a temporary path
# ---------------------------------------------------------------------------

@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "vectorstore" / "fragments.json"


@pytest.fixture
def vector_store(store_path):
    from execution.statute_rag.vector_store import VectorStore, VectorStoreConfig
    store = VectorStore(VectorStoreConfig(storage_path=str(store_path)))
    store.initialize()
    return store


@pytest.fixture
def retriever(vector_store, mock_embedding_service):
    """LegalRetriever wired to the mock embedder and a temp store."""
    from execution.statute_rag.chunker import LegalChunker
    from execution.statute_rag.retriever import LegalRetriever
    return LegalRetriever(
        chunker=LegalChunker(),
        embedding_service=mock_embedding_service,
        vector_store=vector_store,
    )


# ---------------------------------------------------------------------------
# Singleton resets between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics():
    from execution.statute_rag.metrics import get_metrics_collector
    get_metrics_collector().reset()
    yield
