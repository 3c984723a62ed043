"""
Error Taxonomy for Statute RAG

All failures raised by the RAG core derive from StatuteRAGError so callers
can catch the whole family at one seam (CLI, HTTP layer, batch jobs).

Classification:
- Caller errors (never retried): EmptyInputError, DimensionMismatchError,
  DuplicateFragmentError, FragmentNotFoundError
- Provider errors (fallback provider, then surface): ProviderUnavailableError,
  EmbeddingProviderError
- Storage errors: PersistenceError
- Pipeline reports: EmptyDocumentError, IndexingError, OperationCancelledError
"""

from typing import Optional


class StatuteRAGError(Exception):
    """Base class for all Statute RAG errors."""


class EmptyInputError(StatuteRAGError, ValueError):
    """Raised when blank text is given where non-blank text is required."""


class DimensionMismatchError(StatuteRAGError, ValueError):
    """Raised when vector lengths (or vector/record counts) disagree."""

    def __init__(self, message: str, expected: Optional[int] = None, actual: Optional[int] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class DuplicateFragmentError(StatuteRAGError, ValueError):
    """Raised when a fragment id is already present in the collection."""

    def __init__(self, message: str, fragment_ids: list[str]):
        super().__init__(message)
        self.fragment_ids = fragment_ids


class FragmentNotFoundError(StatuteRAGError, KeyError):
    """Raised when a fragment id is unknown to the store."""

    def __init__(self, fragment_id: str):
        super().__init__(fragment_id)
        self.fragment_id = fragment_id

    def __str__(self) -> str:
        return f"Fragment not found: {self.fragment_id}"


class EmptyDocumentError(StatuteRAGError):
    """Raised when a document produces zero fragments during indexing."""

    def __init__(self, document_title: str):
        super().__init__(f"Document '{document_title}' produced no fragments")
        self.document_title = document_title


class ProviderUnavailableError(StatuteRAGError):
    """Raised when no embedding backend is configured or reachable."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class EmbeddingProviderError(StatuteRAGError):
    """Raised when a configured embedding provider call fails."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class PersistenceError(StatuteRAGError):
    """Raised when the collection file cannot be read or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class OperationCancelledError(StatuteRAGError):
    """Raised when a cancellation signal is observed between batches."""


class IndexingError(StatuteRAGError):
    """
    Raised when indexing a document fails part-way.

    Carries how many fragments reached the collection before the failure so
    callers can report partial success. unsaved_count of those are held in
    memory only because the last write failed; VectorStore.persist() retries
    that write. The underlying error is chained as __cause__.
    """

    def __init__(
        self,
        message: str,
        document_title: str,
        indexed_count: int,
        total_count: int,
        unsaved_count: int = 0,
    ):
        super().__init__(message)
        self.document_title = document_title
        self.indexed_count = indexed_count
        self.total_count = total_count
        self.unsaved_count = unsaved_count

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "document_title": self.document_title,
            "indexed_count": self.indexed_count,
            "total_count": self.total_count,
            "unsaved_count": self.unsaved_count,
        }
