"""
Statute RAG - Retrieval core for legal question answering over statutes

This module provides:
- Structure-aware chunking of statutes (divisions, chapters, articles, paragraphs)
  with hierarchy context injected into every fragment
- Embedding gateway with batching, truncation and provider fallback
- JSON-file vector store with exhaustive cosine similarity search
- Verification and deduplication of citations declared by the language model
- A retrieval orchestrator composing the above

Architecture follows the 3-layer pattern:
- Layer 1 (Directives): SOPs
- Layer 2 (Orchestration): the calling application / LLM answer loop
- Layer 3 (Execution): This module and its submodules
"""

from .document_parser import LegalDocumentParser
from .chunker import LegalChunker, Fragment
from .embeddings import get_embedding_service
from .vector_store import VectorStore
from .citation import CitationVerifier
from .retriever import LegalRetriever, get_retriever

__all__ = [
    "LegalDocumentParser",
    "LegalChunker",
    "Fragment",
    "get_embedding_service",
    "VectorStore",
    "CitationVerifier",
    "LegalRetriever",
    "get_retriever",
]

__version__ = "0.1.0"
