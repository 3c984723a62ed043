"""
Retrieval Orchestrator for Statute RAG

Composes the pipeline stages:

    index:    text -> LegalChunker -> embedding gateway (batched) -> VectorStore
    query:    question -> embedding gateway -> VectorStore.search
    context:  retrieved fragments -> source-labeled LLM context block
    verify:   LLM-declared citations -> CitationVerifier

Indexing is a batch job: it runs to completion (or reports how far it got)
before queries are served. A full re-index is delete_all + index again;
there are no incremental updates.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from .chunker import Fragment, LegalChunker
from .citation import CitationVerifier, DeclaredCitation
from .config import RAGSettings, RetrievalConfig
from .document_parser import DocumentMetadata, LegalDocumentParser
from .embeddings import EmbeddingServiceType, get_embedding_service
from .errors import (
    EmptyDocumentError,
    EmptyInputError,
    IndexingError,
    OperationCancelledError,
    PersistenceError,
    StatuteRAGError,
)
from .language_config import LanguageConfig
from .language_patterns import LABELS
from .metrics import MetricsCollector, get_metrics_collector
from .schemas import (
    ContextPayload,
    FragmentModel,
    SourceSummary,
    VerificationPayload,
    VerifiedCitationModel,
    parse_declared_citations,
)
from .vector_store import SearchResult, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class IndexingReport:
    """Outcome of indexing one document."""
    document_title: str
    fragment_ids: list[str] = field(default_factory=list)
    duration_ms: float = 0

    @property
    def fragment_count(self) -> int:
        return len(self.fragment_ids)

    def to_dict(self) -> dict:
        return {
            "document_title": self.document_title,
            "fragment_count": self.fragment_count,
            "duration_ms": round(self.duration_ms, 2),
        }


class LegalRetriever:
    """
    Retrieval orchestrator over chunker, embedding gateway, vector store
    and citation verifier.
    """

    def __init__(
        self,
        chunker: LegalChunker,
        embedding_service: EmbeddingServiceType,
        vector_store: VectorStore,
        verifier: Optional[CitationVerifier] = None,
        config: Optional[RetrievalConfig] = None,
        language_config: Optional[LanguageConfig] = None,
        parser: Optional[LegalDocumentParser] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.chunker = chunker
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.config = config or RetrievalConfig()
        self._language_config = language_config or LanguageConfig.for_language("pl")
        self._lang = self._language_config.language
        self.verifier = verifier or CitationVerifier(language_config=self._language_config)
        self.parser = parser or LegalDocumentParser(language_config=self._language_config)
        self.metrics = metrics or get_metrics_collector()
        self._labels = LABELS.get(self._lang, LABELS["pl"])

    def initialize(self) -> None:
        """Load the persisted collection (idempotent)."""
        self.vector_store.initialize()

    def is_database_initialized(self) -> bool:
        """True when the collection holds at least one fragment."""
        self.vector_store.initialize()
        return self.vector_store.count > 0

    # -------------------------------------------------------------------------
    # Indexing
    # -------------------------------------------------------------------------

    def index_document(
        self,
        raw_text: str,
        metadata: DocumentMetadata,
        cancel_event=None,
    ) -> IndexingReport:
        """
        Chunk, embed and store one document.

        Fragments are embedded and stored batch by batch, so a failure part
        way through leaves earlier batches stored and reports how many.

        Args:
            raw_text: Full document text
            metadata: Document metadata (title, source URL, page ranges)
            cancel_event: Optional threading.Event checked between batches

        Returns:
            IndexingReport with the stored fragment ids

        Raises:
            EmptyDocumentError: If the chunker produces no fragments
            IndexingError: If embedding or storing fails; carries indexed/total counts
        """
        start = time.time()
        title = metadata.title

        fragments = self.chunker.chunk(raw_text, metadata)
        if not fragments:
            self.metrics.record_indexing(title, 0, 0, failed=True)
            raise EmptyDocumentError(title)

        self.initialize()

        stored_ids: list[str] = []
        unsaved_count = 0
        batch_size = max(1, self.config.index_batch_size)
        try:
            for offset in range(0, len(fragments), batch_size):
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError(f"Indexing of '{title}' cancelled")

                batch = fragments[offset:offset + batch_size]
                embeddings = self.embedding_service.embed_batch(
                    [f.display_text for f in batch],
                    cancel_event=cancel_event,
                )
                try:
                    stored_ids.extend(self.vector_store.add_fragments(batch, embeddings))
                except PersistenceError:
                    # The batch is in the collection, only the file write failed
                    stored_ids.extend(f.id for f in batch)
                    unsaved_count = len(batch)
                    raise
        except StatuteRAGError as e:
            duration_ms = (time.time() - start) * 1000
            self.metrics.record_indexing(title, len(stored_ids), duration_ms, failed=True)
            self.metrics.record_error(type(e).__name__)
            logger.error(
                f"Indexing '{title}' failed after {len(stored_ids)}/{len(fragments)} fragments: {e}"
            )
            raise IndexingError(
                f"Indexing '{title}' failed after {len(stored_ids)}/{len(fragments)} fragments: {e}",
                document_title=title,
                indexed_count=len(stored_ids),
                total_count=len(fragments),
                unsaved_count=unsaved_count,
            ) from e

        duration_ms = (time.time() - start) * 1000
        self.metrics.record_indexing(title, len(stored_ids), duration_ms)
        logger.info(f"Indexed '{title}': {len(stored_ids)} fragments in {duration_ms:.0f}ms")

        return IndexingReport(document_title=title, fragment_ids=stored_ids, duration_ms=duration_ms)

    def index_file(
        self,
        file_path: str,
        title: Optional[str] = None,
        source_url: Optional[str] = None,
        cancel_event=None,
    ) -> IndexingReport:
        """Parse a PDF or text file and index it."""
        parsed = self.parser.parse(file_path, title=title, source_url=source_url)
        return self.index_document(parsed.raw_text, parsed.metadata, cancel_event=cancel_event)

    def reindex(self) -> None:
        """Drop the whole collection ahead of a full re-index."""
        logger.info("Clearing collection for full re-index")
        self.vector_store.delete_all()

    def persist(self) -> None:
        """Retry writing the collection after an IndexingError with unsaved fragments."""
        self.vector_store.persist()

    # -------------------------------------------------------------------------
    # Querying
    # -------------------------------------------------------------------------

    def search(self, query: str, top_k: Optional[int] = None) -> list[SearchResult]:
        """
        Retrieve the fragments most similar to a query.

        An empty collection yields an empty list without calling the
        embedding provider. Whether no results is an error is the caller's call.

        Raises:
            EmptyInputError: If the query is blank
            ValueError: If top_k is less than 1
        """
        if not query or not query.strip():
            raise EmptyInputError("Query must not be blank")

        if top_k is None:
            top_k = self.config.top_k
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")

        with self.metrics.track_query(query) as tracker:
            self.initialize()
            if self.vector_store.count == 0:
                logger.info("Search on empty collection; returning no results")
                tracker.set_results(0)
                return []

            query_embedding = self.embedding_service.embed(query)
            results = self.vector_store.search(query_embedding, top_k=top_k)
            tracker.set_results(len(results), results[0].score if results else None)

        logger.info(f"Retrieved {len(results)} fragments (top_k={top_k})")
        return results

    def build_context(self, fragments: Sequence[Union[Fragment, SearchResult]]) -> str:
        """
        Render fragments as source-labeled blocks for the language model.

        Each block is a header line "=== ŹRÓDŁO: <title>, <label> (<context>) ==="
        followed by the fragment's raw text; blocks are separated by a blank line.
        """
        blocks = []
        for item in fragments:
            fragment = getattr(item, "fragment", item)
            info = fragment.citation_info
            source = fragment.metadata.title or info.source or self._labels["unknown_source"]

            header = f"=== {self._labels['source_header']}: {source}"
            if info.article:
                header += f", {info.article}"
            if info.context:
                header += f" ({info.context})"
            header += " ==="

            blocks.append(f"{header}\n{fragment.raw_text}")

        return "\n\n".join(blocks)

    def retrieve_context(self, query: str, top_k: Optional[int] = None) -> ContextPayload:
        """Search and render the LLM context in one step."""
        results = self.search(query, top_k=top_k)
        return ContextPayload(
            fragments=[FragmentModel.from_fragment(r.fragment, r.score) for r in results],
            context_text=self.build_context(results),
        )

    # -------------------------------------------------------------------------
    # Citations and sources
    # -------------------------------------------------------------------------

    def verify_citations(
        self,
        declared: Sequence[Union[DeclaredCitation, dict]],
        fragments: Sequence[Union[Fragment, SearchResult]],
    ) -> VerificationPayload:
        """
        Verify the citations returned by the language model.

        Args:
            declared: DeclaredCitation objects or raw dicts from the model output
            fragments: The fragments (or search results) given to the model
        """
        citations = self._to_declared(declared)
        verified = self.verifier.verify(citations, fragments)
        verified_count = sum(1 for c in verified if c.verified)
        self.metrics.record_citations(verified_count, len(verified) - verified_count)

        return VerificationPayload(
            verified_citations=[VerifiedCitationModel.from_verified(c) for c in verified]
        )

    @staticmethod
    def _to_declared(declared: Sequence[Union[DeclaredCitation, dict]]) -> list[DeclaredCitation]:
        """Validate raw dicts in place, keeping model order."""
        citations = []
        for item in declared:
            if isinstance(item, DeclaredCitation):
                citations.append(item)
            else:
                citations.extend(parse_declared_citations([item]))
        return citations

    def extract_unique_sources(self, results: Sequence[Union[Fragment, SearchResult]]) -> list[SourceSummary]:
        """Distinct source documents among results, in first-seen order."""
        summaries: dict[str, SourceSummary] = {}
        for item in results:
            fragment = getattr(item, "fragment", item)
            title = fragment.metadata.title or self._labels["unknown_source"]
            summary = summaries.get(title)
            if summary is None:
                summaries[title] = SourceSummary(
                    title=title,
                    url=fragment.metadata.source_url,
                    fragment_count=1,
                )
            else:
                summary.fragment_count += 1
                if not summary.url and fragment.metadata.source_url:
                    summary.url = fragment.metadata.source_url
        return list(summaries.values())

    def get_fragment(self, fragment_id: str) -> Fragment:
        return self.vector_store.get_fragment(fragment_id)

    def stats(self) -> dict:
        self.initialize()
        return self.vector_store.stats()


def get_retriever(
    settings: Optional[RAGSettings] = None,
    embedding_service: Optional[EmbeddingServiceType] = None,
    vector_store: Optional[VectorStore] = None,
) -> LegalRetriever:
    """
    Get configured retriever instance.

    Args:
        settings: Settings; read from the environment if not provided
        embedding_service: Optional pre-built embedding service (tests, custom providers)
        vector_store: Optional pre-built vector store

    Returns:
        Configured LegalRetriever instance
    """
    settings = settings or RAGSettings.from_env()
    language_config = settings.language_config()

    if embedding_service is None:
        embedding_service = get_embedding_service(
            provider=settings.embedding_provider,
            fallback_provider=settings.embedding_fallback_provider,
            config=settings.embedding_config(),
        )

    return LegalRetriever(
        chunker=LegalChunker(settings.chunk_config(), language_config),
        embedding_service=embedding_service,
        vector_store=vector_store or VectorStore(settings.vector_store_config()),
        verifier=CitationVerifier(settings.citation_config(), language_config),
        config=settings.retrieval_config(),
        language_config=language_config,
    )


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    retriever = get_retriever()

    query = " ".join(sys.argv[1:]) or "Jakie są obowiązki administratora danych?"
    print(f"Query: {query}")
    payload = retriever.retrieve_context(query, top_k=5)
    for fragment in payload.fragments:
        print(f"  {fragment.score:.3f}  {fragment.title}, {fragment.article}")
    print()
    print(payload.context_text[:2000])
