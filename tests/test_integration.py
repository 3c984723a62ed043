"""
Integration tests for the Statute RAG pipeline

Runs parse -> chunk -> embed -> store -> reload -> search -> context ->
citation verification end to end, with the mock embedding service standing
in for the provider.
"""

import json

from conftest import SAMPLE_STATUTE, SAMPLE_STATUTE_FRAGMENTS, SAMPLE_TITLE


def _build_retriever(store_path, embedding_service, **settings_kwargs):
    from execution.statute_rag.config import RAGSettings
    from execution.statute_rag.retriever import get_retriever
    settings = RAGSettings(vector_store_path=str(store_path), **settings_kwargs)
    return get_retriever(settings, embedding_service=embedding_service)


class TestEndToEnd:
    """Full pipeline over a Polish statute."""

    def test_index_reload_search_verify(self, tmp_path, store_path, mock_embedding_service):
        doc_path = tmp_path / "ustawa.txt"
        doc_path.write_text(SAMPLE_STATUTE, encoding="utf-8")

        indexer = _build_retriever(store_path, mock_embedding_service)
        report = indexer.index_file(str(doc_path), title=SAMPLE_TITLE, source_url="https://isap.example/u")
        assert report.fragment_count == SAMPLE_STATUTE_FRAGMENTS

        # A fresh process sees the same collection
        reader = _build_retriever(store_path, mock_embedding_service)
        assert reader.is_database_initialized()

        results = reader.search("rejestr czynności przetwarzania", top_k=3)
        assert results[0].fragment.citation_info.article == "Art. 3"
        assert results[0].fragment.citation_info.context == "Dział I, Rozdział 2"

        context = reader.build_context(results)
        assert context.startswith(f"=== ŹRÓDŁO: {SAMPLE_TITLE}, Art. 3 (Dział I, Rozdział 2) ===")

        payload = reader.verify_citations(
            [
                {"source": SAMPLE_TITLE, "snippet": "prowadzi rejestr czynności przetwarzania"},
                {"source": SAMPLE_TITLE, "snippet": "Administrator prowadzi rejestr"},
                {"source": "Ustawa spoza kontekstu", "snippet": "Art. 99. Nic."},
            ],
            results,
        )
        citations = payload.verified_citations
        assert len(citations) == 2
        assert citations[0].verified and citations[0].reliability == "High"
        assert citations[0].url == "https://isap.example/u"
        assert citations[0].page_number == 1
        assert not citations[1].verified

        sources = reader.extract_unique_sources(results)
        assert [s.title for s in sources] == [SAMPLE_TITLE]
        assert sources[0].fragment_count == 3

    def test_persisted_file_is_versioned_json(self, store_path, mock_embedding_service, sample_metadata):
        retriever = _build_retriever(store_path, mock_embedding_service)
        retriever.index_document(SAMPLE_STATUTE, sample_metadata)

        data = json.loads(store_path.read_text(encoding="utf-8"))
        assert data["schema_version"] == 1
        assert len(data["fragments"]) == SAMPLE_STATUTE_FRAGMENTS
        first = data["fragments"][0]
        assert first["citation_info"]["source"] == SAMPLE_TITLE
        assert first["metadata"]["division"] == {"number": "I", "title": "Przepisy ogólne"}
        assert len(first["embedding"]) == mock_embedding_service.dimensions

    def test_two_documents_share_collection(self, store_path, mock_embedding_service, sample_metadata):
        from execution.statute_rag.document_parser import DocumentMetadata

        retriever = _build_retriever(store_path, mock_embedding_service)
        retriever.index_document(SAMPLE_STATUTE, sample_metadata)
        retriever.index_document(
            "Rozdział 1. Przepisy\n\nArt. 1. Kodeks reguluje stosunki pracy.",
            DocumentMetadata(title="Kodeks pracy"),
        )

        assert retriever.stats()["fragment_count"] == SAMPLE_STATUTE_FRAGMENTS + 1
        results = retriever.search("stosunki pracy", top_k=1)
        assert results[0].fragment.metadata.title == "Kodeks pracy"

    def test_oversized_article_split_and_indexed(self, store_path, mock_embedding_service):
        from execution.statute_rag.document_parser import DocumentMetadata

        body = "\n".join(f"{i}. " + f"Ustęp {i} dotyczy obowiązku numer {i}. " * 30 for i in range(1, 4))
        text = f"Art. 10.\n{body}"

        retriever = _build_retriever(store_path, mock_embedding_service, chunk_size=1500)
        report = retriever.index_document(text, DocumentMetadata(title="Ustawa długa"))

        assert report.fragment_ids == [
            "ustawa-dluga--art-10--p-1",
            "ustawa-dluga--art-10--p-2",
            "ustawa-dluga--art-10--p-3",
        ]
        first = retriever.get_fragment(report.fragment_ids[0])
        assert first.raw_text.startswith("Art. 10.\n1. ")
        assert first.citation_info.sub_paragraph == "1"


class TestEnglishPipeline:
    """Same pipeline with English structure markers."""

    def test_english_statute(self, store_path, mock_embedding_service):
        from execution.statute_rag.document_parser import DocumentMetadata

        text = (
            "Part I\nGeneral provisions\n\n"
            "Chapter 1 Scope\n\n"
            "Article 1. This Act governs test data.\n\n"
            "Section 2. A controller keeps a register of processing.\n"
        )
        retriever = _build_retriever(store_path, mock_embedding_service, language="en")
        report = retriever.index_document(text, DocumentMetadata(title="Test Act"))

        assert report.fragment_ids == [
            "test-act--part-i--chapter-1--art-1",
            "test-act--part-i--chapter-1--para-2",
        ]
        results = retriever.search("register of processing", top_k=1)
        context = retriever.build_context(results)
        assert context.startswith("=== SOURCE: Test Act, § 2 (Part I, Chapter 1) ===")
