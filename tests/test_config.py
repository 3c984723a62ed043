"""
Tests for execution/statute_rag/config.py

Covers: RAGSettings.from_env (defaults, overrides, invalid values) and the
        component config builders.
"""

import pytest

ENV_VARS = [
    "VECTOR_STORE_PATH",
    "RAG_LANGUAGE",
    "EMBEDDING_PROVIDER",
    "EMBEDDING_FALLBACK_PROVIDER",
    "EMBEDDING_MODEL",
    "OPENAI_EMBEDDING_MODEL",
    "EMBEDDING_DIMENSIONS",
    "EMBEDDING_CACHE_DIR",
    "RAG_CHUNK_SIZE",
    "RAG_SUBCHUNK_SIZE",
    "RAG_TOP_K",
    "RAG_MAX_EMBEDDING_LENGTH",
    "RAG_EMBEDDING_BATCH_SIZE",
    "RAG_MAX_CITATION_LENGTH",
    "RAG_CITATION_THRESHOLD",
    "RAG_CITATION_KEY_LENGTH",
    "RAG_CITATION_FALLBACK",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:
    """Tests for RAGSettings.from_env."""

    def test_defaults(self, clean_env):
        from execution.statute_rag.config import RAGSettings
        settings = RAGSettings.from_env()

        assert settings.vector_store_path == "vectorstore/fragments.json"
        assert settings.language == "pl"
        assert settings.embedding_provider == "openai"
        assert settings.embedding_fallback_provider is None
        assert settings.embedding_model == "text-embedding-3-small"
        assert settings.embedding_dimensions == 1536
        assert settings.chunk_size == 1500
        assert settings.subchunk_size == 1000
        assert settings.top_k == 20
        assert settings.max_embedding_length == 6000
        assert settings.embedding_batch_size == 100
        assert settings.max_citation_length == 1000
        assert settings.citation_threshold == 800
        assert settings.citation_key_length == 100
        assert settings.citation_fallback is True

    def test_overrides(self, clean_env):
        from execution.statute_rag.config import RAGSettings
        clean_env.setenv("VECTOR_STORE_PATH", "/data/store.json")
        clean_env.setenv("RAG_LANGUAGE", "EN")
        clean_env.setenv("RAG_TOP_K", "5")
        clean_env.setenv("RAG_CHUNK_SIZE", "2000")
        clean_env.setenv("EMBEDDING_FALLBACK_PROVIDER", "Cohere")
        clean_env.setenv("RAG_CITATION_FALLBACK", "false")

        settings = RAGSettings.from_env()
        assert settings.vector_store_path == "/data/store.json"
        assert settings.language == "en"
        assert settings.top_k == 5
        assert settings.chunk_size == 2000
        assert settings.embedding_fallback_provider == "cohere"
        assert settings.citation_fallback is False

    def test_openai_model_variable(self, clean_env):
        from execution.statute_rag.config import RAGSettings
        clean_env.setenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-large")
        clean_env.setenv("EMBEDDING_DIMENSIONS", "3072")
        settings = RAGSettings.from_env()
        assert settings.embedding_model == "text-embedding-3-large"
        assert settings.embedding_dimensions == 3072

    def test_other_provider_defaults(self, clean_env):
        from execution.statute_rag.config import RAGSettings
        clean_env.setenv("EMBEDDING_PROVIDER", "voyage")
        clean_env.setenv("OPENAI_EMBEDDING_MODEL", "ignored-for-voyage")
        settings = RAGSettings.from_env()
        assert settings.embedding_model == "voyage-law-2"
        assert settings.embedding_dimensions == 1024
        assert settings.embedding_batch_size == 128

    def test_invalid_integer(self, clean_env):
        from execution.statute_rag.config import RAGSettings
        clean_env.setenv("RAG_TOP_K", "twenty")
        with pytest.raises(ValueError, match="RAG_TOP_K"):
            RAGSettings.from_env()

    def test_empty_value_uses_default(self, clean_env):
        from execution.statute_rag.config import RAGSettings
        clean_env.setenv("RAG_TOP_K", "  ")
        assert RAGSettings.from_env().top_k == 20

    @pytest.mark.parametrize("value,expected", [("1", True), ("yes", True), ("ON", True), ("0", False), ("no", False)])
    def test_boolean_values(self, clean_env, value, expected):
        from execution.statute_rag.config import RAGSettings
        clean_env.setenv("RAG_CITATION_FALLBACK", value)
        assert RAGSettings.from_env().citation_fallback is expected


class TestBuilders:
    """Tests for the component config builders."""

    def test_component_configs(self):
        from execution.statute_rag.config import RAGSettings
        settings = RAGSettings(
            vector_store_path="/tmp/x.json",
            language="en",
            chunk_size=1200,
            subchunk_size=800,
            top_k=8,
            embedding_batch_size=16,
            max_citation_length=500,
            citation_threshold=400,
            citation_key_length=50,
            citation_fallback=False,
        )

        assert settings.chunk_config().max_atom_chars == 1200
        assert settings.chunk_config().max_subchunk_chars == 800
        assert settings.vector_store_config().storage_path == "/tmp/x.json"

        citation = settings.citation_config()
        assert citation.max_snippet_length == 500
        assert citation.sentence_threshold == 400
        assert citation.key_length == 50
        assert citation.fallback_to_first_candidate is False

        retrieval = settings.retrieval_config()
        assert retrieval.top_k == 8
        assert retrieval.index_batch_size == 16

    def test_embedding_config_uses_language_ratio(self):
        from execution.statute_rag.config import RAGSettings
        cfg = RAGSettings(language="en", max_embedding_length=3000).embedding_config()
        assert cfg.chars_per_token == 4
        assert cfg.max_text_length == 3000
        assert cfg.provider == "openai"

    def test_language_config_carries_embedding_settings(self):
        from execution.statute_rag.config import RAGSettings
        lang = RAGSettings(embedding_provider="cohere", embedding_model="embed-multilingual-v3.0",
                           embedding_dimensions=1024).language_config()
        assert lang.language == "pl"
        assert lang.embedding_provider == "cohere"
        assert lang.embedding_dimensions == 1024
