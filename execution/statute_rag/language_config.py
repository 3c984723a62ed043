"""
Language Configuration for Statute RAG

Selects the pattern/label language and the embedding defaults that go with
it. Polish statutes (Dział / Rozdział / Art. / §) are the primary target;
English-style codes (Part / Chapter / Article / Section) are also supported.
"""

from dataclasses import dataclass


# Supported languages with their token ratios
SUPPORTED_LANGUAGES = {
    "pl": {
        "name": "Polish",
        "chars_per_token": 3,
    },
    "en": {
        "name": "English",
        "chars_per_token": 4,
    },
}

DEFAULT_LANGUAGE = "pl"


@dataclass
class LanguageConfig:
    """Language and embedding model configuration."""
    language: str = DEFAULT_LANGUAGE
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    chars_per_token: int = 3

    @classmethod
    def for_language(cls, language: str) -> "LanguageConfig":
        """
        Factory method returning defaults for a given language.

        Args:
            language: ISO 639-1 code ("pl" or "en")

        Returns:
            LanguageConfig with appropriate defaults
        """
        if language not in SUPPORTED_LANGUAGES:
            language = DEFAULT_LANGUAGE

        return cls(
            language=language,
            embedding_provider="openai",
            embedding_model="text-embedding-3-small",
            embedding_dimensions=1536,
            chars_per_token=SUPPORTED_LANGUAGES[language]["chars_per_token"],
        )
