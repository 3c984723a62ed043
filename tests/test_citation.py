"""
Tests for execution/statute_rag/citation.py

Covers: trim_snippet, CitationVerifier.verify (High / Medium / Low tiers,
        fallback switch, deduplication, search-result inputs) and
        extract_article_number with cross-reference skipping.
"""

import pytest

from conftest import make_fragment


# ---------------------------------------------------------------------------
# trim_snippet
# ---------------------------------------------------------------------------

class TestTrimSnippet:
    """Tests for snippet trimming."""

    def test_short_text_unchanged(self):
        from execution.statute_rag.citation import trim_snippet
        assert trim_snippet("  Krótki tekst.  ") == "Krótki tekst."

    def test_cut_at_sentence_end_past_threshold(self):
        from execution.statute_rag.citation import trim_snippet
        text = "A" * 850 + ". " + "B" * 300
        result = trim_snippet(text, max_length=1000, sentence_threshold=800)
        assert result == "A" * 850 + "."

    def test_hard_cut_when_sentence_end_too_early(self):
        from execution.statute_rag.citation import trim_snippet
        text = "A" * 500 + ". " + "B" * 600
        result = trim_snippet(text, max_length=1000, sentence_threshold=800)
        assert result.endswith("...")
        assert len(result) == 1003

    def test_hard_cut_without_terminators(self):
        from execution.statute_rag.citation import trim_snippet
        result = trim_snippet("x" * 50, max_length=20, sentence_threshold=10)
        assert result == "x" * 20 + "..."

    def test_question_mark_counts_as_sentence_end(self):
        from execution.statute_rag.citation import trim_snippet
        text = "a" * 15 + "? " + "b" * 20
        assert trim_snippet(text, max_length=20, sentence_threshold=10) == "a" * 15 + "?"


# ---------------------------------------------------------------------------
# CitationVerifier.verify
# ---------------------------------------------------------------------------

@pytest.fixture
def verifier():
    from execution.statute_rag.citation import CitationVerifier
    return CitationVerifier()


def _declared(source, snippet, url=None):
    from execution.statute_rag.citation import DeclaredCitation
    return DeclaredCitation(source=source, snippet=snippet, url=url)


class TestVerify:
    """Tests for the three reliability tiers."""

    def test_snippet_in_fragment_is_high(self, verifier):
        from execution.statute_rag.citation import Reliability
        fragment = make_fragment(
            "kodeks--art-1",
            "Art. 1. Administrator prowadzi rejestr czynności przetwarzania.",
            article="Art. 1",
            source_url="https://isap.example/kodeks",
            page_number=3,
        )
        result = verifier.verify([_declared("Kodeks testowy", "prowadzi rejestr czynności")], [fragment])

        assert len(result) == 1
        citation = result[0]
        assert citation.verified is True
        assert citation.reliability == Reliability.HIGH
        assert citation.fragment_id == "kodeks--art-1"
        assert citation.snippet == fragment.raw_text
        assert citation.article_number == "Art. 1"
        assert citation.url == "https://isap.example/kodeks"
        assert citation.page_number == 3

    def test_source_match_is_case_insensitive(self, verifier):
        fragment = make_fragment("f1", "Art. 1. Treść przepisu.")
        result = verifier.verify([_declared("KODEKS TESTOWY", "treść przepisu")], [fragment])
        assert result[0].verified is True
        assert result[0].source == "Kodeks testowy"

    def test_fragment_prefix_in_snippet_is_high(self, verifier):
        from execution.statute_rag.citation import Reliability
        fragment = make_fragment("f1", "Art. 2. Krótki przepis.")
        snippet = "Art. 2. Krótki przepis. Oraz dodatkowy komentarz modelu."
        result = verifier.verify([_declared("Kodeks testowy", snippet)], [fragment])
        assert result[0].reliability == Reliability.HIGH

    def test_picks_matching_fragment_not_first(self, verifier):
        fragments = [
            make_fragment("f1", "Art. 1. Pierwszy przepis."),
            make_fragment("f2", "Art. 2. Drugi przepis o terminach."),
        ]
        result = verifier.verify([_declared("Kodeks testowy", "o terminach")], fragments)
        assert result[0].fragment_id == "f2"

    def test_same_source_without_overlap_is_medium(self, verifier):
        from execution.statute_rag.citation import Reliability
        fragments = [
            make_fragment("f1", "Art. 1. Pierwszy przepis."),
            make_fragment("f2", "Art. 2. Drugi przepis."),
        ]
        result = verifier.verify([_declared("Kodeks testowy", "zupełnie inny tekst")], fragments)

        assert result[0].verified is True
        assert result[0].reliability == Reliability.MEDIUM
        assert result[0].fragment_id == "f1"
        assert result[0].snippet == "Art. 1. Pierwszy przepis."

    def test_fallback_disabled_is_low(self):
        from execution.statute_rag.citation import CitationVerifier, CitationConfig, Reliability
        verifier = CitationVerifier(CitationConfig(fallback_to_first_candidate=False))
        fragment = make_fragment("f1", "Art. 1. Pierwszy przepis.")
        result = verifier.verify([_declared("Kodeks testowy", "zupełnie inny tekst")], [fragment])

        assert result[0].verified is False
        assert result[0].reliability == Reliability.LOW
        assert result[0].fragment_id is None

    def test_unknown_source_is_low(self, verifier):
        from execution.statute_rag.citation import Reliability
        fragment = make_fragment("f1", "Art. 1. Pierwszy przepis.")
        result = verifier.verify(
            [_declared("Inna ustawa", "Art. 9. Coś", url="https://example.org/inna")],
            [fragment],
        )

        citation = result[0]
        assert citation.verified is False
        assert citation.reliability == Reliability.LOW
        assert citation.source == "Inna ustawa"
        assert citation.snippet == "Art. 9. Coś"
        assert citation.url == "https://example.org/inna"
        assert citation.article_number is None

    def test_unverified_snippet_trimmed(self, verifier):
        result = verifier.verify([_declared("Inna ustawa", "z" * 1500)], [])
        assert len(result[0].snippet) == 1003

    def test_blank_source_gets_placeholder(self, verifier):
        result = verifier.verify([_declared("", "coś")], [])
        assert result[0].source == "Nieznane źródło"

    def test_no_fragments(self, verifier):
        result = verifier.verify([_declared("Kodeks testowy", "x")], [])
        assert result[0].verified is False

    def test_accepts_search_results(self, verifier):
        from execution.statute_rag.vector_store import SearchResult
        fragment = make_fragment("f1", "Art. 1. Treść przepisu.")
        result = verifier.verify(
            [_declared("Kodeks testowy", "treść przepisu")],
            [SearchResult(fragment=fragment, score=0.9)],
        )
        assert result[0].fragment_id == "f1"

    def test_to_dict(self, verifier):
        fragment = make_fragment("f1", "Art. 1. Treść przepisu.")
        data = verifier.verify([_declared("Kodeks testowy", "treść")], [fragment])[0].to_dict()
        assert data["reliability"] == "High"
        assert data["verified"] is True
        assert data["fragment_id"] == "f1"


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------

class TestDeduplication:
    """Tests for dropping repeated citations."""

    def test_same_fragment_twice(self, verifier):
        fragment = make_fragment("f1", "Art. 1. Administrator prowadzi rejestr.")
        result = verifier.verify(
            [
                _declared("Kodeks testowy", "prowadzi rejestr"),
                _declared("kodeks testowy", "Administrator"),
            ],
            [fragment],
        )
        assert len(result) == 1

    def test_unverified_with_same_normalized_snippet(self, verifier):
        result = verifier.verify(
            [
                _declared("Inna ustawa", "Art. 9.  Coś   ważnego"),
                _declared("Inna ustawa", "art. 9. coś ważnego"),
            ],
            [],
        )
        assert len(result) == 1

    def test_different_fragments_kept(self, verifier):
        fragments = [
            make_fragment("f1", "Art. 1. Pierwszy przepis."),
            make_fragment("f2", "Art. 2. Drugi przepis."),
        ]
        result = verifier.verify(
            [
                _declared("Kodeks testowy", "Pierwszy przepis"),
                _declared("Kodeks testowy", "Drugi przepis"),
            ],
            fragments,
        )
        assert [c.fragment_id for c in result] == ["f1", "f2"]

    def test_first_occurrence_wins(self, verifier):
        result = verifier.verify(
            [
                _declared("Inna ustawa", "tekst", url="https://first.example"),
                _declared("Inna ustawa", "tekst", url="https://second.example"),
            ],
            [],
        )
        assert result[0].url == "https://first.example"


# ---------------------------------------------------------------------------
# extract_article_number
# ---------------------------------------------------------------------------

class TestExtractArticleNumber:
    """Tests for article/paragraph label extraction."""

    def test_structured_label_preferred(self, verifier):
        fragment = make_fragment("f1", "Treść bez etykiety.", article="Art. 15")
        assert verifier.extract_article_number(fragment) == "Art. 15"

    def test_scans_raw_text_without_label(self, verifier):
        fragment = make_fragment("f1", "Art. 42a. Treść przepisu.", article="")
        assert verifier.extract_article_number(fragment) == "Art. 42a"

    def test_paragraph_preferred_over_article(self, verifier):
        text = "Art. 3. Administrator prowadzi rejestr.\n§ 2. Rejestr jest jawny."
        assert verifier.extract_article_number(text) == "§ 2"

    def test_skips_cross_reference(self, verifier):
        text = "Przepis stosuje się zgodnie z\nart. 5 ustawy.\nArt. 7. Treść właściwa."
        assert verifier.extract_article_number(text) == "Art. 7"

    def test_skips_o_ktorym_mowa(self, verifier):
        text = "Wniosek, o którym mowa w\n§ 4, składa się na piśmie.\n§ 6. Termin wynosi 14 dni."
        assert verifier.extract_article_number(text) == "§ 6"

    def test_only_cross_references(self, verifier):
        assert verifier.extract_article_number("Na podstawie\nart. 5 ustawy.") is None

    def test_no_label(self, verifier):
        assert verifier.extract_article_number("Zwykły tekst bez numerów.") is None

    def test_label_beyond_scan_window_ignored(self, verifier):
        text = "x" * 600 + "\nArt. 9. Późno."
        assert verifier.extract_article_number(text) is None

    def test_english_labels(self):
        from execution.statute_rag.citation import CitationVerifier
        from execution.statute_rag.language_config import LanguageConfig
        verifier = CitationVerifier(language_config=LanguageConfig.for_language("en"))
        assert verifier.extract_article_number("Article 12. Scope.") == "Art. 12"
        assert verifier.extract_article_number("Section 4. Duties.") == "§ 4"
        assert verifier.extract_article_number("Applies pursuant to\nArticle 3.\nArticle 8. Text.") == "Art. 8"

    def test_phrase_must_be_whole_word(self):
        from execution.statute_rag.citation import CitationVerifier
        from execution.statute_rag.language_config import LanguageConfig
        verifier = CitationVerifier(language_config=LanguageConfig.for_language("en"))
        assert verifier.extract_article_number("Noise of thunder\nArticle 8. Text.") == "Art. 8"
        assert verifier.extract_article_number("Duties under\nArticle 3.\nArticle 8. Text.") == "Art. 8"
