"""
Citation Verification for Statute RAG

The language model returns citations it claims to have used. Each claim is
checked against the fragments that were actually placed in its context:

1. Match by source title (case-insensitive) and snippet overlap
   -> verified, reliability High, snippet replaced by the fragment text
2. Same source but no snippet overlap
   -> verified via the first fragment of that source, reliability Medium
      (can be disabled with CitationConfig.fallback_to_first_candidate)
3. No fragment from that source
   -> unverified, reliability Low, declared snippet trimmed

Citations are deduplicated by source + fragment id (verified) or by source
+ normalized snippet prefix (unverified); the first occurrence wins.
"""

import re
import logging
from enum import Enum
from typing import Optional, Sequence, Union
from dataclasses import dataclass

from .chunker import Fragment
from .language_config import LanguageConfig
from .language_patterns import (
    ARTICLE_LABEL_PATTERNS,
    CROSS_REFERENCE_PHRASES,
    CROSS_REFERENCE_WINDOW,
    LABELS,
)

logger = logging.getLogger(__name__)

ARTICLE_SCAN_CHARS = 500


class Reliability(str, Enum):
    """How strongly a citation is backed by retrieved text."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


@dataclass
class CitationConfig:
    """Configuration for citation verification."""
    max_snippet_length: int = 1000
    # A cut at a sentence end is used only if it falls after this many chars
    sentence_threshold: int = 800
    # Prefix length used for the fragment-in-snippet check and dedup keys
    key_length: int = 100
    # Attribute unmatched same-source claims to the first fragment of that source
    fallback_to_first_candidate: bool = True


@dataclass
class DeclaredCitation:
    """A citation as claimed by the language model."""
    source: str
    snippet: str
    url: Optional[str] = None
    reliability: Optional[str] = None


@dataclass
class VerifiedCitation:
    """Result of verifying one declared citation."""
    source: str
    reliability: Reliability
    snippet: str
    url: Optional[str]
    verified: bool
    fragment_id: Optional[str] = None
    article_number: Optional[str] = None
    page_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "reliability": self.reliability.value,
            "snippet": self.snippet,
            "url": self.url,
            "verified": self.verified,
            "fragment_id": self.fragment_id,
            "article_number": self.article_number,
            "page_number": self.page_number,
        }


def trim_snippet(text: str, max_length: int = 1000, sentence_threshold: int = 800) -> str:
    """
    Trim a snippet to max_length characters.

    Cuts after the last sentence terminator when it lies beyond
    sentence_threshold; otherwise hard-cuts and appends "...".
    """
    text = text.strip()
    if len(text) <= max_length:
        return text

    truncated = text[:max_length]
    last_sentence_end = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if last_sentence_end > sentence_threshold:
        return truncated[:last_sentence_end + 1]
    return truncated + "..."


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower().strip())


def _fragment_source(fragment: Fragment) -> str:
    return fragment.metadata.title or fragment.citation_info.source or ""


class CitationVerifier:
    """
    Verifies and deduplicates model-declared citations.

    Stateless between calls; the source index is rebuilt for every verify().
    """

    def __init__(
        self,
        config: Optional[CitationConfig] = None,
        language_config: Optional[LanguageConfig] = None,
    ):
        self.config = config or CitationConfig()
        self._language_config = language_config or LanguageConfig.for_language("pl")
        self._lang = self._language_config.language

        self._label_patterns = ARTICLE_LABEL_PATTERNS.get(self._lang, ARTICLE_LABEL_PATTERNS["pl"])
        phrases = CROSS_REFERENCE_PHRASES.get(self._lang, CROSS_REFERENCE_PHRASES["pl"])
        # Whole words only: "under" must not match the end of "thunder"
        self._cross_ref_patterns = [re.compile(rf"\b{re.escape(p)}$") for p in phrases]
        self._labels = LABELS.get(self._lang, LABELS["pl"])

    def verify(
        self,
        declared: Sequence[DeclaredCitation],
        used_fragments: Sequence[Union[Fragment, object]],
    ) -> list[VerifiedCitation]:
        """
        Verify declared citations against the fragments given to the model.

        Args:
            declared: Citations claimed by the model
            used_fragments: Fragments (or search results) that were in the context

        Returns:
            Verified citations, deduplicated, in first-occurrence order
        """
        fragments = [getattr(item, "fragment", item) for item in used_fragments]

        # Index fragments by lower-cased source title, preserving order
        by_source: dict[str, list[Fragment]] = {}
        for fragment in fragments:
            by_source.setdefault(_fragment_source(fragment).lower(), []).append(fragment)

        results = []
        seen_keys = set()
        fallback_count = 0

        for citation in declared:
            verified = self._verify_one(citation, by_source)
            if verified.reliability == Reliability.MEDIUM:
                fallback_count += 1

            key = self._dedup_key(citation, verified)
            if key in seen_keys:
                logger.debug(f"Dropping duplicate citation {key}")
                continue
            seen_keys.add(key)
            results.append(verified)

        unverified = sum(1 for c in results if not c.verified)
        logger.info(
            f"Verified {len(results) - unverified}/{len(results)} citations"
            f" ({len(declared) - len(results)} duplicates dropped)"
        )
        if fallback_count:
            logger.warning(f"{fallback_count} citations attributed to first fragment of their source")

        return results

    def _verify_one(
        self,
        citation: DeclaredCitation,
        by_source: dict[str, list[Fragment]],
    ) -> VerifiedCitation:
        candidates = by_source.get((citation.source or "").lower(), [])
        snippet_lower = (citation.snippet or "").lower()

        match = None
        for fragment in candidates:
            fragment_lower = fragment.raw_text.lower()
            if snippet_lower in fragment_lower or fragment_lower[:self.config.key_length] in snippet_lower:
                match = fragment
                break

        if match is not None:
            return self._from_fragment(citation, match, Reliability.HIGH)

        if candidates and self.config.fallback_to_first_candidate:
            logger.debug(f"No snippet match for '{citation.source}', using first fragment of source")
            return self._from_fragment(citation, candidates[0], Reliability.MEDIUM)

        return VerifiedCitation(
            source=citation.source or self._labels["unknown_source"],
            reliability=Reliability.LOW,
            snippet=trim_snippet(
                citation.snippet or "",
                self.config.max_snippet_length,
                self.config.sentence_threshold,
            ),
            url=citation.url,
            verified=False,
        )

    def _from_fragment(
        self,
        citation: DeclaredCitation,
        fragment: Fragment,
        reliability: Reliability,
    ) -> VerifiedCitation:
        return VerifiedCitation(
            source=_fragment_source(fragment) or citation.source,
            reliability=reliability,
            snippet=trim_snippet(
                fragment.raw_text,
                self.config.max_snippet_length,
                self.config.sentence_threshold,
            ),
            url=fragment.metadata.source_url or citation.url,
            verified=True,
            fragment_id=fragment.id,
            article_number=self.extract_article_number(fragment),
            page_number=fragment.metadata.page_number,
        )

    def _dedup_key(self, citation: DeclaredCitation, verified: VerifiedCitation) -> str:
        source = (citation.source or "").lower()
        if verified.fragment_id:
            return f"{source}:{verified.fragment_id}"
        prefix = (citation.snippet or "")[:self.config.key_length]
        return f"{source}:{_normalize(prefix)}"

    def extract_article_number(self, fragment: Union[Fragment, str]) -> Optional[str]:
        """
        Article/paragraph label for a fragment ("§ 3", "Art. 15").

        Uses the structured citation label when present. Otherwise scans
        the first 500 characters for line-start labels, preferring "§"
        over "Art.", earliest first, skipping mentions that directly follow
        a cross-reference phrase ("zgodnie z", "o którym mowa w", ...).
        """
        if isinstance(fragment, Fragment):
            if fragment.citation_info.article:
                return fragment.citation_info.article
            text = fragment.raw_text
        else:
            text = fragment

        window = text[:ARTICLE_SCAN_CHARS]
        for kind in ("paragraph", "article"):
            for match in self._label_patterns[kind].finditer(window):
                if self._is_cross_reference(window, match.start()):
                    continue
                return f"{self._labels[kind]} {match.group(1)}"

        return None

    def _is_cross_reference(self, text: str, position: int) -> bool:
        preceding = _normalize(text[max(0, position - CROSS_REFERENCE_WINDOW):position])
        preceding = preceding.rstrip(" :,")
        return any(pattern.search(preceding) for pattern in self._cross_ref_patterns)
