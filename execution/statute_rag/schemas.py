"""
Pydantic models for the consumer-facing payloads of the RAG core.

The HTTP/UI layer is out of scope here; these models define what it receives
(context payloads, verified citations, source summaries) and validate the
citation list returned by the language model.
"""

import logging
from typing import Optional
from pydantic import BaseModel, Field, ValidationError

from .chunker import Fragment
from .citation import DeclaredCitation, VerifiedCitation

logger = logging.getLogger(__name__)


class DeclaredCitationModel(BaseModel):
    """A citation as returned by the language model."""
    source: str = Field(..., min_length=1)
    snippet: str = Field(..., min_length=1)
    url: Optional[str] = None
    reliability: Optional[str] = Field(None, pattern=r"^(High|Medium|Low)$")

    def to_declared(self) -> DeclaredCitation:
        return DeclaredCitation(
            source=self.source,
            snippet=self.snippet,
            url=self.url,
            reliability=self.reliability,
        )


class FragmentModel(BaseModel):
    """A retrieved fragment as handed to the consumer."""
    id: str
    title: str
    article: str
    context: Optional[str] = None
    raw_text: str
    display_text: str
    source_url: Optional[str] = None
    page_number: Optional[int] = None
    score: Optional[float] = None

    @classmethod
    def from_fragment(cls, fragment: Fragment, score: Optional[float] = None) -> "FragmentModel":
        return cls(
            id=fragment.id,
            title=fragment.metadata.title,
            article=fragment.citation_info.article,
            context=fragment.citation_info.context,
            raw_text=fragment.raw_text,
            display_text=fragment.display_text,
            source_url=fragment.metadata.source_url,
            page_number=fragment.metadata.page_number,
            score=score,
        )


class ContextPayload(BaseModel):
    """Fragments retrieved for a query plus the rendered LLM context."""
    fragments: list[FragmentModel]
    context_text: str


class VerifiedCitationModel(BaseModel):
    """A citation after verification against the used fragments."""
    source: str
    reliability: str = Field(..., pattern=r"^(High|Medium|Low)$")
    snippet: str
    url: Optional[str] = None
    verified: bool
    fragment_id: Optional[str] = None
    article_number: Optional[str] = None
    page_number: Optional[int] = None

    @classmethod
    def from_verified(cls, citation: VerifiedCitation) -> "VerifiedCitationModel":
        return cls(**citation.to_dict())


class VerificationPayload(BaseModel):
    """Deduplicated, verified citations for one response."""
    verified_citations: list[VerifiedCitationModel]


class SourceSummary(BaseModel):
    """A distinct source document among retrieved fragments."""
    title: str
    url: Optional[str] = None
    fragment_count: int = Field(..., ge=1)


def parse_declared_citations(raw_items: list) -> list[DeclaredCitation]:
    """
    Validate the citation list produced by the language model.

    Malformed entries are logged and skipped; the model output is not
    trusted to be well-formed.
    """
    citations = []
    for position, item in enumerate(raw_items or []):
        try:
            model = DeclaredCitationModel.model_validate(item)
        except ValidationError as e:
            logger.warning(f"Skipping malformed citation #{position}: {e.errors()[0]['msg']}")
            continue
        citations.append(model.to_declared())
    return citations
