"""
Structure-Aware Statute Chunker

Splits legal text into fragments along its own structure instead of fixed
windows. Statutes are organised as:

    Division (Dział / Part)
      Sub-chapter (Rozdział / Chapter)
        Article (Art.) or Paragraph (§)     <- retrieval atoms

Division and sub-chapter headers never become fragments; they are the
context injected in front of every atom below them, so that an isolated
article still carries "where it lives" when embedded and shown to the LLM.

Atoms longer than ChunkConfig.max_atom_chars are split on their numbered
sub-paragraphs ("1. ", "2. ") or, without numbering, by sentence.
"""

import re
import logging
import unicodedata
from bisect import bisect_right
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from .document_parser import DocumentMetadata, ParsedDocument
from .language_config import LanguageConfig
from .language_patterns import (
    STRUCTURE_PATTERNS,
    ATOM_KINDS,
    SUBPARAGRAPH_PATTERN,
    INLINE_SUBPARAGRAPH_PATTERN,
    SENTENCE_BOUNDARY,
    LABELS,
    ID_PREFIXES,
)

logger = logging.getLogger(__name__)

ID_SEPARATOR = "--"


@dataclass
class StructureLabel:
    """Number and optional title of a division or sub-chapter header."""
    number: str
    title: Optional[str] = None

    def to_dict(self) -> dict:
        return {"number": self.number, "title": self.title}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["StructureLabel"]:
        if not data:
            return None
        return cls(number=str(data["number"]), title=data.get("title"))


@dataclass
class CitationInfo:
    """How a fragment is cited: source title, article label and hierarchy context."""
    source: str
    article: str  # "Art. 15" or "§ 3"
    context: Optional[str] = None  # "Dział I, Rozdział 2"
    sub_paragraph: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "article": self.article,
            "context": self.context,
            "sub_paragraph": self.sub_paragraph,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CitationInfo":
        return cls(
            source=data.get("source", ""),
            article=data.get("article", ""),
            context=data.get("context"),
            sub_paragraph=data.get("sub_paragraph"),
        )


@dataclass
class FragmentMetadata:
    """Document and structural position of a fragment."""
    title: str
    atom_type: str  # "article" or "paragraph"
    atom_number: str
    division: Optional[StructureLabel] = None
    subchapter: Optional[StructureLabel] = None
    sub_paragraph: Optional[str] = None  # numbered sub-paragraph of an oversized atom
    part_number: Optional[int] = None  # sentence-split piece of an oversized atom
    source_url: Optional[str] = None
    page_number: Optional[int] = None
    start_char: int = 0

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "atom_type": self.atom_type,
            "atom_number": self.atom_number,
            "division": self.division.to_dict() if self.division else None,
            "subchapter": self.subchapter.to_dict() if self.subchapter else None,
            "sub_paragraph": self.sub_paragraph,
            "part_number": self.part_number,
            "source_url": self.source_url,
            "page_number": self.page_number,
            "start_char": self.start_char,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FragmentMetadata":
        return cls(
            title=data.get("title", ""),
            atom_type=data.get("atom_type", "article"),
            atom_number=str(data.get("atom_number", "")),
            division=StructureLabel.from_dict(data.get("division")),
            subchapter=StructureLabel.from_dict(data.get("subchapter")),
            sub_paragraph=data.get("sub_paragraph"),
            part_number=data.get("part_number"),
            source_url=data.get("source_url"),
            page_number=data.get("page_number"),
            start_char=data.get("start_char", 0),
        )


@dataclass
class Fragment:
    """
    The unit of retrieval.

    display_text is what gets embedded and shown (context prefix + raw text);
    raw_text is the atom alone, used for citation snippets. Fragments leave
    the chunker as drafts (embedding is None) and gain an embedding only as
    a copy owned by the vector store.
    """
    id: str
    display_text: str
    raw_text: str
    metadata: FragmentMetadata
    citation_info: CitationInfo
    embedding: Optional[list[float]] = None

    def with_embedding(self, embedding: list[float]) -> "Fragment":
        """Return a copy of this fragment carrying the given embedding."""
        return replace(self, embedding=[float(x) for x in embedding])

    def to_dict(self, include_embedding: bool = True) -> dict:
        data = {
            "id": self.id,
            "display_text": self.display_text,
            "raw_text": self.raw_text,
            "metadata": self.metadata.to_dict(),
            "citation_info": self.citation_info.to_dict(),
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Fragment":
        return cls(
            id=data["id"],
            display_text=data["display_text"],
            raw_text=data["raw_text"],
            metadata=FragmentMetadata.from_dict(data.get("metadata") or {}),
            citation_info=CitationInfo.from_dict(data.get("citation_info") or {}),
            embedding=data.get("embedding"),
        )


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters."""
    # Atoms longer than this are split into sub-paragraphs or sentence groups
    max_atom_chars: int = 1500

    # Upper bound for sentence-accumulated pieces
    max_subchunk_chars: int = 1000


class ContextState(Enum):
    """Position of the scan within the statute hierarchy."""
    NO_CONTEXT = "no_context"
    IN_DIVISION = "in_division"
    IN_SUBCHAPTER = "in_subchapter"


@dataclass
class HierarchyContext:
    """Running division / sub-chapter context while walking the markers."""
    state: ContextState = ContextState.NO_CONTEXT
    division: Optional[StructureLabel] = None
    subchapter: Optional[StructureLabel] = None

    def enter_division(self, label: StructureLabel) -> None:
        # A new division closes whatever sub-chapter was open
        self.division = label
        self.subchapter = None
        self.state = ContextState.IN_DIVISION

    def enter_subchapter(self, label: StructureLabel) -> None:
        self.subchapter = label
        self.state = ContextState.IN_SUBCHAPTER


@dataclass
class Marker:
    """A structural marker found in the text."""
    kind: str  # division, subchapter, article, paragraph
    position: int
    number: str
    title: Optional[str] = None


@dataclass
class AtomPiece:
    """One output piece of an atom (the whole atom unless it was split)."""
    text: str
    offset: int = 0
    sub_paragraph: Optional[str] = None
    part_number: Optional[int] = None


def slugify(value: str) -> str:
    """Lower-case ASCII slug: whitespace to '-', everything else non-alphanumeric dropped."""
    value = value.replace("ł", "l").replace("Ł", "L")
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"\s+", "-", value.strip().lower())
    value = re.sub(r"[^a-z0-9-]", "", value)
    return re.sub(r"-{2,}", "-", value).strip("-")


class LegalChunker:
    """
    Chunks statute text into article/paragraph fragments with injected context.

    The same text and metadata always produce the same fragment ids, so a
    full re-index yields identical ids.
    """

    def __init__(
        self,
        config: Optional[ChunkConfig] = None,
        language_config: Optional[LanguageConfig] = None,
    ):
        """Initialize chunker with optional configuration and language support."""
        self.config = config or ChunkConfig()
        self._language_config = language_config or LanguageConfig.for_language("pl")
        self._lang = self._language_config.language

        # Load language-specific patterns from centralized module
        self._patterns = STRUCTURE_PATTERNS.get(self._lang, STRUCTURE_PATTERNS["pl"])
        self._labels = LABELS.get(self._lang, LABELS["pl"])
        self._id_prefixes = ID_PREFIXES.get(self._lang, ID_PREFIXES["pl"])

    def chunk(self, text: str, metadata: DocumentMetadata) -> list[Fragment]:
        """
        Chunk statute text into retrieval-ready fragments.

        Args:
            text: Full document text
            metadata: Document metadata (title, source URL, page ranges)

        Returns:
            Draft fragments in text order; empty when no article or
            paragraph marker is found
        """
        title = (metadata.title or "").strip() or self._labels["unknown_document"]
        logger.info(f"Chunking document: {title}")

        markers = self._find_markers(text)
        if not any(m.kind in ATOM_KINDS for m in markers):
            logger.info(f"No article or paragraph markers found in '{title}'")
            return []

        page_starts = [start for _, start, _ in metadata.page_ranges]
        context = HierarchyContext()
        fragments = []
        seen_ids: dict[str, int] = {}

        for idx, marker in enumerate(markers):
            if marker.kind == "division":
                context.enter_division(StructureLabel(marker.number, marker.title))
                continue
            if marker.kind == "subchapter":
                context.enter_subchapter(StructureLabel(marker.number, marker.title))
                continue

            end = markers[idx + 1].position if idx + 1 < len(markers) else len(text)
            raw_atom = text[marker.position:end]
            atom_text = raw_atom.strip()
            if not atom_text:
                continue
            atom_start = marker.position + (len(raw_atom) - len(raw_atom.lstrip()))

            for piece in self._split_atom(atom_text, marker.kind):
                fragment = self._build_fragment(
                    piece=piece,
                    marker=marker,
                    context=context,
                    title=title,
                    metadata=metadata,
                    start_char=atom_start + piece.offset,
                    page_starts=page_starts,
                )
                fragment.id = self._unique_id(fragment.id, seen_ids)
                fragments.append(fragment)

        logger.info(f"Created {len(fragments)} fragments from '{title}'")
        return fragments

    def chunk_document(self, document: ParsedDocument) -> list[Fragment]:
        """Chunk a ParsedDocument from the parser."""
        return self.chunk(document.raw_text, document.metadata)

    def _find_markers(self, text: str) -> list[Marker]:
        """Single pass over all marker kinds, sorted by position."""
        markers = []
        for kind, pattern in self._patterns.items():
            for match in pattern.finditer(text):
                title = None
                if kind not in ATOM_KINDS:
                    title = (match.group(2) or "").strip() or None
                markers.append(Marker(kind, match.start(), match.group(1), title))

        markers.sort(key=lambda m: m.position)
        return markers

    def render_prefix(
        self,
        division: Optional[StructureLabel],
        subchapter: Optional[StructureLabel],
    ) -> str:
        """Context prefix lines: 'Dział I. Title' then 'Rozdział 2. Title'."""
        lines = []
        for kind, label in (("division", division), ("subchapter", subchapter)):
            if label is None:
                continue
            line = f"{self._labels[kind]} {label.number}"
            if label.title:
                line += f". {label.title}"
            lines.append(line)
        return "\n".join(lines)

    def _render_context(
        self,
        division: Optional[StructureLabel],
        subchapter: Optional[StructureLabel],
    ) -> Optional[str]:
        parts = []
        if division:
            parts.append(f"{self._labels['division']} {division.number}")
        if subchapter:
            parts.append(f"{self._labels['subchapter']} {subchapter.number}")
        return ", ".join(parts) or None

    def _build_fragment(
        self,
        piece: AtomPiece,
        marker: Marker,
        context: HierarchyContext,
        title: str,
        metadata: DocumentMetadata,
        start_char: int,
        page_starts: list[int],
    ) -> Fragment:
        prefix = self.render_prefix(context.division, context.subchapter)
        display_text = f"{prefix}\n\n{piece.text}" if prefix else piece.text

        return Fragment(
            id=self._build_id(title, marker, context, piece),
            display_text=display_text,
            raw_text=piece.text,
            metadata=FragmentMetadata(
                title=title,
                atom_type=marker.kind,
                atom_number=marker.number,
                division=context.division,
                subchapter=context.subchapter,
                sub_paragraph=piece.sub_paragraph,
                part_number=piece.part_number,
                source_url=metadata.source_url,
                page_number=self._page_for(start_char, metadata.page_ranges, page_starts),
                start_char=start_char,
            ),
            citation_info=CitationInfo(
                source=title,
                article=f"{self._labels[marker.kind]} {marker.number}",
                context=self._render_context(context.division, context.subchapter),
                sub_paragraph=piece.sub_paragraph,
            ),
        )

    def _build_id(
        self,
        title: str,
        marker: Marker,
        context: HierarchyContext,
        piece: AtomPiece,
    ) -> str:
        prefixes = self._id_prefixes
        parts = [slugify(title) or "document"]
        if context.division:
            parts.append(f"{prefixes['division']}-{slugify(context.division.number)}")
        if context.subchapter:
            parts.append(f"{prefixes['subchapter']}-{slugify(context.subchapter.number)}")
        parts.append(f"{prefixes[marker.kind]}-{slugify(marker.number)}")
        if piece.sub_paragraph:
            parts.append(f"{prefixes['sub_paragraph']}-{slugify(piece.sub_paragraph)}")
        if piece.part_number:
            parts.append(f"{prefixes['part']}-{piece.part_number}")
        return ID_SEPARATOR.join(parts)

    @staticmethod
    def _unique_id(base_id: str, seen_ids: dict[str, int]) -> str:
        """Suffix repeated ids within one run (--2, --3, ...)."""
        if base_id not in seen_ids:
            seen_ids[base_id] = 1
            return base_id

        count = seen_ids[base_id]
        while True:
            count += 1
            candidate = f"{base_id}{ID_SEPARATOR}{count}"
            if candidate not in seen_ids:
                seen_ids[base_id] = count
                seen_ids[candidate] = 1
                logger.debug(f"Duplicate fragment id {base_id}, using {candidate}")
                return candidate

    @staticmethod
    def _page_for(
        position: int,
        page_ranges: list[tuple[int, int, int]],
        page_starts: list[int],
    ) -> Optional[int]:
        if not page_ranges:
            return None
        idx = bisect_right(page_starts, position) - 1
        if idx < 0:
            return page_ranges[0][0]
        return page_ranges[idx][0]

    # -------------------------------------------------------------------------
    # Oversized atoms
    # -------------------------------------------------------------------------

    def _split_atom(self, atom_text: str, kind: str) -> list[AtomPiece]:
        """Return the atom unchanged, or its pieces when it is oversized."""
        if len(atom_text) <= self.config.max_atom_chars:
            return [AtomPiece(atom_text)]

        pieces = self._split_on_subparagraphs(atom_text, kind)
        if len(pieces) < 2:
            pieces = self._split_on_sentences(atom_text)

        logger.debug(f"Split oversized atom ({len(atom_text)} chars) into {len(pieces)} pieces")
        return pieces

    def _split_on_subparagraphs(self, atom_text: str, kind: str) -> list[AtomPiece]:
        matches = list(SUBPARAGRAPH_PATTERN.finditer(atom_text))
        if not matches:
            return []

        pieces = []
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(atom_text)
            piece_text = atom_text[match.start():end].strip()
            if piece_text:
                pieces.append(AtomPiece(piece_text, offset=match.start(), sub_paragraph=match.group(1)))

        lead = atom_text[:matches[0].start()].strip()
        if not lead:
            return pieces

        inline = INLINE_SUBPARAGRAPH_PATTERN.match(lead)
        if inline:
            # "Art. 5. 1. Text..." - the header line already opens sub-paragraph 1
            pieces.insert(0, AtomPiece(lead, offset=0, sub_paragraph=inline.group(1)))
        elif self._is_bare_header(lead, kind) and pieces:
            pieces[0] = AtomPiece(
                f"{lead}\n{pieces[0].text}",
                offset=0,
                sub_paragraph=pieces[0].sub_paragraph,
            )
        else:
            pieces.insert(0, AtomPiece(lead, offset=0))
        return pieces

    def _is_bare_header(self, text: str, kind: str) -> bool:
        match = self._patterns[kind].match(text)
        return bool(match) and not text[match.end():].strip()

    def _split_on_sentences(self, atom_text: str) -> list[AtomPiece]:
        """Greedy sentence accumulation bounded by max_subchunk_chars."""
        limit = self.config.max_subchunk_chars
        texts = []
        current = ""

        for sentence in SENTENCE_BOUNDARY.split(atom_text):
            sentence = sentence.strip()
            if not sentence:
                continue

            if len(sentence) > limit:
                # Last resort: a single sentence longer than the bound, cut at whitespace
                remainder = f"{current} {sentence}" if current else sentence
                while len(remainder) > limit:
                    cut = remainder.rfind(" ", 0, limit + 1)
                    if cut <= 0:
                        cut = limit
                    texts.append(remainder[:cut].strip())
                    remainder = remainder[cut:].strip()
                current = remainder
                continue

            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) <= limit:
                current = candidate
            else:
                texts.append(current)
                current = sentence

        if current:
            texts.append(current)

        offsets = self._piece_offsets(atom_text, texts)
        return [
            AtomPiece(t, offset=offset, part_number=n)
            for n, (t, offset) in enumerate(zip(texts, offsets), start=1)
        ]

    @staticmethod
    def _piece_offsets(atom_text: str, texts: list[str]) -> list[int]:
        """
        Start of each piece within atom_text.

        Pieces only differ from the atom by whitespace, so each start is found
        by consuming the previous pieces' non-whitespace characters.
        """
        offsets = []
        pos = 0
        for text in texts:
            while pos < len(atom_text) and atom_text[pos].isspace():
                pos += 1
            offsets.append(pos)
            remaining = sum(1 for ch in text if not ch.isspace())
            while remaining and pos < len(atom_text):
                if not atom_text[pos].isspace():
                    remaining -= 1
                pos += 1
        return offsets


# CLI for testing
if __name__ == "__main__":
    import sys

    from .document_parser import LegalDocumentParser

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python -m execution.statute_rag.chunker <file>")
        sys.exit(1)

    parsed = LegalDocumentParser().parse(sys.argv[1])
    for fragment in LegalChunker().chunk_document(parsed):
        print(f"{fragment.id}  ({len(fragment.raw_text)} chars)")
        print(f"  {fragment.citation_info.article} | {fragment.citation_info.context}")
