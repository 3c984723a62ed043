"""
Multilingual Pattern Definitions for Statute RAG

All regex patterns, cross-reference phrases and labels organized by language.
Modules import from here instead of defining patterns inline.

Structure markers are anchored at line start: statute headers always open a
line, while inline references ("zgodnie z art. 5") do not.
"""

import re


def _header_pattern(labels: str, stop: str) -> re.Pattern:
    """
    Build a division/sub-chapter header pattern.

    Group 1 is the number (Roman or Arabic), group 2 the optional title,
    taken from the same line or, when the header line carries no title,
    from the following line unless that line opens another marker.
    """
    return re.compile(
        rf"^[ \t]*(?:{labels})[ \t]+([IVXLC]+|\d+[a-z]?)\b[.)]?[ \t]*"
        rf"(?:\n[ \t]*)?(?!{stop})([^\n]*)",
        re.MULTILINE,
    )


# =============================================================================
# Structure Markers (division > sub-chapter > article / paragraph)
# =============================================================================

_PL_STOP = r"Art\.|ART\.|§|Dział|DZIAŁ|Rozdział|ROZDZIAŁ"
_EN_STOP = r"Art\.|Article|ARTICLE|§|Section|SECTION|Part|PART|Chapter|CHAPTER"

STRUCTURE_PATTERNS = {
    "pl": {
        "division": _header_pattern(r"Dział|DZIAŁ", _PL_STOP),
        "subchapter": _header_pattern(r"Rozdział|ROZDZIAŁ", _PL_STOP),
        "article": re.compile(r"^[ \t]*(?:Art\.|ART\.)[ \t]*(\d+[a-z]?)[.)]?", re.MULTILINE),
        "paragraph": re.compile(r"^[ \t]*§[ \t]*(\d+[a-z]?)[.)]?", re.MULTILINE),
    },
    "en": {
        "division": _header_pattern(r"Part|PART", _EN_STOP),
        "subchapter": _header_pattern(r"Chapter|CHAPTER", _EN_STOP),
        "article": re.compile(
            r"^[ \t]*(?:Article[ \t]+|ARTICLE[ \t]+|Art\.[ \t]*)(\d+[a-z]?)[.)]?",
            re.MULTILINE,
        ),
        "paragraph": re.compile(
            r"^[ \t]*(?:§[ \t]*|Section[ \t]+|SECTION[ \t]+)(\d+[a-z]?)[.)]?",
            re.MULTILINE,
        ),
    },
}

# Marker kinds that open a fragment; the others only update context
ATOM_KINDS = ("article", "paragraph")
HEADER_KINDS = ("division", "subchapter")


# =============================================================================
# Oversized Atom Splitting
# =============================================================================

# "1. ", "2. " numbering at line start (Polish "ustęp" / numbered subsections)
SUBPARAGRAPH_PATTERN = re.compile(r"^[ \t]*(\d+)\.\s+", re.MULTILINE)

# Inline first-subsection number right after the atom header ("Art. 5. 1. Text")
INLINE_SUBPARAGRAPH_PATTERN = re.compile(r"^\S+[ \t]*\d+[a-z]?[.)]?[ \t]+(\d+)\.\s+")

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


# =============================================================================
# Citation Label Extraction
# =============================================================================

ARTICLE_LABEL_PATTERNS = {
    "pl": {
        "paragraph": re.compile(r"^[ \t]*§[ \t]*(\d+[a-z]?)", re.MULTILINE),
        "article": re.compile(r"^[ \t]*Art\.[ \t]*(\d+[a-z]?)", re.MULTILINE | re.IGNORECASE),
    },
    "en": {
        "paragraph": re.compile(r"^[ \t]*(?:§[ \t]*|Section[ \t]+)(\d+[a-z]?)", re.MULTILINE | re.IGNORECASE),
        "article": re.compile(r"^[ \t]*(?:Art\.[ \t]*|Article[ \t]+)(\d+[a-z]?)", re.MULTILINE | re.IGNORECASE),
    },
}

# Phrases that turn a following article/paragraph mention into a reference
CROSS_REFERENCE_PHRASES = {
    "pl": [
        "o którym mowa w",
        "o której mowa w",
        "o których mowa w",
        "o którym mowa",
        "zgodnie z",
        "z zastrzeżeniem",
        "na podstawie",
        "w myśl",
        "stosownie do",
        "w rozumieniu",
        "określonych w",
        "określonym w",
    ],
    "en": [
        "as referred to in",
        "referred to in",
        "in accordance with",
        "subject to",
        "pursuant to",
        "within the meaning of",
        "under",
    ],
}

# How many characters before a label are inspected for a cross-reference phrase
CROSS_REFERENCE_WINDOW = 80


# =============================================================================
# Labels
# =============================================================================

LABELS = {
    "pl": {
        "division": "Dział",
        "subchapter": "Rozdział",
        "article": "Art.",
        "paragraph": "§",
        "source_header": "ŹRÓDŁO",
        "unknown_source": "Nieznane źródło",
        "unknown_document": "Nieznany dokument",
    },
    "en": {
        "division": "Part",
        "subchapter": "Chapter",
        "article": "Art.",
        "paragraph": "§",
        "source_header": "SOURCE",
        "unknown_source": "Unknown source",
        "unknown_document": "Unknown document",
    },
}

# Slug parts used to build deterministic fragment ids
ID_PREFIXES = {
    "pl": {
        "division": "dzial",
        "subchapter": "rozdzial",
        "article": "art",
        "paragraph": "para",
        "sub_paragraph": "p",
        "part": "s",
    },
    "en": {
        "division": "part",
        "subchapter": "chapter",
        "article": "art",
        "paragraph": "para",
        "sub_paragraph": "p",
        "part": "s",
    },
}
