"""
Inspect fragments in the persisted vector store.

Usage:
    python view_fragments.py                      # All fragments (short form)
    python view_fragments.py --id <fragment_id>   # One fragment in full
    python view_fragments.py --source "Ustawa"    # Fragments of matching documents
    python view_fragments.py --search "art. 5"    # Fragments containing text
    python view_fragments.py --stats              # Per-document statistics
    python view_fragments.py --truncated          # Fragments cut before embedding
"""

import os
import sys
import argparse
import logging
from collections import defaultdict
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500


def max_embedding_length() -> int:
    return int(os.getenv("RAG_MAX_EMBEDDING_LENGTH", "6000"))


def print_fragment(fragment, index: int = None, total: int = None, full: bool = False):
    """Print one fragment with its citation details."""
    print("\n" + "=" * 80)
    prefix = f"[{index}/{total}] " if index is not None else ""
    print(f"{prefix}Fragment ID: {fragment.id}")
    print(f"Document:    {fragment.metadata.title}")
    print(f"Article:     {fragment.citation_info.article or '-'}")
    print(f"Context:     {fragment.citation_info.context or '-'}")
    if fragment.metadata.page_number:
        print(f"Page:        {fragment.metadata.page_number}")
    print(f"Length:      {len(fragment.display_text)} chars (raw {len(fragment.raw_text)})")
    if len(fragment.display_text) > max_embedding_length():
        print(f"WARNING: truncated to {max_embedding_length()} chars before embedding")

    text = fragment.display_text
    if not full and len(text) > PREVIEW_CHARS:
        text = text[:PREVIEW_CHARS] + "..."
    print("\n--- Text ---")
    print(text)


def document_stats(fragments) -> dict:
    """Fragment count, truncated count and average length per document title."""
    limit = max_embedding_length()
    by_document = defaultdict(lambda: {"count": 0, "truncated": 0, "total_length": 0})
    for fragment in fragments:
        entry = by_document[fragment.metadata.title]
        entry["count"] += 1
        entry["total_length"] += len(fragment.display_text)
        if len(fragment.display_text) > limit:
            entry["truncated"] += 1
    return dict(by_document)


def main():
    arg_parser = argparse.ArgumentParser(description="Inspect indexed statute fragments")
    group = arg_parser.add_mutually_exclusive_group()
    group.add_argument("--id", type=str, help="Show one fragment by id")
    group.add_argument("--source", type=str, help="Fragments whose document title contains TEXT")
    group.add_argument("--search", type=str, help="Fragments whose text contains TEXT")
    group.add_argument("--stats", action="store_true", help="Per-document statistics")
    group.add_argument("--truncated", action="store_true", help="Fragments longer than the embedding limit")
    args = arg_parser.parse_args()

    from execution.statute_rag.config import RAGSettings
    from execution.statute_rag.errors import FragmentNotFoundError, PersistenceError
    from execution.statute_rag.vector_store import VectorStore

    store = VectorStore(RAGSettings.from_env().vector_store_config())
    if not store.storage_path.exists():
        logger.error(f"No collection at {store.storage_path}. Run index_legal_documents.py first.")
        sys.exit(1)

    try:
        store.initialize()
    except PersistenceError as e:
        logger.error(str(e))
        sys.exit(1)

    fragments = list(store.fragments())

    if args.stats:
        stats = store.stats()
        print(f"\nCollection: {stats['collection_name']} ({stats['storage_file']})")
        print(f"Fragments:  {stats['fragment_count']}")
        print(f"Dimensions: {stats['dimensions']}")
        print("\nFragments per document:")
        total_truncated = 0
        for title, entry in document_stats(fragments).items():
            total_truncated += entry["truncated"]
            print(f"  - {title}")
            print(f"      fragments:  {entry['count']}")
            print(f"      truncated:  {entry['truncated']}")
            print(f"      avg length: {round(entry['total_length'] / entry['count'])} chars")
        share = total_truncated / len(fragments) if fragments else 0
        print(f"\nTruncated fragments: {total_truncated} ({share:.0%})")
        return

    if args.id:
        try:
            fragment = store.get_fragment(args.id)
        except FragmentNotFoundError as e:
            logger.error(str(e))
            sys.exit(1)
        print_fragment(fragment, full=True)
        return

    if args.truncated:
        limit = max_embedding_length()
        selected = [f for f in fragments if len(f.display_text) > limit]
        label = f"longer than {limit} chars"
    elif args.source:
        term = args.source.lower()
        selected = [f for f in fragments if term in f.metadata.title.lower()]
        label = f"from documents matching '{args.source}'"
    elif args.search:
        term = args.search.lower()
        selected = [f for f in fragments if term in f.raw_text.lower()]
        label = f"containing '{args.search}'"
    else:
        selected = fragments
        label = "in collection"

    print(f"\nFound {len(selected)} fragments {label}")
    for i, fragment in enumerate(selected):
        print_fragment(fragment, i + 1, len(selected))


if __name__ == "__main__":
    main()
