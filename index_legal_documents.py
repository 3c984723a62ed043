"""
Batch indexing of statutes listed in a manifest into the JSON vector store.

Pipeline per document:
- Parser: LegalDocumentParser (PyMuPDF for PDFs, UTF-8 for .txt/.md)
- Chunker: LegalChunker (articles / paragraphs with division and chapter context)
- Embeddings: provider from EMBEDDING_PROVIDER (OpenAI text-embedding-3-small by default)
- Storage: VectorStore at VECTOR_STORE_PATH

Manifest format:
    {"documents": [{"path": "data/ustawa.pdf",
                    "metadata": {"title": "...", "source_url": "..."}}]}
Relative paths are resolved against the manifest's directory.

Usage:
    python index_legal_documents.py --manifest legal_documents.json
    python index_legal_documents.py --manifest legal_documents.json --reindex
"""

import sys
import json
import time
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def load_manifest(manifest_path: Path) -> list[dict]:
    """Read the manifest and return its document entries with resolved paths."""
    with open(manifest_path, encoding="utf-8") as f:
        manifest = json.load(f)

    documents = []
    for entry in manifest.get("documents", []):
        doc_path = Path(entry["path"])
        if not doc_path.is_absolute():
            doc_path = manifest_path.parent / doc_path
        documents.append({"path": doc_path, "metadata": entry.get("metadata") or {}})
    return documents


def index_manifest(retriever, documents: list[dict]) -> dict:
    """
    Index every manifest document, continuing past failures.

    Returns:
        Summary dict with success/error counts and total fragments
    """
    from execution.statute_rag.errors import IndexingError, StatuteRAGError

    summary = {"success": 0, "errors": 0, "fragments": 0}

    for i, doc in enumerate(documents):
        doc_path = doc["path"]
        title = doc["metadata"].get("title")
        logger.info(f"[{i + 1}/{len(documents)}] Indexing: {title or doc_path.name}")

        if not doc_path.exists():
            logger.error(f"  File not found: {doc_path}")
            summary["errors"] += 1
            continue

        try:
            report = retriever.index_file(
                str(doc_path),
                title=title,
                source_url=doc["metadata"].get("source_url"),
            )
        except IndexingError as e:
            logger.error(f"  FAILED after {e.indexed_count}/{e.total_count} fragments: {e.__cause__}")
            summary["errors"] += 1
            summary["fragments"] += e.indexed_count
            if e.unsaved_count:
                try:
                    retriever.persist()
                    logger.info(f"  Saved {e.unsaved_count} fragments on retry")
                except StatuteRAGError as persist_error:
                    logger.error(f"  Retry failed, {e.unsaved_count} fragments not on disk: {persist_error}")
            continue
        except (StatuteRAGError, OSError, RuntimeError, ValueError) as e:
            logger.error(f"  FAILED: {e}")
            summary["errors"] += 1
            continue

        logger.info(f"  -> {report.fragment_count} fragments")
        summary["success"] += 1
        summary["fragments"] += report.fragment_count

    return summary


def main():
    arg_parser = argparse.ArgumentParser(description="Index statutes into the vector store")
    arg_parser.add_argument(
        "--manifest",
        type=str,
        default="legal_documents.json",
        help="Manifest listing documents to index (default: legal_documents.json)",
    )
    arg_parser.add_argument(
        "--reindex",
        action="store_true",
        help="Delete the existing collection and index everything again",
    )
    args = arg_parser.parse_args()

    manifest_path = Path(args.manifest).resolve()
    if not manifest_path.exists():
        logger.error(f"Manifest not found: {manifest_path}")
        sys.exit(1)

    documents = load_manifest(manifest_path)
    if not documents:
        logger.warning(f"No documents listed in {manifest_path}")
        return

    from execution.statute_rag.retriever import get_retriever

    retriever = get_retriever()

    if args.reindex:
        retriever.reindex()
    elif retriever.is_database_initialized():
        stats = retriever.stats()
        logger.info(
            f"Collection already holds {stats['fragment_count']} fragments at {stats['storage_file']}; "
            f"run with --reindex to rebuild it"
        )
        return

    logger.info(f"Found {len(documents)} documents in {manifest_path.name}")
    start_time = time.time()
    summary = index_manifest(retriever, documents)
    elapsed = time.time() - start_time

    print("\n" + "=" * 60)
    print("INDEXING COMPLETE")
    print("=" * 60)
    print(f"Documents indexed: {summary['success']}/{len(documents)} ({summary['errors']} failed)")
    print(f"Total fragments:   {summary['fragments']}")
    print(f"Time elapsed:      {elapsed:.1f}s")
    print(f"Store:             {retriever.stats()['storage_file']}")
    print("=" * 60)

    if summary["success"] == 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
