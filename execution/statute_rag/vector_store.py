"""
Vector Store with JSON-file persistence

Keeps the whole collection of embedded fragments in memory and persists it
as a single JSON document. Search is exhaustive cosine similarity over all
fragments, computed with numpy.

Concurrency model: writers serialise on a lock and publish a fresh immutable
snapshot; readers take one snapshot reference and never see a half-applied
write. Every mutation rewrites the whole file (temp file, fsync, atomic
replace), which is O(n) per write and intended for collections of up to a
few tens of thousands of fragments.
"""

import os
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Iterator, Optional, Sequence
from dataclasses import dataclass, field

import numpy as np

from .chunker import Fragment
from .errors import (
    DimensionMismatchError,
    DuplicateFragmentError,
    FragmentNotFoundError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_STORAGE_PATH = "vectorstore/fragments.json"


@dataclass
class VectorStoreConfig:
    """Configuration for vector store."""
    storage_path: Optional[str] = None  # Falls back to VECTOR_STORE_PATH
    collection_name: str = "legal_documents"
    # When set, every stored and query vector must have exactly this length
    embedding_dimensions: Optional[int] = None


@dataclass
class SearchResult:
    """A single search result with score."""
    fragment: Fragment
    score: float

    @property
    def fragment_id(self) -> str:
        return self.fragment.id

    @property
    def distance(self) -> float:
        """Cosine distance (1 - similarity)."""
        return 1.0 - self.score

    def to_dict(self) -> dict:
        return {
            "fragment_id": self.fragment.id,
            "score": self.score,
            "fragment": self.fragment.to_dict(include_embedding=False),
        }


@dataclass(frozen=True)
class _Snapshot:
    """Immutable view of the collection published by writers."""
    fragments: tuple = ()
    index: dict = field(default_factory=dict)
    matrix: Optional[np.ndarray] = None  # shape (n, d)
    norms: Optional[np.ndarray] = None  # shape (n,)

    @property
    def dimensions(self) -> Optional[int]:
        return None if self.matrix is None else int(self.matrix.shape[1])


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(
            f"Vector length mismatch: {len(a)} vs {len(b)}",
            expected=len(a),
            actual=len(b),
        )

    a_arr = np.asarray(a, dtype=np.float64)
    b_arr = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a_arr, b_arr) / (norm_a * norm_b))


def _build_snapshot(fragments: Sequence[Fragment]) -> _Snapshot:
    if not fragments:
        return _Snapshot()

    matrix = np.asarray([f.embedding for f in fragments], dtype=np.float64)
    return _Snapshot(
        fragments=tuple(fragments),
        index={f.id: i for i, f in enumerate(fragments)},
        matrix=matrix,
        norms=np.linalg.norm(matrix, axis=1),
    )


class VectorStore:
    """
    JSON-file vector store.

    Features:
    - Exhaustive cosine similarity search with stable tie ordering
    - Dimension and id-uniqueness guards before any mutation
    - Atomic whole-file persistence, retryable through persist()
    - Lock-free reads over copy-on-write snapshots
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        """
        Initialize vector store.

        Args:
            config: Optional configuration. Uses env vars if not provided.
        """
        self.config = config or VectorStoreConfig()
        self._storage_path = Path(
            self.config.storage_path
            or os.getenv("VECTOR_STORE_PATH")
            or DEFAULT_STORAGE_PATH
        )
        self._snapshot = _Snapshot()
        self._write_lock = threading.RLock()
        self._initialized = False
        self._unsaved = False

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def has_unsaved_changes(self) -> bool:
        """True when the last write failed and memory is ahead of the file."""
        return self._unsaved

    @property
    def count(self) -> int:
        return len(self._snapshot.fragments)

    @property
    def dimensions(self) -> Optional[int]:
        return self._snapshot.dimensions or self.config.embedding_dimensions

    def initialize(self) -> None:
        """
        Load the persisted collection. Idempotent.

        A missing file yields an empty collection.

        Raises:
            PersistenceError: If the file exists but cannot be read or is inconsistent
        """
        with self._write_lock:
            if self._initialized:
                return

            self._storage_path.parent.mkdir(parents=True, exist_ok=True)

            if not self._storage_path.exists():
                logger.info(f"No collection file at {self._storage_path}; starting empty")
                self._snapshot = _Snapshot()
                self._initialized = True
                return

            fragments = self._load()
            self._snapshot = _build_snapshot(fragments)
            self._initialized = True
            logger.info(
                f"Loaded {len(fragments)} fragments from {self._storage_path}"
                f" (dimensions={self._snapshot.dimensions})"
            )

    def _load(self) -> list[Fragment]:
        path = self._storage_path
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read collection file {path}: {e}")
            raise PersistenceError(f"Cannot read collection file {path}: {e}", path=str(path)) from e

        # Bare arrays are the unversioned layout
        if isinstance(data, list):
            records = data
        elif isinstance(data, dict) and isinstance(data.get("fragments"), list):
            version = data.get("schema_version", SCHEMA_VERSION)
            if version > SCHEMA_VERSION:
                raise PersistenceError(
                    f"Collection file {path} has schema version {version}; "
                    f"this build supports up to {SCHEMA_VERSION}",
                    path=str(path),
                )
            records = data["fragments"]
        else:
            raise PersistenceError(f"Unrecognised collection file layout in {path}", path=str(path))

        try:
            fragments = [Fragment.from_dict(r) for r in records]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed fragment record in {path}: {e}", path=str(path)) from e

        seen = set()
        dimensions = None
        for fragment in fragments:
            if fragment.id in seen:
                raise PersistenceError(f"Duplicate fragment id {fragment.id} in {path}", path=str(path))
            seen.add(fragment.id)

            if not fragment.embedding:
                raise PersistenceError(f"Fragment {fragment.id} has no embedding in {path}", path=str(path))
            if dimensions is None:
                dimensions = len(fragment.embedding)
            elif len(fragment.embedding) != dimensions:
                raise PersistenceError(
                    f"Mixed embedding dimensions in {path}: {dimensions} and "
                    f"{len(fragment.embedding)} ({fragment.id})",
                    path=str(path),
                )

        return fragments

    def _persist(self, snapshot: _Snapshot) -> None:
        """Write the whole collection: temp file, fsync, atomic replace."""
        path = self._storage_path
        payload = {
            "schema_version": SCHEMA_VERSION,
            "collection_name": self.config.collection_name,
            "fragments": [f.to_dict() for f in snapshot.fragments],
        }

        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                json.dump(payload, tmp, ensure_ascii=False)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            self._unsaved = True
            logger.error(f"Failed to persist collection to {path}: {e}")
            raise PersistenceError(f"Cannot write collection file {path}: {e}", path=str(path)) from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        self._unsaved = False
        logger.debug(f"Persisted {len(snapshot.fragments)} fragments to {path}")

    def persist(self) -> None:
        """
        Write the in-memory collection to disk.

        Used to retry after add_fragments raised PersistenceError; the
        fragments from that call are already in memory.

        Raises:
            PersistenceError: If writing the file fails again
        """
        self.initialize()
        with self._write_lock:
            self._persist(self._snapshot)
        logger.info(f"Persisted {self.count} fragments to {self._storage_path}")

    def add_fragments(
        self,
        fragments: Sequence[Fragment],
        embeddings: Sequence[Sequence[float]],
    ) -> list[str]:
        """
        Store fragments with their embeddings and persist the collection.

        All validation happens before the collection changes. If persisting
        fails, the fragments stay in memory and PersistenceError is raised.

        Args:
            fragments: Draft fragments (their own embedding field is ignored)
            embeddings: One vector per fragment, in the same order

        Returns:
            Ids of the stored fragments

        Raises:
            DimensionMismatchError: Count mismatch or inconsistent vector lengths
            DuplicateFragmentError: Id already stored or repeated in the batch
            PersistenceError: If writing the file fails
        """
        if len(fragments) != len(embeddings):
            raise DimensionMismatchError(
                f"Got {len(fragments)} fragments but {len(embeddings)} embeddings",
                expected=len(fragments),
                actual=len(embeddings),
            )
        if not fragments:
            return []

        self.initialize()

        with self._write_lock:
            current = self._snapshot
            expected_dim = current.dimensions or self.config.embedding_dimensions or len(embeddings[0])

            for fragment, embedding in zip(fragments, embeddings):
                if len(embedding) != expected_dim:
                    raise DimensionMismatchError(
                        f"Embedding for {fragment.id} has {len(embedding)} dimensions, "
                        f"collection uses {expected_dim}",
                        expected=expected_dim,
                        actual=len(embedding),
                    )

            batch_ids = [f.id for f in fragments]
            duplicates = sorted(
                {fid for fid in batch_ids if fid in current.index}
                | {fid for fid in batch_ids if batch_ids.count(fid) > 1}
            )
            if duplicates:
                raise DuplicateFragmentError(
                    f"{len(duplicates)} fragment ids already present: {', '.join(duplicates[:5])}",
                    fragment_ids=duplicates,
                )

            stored = [f.with_embedding(e) for f, e in zip(fragments, embeddings)]
            snapshot = _build_snapshot(current.fragments + tuple(stored))
            self._snapshot = snapshot
            logger.info(f"Stored {len(stored)} fragments ({len(snapshot.fragments)} total)")

            self._persist(snapshot)

        return batch_ids

    def search(self, query_embedding: Sequence[float], top_k: int = 20) -> list[SearchResult]:
        """
        Exhaustive cosine similarity search.

        Args:
            query_embedding: Query vector
            top_k: Maximum number of results

        Returns:
            Up to top_k results ordered by descending similarity; ties keep
            insertion order. Empty when the collection is empty.

        Raises:
            DimensionMismatchError: If the query length differs from the collection's
            ValueError: If top_k < 1
        """
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")

        self.initialize()
        snapshot = self._snapshot

        if not snapshot.fragments:
            return []

        if len(query_embedding) != snapshot.dimensions:
            raise DimensionMismatchError(
                f"Query has {len(query_embedding)} dimensions, collection uses {snapshot.dimensions}",
                expected=snapshot.dimensions,
                actual=len(query_embedding),
            )

        query = np.asarray(query_embedding, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            scores = np.zeros(len(snapshot.fragments))
        else:
            denominators = snapshot.norms * query_norm
            dots = snapshot.matrix @ query
            scores = np.divide(
                dots,
                denominators,
                out=np.zeros_like(dots),
                where=denominators != 0,
            )

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [SearchResult(fragment=snapshot.fragments[i], score=float(scores[i])) for i in order]

    def get_fragment(self, fragment_id: str) -> Fragment:
        """
        Fetch a stored fragment by id.

        Raises:
            FragmentNotFoundError: If the id is unknown
        """
        self.initialize()
        snapshot = self._snapshot
        position = snapshot.index.get(fragment_id)
        if position is None:
            raise FragmentNotFoundError(fragment_id)
        return snapshot.fragments[position]

    def fragments(self) -> Iterator[Fragment]:
        """Iterate over a consistent snapshot of stored fragments."""
        self.initialize()
        return iter(self._snapshot.fragments)

    def delete_all(self) -> None:
        """Clear the collection and remove its file."""
        with self._write_lock:
            self._snapshot = _Snapshot()
            self._initialized = True
            self._unsaved = False
            try:
                if self._storage_path.exists():
                    self._storage_path.unlink()
            except OSError as e:
                logger.error(f"Failed to remove collection file {self._storage_path}: {e}")
                raise PersistenceError(
                    f"Cannot remove collection file {self._storage_path}: {e}",
                    path=str(self._storage_path),
                ) from e

        logger.info(f"Cleared collection {self.config.collection_name}")

    def stats(self) -> dict:
        """Collection statistics."""
        snapshot = self._snapshot
        return {
            "collection_name": self.config.collection_name,
            "fragment_count": len(snapshot.fragments),
            "exists": bool(snapshot.fragments) or self._storage_path.exists(),
            "storage_file": str(self._storage_path),
            "dimensions": snapshot.dimensions,
        }


# CLI for testing
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    store = VectorStore()
    store.initialize()
    print(json.dumps(store.stats(), indent=2))
