"""
Metrics Collection for Statute RAG

Tracks query latency, indexing throughput, citation verification outcomes
and errors for monitoring and tuning.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Optional
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


@dataclass
class QueryMetrics:
    """Metrics for a single query."""
    query_id: str
    query_text: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    results_count: int = 0
    top_score: Optional[float] = None
    error: Optional[str] = None


@dataclass
class SystemMetrics:
    """Aggregated system metrics."""
    # Query metrics
    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0
    empty_queries: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    # Ingestion metrics
    documents_indexed: int = 0
    documents_failed: int = 0
    fragments_created: int = 0
    total_indexing_time_ms: float = 0

    # Citation metrics
    citations_verified: int = 0
    citations_unverified: int = 0

    # Error tracking
    errors_by_type: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        """Calculate average query latency."""
        if self.total_queries == 0:
            return 0
        return self.total_latency_ms / self.total_queries

    @property
    def p95_latency_ms(self) -> float:
        """Calculate 95th percentile latency."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * 0.95)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def error_rate(self) -> float:
        """Calculate error rate."""
        if self.total_queries == 0:
            return 0
        return self.failed_queries / self.total_queries

    @property
    def verification_rate(self) -> float:
        """Share of emitted citations that were verified."""
        total = self.citations_verified + self.citations_unverified
        if total == 0:
            return 0
        return self.citations_verified / total

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "queries": {
                "total": self.total_queries,
                "successful": self.successful_queries,
                "failed": self.failed_queries,
                "empty": self.empty_queries,
                "error_rate": f"{self.error_rate:.2%}",
            },
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "min": round(self.min_latency_ms, 2) if self.min_latency_ms != float('inf') else 0,
                "max": round(self.max_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
            },
            "indexing": {
                "documents": self.documents_indexed,
                "failed": self.documents_failed,
                "fragments": self.fragments_created,
                "avg_time_ms": round(
                    self.total_indexing_time_ms / max(self.documents_indexed, 1), 2
                ),
            },
            "citations": {
                "verified": self.citations_verified,
                "unverified": self.citations_unverified,
                "verification_rate": f"{self.verification_rate:.2%}",
            },
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Collects and aggregates system metrics.

    Usage:
        collector = MetricsCollector()

        # Track a query
        with collector.track_query(query_text) as tracker:
            results = retriever.search(query_text)
            tracker.set_results(len(results))

        # Get metrics
        metrics = collector.get_metrics()
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern for global metrics collection."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.metrics = SystemMetrics()
        self._query_history: list[QueryMetrics] = []
        self._max_history = 1000  # Keep last 1000 queries
        self._start_time = datetime.now()
        self._lock = threading.Lock()
        self._initialized = True

    def reset(self):
        """Reset all metrics (for testing)."""
        with self._lock:
            self.metrics = SystemMetrics()
            self._query_history = []
            self._start_time = datetime.now()

    class QueryTracker:
        """Context manager for tracking query metrics."""

        def __init__(self, collector: 'MetricsCollector', query_text: str):
            self.collector = collector
            self.query = QueryMetrics(
                query_id=f"q_{int(time.time() * 1000)}",
                query_text=query_text[:200],  # Truncate for storage
                start_time=time.time(),
            )

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.query.end_time = time.time()
            self.query.latency_ms = (self.query.end_time - self.query.start_time) * 1000

            if exc_type:
                self.query.error = str(exc_val)
                self.collector.record_error(exc_type.__name__)

            self.collector._record_query(self.query)
            return False  # Don't suppress exceptions

        def set_results(self, count: int, top_score: Optional[float] = None):
            """Set query result metadata."""
            self.query.results_count = count
            self.query.top_score = top_score

    def track_query(self, query_text: str) -> QueryTracker:
        """
        Create a query tracker context manager.

        Usage:
            with collector.track_query(query) as tracker:
                results = do_search()
                tracker.set_results(len(results))
        """
        return self.QueryTracker(self, query_text)

    def _record_query(self, query: QueryMetrics):
        """Record completed query metrics."""
        with self._lock:
            self.metrics.total_queries += 1

            if query.error:
                self.metrics.failed_queries += 1
            else:
                self.metrics.successful_queries += 1
                if query.results_count == 0:
                    self.metrics.empty_queries += 1

            # Latency tracking
            self.metrics.total_latency_ms += query.latency_ms
            self.metrics.min_latency_ms = min(self.metrics.min_latency_ms, query.latency_ms)
            self.metrics.max_latency_ms = max(self.metrics.max_latency_ms, query.latency_ms)
            self.metrics.latencies.append(query.latency_ms)

            # Keep latencies list bounded
            if len(self.metrics.latencies) > self._max_history:
                self.metrics.latencies = self.metrics.latencies[-self._max_history:]

            # Query history
            self._query_history.append(query)
            if len(self._query_history) > self._max_history:
                self._query_history = self._query_history[-self._max_history:]

    def record_error(self, error_type: str):
        """Record an error by type."""
        with self._lock:
            self.metrics.errors_by_type[error_type] += 1

    def record_indexing(
        self,
        document_title: str,
        fragments_count: int,
        duration_ms: float,
        failed: bool = False,
    ):
        """Record document indexing metrics."""
        with self._lock:
            if failed:
                self.metrics.documents_failed += 1
            else:
                self.metrics.documents_indexed += 1
                self.metrics.total_indexing_time_ms += duration_ms
            self.metrics.fragments_created += fragments_count
        logger.debug(f"Indexing of '{document_title}': {fragments_count} fragments in {duration_ms:.0f}ms")

    def record_citations(self, verified: int, unverified: int):
        """Record citation verification outcomes."""
        with self._lock:
            self.metrics.citations_verified += verified
            self.metrics.citations_unverified += unverified

    def get_metrics(self) -> SystemMetrics:
        """Get current metrics."""
        return self.metrics

    def get_metrics_dict(self) -> dict:
        """Get metrics as a dictionary."""
        return self.metrics.to_dict()

    def get_recent_queries(self, limit: int = 10) -> list[QueryMetrics]:
        """Get most recent queries."""
        return self._query_history[-limit:]

    def get_uptime(self) -> timedelta:
        """Get system uptime."""
        return datetime.now() - self._start_time


# Global metrics collector instance
_collector = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
