"""
Structured logging for embedding calls, breaker transitions, indexing and search.
"""

import logging
from typing import Any, Dict


class StructuredLogger:
    """Structured logger for recommender operations."""

    def __init__(self, name: str = "catalog_recommender"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_embedding_call(self, batch_size: int, latency_ms: float, outcome: str, attempts: int = 1, details: Dict[str, Any] = None):
        """Log one logical embedding call (all of its attempts)."""
        log_details = {
            "batch_size": batch_size,
            "latency_ms": round(latency_ms, 2),
            "attempts": attempts
        }
        if details:
            log_details.update(details)

        level = logging.INFO if outcome == "success" else logging.WARNING
        self.log_operation("embedding.call", outcome, log_details, level)

    def log_breaker_transition(self, dependency: str, from_state: str, to_state: str, consecutive_failures: int):
        """Log a circuit breaker state change."""
        log_details = {
            "dependency": dependency,
            "from": from_state,
            "to": to_state,
            "consecutive_failures": consecutive_failures
        }
        level = logging.WARNING if to_state == "open" else logging.INFO
        self.log_operation("breaker.transition", to_state, log_details, level)

    def log_cache_event(self, event: str, details: Dict[str, Any] = None):
        """Log a cache eviction or expiry."""
        self.logger.debug(f"Operation: cache.{event}, Details: {details or {}}")

    def log_index_chunk(self, worker: str, chunk_size: int, status: str, details: Dict[str, Any] = None):
        """Log the outcome of one indexing chunk."""
        log_details = {"worker": worker, "chunk_size": chunk_size}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("index.chunk", status, log_details, level)

    def log_index_run(self, status: str, details: Dict[str, Any]):
        """Log an indexing run summary."""
        level = logging.ERROR if status == "aborted" else logging.INFO
        self.log_operation("index.run", status, details, level)

    def log_search(self, query: str, top_k: int, results: int, duration_ms: float, cache_hit: bool):
        """Log a search request without leaking the full query text."""
        log_details = {
            "query": query[:50] + "..." if len(query) > 50 else query,
            "top_k": top_k,
            "results": results,
            "duration_ms": round(duration_ms, 2),
            "cache_hit": cache_hit
        }
        self.log_operation("search", "success", log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
