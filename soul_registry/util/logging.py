"""
Structured logging for registry operations.
One logger per process; helpers keep the operation/status/details shape consistent.
"""

import logging
from typing import Any, Dict, List

from ..core.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredLogger:
    """Structured logger for store, resolution, verification and scan operations."""

    def __init__(self, name: str = "soul_registry", level: str = LOG_LEVEL):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))

        # Handlers survive re-imports; attach one only once
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_store_operation(self, operation: str, key: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a store-level operation."""
        log_details = {"key": key}
        if details:
            log_details.update(details)

        level = logging.WARNING if status == "failed" else logging.DEBUG
        self.log_operation(f"store.{operation}", status, log_details, level=level)

    def log_registration(self, phash: str, source_key: str, target_key: str = None, score: float = None):
        """Log a new pairing registration."""
        self.log_operation("registry.register", "success", {
            "phash": phash,
            "source_key": source_key,
            "target_key": target_key,
            "similarity": round(score, 4) if score is not None else None,
        })

    def log_resolution(self, name: str, status: str, details: Dict[str, Any] = None):
        """Log a resolve outcome. NotFound is a normal result and stays at debug level."""
        log_details = {"name": name}
        if details:
            log_details.update(details)

        self.log_operation("registry.resolve", status, log_details, level=logging.DEBUG)

    def log_verification(self, source_key: str, target_key: str, score: float, verified: bool):
        """Log a verify decision."""
        self.log_operation("registry.verify", "verified" if verified else "unverified", {
            "source_key": source_key,
            "target_key": target_key,
            "score": round(score, 4),
        })

    def log_purge(self, phash: str, removed_keys: List[str]):
        """Log an administrative purge."""
        self.log_operation("registry.purge", "success", {"phash": phash, "removed": removed_keys})

    def log_scan(self, operation: str, scanned: int, matched: int, details: Dict[str, Any] = None):
        """Log a full-store scan; these are O(N) in store size."""
        log_details = {"scanned": scanned, "matched": matched}
        if details:
            log_details.update(details)

        self.log_operation(f"scan.{operation}", "complete", log_details, level=logging.DEBUG)

    def log_similarity_error(self, left_key: str, right_key: str, error: str):
        """Log a comparison that could not be scored."""
        self.log_operation("similarity", "failed", {
            "left": left_key,
            "right": right_key,
            "error": error[:100],
        }, level=logging.ERROR)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)


# Shared by every module in the package
logger = StructuredLogger()
