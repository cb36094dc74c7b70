"""
Metrics collection for PDF conversions.
"""

import time
from datetime import datetime
from typing import Dict, Optional, Any
import logging
import threading
from collections import deque

logger = logging.getLogger(__name__)


class ConversionMetrics:
    """
    Thread-safe conversion counters shared by the conversion core and the
    health/metrics endpoints.

    One instance is created at application startup and lives for the whole
    process. Counters only grow; there is no reset.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._by_type: Dict[str, int] = {}
        self._errors_by_code: Dict[str, int] = {}
        self._recent_errors = deque(maxlen=100)  # Store last 100 errors
        self._total_time_ms = 0
        self._started_at = time.time()
        logger.info("Conversion metrics initialized")

    def increment(
        self,
        conversion_type: str,
        success: bool,
        duration_ms: Optional[int] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> None:
        """
        Record one completed conversion attempt.

        Args:
            conversion_type: Label of the conversion (html, url, markdown, ...)
            success: Whether a PDF was produced
            duration_ms: Wall time of the attempt, if known
            error_code: Error code of the failure, if any
            error_message: Error message of the failure, if any
        """
        with self._lock:
            self._total += 1
            self._by_type[conversion_type] = self._by_type.get(conversion_type, 0) + 1

            if duration_ms is not None:
                self._total_time_ms += duration_ms

            if success:
                self._successful += 1
                return

            self._failed += 1
            code = error_code or "unknown"
            self._errors_by_code[code] = self._errors_by_code.get(code, 0) + 1
            self._recent_errors.append({
                "timestamp": datetime.now().isoformat(),
                "conversion_type": conversion_type,
                "error_type": code,
                "message": error_message or "No error message provided",
            })

    def snapshot(self) -> Dict[str, Any]:
        """
        Get a consistent copy of the counters.

        Returns:
            Dict with total, successful, failed and by_type
        """
        with self._lock:
            return {
                "total": self._total,
                "successful": self._successful,
                "failed": self._failed,
                "by_type": dict(self._by_type),
            }

    def summary(self) -> Dict[str, Any]:
        """Snapshot plus derived figures for the health endpoint."""
        with self._lock:
            success_rate = (self._successful / self._total * 100) if self._total > 0 else 0
            avg_time_ms = (self._total_time_ms / self._total) if self._total > 0 else 0
            return {
                "total": self._total,
                "successful": self._successful,
                "failed": self._failed,
                "by_type": dict(self._by_type),
                "success_rate": round(success_rate, 2),
                "avg_time_ms": round(avg_time_ms, 1),
                "top_errors": sorted(
                    self._errors_by_code.items(),
                    key=lambda x: x[1],
                    reverse=True
                )[:5],
                "recent_errors": list(self._recent_errors)[-10:],
                "uptime_seconds": int(time.time() - self._started_at),
            }
