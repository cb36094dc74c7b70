"""
Tests for the thread-safe conversion metrics and the rate limiter.
"""

import threading

import pytest

from pdf_forge.utils.metrics import ConversionMetrics
from pdf_forge.utils.rate_limiter import RateLimiter


class TestConversionMetrics:

    def test_starts_empty(self):
        snapshot = ConversionMetrics().snapshot()
        assert snapshot == {"total": 0, "successful": 0, "failed": 0, "by_type": {}}

    def test_counts_by_outcome_and_type(self):
        metrics = ConversionMetrics()
        metrics.increment("html", True, duration_ms=100)
        metrics.increment("url", False, duration_ms=50, error_code="render_timeout", error_message="slow")
        metrics.increment("html", True)

        snapshot = metrics.snapshot()
        assert snapshot["total"] == 3
        assert snapshot["successful"] == 2
        assert snapshot["failed"] == 1
        assert snapshot["by_type"] == {"html": 2, "url": 1}

    def test_summary_reports_errors(self):
        metrics = ConversionMetrics()
        metrics.increment("html", True, duration_ms=30)
        metrics.increment("html", False, duration_ms=10, error_code="render_timeout", error_message="slow")

        summary = metrics.summary()
        assert summary["success_rate"] == 50.0
        assert summary["avg_time_ms"] == 20.0
        assert summary["top_errors"] == [("render_timeout", 1)]
        assert summary["recent_errors"][0]["message"] == "slow"

    def test_snapshot_is_a_copy(self):
        metrics = ConversionMetrics()
        metrics.increment("html", True)
        snapshot = metrics.snapshot()
        snapshot["by_type"]["html"] = 99
        assert metrics.snapshot()["by_type"]["html"] == 1

    def test_concurrent_increments_are_not_lost(self):
        metrics = ConversionMetrics()

        def worker(success):
            for _ in range(500):
                metrics.increment("html" if success else "url", success)

        threads = [threading.Thread(target=worker, args=(i % 2 == 0,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        snapshot = metrics.snapshot()
        assert snapshot["total"] == 4000
        assert snapshot["successful"] == 2000
        assert snapshot["failed"] == 2000
        assert snapshot["total"] == snapshot["successful"] + snapshot["failed"]
        assert sum(snapshot["by_type"].values()) == snapshot["total"]


class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_disabled_when_limit_is_zero(self):
        limiter = RateLimiter(0)
        assert limiter.enabled is False
        allowed, _ = await limiter.check("client")
        assert allowed is True

    @pytest.mark.asyncio
    async def test_blocks_after_limit(self):
        limiter = RateLimiter(2, period=60)
        assert (await limiter.check("a"))[0] is True
        assert (await limiter.check("a"))[0] is True
        assert (await limiter.check("a"))[0] is False
        # Other clients have their own window
        assert (await limiter.check("b"))[0] is True
