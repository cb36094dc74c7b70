"""
Health and metrics endpoints.

These paths are exempt from API-key auth and rate limiting.
"""

import logging
import time
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from pdf_forge.core.config import VERSION

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


def check_system_resources() -> Dict[str, Any]:
    """Memory, disk and CPU usage of the host."""
    try:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage("/")
        return {
            "memory_percent": memory.percent,
            "disk_percent": disk.percent,
            "cpu_percent": psutil.cpu_percent(interval=None),
        }
    except Exception as e:
        logger.error(f"Error checking system resources: {str(e)}")
        return {"error": str(e)}


def _health(request: Request) -> Dict[str, Any]:
    state = request.app.state
    core_status = state.core.status()
    return {
        "status": "healthy" if state.engine.is_running else "degraded",
        "version": VERSION,
        "uptime": int(time.time() - state.started_at),
        "workers": core_status["workers"],
        "engine": core_status["engine"],
        "conversions": state.metrics.summary(),
        "resources": check_system_resources(),
    }


@router.get("/health")
async def health(request: Request):
    return _health(request)


@router.get("/healthz")
async def healthz(request: Request):
    return _health(request)


def render_prometheus(snapshot: Dict[str, Any], workers: Dict[str, int]) -> str:
    """Prometheus text exposition of the conversion counters."""
    lines = [
        "# HELP pdf_forge_conversions_total Total number of conversions",
        "# TYPE pdf_forge_conversions_total counter",
        f"pdf_forge_conversions_total {snapshot['total']}",
        "# HELP pdf_forge_conversions_successful Successful conversions",
        "# TYPE pdf_forge_conversions_successful counter",
        f"pdf_forge_conversions_successful {snapshot['successful']}",
        "# HELP pdf_forge_conversions_failed Failed conversions",
        "# TYPE pdf_forge_conversions_failed counter",
        f"pdf_forge_conversions_failed {snapshot['failed']}",
        "# HELP pdf_forge_workers_available Free rendering slots",
        "# TYPE pdf_forge_workers_available gauge",
        f"pdf_forge_workers_available {workers['available']}",
        "# HELP pdf_forge_workers_in_use Rendering slots in use",
        "# TYPE pdf_forge_workers_in_use gauge",
        f"pdf_forge_workers_in_use {workers['in_use']}",
    ]
    for conversion_type, count in sorted(snapshot["by_type"].items()):
        lines.append(f"pdf_forge_conversions_by_type_{conversion_type} {count}")
    return "\n".join(lines) + "\n"


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(request: Request):
    state = request.app.state
    return PlainTextResponse(
        render_prometheus(state.metrics.snapshot(), state.gate.status()),
        media_type="text/plain; version=0.0.4",
    )
