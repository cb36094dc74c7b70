"""
Error handling utilities for conversion operations.

This module provides the typed failures raised by the conversion pipeline
and its collaborators, and the standardized error response returned to
HTTP clients and webhook receivers.
"""

import logging
from typing import Dict, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """Base exception for conversion-related errors with retry information."""

    def __init__(
        self,
        message: str,
        error_code: str = "conversion_error",
        retry_possible: bool = False,
        http_status: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.retry_possible = retry_possible
        self.http_status = http_status
        self.details = details or {}
        self.timestamp = datetime.now().isoformat()


class AdmissionTimeoutError(ConversionError):
    """No rendering slot became free before the admission deadline."""

    def __init__(self, message: str = "Service busy: no rendering worker available", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="admission_timeout",
            retry_possible=True,
            http_status=503,
            details=details
        )


class ContentLoadError(ConversionError):
    """
    Navigation or content injection failed.

    Inline content failures are attributed to the client (400), remote URL
    failures to the upstream site (502).
    """

    def __init__(self, message: str, remote: bool = False, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="content_load_failed",
            retry_possible=False,
            http_status=502 if remote else 400,
            details=details
        )
        self.remote = remote


class EmissionError(ConversionError):
    """The browser failed to produce PDF bytes after a successful load."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="pdf_emission_failed",
            retry_possible=False,
            http_status=500,
            details=details
        )


class RenderTimeoutError(ConversionError):
    """The per-request deadline elapsed while rendering."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="render_timeout",
            retry_possible=False,
            http_status=504,
            details=details
        )


class InvalidRequestError(ConversionError):
    """The request payload could not be turned into a conversion."""

    def __init__(self, message: str, error_code: str = "invalid_request", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            retry_possible=False,
            http_status=400,
            details=details
        )


class TemplateRenderError(ConversionError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="template_render_failed",
            retry_possible=False,
            http_status=400,
            details=details
        )


class ProcessingError(ConversionError):
    """Post-processing or manipulation of an existing PDF failed."""

    def __init__(self, message: str, error_code: str = "pdf_processing_failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            retry_possible=False,
            http_status=500,
            details=details
        )


class ToolNotAvailableError(ProcessingError):
    def __init__(self, tool: str):
        super().__init__(
            f"External tool '{tool}' is not installed",
            error_code="tool_not_available",
            details={"tool": tool}
        )
        self.http_status = 503


class StorageError(ConversionError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="storage_error",
            retry_possible=True,
            http_status=502,
            details=details
        )


class WebhookDeliveryError(ConversionError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="webhook_delivery_failed",
            retry_possible=True,
            http_status=502,
            details=details
        )


def create_error_response(
    error: Exception,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create a standardized error response.

    Args:
        error: The exception that occurred
        request_id: Optional request ID for tracking

    Returns:
        Dict containing the standardized error response
    """
    error_response = {
        "error": "internal_server_error",
        "message": "An internal server error occurred",
        "details": None,
        "retry_possible": False,
        "timestamp": datetime.now().isoformat()
    }

    if request_id:
        error_response["request_id"] = request_id

    if isinstance(error, ConversionError):
        error_response.update({
            "error": error.error_code,
            "message": error.message,
            "retry_possible": error.retry_possible,
            "details": error.details or None
        })

    return error_response


def http_status_for(error: Exception) -> int:
    """HTTP status code a failure maps to."""
    if isinstance(error, ConversionError):
        return error.http_status
    return 500
