"""
PDF Conversion Service

Drives the shared browser engine to turn HTML, URLs, Markdown and images
into PDF bytes. Every conversion passes through the admission gate, runs in
its own browser context under a hard deadline, and is counted exactly once
in the conversion metrics whatever its outcome.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import urlparse

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pdf_forge.core.config import Settings, settings as default_settings
from pdf_forge.models.schemas import (
    ConversionType,
    Margins,
    PDFOptions,
    RenderRequest,
    clamp_scale,
    page_dimensions,
)
from pdf_forge.services.admission import AdmissionGate
from pdf_forge.services.browser_engine import BrowserEngine, EngineNotRunningError
from pdf_forge.services.content import (
    decoration_css,
    header_footer_templates,
    images_to_html,
    markdown_to_html,
    validate_html_content,
)
from pdf_forge.utils.error_handler import (
    ConversionError,
    ContentLoadError,
    EmissionError,
    InvalidRequestError,
    RenderTimeoutError,
)
from pdf_forge.utils.metrics import ConversionMetrics

logger = logging.getLogger(__name__)

# Default margin (inches) for remote pages when the client gives none
DEFAULT_URL_MARGIN = 0.4
MIN_PDF_SIZE = 8


@dataclass
class ConversionResult:
    """Outcome of one conversion, for callers that collect rather than raise."""
    conversion_type: str
    success: bool
    pdf: Optional[bytes] = None
    error: Optional[ConversionError] = None
    duration_ms: int = 0

    @property
    def size(self) -> int:
        return len(self.pdf) if self.pdf else 0


def classify_browser_error(error_str: str) -> str:
    """Map a browser error message to a short reason code."""
    if "net::ERR_" in error_str:
        return "network_error"
    if "Protocol error" in error_str or "Target closed" in error_str or "has been closed" in error_str:
        return "browser_protocol_error"
    if "Navigation failed" in error_str or "navigating" in error_str:
        return "navigation_failed"
    if "Timeout" in error_str:
        return "browser_timeout"
    return "browser_error"


def validate_pdf_output(pdf_bytes: Optional[bytes]) -> bytes:
    """
    Check that emitted bytes look like a complete PDF.

    Raises:
        EmissionError: If the output is empty or lacks a PDF header
    """
    if not pdf_bytes:
        raise EmissionError("PDF generation produced no output")
    if len(pdf_bytes) < MIN_PDF_SIZE or not pdf_bytes.startswith(b"%PDF-"):
        raise EmissionError("Generated file is not a valid PDF (missing PDF header)")
    if b"%%EOF" not in pdf_bytes[-1024:]:
        logger.warning("PDF may be incomplete - EOF marker not found in expected location")
    return pdf_bytes


class ConversionCore:
    """
    Orchestrates one conversion at a time per admission slot.

    Pipeline per request: wait for a slot, open a browser context, load the
    content, wait for readiness, apply decorations, emit the PDF, close the
    context and release the slot.
    """

    def __init__(
        self,
        engine: BrowserEngine,
        gate: AdmissionGate,
        metrics: ConversionMetrics,
        settings: Optional[Settings] = None,
    ):
        self.engine = engine
        self.gate = gate
        self.metrics = metrics
        self.settings = settings or default_settings

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def build_request(
        self,
        conversion_type: str,
        *,
        html: Optional[str] = None,
        url: Optional[str] = None,
        options: Optional[PDFOptions] = None,
        settle_seconds: Optional[float] = None,
        zero_margins: bool = False,
    ) -> RenderRequest:
        """
        Resolve client options into an immutable RenderRequest.

        Raises:
            InvalidRequestError: If neither or both content sources are given,
                or the URL is not an http(s) URL
        """
        if (html is None) == (url is None):
            raise InvalidRequestError("Exactly one of html or url must be provided")

        if url is not None:
            parsed = urlparse(url.strip())
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise InvalidRequestError(f"Invalid URL: {url!r}", error_code="invalid_url")
            url = url.strip()

        options = options or PDFOptions()
        width, height = page_dimensions(options.page_size, options.orientation, options.custom_dimensions)

        if zero_margins:
            margins = Margins()
        elif options.margins is not None:
            margins = options.margins
        elif url is not None:
            margins = Margins.uniform(DEFAULT_URL_MARGIN)
        else:
            margins = Margins()

        if settle_seconds is None:
            settle_seconds = (
                self.settings.URL_SETTLE_DELAY_SECONDS if url is not None
                else self.settings.SETTLE_DELAY_SECONDS
            )

        header_template, footer_template = header_footer_templates(options.header_footer)

        return RenderRequest(
            conversion_type=getattr(conversion_type, "value", conversion_type),
            width=width,
            height=height,
            margin_top=margins.top,
            margin_bottom=margins.bottom,
            margin_left=margins.left,
            margin_right=margins.right,
            print_background=options.print_background,
            scale=clamp_scale(options.scale),
            html=html,
            url=url,
            settle_seconds=max(0.0, settle_seconds),
            timeout_seconds=(
                self.settings.URL_TIMEOUT_SECONDS if url is not None
                else self.settings.INLINE_TIMEOUT_SECONDS
            ),
            header_template=header_template,
            footer_template=footer_template,
            extra_css=decoration_css(options.watermark, options.grayscale),
        )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    async def convert(self, request: RenderRequest, admission_timeout: Optional[float] = None) -> bytes:
        """
        Run one RenderRequest to completion.

        Args:
            request: The unit of work
            admission_timeout: Seconds to wait for a free slot; defaults to
                ADMISSION_TIMEOUT_SECONDS

        Returns:
            bytes: The PDF

        Raises:
            AdmissionTimeoutError: No slot became free in time
            ContentLoadError: Content injection or navigation failed
            EmissionError: The browser did not produce a valid PDF
            RenderTimeoutError: The pipeline deadline elapsed
        """
        start_time = time.monotonic()
        success = False
        error_code = None
        error_message = None
        wait = self.settings.ADMISSION_TIMEOUT_SECONDS if admission_timeout is None else admission_timeout

        logger.info(
            f"Conversion requested - type: {request.conversion_type}, "
            f"source: {'url' if request.is_remote else 'inline'}, "
            f"page: {request.width}x{request.height}in"
        )

        try:
            async with self.gate.slot(wait):
                logger.debug(f"Slot acquired ({self.gate.in_use}/{self.gate.max_workers} in use)")
                try:
                    pdf_bytes = await asyncio.wait_for(
                        self._run_pipeline(request),
                        timeout=request.timeout_seconds
                    )
                except asyncio.TimeoutError:
                    raise RenderTimeoutError(
                        f"Conversion timed out after {request.timeout_seconds}s",
                        details={"timeout_seconds": request.timeout_seconds}
                    )

            success = True
            return pdf_bytes

        except ConversionError as e:
            error_code = e.error_code
            error_message = e.message
            logger.error(f"Conversion failed - type: {request.conversion_type}, error: {e.error_code}: {e.message}")
            raise
        except asyncio.CancelledError:
            error_code = "cancelled"
            error_message = "Conversion cancelled by caller"
            logger.warning(f"Conversion cancelled - type: {request.conversion_type}")
            raise
        except EngineNotRunningError as e:
            error_code = "engine_unavailable"
            error_message = str(e)
            raise ConversionError(
                str(e),
                error_code="engine_unavailable",
                retry_possible=True,
                http_status=503
            )
        except Exception as e:
            error_code = "unexpected_error"
            error_message = str(e)
            logger.exception(f"Unexpected error during conversion: {str(e)}")
            raise EmissionError(f"Unexpected error in PDF generation: {str(e)}")

        finally:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            self.metrics.increment(
                request.conversion_type,
                success,
                duration_ms=duration_ms,
                error_code=error_code,
                error_message=error_message,
            )
            if success:
                logger.info(f"Conversion completed - type: {request.conversion_type}, duration: {duration_ms}ms")

    async def _run_pipeline(self, request: RenderRequest) -> bytes:
        async with self.engine.task_context() as page:
            page.set_default_timeout(request.timeout_seconds * 1000)

            # Step 1: load content
            await self._load_content(page, request)

            # Step 2: readiness
            await self._wait_until_ready(page, request)

            # Step 3: decorations and emission
            try:
                if request.extra_css:
                    await page.add_style_tag(content=request.extra_css)
                logger.debug("Generating PDF from page...")
                pdf_bytes = await page.pdf(**request.pdf_options())
            except Exception as e:
                error_str = str(e)
                logger.error(f"Browser error during PDF emission: {error_str}")
                raise EmissionError(
                    f"PDF generation failed: {error_str}",
                    details={"reason": classify_browser_error(error_str)}
                )

            return validate_pdf_output(pdf_bytes)

    async def _load_content(self, page, request: RenderRequest) -> None:
        try:
            if request.is_remote:
                logger.debug(f"Navigating to {request.url}")
                response = await page.goto(request.url, wait_until="load")
                if response is not None and response.status >= 400:
                    logger.warning(f"Remote page {request.url} answered HTTP {response.status}")
            else:
                logger.debug(f"Injecting {len(request.html)} chars of HTML")
                await page.set_content(request.html, wait_until="domcontentloaded")
            await page.wait_for_selector("body", state="attached")
        except Exception as e:
            error_str = str(e)
            reason = classify_browser_error(error_str)
            logger.error(f"Failed to load content ({reason}): {error_str}")
            if request.is_remote:
                message = f"Failed to load URL {request.url}: {error_str}"
            else:
                message = f"Failed to load content: {error_str}"
            raise ContentLoadError(message, remote=request.is_remote, details={"reason": reason})
        logger.info("Content loaded successfully")

    async def _wait_until_ready(self, page, request: RenderRequest) -> None:
        """Give scripts, fonts and images time to finish after the structural load."""
        if request.settle_seconds <= 0:
            return

        if self.settings.READINESS_MODE == "network_idle":
            try:
                await page.wait_for_load_state("networkidle", timeout=request.settle_seconds * 1000)
            except PlaywrightTimeoutError:
                logger.debug(f"Network not idle after {request.settle_seconds}s, emitting anyway")
            return

        await asyncio.sleep(request.settle_seconds)

    # ------------------------------------------------------------------
    # Content-specific entry points
    # ------------------------------------------------------------------

    async def convert_html(
        self,
        html: str,
        options: Optional[PDFOptions] = None,
        conversion_type: str = ConversionType.HTML.value,
    ) -> bytes:
        html = validate_html_content(html)
        request = self.build_request(conversion_type, html=html, options=options)
        return await self.convert(request)

    async def convert_url(self, url: str, options: Optional[PDFOptions] = None) -> bytes:
        if not url or not url.strip():
            raise InvalidRequestError("URL is required", error_code="empty_content")
        request = self.build_request(ConversionType.URL.value, url=url, options=options)
        return await self.convert(request)

    async def convert_markdown(self, markdown_text: str, options: Optional[PDFOptions] = None) -> bytes:
        html = markdown_to_html(markdown_text)
        request = self.build_request(ConversionType.MARKDOWN.value, html=html, options=options)
        return await self.convert(request)

    async def convert_images(
        self,
        images: Sequence[str],
        options: Optional[PDFOptions] = None,
        conversion_type: str = ConversionType.IMAGES.value,
    ) -> bytes:
        html = images_to_html(images)
        options = (options or PDFOptions()).model_copy(update={"print_background": True})
        request = self.build_request(
            conversion_type,
            html=html,
            options=options,
            settle_seconds=self.settings.IMAGE_SETTLE_DELAY_SECONDS,
            zero_margins=True,
        )
        return await self.convert(request)

    async def convert_image(self, image: str, options: Optional[PDFOptions] = None) -> bytes:
        return await self.convert_images([image], options, conversion_type=ConversionType.IMAGE.value)

    def record_merge(self, success: bool, duration_ms: int, error: Optional[ConversionError] = None) -> None:
        """Count a merge, which runs without a browser context."""
        self.metrics.increment(
            ConversionType.MERGE.value,
            success,
            duration_ms=duration_ms,
            error_code=error.error_code if error else None,
            error_message=error.message if error else None,
        )

    def status(self) -> dict:
        return {
            "workers": self.gate.status(),
            "engine": {
                "state": self.engine.state,
                "active_sessions": self.engine.active_sessions,
                "max_sessions": self.engine.max_sessions,
            },
        }
