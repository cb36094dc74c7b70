"""
Request dispatch shared by the HTTP routers.

Maps a client request onto the conversion core, applies post-processing,
and runs the asynchronous (webhook/storage) and batch flows.
"""

import asyncio
import base64
import logging
import time
from typing import Any, Dict, List, Optional

from pdf_forge.core.config import Settings, settings as default_settings
from pdf_forge.models.schemas import (
    AsyncRequest,
    BatchItemResult,
    BatchRequest,
    BatchResult,
    ConversionRequest,
    ConversionType,
    PDFOptions,
    TableData,
    TemplateRequest,
)
from pdf_forge.services.content import decode_base64, decode_html, extract_title, table_to_html
from pdf_forge.services.converter import ConversionCore
from pdf_forge.services.pdf_processor import PDFProcessor
from pdf_forge.services.storage import StorageService
from pdf_forge.services.template_engine import TemplateEngine
from pdf_forge.services.webhook import WebhookService, create_error_payload, create_success_payload
from pdf_forge.utils.error_handler import ConversionError, InvalidRequestError

logger = logging.getLogger(__name__)

CONVERT_TYPES = (
    ConversionType.HTML,
    ConversionType.URL,
    ConversionType.MARKDOWN,
    ConversionType.IMAGE,
    ConversionType.IMAGES,
    ConversionType.MERGE,
)


class ConversionDispatcher:
    """Entry point for every conversion the API performs."""

    def __init__(
        self,
        core: ConversionCore,
        processor: PDFProcessor,
        templates: TemplateEngine,
        webhook: WebhookService,
        storage: StorageService,
        settings: Optional[Settings] = None,
    ):
        self.core = core
        self.processor = processor
        self.templates = templates
        self.webhook = webhook
        self.storage = storage
        self.settings = settings or default_settings

    async def post_process(self, pdf_bytes: bytes, options: Optional[PDFOptions], html: Optional[str] = None) -> bytes:
        """Metadata, compression, PDF/A and encryption. The title defaults to the HTML <title> when metadata is requested."""
        if options is None or not options.needs_post_processing:
            return pdf_bytes
        if options.metadata is not None and not options.metadata.title and html:
            title = extract_title(html)
            if title:
                options = options.model_copy(
                    update={"metadata": options.metadata.model_copy(update={"title": title})}
                )
        return await self.processor.process(pdf_bytes, options)

    async def execute(self, request: ConversionRequest) -> bytes:
        """
        Convert one request of any supported type to finished PDF bytes.

        Raises:
            InvalidRequestError: For unsupported types or missing content
            ConversionError: Whatever the core or post-processing raises
        """
        conversion_type = request.type
        options = request.options
        html = None

        if conversion_type == ConversionType.HTML:
            html = decode_html(request.html, request.is_base64)
            pdf_bytes = await self.core.convert_html(html, options)
        elif conversion_type == ConversionType.URL:
            pdf_bytes = await self.core.convert_url(request.url or "", options)
        elif conversion_type == ConversionType.MARKDOWN:
            pdf_bytes = await self.core.convert_markdown(request.markdown, options)
        elif conversion_type == ConversionType.IMAGE:
            if not request.image:
                raise InvalidRequestError("Image is required", error_code="empty_content")
            pdf_bytes = await self.core.convert_image(request.image, options)
        elif conversion_type == ConversionType.IMAGES:
            images = request.images or ([request.image] if request.image else [])
            pdf_bytes = await self.core.convert_images(images, options)
        elif conversion_type == ConversionType.MERGE:
            return await self.merge(request.pdfs, options)
        else:
            raise InvalidRequestError(
                f"Invalid conversion type. Supported: {', '.join(t.value for t in CONVERT_TYPES)}",
                error_code="invalid_conversion_type"
            )

        return await self.post_process(pdf_bytes, options, html)

    async def merge(self, encoded_pdfs: List[str], options: Optional[PDFOptions] = None) -> bytes:
        """
        Merge base64 PDFs in order, then post-process the result.

        Raises:
            InvalidRequestError: If fewer than two PDFs are given or one does not decode
        """
        if len(encoded_pdfs) < 2:
            raise InvalidRequestError("At least 2 PDFs required for merge")

        start_time = time.monotonic()
        try:
            pdfs = []
            for i, encoded in enumerate(encoded_pdfs):
                try:
                    pdfs.append(decode_base64(encoded))
                except InvalidRequestError:
                    raise InvalidRequestError(f"Invalid Base64 in PDF {i + 1}", error_code="invalid_base64")
            merged = await self.processor.merge(pdfs)
        except ConversionError as e:
            self.core.record_merge(False, int((time.monotonic() - start_time) * 1000), e)
            raise

        self.core.record_merge(True, int((time.monotonic() - start_time) * 1000))
        logger.info(f"Merged {len(pdfs)} PDFs ({len(merged)} bytes)")
        return await self.post_process(merged, options)

    async def render_template(self, request: TemplateRequest) -> bytes:
        name = (request.template or "").strip().lower()
        if not name:
            raise InvalidRequestError("Template type is required", error_code="template_not_found")

        if name == "custom":
            if not request.custom_html:
                raise InvalidRequestError("Custom HTML is required for custom template", error_code="empty_content")
            html = self.templates.render_custom(request.custom_html, request.data)
        else:
            html = self.templates.render(name, request.data)

        pdf_bytes = await self.core.convert_html(html, request.options, conversion_type=ConversionType.TEMPLATE.value)
        logger.info(f"Template PDF generated - template: {name}, size: {len(pdf_bytes)}")
        return await self.post_process(pdf_bytes, request.options, html)

    async def render_table(self, data: TableData, options: Optional[PDFOptions] = None) -> bytes:
        html = table_to_html(data.headers, data.rows, data.title, data.footer)
        pdf_bytes = await self.core.convert_html(html, options, conversion_type=ConversionType.TABLE.value)
        return await self.post_process(pdf_bytes, options, html)

    # ------------------------------------------------------------------
    # Asynchronous jobs
    # ------------------------------------------------------------------

    async def run_async_job(self, request_id: str, job: AsyncRequest) -> Dict[str, Any]:
        """
        Convert, post-process, store, then notify, within ASYNC_TIMEOUT_SECONDS.

        Never raises; failures are reported to the webhook and logged.

        Returns:
            The webhook payload that was (or would have been) sent
        """
        start_time = time.monotonic()
        conversion_type = job.request.type.value
        pdf_bytes = None
        storage_result = None
        error = None

        try:
            pdf_bytes = await asyncio.wait_for(self.execute(job.request), timeout=self.settings.ASYNC_TIMEOUT_SECONDS)
            if job.storage is not None:
                storage_result = await self.storage.upload(
                    job.storage, pdf_bytes, default_filename=f"{request_id}.pdf"
                )
        except asyncio.TimeoutError:
            error = f"Async job exceeded {self.settings.ASYNC_TIMEOUT_SECONDS}s"
        except ConversionError as e:
            error = e.message
        except Exception as e:
            logger.exception(f"Async job {request_id} failed unexpectedly")
            error = str(e)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if error is None:
            include_pdf = job.webhook is not None and job.webhook.include_pdf and job.storage is None
            payload = create_success_payload(
                request_id, conversion_type, pdf_bytes, duration_ms,
                include_pdf=include_pdf, storage=storage_result,
            )
        else:
            payload = create_error_payload(request_id, conversion_type, error, duration_ms)

        if job.webhook is not None:
            try:
                await self.webhook.send(job.webhook, payload)
            except ConversionError as e:
                logger.error(f"Webhook delivery failed - request_id: {request_id}, error: {e.message}")

        logger.info(
            f"Async conversion completed - request_id: {request_id}, type: {conversion_type}, "
            f"success: {error is None}, duration: {duration_ms}ms"
        )
        return payload

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _batch_item(self, index: int, request: ConversionRequest):
        try:
            return index, await self.execute(request), None
        except ConversionError as e:
            return index, None, e.message
        except Exception as e:
            logger.exception(f"Batch item {index} failed unexpectedly")
            return index, None, str(e)

    async def run_batch(self, request_id: str, batch: BatchRequest) -> BatchResult:
        """
        Run every request concurrently through the admission gate.

        Items fail independently. With ``merge`` set, successful outputs are
        merged in request order and per-item PDFs are omitted.
        """
        if not batch.requests:
            raise InvalidRequestError("At least one request is required")

        outcomes = await asyncio.gather(
            *(self._batch_item(i, request) for i, request in enumerate(batch.requests))
        )

        result = BatchResult(request_id=request_id, total=len(batch.requests))
        successful = []
        for index, pdf_bytes, error in outcomes:
            if error is not None:
                result.failed += 1
                result.results.append(BatchItemResult(index=index, success=False, error=error))
                continue
            result.completed += 1
            successful.append(pdf_bytes)
            result.results.append(BatchItemResult(
                index=index,
                success=True,
                size=len(pdf_bytes),
                pdf=None if batch.merge else base64.b64encode(pdf_bytes).decode("ascii"),
            ))

        if batch.merge and successful:
            try:
                merged = await self.processor.merge(successful)
                result.merged_pdf = base64.b64encode(merged).decode("ascii")
            except ConversionError as e:
                logger.error(f"Batch merge failed - request_id: {request_id}, error: {e.message}")

        logger.info(
            f"Batch conversion completed - request_id: {request_id}, total: {result.total}, "
            f"completed: {result.completed}, failed: {result.failed}"
        )
        return result
