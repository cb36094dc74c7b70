"""
Extended endpoints: templates, tables, PDF manipulation, async jobs and batches.
"""

import base64
import logging

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from pdf_forge.core.middleware import get_request_id
from pdf_forge.models.schemas import (
    AsyncRequest,
    BatchRequest,
    BatchResult,
    ManipulateRequest,
    ManipulateResult,
    TableRequest,
    TemplateRequest,
)
from pdf_forge.routers.convert import pdf_response
from pdf_forge.services.content import decode_base64
from pdf_forge.utils.error_handler import ConversionError, InvalidRequestError

router = APIRouter(tags=["extended"])
logger = logging.getLogger(__name__)

OPERATIONS = ("split", "extract", "rotate", "compress", "info", "remove", "reorder", "to_images")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@router.post("/template")
async def template_to_pdf(payload: TemplateRequest, request: Request):
    pdf_bytes = await request.app.state.dispatcher.render_template(payload)
    return pdf_response(request, pdf_bytes)


@router.post("/table")
async def table_to_pdf(payload: TableRequest, request: Request):
    pdf_bytes = await request.app.state.dispatcher.render_table(payload.data, payload.options)
    return pdf_response(request, pdf_bytes)


async def _manipulate(manipulator, operation: str, pdf_bytes: bytes, options, result: ManipulateResult) -> None:
    if operation == "split":
        parts = await manipulator.split(pdf_bytes, options.split_type or "all", options.pages, options.every_n)
        result.files = [_b64(part) for part in parts]
        result.count = len(parts)
        result.message = f"Split into {len(parts)} parts"

    elif operation == "extract":
        result.pdf = _b64(await manipulator.extract_pages(pdf_bytes, options.pages))
        result.message = "Pages extracted successfully"

    elif operation == "rotate":
        rotation = options.rotation or 90
        result.pdf = _b64(await manipulator.rotate_pages(pdf_bytes, rotation, options.pages or "1-z"))
        result.message = f"Rotated {rotation} degrees"

    elif operation == "compress":
        compressed, savings = await manipulator.compress(pdf_bytes, options.compression_level or "ebook")
        result.pdf = _b64(compressed)
        result.original_size = len(pdf_bytes)
        result.compressed_size = len(compressed)
        result.savings_percent = savings
        result.message = f"Compressed by {savings}%"

    elif operation == "info":
        result.info = await manipulator.get_info(pdf_bytes)
        result.message = "PDF info retrieved"

    elif operation == "remove":
        result.pdf = _b64(await manipulator.remove_pages(pdf_bytes, options.pages))
        result.message = "Pages removed successfully"

    elif operation == "reorder":
        result.pdf = _b64(await manipulator.reorder_pages(pdf_bytes, options.new_order))
        result.message = "Pages reordered successfully"

    elif operation == "to_images":
        images = await manipulator.to_images(pdf_bytes, options.image_format or "jpeg", options.dpi or 150)
        result.files = [_b64(image) for image in images]
        result.count = len(images)
        result.message = f"Converted to {len(images)} images"


@router.post("/manipulate", response_model=ManipulateResult, response_model_exclude_none=True)
async def manipulate(payload: ManipulateRequest, request: Request):
    """
    Run one manipulation on a base64 PDF.

    Malformed requests are rejected with 400. Failures of the operation
    itself are reported in the result with ``success: false``.
    """
    operation = (payload.operation or "").strip().lower()
    if not operation:
        raise InvalidRequestError("Operation is required")
    if operation not in OPERATIONS:
        raise InvalidRequestError(f"Unknown operation: {payload.operation}", error_code="invalid_operation")

    options = payload.options
    if operation in ("extract", "remove") and not options.pages:
        raise InvalidRequestError(f"Pages parameter is required for {operation}")
    if operation == "reorder" and not options.new_order:
        raise InvalidRequestError("new_order parameter is required for reorder")

    try:
        pdf_bytes = decode_base64(payload.pdf)
    except InvalidRequestError:
        raise InvalidRequestError("Invalid Base64 PDF data", error_code="invalid_base64")

    result = ManipulateResult(operation=operation)
    try:
        await _manipulate(request.app.state.manipulator, operation, pdf_bytes, options, result)
    except ConversionError as e:
        result.success = False
        result.message = e.message

    logger.info(
        f"PDF manipulation completed - request_id: {get_request_id(request)}, "
        f"operation: {operation}, success: {result.success}"
    )
    return result


@router.post("/async", status_code=202)
async def async_convert(payload: AsyncRequest, request: Request, background_tasks: BackgroundTasks):
    if payload.webhook is None and payload.storage is None:
        raise InvalidRequestError("Either webhook or storage config is required")

    request_id = get_request_id(request)
    background_tasks.add_task(request.app.state.dispatcher.run_async_job, request_id, payload)
    return JSONResponse(
        status_code=202,
        content={
            "request_id": request_id,
            "status": "queued",
            "message": "Request accepted for processing",
        },
    )


@router.post("/batch", response_model=BatchResult, response_model_exclude_none=True)
async def batch_convert(payload: BatchRequest, request: Request):
    return await request.app.state.dispatcher.run_batch(get_request_id(request), payload)
