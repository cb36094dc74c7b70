"""
Conversion endpoints: unified /convert plus one route per content type.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import ValidationError

from pdf_forge.core.middleware import REQUEST_ID_HEADER, get_request_id
from pdf_forge.models.schemas import (
    ConversionRequest,
    ConversionType,
    HTMLRequest,
    ImageRequest,
    MarkdownRequest,
    MergeRequest,
    URLRequest,
)
from pdf_forge.services.content import decode_html
from pdf_forge.utils.error_handler import InvalidRequestError

router = APIRouter(tags=["convert"])
logger = logging.getLogger(__name__)


def pdf_response(request: Request, pdf_bytes: bytes, filename: str = "document.pdf") -> Response:
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            REQUEST_ID_HEADER: get_request_id(request),
        },
    )


@router.post("/convert")
async def convert(payload: ConversionRequest, request: Request):
    """Unified endpoint; the ``type`` field selects the conversion."""
    dispatcher = request.app.state.dispatcher
    pdf_bytes = await dispatcher.execute(payload)
    logger.info(f"Converted {payload.type.value} request ({len(pdf_bytes)} bytes)")
    return pdf_response(request, pdf_bytes)


async def _html_payload(request: Request) -> HTMLRequest:
    """JSON ``{html, is_base64, options}`` or a raw HTML body."""
    body = await request.body()
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return HTMLRequest.model_validate_json(body)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid JSON payload: {e.errors()[0].get('msg', '')}")
    try:
        return HTMLRequest(html=body.decode("utf-8"))
    except UnicodeDecodeError:
        raise InvalidRequestError("HTML body is not UTF-8 text")


async def _convert_html(request: Request) -> Response:
    payload = await _html_payload(request)
    html = decode_html(payload.html, payload.is_base64)
    dispatcher = request.app.state.dispatcher
    pdf_bytes = await dispatcher.core.convert_html(html, payload.options)
    pdf_bytes = await dispatcher.post_process(pdf_bytes, payload.options, html)
    return pdf_response(request, pdf_bytes)


@router.post("/html")
async def html_to_pdf(request: Request):
    return await _convert_html(request)


@router.post("/render")
async def render(request: Request):
    return await _convert_html(request)


@router.post("/url")
async def url_to_pdf(payload: URLRequest, request: Request):
    pdf_bytes = await request.app.state.dispatcher.execute(
        ConversionRequest(type=ConversionType.URL, url=payload.url, options=payload.options)
    )
    return pdf_response(request, pdf_bytes)


@router.post("/markdown")
async def markdown_to_pdf(payload: MarkdownRequest, request: Request):
    pdf_bytes = await request.app.state.dispatcher.execute(
        ConversionRequest(type=ConversionType.MARKDOWN, markdown=payload.markdown, options=payload.options)
    )
    return pdf_response(request, pdf_bytes)


@router.post("/image")
async def image_to_pdf(payload: ImageRequest, request: Request):
    if payload.images:
        conversion = ConversionRequest(type=ConversionType.IMAGES, images=payload.images, options=payload.options)
    else:
        conversion = ConversionRequest(type=ConversionType.IMAGE, image=payload.image, options=payload.options)
    pdf_bytes = await request.app.state.dispatcher.execute(conversion)
    return pdf_response(request, pdf_bytes)


@router.post("/images")
async def images_to_pdf(payload: ImageRequest, request: Request):
    pdf_bytes = await request.app.state.dispatcher.execute(
        ConversionRequest(
            type=ConversionType.IMAGES,
            images=payload.images,
            image=payload.image,
            options=payload.options,
        )
    )
    return pdf_response(request, pdf_bytes)


@router.post("/merge")
async def merge_pdfs(payload: MergeRequest, request: Request):
    pdf_bytes = await request.app.state.dispatcher.merge(payload.pdfs, payload.options)
    return pdf_response(request, pdf_bytes, filename="merged.pdf")
