"""
PDF manipulation operations over raw bytes.

Page-level operations (split, extract, rotate, remove, reorder, info) use
PyPDF2. Compression and rasterisation shell out to Ghostscript and
pdftoppm through a ToolRunner.
"""

import asyncio
import glob
import logging
import os
import tempfile
from typing import List, Optional, Tuple

from PyPDF2 import PdfWriter

from pdf_forge.models.schemas import PDFInfo
from pdf_forge.services.pdf_processor import COMPRESSION_LEVELS, read_pdf, write_pdf
from pdf_forge.services.tools import ToolRunner
from pdf_forge.utils.error_handler import InvalidRequestError, ProcessingError

logger = logging.getLogger(__name__)

SPLIT_TYPES = ("all", "range", "every_n")
IMAGE_FORMATS = ("jpeg", "png")


def _page_number(token: str, page_count: int) -> int:
    token = token.strip().lower()
    if token in ("z", "end"):
        return page_count
    try:
        number = int(token)
    except ValueError:
        raise InvalidRequestError(f"Invalid page number: {token!r}", error_code="invalid_page_range")
    if number < 1 or number > page_count:
        raise InvalidRequestError(
            f"Page {number} out of range (document has {page_count} pages)",
            error_code="invalid_page_range"
        )
    return number


def parse_page_ranges(ranges: str, page_count: int) -> List[List[int]]:
    """
    Parse ``1-3,5,7-z`` into groups of 1-based page numbers.

    Each comma-separated part becomes one group. ``z`` and ``end`` mean the
    last page; descending ranges such as ``5-3`` are kept in that order.

    Raises:
        InvalidRequestError: On malformed parts or pages outside the document
    """
    groups = []
    for part in (ranges or "").split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_token, _, end_token = part.partition("-")
            start = _page_number(start_token, page_count)
            end = _page_number(end_token, page_count)
            step = 1 if end >= start else -1
            groups.append(list(range(start, end + step, step)))
        else:
            groups.append([_page_number(part, page_count)])

    if not groups:
        raise InvalidRequestError("Pages parameter is required", error_code="invalid_page_range")
    return groups


def parse_page_list(ranges: str, page_count: int) -> List[int]:
    """Flattened ``parse_page_ranges``."""
    return [page for group in parse_page_ranges(ranges, page_count) for page in group]


def _build(reader, page_numbers: List[int]) -> bytes:
    writer = PdfWriter()
    for number in page_numbers:
        writer.add_page(reader.pages[number - 1])
    return write_pdf(writer)


def _split(pdf_bytes: bytes, split_type: str, pages: str, every_n: int) -> List[bytes]:
    reader = read_pdf(pdf_bytes)
    page_count = len(reader.pages)

    if split_type == "all":
        groups = [[number] for number in range(1, page_count + 1)]
    elif split_type == "range":
        groups = parse_page_ranges(pages, page_count)
    elif split_type == "every_n":
        n = every_n if every_n > 0 else 1
        groups = [
            list(range(start, min(start + n - 1, page_count) + 1))
            for start in range(1, page_count + 1, n)
        ]
    else:
        raise InvalidRequestError(
            f"Unknown split_type: {split_type}. Supported: {', '.join(SPLIT_TYPES)}",
            error_code="invalid_option"
        )

    return [_build(reader, group) for group in groups]


def _extract(pdf_bytes: bytes, pages: str) -> bytes:
    reader = read_pdf(pdf_bytes)
    return _build(reader, parse_page_list(pages, len(reader.pages)))


def normalize_rotation(rotation: int) -> int:
    rotation = rotation % 360
    return rotation if rotation in (90, 180, 270) else 90


def _rotate(pdf_bytes: bytes, rotation: int, pages: str) -> bytes:
    reader = read_pdf(pdf_bytes)
    targets = set(parse_page_list(pages or "1-z", len(reader.pages)))

    writer = PdfWriter()
    for number, page in enumerate(reader.pages, start=1):
        if number in targets:
            page.rotate(rotation)
        writer.add_page(page)
    return write_pdf(writer)


def _remove(pdf_bytes: bytes, pages: str) -> bytes:
    reader = read_pdf(pdf_bytes)
    page_count = len(reader.pages)
    removed = set(parse_page_list(pages, page_count))
    keep = [number for number in range(1, page_count + 1) if number not in removed]
    if not keep:
        raise InvalidRequestError("Cannot remove all pages", error_code="invalid_page_range")
    return _build(reader, keep)


def _reorder(pdf_bytes: bytes, new_order: List[int]) -> bytes:
    reader = read_pdf(pdf_bytes)
    page_count = len(reader.pages)
    if not new_order:
        raise InvalidRequestError("new_order parameter is required for reorder", error_code="invalid_option")
    for number in new_order:
        if number < 1 or number > page_count:
            raise InvalidRequestError(
                f"Page {number} out of range (document has {page_count} pages)",
                error_code="invalid_page_range"
            )
    return _build(reader, list(new_order))


def _pdf_version(pdf_bytes: bytes) -> Optional[str]:
    header = pdf_bytes.lstrip()[:16]
    if not header.startswith(b"%PDF-"):
        return None
    version = header[5:].split(b"\n")[0].split(b"\r")[0].strip()
    return version.decode("ascii", errors="ignore") or None


def _info(pdf_bytes: bytes) -> PDFInfo:
    reader = read_pdf(pdf_bytes, allow_encrypted=True)
    info = PDFInfo(
        file_size=len(pdf_bytes),
        pdf_version=_pdf_version(pdf_bytes),
        encrypted=reader.is_encrypted,
    )
    if reader.is_encrypted:
        # Page tree and metadata are unreadable without the password
        return info

    info.page_count = len(reader.pages)
    if reader.pages:
        box = reader.pages[0].mediabox
        info.page_size = f"{float(box.width):g} x {float(box.height):g} pts"

    metadata = reader.metadata
    if metadata:
        for key, field in (
            ("/Title", "title"),
            ("/Author", "author"),
            ("/Subject", "subject"),
            ("/Keywords", "keywords"),
            ("/Creator", "creator"),
            ("/Producer", "producer"),
        ):
            value = metadata.get(key)
            if value:
                setattr(info, field, str(value))
    return info


class PDFManipulator:
    """Manipulation operations exposed by the /manipulate endpoint."""

    def __init__(self, runner: Optional[ToolRunner] = None):
        self.runner = runner or ToolRunner()

    async def split(self, pdf_bytes: bytes, split_type: str = "all", pages: str = "", every_n: int = 1) -> List[bytes]:
        parts = await asyncio.to_thread(_split, pdf_bytes, split_type or "all", pages, every_n)
        logger.info(f"Split PDF into {len(parts)} parts ({split_type})")
        return parts

    async def extract_pages(self, pdf_bytes: bytes, pages: str) -> bytes:
        if not pages:
            raise InvalidRequestError("Pages parameter is required for extract", error_code="invalid_option")
        return await asyncio.to_thread(_extract, pdf_bytes, pages)

    async def rotate_pages(self, pdf_bytes: bytes, rotation: int = 90, pages: str = "1-z") -> bytes:
        return await asyncio.to_thread(_rotate, pdf_bytes, normalize_rotation(rotation), pages)

    async def remove_pages(self, pdf_bytes: bytes, pages: str) -> bytes:
        if not pages:
            raise InvalidRequestError("Pages parameter is required for remove", error_code="invalid_option")
        return await asyncio.to_thread(_remove, pdf_bytes, pages)

    async def reorder_pages(self, pdf_bytes: bytes, new_order: List[int]) -> bytes:
        return await asyncio.to_thread(_reorder, pdf_bytes, new_order)

    async def get_info(self, pdf_bytes: bytes) -> PDFInfo:
        return await asyncio.to_thread(_info, pdf_bytes)

    async def compress(self, pdf_bytes: bytes, level: str = "ebook") -> Tuple[bytes, int]:
        """
        Compress with Ghostscript.

        Returns:
            Tuple (compressed_bytes, savings_percent)
        """
        read_pdf(pdf_bytes)
        if level not in COMPRESSION_LEVELS:
            raise InvalidRequestError(
                f"Unknown compression_level: {level}. Supported: {', '.join(COMPRESSION_LEVELS)}",
                error_code="invalid_option"
            )

        with tempfile.TemporaryDirectory(prefix="pdfforge-manip-") as tmp:
            input_path = os.path.join(tmp, "compress_input.pdf")
            output_path = os.path.join(tmp, "compress_output.pdf")
            with open(input_path, "wb") as f:
                f.write(pdf_bytes)

            await self.runner.run(
                "gs",
                "-sDEVICE=pdfwrite",
                "-dCompatibilityLevel=1.4",
                f"-dPDFSETTINGS=/{level}",
                "-dNOPAUSE",
                "-dQUIET",
                "-dBATCH",
                "-dDetectDuplicateImages=true",
                "-dCompressFonts=true",
                f"-sOutputFile={output_path}",
                input_path,
            )
            with open(output_path, "rb") as f:
                compressed = f.read()

        original_size = len(pdf_bytes)
        savings = int((original_size - len(compressed)) / original_size * 100) if original_size else 0
        logger.info(f"Compressed PDF {original_size} -> {len(compressed)} bytes ({savings}%)")
        return compressed, savings

    async def to_images(self, pdf_bytes: bytes, image_format: str = "jpeg", dpi: int = 150) -> List[bytes]:
        """Rasterise every page with pdftoppm, in page order."""
        read_pdf(pdf_bytes)
        image_format = (image_format or "jpeg").lower()
        if image_format == "jpg":
            image_format = "jpeg"
        if image_format not in IMAGE_FORMATS:
            image_format = "jpeg"
        if dpi <= 0:
            dpi = 150

        with tempfile.TemporaryDirectory(prefix="pdfforge-manip-") as tmp:
            input_path = os.path.join(tmp, "input.pdf")
            output_prefix = os.path.join(tmp, "page")
            with open(input_path, "wb") as f:
                f.write(pdf_bytes)

            await self.runner.run("pdftoppm", "-r", str(dpi), f"-{image_format}", input_path, output_prefix)

            # pdftoppm zero-pads page numbers to a common width, so name order is page order
            matches = sorted(glob.glob(output_prefix + "-*"))
            if not matches:
                raise ProcessingError("pdftoppm produced no images")
            images = []
            for path in matches:
                with open(path, "rb") as f:
                    images.append(f.read())

        logger.info(f"Converted PDF to {len(images)} {image_format} images at {dpi} DPI")
        return images
