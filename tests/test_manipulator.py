"""
Tests for page-level PDF manipulation.
"""

import io

import pytest
from PyPDF2 import PdfReader, PdfWriter

from fakes import FakeToolRunner, make_pdf, page_count
from pdf_forge.services.manipulator import (
    PDFManipulator,
    normalize_rotation,
    parse_page_list,
    parse_page_ranges,
)
from pdf_forge.utils.error_handler import InvalidRequestError


def page_widths(pdf_bytes):
    return [float(page.mediabox.width) for page in PdfReader(io.BytesIO(pdf_bytes)).pages]


def numbered_pdf(pages):
    """Pages distinguishable by width: page n is 100 + n points wide."""
    writer = PdfWriter()
    for number in range(1, pages + 1):
        writer.add_blank_page(width=100 + number, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class TestPageRanges:

    def test_groups(self):
        assert parse_page_ranges("1-3,5,7-z", 8) == [[1, 2, 3], [5], [7, 8]]

    def test_end_keyword_and_spaces(self):
        assert parse_page_ranges(" 2 - end ", 4) == [[2, 3, 4]]

    def test_descending_range(self):
        assert parse_page_ranges("5-3", 5) == [[5, 4, 3]]

    def test_flattened(self):
        assert parse_page_list("1,3-4", 5) == [1, 3, 4]

    @pytest.mark.parametrize("ranges", ["0", "6", "1-9", "a", "", " , "])
    def test_invalid(self, ranges):
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_page_ranges(ranges, 5)
        assert exc_info.value.error_code == "invalid_page_range"

    @pytest.mark.parametrize("rotation,expected", [
        (90, 90), (180, 180), (270, 270), (-90, 270), (450, 90), (45, 90), (0, 90),
    ])
    def test_normalize_rotation(self, rotation, expected):
        assert normalize_rotation(rotation) == expected


class TestPDFManipulator:
    """Test cases for PDFManipulator."""

    @pytest.fixture
    def runner(self):
        return FakeToolRunner()

    @pytest.fixture
    def manipulator(self, runner):
        return PDFManipulator(runner)

    @pytest.mark.asyncio
    async def test_split_all(self, manipulator):
        parts = await manipulator.split(numbered_pdf(3))
        assert [page_widths(part) for part in parts] == [[101], [102], [103]]

    @pytest.mark.asyncio
    async def test_split_range(self, manipulator):
        parts = await manipulator.split(numbered_pdf(5), "range", pages="1-2,4-z")
        assert [page_widths(part) for part in parts] == [[101, 102], [104, 105]]

    @pytest.mark.asyncio
    async def test_split_every_n(self, manipulator):
        parts = await manipulator.split(numbered_pdf(5), "every_n", every_n=2)
        assert [page_count(part) for part in parts] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_split_unknown_type(self, manipulator):
        with pytest.raises(InvalidRequestError):
            await manipulator.split(make_pdf(2), "halves")

    @pytest.mark.asyncio
    async def test_extract(self, manipulator):
        result = await manipulator.extract_pages(numbered_pdf(5), "4,2")
        assert page_widths(result) == [104, 102]

    @pytest.mark.asyncio
    async def test_extract_requires_pages(self, manipulator):
        with pytest.raises(InvalidRequestError):
            await manipulator.extract_pages(make_pdf(2), "")

    @pytest.mark.asyncio
    async def test_rotate_selected_pages(self, manipulator):
        result = await manipulator.rotate_pages(make_pdf(3), 180, "2")
        rotations = [page.get("/Rotate", 0) for page in PdfReader(io.BytesIO(result)).pages]
        assert rotations == [0, 180, 0]

    @pytest.mark.asyncio
    async def test_rotate_defaults_to_all_pages(self, manipulator):
        result = await manipulator.rotate_pages(make_pdf(2), 90, "")
        rotations = [page.get("/Rotate", 0) for page in PdfReader(io.BytesIO(result)).pages]
        assert rotations == [90, 90]

    @pytest.mark.asyncio
    async def test_remove(self, manipulator):
        result = await manipulator.remove_pages(numbered_pdf(4), "2-3")
        assert page_widths(result) == [101, 104]

    @pytest.mark.asyncio
    async def test_cannot_remove_all_pages(self, manipulator):
        with pytest.raises(InvalidRequestError):
            await manipulator.remove_pages(make_pdf(2), "1-z")

    @pytest.mark.asyncio
    async def test_reorder(self, manipulator):
        result = await manipulator.reorder_pages(numbered_pdf(3), [3, 1, 2])
        assert page_widths(result) == [103, 101, 102]

    @pytest.mark.asyncio
    async def test_reorder_out_of_range(self, manipulator):
        with pytest.raises(InvalidRequestError):
            await manipulator.reorder_pages(make_pdf(3), [1, 4])
        with pytest.raises(InvalidRequestError):
            await manipulator.reorder_pages(make_pdf(3), [])

    @pytest.mark.asyncio
    async def test_get_info(self, manipulator):
        pdf = make_pdf(2, title="Annual Report")
        info = await manipulator.get_info(pdf)
        assert info.page_count == 2
        assert info.page_size == "612 x 792 pts"
        assert info.title == "Annual Report"
        assert info.encrypted is False
        assert info.file_size == len(pdf)
        assert info.pdf_version

    @pytest.mark.asyncio
    async def test_get_info_rejects_non_pdf(self, manipulator):
        with pytest.raises(InvalidRequestError):
            await manipulator.get_info(b"not a pdf")

    @pytest.mark.asyncio
    async def test_compress_reports_savings(self):
        pdf = make_pdf(3)
        small = pdf[: len(pdf) // 4]
        manipulator = PDFManipulator(FakeToolRunner(gs_output=small))
        compressed, savings = await manipulator.compress(pdf, "screen")
        assert compressed == small
        assert 70 <= savings <= 75

    @pytest.mark.asyncio
    async def test_compress_unknown_level(self, manipulator):
        with pytest.raises(InvalidRequestError):
            await manipulator.compress(make_pdf(1), "extreme")

    @pytest.mark.asyncio
    async def test_to_images(self, manipulator, runner):
        images = await manipulator.to_images(make_pdf(3), "png", dpi=72)
        assert images == [b"image-1", b"image-2", b"image-3"]
        tool, args = runner.calls[0]
        assert tool == "pdftoppm"
        assert args[:3] == ["-r", "72", "-png"]

    @pytest.mark.asyncio
    async def test_to_images_defaults(self, manipulator, runner):
        await manipulator.to_images(make_pdf(1), "tiff", dpi=0)
        assert runner.calls[0][1][:3] == ["-r", "150", "-jpeg"]
