"""
PDF post-processing: metadata, encryption, merging, compression and PDF/A.

Metadata is written with PyPDF2; the remaining operations shell out to
qpdf and Ghostscript through a ToolRunner.
"""

import asyncio
import io
import logging
import os
import tempfile
from typing import List, Optional

from PyPDF2 import PdfReader, PdfWriter

from pdf_forge.models.schemas import PDFMetadata, PDFOptions, PDFSecurity
from pdf_forge.services.tools import ToolRunner
from pdf_forge.utils.error_handler import InvalidRequestError, ProcessingError

logger = logging.getLogger(__name__)

COMPRESSION_LEVELS = ("screen", "ebook", "printer", "prepress")
DEFAULT_CREATOR = "PDF Forge"


def read_pdf(pdf_bytes: bytes, allow_encrypted: bool = False) -> PdfReader:
    """
    Parse PDF bytes with PyPDF2.

    Raises:
        InvalidRequestError: If the bytes are not a readable PDF, or are
            encrypted and allow_encrypted is False
    """
    if not pdf_bytes or not pdf_bytes.lstrip()[:5] == b"%PDF-":
        raise InvalidRequestError("Data is not a PDF document", error_code="invalid_pdf")
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
    except Exception as e:
        raise InvalidRequestError(f"Could not read PDF: {str(e)}", error_code="invalid_pdf")
    if reader.is_encrypted and not allow_encrypted:
        raise InvalidRequestError("PDF is encrypted", error_code="encrypted_pdf")
    return reader


def write_pdf(writer: PdfWriter) -> bytes:
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _set_metadata(pdf_bytes: bytes, metadata: PDFMetadata) -> bytes:
    reader = read_pdf(pdf_bytes)

    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)

    info = {}
    if reader.metadata:
        info.update({key: str(value) for key, value in reader.metadata.items()})
    fields = {
        "/Title": metadata.title,
        "/Author": metadata.author,
        "/Subject": metadata.subject,
        "/Keywords": metadata.keywords,
        "/Creator": metadata.creator or DEFAULT_CREATOR,
    }
    info.update({key: value for key, value in fields.items() if value})
    writer.add_metadata(info)
    return write_pdf(writer)


def encryption_args(security: PDFSecurity) -> List[str]:
    """qpdf ``--encrypt`` arguments for the given security settings."""
    bits = security.encryption_bits
    args = ["--encrypt", security.user_password or "", security.owner_password or "", str(bits)]
    if bits == 256:
        args.append("--print=full" if security.allow_printing else "--print=none")
        args.append("--modify=all" if security.allow_modifying else "--modify=none")
        args.append("--extract=y" if security.allow_copying else "--extract=n")
    else:
        if not security.allow_printing:
            args.append("--print=n")
        if not security.allow_modifying:
            args.append("--modify=n")
        if not security.allow_copying:
            args.append("--extract=n")
    args.append("--")
    return args


class PDFProcessor:
    """Post-processing applied to finished PDFs."""

    def __init__(self, runner: Optional[ToolRunner] = None):
        self.runner = runner or ToolRunner()

    async def set_metadata(self, pdf_bytes: bytes, metadata: Optional[PDFMetadata]) -> bytes:
        if metadata is None:
            return pdf_bytes
        logger.debug("Writing PDF metadata")
        return await asyncio.to_thread(_set_metadata, pdf_bytes, metadata)

    async def apply_security(self, pdf_bytes: bytes, security: Optional[PDFSecurity]) -> bytes:
        """Encrypt with qpdf. No-op when neither password is set."""
        if security is None or not security.enabled:
            return pdf_bytes

        with tempfile.TemporaryDirectory(prefix="pdfforge-") as tmp:
            input_path = os.path.join(tmp, "input.pdf")
            output_path = os.path.join(tmp, "output.pdf")
            with open(input_path, "wb") as f:
                f.write(pdf_bytes)

            await self.runner.run("qpdf", *encryption_args(security), input_path, output_path)
            logger.info(f"PDF encrypted with {security.encryption_bits}-bit key")
            with open(output_path, "rb") as f:
                return f.read()

    async def merge(self, pdfs: List[bytes]) -> bytes:
        """
        Concatenate PDFs in order with qpdf.

        Raises:
            InvalidRequestError: If no PDFs are given
        """
        if not pdfs:
            raise InvalidRequestError("No PDFs provided for merge")
        if len(pdfs) == 1:
            return pdfs[0]

        with tempfile.TemporaryDirectory(prefix="pdfforge-") as tmp:
            input_paths = []
            for i, pdf in enumerate(pdfs):
                path = os.path.join(tmp, f"merge_{i}.pdf")
                with open(path, "wb") as f:
                    f.write(pdf)
                input_paths.append(path)
            output_path = os.path.join(tmp, "merged.pdf")

            await self.runner.run("qpdf", "--empty", "--pages", *input_paths, "--", output_path)
            logger.info(f"Merged {len(pdfs)} PDFs")
            with open(output_path, "rb") as f:
                return f.read()

    async def compress(self, pdf_bytes: bytes, level: str = "ebook") -> bytes:
        """Re-write with Ghostscript; the original is kept unless the result is smaller."""
        if level not in COMPRESSION_LEVELS:
            level = "ebook"

        with tempfile.TemporaryDirectory(prefix="pdfforge-") as tmp:
            input_path = os.path.join(tmp, "input.pdf")
            output_path = os.path.join(tmp, "output.pdf")
            with open(input_path, "wb") as f:
                f.write(pdf_bytes)

            try:
                await self.runner.run(
                    "gs",
                    "-sDEVICE=pdfwrite",
                    "-dCompatibilityLevel=1.4",
                    f"-dPDFSETTINGS=/{level}",
                    "-dNOPAUSE",
                    "-dQUIET",
                    "-dBATCH",
                    f"-sOutputFile={output_path}",
                    input_path,
                )
                with open(output_path, "rb") as f:
                    compressed = f.read()
            except (ProcessingError, OSError) as e:
                logger.warning(f"Compression failed, keeping original: {str(e)}")
                return pdf_bytes

        if compressed and len(compressed) < len(pdf_bytes):
            return compressed
        return pdf_bytes

    async def to_pdfa(self, pdf_bytes: bytes) -> bytes:
        """Convert to PDF/A-2 for archival."""
        with tempfile.TemporaryDirectory(prefix="pdfforge-") as tmp:
            input_path = os.path.join(tmp, "input.pdf")
            output_path = os.path.join(tmp, "output.pdf")
            with open(input_path, "wb") as f:
                f.write(pdf_bytes)

            await self.runner.run(
                "gs",
                "-dPDFA=2",
                "-dBATCH",
                "-dNOPAUSE",
                "-dNOOUTERSAVE",
                "-sDEVICE=pdfwrite",
                "-sColorConversionStrategy=UseDeviceIndependentColor",
                f"-sOutputFile={output_path}",
                input_path,
            )
            with open(output_path, "rb") as f:
                return f.read()

    async def process(self, pdf_bytes: bytes, options: Optional[PDFOptions]) -> bytes:
        """
        Apply metadata, compression, PDF/A conversion and encryption, in that
        order. Encryption always comes last.

        Raises:
            InvalidRequestError: If PDF/A output is combined with encryption
        """
        if options is None:
            return pdf_bytes
        encrypted = options.security is not None and options.security.enabled
        if options.pdfa and encrypted:
            raise InvalidRequestError("PDF/A output cannot be encrypted")

        if options.metadata is not None:
            pdf_bytes = await self.set_metadata(pdf_bytes, options.metadata)
        if options.compression:
            pdf_bytes = await self.compress(pdf_bytes, options.compression)
        if options.pdfa:
            pdf_bytes = await self.to_pdfa(pdf_bytes)
        if options.security is not None:
            pdf_bytes = await self.apply_security(pdf_bytes, options.security)
        return pdf_bytes
