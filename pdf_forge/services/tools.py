"""
Async wrapper around the external PDF command-line tools (qpdf, gs, pdftoppm).
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from typing import Optional

from pdf_forge.utils.error_handler import ProcessingError, ToolNotAvailableError

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT = 120.0


@dataclass
class ToolResult:
    returncode: int
    stdout: bytes
    stderr: bytes


class ToolRunner:
    """
    Runs an external tool as a subprocess.

    Injected into the PDF processor and manipulator so tests can substitute
    a fake that records arguments and writes the expected output files.
    """

    def __init__(self, timeout: float = DEFAULT_TOOL_TIMEOUT):
        self.timeout = timeout

    def available(self, tool: str) -> bool:
        return shutil.which(tool) is not None

    async def run(self, tool: str, *args: str, timeout: Optional[float] = None) -> ToolResult:
        """
        Run ``tool`` with ``args`` and wait for it to finish.

        Raises:
            ToolNotAvailableError: If the tool is not on PATH
            ProcessingError: If the tool exits non-zero or runs past the timeout
        """
        if not self.available(tool):
            raise ToolNotAvailableError(tool)

        logger.debug(f"Running {tool} {' '.join(args)}")
        process = await asyncio.create_subprocess_exec(
            tool, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout or self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProcessingError(f"{tool} timed out after {timeout or self.timeout}s", error_code="tool_timeout")
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        # qpdf exits 3 for warnings while still writing output
        if process.returncode != 0 and not (tool == "qpdf" and process.returncode == 3):
            message = stderr.decode("utf-8", errors="replace").strip()
            logger.error(f"{tool} failed with exit code {process.returncode}: {message}")
            raise ProcessingError(
                f"{tool} failed: {message or f'exit code {process.returncode}'}",
                details={"tool": tool, "returncode": process.returncode}
            )

        return ToolResult(returncode=process.returncode, stdout=stdout, stderr=stderr)
