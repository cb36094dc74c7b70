"""
Tests for the conversion core: admission bound, deadlines, metrics
accounting, page geometry and decorations, driven by a fake browser engine.
"""

import asyncio

import pytest

from pdf_forge.core.config import Settings
from pdf_forge.models.schemas import HeaderFooter, Margins, PDFOptions, Watermark
from pdf_forge.services.admission import AdmissionGate
from pdf_forge.services.converter import (
    ConversionCore,
    classify_browser_error,
    validate_pdf_output,
)
from pdf_forge.utils.error_handler import (
    AdmissionTimeoutError,
    ContentLoadError,
    EmissionError,
    InvalidRequestError,
    RenderTimeoutError,
)
from pdf_forge.utils.metrics import ConversionMetrics

from fakes import FAKE_PDF, FakeEngine


def _core(engine, settings, metrics=None):
    return ConversionCore(engine, AdmissionGate(settings.MAX_WORKERS), metrics or ConversionMetrics(), settings)


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_simple_html_produces_pdf(self, core, engine):
        pdf = await core.convert_html("<h1>Test</h1>")

        assert pdf.startswith(b"%PDF-")
        assert len(pdf) > 0
        assert engine.pages[0].content == "<h1>Test</h1>"
        assert engine.closed_contexts == 1
        assert core.gate.in_use == 0

    @pytest.mark.asyncio
    async def test_url_is_navigated(self, core, engine):
        await core.convert_url("https://example.com/page")
        assert engine.pages[0].url == "https://example.com/page"

    @pytest.mark.asyncio
    async def test_markdown_is_rendered_to_html(self, core, engine):
        await core.convert_markdown("# Title\n\nSome *text*")
        assert "<h1>Title</h1>" in engine.pages[0].content

    @pytest.mark.asyncio
    async def test_images_use_zero_margins_and_backgrounds(self, core, engine):
        options = PDFOptions(margins=Margins.uniform(1.0), print_background=False)
        await core.convert_images(["iVBORw0KGgo=", "/9j/4AAQ"], options)

        kwargs = engine.pages[0].pdf_kwargs
        assert kwargs["margin"]["top"] == "0.0in"
        assert kwargs["print_background"] is True
        assert "data:image/png;base64,iVBORw0KGgo=" in engine.pages[0].content
        assert "data:image/jpeg;base64,/9j/4AAQ" in engine.pages[0].content


class TestAdmissionBound:

    @pytest.mark.asyncio
    async def test_concurrent_contexts_never_exceed_workers(self, settings):
        engine = FakeEngine(render_delay=0.02)
        core = _core(engine, settings)

        results = await asyncio.gather(*(core.convert_html(f"<p>{i}</p>") for i in range(8)))

        assert len(results) == 8
        assert engine.max_open_contexts <= settings.MAX_WORKERS
        assert engine.open_contexts == 0
        assert core.gate.in_use == 0

    @pytest.mark.asyncio
    async def test_admission_timeout_is_counted(self, core, metrics):
        for _ in range(core.gate.max_workers):
            await core.gate.acquire()

        request = core.build_request("html", html="<p>x</p>")
        with pytest.raises(AdmissionTimeoutError):
            await core.convert(request, admission_timeout=0.05)

        snapshot = metrics.snapshot()
        assert snapshot["failed"] == 1
        assert metrics.summary()["top_errors"][0][0] == "admission_timeout"


class TestDeadlines:

    @pytest.mark.asyncio
    async def test_timeout_closes_context_and_frees_slot(self, settings):
        settings = settings.model_copy(update={"INLINE_TIMEOUT_SECONDS": 0.05})
        engine = FakeEngine(render_delay=1.0)
        metrics = ConversionMetrics()
        core = _core(engine, settings, metrics)

        with pytest.raises(RenderTimeoutError) as exc_info:
            await core.convert_html("<p>slow</p>")

        assert exc_info.value.http_status == 504
        assert engine.open_contexts == 0
        assert engine.closed_contexts == 1
        assert core.gate.in_use == 0
        assert metrics.snapshot()["failed"] == 1

    @pytest.mark.asyncio
    async def test_stalled_load_does_not_hold_up_queued_request(self, settings):
        settings = settings.model_copy(update={"MAX_WORKERS": 1, "INLINE_TIMEOUT_SECONDS": 0.2})
        engine = FakeEngine()
        engine.load_delay = 10.0
        core = _core(engine, settings)
        loop = asyncio.get_running_loop()
        started = loop.time()

        stalled = asyncio.create_task(core.convert_html("<p>never ready</p>"))
        await asyncio.sleep(0.02)
        # only the first page stalls; the queued one loads at once
        engine.load_delay = 0.0
        queued = asyncio.create_task(core.convert_html("<p>queued</p>"))

        with pytest.raises(RenderTimeoutError):
            await stalled
        stalled_at = loop.time() - started
        pdf = await queued
        queued_at = loop.time() - started

        assert pdf == FAKE_PDF
        assert 0.15 <= stalled_at < 1.0
        assert queued_at - stalled_at < 0.5
        assert engine.max_open_contexts == 1
        assert core.gate.in_use == 0

    @pytest.mark.asyncio
    async def test_cancellation_releases_everything(self, settings):
        engine = FakeEngine(render_delay=1.0)
        metrics = ConversionMetrics()
        core = _core(engine, settings, metrics)

        task = asyncio.create_task(core.convert_html("<p>x</p>"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert engine.open_contexts == 0
        assert core.gate.in_use == 0
        assert metrics.snapshot() == {"total": 1, "successful": 0, "failed": 1, "by_type": {"html": 1}}


class TestMetricsAccounting:

    @pytest.mark.asyncio
    async def test_successes_and_failures_counted_once(self, core, engine, metrics):
        for i in range(7):
            await core.convert_html(f"<p>{i}</p>")

        engine.emit_error = RuntimeError("Target closed")
        for i in range(3):
            with pytest.raises(EmissionError):
                await core.convert_html(f"<p>{i}</p>")

        snapshot = metrics.snapshot()
        assert snapshot["total"] == 10
        assert snapshot["successful"] == 7
        assert snapshot["failed"] == 3
        assert snapshot["by_type"] == {"html": 10}

    @pytest.mark.asyncio
    async def test_validation_errors_are_not_counted(self, core, metrics):
        with pytest.raises(InvalidRequestError):
            await core.convert_html("   ")
        assert metrics.snapshot()["total"] == 0


class TestFailures:

    @pytest.mark.asyncio
    async def test_inline_load_failure_is_client_error(self, core, engine):
        engine.load_error = RuntimeError("Protocol error: page crashed")
        with pytest.raises(ContentLoadError) as exc_info:
            await core.convert_html("<p>x</p>")
        assert exc_info.value.http_status == 400
        assert exc_info.value.details["reason"] == "browser_protocol_error"

    @pytest.mark.asyncio
    async def test_remote_load_failure_is_upstream_error(self, core, engine):
        engine.load_error = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        with pytest.raises(ContentLoadError) as exc_info:
            await core.convert_url("https://nowhere.invalid")
        assert exc_info.value.http_status == 502
        assert exc_info.value.details["reason"] == "network_error"

    @pytest.mark.asyncio
    async def test_invalid_output_is_emission_error(self, core, engine):
        engine.pdf_bytes = b"<html>not a pdf</html>"
        with pytest.raises(EmissionError):
            await core.convert_html("<p>x</p>")

    @pytest.mark.asyncio
    async def test_non_http_url_rejected(self, core):
        with pytest.raises(InvalidRequestError) as exc_info:
            await core.convert_url("file:///etc/passwd")
        assert exc_info.value.error_code == "invalid_url"

    def test_build_request_requires_one_source(self, core):
        with pytest.raises(InvalidRequestError):
            core.build_request("html")
        with pytest.raises(InvalidRequestError):
            core.build_request("html", html="<p/>", url="https://example.com")

    def test_classify_browser_error(self):
        assert classify_browser_error("net::ERR_CONNECTION_REFUSED") == "network_error"
        assert classify_browser_error("Timeout 30000ms exceeded") == "browser_timeout"
        assert classify_browser_error("something odd") == "browser_error"

    def test_validate_pdf_output(self):
        assert validate_pdf_output(FAKE_PDF) == FAKE_PDF
        with pytest.raises(EmissionError):
            validate_pdf_output(b"")
        with pytest.raises(EmissionError):
            validate_pdf_output(b"garbage data here")


class TestGeometry:

    @pytest.mark.asyncio
    async def test_letter_landscape(self, core, engine):
        await core.convert_html("<p>x</p>", PDFOptions(page_size="Letter", orientation="landscape"))
        kwargs = engine.pages[0].pdf_kwargs
        assert kwargs["width"] == "11.0in"
        assert kwargs["height"] == "8.5in"

    @pytest.mark.asyncio
    async def test_unknown_size_falls_back_to_a4(self, core, engine):
        await core.convert_html("<p>x</p>", PDFOptions(page_size="B5"))
        kwargs = engine.pages[0].pdf_kwargs
        assert kwargs["width"] == "8.27in"
        assert kwargs["height"] == "11.69in"

    @pytest.mark.parametrize("scale, expected", [(5.0, 1.0), (0, 1.0), (float("nan"), 1.0), (0.5, 0.5), (2.0, 2.0)])
    def test_scale_clamping(self, core, scale, expected):
        request = core.build_request("html", html="<p/>", options=PDFOptions(scale=scale))
        assert request.scale == expected

    def test_default_margins(self, core):
        inline = core.build_request("html", html="<p/>")
        remote = core.build_request("url", url="https://example.com")
        assert inline.margin_top == 0.0
        assert remote.margin_top == 0.4
        assert remote.pdf_options()["margin"]["left"] == "0.4in"

    def test_timeouts_by_source(self, core, settings):
        assert core.build_request("html", html="<p/>").timeout_seconds == settings.INLINE_TIMEOUT_SECONDS
        assert core.build_request("url", url="https://example.com").timeout_seconds == settings.URL_TIMEOUT_SECONDS


class TestDecorations:

    @pytest.mark.asyncio
    async def test_watermark_and_grayscale_injected_as_css(self, core, engine):
        options = PDFOptions(watermark=Watermark(text="DRAFT"), grayscale=True)
        await core.convert_html("<p>x</p>", options)

        css = engine.pages[0].styles[0]
        assert 'content: "DRAFT"' in css
        assert "grayscale(100%)" in css

    @pytest.mark.asyncio
    async def test_header_footer_enable_chromium_templates(self, core, engine):
        options = PDFOptions(header_footer=HeaderFooter(footer_center="Page {page} of {pages}"))
        await core.convert_html("<p>x</p>", options)

        kwargs = engine.pages[0].pdf_kwargs
        assert kwargs["display_header_footer"] is True
        assert 'class="pageNumber"' in kwargs["footer_template"]
        assert 'class="totalPages"' in kwargs["footer_template"]

    @pytest.mark.asyncio
    async def test_no_decorations_by_default(self, core, engine):
        await core.convert_html("<p>x</p>")
        assert engine.pages[0].styles == []
        assert "display_header_footer" not in engine.pages[0].pdf_kwargs


class TestReadiness:

    @pytest.mark.asyncio
    async def test_settle_delay_is_applied(self, engine, settings):
        settings = settings.model_copy(update={"SETTLE_DELAY_SECONDS": 0.05})
        core = _core(engine, settings)

        loop = asyncio.get_running_loop()
        start = loop.time()
        await core.convert_html("<p>x</p>")
        assert loop.time() - start >= 0.04
