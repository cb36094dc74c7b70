"""
Shared fixtures for the PDF Forge test suite.
"""

import pytest

from pdf_forge.core.config import Settings
from pdf_forge.services.admission import AdmissionGate
from pdf_forge.services.converter import ConversionCore
from pdf_forge.utils.metrics import ConversionMetrics

from fakes import FakeEngine, FakeToolRunner


@pytest.fixture
def settings():
    return Settings(
        MAX_WORKERS=2,
        SETTLE_DELAY_SECONDS=0,
        IMAGE_SETTLE_DELAY_SECONDS=0,
        URL_SETTLE_DELAY_SECONDS=0,
        ADMISSION_TIMEOUT_SECONDS=5,
        API_KEY="",
        RATE_LIMIT=0,
        LOG_LEVEL="WARNING",
        LOG_FILE="",
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def metrics():
    return ConversionMetrics()


@pytest.fixture
def core(engine, metrics, settings):
    return ConversionCore(engine, AdmissionGate(settings.MAX_WORKERS), metrics, settings)


@pytest.fixture
def runner():
    return FakeToolRunner()
