"""Shared fixtures."""

import pytest

from blobview.config import BlobviewConfig
from blobview.host import SoupDocument
from blobview.testing import ManualClock, RecordingNavigator, make_ports


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def navigator():
    return RecordingNavigator()


@pytest.fixture
def document():
    return SoupDocument()


@pytest.fixture
def ports(clock, navigator, document):
    return make_ports(navigator=navigator, clock=clock, document=document)


@pytest.fixture
def config():
    return BlobviewConfig()
