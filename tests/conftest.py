"""
Pytest fixtures for the filter and matcher tests.
"""

import httpx
import pytest

from tests.helpers import ImageHost, InMemoryStore


@pytest.fixture
def image_host():
    return ImageHost()


@pytest.fixture
def http_client(image_host):
    client = httpx.Client(transport=httpx.MockTransport(image_host.handler))
    yield client
    client.close()


@pytest.fixture
def store():
    return InMemoryStore()
