from typing import AsyncGenerator, Tuple

import pytest
import pytest_asyncio
from azure.core.credentials import AzureKeyCredential
from content_understanding_client.content_understanding_client import (
    ContentUnderstandingClient,
)
from content_understanding_client.models import PollingConfig
from content_understanding_server import ContentUnderstandingServer

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server(
    unused_tcp_port_factory,
) -> AsyncGenerator[Tuple[ContentUnderstandingServer, int], None]:
    """Start and yield a fake Content Understanding service on a random port."""
    port = unused_tcp_port_factory()
    server_instance = ContentUnderstandingServer(api_key="test-key", running_polls=1)
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest.fixture
def config() -> PollingConfig:
    """Polling configuration with intervals short enough for tests."""
    return PollingConfig(interval=0.01, max_interval=0.05)


@pytest_asyncio.fixture
async def client(server, config) -> AsyncGenerator[ContentUnderstandingClient, None]:
    _, port = server
    client_instance = ContentUnderstandingClient(
        BASE_URL_TEMPLATE.format(port),
        AzureKeyCredential("test-key"),
        polling_config=config,
    )
    try:
        yield client_instance
    finally:
        await client_instance.close()
