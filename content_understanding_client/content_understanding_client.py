import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional

import aiohttp
from loguru import logger

from content_understanding_client.config import (
    ContentUnderstandingSettings,
    build_credential,
)
from content_understanding_client.models import (
    AnalyzeResult,
    PollingConfig,
    PollStatus,
    ResourceLocation,
)
from content_understanding_client.operations import ContentAnalyzersOperations
from content_understanding_client.polling import LROPoller
from content_understanding_client.routes import is_unexpected_response
from content_understanding_client.transport import (
    DEFAULT_API_VERSION,
    RawResponse,
    ServiceTransport,
)


class ContentUnderstandingClient:
    """The Content Understanding service extracts content and fields from multimodal input.

    Use as an async context manager so the underlying aiohttp session is
    closed::

        async with ContentUnderstandingClient(endpoint, AzureKeyCredential(key)) as client:
            poller = await client.content_analyzers.begin_analyze(
                "prebuilt-documentAnalyzer", inputs=[{"url": url}]
            )
            result = await poller.poll_until_done()
    """

    def __init__(
        self,
        endpoint: str,
        credential,
        *,
        api_version: str = DEFAULT_API_VERSION,
        polling_config: Optional[PollingConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        user_agent: Optional[str] = None,
    ):
        self.transport = ServiceTransport(
            endpoint,
            credential,
            api_version=api_version,
            session=session,
            user_agent=user_agent,
        )
        self.polling_config = polling_config or PollingConfig()
        self.content_analyzers = ContentAnalyzersOperations(
            self.transport, self.polling_config
        )
        self.logger = logger
        self._owned_credential = None

    @classmethod
    def from_settings(
        cls,
        settings: ContentUnderstandingSettings,
        credential=None,
        **kwargs,
    ) -> "ContentUnderstandingClient":
        """Builds a client from settings resolved once at startup."""
        owned_credential = build_credential(settings) if credential is None else None
        client = cls(
            settings.endpoint,
            credential if credential is not None else owned_credential,
            api_version=settings.api_version,
            polling_config=kwargs.pop(
                "polling_config", PollingConfig(interval=settings.polling_interval)
            ),
            **kwargs,
        )
        client._owned_credential = owned_credential
        return client

    async def __aenter__(self) -> "ContentUnderstandingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.transport.close()
        close_credential = getattr(self._owned_credential, "close", None)
        if close_credential is not None:
            await close_credential()

    async def send_request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ) -> RawResponse:
        """Sends a request to a service-relative path and returns it unchecked.

        Pair with :meth:`is_unexpected` to branch on the status.
        """
        return await self.transport.send(
            method,
            path,
            params=params,
            headers=headers,
            json_body=json_body,
            data=data,
            content_type=content_type,
        )

    def is_unexpected(self, response: RawResponse) -> bool:
        return is_unexpected_response(response, self.transport.service_prefix)

    async def get_long_running_poller(
        self,
        initial_response: RawResponse,
        deserializer: Callable[[Any], Any] = AnalyzeResult.model_validate,
        *,
        resource_location: ResourceLocation = ResourceLocation.operation_location,
        polling_config: Optional[PollingConfig] = None,
        abort: Optional[asyncio.Event] = None,
        on_status_change: Optional[Callable[[PollStatus], Awaitable[Any]]] = None,
    ) -> LROPoller:
        """Builds a poller from an initial response obtained via :meth:`send_request`."""
        poller = LROPoller(
            self.transport,
            deserializer,
            initial_response=initial_response,
            resource_location=resource_location,
            config=polling_config or self.polling_config,
            abort=abort,
            on_status_change=on_status_change,
        )
        return await poller.initialize()
