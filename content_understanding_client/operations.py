import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import quote

from content_understanding_client.errors import error_from_response
from content_understanding_client.models import (
    AnalyzeInput,
    AnalyzeRequest,
    AnalyzeResult,
    ContentAnalyzer,
    ContentAnalyzerAnalyzeOperationStatus,
    ContentAnalyzerOperationStatus,
    ContentUnderstandingDefaults,
    CopyAuthorization,
    PollingConfig,
    PollStatus,
    ResourceLocation,
)
from content_understanding_client.paging import AsyncItemPaged
from content_understanding_client.polling import LROPoller
from content_understanding_client.routes import is_unexpected_response
from content_understanding_client.transport import RawResponse, ServiceTransport

JSON_CONTENT_TYPE = "application/json"
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def _segment(value: str) -> str:
    return quote(value, safe="")


def _analyzer_from_body(body: Any) -> ContentAnalyzer:
    return ContentAnalyzer.model_validate(body)


def _analyze_result_from_body(body: Any) -> AnalyzeResult:
    return AnalyzeResult.model_validate(body)


def _coerce_analyzer(resource: Union[ContentAnalyzer, Dict[str, Any]]) -> ContentAnalyzer:
    if isinstance(resource, ContentAnalyzer):
        return resource
    return ContentAnalyzer.model_validate(resource)


class ContentAnalyzersOperations:
    """Operations on analyzers, analyze operations and their results.

    Reached through ``ContentUnderstandingClient.content_analyzers``.
    """

    def __init__(self, transport: ServiceTransport, polling_config: PollingConfig):
        self._transport = transport
        self._polling_config = polling_config

    async def _send(self, method: str, path: str, **kwargs) -> RawResponse:
        return await self._transport.send(method, path, **kwargs)

    def _check(self, response: RawResponse) -> RawResponse:
        if is_unexpected_response(response, self._transport.service_prefix):
            raise error_from_response(response)
        return response

    def _poller(
        self,
        send_initial: Callable[[], Awaitable[RawResponse]],
        deserializer: Callable[[Any], Any],
        accepted_statuses,
        resource_location: ResourceLocation,
        polling_config: Optional[PollingConfig],
        abort: Optional[asyncio.Event],
        continuation_token: Optional[str],
        on_status_change: Optional[Callable[[PollStatus], Awaitable[Any]]],
    ) -> LROPoller:
        return LROPoller(
            self._transport,
            deserializer,
            send_initial=send_initial,
            accepted_statuses=accepted_statuses,
            resource_location=resource_location,
            config=polling_config or self._polling_config,
            abort=abort,
            continuation_token=continuation_token,
            on_status_change=on_status_change,
        )

    async def get_operation_status(
        self,
        analyzer_id: str,
        operation_id: str,
        *,
        client_request_id: Optional[str] = None,
    ) -> ContentAnalyzerOperationStatus:
        """Get the status of an analyzer creation operation."""
        response = await self._send(
            "GET",
            f"/analyzers/{_segment(analyzer_id)}/operations/{_segment(operation_id)}",
            headers={"Accept": JSON_CONTENT_TYPE},
            client_request_id=client_request_id,
        )
        self._check(response)
        return ContentAnalyzerOperationStatus.model_validate(response.json())

    async def begin_create_or_replace(
        self,
        analyzer_id: str,
        resource: Union[ContentAnalyzer, Dict[str, Any]],
        *,
        allow_replace: Optional[bool] = None,
        client_request_id: Optional[str] = None,
        polling_config: Optional[PollingConfig] = None,
        abort: Optional[asyncio.Event] = None,
        continuation_token: Optional[str] = None,
        on_status_change: Optional[Callable[[PollStatus], Awaitable[Any]]] = None,
    ) -> LROPoller[ContentAnalyzer]:
        """Create a new analyzer asynchronously."""
        body = _coerce_analyzer(resource).to_request_body()

        async def send_initial() -> RawResponse:
            return await self._send(
                "PUT",
                f"/analyzers/{_segment(analyzer_id)}",
                params={"allowReplace": allow_replace},
                headers={"Accept": JSON_CONTENT_TYPE},
                json_body=body,
                client_request_id=client_request_id,
            )

        poller = self._poller(
            send_initial,
            _analyzer_from_body,
            (200, 201, 202),
            ResourceLocation.original_uri,
            polling_config,
            abort,
            continuation_token,
            on_status_change,
        )
        return await poller.initialize()

    async def update(
        self,
        analyzer_id: str,
        resource: Union[ContentAnalyzer, Dict[str, Any]],
        *,
        client_request_id: Optional[str] = None,
    ) -> ContentAnalyzer:
        """Update analyzer properties with a JSON merge patch."""
        if isinstance(resource, ContentAnalyzer):
            body = resource.to_request_body()
        else:
            # A dict is sent as-is so explicit nulls can clear properties.
            body = resource
        response = await self._send(
            "PATCH",
            f"/analyzers/{_segment(analyzer_id)}",
            headers={"Accept": JSON_CONTENT_TYPE},
            json_body=body,
            content_type=MERGE_PATCH_CONTENT_TYPE,
            client_request_id=client_request_id,
        )
        self._check(response)
        return _analyzer_from_body(response.json())

    async def get(
        self, analyzer_id: str, *, client_request_id: Optional[str] = None
    ) -> ContentAnalyzer:
        """Get analyzer properties."""
        response = await self._send(
            "GET",
            f"/analyzers/{_segment(analyzer_id)}",
            headers={"Accept": JSON_CONTENT_TYPE},
            client_request_id=client_request_id,
        )
        self._check(response)
        return _analyzer_from_body(response.json())

    async def delete(
        self, analyzer_id: str, *, client_request_id: Optional[str] = None
    ) -> None:
        """Delete analyzer."""
        response = await self._send(
            "DELETE",
            f"/analyzers/{_segment(analyzer_id)}",
            client_request_id=client_request_id,
        )
        self._check(response)

    def list(
        self, *, client_request_id: Optional[str] = None
    ) -> AsyncItemPaged[ContentAnalyzer]:
        """List analyzers. Nothing is sent until iteration starts."""

        async def fetch_first() -> RawResponse:
            return await self._send(
                "GET",
                "/analyzers",
                headers={"Accept": JSON_CONTENT_TYPE},
                client_request_id=client_request_id,
            )

        async def fetch_next(next_link: str) -> RawResponse:
            return await self._send(
                "GET", next_link, headers={"Accept": JSON_CONTENT_TYPE}
            )

        return AsyncItemPaged(
            self._transport,
            fetch_first,
            _analyzer_from_body,
            fetch_next=fetch_next,
            item_name="value",
            next_link_name="nextLink",
            expected_statuses=(200,),
        )

    async def begin_analyze(
        self,
        analyzer_id: str,
        *,
        inputs: Optional[List[Union[AnalyzeInput, Dict[str, Any]]]] = None,
        model_deployments: Optional[Dict[str, str]] = None,
        string_encoding: Optional[str] = None,
        processing_location: Optional[str] = None,
        client_request_id: Optional[str] = None,
        polling_config: Optional[PollingConfig] = None,
        abort: Optional[asyncio.Event] = None,
        continuation_token: Optional[str] = None,
        on_status_change: Optional[Callable[[PollStatus], Awaitable[Any]]] = None,
    ) -> LROPoller[AnalyzeResult]:
        """Extract content and fields from inputs given by URL or inline data."""
        request = AnalyzeRequest(
            inputs=[AnalyzeInput.model_validate(item) for item in inputs]
            if inputs is not None
            else None,
            model_deployments=model_deployments,
        )

        async def send_initial() -> RawResponse:
            return await self._send(
                "POST",
                f"/analyzers/{_segment(analyzer_id)}:analyze",
                params={
                    "stringEncoding": string_encoding,
                    "processingLocation": processing_location,
                },
                headers={"Accept": JSON_CONTENT_TYPE},
                json_body=request.to_wire(),
                client_request_id=client_request_id,
            )

        poller = self._poller(
            send_initial,
            _analyze_result_from_body,
            (202, 200),
            ResourceLocation.operation_location,
            polling_config,
            abort,
            continuation_token,
            on_status_change,
        )
        return await poller.initialize()

    async def begin_analyze_binary(
        self,
        analyzer_id: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        string_encoding: Optional[str] = None,
        processing_location: Optional[str] = None,
        range: Optional[str] = None,
        client_request_id: Optional[str] = None,
        polling_config: Optional[PollingConfig] = None,
        abort: Optional[asyncio.Event] = None,
        continuation_token: Optional[str] = None,
        on_status_change: Optional[Callable[[PollStatus], Awaitable[Any]]] = None,
    ) -> LROPoller[AnalyzeResult]:
        """Extract content and fields from raw bytes sent as the request body."""

        async def send_initial() -> RawResponse:
            return await self._send(
                "POST",
                f"/analyzers/{_segment(analyzer_id)}:analyzeBinary",
                params={
                    "stringEncoding": string_encoding,
                    "processingLocation": processing_location,
                    "range": range,
                },
                headers={"Accept": JSON_CONTENT_TYPE},
                data=data,
                content_type=content_type,
                client_request_id=client_request_id,
            )

        poller = self._poller(
            send_initial,
            _analyze_result_from_body,
            (202, 200),
            ResourceLocation.operation_location,
            polling_config,
            abort,
            continuation_token,
            on_status_change,
        )
        return await poller.initialize()

    async def get_result(
        self, operation_id: str
    ) -> ContentAnalyzerAnalyzeOperationStatus:
        """Get the status and result of an analyze operation."""
        response = await self._send(
            "GET",
            f"/analyzerResults/{_segment(operation_id)}",
            headers={"Accept": JSON_CONTENT_TYPE},
        )
        self._check(response)
        return ContentAnalyzerAnalyzeOperationStatus.model_validate(response.json())

    async def get_result_file(self, operation_id: str, path: str) -> bytes:
        """Get a file produced by an analyze operation, e.g. ``keyframes/1000``."""
        response = await self._send(
            "GET",
            f"/analyzerResults/{_segment(operation_id)}/files/{quote(path, safe='/')}",
            headers={"Accept": "*/*"},
        )
        self._check(response)
        return response.body

    async def delete_result(self, operation_id: str) -> None:
        """Mark the result of an analyze operation for deletion."""
        response = await self._send(
            "DELETE", f"/analyzerResults/{_segment(operation_id)}"
        )
        self._check(response)

    async def begin_copy(
        self,
        analyzer_id: str,
        source_analyzer_id: str,
        *,
        source_azure_resource_id: Optional[str] = None,
        source_region: Optional[str] = None,
        allow_replace: Optional[bool] = None,
        client_request_id: Optional[str] = None,
        polling_config: Optional[PollingConfig] = None,
        abort: Optional[asyncio.Event] = None,
        continuation_token: Optional[str] = None,
        on_status_change: Optional[Callable[[PollStatus], Awaitable[Any]]] = None,
    ) -> LROPoller[ContentAnalyzer]:
        """Create a copy of the source analyzer under ``analyzer_id``."""
        body = {
            "sourceAzureResourceId": source_azure_resource_id,
            "sourceRegion": source_region,
            "sourceAnalyzerId": source_analyzer_id,
        }

        async def send_initial() -> RawResponse:
            return await self._send(
                "POST",
                f"/analyzers/{_segment(analyzer_id)}:copy",
                params={"allowReplace": allow_replace},
                headers={"Accept": JSON_CONTENT_TYPE},
                json_body={key: value for key, value in body.items() if value is not None},
                client_request_id=client_request_id,
            )

        poller = self._poller(
            send_initial,
            _analyzer_from_body,
            (202, 200),
            ResourceLocation.operation_location,
            polling_config,
            abort,
            continuation_token,
            on_status_change,
        )
        return await poller.initialize()

    async def grant_copy_authorization(
        self,
        analyzer_id: str,
        target_azure_resource_id: str,
        *,
        target_region: Optional[str] = None,
        client_request_id: Optional[str] = None,
    ) -> CopyAuthorization:
        """Get authorization for copying this analyzer to another resource."""
        body = {"targetAzureResourceId": target_azure_resource_id}
        if target_region is not None:
            body["targetRegion"] = target_region
        response = await self._send(
            "POST",
            f"/analyzers/{_segment(analyzer_id)}:grantCopyAuthorization",
            headers={"Accept": JSON_CONTENT_TYPE},
            json_body=body,
            client_request_id=client_request_id,
        )
        self._check(response)
        return CopyAuthorization.model_validate(response.json())

    async def get_defaults(self) -> ContentUnderstandingDefaults:
        """Return default settings for this Content Understanding resource."""
        response = await self._send(
            "GET", "/defaults", headers={"Accept": JSON_CONTENT_TYPE}
        )
        self._check(response)
        return ContentUnderstandingDefaults.model_validate(response.json())

    async def update_defaults(
        self, model_deployments: Optional[Dict[str, Optional[str]]] = None
    ) -> ContentUnderstandingDefaults:
        """Merge-patch the model deployment defaults; a None value removes a key."""
        response = await self._send(
            "PATCH",
            "/defaults",
            headers={"Accept": JSON_CONTENT_TYPE},
            json_body={"modelDeployments": model_deployments or {}},
            content_type=MERGE_PATCH_CONTENT_TYPE,
        )
        self._check(response)
        return ContentUnderstandingDefaults.model_validate(response.json())
