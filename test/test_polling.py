import asyncio
import json

import pytest
from azure.core.credentials import AzureKeyCredential
from content_understanding_client.content_understanding_client import (
    ContentUnderstandingClient,
)
from content_understanding_client.errors import (
    ContentUnderstandingError,
    MissingPollLocationError,
    OperationFailedError,
    PollingCanceledError,
    ResourceNotFoundError,
)
from content_understanding_client.models import (
    ContentAnalyzer,
    ContentFieldDefinition,
    DocumentContent,
    FieldSchema,
    OperationState,
    PollerState,
    PollingConfig,
    ResourceLocation,
    ResourceStatus,
)
from content_understanding_client.polling import LROPoller
from content_understanding_client.transport import RawResponse, ServiceTransport
from multidict import CIMultiDict

from conftest import BASE_URL_TEMPLATE

INVOICE_URL = "https://example.com/invoice.pdf"
ANALYZER = ContentAnalyzer(
    description="Invoice analyzer",
    base_analyzer_id="prebuilt-document",
    field_schema=FieldSchema(
        fields={
            "CustomerName": ContentFieldDefinition(type="string", method="extract"),
        }
    ),
)


@pytest.mark.asyncio
async def test_create_polls_operation_location_until_ready(server, client):
    """Test the PUT operation is polled through its Operation-Location."""
    server_instance, _ = server

    poller = await client.content_analyzers.begin_create_or_replace("foo", ANALYZER)
    assert poller.state == PollerState.polling
    assert poller.operation_id == "op1"

    analyzer = await poller.poll_until_done()

    assert analyzer.analyzer_id == "foo"
    assert analyzer.status == ResourceStatus.ready
    assert analyzer.field_schema.fields["CustomerName"].method == "extract"
    assert poller.state == PollerState.succeeded
    assert poller.poll_count == 2
    assert server_instance.count("GET", "/analyzers/foo/operations") == 2


@pytest.mark.asyncio
async def test_terminal_poller_makes_no_more_requests(server, client):
    """Test a finished poller returns the cached result without HTTP calls."""
    server_instance, _ = server
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": INVOICE_URL}]
    )
    result = await poller.poll_until_done()
    requests_before = len(server_instance.requests)
    snapshot = poller.status

    for _ in range(3):
        assert await poller.poll() is snapshot
    assert await poller.poll_until_done() is result
    assert poller.result() is result
    assert len(server_instance.requests) == requests_before


@pytest.mark.asyncio
async def test_analyze_url_returns_document_content(server, client):
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": INVOICE_URL}]
    )
    result = await poller.poll_until_done()

    content = result.contents[0]
    assert isinstance(content, DocumentContent)
    assert content.markdown == "# Invoice"
    assert content.fields["CustomerName"].value == "Contoso"
    assert poller.status.usage.document_pages == 1


@pytest.mark.asyncio
async def test_failed_operation_raises_service_error(server, client):
    server_instance, _ = server
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": "https://example.com/invalid.pdf"}]
    )

    with pytest.raises(OperationFailedError) as exc_info:
        await poller.poll_until_done()

    assert exc_info.value.code == "InvalidInput"
    assert exc_info.value.message == "bad url"
    assert exc_info.value.operation_id == poller.operation_id
    assert poller.state == PollerState.failed

    requests_before = len(server_instance.requests)
    with pytest.raises(OperationFailedError) as second:
        await poller.poll_until_done()
    assert second.value is exc_info.value
    assert len(server_instance.requests) == requests_before


@pytest.mark.asyncio
async def test_abort_before_first_poll(server, client):
    """Test an abort set right after the initial response prevents any poll."""
    server_instance, _ = server
    abort = asyncio.Event()
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": INVOICE_URL}], abort=abort
    )
    abort.set()

    with pytest.raises(PollingCanceledError):
        await poller.poll_until_done()

    assert poller.state == PollerState.canceled
    assert poller.status.status == OperationState.canceled
    assert server_instance.count("POST") == 1
    assert server_instance.count("GET", "/analyzerResults") == 0


@pytest.mark.asyncio
async def test_abort_wakes_sleeping_poller(server, client):
    """Test a deadline armed with call_later cuts a long sleep short."""
    server_instance, _ = server
    server_instance.running_polls = 5
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer",
        inputs=[{"url": INVOICE_URL}],
        polling_config=PollingConfig(interval=30.0),
    )
    loop = asyncio.get_running_loop()
    loop.call_later(0.1, poller.cancel)
    start = loop.time()

    with pytest.raises(PollingCanceledError):
        await poller.poll_until_done()

    assert loop.time() - start < 5
    assert poller.state == PollerState.canceled
    assert server_instance.count("GET", "/analyzerResults") == 1


@pytest.mark.asyncio
async def test_status_change_callback(server, client):
    server_instance, _ = server
    server_instance.running_polls = 3
    snapshots = []

    async def status_callback(snapshot):
        snapshots.append(snapshot)

    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer",
        inputs=[{"url": INVOICE_URL}],
        on_status_change=status_callback,
    )
    await poller.poll_until_done()

    assert [snapshot.status for snapshot in snapshots] == [
        OperationState.running,
        OperationState.succeeded,
    ]
    assert all(snapshot.operation_id == poller.operation_id for snapshot in snapshots)
    assert snapshots[-1].elapsed_time >= snapshots[0].elapsed_time
    assert poller.poll_count == 4


@pytest.mark.asyncio
async def test_resume_from_continuation_token(server, client):
    server_instance, _ = server
    server_instance.running_polls = 2
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": INVOICE_URL}]
    )
    first = await poller.poll()
    assert first.status == OperationState.running
    token = poller.continuation_token()

    resumed = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", continuation_token=token
    )
    result = await resumed.poll_until_done()

    assert resumed.operation_id == poller.operation_id
    assert result.contents[0].markdown == "# Invoice"
    assert server_instance.count("POST") == 1
    assert server_instance.count("GET", "/analyzerResults") == 3


@pytest.mark.asyncio
async def test_invalid_continuation_token(client):
    with pytest.raises(ValueError):
        await client.content_analyzers.begin_analyze(
            "prebuilt-documentAnalyzer", continuation_token="not-a-token"
        )


@pytest.mark.asyncio
async def test_retry_after_overrides_interval(server, client):
    server_instance, _ = server
    server_instance.retry_after = 0
    server_instance.running_polls = 2
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer",
        inputs=[{"url": INVOICE_URL}],
        polling_config=PollingConfig(interval=30.0),
    )

    result = await asyncio.wait_for(poller.poll_until_done(), timeout=5)
    assert result.contents[0].markdown == "# Invoice"


@pytest.mark.asyncio
async def test_relative_operation_location(server, client):
    server_instance, _ = server
    server_instance.relative_locations = True
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": INVOICE_URL}]
    )

    result = await poller.poll_until_done()
    assert result.contents[0].markdown == "# Invoice"


@pytest.mark.asyncio
async def test_original_uri_without_header_polls_resource(server, client):
    """Test the PUT URL is re-read until the analyzer reports ready."""
    server_instance, port = server
    server_instance.analyzers["foo"] = {
        "analyzerId": "foo",
        "status": "ready",
        "description": "Invoice analyzer",
    }
    initial = RawResponse(
        method="PUT",
        url=f"{BASE_URL_TEMPLATE.format(port)}/contentunderstanding/analyzers/foo"
        "?api-version=2025-11-01",
        status=201,
        body=json.dumps({"analyzerId": "foo", "status": "creating"}).encode(),
    )

    poller = await client.get_long_running_poller(
        initial,
        ContentAnalyzer.model_validate,
        resource_location=ResourceLocation.original_uri,
    )
    analyzer = await poller.poll_until_done()

    assert analyzer.status == ResourceStatus.ready
    assert analyzer.description == "Invoice analyzer"
    assert poller.poll_count == 1
    assert server_instance.count("GET", "/analyzers/foo") == 1


@pytest.mark.asyncio
async def test_unrecognized_status_is_an_error(server, client):
    server_instance, port = server
    server_instance.analyzers["foo"] = {"analyzerId": "foo", "status": "archived"}
    initial = RawResponse(
        method="PUT",
        url=f"{BASE_URL_TEMPLATE.format(port)}/contentunderstanding/analyzers/foo",
        status=201,
        body=json.dumps({"analyzerId": "foo", "status": "creating"}).encode(),
    )
    poller = await client.get_long_running_poller(
        initial,
        ContentAnalyzer.model_validate,
        resource_location=ResourceLocation.original_uri,
    )

    with pytest.raises(ContentUnderstandingError, match="Unrecognized"):
        await poller.poll_until_done()


@pytest.mark.asyncio
async def test_synchronous_result_needs_no_polling():
    client = ContentUnderstandingClient("http://localhost:1", AzureKeyCredential("k"))
    body = {
        "id": "op9",
        "status": "Succeeded",
        "result": {"contents": [{"kind": "document", "markdown": "# Done"}]},
    }
    initial = RawResponse(
        method="POST",
        url="http://localhost:1/contentunderstanding/analyzers/a:analyze",
        status=200,
        body=json.dumps(body).encode(),
    )

    poller = await client.get_long_running_poller(initial)

    assert poller.done()
    assert poller.operation_id == "op9"
    assert poller.poll_count == 0
    assert (await poller.poll_until_done()).contents[0].markdown == "# Done"
    await client.close()


@pytest.mark.asyncio
async def test_missing_operation_location():
    client = ContentUnderstandingClient("http://localhost:1", AzureKeyCredential("k"))
    initial = RawResponse(
        method="POST",
        url="http://localhost:1/contentunderstanding/analyzers/a:analyze",
        status=202,
        headers=CIMultiDict(),
    )

    with pytest.raises(MissingPollLocationError):
        await client.get_long_running_poller(initial)
    await client.close()


@pytest.mark.asyncio
async def test_body_field_location(server, client):
    """Test the poll URL can come from a named field of the initial body."""
    server_instance, port = server
    poller = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": INVOICE_URL}]
    )
    initial = RawResponse(
        method="POST",
        url=f"{BASE_URL_TEMPLATE.format(port)}/contentunderstanding/analyzers/a:analyze",
        status=202,
        body=json.dumps(
            {"statusUrl": f"/contentunderstanding/analyzerResults/{poller.operation_id}"}
        ).encode(),
    )

    body_poller = LROPoller(
        client.transport,
        lambda body: body,
        initial_response=initial,
        resource_location=ResourceLocation.body_field,
        location_field="statusUrl",
        config=PollingConfig(interval=0.01),
    )
    await body_poller.initialize()
    result = await body_poller.poll_until_done()

    assert result["contents"][0]["markdown"] == "# Invoice"
    assert body_poller.operation_id == poller.operation_id


def test_backoff_is_capped():
    transport = ServiceTransport("http://localhost", "key")

    async def send_initial():
        raise AssertionError("not sent")

    poller = LROPoller(
        transport,
        lambda body: body,
        send_initial=send_initial,
        config=PollingConfig(interval=1.0, backoff_factor=2.0, max_interval=3.0),
    )

    assert [poller._calculate_delay(attempt) for attempt in range(1, 5)] == [
        1.0,
        2.0,
        3.0,
        3.0,
    ]


def test_poller_requires_an_initial_request():
    transport = ServiceTransport("http://localhost", "key")
    with pytest.raises(ValueError):
        LROPoller(transport, lambda body: body)


@pytest.mark.asyncio
async def test_synchronous_failure_raises_service_error():
    client = ContentUnderstandingClient("http://localhost:1", AzureKeyCredential("k"))
    body = {"id": "op9", "status": "Failed", "error": {"code": "InvalidInput"}}
    initial = RawResponse(
        method="POST",
        url="http://localhost:1/contentunderstanding/analyzers/a:analyze",
        status=200,
        body=json.dumps(body).encode(),
    )

    poller = await client.get_long_running_poller(initial)

    assert poller.state == PollerState.failed
    assert poller.status.status == OperationState.failed
    with pytest.raises(OperationFailedError) as exc_info:
        await poller.poll_until_done()
    assert exc_info.value.code == "InvalidInput"
    await client.close()


@pytest.mark.asyncio
async def test_running_response_without_location():
    client = ContentUnderstandingClient("http://localhost:1", AzureKeyCredential("k"))
    initial = RawResponse(
        method="POST",
        url="http://localhost:1/contentunderstanding/analyzers/a:analyze",
        status=200,
        body=json.dumps({"id": "op9", "status": "Running"}).encode(),
    )

    with pytest.raises(MissingPollLocationError):
        await client.get_long_running_poller(initial)
    await client.close()


@pytest.mark.asyncio
async def test_non_json_initial_body_is_not_needed(server, client):
    """Test an Operation-Location header is enough when the body is plain text."""
    server_instance, port = server
    started = await client.content_analyzers.begin_analyze(
        "prebuilt-documentAnalyzer", inputs=[{"url": INVOICE_URL}]
    )
    initial = RawResponse(
        method="POST",
        url=f"{BASE_URL_TEMPLATE.format(port)}/contentunderstanding/analyzers/a:analyze",
        status=202,
        headers=CIMultiDict(
            {
                "Operation-Location": "/contentunderstanding/analyzerResults/"
                f"{started.operation_id}"
            }
        ),
        body=b"Accepted",
    )

    poller = await client.get_long_running_poller(initial)
    result = await poller.poll_until_done()

    assert result.contents[0].markdown == "# Invoice"


@pytest.mark.asyncio
async def test_abort_with_non_json_initial_body():
    client = ContentUnderstandingClient("http://localhost:1", AzureKeyCredential("k"))
    initial = RawResponse(
        method="POST",
        url="http://localhost:1/contentunderstanding/analyzers/a:analyze",
        status=202,
        headers=CIMultiDict(
            {"Operation-Location": "/contentunderstanding/analyzerResults/op1"}
        ),
        body=b"Accepted",
    )
    poller = await client.get_long_running_poller(initial)
    poller.cancel()

    with pytest.raises(PollingCanceledError):
        await poller.poll_until_done()
    assert poller.status.status == OperationState.canceled
    assert poller.status.raw_response == {}
    await client.close()


@pytest.mark.asyncio
async def test_failed_final_read_leaves_status_unset(server, client):
    """Test status is only recorded as succeeded once the final result is read."""
    server_instance, port = server
    server_instance.operations["op-final"] = {
        "remaining": 0,
        "result": None,
        "error": None,
        "deleted": False,
    }
    initial = RawResponse(
        method="PUT",
        url=f"{BASE_URL_TEMPLATE.format(port)}/contentunderstanding/analyzers/ghost",
        status=201,
        headers=CIMultiDict(
            {"Operation-Location": "/contentunderstanding/analyzerResults/op-final"}
        ),
        body=json.dumps({"analyzerId": "ghost", "status": "creating"}).encode(),
    )
    poller = await client.get_long_running_poller(
        initial,
        ContentAnalyzer.model_validate,
        resource_location=ResourceLocation.original_uri,
    )

    with pytest.raises(ResourceNotFoundError):
        await poller.poll_until_done()

    assert poller.state == PollerState.polling
    assert poller.status is None
    assert server_instance.count("GET", "/analyzers/ghost") == 1

    server_instance.analyzers["ghost"] = {"analyzerId": "ghost", "status": "ready"}
    analyzer = await poller.poll_until_done()
    assert analyzer.status == ResourceStatus.ready
    assert poller.status.status == OperationState.succeeded
