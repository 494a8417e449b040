import asyncio

from azure.core.credentials import AzureKeyCredential

from content_understanding_client.content_understanding_client import (
    ContentUnderstandingClient,
)
from content_understanding_client.models import PollingConfig
from content_understanding_server import ContentUnderstandingServer


async def status_changed(snapshot):
    print(f"Status changed to: {snapshot.status.value}")
    print(f"Elapsed time: {snapshot.elapsed_time:.6f}s")


async def main():
    PORT = 8000
    server = ContentUnderstandingServer(api_key="local-key", running_polls=5)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    config = PollingConfig(interval=0.5, backoff_factor=2.0, max_interval=4.0)

    async with ContentUnderstandingClient(
        f"http://localhost:{PORT}", AzureKeyCredential("local-key"), polling_config=config
    ) as client:
        try:
            poller = await client.content_analyzers.begin_analyze(
                "prebuilt-documentAnalyzer",
                inputs=[{"url": "https://example.com/invoice.pdf"}],
                on_status_change=status_changed,
            )
            result = await poller.poll_until_done()
            print(f"Final status: {poller.status.status.value}")
            print(f"Markdown: {result.contents[0].markdown}")
            print(f"Total time: {poller.status.elapsed_time:.6f}s")
        except Exception as e:
            print(f"Error occurred: {e}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
