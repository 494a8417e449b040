import asyncio

from content_understanding_client.models import DocumentContent
from sample_helper import configure_logging, create_client, save_json_to_file

DOCUMENT_URL = (
    "https://github.com/Azure-Samples/azure-ai-content-understanding-python"
    "/raw/refs/heads/main/data/invoice.pdf"
)


async def status_changed(snapshot):
    print(f"  Status changed to: {snapshot.status.value} ({snapshot.elapsed_time:.1f}s)")


def print_analysis_result(result):
    if not result.contents:
        print("(No content returned from analysis)")
        return

    content = result.contents[0]
    print(content.markdown or "(No markdown content available)")

    if isinstance(content, DocumentContent):
        print(f"  Document type: {content.mime_type or '(unknown)'}")
        print(f"  Pages: {content.start_page_number} - {content.end_page_number}")
        for page in content.pages or []:
            print(f"  Page {page.page_number}: {page.width} x {page.height} {content.unit}")
        for i, table in enumerate(content.tables or [], start=1):
            print(f"  Table {i}: {table.row_count} rows x {table.column_count} columns")
    else:
        print("  Not a document; page and table information is not available")


async def main():
    configure_logging()
    async with create_client() as client:
        print(f"Analyzing {DOCUMENT_URL}")
        poller = await client.content_analyzers.begin_analyze(
            "prebuilt-documentAnalyzer",
            inputs=[{"url": DOCUMENT_URL}],
            on_status_change=status_changed,
        )
        try:
            result = await poller.poll_until_done()
        except Exception as e:
            print(f"Error occurred: {e}")
            raise

        print_analysis_result(result)
        save_json_to_file(result, filename_prefix="analyze_url")


if __name__ == "__main__":
    asyncio.run(main())
