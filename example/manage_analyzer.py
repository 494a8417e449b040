import asyncio
import time

from content_understanding_client.errors import ResourceNotFoundError
from content_understanding_client.models import (
    ContentAnalyzer,
    ContentAnalyzerConfig,
    ContentFieldDefinition,
    FieldSchema,
)
from sample_helper import configure_logging, create_client

ANALYZER = ContentAnalyzer(
    description="Extracts the company and totals from receipts",
    base_analyzer_id="prebuilt-document",
    config=ContentAnalyzerConfig(return_details=True, enable_formula=False),
    field_schema=FieldSchema(
        name="receipt_schema",
        fields={
            "CompanyName": ContentFieldDefinition(
                type="string", method="extract", description="Name of the company"
            ),
            "Total": ContentFieldDefinition(
                type="number", method="extract", description="Total amount paid"
            ),
        },
    ),
    models={"completion": "gpt-4.1"},
    tags={"sample": "manage_analyzer"},
)


async def main():
    configure_logging()
    analyzer_id = f"sample_receipts_{int(time.time())}"

    async with create_client() as client:
        poller = await client.content_analyzers.begin_create_or_replace(
            analyzer_id, ANALYZER
        )
        created = await poller.poll_until_done()
        print(f"Created analyzer {created.analyzer_id} ({created.status.value})")

        analyzer = await client.content_analyzers.get(analyzer_id)
        print(f"  Description: {analyzer.description}")
        print(f"  Fields: {', '.join(analyzer.field_schema.fields)}")

        updated = await client.content_analyzers.update(
            analyzer_id,
            {"description": "Receipts analyzer (updated)", "tags": {"sample": None}},
        )
        print(f"Updated description: {updated.description}")

        await client.content_analyzers.delete(analyzer_id)
        print(f"Deleted analyzer {analyzer_id}")

        try:
            await client.content_analyzers.get(analyzer_id)
        except ResourceNotFoundError as e:
            print(f"Analyzer is gone: {e}")


if __name__ == "__main__":
    asyncio.run(main())
