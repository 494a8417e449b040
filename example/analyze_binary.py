import asyncio
import mimetypes
import sys
from pathlib import Path

from sample_helper import (
    configure_logging,
    create_client,
    get_field_value,
    save_json_to_file,
)


async def main(file_path: str):
    configure_logging()
    path = Path(file_path)
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

    async with create_client() as client:
        print(f"Analyzing {path} ({content_type})")
        poller = await client.content_analyzers.begin_analyze_binary(
            "prebuilt-invoice", path.read_bytes(), content_type=content_type
        )
        print(f"  Operation ID: {poller.operation_id}")
        result = await poller.poll_until_done()

    for content in result.contents:
        print(content.markdown)
        for name in ("CustomerName", "InvoiceDate", "TotalAmount"):
            print(f"  {name}: {get_field_value(content.fields, name)}")

    save_json_to_file(result, filename_prefix="analyze_binary")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit("usage: analyze_binary.py <file>")
    asyncio.run(main(sys.argv[1]))
