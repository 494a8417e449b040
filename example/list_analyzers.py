import asyncio

from sample_helper import configure_logging, create_client


async def main():
    configure_logging()
    async with create_client() as client:
        prebuilt = custom = 0
        async for analyzer in client.content_analyzers.list():
            if analyzer.analyzer_id.startswith("prebuilt-"):
                prebuilt += 1
            else:
                custom += 1
            print(f"  {analyzer.analyzer_id}: {analyzer.description or '(no description)'}")

    print(f"Found {prebuilt} prebuilt and {custom} custom analyzers")


if __name__ == "__main__":
    asyncio.run(main())
