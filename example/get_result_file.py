import asyncio
from pathlib import Path

from content_understanding_client.models import AudioVisualContent
from sample_helper import configure_logging, create_client, save_json_to_file

VIDEO_URL = (
    "https://github.com/Azure-Samples/azure-ai-content-understanding-assets"
    "/raw/refs/heads/main/videos/sdk_samples/FlightSimulator.mp4"
)
OUTPUT_DIR = Path("sample_output")


async def main():
    configure_logging()
    async with create_client() as client:
        poller = await client.content_analyzers.begin_analyze(
            "prebuilt-videoAnalyzer", inputs=[{"url": VIDEO_URL}]
        )
        print(f"Analysis started, operation ID: {poller.operation_id}")
        result = await poller.poll_until_done()
        save_json_to_file(result, filename_prefix="video_analysis_raw")

        paths = [
            path
            for content in result.contents
            if isinstance(content, AudioVisualContent)
            for path in content.key_frame_paths()
        ]
        if not paths:
            print("No keyframes were produced")
            return

        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        # The first keyframe is enough to show the round trip.
        image = await client.content_analyzers.get_result_file(
            poller.operation_id, paths[0]
        )
        target = OUTPUT_DIR / f"{poller.operation_id}_{paths[0].replace('/', '_')}.jpg"
        target.write_bytes(image)
        print(f"Saved {len(image)} bytes to {target} ({len(paths)} keyframes available)")


if __name__ == "__main__":
    asyncio.run(main())
