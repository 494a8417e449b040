import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import BaseModel

from content_understanding_client.config import ContentUnderstandingSettings
from content_understanding_client.content_understanding_client import (
    ContentUnderstandingClient,
)


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


def create_client() -> ContentUnderstandingClient:
    """Client for the endpoint configured in the environment or ``.env``."""
    settings = ContentUnderstandingSettings()
    print(f"  Endpoint: {settings.endpoint}")
    print(f"  Authentication: {'API Key' if settings.key else 'DefaultAzureCredential'}")
    return ContentUnderstandingClient.from_settings(settings)


def save_json_to_file(
    result: Any,
    output_dir: str = "sample_output",
    filename_prefix: str = "analysis_result",
) -> Path:
    """Save a result as pretty-printed JSON under a timestamped name."""
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json", by_alias=True, exclude_none=True)

    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")
    path = directory / f"{filename_prefix}_{timestamp}.json"
    path.write_text(json.dumps(result, indent=2), encoding="utf-8")
    print(f"Analysis result saved to: {path}")
    return path


def get_field_value(fields: Optional[Dict[str, Any]], field_name: str) -> Any:
    """Value of an extracted field, whatever its type; None when absent."""
    if not fields or field_name not in fields:
        return None
    return fields[field_name].value
