from typing import Optional

from azure.core.credentials import AzureKeyCredential
from azure.identity.aio import DefaultAzureCredential
from loguru import logger
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from content_understanding_client.transport import DEFAULT_API_VERSION


class ContentUnderstandingSettings(BaseSettings):
    """Connection settings, read from ``AZURE_CONTENT_UNDERSTANDING_*`` or ``.env``.

    Resolve once at startup and hand to
    ``ContentUnderstandingClient.from_settings``; the client itself never
    reads the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="AZURE_CONTENT_UNDERSTANDING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    endpoint: str
    key: Optional[SecretStr] = None
    api_version: str = DEFAULT_API_VERSION
    polling_interval: float = Field(default=1.0, gt=0)


def build_credential(settings: ContentUnderstandingSettings):
    """API key credential when a key is configured, DefaultAzureCredential otherwise."""
    key = settings.key.get_secret_value().strip() if settings.key else ""
    if key:
        logger.debug("Authenticating with an API key")
        return AzureKeyCredential(key)

    logger.debug("No API key configured, authenticating with DefaultAzureCredential")
    return DefaultAzureCredential()
