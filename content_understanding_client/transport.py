import inspect
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

import aiohttp
from azure.core.credentials import AzureKeyCredential
from loguru import logger
from multidict import CIMultiDict
from yarl import URL

DEFAULT_API_VERSION = "2025-11-01"
DEFAULT_BASE_PATH = "/contentunderstanding"
COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"
USER_AGENT = "content-understanding-client/0.1.0"

# Refresh bearer tokens this many seconds before they expire.
TOKEN_REFRESH_MARGIN = 300


@dataclass
class RawResponse:
    method: str
    url: str
    status: int
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class CredentialPolicy:
    """Adds the key or bearer token header to outgoing requests."""

    def __init__(self, credential: Union[AzureKeyCredential, Any]):
        if isinstance(credential, str):
            credential = AzureKeyCredential(credential)
        if not isinstance(credential, AzureKeyCredential) and not hasattr(
            credential, "get_token"
        ):
            raise TypeError(
                "credential must be an AzureKeyCredential or a token credential"
            )
        self.credential = credential
        self._token = None

    async def authorize(self, headers: dict) -> None:
        if isinstance(self.credential, AzureKeyCredential):
            headers["Ocp-Apim-Subscription-Key"] = self.credential.key
            return
        token = await self._get_token()
        headers["Authorization"] = f"Bearer {token}"

    async def _get_token(self) -> str:
        if self._token is None or (
            self._token.expires_on - TOKEN_REFRESH_MARGIN <= time.time()
        ):
            # azure.identity.aio credentials return a coroutine, sync ones do not
            access_token = self.credential.get_token(COGNITIVE_SERVICES_SCOPE)
            if inspect.isawaitable(access_token):
                access_token = await access_token
            self._token = access_token
            logger.debug("Acquired bearer token for Content Understanding")
        return self._token.token


class ServiceTransport:
    """Sends requests to one Content Understanding endpoint over aiohttp."""

    def __init__(
        self,
        endpoint: str,
        credential,
        api_version: str = DEFAULT_API_VERSION,
        session: Optional[aiohttp.ClientSession] = None,
        user_agent: Optional[str] = None,
        base_path: str = DEFAULT_BASE_PATH,
    ):
        if not endpoint:
            raise ValueError("Endpoint must be provided.")
        if not api_version:
            raise ValueError("API version must be provided.")
        self.endpoint = endpoint.rstrip("/")
        self.base_path = base_path.rstrip("/")
        self.base_url = self.endpoint + self.base_path
        # Path of base_url, including any path the endpoint itself carries.
        self.service_prefix = URL(self.base_url).path.rstrip("/")
        self._origin = str(URL(self.endpoint).origin())
        self.api_version = api_version
        self.user_agent = f"{user_agent} {USER_AGENT}" if user_agent else USER_AGENT
        self.credential_policy = CredentialPolicy(credential)
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ServiceTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def url_for(self, path_or_url: str) -> str:
        """Absolute URL for a service-relative path, a rooted path or a full URL."""
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        if path_or_url.startswith(self.service_prefix + "/"):
            return self._origin + path_or_url
        if path_or_url.startswith(self.base_path + "/"):
            return self.endpoint + path_or_url
        return self.base_url + "/" + path_or_url.lstrip("/")

    def _build_url(self, path_or_url: str, params: Optional[Mapping[str, Any]]) -> URL:
        url = URL(self.url_for(path_or_url), encoded=True)
        query = {}
        if "api-version" not in url.query:
            query["api-version"] = self.api_version
        for key, value in (params or {}).items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            query[key] = str(value)
        return url.update_query(query) if query else url

    async def send(
        self,
        method: str,
        path_or_url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
        client_request_id: Optional[str] = None,
    ) -> RawResponse:
        """Sends one request and reads the whole response body.

        Status codes are not checked here; callers classify the response.
        Transport failures propagate as ``aiohttp.ClientError``.
        """
        url = self._build_url(path_or_url, params)
        request_headers = {
            "User-Agent": self.user_agent,
            "x-ms-client-request-id": client_request_id or str(uuid.uuid4()),
        }
        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            content_type = content_type or "application/json"
        if content_type:
            request_headers["Content-Type"] = content_type
        request_headers.update(headers or {})
        await self.credential_policy.authorize(request_headers)

        session = self._get_session()
        self.logger.debug(f"{method} {url}")
        try:
            async with session.request(
                method, url, headers=request_headers, data=data
            ) as response:
                body = await response.read()
                raw = RawResponse(
                    method=method,
                    url=str(url),
                    status=response.status,
                    headers=CIMultiDict(response.headers),
                    body=body,
                )
        except aiohttp.ClientError as e:
            self.logger.error(f"Transport error at {method} {url}: {e}")
            raise

        self.logger.debug(f"{method} {url} -> {raw.status}")
        return raw
