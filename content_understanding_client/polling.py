import asyncio
import base64
import json
from typing import Any, Awaitable, Callable, Collection, Generic, Optional, TypeVar

from loguru import logger
from yarl import URL

from content_understanding_client.errors import (
    ContentUnderstandingError,
    MissingPollLocationError,
    OperationFailedError,
    PollingCanceledError,
    error_from_response,
)
from content_understanding_client.models import (
    ErrorDetail,
    OperationState,
    PollerState,
    PollingConfig,
    PollStatus,
    ResourceLocation,
    UsageDetails,
)
from content_understanding_client.routes import is_unexpected_response
from content_understanding_client.transport import RawResponse, ServiceTransport

T = TypeVar("T")

_OPERATION_STATES = {state.value.lower(): state for state in OperationState}
_OPERATION_STATES["cancelled"] = OperationState.canceled

# Polling the resource itself reports its provisioning status instead.
_RESOURCE_STATES = {
    "creating": OperationState.running,
    "deleting": OperationState.running,
    "ready": OperationState.succeeded,
    "failed": OperationState.failed,
}

_TERMINAL_OPERATION_STATES = (
    OperationState.succeeded,
    OperationState.failed,
    OperationState.canceled,
)

_TERMINAL_POLLER_STATES = (
    PollerState.succeeded,
    PollerState.failed,
    PollerState.canceled,
)


def _json_or_none(response: RawResponse) -> Any:
    """Body as JSON, or None when it is empty or not JSON."""
    try:
        return response.json()
    except ValueError:
        return None


class LROPoller(Generic[T]):
    """Drives one long-running operation from its initial request to a result.

    The initial request is sent by :meth:`initialize`, which also resolves
    where to poll. :meth:`poll` performs one status round trip and
    :meth:`poll_until_done` repeats it, sleeping between polls, until the
    operation is terminal. Setting ``abort`` (or calling :meth:`cancel`)
    stops polling at the next suspension point.
    """

    def __init__(
        self,
        transport: ServiceTransport,
        deserializer: Callable[[Any], T],
        *,
        send_initial: Optional[Callable[[], Awaitable[RawResponse]]] = None,
        initial_response: Optional[RawResponse] = None,
        accepted_statuses: Collection[int] = (200, 201, 202),
        resource_location: ResourceLocation = ResourceLocation.operation_location,
        location_field: Optional[str] = None,
        config: Optional[PollingConfig] = None,
        abort: Optional[asyncio.Event] = None,
        continuation_token: Optional[str] = None,
        on_status_change: Optional[Callable[[PollStatus], Awaitable[Any]]] = None,
        classify: Optional[Callable[[RawResponse], bool]] = None,
    ):
        if send_initial is None and initial_response is None and not continuation_token:
            raise ValueError(
                "One of send_initial, initial_response or continuation_token is required"
            )
        if resource_location is ResourceLocation.body_field and not location_field:
            raise ValueError("location_field is required for the body-field strategy")

        self.transport = transport
        self.deserializer = deserializer
        self.config = config or PollingConfig()
        self.abort = abort or asyncio.Event()
        self.on_status_change = on_status_change
        self.logger = logger

        self._send_initial = send_initial
        self._initial_response = initial_response
        self._accepted_statuses = frozenset(accepted_statuses)
        self._resource_location = resource_location
        self._location_field = location_field
        self._continuation_token = continuation_token
        self._classify = classify or (
            lambda response: is_unexpected_response(response, transport.service_prefix)
        )

        self._state = PollerState.initial
        self._poll_url: Optional[str] = None
        self._final_url: Optional[str] = None
        self._polls_resource = False
        self._operation_id: Optional[str] = None
        self._last_response: Optional[RawResponse] = None
        self._status: Optional[PollStatus] = None
        self._result: Optional[T] = None
        self._error: Optional[Exception] = None
        self._poll_count = 0
        self._start_time: Optional[float] = None

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def status(self) -> Optional[PollStatus]:
        """The last observed snapshot of the operation."""
        return self._status

    @property
    def operation_id(self) -> Optional[str]:
        return self._operation_id

    @property
    def poll_count(self) -> int:
        return self._poll_count

    @property
    def last_response(self) -> Optional[RawResponse]:
        return self._last_response

    def done(self) -> bool:
        return self._state in _TERMINAL_POLLER_STATES

    def cancel(self) -> None:
        """Requests cooperative cancellation; in-flight requests still finish."""
        self.abort.set()

    def _elapsed(self) -> float:
        loop = asyncio.get_event_loop()
        if self._start_time is None:
            self._start_time = loop.time()
        return loop.time() - self._start_time

    async def initialize(self) -> "LROPoller[T]":
        """Sends the initial request (once) and resolves the poll location."""
        if self._state is not PollerState.initial:
            return self
        self._elapsed()

        if self._continuation_token:
            self._restore(self._continuation_token)
            self._state = PollerState.polling
            self.logger.debug(f"Resumed polling {self._poll_url}")
            return self

        if self._initial_response is not None:
            response = self._initial_response
        else:
            response = await self._send_initial()
        self._last_response = response

        if response.status not in self._accepted_statuses:
            self.logger.error(
                f"Initial request {response.method} {response.url} "
                f"returned unexpected status {response.status}"
            )
            raise error_from_response(response)

        await self._resolve_location(response)
        return self

    async def _resolve_location(self, response: RawResponse) -> None:
        operation_location = response.headers.get("Operation-Location")

        if self._resource_location is ResourceLocation.operation_location:
            self._poll_url = operation_location
        elif self._resource_location is ResourceLocation.original_uri:
            self._final_url = response.url
            self._poll_url = operation_location or response.url
            self._polls_resource = operation_location is None
        else:
            body = _json_or_none(response)
            if isinstance(body, dict):
                self._poll_url = body.get(self._location_field)

        if self._poll_url is None:
            body = _json_or_none(response)
            if response.status == 200 and body is not None:
                await self._complete_synchronously(response, body)
                return
            raise self._missing_location(response)

        self._poll_url = self.transport.url_for(self._poll_url)
        self._state = PollerState.polling
        if not self._polls_resource:
            self._operation_id = URL(self._poll_url).name or None
        self.logger.info(f"Polling operation at {self._poll_url}")

        body = _json_or_none(response) if self._polls_resource else None
        if isinstance(body, dict):
            # A PUT answered with the resource may already be terminal.
            state = _RESOURCE_STATES.get(str(body.get("status", "")).lower())
            if state in (OperationState.succeeded, OperationState.failed):
                await self._apply(self._snapshot(state, body), body)

    def _missing_location(self, response: RawResponse) -> MissingPollLocationError:
        return MissingPollLocationError(
            f"{response.method} {response.url} returned {response.status} "
            f"without a poll location ({self._resource_location.value})"
        )

    async def _complete_synchronously(self, response: RawResponse, body: Any) -> None:
        """Applies a 200 that carries no poll location; only a terminal one is final."""
        state = OperationState.succeeded
        if isinstance(body, dict) and body.get("status") is not None:
            # A resource body reports provisioning status rather than an operation status.
            raw_status = str(body["status"]).lower()
            state = _OPERATION_STATES.get(raw_status) or _RESOURCE_STATES.get(raw_status)
            if state is None:
                state = self._parse_status(body)
        if state not in _TERMINAL_OPERATION_STATES:
            raise self._missing_location(response)
        self.logger.debug(f"Initial response is already terminal ({state.value})")
        await self._apply(self._snapshot(state, body), body)

    def _snapshot(self, status: OperationState, body: Any) -> PollStatus:
        body = body if isinstance(body, dict) else {}
        error = body.get("error")
        usage = body.get("usage")
        if self._polls_resource:
            # The resource's "status" is not an operation status and it has no error member.
            error = usage = None
        elif body.get("id"):
            self._operation_id = body["id"]
        return PollStatus(
            operation_id=self._operation_id,
            status=status,
            raw_response=body,
            elapsed_time=self._elapsed(),
            error=ErrorDetail.model_validate(error) if isinstance(error, dict) else None,
            usage=UsageDetails.model_validate(usage) if isinstance(usage, dict) else None,
        )

    def _parse_status(self, body: Any) -> OperationState:
        raw_status = body.get("status") if isinstance(body, dict) else None
        states = _RESOURCE_STATES if self._polls_resource else _OPERATION_STATES
        state = states.get(str(raw_status).lower()) if raw_status is not None else None
        if state is None:
            raise ContentUnderstandingError(
                f"Unrecognized operation status {raw_status!r} from {self._poll_url}"
            )
        return state

    async def _handle_status_change(self, snapshot: PollStatus) -> None:
        """Invoke the status change callback if the status has changed"""
        last_status = self._status.status if self._status else None
        if last_status != snapshot.status:
            self.logger.debug(
                f"Operation {self._operation_id} status changed to {snapshot.status.value}"
            )
            if self.on_status_change is not None:
                await self.on_status_change(snapshot)

    async def _apply(self, snapshot: PollStatus, body: Any) -> None:
        await self._handle_status_change(snapshot)
        if snapshot.status is OperationState.succeeded:
            # _complete records the snapshot once the result is in hand.
            await self._complete(snapshot, body)
            return
        self._status = snapshot
        if snapshot.status in (OperationState.failed, OperationState.canceled):
            self._error = OperationFailedError(
                snapshot.error, self._operation_id, snapshot.status
            )
            self._state = PollerState.failed
            self.logger.error(f"Operation {self._operation_id} failed: {self._error}")

    async def _complete(self, snapshot: PollStatus, body: Any) -> None:
        if self._polls_resource:
            payload = body
        elif isinstance(body, dict) and body.get("result") is not None:
            payload = body["result"]
        elif self._final_url is not None:
            response = await self.transport.send("GET", self._final_url)
            self._last_response = response
            if self._classify(response):
                raise error_from_response(response)
            payload = response.json()
        else:
            payload = body
        self._result = self.deserializer(payload)
        self._status = snapshot
        self._state = PollerState.succeeded
        self.logger.info(f"Operation {self._operation_id} succeeded")

    def _mark_canceled(self) -> None:
        self._error = PollingCanceledError(
            f"Polling of operation {self._operation_id} was canceled"
        )
        self._state = PollerState.canceled
        if self._status is None or self._status.status is not OperationState.canceled:
            body = _json_or_none(self._last_response) if self._last_response else None
            self._status = self._snapshot(OperationState.canceled, body)
        self.logger.info(f"Stopped polling operation {self._operation_id}")
        raise self._error

    def _check_abort(self) -> None:
        if self.abort.is_set():
            self._mark_canceled()

    async def poll(self) -> PollStatus:
        """Performs one poll; a no-op returning the cached snapshot once terminal."""
        if self.done():
            return self._status
        await self.initialize()
        if self.done():
            return self._status

        self._check_abort()
        response = await self.transport.send("GET", self._poll_url)
        self._last_response = response
        self._poll_count += 1
        if self._classify(response):
            self.logger.error(
                f"HTTP error {response.status} while polling {self._poll_url}"
            )
            raise error_from_response(response)

        body = response.json()
        snapshot = self._snapshot(self._parse_status(body), body)
        await self._apply(snapshot, body)
        return self._status

    def _calculate_delay(self, attempt: int) -> float:
        """Calculates the delay before the next poll, preferring the server's Retry-After"""
        if self.config.honor_retry_after and self._last_response is not None:
            retry_after = self._last_response.headers.get("Retry-After")
            if retry_after is not None:
                try:
                    return max(float(retry_after), 0.0)
                except ValueError:
                    self.logger.debug(f"Ignoring non-numeric Retry-After {retry_after!r}")

        delay = min(
            self.config.interval * (self.config.backoff_factor ** (attempt - 1)),
            self.config.max_interval,
        )

        # Add random jitter between 0-20% of the delay
        if self.config.jitter:
            delay *= 1 + 0.2 * (asyncio.get_event_loop().time() % 1)
        return delay

    async def _wait_before_retry(self, attempt: int) -> None:
        """Sleeps before the next poll; the abort signal cuts the sleep short"""
        self._check_abort()
        delay = self._calculate_delay(attempt)
        self.logger.debug(
            f"Operation {self._operation_id} still running, "
            f"waiting {delay:.2f}s before next poll"
        )
        try:
            await asyncio.wait_for(self.abort.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self._mark_canceled()

    async def poll_until_done(self) -> T:
        """Polls until the operation is terminal and returns its result."""
        if not self.done():
            await self.initialize()
        attempt = 0
        while not self.done():
            self._check_abort()
            await self.poll()
            if self.done():
                break
            attempt += 1
            await self._wait_before_retry(attempt)
        return self.result()

    def result(self) -> T:
        if self._state is PollerState.succeeded:
            return self._result
        if self._error is not None:
            raise self._error
        raise ContentUnderstandingError("The operation has not completed yet")

    def continuation_token(self) -> str:
        """Opaque token that rebuilds this poller without resending the request."""
        if self._poll_url is None:
            raise ContentUnderstandingError("The poller has not been initialized")
        state = {
            "pollUrl": self._poll_url,
            "finalUrl": self._final_url,
            "resourceLocation": self._resource_location.value,
            "pollsResource": self._polls_resource,
            "operationId": self._operation_id,
        }
        return base64.urlsafe_b64encode(json.dumps(state).encode("utf-8")).decode("ascii")

    def _restore(self, token: str) -> None:
        try:
            state = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
            self._poll_url = state["pollUrl"]
        except (ValueError, KeyError, TypeError) as e:
            raise ValueError(f"Invalid continuation token: {e}") from e
        self._final_url = state.get("finalUrl")
        self._resource_location = ResourceLocation(
            state.get("resourceLocation", self._resource_location.value)
        )
        self._polls_resource = bool(state.get("pollsResource"))
        self._operation_id = state.get("operationId")
