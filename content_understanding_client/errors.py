from typing import List, Optional

from pydantic import ValidationError

from content_understanding_client.models import ErrorDetail, OperationState
from content_understanding_client.transport import RawResponse


class ContentUnderstandingError(Exception):
    """Base class for errors raised by the client."""


class UnexpectedStatusError(ContentUnderstandingError):
    """A response status is not expected for its method and path."""

    def __init__(self, response: RawResponse, message: Optional[str] = None):
        self.response = response
        self.status = response.status
        self.error = parse_error_body(response)
        self.code = self.error.code if self.error else None
        if message is None:
            if self.error and self.error.message:
                message = self.error.message
            else:
                message = (
                    f"Unexpected status {response.status} "
                    f"for {response.method} {response.url}"
                )
        self.message = message
        prefix = f"({self.code}) " if self.code else ""
        super().__init__(f"{prefix}{message}")


class ClientAuthenticationError(UnexpectedStatusError):
    pass


class ResourceNotFoundError(UnexpectedStatusError):
    pass


class OperationFailedError(ContentUnderstandingError):
    """The service finished a long-running operation without success."""

    def __init__(
        self,
        error: Optional[ErrorDetail],
        operation_id: Optional[str] = None,
        status: OperationState = OperationState.failed,
    ):
        self.error = error
        self.operation_id = operation_id
        self.status = status
        self.code = error.code if error and error.code else status.value
        self.message = (
            error.message
            if error and error.message
            else f"Operation {operation_id or ''} ended with status {status.value}"
        )
        self.details: List[ErrorDetail] = (error.details or []) if error else []
        super().__init__(f"({self.code}) {self.message}")


class PollingCanceledError(ContentUnderstandingError):
    """Polling was stopped through the poller's abort signal."""


class MissingPollLocationError(ContentUnderstandingError):
    """The initial response does not say where to poll."""


def parse_error_body(response: RawResponse) -> Optional[ErrorDetail]:
    """Reads the ``{"error": {...}}`` envelope, if the body carries one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
        return None
    try:
        return ErrorDetail.model_validate(body["error"])
    except ValidationError:
        return None


def error_from_response(
    response: RawResponse, message: Optional[str] = None
) -> UnexpectedStatusError:
    if response.status in (401, 403):
        return ClientAuthenticationError(response, message)
    if response.status == 404:
        return ResourceNotFoundError(response, message)
    return UnexpectedStatusError(response, message)
