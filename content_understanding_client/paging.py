from collections import deque
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Collection,
    Deque,
    Generic,
    List,
    Optional,
    TypeVar,
)

from loguru import logger

from content_understanding_client.errors import error_from_response
from content_understanding_client.routes import is_unexpected_response
from content_understanding_client.transport import RawResponse, ServiceTransport

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T] = field(default_factory=list)
    continuation: Optional[str] = None


class AsyncItemPaged(Generic[T]):
    """Lazy, forward-only async iterator over the items of a paged list.

    A page is fetched only when the buffered one is used up and the last
    page carried a continuation link. Once exhausted the iterator stays
    exhausted; call the list operation again to start over.
    """

    def __init__(
        self,
        transport: ServiceTransport,
        fetch_first: Callable[[], Awaitable[RawResponse]],
        deserialize_item: Callable[[Any], T],
        *,
        fetch_next: Optional[Callable[[str], Awaitable[RawResponse]]] = None,
        item_name: str = "value",
        next_link_name: str = "nextLink",
        expected_statuses: Collection[int] = (200,),
        classify: Optional[Callable[[RawResponse], bool]] = None,
    ):
        self.transport = transport
        self.deserialize_item = deserialize_item
        self.item_name = item_name
        self.next_link_name = next_link_name
        self.logger = logger

        self._fetch_first = fetch_first
        self._fetch_next = fetch_next or (lambda link: transport.send("GET", link))
        self._expected_statuses = frozenset(expected_statuses)
        self._classify = classify or (
            lambda response: is_unexpected_response(response, transport.service_prefix)
        )
        self._buffer: Deque[T] = deque()
        self._next_link: Optional[str] = None
        self._started = False
        self._exhausted = False
        self.pages_fetched = 0

    def __aiter__(self) -> "AsyncItemPaged[T]":
        return self

    async def __anext__(self) -> T:
        while not self._buffer:
            page = await self._fetch_next_page()
            if page is None:
                raise StopAsyncIteration
            self._buffer.extend(page.items)
        return self._buffer.popleft()

    async def by_page(self) -> AsyncIterator[List[T]]:
        """Yields the remaining items one page at a time."""
        if self._buffer:
            items = list(self._buffer)
            self._buffer.clear()
            yield items
        while True:
            page = await self._fetch_next_page()
            if page is None:
                return
            yield page.items

    def _extract_page(self, body: Any) -> Page[T]:
        body = body if isinstance(body, dict) else {}
        items = [self.deserialize_item(item) for item in body.get(self.item_name) or []]
        return Page(items=items, continuation=body.get(self.next_link_name) or None)

    async def _fetch_next_page(self) -> Optional[Page[T]]:
        if self._exhausted:
            return None
        if not self._started:
            self._started = True
            response = await self._fetch_first()
        else:
            response = await self._fetch_next(self._next_link)

        if response.status not in self._expected_statuses or self._classify(response):
            self._exhausted = True
            self.logger.error(
                f"HTTP error {response.status} while listing {response.url}"
            )
            raise error_from_response(response)

        page = self._extract_page(response.json())
        self.pages_fetched += 1
        self._next_link = page.continuation
        if self._next_link is None:
            self._exhausted = True
        else:
            self.logger.debug(f"More items available at {self._next_link}")
        return page
