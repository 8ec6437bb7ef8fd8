"""Request pipeline: descriptor + arguments -> HTTP request -> Result.

The pipeline never raises for expected failures. Network errors, non-2xx
statuses and undecodable payloads are all reduced to a Result variant (see
``chesslink.result``). Programming errors, such as a missing path argument,
still raise.

There are no automatic retries: write endpoints (challenges, messages) are
not idempotent, so retry policy belongs to the caller.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping
from urllib.parse import urlencode

import httpx

from .endpoints import BodyEncoding, EmptyBody, EndpointDescriptor, NDJSON, Shape
from .models import Ack
from .result import ErrorInfo, ErrorKind, Fail, Many, NoneMatch, One, Result

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://lichess.org"
DEFAULT_TIMEOUT = 30.0
USER_AGENT = "chesslink"


@dataclass(frozen=True)
class PreparedRequest:
    """A fully resolved request, owned by the call that built it."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes | None = None


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _encode_items(params: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Flatten parameters into (key, value) pairs.

    None values are dropped and list values repeat the key.
    """
    items: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            items.extend((key, _render(v)) for v in value)
        else:
            items.append((key, _render(value)))
    return items


def prepare_request(
    base_url: str,
    descriptor: EndpointDescriptor,
    path_args: Mapping[str, Any] | None = None,
    query: Mapping[str, Any] | None = None,
    body: Mapping[str, Any] | str | None = None,
    token: str | None = None,
    user_agent: str = USER_AGENT,
) -> PreparedRequest:
    """Build the request for one call of ``descriptor``.

    The bearer token is attached whenever one is supplied, even for
    endpoints that do not require a scope, since several endpoints answer
    differently for authenticated callers.

    Raises:
        ValueError: If a path placeholder has no value
    """
    url = base_url.rstrip("/") + descriptor.resolve_path(path_args)
    query_items = _encode_items(query or {})
    if query_items:
        url = f"{url}?{urlencode(query_items)}"

    headers = {"Accept": descriptor.accept, "User-Agent": user_agent}

    content: bytes | None = None
    if body is not None:
        if isinstance(body, str):
            content = body.encode("utf-8")
        elif descriptor.encoding is BodyEncoding.JSON:
            content = json.dumps(body).encode("utf-8")
        else:
            content = urlencode(_encode_items(body)).encode("utf-8")
        headers["Content-Type"] = descriptor.encoding.value

    if token:
        headers["Authorization"] = f"Bearer {token}"

    return PreparedRequest(
        method=descriptor.method.upper(),
        url=url,
        headers=headers,
        content=content,
    )


def _transport_error(error: httpx.RequestError) -> ErrorInfo:
    if isinstance(error, httpx.TimeoutException):
        return ErrorInfo(ErrorKind.TIMEOUT, message=str(error) or "Request timed out")
    return ErrorInfo(
        ErrorKind.TRANSPORT,
        message=str(error) or type(error).__name__,
    )


def _error_from_response(response: httpx.Response) -> ErrorInfo:
    """Build an ErrorInfo for a non-2xx response that has been read."""
    body: Any = None
    message = response.reason_phrase or None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error") or body.get("message")
        if isinstance(error, str):
            message = error
        elif error is not None:
            message = json.dumps(error)

    kind = ErrorKind.REMOTE_REJECTED
    if response.status_code in (401, 403):
        kind = ErrorKind.UNAUTHORIZED

    return ErrorInfo(kind, status=response.status_code, message=message, body=body)


def _decode_lines(descriptor: EndpointDescriptor, text: str) -> tuple[list[Any], int]:
    """Decode a buffered NDJSON body, skipping malformed lines."""
    items: list[Any] = []
    malformed = 0
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            items.append(descriptor.decode(json.loads(line)))
        except (KeyError, TypeError, ValueError):
            malformed += 1
    return items, malformed


class NdjsonStream:
    """Single-pass iterator over an open NDJSON response.

    Each line is decoded on its own. Blank keep-alive lines are skipped,
    undecodable lines are counted in ``malformed`` and skipped, and a
    transport failure ends the iteration with ``error`` set. The response
    is closed when the stream ends or ``aclose()`` is called.
    """

    def __init__(self, response: httpx.Response, descriptor: EndpointDescriptor):
        self.malformed = 0
        self.error: ErrorInfo | None = None

        self._response = response
        self._descriptor = descriptor
        self._lines = response.aiter_lines()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "NdjsonStream":
        return self

    async def __anext__(self) -> Any:
        while not self._closed:
            try:
                line = await self._lines.__anext__()
            except StopAsyncIteration:
                logger.debug(f"Stream {self._descriptor.name} ended")
                await self.aclose()
                break
            except httpx.RequestError as e:
                self.error = _transport_error(e)
                logger.warning(f"Stream {self._descriptor.name} interrupted: {self.error.describe()}")
                await self.aclose()
                break

            line = line.strip()
            if not line:
                continue

            try:
                return self._descriptor.decode(json.loads(line))
            except (KeyError, TypeError, ValueError) as e:
                self.malformed += 1
                if self.malformed == 1:
                    logger.warning(f"Skipping malformed line in stream {self._descriptor.name}: {e}")
                else:
                    logger.debug(f"Skipping malformed line in stream {self._descriptor.name}: {e}")

        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Release the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._lines.aclose()
        finally:
            await self._response.aclose()


class RequestPipeline:
    """Issues descriptor-based requests and reduces responses to Results.

    A pipeline wraps one ``httpx.AsyncClient`` whose connection pool is
    shared by all calls. Calls are independent and may run concurrently.

    Usage:
        async with RequestPipeline("https://lichess.org") as pipeline:
            result = await pipeline.execute(USER, {"username": "lichess"})
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = USER_AGENT,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent

        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        """Close the connection pool if this pipeline created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RequestPipeline":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def prepare(
        self,
        descriptor: EndpointDescriptor,
        path_args: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | str | None = None,
        token: str | None = None,
    ) -> PreparedRequest:
        return prepare_request(
            self.base_url, descriptor, path_args, query, body, token, self.user_agent
        )

    async def execute(
        self,
        descriptor: EndpointDescriptor,
        path_args: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | str | None = None,
        token: str | None = None,
    ) -> Result:
        """Execute one call of ``descriptor``.

        Args:
            descriptor: The endpoint to call
            path_args: Values for the path placeholders
            query: Query string parameters
            body: Request body, encoded per the descriptor
            token: Optional bearer token

        Returns:
            One, Many, NoneMatch or Fail

        Raises:
            ValueError: If a path placeholder has no value
        """
        if descriptor.scope is not None and not token:
            logger.debug(f"Refusing {descriptor.name}: no token for scope {descriptor.scope.wire}")
            return Fail(
                ErrorInfo(
                    ErrorKind.UNAUTHORIZED,
                    message=f"Endpoint '{descriptor.name}' requires a token with scope '{descriptor.scope.wire}'",
                )
            )

        prepared = self.prepare(descriptor, path_args, query, body, token)
        timeout: httpx.Timeout | float = self.timeout
        if descriptor.shape is Shape.STREAM:
            # Streams stay open indefinitely between events
            timeout = httpx.Timeout(self.timeout, read=None)

        request = self._client.build_request(
            prepared.method,
            prepared.url,
            headers=prepared.headers,
            content=prepared.content,
            timeout=timeout,
        )
        logger.debug(f"{prepared.method} {prepared.url}")

        try:
            if descriptor.shape is Shape.STREAM:
                return await self._send_stream(descriptor, request)
            response = await self._client.send(request)
        except httpx.RequestError as e:
            error = _transport_error(e)
            logger.debug(f"{descriptor.name} failed: {error.describe()}")
            return Fail(error)

        return self._reduce(descriptor, response)

    async def _send_stream(self, descriptor: EndpointDescriptor, request: httpx.Request) -> Result:
        response = await self._client.send(request, stream=True)
        if response.is_success:
            return Many(NdjsonStream(response, descriptor))

        try:
            await response.aread()
        finally:
            await response.aclose()
        return self._reduce(descriptor, response)

    def _reduce(self, descriptor: EndpointDescriptor, response: httpx.Response) -> Result:
        """Reduce a fully read response to a Result."""
        status = response.status_code

        if status == 404:
            return NoneMatch()

        if not response.is_success:
            error = _error_from_response(response)
            logger.debug(f"{descriptor.name} rejected: {error.describe()}")
            return Fail(error)

        if status == 204 or not response.content.strip():
            if descriptor.empty is EmptyBody.ACK:
                return One(Ack(ok=True))
            return NoneMatch()

        if NDJSON in response.headers.get("content-type", ""):
            items, malformed = _decode_lines(descriptor, response.text)
            if malformed:
                logger.warning(f"Skipped {malformed} malformed line(s) in {descriptor.name} response")
            return Many(items, skipped=malformed)

        try:
            payload = response.json()
        except ValueError:
            return Fail(
                ErrorInfo(
                    ErrorKind.DECODE_FAILURE,
                    status=status,
                    message=f"Response from {descriptor.name} is not valid JSON",
                )
            )

        try:
            if isinstance(payload, list):
                return Many([descriptor.decode(item) for item in payload])
            return One(descriptor.decode(payload))
        except (KeyError, TypeError, ValueError) as e:
            return Fail(
                ErrorInfo(
                    ErrorKind.DECODE_FAILURE,
                    status=status,
                    message=f"Unexpected {descriptor.name} payload: {e!r}",
                    body=payload,
                )
            )

    def paginate(
        self,
        descriptor: EndpointDescriptor,
        path_args: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
        token: str | None = None,
    ) -> AsyncIterator[Result]:
        """Iterate over the pages of a paginated endpoint.

        Each page is a separate call. The next page's cursor is read from
        the previous page; iteration stops when there is no cursor or a
        page is anything other than One (that page is still yielded).

        Raises:
            ValueError: If the descriptor is not paginated
        """
        pagination = descriptor.pagination
        if pagination is None:
            raise ValueError(f"Endpoint '{descriptor.name}' is not paginated")

        async def pages() -> AsyncIterator[Result]:
            params = dict(query or {})
            previous: Any = None
            while True:
                result = await self.execute(descriptor, path_args, params, token=token)
                yield result
                if not isinstance(result, One) or not isinstance(result.item, dict):
                    return
                cursor = result.item.get(pagination.cursor_field)
                if cursor in (None, "") or cursor == previous:
                    return
                previous = cursor
                params[pagination.cursor_param] = cursor

        return pages()
