"""Uniform result envelope for API calls.

Every call through the request pipeline resolves to exactly one of four
variants:

    One(item)        exactly one decoded item
    Many(source)     zero or more items, buffered or streamed
    NoneMatch()      the call succeeded but there is no data
    Fail(error)      the call failed, see ErrorInfo

Consumers are expected to ``match`` on the variant:

    match await pipeline.execute(USER, {"username": "lichess"}):
        case One(item=user):
            ...
        case Many() as many:
            async with many:
                async for item in many:
                    ...
        case NoneMatch():
            ...
        case Fail(error=error):
            print(error.describe())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Generic, Protocol, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Categories of failure a caller may need to tell apart."""

    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    REMOTE_REJECTED = "remote_rejected"
    DECODE_FAILURE = "decode_failure"
    STATE_MISMATCH = "state_mismatch"
    DENIED = "denied"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ErrorInfo:
    """Structured description of a failed call.

    Attributes:
        kind: The failure category
        status: HTTP status code, when the remote answered
        message: Human-readable message (remote error text when available)
        body: Parsed error body returned by the remote, if any
    """

    kind: ErrorKind
    status: int | None = None
    message: str | None = None
    body: Any = None

    def describe(self) -> str:
        """One-line description suitable for showing to a user."""
        parts = [self.kind.value.replace("_", " ")]
        if self.status is not None:
            parts.append(f"(HTTP {self.status})")
        text = " ".join(parts)
        if self.message:
            text = f"{text}: {self.message}"
        return text


class ResultError(Exception):
    """Raised by ``get()`` when a result does not hold exactly one item."""

    def __init__(self, message: str, error: ErrorInfo | None = None):
        super().__init__(message)
        self.error = error


class _Result:
    """Accessors shared by all result variants."""

    @property
    def ok(self) -> bool:
        return not isinstance(self, Fail)

    def get(self) -> Any:
        raise ResultError(f"Expected a single item, got {type(self).__name__}")

    def maybe(self) -> Any:
        return None

    async def count(self) -> int:
        return 0


@dataclass(frozen=True)
class One(_Result, Generic[T]):
    item: T

    def get(self) -> T:
        return self.item

    def maybe(self) -> T:
        return self.item

    async def count(self) -> int:
        return 1


@dataclass(frozen=True)
class NoneMatch(_Result):
    pass


@dataclass(frozen=True)
class Fail(_Result):
    error: ErrorInfo

    def get(self) -> Any:
        raise ResultError(self.error.describe(), self.error)


class ItemStream(Protocol[T]):
    """Single-pass source of items with explicit close semantics."""

    malformed: int
    error: ErrorInfo | None

    def __aiter__(self) -> AsyncIterator[T]: ...

    async def aclose(self) -> None: ...


@dataclass
class Many(_Result, Generic[T]):
    """Zero or more items.

    ``source`` is either a list (buffered response) or an ItemStream
    (open connection). ``skipped`` counts undecodable lines dropped while
    buffering. Stream-backed instances can only be iterated once
    and should be closed when the consumer stops early.
    """

    source: list[T] | ItemStream[T] = field(default_factory=list)
    skipped: int = 0

    @property
    def buffered(self) -> bool:
        return isinstance(self.source, list)

    @property
    def malformed(self) -> int:
        """Number of stream lines skipped because they could not be decoded."""
        if isinstance(self.source, list):
            return self.skipped
        return self.source.malformed

    @property
    def error(self) -> ErrorInfo | None:
        """Terminal error that ended the stream early, if any."""
        if isinstance(self.source, list):
            return None
        return self.source.error

    async def __aiter__(self) -> AsyncIterator[T]:
        if isinstance(self.source, list):
            for item in self.source:
                yield item
            return
        async for item in self.source:
            yield item

    async def aclose(self) -> None:
        if not isinstance(self.source, list):
            await self.source.aclose()

    async def __aenter__(self) -> "Many[T]":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def collect(self) -> list[T]:
        """Drain all items into a list. Closes stream-backed sources."""
        if isinstance(self.source, list):
            return list(self.source)
        try:
            return [item async for item in self]
        finally:
            await self.aclose()

    async def count(self) -> int:
        return len(await self.collect())


Result = One[Any] | Many[Any] | NoneMatch | Fail
