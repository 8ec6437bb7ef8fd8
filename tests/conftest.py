"""Shared fixtures and utilities for chesslink tests."""

import json
import os
from collections.abc import AsyncIterator, Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from chesslink.endpoints import NDJSON
from chesslink.pipeline import RequestPipeline

API_URL = "https://lichess.test"


# ============================================================================
# HTTP Transport Helpers
# ============================================================================


class RecordingHandler:
    """MockTransport handler that records every request it answers."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered in chunks, optionally failing after the last one."""

    def __init__(self, chunks: list[bytes], error: Exception | None = None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


def json_response(status: int, payload: Any) -> httpx.Response:
    return httpx.Response(status, json=payload)


def ndjson_response(
    lines: list[str],
    error: Exception | None = None,
    status: int = 200,
) -> httpx.Response:
    """Streaming NDJSON response; each entry of ``lines`` is one chunk."""
    chunks = [(line + "\n").encode("utf-8") for line in lines]
    return httpx.Response(
        status,
        headers={"content-type": NDJSON},
        stream=ChunkStream(chunks, error),
    )


@pytest.fixture
def make_pipeline() -> Callable[..., tuple[RequestPipeline, RecordingHandler]]:
    """Factory for pipelines backed by an httpx.MockTransport."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        base_url: str = API_URL,
    ) -> tuple[RequestPipeline, RecordingHandler]:
        recorder = RecordingHandler(handler)
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        return RequestPipeline(base_url, http_client=client), recorder

    return factory


def form_body(request: httpx.Request) -> dict[str, str]:
    """Decode a form-encoded request body into a flat dict."""
    return dict(httpx.QueryParams(request.content.decode("utf-8")))


def read_json(request: httpx.Request) -> Any:
    return json.loads(request.content)


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def no_keyring() -> Generator[None, None, None]:
    """Make the keyring unavailable so the token store uses its derived key."""
    with patch("chesslink.auth.store.keyring.get_password", side_effect=RuntimeError("no backend")):
        yield


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Temporarily clear chesslink environment variables."""
    old_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("CHESSLINK_") or key == "LICHESS_TOKEN":
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(old_env)
