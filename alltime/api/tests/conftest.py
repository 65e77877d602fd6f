"""Shared fixtures for backend client tests."""

from __future__ import annotations

import json

import httpx
import pytest

BASE_URL = "https://api.alltime.test"


@pytest.fixture
def base_url() -> str:
    return BASE_URL


@pytest.fixture
def recorded_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def transport_factory(recorded_requests):
    """Build an httpx.MockTransport answering every request with ``handler``."""

    def _factory(handler):
        def _record(request: httpx.Request) -> httpx.Response:
            recorded_requests.append(request)
            return handler(request)

        return httpx.MockTransport(_record)

    return _factory


@pytest.fixture
def json_body():
    """Decode a recorded request body."""

    def _decode(request: httpx.Request):
        return json.loads(request.content)

    return _decode
