"""Shared fixtures for API tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from tabular_ingestor.api.main import app

API_HEADERS = {"X-API-Key": "test-key"}


@pytest.fixture(name="client")
def client_fixture() -> Iterator[TestClient]:
    """Provide a FastAPI test client running the application lifespan."""

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api_headers() -> dict[str, str]:
    return dict(API_HEADERS)


@pytest.fixture
def upload(client: TestClient) -> Callable[..., httpx.Response]:
    """Return a helper posting one multipart file to the agent upload route."""

    def _upload(
        source_id: int,
        content: str | bytes,
        *,
        file_name: str = "sales.csv",
        key: str | None = None,
        headers: dict[str, str] | None = None,
        **form: Any,
    ) -> httpx.Response:
        payload = content.encode() if isinstance(content, str) else content
        request_headers = dict(headers or {})
        if key is not None:
            request_headers["X-Agent-Key"] = key
        return client.post(
            "/api/v1/agent/upload",
            data={"sourceId": str(source_id), **form},
            files={"file": (file_name, payload, "text/csv")},
            headers=request_headers,
        )

    return _upload
