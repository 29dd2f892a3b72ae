from __future__ import annotations

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest


class MockBackend:
    """Records every request and answers it with ``handler``."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], Any] = lambda request: httpx.Response(200, json={})

    def _handle(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    def payload(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()
