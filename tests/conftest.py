"""Shared fixtures for the vcs_bridge test suite.

Provides:
- A fast retry policy (no waiting between attempts)
- Connection details for each provider
- A tar.gz archive factory for download tests
- An httpx mock transport router for the Bitbucket providers
"""

from collections.abc import Callable
import io
import json
import tarfile
from typing import Any

import httpx
import pytest

from vcs_bridge.error_handling.core import RetryConfig
from vcs_bridge.models import ConnectionInfo

RouteHandler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Three attempts, no waiting."""
    return RetryConfig(max_retries=2, retry_interval=0)


@pytest.fixture
def connection() -> ConnectionInfo:
    return ConnectionInfo(api_endpoint="", username="user", token="secret-token")


@pytest.fixture
def tar_gz_factory() -> Callable[..., bytes]:
    """Build an in-memory tar.gz; ``base_dir`` prefixes every member."""

    def _build(files: dict[str, bytes], base_dir: str = "repo-1a2b3c") -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            if base_dir:
                info = tarfile.TarInfo(base_dir)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                archive.addfile(info)
            for name, content in files.items():
                member_name = f"{base_dir}/{name}" if base_dir else name
                info = tarfile.TarInfo(member_name)
                info.size = len(content)
                info.mode = 0o644
                archive.addfile(info, io.BytesIO(content))
        return buffer.getvalue()

    return _build


class MockRouter:
    """Routes mock-transport requests by method and path and records them."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[RouteHandler | httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        response: httpx.Response | RouteHandler | None = None,
        *,
        status_code: int = 200,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Queue a response; the last queued response for a route repeats."""
        if response is None:
            response = httpx.Response(status_code, json=json_body, headers=headers)
        self.routes.setdefault((method, path), []).append(response)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, json={"error": f"no route for {key}"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            return response(request)
        return response

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def json_of(request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def router() -> MockRouter:
    return MockRouter()


@pytest.fixture
def mock_transport(router: MockRouter) -> httpx.MockTransport:
    return httpx.MockTransport(router.handler)
