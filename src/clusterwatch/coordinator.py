from __future__ import annotations

from typing import Any

import httpx

from .utils import base_url


class CoordinatorError(RuntimeError):
    pass


class CoordinatorStatusError(CoordinatorError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class CoordinatorClient:
    """Async client for the coordinator's two POST endpoints.

    ``address`` is ``host:port`` without a scheme and may be reassigned at any
    time; the next request uses the new value. ``timeout=None`` disables the
    httpx timeouts entirely.
    """

    def __init__(
        self,
        address: str,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.address = address
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def __aenter__(self) -> CoordinatorClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, endpoint: str, context: str) -> httpx.Response:
        url = f"{base_url(self.address)}/{endpoint}"
        try:
            return await self._client.post(url, json={})
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise CoordinatorError(f"{context} failed: {str(exc) or type(exc).__name__}") from exc

    def _require_ok(self, response: httpx.Response, context: str) -> None:
        if not response.is_success:
            raise CoordinatorStatusError(
                response.status_code,
                f"{context} failed: HTTP {response.status_code} {response.reason_phrase}".rstrip(),
            )

    def _json(self, response: httpx.Response, context: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise CoordinatorError(f"{context} returned invalid JSON: {exc}") from exc

    async def fetch_nodes(self) -> Any:
        context = f"getallnodes on {self.address}"
        response = await self._post("getallnodes", context)
        self._require_ok(response, context)
        return self._json(response, context)

    async def create_job(self) -> Any:
        context = f"newjob on {self.address}"
        response = await self._post("newjob", context)
        self._require_ok(response, context)
        return self._json(response, context)
