"""Base HTTP Client for the Outbox Relay API"""

from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()


class RelayError(Exception):
    """A relay API call failed.

    ``status_code`` is None when the relay could not be reached at all.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id


class APIClient:
    """Synchronous httpx client that unwraps the relay's response envelope."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url, timeout=timeout, headers=headers or {}
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _unwrap(self, response: httpx.Response) -> dict[str, Any]:
        request_id = response.headers.get("X-Request-ID")
        try:
            body = response.json()
        except ValueError:
            console.print(f"[red]Failed to parse response: {response.text}[/red]")
            raise RelayError(
                f"Invalid JSON response: {response.status_code}",
                status_code=response.status_code,
                request_id=request_id,
            ) from None

        if response.status_code >= 400 or body.get("ok") is False:
            error = body.get("error") or {}
            message = error.get("message") or body.get("detail") or "Unknown error"
            request_id = body.get("request_id") or request_id
            console.print(Panel(f"[red]{message}[/red]", title="API Error"))
            raise RelayError(
                f"API Error {response.status_code}: {message}",
                status_code=response.status_code,
                request_id=request_id,
            )

        return body.get("data", {}) if "ok" in body else body

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.client.request(method, f"/v1{path}", **kwargs)
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise RelayError(f"Connection failed: {e}") from None
        return self._unwrap(response)

    def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._request("GET", path, params=params)

    def post(self, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._request("POST", path, json=json)
