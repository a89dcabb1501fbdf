from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from domain.errors import TransportError

log = logging.getLogger(__name__)


class Transport(Protocol):
    def post_json(self, path: str, body: dict[str, Any]) -> bytes: ...


class HttpTransport:
    """
    JSON-over-HTTP POST channel.

    Any `httpx.Client` works, including `fastapi.testclient.TestClient` wrapping the local
    sites API. Every failure (connection, timeout, non-2xx) surfaces as `TransportError`.
    """

    def __init__(self, client: httpx.Client):
        self.client = client

    @classmethod
    def from_settings(cls, api) -> "HttpTransport":
        return cls(httpx.Client(base_url=api.baseUrl, timeout=api.timeoutS))

    def post_json(self, path: str, body: dict[str, Any]) -> bytes:
        try:
            resp = self.client.post(path, json=body)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} from {path}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        return resp.content

    def close(self) -> None:
        self.client.close()
