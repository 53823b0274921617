"""Gradio-space prediction client.

Processing flow (`predict`):
    1. Upload every `FilePayload` argument and replace it with a FileData dict.
    2. Submit the call: `POST {base}{prefix}/call/{endpoint}` -> `event_id`.
    3. Read the event stream `GET {base}{prefix}/call/{endpoint}/{event_id}`
       until a `complete` or `error` event arrives.
    4. Return the completed slots as a `PredictionResult`.

Probing (`list_endpoints`):
    `GET {base}{prefix}/info` and return the named endpoint keys. The engine uses
    this to pick an adapter.

Error handling strategy:
    - HTTP-layer failures propagate as `httpx` exceptions.
    - Error events, missing event ids and streams ending without a result raise
      `SpaceCallError`.
    Both are treated as transient by `retry_with_backoff`.

Security considerations:
    The token is sent as a bearer header and never logged.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

import httpx

from meshflow.core.types import FilePayload, PredictionResult


logger = logging.getLogger(__name__)


class SpaceCallError(RuntimeError):
    """The space reported an error or returned a malformed response."""


class SpaceClient(Protocol):
    """Minimal async interface the adapters and the engine depend on."""

    async def predict(self, endpoint: str, args: list[Any]) -> PredictionResult:
        """Call `endpoint` with positional `args`."""
        ...

    async def list_endpoints(self) -> set[str]:
        """Return the named endpoints exposed by the space."""
        ...


def space_base_url(space_id: str) -> str:
    """Map `owner/name` to the direct host of a Hugging Face space."""
    subdomain = space_id.strip().strip("/").lower()
    for char in ("/", "_", "."):
        subdomain = subdomain.replace(char, "-")
    return f"https://{subdomain}.hf.space"


def _endpoint_name(endpoint: str) -> str:
    return endpoint.strip().lstrip("/")


class GradioSpaceClient:
    """Async client for the queue-based Gradio HTTP API of one space."""

    def __init__(
        self,
        space_id: str,
        hf_token: str | None = None,
        base_url: str | None = None,
        api_prefix: str = "/gradio_api",
        timeout: float = 300.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.space_id = space_id
        self.hf_token = hf_token
        self.base_url = (base_url or space_base_url(space_id)).rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.timeout = timeout
        self._http_client = http_client

    @property
    def api_url(self) -> str:
        return f"{self.base_url}{self.api_prefix}"

    def _headers(self) -> dict[str, str]:
        if self.hf_token:
            return {"Authorization": f"Bearer {self.hf_token}"}
        return {}

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            yield client

    async def list_endpoints(self) -> set[str]:
        async with self._client() as client:
            response = await client.get(f"{self.api_url}/info", headers=self._headers())
            response.raise_for_status()
            info = response.json()

        named = info.get("named_endpoints") if isinstance(info, dict) else None
        return set(named or {})

    async def predict(self, endpoint: str, args: list[Any]) -> PredictionResult:
        name = _endpoint_name(endpoint)

        async with self._client() as client:
            prepared = [await self._prepare_arg(client, arg) for arg in args]

            submit = await client.post(
                f"{self.api_url}/call/{name}",
                json={"data": prepared},
                headers=self._headers(),
            )
            submit.raise_for_status()
            event_id = submit.json().get("event_id")
            if not event_id:
                raise SpaceCallError(f"{self.space_id} did not return an event id for /{name}")

            logger.debug("Submitted /%s to %s as event %s", name, self.space_id, event_id)
            data = await self._read_result(client, name, event_id)

        if not isinstance(data, list):
            data = [data]
        return PredictionResult(data=data)

    async def _prepare_arg(self, client: httpx.AsyncClient, arg: Any) -> Any:
        if not isinstance(arg, FilePayload):
            return arg

        response = await client.post(
            f"{self.api_url}/upload",
            files=[("files", (arg.filename, arg.data, arg.mime_type))],
            headers=self._headers(),
        )
        response.raise_for_status()
        paths = response.json()
        if not paths:
            raise SpaceCallError(f"{self.space_id} rejected upload of {arg.filename}")

        return {
            "path": paths[0],
            "orig_name": arg.filename,
            "mime_type": arg.mime_type,
            "meta": {"_type": "gradio.FileData"},
        }

    async def _read_result(self, client: httpx.AsyncClient, name: str, event_id: str) -> Any:
        event = None
        async with client.stream(
            "GET",
            f"{self.api_url}/call/{name}/{event_id}",
            headers=self._headers(),
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if line.startswith("event:"):
                    event = line[len("event:"):].strip()
                    continue
                if not line.startswith("data:"):
                    continue

                payload = line[len("data:"):].strip()
                if event == "complete":
                    return json.loads(payload) if payload else []
                if event == "error":
                    raise SpaceCallError(f"/{name} on {self.space_id} failed: {payload or 'unknown error'}")

        raise SpaceCallError(f"Event stream for /{name} on {self.space_id} ended without a result")
