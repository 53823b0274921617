"""Local persistence of generated artifacts and debug snapshots.

Processing flow (`save_file_from_data`):
    1. Resolve the assets directory (relative paths are anchored at `work_dir`).
    2. Materialize the payload as bytes: raw bytes, `FilePayload`, local path,
       http(s) URL, or a space result slot carrying `url` or `path`.
    3. Write `<tool_name>_<base_name>_<epoch_ms>_<suffix>.<extension>` in
       exclusive-create mode and return its path. The random suffix keeps
       concurrent runs from sharing a file.

Remote payloads:
    URLs are downloaded with `httpx`. The auth token is sent as a bearer token
    only to Hugging Face hosts and the configured space host; file URLs are
    taken from remote responses and may point anywhere.

Error handling strategy:
    - Unusable payloads and failed downloads raise `ArtifactWriteError`.
    - `write_debug_snapshot` converts every failure into `DiagnosticWriteFailed`
      so callers can absorb it at a single boundary.

Side effects:
    Creates the assets directory when missing and writes files into it. Blocking
    filesystem work runs in a worker thread via `asyncio.to_thread`.
"""

import asyncio
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from meshflow import config
from meshflow.core.errors import ArtifactWriteError, DiagnosticWriteFailed
from meshflow.core.types import FilePayload, SavedArtifact


logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 120.0
TOKEN_HOSTS = ("huggingface.co",)
TOKEN_HOST_SUFFIXES = (".huggingface.co", ".hf.space")


def resolve_assets_dir(assets_dir: str | Path, work_dir: str | None = None) -> Path:
    """Return an absolute assets directory, anchoring relative paths at `work_dir`."""
    path = Path(assets_dir)
    if not path.is_absolute() and work_dir:
        path = Path(work_dir) / path
    return path.resolve()


def _is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
        return parsed.scheme in {"http", "https"} and bool(parsed.netloc)
    except Exception:
        return False


def _unique_stem(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def token_allowed_for(url: str) -> bool:
    """Return whether the bearer token may be sent to `url`."""
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return False
    if host in TOKEN_HOSTS or host.endswith(TOKEN_HOST_SUFFIXES):
        return True
    if config.SPACE_BASE_URL:
        return host == (urlparse(config.SPACE_BASE_URL).hostname or "").lower()
    return False


async def _download(url: str, auth_token: str | None, http_client: httpx.AsyncClient | None) -> bytes:
    headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}

    try:
        if http_client is not None:
            response = await http_client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(
                timeout=DOWNLOAD_TIMEOUT_SECONDS,
                follow_redirects=True,
            ) as client:
                response = await client.get(url, headers=headers)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise ArtifactWriteError(f"Download failed for {url}: {exc}") from exc

    return response.content


async def _fetch(url: str, auth_token: str | None, http_client: httpx.AsyncClient | None) -> bytes:
    if auth_token and not token_allowed_for(url):
        logger.debug("Not forwarding credentials to %s", urlparse(url).hostname)
        auth_token = None
    return await _download(url, auth_token, http_client)


async def _read_local(path: str | Path) -> bytes:
    try:
        return await asyncio.to_thread(Path(path).read_bytes)
    except OSError as exc:
        raise ArtifactWriteError(f"Cannot read local file {path}: {exc}") from exc


async def load_payload_bytes(
    payload: Any,
    auth_token: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> bytes:
    """Materialize any supported payload kind as bytes.

    Args:
        payload: Raw bytes, `FilePayload`, `Path`, path or URL string, or a
            result slot dict with `url` (preferred) or `path`.
        auth_token: Optional bearer token for URL downloads on trusted hosts.
        http_client: Optional `httpx.AsyncClient` to reuse for downloads.

    Returns:
        Payload content as bytes.

    Raises:
        ArtifactWriteError: For unsupported payloads or I/O failures.
    """
    if isinstance(payload, FilePayload):
        return payload.data

    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)

    if isinstance(payload, Path):
        return await _read_local(payload)

    if isinstance(payload, str):
        if _is_http_url(payload):
            return await _fetch(payload, auth_token, http_client)
        return await _read_local(payload)

    if isinstance(payload, dict):
        url = payload.get("url")
        if url:
            return await _fetch(url, auth_token, http_client)
        path = payload.get("path")
        if path and os.path.exists(path):
            return await _read_local(path)

    raise ArtifactWriteError(f"Unsupported payload type for persistence: {type(payload).__name__}")


async def save_file_from_data(
    payload: Any,
    base_name: str,
    extension: str,
    tool_name: str,
    assets_dir: str,
    auth_token: str | None = None,
    space_id: str | None = None,
    work_dir: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SavedArtifact:
    """Persist one payload into the assets directory.

    Args:
        payload: Any kind accepted by `load_payload_bytes`.
        base_name: Logical artifact name, for example `3d_model`.
        extension: File extension without the dot.
        tool_name: Prefix identifying the producing tool.
        assets_dir: Target directory (absolute, or relative to `work_dir`).
        auth_token: Optional bearer token for URL downloads.
        space_id: Space the payload came from; used in logs only.
        work_dir: Anchor for relative `assets_dir` values.
        http_client: Optional shared `httpx.AsyncClient`.

    Returns:
        `SavedArtifact` whose label is `<base_name>.<extension>`.

    Raises:
        ArtifactWriteError: For unusable payloads, failed downloads, or when the
            target file already exists.
    """
    data = await load_payload_bytes(payload, auth_token=auth_token, http_client=http_client)

    target_dir = resolve_assets_dir(assets_dir, work_dir)
    file_path = target_dir / f"{_unique_stem(f'{tool_name}_{base_name}')}.{extension}"

    def write():
        target_dir.mkdir(parents=True, exist_ok=True)
        with open(file_path, "xb") as handle:
            handle.write(data)

    try:
        await asyncio.to_thread(write)
    except OSError as exc:
        raise ArtifactWriteError(f"Cannot write {file_path}: {exc}") from exc

    logger.debug("Saved %d bytes from %s to %s", len(data), space_id or "input", file_path)
    return SavedArtifact(file_path=str(file_path), label=f"{base_name}.{extension}")


def write_debug_snapshot(result: Any, assets_dir: str, work_dir: str | None = None) -> str:
    """Serialize a raw prediction result to `model_data_<epoch_ms>_<suffix>.json`.

    Values that JSON cannot encode are written as their string form. Blocking;
    async callers run it through `asyncio.to_thread`.

    Returns:
        Path of the written snapshot.

    Raises:
        DiagnosticWriteFailed: On any serialization or filesystem failure.
    """
    try:
        target_dir = resolve_assets_dir(assets_dir, work_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        snapshot_path = target_dir / f"{_unique_stem('model_data')}.json"
        body = result.to_dict() if hasattr(result, "to_dict") else result
        with open(snapshot_path, "x", encoding="utf-8") as handle:
            handle.write(json.dumps(body, indent=2, default=str))
    except Exception as exc:
        raise DiagnosticWriteFailed(f"Debug snapshot could not be written: {exc}") from exc
    return str(snapshot_path)
