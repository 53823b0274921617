import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from meshflow.core.types import FilePayload, OperationContext, PredictionResult, SavedArtifact


class FakeSpaceClient:
    """In-memory stand-in for a space: scripted responses per endpoint."""

    def __init__(self, endpoints=(), responses=None, probe_error=None):
        self.endpoints = set(endpoints)
        self.responses = {name: list(items) for name, items in (responses or {}).items()}
        self.probe_error = probe_error
        self.calls = []
        self.probes = 0

    async def list_endpoints(self):
        self.probes += 1
        if self.probe_error is not None:
            raise self.probe_error
        return set(self.endpoints)

    async def predict(self, endpoint, args):
        self.calls.append((endpoint, list(args)))
        queue = self.responses[endpoint]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def endpoints_called(self):
        return [endpoint for endpoint, _ in self.calls]


class RecordingWriter:
    """Artifact writer that records calls into a shared event log."""

    def __init__(self, root, events):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.events = events
        self.saved = []

    async def __call__(self, payload, base_name, extension, tool_name, assets_dir,
                       auth_token, space_id, work_dir):
        label = f"{base_name}.{extension}"
        path = self.root / f"{tool_name}_{base_name}_{len(self.saved)}.{extension}"
        data = payload.data if isinstance(payload, FilePayload) else b"payload"
        path.write_bytes(data)
        self.saved.append((payload, base_name, extension))
        self.events.append(("save", label))
        return SavedArtifact(file_path=str(path), label=label)


def mesh(url):
    return {"url": url, "path": f"/tmp/gradio/{url.rsplit('/', 1)[-1]}", "meta": {"_type": "gradio.FileData"}}


def result(*slots):
    return PredictionResult(data=list(slots))


@pytest.fixture
def events():
    return []


@pytest.fixture
def writer(tmp_path, events):
    return RecordingWriter(tmp_path / "out", events)


@pytest.fixture
def notify(events):
    def _notify():
        events.append(("notify",))
    return _notify


@pytest.fixture
def delays():
    return []


@pytest.fixture
def fake_sleep(delays):
    async def _sleep(delay):
        delays.append(delay)
    return _sleep


@pytest.fixture
def context(tmp_path):
    return OperationContext(
        operation_id="op-123",
        tool_name="generate_3d_model",
        work_dir=str(tmp_path),
        assets_dir=str(tmp_path / "assets"),
        auth_token="hf_test",
        space_id="tencent/Hunyuan3D-2",
    )


@pytest.fixture
def image_bytes():
    return b"\x89PNG\r\n\x1a\nfake-image"
