import asyncio
import logging
import threading

import pytest

from conftest import FakeSpaceClient, mesh, result
from meshflow.core.errors import DiagnosticWriteFailed, GenerationFailed, NoValidMeshFound, RemoteOperationFailed
from meshflow.core.types import FilePayload, GenerationParameters, GenerationRequest
from meshflow.spaces import base
from meshflow.spaces.hunyuan3d import Hunyuan3DWorkflow, resolve_parameters


WHITE = mesh("https://space.example/white.glb")
TEXTURED = mesh("https://space.example/textured.glb")


def make_workflow(client, writer, notify=None, fake_sleep=None, **kwargs):
    return Hunyuan3DWorkflow(client, save_file=writer, notify=notify, sleep=fake_sleep, base_delay=0.01, **kwargs)


def run(workflow, context, image, **params):
    request = GenerationRequest(image=image, prompt="a red chair", parameters=GenerationParameters(**params))
    return asyncio.run(workflow.run(request, context))


def generation_args(client):
    calls = [args for endpoint, args in client.calls if endpoint == "/generation_all"]
    return calls[-1]


@pytest.mark.parametrize(
    "steps, expected",
    [(5, 20), (None, 20), (20, 20), (35, 35), (50, 50), (80, 50), ("42", 42), ("junk", 20)],
)
def test_steps_are_clamped_into_space_range(steps, expected):
    assert resolve_parameters(GenerationParameters(steps=steps)).steps == expected


@pytest.mark.parametrize(
    "resolution, expected",
    [("384", "384"), (512, "512"), ("1024", "256"), (None, "256"), ("", "256")],
)
def test_octree_resolution_falls_back_to_default(resolution, expected):
    assert resolve_parameters(GenerationParameters(octree_resolution=resolution)).octree_resolution == expected


def test_guidance_and_seed_defaults_and_bounds():
    defaults = resolve_parameters(GenerationParameters())
    assert defaults.guidance_scale == 5.5
    assert defaults.seed == 1234

    clamped = resolve_parameters(GenerationParameters(guidance_scale=250.0, seed=-7))
    assert clamped.guidance_scale == 100.0
    assert clamped.seed == 0

    clamped = resolve_parameters(GenerationParameters(guidance_scale=-1.0, seed=99999999))
    assert clamped.guidance_scale == 0.0
    assert clamped.seed == 10000000


def test_generation_call_uses_clamped_parameters(writer, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED, "<html/>", "<html/>")]})
    run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes,
        steps=5, guidance_scale=7.0, seed=99, octree_resolution="384", remove_background=False)

    prompt, image, steps, guidance, seed, octree, remove_background = generation_args(client)
    assert prompt == "a red chair"
    assert isinstance(image, FilePayload)
    assert image.data == image_bytes
    assert (steps, guidance, seed, octree, remove_background) == (20, 7.0, 99, "384", False)


def test_textured_mesh_backs_both_formats(writer, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED, "<html/>", "<html/>")]})
    pair = run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)

    mesh_saves = [(payload, ext) for payload, name, ext in writer.saved if name == "3d_model"]
    assert mesh_saves == [(TEXTURED, "obj"), (TEXTURED, "glb")]
    assert pair.obj.label == "3d_model.obj"
    assert pair.glb.label == "3d_model.glb"


def test_missing_textured_mesh_falls_back_to_white_mesh(writer, context, image_bytes, fake_sleep, caplog):
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE)]})
    with caplog.at_level(logging.WARNING, logger="meshflow"):
        run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)

    mesh_saves = [payload for payload, name, _ in writer.saved if name == "3d_model"]
    assert mesh_saves == [WHITE, WHITE]
    assert any("falling back to white mesh" in record.message for record in caplog.records)


def test_textured_slot_without_url_falls_back(writer, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, {"path": "/tmp/x.glb"})]})
    run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)

    assert [payload for payload, name, _ in writer.saved if name == "3d_model"] == [WHITE, WHITE]


def test_no_usable_mesh_raises_without_persisting_meshes(writer, events, notify, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [result({"path": "a"}, {"path": "b"})]})

    with pytest.raises(NoValidMeshFound) as excinfo:
        run(make_workflow(client, writer, notify=notify, fake_sleep=fake_sleep), context, image_bytes)

    assert excinfo.value.operation_id == "op-123"
    assert [name for _, name, _ in writer.saved] == ["3d_processed"]
    assert events == [("save", "3d_processed.png"), ("notify",)]


def test_empty_response_raises_generation_failed(writer, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [result()]})

    with pytest.raises(GenerationFailed):
        run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)


def test_notifications_follow_each_write_in_order(writer, events, notify, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED)]})
    run(make_workflow(client, writer, notify=notify, fake_sleep=fake_sleep), context, image_bytes)

    assert events == [
        ("save", "3d_processed.png"),
        ("notify",),
        ("save", "3d_model.obj"),
        ("notify",),
        ("save", "3d_model.glb"),
        ("notify",),
    ]


def test_async_notify_is_awaited(writer, context, image_bytes, fake_sleep):
    calls = []

    async def notify():
        calls.append(True)

    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED)]})
    run(make_workflow(client, writer, notify=notify, fake_sleep=fake_sleep), context, image_bytes)

    assert len(calls) == 3


def test_validation_and_preprocess_are_skipped(writer, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED)]})
    run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)

    assert client.endpoints_called() == ["/generation_all"]
    processed_payload, name, ext = writer.saved[0]
    assert (name, ext) == ("3d_processed", "png")
    assert processed_payload.data == image_bytes


def test_generation_gets_elevated_retry_ceiling(writer, context, image_bytes, fake_sleep, delays):
    failures = [RuntimeError("queue full")] * 4
    client = FakeSpaceClient(responses={"/generation_all": failures + [result(WHITE, TEXTURED)]})
    workflow = make_workflow(client, writer, fake_sleep=fake_sleep, retry_attempts=2, generation_retry_attempts=5)

    run(workflow, context, image_bytes)

    assert len(client.calls) == 5
    assert len(delays) == 4


def test_generation_exhaustion_surfaces_remote_failure(writer, context, image_bytes, fake_sleep):
    client = FakeSpaceClient(responses={"/generation_all": [RuntimeError("space sleeping")]})
    workflow = make_workflow(client, writer, fake_sleep=fake_sleep, generation_retry_attempts=3)

    with pytest.raises(RemoteOperationFailed) as excinfo:
        run(workflow, context, image_bytes)

    assert excinfo.value.attempts == 3
    assert len(client.calls) == 3


def test_debug_snapshot_is_written(writer, context, image_bytes, fake_sleep, tmp_path):
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED)]})
    run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)

    assert len(list((tmp_path / "assets").glob("model_data_*.json"))) == 1


def test_debug_snapshot_is_written_off_the_event_loop(writer, context, image_bytes, fake_sleep, monkeypatch):
    threads = []

    def recording_snapshot(result, assets_dir, work_dir=None):
        threads.append(threading.get_ident())
        return "model_data.json"

    monkeypatch.setattr(base, "write_debug_snapshot", recording_snapshot)
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED)]})

    run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)

    assert len(threads) == 1
    assert threads[0] != threading.get_ident()


def test_debug_snapshot_failure_does_not_fail_run(writer, context, image_bytes, fake_sleep, monkeypatch):
    def broken_snapshot(*args, **kwargs):
        raise DiagnosticWriteFailed("disk full")

    monkeypatch.setattr(base, "write_debug_snapshot", broken_snapshot)
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED)]})

    pair = run(make_workflow(client, writer, fake_sleep=fake_sleep), context, image_bytes)

    assert pair.glb.label == "3d_model.glb"


def test_image_path_input_is_read_from_disk(writer, context, image_bytes, fake_sleep, tmp_path):
    image_path = tmp_path / "photo.png"
    image_path.write_bytes(image_bytes)
    client = FakeSpaceClient(responses={"/generation_all": [result(WHITE, TEXTURED)]})

    run(make_workflow(client, writer, fake_sleep=fake_sleep), context, str(image_path))

    assert generation_args(client)[1].data == image_bytes
