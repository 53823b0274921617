"""Shared step sequence for space adapters.

Control-flow model (`SpaceWorkflow.run`):
    1. Validate the input image (only when the space declares `Step.VALIDATE`).
    2. Preprocess the image (only with `Step.PREPROCESS`); otherwise the raw input
       is stored as the processed image. One notification follows this write.
    3. Generate through the subclass, with the elevated retry ceiling.
    4. Write a best-effort debug snapshot of the raw response.
    5. Project the positional response onto named fields and select the mesh
       for each canonical format, falling back when the preferred slot is empty.
    6. Persist OBJ, notify, persist GLB, notify.

Subclass contract:
    - `name`, `required_endpoints`, `space_hints`, `capabilities`.
    - `validate`, `preprocess` for declared capabilities.
    - `generate` returning the final `PredictionResult`.
    - `select_meshes` mapping that result to a `MeshSelection`.

Error handling strategy:
    Remote failures surface as `RemoteOperationFailed` after retries; empty
    responses raise `GenerationFailed`; missing meshes raise `NoValidMeshFound`
    before anything is persisted. Snapshot failures are logged and absorbed.
"""

import asyncio
import inspect
import logging
import mimetypes
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from meshflow import config
from meshflow.core.errors import DiagnosticWriteFailed, GenerationFailed, NoValidMeshFound
from meshflow.core.retry import retry_with_backoff
from meshflow.core.types import (
    FilePayload,
    GenerationRequest,
    MeshArtifactPair,
    OperationContext,
    PredictionResult,
    SavedArtifact,
    Step,
)
from meshflow.spaces.client import SpaceClient
from meshflow.storage.artifacts import save_file_from_data, write_debug_snapshot


logger = logging.getLogger(__name__)

SaveFile = Callable[..., Awaitable[SavedArtifact]]
Notify = Callable[[], Any]

PROCESSED_IMAGE_NAME = "3d_processed"
MODEL_NAME = "3d_model"


@dataclass(frozen=True)
class MeshSlot:
    """A result slot that carries a downloadable file reference."""

    url: str
    payload: dict

    @classmethod
    def from_slot(cls, slot: Any) -> "MeshSlot | None":
        """Return a `MeshSlot` for a usable slot, or `None`."""
        if not isinstance(slot, dict):
            return None
        url = slot.get("url")
        if not url:
            return None
        return cls(url=url, payload=slot)


@dataclass(frozen=True)
class MeshSelection:
    """Slots chosen for the two canonical formats."""

    obj: MeshSlot
    glb: MeshSlot
    used_fallback: bool = False


def _guess_mime_type(filename: str) -> str:
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or "image/png"


async def load_input_image(image: FilePayload | bytes | str | Path) -> FilePayload:
    """Wrap request image bytes or a local path as a `FilePayload`."""
    if isinstance(image, FilePayload):
        return image
    if isinstance(image, (bytes, bytearray)):
        return FilePayload(data=bytes(image), filename="input.png", mime_type="image/png")

    path = Path(image)
    data = await asyncio.to_thread(path.read_bytes)
    return FilePayload(data=data, filename=path.name, mime_type=_guess_mime_type(path.name))


class SpaceWorkflow:
    """Base adapter: one space's capabilities, parameters and result shape."""

    name = "space"
    required_endpoints: frozenset[str] = frozenset()
    space_hints: tuple[str, ...] = ()
    capabilities: frozenset[Step] = frozenset()

    def __init__(
        self,
        client: SpaceClient,
        save_file: SaveFile = save_file_from_data,
        notify: Notify | None = None,
        retry_attempts: int | None = None,
        generation_retry_attempts: int | None = None,
        base_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = asyncio.sleep,
    ) -> None:
        self.client = client
        self.save_file = save_file
        self.notify = notify
        self.retry_attempts = retry_attempts if retry_attempts is not None else config.RETRY_ATTEMPTS
        self.generation_retry_attempts = (
            generation_retry_attempts
            if generation_retry_attempts is not None
            else config.GENERATION_RETRY_ATTEMPTS
        )
        self.base_delay = base_delay
        self.sleep = sleep or asyncio.sleep

    @classmethod
    def matches_endpoints(cls, endpoints: set[str]) -> bool:
        """Return whether every required endpoint is among `endpoints`."""
        available = {"/" + str(endpoint).strip().lstrip("/") for endpoint in endpoints}
        return bool(cls.required_endpoints) and cls.required_endpoints <= available

    @classmethod
    def matches_space(cls, space_id: str | None) -> bool:
        """Return whether a space id looks like one this adapter serves."""
        if not space_id:
            return False
        lowered = space_id.lower()
        return any(hint in lowered for hint in cls.space_hints)

    def supports(self, step: Step) -> bool:
        return step in self.capabilities

    async def call(
        self,
        endpoint: str,
        args: list[Any],
        context: OperationContext,
        critical: bool = False,
    ) -> PredictionResult:
        """Run one prediction through the backoff executor."""
        attempts = self.generation_retry_attempts if critical else self.retry_attempts
        return await retry_with_backoff(
            lambda: self.client.predict(endpoint, args),
            context.operation_id,
            max_attempts=attempts,
            base_delay=self.base_delay,
            sleep=self.sleep,
        )

    def generation_failed(self, context: OperationContext, step_name: str) -> GenerationFailed:
        return GenerationFailed(f"3D model generation failed: {step_name} returned no data", context.operation_id)

    def require_payload(
        self, result: PredictionResult | None, context: OperationContext, step_name: str
    ) -> PredictionResult:
        """Raise `GenerationFailed` when a generation response has no slots."""
        if result is None or not getattr(result, "data", None):
            raise self.generation_failed(context, step_name)
        return result

    async def run(self, request: GenerationRequest, context: OperationContext) -> MeshArtifactPair:
        """Execute the full workflow and return the canonical mesh pair."""
        operation_id = context.operation_id
        logger.info("[%s] Using %s space", operation_id, self.name)

        image = await load_input_image(request.image)

        if self.supports(Step.VALIDATE):
            await self.validate(image, request, context)
        else:
            logger.info("[%s] %s has no input validation endpoint, skipping validation", operation_id, self.name)

        if self.supports(Step.PREPROCESS):
            processed_payload = await self.preprocess(image, request, context)
        else:
            logger.info("[%s] %s has no preprocess endpoint, using the input image as processed image", operation_id, self.name)
            processed_payload = image

        processed = await self._save(processed_payload, PROCESSED_IMAGE_NAME, "png", context)
        logger.info("[%s] Processed image saved at: %s", operation_id, processed.file_path)
        await self._notify(context)

        processed_image = await load_input_image(processed.file_path)

        logger.debug("[%s] Generating 3D model with %s", operation_id, self.name)
        result = await self.generate(processed_image, request, context)
        self.require_payload(result, context, self.name)
        logger.debug("[%s] Successfully generated 3D model with %s", operation_id, self.name)

        await self._write_snapshot(result, context)

        selection = self.select_meshes(result, context)

        obj_result = await self._save(selection.obj.payload, MODEL_NAME, "obj", context)
        logger.info("[%s] OBJ model saved at: %s", operation_id, obj_result.file_path)
        await self._notify(context)

        glb_result = await self._save(selection.glb.payload, MODEL_NAME, "glb", context)
        logger.info("[%s] GLB model saved at: %s", operation_id, glb_result.file_path)
        await self._notify(context)

        return MeshArtifactPair(obj=obj_result, glb=glb_result)

    async def validate(self, image: FilePayload, request: GenerationRequest, context: OperationContext) -> None:
        raise NotImplementedError

    async def preprocess(self, image: FilePayload, request: GenerationRequest, context: OperationContext) -> Any:
        raise NotImplementedError

    async def generate(
        self, image: FilePayload, request: GenerationRequest, context: OperationContext
    ) -> PredictionResult:
        raise NotImplementedError

    def select_meshes(self, result: PredictionResult, context: OperationContext) -> MeshSelection:
        raise NotImplementedError

    def no_mesh(self, context: OperationContext) -> NoValidMeshFound:
        return NoValidMeshFound("No valid mesh found in the response", context.operation_id)

    async def _save(self, payload: Any, base_name: str, extension: str, context: OperationContext) -> SavedArtifact:
        return await self.save_file(
            payload,
            base_name,
            extension,
            context.tool_name,
            context.assets_dir,
            context.auth_token,
            context.space_id,
            context.work_dir,
        )

    async def _notify(self, context: OperationContext) -> None:
        if self.notify is None:
            return
        try:
            outcome = self.notify()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("[%s] Resource change notification failed", context.operation_id)

    async def _write_snapshot(self, result: PredictionResult, context: OperationContext) -> None:
        try:
            snapshot_path = await asyncio.to_thread(
                write_debug_snapshot, result, context.assets_dir, context.work_dir
            )
        except DiagnosticWriteFailed as exc:
            logger.warning("[%s] %s", context.operation_id, exc)
            return
        logger.debug("[%s] Model data saved as JSON at: %s", context.operation_id, snapshot_path)
