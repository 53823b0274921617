"""Space dispatch for image-to-3D generation runs.

Role in pipeline:
    - Detects which space is active by probing its endpoint list.
    - Selects the matching adapter from `WORKFLOWS`.
    - Runs the adapter and returns its `MeshArtifactPair` unchanged.

Detection order:
    1. Endpoint probe: the first adapter whose required endpoints are all exposed.
    2. Space id hint: when probing fails or matches nothing, the configured space
       id is compared with each adapter's known names.
    3. Otherwise `UnsupportedSpace`.
    The chosen adapter is cached for the lifetime of the engine instance.

Error handling strategy:
    Adapter exceptions propagate unchanged so callers see the original error kind
    and operation id. Only probe failures are caught (and logged) because the
    space-id fallback can still resolve the adapter.

Concurrency:
    One engine can serve concurrent requests; all per-run state lives in the
    adapter call frame.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any

from meshflow import config
from meshflow.core.errors import UnsupportedSpace
from meshflow.core.types import GenerationParameters, GenerationRequest, MeshArtifactPair, OperationContext
from meshflow.spaces.base import Notify, SaveFile, SpaceWorkflow
from meshflow.spaces.client import GradioSpaceClient, SpaceClient
from meshflow.spaces.hunyuan3d import Hunyuan3DWorkflow
from meshflow.spaces.instantmesh import InstantMeshWorkflow
from meshflow.storage.artifacts import save_file_from_data


logger = logging.getLogger(__name__)

WORKFLOWS = (Hunyuan3DWorkflow, InstantMeshWorkflow)


class WorkflowEngine:
    """Route generation requests to the adapter of the active space."""

    def __init__(
        self,
        client: SpaceClient,
        space_id: str | None = None,
        save_file: SaveFile = save_file_from_data,
        notify: Notify | None = None,
        workflows: Iterable[type[SpaceWorkflow]] = WORKFLOWS,
        retry_attempts: int | None = None,
        generation_retry_attempts: int | None = None,
        base_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.space_id = space_id
        self.save_file = save_file
        self.notify = notify
        self.workflows = tuple(workflows)
        self.retry_attempts = retry_attempts
        self.generation_retry_attempts = generation_retry_attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self._workflow_class: type[SpaceWorkflow] | None = None

    async def detect_workflow(self, operation_id: str | None = None) -> type[SpaceWorkflow]:
        """Return the adapter class serving the active space."""
        if self._workflow_class is not None:
            return self._workflow_class

        endpoints: set[str] = set()
        try:
            endpoints = await self.client.list_endpoints()
        except Exception:
            logger.exception("[%s] Endpoint probe failed for %s", operation_id, self.space_id)

        workflow_class = next(
            (workflow for workflow in self.workflows if workflow.matches_endpoints(endpoints)),
            None,
        )
        if workflow_class is None:
            workflow_class = next(
                (workflow for workflow in self.workflows if workflow.matches_space(self.space_id)),
                None,
            )
            if workflow_class is not None:
                logger.warning(
                    "[%s] Endpoint probe did not identify %s, matched %s by space id",
                    operation_id,
                    self.space_id,
                    workflow_class.name,
                )

        if workflow_class is None:
            raise UnsupportedSpace(
                f"No workflow supports space {self.space_id!r} (endpoints: {sorted(endpoints)})",
                operation_id,
            )

        self._workflow_class = workflow_class
        return workflow_class

    def build_workflow(self, workflow_class: type[SpaceWorkflow]) -> SpaceWorkflow:
        return workflow_class(
            self.client,
            save_file=self.save_file,
            notify=self.notify,
            retry_attempts=self.retry_attempts,
            generation_retry_attempts=self.generation_retry_attempts,
            base_delay=self.base_delay,
            sleep=self.sleep,
        )

    async def generate(self, request: GenerationRequest, context: OperationContext) -> MeshArtifactPair:
        """Run one request on the detected space.

        Returns:
            `MeshArtifactPair` with the persisted OBJ and GLB files.

        Raises:
            Any `WorkflowError` raised by detection or by the adapter, unchanged.
        """
        workflow_class = await self.detect_workflow(context.operation_id)
        logger.info("[%s] Dispatching to %s workflow", context.operation_id, workflow_class.name)
        workflow = self.build_workflow(workflow_class)
        return await workflow.run(request, context)


async def generate_3d_model(
    image: bytes | str | Path,
    prompt: str = "",
    parameters: GenerationParameters | None = None,
    client: SpaceClient | None = None,
    notify: Notify | None = None,
    operation_id: str | None = None,
    tool_name: str = "generate_3d_model",
    assets_dir: str | None = None,
    work_dir: str | None = None,
) -> MeshArtifactPair:
    """Generate an OBJ/GLB pair from one image using configured defaults.

    Args:
        image: Input image bytes or local path.
        prompt: Optional text prompt.
        parameters: `GenerationParameters`; loaded from the environment when
            omitted.
        client: Space client; a `GradioSpaceClient` for `config.MODEL_SPACE` is
            built when omitted.
        notify: Optional callback fired after each persisted artifact.
        operation_id: Correlation id; a random one is generated when omitted.
        tool_name: Prefix for persisted file names.
        assets_dir: Output directory; defaults to `config.ASSETS_DIR`.
        work_dir: Working directory; defaults to `config.WORK_DIR`.

    Returns:
        `MeshArtifactPair`.
    """
    if parameters is None:
        parameters = config.load_generation_parameters()

    if client is None:
        client = GradioSpaceClient(
            config.MODEL_SPACE,
            hf_token=config.HF_TOKEN,
            base_url=config.SPACE_BASE_URL,
            api_prefix=config.SPACE_API_PREFIX,
            timeout=config.SPACE_TIMEOUT_SECONDS,
        )

    context = OperationContext(
        operation_id=operation_id or uuid.uuid4().hex,
        tool_name=tool_name,
        work_dir=work_dir or config.WORK_DIR,
        assets_dir=assets_dir or config.ASSETS_DIR,
        auth_token=config.HF_TOKEN,
        space_id=config.MODEL_SPACE,
    )
    request = GenerationRequest(image=image, prompt=prompt, parameters=parameters)

    engine = WorkflowEngine(client, space_id=config.MODEL_SPACE, notify=notify)
    return await engine.generate(request, context)
