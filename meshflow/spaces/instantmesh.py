"""InstantMesh space adapter.

Endpoint surface and call contract:
    1. `/check_input_image` args: image. Raises remotely on unusable input.
    2. `/preprocess` args: image, remove_background.
       Result slot 0: processed (background-removed) image.
    3. `/generate_mvs` args: image, steps, seed.
       Result slot 0: multi-view image grid.
    4. `/make3d` args: multi-view image.
       Result slots: 0 = OBJ mesh, 1 = GLB mesh.

Parameter handling:
    - steps: [30, 75], default 75.
    - seed: [0, 10000000], default 42.
    - guidance_scale and octree_resolution are not used by this space.

Mesh selection:
    The GLB slot carries the textured mesh and backs both OBJ and GLB. When it is
    missing the OBJ slot is used for both and a warning is logged.
"""

import logging
from dataclasses import dataclass
from typing import Any

from meshflow import config
from meshflow.core.params import resolve_int
from meshflow.core.types import FilePayload, GenerationRequest, OperationContext, PredictionResult, Step
from meshflow.spaces.base import MeshSelection, MeshSlot, SpaceWorkflow


logger = logging.getLogger(__name__)

STEPS_RANGE = (30, 75)
DEFAULT_STEPS = 75
DEFAULT_SEED = 42


@dataclass(frozen=True)
class InstantMeshOutput:
    """Named view of a `/make3d` response."""

    obj_mesh: MeshSlot | None
    glb_mesh: MeshSlot | None

    @classmethod
    def from_result(cls, result: PredictionResult) -> "InstantMeshOutput":
        return cls(
            obj_mesh=MeshSlot.from_slot(result.slot(0)),
            glb_mesh=MeshSlot.from_slot(result.slot(1)),
        )


class InstantMeshWorkflow(SpaceWorkflow):
    """Validate, remove background, render multi-view, then reconstruct."""

    name = "InstantMesh"
    required_endpoints = frozenset({"/generate_mvs", "/make3d"})
    space_hints = ("instantmesh",)
    capabilities = frozenset({Step.VALIDATE, Step.PREPROCESS})

    async def validate(self, image: FilePayload, request: GenerationRequest, context: OperationContext) -> None:
        logger.debug("[%s] Validating input image", context.operation_id)
        await self.call("/check_input_image", [image], context)

    async def preprocess(self, image: FilePayload, request: GenerationRequest, context: OperationContext) -> Any:
        remove_background = bool(request.parameters.remove_background)
        logger.debug("[%s] Preprocessing image (remove_background=%s)", context.operation_id, remove_background)

        result = await self.call("/preprocess", [image, remove_background], context)
        processed = result.slot(0) if result is not None else None
        if not processed:
            raise self.generation_failed(context, "/preprocess")
        return processed

    async def generate(
        self, image: FilePayload, request: GenerationRequest, context: OperationContext
    ) -> PredictionResult:
        steps = resolve_int(request.parameters.steps, *STEPS_RANGE, DEFAULT_STEPS)
        seed = resolve_int(request.parameters.seed, *config.SEED_RANGE, DEFAULT_SEED)
        logger.info("[%s] InstantMesh parameters - steps: %s, seed: %s", context.operation_id, steps, seed)

        views = await self.call("/generate_mvs", [image, steps, seed], context, critical=True)
        self.require_payload(views, context, "/generate_mvs")
        multiview = views.slot(0)
        if not multiview:
            raise self.generation_failed(context, "/generate_mvs")

        logger.debug("[%s] Multi-view image ready, reconstructing mesh", context.operation_id)
        return await self.call("/make3d", [multiview], context, critical=True)

    def select_meshes(self, result: PredictionResult, context: OperationContext) -> MeshSelection:
        output = InstantMeshOutput.from_result(result)

        if output.glb_mesh is not None:
            logger.debug("[%s] Using GLB mesh for both OBJ and GLB", context.operation_id)
            return MeshSelection(obj=output.glb_mesh, glb=output.glb_mesh)

        logger.warning("[%s] GLB mesh not found in the response, falling back to OBJ mesh", context.operation_id)
        if output.obj_mesh is None:
            raise self.no_mesh(context)

        logger.debug("[%s] Using OBJ mesh for both OBJ and GLB", context.operation_id)
        return MeshSelection(obj=output.obj_mesh, glb=output.obj_mesh, used_fallback=True)
