"""Hunyuan3D-2 space adapter.

Endpoint surface:
    `/generation_all` only. There is no input-check or preprocess endpoint;
    background removal is a flag of the generation call.

Call contract:
    `/generation_all` args, in order:
        prompt, image, steps, guidance_scale, seed, octree_resolution,
        remove_background

    Result slots, in order:
        0. white (untextured) mesh file
        1. textured mesh file
        2. HTML preview of the white mesh
        3. HTML preview of the textured mesh

Parameter handling:
    - steps: [20, 50], default 20.
    - guidance_scale: [0.0, 100.0], default 5.5.
    - seed: [0, 10000000], default 1234.
    - octree_resolution: one of "256", "384", "512", default "256".

Mesh selection:
    The textured mesh backs both OBJ and GLB. When it is missing the white mesh
    is used for both and a warning is logged.
"""

import logging
from dataclasses import dataclass
from typing import Any

from meshflow import config
from meshflow.core.params import resolve_choice, resolve_float, resolve_int
from meshflow.core.types import (
    FilePayload,
    GenerationParameters,
    GenerationRequest,
    OperationContext,
    PredictionResult,
)
from meshflow.spaces.base import MeshSelection, MeshSlot, SpaceWorkflow


logger = logging.getLogger(__name__)

STEPS_RANGE = (20, 50)
DEFAULT_STEPS = 20
DEFAULT_GUIDANCE_SCALE = 5.5
DEFAULT_SEED = 1234
OCTREE_RESOLUTIONS = ("256", "384", "512")
DEFAULT_OCTREE_RESOLUTION = "256"


@dataclass(frozen=True)
class Hunyuan3DParameters:
    steps: int
    guidance_scale: float
    seed: int
    octree_resolution: str
    remove_background: bool


@dataclass(frozen=True)
class Hunyuan3DOutput:
    """Named view of a `/generation_all` response."""

    white_mesh: MeshSlot | None
    textured_mesh: MeshSlot | None
    previews: tuple[Any, ...] = ()

    @classmethod
    def from_result(cls, result: PredictionResult) -> "Hunyuan3DOutput":
        return cls(
            white_mesh=MeshSlot.from_slot(result.slot(0)),
            textured_mesh=MeshSlot.from_slot(result.slot(1)),
            previews=tuple(result.data[2:4]),
        )


def resolve_parameters(parameters: GenerationParameters) -> Hunyuan3DParameters:
    """Clamp or default every generation parameter for Hunyuan3D-2."""
    return Hunyuan3DParameters(
        steps=resolve_int(parameters.steps, *STEPS_RANGE, DEFAULT_STEPS),
        guidance_scale=resolve_float(parameters.guidance_scale, *config.GUIDANCE_SCALE_RANGE, DEFAULT_GUIDANCE_SCALE),
        seed=resolve_int(parameters.seed, *config.SEED_RANGE, DEFAULT_SEED),
        octree_resolution=resolve_choice(parameters.octree_resolution, OCTREE_RESOLUTIONS, DEFAULT_OCTREE_RESOLUTION),
        remove_background=bool(parameters.remove_background),
    )


class Hunyuan3DWorkflow(SpaceWorkflow):
    """Single-call image-to-3D generation on Hunyuan3D-2."""

    name = "Hunyuan3D-2"
    required_endpoints = frozenset({"/generation_all"})
    space_hints = ("hunyuan3d",)
    capabilities = frozenset()

    async def generate(
        self, image: FilePayload, request: GenerationRequest, context: OperationContext
    ) -> PredictionResult:
        params = resolve_parameters(request.parameters)
        logger.info(
            "[%s] Hunyuan3D-2 parameters - steps: %s, guidance_scale: %s, seed: %s, "
            "octree_resolution: %s, remove_background: %s",
            context.operation_id,
            params.steps,
            params.guidance_scale,
            params.seed,
            params.octree_resolution,
            params.remove_background,
        )

        return await self.call(
            "/generation_all",
            [
                request.prompt,
                image,
                params.steps,
                params.guidance_scale,
                params.seed,
                params.octree_resolution,
                params.remove_background,
            ],
            context,
            critical=True,
        )

    def select_meshes(self, result: PredictionResult, context: OperationContext) -> MeshSelection:
        output = Hunyuan3DOutput.from_result(result)

        if output.textured_mesh is not None:
            logger.debug("[%s] Using textured mesh for both OBJ and GLB", context.operation_id)
            return MeshSelection(obj=output.textured_mesh, glb=output.textured_mesh)

        logger.warning("[%s] Textured mesh not found in the response, falling back to white mesh", context.operation_id)
        if output.white_mesh is None:
            raise self.no_mesh(context)

        logger.debug("[%s] Using white mesh for both OBJ and GLB", context.operation_id)
        return MeshSelection(obj=output.white_mesh, glb=output.white_mesh, used_fallback=True)
