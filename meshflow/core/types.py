"""Data contracts shared by the engine, the space adapters and the storage layer.

Architectural role:
    Defines the request, context and result shapes that flow through one
    generation run. Space-specific result projections live next to their adapter
    in `meshflow.spaces`.

Determinism:
    The data classes are purely structural and state-free.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Step(str, Enum):
    """Optional workflow steps a space may expose."""

    VALIDATE = "validate"
    PREPROCESS = "preprocess"


@dataclass(frozen=True)
class GenerationParameters:
    """User-facing generation knobs.

    `None` means "use the space default". Every field is clamped or defaulted by
    the adapter before it reaches a remote call.
    """

    steps: int | None = None
    guidance_scale: float | None = None
    seed: int | None = None
    octree_resolution: str | None = None
    remove_background: bool = True


@dataclass(frozen=True)
class FilePayload:
    """Raw file content handed to `predict` as an upload."""

    data: bytes
    filename: str = "image.png"
    mime_type: str = "image/png"


@dataclass(frozen=True)
class GenerationRequest:
    """One image-to-3D invocation.

    Attributes:
        image: Input image bytes or a local path to the image file.
        prompt: Optional text prompt forwarded to spaces that accept one.
        parameters: Unclamped generation parameters.
    """

    image: bytes | str | Path
    prompt: str = ""
    parameters: GenerationParameters = field(default_factory=GenerationParameters)


@dataclass(frozen=True)
class OperationContext:
    """Correlation and storage identifiers threaded through every step."""

    operation_id: str
    tool_name: str
    work_dir: str
    assets_dir: str
    auth_token: str | None = None
    space_id: str | None = None


@dataclass(frozen=True)
class PredictionResult:
    """Raw response of one prediction call: ordered, positionally typed slots."""

    data: list[Any] = field(default_factory=list)

    def slot(self, index: int) -> Any:
        """Return slot `index`, or `None` when the response is shorter."""
        if 0 <= index < len(self.data):
            return self.data[index]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"data": list(self.data)}


@dataclass(frozen=True)
class SavedArtifact:
    """A persisted file and the label it was saved under."""

    file_path: str
    label: str


@dataclass(frozen=True)
class MeshArtifactPair:
    """Canonical output of a run: one OBJ and one GLB file."""

    obj: SavedArtifact
    glb: SavedArtifact
