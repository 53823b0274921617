"""Space/runtime configuration for the generation workflow.

Architectural role:
    Centralizes space selection, credential lookup, retry policy, storage paths,
    and user-supplied generation parameters for `meshflow.core.engine` and
    `meshflow.spaces.client`.

Workflow integration:
    - `engine.generate_3d_model` consumes `MODEL_SPACE`, `HF_TOKEN` and the
      `SPACE_*` transport settings when it has to build its own client.
    - `retry.retry_with_backoff` consumes the `RETRY_*` defaults.
    - `load_generation_parameters` provides the first clamping layer for
      user-supplied `MODEL_3D_*` values; adapters clamp again per space.
    - `configure_logging` is a caller-side utility. The package only emits
      records through `logging.getLogger(__name__)` and never installs handlers;
      the embedding application calls it once at startup to get
      `<work_dir>/meshflow.log`.

Determinism:
    Deterministic for a fixed process environment. Values are resolved at import
    time, except `load_generation_parameters`, which re-reads the environment on
    every call.

Failure behavior:
    Malformed numeric values never raise. They are replaced by `None` (meaning
    "use the space default") or by the documented fallback constant.
"""

import logging
import os
from dotenv import load_dotenv

from meshflow.core.params import clamp_number, parse_bool, parse_float, parse_int
from meshflow.core.types import GenerationParameters

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = parse_int(os.getenv(name))
    return default if value is None else value


def _env_float(name: str, default: float) -> float:
    value = parse_float(os.getenv(name))
    return default if value is None else value


# Active space and credentials.
MODEL_SPACE = os.getenv("MODEL_SPACE", "tencent/Hunyuan3D-2")
HF_TOKEN = os.getenv("HF_TOKEN") or None

# Transport settings for `GradioSpaceClient`.
SPACE_BASE_URL = os.getenv("SPACE_BASE_URL") or None
SPACE_API_PREFIX = os.getenv("SPACE_API_PREFIX", "/gradio_api")
SPACE_TIMEOUT_SECONDS = _env_float("SPACE_TIMEOUT_SECONDS", 300.0)

# Retry policy. Generation steps get the larger ceiling.
RETRY_ATTEMPTS = _env_int("RETRY_ATTEMPTS", 3)
GENERATION_RETRY_ATTEMPTS = _env_int("GENERATION_RETRY_ATTEMPTS", 5)
RETRY_BASE_DELAY_SECONDS = _env_float("RETRY_BASE_DELAY_SECONDS", 1.0)

# Storage locations.
ASSETS_DIR = os.getenv("ASSETS_DIR", "assets")
WORK_DIR = os.getenv("WORK_DIR", os.getcwd())

# Bounds shared by every space.
GUIDANCE_SCALE_RANGE = (0.0, 100.0)
SEED_RANGE = (0, 10000000)

LOG_FILE_NAME = "meshflow.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def load_generation_parameters() -> GenerationParameters:
    """Read `MODEL_3D_*` environment values into clamped generation parameters.

    Returns:
        `GenerationParameters` where unset or unparseable values are `None`.

    Clamping:
        - `MODEL_3D_GUIDANCE_SCALE` -> [0.0, 100.0].
        - `MODEL_3D_SEED` -> [0, 10000000].
        - `MODEL_3D_STEPS` is only parsed; the space range is applied by the
          adapter.
        - `MODEL_3D_OCTREE_RESOLUTION` is forwarded as a stripped string.
        - `MODEL_3D_REMOVE_BACKGROUND` accepts common truthy/falsy spellings and
          defaults to True.
    """
    guidance_scale = parse_float(os.getenv("MODEL_3D_GUIDANCE_SCALE"))
    if guidance_scale is not None:
        guidance_scale = clamp_number(guidance_scale, *GUIDANCE_SCALE_RANGE)

    seed = parse_int(os.getenv("MODEL_3D_SEED"))
    if seed is not None:
        seed = clamp_number(seed, *SEED_RANGE)

    octree_resolution = (os.getenv("MODEL_3D_OCTREE_RESOLUTION") or "").strip() or None

    return GenerationParameters(
        steps=parse_int(os.getenv("MODEL_3D_STEPS")),
        guidance_scale=guidance_scale,
        seed=seed,
        octree_resolution=octree_resolution,
        remove_background=parse_bool(os.getenv("MODEL_3D_REMOVE_BACKGROUND"), True),
    )


def configure_logging(work_dir: str | None = None, level: int = logging.INFO) -> str:
    """Attach a file handler for the `meshflow` logger inside `work_dir`.

    Args:
        work_dir: Directory receiving `meshflow.log`; defaults to `WORK_DIR`.
        level: Level applied to the package logger.

    Returns:
        Absolute path of the log file.

    Edge cases:
        Calling twice with the same directory does not add a second handler.
    """
    work_dir = work_dir or WORK_DIR
    os.makedirs(work_dir, exist_ok=True)
    log_path = os.path.abspath(os.path.join(work_dir, LOG_FILE_NAME))

    package_logger = logging.getLogger("meshflow")
    package_logger.setLevel(level)

    for handler in package_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path:
            return log_path

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    return log_path
