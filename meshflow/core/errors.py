"""Error taxonomy for generation runs.

Propagation model:
    - `RemoteOperationFailed` is raised by `retry_with_backoff` once attempts are
      exhausted; the last underlying failure is kept as `__cause__`.
    - `GenerationFailed`, `NoValidMeshFound`, `UnsupportedSpace` and
      `ArtifactWriteError` abort a run and reach the caller unchanged.
    - `DiagnosticWriteFailed` is raised only inside the debug-snapshot boundary
      and is logged there, never propagated.

Every error carries the operation id so callers can cross-reference logs.
"""


class WorkflowError(Exception):
    """Base class for all generation workflow failures."""

    def __init__(self, message: str, operation_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation_id = operation_id

    def __str__(self) -> str:
        if self.operation_id:
            return f"{self.message} (operation {self.operation_id})"
        return self.message


class RemoteOperationFailed(WorkflowError):
    """A remote step kept failing until the retry ceiling was reached."""

    def __init__(self, message: str, operation_id: str | None = None, attempts: int = 0) -> None:
        super().__init__(message, operation_id)
        self.attempts = attempts


class GenerationFailed(WorkflowError):
    """The generation endpoint returned no usable payload."""


class NoValidMeshFound(WorkflowError):
    """Neither the preferred nor the fallback mesh slot carries a file reference."""


class DiagnosticWriteFailed(WorkflowError):
    """The debug snapshot could not be written."""


class UnsupportedSpace(WorkflowError):
    """No registered adapter matches the active space."""


class ArtifactWriteError(WorkflowError):
    """A payload could not be persisted to local storage."""
