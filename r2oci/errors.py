from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from r2oci.pipeline import PipelineResult


class R2OCIError(Exception):
    """Base class for all r2oci errors."""


class ConfigError(R2OCIError):
    """Raised when the storage configuration can not be resolved."""


class ConversionError(R2OCIError):
    """Raised when the image converter fails."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output

    def __str__(self):
        message = super().__str__()
        if self.exit_code is not None:
            message = f"{message} (exit={self.exit_code})"
        if self.output.strip():
            message = f"{message}: {self.output.strip()}"
        return message


class LayoutError(R2OCIError):
    """Raised when an OCI image layout is malformed or incomplete."""


class IntegrityError(R2OCIError):
    """Raised when stored content does not match the local blob."""


class UploadError(R2OCIError):
    """Raised when a blob could not be uploaded."""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class StorageError(R2OCIError):
    """Raised by an object store when a request fails."""


class TransientStorageError(StorageError):
    """A storage failure that is worth retrying."""


class Cancelled(R2OCIError):
    """Raised when the pipeline was cancelled before it finished."""

    def __init__(self, message: str, result: PipelineResult | None = None):
        super().__init__(message)
        self.result = result


class PipelineFailed(R2OCIError):
    """Raised when one or more uploads of a pipeline run failed."""

    def __init__(self, result: PipelineResult):
        super().__init__(
            f"{len(result.failures)} of {result.total} uploads failed: "
            + ", ".join(str(failure) for failure in result.failures)
        )
        self.result = result
