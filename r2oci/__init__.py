"""Upload container images to Cloudflare R2 as OCI image layouts

    >>> import r2oci
    >>> result = r2oci.run("alpine", "3.18")

The destination is read from the environment,
see `r2oci.config.R2Config.from_env`.
"""
from r2oci.config import PipelineOptions, R2Config
from r2oci.errors import (
    Cancelled,
    ConfigError,
    ConversionError,
    IntegrityError,
    LayoutError,
    PipelineFailed,
    R2OCIError,
    UploadError,
)
from r2oci.pipeline import Pipeline, PipelineResult, TaskFailure, run
from r2oci.skopeo import ImageReference

__all__ = [
    "Cancelled",
    "ConfigError",
    "ConversionError",
    "ImageReference",
    "IntegrityError",
    "LayoutError",
    "Pipeline",
    "PipelineFailed",
    "PipelineOptions",
    "PipelineResult",
    "R2Config",
    "R2OCIError",
    "TaskFailure",
    "UploadError",
    "run",
]
