import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict, field_validator

from r2oci.errors import LayoutError

# ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md#digests
ALGORITHM_PATTERN = r"[a-z0-9]+(?:[+._-][a-z0-9]+)*"
ENCODED_PATTERN = r"[a-zA-Z0-9=_-]+"
DIGEST_RE = re.compile(
    rf"(?P<algorithm>{ALGORITHM_PATTERN}):(?P<hex>{ENCODED_PATTERN})"
)


@dataclass(frozen=True, slots=True)
class ContentDigest:
    """A parsed '<algorithm>:<hex>' content digest"""

    algorithm: str
    hex: str

    def __str__(self):
        return f"{self.algorithm}:{self.hex}"

    @property
    def path(self) -> PurePosixPath:
        """Relative location of the blob, '<algorithm>/<hex>'"""
        return PurePosixPath(self.algorithm, self.hex)

    @classmethod
    def parse(cls, value: str) -> "ContentDigest":
        match = DIGEST_RE.fullmatch(value)
        if not match:
            raise LayoutError(f"Invalid digest: {value!r}")
        return cls(algorithm=match["algorithm"], hex=match["hex"])


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    model_config = ConfigDict(extra="allow")

    mediaType: str
    digest: str
    size: int
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    artifactType: str | None = None

    @field_validator("digest")
    @classmethod
    def _check_digest(cls, value: str) -> str:
        if not DIGEST_RE.fullmatch(value):
            raise ValueError(f"invalid digest {value!r}")
        return value

    @property
    def content_digest(self) -> ContentDigest:
        return ContentDigest.parse(self.digest)
