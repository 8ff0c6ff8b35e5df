import logging

from pydantic import BaseModel, ConfigDict, Field

from r2oci.oci.descriptor import Descriptor

logger = logging.getLogger(__name__)

OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
INDEX_MEDIA_TYPES = frozenset({OCI_INDEX, DOCKER_MANIFEST_LIST})

REF_NAME = "org.opencontainers.image.ref.name"


class Platform(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    architecture: str
    os: str
    osVersion: str | None = Field(default=None, alias="os.version")
    osFeatures: list[str] | None = Field(default=None, alias="os.features")
    variant: str | None = None

    model_config = ConfigDict(populate_by_name=True)

    def __str__(self):
        return "/".join(filter(None, [self.os, self.architecture, self.variant]))


class PlatformDescriptor(Descriptor):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    mediaType: str = "application/vnd.oci.image.manifest.v1+json"
    platform: Platform | None = None

    @property
    def ref_name(self) -> str | None:
        """The tag this manifest was stored under, if any"""
        return (self.annotations or {}).get(REF_NAME)

    @property
    def is_index(self) -> bool:
        return self.mediaType in INDEX_MEDIA_TYPES


class Index(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(extra="allow")

    schemaVersion: int = 2
    mediaType: str = OCI_INDEX
    artifactType: str | None = None
    manifests: list[PlatformDescriptor] = []
    annotations: dict[str, str] | None = None

    def find(self, tag: str) -> PlatformDescriptor | None:
        """Return the manifest descriptor stored under `tag`"""
        matches = [m for m in self.manifests if m.ref_name == tag]
        if len(matches) > 1:
            logger.warning(
                "'%s' is referenced by %d manifests, using %s",
                tag,
                len(matches),
                matches[0].digest,
            )
        return matches[0] if matches else None
