from pydantic import BaseModel, ConfigDict

from r2oci.oci.descriptor import Descriptor

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"


class Manifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md
    """

    model_config = ConfigDict(extra="allow")

    config: Descriptor
    artifactType: str | None = None
    layers: list[Descriptor] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    mediaType: str = OCI_MANIFEST
    schemaVersion: int = 2

    @property
    def blobs(self) -> list[Descriptor]:
        """The config followed by every layer"""
        return [self.config, *self.layers]
