"""Read-only access to an OCI image layout on disk

ref: https://github.com/opencontainers/image-spec/blob/main/image-layout.md
"""
import json
import logging
from pathlib import Path
from typing import Generator

from pydantic import BaseModel, ValidationError

from r2oci.errors import LayoutError
from r2oci.oci.descriptor import Descriptor
from r2oci.oci.index import INDEX_MEDIA_TYPES, Index
from r2oci.oci.manifest import Manifest
from r2oci.upload import UploadTask, remote_key

logger = logging.getLogger(__name__)

LAYOUT_FILE = "oci-layout"
INDEX_FILE = "index.json"
BLOBS_DIR = "blobs"


class OciLayout:
    """An OCI image layout rooted at `root`"""

    def __init__(self, root: Path):
        self.root = Path(root)

    def __repr__(self):
        return f"{self.__class__.__name__}({str(self.root)!r})"

    def blob_path(self, descriptor: Descriptor) -> Path:
        return self.root / BLOBS_DIR / descriptor.content_digest.path

    def check_version(self):
        path = self.root / LAYOUT_FILE
        if not path.is_file():
            logger.warning("%s has no %s file", self.root, LAYOUT_FILE)
            return
        data = _load_json(path)
        version = data.get("imageLayoutVersion") if isinstance(data, dict) else None
        if not isinstance(version, str) or not version.startswith("1."):
            raise LayoutError(f"Unsupported imageLayoutVersion: {version!r}")

    def index(self) -> Index:
        path = self.root / INDEX_FILE
        if not path.is_file():
            raise LayoutError(f"{path} does not exist")
        return _validate(Index, _load_json(path), path)

    def walk(self, tag: str, key_prefix: str = "") -> list[UploadTask]:
        """Return an upload task for every blob that makes up `tag`

        The manifest comes first, followed by its config and layers.
        When `tag` points to an image index, the index blob is followed by
        the blobs of every manifest it lists.
        Every blob is checked for presence and size before anything is returned.
        """
        self.check_version()
        index = self.index()
        descriptor = index.find(tag)
        if descriptor is None:
            available = sorted(filter(None, (m.ref_name for m in index.manifests)))
            raise LayoutError(
                f"No manifest for tag '{tag}' in {self.root}, "
                f"available: {', '.join(available) or 'none'}"
            )

        tasks = {}
        for blob in self._descend(descriptor):
            if blob.digest in tasks:
                continue
            tasks[blob.digest] = UploadTask(
                digest=blob.content_digest,
                path=self.blob_path(blob),
                key=remote_key(blob.content_digest, prefix=key_prefix),
                size=blob.size,
                media_type=blob.mediaType,
            )
        logger.info("Found %d blobs for '%s' in %s", len(tasks), tag, self.root)
        return list(tasks.values())

    def _descend(self, descriptor: Descriptor) -> Generator[Descriptor, None, None]:
        path = self._check_blob(descriptor)
        data = _load_json(path)
        logger.debug("%s: %s", descriptor.digest, data)

        if INDEX_MEDIA_TYPES & {descriptor.mediaType, _media_type(data)}:
            index = _validate(Index, data, path)
            yield descriptor
            for child in index.manifests:
                yield from self._descend(child)
            return

        manifest = _validate(Manifest, data, path)
        yield descriptor
        for blob in manifest.blobs:
            self._check_blob(blob)
            yield blob

    def _check_blob(self, descriptor: Descriptor) -> Path:
        path = self.blob_path(descriptor)
        if not path.is_file():
            raise LayoutError(f"Blob {descriptor.digest} is missing from {self.root}")
        size = path.stat().st_size
        if size != descriptor.size:
            raise LayoutError(
                f"Blob {descriptor.digest} is {size} bytes, expected {descriptor.size}"
            )
        return path


def _load_json(path: Path):
    try:
        return json.loads(path.read_bytes())
    except (OSError, ValueError) as e:
        raise LayoutError(f"Unable to read {path}: {e}") from e


def _validate(model: type[BaseModel], data, path: Path):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise LayoutError(f"{path} is not a valid {model.__name__}: {e}") from e


def _media_type(data) -> str | None:
    return data.get("mediaType") if isinstance(data, dict) else None
