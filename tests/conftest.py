import json
import threading
import time
from hashlib import sha256
from pathlib import Path

import pytest

from r2oci.errors import ConversionError, StorageError, TransientStorageError

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"
REF_NAME = "org.opencontainers.image.ref.name"


def digest_of(data: bytes) -> str:
    return f"sha256:{sha256(data).hexdigest()}"


def write_blob(root: Path, data: bytes, media_type: str) -> dict:
    """Store `data` in the layout blob store and return its descriptor"""
    digest = digest_of(data)
    path = root / "blobs" / "sha256" / digest.removeprefix("sha256:")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return {"mediaType": media_type, "digest": digest, "size": len(data)}


def add_to_index(root: Path, descriptor: dict, tag: str):
    index_path = root / "index.json"
    if index_path.exists():
        index = json.loads(index_path.read_text())
    else:
        index = {"schemaVersion": 2, "manifests": []}
    index["manifests"].append(descriptor | {"annotations": {REF_NAME: tag}})
    index_path.write_text(json.dumps(index))


def write_manifest(root: Path, config: bytes, layers: list[bytes]) -> dict:
    config_descriptor = write_blob(root, config, OCI_CONFIG)
    layer_descriptors = [write_blob(root, layer, OCI_LAYER) for layer in layers]
    manifest = {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": config_descriptor,
        "layers": layer_descriptors,
    }
    descriptor = write_blob(root, json.dumps(manifest).encode("utf-8"), OCI_MANIFEST)
    return {
        "manifest": descriptor,
        "config": config_descriptor,
        "layers": layer_descriptors,
    }


def write_image(root: Path, tag: str, config: bytes, layers: list[bytes]) -> dict:
    """Write a single-platform image the way `skopeo copy ... oci:<root>:<tag>` does"""
    root.mkdir(parents=True, exist_ok=True)
    (root / "oci-layout").write_text('{"imageLayoutVersion": "1.0.0"}')
    descriptors = write_manifest(root, config, layers)
    add_to_index(root, descriptors["manifest"], tag)
    return descriptors


class FakeConverter:
    """Writes an OCI layout instead of running skopeo"""

    def __init__(self, config: bytes, layers: list[bytes], exit_code: int = 0):
        self.config = config
        self.layers = layers
        self.exit_code = exit_code
        self.calls = []

    def convert(self, source: str, destination: str) -> None:
        self.calls.append((source, destination))
        if self.exit_code:
            raise ConversionError(
                "skopeo copy failed",
                exit_code=self.exit_code,
                output="manifest unknown",
            )
        directory, _, tag = destination.removeprefix("oci:").rpartition(":")
        self.written = write_image(Path(directory), tag, self.config, self.layers)


class MemoryStore:
    """Thread safe in-memory object store

    Keeps track of the number of simultaneous `put` calls.
    """

    def __init__(self, delay: float = 0.0):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.puts: list[str] = []
        self.transient_failures: dict[str, int] = {}
        self.permanent_failures: set[str] = set()
        self.truncate: set[str] = set()
        self.on_put = None
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def head(self, key: str) -> int | None:
        with self._lock:
            data = self.objects.get(key)
        return None if data is None else len(data)

    def put(self, key, body, size, content_type) -> None:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            with self._lock:
                remaining = self.transient_failures.get(key, 0)
                if remaining:
                    self.transient_failures[key] = remaining - 1
                    raise TransientStorageError(
                        f"PUT {key} failed: 503 Service Unavailable"
                    )
            if key in self.permanent_failures:
                raise StorageError(f"PUT {key} failed: 403 Forbidden")
            data = body.read()
            assert len(data) == size
            if key in self.truncate:
                data = data[: size // 2]
            with self._lock:
                self.objects[key] = data
                self.content_types[key] = content_type
                self.puts.append(key)
        finally:
            with self._lock:
                self.active -= 1
        if self.on_put is not None:
            self.on_put(key)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def alpine_config() -> bytes:
    """A 2 KB image config"""
    config = {"architecture": "amd64", "os": "linux", "rootfs": {"type": "layers"}}
    data = json.dumps(config).encode("utf-8")
    return data + b" " * (2048 - len(data))


@pytest.fixture
def alpine_layer() -> bytes:
    """A 2.8 MB layer"""
    return bytes(range(256)) * (2_800_000 // 256)


@pytest.fixture
def converter(alpine_config, alpine_layer) -> FakeConverter:
    return FakeConverter(config=alpine_config, layers=[alpine_layer])
