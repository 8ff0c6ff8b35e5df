from pathlib import PurePosixPath

import pytest
from pydantic import ValidationError

from r2oci.errors import LayoutError
from r2oci.oci import ContentDigest, Descriptor, Index, Manifest, Platform

SHA = "44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"


@pytest.mark.parametrize(
    "value,algorithm,hex",
    [
        (f"sha256:{SHA}", "sha256", SHA),
        ("sha512:abc123", "sha512", "abc123"),
        ("multihash+base58:QmRZxt2b1FVZ", "multihash+base58", "QmRZxt2b1FVZ"),
    ],
)
def test_content_digest_parse(value, algorithm, hex):
    digest = ContentDigest.parse(value)
    assert digest == ContentDigest(algorithm=algorithm, hex=hex)
    assert str(digest) == value
    assert digest.path == PurePosixPath(algorithm, hex)


@pytest.mark.parametrize(
    "value", ["", SHA, "sha256:", ":abc", "sha256:../../etc/passwd", "SHA256:abc"]
)
def test_content_digest_invalid(value):
    with pytest.raises(LayoutError):
        ContentDigest.parse(value)


def test_descriptor_rejects_invalid_digest():
    with pytest.raises(ValidationError):
        Descriptor(mediaType="application/octet-stream", digest="sha256:../x", size=1)


def test_descriptor_keeps_unknown_fields():
    """Fields from newer spec versions should not be rejected"""
    descriptor = Descriptor.model_validate(
        {"mediaType": "a/b", "digest": f"sha256:{SHA}", "size": 2, "data": "e30="}
    )
    assert descriptor.content_digest.hex == SHA


def test_manifest_blobs_order():
    manifest = Manifest.model_validate(
        {
            "schemaVersion": 2,
            "config": {"mediaType": "config", "digest": "sha256:aa", "size": 1},
            "layers": [
                {"mediaType": "layer", "digest": "sha256:bb", "size": 2},
                {"mediaType": "layer", "digest": "sha256:cc", "size": 3},
            ],
        }
    )
    assert [blob.digest for blob in manifest.blobs] == [
        "sha256:aa",
        "sha256:bb",
        "sha256:cc",
    ]


def test_index_find():
    index = Index.model_validate(
        {
            "schemaVersion": 2,
            "manifests": [
                {
                    "mediaType": "application/vnd.oci.image.manifest.v1+json",
                    "digest": "sha256:aa",
                    "size": 10,
                    "annotations": {"org.opencontainers.image.ref.name": "3.17"},
                },
                {
                    "mediaType": "application/vnd.oci.image.manifest.v1+json",
                    "digest": "sha256:bb",
                    "size": 10,
                    "annotations": {"org.opencontainers.image.ref.name": "3.18"},
                },
                {
                    "mediaType": "application/vnd.oci.image.manifest.v1+json",
                    "digest": "sha256:cc",
                    "size": 10,
                },
            ],
        }
    )
    assert index.find("3.18").digest == "sha256:bb"
    assert index.find("latest") is None


def test_platform_aliases():
    platform = Platform.model_validate(
        {"architecture": "arm64", "os": "linux", "variant": "v8", "os.version": "1"}
    )
    assert platform.osVersion == "1"
    assert str(platform) == "linux/arm64/v8"
