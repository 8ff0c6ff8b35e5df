"""OCI image-layout models

Only the parts needed to enumerate the blobs of an image are modelled.
"""
from r2oci.oci.descriptor import ContentDigest, Descriptor
from r2oci.oci.index import Index, Platform, PlatformDescriptor
from r2oci.oci.manifest import Manifest

__all__ = [
    "ContentDigest",
    "Descriptor",
    "Index",
    "Manifest",
    "Platform",
    "PlatformDescriptor",
]
