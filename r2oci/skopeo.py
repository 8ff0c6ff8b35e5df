"""Materialize container images as OCI layouts using skopeo

ref: https://github.com/containers/skopeo/blob/main/docs/skopeo-copy.1.md
"""
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from r2oci.errors import ConversionError

logger = logging.getLogger(__name__)

DEFAULT_TAG = "latest"


@dataclass(frozen=True, slots=True)
class ImageReference:
    """A container image name and tag"""

    name: str
    tag: str = DEFAULT_TAG

    def __str__(self):
        return f"{self.name}:{self.tag}"

    def source(self, transport: str = "docker://") -> str:
        """Return the image as a skopeo source locator"""
        return f"{transport}{self}"

    @classmethod
    def parse(cls, value: str) -> "ImageReference":
        """Parse 'name[:tag]', a registry port is not mistaken for a tag

        Digest references ('name@sha256:...') raise ValueError, blobs are
        looked up by tag in the layout.
        """
        if "@" in value:
            raise ValueError(f"Digest references are not supported: {value}")
        name, sep, tag = value.rpartition(":")
        if not sep or "/" in tag:
            return cls(name=value)
        return cls(name=name, tag=tag)


class Converter(Protocol):
    def convert(self, source: str, destination: str) -> None:
        """Copy `source` to `destination`, raise ConversionError on failure"""


class SkopeoConverter:
    """Runs `skopeo copy` as a subprocess."""

    def __init__(
        self,
        binary: str = "skopeo",
        all_platforms: bool = False,
        extra_args: Sequence[str] = (),
        timeout: float | None = None,
    ):
        self.binary = binary
        self.all_platforms = all_platforms
        self.extra_args = tuple(extra_args)
        self.timeout = timeout
        self._available = False

    def check_available(self):
        """Raise ConversionError if skopeo can not be executed"""
        result = self._run([self.binary, "--version"])
        logger.debug(result.stdout.strip())
        self._available = True

    def convert(self, source: str, destination: str) -> None:
        if not self._available:
            self.check_available()
        command = [self.binary, "copy"]
        if self.all_platforms:
            command.append("--all")
        command.extend(self.extra_args)
        command.extend([source, destination])
        self._run(command)

    def _run(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        logger.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ConversionError(f"{self.binary} is not installed") from e
        except subprocess.TimeoutExpired as e:
            raise ConversionError(
                f"{self.binary} timed out after {self.timeout}s"
            ) from e
        if result.returncode != 0:
            raise ConversionError(
                f"{command[0]} {command[1]} failed",
                exit_code=result.returncode,
                output=result.stderr or result.stdout,
            )
        return result


def materialize(
    image: ImageReference,
    directory: Path,
    converter: Converter,
    transport: str = "docker://",
) -> Path:
    """Write `image` to `directory` as an OCI image layout"""
    source = image.source(transport)
    destination = f"oci:{directory}:{image.tag}"
    logger.info("Converting %s to %s", source, destination)
    converter.convert(source, destination)
    return directory
