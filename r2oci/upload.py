import asyncio
import enum
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from r2oci.errors import (
    IntegrityError,
    StorageError,
    TransientStorageError,
    UploadError,
)
from r2oci.oci.descriptor import ContentDigest
from r2oci.storage import ObjectStore

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

T = TypeVar("T")


def remote_key(digest: ContentDigest, prefix: str = "") -> str:
    """Object key for a blob, 'blobs/<algorithm>/<hex>' below `prefix`"""
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return f"{prefix}blobs/{digest.path}"


@dataclass(frozen=True, slots=True)
class UploadTask:
    digest: ContentDigest
    path: Path
    key: str
    size: int
    media_type: str = "application/octet-stream"

    def __str__(self):
        return str(self.digest)


class Outcome(enum.Enum):
    UPLOADED = "uploaded"
    SKIPPED = "skipped"


def _file_digest(path: Path, algorithm: str) -> str:
    h = hashlib.new(algorithm)
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


class Uploader:
    """Uploads blobs to an object store, skipping blobs that are already present."""

    def __init__(
        self,
        store: ObjectStore,
        max_attempts: int = 4,
        backoff_seconds: float = 0.5,
        verify_digests: bool = True,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.verify_digests = verify_digests

    async def upload(self, task: UploadTask) -> Outcome:
        """Upload a single blob

        Every store call is retried on its own when it fails with a transient
        error, any other storage error or exhausted retries raise UploadError.
        """
        try:
            size = await self._call(task, self.store.head, task.key)
            if size == task.size:
                logger.info("Blob already exists: %s", task.key)
                return Outcome.SKIPPED
            if size is not None:
                logger.warning(
                    "%s exists with %d bytes instead of %d, uploading again",
                    task.key,
                    size,
                    task.size,
                )

            if self.verify_digests:
                await asyncio.to_thread(self.verify, task)
            await self._call(task, self._put, task)
            stored = await self._call(task, self.store.head, task.key)
        except OSError as e:
            raise UploadError(f"Unable to read {task.path}: {e}") from e

        if stored != task.size:
            raise IntegrityError(
                f"{task.key} was stored with {stored} bytes, expected {task.size}"
            )
        logger.info("Uploaded blob %s", task.key)
        return Outcome.UPLOADED

    def verify(self, task: UploadTask):
        """Check the local file against its digest"""
        try:
            actual = _file_digest(task.path, task.digest.algorithm)
        except ValueError:
            logger.warning(
                "Unable to verify %s, unsupported algorithm '%s'",
                task.digest,
                task.digest.algorithm,
            )
            return
        if actual != task.digest.hex:
            raise IntegrityError(
                f"{task.path} does not match {task.digest}, "
                f"got {task.digest.algorithm}:{actual}"
            )

    def _put(self, task: UploadTask):
        with task.path.open("rb") as body:
            self.store.put(task.key, body, task.size, task.media_type)

    async def _call(self, task: UploadTask, func: Callable[..., T], *args) -> T:
        """Run a blocking store call in a thread, retrying transient errors"""
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(TransientStorageError),
                wait=wait_exponential(multiplier=self.backoff_seconds, max=30),
                stop=stop_after_attempt(self.max_attempts),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if attempts > 1:
                        logger.info("Retrying %s (attempt %d)", task.key, attempts)
                    return await asyncio.to_thread(func, *args)
        except TransientStorageError as e:
            raise UploadError(
                f"Giving up on {task.digest} after {attempts} attempts: {e}",
                attempts=attempts,
            ) from e
        except StorageError as e:
            raise UploadError(f"Failed to upload {task.digest}: {e}", attempts) from e
