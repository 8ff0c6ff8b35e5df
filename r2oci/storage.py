"""Object storage used as upload destination"""
import logging
import threading
from typing import BinaryIO, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from r2oci.config import R2Config
from r2oci.errors import StorageError, TransientStorageError

logger = logging.getLogger(__name__)

NOT_FOUND = frozenset({"404", "NoSuchKey", "NotFound"})
THROTTLED = frozenset(
    {
        "RequestTimeout",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "TooManyRequests",
    }
)


class ObjectStore(Protocol):
    def head(self, key: str) -> int | None:
        """Return the size of the object at `key`, None when it does not exist"""

    def put(self, key: str, body: BinaryIO, size: int, content_type: str) -> None:
        """Store `size` bytes read from `body` at `key`"""


def _translate(error: Exception, action: str, key: str) -> StorageError:
    message = f"{action} {key} failed: {error}"
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if code in THROTTLED or status == 429 or status >= 500:
            return TransientStorageError(message)
        return StorageError(message)
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return TransientStorageError(message)
    return StorageError(message)


class R2Store:
    """Cloudflare R2 bucket accessed through the S3 API."""

    def __init__(self, config: R2Config, client=None):
        self.bucket = config.bucket
        self.config = config
        self._client = client
        self._lock = threading.Lock()

    @property
    def client(self):
        # Shared by the upload threads, built once from its own session
        with self._lock:
            if self._client is None:
                secret = self.config.secret_access_key.get_secret_value()
                session = boto3.session.Session(
                    aws_access_key_id=self.config.access_key_id,
                    aws_secret_access_key=secret,
                    region_name="auto",
                )
                self._client = session.client(
                    "s3",
                    endpoint_url=self.config.endpoint,
                    # Retries are handled by the uploader
                    config=Config(retries={"max_attempts": 1, "mode": "standard"}),
                )
        return self._client

    def head(self, key: str) -> int | None:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") in NOT_FOUND:
                return None
            raise _translate(e, "HEAD", key) from e
        except BotoCoreError as e:
            raise _translate(e, "HEAD", key) from e
        return response["ContentLength"]

    def put(self, key: str, body: BinaryIO, size: int, content_type: str) -> None:
        logger.debug(
            "PUT s3://%s/%s (%d bytes, %s)", self.bucket, key, size, content_type
        )
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentLength=size,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, "PUT", key) from e
