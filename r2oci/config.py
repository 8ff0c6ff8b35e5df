import os
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field, SecretStr, ValidationError

from r2oci.errors import ConfigError

ENV_VARS = {
    "account_id": "CLOUDFLARE_ACCOUNT_ID",
    "bucket": "R2_BUCKET",
    "access_key_id": "R2_ACCESS_KEY_ID",
    "secret_access_key": "R2_SECRET_ACCESS_KEY",
}
ENDPOINT_ENV_VAR = "R2_ENDPOINT_URL"


class R2Config(BaseModel, frozen=True):
    """Destination bucket and credentials for Cloudflare R2

    ref: https://developers.cloudflare.com/r2/api/s3/api/
    """

    account_id: str = Field(min_length=1)
    bucket: str = Field(min_length=1)
    access_key_id: str = Field(min_length=1)
    secret_access_key: SecretStr
    endpoint_url: str | None = None

    @property
    def endpoint(self) -> str:
        """The S3 endpoint, `endpoint_url` takes precedence over the account id"""
        if self.endpoint_url:
            return self.endpoint_url
        return f"https://{self.account_id}.r2.cloudflarestorage.com"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "R2Config":
        """Read the configuration from environment variables"""
        if environ is None:
            environ = os.environ
        data = {}
        for field, name in ENV_VARS.items():
            value = environ.get(name, "")
            if not value:
                raise ConfigError(f"{name} is not set")
            data[field] = value
        if environ.get(ENDPOINT_ENV_VAR):
            data["endpoint_url"] = environ[ENDPOINT_ENV_VAR]
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(str(e)) from e


class PipelineOptions(BaseModel, frozen=True):
    """Tunables for a single pipeline run"""

    concurrency: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=4, ge=1)
    backoff_seconds: float = Field(default=0.5, ge=0)
    key_prefix: str = ""
    verify_digests: bool = True

    skopeo: str = "skopeo"
    # "docker://" pulls from a registry, "docker-daemon:" reads the local daemon
    transport: str = "docker://"
    all_platforms: bool = False
    extra_args: tuple[str, ...] = ()
    convert_timeout: float | None = Field(default=None, gt=0)
    work_dir: Path | None = None
