"""Bucket configuration: decoding, defaults and validation.

A bucket is described by a YAML document such as::

    bucket: "bucket-name"
    endpoint: "s3.example.com"
    access_key: "..."
    secret_key: "..."
    put_user_metadata:
      "X-Amz-Acl": "bucket-owner-full-control"
    http_config:
      idle_conn_timeout: 90s
      response_header_timeout: 2m
    part_size: 134217728
    sse_config:
      type: SSE-KMS
      kms_key_id: "..."

``parse_config`` decodes and applies defaults; ``validate`` checks the
decoded value before any network activity. Both produce immutable models
that can be shared between threads.
"""

import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Union

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from s3_objstore.core import get_logger
from s3_objstore.core.exceptions import ConfigDecodeError, InvalidConfigError

from .sse import SSEConfig, SSEPolicy, validate_sse

logger = get_logger(__name__)

DEFAULT_IDLE_CONN_TIMEOUT = timedelta(seconds=90)
DEFAULT_RESPONSE_HEADER_TIMEOUT = timedelta(minutes=2)
DEFAULT_PART_SIZE = 1024 * 1024 * 128

# Spellings from older releases that must not be silently accepted
LEGACY_FIELDS = ("see_encryption", "encrypt_sse")

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d|w|y)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
    "w": 604800.0,
    "y": 31536000.0,
}


def parse_duration(value: Any) -> timedelta:
    """Parse a duration such as ``50s``, ``1m``, ``1h30m`` or ``2d``.

    Units run from ``ns`` up to ``d``, ``w`` and ``y`` (365 days). Plain
    numbers are taken as seconds. ``timedelta`` values pass through.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return timedelta(0)

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=sign * seconds)


class HTTPConfig(BaseModel):
    """Transport tuning for the S3 client."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    idle_conn_timeout: timedelta = Field(
        DEFAULT_IDLE_CONN_TIMEOUT, description="Idle keep-alive connection timeout"
    )
    response_header_timeout: timedelta = Field(
        DEFAULT_RESPONSE_HEADER_TIMEOUT,
        description="Time to wait for response headers after a request is sent",
    )
    insecure_skip_verify: bool = Field(
        False, description="Skip TLS certificate verification"
    )

    @field_validator("idle_conn_timeout", "response_header_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> timedelta:
        return parse_duration(value)


class S3BucketConfig(BaseModel):
    """Configuration of one S3-compatible bucket."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    bucket: str = Field("", description="Target bucket name")
    endpoint: str = Field("", description="host[:port] of the S3 endpoint")
    region: str = Field("", description="Bucket region")
    access_key: str = Field("", description="Access key id")
    secret_key: str = Field("", description="Secret access key")
    session_token: str = Field("", description="Session token for temporary credentials")
    insecure: bool = Field(False, description="Use plain HTTP for the endpoint")
    signature_version2: bool = Field(False, description="Use legacy V2 signing")
    put_user_metadata: Dict[str, str] = Field(
        default_factory=dict, description="Metadata attached to every upload"
    )
    http_config: HTTPConfig = Field(default_factory=HTTPConfig)
    part_size: int = Field(DEFAULT_PART_SIZE, description="Multipart part size in bytes")
    list_objects_version: str = Field("", description="Listing API version")
    sse_config: SSEConfig = Field(default_factory=SSEConfig)

    @model_validator(mode="before")
    @classmethod
    def _reject_legacy_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for name in LEGACY_FIELDS:
                if name in data:
                    raise ValueError(
                        f"field '{name}' is no longer supported, use 'sse_config'"
                    )
        return data

    @field_validator("put_user_metadata", mode="before")
    @classmethod
    def _metadata_not_none(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("http_config", mode="before")
    @classmethod
    def _http_config_not_none(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("sse_config", mode="before")
    @classmethod
    def _sse_config_not_none(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("part_size", mode="before")
    @classmethod
    def _default_part_size(cls, value: Any) -> Any:
        if value is None or value == 0:
            return DEFAULT_PART_SIZE
        return value

    @field_validator("part_size")
    @classmethod
    def _positive_part_size(cls, value: int) -> int:
        if value < 0:
            raise ValueError("part_size must be positive")
        return value

    @property
    def sse_policy(self) -> SSEPolicy:
        """The SSE policy variant described by ``sse_config``."""
        return self.sse_config.to_policy()


def parse_config(data: Union[str, bytes]) -> S3BucketConfig:
    """Decode a YAML bucket configuration and apply defaults.

    Args:
        data: YAML document

    Returns:
        The decoded configuration

    Raises:
        ConfigDecodeError: If the document is malformed, is not a mapping,
            has unknown fields or uses a legacy field
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ConfigDecodeError(f"Failed to parse bucket config: {e}")

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigDecodeError(
            f"Bucket config must be a mapping, got {type(raw).__name__}"
        )

    try:
        config = S3BucketConfig.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ConfigDecodeError(f"Failed to decode bucket config: {e}")

    logger.debug("Bucket config parsed", bucket=config.bucket)
    return config


def load_config(path: Union[str, Path]) -> S3BucketConfig:
    """Read and decode a bucket configuration file."""
    try:
        data = Path(path).read_text()
    except OSError as e:
        raise ConfigDecodeError(f"Failed to read bucket config '{path}': {e}")
    return parse_config(data)


def validate(config: S3BucketConfig) -> None:
    """Check a decoded configuration before first use.

    The first failing check is raised; errors are not aggregated.

    Raises:
        InvalidConfigError: If the bucket is missing or credentials are
            only half supplied
        InvalidSSEConfigError: If the SSE policy is structurally invalid
    """
    if config.bucket == "":
        raise InvalidConfigError("no s3 bucket in config file")

    if bool(config.access_key) != bool(config.secret_key):
        raise InvalidConfigError(
            "access_key and secret_key must be supplied together, or both left "
            "empty to use the default credential chain"
        )

    validate_sse(config.sse_policy)

