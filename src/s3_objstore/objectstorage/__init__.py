"""Object storage upload path for S3-compatible services."""

from .bucket import S3Bucket
from .clients import S3ClientManager
from .config import (
    DEFAULT_IDLE_CONN_TIMEOUT,
    DEFAULT_PART_SIZE,
    DEFAULT_RESPONSE_HEADER_TIMEOUT,
    HTTPConfig,
    S3BucketConfig,
    load_config,
    parse_config,
    validate,
)
from .sse import (
    SSE_C,
    SSE_KMS,
    SSE_S3,
    SSEC,
    SSEKMS,
    SSES3,
    NoSSE,
    SSEConfig,
    SSEPolicy,
    UnresolvedSSE,
    resolve_sse,
    validate_sse,
)
from .upload import BotoUploader, PutOptions, Uploader, try_upload

__all__ = [
    "S3Bucket",
    "S3ClientManager",
    "DEFAULT_IDLE_CONN_TIMEOUT",
    "DEFAULT_PART_SIZE",
    "DEFAULT_RESPONSE_HEADER_TIMEOUT",
    "HTTPConfig",
    "S3BucketConfig",
    "load_config",
    "parse_config",
    "validate",
    "SSE_C",
    "SSE_KMS",
    "SSE_S3",
    "SSEC",
    "SSEKMS",
    "SSES3",
    "NoSSE",
    "SSEConfig",
    "SSEPolicy",
    "UnresolvedSSE",
    "resolve_sse",
    "validate_sse",
    "BotoUploader",
    "PutOptions",
    "Uploader",
    "try_upload",
]
