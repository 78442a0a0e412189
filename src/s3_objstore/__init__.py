"""Upload path for S3-compatible object storage.

This package decodes and validates a bucket configuration (credentials,
transport tuning, user metadata, part size and a server-side encryption
policy) and uploads objects with bounded retries when the backend throttles.

Key Features:
    - YAML bucket configuration with defaults and strict field checking
    - SSE-S3, SSE-KMS and SSE-C policies with structural validation
    - Upload retries on "SlowDown" responses, fail-fast on other errors
    - Cancellation and deadlines through ``Context``
    - CLI interface

Recommended Usage:

    >>> from s3_objstore import Context, S3Bucket, load_config
    >>> bucket = S3Bucket(load_config("bucket.yaml"))
    >>> with open("backup.tar", "rb") as f:
    ...     bucket.upload("backups/backup.tar", f, ctx=Context.with_deadline_in(600))

Advanced Usage:
    Drive the retry loop directly with your own uploader:

    >>> from s3_objstore.objectstorage import PutOptions, try_upload
"""

__version__ = "0.1.0"

from .core import Context
from .core.exceptions import (
    ConfigDecodeError,
    InvalidConfigError,
    InvalidSSEConfigError,
    NonRetryableUploadError,
    ObjStoreError,
    RetryBudgetExhaustedError,
    ThrottledError,
    UploadCanceledError,
    UploadError,
    ValidationError,
)
from .objectstorage import (
    PutOptions,
    S3Bucket,
    S3BucketConfig,
    SSEConfig,
    load_config,
    parse_config,
    try_upload,
    validate,
    validate_sse,
)

__all__ = [
    # Configuration
    "S3BucketConfig",
    "SSEConfig",
    "load_config",
    "parse_config",
    "validate",
    "validate_sse",
    # Uploads
    "Context",
    "PutOptions",
    "S3Bucket",
    "try_upload",
    # Errors
    "ObjStoreError",
    "ValidationError",
    "InvalidConfigError",
    "InvalidSSEConfigError",
    "ConfigDecodeError",
    "UploadError",
    "ThrottledError",
    "NonRetryableUploadError",
    "RetryBudgetExhaustedError",
    "UploadCanceledError",
]
