"""Exception hierarchy for s3-objstore."""

from typing import Optional


class ObjStoreError(Exception):
    """Base exception for all s3-objstore errors."""

    pass


class ValidationError(ObjStoreError):
    """Raised when validation fails."""

    pass


class InvalidConfigError(ValidationError):
    """Raised when a bucket configuration fails a field-level check."""

    pass


class InvalidSSEConfigError(ValidationError):
    """Raised when a server-side encryption policy is structurally invalid."""

    pass


class ConfigDecodeError(ObjStoreError):
    """Raised when configuration input is malformed or uses a legacy field."""

    pass


class UploadError(ObjStoreError):
    """Base exception for a failed object upload."""

    def __init__(
        self, message: str, bucket: Optional[str] = None, key: Optional[str] = None
    ):
        super().__init__(message)
        self.bucket = bucket
        self.key = key


class ThrottledError(UploadError):
    """Raised when the backend asks the client to slow down."""

    pass


class NonRetryableUploadError(UploadError):
    """Raised for any upload failure that is not throttling."""

    pass


class RetryBudgetExhaustedError(UploadError):
    """Raised when every permitted attempt was throttled."""

    def __init__(
        self,
        message: str,
        attempts: int,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message, bucket=bucket, key=key)
        self.attempts = attempts


class UploadCanceledError(UploadError):
    """Raised when the governing context is cancelled or its deadline passes."""

    pass
