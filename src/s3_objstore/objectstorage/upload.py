"""Object upload with bounded retries on throttling.

``try_upload`` drives a single logical upload through an ``Uploader``:

    attempting -> succeeded
    attempting -> throttled -> waiting -> attempting
    attempting -> failed

Only throttling ("SlowDown", HTTP 503) is retried, with a fixed delay and a
budget of ``max_retries`` retries after the first attempt. Any other failure
is raised at once. Attempts for one call never overlap; separate calls may
run concurrently against the same uploader.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import IO, Any, Dict, Mapping, Optional, Protocol, Union

from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from s3_objstore.core import Context, get_logger, get_tracer
from s3_objstore.core.exceptions import (
    NonRetryableUploadError,
    RetryBudgetExhaustedError,
    ThrottledError,
    UploadCanceledError,
    UploadError,
)

from .config import DEFAULT_PART_SIZE

logger = get_logger(__name__)
tracer = get_tracer(__name__)

THROTTLING_ERROR_CODES = frozenset(
    {
        "SlowDown",
        "503 SlowDown",
        "ServiceUnavailable",
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "TooManyRequestsException",
    }
)

# Headers that S3 accepts as first-class request parameters; every other
# user metadata key is sent as x-amz-meta-*.
_HEADER_PARAMS = {
    "x-amz-acl": "ACL",
    "x-amz-storage-class": "StorageClass",
    "x-amz-tagging": "Tagging",
    "x-amz-website-redirect-location": "WebsiteRedirectLocation",
    "cache-control": "CacheControl",
    "content-disposition": "ContentDisposition",
    "content-encoding": "ContentEncoding",
    "content-language": "ContentLanguage",
}
_META_PREFIX = "x-amz-meta-"


@dataclass(frozen=True)
class PutOptions:
    """Per-call transfer options passed unchanged to every attempt."""

    user_metadata: Mapping[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    sse_args: Mapping[str, Any] = field(default_factory=dict)
    part_size: int = DEFAULT_PART_SIZE

    def extra_args(self) -> Dict[str, Any]:
        """boto3 request arguments for these options."""
        args: Dict[str, Any] = {}
        metadata: Dict[str, str] = {}

        for name, value in self.user_metadata.items():
            lowered = name.lower()
            if lowered in _HEADER_PARAMS:
                args[_HEADER_PARAMS[lowered]] = value
            elif lowered.startswith(_META_PREFIX):
                metadata[name[len(_META_PREFIX) :]] = value
            else:
                metadata[name] = value

        if metadata:
            args["Metadata"] = metadata
        if self.content_type:
            args["ContentType"] = self.content_type
        args.update(self.sse_args)
        return args


class Uploader(Protocol):
    """One upload attempt against an object store."""

    def put_object(
        self,
        ctx: Context,
        bucket: str,
        key: str,
        body: IO[bytes],
        size: int,
        options: PutOptions,
    ) -> None:
        """Upload ``body`` to ``bucket/key``.

        Raises ThrottledError when the backend asks to slow down and
        NonRetryableUploadError for anything else. Unwrapped boto3 errors
        are classified by the caller.
        """
        ...


def _client_errors(error: BaseException):
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ClientError):
            yield current
        current = current.__cause__ or current.__context__


def is_throttling_error(error: BaseException) -> bool:
    """True if ``error`` (or an error it wraps) is an S3 slow-down signal."""
    for client_error in _client_errors(error):
        response = client_error.response or {}
        code = response.get("Error", {}).get("Code", "")
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in THROTTLING_ERROR_CODES or status == 503:
            return True
    return False


def classify_error(
    error: BaseException, bucket: str, key: str
) -> Union[ThrottledError, NonRetryableUploadError]:
    """Wrap a boto3 failure in the matching upload error."""
    if is_throttling_error(error):
        return ThrottledError(
            f"Upload of '{key}' to bucket '{bucket}' throttled: {error}",
            bucket=bucket,
            key=key,
        )
    return NonRetryableUploadError(
        f"Failed to upload '{key}' to bucket '{bucket}': {error}",
        bucket=bucket,
        key=key,
    )


class BotoUploader:
    """Uploader backed by a boto3 S3 client.

    Objects with a known size up to ``part_size`` go up in a single PUT;
    larger or unsized bodies use boto3's managed transfer split into
    ``part_size`` parts.
    """

    def __init__(self, client):
        self.client = client

    def put_object(
        self,
        ctx: Context,
        bucket: str,
        key: str,
        body: IO[bytes],
        size: int,
        options: PutOptions,
    ) -> None:
        ctx.raise_if_done(bucket=bucket, key=key)
        extra = options.extra_args()

        try:
            if 0 <= size <= options.part_size:
                if size > 0:
                    extra["ContentLength"] = size
                self.client.put_object(Bucket=bucket, Key=key, Body=body, **extra)
            else:
                transfer_config = TransferConfig(
                    multipart_threshold=options.part_size,
                    multipart_chunksize=options.part_size,
                )
                self.client.upload_fileobj(
                    body, bucket, key, ExtraArgs=extra, Config=transfer_config
                )
        except (ClientError, S3UploadFailedError, BotoCoreError) as e:
            raise as_upload_error(e, bucket, key) from e


def as_upload_error(error: BaseException, bucket: str, key: str) -> BaseException:
    """Decide whether an attempt's failure is throttling.

    Upload errors pass through. boto3 failures raised by any uploader are
    wrapped as ThrottledError or NonRetryableUploadError. Anything else is
    returned unchanged and is never retried.
    """
    if isinstance(error, UploadError):
        return error
    if isinstance(error, (ClientError, S3UploadFailedError)):
        return classify_error(error, bucket, key)
    if isinstance(error, BotoCoreError):
        return NonRetryableUploadError(
            f"Failed to upload '{key}' to bucket '{bucket}': {error}",
            bucket=bucket,
            key=key,
        )
    return error


def _tell(body: Any) -> Optional[int]:
    seekable = getattr(body, "seekable", None)
    if seekable is None or not seekable():
        return None
    return body.tell()


def _seconds(delay: Union[float, timedelta]) -> float:
    if isinstance(delay, timedelta):
        return delay.total_seconds()
    return float(delay)


def try_upload(
    ctx: Optional[Context],
    uploader: Uploader,
    bucket: str,
    key: str,
    body: IO[bytes],
    size: int,
    options: PutOptions,
    max_retries: int,
    backoff: Union[float, timedelta],
) -> int:
    """Upload one object, retrying while the backend throttles.

    Up to ``max_retries + 1`` attempts are made, ``backoff`` apart.

    Args:
        ctx: Cancellation context; None never cancels
        uploader: Performs each attempt
        bucket: Target bucket
        key: Object key
        body: Payload; seekable bodies are rewound before each retry
        size: Payload size in bytes, or -1 if unknown
        options: Transfer options
        max_retries: Retries allowed after the first attempt
        backoff: Delay between attempts, in seconds or as a timedelta

    Returns:
        Retries left unused on success: ``max_retries - i - 1`` for success
        on attempt ``i``, so -1 when the last permitted attempt succeeded

    Raises:
        RetryBudgetExhaustedError: Every attempt was throttled
        UploadCanceledError: ``ctx`` ended before or between attempts
        NonRetryableUploadError: An attempt failed for any other reason
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be non-negative, got {max_retries}")

    ctx = ctx or Context.background()
    delay = _seconds(backoff)
    start = _tell(body)
    last_error: Optional[ThrottledError] = None

    with tracer.start_as_current_span("objstore.upload") as span:
        span.set_attribute("objstore.bucket", bucket)
        span.set_attribute("objstore.key", key)
        span.set_attribute("objstore.max_retries", max_retries)

        for attempt in range(max_retries + 1):
            ctx.raise_if_done(bucket=bucket, key=key)
            if attempt > 0 and start is not None:
                body.seek(start)
            span.set_attribute("objstore.attempts", attempt + 1)

            try:
                uploader.put_object(ctx, bucket, key, body, size, options)
            except Exception as e:
                error = as_upload_error(e, bucket, key)
                if not isinstance(error, ThrottledError):
                    if error is e:
                        raise
                    raise error from e

                last_error = error
                logger.warning(
                    "Upload throttled",
                    bucket=bucket,
                    key=key,
                    attempt=attempt,
                    max_retries=max_retries,
                )
                if attempt < max_retries and ctx.wait(delay):
                    raise UploadCanceledError(
                        ctx.reason(), bucket=bucket, key=key
                    ) from error
                continue

            remaining = max_retries - attempt - 1
            logger.info(
                "Object uploaded",
                bucket=bucket,
                key=key,
                attempt=attempt,
                remaining_retries=remaining,
            )
            return remaining

        raise RetryBudgetExhaustedError(
            f"Upload of '{key}' to bucket '{bucket}' still throttled after "
            f"{max_retries + 1} attempts",
            attempts=max_retries + 1,
            bucket=bucket,
            key=key,
        ) from last_error
