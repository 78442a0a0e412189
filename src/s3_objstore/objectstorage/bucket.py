"""Upload facade for one configured bucket."""

from datetime import timedelta
from pathlib import Path
from typing import IO, Optional, Union

from s3_objstore.core import Context, get_logger, settings

from .clients import S3ClientManager
from .config import S3BucketConfig, validate
from .sse import resolve_sse
from .upload import BotoUploader, PutOptions, Uploader, try_upload

logger = get_logger(__name__)


class S3Bucket:
    """Validated bucket configuration bound to an uploader.

    The configuration is checked and its SSE policy resolved once, here;
    ``upload`` may then be called from any number of threads.
    """

    def __init__(self, config: S3BucketConfig, uploader: Optional[Uploader] = None):
        """Initialize the bucket.

        Args:
            config: Decoded bucket configuration
            uploader: Performs upload attempts; defaults to a boto3 uploader
                built from ``config``

        Raises:
            ValidationError: If the configuration is invalid or the SSE-C
                key file cannot be used
        """
        validate(config)
        self.config = config
        self.name = config.bucket
        self._sse_args = resolve_sse(config.sse_policy)

        if uploader is None:
            uploader = BotoUploader(S3ClientManager(config).client)
        self.uploader = uploader

        logger.info(
            "Bucket ready",
            bucket=self.name,
            sse_type=config.sse_config.type or None,
            part_size=config.part_size,
        )

    def put_options(self, content_type: Optional[str] = None) -> PutOptions:
        return PutOptions(
            user_metadata=dict(self.config.put_user_metadata),
            content_type=content_type,
            sse_args=dict(self._sse_args),
            part_size=self.config.part_size,
        )

    def upload(
        self,
        key: str,
        body: IO[bytes],
        size: int = -1,
        ctx: Optional[Context] = None,
        content_type: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[Union[float, timedelta]] = None,
    ) -> int:
        """Upload ``body`` under ``key``.

        Retry settings default to ``upload_max_retries`` and
        ``upload_backoff_seconds`` from the application settings.

        Returns:
            Retries left unused, as returned by ``try_upload``
        """
        if max_retries is None:
            max_retries = settings.upload_max_retries
        if backoff is None:
            backoff = settings.upload_backoff_seconds

        return try_upload(
            ctx,
            self.uploader,
            self.name,
            key,
            body,
            size,
            self.put_options(content_type),
            max_retries,
            backoff,
        )

    def upload_file(
        self,
        key: str,
        path: Union[str, Path],
        ctx: Optional[Context] = None,
        content_type: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[Union[float, timedelta]] = None,
    ) -> int:
        """Upload a local file under ``key``."""
        path = Path(path)
        with path.open("rb") as f:
            return self.upload(
                key,
                f,
                size=path.stat().st_size,
                ctx=ctx,
                content_type=content_type,
                max_retries=max_retries,
                backoff=backoff,
            )
