"""S3 client construction from a bucket configuration.

The S3ClientManager turns an ``S3BucketConfig`` into a boto3 client:

Authentication:
    1. Explicit credentials (access_key, secret_key, optional session_token)
    2. Otherwise the default AWS credential chain (environment, profile,
       instance role)

Transport:
    ``insecure`` selects plain HTTP for the endpoint, ``signature_version2``
    selects legacy signing, and ``http_config`` supplies the response timeout
    and certificate verification. boto3's own retry handler is switched off:
    throttling is retried by ``try_upload`` with its own budget.
"""

from typing import Any, Dict

import boto3
from botocore.config import Config

from s3_objstore.core import get_logger
from s3_objstore.objectstorage.config import S3BucketConfig

logger = get_logger(__name__)


class S3ClientManager:
    """Manages the S3 client for one bucket configuration."""

    def __init__(self, config: S3BucketConfig):
        """Initialize S3 client manager.

        Args:
            config: Bucket configuration
        """
        self.config = config
        self._client = None
        logger.info(
            "S3 client manager initialized",
            bucket=config.bucket,
            endpoint=config.endpoint or None,
        )

    @property
    def client(self):
        """Get or create S3 client instance."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def endpoint_url(self) -> str | None:
        """Endpoint URL for boto3, or None to let boto3 pick the AWS one."""
        endpoint = self.config.endpoint
        if not endpoint:
            return None
        if "://" in endpoint:
            return endpoint
        scheme = "http" if self.config.insecure else "https"
        return f"{scheme}://{endpoint}"

    def client_config(self) -> Config:
        """botocore transport settings derived from the bucket config."""
        http = self.config.http_config
        return Config(
            signature_version="s3" if self.config.signature_version2 else "s3v4",
            read_timeout=http.response_header_timeout.total_seconds(),
            retries={"total_max_attempts": 1, "mode": "standard"},
            user_agent_extra="s3-objstore",
        )

    def _create_client(self):
        """Create boto3 S3 client with the configured settings."""
        kwargs: Dict[str, Any] = {
            "config": self.client_config(),
        }

        if self.config.region:
            kwargs["region_name"] = self.config.region

        endpoint_url = self.endpoint_url()
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url

        if self.config.http_config.insecure_skip_verify:
            kwargs["verify"] = False

        if self.config.access_key and self.config.secret_key:
            kwargs.update(
                {
                    "aws_access_key_id": self.config.access_key,
                    "aws_secret_access_key": self.config.secret_key,
                }
            )
            if self.config.session_token:
                kwargs["aws_session_token"] = self.config.session_token
            logger.info("S3 client created with explicit credentials")
        else:
            logger.info("S3 client created with default credential chain")

        return boto3.client("s3", **kwargs)  # type: ignore
