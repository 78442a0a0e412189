"""Test configuration and fixtures for s3-objstore."""

import boto3
import pytest
from moto import mock_aws


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for testing."""
    return tmp_path


@pytest.fixture
def aws_credentials(monkeypatch):
    """Point boto3 at fake credentials so nothing reaches real AWS."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_client(aws_credentials):
    """Mocked S3 with an empty ``test-bucket``."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket="test-bucket")
        yield client


@pytest.fixture
def ssec_key_file(temp_dir):
    """Create a 32-byte SSE-C key file."""
    key_file = temp_dir / "sse-c.key"
    key_file.write_bytes(b"0123456789abcdef0123456789abcdef")
    key_file.chmod(0o600)
    return str(key_file)


@pytest.fixture
def config_file(temp_dir):
    """Write a bucket configuration and return its path."""

    def _write(content: str):
        path = temp_dir / "bucket.yaml"
        path.write_text(content)
        return path

    return _write
