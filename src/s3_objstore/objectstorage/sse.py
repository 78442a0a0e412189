"""Server-side encryption policies for uploaded objects.

The ``sse_config`` block of a bucket configuration is decoded into
``SSEConfig`` and then turned into one arm of ``SSEPolicy``:

    ``NoSSE``          no ``type`` given
    ``SSES3``          ``type: SSE-S3``, provider-managed keys
    ``SSEKMS``         ``type: SSE-KMS``, requires ``kms_key_id``
    ``SSEC``           ``type: SSE-C``, requires ``encryption_key`` (a key file)
    ``UnresolvedSSE``  any other ``type`` string

Validation (``validate_sse``) only checks structure. Mapping a policy to the
arguments boto3 needs (``resolve_sse``) happens once per bucket, and an
unresolved type maps to "no encryption" there instead of failing.
"""

import base64
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from s3_objstore.core import get_logger
from s3_objstore.core.exceptions import InvalidSSEConfigError

logger = get_logger(__name__)

SSE_S3 = "SSE-S3"
SSE_KMS = "SSE-KMS"
SSE_C = "SSE-C"

# SSE-C keys are AES-256 keys
SSEC_KEY_SIZE = 32


class SSEConfig(BaseModel):
    """Decoded ``sse_config`` block."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: str = Field("", description="SSE-S3, SSE-KMS, SSE-C or empty")
    kms_key_id: str = Field("", description="KMS key id for SSE-KMS")
    kms_encryption_context: Dict[str, str] = Field(
        default_factory=dict, description="Encryption context for SSE-KMS"
    )
    encryption_key: str = Field("", description="Path to the SSE-C key file")

    def to_policy(self) -> "SSEPolicy":
        """Map the decoded block onto its policy variant."""
        if self.type == "":
            return NoSSE()
        if self.type == SSE_S3:
            return SSES3()
        if self.type == SSE_KMS:
            return SSEKMS(
                kms_key_id=self.kms_key_id,
                encryption_context=dict(self.kms_encryption_context),
            )
        if self.type == SSE_C:
            return SSEC(
                encryption_key_path=self.encryption_key,
                kms_key_id=self.kms_key_id,
            )
        return UnresolvedSSE(
            type=self.type,
            kms_key_id=self.kms_key_id,
            encryption_key_path=self.encryption_key,
        )


@dataclass(frozen=True)
class NoSSE:
    """No at-rest encryption requested."""

    type: str = ""


@dataclass(frozen=True)
class SSES3:
    """Encryption with keys managed by the storage provider."""

    type: str = SSE_S3


@dataclass(frozen=True)
class SSEKMS:
    """Encryption with a key held in a key management service."""

    kms_key_id: str = ""
    encryption_context: Dict[str, str] = field(default_factory=dict)
    type: str = SSE_KMS


@dataclass(frozen=True)
class SSEC:
    """Encryption with a caller-supplied key read from a file."""

    encryption_key_path: str = ""
    kms_key_id: str = ""
    type: str = SSE_C


@dataclass(frozen=True)
class UnresolvedSSE:
    """A type string that names no known mechanism."""

    type: str
    kms_key_id: str = ""
    encryption_key_path: str = ""


SSEPolicy = Union[NoSSE, SSES3, SSEKMS, SSEC, UnresolvedSSE]


def validate_sse(policy: Optional[SSEPolicy]) -> None:
    """Check the structural rules of an SSE policy.

    Args:
        policy: Policy to check; None is treated as no encryption

    Raises:
        InvalidSSEConfigError: If a required field is missing or a field is
            set that the mechanism does not accept
    """
    if isinstance(policy, SSEKMS):
        if not policy.kms_key_id:
            raise InvalidSSEConfigError("KMS key id required for SSE-KMS")
    elif isinstance(policy, SSEC):
        if not policy.encryption_key_path:
            raise InvalidSSEConfigError("encryption key path required for SSE-C")
        if policy.kms_key_id:
            raise InvalidSSEConfigError("KMS key id not applicable to SSE-C")
    # NoSSE, SSES3 and UnresolvedSSE carry nothing to check


def _read_ssec_key(path: str) -> bytes:
    try:
        key = Path(path).read_bytes()
    except OSError as e:
        raise InvalidSSEConfigError(f"Failed to read SSE-C key file '{path}': {e}")

    if len(key) != SSEC_KEY_SIZE:
        raise InvalidSSEConfigError(
            f"SSE-C key in '{path}' must be {SSEC_KEY_SIZE} bytes, got {len(key)}"
        )
    return key


def resolve_sse(policy: Optional[SSEPolicy]) -> Dict[str, Any]:
    """Translate a policy into boto3 ``put_object`` arguments.

    Args:
        policy: A validated policy

    Returns:
        Extra arguments for the upload call; empty for no encryption

    Raises:
        InvalidSSEConfigError: If the SSE-C key file cannot be used
    """
    if policy is None or isinstance(policy, NoSSE):
        return {}

    if isinstance(policy, SSES3):
        return {"ServerSideEncryption": "AES256"}

    if isinstance(policy, SSEKMS):
        args: Dict[str, Any] = {
            "ServerSideEncryption": "aws:kms",
            "SSEKMSKeyId": policy.kms_key_id,
        }
        if policy.encryption_context:
            encoded = json.dumps(policy.encryption_context, sort_keys=True)
            args["SSEKMSEncryptionContext"] = base64.b64encode(
                encoded.encode("utf-8")
            ).decode("ascii")
        return args

    if isinstance(policy, SSEC):
        return {
            "SSECustomerAlgorithm": "AES256",
            "SSECustomerKey": _read_ssec_key(policy.encryption_key_path),
        }

    logger.warning(
        "Unsupported SSE type, uploading without server-side encryption",
        sse_type=policy.type,
        supported=[SSE_S3, SSE_KMS, SSE_C],
    )
    return {}
