"""Core utilities and shared components for s3-objstore."""

from .config import settings
from .context import Context
from .exceptions import ObjStoreError, ValidationError
from .observability import get_logger, get_tracer

__all__ = [
    "settings",
    "Context",
    "ObjStoreError",
    "ValidationError",
    "get_logger",
    "get_tracer",
]
