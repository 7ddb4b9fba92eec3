# SASjs Python Adapter
# File: __init__.py
# Version: v2

"""Top-level package for the SASjs Python adapter."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .client import SASjs
from .config import SASjsConfig, ServerType
from .errors import (
    ContextNotFoundError,
    JobNotFoundError,
    MalformedResponseError,
    RetryLimitExceededError,
    SASjsError,
    SASjsHTTPError,
    SerializationError,
    ServerLogError,
    UnsupportedServerTypeError,
)
from .models import Context, Job, JobResult, LoginStatus, SASjsRequest, Session
from .serializer import convert_to_csv

__all__ = [
    "__version__",
    "SASjs",
    "SASjsConfig",
    "ServerType",
    "SASjsError",
    "SerializationError",
    "RetryLimitExceededError",
    "ServerLogError",
    "MalformedResponseError",
    "ContextNotFoundError",
    "JobNotFoundError",
    "UnsupportedServerTypeError",
    "SASjsHTTPError",
    "Context",
    "Job",
    "JobResult",
    "LoginStatus",
    "SASjsRequest",
    "Session",
    "convert_to_csv",
]


def _resolve_version() -> str:
    """Resolve installed distribution version.

    Falls back to a reasonable default when running from source without an
    installed distribution.
    """
    try:
        return version("sasjs-adapter")
    except PackageNotFoundError:
        return "0.1.0"


__version__ = _resolve_version()
