# SASjs Python Adapter
# File: errors.py
# Version: v1

"""Exceptions raised by the SASjs adapter.

Every domain error carries a human readable ``message`` and can be turned into
the ``{"MESSAGE": ...}`` shape front-ends already expect from SASjs, so callers
have one error contract whichever branch of the protocol failed. Transport
failures from httpx are not wrapped.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SASjsError(RuntimeError):
    """Base class for all adapter errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"MESSAGE": self.message}


class SerializationError(SASjsError):
    """A table could not be converted to the SAS ingestion format."""


class RetryLimitExceededError(SASjsError):
    """The server kept asking for a retry after the retry budget ran out.

    ``body`` is the last raw response text.
    """

    def __init__(self, body: str, attempts: int) -> None:
        super().__init__(body)
        self.body = body
        self.attempts = attempts


class ServerLogError(SASjsError):
    """SAS9 program failed; the message is the log window around the error."""


class MalformedResponseError(SASjsError):
    """A response that should have been JSON could not be decoded."""

    def __init__(self, body: str) -> None:
        super().__init__(body)
        self.body = body


class ContextNotFoundError(SASjsError):
    """The requested Viya compute context does not exist."""

    def __init__(self, context_name: str) -> None:
        super().__init__(f"Execution context {context_name} not found.")
        self.context_name = context_name


class JobNotFoundError(SASjsError):
    """A job definition could not be located under the app location."""

    def __init__(self, job_path: str, app_loc: str) -> None:
        super().__init__(f"The job {job_path} was not found at the appLoc {app_loc}")
        self.job_path = job_path
        self.app_loc = app_loc


class UnsupportedServerTypeError(SASjsError):
    """A platform specific operation was called on the wrong server type."""


class SASjsHTTPError(SASjsError):
    """A REST call returned a non-success status.

    Attributes
    ----------
    status : int
        HTTP status code
    body : str
        Response body
    url : str
        The URL that was called
    """

    def __init__(
        self,
        status: int,
        body: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        snippet = (body or "")[:500]
        super().__init__(f"SAS server returned HTTP {status} for {url}: {snippet}")
        self.status = status
        self.body = body or ""
        self.url = url
        self.headers = headers or {}
