import asyncio
from enum import Enum

import httpx
import structlog

from meterbar.models import Source

logger = structlog.get_logger()


class ErrorKind(str, Enum):
    # no or invalid credentials, not retried within a cycle
    NOT_AUTHENTICATED = "not_authenticated"
    # timeout, connection or DNS failure
    TRANSIENT_NETWORK = "transient_network"
    # non-2xx application error, e.g. rate limited
    REMOTE_REJECTED = "remote_rejected"
    # response shape did not match what the client expects
    DECODE_FAILED = "decode_failed"


class FetchError(Exception):
    """
    FetchError is the classified failure of a single source fetch.
    Source clients raise it directly; anything else escaping a client
    is converted with classify_error().
    """

    def __init__(
        self,
        kind: "ErrorKind",
        message: "str",
        source: "Source | None" = None,
    ) -> "None":
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.source = source

    def with_source(self, source: "Source") -> "FetchError":
        if self.source is source:
            return self
        return FetchError(self.kind, self.message, source)

    def __repr__(self) -> "str":
        source = self.source.value if self.source else None
        return (
            f"FetchError(kind={self.kind.value!r}, "
            f"source={source!r}, message={self.message!r})"
        )


def classify_status(status_code: "int") -> "ErrorKind":
    if status_code in (401, 403):
        return ErrorKind.NOT_AUTHENTICATED
    return ErrorKind.REMOTE_REJECTED


def classify_error(exc: "BaseException", source: "Source") -> "FetchError":
    """
    maps an arbitrary exception raised while fetching a source onto
    the error taxonomy.
    """
    if isinstance(exc, FetchError):
        return exc.with_source(source)

    # httpx.TimeoutException is a TransportError, asyncio's timeout
    # is the builtin TimeoutError (an OSError subclass)
    if isinstance(exc, (asyncio.TimeoutError, httpx.TransportError, OSError)):
        return FetchError(
            ErrorKind.TRANSIENT_NETWORK,
            f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
            source,
        )

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return FetchError(classify_status(status), f"HTTP {status}", source)

    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return FetchError(ErrorKind.DECODE_FAILED, str(exc), source)

    logger.error(
        "unclassified_fetch_error",
        source=source.value,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return FetchError(ErrorKind.REMOTE_REJECTED, str(exc), source)
