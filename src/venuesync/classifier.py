"""Error classifier: maps raw failures onto the error taxonomy.

Every component that can fail routes its exception through
:meth:`ErrorClassifier.classify` before anything reaches a view, and
through :meth:`ErrorClassifier.report` to decide whether a toast is shown.
Views never branch on transport status codes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from venuesync.errors import ClassifiedError, DataSourceError, ErrorKind, SyncError
from venuesync.notifications import NotificationSink, notify_safely
from venuesync.types import Notification, NotificationLevel

logger = logging.getLogger(__name__)

_STATUS_KINDS: dict[int, ErrorKind] = {
    422: ErrorKind.VALIDATION,
    401: ErrorKind.AUTHENTICATION,
    403: ErrorKind.AUTHORIZATION,
    404: ErrorKind.NOT_FOUND,
}

_DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Please correct the highlighted fields",
    ErrorKind.AUTHENTICATION: "Authentication required. Please log in.",
    ErrorKind.AUTHORIZATION: "You do not have permission to do that",
    ErrorKind.NOT_FOUND: "The requested record was not found",
}

_NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    OSError,
)


def kind_for_status(status: int) -> ErrorKind:
    """HTTP-style status to error kind. Unlisted statuses are server errors."""
    return _STATUS_KINDS.get(status, ErrorKind.SERVER)


def parse_field_errors(errors: Iterable[Mapping[str, Any]] | None) -> dict[str, str]:
    """Collect per-field messages. The first message for a field wins."""
    result: dict[str, str] = {}
    for item in errors or ():
        field_name = item.get("field")
        message = item.get("message")
        if not field_name or not message:
            continue
        result.setdefault(str(field_name), str(message))
    return result


def format_message(error: ClassifiedError) -> str:
    """Human-readable text: field messages when present, else the message."""
    if error.field_errors:
        return ", ".join(error.field_errors.values())
    return error.message


class ErrorClassifier:
    """Normalizes failures and pushes non-validation errors to a sink."""

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self._sink = sink

    def classify(
        self, exc: BaseException, operation: str = "processing the request"
    ) -> ClassifiedError:
        """Map an exception onto the taxonomy."""
        if isinstance(exc, SyncError):
            return exc.error

        if isinstance(exc, DataSourceError):
            return self._from_status(
                exc.status, exc.detail, exc.errors, operation, detail=exc
            )

        if isinstance(exc, httpx.HTTPStatusError):
            envelope = _error_envelope(exc.response)
            return self._from_status(
                exc.response.status_code,
                str(envelope.get("detail") or ""),
                envelope.get("errors"),
                operation,
                detail=envelope or None,
            )

        if isinstance(exc, _NETWORK_ERRORS):
            return ClassifiedError(
                kind=ErrorKind.NETWORK,
                message=(
                    f"Network error occurred while {operation}. "
                    "Please check your connection and try again."
                ),
                detail=repr(exc),
            )

        logger.error("Unexpected error while %s", operation, exc_info=exc)
        return ClassifiedError(
            kind=ErrorKind.SERVER,
            message=f"Unexpected error occurred while {operation}",
            detail=repr(exc),
        )

    def report(self, error: ClassifiedError, operation: str) -> None:
        """Toast the error unless it belongs to inline field rendering."""
        if error.is_validation:
            return
        logger.debug("Reporting %s error for %s", error.kind.value, operation)
        if self._sink is None:
            return
        notify_safely(
            self._sink,
            Notification(
                level=NotificationLevel.ERROR,
                message=f"Error {operation}: {format_message(error)}",
            ),
        )

    def handle(self, exc: BaseException, operation: str) -> ClassifiedError:
        """Classify then report; returns the classified error."""
        error = self.classify(exc, operation)
        self.report(error, operation)
        return error

    def _from_status(
        self,
        status: int,
        message: str,
        errors: Iterable[Mapping[str, Any]] | None,
        operation: str,
        *,
        detail: Any = None,
    ) -> ClassifiedError:
        kind = kind_for_status(status)
        field_errors = (
            parse_field_errors(errors) if kind is ErrorKind.VALIDATION else {}
        )
        fallback = _DEFAULT_MESSAGES.get(kind, f"Failed while {operation}")
        return ClassifiedError(
            kind=kind,
            message=message or fallback,
            field_errors=field_errors,
            status=status,
            detail=detail,
        )


def _error_envelope(response: httpx.Response) -> dict[str, Any]:
    """Best-effort extraction of the ``error`` envelope from a response body."""
    try:
        body = response.json()
    except ValueError:
        return {}
    if not isinstance(body, dict):
        return {}
    envelope = body.get("error", body)
    return envelope if isinstance(envelope, dict) else {}


__all__ = [
    "ErrorClassifier",
    "format_message",
    "kind_for_status",
    "parse_field_errors",
]
