"""Error taxonomy shared by every component of the data layer."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced to views."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    SERVER = "server"
    NETWORK = "network"


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    """A failure mapped onto the taxonomy, ready for display."""

    kind: ErrorKind
    message: str
    field_errors: Mapping[str, str] = field(default_factory=dict)
    status: int | None = None
    detail: Any = None

    @property
    def retryable(self) -> bool:
        """Only transient (network) failures invite a retry."""
        return self.kind is ErrorKind.NETWORK

    @property
    def is_validation(self) -> bool:
        return self.kind is ErrorKind.VALIDATION


class SyncError(Exception):
    """Raised by the coordinator and executor; always carries a classified error."""

    def __init__(self, error: ClassifiedError) -> None:
        super().__init__(error.message)
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


class DataSourceError(Exception):
    """Structured error envelope returned by a data source.

    Mirrors the backend's ``{status, detail, errors: [{field, message}]}``
    shape.
    """

    def __init__(
        self,
        status: int,
        detail: str = "",
        errors: Sequence[Mapping[str, Any]] | None = None,
    ) -> None:
        super().__init__(detail or f"HTTP {status}")
        self.status = status
        self.detail = detail
        self.errors: list[Mapping[str, Any]] = list(errors or [])

    @classmethod
    def from_envelope(
        cls, envelope: Mapping[str, Any], *, status: int | None = None
    ) -> DataSourceError:
        """Build from an ``error`` envelope, falling back to the HTTP status."""
        return cls(
            status=int(envelope.get("status") or status or 500),
            detail=str(envelope.get("detail") or envelope.get("title") or ""),
            errors=envelope.get("errors") or None,
        )

    def __repr__(self) -> str:
        return f"DataSourceError(status={self.status}, detail={self.detail!r})"


__all__ = ["ClassifiedError", "DataSourceError", "ErrorKind", "SyncError"]
