"""Form error state fed by local schema checks and server validation errors."""

from __future__ import annotations

from collections.abc import Awaitable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from venuesync.errors import ClassifiedError, ErrorKind

R = TypeVar("R")


def field_errors_from(exc: ValidationError) -> dict[str, str]:
    """Per-field messages from a pydantic error. The first message per field wins."""
    result: dict[str, str] = {}
    for item in exc.errors():
        field_name = ".".join(str(part) for part in item["loc"]) or "form"
        result.setdefault(field_name, item["msg"])
    return result


def partial_errors(
    schema: type[BaseModel], changes: Mapping[str, Any]
) -> dict[str, str]:
    """Validate only the fields present in ``changes``."""
    try:
        schema.model_validate(dict(changes))
    except ValidationError as e:
        return {
            name: message
            for name, message in field_errors_from(e).items()
            if name.split(".")[0] in changes
        }
    return {}


def dump_changes(
    schema: type[BaseModel], changes: Mapping[str, Any]
) -> dict[str, Any]:
    """JSON-ready values for a partial update, coerced through the field types."""
    dumped: dict[str, Any] = {}
    for name, value in changes.items():
        field = schema.model_fields.get(name)
        annotation = Any if field is None else field.annotation
        adapter: TypeAdapter[Any] = TypeAdapter(annotation)
        dumped[name] = adapter.dump_python(adapter.validate_python(value), mode="json")
    return dumped


def validation_error(
    field_errors: Mapping[str, str], message: str = "Please correct the highlighted fields"
) -> ClassifiedError:
    return ClassifiedError(
        kind=ErrorKind.VALIDATION, message=message, field_errors=dict(field_errors)
    )


class FormErrors:
    """What a form reads to render inline messages.

    ``field_errors`` maps field name to message; ``is_validating`` is true
    while a submission is waiting on the server.
    """

    def __init__(self, schema: type[BaseModel] | None = None) -> None:
        self._schema = schema
        self.field_errors: dict[str, str] = {}
        self.is_validating = False

    @property
    def has_errors(self) -> bool:
        return bool(self.field_errors)

    def validate(self, payload: Mapping[str, Any]) -> bool:
        """Check a whole payload against the schema, replacing field errors."""
        if self._schema is None:
            self.field_errors = {}
            return True
        try:
            self._schema.model_validate(dict(payload))
        except ValidationError as e:
            self.field_errors = field_errors_from(e)
            return False
        self.field_errors = {}
        return True

    def validate_field(self, field_name: str, value: Any) -> str | None:
        """Check a single field; unknown fields are considered valid."""
        if self._schema is None or field_name not in self._schema.model_fields:
            return None
        errors = partial_errors(self._schema, {field_name: value})
        message = errors.get(field_name) or next(iter(errors.values()), None)
        if message is None:
            self.field_errors.pop(field_name, None)
        else:
            self.field_errors[field_name] = message
        return message

    def apply(self, error: ClassifiedError | None) -> None:
        """Take field messages from a validation error. Other kinds are toasted
        elsewhere and leave the form untouched."""
        if error is not None and error.is_validation:
            self.field_errors = dict(error.field_errors)

    async def track(self, submission: Awaitable[R]) -> R:
        """Await a submission with ``is_validating`` set, then apply its error."""
        self.is_validating = True
        try:
            result = await submission
        finally:
            self.is_validating = False
        self.apply(getattr(result, "error", None))
        return result

    def clear_field(self, field_name: str) -> None:
        self.field_errors.pop(field_name, None)

    def clear_all(self) -> None:
        self.field_errors = {}


__all__ = [
    "FormErrors",
    "dump_changes",
    "field_errors_from",
    "partial_errors",
    "validation_error",
]
