"""Query descriptors: the cache keys for entity reads."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:"}

Params = tuple[tuple[str, Any], ...]


def _freeze(value: Any) -> Any:
    """Turn nested containers into tuples so a descriptor can't be mutated."""
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), _freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return tuple(sorted((_freeze(v) for v in value), key=repr))
    return value


def freeze_params(params: Mapping[str, Any]) -> Params:
    """Sort and freeze filter parameters, dropping unset (None) filters."""
    return tuple(
        (str(name), _freeze(value))
        for name, value in sorted(params.items())
        if value is not None
    )


def _escape(part: str) -> str:
    result = part
    for char, escaped in _ESCAPE_MAP.items():
        result = result.replace(char, escaped)
    return result


def _render(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


def serialize_descriptor(entity_type: str, params: Params) -> str:
    """Serialize a descriptor to its canonical string form.

    Example:
        serialize_descriptor("inventory_items", (("category", "Bar"),))
        # 'inventory_items:category="Bar"'
    """
    segments = [_escape(entity_type)]
    segments.extend(_escape(f"{name}={_render(value)}") for name, value in params)
    return ":".join(segments)


@dataclass(frozen=True, slots=True, eq=False)
class QueryDescriptor:
    """Identifies one cached read: an entity type plus its filter parameters.

    Two descriptors are equal when their serialized forms are equal.
    Build them with :meth:`of` for list queries and :meth:`single` for
    single-entity reads.
    """

    entity_type: str
    params: Params = ()
    key: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", freeze_params(dict(self.params)))
        object.__setattr__(
            self, "key", serialize_descriptor(self.entity_type, self.params)
        )

    @classmethod
    def of(cls, entity_type: str, **filters: Any) -> QueryDescriptor:
        """Descriptor for a list query filtered by ``filters``."""
        return cls(entity_type, freeze_params(filters))

    @classmethod
    def single(cls, entity_type: str, entity_id: Any) -> QueryDescriptor:
        """Descriptor for a get-by-id read."""
        return cls(entity_type, (("id", entity_id),))

    @property
    def entity_id(self) -> Any | None:
        """The record id for single-entity descriptors, else None."""
        if len(self.params) == 1 and self.params[0][0] == "id":
            return self.params[0][1]
        return None

    @property
    def is_single(self) -> bool:
        return self.entity_id is not None

    @property
    def filters(self) -> dict[str, Any]:
        return dict(self.params)

    def matches(self, entity_type: str, entity_id: Any | None = None) -> bool:
        """Check whether a change to ``entity_type``/``entity_id`` touches this read.

        List descriptors match any change to their entity type; single
        descriptors only match their own record (or a type-wide change).
        """
        if self.entity_type != entity_type:
            return False
        if entity_id is None or not self.is_single:
            return True
        return self.entity_id == entity_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueryDescriptor):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"Query({self.key})"


__all__ = ["QueryDescriptor", "freeze_params", "serialize_descriptor"]
