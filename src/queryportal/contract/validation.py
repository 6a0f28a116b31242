"""Schema validation on top of pydantic.

A *shape* is anything pydantic can validate (a model class, ``list[Model]``,
a ``TypedDict``, a primitive type) or ``None`` for "no payload".
"""

from __future__ import annotations

import types
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Generic, Mapping, Optional, TypeVar, Union, get_args, get_origin

from pydantic import BaseModel, TypeAdapter, ValidationError

T = TypeVar("T")

ROOT_PATH = "(root)"


@dataclass(frozen=True)
class FieldError:
    path: str
    message: str


@dataclass(frozen=True)
class ValidationResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    errors: tuple[FieldError, ...] = field(default_factory=tuple)

    @classmethod
    def ok(cls, data: T) -> "ValidationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, errors: tuple[FieldError, ...], prefix: str = "") -> "ValidationResult[T]":
        return cls(success=False, message=prefix + format_errors(errors), errors=errors)

    def field_messages(self) -> dict[str, str]:
        # first message per path wins
        out: dict[str, str] = {}
        for err in self.errors:
            out.setdefault(err.path, err.message)
        return out


def format_errors(errors: tuple[FieldError, ...]) -> str:
    return ", ".join(f"{e.path}: {e.message}" for e in errors)


def _loc_to_path(loc: tuple[Any, ...]) -> str:
    parts = [str(p) for p in loc]
    return ".".join(parts) if parts else ROOT_PATH


def errors_from_pydantic(exc: ValidationError) -> tuple[FieldError, ...]:
    return tuple(
        FieldError(path=_loc_to_path(tuple(err.get("loc", ()))), message=err.get("msg", "Invalid value"))
        for err in exc.errors()
    )


@lru_cache(maxsize=None)
def _adapter(shape: Any) -> TypeAdapter:
    return TypeAdapter(shape)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, Mapping) and not value)


def validate_data(value: Any, shape: Any) -> ValidationResult[Any]:
    """Validate ``value`` against ``shape``; never raises for bad input."""

    if shape is None:
        if _is_empty(value):
            return ValidationResult.ok(None)
        return ValidationResult.fail((FieldError(ROOT_PATH, "Expected no data"),))

    if value is None and model_field_names(shape) is not None:
        # an absent payload is an empty object: all-default models still pass
        value = {}

    try:
        data = _adapter(shape).validate_python(value)
    except ValidationError as exc:
        return ValidationResult.fail(errors_from_pydantic(exc))
    return ValidationResult.ok(data)


def dump_data(value: Any, shape: Any) -> Any:
    """Serialize an already-validated value to JSON-compatible data."""

    if shape is None or value is None:
        return None
    return _adapter(shape).dump_python(value, mode="json", by_alias=True)


def json_schema(shape: Any) -> Optional[dict[str, Any]]:
    if shape is None:
        return None
    return _adapter(shape).json_schema(by_alias=True)


def model_field_names(shape: Any) -> Optional[frozenset[str]]:
    """Field names (and aliases) of a model shape, or None when unknown."""

    if isinstance(shape, type) and issubclass(shape, BaseModel):
        names: set[str] = set()
        for name, info in shape.model_fields.items():
            names.add(name)
            if info.alias:
                names.add(info.alias)
        return frozenset(names)
    return None


_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def _is_sequence(annotation: Any) -> bool:
    if annotation in _SEQUENCE_TYPES:
        return True
    origin = get_origin(annotation)
    if origin in _SEQUENCE_TYPES:
        return True
    if origin is Union or origin is types.UnionType:
        return any(_is_sequence(arg) for arg in get_args(annotation) if arg is not type(None))
    return False


def sequence_field_names(shape: Any) -> Optional[frozenset[str]]:
    """Names (and aliases) of list-like fields of a model shape, or None when unknown."""

    if isinstance(shape, type) and issubclass(shape, BaseModel):
        names: set[str] = set()
        for name, info in shape.model_fields.items():
            if _is_sequence(info.annotation):
                names.add(name)
                if info.alias:
                    names.add(info.alias)
        return frozenset(names)
    return None
