"""
Input validation helpers.

Request bodies are typed Pydantic models. ``validate`` runs a model against an
arbitrary payload and returns a tagged result instead of raising, so callers
outside the HTTP layer (imports, migrations) decide how to report failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Iterable, TypeVar, Union

import pydantic
from pydantic import BaseModel

from app.core.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[ModelT]):
    value: ModelT


@dataclass(frozen=True)
class Err:
    errors: dict[str, str]


Result = Union[Ok[ModelT], Err]


def field_errors(errors: Iterable[dict[str, Any]]) -> dict[str, str]:
    """Flatten Pydantic/FastAPI error entries into ``{"field.path": message}``."""
    flattened: dict[str, str] = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        key = ".".join(loc) or "payload"
        flattened.setdefault(key, error.get("msg", "Invalid value"))
    return flattened


def validate(model: type[ModelT], payload: Any) -> Result[ModelT]:
    """Validate ``payload`` against ``model`` without raising."""
    try:
        return Ok(model.model_validate(payload))
    except pydantic.ValidationError as exc:
        return Err(field_errors(exc.errors()))


def describe(errors: dict[str, str]) -> str:
    """Build a one-line message naming the offending fields."""
    if not errors:
        return "Invalid request"
    parts = [f"{name}: {message}" for name, message in errors.items()]
    return "Invalid " + "; ".join(parts)


def parse(model: type[ModelT], payload: Any) -> ModelT:
    """Return ``payload`` as a ``model`` instance, raising ValidationError on failure."""
    if isinstance(payload, model):
        return payload
    result = validate(model, payload)
    if isinstance(result, Err):
        raise ValidationError(describe(result.errors), fields=result.errors)
    return result.value


def changes(model: BaseModel) -> dict[str, Any]:
    """Return only the fields the caller explicitly sent.

    Absent fields are left out, fields sent as ``null`` map to ``None``.
    """
    return {name: getattr(model, name) for name in model.model_fields_set}
