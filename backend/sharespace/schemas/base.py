from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from sharespace.core.errors import ValidationFailed


M = TypeVar("M", bound=BaseModel)


def validate_input(schema: type[M], data: Any) -> M:
    """Parse user input, reporting problems as ValidationFailed."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()))
        msg = first.get("msg", "invalid input")
        raise ValidationFailed(f"{field}: {msg}" if field else msg, payload=e.errors()) from e
