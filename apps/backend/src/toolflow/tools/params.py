"""Declarative parameter schemas.

Custom tools describe their parameters with a JSON-schema subset; this module
turns that into a pydantic model so every tool origin validates through the
same code path.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError

_JSON_TYPES: dict[str, type] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}


def schema_to_model(schema: dict[str, Any] | str, model_name: str = "ToolParameters") -> type[BaseModel]:
    """Build a pydantic model from a JSON-schema ``object`` definition.

    Accepts the schema as a dict or as its JSON text (the form custom tool
    rows store it in). Raises ``ValueError`` for anything that is not an
    object schema.
    """
    if isinstance(schema, str):
        try:
            schema = json.loads(schema)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid schema JSON: {exc.msg}") from exc

    if not isinstance(schema, dict):
        raise ValueError("Invalid schema")
    if schema.get("type", "object") != "object":
        raise ValueError(f"Parameter schema must be an object, got {schema.get('type')!r}")

    return _object_model(schema, _model_name(model_name))


def _model_name(raw: str) -> str:
    parts = re.findall(r"[A-Za-z0-9]+", raw)
    return "".join(p[:1].upper() + p[1:] for p in parts) or "ToolParameters"


def _object_model(schema: dict[str, Any], name: str) -> type[BaseModel]:
    properties = schema.get("properties") or {}
    if not isinstance(properties, dict):
        raise ValueError(f"'properties' of {name} must be a mapping")
    required = schema.get("required") or []
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise ValueError(f"'required' of {name} must be a list of property names")
    required = set(required)

    fields: dict[str, Any] = {}
    for prop_name, prop_schema in properties.items():
        if not isinstance(prop_name, str) or not prop_name or prop_name.startswith("_"):
            raise ValueError(f"Invalid property name {prop_name!r} in {name}")
        if not isinstance(prop_schema, dict):
            raise ValueError(f"Property '{prop_name}' must be a schema object")
        annotation = _annotation(prop_schema, f"{name}_{prop_name}")
        description = prop_schema.get("description")

        if prop_name in required:
            default: Any = ...
        elif "default" in prop_schema:
            default = prop_schema["default"]
        else:
            annotation = Optional[annotation]
            default = None

        fields[prop_name] = (annotation, Field(default, description=description))

    return create_model(name, **fields)


def _annotation(schema: dict[str, Any], name: str) -> Any:
    if "enum" in schema:
        values = schema["enum"]
        if not isinstance(values, list) or not values:
            raise ValueError(f"'enum' of {name} must be a non-empty list")
        if not all(v is None or isinstance(v, (str, int, float, bool)) for v in values):
            raise ValueError(f"'enum' of {name} may only hold scalar values")
        return Literal[tuple(values)]

    json_type = schema.get("type")
    if json_type in _JSON_TYPES:
        return _JSON_TYPES[json_type]
    if json_type == "array":
        items = schema.get("items")
        if isinstance(items, dict):
            return list[_annotation(items, f"{name}_item")]
        return list[Any]
    if json_type == "object":
        if schema.get("properties"):
            return _object_model(schema, _model_name(name))
        return dict[str, Any]
    return Any


def validate_parameters(model: type[BaseModel], parameters: dict[str, Any]) -> dict[str, Any]:
    """Parse ``parameters`` with ``model``; failures raise ``ValidationError``."""
    try:
        parsed = model.model_validate(parameters)
    except PydanticValidationError as exc:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in exc.errors()
        ]
        summary = "; ".join(f"{e['loc'] or '<root>'}: {e['msg']}" for e in errors)
        raise ValidationError(f"Invalid parameters: {summary}", errors=errors) from exc

    return parsed.model_dump()
