"""Parameter models: JSON-schema generation and validation for tools.

Tool parameters are pydantic models. Field constraints map onto JSON
Schema the way providers expect::

    required        -> "required": [...]
    Literal[a, b]   -> "enum": ["a", "b"]
    ge / le         -> "minimum" / "maximum"
    min/max_length  -> "minLength" / "maxLength"
    pattern         -> "pattern"
    format          -> "format" (email, url/uri, uuid are checked)
    default         -> "default"
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from helmsman.exceptions import ToolError

_FORMAT_PATTERNS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
    "url": re.compile(r"^https?://[^\s/$.?#].[^\s]*$"),
    "uri": re.compile(r"^https?://[^\s/$.?#].[^\s]*$"),
    "uuid": re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"),
}


class ToolParams(BaseModel):
    """Base class for tool parameter models."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class NoParams(ToolParams):
    pass


def ParamField(
    default: Any = ...,
    *,
    description: str = "",
    minimum: float | None = None,
    maximum: float | None = None,
    min_length: int | None = None,
    max_length: int | None = None,
    pattern: str | None = None,
    format: str | None = None,
    alias: str | None = None,
) -> Any:
    """``pydantic.Field`` with the constraint vocabulary tools use."""
    extra: dict[str, Any] = {}
    if format:
        extra["format"] = format
    return Field(
        default,
        description=description or None,
        ge=minimum,
        le=maximum,
        min_length=min_length,
        max_length=max_length,
        pattern=pattern,
        alias=alias,
        json_schema_extra=extra or None,
    )


def _strip_titles(node: Any) -> Any:
    if isinstance(node, dict):
        return {
            key: _strip_titles(value)
            for key, value in node.items()
            if not (key == "title" and isinstance(value, str))
        }
    if isinstance(node, list):
        return [_strip_titles(item) for item in node]
    return node


def parameters_schema(model: type[BaseModel]) -> dict[str, Any]:
    """JSON-Schema object for a parameter model."""
    schema = _strip_titles(model.model_json_schema(by_alias=True))
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    schema.setdefault("required", [])
    return schema


def build_function_schema(name: str, description: str, model: type[BaseModel]) -> dict[str, Any]:
    """Provider-facing function descriptor."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters_schema(model),
        },
    }


def _check_formats(model: type[BaseModel], params: BaseModel) -> None:
    for field_name, info in model.model_fields.items():
        extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
        fmt = extra.get("format")
        pattern = _FORMAT_PATTERNS.get(str(fmt)) if fmt else None
        if pattern is None:
            continue
        value = getattr(params, field_name)
        if value in (None, ""):
            continue
        if not pattern.match(str(value)):
            key = info.alias or field_name
            raise ValueError(f"field '{key}' must be a valid {fmt}")


def _describe(error: PydanticValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        problems.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(problems)


def validate_arguments(model: type[BaseModel], arguments: dict[str, Any]) -> BaseModel:
    """Build ``model`` from ``arguments`` or raise ``ToolError(VALIDATION_FAILED)``."""
    try:
        params = model.model_validate(arguments)
        _check_formats(model, params)
    except PydanticValidationError as e:
        raise ToolError(
            ToolError.VALIDATION_FAILED,
            "Parameter validation failed",
            {"error": _describe(e)},
        ) from e
    except ValueError as e:
        raise ToolError(
            ToolError.VALIDATION_FAILED,
            "Parameter validation failed",
            {"error": str(e)},
        ) from e
    return params


class InputParams(ToolParams):
    """Single free-text ``input`` shared by lookup tools."""

    input: str = ParamField(description="The input for the tool", min_length=1)
