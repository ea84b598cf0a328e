"""
Input schemas and the validator that runs before every tool handler.

Tool inputs are declared as pydantic models. Field names are snake_case in
Python and camelCase on the wire (``table_name`` <-> ``tableName``), so the
JSON schema published through ``tools/list`` matches what callers send.

Validation is lax: numeric strings coerce to numbers, absent fields take
their defaults, and unknown fields are accepted and ignored. All violations
are collected in one pass and reported together.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class ToolParams(BaseModel):
    """Base class for every tool input schema."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        extra="ignore",
        frozen=True,
    )


class EmptyParams(ToolParams):
    """Schema for tools that take no input."""


class PaginationParams(ToolParams):
    """Page/limit fragment shared by list-style tools."""

    page: int = Field(1, ge=1, description="Page number (1-based)")
    limit: int = Field(20, ge=1, le=100, description="Items per page (max 100)")


P = TypeVar("P", bound=ToolParams)


@dataclass(frozen=True)
class FieldViolation:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class InvalidParams(Exception):
    """Raised when tool input does not satisfy its schema."""

    def __init__(self, violations: list[FieldViolation]):
        self.violations = violations
        summary = "; ".join(f"{v.field}: {v.message}" for v in violations)
        super().__init__(f"Invalid parameters: {summary}")


def _field_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "(root)"


def validate_params(model: type[P], raw: Any) -> P:
    """
    Coerce a loosely-typed input mapping into ``model``.

    Args:
        model: The tool's params model
        raw: Whatever arrived as the call's ``arguments`` (None means {})

    Returns:
        A validated, immutable params instance with defaults applied.

    Raises:
        InvalidParams: listing every violated field.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise InvalidParams([FieldViolation("(root)", "Arguments must be an object")])

    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        raise InvalidParams([
            FieldViolation(_field_path(err["loc"]), err["msg"])
            for err in e.errors()
        ]) from e


def input_schema(model: type[ToolParams]) -> dict:
    """JSON schema for ``model`` as published in tool discovery."""
    schema = model.model_json_schema(by_alias=True)
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    return schema
