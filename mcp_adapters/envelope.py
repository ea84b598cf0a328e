"""
The result envelope every tool call returns, success or failure.

    {"content": [{"type": "text", "text": "<pretty JSON>"}]}

Failures are not a separate shape: the JSON text simply carries an
``error`` key, followed by whatever request fields help the caller
correlate the failure.
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class TextContent:
    text: str
    type: str = "text"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class ToolResult:
    content: tuple[TextContent, ...]

    def to_dict(self) -> dict:
        return {"content": [c.to_dict() for c in self.content]}

    @property
    def text(self) -> str:
        """Text of the first content item."""
        return self.content[0].text if self.content else ""

    def payload(self) -> Any:
        """Decode the JSON carried by the first content item."""
        return decode_text(self.text)

    @property
    def is_error(self) -> bool:
        data = self.payload()
        return isinstance(data, dict) and "error" in data


def _json_default(value: Any) -> Any:
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset)):
        return list(value)
    return str(value)


def render_json(payload: Any) -> str:
    """Pretty-print a payload: 2-space indent, insertion key order."""
    return json.dumps(payload, indent=2, ensure_ascii=False, default=_json_default)


def decode_text(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def text_result(payload: Any) -> ToolResult:
    return ToolResult(content=(TextContent(render_json(payload)),))


def error_result(message: str, context: dict[str, Any] | None = None, **extra: Any) -> ToolResult:
    payload: dict[str, Any] = {"error": message}
    payload.update(extra)
    payload.update(context or {})
    return text_result(payload)


def result_from_dict(data: dict) -> ToolResult:
    """Rebuild a ToolResult from its wire form (client side)."""
    items = data.get("content") or []
    return ToolResult(content=tuple(
        TextContent(text=item.get("text", ""), type=item.get("type", "text"))
        for item in items
    ))
