"""Token-templated webhook bodies.

A webhook body is authored as a plain string with ``{{$.path.to.field}}``
references and sent to the remote API as an ordered list of parts:

    "Hello {{$.user.name}}!"  ->  VALUE "Hello " | OBJECT_VALUE [user, name] | VALUE "!"

``render(tokenize(s)) == s`` holds for every string.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

TOKEN_PATTERN = re.compile(r"{{\$\.(.*?)}}")

TOKEN_PREFIX = "{{$."
TOKEN_SUFFIX = "}}"


class PartType(str, Enum):
    VALUE = "VALUE"
    OBJECT_VALUE = "OBJECT_VALUE"


class BodyPart(BaseModel):
    """One literal or object-reference segment of a tokenized body."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: PartType
    data_type: str | None = Field(None, alias="dataType")
    value: str | None = None
    path: list[str] | None = None
    name: str | None = None

    @classmethod
    def literal(cls, value: str) -> BodyPart:
        return cls(type=PartType.VALUE, data_type="STRING", value=value)

    @classmethod
    def reference(cls, path: list[str]) -> BodyPart:
        return cls(type=PartType.OBJECT_VALUE, path=path, name=path[0])


class WebhookBody(BaseModel):
    """Tokenized webhook body in the remote API's wire shape."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    data_type: str = Field("ANY", alias="dataType")
    type: str = "TOKENIZED"
    parts: list[BodyPart] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset and empty optional fields."""
        payload: dict[str, Any] = {"dataType": self.data_type, "type": self.type, "parts": []}
        for part in self.parts:
            item: dict[str, Any] = {"type": part.type.value}
            if part.data_type:
                item["dataType"] = part.data_type
            if part.value:
                item["value"] = part.value
            if part.path:
                item["path"] = list(part.path)
            if part.name:
                item["name"] = part.name
            payload["parts"].append(item)
        return payload


def tokenize(source: str) -> WebhookBody:
    """Split a templated string into literal and object-reference parts.

    A literal part is emitted before every token, even when empty. Trailing
    text after the last token becomes a final literal part.
    """
    parts: list[BodyPart] = []
    last_index = 0

    for match in TOKEN_PATTERN.finditer(source):
        parts.append(BodyPart.literal(source[last_index : match.start()]))
        parts.append(BodyPart.reference(match.group(1).split(".")))
        last_index = match.end()

    if last_index < len(source):
        parts.append(BodyPart.literal(source[last_index:]))

    return WebhookBody(parts=parts)


def render(body: WebhookBody) -> str:
    """Rebuild the templated string from a tokenized body."""
    chunks: list[str] = []
    for part in body.parts:
        match part.type:
            case PartType.VALUE:
                chunks.append(part.value or "")
            case PartType.OBJECT_VALUE:
                if part.path:
                    chunks.append(TOKEN_PREFIX + ".".join(part.path) + TOKEN_SUFFIX)
    return "".join(chunks)
