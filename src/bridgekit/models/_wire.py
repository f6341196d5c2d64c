"""Helpers shared by the JSON wire models."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import BaseModel, ConfigDict

from bridgekit.core.errors import MalformedMessageError


class WireModel(BaseModel):
    """Immutable message model that serializes with its wire field names."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def load_json_object(raw: str | bytes) -> dict[str, Any]:
    """Decode *raw* into a JSON object carrying a string ``type`` field."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedMessageError("Invalid message format") from exc
    if not isinstance(data, dict):
        raise MalformedMessageError("Invalid message format")
    if not isinstance(data.get("type"), str):
        raise MalformedMessageError("Message is missing a 'type' field")
    return data


def decode_base64(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedMessageError("Invalid base64 payload") from exc


def encode_wire(message: BaseModel | dict[str, Any]) -> str:
    if isinstance(message, WireModel):
        return json.dumps(message.to_wire())
    if isinstance(message, BaseModel):
        return message.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(message)
