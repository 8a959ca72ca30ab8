"""Wire model for tracked events."""

from __future__ import annotations

import base64
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventPayload(BaseModel):
    """An event as sent to the track endpoint.

    Serialized as compact JSON ``{"event": ..., "properties": {...}}`` and
    base64-encoded into the ``data`` query parameter.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    event: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event")
    @classmethod
    def _event_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("event must be non-empty")
        return value

    def to_json(self) -> str:
        return json.dumps(
            {"event": self.event, "properties": self.properties},
            separators=(",", ":"),
            default=str,
        )

    def encode(self) -> str:
        """Base64 of the JSON body, as expected in the ``data`` parameter."""
        return base64.b64encode(self.to_json().encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, data: str) -> EventPayload:
        """Inverse of :meth:`encode`."""
        body = json.loads(base64.b64decode(data).decode("utf-8"))
        return cls(event=body["event"], properties=body.get("properties") or {})
