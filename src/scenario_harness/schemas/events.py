"""Event schema for the agent's structured session log."""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SessionEvent(BaseModel):
    """One record from a session's ``events.jsonl``."""

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(description="Event type, e.g. assistant.turn_start")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific payload")
    id: str | None = Field(default=None, description="Event identifier")
    timestamp: datetime = Field(description="When the event was recorded")
    parent_id: str | None = Field(default=None, alias="parentId")

    def text_field(self, key: str) -> str:
        """Return ``data[key]`` as text, or an empty string."""
        value = self.data.get(key)
        return value if isinstance(value, str) else ""

    @property
    def tool_name(self) -> str:
        return self.text_field("toolName")

    @property
    def tool_call_id(self) -> str:
        return self.text_field("toolCallId")

    @property
    def arguments_text(self) -> str:
        """Tool arguments flattened to text for pattern matching."""
        arguments = self.data.get("arguments")
        if arguments is None:
            return ""
        if isinstance(arguments, str):
            return arguments
        return json.dumps(arguments)
