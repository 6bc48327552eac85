"""Chat history models handed to the prompt assembly pipeline."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class GenerationType(str, Enum):
    """What triggered a generation request."""

    NORMAL = "normal"
    CONTINUE = "continue"
    IMPERSONATE = "impersonate"
    QUIET = "quiet"
    SWIPE = "swipe"
    REGENERATE = "regenerate"


class ToolInvocation(BaseModel):
    """A tool call made by the assistant, stored with its result."""

    id: str = Field(..., description="Tool call identifier", min_length=1)
    name: str = Field(..., description="Function name", min_length=1)
    parameters: str = Field(default="{}", description="JSON encoded arguments")
    result: str = Field(default="", description="Tool output")


class ChatMessage(BaseModel):
    """A message from the stored chat, before conversion to prompt messages."""

    name: str = Field(default="", description="Display name of the speaker")
    content: str = Field(default="", description="Message text")
    is_user: bool = False
    is_narrator: bool = Field(
        default=False,
        description="System narration, sent with the system role",
    )
    ignored: bool = Field(
        default=False,
        description="Hidden from the prompt without being deleted",
    )
    force_avatar: bool = Field(
        default=False,
        description="Message sent on behalf of another speaker",
    )
    image: str | None = Field(None, description="Attached image URL or data URI")
    video: str | None = Field(None, description="Attached video URL or data URI")
    tool_invocations: list[ToolInvocation] | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    """A chat message formatted for prompt assembly.

    Injected entries are synthetic prompts spliced into the history at a depth.
    """

    role: str
    content: str = ""
    name: str = ""
    image: str | None = None
    video: str | None = None
    invocations: list[ToolInvocation] | None = None
    injected: bool = False
