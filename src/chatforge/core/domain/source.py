"""Generation-time prompt data gathered from the character, persona and extensions."""

from enum import IntEnum

from pydantic import BaseModel, Field

from .chat import ChatMessage, GenerationType


class ExtensionPromptPosition(IntEnum):
    """Placement of an extension prompt."""

    NONE = -1
    IN_PROMPT = 0
    IN_CHAT = 1
    BEFORE_PROMPT = 2


class ExtensionPromptRole(IntEnum):
    """Role of an extension prompt."""

    SYSTEM = 0
    USER = 1
    ASSISTANT = 2


class ExtensionPrompt(BaseModel):
    """Content registered by an extension (memory, author's note, retrieval...)."""

    value: str = ""
    position: ExtensionPromptPosition = ExtensionPromptPosition.IN_PROMPT
    depth: int = Field(default=0, ge=0)
    role: ExtensionPromptRole = ExtensionPromptRole.SYSTEM


class Character(BaseModel):
    """Character card fields used in prompts."""

    name: str = Field(..., min_length=1)
    description: str = ""
    personality: str = ""
    scenario: str = ""
    message_examples: str = Field(
        default="",
        description="Example dialogues separated by <START> lines",
    )
    system_prompt: str = Field(default="", description="Override of the main prompt")
    post_history_instructions: str = Field(
        default="",
        description="Override of the post-history instructions prompt",
    )


class PromptSource(BaseModel):
    """Everything the pipeline needs to know about a single generation."""

    character: Character
    user_name: str = "User"
    persona_description: str = ""
    group_members: list[str] = Field(
        default_factory=list,
        description="Names of all characters when generating for a group chat",
    )
    world_info_before: str = ""
    world_info_after: str = ""
    extension_prompts: dict[str, ExtensionPrompt] = Field(default_factory=dict)
    chat: list[ChatMessage] = Field(
        default_factory=list,
        description="Chat history, oldest message first",
    )
    type: GenerationType = GenerationType.NORMAL
    quiet_prompt: str = ""
    quiet_image: str | None = None
    bias: str = ""
    cycle_prompt: str = Field(
        default="",
        description="Text of the message being continued",
    )
    tools: list[dict] = Field(
        default_factory=list,
        description="Function tool definitions offered to the model",
    )

    @property
    def is_group(self) -> bool:
        return bool(self.group_members)
